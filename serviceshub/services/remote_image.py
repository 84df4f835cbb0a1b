import logging
from typing import Optional

import requests

from serviceshub.config import MAX_ICON_BYTES
from serviceshub.exceptions import NotAnImageError
from serviceshub.services.http_fetch import create_session, fetch_limited
from serviceshub.services.image import normalize_image

logger = logging.getLogger(__name__)


def fetch_remote_image(url: str, session: Optional[requests.Session] = None) -> str:
    """Download ``url`` and return it as a normalized icon data URL.

    Raises UnreachableError, NotAnImageError, TooLargeError or
    InvalidImageError. The body is never read past MAX_ICON_BYTES.
    """
    if session is None:
        with create_session() as own_session:
            return fetch_remote_image(url, session=own_session)

    resource = fetch_limited(session, url, MAX_ICON_BYTES)
    if not resource.content_type.startswith("image/"):
        raise NotAnImageError(f"{url}: content-type {resource.content_type or 'missing'}")
    logger.info(f"Fetched remote image {url} ({resource.content_type}, {len(resource.body)} bytes)")
    return normalize_image(resource.body, resource.content_type)
