import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from serviceshub.exceptions import IconError
from serviceshub.services.favicon import discover_favicon
from serviceshub.services.http_fetch import create_session
from serviceshub.services.image import is_data_url, sanitize_data_url
from serviceshub.services.remote_image import fetch_remote_image

logger = logging.getLogger(__name__)


class IconOrigin(str, Enum):
    UPLOAD = "upload"
    SOURCE_URL = "source_url"
    FAVICON = "favicon"


@dataclass
class IconResolution:
    icon: Optional[str] = None
    origin: Optional[IconOrigin] = None

    @property
    def found(self) -> bool:
        return self.icon is not None


class IconResolver:
    """Picks a tile icon from an upload, an explicit image URL or the site favicon.

    Sources are tried in that order and the first one that produces an icon
    wins. A failing source is logged and skipped, never raised: a tile without
    an icon is still a valid tile. Each call uses its own HTTP session, so one
    resolver can serve concurrent requests.
    """

    def __init__(self, session_factory=create_session):
        self.session_factory = session_factory

    def resolve(
        self,
        uploaded_icon: Optional[str] = None,
        icon_source_url: Optional[str] = None,
        page_url: Optional[str] = None,
        allow_favicon: bool = True,
    ) -> IconResolution:
        if uploaded_icon:
            if is_data_url(uploaded_icon):
                try:
                    return IconResolution(sanitize_data_url(uploaded_icon), IconOrigin.UPLOAD)
                except IconError as e:
                    logger.warning(f"Rejected uploaded icon ({e.reason}): {e}")
            else:
                logger.warning("Ignoring uploaded icon that is not a data URL")

        with self.session_factory() as session:
            if icon_source_url:
                try:
                    icon = fetch_remote_image(icon_source_url, session=session)
                    return IconResolution(icon, IconOrigin.SOURCE_URL)
                except IconError as e:
                    logger.warning(f"Icon source {icon_source_url} failed ({e.reason}): {e}")

            if allow_favicon and page_url:
                try:
                    icon = discover_favicon(page_url, session=session)
                    return IconResolution(icon, IconOrigin.FAVICON)
                except IconError as e:
                    logger.warning(f"Favicon discovery for {page_url} failed ({e.reason}): {e}")

        return IconResolution()

    def favicon(self, page_url: str) -> Optional[str]:
        with self.session_factory() as session:
            try:
                return discover_favicon(page_url, session=session)
            except IconError as e:
                logger.warning(f"Favicon discovery for {page_url} failed ({e.reason}): {e}")
                return None
