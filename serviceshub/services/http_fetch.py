import logging
import time
from dataclasses import dataclass
from typing import Optional

import requests
import urllib3

from serviceshub.config import CONNECT_TIMEOUT, READ_TIMEOUT, TOTAL_TIMEOUT, USER_AGENT
from serviceshub.exceptions import TooLargeError, UnreachableError

logger = logging.getLogger(__name__)

CHUNK_SIZE = 8192


@dataclass
class FetchedResource:
    url: str  # effective URL after redirects
    status_code: int
    content_type: str  # lower-cased, parameters stripped
    body: bytes


def create_session() -> requests.Session:
    session = requests.Session()
    session.headers.update(
        {
            "User-Agent": USER_AGENT,
            "Accept": "image/*,text/html;q=0.9,*/*;q=0.8",
            "Accept-Language": "en-US,en;q=0.9",
        }
    )
    return session


def parse_content_type(header: Optional[str]) -> str:
    return (header or "").split(";")[0].strip().lower()


def fetch_limited(
    session: requests.Session,
    url: str,
    max_bytes: int,
    total_timeout: float = TOTAL_TIMEOUT,
    truncate: bool = False,
) -> FetchedResource:
    """GET ``url`` reading at most ``max_bytes`` of body.

    Raises UnreachableError on network failures, timeouts and non-2xx final
    statuses. A body over the cap raises TooLargeError, or with ``truncate``
    is cut at ``max_bytes`` and returned.

    The body is read with ``read1``, which returns whatever bytes have
    arrived instead of waiting for a full chunk, and the deadline is checked
    between reads. A server dripping bytes is therefore cut off within
    ``total_timeout`` plus one READ_TIMEOUT.
    """
    deadline = time.monotonic() + total_timeout
    try:
        resp = session.get(
            url,
            timeout=(CONNECT_TIMEOUT, READ_TIMEOUT),
            stream=True,
            allow_redirects=True,
        )
    except requests.exceptions.RequestException as e:
        raise UnreachableError(f"{url}: {e}") from e

    with resp:
        if not 200 <= resp.status_code < 300:
            raise UnreachableError(f"{url}: HTTP {resp.status_code}")

        content_length = resp.headers.get("content-length")
        if (
            not truncate
            and content_length
            and content_length.isdigit()
            and int(content_length) > max_bytes
        ):
            raise TooLargeError(f"{url}: declared {content_length} bytes")

        body = _read_body(resp, url, max_bytes, deadline, total_timeout, truncate)
        logger.debug(f"Fetched {len(body)} bytes from {resp.url}")
        return FetchedResource(
            url=resp.url or url,
            status_code=resp.status_code,
            content_type=parse_content_type(resp.headers.get("content-type")),
            body=body,
        )


def _read_body(
    resp: requests.Response,
    url: str,
    max_bytes: int,
    deadline: float,
    total_timeout: float,
    truncate: bool,
) -> bytes:
    body = bytearray()
    try:
        while True:
            if time.monotonic() > deadline:
                raise UnreachableError(f"{url}: exceeded {total_timeout}s")
            # read1 returns as soon as any data is available.
            chunk = resp.raw.read1(CHUNK_SIZE, decode_content=True)
            if not chunk:
                break
            body.extend(chunk)
            if len(body) > max_bytes:
                if truncate:
                    logger.info(f"{url}: body cut at {max_bytes} bytes")
                    return bytes(body[:max_bytes])
                raise TooLargeError(f"{url}: body exceeds {max_bytes} bytes")
    except (requests.exceptions.RequestException, urllib3.exceptions.HTTPError, OSError) as e:
        raise UnreachableError(f"{url}: {e}") from e
    return bytes(body)
