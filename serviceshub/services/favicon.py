import logging
from typing import List, Optional, Union
from urllib.parse import urljoin, urlparse

import requests
from bs4 import BeautifulSoup

from serviceshub.config import (
    FAVICON_RASTER_MAX_BYTES,
    FAVICON_RASTER_MIN_BYTES,
    FAVICON_SVG_MAX_BYTES,
    FAVICON_SVG_MIN_BYTES,
    MAX_PAGE_BYTES,
)
from serviceshub.exceptions import (
    FaviconNotFoundError,
    IconError,
    InvalidImageError,
    InvalidUrlError,
    NotAnImageError,
    TooLargeError,
)
from serviceshub.services.http_fetch import create_session, fetch_limited
from serviceshub.services.image import SVG_MIME, to_data_url

logger = logging.getLogger(__name__)

# Probed in this order after any <link rel="icon"> found on the page.
FALLBACK_PATHS = (
    "/favicon.ico",
    "/favicon-32x32.png",
    "/favicon.png",
    "/apple-touch-icon.png",
    "/android-chrome-192x192.png",
)

ICO_SIGNATURE = b"\x00\x00\x01\x00"
ICO_MIME = "image/x-icon"
HTML_MIMES = ("text/html", "application/xhtml+xml")
UNLABELLED_MIMES = ("application/octet-stream", "")


def page_origin(page_url: str) -> str:
    try:
        parsed = urlparse((page_url or "").strip())
    except ValueError as e:
        raise InvalidUrlError(f"{page_url}: {e}") from e
    host = parsed.netloc.rsplit("@", 1)[-1]
    if parsed.scheme not in ("http", "https") or not host:
        raise InvalidUrlError(f"not an absolute http(s) URL: {page_url!r}")
    return f"{parsed.scheme}://{host}"


def extract_icon_links(html: Union[str, bytes], base_url: str) -> List[str]:
    """Return absolute hrefs of ``<link rel="...icon...">`` tags in document order.

    Best effort: whatever html.parser makes of the markup is what we scan.
    A ``<base href>`` overrides ``base_url`` for resolving relative links.
    """
    soup = BeautifulSoup(html, "html.parser")
    base_tag = soup.find("base", href=True)
    if base_tag and base_tag["href"].strip():
        base_url = urljoin(base_url, base_tag["href"].strip())

    links = []
    for tag in soup.find_all("link", href=True):
        rel = tag.get("rel") or []
        if isinstance(rel, str):
            rel = [rel]
        if "icon" not in " ".join(rel).lower():
            continue
        href = tag["href"].strip()
        if not href:
            continue
        resolved = urljoin(base_url, href)
        if resolved not in links:
            links.append(resolved)
    return links


def discover_icon_links(page_url: str, session: requests.Session) -> List[str]:
    # An unreachable page is not fatal; the conventional paths still get probed.
    try:
        resource = fetch_limited(session, page_url, MAX_PAGE_BYTES, truncate=True)
    except IconError as e:
        logger.warning(f"Could not load {page_url} for icon links ({e.reason}): {e}")
        return []
    if resource.content_type not in HTML_MIMES:
        logger.info(f"{page_url} is {resource.content_type or 'untyped'}, not HTML; skipping link scan")
        return []
    return extract_icon_links(resource.body, resource.url)


def build_candidates(page_url: str, session: requests.Session) -> List[str]:
    origin = page_origin(page_url)
    candidates = []
    for url in discover_icon_links(page_url, session) + [origin + p for p in FALLBACK_PATHS]:
        if urlparse(url).scheme not in ("http", "https"):
            continue
        if url not in candidates:
            candidates.append(url)
    return candidates


def looks_like_html(body: bytes) -> bool:
    head = body[:512].lstrip(b"\xef\xbb\xbf").lstrip().lower()
    return head.startswith(b"<!doctype html") or head.startswith(b"<html")


def probe_candidate(url: str, session: requests.Session) -> str:
    """Fetch one candidate and return it as a data URL, or raise IconError."""
    resource = fetch_limited(session, url, FAVICON_RASTER_MAX_BYTES)
    body = resource.body
    mime = resource.content_type

    is_svg = "svg+xml" in mime
    if is_svg:
        mime = SVG_MIME
    elif mime.startswith("image/"):
        pass
    elif mime in UNLABELLED_MIMES and (
        body.startswith(ICO_SIGNATURE) or urlparse(url).path.lower().endswith(".ico")
    ):
        # Servers commonly send favicon.ico as application/octet-stream.
        mime = ICO_MIME
    else:
        raise NotAnImageError(f"{url}: content-type {mime or 'missing'}")

    if looks_like_html(body):
        raise NotAnImageError(f"{url}: body is HTML despite {resource.content_type}")

    if is_svg:
        low, high = FAVICON_SVG_MIN_BYTES, FAVICON_SVG_MAX_BYTES
    else:
        low, high = FAVICON_RASTER_MIN_BYTES, FAVICON_RASTER_MAX_BYTES
    if len(body) < low:
        raise InvalidImageError(f"{url}: only {len(body)} bytes")
    if len(body) > high:
        raise TooLargeError(f"{url}: {len(body)} bytes")

    return to_data_url(mime, body)


def discover_favicon(page_url: str, session: Optional[requests.Session] = None) -> str:
    """Find a site icon for ``page_url`` and return it as an unprocessed data URL.

    Links declared by the page come first, then the conventional paths at the
    origin. Candidates are tried one at a time and the first acceptable one
    wins. Raises InvalidUrlError or FaviconNotFoundError.
    """
    if session is None:
        with create_session() as own_session:
            return discover_favicon(page_url, session=own_session)

    candidates = build_candidates(page_url, session)
    for candidate in candidates:
        try:
            icon = probe_candidate(candidate, session)
        except IconError as e:
            logger.debug(f"Skipping favicon candidate {candidate} ({e.reason}): {e}")
            continue
        logger.info(f"Found favicon for {page_url} at {candidate}")
        return icon
    raise FaviconNotFoundError(f"no usable icon among {len(candidates)} candidates for {page_url}")
