import base64
import binascii
import io
import logging
import re
from dataclasses import dataclass

from PIL import Image, ImageOps

from serviceshub.config import ICON_TARGET_SIZE, MAX_ICON_BYTES, MAX_SOURCE_PIXELS
from serviceshub.exceptions import InvalidImageError

logger = logging.getLogger(__name__)

SVG_MIME = "image/svg+xml"
PNG_MIME = "image/png"

ALLOWED_MIME = {
    "image/png",
    "image/jpeg",
    "image/webp",
    "image/gif",
    "image/x-icon",
    "image/vnd.microsoft.icon",
    SVG_MIME,
}

DATA_URL_RE = re.compile(r"^data:([^;,]+);base64,(.*)$", re.DOTALL)


@dataclass
class ParsedDataUrl:
    mime: str
    data: bytes


def is_data_url(value) -> bool:
    return isinstance(value, str) and value.startswith("data:")


def to_data_url(mime: str, data: bytes) -> str:
    return f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"


def parse_data_url(data_url: str) -> ParsedDataUrl:
    match = DATA_URL_RE.match(data_url or "")
    if not match:
        raise InvalidImageError("not a base64 data URL")
    mime = match.group(1).strip().lower()
    if mime not in ALLOWED_MIME:
        raise InvalidImageError(f"MIME type not allowed: {mime}")
    payload = re.sub(r"\s+", "", match.group(2))
    try:
        data = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidImageError(f"bad base64 payload: {e}") from e
    if not data:
        raise InvalidImageError("empty image payload")
    if len(data) > MAX_ICON_BYTES:
        raise InvalidImageError(f"image payload is {len(data)} bytes")
    return ParsedDataUrl(mime=mime, data=data)


def _render_png(data: bytes) -> bytes:
    with Image.open(io.BytesIO(data)) as img:
        width, height = img.size
        if width * height > MAX_SOURCE_PIXELS:
            raise InvalidImageError(f"image dimensions too large: {width}x{height}")
        img.load()
        img = ImageOps.exif_transpose(img)
        img = img.convert("RGBA")
        img.thumbnail(ICON_TARGET_SIZE, Image.LANCZOS)
        # Copy only the pixels so no EXIF, ICC profile or text chunk survives.
        clean = Image.frombytes("RGBA", img.size, img.tobytes())
        out = io.BytesIO()
        clean.save(out, format="PNG", optimize=True)
        return out.getvalue()


def normalize_image(data: bytes, mime: str) -> str:
    """Turn raw image bytes into a stored icon data URL.

    SVG is returned as-is when it fits the size cap. Everything else is
    decoded, rotated upright, stripped of metadata, shrunk to fit the target
    box and re-encoded as PNG. Raises InvalidImageError when the bytes cannot
    be decoded or the result is still over the cap.
    """
    if not data:
        raise InvalidImageError("empty image")
    if mime == SVG_MIME:
        if len(data) > MAX_ICON_BYTES:
            raise InvalidImageError(f"SVG is {len(data)} bytes")
        return to_data_url(SVG_MIME, data)

    try:
        png = _render_png(data)
    except InvalidImageError:
        raise
    except (OSError, ValueError, SyntaxError, EOFError, Image.DecompressionBombError) as e:
        raise InvalidImageError(f"could not decode {mime}: {e}") from e

    if len(png) > MAX_ICON_BYTES:
        raise InvalidImageError(f"normalized PNG is {len(png)} bytes")
    logger.debug(f"Normalized {mime} ({len(data)} bytes) to PNG ({len(png)} bytes)")
    return to_data_url(PNG_MIME, png)


def sanitize_data_url(data_url: str) -> str:
    parsed = parse_data_url(data_url)
    return normalize_image(parsed.data, parsed.mime)
