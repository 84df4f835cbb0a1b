import os

DATABASE_URL = os.getenv("HUB_DATABASE_URL", "sqlite:///./serviceshub.db")

LOG_LEVEL = os.getenv("HUB_LOG_LEVEL", "INFO").upper()
LOG_FILE = os.getenv("HUB_LOG_FILE") or None
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("HUB_CORS_ORIGINS", "*").split(",")
    if origin.strip()
]

# Outbound icon fetching
USER_AGENT = os.getenv("HUB_USER_AGENT", "ServicesHub/1.0 (+icon-resolver)")
CONNECT_TIMEOUT = float(os.getenv("HUB_CONNECT_TIMEOUT", "5"))
READ_TIMEOUT = float(os.getenv("HUB_READ_TIMEOUT", "5"))
TOTAL_TIMEOUT = float(os.getenv("HUB_TOTAL_TIMEOUT", "10"))

MAX_ICON_BYTES = 200 * 1024  # 200KB, uploads and normalized output
MAX_PAGE_BYTES = 1024 * 1024  # HTML scanned for <link rel=icon>
ICON_TARGET_SIZE = (128, 128)
MAX_SOURCE_PIXELS = 4096 * 4096  # refuse decoding anything larger

# Favicon discovery bounds (bytes)
FAVICON_RASTER_MIN_BYTES = 50
FAVICON_RASTER_MAX_BYTES = 300_000
FAVICON_SVG_MIN_BYTES = 30
FAVICON_SVG_MAX_BYTES = 200_000
