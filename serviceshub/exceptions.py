class TileNotFoundError(Exception):
    """Raised when an operation references a tile id that does not exist."""

    def __init__(self, tile_id: str):
        super().__init__(f"Tile not found: {tile_id}")
        self.tile_id = tile_id


class IconError(Exception):
    """Base class for icon resolution failures.

    These never reach API callers: the resolver catches them and moves on to
    the next source.
    """

    reason = "error"


class InvalidImageError(IconError):
    reason = "invalid"


class UnreachableError(IconError):
    reason = "unreachable"


class NotAnImageError(IconError):
    reason = "not-an-image"


class TooLargeError(IconError):
    reason = "too-large"


class InvalidUrlError(IconError):
    reason = "invalid-url"


class FaviconNotFoundError(IconError):
    reason = "not-found"
