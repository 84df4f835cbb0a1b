from dataclasses import dataclass
from enum import Enum
from typing import Any


class UpdateKind(str, Enum):
    UNCHANGED = "unchanged"
    CLEAR = "clear"
    SET = "set"


@dataclass(frozen=True)
class FieldUpdate:
    """One field of a partial update.

    A field missing from the request body is UNCHANGED, an explicit ``null``
    is CLEAR and anything else is SET. Keeping the three apart is what lets an
    update say "reset this icon" instead of "leave it alone".
    """

    kind: UpdateKind
    value: Any = None

    @classmethod
    def unchanged(cls) -> "FieldUpdate":
        return cls(UpdateKind.UNCHANGED)

    @classmethod
    def clear(cls) -> "FieldUpdate":
        return cls(UpdateKind.CLEAR)

    @classmethod
    def set_to(cls, value: Any) -> "FieldUpdate":
        return cls(UpdateKind.SET, value)

    @property
    def is_unchanged(self) -> bool:
        return self.kind is UpdateKind.UNCHANGED

    @property
    def is_clear(self) -> bool:
        return self.kind is UpdateKind.CLEAR

    @property
    def is_set(self) -> bool:
        return self.kind is UpdateKind.SET

    def apply(self, current: Any) -> Any:
        """Return the field value after this update is applied to ``current``."""
        if self.kind is UpdateKind.SET:
            return self.value
        if self.kind is UpdateKind.CLEAR:
            return None
        return current
