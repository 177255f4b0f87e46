"""String enum base used by every persisted domain enum."""

from __future__ import annotations

from enum import StrEnum


class LowercaseStrEnum(StrEnum):
    """StrEnum stored as its lowercase value; lookup ignores case.

    Unknown values still raise ``ValueError``.
    """

    @classmethod
    def _missing_(cls, value: object) -> LowercaseStrEnum | None:
        if isinstance(value, str):
            normalized = value.strip().lower()
            for member in cls:
                if member.value == normalized:
                    return member
        return None
