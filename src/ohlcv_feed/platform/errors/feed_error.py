from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping

NOT_FOUND = "not_found"
UNEXPECTED_ERROR = "unexpected_error"

FEED_ERROR_CODES = frozenset({NOT_FOUND, UNEXPECTED_ERROR})


@dataclass(frozen=True, slots=True)
class FeedError(Exception):
    """
    FeedError — error contract of the candle read surface.

    Codes:
    - `not_found`: unknown symbol, or known symbol without an emitted candle yet.
    - `unexpected_error`: any other fault; the cause is exposed in `details["debug"]` only.

    Invariants:
    - `code` is one of `FEED_ERROR_CODES`, `message` is non-empty.
    - `details` is a flat `str -> str` mapping ordered by key.
    """

    code: str
    message: str
    details: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.code not in FEED_ERROR_CODES:
            raise ValueError(f"FeedError.code must be one of {sorted(FEED_ERROR_CODES)}, got {self.code!r}")  # noqa: E501
        if not self.message.strip():
            raise ValueError("FeedError.message must be non-empty")
        flat = {str(key): str(value) for key, value in self.details.items()}
        object.__setattr__(self, "details", dict(sorted(flat.items())))

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"

    @classmethod
    def not_found(cls, message: str) -> FeedError:
        return cls(code=NOT_FOUND, message=message)

    @classmethod
    def internal(cls, cause: BaseException) -> FeedError:
        """
        Wrap an unexpected fault, keeping its type and text as debug detail.
        """
        return cls(
            code=UNEXPECTED_ERROR,
            message="internal error",
            details={"debug": f"{type(cause).__name__}: {cause}"},
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "details": dict(self.details),
            }
        }
