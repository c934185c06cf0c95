from __future__ import annotations

from typing import Protocol

from ohlcv_feed.shared_kernel.primitives import UtcTimestamp


class Clock(Protocol):
    """
    Clock — source of "now" in UTC for the application layer.

    Contract:
    - now() -> UtcTimestamp
    """

    def now(self) -> UtcTimestamp:
        ...
