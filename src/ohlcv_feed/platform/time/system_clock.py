from __future__ import annotations

import time

from ohlcv_feed.contexts.candles.application.ports.clock import Clock
from ohlcv_feed.shared_kernel.primitives import UtcTimestamp


class SystemClock(Clock):
    """
    SystemClock — platform Clock implementation: "now" from the system wall clock.

    Returns UtcTimestamp(time.time_ns()) to keep nanosecond resolution.
    """

    def now(self) -> UtcTimestamp:
        return UtcTimestamp(time.time_ns())
