from __future__ import annotations

from typing import Protocol

from ohlcv_feed.shared_kernel.primitives import Candle


class CandleSink(Protocol):
    """
    Non-blocking hand-off of an emitted candle to the store path.

    Contract:
    - submit(candle) -> bool

    Semantics:
    - Returns `False` when the candle was dropped by backpressure.
    - Raises `RuntimeError` once the sink is shutting down.
    """

    def submit(self, candle: Candle) -> bool:
        ...
