from __future__ import annotations

from typing import Iterable, Protocol

from ohlcv_feed.shared_kernel.primitives import Candle


class CandlePointWriter(Protocol):
    """
    Persist emitted candles as points of the time-series store.

    Contract:
    - write_candles(candles: Iterable[Candle]) -> None
    - close() -> None

    Semantics:
    - Blocking call; the async write buffer runs it in a worker thread.
    - Raises on transport failure; the caller decides whether to drop or retry.
    """

    def write_candles(self, candles: Iterable[Candle]) -> None:
        """
        Write one batch of candles.

        Parameters:
        - candles: candles to persist, in emission order.

        Returns:
        - None.

        Assumptions/Invariants:
        - Candles are already validated domain objects.

        Errors/Exceptions:
        - Propagates transport errors.

        Side effects:
        - Sends points to the store.
        """
        ...

    def close(self) -> None:
        ...
