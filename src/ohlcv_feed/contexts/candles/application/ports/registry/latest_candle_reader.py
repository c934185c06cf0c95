from __future__ import annotations

from typing import Protocol

from ohlcv_feed.shared_kernel.primitives import Candle


class LatestCandleReader(Protocol):
    """
    Read-only capability over the latest-candle registry.

    Contract:
    - is_known(symbol) -> bool
    - latest(symbol) -> Candle | None
    - snapshot_all() -> dict[str, Candle]

    Semantics:
    - `snapshot_all()` returns a point-in-time copy with only symbols that have emitted.
    - Different keys of one snapshot may come from slightly different ticks.
    """

    def is_known(self, symbol: str) -> bool:
        ...

    def latest(self, symbol: str) -> Candle | None:
        ...

    def snapshot_all(self) -> dict[str, Candle]:
        ...
