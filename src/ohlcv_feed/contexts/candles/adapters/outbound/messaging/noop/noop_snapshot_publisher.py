from __future__ import annotations

from typing import Mapping

from ohlcv_feed.contexts.candles.application.ports.feeds import CandleSnapshotPublisher
from ohlcv_feed.shared_kernel.primitives import Candle


class NoopSnapshotPublisher(CandleSnapshotPublisher):
    """
    No-op snapshot publisher used when the bus backend is `noop`.
    """

    async def publish_snapshot(self, snapshot: Mapping[str, Candle]) -> None:
        _ = snapshot

    async def close(self) -> None:
        return None
