from __future__ import annotations

from typing import Mapping, Protocol

from ohlcv_feed.shared_kernel.primitives import Candle

SNAPSHOT_MESSAGE_KEY = "ohlcv-collection"


class CandleSnapshotPublisher(Protocol):
    """
    Publish the full latest-candle snapshot to the message bus as one message.

    Contract:
    - publish_snapshot(snapshot: Mapping[str, Candle]) -> None  (async)
    - close() -> None  (async)

    Semantics:
    - Message key is the constant `SNAPSHOT_MESSAGE_KEY`.
    - Implementations are best-effort and must not raise into the collector.
    """

    async def publish_snapshot(self, snapshot: Mapping[str, Candle]) -> None:
        """
        Publish one non-empty snapshot.

        Parameters:
        - snapshot: mapping `symbol -> latest candle`.

        Returns:
        - None.

        Assumptions/Invariants:
        - Caller skips empty snapshots.

        Errors/Exceptions:
        - Implementations should log and swallow transport failures.

        Side effects:
        - Enqueues one message on the bus transport.
        """
        ...

    async def close(self) -> None:
        ...
