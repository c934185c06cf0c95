from .clock import Clock
from .feeds import SNAPSHOT_MESSAGE_KEY, CandleSnapshotPublisher
from .registry import LatestCandleReader
from .stores import CandlePointWriter, CandleSink

__all__ = [
    "CandlePointWriter",
    "CandleSink",
    "CandleSnapshotPublisher",
    "Clock",
    "LatestCandleReader",
    "SNAPSHOT_MESSAGE_KEY",
]
