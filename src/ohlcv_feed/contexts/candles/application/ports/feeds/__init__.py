from .candle_snapshot_publisher import SNAPSHOT_MESSAGE_KEY, CandleSnapshotPublisher

__all__ = ["CandleSnapshotPublisher", "SNAPSHOT_MESSAGE_KEY"]
