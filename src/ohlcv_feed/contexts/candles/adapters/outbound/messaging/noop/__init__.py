from .noop_snapshot_publisher import NoopSnapshotPublisher

__all__ = ["NoopSnapshotPublisher"]
