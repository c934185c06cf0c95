from .redis_streams_snapshot_publisher import RedisStreamsSnapshotPublisher

__all__ = ["RedisStreamsSnapshotPublisher"]
