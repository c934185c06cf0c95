from .hooks import SnapshotPublisherHooks

__all__ = ["SnapshotPublisherHooks"]
