from .kafka_snapshot_publisher import KafkaSnapshotPublisher, build_kafka_producer

__all__ = ["KafkaSnapshotPublisher", "build_kafka_producer"]
