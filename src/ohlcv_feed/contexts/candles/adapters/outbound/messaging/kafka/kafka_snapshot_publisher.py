from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Mapping, Sequence

from aiokafka import AIOKafkaProducer

from ohlcv_feed.contexts.candles.adapters.outbound.messaging.codec import encode_snapshot
from ohlcv_feed.contexts.candles.adapters.outbound.messaging.hooks import (
    SnapshotPublisherHooks,
    emit_counter,
    emit_duration,
)
from ohlcv_feed.contexts.candles.application.ports.feeds import (
    SNAPSHOT_MESSAGE_KEY,
    CandleSnapshotPublisher,
)
from ohlcv_feed.shared_kernel.primitives import Candle

log = logging.getLogger(__name__)


class KafkaSnapshotPublisher(CandleSnapshotPublisher):
    """
    Best-effort snapshot publisher backed by an `aiokafka` producer.

    Every snapshot is one record on `topic` keyed `ohlcv-collection`. Delivery is
    observed through a done-callback on the send future; the collector never waits
    for broker acknowledgement.
    """

    def __init__(
        self,
        *,
        producer: Any,
        topic: str,
        hooks: SnapshotPublisherHooks | None = None,
    ) -> None:
        """
        Initialize publisher dependencies.

        Parameters:
        - producer: `AIOKafkaProducer` (or compatible fake exposing start/send/stop).
        - topic: destination topic.
        - hooks: optional callbacks for metrics integration.

        Returns:
        - None.

        Assumptions/Invariants:
        - `start()` is awaited once before the first publish.

        Errors/Exceptions:
        - Raises `ValueError` when producer is missing or topic is blank.

        Side effects:
        - None.
        """
        if producer is None:  # type: ignore[truthy-bool]
            raise ValueError("KafkaSnapshotPublisher requires producer")
        if not topic.strip():
            raise ValueError("KafkaSnapshotPublisher requires non-empty topic")
        self._producer = producer
        self._topic = topic.strip()
        self._hooks = hooks if hooks is not None else SnapshotPublisherHooks()
        self._key = SNAPSHOT_MESSAGE_KEY.encode("utf-8")

    async def start(self) -> None:
        """
        Connect the producer to the brokers.

        Errors/Exceptions:
        - Propagates connection errors; the caller treats them as fatal.
        """
        await self._producer.start()
        log.info("kafka producer connected (topic=%s)", self._topic)

    async def publish_snapshot(self, snapshot: Mapping[str, Candle]) -> None:
        """
        Enqueue one snapshot record.

        Parameters:
        - snapshot: non-empty mapping `symbol -> candle`.

        Returns:
        - None.

        Assumptions/Invariants:
        - Publish path is best-effort and must not raise upstream.

        Errors/Exceptions:
        - Exceptions are captured, logged, and transformed into metric callbacks.

        Side effects:
        - Appends one record to the producer batch.
        """
        started_at = time.perf_counter()
        try:
            value = encode_snapshot(snapshot)
            delivery = await self._producer.send(self._topic, value=value, key=self._key)
        except Exception:  # noqa: BLE001
            emit_counter(self._hooks.on_publish_error)
            log.exception("kafka publish failed for topic=%s", self._topic)
            return
        finally:
            emit_duration(self._hooks.on_publish_duration, time.perf_counter() - started_at)
        delivery.add_done_callback(self._on_delivery)

    async def close(self) -> None:
        try:
            await self._producer.stop()
        except Exception:  # noqa: BLE001
            log.exception("kafka producer stop failed")
        else:
            log.info("kafka producer stopped")

    def _on_delivery(self, delivery: asyncio.Future[Any]) -> None:
        if delivery.cancelled():
            emit_counter(self._hooks.on_publish_error)
            log.warning("kafka delivery cancelled for topic=%s", self._topic)
            return
        exc = delivery.exception()
        if exc is not None:
            emit_counter(self._hooks.on_publish_error)
            log.error("kafka delivery failed for topic=%s: %s", self._topic, exc)
            return
        emit_counter(self._hooks.on_publish_success)


def build_kafka_producer(*, brokers: Sequence[str], client_id: str) -> AIOKafkaProducer:
    """
    Create the Kafka producer for snapshot publishing.

    Parameters:
    - brokers: bootstrap servers (`host:port`).
    - client_id: producer client id reported to the brokers.

    Returns:
    - Not yet started `AIOKafkaProducer`.

    Assumptions/Invariants:
    - Must be called from inside the running event loop.
    """
    return AIOKafkaProducer(
        bootstrap_servers=list(brokers),
        client_id=client_id,
        acks=1,
        linger_ms=5,
    )
