from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Mapping, cast

from redis import Redis
from redis.backoff import NoBackoff
from redis.retry import Retry

from ohlcv_feed.contexts.candles.adapters.outbound.config import RedisBusConfig
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


class RedisStreamsSnapshotPublisher(CandleSnapshotPublisher):
    """
    Best-effort snapshot publisher backed by Redis Streams.

    Each snapshot is one stream entry on the stream named after the topic, with
    fields `key` (`ohlcv-collection`) and `value` (JSON snapshot).
    """

    def __init__(
        self,
        *,
        config: RedisBusConfig,
        stream: str,
        password: str | None = None,
        hooks: SnapshotPublisherHooks | None = None,
        redis_client: Redis | None = None,
    ) -> None:
        """
        Initialize Redis Streams publisher dependencies.

        Parameters:
        - config: parsed Redis bus config.
        - stream: target stream name.
        - password: optional Redis password resolved from environment.
        - hooks: optional callbacks for metrics integration.
        - redis_client: optional prebuilt Redis client (tests/custom wiring).

        Returns:
        - None.

        Assumptions/Invariants:
        - `XADD` is blocking and runs in a worker thread; socket timeouts without
          retries bound how long that thread can outlive a cancelled publish.

        Errors/Exceptions:
        - Raises `ValueError` when stream name is blank.

        Side effects:
        - Creates Redis client when `redis_client` is not provided.
        """
        if not stream.strip():
            raise ValueError("RedisStreamsSnapshotPublisher requires non-empty stream")
        self._config = config
        self._stream = stream.strip()
        self._maxlen = config.maxlen_approx
        self._hooks = hooks if hooks is not None else SnapshotPublisherHooks()
        self._redis = (
            redis_client if redis_client is not None else self._build_redis_client(password)
        )

    async def publish_snapshot(self, snapshot: Mapping[str, Candle]) -> None:
        """
        Append one snapshot entry to the stream.

        Parameters:
        - snapshot: non-empty mapping `symbol -> candle`.

        Returns:
        - None.

        Assumptions/Invariants:
        - Publish path is best-effort and must not raise upstream.

        Errors/Exceptions:
        - Exceptions are captured, logged, and transformed into metric callbacks.

        Side effects:
        - Appends one message with approximate maxlen trimming.
        """
        started_at = time.perf_counter()
        try:
            fields = {
                "key": SNAPSHOT_MESSAGE_KEY,
                "value": encode_snapshot(snapshot).decode("utf-8"),
            }
            await asyncio.to_thread(self._xadd, fields)
            emit_counter(self._hooks.on_publish_success)
        except Exception:  # noqa: BLE001
            emit_counter(self._hooks.on_publish_error)
            log.exception("redis publish failed for stream=%s", self._stream)
        finally:
            emit_duration(self._hooks.on_publish_duration, time.perf_counter() - started_at)

    async def close(self) -> None:
        try:
            await asyncio.to_thread(self._redis.close)
        except Exception:  # noqa: BLE001
            log.exception("redis client close failed")

    def _xadd(self, fields: dict[str, str]) -> None:
        redis_fields = cast(dict[Any, Any], fields)
        if self._maxlen is None:
            self._redis.xadd(name=self._stream, fields=redis_fields)
            return
        self._redis.xadd(
            name=self._stream,
            fields=redis_fields,
            maxlen=self._maxlen,
            approximate=True,
        )

    def _build_redis_client(self, password: str | None) -> Redis:
        return Redis(
            host=self._config.host,
            port=self._config.port,
            db=self._config.db,
            password=password,
            socket_timeout=self._config.socket_timeout_s,
            socket_connect_timeout=self._config.connect_timeout_s,
            retry=Retry(NoBackoff(), 0),
            decode_responses=True,
        )
