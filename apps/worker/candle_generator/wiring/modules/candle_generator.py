from __future__ import annotations

import asyncio
import contextlib
import logging
import socket
from pathlib import Path
from typing import Any, Awaitable, Callable, Iterator, Mapping, Sequence

import uvicorn
from fastapi import FastAPI
from prometheus_client import REGISTRY, CollectorRegistry, Counter, Gauge, Histogram
from prometheus_client import start_http_server

from ohlcv_feed.contexts.candles.adapters.inbound.api import (
    build_candles_router,
    register_feed_error_handlers,
)
from ohlcv_feed.contexts.candles.adapters.outbound.config import (
    BUS_BACKEND_KAFKA,
    BUS_BACKEND_REDIS_STREAMS,
    CandleFeedRuntimeConfig,
    load_candle_feed_runtime_config,
    resolve_redis_password,
    resolve_store_token,
)
from ohlcv_feed.contexts.candles.adapters.outbound.messaging import SnapshotPublisherHooks
from ohlcv_feed.contexts.candles.adapters.outbound.messaging.kafka import (
    KafkaSnapshotPublisher,
    build_kafka_producer,
)
from ohlcv_feed.contexts.candles.adapters.outbound.messaging.noop import NoopSnapshotPublisher
from ohlcv_feed.contexts.candles.adapters.outbound.messaging.redis import (
    RedisStreamsSnapshotPublisher,
)
from ohlcv_feed.contexts.candles.adapters.outbound.persistence.influxdb import (
    InfluxDbCandlePointWriter,
    InfluxDbClientGateway,
    build_influxdb_client,
)
from ohlcv_feed.contexts.candles.application.ports import (
    CandlePointWriter,
    CandleSnapshotPublisher,
)
from ohlcv_feed.contexts.candles.application.services import (
    AsyncCandleWriteBuffer,
    CandleSnapshotCollector,
    CollectorHooks,
    GeneratorHooks,
    LatestCandleRegistry,
    LiveCandleStreamer,
    StreamerHooks,
    StreamOutcome,
    SymbolCandleGenerator,
    WriteBufferHooks,
    join_task,
)
from ohlcv_feed.contexts.candles.application.use_cases import GetLatestCandleUseCase
from ohlcv_feed.contexts.candles.domain import PriceWalker, build_symbol_rng
from ohlcv_feed.platform.runtime import ProcessIdentity, resolve_process_identity
from ohlcv_feed.platform.time import SystemClock
from ohlcv_feed.shared_kernel.primitives import Candle

log = logging.getLogger(__name__)


class CandleFeedMetrics:
    """
    Prometheus metrics bundle for the candle feed worker.

    Parameters:
    - registry: optional collector registry; the default process registry is used
      when omitted.

    Assumptions/Invariants:
    - One bundle per registry; metric names are stable.
    """

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        """
        Create Prometheus metric objects for worker runtime.

        Parameters:
        - registry: target collector registry.

        Returns:
        - None.

        Assumptions/Invariants:
        - Metrics are instantiated once per worker process (or per test registry).

        Errors/Exceptions:
        - May raise prometheus-client registration errors on duplicate names.

        Side effects:
        - Registers metrics in the target registry.
        """
        target = registry if registry is not None else REGISTRY

        self.candles_emitted_total = Counter(
            "candles_emitted_total",
            "Emitted candles",
            ["symbol"],
            registry=target,
        )
        self.generator_tick_errors_total = Counter(
            "generator_tick_errors_total",
            "Generator ticks skipped because candle production failed",
            registry=target,
        )
        self.generator_sink_errors_total = Counter(
            "generator_sink_errors_total",
            "Store hand-off failures observed by generators",
            registry=target,
        )

        self.store_rows_total = Counter(
            "store_rows_total", "Candles written to the store", registry=target
        )
        self.store_batches_total = Counter(
            "store_batches_total", "Store write batches", registry=target
        )
        self.store_errors_total = Counter(
            "store_errors_total", "Failed store write batches", registry=target
        )
        self.store_dropped_total = Counter(
            "store_dropped_total", "Candles dropped by a full store queue", registry=target
        )
        self.store_write_duration_seconds = Histogram(
            "store_write_duration_seconds",
            "Store batch write duration in seconds",
            buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0),
            registry=target,
        )
        self.emitted_to_store_done_seconds = Histogram(
            "emitted_to_store_done_seconds",
            "Latency from candle emission to store write complete",
            buckets=(0.05, 0.1, 0.2, 0.35, 0.5, 0.75, 1.0, 2.0, 5.0),
            registry=target,
        )

        self.bus_published_total = Counter(
            "bus_published_total", "Snapshots accepted by the message bus", registry=target
        )
        self.bus_errors_total = Counter(
            "bus_errors_total", "Failed snapshot publishes", registry=target
        )
        self.bus_publish_duration_seconds = Histogram(
            "bus_publish_duration_seconds",
            "Snapshot publish call duration in seconds",
            buckets=(0.001, 0.005, 0.01, 0.05, 0.1, 0.25, 0.5, 1.0),
            registry=target,
        )
        self.snapshot_symbols = Gauge(
            "snapshot_symbols", "Symbols in the last published snapshot", registry=target
        )
        self.snapshot_collect_errors_total = Counter(
            "snapshot_collect_errors_total", "Collector tick errors", registry=target
        )

        self.stream_subscribers = Gauge(
            "stream_subscribers", "Active live stream subscribers", registry=target
        )
        self.stream_messages_total = Counter(
            "stream_messages_total", "Snapshots sent to live stream subscribers", registry=target
        )
        self.stream_finished_total = Counter(
            "stream_finished_total",
            "Finished live streams by outcome",
            ["outcome"],
            registry=target,
        )

    def on_candle_emitted(self, candle: Candle) -> None:
        self.candles_emitted_total.labels(symbol=candle.symbol).inc()

    def on_store_batch(self, rows: int, duration_seconds: float) -> None:
        """
        Record store batch metrics.

        Parameters:
        - rows: written row count.
        - duration_seconds: write duration.

        Returns:
        - None.

        Assumptions/Invariants:
        - Counters are non-negative.

        Errors/Exceptions:
        - None.

        Side effects:
        - Updates Prometheus counters and histogram.
        """
        self.store_rows_total.inc(rows)
        self.store_batches_total.inc()
        self.store_write_duration_seconds.observe(duration_seconds)

    def on_store_error(self, rows: int) -> None:
        _ = rows
        self.store_errors_total.inc()

    def on_stream_finished(self, outcome: StreamOutcome) -> None:
        self.stream_finished_total.labels(outcome=outcome.value).inc()


class EmbeddedUvicornServer(uvicorn.Server):
    """
    uvicorn server running inside the worker loop.

    Process signals stay with the worker entrypoint; the supervisor stops the
    server through `should_exit`.
    """

    def install_signal_handlers(self) -> None:
        return None

    @contextlib.contextmanager
    def capture_signals(self) -> Iterator[None]:
        yield


class CandleFeedApp:
    """
    Runtime supervisor of the synthetic OHLCV feed worker.

    Parameters:
    - config: feed runtime config.
    - identity: process version and instance id.
    - generators: one generator per configured symbol.
    - write_buffer: async store sink shared by generators.
    - point_writer: store writer closed after the final flush.
    - collector: periodic bus snapshot task.
    - publisher: bus publisher closed last.
    - streamer: live stream service used by the RPC surface.
    - server: embedded uvicorn server of the RPC surface.
    - rpc_socket: pre-bound RPC listening socket.
    - metrics_port: Prometheus HTTP port, `0` disables the endpoint.
    - publisher_start: optional coroutine factory connecting the bus publisher.
    """

    def __init__(
        self,
        *,
        config: CandleFeedRuntimeConfig,
        identity: ProcessIdentity,
        generators: Sequence[SymbolCandleGenerator],
        write_buffer: AsyncCandleWriteBuffer,
        point_writer: CandlePointWriter,
        collector: CandleSnapshotCollector,
        publisher: CandleSnapshotPublisher,
        streamer: LiveCandleStreamer,
        server: uvicorn.Server,
        rpc_socket: socket.socket,
        metrics_port: int,
        publisher_start: Callable[[], Awaitable[None]] | None = None,
    ) -> None:
        """
        Validate and store worker runtime dependencies.

        Parameters:
        - See class-level documentation.

        Returns:
        - None.

        Assumptions/Invariants:
        - All collaborators are pre-built; none of them is started yet.

        Errors/Exceptions:
        - Raises `ValueError` on invalid constructor arguments.

        Side effects:
        - None.
        """
        if metrics_port < 0:
            raise ValueError("metrics_port must be >= 0")
        self._config = config
        self._identity = identity
        self._generators = tuple(generators)
        self._write_buffer = write_buffer
        self._point_writer = point_writer
        self._collector = collector
        self._publisher = publisher
        self._streamer = streamer
        self._server = server
        self._rpc_socket = rpc_socket
        self._metrics_port = metrics_port
        self._publisher_start = publisher_start

    @property
    def rpc_port(self) -> int:
        return int(self._rpc_socket.getsockname()[1])

    async def run(self, stop_event: asyncio.Event) -> None:
        """
        Start every component and serve until stop event is set.

        Parameters:
        - stop_event: cooperative shutdown signal.

        Returns:
        - None.

        Assumptions/Invariants:
        - Stop event is controlled by process signal handlers in entrypoint.

        Errors/Exceptions:
        - Propagates fatal startup exceptions (bus connection).
        - Raises `RuntimeError` when the RPC server exits on its own.

        Side effects:
        - Starts metrics server, store buffer, generators, collector and RPC server.
        - Runs the ordered, bounded shutdown sequence before returning.
        """
        if self._metrics_port > 0:
            start_http_server(self._metrics_port)
            log.info("metrics server started on port %s", self._metrics_port)

        if self._publisher_start is not None:
            try:
                await self._publisher_start()
            except BaseException:
                self._rpc_socket.close()
                await asyncio.to_thread(self._point_writer.close)
                raise

        await self._write_buffer.start()
        for generator in self._generators:
            await generator.start()
        await self._collector.start()
        server_task = asyncio.create_task(
            self._server.serve(sockets=[self._rpc_socket]),
            name="rpc-server",
        )
        log.info(
            "ohlcv feed is running @ version: %s, instanceId: %s",
            self._identity.version,
            self._identity.instance_id,
        )
        log.info(
            "serving %d symbol(s); rpc listening on port %s",
            len(self._generators),
            self.rpc_port,
        )

        stop_task = asyncio.create_task(stop_event.wait(), name="stop-signal")
        await asyncio.wait({stop_task, server_task}, return_when=asyncio.FIRST_COMPLETED)
        server_failed = server_task.done()
        if server_failed:
            log.error("rpc server exited unexpectedly; shutting down")
        else:
            log.info("worker shutdown requested")
        stop_task.cancel()
        await asyncio.gather(stop_task, return_exceptions=True)

        await self.shutdown(server_task)
        if server_failed:
            raise RuntimeError("rpc server exited before shutdown was requested")

    async def shutdown(self, server_task: asyncio.Task[Any] | None) -> None:
        """
        Stop components in dependency order within `shutdown_timeout_s`.

        Parameters:
        - server_task: running uvicorn serve task or `None`.

        Returns:
        - None.

        Assumptions/Invariants:
        - Order: collector, streams and RPC server, generators, store, bus.
        - Steps overrunning the remaining budget are cancelled and logged.
        - The store flush stops `store.timeout_ms` early; whatever is still queued
          then is discarded.

        Errors/Exceptions:
        - None. Step failures are logged and the sequence continues.

        Side effects:
        - Stops every background task and closes external clients.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._config.shutdown_timeout_s

        def remaining() -> float:
            return max(deadline - loop.time(), 0.0)

        await _bounded("collector stop", self._collector.stop(timeout_s=remaining()), remaining())

        self._streamer.stop_streams()
        drain_s = min(self._config.rpc.stream_drain_grace_s, remaining())
        await self._streamer.wait_idle(drain_s)
        self._server.should_exit = True
        if not await join_task(server_task, timeout_s=remaining()):
            log.warning("rpc server did not stop in time; cancelled")

        await _bounded(
            "generators stop",
            asyncio.gather(*(g.stop(timeout_s=remaining()) for g in self._generators)),
            remaining(),
        )
        # the last write started must still end on its request timeout before the deadline
        store_request_s = self._config.store.timeout_ms / 1000.0
        await _bounded(
            "store flush",
            self._write_buffer.close(),
            max(remaining() - store_request_s, 0.0),
        )
        self._write_buffer.abandon()
        await _bounded("store client close", asyncio.to_thread(self._point_writer.close), remaining())
        await _bounded("bus publisher close", self._publisher.close(), remaining())
        log.info("ohlcv feed stopped")


def build_candle_feed_app(
    *,
    config_path: str,
    environ: Mapping[str, str],
    metrics_port: int,
    metrics_registry: CollectorRegistry | None = None,
) -> CandleFeedApp:
    """
    Build fully wired candle feed worker app.

    Parameters:
    - config_path: path to `ohlcv_feed.yaml`.
    - environ: environment mapping (instance id, store token, redis password).
    - metrics_port: Prometheus HTTP port, `0` disables it.
    - metrics_registry: optional Prometheus registry (tests).

    Returns:
    - Ready-to-run worker app instance.

    Assumptions/Invariants:
    - Called from inside the running event loop (the Kafka producer binds to it).

    Errors/Exceptions:
    - Propagates config parsing errors and infrastructure wiring errors,
      including `OSError` when the RPC port cannot be bound.

    Side effects:
    - Creates InfluxDB client, bus client, Prometheus metric objects and binds the
      RPC socket.
    """
    config = load_candle_feed_runtime_config(Path(config_path))
    identity = resolve_process_identity(environ)
    metrics = CandleFeedMetrics(metrics_registry)
    clock = SystemClock()

    influx_client = build_influxdb_client(
        url=config.store.url,
        token=resolve_store_token(config.store, environ),
        org=config.store.org,
        timeout_ms=config.store.timeout_ms,
    )
    point_writer = InfluxDbCandlePointWriter(
        InfluxDbClientGateway(influx_client, bucket=config.store.bucket, org=config.store.org)
    )
    write_buffer = AsyncCandleWriteBuffer(
        writer=point_writer,
        clock=clock,
        flush_interval_ms=config.store.flush_interval_ms,
        max_buffer_rows=config.store.max_buffer_rows,
        max_queue_rows=config.store.max_queue_rows,
        hooks=WriteBufferHooks(
            on_emitted_to_write_done=metrics.emitted_to_store_done_seconds.observe,
            on_write_batch=metrics.on_store_batch,
            on_write_error=metrics.on_store_error,
            on_dropped=metrics.store_dropped_total.inc,
        ),
    )

    registry = LatestCandleRegistry(config.symbol_names())
    generators = [
        SymbolCandleGenerator(
            walker=PriceWalker(
                spec=spec,
                rng=build_symbol_rng(seed=config.seed, symbol=spec.symbol),
            ),
            registry=registry,
            sink=write_buffer,
            clock=clock,
            tick_interval_s=config.tick_interval_s,
            trace_candles=config.trace_candles,
            hooks=GeneratorHooks(
                on_candle_emitted=metrics.on_candle_emitted,
                on_tick_error=metrics.generator_tick_errors_total.inc,
                on_sink_error=metrics.generator_sink_errors_total.inc,
            ),
        )
        for spec in config.symbols
    ]

    publisher_hooks = SnapshotPublisherHooks(
        on_publish_success=metrics.bus_published_total.inc,
        on_publish_error=metrics.bus_errors_total.inc,
        on_publish_duration=metrics.bus_publish_duration_seconds.observe,
    )
    publisher, publisher_start = _build_publisher(
        config=config,
        environ=environ,
        identity=identity,
        hooks=publisher_hooks,
    )
    collector = CandleSnapshotCollector(
        reader=registry,
        publisher=publisher,
        publish_interval_s=config.bus.publish_interval_s,
        hooks=CollectorHooks(
            on_snapshot_published=metrics.snapshot_symbols.set,
            on_collect_error=metrics.snapshot_collect_errors_total.inc,
        ),
    )

    streamer = LiveCandleStreamer(
        reader=registry,
        interval_s=config.rpc.stream_interval_s,
        send_timeout_s=config.rpc.send_timeout_s,
        hooks=StreamerHooks(
            on_active_changed=metrics.stream_subscribers.set,
            on_message_sent=metrics.stream_messages_total.inc,
            on_stream_finished=metrics.on_stream_finished,
        ),
    )
    api = build_candle_feed_api(
        get_latest_candle_use_case=GetLatestCandleUseCase(reader=registry),
        reader=registry,
        streamer=streamer,
        version=identity.version,
    )
    rpc_socket = bind_rpc_socket(host=config.rpc.host, port=config.rpc.port)
    server = EmbeddedUvicornServer(
        uvicorn.Config(api, log_level="warning", lifespan="off", ws="websockets")
    )

    return CandleFeedApp(
        config=config,
        identity=identity,
        generators=generators,
        write_buffer=write_buffer,
        point_writer=point_writer,
        collector=collector,
        publisher=publisher,
        streamer=streamer,
        server=server,
        rpc_socket=rpc_socket,
        metrics_port=metrics_port,
        publisher_start=publisher_start,
    )


def build_candle_feed_api(
    *,
    get_latest_candle_use_case: GetLatestCandleUseCase,
    reader: LatestCandleRegistry,
    streamer: LiveCandleStreamer,
    version: str,
) -> FastAPI:
    """
    Build the FastAPI application of the candle read surface.

    Parameters:
    - get_latest_candle_use_case: latest candle use-case.
    - reader: registry reader for the snapshot endpoint.
    - streamer: live stream service.
    - version: build version reported in OpenAPI metadata.

    Returns:
    - FastAPI application with error handlers and candle routes.
    """
    app = FastAPI(title="OHLCV Feed", version=version)
    register_feed_error_handlers(app=app)
    app.include_router(
        build_candles_router(
            get_latest_candle_use_case=get_latest_candle_use_case,
            reader=reader,
            streamer=streamer,
        )
    )
    return app


def bind_rpc_socket(*, host: str, port: int) -> socket.socket:
    """
    Bind the RPC listening socket before any component starts.

    Parameters:
    - host: bind address.
    - port: bind port (`0` picks a free port).

    Returns:
    - Bound TCP socket; uvicorn starts listening on it.

    Assumptions/Invariants:
    - IPv4 and IPv6 literals are both accepted.

    Errors/Exceptions:
    - Propagates `OSError` when the address is unavailable.

    Side effects:
    - Allocates one OS socket.
    """
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    sock = socket.socket(family, socket.SOCK_STREAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((host, port))
    except OSError:
        sock.close()
        raise
    sock.set_inheritable(True)
    return sock


def _build_publisher(
    *,
    config: CandleFeedRuntimeConfig,
    environ: Mapping[str, str],
    identity: ProcessIdentity,
    hooks: SnapshotPublisherHooks,
) -> tuple[CandleSnapshotPublisher, Callable[[], Awaitable[None]] | None]:
    """
    Select the bus publisher for `bus.backend`.

    Parameters:
    - config: feed runtime config.
    - environ: environment mapping for the optional Redis password.
    - identity: process identity; instance id becomes the Kafka client id.
    - hooks: publisher metrics callbacks.

    Returns:
    - Tuple `(publisher, start)`; `start` is `None` when no connection step is needed.
    """
    bus = config.bus
    if bus.backend == BUS_BACKEND_KAFKA:
        kafka = KafkaSnapshotPublisher(
            producer=build_kafka_producer(
                brokers=bus.brokers,
                client_id=f"ohlcv-feed-{identity.instance_id}",
            ),
            topic=bus.topic,
            hooks=hooks,
        )
        return kafka, kafka.start
    if bus.backend == BUS_BACKEND_REDIS_STREAMS:
        redis_publisher = RedisStreamsSnapshotPublisher(
            config=bus.redis,
            stream=bus.topic,
            password=resolve_redis_password(bus.redis, environ),
            hooks=hooks,
        )
        return redis_publisher, None
    log.warning("bus backend is 'noop'; snapshots are not published")
    return NoopSnapshotPublisher(), None


async def _bounded(step: str, awaitable: Awaitable[Any], timeout_s: float) -> None:
    """
    Await one shutdown step within `timeout_s`, logging overruns and failures.
    """
    try:
        await asyncio.wait_for(awaitable, timeout=timeout_s)
    except TimeoutError:
        log.warning("shutdown step '%s' did not finish in time; cancelled", step)
    except Exception:  # noqa: BLE001
        log.exception("shutdown step '%s' failed", step)
