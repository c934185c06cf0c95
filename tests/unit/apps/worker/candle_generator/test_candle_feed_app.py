from __future__ import annotations

import asyncio
import threading
import time
from pathlib import Path
from typing import Any, Iterable, Mapping

import pytest
import websockets
from prometheus_client import CollectorRegistry
from websockets.exceptions import ConnectionClosedOK

from apps.worker.candle_generator.wiring.modules import (
    CandleFeedApp,
    CandleFeedMetrics,
    bind_rpc_socket,
    build_candle_feed_app,
)
from ohlcv_feed.contexts.candles.adapters.outbound.config import (
    CandleFeedRuntimeConfig,
    parse_candle_feed_runtime_config,
)
from ohlcv_feed.contexts.candles.application.services import (
    AsyncCandleWriteBuffer,
    CandleSnapshotCollector,
    GeneratorHooks,
    LatestCandleRegistry,
    LiveCandleStreamer,
    PeriodicTaskState,
    SymbolCandleGenerator,
)
from ohlcv_feed.contexts.candles.domain import PriceWalker, build_symbol_rng
from ohlcv_feed.platform.runtime import ProcessIdentity
from ohlcv_feed.platform.time import SystemClock
from ohlcv_feed.shared_kernel.primitives import Candle


class _RecordingPointWriter:
    """
    Store writer fake recording written candles and shutdown order.
    """

    def __init__(self, events: list[str]) -> None:
        self.rows: list[Candle] = []
        self._events = events

    def write_candles(self, candles: Iterable[Candle]) -> None:
        self.rows.extend(candles)

    def close(self) -> None:
        self._events.append("store:close")


class _HangingPointWriter:
    """
    Store writer fake that blocks on every write, like a store that accepts and never answers.
    """

    def __init__(self, events: list[str]) -> None:
        self.rows: list[Candle] = []
        self.release = threading.Event()
        self._events = events

    def write_candles(self, candles: Iterable[Candle]) -> None:
        _ = candles
        self.release.wait(timeout=10.0)

    def close(self) -> None:
        self._events.append("store:close")


class _RecordingPublisher:
    def __init__(self, events: list[str], *, fail_start: bool = False) -> None:
        self.snapshots: list[dict[str, Candle]] = []
        self._events = events
        self._fail_start = fail_start

    async def start(self) -> None:
        if self._fail_start:
            raise ConnectionError("no brokers available")

    async def publish_snapshot(self, snapshot: Mapping[str, Candle]) -> None:
        self.snapshots.append(dict(snapshot))

    async def close(self) -> None:
        self._events.append("bus:close")


class _FakeServer:
    """
    uvicorn server fake serving until `should_exit` is set.
    """

    def __init__(self, events: list[str], *, exit_immediately: bool = False) -> None:
        self.should_exit = False
        self.sockets = None
        self._events = events
        self._exit_immediately = exit_immediately

    async def serve(self, sockets=None) -> None:
        self.sockets = sockets
        while not self.should_exit and not self._exit_immediately:
            await asyncio.sleep(0.005)
        self._events.append("server:exit")


_TWO_SYMBOLS = [
    {"symbol": "MEGA-USD", "base_price": 100.0, "volatility": 2.0},
    {"symbol": "HELIO-USD", "base_price": 75.0, "volatility": 1.5},
]


def _config(
    *,
    symbols: list[dict[str, Any]] | None = None,
    shutdown_timeout_s: float = 2.0,
    store_timeout_ms: int = 500,
) -> CandleFeedRuntimeConfig:
    return parse_candle_feed_runtime_config(
        {
            "version": 1,
            "ohlcv_feed": {
                "symbols": _TWO_SYMBOLS if symbols is None else symbols,
                "seed": 7,
                "tick_interval_s": 0.01,
                "store": {"flush_interval_ms": 10, "timeout_ms": store_timeout_ms},
                "bus": {"backend": "noop", "publish_interval_s": 0.01},
                "rpc": {"host": "127.0.0.1", "port": 0, "stream_drain_grace_s": 0.1},
                "shutdown_timeout_s": shutdown_timeout_s,
            },
        }
    )


class _Harness:
    """
    Real feed components around recording store, bus and server fakes.
    """

    def __init__(
        self,
        *,
        config: CandleFeedRuntimeConfig | None = None,
        fail_start: bool = False,
        exit_immediately: bool = False,
        hanging_store: bool = False,
    ) -> None:
        config = config if config is not None else _config()
        clock = SystemClock()
        self.events: list[str] = []
        self.emitted: list[Candle] = []
        self.writer = (
            _HangingPointWriter(self.events)
            if hanging_store
            else _RecordingPointWriter(self.events)
        )
        self.publisher = _RecordingPublisher(self.events, fail_start=fail_start)
        self.server = _FakeServer(self.events, exit_immediately=exit_immediately)
        self.registry = LatestCandleRegistry(config.symbol_names())
        self.buffer = AsyncCandleWriteBuffer(
            writer=self.writer,
            clock=clock,
            flush_interval_ms=config.store.flush_interval_ms,
            max_buffer_rows=config.store.max_buffer_rows,
            max_queue_rows=config.store.max_queue_rows,
        )
        self.generators = [
            SymbolCandleGenerator(
                walker=PriceWalker(
                    spec=spec,
                    rng=build_symbol_rng(seed=config.seed, symbol=spec.symbol),
                ),
                registry=self.registry,
                sink=self.buffer,
                clock=clock,
                tick_interval_s=config.tick_interval_s,
                hooks=GeneratorHooks(on_candle_emitted=self.emitted.append),
            )
            for spec in config.symbols
        ]
        self.collector = CandleSnapshotCollector(
            reader=self.registry,
            publisher=self.publisher,
            publish_interval_s=config.bus.publish_interval_s,
        )
        self.socket = bind_rpc_socket(host=config.rpc.host, port=config.rpc.port)
        self.app = CandleFeedApp(
            config=config,
            identity=ProcessIdentity(version="DEV", instance_id="test-1"),
            generators=self.generators,
            write_buffer=self.buffer,
            point_writer=self.writer,
            collector=self.collector,
            publisher=self.publisher,
            streamer=LiveCandleStreamer(reader=self.registry, interval_s=0.01),
            server=self.server,
            rpc_socket=self.socket,
            metrics_port=0,
            publisher_start=self.publisher.start,
        )


def test_app_runs_until_stop_and_shuts_down_in_order() -> None:
    harness = _Harness()

    async def _scenario() -> None:
        stop_event = asyncio.Event()
        run_task = asyncio.create_task(harness.app.run(stop_event))
        await asyncio.sleep(0.15)
        stop_event.set()
        await asyncio.wait_for(run_task, timeout=5.0)

    asyncio.run(_scenario())
    harness.socket.close()

    assert harness.server.sockets == [harness.socket]
    assert harness.events == ["server:exit", "store:close", "bus:close"]
    assert harness.emitted
    assert len(harness.writer.rows) == len(harness.emitted)
    assert set(harness.writer.rows) == set(harness.emitted)
    assert harness.publisher.snapshots
    assert set(harness.publisher.snapshots[-1]) == {"MEGA-USD", "HELIO-USD"}
    assert all(g.state == PeriodicTaskState.TERMINATED for g in harness.generators)
    assert harness.collector.state == PeriodicTaskState.TERMINATED


def test_app_start_failure_releases_socket_and_store() -> None:
    harness = _Harness(fail_start=True)

    with pytest.raises(ConnectionError):
        asyncio.run(harness.app.run(asyncio.Event()))

    assert harness.socket.fileno() == -1
    assert harness.events == ["store:close"]
    assert all(g.state == PeriodicTaskState.IDLE for g in harness.generators)


def test_app_fails_when_rpc_server_exits_on_its_own() -> None:
    harness = _Harness(exit_immediately=True)

    with pytest.raises(RuntimeError, match="rpc server exited"):
        asyncio.run(harness.app.run(asyncio.Event()))
    harness.socket.close()

    assert harness.events == ["server:exit", "store:close", "bus:close"]


def test_app_shutdown_stays_within_budget_when_store_write_hangs() -> None:
    harness = _Harness(
        config=_config(shutdown_timeout_s=1.0, store_timeout_ms=300),
        hanging_store=True,
    )

    async def _scenario() -> None:
        stop_event = asyncio.Event()
        run_task = asyncio.create_task(harness.app.run(stop_event))
        await asyncio.sleep(0.1)
        stop_event.set()
        await run_task

    started = time.monotonic()
    try:
        asyncio.run(_scenario())
        elapsed = time.monotonic() - started
        still_hanging = not harness.writer.release.is_set()
    finally:
        harness.writer.release.set()
        harness.socket.close()

    assert elapsed < 2.0
    assert still_hanging
    assert harness.events == ["server:exit", "store:close", "bus:close"]


def test_app_runs_without_symbols() -> None:
    harness = _Harness(config=_config(symbols=[]))

    async def _scenario() -> None:
        stop_event = asyncio.Event()
        run_task = asyncio.create_task(harness.app.run(stop_event))
        await asyncio.sleep(0.1)
        stop_event.set()
        await asyncio.wait_for(run_task, timeout=5.0)

    asyncio.run(_scenario())
    harness.socket.close()

    assert harness.generators == []
    assert harness.emitted == []
    assert harness.writer.rows == []
    assert harness.publisher.snapshots == []
    assert harness.events == ["server:exit", "store:close", "bus:close"]


def test_bind_rpc_socket_picks_free_port() -> None:
    sock = bind_rpc_socket(host="127.0.0.1", port=0)
    try:
        assert sock.getsockname()[1] > 0
    finally:
        sock.close()


def test_build_candle_feed_app_wires_noop_bus(tmp_path: Path) -> None:
    config_path = tmp_path / "ohlcv_feed.yaml"
    config_path.write_text(
        """
version: 1
ohlcv_feed:
  bus:
    backend: noop
  rpc:
    host: 127.0.0.1
    port: 0
""",
        encoding="utf-8",
    )

    app = build_candle_feed_app(
        config_path=str(config_path),
        environ={"INSTANCE_ID": "feed-test", "INFLUXDB_TOKEN": "token"},
        metrics_port=0,
        metrics_registry=CollectorRegistry(),
    )
    try:
        assert isinstance(app, CandleFeedApp)
        assert app.rpc_port > 0
    finally:
        app._rpc_socket.close()


def test_metrics_bundle_counts_candles_per_symbol() -> None:
    registry = CollectorRegistry()
    metrics = CandleFeedMetrics(registry)
    harness_candle = Candle(
        symbol="MEGA-USD",
        open=100.0,
        high=101.0,
        low=99.0,
        close=100.5,
        volume=1_500.0,
        timestamp=SystemClock().now(),
    )

    metrics.on_candle_emitted(harness_candle)
    metrics.on_candle_emitted(harness_candle)
    metrics.on_store_batch(2, 0.01)

    assert (
        registry.get_sample_value("candles_emitted_total", {"symbol": "MEGA-USD"}) == 2.0
    )
    assert registry.get_sample_value("store_rows_total") == 2.0
    assert registry.get_sample_value("store_batches_total") == 1.0


async def _connect_when_listening(uri: str) -> Any:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + 3.0
    while True:
        try:
            return await websockets.connect(uri)
        except OSError:
            if loop.time() > deadline:
                raise
            await asyncio.sleep(0.02)


def test_service_without_symbols_streams_nothing_and_closes_on_shutdown(tmp_path: Path) -> None:
    config_path = tmp_path / "ohlcv_feed.yaml"
    config_path.write_text(
        """
version: 1
ohlcv_feed:
  symbols: []
  bus:
    backend: noop
  rpc:
    host: 127.0.0.1
    port: 0
    stream_interval_s: 0.05
    stream_drain_grace_s: 1.0
  shutdown_timeout_s: 3.0
""",
        encoding="utf-8",
    )

    async def _scenario() -> int:
        app = build_candle_feed_app(
            config_path=str(config_path),
            environ={"INSTANCE_ID": "feed-test", "INFLUXDB_TOKEN": "token"},
            metrics_port=0,
            metrics_registry=CollectorRegistry(),
        )
        stop_event = asyncio.Event()
        run_task = asyncio.create_task(app.run(stop_event))
        websocket = await _connect_when_listening(
            f"ws://127.0.0.1:{app.rpc_port}/v1/candles/stream"
        )
        try:
            with pytest.raises(TimeoutError):
                await asyncio.wait_for(websocket.recv(), timeout=0.3)
            stop_event.set()
            with pytest.raises(ConnectionClosedOK) as closed:
                await websocket.recv()
        finally:
            await websocket.close()
        await asyncio.wait_for(run_task, timeout=5.0)
        assert closed.value.rcvd is not None
        return closed.value.rcvd.code

    assert asyncio.run(_scenario()) == 1000
