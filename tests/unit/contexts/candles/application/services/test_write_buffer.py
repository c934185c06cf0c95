from __future__ import annotations

import asyncio
import threading
import time

import pytest

from ohlcv_feed.contexts.candles.application.services import (
    AsyncCandleWriteBuffer,
    WriteBufferHooks,
)
from ohlcv_feed.shared_kernel.primitives import Candle, UtcTimestamp

_T0 = 1_770_206_400_000_000_000


class _RecordingWriter:
    """Point writer fake recording all batch writes."""

    def __init__(self, fail_times: int = 0) -> None:
        self.calls: list[list[Candle]] = []
        self._fail_times = fail_times

    def write_candles(self, candles) -> None:
        batch = list(candles)
        if self._fail_times > 0:
            self._fail_times -= 1
            raise ConnectionError("influxdb unavailable")
        self.calls.append(batch)

    def close(self) -> None:
        return None


class _MonotonicClock:
    """Clock fake returning increasing timestamps on each call."""

    def __init__(self, start_ns: int) -> None:
        self._current = start_ns

    def now(self) -> UtcTimestamp:
        value = self._current
        self._current += 100_000_000
        return UtcTimestamp(value)


def _candle(i: int) -> Candle:
    return Candle(
        symbol="MEGA-USD",
        open=100.0,
        high=101.0,
        low=99.0,
        close=100.5,
        volume=10_000.0,
        timestamp=UtcTimestamp(_T0 + i * 1_000_000_000),
    )


def _buffer(writer, **kwargs) -> AsyncCandleWriteBuffer:
    params = {
        "writer": writer,
        "clock": _MonotonicClock(_T0),
        "flush_interval_ms": 500,
        "max_buffer_rows": 2,
        "max_queue_rows": 100,
    }
    params.update(kwargs)
    return AsyncCandleWriteBuffer(**params)


def test_write_buffer_flushes_by_size_threshold() -> None:
    """Ensure buffer flushes immediately when row count reaches max threshold."""
    async def _scenario() -> None:
        writer = _RecordingWriter()
        buffer = _buffer(writer)
        await buffer.start()

        assert buffer.submit(_candle(0))
        assert buffer.submit(_candle(1))
        await asyncio.sleep(0.1)

        assert len(writer.calls) == 1
        assert [c.timestamp for c in writer.calls[0]] == [_candle(0).timestamp, _candle(1).timestamp]
        await buffer.close()

    asyncio.run(_scenario())


def test_write_buffer_flushes_by_timer_threshold() -> None:
    async def _scenario() -> None:
        writer = _RecordingWriter()
        buffer = _buffer(writer, flush_interval_ms=20, max_buffer_rows=100)
        await buffer.start()

        buffer.submit(_candle(0))
        await asyncio.sleep(0.25)

        assert len(writer.calls) >= 1
        assert len(writer.calls[0]) == 1
        await buffer.close()

    asyncio.run(_scenario())


def test_write_buffer_drops_failed_batch_without_retry() -> None:
    """Ensure a failed write is reported and the next batch is written normally."""
    async def _scenario() -> None:
        writer = _RecordingWriter(fail_times=1)
        errors: list[int] = []
        batches: list[tuple[int, float]] = []
        buffer = _buffer(
            writer,
            max_buffer_rows=1,
            hooks=WriteBufferHooks(
                on_write_error=errors.append,
                on_write_batch=lambda rows, duration: batches.append((rows, duration)),
            ),
        )
        await buffer.start()

        buffer.submit(_candle(0))
        await asyncio.sleep(0.1)
        buffer.submit(_candle(1))
        await asyncio.sleep(0.1)
        await buffer.close()

        assert errors == [1]
        assert len(writer.calls) == 1
        assert writer.calls[0][0].timestamp == _candle(1).timestamp
        assert batches and batches[0][0] == 1

    asyncio.run(_scenario())


def test_write_buffer_drops_when_queue_is_full() -> None:
    async def _scenario() -> None:
        writer = _RecordingWriter()
        dropped: list[int] = []
        buffer = _buffer(
            writer,
            max_buffer_rows=10,
            max_queue_rows=2,
            hooks=WriteBufferHooks(on_dropped=lambda: dropped.append(1)),
        )

        # not started: nothing consumes the queue
        assert buffer.submit(_candle(0))
        assert buffer.submit(_candle(1))
        assert not buffer.submit(_candle(2))
        assert dropped == [1]

        await buffer.start()
        await buffer.close()
        assert sum(len(batch) for batch in writer.calls) == 2

    asyncio.run(_scenario())


def test_write_buffer_close_flushes_pending_and_rejects_new_candles() -> None:
    async def _scenario() -> None:
        writer = _RecordingWriter()
        buffer = _buffer(writer, flush_interval_ms=10_000, max_buffer_rows=100)
        await buffer.start()

        buffer.submit(_candle(0))
        buffer.submit(_candle(1))
        buffer.submit(_candle(2))
        await buffer.close()
        await buffer.close()

        assert sum(len(batch) for batch in writer.calls) == 3
        with pytest.raises(RuntimeError):
            buffer.submit(_candle(3))

    asyncio.run(_scenario())


def test_write_buffer_observes_emission_latency() -> None:
    async def _scenario() -> None:
        writer = _RecordingWriter()
        latencies: list[float] = []
        buffer = _buffer(
            writer,
            max_buffer_rows=1,
            hooks=WriteBufferHooks(on_emitted_to_write_done=latencies.append),
        )
        await buffer.start()
        buffer.submit(_candle(0))
        await asyncio.sleep(0.1)
        await buffer.close()

        assert latencies
        assert latencies[0] >= 0.0

    asyncio.run(_scenario())


class _HangingWriter:
    """Point writer fake whose write blocks until released, like a store that never answers."""

    def __init__(self) -> None:
        self.entered = threading.Event()
        self.release = threading.Event()

    def write_candles(self, candles) -> None:
        _ = candles
        self.entered.set()
        self.release.wait(timeout=10.0)

    def close(self) -> None:
        return None


def test_write_buffer_abandon_releases_loop_while_store_write_hangs() -> None:
    writer = _HangingWriter()
    discarded: list[int] = []

    async def _scenario() -> None:
        buffer = _buffer(writer)
        await buffer.start()
        for i in range(3):
            assert buffer.submit(_candle(i))
        while not writer.entered.is_set():
            await asyncio.sleep(0.01)

        with pytest.raises(TimeoutError):
            await asyncio.wait_for(buffer.close(), timeout=0.2)
        discarded.append(buffer.abandon())
        discarded.append(buffer.abandon())

    started = time.monotonic()
    try:
        asyncio.run(_scenario())
        elapsed = time.monotonic() - started
        still_hanging = not writer.release.is_set()
    finally:
        writer.release.set()

    assert elapsed < 2.0
    assert still_hanging
    assert discarded == [1, 0]
