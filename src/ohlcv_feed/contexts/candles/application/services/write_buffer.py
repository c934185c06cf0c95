from __future__ import annotations

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable

from ohlcv_feed.contexts.candles.application.ports.clock import Clock
from ohlcv_feed.contexts.candles.application.ports.stores import CandlePointWriter
from ohlcv_feed.shared_kernel.primitives import Candle

log = logging.getLogger(__name__)

_NANOS_PER_SECOND = 1_000_000_000
_QUEUE_POLL_SECONDS = 0.1


@dataclass(frozen=True, slots=True)
class WriteBufferHooks:
    """
    Optional callbacks invoked by the async candle write buffer.

    Parameters:
    - on_emitted_to_write_done: latency from candle emission to store write done.
    - on_write_batch: `(rows, duration_seconds)` for every written batch.
    - on_write_error: `(rows)` for every failed and dropped batch.
    - on_dropped: one call per candle rejected by a full queue.
    """

    on_emitted_to_write_done: Callable[[float], None] | None = None
    on_write_batch: Callable[[int, float], None] | None = None
    on_write_error: Callable[[int], None] | None = None
    on_dropped: Callable[[], None] | None = None


class AsyncCandleWriteBuffer:
    """
    Store sink shared by all generators: bounded queue in front of one batching writer task.

    A batch opens with its first candle and is written when it holds `max_buffer_rows`
    candles or when `flush_interval_ms` has elapsed since it opened, whichever comes
    first. The blocking store write runs on a dedicated single-thread executor so a
    hung write never holds up the loop's default executor at exit.

    Assumptions/Invariants:
    - `submit()` never awaits; overflow beyond `max_queue_rows` is dropped.
    - Delivery is at-most-once: a failed batch is logged and dropped, not retried.
    - Batches are written in submission order.
    """

    def __init__(
        self,
        *,
        writer: CandlePointWriter,
        clock: Clock,
        flush_interval_ms: int,
        max_buffer_rows: int,
        max_queue_rows: int,
        hooks: WriteBufferHooks | None = None,
    ) -> None:
        """
        Validate limits and create the enqueue queue.

        Parameters:
        - writer: store writer port.
        - clock: UTC clock used for the emission-to-write latency.
        - flush_interval_ms: maximum age of an open batch.
        - max_buffer_rows: batch size limit.
        - max_queue_rows: enqueue bound.
        - hooks: optional metrics callbacks.

        Returns:
        - None.

        Errors/Exceptions:
        - Raises `ValueError` when a dependency is missing or a limit is not positive.

        Side effects:
        - None.
        """
        if writer is None:  # type: ignore[truthy-bool]
            raise ValueError("AsyncCandleWriteBuffer requires writer")
        if clock is None:  # type: ignore[truthy-bool]
            raise ValueError("AsyncCandleWriteBuffer requires clock")
        for name, value in (
            ("flush_interval_ms", flush_interval_ms),
            ("max_buffer_rows", max_buffer_rows),
            ("max_queue_rows", max_queue_rows),
        ):
            if value <= 0:
                raise ValueError(f"{name} must be > 0, got {value}")

        self._writer = writer
        self._clock = clock
        self._batch_age_s = flush_interval_ms / 1000.0
        self._batch_rows = max_buffer_rows
        self._hooks = hooks if hooks is not None else WriteBufferHooks()

        self._queue: asyncio.Queue[Candle] = asyncio.Queue(maxsize=max_queue_rows)
        self._closing = asyncio.Event()
        self._writer_task: asyncio.Task[None] | None = None
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="store-writer")

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def start(self) -> None:
        if self._writer_task is not None or self._closing.is_set():
            return
        self._writer_task = asyncio.create_task(self._write_loop(), name="store-writer")

    def submit(self, candle: Candle) -> bool:
        """
        Hand one emitted candle to the store path.

        Parameters:
        - candle: emitted candle.

        Returns:
        - `True` when queued, `False` when dropped because the queue is full.

        Errors/Exceptions:
        - Raises `RuntimeError` once `close()` was called.

        Side effects:
        - Enqueues the candle or counts one drop.
        """
        if self._closing.is_set():
            raise RuntimeError("write buffer is closed and does not accept new candles")
        try:
            self._queue.put_nowait(candle)
        except asyncio.QueueFull:
            _invoke(self._hooks.on_dropped)
            log.warning("store write queue is full; dropping candle symbol=%s", candle.symbol)
            return False
        return True

    async def close(self) -> None:
        """
        Stop accepting candles, write everything still queued and stop the writer task.

        Parameters:
        - None.

        Returns:
        - None.

        Assumptions/Invariants:
        - Idempotent; a never-started buffer drains its queue inline.

        Errors/Exceptions:
        - None. Write failures are reported through hooks and logs.

        Side effects:
        - Performs the final store writes.
        """
        if self._closing.is_set():
            return
        self._closing.set()

        try:
            if self._writer_task is not None:
                await self._writer_task
                return
            while not self._queue.empty():
                await self._write_batch(self._take_ready(self._batch_rows))
        finally:
            self._executor.shutdown(wait=False)

    def abandon(self) -> int:
        """
        Stop the store path without writing what is still queued.

        Parameters:
        - None.

        Returns:
        - Number of queued candles discarded.

        Assumptions/Invariants:
        - Idempotent and safe after `close()`.
        - A write already running in the executor thread ends on its own request
          timeout; batches still waiting for the thread are cancelled.

        Side effects:
        - Cancels the writer task and shuts the store executor down.
        """
        self._closing.set()
        if self._writer_task is not None and not self._writer_task.done():
            self._writer_task.cancel()
        self._executor.shutdown(wait=False, cancel_futures=True)
        discarded = self._take_ready(self._queue.qsize())
        if discarded:
            log.warning("store path abandoned; discarding %s queued candles", len(discarded))
        return len(discarded)

    async def _write_loop(self) -> None:
        while True:
            first = await self._next_candle()
            if first is None:
                return
            batch = [first]
            await self._fill_batch(batch)
            await self._write_batch(batch)

    async def _next_candle(self) -> Candle | None:
        # None only after close() with an empty queue
        while True:
            if self._closing.is_set() and self._queue.empty():
                return None
            try:
                return await asyncio.wait_for(self._queue.get(), timeout=_QUEUE_POLL_SECONDS)
            except TimeoutError:
                continue

    async def _fill_batch(self, batch: list[Candle]) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._batch_age_s
        while len(batch) < self._batch_rows:
            if not self._queue.empty():
                batch.append(self._queue.get_nowait())
                continue
            remaining = deadline - loop.time()
            if remaining <= 0 or self._closing.is_set():
                return
            try:
                batch.append(
                    await asyncio.wait_for(
                        self._queue.get(),
                        timeout=min(remaining, _QUEUE_POLL_SECONDS),
                    )
                )
            except TimeoutError:
                continue

    def _take_ready(self, limit: int) -> list[Candle]:
        batch: list[Candle] = []
        while len(batch) < limit and not self._queue.empty():
            batch.append(self._queue.get_nowait())
        return batch

    async def _write_batch(self, batch: list[Candle]) -> None:
        if not batch:
            return
        started_ns = self._clock.now().value
        try:
            await asyncio.get_running_loop().run_in_executor(
                self._executor, self._writer.write_candles, batch
            )
        except Exception:  # noqa: BLE001
            _invoke_rows(self._hooks.on_write_error, len(batch))
            log.exception("store write failed; dropping batch of %s candles", len(batch))
            return

        done_ns = self._clock.now().value
        observe = self._hooks.on_emitted_to_write_done
        if observe is not None:
            for candle in batch:
                observe(_seconds_between(candle.timestamp.value, done_ns))
        if self._hooks.on_write_batch is not None:
            self._hooks.on_write_batch(len(batch), _seconds_between(started_ns, done_ns))
        log.debug("written %s candles to store", len(batch))


def _seconds_between(start_ns: int, end_ns: int) -> float:
    return max(end_ns - start_ns, 0) / _NANOS_PER_SECOND


def _invoke(callback: Callable[[], None] | None) -> None:
    if callback is not None:
        callback()


def _invoke_rows(callback: Callable[[int], None] | None, rows: int) -> None:
    if callback is not None:
        callback(rows)
