from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable

from ohlcv_feed.contexts.candles.application.ports.feeds import CandleSnapshotPublisher
from ohlcv_feed.contexts.candles.application.ports.registry import LatestCandleReader

from .periodic_task import PeriodicTaskState, join_task, wait_or_stop

log = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CollectorHooks:
    """
    Optional callbacks used to expose collector runtime metrics.

    Parameters:
    - on_snapshot_published: callback `(symbols_count)` after a publish call returned.
    - on_snapshot_skipped: callback for ticks with an empty registry.
    - on_collect_error: callback for unexpected faults inside one tick.
    """

    on_snapshot_published: Callable[[int], None] | None = None
    on_snapshot_skipped: Callable[[], None] | None = None
    on_collect_error: Callable[[], None] | None = None


class CandleSnapshotCollector:
    """
    Periodic task publishing the whole latest-candle snapshot to the message bus.

    Parameters:
    - reader: registry read capability.
    - publisher: bus publisher adapter.
    - publish_interval_s: nominal delay between snapshots.
    - hooks: optional metrics callbacks.

    Assumptions/Invariants:
    - Bus publishing is independent from store writes: generators never publish.
    - One message per tick carries every symbol that has emitted at least once.
    - Empty snapshots are not published.
    """

    def __init__(
        self,
        *,
        reader: LatestCandleReader,
        publisher: CandleSnapshotPublisher,
        publish_interval_s: float = 1.0,
        hooks: CollectorHooks | None = None,
    ) -> None:
        if reader is None:  # type: ignore[truthy-bool]
            raise ValueError("CandleSnapshotCollector requires reader")
        if publisher is None:  # type: ignore[truthy-bool]
            raise ValueError("CandleSnapshotCollector requires publisher")
        if publish_interval_s <= 0:
            raise ValueError("publish_interval_s must be > 0")

        self._reader = reader
        self._publisher = publisher
        self._publish_interval_s = publish_interval_s
        self._hooks = hooks if hooks is not None else CollectorHooks()

        self._state = PeriodicTaskState.IDLE
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

    @property
    def state(self) -> PeriodicTaskState:
        return self._state

    async def start(self) -> None:
        """
        Start the collection loop.

        Parameters:
        - None.

        Returns:
        - None.

        Assumptions/Invariants:
        - A stopped collector cannot be restarted.

        Errors/Exceptions:
        - Raises `RuntimeError` when called outside `IDLE`.

        Side effects:
        - Spawns one asyncio task.
        """
        if self._state is not PeriodicTaskState.IDLE:
            raise RuntimeError(f"collector cannot start from state {self._state.value}")
        self._state = PeriodicTaskState.RUNNING
        self._task = asyncio.create_task(self._run_loop(), name="snapshot-collector")
        log.info("candle snapshot collector started (interval=%.2fs)", self._publish_interval_s)

    async def stop(self, *, timeout_s: float = 2.0) -> None:
        if self._state is PeriodicTaskState.TERMINATED:
            return
        if self._state is PeriodicTaskState.RUNNING:
            self._state = PeriodicTaskState.STOPPING
        self._stop_event.set()
        exited = await join_task(self._task, timeout_s=timeout_s)
        if not exited:
            log.warning("snapshot collector did not stop within %.1fs; cancelled", timeout_s)
        self._state = PeriodicTaskState.TERMINATED

    async def publish_once(self) -> int:
        """
        Run one collection tick.

        Parameters:
        - None.

        Returns:
        - Number of symbols in the published snapshot (`0` when skipped).

        Assumptions/Invariants:
        - Publisher swallows transport failures.

        Errors/Exceptions:
        - Propagates unexpected publisher errors to the loop, which logs them.

        Side effects:
        - Enqueues one bus message when the snapshot is non-empty.
        """
        snapshot = self._reader.snapshot_all()
        if not snapshot:
            _emit_counter(self._hooks.on_snapshot_skipped)
            log.debug("no candles to publish, skipping")
            return 0

        await self._publisher.publish_snapshot(snapshot)
        if self._hooks.on_snapshot_published is not None:
            self._hooks.on_snapshot_published(len(snapshot))
        return len(snapshot)

    async def _run_loop(self) -> None:
        try:
            while not self._stop_event.is_set():
                try:
                    await self.publish_once()
                except Exception:  # noqa: BLE001
                    _emit_counter(self._hooks.on_collect_error)
                    log.exception("error collecting/publishing candle snapshot")
                if await wait_or_stop(self._stop_event, self._publish_interval_s):
                    break
        finally:
            self._state = PeriodicTaskState.TERMINATED
            log.info("candle snapshot collector stopped")


def _emit_counter(callback: Callable[[], None] | None) -> None:
    if callback is not None:
        callback()
