from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Mapping, Protocol

from ohlcv_feed.contexts.candles.application.ports.registry import LatestCandleReader
from ohlcv_feed.shared_kernel.primitives import Candle

from .periodic_task import wait_or_stop

log = logging.getLogger(__name__)


class StreamOutcome(str, Enum):
    """
    Terminal state of one subscriber stream.

    - COMPLETED: server requested shutdown.
    - CANCELLED: peer went away.
    - FAILED: unexpected fault or a send exceeding its timeout.
    """

    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class CandleStreamSink(Protocol):
    """
    Transport-facing side of one live stream subscriber.
    """

    @property
    def cancelled(self) -> bool:
        ...

    async def send(self, snapshot: Mapping[str, Candle]) -> None:
        ...


@dataclass(frozen=True, slots=True)
class StreamerHooks:
    """
    Optional callbacks used to expose stream metrics.

    Parameters:
    - on_active_changed: callback receiving the new active subscriber count.
    - on_message_sent: callback invoked after each delivered snapshot.
    - on_stream_finished: callback receiving the subscriber's terminal outcome.
    """

    on_active_changed: Callable[[int], None] | None = None
    on_message_sent: Callable[[], None] | None = None
    on_stream_finished: Callable[[StreamOutcome], None] | None = None


class LiveCandleStreamer:
    """
    Push the full latest-candle snapshot to each subscriber once per tick.

    Parameters:
    - reader: registry read capability.
    - interval_s: delay between two pushes to the same subscriber.
    - send_timeout_s: upper bound for one send; slower subscribers are failed.
    - hooks: optional metrics callbacks.

    Assumptions/Invariants:
    - Each subscriber runs in its own task and reads the registry directly;
      there is no per-subscriber queue.
    - Snapshots are delivered in production order per subscriber.
    - A failing subscriber never affects another subscriber.
    """

    def __init__(
        self,
        *,
        reader: LatestCandleReader,
        interval_s: float = 1.0,
        send_timeout_s: float = 1.0,
        hooks: StreamerHooks | None = None,
    ) -> None:
        if reader is None:  # type: ignore[truthy-bool]
            raise ValueError("LiveCandleStreamer requires reader")
        if interval_s <= 0:
            raise ValueError("interval_s must be > 0")
        if send_timeout_s <= 0:
            raise ValueError("send_timeout_s must be > 0")

        self._reader = reader
        self._interval_s = interval_s
        self._send_timeout_s = send_timeout_s
        self._hooks = hooks if hooks is not None else StreamerHooks()

        self._stop_event = asyncio.Event()
        self._idle_event = asyncio.Event()
        self._idle_event.set()
        self._active = 0

    @property
    def active_subscribers(self) -> int:
        return self._active

    @property
    def stopping(self) -> bool:
        return self._stop_event.is_set()

    async def stream(self, sink: CandleStreamSink) -> StreamOutcome:
        """
        Serve one subscriber until shutdown, cancellation or failure.

        Parameters:
        - sink: transport adapter of the subscriber.

        Returns:
        - Terminal `StreamOutcome` of this subscriber.

        Assumptions/Invariants:
        - Empty snapshots are not sent.
        - Peer cancellation is detected on the next send or within one tick.

        Errors/Exceptions:
        - Re-raises `asyncio.CancelledError` after releasing the subscriber slot.

        Side effects:
        - Updates active subscriber count and emits hook callbacks.
        """
        self._enter()
        outcome = StreamOutcome.FAILED
        try:
            outcome = await self._serve(sink)
        except asyncio.CancelledError:
            outcome = StreamOutcome.CANCELLED
            raise
        finally:
            self._leave()
            if self._hooks.on_stream_finished is not None:
                self._hooks.on_stream_finished(outcome)
            log.debug("live candle stream finished: %s", outcome.value)
        return outcome

    def stop_streams(self) -> None:
        """
        Ask every active stream to complete at its next tick.
        """
        self._stop_event.set()

    async def wait_idle(self, timeout_s: float) -> bool:
        """
        Wait until no subscriber is active.

        Parameters:
        - timeout_s: maximum wait in seconds.

        Returns:
        - `True` when all streams ended, `False` on timeout.
        """
        if self._active == 0:
            return True
        try:
            await asyncio.wait_for(self._idle_event.wait(), timeout=max(timeout_s, 0.0))
        except TimeoutError:
            log.warning("%d live stream(s) still active after %.1fs", self._active, timeout_s)
            return False
        return True

    async def _serve(self, sink: CandleStreamSink) -> StreamOutcome:
        while True:
            if self._stop_event.is_set():
                return StreamOutcome.COMPLETED
            if sink.cancelled:
                return StreamOutcome.CANCELLED

            snapshot = self._reader.snapshot_all()
            if snapshot:
                try:
                    await asyncio.wait_for(sink.send(snapshot), timeout=self._send_timeout_s)
                except TimeoutError:
                    log.warning(
                        "live stream subscriber too slow (send exceeded %.2fs), closing",
                        self._send_timeout_s,
                    )
                    return StreamOutcome.FAILED
                except Exception:  # noqa: BLE001
                    if sink.cancelled:
                        return StreamOutcome.CANCELLED
                    log.exception("live stream send failed")
                    return StreamOutcome.FAILED
                if self._hooks.on_message_sent is not None:
                    self._hooks.on_message_sent()

            if await wait_or_stop(self._stop_event, self._interval_s):
                return StreamOutcome.COMPLETED

    def _enter(self) -> None:
        self._active += 1
        self._idle_event.clear()
        self._emit_active()

    def _leave(self) -> None:
        self._active -= 1
        if self._active == 0:
            self._idle_event.set()
        self._emit_active()

    def _emit_active(self) -> None:
        if self._hooks.on_active_changed is not None:
            self._hooks.on_active_changed(self._active)
