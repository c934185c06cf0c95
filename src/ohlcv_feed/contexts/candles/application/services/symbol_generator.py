from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable

from ohlcv_feed.contexts.candles.application.ports.clock import Clock
from ohlcv_feed.contexts.candles.application.ports.stores import CandleSink
from ohlcv_feed.contexts.candles.domain import PriceWalker
from ohlcv_feed.shared_kernel.primitives import Candle, UtcTimestamp

from .latest_registry import LatestCandleRegistry
from .periodic_task import PeriodicTaskState, join_task, wait_or_stop

log = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class GeneratorHooks:
    """
    Optional callbacks used to expose generator runtime metrics.

    Parameters:
    - on_candle_emitted: callback receiving every emitted candle.
    - on_tick_error: callback for ticks skipped because candle production failed.
    - on_sink_error: callback for store hand-off failures.
    """

    on_candle_emitted: Callable[[Candle], None] | None = None
    on_tick_error: Callable[[], None] | None = None
    on_sink_error: Callable[[], None] | None = None


class SymbolCandleGenerator:
    """
    Periodic task emitting one candle per tick for one symbol.

    Parameters:
    - walker: price walker owned exclusively by this generator.
    - registry: latest-candle registry; this generator is the only writer of its key.
    - sink: store hand-off (non-blocking, at-most-once).
    - clock: UTC clock used for candle timestamps.
    - tick_interval_s: nominal delay between emissions.
    - trace_candles: log every candle at INFO instead of DEBUG.
    - hooks: optional metrics callbacks.

    Assumptions/Invariants:
    - Emission timestamps are non-decreasing; a wall clock stepping backwards is
      clamped to the previous emission.
    - Compute and I/O drift between ticks is not corrected.
    - Errors never terminate the loop.
    """

    def __init__(
        self,
        *,
        walker: PriceWalker,
        registry: LatestCandleRegistry,
        sink: CandleSink,
        clock: Clock,
        tick_interval_s: float = 1.0,
        trace_candles: bool = False,
        hooks: GeneratorHooks | None = None,
    ) -> None:
        """
        Validate and store generator dependencies.

        Parameters:
        - See class-level documentation.

        Returns:
        - None.

        Assumptions/Invariants:
        - Walker symbol is configured in the registry.

        Errors/Exceptions:
        - Raises `ValueError` on invalid constructor arguments.

        Side effects:
        - None.
        """
        if walker is None:  # type: ignore[truthy-bool]
            raise ValueError("SymbolCandleGenerator requires walker")
        if registry is None:  # type: ignore[truthy-bool]
            raise ValueError("SymbolCandleGenerator requires registry")
        if sink is None:  # type: ignore[truthy-bool]
            raise ValueError("SymbolCandleGenerator requires sink")
        if clock is None:  # type: ignore[truthy-bool]
            raise ValueError("SymbolCandleGenerator requires clock")
        if tick_interval_s <= 0:
            raise ValueError("tick_interval_s must be > 0")
        if not registry.is_known(walker.spec.symbol):
            raise ValueError(f"symbol {walker.spec.symbol!r} is not configured in registry")

        self._walker = walker
        self._registry = registry
        self._sink = sink
        self._clock = clock
        self._tick_interval_s = tick_interval_s
        self._trace_candles = trace_candles
        self._hooks = hooks if hooks is not None else GeneratorHooks()

        self._state = PeriodicTaskState.IDLE
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task[None] | None = None
        self._last_timestamp: UtcTimestamp | None = None

    @property
    def symbol(self) -> str:
        return self._walker.spec.symbol

    @property
    def state(self) -> PeriodicTaskState:
        return self._state

    async def start(self) -> None:
        """
        Start the emission loop.

        Parameters:
        - None.

        Returns:
        - None.

        Assumptions/Invariants:
        - A stopped generator cannot be restarted.

        Errors/Exceptions:
        - Raises `RuntimeError` when called outside `IDLE`.

        Side effects:
        - Spawns one asyncio task.
        """
        if self._state is not PeriodicTaskState.IDLE:
            raise RuntimeError(f"generator {self.symbol} cannot start from state {self._state.value}")
        self._state = PeriodicTaskState.RUNNING
        self._task = asyncio.create_task(self._run_loop(), name=f"generator-{self.symbol}")
        log.info(
            "started candle generator for symbol=%s base_price=%s volatility=%s",
            self.symbol,
            self._walker.spec.base_price,
            self._walker.spec.volatility,
        )

    async def stop(self, *, timeout_s: float = 5.0) -> None:
        """
        Request stop and wait for the current tick to finish.

        Parameters:
        - timeout_s: join budget; the task is cancelled when it is exceeded.

        Returns:
        - None.

        Assumptions/Invariants:
        - Idempotent.

        Errors/Exceptions:
        - None.

        Side effects:
        - Sets stop event, joins or cancels the loop task.
        """
        if self._state is PeriodicTaskState.TERMINATED:
            return
        if self._state is PeriodicTaskState.RUNNING:
            self._state = PeriodicTaskState.STOPPING
        self._stop_event.set()
        exited = await join_task(self._task, timeout_s=timeout_s)
        if not exited:
            log.warning("generator %s did not stop within %.1fs; cancelled", self.symbol, timeout_s)
        self._state = PeriodicTaskState.TERMINATED

    def emit_once(self) -> Candle | None:
        """
        Run one tick: produce candle, publish to registry, hand off to store.

        Parameters:
        - None.

        Returns:
        - Emitted candle, or `None` when the tick was skipped.

        Assumptions/Invariants:
        - Registry is updated before the store hand-off.

        Errors/Exceptions:
        - None. Walker and sink faults are logged and counted.

        Side effects:
        - Advances walker state, mutates registry, enqueues a store write.
        """
        try:
            candle = self._walker.next_candle(self._next_timestamp())
        except Exception:  # noqa: BLE001
            _emit_counter(self._hooks.on_tick_error)
            log.exception("candle generation failed for symbol=%s; tick skipped", self.symbol)
            return None

        self._last_timestamp = candle.timestamp
        self._registry.publish(candle)

        try:
            self._sink.submit(candle)
        except Exception:  # noqa: BLE001
            _emit_counter(self._hooks.on_sink_error)
            log.exception("store hand-off failed for symbol=%s", self.symbol)

        if self._hooks.on_candle_emitted is not None:
            self._hooks.on_candle_emitted(candle)
        self._trace(candle)
        return candle

    async def _run_loop(self) -> None:
        try:
            while not self._stop_event.is_set():
                try:
                    self.emit_once()
                except Exception:  # noqa: BLE001
                    _emit_counter(self._hooks.on_tick_error)
                    log.exception("unexpected generator fault for symbol=%s", self.symbol)
                if await wait_or_stop(self._stop_event, self._tick_interval_s):
                    break
        finally:
            self._state = PeriodicTaskState.TERMINATED
            log.info("candle generator stopped for symbol=%s", self.symbol)

    def _next_timestamp(self) -> UtcTimestamp:
        now = self._clock.now()
        last = self._last_timestamp
        if last is not None and now.value < last.value:
            return last
        return now

    def _trace(self, candle: Candle) -> None:
        level = logging.INFO if self._trace_candles else logging.DEBUG
        if not log.isEnabledFor(level):
            return
        log.log(
            level,
            "candle %s @ %s O=%.4f H=%.4f L=%.4f C=%.4f V=%.2f",
            candle.symbol,
            candle.timestamp,
            candle.open,
            candle.high,
            candle.low,
            candle.close,
            candle.volume,
        )


def _emit_counter(callback: Callable[[], None] | None) -> None:
    if callback is not None:
        callback()
