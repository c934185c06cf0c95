from .latest_registry import LatestCandleRegistry
from .live_candle_streamer import (
    CandleStreamSink,
    LiveCandleStreamer,
    StreamerHooks,
    StreamOutcome,
)
from .periodic_task import PeriodicTaskState, join_task, wait_or_stop
from .snapshot_collector import CandleSnapshotCollector, CollectorHooks
from .symbol_generator import GeneratorHooks, SymbolCandleGenerator
from .write_buffer import AsyncCandleWriteBuffer, WriteBufferHooks

__all__ = [
    "AsyncCandleWriteBuffer",
    "CandleSnapshotCollector",
    "CandleStreamSink",
    "CollectorHooks",
    "GeneratorHooks",
    "LatestCandleRegistry",
    "LiveCandleStreamer",
    "PeriodicTaskState",
    "StreamOutcome",
    "StreamerHooks",
    "SymbolCandleGenerator",
    "WriteBufferHooks",
    "join_task",
    "wait_or_stop",
]
