from __future__ import annotations

import pytest

from ohlcv_feed.contexts.candles.application.services import LatestCandleRegistry
from ohlcv_feed.shared_kernel.primitives import Candle, UtcTimestamp


def _candle(symbol: str, close: float, ts_ns: int) -> Candle:
    return Candle(
        symbol=symbol,
        open=close,
        high=close + 1.0,
        low=close - 1.0,
        close=close,
        volume=5_000.0,
        timestamp=UtcTimestamp(ts_ns),
    )


def test_registry_starts_empty_with_fixed_key_set() -> None:
    registry = LatestCandleRegistry(["MEGA-USD", "HELIO-USD", "MEGA-USD"])

    assert registry.symbols() == ("MEGA-USD", "HELIO-USD")
    assert registry.is_known("MEGA-USD")
    assert not registry.is_known("NOPE-USD")
    assert registry.latest("MEGA-USD") is None
    assert registry.snapshot_all() == {}


def test_registry_publish_replaces_latest_candle() -> None:
    registry = LatestCandleRegistry(["MEGA-USD"])
    first = _candle("MEGA-USD", 100.0, 1)
    second = _candle("MEGA-USD", 101.0, 2)

    registry.publish(first)
    registry.publish(second)

    assert registry.latest("MEGA-USD") is second


def test_registry_rejects_unknown_symbol() -> None:
    registry = LatestCandleRegistry(["MEGA-USD"])
    with pytest.raises(KeyError):
        registry.publish(_candle("NOPE-USD", 10.0, 1))


def test_snapshot_is_a_point_in_time_copy_of_emitted_symbols() -> None:
    registry = LatestCandleRegistry(["MEGA-USD", "HELIO-USD", "RUCKS-USD"])
    registry.publish(_candle("MEGA-USD", 100.0, 1))

    snapshot = registry.snapshot_all()
    registry.publish(_candle("HELIO-USD", 75.0, 2))

    assert set(snapshot) == {"MEGA-USD"}
    assert set(registry.snapshot_all()) == {"MEGA-USD", "HELIO-USD"}
    assert len(registry.snapshot_all()) <= len(registry.symbols())
