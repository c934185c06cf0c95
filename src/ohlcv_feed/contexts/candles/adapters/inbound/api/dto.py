"""
Pydantic API models and converters for the candle read surface.
"""

from __future__ import annotations

from typing import Mapping

from pydantic import BaseModel

from ohlcv_feed.shared_kernel.primitives import Candle


class OhlcvCandleResponse(BaseModel):
    """
    API payload for one candle; `timestamp` is integer nanoseconds since epoch.
    """

    symbol: str
    open: float
    high: float
    low: float
    close: float
    volume: float
    timestamp: int


class AllCandlesResponse(BaseModel):
    """
    API response wrapper for the full latest-candle snapshot, ordered by `symbol ASC`.
    """

    candles: list[OhlcvCandleResponse]


def build_ohlcv_candle_response(*, candle: Candle) -> OhlcvCandleResponse:
    return OhlcvCandleResponse(
        symbol=candle.symbol,
        open=candle.open,
        high=candle.high,
        low=candle.low,
        close=candle.close,
        volume=candle.volume,
        timestamp=candle.timestamp.value,
    )


def build_all_candles_response(*, snapshot: Mapping[str, Candle]) -> AllCandlesResponse:
    """
    Convert a registry snapshot into deterministic API payload.

    Args:
        snapshot: Mapping `symbol -> latest candle`.
    Returns:
        AllCandlesResponse: Candles sorted by symbol.
    Assumptions:
        Snapshot is a point-in-time copy owned by the caller.
    Raises:
        None.
    Side Effects:
        None.
    """
    return AllCandlesResponse(
        candles=[
            build_ohlcv_candle_response(candle=snapshot[symbol]) for symbol in sorted(snapshot)
        ]
    )
