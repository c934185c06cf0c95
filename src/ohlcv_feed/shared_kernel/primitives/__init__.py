"""
Shared Kernel primitives.

This package re-exports the domain primitives so that other modules can import
them from one place:

    from ohlcv_feed.shared_kernel.primitives import Candle, Symbol, UtcTimestamp
"""

from .candle import MAX_VOLUME, MIN_PRICE, MIN_VOLUME, Candle
from .symbol import Symbol
from .utc_timestamp import UtcTimestamp

__all__ = [
    "Candle",
    "MAX_VOLUME",
    "MIN_PRICE",
    "MIN_VOLUME",
    "Symbol",
    "UtcTimestamp",
]
