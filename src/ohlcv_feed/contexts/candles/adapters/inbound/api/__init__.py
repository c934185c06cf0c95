from .dto import (
    AllCandlesResponse,
    OhlcvCandleResponse,
    build_all_candles_response,
    build_ohlcv_candle_response,
)
from .errors import register_feed_error_handlers
from .routes import build_candles_router

__all__ = [
    "AllCandlesResponse",
    "OhlcvCandleResponse",
    "build_all_candles_response",
    "build_candles_router",
    "build_ohlcv_candle_response",
    "register_feed_error_handlers",
]
