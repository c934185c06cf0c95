from .candle_generator import (
    CandleFeedApp,
    CandleFeedMetrics,
    bind_rpc_socket,
    build_candle_feed_api,
    build_candle_feed_app,
)

__all__ = [
    "CandleFeedApp",
    "CandleFeedMetrics",
    "bind_rpc_socket",
    "build_candle_feed_api",
    "build_candle_feed_app",
]
