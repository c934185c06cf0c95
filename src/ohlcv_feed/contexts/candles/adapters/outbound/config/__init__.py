from .runtime_config import (
    BUS_BACKEND_KAFKA,
    BUS_BACKEND_NOOP,
    BUS_BACKEND_REDIS_STREAMS,
    BusConfig,
    CandleFeedRuntimeConfig,
    RedisBusConfig,
    RpcConfig,
    StoreConfig,
    load_candle_feed_runtime_config,
    parse_candle_feed_runtime_config,
    resolve_redis_password,
    resolve_store_token,
)

__all__ = [
    "BUS_BACKEND_KAFKA",
    "BUS_BACKEND_NOOP",
    "BUS_BACKEND_REDIS_STREAMS",
    "BusConfig",
    "CandleFeedRuntimeConfig",
    "RedisBusConfig",
    "RpcConfig",
    "StoreConfig",
    "load_candle_feed_runtime_config",
    "parse_candle_feed_runtime_config",
    "resolve_redis_password",
    "resolve_store_token",
]
