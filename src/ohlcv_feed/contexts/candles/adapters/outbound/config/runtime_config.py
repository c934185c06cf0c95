from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

import yaml

from ohlcv_feed.contexts.candles.domain import DEFAULT_SYMBOL_SPECS, SymbolSpec

BUS_BACKEND_KAFKA = "kafka"
BUS_BACKEND_REDIS_STREAMS = "redis_streams"
BUS_BACKEND_NOOP = "noop"

_ALLOWED_BUS_BACKENDS = {BUS_BACKEND_KAFKA, BUS_BACKEND_REDIS_STREAMS, BUS_BACKEND_NOOP}


@dataclass(frozen=True, slots=True)
class StoreConfig:
    url: str
    org: str
    bucket: str
    token_env: str
    token: str
    flush_interval_ms: int
    max_buffer_rows: int
    max_queue_rows: int
    timeout_ms: int

    def __post_init__(self) -> None:
        _require_non_empty("store.url", self.url)
        _require_non_empty("store.org", self.org)
        _require_non_empty("store.bucket", self.bucket)
        _require_positive_int("store.flush_interval_ms", self.flush_interval_ms)
        _require_positive_int("store.max_buffer_rows", self.max_buffer_rows)
        _require_positive_int("store.max_queue_rows", self.max_queue_rows)
        _require_positive_int("store.timeout_ms", self.timeout_ms)
        if self.max_queue_rows < self.max_buffer_rows:
            raise ValueError(
                f"store.max_queue_rows must be >= store.max_buffer_rows, got {self.max_queue_rows} < {self.max_buffer_rows}"  # noqa: E501
            )


@dataclass(frozen=True, slots=True)
class RedisBusConfig:
    host: str
    port: int
    db: int
    password_env: str | None
    maxlen_approx: int | None
    socket_timeout_s: float
    connect_timeout_s: float

    def __post_init__(self) -> None:
        _require_non_empty("bus.redis.host", self.host)
        _require_positive_int("bus.redis.port", self.port)
        _require_non_negative_int("bus.redis.db", self.db)
        _require_positive("bus.redis.socket_timeout_s", self.socket_timeout_s)
        _require_positive("bus.redis.connect_timeout_s", self.connect_timeout_s)
        if self.maxlen_approx is not None:
            _require_positive_int("bus.redis.maxlen_approx", self.maxlen_approx)


@dataclass(frozen=True, slots=True)
class BusConfig:
    backend: str
    brokers: tuple[str, ...]
    topic: str
    publish_interval_s: float
    redis: RedisBusConfig

    def __post_init__(self) -> None:
        if self.backend not in _ALLOWED_BUS_BACKENDS:
            raise ValueError(
                f"bus.backend must be one of {sorted(_ALLOWED_BUS_BACKENDS)}, got {self.backend!r}"
            )
        _require_non_empty("bus.topic", self.topic)
        _require_positive("bus.publish_interval_s", self.publish_interval_s)
        if self.backend == BUS_BACKEND_KAFKA and not self.brokers:
            raise ValueError("bus.brokers must be non-empty for backend 'kafka'")
        for broker in self.brokers:
            _require_non_empty("bus.brokers[]", broker)


@dataclass(frozen=True, slots=True)
class RpcConfig:
    host: str
    port: int
    stream_interval_s: float
    send_timeout_s: float
    stream_drain_grace_s: float

    def __post_init__(self) -> None:
        _require_non_empty("rpc.host", self.host)
        # port 0 lets the OS pick a free port
        _require_non_negative_int("rpc.port", self.port)
        if self.port > 65535:
            raise ValueError(f"rpc.port must be <= 65535, got {self.port}")
        _require_positive("rpc.stream_interval_s", self.stream_interval_s)
        _require_positive("rpc.send_timeout_s", self.send_timeout_s)
        _require_non_negative("rpc.stream_drain_grace_s", self.stream_drain_grace_s)


@dataclass(frozen=True, slots=True)
class CandleFeedRuntimeConfig:
    version: int
    symbols: tuple[SymbolSpec, ...]
    seed: int | None
    tick_interval_s: float
    trace_candles: bool
    store: StoreConfig
    bus: BusConfig
    rpc: RpcConfig
    shutdown_timeout_s: float

    def __post_init__(self) -> None:
        names = [s.symbol for s in self.symbols]
        if len(set(names)) != len(names):
            raise ValueError(f"duplicate symbol in config: {names}")
        _require_positive("tick_interval_s", self.tick_interval_s)
        _require_positive("shutdown_timeout_s", self.shutdown_timeout_s)
        # a blocking client call left running at shutdown must end inside the budget
        store_request_s = self.store.timeout_ms / 1000.0
        if store_request_s >= self.shutdown_timeout_s:
            raise ValueError(
                f"store.timeout_ms must be < shutdown_timeout_s, got {self.store.timeout_ms} ms >= {self.shutdown_timeout_s} s"  # noqa: E501
            )
        redis_call_s = self.bus.redis.connect_timeout_s + self.bus.redis.socket_timeout_s
        redis_bus = self.bus.backend == BUS_BACKEND_REDIS_STREAMS
        if redis_bus and redis_call_s >= self.shutdown_timeout_s:
            raise ValueError(
                f"bus.redis.connect_timeout_s + bus.redis.socket_timeout_s must be < shutdown_timeout_s, got {redis_call_s} s >= {self.shutdown_timeout_s} s"  # noqa: E501
            )

    def symbol_names(self) -> tuple[str, ...]:
        return tuple(s.symbol for s in self.symbols)


def load_candle_feed_runtime_config(path: str | Path) -> CandleFeedRuntimeConfig:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"ohlcv_feed config not found: {p}")

    data = yaml.safe_load(p.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError("ohlcv_feed config must be a YAML mapping at top-level")
    return parse_candle_feed_runtime_config(data)


def parse_candle_feed_runtime_config(data: Mapping[str, Any]) -> CandleFeedRuntimeConfig:
    version = _get_int(data, "version", required=True)
    feed = _get_mapping(data, "ohlcv_feed", required=True)

    if "symbols" in feed:
        symbols = tuple(_parse_symbol(s) for s in _get_list(feed, "symbols", required=True))
    else:
        symbols = DEFAULT_SYMBOL_SPECS

    return CandleFeedRuntimeConfig(
        version=version,
        symbols=symbols,
        seed=_get_optional_int(feed, "seed"),
        tick_interval_s=_get_float(feed, "tick_interval_s", default=1.0),
        trace_candles=_get_bool(feed, "trace_candles", default=False),
        store=_parse_store(_get_mapping(feed, "store", required=False)),
        bus=_parse_bus(_get_mapping(feed, "bus", required=False)),
        rpc=_parse_rpc(_get_mapping(feed, "rpc", required=False)),
        shutdown_timeout_s=_get_float(feed, "shutdown_timeout_s", default=5.0),
    )


def resolve_store_token(store: StoreConfig, environ: Mapping[str, str]) -> str:
    """
    Pick the store token from the configured environment variable, else the inline value.
    """
    from_env = environ.get(store.token_env, "") if store.token_env else ""
    if from_env.strip():
        return from_env.strip()
    return store.token


def resolve_redis_password(redis: RedisBusConfig, environ: Mapping[str, str]) -> str | None:
    if not redis.password_env:
        return None
    value = environ.get(redis.password_env, "")
    return value if value else None


def _parse_symbol(s: Any) -> SymbolSpec:
    if not isinstance(s, dict):
        raise ValueError("each symbols entry must be a mapping")
    return SymbolSpec(
        symbol=_get_str(s, "symbol", required=True),
        base_price=_get_float(s, "base_price", required=True),
        volatility=_get_float(s, "volatility", required=True),
    )


def _parse_store(m: Mapping[str, Any]) -> StoreConfig:
    return StoreConfig(
        url=_get_str(m, "url", default="http://localhost:8086"),
        org=_get_str(m, "org", default="xp"),
        bucket=_get_str(m, "bucket", default="ohlcv"),
        token_env=_get_str(m, "token_env", default="INFLUXDB_TOKEN"),
        token=_get_raw_str(m, "token", default=""),
        flush_interval_ms=_get_int(m, "flush_interval_ms", default=500),
        max_buffer_rows=_get_int(m, "max_buffer_rows", default=500),
        max_queue_rows=_get_int(m, "max_queue_rows", default=10_000),
        timeout_ms=_get_int(m, "timeout_ms", default=2_000),
    )


def _parse_bus(m: Mapping[str, Any]) -> BusConfig:
    brokers_raw = _get_list(m, "brokers", required=False) if "brokers" in m else ["localhost:9092"]
    brokers = []
    for broker in brokers_raw:
        if not isinstance(broker, str):
            raise ValueError(f"bus.brokers entries must be strings, got {type(broker).__name__}")
        brokers.append(broker.strip())

    redis_map = _get_mapping(m, "redis", required=False)
    redis = RedisBusConfig(
        host=_get_str(redis_map, "host", default="localhost"),
        port=_get_int(redis_map, "port", default=6379),
        db=_get_int(redis_map, "db", default=0),
        password_env=_get_optional_str(redis_map, "password_env"),
        maxlen_approx=(
            _get_optional_int(redis_map, "maxlen_approx")
            if "maxlen_approx" in redis_map
            else 10_000
        ),
        socket_timeout_s=_get_float(redis_map, "socket_timeout_s", default=1.0),
        connect_timeout_s=_get_float(redis_map, "connect_timeout_s", default=1.0),
    )

    return BusConfig(
        backend=_get_str(m, "backend", default=BUS_BACKEND_KAFKA).strip().lower(),
        brokers=tuple(brokers),
        topic=_get_str(m, "topic", default="ohlcv-topic"),
        publish_interval_s=_get_float(m, "publish_interval_s", default=1.0),
        redis=redis,
    )


def _parse_rpc(m: Mapping[str, Any]) -> RpcConfig:
    return RpcConfig(
        host=_get_str(m, "host", default="0.0.0.0"),
        port=_get_int(m, "port", default=9090),
        stream_interval_s=_get_float(m, "stream_interval_s", default=1.0),
        send_timeout_s=_get_float(m, "send_timeout_s", default=1.0),
        stream_drain_grace_s=_get_float(m, "stream_drain_grace_s", default=2.0),
    )


def _get_mapping(d: Mapping[str, Any], key: str, *, required: bool) -> Mapping[str, Any]:
    v = d.get(key)
    if v is None:
        if required:
            raise ValueError(f"missing required key: {key}")
        return {}
    if not isinstance(v, dict):
        raise ValueError(f"expected mapping at key '{key}', got {type(v).__name__}")
    return v


def _get_list(d: Mapping[str, Any], key: str, *, required: bool) -> list[Any]:
    v = d.get(key)
    if v is None:
        if required:
            raise ValueError(f"missing required key: {key}")
        return []
    if not isinstance(v, list):
        raise ValueError(f"expected list at key '{key}', got {type(v).__name__}")
    return v


def _get_str(
    d: Mapping[str, Any], key: str, *, required: bool = False, default: str = ""
) -> str:
    v = d.get(key)
    if v is None:
        if required:
            raise ValueError(f"missing required key: {key}")
        return default
    if not isinstance(v, str):
        raise ValueError(f"expected string at key '{key}', got {type(v).__name__}")
    if not v.strip():
        raise ValueError(f"key '{key}' must be non-empty")
    return v


def _get_raw_str(d: Mapping[str, Any], key: str, *, default: str) -> str:
    v = d.get(key)
    if v is None:
        return default
    if not isinstance(v, str):
        raise ValueError(f"expected string at key '{key}', got {type(v).__name__}")
    return v


def _get_optional_str(d: Mapping[str, Any], key: str) -> str | None:
    if d.get(key) is None:
        return None
    return _get_str(d, key, required=True)


def _get_int(
    d: Mapping[str, Any], key: str, *, required: bool = False, default: int = 0
) -> int:
    v = d.get(key)
    if v is None:
        if required:
            raise ValueError(f"missing required key: {key}")
        return default
    if isinstance(v, bool):
        raise ValueError(f"expected int at key '{key}', got bool")
    if not isinstance(v, int):
        raise ValueError(f"expected int at key '{key}', got {type(v).__name__}")
    return v


def _get_optional_int(d: Mapping[str, Any], key: str) -> int | None:
    if d.get(key) is None:
        return None
    return _get_int(d, key, required=True)


def _get_float(
    d: Mapping[str, Any], key: str, *, required: bool = False, default: float = 0.0
) -> float:
    v = d.get(key)
    if v is None:
        if required:
            raise ValueError(f"missing required key: {key}")
        return default
    if isinstance(v, bool):
        raise ValueError(f"expected float at key '{key}', got bool")
    if isinstance(v, (int, float)):
        return float(v)
    raise ValueError(f"expected float at key '{key}', got {type(v).__name__}")


def _get_bool(d: Mapping[str, Any], key: str, *, default: bool) -> bool:
    v = d.get(key)
    if v is None:
        return default
    if not isinstance(v, bool):
        raise ValueError(f"expected bool at key '{key}', got {type(v).__name__}")
    return v


def _require_non_empty(name: str, s: str) -> None:
    if not isinstance(s, str) or not s.strip():
        raise ValueError(f"{name} must be a non-empty string")


def _require_positive(name: str, x: float) -> None:
    if x <= 0:
        raise ValueError(f"{name} must be > 0, got {x}")


def _require_non_negative(name: str, x: float) -> None:
    if x < 0:
        raise ValueError(f"{name} must be >= 0, got {x}")


def _require_positive_int(name: str, x: int) -> None:
    if x <= 0:
        raise ValueError(f"{name} must be > 0, got {x}")


def _require_non_negative_int(name: str, x: int) -> None:
    if x < 0:
        raise ValueError(f"{name} must be >= 0, got {x}")
