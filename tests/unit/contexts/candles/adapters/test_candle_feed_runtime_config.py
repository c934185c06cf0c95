from __future__ import annotations

from pathlib import Path

import pytest

from ohlcv_feed.contexts.candles.adapters.outbound.config import (
    BUS_BACKEND_KAFKA,
    BUS_BACKEND_REDIS_STREAMS,
    load_candle_feed_runtime_config,
    parse_candle_feed_runtime_config,
    resolve_redis_password,
    resolve_store_token,
)
from ohlcv_feed.contexts.candles.domain import DEFAULT_SYMBOL_SPECS


def _write_feed_config(tmp_path: Path, *, body: str) -> Path:
    """
    Write temporary feed runtime YAML used by config-loader tests.

    Args:
        tmp_path: pytest temporary directory fixture.
        body: Full YAML content.
    Returns:
        Path: Written config path.
    Assumptions:
        Input text is valid UTF-8.
    Raises:
        OSError: If write operation fails.
    Side Effects:
        Creates one temp YAML file.
    """
    config_path = tmp_path / "ohlcv_feed.yaml"
    config_path.write_text(body, encoding="utf-8")
    return config_path


def test_load_dev_config_reads_yaml_values() -> None:
    config = load_candle_feed_runtime_config(Path("configs/dev/ohlcv_feed.yaml"))

    assert config.version == 1
    assert config.symbol_names() == ("MEGA-USD", "HELIO-USD", "RUCKS-USD")
    assert config.symbols == DEFAULT_SYMBOL_SPECS
    assert config.seed is None
    assert config.tick_interval_s == 1.0
    assert config.store.bucket == "ohlcv"
    assert config.store.max_queue_rows == 10_000
    assert config.store.timeout_ms == 2_000
    assert config.bus.backend == BUS_BACKEND_KAFKA
    assert config.bus.brokers == ("localhost:9092",)
    assert config.bus.topic == "ohlcv-topic"
    assert config.bus.redis.maxlen_approx == 10_000
    assert config.bus.redis.socket_timeout_s == 1.0
    assert config.bus.redis.connect_timeout_s == 1.0
    assert config.rpc.port == 9090
    assert config.shutdown_timeout_s == 5.0


def test_minimal_config_falls_back_to_defaults(tmp_path: Path) -> None:
    path = _write_feed_config(tmp_path, body="version: 1\nohlcv_feed: {}\n")

    config = load_candle_feed_runtime_config(path)

    assert config.symbols == DEFAULT_SYMBOL_SPECS
    assert config.trace_candles is False
    assert config.store.url == "http://localhost:8086"
    assert config.store.flush_interval_ms == 500
    assert config.bus.publish_interval_s == 1.0
    assert config.rpc.host == "0.0.0.0"
    assert config.rpc.stream_drain_grace_s == 2.0


def test_custom_symbols_seed_and_redis_backend(tmp_path: Path) -> None:
    path = _write_feed_config(
        tmp_path,
        body="""
version: 1
ohlcv_feed:
  symbols:
    - { symbol: " abc-usd ", base_price: 10, volatility: 0.5 }
  seed: 42
  bus:
    backend: Redis_Streams
    brokers: []
    topic: candles
    redis:
      host: redis.local
      password_env: REDIS_PASSWORD
      maxlen_approx: null
  rpc:
    port: 0
""",
    )

    config = load_candle_feed_runtime_config(path)

    assert config.symbol_names() == ("ABC-USD",)
    assert config.symbols[0].base_price == 10.0
    assert config.seed == 42
    assert config.bus.backend == BUS_BACKEND_REDIS_STREAMS
    assert config.bus.brokers == ()
    assert config.bus.redis.host == "redis.local"
    assert config.bus.redis.maxlen_approx is None
    assert config.rpc.port == 0


@pytest.mark.parametrize(
    ("feed", "message"),
    [
        (
            {
                "symbols": [
                    {"symbol": "A", "base_price": 1.0, "volatility": 1.0},
                    {"symbol": "a", "base_price": 2.0, "volatility": 1.0},
                ]
            },
            "duplicate symbol",
        ),
        ({"symbols": [{"symbol": "A", "base_price": 0.0, "volatility": 1.0}]}, "base_price"),
        ({"tick_interval_s": 0}, "tick_interval_s must be > 0"),
        ({"bus": {"backend": "carrier-pigeon"}}, "bus.backend"),
        ({"bus": {"backend": "kafka", "brokers": []}}, "bus.brokers must be non-empty"),
        ({"store": {"max_buffer_rows": 100, "max_queue_rows": 10}}, "max_queue_rows"),
        ({"rpc": {"port": 70000}}, "rpc.port"),
        ({"seed": "abc"}, "seed"),
        ({"store": {"timeout_ms": 5_000}}, "store.timeout_ms must be < shutdown_timeout_s"),
        ({"bus": {"redis": {"socket_timeout_s": 0}}}, "bus.redis.socket_timeout_s must be > 0"),
        (
            {
                "bus": {
                    "backend": "redis_streams",
                    "redis": {"socket_timeout_s": 3.0, "connect_timeout_s": 2.0},
                },
            },
            r"connect_timeout_s \+ bus.redis.socket_timeout_s must be < shutdown_timeout_s",
        ),
    ],
)
def test_invalid_config_is_rejected(feed: dict, message: str) -> None:
    with pytest.raises(ValueError, match=message):
        parse_candle_feed_runtime_config({"version": 1, "ohlcv_feed": feed})


def test_empty_symbol_list_runs_no_generators() -> None:
    config = parse_candle_feed_runtime_config({"version": 1, "ohlcv_feed": {"symbols": []}})

    assert config.symbols == ()
    assert config.symbol_names() == ()


def test_redis_timeouts_only_bound_the_redis_backend() -> None:
    config = parse_candle_feed_runtime_config(
        {
            "version": 1,
            "ohlcv_feed": {
                "bus": {
                    "backend": "kafka",
                    "redis": {"socket_timeout_s": 3.0, "connect_timeout_s": 3.0},
                },
            },
        }
    )

    assert config.bus.redis.socket_timeout_s == 3.0


def test_missing_config_file_raises(tmp_path: Path) -> None:
    with pytest.raises(FileNotFoundError):
        load_candle_feed_runtime_config(tmp_path / "absent.yaml")


def test_store_token_prefers_environment() -> None:
    config = parse_candle_feed_runtime_config(
        {"version": 1, "ohlcv_feed": {"store": {"token": "inline"}}}
    )

    assert resolve_store_token(config.store, {"INFLUXDB_TOKEN": " from-env "}) == "from-env"
    assert resolve_store_token(config.store, {}) == "inline"


def test_redis_password_is_optional() -> None:
    config = parse_candle_feed_runtime_config(
        {"version": 1, "ohlcv_feed": {"bus": {"redis": {"password_env": "REDIS_PASSWORD"}}}}
    )

    assert resolve_redis_password(config.bus.redis, {"REDIS_PASSWORD": "secret"}) == "secret"
    assert resolve_redis_password(config.bus.redis, {}) is None
