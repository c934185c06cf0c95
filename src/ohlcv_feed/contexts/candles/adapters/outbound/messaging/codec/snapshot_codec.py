from __future__ import annotations

import json
from typing import Any, Mapping

from ohlcv_feed.shared_kernel.primitives import Candle, UtcTimestamp

_CANDLE_KEYS = ("symbol", "open", "high", "low", "close", "volume", "timestamp")


def encode_snapshot(snapshot: Mapping[str, Candle]) -> bytes:
    """
    Encode one latest-candle snapshot as the bus message value.

    Parameters:
    - snapshot: mapping `symbol -> candle`.

    Returns:
    - UTF-8 JSON object `{symbol: {symbol, open, high, low, close, volume, timestamp}}`
      with `timestamp` as integer nanoseconds since epoch.

    Assumptions/Invariants:
    - Output is deterministic: keys are sorted.
    """
    payload = {symbol: candle.as_dict() for symbol, candle in snapshot.items()}
    return json.dumps(payload, sort_keys=True, separators=(",", ":")).encode("utf-8")


def decode_snapshot(raw: bytes | str) -> dict[str, Candle]:
    """
    Decode a bus message value produced by `encode_snapshot`.

    Parameters:
    - raw: message value bytes (or already decoded text).

    Returns:
    - Mapping `symbol -> Candle`.

    Assumptions/Invariants:
    - Every entry key equals the inner `symbol` field.

    Errors/Exceptions:
    - Raises `ValueError` on malformed JSON, missing fields or inconsistent keys.

    Side effects:
    - None.
    """
    text = raw.decode("utf-8") if isinstance(raw, (bytes, bytearray)) else raw
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ValueError(f"snapshot payload is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ValueError("snapshot payload must be a JSON object")

    out: dict[str, Candle] = {}
    for symbol, item in data.items():
        candle = _candle_from_mapping(item)
        if candle.symbol != symbol:
            raise ValueError(f"snapshot key {symbol!r} does not match candle symbol {candle.symbol!r}")  # noqa: E501
        out[symbol] = candle
    return out


def _candle_from_mapping(item: Any) -> Candle:
    if not isinstance(item, dict):
        raise ValueError("snapshot entry must be a JSON object")
    missing = [k for k in _CANDLE_KEYS if k not in item]
    if missing:
        raise ValueError(f"snapshot entry misses keys: {missing}")
    timestamp = item["timestamp"]
    if isinstance(timestamp, bool) or not isinstance(timestamp, int):
        raise ValueError("snapshot entry timestamp must be integer nanoseconds")
    return Candle(
        symbol=str(item["symbol"]),
        open=float(item["open"]),
        high=float(item["high"]),
        low=float(item["low"]),
        close=float(item["close"]),
        volume=float(item["volume"]),
        timestamp=UtcTimestamp(timestamp),
    )
