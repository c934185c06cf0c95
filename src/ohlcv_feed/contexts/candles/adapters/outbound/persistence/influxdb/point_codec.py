from __future__ import annotations

from influxdb_client import Point, WritePrecision

from ohlcv_feed.shared_kernel.primitives import Candle, UtcTimestamp

CANDLE_MEASUREMENT = "ohlcv_candles"
SYMBOL_TAG = "symbol"
CANDLE_FIELDS = ("open", "high", "low", "close", "volume")


def candle_to_point(candle: Candle) -> Point:
    """
    Map one candle to its InfluxDB point.

    Parameters:
    - candle: emitted candle.

    Returns:
    - Point with measurement `ohlcv_candles`, tag `symbol`, five float fields and
      nanosecond timestamp.
    """
    point = Point(CANDLE_MEASUREMENT).tag(SYMBOL_TAG, candle.symbol)
    for name in CANDLE_FIELDS:
        point = point.field(name, float(getattr(candle, name)))
    return point.time(candle.timestamp.value, WritePrecision.NS)


def candle_to_line_protocol(candle: Candle) -> str:
    return candle_to_point(candle).to_line_protocol()


def candle_from_line_protocol(line: str) -> Candle:
    """
    Parse one `ohlcv_candles` line-protocol record back into a candle.

    Parameters:
    - line: single line-protocol record.

    Returns:
    - Candle equal to the one that produced the line.

    Assumptions/Invariants:
    - Field values are plain floats (no `i`/`u` integer suffix, no strings).
    - Timestamp is expressed in nanoseconds.

    Errors/Exceptions:
    - Raises `ValueError` on malformed lines, another measurement or missing fields.

    Side effects:
    - None.
    """
    parts = _split_unescaped(line.strip(), " ")
    if len(parts) != 3:
        raise ValueError(f"expected '<series> <fields> <timestamp>', got {line!r}")
    series, fields_raw, timestamp_raw = parts

    series_parts = _split_unescaped(series, ",")
    measurement = _unescape(series_parts[0])
    if measurement != CANDLE_MEASUREMENT:
        raise ValueError(f"unexpected measurement {measurement!r}")
    tags = dict(_parse_pair(raw) for raw in series_parts[1:])
    if SYMBOL_TAG not in tags:
        raise ValueError("line protocol record has no symbol tag")

    fields: dict[str, float] = {}
    for raw in _split_unescaped(fields_raw, ","):
        key, value = _parse_pair(raw)
        fields[key] = _parse_float(key, value)
    missing = [name for name in CANDLE_FIELDS if name not in fields]
    if missing:
        raise ValueError(f"line protocol record misses fields: {missing}")

    try:
        timestamp_ns = int(timestamp_raw)
    except ValueError as exc:
        raise ValueError(f"invalid timestamp {timestamp_raw!r}") from exc

    return Candle(
        symbol=tags[SYMBOL_TAG],
        open=fields["open"],
        high=fields["high"],
        low=fields["low"],
        close=fields["close"],
        volume=fields["volume"],
        timestamp=UtcTimestamp(timestamp_ns),
    )


def _parse_pair(raw: str) -> tuple[str, str]:
    pair = _split_unescaped(raw, "=")
    if len(pair) != 2:
        raise ValueError(f"invalid key=value pair {raw!r}")
    return _unescape(pair[0]), _unescape(pair[1])


def _parse_float(key: str, value: str) -> float:
    if value.endswith(("i", "u")) or value.startswith('"'):
        raise ValueError(f"field {key!r} must be a float, got {value!r}")
    try:
        return float(value)
    except ValueError as exc:
        raise ValueError(f"field {key!r} must be a float, got {value!r}") from exc


def _split_unescaped(text: str, sep: str) -> list[str]:
    out: list[str] = []
    current: list[str] = []
    i = 0
    while i < len(text):
        ch = text[i]
        if ch == "\\" and i + 1 < len(text):
            current.append(text[i : i + 2])
            i += 2
            continue
        if ch == sep:
            out.append("".join(current))
            current = []
        else:
            current.append(ch)
        i += 1
    out.append("".join(current))
    return out


def _unescape(text: str) -> str:
    out: list[str] = []
    i = 0
    while i < len(text):
        ch = text[i]
        if ch == "\\" and i + 1 < len(text):
            out.append(text[i + 1])
            i += 2
            continue
        out.append(ch)
        i += 1
    return "".join(out)
