from __future__ import annotations

from dataclasses import dataclass

from .utc_timestamp import UtcTimestamp

MIN_PRICE = 0.01
MIN_VOLUME = 1_000.0
MAX_VOLUME = 100_000.0


@dataclass(frozen=True, slots=True)
class Candle:
    """
    Candle — one emitted OHLCV candle of a synthetic symbol.

    Invariants (checked on construction):
    - symbol is non-empty
    - low <= min(open, close), high >= max(open, close), low <= high
    - every price >= 0.01
    - volume in [1_000.0, 100_000.0)
    """

    symbol: str
    open: float
    high: float
    low: float
    close: float
    volume: float
    timestamp: UtcTimestamp

    def __post_init__(self) -> None:
        if not isinstance(self.symbol, str) or not self.symbol.strip():
            raise ValueError("Candle requires non-empty symbol")

        # OHLC invariants
        if self.high < max(self.open, self.close):
            raise ValueError("Candle requires high >= max(open, close)")
        if self.low > min(self.open, self.close):
            raise ValueError("Candle requires low <= min(open, close)")
        if self.low > self.high:
            raise ValueError("Candle requires low <= high")

        if min(self.open, self.high, self.low, self.close) < MIN_PRICE:
            raise ValueError(f"Candle requires all prices >= {MIN_PRICE}")

        if not (MIN_VOLUME <= self.volume < MAX_VOLUME):
            raise ValueError(f"Candle requires volume in [{MIN_VOLUME}, {MAX_VOLUME}), got {self.volume}")  # noqa: E501

    def as_dict(self) -> dict:
        """
        Serialize all seven fields as a plain mapping (timestamp as int nanoseconds).
        """
        return {
            "symbol": self.symbol,
            "open": self.open,
            "high": self.high,
            "low": self.low,
            "close": self.close,
            "volume": self.volume,
            "timestamp": self.timestamp.value,
        }
