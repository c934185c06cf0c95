from __future__ import annotations

import random

from ohlcv_feed.shared_kernel.primitives import (
    MAX_VOLUME,
    MIN_PRICE,
    MIN_VOLUME,
    Candle,
    UtcTimestamp,
)

from .symbol_spec import SymbolSpec

_MEAN_REVERSION = 0.01
_RANGE_VOLATILITY_SHARE = 0.5
_WICK_SHARE = 0.3


class PriceWalker:
    """
    Bounded mean-reverting random walk producing one candle per call.

    Parameters:
    - spec: static symbol parameters.
    - rng: random source owned exclusively by this walker.

    Assumptions/Invariants:
    - Exactly five draws are consumed per candle, in a fixed order, so a seeded
      `rng` yields a bit-exact reproducible sequence.
    - The open of candle N+1 equals the close of candle N.
    - `current_price` never drops below `MIN_PRICE`.
    """

    def __init__(self, *, spec: SymbolSpec, rng: random.Random) -> None:
        """
        Initialize walker state at the symbol's base price.

        Parameters:
        - spec: symbol spec.
        - rng: random source.

        Returns:
        - None.

        Assumptions/Invariants:
        - Base price below the floor is lifted to `MIN_PRICE` so the first open is valid.

        Errors/Exceptions:
        - Raises `ValueError` when dependencies are missing.

        Side effects:
        - None.
        """
        if spec is None:  # type: ignore[truthy-bool]
            raise ValueError("PriceWalker requires spec")
        if rng is None:  # type: ignore[truthy-bool]
            raise ValueError("PriceWalker requires rng")
        self._spec = spec
        self._rng = rng
        self._current_price = max(spec.base_price, MIN_PRICE)

    @property
    def spec(self) -> SymbolSpec:
        return self._spec

    @property
    def current_price(self) -> float:
        return self._current_price

    def next_candle(self, timestamp: UtcTimestamp) -> Candle:
        """
        Advance the walk by one tick and return the produced candle.

        Parameters:
        - timestamp: emission instant of the candle.

        Returns:
        - Candle satisfying OHLC, price-floor and volume invariants.

        Assumptions/Invariants:
        - Walker state is advanced only after the candle is fully built.

        Errors/Exceptions:
        - None in practice; `Candle` validation would raise `ValueError` on a broken invariant.

        Side effects:
        - Consumes five draws from `rng` and updates `current_price`.
        """
        base_price = self._spec.base_price
        volatility = self._spec.volatility
        rng = self._rng

        open_ = self._current_price
        drift = volatility * (rng.random() - 0.5) * 2.0
        reversion = (base_price - open_) * _MEAN_REVERSION
        close = max(MIN_PRICE, open_ + drift + reversion)

        candle_range = abs(close - open_) + volatility * rng.random() * _RANGE_VOLATILITY_SHARE
        high_raw = max(open_, close) + candle_range * rng.random() * _WICK_SHARE
        low_raw = max(MIN_PRICE, min(open_, close) - candle_range * rng.random() * _WICK_SHARE)

        high = max(high_raw, open_, close)
        low = min(low_raw, open_, close)
        volume = MIN_VOLUME + rng.random() * (MAX_VOLUME - MIN_VOLUME)

        candle = Candle(
            symbol=self._spec.symbol,
            open=open_,
            high=high,
            low=low,
            close=close,
            volume=volume,
            timestamp=timestamp,
        )
        self._current_price = close
        return candle


def build_symbol_rng(*, seed: int | None, symbol: str) -> random.Random:
    """
    Build the random source of one symbol.

    Parameters:
    - seed: process-level seed or `None` for OS entropy.
    - symbol: normalized symbol name.

    Returns:
    - `random.Random` seeded with `"<seed>:<symbol>"`, so every symbol gets its own
      reproducible stream independent of the other configured symbols.
    """
    if seed is None:
        return random.Random()
    return random.Random(f"{seed}:{symbol}")
