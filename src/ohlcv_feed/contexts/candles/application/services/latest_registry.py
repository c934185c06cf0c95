from __future__ import annotations

from typing import Iterable

from ohlcv_feed.contexts.candles.application.ports.registry import LatestCandleReader
from ohlcv_feed.shared_kernel.primitives import Candle


class LatestCandleRegistry(LatestCandleReader):
    """
    In-memory map `symbol -> most recent Candle`.

    Parameters:
    - symbols: configured symbols; the key set is fixed for the process lifetime.

    Assumptions/Invariants:
    - Each key has exactly one writer (its symbol generator).
    - A write replaces the whole `Candle` object, so readers see the old or the
      new candle and never a partial mix; no lock is required for that.
    - The map never shrinks.
    """

    def __init__(self, symbols: Iterable[str]) -> None:
        self._symbols = tuple(dict.fromkeys(symbols))
        self._known = frozenset(self._symbols)
        self._latest: dict[str, Candle] = {}

    def symbols(self) -> tuple[str, ...]:
        return self._symbols

    def is_known(self, symbol: str) -> bool:
        return symbol in self._known

    def publish(self, candle: Candle) -> None:
        """
        Replace latest candle of `candle.symbol`.

        Parameters:
        - candle: freshly emitted candle.

        Returns:
        - None.

        Assumptions/Invariants:
        - Called only by the generator owning `candle.symbol`.

        Errors/Exceptions:
        - Raises `KeyError` for symbols outside the configured set.

        Side effects:
        - Mutates the registry entry.
        """
        if candle.symbol not in self._known:
            raise KeyError(f"symbol is not configured in registry: {candle.symbol}")
        self._latest[candle.symbol] = candle

    def latest(self, symbol: str) -> Candle | None:
        return self._latest.get(symbol)

    def snapshot_all(self) -> dict[str, Candle]:
        # dict() copies under the GIL; keys only appear after the first emission
        return dict(self._latest)
