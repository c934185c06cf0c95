from .latest_candle_reader import LatestCandleReader

__all__ = ["LatestCandleReader"]
