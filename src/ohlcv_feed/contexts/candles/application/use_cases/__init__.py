from .get_latest_candle import GetLatestCandleUseCase

__all__ = ["GetLatestCandleUseCase"]
