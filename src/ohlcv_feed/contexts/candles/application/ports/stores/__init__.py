from .candle_point_writer import CandlePointWriter
from .candle_sink import CandleSink

__all__ = ["CandlePointWriter", "CandleSink"]
