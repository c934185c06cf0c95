from .candle_point_writer import InfluxDbCandlePointWriter
from .gateway import InfluxDbClientGateway, InfluxDbGateway, build_influxdb_client
from .point_codec import (
    CANDLE_MEASUREMENT,
    candle_from_line_protocol,
    candle_to_line_protocol,
    candle_to_point,
)

__all__ = [
    "CANDLE_MEASUREMENT",
    "InfluxDbCandlePointWriter",
    "InfluxDbClientGateway",
    "InfluxDbGateway",
    "build_influxdb_client",
    "candle_from_line_protocol",
    "candle_to_line_protocol",
    "candle_to_point",
]
