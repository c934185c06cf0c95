from __future__ import annotations

import logging
from typing import Iterable

from ohlcv_feed.contexts.candles.application.ports.stores import CandlePointWriter
from ohlcv_feed.shared_kernel.primitives import Candle

from .gateway import InfluxDbGateway
from .point_codec import candle_to_point

log = logging.getLogger(__name__)


class InfluxDbCandlePointWriter(CandlePointWriter):
    """
    CandlePointWriter implementation for InfluxDB.

    Every candle becomes one `ohlcv_candles` point; one batch is one write request.
    """

    def __init__(self, gateway: InfluxDbGateway) -> None:
        if gateway is None:  # type: ignore[truthy-bool]
            raise ValueError("InfluxDbCandlePointWriter requires gateway")
        self._gw = gateway

    def write_candles(self, candles: Iterable[Candle]) -> None:
        """
        Write one batch of candles as InfluxDB points.

        Parameters:
        - candles: candles to persist.

        Returns:
        - None.

        Assumptions/Invariants:
        - Empty batches do not reach the gateway.

        Errors/Exceptions:
        - Propagates gateway transport errors.

        Side effects:
        - Executes one InfluxDB write request.
        """
        points = [candle_to_point(c) for c in candles]
        if not points:
            return
        self._gw.write_points(points)

    def close(self) -> None:
        log.info("closing influxdb client")
        self._gw.close()
