from __future__ import annotations

import logging

from ohlcv_feed.contexts.candles.application.ports.registry import LatestCandleReader
from ohlcv_feed.platform.errors import FeedError
from ohlcv_feed.shared_kernel.primitives import Candle

log = logging.getLogger(__name__)


class GetLatestCandleUseCase:
    """
    GetLatestCandleUseCase — return the most recent candle of one configured symbol.

    Related:
      - src/ohlcv_feed/contexts/candles/application/services/latest_registry.py
      - src/ohlcv_feed/contexts/candles/adapters/inbound/api/routes.py
    """

    def __init__(self, *, reader: LatestCandleReader) -> None:
        """
        Initialize use-case with the registry read capability.

        Args:
            reader: Latest-candle registry reader.
        Returns:
            None.
        Assumptions:
            Reader is shared with generators and never blocks.
        Raises:
            ValueError: If reader dependency is missing.
        Side Effects:
            None.
        """
        if reader is None:  # type: ignore[truthy-bool]
            raise ValueError("GetLatestCandleUseCase requires reader")
        self._reader = reader

    def execute(self, *, symbol: str) -> Candle:
        """
        Resolve latest candle for `symbol`.

        Args:
            symbol: Requested symbol; matched case-insensitively after trimming.
        Returns:
            Candle: Latest emitted candle.
        Assumptions:
            Calls have no side effects; two calls within one tick return the same candle.
        Raises:
            FeedError: `not_found` for unknown symbols or symbols without data,
                `unexpected_error` for any other fault.
        Side Effects:
            None.
        """
        key = symbol.strip().upper()
        try:
            if not key or not self._reader.is_known(key):
                raise FeedError.not_found(f"no generator for {symbol}")
            candle = self._reader.latest(key)
        except FeedError:
            raise
        except Exception as exc:  # noqa: BLE001
            log.exception("latest candle lookup failed for %s", symbol)
            raise FeedError.internal(exc) from exc

        if candle is None:
            raise FeedError.not_found("no candle available yet")
        return candle
