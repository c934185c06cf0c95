"""
Candle read API: latest candle lookup, full snapshot and live WebSocket stream.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Mapping

from fastapi import APIRouter, WebSocket
from starlette.websockets import WebSocketDisconnect

from ohlcv_feed.contexts.candles.application.ports.registry import LatestCandleReader
from ohlcv_feed.contexts.candles.application.services import LiveCandleStreamer, StreamOutcome
from ohlcv_feed.contexts.candles.application.use_cases import GetLatestCandleUseCase
from ohlcv_feed.shared_kernel.primitives import Candle

from .dto import (
    AllCandlesResponse,
    OhlcvCandleResponse,
    build_all_candles_response,
    build_ohlcv_candle_response,
)

log = logging.getLogger(__name__)

CLOSE_NORMAL = 1000
CLOSE_INTERNAL_ERROR = 1011


def build_candles_router(
    *,
    get_latest_candle_use_case: GetLatestCandleUseCase,
    reader: LatestCandleReader,
    streamer: LiveCandleStreamer,
) -> APIRouter:
    """
    Build the candle read router.

    Args:
        get_latest_candle_use_case: Use-case resolving one symbol's latest candle.
        reader: Registry reader used by the snapshot endpoint.
        streamer: Live stream service shared by all WebSocket subscribers.
    Returns:
        APIRouter: Router with `/v1/candles`, `/v1/candles/{symbol}/latest`
        and WebSocket `/v1/candles/stream`.
    Assumptions:
        Business rules live in the use-case and streamer; routes map transport only.
    Raises:
        ValueError: If one of required dependencies is missing.
    Side Effects:
        None.
    """
    if get_latest_candle_use_case is None:  # type: ignore[truthy-bool]
        raise ValueError("build_candles_router requires get_latest_candle_use_case")
    if reader is None:  # type: ignore[truthy-bool]
        raise ValueError("build_candles_router requires reader")
    if streamer is None:  # type: ignore[truthy-bool]
        raise ValueError("build_candles_router requires streamer")

    router = APIRouter(tags=["candles"])

    @router.get("/v1/candles", response_model=AllCandlesResponse)
    def get_all_candles() -> AllCandlesResponse:
        return build_all_candles_response(snapshot=reader.snapshot_all())

    @router.get("/v1/candles/{symbol}/latest", response_model=OhlcvCandleResponse)
    def get_latest_candle(symbol: str) -> OhlcvCandleResponse:
        """
        Return the most recent candle of one symbol.

        Args:
            symbol: Path symbol, matched case-insensitively.
        Returns:
            OhlcvCandleResponse: Latest candle payload.
        Assumptions:
            Two calls within one tick return identical payloads.
        Raises:
            FeedError: `not_found` (404) or `unexpected_error` (500).
        Side Effects:
            None.
        """
        candle = get_latest_candle_use_case.execute(symbol=symbol)
        return build_ohlcv_candle_response(candle=candle)

    @router.websocket("/v1/candles/stream")
    async def stream_all_live_candles(websocket: WebSocket) -> None:
        """
        Push the full snapshot to the subscriber every tick until shutdown or disconnect.

        Args:
            websocket: Accepted client connection.
        Returns:
            None.
        Assumptions:
            Client messages are ignored; only disconnect is observed.
        Raises:
            None.
        Side Effects:
            Sends one JSON message per tick and closes with 1000 on shutdown,
            1011 on failure, nothing when the peer already left.
        """
        await websocket.accept()
        sink = _WebSocketCandleSink(websocket)
        watcher = asyncio.create_task(sink.watch_disconnect(), name="ws-disconnect-watcher")
        try:
            outcome = await streamer.stream(sink)
        finally:
            watcher.cancel()
            await asyncio.gather(watcher, return_exceptions=True)

        if outcome is StreamOutcome.COMPLETED:
            await _close_quietly(websocket, CLOSE_NORMAL)
        elif outcome is StreamOutcome.FAILED:
            await _close_quietly(websocket, CLOSE_INTERNAL_ERROR)

    return router


class _WebSocketCandleSink:
    """
    Adapt one Starlette WebSocket to the streamer sink contract.
    """

    def __init__(self, websocket: WebSocket) -> None:
        self._websocket = websocket
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    async def send(self, snapshot: Mapping[str, Candle]) -> None:
        payload = build_all_candles_response(snapshot=snapshot).model_dump(mode="json")
        await self._websocket.send_json(payload)

    async def watch_disconnect(self) -> None:
        try:
            while True:
                message = await self._websocket.receive()
                if message.get("type") == "websocket.disconnect":
                    break
        except WebSocketDisconnect:
            pass
        except RuntimeError:
            # receive after the connection was closed by the server side
            pass
        finally:
            self._cancelled = True


async def _close_quietly(websocket: WebSocket, code: int) -> None:
    try:
        await websocket.close(code=code)
    except Exception:  # noqa: BLE001
        log.debug("websocket close(%d) failed; peer already gone", code, exc_info=True)


__all__ = ["build_candles_router"]
