"""
API error handlers for the FeedError contract.
"""

from __future__ import annotations

import logging
from typing import Mapping, cast

from fastapi import FastAPI
from starlette.requests import Request
from starlette.responses import JSONResponse

from ohlcv_feed.platform.errors import NOT_FOUND, UNEXPECTED_ERROR, FeedError

log = logging.getLogger(__name__)

_FEED_STATUS_BY_CODE: Mapping[str, int] = {
    NOT_FOUND: 404,
    UNEXPECTED_ERROR: 500,
}


def register_feed_error_handlers(*, app: FastAPI) -> None:
    """
    Register handlers mapping FeedError and unhandled exceptions to JSON payloads.

    Args:
        app: FastAPI application instance.
    Returns:
        None.
    Assumptions:
        Handlers are installed once while the application is built.
    Raises:
        ValueError: If `app` dependency is missing.
    Side Effects:
        Mutates FastAPI exception-handler registry.
    """
    if app is None:  # type: ignore[truthy-bool]
        raise ValueError("register_feed_error_handlers requires app")

    app.add_exception_handler(FeedError, feed_error_handler)
    app.add_exception_handler(Exception, unexpected_error_handler)


def feed_error_handler(_request: Request, error: Exception) -> JSONResponse:
    feed_error = cast(FeedError, error)
    status_code = _FEED_STATUS_BY_CODE.get(feed_error.code, 500)
    return JSONResponse(status_code=status_code, content=feed_error.to_payload())


def unexpected_error_handler(request: Request, error: Exception) -> JSONResponse:
    """
    Convert any unhandled exception into canonical `unexpected_error` payload.

    Args:
        request: Starlette request object.
        error: Unhandled exception.
    Returns:
        JSONResponse: HTTP 500 payload with the cause only in `details.debug`.
    Assumptions:
        Exception details are never part of the human-readable message.
    Raises:
        None.
    Side Effects:
        Logs the exception with traceback.
    """
    log.error("unhandled error on %s", request.url.path, exc_info=error)
    return feed_error_handler(request, FeedError.internal(error))
