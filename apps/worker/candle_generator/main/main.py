from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
from typing import Mapping

from apps.worker.candle_generator.wiring.modules import build_candle_feed_app

DEFAULT_CONFIG_PATH = "configs/dev/ohlcv_feed.yaml"
CONFIG_PATH_ENV = "OHLCV_FEED_CONFIG"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"

log = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ohlcv-feed-worker",
        description="Synthetic OHLCV candle generator with store, bus and live read API",
    )
    parser.add_argument(
        "--config",
        default=None,
        help=f"Path to ohlcv_feed.yaml (default: ${CONFIG_PATH_ENV} or {DEFAULT_CONFIG_PATH})",
    )
    parser.add_argument(
        "--metrics-port",
        type=int,
        default=9202,
        help="Prometheus metrics HTTP port, 0 disables the endpoint",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=("DEBUG", "INFO", "WARNING", "ERROR"),
        help="Root log level",
    )
    return parser


def resolve_config_path(*, environ: Mapping[str, str], cli_config_path: str | None) -> str:
    """
    Pick the runtime config path: CLI flag, then `OHLCV_FEED_CONFIG`, then the dev default.
    """
    if cli_config_path is not None and cli_config_path.strip():
        return cli_config_path.strip()
    from_env = environ.get(CONFIG_PATH_ENV, "").strip()
    return from_env if from_env else DEFAULT_CONFIG_PATH


def _install_signal_handlers(stop_event: asyncio.Event) -> None:
    """
    Route SIGINT/SIGTERM into the cooperative stop event.

    Parameters:
    - stop_event: shutdown event awaited by the app supervisor.

    Returns:
    - None.

    Assumptions/Invariants:
    - Runs inside the main event loop; a repeated signal only logs.

    Side effects:
    - Registers process signal handlers.
    """
    loop = asyncio.get_running_loop()

    def _request_stop(sig: signal.Signals) -> None:
        if stop_event.is_set():
            log.warning("%s received again; shutdown already in progress", sig.name)
            return
        log.info("%s received; stopping", sig.name)
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _request_stop, sig)
        except NotImplementedError:
            signal.signal(sig, lambda signum, _frame: _request_stop(signal.Signals(signum)))


async def _run_async(config_path: str, metrics_port: int) -> int:
    """
    Wire the feed from `config_path` and run it until a stop signal arrives.

    Parameters:
    - config_path: runtime config path.
    - metrics_port: Prometheus port, `0` disables it.

    Returns:
    - `0` after a clean shutdown.

    Errors/Exceptions:
    - Propagates config, bind and bus connection failures.

    Side effects:
    - Runs generators, store and bus clients, RPC server and metrics endpoint.
    """
    stop_event = asyncio.Event()
    _install_signal_handlers(stop_event)

    app = build_candle_feed_app(
        config_path=config_path,
        environ=os.environ,
        metrics_port=metrics_port,
    )
    await app.run(stop_event)
    return 0


def main(argv: list[str] | None = None) -> int:
    """
    Entrypoint of the `ohlcv-feed-worker` process.

    Parameters:
    - argv: command-line arguments excluding program name.

    Returns:
    - `0` after clean shutdown, `1` on invalid arguments or any fatal error.

    Side effects:
    - Configures root logging and runs the asyncio loop.
    """
    args = _build_parser().parse_args(argv)
    logging.basicConfig(level=getattr(logging, args.log_level), format=LOG_FORMAT)

    if args.metrics_port < 0:
        log.error("--metrics-port must be >= 0, got %s", args.metrics_port)
        return 1

    config_path = resolve_config_path(environ=os.environ, cli_config_path=args.config)
    try:
        return asyncio.run(_run_async(config_path=config_path, metrics_port=args.metrics_port))
    except Exception:  # noqa: BLE001
        log.exception("ohlcv-feed-worker failed (config=%s)", config_path)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
