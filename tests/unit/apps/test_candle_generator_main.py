from __future__ import annotations

import asyncio

from apps.worker.candle_generator.main import main as candle_generator_main


class _NoOpApp:
    """
    No-op app stub used to isolate candle feed entrypoint tests.
    """

    async def run(self, _stop_event: asyncio.Event) -> None:
        return None


def test_run_async_passes_cli_values_to_app_wiring(monkeypatch) -> None:
    """
    Verify worker entrypoint forwards config path and metrics port to the app builder.

    Args:
        monkeypatch: pytest monkeypatch fixture.
    Returns:
        None.
    Assumptions:
        Entrypoint tests validate argument passing, not worker loop behavior.
    Raises:
        AssertionError: If builder receives wrong arguments or exit code differs from 0.
    Side Effects:
        None.
    """
    received: list[tuple[str, int]] = []

    def _build_app(*, config_path: str, environ, metrics_port: int) -> _NoOpApp:
        received.append((config_path, metrics_port))
        return _NoOpApp()

    monkeypatch.setattr(candle_generator_main, "build_candle_feed_app", _build_app)
    monkeypatch.setattr(
        candle_generator_main,
        "_install_signal_handlers",
        lambda _stop_event: None,
    )

    exit_code = candle_generator_main.main(
        ["--config", "configs/dev/ohlcv_feed.yaml", "--metrics-port", "0"]
    )

    assert exit_code == 0
    assert received == [("configs/dev/ohlcv_feed.yaml", 0)]


def test_main_returns_one_when_wiring_fails(monkeypatch) -> None:
    def _build_app(**_kwargs) -> _NoOpApp:
        raise OSError("address already in use")

    monkeypatch.setattr(candle_generator_main, "build_candle_feed_app", _build_app)
    monkeypatch.setattr(
        candle_generator_main,
        "_install_signal_handlers",
        lambda _stop_event: None,
    )

    assert candle_generator_main.main(["--metrics-port", "0"]) == 1


def test_main_rejects_negative_metrics_port() -> None:
    assert candle_generator_main.main(["--metrics-port", "-1"]) == 1


def test_config_path_resolution_prefers_cli_then_environment() -> None:
    resolve = candle_generator_main.resolve_config_path

    assert resolve(environ={"OHLCV_FEED_CONFIG": "/etc/feed.yaml"}, cli_config_path="x.yaml") == (
        "x.yaml"
    )
    assert resolve(environ={"OHLCV_FEED_CONFIG": "/etc/feed.yaml"}, cli_config_path=None) == (
        "/etc/feed.yaml"
    )
    assert resolve(environ={}, cli_config_path=None) == "configs/dev/ohlcv_feed.yaml"
