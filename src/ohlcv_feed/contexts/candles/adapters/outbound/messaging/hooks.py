from __future__ import annotations

from dataclasses import dataclass
from typing import Callable


@dataclass(frozen=True, slots=True)
class SnapshotPublisherHooks:
    """
    Optional callbacks used to expose bus publisher runtime metrics.

    Parameters:
    - on_publish_success: callback for a message accepted by the transport.
    - on_publish_error: callback for a failed publish.
    - on_publish_duration: callback observing publish call duration in seconds.
    """

    on_publish_success: Callable[[], None] | None = None
    on_publish_error: Callable[[], None] | None = None
    on_publish_duration: Callable[[float], None] | None = None


def emit_counter(callback: Callable[[], None] | None) -> None:
    if callback is not None:
        callback()


def emit_duration(callback: Callable[[float], None] | None, value: float) -> None:
    if callback is not None:
        callback(value)
