from __future__ import annotations

from dataclasses import dataclass
from importlib import metadata
from typing import Callable, Mapping
from uuid import uuid4

DISTRIBUTION_NAME = "ohlcv-feed"
DEV_VERSION = "DEV"


@dataclass(frozen=True, slots=True)
class ProcessIdentity:
    """
    Identity of one running feed process, logged at startup and used as bus client id.

    Parameters:
    - version: installed distribution version or `DEV`.
    - instance_id: deployment instance identifier.
    """

    version: str
    instance_id: str


def resolve_instance_id(
    environ: Mapping[str, str],
    *,
    token_factory: Callable[[], str] | None = None,
) -> str:
    """
    Resolve instance id from `INSTANCE_ID`, then `HOSTNAME`, then a random 8-char token.

    Parameters:
    - environ: environment mapping.
    - token_factory: optional random token source (tests).

    Returns:
    - Non-empty instance id.

    Assumptions/Invariants:
    - Blank environment values are treated as absent.

    Errors/Exceptions:
    - None.

    Side effects:
    - None.
    """
    for key in ("INSTANCE_ID", "HOSTNAME"):
        value = environ.get(key)
        if value is not None and value.strip():
            return value.strip()
    factory = token_factory if token_factory is not None else _random_token
    return factory()


def resolve_version(distribution: str = DISTRIBUTION_NAME) -> str:
    """
    Resolve build version from installed distribution metadata, falling back to `DEV`.
    """
    try:
        return metadata.version(distribution)
    except metadata.PackageNotFoundError:
        return DEV_VERSION


def resolve_process_identity(environ: Mapping[str, str]) -> ProcessIdentity:
    return ProcessIdentity(version=resolve_version(), instance_id=resolve_instance_id(environ))


def _random_token() -> str:
    return uuid4().hex[:8]
