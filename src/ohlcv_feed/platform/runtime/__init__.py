from .process_identity import (
    ProcessIdentity,
    resolve_instance_id,
    resolve_process_identity,
    resolve_version,
)

__all__ = [
    "ProcessIdentity",
    "resolve_instance_id",
    "resolve_process_identity",
    "resolve_version",
]
