"""Local artifact store: integrity checks and fetch decisions."""

from cratemirror.store.inspector import (
    InspectAction,
    InspectionDecision,
    StoreInspector,
    parse_exclude_specs,
)
from cratemirror.store.verifier import compute_file_sha256, verify

__all__ = [
    "InspectAction",
    "InspectionDecision",
    "StoreInspector",
    "compute_file_sha256",
    "parse_exclude_specs",
    "verify",
]
