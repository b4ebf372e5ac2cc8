"""
Operations layer: transport-agnostic functions returning ``OperationResult``.

The CLI calls these; so can any other front end.
"""

from bootpack.ops.repackage import ERROR_CODES, inspect_archive, repackage_archive
from bootpack.ops.requests import RepackageRequest
from bootpack.ops.result import OperationError, OperationResult, start_timer

__all__ = [
    "ERROR_CODES",
    "OperationError",
    "OperationResult",
    "RepackageRequest",
    "inspect_archive",
    "repackage_archive",
    "start_timer",
]
