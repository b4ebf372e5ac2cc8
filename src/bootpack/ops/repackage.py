"""
Repackage and inspect operations.

Thin façade over :mod:`bootpack.packaging`: builds options from settings
plus request overrides, runs the engine and converts any
``BootpackError`` into a failed :class:`OperationResult` with a stable
error code.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from pydantic import ValidationError

from bootpack.core.errors import BootpackError, ErrorCategory
from bootpack.core.logging import get_logger
from bootpack.core.settings import RepackageSettings
from bootpack.ops.requests import RepackageRequest
from bootpack.ops.result import OperationResult, start_timer
from bootpack.packaging.dependencies import load_dependency_descriptor
from bootpack.packaging.launch_script import LaunchScript
from bootpack.packaging.library import Library
from bootpack.packaging.manifest import BOOT_VERSION
from bootpack.packaging.repackager import RepackageReport, read_manifest, repackage

logger = get_logger(__name__)

ERROR_CODES: dict[ErrorCategory, str] = {
    ErrorCategory.CONFIG: "INVALID_CONFIG",
    ErrorCategory.COLLISION: "DUPLICATE_LIBRARY",
    ErrorCategory.STORAGE: "IO_ERROR",
    ErrorCategory.INTEGRITY: "INTEGRITY_ERROR",
    ErrorCategory.INTERNAL: "INTERNAL",
}


def _fail_from_error(exc: BootpackError, elapsed_ms: float) -> OperationResult[Any]:
    details: dict[str, Any] = {"error_type": type(exc).__name__}
    details.update(exc.context.to_dict())
    if exc.cause is not None:
        details["cause"] = str(exc.cause)
    return OperationResult.fail(
        ERROR_CODES.get(exc.category, "INTERNAL"),
        exc.message,
        category=exc.category,
        details=details,
        elapsed_ms=elapsed_ms,
    )


def _collect_libraries(request: RepackageRequest) -> list[Library]:
    libraries = list(request.libraries)
    if request.dependencies is not None:
        libraries.extend(load_dependency_descriptor(request.dependencies).libraries())
    return libraries


def _launch_script(request: RepackageRequest) -> LaunchScript | None:
    if request.launch_script is None and not request.executable:
        return None
    return LaunchScript(request.launch_script, request.launch_script_properties)


def repackage_archive(
    request: RepackageRequest,
    settings: RepackageSettings | None = None,
) -> OperationResult[RepackageReport]:
    """Repackage ``request.source`` using settings overridden by the request."""
    timer = start_timer()
    try:
        settings = settings or RepackageSettings()
        options = settings.to_options(**request.overrides)
        libraries = _collect_libraries(request)
        report = repackage(
            request.source,
            request.destination,
            libraries,
            options,
            launch_script=_launch_script(request),
        )
    except BootpackError as exc:
        return _fail_from_error(exc, timer.elapsed_ms)
    except ValidationError as exc:
        return OperationResult.fail(
            "INVALID_CONFIG",
            f"Invalid settings: {exc.error_count()} error(s)",
            category=ErrorCategory.CONFIG,
            details={"errors": [str(err["msg"]) for err in exc.errors()]},
            elapsed_ms=timer.elapsed_ms,
        )
    except Exception as exc:
        logger.exception("op_failed", operation="repackage", error=str(exc))
        return OperationResult.fail(
            "INTERNAL",
            f"Repackage failed: {exc}",
            category=ErrorCategory.INTERNAL,
            elapsed_ms=timer.elapsed_ms,
        )

    warnings: list[str] = []
    if report.skipped:
        warnings.append(f"{report.source} is already repackaged; nothing was written")
    if report.libraries_dropped:
        warnings.append(f"Ignored {report.libraries_dropped} library file(s) that are not zip archives")
    return OperationResult.ok(report, warnings=warnings, elapsed_ms=timer.elapsed_ms)


def inspect_archive(archive: str | Path) -> OperationResult[dict[str, Any]]:
    """Return an archive's manifest and whether it is already repackaged."""
    timer = start_timer()
    path = Path(archive)
    if not path.is_file():
        return OperationResult.fail(
            "INVALID_CONFIG",
            f"Archive {path} must refer to an existing file",
            category=ErrorCategory.CONFIG,
            details={"source": str(path)},
            elapsed_ms=timer.elapsed_ms,
        )
    try:
        manifest = read_manifest(path)
        data: dict[str, Any] = {
            "archive": str(path),
            "repackaged": manifest is not None and BOOT_VERSION in manifest,
            "manifest": manifest.to_dict() if manifest is not None else None,
        }
    except BootpackError as exc:
        return _fail_from_error(exc, timer.elapsed_ms)
    return OperationResult.ok(data, elapsed_ms=timer.elapsed_ms)
