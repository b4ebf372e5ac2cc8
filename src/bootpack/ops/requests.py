"""
Typed request objects for operations.

Requests carry only validated, transport-agnostic data: no Typer params,
no raw strings that still need splitting.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from bootpack.packaging.library import Library


@dataclass(frozen=True, slots=True)
class RepackageRequest:
    """Request for :func:`bootpack.ops.repackage.repackage_archive`.

    Attributes:
        source: Archive to repackage.
        destination: Output path; ``None`` repackages in place.
        libraries: Explicit libraries, in order.
        dependencies: Optional YAML dependency descriptor; its libraries
            follow ``libraries``.
        launch_script: Template file for the launch script prefix.
        launch_script_properties: Values for the template placeholders.
        executable: Prefix the default launch script when no template is given.
        overrides: ``RepackageOptions`` fields that beat the settings.
    """

    source: Path
    destination: Path | None = None
    libraries: tuple[Library, ...] = ()
    dependencies: Path | None = None
    launch_script: Path | None = None
    launch_script_properties: dict[str, str] = field(default_factory=dict)
    executable: bool = False
    overrides: dict[str, object] = field(default_factory=dict)

