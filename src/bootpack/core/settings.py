"""Environment-driven settings for bootpack.

``RepackageSettings`` reads ``BOOTPACK_*`` environment variables (and a
``.env`` file) so build pipelines can configure repackaging without
flags. CLI options override whatever the settings provide.

Examples:
    >>> import os
    >>> os.environ["BOOTPACK_ALL_IN_ONE"] = "false"
    >>> RepackageSettings().to_options().mode
    <PackagingMode.EXPLODED: 'exploded'>

Tags:
    settings, configuration, pydantic, environment, bootpack

Doc-Types:
    - API Reference
    - Configuration Guide
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

if TYPE_CHECKING:
    from bootpack.packaging.repackager import RepackageOptions


class RepackageSettings(BaseSettings):
    """Settings for a repackage run.

    Fields
    ──────
    main_class         : Explicit start class
    backup_source      : Keep ``<source>.original`` after an in-place run
    layout             : Layout kind (JAR, WAR, ZIP, DIR, MODULE, NONE)
    layout_factory     : Registered layout factory name
    all_in_one         : True embeds libraries, False writes a sibling lib dir
    dist_dir           : Directory the result is moved into
    framework_version  : Value for the version marker attribute
    library_directory  : Name of the exploded library directory
    loader_archive     : Archive providing bootstrap loader classes
    log_level          : Structlog log level
    json_logs          : Force JSON (True) or console (False) log output
    """

    model_config = SettingsConfigDict(
        env_prefix="BOOTPACK_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Engine ───────────────────────────────────────────────────
    main_class: str | None = None
    backup_source: bool = True
    layout: str | None = None
    layout_factory: str | None = None
    all_in_one: bool = True
    dist_dir: Path | None = None
    framework_version: str | None = None
    library_directory: str = Field(default="lib", min_length=1)
    loader_archive: Path | None = None

    # ── Observability ────────────────────────────────────────────
    log_level: str = "INFO"
    json_logs: bool | None = None

    @field_validator("layout")
    @classmethod
    def _normalise_layout(cls, value: str | None) -> str | None:
        if value is None:
            return None
        from bootpack.packaging.layout import LayoutKind

        upper = value.strip().upper()
        if upper not in LayoutKind.__members__:
            raise ValueError(f"unknown layout {value!r}; expected one of {', '.join(LayoutKind.__members__)}")
        return upper

    @field_validator("log_level")
    @classmethod
    def _normalise_level(cls, value: str) -> str:
        upper = value.strip().upper()
        if upper not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level {value!r}")
        return upper

    def to_options(self, **overrides: Any) -> RepackageOptions:
        """Build ``RepackageOptions``; ``None`` overrides keep the setting."""
        from bootpack.packaging.repackager import PackagingMode, RepackageOptions

        values: dict[str, Any] = {
            "main_class": self.main_class,
            "backup_source": self.backup_source,
            "layout": self.layout,
            "layout_factory": self.layout_factory,
            "mode": PackagingMode.EMBEDDED if self.all_in_one else PackagingMode.EXPLODED,
            "dist_dir": self.dist_dir,
            "framework_version": self.framework_version,
            "library_directory": self.library_directory,
            "loader_archive": self.loader_archive,
        }
        values.update({key: value for key, value in overrides.items() if value is not None})
        return RepackageOptions(**values)


__all__ = ["RepackageSettings"]
