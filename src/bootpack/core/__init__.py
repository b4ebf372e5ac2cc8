"""
Core primitives shared by every bootpack module.

Manifesto:
    The repackaging engine is only as trustworthy as the pieces under it.
    Errors carry their category and paths, logs are structured, settings are
    validated once, and file moves never leave a half-applied state unreported.

Tags:
    bootpack, core, errors, logging, settings, filesystem

Doc-Types:
    api-reference
"""

from bootpack.core.errors import (
    ArchiveError,
    BootpackError,
    CollisionError,
    ConfigError,
    DestinationExistsError,
    DuplicateLibraryError,
    ErrorCategory,
    ErrorContext,
    IntegrityError,
    InvalidConfigError,
    InvalidDestinationError,
    InvalidSourceError,
    MainClassNotFoundError,
    MissingConfigError,
    SourceMissingError,
    StorageError,
    UnknownLayoutError,
)
from bootpack.core.logging import LogContext, configure_logging, get_logger

__all__ = [
    "ArchiveError",
    "BootpackError",
    "CollisionError",
    "ConfigError",
    "DestinationExistsError",
    "DuplicateLibraryError",
    "ErrorCategory",
    "ErrorContext",
    "IntegrityError",
    "InvalidConfigError",
    "InvalidDestinationError",
    "InvalidSourceError",
    "LogContext",
    "MainClassNotFoundError",
    "MissingConfigError",
    "SourceMissingError",
    "StorageError",
    "UnknownLayoutError",
    "configure_logging",
    "get_logger",
]
