"""
Structured error types for bootpack.

Every failure the repackaging engine can raise is a ``BootpackError``
subclass that carries a category, the paths involved and the underlying
cause, so a single terminal error is enough to diagnose a failed run.

Manifesto:
    - **Typed Error Hierarchy:** One branch per failure class
      (configuration, collision, storage, integrity)
    - **No Retries:** Nothing here is retried internally; callers decide
      whether to run the whole operation again
    - **Rich Context:** Errors carry source/destination/library paths
    - **Error Chaining:** The original ``OSError`` or ``BadZipFile`` is kept
      as ``cause`` and ``__cause__``

Architecture:
    ::

        ┌──────────────────────────────────────────────────────────────┐
        │                        BootpackError                          │
        │             (category, context, cause, to_dict)              │
        ├──────────────────────────────────────────────────────────────┤
        │                                                               │
        │  ConfigError          CollisionError      StorageError        │
        │  (CONFIG)             (COLLISION)         (STORAGE)           │
        │     │                      │                  │               │
        │  InvalidConfigError   DuplicateLibrary   SourceMissingError   │
        │  MissingConfigError                      DestinationExists    │
        │  InvalidSourceError                      ArchiveError         │
        │  InvalidDestination                                           │
        │  UnknownLayoutError   IntegrityError                          │
        │  MainClassNotFound    (INTEGRITY)                             │
        └──────────────────────────────────────────────────────────────┘

Examples:
    >>> error = DuplicateLibraryError("commons-lang3-3.12.0.jar")
    >>> error.category
    <ErrorCategory.COLLISION: 'COLLISION'>
    >>> error.with_context(destination="/tmp/app.jar").context.destination
    '/tmp/app.jar'

Tags:
    error-handling, exception-hierarchy, error-context, bootpack

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from os import PathLike
from typing import Any


class ErrorCategory(str, Enum):
    """
    Error categories used for classification and exit reporting.

    Attributes:
        CONFIG: Invalid or missing inputs (source, destination, main class, layout)
        COLLISION: Two dependencies claim the same destination name
        STORAGE: Rename, copy, delete or archive read/write failures
        INTEGRITY: A copied file does not match its source
        INTERNAL: Bugs, unexpected state
    """

    CONFIG = "CONFIG"
    COLLISION = "COLLISION"
    STORAGE = "STORAGE"
    INTEGRITY = "INTEGRITY"
    INTERNAL = "INTERNAL"


def _as_text(value: Any) -> Any:
    if isinstance(value, PathLike):
        return str(value)
    return value


@dataclass
class ErrorContext:
    """
    Structured metadata attached to an error.

    Attributes:
        source: Source path of the failing step
        destination: Destination path of the failing step
        library: Library (dependency) name involved
        entry: Archive entry name involved
        metadata: Additional key-value pairs
    """

    source: str | None = None
    destination: str | None = None
    library: str | None = None
    entry: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["source", "destination", "library", "entry"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class BootpackError(Exception):
    """
    Base exception for all bootpack errors.

    Subclasses set ``default_category``; callers may still pass an explicit
    category. ``cause`` is chained as ``__cause__`` so tracebacks show the
    underlying I/O failure.
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> BootpackError:
        """
        Add context to this error (fluent API).

        Usage:
            raise StorageError("Rename failed").with_context(
                source=str(source),
                destination=str(backup),
            )
        """
        for key, value in kwargs.items():
            value = _as_text(value)
            if key != "metadata" and hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# CONFIGURATION ERRORS (Never Retryable)
# =============================================================================


class ConfigError(BootpackError):
    """Invalid or missing input. Reported verbatim with the offending value."""

    default_category = ErrorCategory.CONFIG


class MissingConfigError(ConfigError):
    """A required setting was not provided."""

    def __init__(self, key: str, message: str | None = None):
        super().__init__(message or f"Missing required configuration: {key}")
        self.key = key


class InvalidConfigError(ConfigError):
    """A setting was provided with an unusable value."""

    def __init__(self, key: str, value: Any, message: str | None = None):
        super().__init__(message or f"Invalid value for {key}: {value!r}")
        self.key = key
        self.value = value


class InvalidSourceError(ConfigError):
    """Source archive is missing or not a regular file."""


class InvalidDestinationError(ConfigError):
    """Destination is unusable (e.g. an existing directory)."""


class UnknownLayoutError(ConfigError):
    """No layout could be resolved for an archive."""


class MainClassNotFoundError(ConfigError):
    """No single start class could be determined for a launcher layout."""


# =============================================================================
# COLLISION ERRORS
# =============================================================================


class CollisionError(BootpackError):
    """Two inputs claim the same destination. Upstream dependency set is broken."""

    default_category = ErrorCategory.COLLISION


class DuplicateLibraryError(CollisionError):
    """A library name was placed twice within one archive or library directory."""

    def __init__(self, name: str, message: str | None = None):
        super().__init__(message or f"Duplicate library {name}")
        self.context.library = name
        self.name = name


# =============================================================================
# STORAGE ERRORS
# =============================================================================


class StorageError(BootpackError):
    """Filesystem or archive I/O failed."""

    default_category = ErrorCategory.STORAGE


class SourceMissingError(StorageError):
    """Source path of a transfer does not exist."""


class DestinationExistsError(StorageError):
    """Destination of a transfer exists and cannot be replaced."""


class ArchiveError(StorageError):
    """Reading or writing a zip archive failed."""


# =============================================================================
# INTEGRITY ERRORS
# =============================================================================


class IntegrityError(BootpackError):
    """A copied file does not match its source (truncated or modified mid-copy)."""

    default_category = ErrorCategory.INTEGRITY

    def __init__(self, message: str, *, expected: int | None = None, actual: int | None = None):
        super().__init__(message)
        self.expected = expected
        self.actual = actual
        if expected is not None:
            self.context.metadata["expected_length"] = expected
        if actual is not None:
            self.context.metadata["actual_length"] = actual


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
    "MainClassNotFoundError",
    "MissingConfigError",
    "SourceMissingError",
    "StorageError",
    "UnknownLayoutError",
]
