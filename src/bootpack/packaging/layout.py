"""
Archive layouts: where classes, libraries and loader classes live.

A ``Layout`` is a tagged variant over ``LayoutKind``. It carries only the
fields the repackager needs, so the engine dispatches on values instead of
inspecting types.

Architecture:
    ::

        resolve_layout(source, layout=?, factory=?)
            │
            ├── explicit Layout / LayoutKind ──────────► Layout
            ├── named factory (register_layout_factory) ► factory(source)
            └── layout_for_file(source)
                   .jar → JAR   .war → WAR   .zip / dir → ZIP

    ========  ====================  ==================  ==============
    Kind      Launcher              Libraries           Relocation
    ========  ====================  ==================  ==============
    JAR       JarLauncher           BOOT-INF/lib/       BOOT-INF/classes/
    WAR       WarLauncher           WEB-INF/lib/ (+     none
                                    lib-provided/)
    ZIP/DIR   PropertiesLauncher    BOOT-INF/lib/       BOOT-INF/classes/
    NONE      none                  BOOT-INF/lib/       BOOT-INF/classes/
    MODULE    none                  lib/ (no provided)  none
    ========  ====================  ==================  ==============

Tags:
    layout, tagged-variant, registry, bootpack

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

from bootpack.core.errors import UnknownLayoutError
from bootpack.core.logging import get_logger
from bootpack.packaging.library import LibraryScope

if TYPE_CHECKING:
    from bootpack.packaging.archive import ArchiveWriter

logger = get_logger(__name__)

LoaderWriter = Callable[["ArchiveWriter"], None]
LayoutFactory = Callable[[Path], "Layout"]

LOADER_PACKAGE = "org.springframework.boot.loader"


class LayoutKind(str, Enum):
    """Built-in layout variants."""

    JAR = "JAR"
    WAR = "WAR"
    ZIP = "ZIP"
    DIR = "DIR"
    MODULE = "MODULE"
    NONE = "NONE"


@dataclass(frozen=True)
class Layout:
    """Structural rules for one destination archive.

    ``repackaged_classes_location`` is the relocation prefix for source
    entries, or ``None`` when entries keep their names. A library location of
    ``None`` means libraries of that scope are not packaged at all.
    """

    kind: LayoutKind
    launcher_class_name: str | None
    classes_location: str
    library_location: str | None
    provided_library_location: str | None
    repackaged_classes_location: str | None = None
    is_executable: bool = True
    custom_loader_writer: LoaderWriter | None = None

    @property
    def relocates_classes(self) -> bool:
        return self.repackaged_classes_location is not None

    def library_destination(self, name: str, scope: LibraryScope) -> str | None:
        """Directory (with trailing slash) a library of ``scope`` is written to."""
        match LibraryScope(scope):
            case LibraryScope.PROVIDED:
                return self.provided_library_location
            case _:
                return self.library_location

    def with_loader_writer(self, writer: LoaderWriter) -> Layout:
        return replace(self, custom_loader_writer=writer)


JAR_LAYOUT = Layout(
    kind=LayoutKind.JAR,
    launcher_class_name=f"{LOADER_PACKAGE}.JarLauncher",
    classes_location="",
    library_location="BOOT-INF/lib/",
    provided_library_location="BOOT-INF/lib/",
    repackaged_classes_location="BOOT-INF/classes/",
)

WAR_LAYOUT = Layout(
    kind=LayoutKind.WAR,
    launcher_class_name=f"{LOADER_PACKAGE}.WarLauncher",
    classes_location="WEB-INF/classes/",
    library_location="WEB-INF/lib/",
    provided_library_location="WEB-INF/lib-provided/",
)

ZIP_LAYOUT = replace(
    JAR_LAYOUT, kind=LayoutKind.ZIP, launcher_class_name=f"{LOADER_PACKAGE}.PropertiesLauncher"
)

DIR_LAYOUT = replace(ZIP_LAYOUT, kind=LayoutKind.DIR)

NONE_LAYOUT = replace(
    ZIP_LAYOUT, kind=LayoutKind.NONE, launcher_class_name=None, is_executable=False
)

MODULE_LAYOUT = Layout(
    kind=LayoutKind.MODULE,
    launcher_class_name=None,
    classes_location="",
    library_location="lib/",
    provided_library_location=None,
    is_executable=False,
)

LAYOUTS: dict[LayoutKind, Layout] = {
    LayoutKind.JAR: JAR_LAYOUT,
    LayoutKind.WAR: WAR_LAYOUT,
    LayoutKind.ZIP: ZIP_LAYOUT,
    LayoutKind.DIR: DIR_LAYOUT,
    LayoutKind.MODULE: MODULE_LAYOUT,
    LayoutKind.NONE: NONE_LAYOUT,
}


def get_layout(kind: LayoutKind | str) -> Layout:
    """Return the built-in layout for ``kind`` (case-insensitive name)."""
    if isinstance(kind, LayoutKind):
        return LAYOUTS[kind]
    try:
        return LAYOUTS[LayoutKind(kind.upper())]
    except ValueError as exc:
        raise UnknownLayoutError(
            f"Unknown layout {kind!r}; expected one of {', '.join(k.value for k in LayoutKind)}",
            cause=exc,
        ) from exc


def layout_for_file(file: str | Path) -> Layout:
    """Infer a layout from an archive's suffix (or a directory)."""
    path = Path(file)
    if path.is_dir():
        return ZIP_LAYOUT
    match path.suffix.lower():
        case ".jar":
            return JAR_LAYOUT
        case ".war":
            return WAR_LAYOUT
        case ".zip":
            return ZIP_LAYOUT
    raise UnknownLayoutError(f"Unable to deduce layout for '{path}'").with_context(source=path)


# =============================================================================
# Layout factory registry
# =============================================================================

_factories: dict[str, LayoutFactory] = {}
_loaded: bool = False


def register_layout_factory(name: str) -> Callable[[LayoutFactory], LayoutFactory]:
    """Decorator to register a layout factory under ``name``."""

    def decorator(factory: LayoutFactory) -> LayoutFactory:
        _ensure_loaded()
        if name in _factories:
            raise ValueError(f"Layout factory '{name}' is already registered")
        _factories[name] = factory
        logger.debug("layout_factory.registered", name=name, factory=getattr(factory, "__name__", repr(factory)))
        return factory

    return decorator


def _ensure_loaded() -> None:
    global _loaded
    if not _loaded:
        _loaded = True
        _factories.setdefault("default", layout_for_file)


def get_layout_factory(name: str) -> LayoutFactory:
    """Get a layout factory by name."""
    _ensure_loaded()
    if name not in _factories:
        available = ", ".join(sorted(_factories))
        raise UnknownLayoutError(f"Layout factory '{name}' not found. Available: {available}")
    return _factories[name]


def list_layout_factories() -> list[str]:
    """List all registered layout factory names."""
    _ensure_loaded()
    return sorted(_factories)


def clear_layout_factories() -> None:
    """Clear registry (for testing). The ``default`` factory comes back on next use."""
    global _loaded
    _factories.clear()
    _loaded = False


def resolve_layout(
    source: str | Path,
    layout: Layout | LayoutKind | str | None = None,
    factory: str | None = None,
) -> Layout:
    """Resolve the single layout for one operation.

    An explicit layout wins, then a named factory, then suffix inference.
    """
    if isinstance(layout, Layout):
        return layout
    if layout is not None:
        return get_layout(layout)
    if factory is not None:
        resolved = get_layout_factory(factory)(Path(source))
        if not isinstance(resolved, Layout):
            raise UnknownLayoutError(
                f"Layout factory '{factory}' returned {type(resolved).__name__}, not a Layout"
            )
        return resolved
    return layout_for_file(source)


__all__ = [
    "DIR_LAYOUT",
    "JAR_LAYOUT",
    "LAYOUTS",
    "Layout",
    "LayoutFactory",
    "LayoutKind",
    "LoaderWriter",
    "MODULE_LAYOUT",
    "NONE_LAYOUT",
    "WAR_LAYOUT",
    "ZIP_LAYOUT",
    "clear_layout_factories",
    "get_layout",
    "get_layout_factory",
    "layout_for_file",
    "list_layout_factories",
    "register_layout_factory",
    "resolve_layout",
]
