"""Libraries handed to the repackager and their classification.

A ``Library`` is one resolved dependency: a file on disk, the entry name it
gets inside the destination, its scope and whether it must stay unpacked.
``partition_libraries`` routes the set into the unpack and standard groups
the archive writer emits before and after the source entries.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from bootpack.core.logging import get_logger

logger = get_logger(__name__)

# Local file header signature of a zip archive.
ZIP_FILE_HEADER = b"PK\x03\x04"


class LibraryScope(str, Enum):
    """Scope of a library; layouts may place each scope differently."""

    COMPILE = "compile"
    RUNTIME = "runtime"
    PROVIDED = "provided"
    CUSTOM = "custom"


@dataclass(frozen=True)
class Library:
    """A single library file destined for the repackaged archive.

    ``name`` defaults to the file name and is used as the nested entry name
    and as the file name in an exploded library directory.
    """

    file: Path
    scope: LibraryScope = LibraryScope.COMPILE
    name: str = ""
    unpack_required: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "file", Path(self.file))
        object.__setattr__(self, "scope", LibraryScope(self.scope))
        if not self.name:
            object.__setattr__(self, "name", self.file.name)


@dataclass(frozen=True)
class PartitionedLibraries:
    """Libraries split into the two ordered groups."""

    unpack: tuple[Library, ...] = field(default_factory=tuple)
    standard: tuple[Library, ...] = field(default_factory=tuple)
    dropped: tuple[Library, ...] = field(default_factory=tuple)

    def __iter__(self):
        yield from self.unpack
        yield from self.standard

    def __len__(self) -> int:
        return len(self.unpack) + len(self.standard)


def is_zip(path: str | Path) -> bool:
    """True when the file starts with the zip local header signature."""
    try:
        with open(path, "rb") as fp:
            return fp.read(len(ZIP_FILE_HEADER)) == ZIP_FILE_HEADER
    except OSError:
        return False


def partition_libraries(libraries: Iterable[Library]) -> PartitionedLibraries:
    """Split libraries into (unpack, standard) groups, keeping input order.

    Files that are not zip archives cannot be nested and are dropped.
    """
    unpack: list[Library] = []
    standard: list[Library] = []
    dropped: list[Library] = []
    for library in libraries:
        if not is_zip(library.file):
            logger.debug("library.not_archive", library=library.name, file=str(library.file))
            dropped.append(library)
            continue
        if library.unpack_required:
            unpack.append(library)
        else:
            standard.append(library)
    return PartitionedLibraries(tuple(unpack), tuple(standard), tuple(dropped))


__all__ = [
    "Library",
    "LibraryScope",
    "PartitionedLibraries",
    "ZIP_FILE_HEADER",
    "is_zip",
    "partition_libraries",
]
