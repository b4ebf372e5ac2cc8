"""
Archive writing for repackaged jars.

``ArchiveWriter`` wraps ``zipfile.ZipFile`` with the bookkeeping a
repackaged archive needs: every entry name written is remembered, parent
directory entries are synthesized on demand, nested libraries are stored
uncompressed and an optional launch script is written ahead of the zip
data.

Architecture:
    ::

        ArchiveWriter(destination, launch_script)
            │  launch script bytes (optional, chmod +x on close)
            ▼
        write_manifest ─► write_nested_library* ─► write_entries(source, transformer)
                       ─► write_nested_library* ─► write_loader_classes

Examples:
    >>> with ArchiveWriter(dest) as writer:
    ...     writer.write_manifest(manifest)
    ...     with zipfile.ZipFile(source) as zf:
    ...         writer.write_entries(zf, RenamingEntryTransformer("BOOT-INF/classes/"))

Tags:
    zip, jar, archive-writer, nested-library, bootpack

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import hashlib
import os
import shutil
import stat
import struct
import time
import zipfile
from collections.abc import Callable, Iterable
from pathlib import Path
from types import TracebackType
from typing import IO

from bootpack.core.errors import ArchiveError, DuplicateLibraryError
from bootpack.core.logging import get_logger
from bootpack.packaging.library import Library
from bootpack.packaging.manifest import MANIFEST_NAME, Manifest

logger = get_logger(__name__)

EntryTransformer = Callable[[zipfile.ZipInfo], zipfile.ZipInfo | None]

UNPACK_MARKER = "UNPACK:"
INDEX_LIST = "META-INF/INDEX.LIST"
AOP_XML = "META-INF/aop.xml"

_BUFFER_SIZE = 32 * 1024
_ZIP64_EXTRA_ID = 0x0001
_MIN_DATE_TIME = (1980, 1, 1, 0, 0, 0)
_MAX_DATE_TIME = (2107, 12, 31, 23, 59, 58)


def _date_time(timestamp: float) -> tuple[int, int, int, int, int, int]:
    """Local time clamped to the range a zip entry can hold."""
    local = tuple(time.localtime(timestamp)[:6])
    return min(_MAX_DATE_TIME, max(_MIN_DATE_TIME, local))  # type: ignore[return-value]


def _strip_zip64_extra(extra: bytes) -> bytes:
    """Drop zip64 extra fields; zipfile writes its own when it needs them."""
    kept = bytearray()
    pos = 0
    while pos + 4 <= len(extra):
        header_id, size = struct.unpack("<HH", extra[pos : pos + 4])
        end = pos + 4 + size
        if header_id != _ZIP64_EXTRA_ID:
            kept += extra[pos:end]
        pos = end
    return bytes(kept)


def sha1_digest(path: str | Path) -> str:
    digest = hashlib.sha1()
    with open(path, "rb") as fp:
        for chunk in iter(lambda: fp.read(_BUFFER_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


class RenamingEntryTransformer:
    """Relocate source entries under ``prefix``.

    Entries under ``META-INF/`` (except ``META-INF/aop.xml``) and entries
    already under the prefix root keep their names; ``META-INF/INDEX.LIST``
    is dropped since its offsets are wrong once entries move.
    """

    def __init__(self, prefix: str):
        if not prefix.endswith("/"):
            prefix += "/"
        self.prefix = prefix
        self.root = prefix.split("/", 1)[0] + "/"

    def __call__(self, info: zipfile.ZipInfo) -> zipfile.ZipInfo | None:
        name = info.filename
        if name == INDEX_LIST:
            return None
        if (name.startswith("META-INF/") and name != AOP_XML) or name.startswith(self.root):
            return info
        renamed = zipfile.ZipInfo(self.prefix + name, date_time=info.date_time)
        renamed.compress_type = info.compress_type
        renamed.comment = info.comment
        renamed.extra = info.extra
        renamed.external_attr = info.external_attr
        renamed.create_system = info.create_system
        renamed.file_size = info.file_size
        return renamed


def identity_transformer(info: zipfile.ZipInfo) -> zipfile.ZipInfo | None:
    return info


class ArchiveWriter:
    """Write a repackaged archive.

    Entry names are tracked for the lifetime of the writer: writing a name
    twice is skipped, except for nested libraries where it raises
    ``DuplicateLibraryError``.
    """

    def __init__(self, destination: str | Path, launch_script: bytes | None = None):
        self.destination = Path(destination)
        self.launch_script = launch_script
        self._fp: IO[bytes] | None = None
        self._zip: zipfile.ZipFile | None = None
        self._written: set[str] = set()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def open(self) -> ArchiveWriter:
        try:
            self._fp = open(self.destination, "wb")
            if self.launch_script:
                self._fp.write(self.launch_script)
            self._zip = zipfile.ZipFile(self._fp, "w", compression=zipfile.ZIP_DEFLATED)
        except OSError as exc:
            self._close_fp()
            raise ArchiveError(f"Unable to create archive {self.destination}", cause=exc).with_context(
                destination=self.destination
            ) from exc
        return self

    def close(self) -> None:
        try:
            if self._zip is not None:
                self._zip.close()
        finally:
            self._zip = None
            self._close_fp()
        if self.launch_script:
            mode = self.destination.stat().st_mode
            os.chmod(self.destination, mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)

    def _close_fp(self) -> None:
        if self._fp is not None:
            self._fp.close()
            self._fp = None

    def __enter__(self) -> ArchiveWriter:
        return self.open()

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if exc_type is None:
            self.close()
            return
        # Release handles without masking the original failure.
        try:
            if self._zip is not None:
                self._zip.close()
        except (OSError, ValueError, zipfile.BadZipFile):
            pass
        finally:
            self._zip = None
            self._close_fp()

    @property
    def written(self) -> frozenset[str]:
        return frozenset(self._written)

    def _archive(self) -> zipfile.ZipFile:
        if self._zip is None:
            raise ArchiveError("Archive writer is not open").with_context(destination=self.destination)
        return self._zip

    # ------------------------------------------------------------------
    # Entries
    # ------------------------------------------------------------------

    def _write_parent_directories(self, name: str) -> None:
        parts = name.rstrip("/").split("/")[:-1]
        path = ""
        for part in parts:
            path += part + "/"
            if path not in self._written:
                self._write_directory(path)

    def _write_directory(self, name: str, date_time: tuple[int, ...] | None = None) -> None:
        info = zipfile.ZipInfo(name, date_time=date_time or _date_time(time.time()))
        info.external_attr = (0o40755 << 16) | 0x10
        self._archive().writestr(info, b"")
        self._written.add(name)

    def write_stream(self, info: zipfile.ZipInfo, stream: IO[bytes]) -> bool:
        """Write an entry from ``stream``. Returns False when the name was already written."""
        name = info.filename
        if name in self._written:
            logger.debug("archive.entry_skipped", entry=name)
            return False
        self._write_parent_directories(name)
        if info.is_dir():
            self._archive().writestr(info, b"")
        else:
            with self._archive().open(info, "w") as target:
                shutil.copyfileobj(stream, target, _BUFFER_SIZE)
        self._written.add(name)
        return True

    def write_entry(self, name: str, data: bytes, *, stored: bool = False) -> bool:
        """Write an in-memory entry (used by custom loader writers)."""
        info = zipfile.ZipInfo(name, date_time=_date_time(time.time()))
        info.compress_type = zipfile.ZIP_STORED if stored else zipfile.ZIP_DEFLATED
        info.external_attr = 0o644 << 16
        if name in self._written:
            logger.debug("archive.entry_skipped", entry=name)
            return False
        self._write_parent_directories(name)
        self._archive().writestr(info, data)
        self._written.add(name)
        return True

    def write_manifest(self, manifest: Manifest) -> None:
        self.write_entry(MANIFEST_NAME, manifest.to_bytes())

    def write_entries(
        self, source: zipfile.ZipFile, transformer: EntryTransformer = identity_transformer
    ) -> int:
        """Copy every source entry through ``transformer``. Returns the count written."""
        count = 0
        for original in source.infolist():
            if original.filename == MANIFEST_NAME:
                # The repackaged manifest was written first.
                continue
            info = transformer(original)
            if info is None:
                logger.debug("archive.entry_dropped", entry=original.filename)
                continue
            target = self._copy_info(info)
            if info.is_dir():
                written = self.write_stream(target, _EMPTY)
            else:
                with source.open(original) as stream:
                    written = self.write_stream(target, stream)
            count += int(written)
        return count

    @staticmethod
    def _copy_info(info: zipfile.ZipInfo) -> zipfile.ZipInfo:
        copy = zipfile.ZipInfo(info.filename, date_time=max(_MIN_DATE_TIME, info.date_time))
        copy.compress_type = info.compress_type
        copy.comment = info.comment
        copy.extra = _strip_zip64_extra(info.extra)
        copy.external_attr = info.external_attr
        copy.create_system = info.create_system
        copy.file_size = info.file_size
        return copy

    def write_nested_library(self, location: str, library: Library) -> str:
        """Store ``library`` uncompressed at ``location + library.name``."""
        name = location + library.name
        if name in self._written:
            raise DuplicateLibraryError(library.name).with_context(
                entry=name, destination=self.destination
            )
        file_stat = library.file.stat()
        info = zipfile.ZipInfo(name, date_time=_date_time(file_stat.st_mtime))
        info.compress_type = zipfile.ZIP_STORED
        info.external_attr = 0o644 << 16
        info.file_size = file_stat.st_size
        if library.unpack_required:
            info.comment = (UNPACK_MARKER + sha1_digest(library.file)).encode("utf-8")
        with open(library.file, "rb") as stream:
            self.write_stream(info, stream)
        logger.debug("library.embedded", library=library.name, entry=name)
        return name

    def write_nested_libraries(self, location_for: Callable[[Library], str | None], libraries: Iterable[Library]) -> int:
        count = 0
        for library in libraries:
            location = location_for(library)
            if location is None:
                continue
            self.write_nested_library(location, library)
            count += 1
        return count

    def write_loader_classes(self, loader_archive: str | Path) -> int:
        """Append the ``.class`` entries of ``loader_archive``."""
        count = 0
        with zipfile.ZipFile(loader_archive) as loader:
            for info in loader.infolist():
                if not info.filename.endswith(".class"):
                    continue
                with loader.open(info) as stream:
                    count += int(self.write_stream(self._copy_info(info), stream))
        logger.debug("archive.loader_written", loader=str(loader_archive), classes=count)
        return count


class _EmptyStream:
    def read(self, size: int = -1) -> bytes:
        return b""


_EMPTY: IO[bytes] = _EmptyStream()  # type: ignore[assignment]


__all__ = [
    "AOP_XML",
    "ArchiveWriter",
    "EntryTransformer",
    "INDEX_LIST",
    "RenamingEntryTransformer",
    "UNPACK_MARKER",
    "identity_transformer",
    "sha1_digest",
]
