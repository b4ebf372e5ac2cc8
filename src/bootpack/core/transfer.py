"""
Filesystem transfer primitives: copy, move and delete with safe fallbacks.

Moves always try an atomic ``os.rename`` first and only fall back to
copy-then-delete when the rename fails (different filesystems, locked
targets). A fallback that copies but cannot delete the source removes the
copy again and raises, so a caller never silently ends up with two copies.

Manifesto:
    The repackaging engine swaps archives in place. Whatever can go wrong
    half-way must be reported, never papered over: copies are length
    checked, directories cannot be moved into themselves, and quiet
    variants exist only for best-effort cleanup.

Guardrails:
    ❌ DON'T: Use ``delete_quietly`` / ``best_effort`` for primary work
    ✅ DO: Use them for cleanup that must never mask a successful result

    ❌ DON'T: Traverse through symlinks when deleting directories
    ✅ DO: Check ``is_symlink`` first and remove only the link

Tags:
    filesystem, copy, move, delete, atomic-rename, bootpack

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import os
from collections.abc import Callable
from pathlib import Path
from typing import Any, BinaryIO

from bootpack.core.errors import (
    DestinationExistsError,
    IntegrityError,
    SourceMissingError,
    StorageError,
)
from bootpack.core.logging import get_logger

logger = get_logger(__name__)

ONE_KB = 1024
ONE_MB = ONE_KB * ONE_KB

# Largest chunk handed to a single read/write pair while copying.
FILE_COPY_BUFFER_SIZE = ONE_MB * 30

PathFilter = Callable[[Path], bool]


def _canonical(path: Path) -> str:
    return os.path.realpath(path)


def _storage_error(message: str, src: Path | None = None, dest: Path | None = None, cause: BaseException | None = None) -> StorageError:
    error = StorageError(message, cause=cause)
    if src is not None:
        error.with_context(source=src)
    if dest is not None:
        error.with_context(destination=dest)
    return error


def _check_file_requirements(src: Path, dest: Path) -> None:
    if not src.exists():
        raise SourceMissingError(f"Source '{src}' does not exist").with_context(
            source=src, destination=dest
        )


def _ensure_directory(dest_dir: Path, create_dest_dir: bool) -> None:
    if not dest_dir.exists() and create_dest_dir:
        try:
            dest_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise _storage_error(
                f"Destination '{dest_dir}' directory cannot be created", dest=dest_dir, cause=exc
            ) from exc
    if not dest_dir.exists():
        raise _storage_error(
            f"Destination directory '{dest_dir}' does not exist [create_dest_dir={create_dest_dir}]",
            dest=dest_dir,
        )
    if not dest_dir.is_dir():
        raise _storage_error(f"Destination '{dest_dir}' is not a directory", dest=dest_dir)


# ---------------------------------------------------------------------------
# Move
# ---------------------------------------------------------------------------


def move_file(src: str | Path, dest: str | Path) -> None:
    """Move a file, renaming when possible and copying otherwise.

    An existing destination file is deleted first; an existing destination
    directory is an error.
    """
    src, dest = Path(src), Path(dest)
    if not src.exists():
        raise SourceMissingError(f"Source '{src}' does not exist").with_context(
            source=src, destination=dest
        )
    if src.is_dir():
        raise _storage_error(f"Source '{src}' is a directory", src, dest)
    if dest.is_dir():
        raise _storage_error(f"Destination '{dest}' is a directory", src, dest)
    if dest.exists():
        try:
            dest.unlink()
        except OSError as exc:
            raise DestinationExistsError(
                f"Destination '{dest}' already exists", cause=exc
            ).with_context(source=src, destination=dest) from exc

    try:
        os.rename(src, dest)
        return
    except OSError as exc:
        logger.debug("transfer.rename_failed", source=str(src), destination=str(dest), error=str(exc))

    copy_file(src, dest)
    try:
        src.unlink()
    except OSError as exc:
        delete_quietly(dest)
        raise _storage_error(
            f"Failed to delete original file '{src}' after copy to '{dest}'", src, dest, exc
        ) from exc


def move_file_into_directory(src: str | Path, dest_dir: str | Path, create_dest_dir: bool = True) -> Path:
    """Move ``src`` into ``dest_dir`` keeping its name. Returns the new path."""
    src, dest_dir = Path(src), Path(dest_dir)
    _ensure_directory(dest_dir, create_dest_dir)
    target = dest_dir / src.name
    move_file(src, target)
    return target


def move_directory(src: str | Path, dest: str | Path) -> None:
    """Move a directory tree, renaming when possible and copying otherwise.

    Moving a directory into itself or one of its descendants is rejected
    before anything on disk is touched.
    """
    src, dest = Path(src), Path(dest)
    if not src.exists():
        raise SourceMissingError(f"Source '{src}' does not exist").with_context(
            source=src, destination=dest
        )
    if not src.is_dir():
        raise _storage_error(f"Source '{src}' is not a directory", src, dest)
    if dest.exists():
        raise DestinationExistsError(f"Destination '{dest}' already exists").with_context(
            source=src, destination=dest
        )
    if _canonical(dest).startswith(_canonical(src) + os.sep):
        raise _storage_error(
            f"Cannot move directory: {src} to a subdirectory of itself: {dest}", src, dest
        )

    try:
        os.rename(src, dest)
        return
    except OSError as exc:
        logger.debug("transfer.rename_failed", source=str(src), destination=str(dest), error=str(exc))

    copy_directory(src, dest)
    delete_directory(src)
    if src.exists():
        raise _storage_error(
            f"Failed to delete original directory '{src}' after copy to '{dest}'", src, dest
        )


def move_directory_into_directory(src: str | Path, dest_dir: str | Path, create_dest_dir: bool = True) -> Path:
    """Move directory ``src`` into ``dest_dir`` keeping its name. Returns the new path."""
    src, dest_dir = Path(src), Path(dest_dir)
    _ensure_directory(dest_dir, create_dest_dir)
    target = dest_dir / src.name
    move_directory(src, target)
    return target


# ---------------------------------------------------------------------------
# Copy
# ---------------------------------------------------------------------------


def _transfer_bytes(input_fp: BinaryIO, output_fp: BinaryIO, size: int) -> int:
    """Copy up to ``size`` bytes in bounded chunks. Returns the bytes copied."""
    pos = 0
    while pos < size:
        chunk = input_fp.read(min(FILE_COPY_BUFFER_SIZE, size - pos))
        if not chunk:
            # source shrank after its size was taken
            break
        output_fp.write(chunk)
        pos += len(chunk)
    return pos


def _do_copy_file(src: Path, dest: Path, preserve_file_date: bool) -> None:
    if dest.exists() and dest.is_dir():
        raise _storage_error(f"Destination '{dest}' exists but is a directory", src, dest)

    try:
        with open(src, "rb") as input_fp, open(dest, "wb") as output_fp:
            size = os.fstat(input_fp.fileno()).st_size
            _transfer_bytes(input_fp, output_fp, size)
    except OSError as exc:
        raise _storage_error(f"Failed to copy '{src}' to '{dest}'", src, dest, exc) from exc

    src_len = src.stat().st_size
    dest_len = dest.stat().st_size
    if src_len != dest_len:
        raise IntegrityError(
            f"Failed to copy full contents from '{src}' to '{dest}' "
            f"Expected length: {src_len} Actual: {dest_len}",
            expected=src_len,
            actual=dest_len,
        ).with_context(source=src, destination=dest)

    if preserve_file_date:
        stat = src.stat()
        os.utime(dest, ns=(stat.st_atime_ns, stat.st_mtime_ns))


def copy_file(src: str | Path, dest: str | Path, preserve_file_date: bool = True) -> None:
    """Copy a file, creating the destination's parent directories.

    Raises ``IntegrityError`` when the copy's length differs from the source.
    """
    src, dest = Path(src), Path(dest)
    _check_file_requirements(src, dest)
    if src.is_dir():
        raise _storage_error(f"Source '{src}' exists but is a directory", src, dest)
    if _canonical(src) == _canonical(dest):
        raise _storage_error(f"Source '{src}' and destination '{dest}' are the same", src, dest)

    parent = dest.parent
    try:
        parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise _storage_error(f"Destination '{parent}' directory cannot be created", src, dest, exc) from exc
    if dest.exists() and not os.access(dest, os.W_OK):
        raise _storage_error(f"Destination '{dest}' exists but is read-only", src, dest)

    _do_copy_file(src, dest, preserve_file_date)


def copy_file_into_directory(src: str | Path, dest_dir: str | Path, create_dest_dir: bool = True) -> Path:
    """Copy ``src`` into ``dest_dir`` keeping its name. Returns the new path."""
    src, dest_dir = Path(src), Path(dest_dir)
    _ensure_directory(dest_dir, create_dest_dir)
    target = dest_dir / src.name
    copy_file(src, target)
    return target


def _list_children(directory: Path, path_filter: PathFilter | None) -> list[Path]:
    try:
        children = sorted(directory.iterdir())
    except OSError as exc:
        raise _storage_error(f"Failed to list contents of {directory}", directory, cause=exc) from exc
    if path_filter is not None:
        children = [child for child in children if path_filter(child)]
    return children


def _do_copy_directory(
    src_dir: Path,
    dest_dir: Path,
    path_filter: PathFilter | None,
    preserve_file_date: bool,
    exclusions: set[str],
) -> None:
    children = _list_children(src_dir, path_filter)
    if dest_dir.exists():
        if not dest_dir.is_dir():
            raise _storage_error(f"Destination '{dest_dir}' exists but is not a directory", src_dir, dest_dir)
    else:
        try:
            dest_dir.mkdir(parents=True)
        except OSError as exc:
            if not dest_dir.is_dir():
                raise _storage_error(
                    f"Destination '{dest_dir}' directory cannot be created", src_dir, dest_dir, exc
                ) from exc
    if not os.access(dest_dir, os.W_OK):
        raise _storage_error(f"Destination '{dest_dir}' cannot be written to", src_dir, dest_dir)

    for child in children:
        if _canonical(child) in exclusions:
            continue
        target = dest_dir / child.name
        if child.is_dir():
            _do_copy_directory(child, target, path_filter, preserve_file_date, exclusions)
        else:
            _do_copy_file(child, target, preserve_file_date)

    # Last, since writing children changes the directory's own mtime.
    if preserve_file_date:
        stat = src_dir.stat()
        os.utime(dest_dir, ns=(stat.st_atime_ns, stat.st_mtime_ns))


def copy_directory(
    src_dir: str | Path,
    dest_dir: str | Path,
    preserve_file_date: bool = True,
    path_filter: PathFilter | None = None,
) -> None:
    """Copy a directory tree into ``dest_dir`` (merged when it exists).

    When ``dest_dir`` lies inside ``src_dir`` the copy's own output is
    excluded from the walk.
    """
    src_dir, dest_dir = Path(src_dir), Path(dest_dir)
    _check_file_requirements(src_dir, dest_dir)
    if not src_dir.is_dir():
        raise _storage_error(f"Source '{src_dir}' exists but is not a directory", src_dir, dest_dir)
    if _canonical(src_dir) == _canonical(dest_dir):
        raise _storage_error(
            f"Source '{src_dir}' and destination '{dest_dir}' are the same", src_dir, dest_dir
        )

    exclusions: set[str] = set()
    if _canonical(dest_dir).startswith(_canonical(src_dir)):
        for child in _list_children(src_dir, path_filter):
            exclusions.add(_canonical(dest_dir / child.name))

    _do_copy_directory(src_dir, dest_dir, path_filter, preserve_file_date, exclusions)


def copy_directory_into_directory(src_dir: str | Path, dest_dir: str | Path) -> Path:
    """Copy directory ``src_dir`` into ``dest_dir`` keeping its name. Returns the new path."""
    src_dir, dest_dir = Path(src_dir), Path(dest_dir)
    if src_dir.exists() and not src_dir.is_dir():
        raise _storage_error(f"Source '{src_dir}' is not a directory", src_dir, dest_dir)
    if dest_dir.exists() and not dest_dir.is_dir():
        raise _storage_error(f"Destination '{dest_dir}' is not a directory", src_dir, dest_dir)
    target = dest_dir / src_dir.name
    copy_directory(src_dir, target)
    return target


# ---------------------------------------------------------------------------
# Delete
# ---------------------------------------------------------------------------


def is_symlink(path: str | Path) -> bool:
    """True when ``path`` is a symbolic link, including a broken one.

    The path is re-anchored in its canonical parent directory and its
    canonical form compared with its absolute form; a mismatch means a link.
    """
    path = Path(path)
    if path.parent == path:
        in_canonical_dir = path
    else:
        in_canonical_dir = Path(_canonical(path.parent)) / path.name

    if Path(_canonical(in_canonical_dir)) != in_canonical_dir.absolute():
        return True
    return _is_broken_symlink(path)


def _is_broken_symlink(path: Path) -> bool:
    if path.exists():
        return False
    canonical = Path(_canonical(path))
    parent = canonical.parent
    if not parent.exists():
        return False
    # A dangling link still shows up in its parent's listing.
    try:
        return any(child == canonical for child in parent.iterdir())
    except OSError:
        return False


def force_delete(path: str | Path) -> None:
    """Delete a file, or a directory tree, raising on failure."""
    path = Path(path)
    if path.is_dir():
        delete_directory(path)
        return
    present = path.exists() or path.is_symlink()
    try:
        path.unlink()
    except FileNotFoundError as exc:
        if not present:
            raise SourceMissingError(f"File does not exist: {path}", cause=exc).with_context(
                source=path
            ) from exc
        raise _storage_error(f"Unable to delete file: {path}", path, cause=exc) from exc
    except OSError as exc:
        raise _storage_error(f"Unable to delete file: {path}", path, cause=exc) from exc


def clean_directory(directory: str | Path) -> None:
    """Delete everything inside ``directory`` but keep the directory itself.

    Keeps going after a failed child and raises the last failure at the end.
    """
    directory = Path(directory)
    if not directory.exists():
        raise _storage_error(f"{directory} does not exist", directory)
    if not directory.is_dir():
        raise _storage_error(f"{directory} is not a directory", directory)

    failure: StorageError | None = None
    for child in _list_children(directory, None):
        try:
            force_delete(child)
        except StorageError as exc:
            failure = exc
    if failure is not None:
        raise failure


def delete_directory(directory: str | Path) -> None:
    """Delete a directory tree. A symlinked directory loses only its link."""
    directory = Path(directory)
    link = is_symlink(directory)
    if not directory.exists() and not link:
        return

    try:
        if link:
            directory.unlink()
        else:
            clean_directory(directory)
            directory.rmdir()
    except OSError as exc:
        raise _storage_error(f"Unable to delete directory {directory}.", directory, cause=exc) from exc


def delete_quietly(path: str | Path | None) -> bool:
    """Delete a file or directory tree, never raising. Returns True when removed."""
    if path is None:
        return False
    path = Path(path)
    try:
        if path.is_dir() and not is_symlink(path):
            clean_directory(path)
    except (StorageError, OSError) as exc:
        logger.debug("transfer.clean_failed", path=str(path), error=str(exc))

    try:
        if path.is_dir() and not path.is_symlink():
            path.rmdir()
        else:
            path.unlink()
        return True
    except OSError as exc:
        logger.debug("transfer.delete_failed", path=str(path), error=str(exc))
        return False


def best_effort(action: Callable[..., Any], *args: Any, description: str, **kwargs: Any) -> bool:
    """Run a cleanup step whose failure must never override a result.

    Returns True when ``action`` completed; any error is logged and dropped.
    """
    try:
        action(*args, **kwargs)
        return True
    except Exception as exc:  # noqa: BLE001
        logger.warning("cleanup.failed", step=description, error=str(exc))
        return False


__all__ = [
    "FILE_COPY_BUFFER_SIZE",
    "best_effort",
    "clean_directory",
    "copy_directory",
    "copy_directory_into_directory",
    "copy_file",
    "copy_file_into_directory",
    "delete_directory",
    "delete_quietly",
    "force_delete",
    "is_symlink",
    "move_directory",
    "move_directory_into_directory",
    "move_file",
    "move_file_into_directory",
]
