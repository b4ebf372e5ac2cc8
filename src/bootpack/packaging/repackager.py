"""
Archive repackaging engine.

Turns a plain compiled archive into a self-runnable one: dependencies are
either embedded as nested archives or copied into a sibling ``lib/``
directory, source entries are (optionally) relocated, and a manifest with
the launcher, start class and version marker is synthesized.

Manifesto:
    Each call is self-contained. ``RepackageOptions`` is an immutable value
    passed in whole; no state survives between calls, so the same engine
    can repackage many archives without cross-talk.

    - **Idempotent:** An archive that already carries the version marker is
      left untouched
    - **Fail before writing:** Every dependency placement is planned and
      checked for collisions before the destination is created
    - **Restore on failure:** A failed run puts the original back and removes
      what it wrote
    - **Best-effort cleanup:** Cleanup failures are logged, never raised

Architecture:
    ::

        repackage(source, destination, libraries, options, launch_script)
          1. read_manifest(source) ─ marker present? ─► RepackageReport(skipped)
          2. resolve_layout(explicit > factory > suffix)
          3. partition_libraries ─► plan placements (DuplicateLibraryError)
          4. destination == source ─► rename source to <source>.original
          5. build manifest (Start-Class / Class-Path / Spring-Boot-*)
          6. ArchiveWriter:
               manifest ─► unpack group ─► source entries ─► standard group
               ─► loader classes
             (exploded mode copies libraries to <dest parent>/lib instead)
          7. dist_dir: move archive (and lib/) into it
          8. best-effort cleanup of the backup

Examples:
    >>> from bootpack.packaging import Library, RepackageOptions, repackage
    >>> report = repackage(
    ...     "target/app.jar",
    ...     libraries=[Library("deps/commons-lang3-3.12.0.jar")],
    ...     options=RepackageOptions(loader_archive="spring-boot-loader.jar"),
    ... )
    >>> report.start_class
    'com.example.App'

Tags:
    repackage, jar, manifest, nested-library, exploded, bootpack

Doc-Types:
    - API Reference
    - Architecture Documentation
"""

from __future__ import annotations

import os
import time
import zipfile
from collections.abc import Callable, Iterable, Sequence
from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any

from bootpack.core.errors import (
    ArchiveError,
    BootpackError,
    DuplicateLibraryError,
    InvalidConfigError,
    InvalidDestinationError,
    InvalidSourceError,
    MainClassNotFoundError,
    StorageError,
)
from bootpack.core.logging import LogContext, get_logger
from bootpack.core.transfer import (
    best_effort,
    copy_file,
    delete_directory,
    delete_quietly,
    force_delete,
    move_directory,
    move_file_into_directory,
)
from bootpack.packaging.archive import ArchiveWriter, RenamingEntryTransformer, identity_transformer
from bootpack.packaging.launch_script import LaunchScript
from bootpack.packaging.layout import Layout, LayoutKind, resolve_layout
from bootpack.packaging.library import Library, LibraryScope, PartitionedLibraries, partition_libraries
from bootpack.packaging.main_class import (
    DEFAULT_ANNOTATION,
    MainClassTimeoutListener,
    find_main_class_with_timeout_warning,
)
from bootpack.packaging.manifest import (
    BOOT_CLASSES,
    BOOT_LIB,
    BOOT_VERSION,
    CLASS_PATH,
    MAIN_CLASS,
    MANIFEST_NAME,
    START_CLASS,
    Manifest,
)

logger = get_logger(__name__)

BACKUP_SUFFIX = ".original"
UNKNOWN_VERSION = "unknown"


class PackagingMode(str, Enum):
    """Where dependencies go: inside the archive or beside it."""

    EMBEDDED = "embedded"
    EXPLODED = "exploded"


@dataclass(frozen=True)
class RepackageOptions:
    """Immutable configuration for one repackage call.

    Fields
    ──────
    main_class              : Explicit start class (beats the manifest and the scan)
    backup_source           : Keep ``<source>.original`` after an in-place run
    layout                  : Explicit layout (``Layout`` or kind name)
    layout_factory          : Registered layout factory name, used when no layout is given
    mode                    : EMBEDDED (nested libraries) or EXPLODED (sibling lib dir)
    dist_dir                : Directory the finished archive (and lib dir) move into
    framework_version       : Value for ``Spring-Boot-Version``
    library_directory       : Name of the exploded library directory
    loader_archive          : Archive whose classes bootstrap executable layouts
    main_class_annotation   : Annotation preferred when several main classes exist
    version_library_prefix  : Library name prefix the version token is read from
    timeout_listeners       : Called with (elapsed_seconds, main_class) after a slow scan
    clock                   : Monotonic clock timing the scan
    """

    main_class: str | None = None
    backup_source: bool = True
    layout: Layout | LayoutKind | str | None = None
    layout_factory: str | None = None
    mode: PackagingMode = PackagingMode.EMBEDDED
    dist_dir: Path | None = None
    framework_version: str | None = None
    library_directory: str = "lib"
    loader_archive: Path | None = None
    main_class_annotation: str | None = DEFAULT_ANNOTATION
    version_library_prefix: str = "spring-boot-"
    timeout_listeners: tuple[MainClassTimeoutListener, ...] = ()
    clock: Callable[[], float] = time.monotonic

    def __post_init__(self) -> None:
        object.__setattr__(self, "mode", PackagingMode(self.mode))
        if self.dist_dir is not None:
            object.__setattr__(self, "dist_dir", Path(self.dist_dir))
        if self.loader_archive is not None:
            object.__setattr__(self, "loader_archive", Path(self.loader_archive))
        object.__setattr__(self, "timeout_listeners", tuple(self.timeout_listeners))
        if not self.library_directory.strip("/"):
            raise InvalidConfigError("library_directory", self.library_directory)
        object.__setattr__(self, "library_directory", self.library_directory.strip("/"))


@dataclass
class RepackageReport:
    """What a repackage call produced."""

    source: Path
    destination: Path
    mode: PackagingMode
    skipped: bool = False
    layout: LayoutKind | None = None
    backup: Path | None = None
    library_dir: Path | None = None
    main_class: str | None = None
    start_class: str | None = None
    framework_version: str | None = None
    class_path: str | None = None
    libraries: list[str] = field(default_factory=list)
    libraries_dropped: int = 0
    entries_written: int = 0
    loader_classes: int = 0

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        for key, value in data.items():
            if isinstance(value, Path):
                data[key] = str(value)
            elif isinstance(value, Enum):
                data[key] = value.value
        return data


@dataclass
class _CopiedLibraries:
    """Exploded library files put on disk by the current run."""

    directory: Path
    created_directory: bool = False
    files: list[Path] = field(default_factory=list)

    def remove(self) -> None:
        for path in reversed(self.files):
            best_effort(delete_quietly, path, description="delete copied library")
        if self.created_directory:
            best_effort(delete_quietly, self.directory, description="delete library directory")


@dataclass(frozen=True)
class _Placement:
    library: Library
    location: str

    @property
    def entry(self) -> str:
        return self.location + self.library.name


# =============================================================================
# Inspection
# =============================================================================


def backup_file_for(source: str | Path) -> Path:
    source = Path(source)
    return source.with_name(source.name + BACKUP_SUFFIX)


def read_manifest(archive: str | Path) -> Manifest | None:
    """Return the manifest of ``archive``, or None when it has none."""
    archive = Path(archive)
    try:
        with zipfile.ZipFile(archive) as zf:
            try:
                data = zf.read(MANIFEST_NAME)
            except KeyError:
                return None
    except (OSError, zipfile.BadZipFile) as exc:
        raise ArchiveError(f"Unable to read archive {archive}", cause=exc).with_context(
            source=archive, entry=MANIFEST_NAME
        ) from exc
    return Manifest.parse(data)


def is_repackaged(archive: str | Path) -> bool:
    manifest = read_manifest(archive)
    return manifest is not None and BOOT_VERSION in manifest


# =============================================================================
# Planning
# =============================================================================


def _check_inputs(source: Path, destination: Path, options: RepackageOptions) -> None:
    if not source.exists():
        raise InvalidSourceError(f"Source file {source} must exist").with_context(source=source)
    if not source.is_file():
        raise InvalidSourceError(f"Source {source} must refer to an existing file").with_context(
            source=source
        )
    if destination.is_dir():
        raise InvalidDestinationError(f"Invalid destination {destination}: is a directory").with_context(
            destination=destination
        )
    dist_dir = options.dist_dir
    if dist_dir is not None and dist_dir.exists() and not dist_dir.is_dir():
        raise InvalidConfigError("dist_dir", str(dist_dir), f"dist_dir {dist_dir} is not a directory")


def _plan_placements(
    libraries: PartitionedLibraries, layout: Layout, options: RepackageOptions
) -> tuple[list[_Placement], list[_Placement]]:
    """Work out where every library goes, failing on the first duplicate."""
    seen: set[str] = set()

    def plan(group: Sequence[Library]) -> list[_Placement]:
        placements = []
        for library in group:
            if options.mode is PackagingMode.EXPLODED:
                location = options.library_directory + "/"
            else:
                location = layout.library_destination(library.name, library.scope)
                if location is None:
                    logger.debug("library.scope_excluded", library=library.name, scope=library.scope.value)
                    continue
            placement = _Placement(library, location)
            if placement.entry in seen:
                raise DuplicateLibraryError(library.name).with_context(entry=placement.entry)
            seen.add(placement.entry)
            placements.append(placement)
        return placements

    return plan(libraries.unpack), plan(libraries.standard)


def _version_token(name: str) -> str:
    start = name.rfind("-") + 1
    end = name.rfind(".")
    return name[start:end] if end > start else name[start:]


def _class_path(libraries: PartitionedLibraries, options: RepackageOptions) -> tuple[str, str | None]:
    """Exploded-mode ``Class-Path`` plus the version token, if any library carries one."""
    entries = []
    version = None
    for library in libraries:
        entries.append(f"{options.library_directory}/{library.name}")
        if version is None and library.name.startswith(options.version_library_prefix):
            version = _version_token(library.name)
    return " ".join(entries), version


def _build_manifest(
    source_zip: zipfile.ZipFile,
    layout: Layout,
    options: RepackageOptions,
    class_path: str,
    detected_version: str | None,
) -> tuple[Manifest, str | None]:
    if MANIFEST_NAME in source_zip.namelist():
        manifest = Manifest.parse(source_zip.read(MANIFEST_NAME))
    else:
        manifest = Manifest.default()

    start_class = options.main_class or manifest.get(MAIN_CLASS)
    if start_class is None:
        start_class = find_main_class_with_timeout_warning(
            source_zip,
            layout.classes_location,
            options.main_class_annotation,
            options.timeout_listeners,
            options.clock,
        )

    if layout.launcher_class_name is not None:
        manifest[MAIN_CLASS] = layout.launcher_class_name
        if start_class is None:
            raise MainClassNotFoundError("Unable to find main class")
        manifest[START_CLASS] = start_class
    elif start_class is not None:
        manifest[MAIN_CLASS] = start_class

    if class_path:
        manifest[CLASS_PATH] = class_path
    manifest[BOOT_VERSION] = options.framework_version or detected_version or UNKNOWN_VERSION
    manifest[BOOT_CLASSES] = (
        layout.repackaged_classes_location if layout.relocates_classes else layout.classes_location
    )
    lib = layout.library_destination("", LibraryScope.COMPILE)
    if lib:
        manifest[BOOT_LIB] = lib
    return manifest, start_class


# =============================================================================
# Engine
# =============================================================================


def _write_archive(
    working_source: Path,
    destination: Path,
    layout: Layout,
    options: RepackageOptions,
    libraries: PartitionedLibraries,
    launch_script: LaunchScript | bytes | None,
    report: RepackageReport,
    copied: _CopiedLibraries,
) -> None:
    exploded = options.mode is PackagingMode.EXPLODED
    unpack, standard = _plan_placements(libraries, layout, options)
    class_path, detected_version = _class_path(libraries, options) if exploded else ("", None)
    library_dir = copied.directory
    if exploded and not library_dir.exists():
        copied.created_directory = True

    def place(placements: list[_Placement], writer: ArchiveWriter) -> None:
        for placement in placements:
            if exploded:
                target = library_dir / placement.library.name
                copy_file(placement.library.file, target)
                copied.files.append(target)
                logger.debug("library.copied", library=placement.library.name, directory=str(library_dir))
            else:
                writer.write_nested_library(placement.location, placement.library)
            report.libraries.append(placement.entry)

    script = launch_script.to_bytes() if isinstance(launch_script, LaunchScript) else launch_script
    try:
        with zipfile.ZipFile(working_source) as source_zip:
            manifest, start_class = _build_manifest(source_zip, layout, options, class_path, detected_version)
            with ArchiveWriter(destination, script) as writer:
                writer.write_manifest(manifest)
                place(unpack, writer)
                transformer = (
                    RenamingEntryTransformer(layout.repackaged_classes_location)
                    if layout.repackaged_classes_location is not None
                    else identity_transformer
                )
                report.entries_written = writer.write_entries(source_zip, transformer)
                place(standard, writer)
                report.loader_classes = _write_loader_classes(writer, layout, options)
    except (OSError, zipfile.BadZipFile, zipfile.LargeZipFile) as exc:
        raise ArchiveError(f"Unable to repackage {working_source}: {exc}", cause=exc).with_context(
            source=working_source, destination=destination
        ) from exc

    report.main_class = manifest.get(MAIN_CLASS)
    report.start_class = start_class
    report.framework_version = manifest.get(BOOT_VERSION)
    report.class_path = class_path or None
    if exploded:
        report.library_dir = library_dir


def _write_loader_classes(writer: ArchiveWriter, layout: Layout, options: RepackageOptions) -> int:
    match layout:
        case Layout(custom_loader_writer=loader_writer) if loader_writer is not None:
            before = len(writer.written)
            loader_writer(writer)
            return len(writer.written) - before
        case Layout(is_executable=True):
            if options.loader_archive is None:
                logger.warning("loader.not_configured", layout=layout.kind.value)
                return 0
            return writer.write_loader_classes(options.loader_archive)
        case _:
            return 0


def _same_directory(a: Path, b: Path) -> bool:
    return os.path.realpath(a) == os.path.realpath(b)


def _same_file(source: Path, destination: Path) -> bool:
    """True when ``destination`` names ``source`` through ``..``, a symlink or a hard link."""
    if destination.exists():
        return os.path.samefile(source, destination)
    return os.path.realpath(source) == os.path.realpath(destination)


def _distribute(destination: Path, options: RepackageOptions, report: RepackageReport) -> None:
    dist_dir = options.dist_dir
    if dist_dir is None or _same_directory(dist_dir, destination.parent):
        return
    dist_dir.mkdir(parents=True, exist_ok=True)
    report.destination = move_file_into_directory(destination, dist_dir)
    logger.info("repackage.distributed", dist_dir=str(dist_dir))
    if options.mode is PackagingMode.EXPLODED and report.library_dir is not None and report.library_dir.exists():
        target = dist_dir / options.library_directory
        if target.exists():
            delete_directory(target)
        move_directory(report.library_dir, target)
        report.library_dir = target


def _cleanup(backup: Path | None, options: RepackageOptions, report: RepackageReport) -> None:
    if backup is None:
        return
    if not options.backup_source:
        if best_effort(force_delete, backup, description="delete backup"):
            report.backup = None
        return
    dist_dir = options.dist_dir
    if dist_dir is not None and not _same_directory(dist_dir, backup.parent):
        moved: list[Path] = []
        if best_effort(
            lambda: moved.append(move_file_into_directory(backup, dist_dir)), description="move backup"
        ):
            report.backup = moved[0]


def _restore(source: Path, destination: Path, backup: Path | None, copied: _CopiedLibraries) -> None:
    best_effort(delete_quietly, destination, description="delete partial destination")
    copied.remove()
    if backup is not None and backup.exists() and not source.exists():
        best_effort(os.rename, backup, source, description="restore source from backup")


def repackage(
    source: str | Path,
    destination: str | Path | None = None,
    libraries: Iterable[Library] = (),
    options: RepackageOptions | None = None,
    launch_script: LaunchScript | bytes | None = None,
) -> RepackageReport:
    """Repackage ``source`` into ``destination`` (in place when omitted).

    Raises a ``BootpackError`` subclass on failure; the source is restored
    from its backup. Neither a partial destination nor the exploded libraries
    copied by the run are left behind. A destination that aliases the source
    through ``..`` or a link is an in-place run.
    """
    options = options or RepackageOptions()
    source = Path(source).absolute()
    destination = Path(destination).absolute() if destination is not None else source
    _check_inputs(source, destination, options)
    if destination != source and _same_file(source, destination):
        destination = source

    with LogContext(source=source, destination=destination):
        report = RepackageReport(source=source, destination=destination, mode=options.mode)
        existing = read_manifest(source)
        if existing is not None and BOOT_VERSION in existing:
            report.skipped = True
            report.framework_version = existing.get(BOOT_VERSION)
            report.main_class = existing.get(MAIN_CLASS)
            report.start_class = existing.get(START_CLASS)
            logger.info("repackage.skipped", reason="already repackaged")
            return report

        layout = resolve_layout(source, options.layout, options.layout_factory)
        report.layout = layout.kind
        partitioned = partition_libraries(libraries)
        report.libraries_dropped = len(partitioned.dropped)
        # Fails on duplicates before anything on disk changes.
        _plan_placements(partitioned, layout, options)
        logger.info(
            "repackage.started",
            layout=layout.kind.value,
            mode=options.mode.value,
            unpack=len(partitioned.unpack),
            standard=len(partitioned.standard),
        )

        working_source = source
        backup = None
        copied = _CopiedLibraries(destination.parent / options.library_directory)
        if destination == source:
            backup = backup_file_for(source)
            if backup.exists():
                force_delete(backup)
            try:
                os.rename(source, backup)
            except OSError as exc:
                raise StorageError(f"Unable to rename '{source}' to '{backup}'", cause=exc).with_context(
                    source=source, destination=backup
                ) from exc
            working_source = backup
            report.backup = backup
        elif destination.exists():
            force_delete(destination)

        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            _write_archive(working_source, destination, layout, options, partitioned, launch_script, report, copied)
            _distribute(destination, options, report)
        except BootpackError as exc:
            logger.error("repackage.failed", **exc.to_dict())
            _restore(source, destination, backup, copied)
            raise
        except BaseException:
            _restore(source, destination, backup, copied)
            raise

        _cleanup(backup, options, report)
        logger.info(
            "repackage.completed",
            start_class=report.start_class,
            libraries=len(report.libraries),
            framework_version=report.framework_version,
        )
        return report


class Repackager:
    """Repackage one source archive, possibly several times.

    Holds the source and a base ``RepackageOptions``; each ``repackage``
    call is still independent.
    """

    def __init__(self, source: str | Path, options: RepackageOptions | None = None):
        self.source = Path(source).absolute()
        if not self.source.exists():
            raise InvalidSourceError(f"Source file {self.source} must exist").with_context(source=self.source)
        if not self.source.is_file():
            raise InvalidSourceError(f"Source {self.source} must refer to an existing file").with_context(
                source=self.source
            )
        self.options = options or RepackageOptions()

    @property
    def backup_file(self) -> Path:
        return backup_file_for(self.source)

    def add_main_class_timeout_listener(self, listener: MainClassTimeoutListener) -> None:
        self.options = replace(self.options, timeout_listeners=self.options.timeout_listeners + (listener,))

    def repackage(
        self,
        libraries: Iterable[Library] = (),
        destination: str | Path | None = None,
        launch_script: LaunchScript | bytes | None = None,
        **overrides: Any,
    ) -> RepackageReport:
        options = replace(self.options, **overrides) if overrides else self.options
        return repackage(self.source, destination, libraries, options, launch_script)


__all__ = [
    "BACKUP_SUFFIX",
    "PackagingMode",
    "RepackageOptions",
    "RepackageReport",
    "Repackager",
    "UNKNOWN_VERSION",
    "backup_file_for",
    "is_repackaged",
    "read_manifest",
    "repackage",
]
