"""
Packaging: layouts, manifests, archive writing and the repackaging engine.

Tags:
    packaging, jar, repackage, bootpack
"""

from bootpack.packaging.archive import ArchiveWriter, RenamingEntryTransformer
from bootpack.packaging.dependencies import (
    Artifact,
    ArtifactRef,
    DependencyDescriptor,
    DependencyFilter,
    artifacts_to_libraries,
    load_dependency_descriptor,
)
from bootpack.packaging.launch_script import LaunchScript
from bootpack.packaging.layout import (
    Layout,
    LayoutKind,
    clear_layout_factories,
    get_layout,
    get_layout_factory,
    layout_for_file,
    list_layout_factories,
    register_layout_factory,
    resolve_layout,
)
from bootpack.packaging.library import Library, LibraryScope, is_zip, partition_libraries
from bootpack.packaging.main_class import find_single_main_class
from bootpack.packaging.manifest import Manifest
from bootpack.packaging.repackager import (
    PackagingMode,
    RepackageOptions,
    RepackageReport,
    Repackager,
    backup_file_for,
    is_repackaged,
    read_manifest,
    repackage,
)

__all__ = [
    "ArchiveWriter",
    "Artifact",
    "ArtifactRef",
    "DependencyDescriptor",
    "DependencyFilter",
    "LaunchScript",
    "Layout",
    "LayoutKind",
    "Library",
    "LibraryScope",
    "Manifest",
    "PackagingMode",
    "RenamingEntryTransformer",
    "RepackageOptions",
    "RepackageReport",
    "Repackager",
    "artifacts_to_libraries",
    "backup_file_for",
    "clear_layout_factories",
    "find_single_main_class",
    "get_layout",
    "get_layout_factory",
    "is_repackaged",
    "is_zip",
    "layout_for_file",
    "list_layout_factories",
    "load_dependency_descriptor",
    "partition_libraries",
    "read_manifest",
    "register_layout_factory",
    "repackage",
    "resolve_layout",
]
