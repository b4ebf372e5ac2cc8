"""Tests for bootpack.packaging.repackager (the repackaging engine).

Covers:
- in-place repackaging with a backup and a synthesized manifest
- idempotence on archives that already carry the version marker
- entry ordering for nested libraries (unpack group, source, standard group)
- exploded mode: sibling library directory and Class-Path
- non-archive dependencies, duplicate libraries and failure restoration
- layouts, loader classes, launch scripts, dist_dir and backup handling
"""

import zipfile

import pytest

from bootpack.core.errors import (
    ArchiveError,
    DuplicateLibraryError,
    InvalidConfigError,
    InvalidDestinationError,
    InvalidSourceError,
    MainClassNotFoundError,
    UnknownLayoutError,
)
from bootpack.packaging.launch_script import LaunchScript
from bootpack.packaging.layout import JAR_LAYOUT, LayoutKind
from bootpack.packaging.library import Library
from bootpack.packaging.repackager import (
    PackagingMode,
    RepackageOptions,
    Repackager,
    backup_file_for,
    is_repackaged,
    read_manifest,
    repackage,
)
from tests._support.archives import SPRING_BOOT_APPLICATION, build_jar, class_file, read_entries

JAR_LAUNCHER = "org.springframework.boot.loader.JarLauncher"


def _ticking_clock(*values):
    ticks = iter(values)
    return lambda: next(ticks)


class TestInPlace:
    def test_manifest_and_backup(self, app_jar, loader_jar):
        original = app_jar.read_bytes()

        report = repackage(app_jar, options=RepackageOptions(loader_archive=loader_jar))

        manifest = read_manifest(app_jar)
        assert manifest["Main-Class"] == JAR_LAUNCHER
        assert manifest["Start-Class"] == "com.example.App"
        assert manifest["Spring-Boot-Version"] == "unknown"
        assert manifest["Spring-Boot-Classes"] == "BOOT-INF/classes/"
        assert manifest["Spring-Boot-Lib"] == "BOOT-INF/lib/"
        assert "Class-Path" not in manifest

        backup = app_jar.with_name("app.jar.original")
        assert backup.read_bytes() == original
        assert report.backup == backup
        assert report.layout is LayoutKind.JAR
        assert report.start_class == "com.example.App"
        assert report.main_class == JAR_LAUNCHER
        assert report.skipped is False

    def test_entries(self, app_jar, loader_jar):
        report = repackage(app_jar, options=RepackageOptions(loader_archive=loader_jar))

        entries = read_entries(app_jar)
        assert entries[:2] == ["META-INF/", "META-INF/MANIFEST.MF"]
        assert "BOOT-INF/classes/com/example/App.class" in entries
        assert "BOOT-INF/classes/application.properties" in entries
        assert "com/example/App.class" not in entries
        assert entries[-1].startswith("org/springframework/boot/loader/")
        assert "org/springframework/boot/loader/loader.properties" not in entries
        assert report.loader_classes == 2
        assert report.entries_written == 2

    def test_existing_backup_is_replaced(self, app_jar):
        stale = backup_file_for(app_jar)
        stale.write_text("stale backup")
        original = app_jar.read_bytes()

        repackage(app_jar)

        assert stale.read_bytes() == original

    def test_explicit_version(self, app_jar):
        report = repackage(app_jar, options=RepackageOptions(framework_version="3.2.1"))
        assert read_manifest(app_jar)["Spring-Boot-Version"] == "3.2.1"
        assert report.framework_version == "3.2.1"

    def test_explicit_main_class_wins(self, app_jar):
        repackage(app_jar, options=RepackageOptions(main_class="com.example.Other"))
        assert read_manifest(app_jar)["Start-Class"] == "com.example.Other"

    def test_missing_loader_archive_writes_no_loader_classes(self, app_jar):
        report = repackage(app_jar)
        assert report.loader_classes == 0
        assert not any(e.startswith("org/springframework/boot/loader/") for e in read_entries(app_jar))


class TestIdempotence:
    def test_second_run_is_skipped(self, app_jar, make_library):
        libraries = [Library(make_library("a.jar"))]
        repackage(app_jar, libraries=libraries)
        first = app_jar.read_bytes()

        report = repackage(app_jar, libraries=libraries)

        assert report.skipped is True
        assert report.framework_version == "unknown"
        assert report.start_class == "com.example.App"
        assert app_jar.read_bytes() == first
        assert is_repackaged(app_jar) is True

    def test_skip_leaves_destination_alone(self, app_jar, tmp_path):
        repackage(app_jar)
        destination = tmp_path / "other.jar"

        report = repackage(app_jar, destination)

        assert report.skipped is True
        assert not destination.exists()


class TestEmbeddedLibraries:
    def test_ordering_and_storage(self, app_jar, make_library):
        a = Library(make_library("a.jar"))
        b = Library(make_library("b.jar"), unpack_required=True)

        report = repackage(app_jar, libraries=[a, b])

        entries = read_entries(app_jar)
        lib_b = entries.index("BOOT-INF/lib/b.jar")
        app_class = entries.index("BOOT-INF/classes/com/example/App.class")
        lib_a = entries.index("BOOT-INF/lib/a.jar")
        assert lib_b < app_class < lib_a
        assert report.libraries == ["BOOT-INF/lib/b.jar", "BOOT-INF/lib/a.jar"]

        with zipfile.ZipFile(app_jar) as zf:
            assert zf.getinfo("BOOT-INF/lib/a.jar").compress_type == zipfile.ZIP_STORED
            assert zf.getinfo("BOOT-INF/lib/b.jar").comment.startswith(b"UNPACK:")
            assert zf.read("BOOT-INF/lib/a.jar") == a.file.read_bytes()

    def test_non_archive_dependency_is_ignored(self, app_jar, make_library, library_dir):
        text = library_dir / "notes.jar"
        text.write_text("plain text")

        report = repackage(app_jar, libraries=[Library(text), Library(make_library("a.jar"))])

        entries = read_entries(app_jar)
        assert "BOOT-INF/lib/notes.jar" not in entries
        assert "BOOT-INF/lib/a.jar" in entries
        assert report.libraries_dropped == 1

    def test_version_not_detected_in_embedded_mode(self, app_jar, make_library):
        repackage(app_jar, libraries=[Library(make_library("spring-boot-3.2.0.jar"))])
        assert read_manifest(app_jar)["Spring-Boot-Version"] == "unknown"


class TestExploded:
    def test_class_path_and_library_directory(self, app_jar, make_library):
        a = Library(make_library("a.jar"))
        b = Library(make_library("b.jar"), unpack_required=True)

        report = repackage(app_jar, libraries=[a, b], options=RepackageOptions(mode="exploded"))

        lib_dir = app_jar.parent / "lib"
        assert sorted(p.name for p in lib_dir.iterdir()) == ["a.jar", "b.jar"]
        assert read_manifest(app_jar)["Class-Path"] == "lib/b.jar lib/a.jar"
        assert report.class_path == "lib/b.jar lib/a.jar"
        assert report.library_dir == lib_dir
        assert report.mode is PackagingMode.EXPLODED
        assert not any(e.startswith("BOOT-INF/lib/") and e.endswith(".jar") for e in read_entries(app_jar))

    def test_non_archive_dependency_excluded_from_class_path(self, app_jar, make_library, library_dir):
        text = library_dir / "notes.jar"
        text.write_text("plain text")

        repackage(
            app_jar,
            libraries=[Library(make_library("a.jar")), Library(text)],
            options=RepackageOptions(mode=PackagingMode.EXPLODED),
        )

        assert read_manifest(app_jar)["Class-Path"] == "lib/a.jar"
        assert not (app_jar.parent / "lib" / "notes.jar").exists()

    def test_version_token_detected(self, app_jar, make_library):
        libraries = [Library(make_library("a.jar")), Library(make_library("spring-boot-3.2.0.jar"))]
        report = repackage(app_jar, libraries=libraries, options=RepackageOptions(mode="exploded"))
        assert read_manifest(app_jar)["Spring-Boot-Version"] == "3.2.0"
        assert report.framework_version == "3.2.0"

    def test_explicit_version_beats_token(self, app_jar, make_library):
        repackage(
            app_jar,
            libraries=[Library(make_library("spring-boot-3.2.0.jar"))],
            options=RepackageOptions(mode="exploded", framework_version="9.9.9"),
        )
        assert read_manifest(app_jar)["Spring-Boot-Version"] == "9.9.9"

    def test_custom_library_directory(self, app_jar, make_library):
        repackage(
            app_jar,
            libraries=[Library(make_library("a.jar"))],
            options=RepackageOptions(mode="exploded", library_directory="deps/"),
        )
        assert read_manifest(app_jar)["Class-Path"] == "deps/a.jar"
        assert (app_jar.parent / "deps" / "a.jar").exists()


class TestFailures:
    def test_duplicate_library_writes_nothing(self, app_jar, make_library, tmp_path):
        original = app_jar.read_bytes()
        other = build_jar(tmp_path / "elsewhere" / "a.jar", {"x/Y.class": b"\x00"})
        libraries = [Library(make_library("a.jar"), unpack_required=True), Library(other)]

        with pytest.raises(DuplicateLibraryError, match="Duplicate library a.jar"):
            repackage(app_jar, libraries=libraries)

        assert app_jar.read_bytes() == original
        assert not backup_file_for(app_jar).exists()

    def test_duplicate_library_to_other_destination(self, app_jar, make_library, tmp_path):
        other = build_jar(tmp_path / "elsewhere" / "a.jar", {"x/Y.class": b"\x00"})
        destination = tmp_path / "out" / "app.jar"

        with pytest.raises(DuplicateLibraryError):
            repackage(app_jar, destination, [Library(make_library("a.jar")), Library(other)])

        assert not destination.exists()

    def test_failure_after_rename_restores_source(self, app_jar, tmp_path):
        original = app_jar.read_bytes()
        bad_loader = tmp_path / "bad-loader.jar"
        bad_loader.write_text("not a zip")

        with pytest.raises(ArchiveError):
            repackage(app_jar, options=RepackageOptions(loader_archive=bad_loader))

        assert app_jar.read_bytes() == original
        assert not backup_file_for(app_jar).exists()

    def test_exploded_failure_removes_copied_libraries(self, app_jar, make_library, tmp_path):
        bad_loader = tmp_path / "bad-loader.jar"
        bad_loader.write_text("not a zip")
        options = RepackageOptions(mode=PackagingMode.EXPLODED, loader_archive=bad_loader)

        with pytest.raises(ArchiveError):
            repackage(app_jar, libraries=[Library(make_library("a.jar"))], options=options)

        assert not (app_jar.parent / "lib").exists()
        assert not is_repackaged(app_jar)

    def test_exploded_failure_keeps_existing_library_directory(self, app_jar, make_library, tmp_path):
        lib = app_jar.parent / "lib"
        lib.mkdir()
        (lib / "keep.jar").write_bytes(b"keep")
        bad_loader = tmp_path / "bad-loader.jar"
        bad_loader.write_text("not a zip")
        options = RepackageOptions(mode=PackagingMode.EXPLODED, loader_archive=bad_loader)

        with pytest.raises(ArchiveError):
            repackage(app_jar, libraries=[Library(make_library("a.jar"))], options=options)

        assert sorted(p.name for p in lib.iterdir()) == ["keep.jar"]

    def test_destination_through_parent_reference_is_in_place(self, app_jar):
        report = repackage(app_jar, app_jar.parent / "sub" / ".." / "app.jar")

        assert report.destination == app_jar
        assert report.backup == backup_file_for(app_jar)
        assert is_repackaged(app_jar)

    def test_destination_symlink_to_source_is_in_place(self, app_jar, tmp_path):
        link = tmp_path / "link.jar"
        link.symlink_to(app_jar)

        report = repackage(app_jar, link)

        assert report.destination == app_jar
        assert backup_file_for(app_jar).exists()
        assert is_repackaged(app_jar)
        assert link.is_symlink()

    def test_no_main_class(self, tmp_path):
        source = build_jar(tmp_path / "lib.jar", {"a/B.class": class_file("a.B", main=False)}, manifest={})
        original = source.read_bytes()

        with pytest.raises(MainClassNotFoundError, match="Unable to find main class"):
            repackage(source)

        assert source.read_bytes() == original

    def test_ambiguous_main_class(self, tmp_path):
        source = build_jar(
            tmp_path / "app.jar",
            {"a/One.class": class_file("a.One"), "a/Two.class": class_file("a.Two")},
        )
        with pytest.raises(MainClassNotFoundError, match=r"candidates \[a.One, a.Two\]"):
            repackage(source)

    def test_missing_source(self, tmp_path):
        with pytest.raises(InvalidSourceError, match="must exist"):
            repackage(tmp_path / "missing.jar")

    def test_source_is_directory(self, tmp_path):
        with pytest.raises(InvalidSourceError, match="existing file"):
            repackage(tmp_path)

    def test_destination_is_directory(self, app_jar, tmp_path):
        with pytest.raises(InvalidDestinationError):
            repackage(app_jar, tmp_path)

    def test_dist_dir_is_file(self, app_jar, tmp_path):
        not_a_dir = tmp_path / "dist"
        not_a_dir.write_text("")
        with pytest.raises(InvalidConfigError):
            repackage(app_jar, options=RepackageOptions(dist_dir=not_a_dir))

    def test_unsupported_suffix(self, tmp_path):
        source = build_jar(tmp_path / "app.ear", {"a.txt": b""})
        with pytest.raises(UnknownLayoutError, match="Unable to deduce layout"):
            repackage(source)


class TestMainClassScan:
    @pytest.fixture
    def scanned_jar(self, tmp_path):
        return build_jar(
            tmp_path / "app.jar",
            {
                "com/example/Tool.class": class_file("com.example.Tool"),
                "com/example/App.class": class_file("com.example.App", annotations=[SPRING_BOOT_APPLICATION]),
            },
        )

    def test_annotated_class_is_chosen(self, scanned_jar):
        report = repackage(scanned_jar)
        assert report.start_class == "com.example.App"

    def test_slow_scan_notifies_listeners(self, scanned_jar):
        calls = []
        options = RepackageOptions(
            timeout_listeners=[lambda elapsed, found: calls.append((elapsed, found))],
            clock=_ticking_clock(0.0, 11.0),
        )
        repackage(scanned_jar, options=options)
        assert calls == [(11.0, "com.example.App")]

    def test_fast_scan_is_silent(self, scanned_jar):
        calls = []
        options = RepackageOptions(timeout_listeners=[calls.append], clock=_ticking_clock(0.0, 2.0))
        repackage(scanned_jar, options=options)
        assert calls == []


class TestLayouts:
    def test_war(self, tmp_path, make_library, loader_jar):
        source = build_jar(
            tmp_path / "app.war",
            {"WEB-INF/classes/com/example/App.class": class_file("com.example.App")},
            manifest={},
        )
        libraries = [Library(make_library("a.jar")), Library(make_library("servlet-api.jar"), scope="provided")]

        report = repackage(source, libraries=libraries, options=RepackageOptions(loader_archive=loader_jar))

        entries = read_entries(source)
        manifest = read_manifest(source)
        assert "WEB-INF/lib/a.jar" in entries
        assert "WEB-INF/lib-provided/servlet-api.jar" in entries
        assert "WEB-INF/classes/com/example/App.class" in entries
        assert manifest["Main-Class"] == "org.springframework.boot.loader.WarLauncher"
        assert manifest["Start-Class"] == "com.example.App"
        assert manifest["Spring-Boot-Classes"] == "WEB-INF/classes/"
        assert report.layout is LayoutKind.WAR

    def test_none_layout_uses_start_class_as_main(self, app_jar, loader_jar):
        report = repackage(app_jar, options=RepackageOptions(layout="none", loader_archive=loader_jar))
        manifest = read_manifest(app_jar)
        assert manifest["Main-Class"] == "com.example.App"
        assert "Start-Class" not in manifest
        assert report.loader_classes == 0

    def test_module_layout_skips_provided(self, app_jar, make_library):
        libraries = [Library(make_library("a.jar")), Library(make_library("p.jar"), scope="provided")]
        report = repackage(app_jar, libraries=libraries, options=RepackageOptions(layout=LayoutKind.MODULE))
        assert report.libraries == ["lib/a.jar"]
        assert "lib/p.jar" not in read_entries(app_jar)
        assert "com/example/App.class" in read_entries(app_jar)

    def test_custom_loader_writer(self, app_jar):
        layout = JAR_LAYOUT.with_loader_writer(lambda writer: writer.write_entry("custom/Loader.class", b"\xca"))
        report = repackage(app_jar, options=RepackageOptions(layout=layout))
        assert "custom/Loader.class" in read_entries(app_jar)
        assert report.loader_classes == 2

    def test_layout_factory(self, app_jar):
        from bootpack.packaging.layout import MODULE_LAYOUT, register_layout_factory

        @register_layout_factory("modules")
        def modules(source):
            return MODULE_LAYOUT

        report = repackage(app_jar, options=RepackageOptions(layout_factory="modules"))
        assert report.layout is LayoutKind.MODULE


class TestDestinationAndDistribution:
    def test_other_destination_keeps_source(self, app_jar, tmp_path):
        original = app_jar.read_bytes()
        destination = tmp_path / "out" / "app.jar"

        report = repackage(app_jar, destination)

        assert app_jar.read_bytes() == original
        assert is_repackaged(destination)
        assert report.backup is None
        assert not backup_file_for(app_jar).exists()

    def test_existing_destination_is_replaced(self, app_jar, tmp_path):
        destination = tmp_path / "out.jar"
        destination.write_text("old")
        repackage(app_jar, destination)
        assert is_repackaged(destination)

    def test_dist_dir_receives_archive_and_backup(self, app_jar, tmp_path):
        dist = tmp_path / "dist"

        report = repackage(app_jar, options=RepackageOptions(dist_dir=dist))

        assert report.destination == dist / "app.jar"
        assert is_repackaged(dist / "app.jar")
        assert (dist / "app.jar.original").exists()
        assert report.backup == dist / "app.jar.original"
        assert not app_jar.exists()

    def test_exploded_dist_dir_replaces_library_directory(self, app_jar, make_library, tmp_path):
        dist = tmp_path / "dist"
        (dist / "lib").mkdir(parents=True)
        (dist / "lib" / "stale.jar").write_text("old")

        report = repackage(
            app_jar,
            libraries=[Library(make_library("a.jar"))],
            options=RepackageOptions(mode="exploded", dist_dir=dist),
        )

        assert sorted(p.name for p in (dist / "lib").iterdir()) == ["a.jar"]
        assert not (app_jar.parent / "lib").exists()
        assert report.library_dir == dist / "lib"

    def test_dist_dir_equal_to_parent(self, app_jar):
        report = repackage(app_jar, options=RepackageOptions(dist_dir=app_jar.parent))
        assert report.destination == app_jar
        assert backup_file_for(app_jar).exists()

    def test_no_backup(self, app_jar):
        report = repackage(app_jar, options=RepackageOptions(backup_source=False))
        assert not backup_file_for(app_jar).exists()
        assert report.backup is None
        assert is_repackaged(app_jar)

    def test_launch_script(self, app_jar):
        repackage(app_jar, launch_script=LaunchScript(properties={"initInfoProvides": "orders"}))
        data = app_jar.read_bytes()
        assert data.startswith(b"#!/bin/sh\n")
        assert b"# orders:" in data
        assert is_repackaged(app_jar)


class TestInspection:
    def test_read_manifest_without_manifest(self, tmp_path):
        assert read_manifest(build_jar(tmp_path / "bare.jar", {"a.txt": b""})) is None

    def test_read_manifest_of_non_archive(self, tmp_path):
        path = tmp_path / "broken.jar"
        path.write_text("nope")
        with pytest.raises(ArchiveError, match="Unable to read archive"):
            read_manifest(path)

    def test_is_repackaged(self, app_jar):
        assert is_repackaged(app_jar) is False


class TestRepackageOptions:
    def test_coercions(self, tmp_path):
        options = RepackageOptions(mode="exploded", dist_dir=str(tmp_path), library_directory="/libs/")
        assert options.mode is PackagingMode.EXPLODED
        assert options.dist_dir == tmp_path
        assert options.library_directory == "libs"

    def test_empty_library_directory(self):
        with pytest.raises(InvalidConfigError):
            RepackageOptions(library_directory="/")

    def test_unknown_mode(self):
        with pytest.raises(ValueError):
            RepackageOptions(mode="scattered")

    def test_report_to_dict(self, app_jar):
        data = repackage(app_jar).to_dict()
        assert data["source"] == str(app_jar)
        assert data["mode"] == "embedded"
        assert data["layout"] == "JAR"
        assert data["backup"] == str(backup_file_for(app_jar))


class TestRepackager:
    def test_missing_source(self, tmp_path):
        with pytest.raises(InvalidSourceError):
            Repackager(tmp_path / "missing.jar")

    def test_backup_file(self, app_jar):
        assert Repackager(app_jar).backup_file == app_jar.with_name("app.jar.original")

    def test_listener_and_overrides(self, tmp_path):
        source = build_jar(tmp_path / "app.jar", {"com/example/App.class": class_file("com.example.App")})
        calls = []
        repackager = Repackager(source, RepackageOptions(clock=_ticking_clock(0.0, 30.0)))
        repackager.add_main_class_timeout_listener(lambda elapsed, found: calls.append(found))

        report = repackager.repackage(framework_version="1.0.0")

        assert calls == ["com.example.App"]
        assert report.framework_version == "1.0.0"
        assert repackager.options.framework_version is None
