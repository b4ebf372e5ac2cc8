"""Command smoke tests for bootpack.cli via CliRunner.

Commands run against real archives built in tmp_path; ``run`` has its
``subprocess.run`` replaced so no JVM is needed.
"""

from __future__ import annotations

import importlib
import json
import subprocess

from typer.testing import CliRunner

from bootpack.cli.app import app
from bootpack.packaging.repackager import is_repackaged, read_manifest

runner = CliRunner()

# Quiet logs keep stdout pure JSON regardless of how the runner mixes streams.
QUIET = ["--log-level", "ERROR"]


def _json(result) -> dict:
    return json.loads(result.stdout)


# ─── Global options ──────────────────────────────────────────────────────


class TestGlobalOptions:
    def test_version(self):
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert result.stdout.startswith("bootpack ")

    def test_unknown_log_level(self, app_jar):
        result = runner.invoke(app, ["--log-level", "LOUD", "inspect", str(app_jar)])
        assert result.exit_code == 1
        assert "INVALID_CONFIG" in result.output


# ─── repackage ───────────────────────────────────────────────────────────


class TestRepackageCommand:
    def test_in_place_json(self, app_jar, make_library):
        lib = make_library("a.jar")
        result = runner.invoke(app, [*QUIET, "repackage", str(app_jar), "-l", str(lib), "--json"])

        assert result.exit_code == 0, result.output
        data = _json(result)
        assert data["start_class"] == "com.example.App"
        assert data["libraries"] == ["BOOT-INF/lib/a.jar"]
        assert data["backup"].endswith("app.jar.original")
        assert is_repackaged(app_jar)

    def test_human_output(self, app_jar):
        result = runner.invoke(app, [*QUIET, "repackage", str(app_jar)])
        assert result.exit_code == 0
        assert "Repackaged" in result.stdout
        assert "com.example.App" in result.stdout

    def test_second_run_is_skipped(self, app_jar):
        runner.invoke(app, [*QUIET, "repackage", str(app_jar)])
        result = runner.invoke(app, [*QUIET, "repackage", str(app_jar)])
        assert result.exit_code == 0
        assert "Skipped" in result.stdout

    def test_exploded_with_unpack(self, app_jar, make_library):
        a = make_library("a.jar")
        b = make_library("b.jar")
        result = runner.invoke(
            app,
            [*QUIET, "repackage", str(app_jar), "-l", str(a), "--unpack", str(b), "--mode", "exploded", "--json"],
        )

        assert result.exit_code == 0, result.output
        assert _json(result)["class_path"] == "lib/b.jar lib/a.jar"
        assert (app_jar.parent / "lib" / "a.jar").exists()

    def test_destination_and_options(self, app_jar, tmp_path):
        destination = tmp_path / "out" / "service.jar"
        result = runner.invoke(
            app,
            [
                *QUIET,
                "repackage",
                str(app_jar),
                "-d",
                str(destination),
                "--main-class",
                "com.example.Other",
                "--framework-version",
                "3.2.1",
                "--layout",
                "zip",
                "--json",
            ],
        )

        assert result.exit_code == 0, result.output
        manifest = read_manifest(destination)
        assert manifest["Start-Class"] == "com.example.Other"
        assert manifest["Spring-Boot-Version"] == "3.2.1"
        assert manifest["Main-Class"].endswith("PropertiesLauncher")
        assert _json(result)["layout"] == "ZIP"

    def test_no_backup_and_dist_dir(self, app_jar, tmp_path):
        dist = tmp_path / "dist"
        result = runner.invoke(
            app, [*QUIET, "repackage", str(app_jar), "--no-backup", "--dist-dir", str(dist), "--json"]
        )

        assert result.exit_code == 0, result.output
        assert is_repackaged(dist / "app.jar")
        assert not (dist / "app.jar.original").exists()
        assert not app_jar.with_name("app.jar.original").exists()

    def test_executable(self, app_jar):
        result = runner.invoke(app, [*QUIET, "repackage", str(app_jar), "--executable"])
        assert result.exit_code == 0
        assert app_jar.read_bytes().startswith(b"#!/bin/sh")

    def test_settings_from_environment(self, app_jar):
        result = runner.invoke(
            app, [*QUIET, "repackage", str(app_jar), "--json"], env={"BOOTPACK_FRAMEWORK_VERSION": "2.7.18"}
        )
        assert result.exit_code == 0, result.output
        assert _json(result)["framework_version"] == "2.7.18"

    def test_invalid_environment(self, app_jar):
        result = runner.invoke(app, [*QUIET, "repackage", str(app_jar)], env={"BOOTPACK_LAYOUT": "ear"})
        assert result.exit_code == 1
        assert "INVALID_CONFIG" in result.output

    def test_missing_source(self, tmp_path):
        result = runner.invoke(app, [*QUIET, "repackage", str(tmp_path / "missing.jar")])
        assert result.exit_code == 1
        assert "INVALID_CONFIG" in result.output

    def test_missing_source_json(self, tmp_path):
        result = runner.invoke(app, [*QUIET, "repackage", str(tmp_path / "missing.jar"), "--json"])
        assert result.exit_code == 1
        data = _json(result)
        assert data["success"] is False
        assert data["error"]["code"] == "INVALID_CONFIG"

    def test_duplicate_library(self, app_jar, make_library, tmp_path):
        from tests._support.archives import build_library

        other = build_library(tmp_path / "other" / "a.jar")
        result = runner.invoke(
            app, [*QUIET, "repackage", str(app_jar), "-l", str(make_library("a.jar")), "-l", str(other)]
        )
        assert result.exit_code == 1
        assert "DUPLICATE_LIBRARY" in result.output
        assert not is_repackaged(app_jar)


# ─── inspect ─────────────────────────────────────────────────────────────


class TestInspectCommand:
    def test_table(self, app_jar):
        result = runner.invoke(app, [*QUIET, "inspect", str(app_jar)])
        assert result.exit_code == 0
        assert "Main-Class" in result.stdout
        assert "com.example.App" in result.stdout

    def test_json(self, app_jar):
        runner.invoke(app, [*QUIET, "repackage", str(app_jar)])
        result = runner.invoke(app, [*QUIET, "inspect", str(app_jar), "--json"])
        assert result.exit_code == 0
        data = _json(result)
        assert data["repackaged"] is True
        assert data["manifest"]["main"]["Start-Class"] == "com.example.App"

    def test_missing(self, tmp_path):
        result = runner.invoke(app, [*QUIET, "inspect", str(tmp_path / "missing.jar")])
        assert result.exit_code == 1
        assert "INVALID_CONFIG" in result.output


# ─── run ─────────────────────────────────────────────────────────────────


class TestRunCommand:
    def _patch_run(self, monkeypatch, returncode=0):
        calls = []

        def fake_run(command, check):
            calls.append(command)
            return subprocess.CompletedProcess(command, returncode)

        app_module = importlib.import_module("bootpack.cli.app")
        monkeypatch.setattr(app_module.subprocess, "run", fake_run)
        return calls

    def test_command_line(self, app_jar, monkeypatch):
        calls = self._patch_run(monkeypatch, returncode=3)

        result = runner.invoke(
            app,
            [
                *QUIET,
                "run",
                str(app_jar),
                "--jvm-arguments=-Xmx1g -Dgreeting='hello world'",
                "--arguments=--server.port=9000",
            ],
        )

        assert result.exit_code == 3
        assert calls == [
            ["java", "-Xmx1g", "-Dgreeting=hello world", "-jar", str(app_jar), "--server.port=9000"]
        ]

    def test_java_from_environment(self, app_jar, monkeypatch):
        calls = self._patch_run(monkeypatch)
        result = runner.invoke(app, [*QUIET, "run", str(app_jar)], env={"BOOTPACK_JAVA": "/opt/jdk/bin/java"})
        assert result.exit_code == 0
        assert calls[0][0] == "/opt/jdk/bin/java"

    def test_missing_archive(self, tmp_path):
        result = runner.invoke(app, [*QUIET, "run", str(tmp_path / "missing.jar")])
        assert result.exit_code == 1
        assert "INVALID_CONFIG" in result.output

    def test_unparsable_arguments(self, app_jar, monkeypatch):
        calls = self._patch_run(monkeypatch)
        result = runner.invoke(app, [*QUIET, "run", str(app_jar), "--arguments", "'unterminated"])
        assert result.exit_code == 1
        assert "INVALID_CONFIG" in result.output
        assert calls == []

    def test_java_not_found(self, app_jar, monkeypatch):
        def missing_java(command, check):
            raise FileNotFoundError(command[0])

        app_module = importlib.import_module("bootpack.cli.app")
        monkeypatch.setattr(app_module.subprocess, "run", missing_java)
        result = runner.invoke(app, [*QUIET, "run", str(app_jar), "--java", "no-such-java"])
        assert result.exit_code == 1
        assert "IO_ERROR" in result.output
