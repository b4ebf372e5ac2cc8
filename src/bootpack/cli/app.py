"""
Root Typer application for the bootpack CLI.

Commands:
    repackage  Turn a plain archive into a self-runnable one
    inspect    Print an archive's manifest
    run        Launch an archive with ``java -jar``
"""

from __future__ import annotations

import subprocess
from pathlib import Path

import typer
from pydantic import ValidationError
from typer import Typer

from bootpack.cli.arguments import RunArguments
from bootpack.cli.utils import console, fail, output_result, print_attributes, print_dict
from bootpack.core.errors import BootpackError
from bootpack.core.logging import configure_logging, get_logger
from bootpack.core.settings import RepackageSettings
from bootpack.ops.repackage import ERROR_CODES, inspect_archive, repackage_archive
from bootpack.ops.requests import RepackageRequest
from bootpack.packaging.layout import LayoutKind
from bootpack.packaging.library import Library
from bootpack.packaging.repackager import PackagingMode

logger = get_logger(__name__)

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

app = Typer(
    name="bootpack",
    help="Repackage Java archives into self-runnable jars.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from importlib.metadata import PackageNotFoundError
        from importlib.metadata import version as pkg_version

        try:
            v = pkg_version("bootpack")
        except PackageNotFoundError:
            from bootpack import __version__ as v
        typer.echo(f"bootpack {v}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    log_level: str = typer.Option("INFO", "--log-level", envvar="BOOTPACK_LOG_LEVEL", help="Log level."),
    json_logs: bool | None = typer.Option(
        None, "--json-logs/--console-logs", envvar="BOOTPACK_JSON_LOGS", help="Log format (default: auto)."
    ),
) -> None:
    """Repackage, inspect and run executable archives."""
    if log_level.upper() not in LOG_LEVELS:
        fail("INVALID_CONFIG", f"Unknown log level {log_level!r}")
    configure_logging(level=log_level, json_format=json_logs)


# ── repackage ────────────────────────────────────────────────────────────


@app.command("repackage")
def repackage_cmd(
    source: Path = typer.Argument(..., help="Archive to repackage."),
    destination: Path | None = typer.Option(None, "--destination", "-d", help="Output archive (default: in place)."),
    library: list[Path] | None = typer.Option(None, "--library", "-l", help="Library to include (repeatable)."),
    unpack: list[Path] | None = typer.Option(None, "--unpack", help="Library that must stay unpacked (repeatable)."),
    dependencies: Path | None = typer.Option(None, "--dependencies", help="YAML dependency descriptor."),
    layout: LayoutKind | None = typer.Option(None, "--layout", case_sensitive=False, help="Archive layout."),
    layout_factory: str | None = typer.Option(None, "--layout-factory", help="Registered layout factory name."),
    mode: PackagingMode | None = typer.Option(None, "--mode", case_sensitive=False, help="embedded or exploded."),
    main_class: str | None = typer.Option(None, "--main-class", help="Start class."),
    backup: bool | None = typer.Option(None, "--backup/--no-backup", help="Keep <source>.original."),
    dist_dir: Path | None = typer.Option(None, "--dist-dir", help="Move results into this directory."),
    framework_version: str | None = typer.Option(None, "--framework-version", help="Version marker value."),
    loader_archive: Path | None = typer.Option(None, "--loader-archive", help="Archive with loader classes."),
    launch_script: Path | None = typer.Option(None, "--launch-script", help="Launch script template."),
    executable: bool = typer.Option(False, "--executable", help="Prefix the default launch script."),
    as_json: bool = typer.Option(False, "--json", help="Output as JSON."),
) -> None:
    """Repackage SOURCE into a self-runnable archive."""
    try:
        settings = RepackageSettings()
    except ValidationError as exc:
        fail("INVALID_CONFIG", f"Invalid BOOTPACK_* settings: {exc.error_count()} error(s)")

    libraries = [Library(path) for path in library or []]
    libraries += [Library(path, unpack_required=True) for path in unpack or []]
    request = RepackageRequest(
        source=source,
        destination=destination,
        libraries=tuple(libraries),
        dependencies=dependencies,
        launch_script=launch_script,
        executable=executable,
        overrides={
            "main_class": main_class,
            "backup_source": backup,
            "layout": layout,
            "layout_factory": layout_factory,
            "mode": mode,
            "dist_dir": dist_dir,
            "framework_version": framework_version,
            "loader_archive": loader_archive,
        },
    )
    result = repackage_archive(request, settings)
    skipped = bool(result.data and result.data.skipped)
    output_result(result, as_json=as_json, title="Skipped" if skipped else "Repackaged")


# ── inspect ──────────────────────────────────────────────────────────────


@app.command("inspect")
def inspect_cmd(
    archive: Path = typer.Argument(..., help="Archive to inspect."),
    as_json: bool = typer.Option(False, "--json", help="Output as JSON."),
) -> None:
    """Print the manifest of ARCHIVE."""
    result = inspect_archive(archive)
    if as_json or not result.success:
        output_result(result, as_json=as_json)
        return

    data = result.data or {}
    print_dict({"archive": data["archive"], "repackaged": data["repackaged"]})
    manifest = data.get("manifest")
    if manifest is None:
        console.print("[dim]No manifest.[/dim]")
        return
    print_attributes(manifest["main"], title="Manifest")
    for name, attributes in manifest["entries"].items():
        print_attributes(attributes, title=name)


# ── run ──────────────────────────────────────────────────────────────────


@app.command("run")
def run_cmd(
    archive: Path = typer.Argument(..., help="Archive to launch."),
    jvm_arguments: str | None = typer.Option(None, "--jvm-arguments", help="Arguments for the JVM."),
    arguments: str | None = typer.Option(None, "--arguments", help="Arguments for the application."),
    java: str = typer.Option("java", "--java", envvar="BOOTPACK_JAVA", help="Java executable."),
) -> None:
    """Launch ARCHIVE with ``java -jar``."""
    if not archive.is_file():
        fail("INVALID_CONFIG", f"Archive {archive} must refer to an existing file")
    try:
        command = [
            java,
            *RunArguments(jvm_arguments),
            "-jar",
            str(archive),
            *RunArguments(arguments),
        ]
    except BootpackError as exc:
        fail(ERROR_CODES[exc.category], exc.message)

    logger.info("run.started", command=command)
    try:
        completed = subprocess.run(command, check=False)
    except OSError as exc:
        fail("IO_ERROR", f"Unable to launch {java}: {exc}")
    raise typer.Exit(code=completed.returncode)
