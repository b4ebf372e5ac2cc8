"""
Shared pytest fixtures and configuration for bootpack tests.

This module provides:
- Layout factory registry cleanup for test isolation
- Isolation from BOOTPACK_* environment variables and .env files
- Sample application, library and loader archives
"""

import sys
from collections.abc import Generator
from pathlib import Path

import pytest

# Ensure bootpack and the tests._support helpers are importable
sys.path.insert(0, str(Path(__file__).parent.parent))
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from bootpack.packaging.layout import clear_layout_factories  # noqa: E402
from tests._support.archives import build_app_jar, build_library, build_loader  # noqa: E402


@pytest.fixture(autouse=True)
def clean_layout_registry_fixture() -> Generator[None, None, None]:
    """Reset the layout factory registry before and after each test."""
    clear_layout_factories()
    yield
    clear_layout_factories()


@pytest.fixture(autouse=True)
def reset_structlog_configuration() -> Generator[None, None, None]:
    """Drop structlog configuration (e.g. a CliRunner's closed stderr) after each test."""
    import structlog

    yield
    structlog.reset_defaults()


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Keep host BOOTPACK_* variables and .env files out of tests."""
    import os

    for key in list(os.environ):
        if key.startswith("BOOTPACK_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def app_jar(tmp_path: Path) -> Path:
    """Plain application jar with ``Main-Class: com.example.App``."""
    return build_app_jar(tmp_path / "target" / "app.jar")


@pytest.fixture
def library_dir(tmp_path: Path) -> Path:
    path = tmp_path / "deps"
    path.mkdir()
    return path


@pytest.fixture
def make_library(library_dir: Path):
    """Factory writing a small dependency jar named ``<name>``."""

    def _make(name: str) -> Path:
        return build_library(library_dir / name)

    return _make


@pytest.fixture
def loader_jar(tmp_path: Path) -> Path:
    return build_loader(tmp_path / "loader" / "spring-boot-loader.jar")
