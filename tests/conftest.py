"""Shared pytest fixtures for synchive tests."""

from __future__ import annotations

import os
import zlib
from pathlib import Path

import pytest
from dotenv import load_dotenv

from synchive.config_schema import RunConfiguration

load_dotenv()

_SYNCHIVE_ENV = (
    "SYNCHIVE_CONFIG",
    "SYNCHIVE_EMBED_CHECKSUM",
    "SYNCHIVE_DELIMITERS",
    "SYNCHIVE_SYNTHESIS_DELIMITER",
    "SYNCHIVE_SCAN_WITHOUT_DELIMITERS",
    "SYNCHIVE_EXTENSIONS",
    "SYNCHIVE_TRUST_FILENAME_CHECKSUMS",
    "SYNCHIVE_MAX_WORKERS",
    "LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep developer SYNCHIVE_* settings out of the tests."""
    for key in _SYNCHIVE_ENV:
        monkeypatch.delenv(key, raising=False)


def crc(data: bytes) -> str:
    """Expected checksum of *data*."""
    return f"{zlib.crc32(data) & 0xFFFFFFFF:08x}"


def write_tree(root: Path, files: dict[str, bytes]) -> Path:
    """Create *files* (relative path -> bytes) under *root*."""
    root.mkdir(parents=True, exist_ok=True)
    for rel, data in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
    return root


def list_tree(root: Path) -> dict[str, bytes]:
    """Every file under *root* as relative path -> bytes."""
    result = {}
    for dirpath, _, filenames in os.walk(root):
        for name in filenames:
            path = Path(dirpath) / name
            result[path.relative_to(root).as_posix()] = path.read_bytes()
    return result


@pytest.fixture
def source(tmp_path: Path) -> Path:
    path = tmp_path / "source"
    path.mkdir()
    return path


@pytest.fixture
def destination(tmp_path: Path) -> Path:
    path = tmp_path / "destination"
    path.mkdir()
    return path


@pytest.fixture
def config() -> RunConfiguration:
    """Default configuration with progress events unthrottled."""
    return RunConfiguration(progress_interval=0.0, max_workers=2)


@pytest.fixture
def embed_config() -> RunConfiguration:
    return RunConfiguration(
        embed_checksum_in_filename=True,
        progress_interval=0.0,
        max_workers=2,
    )
