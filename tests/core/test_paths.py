"""Tests for the data directory layout."""

import importlib
import os
from datetime import date, datetime
from pathlib import Path
from unittest import mock

import pytest


@pytest.fixture
def paths(tmp_path: Path):
    """The paths module reloaded against a temporary data root."""
    with mock.patch.dict(os.environ, {"SCREENCAP_DATA_ROOT": str(tmp_path)}):
        from screencap.core import paths

        importlib.reload(paths)
        yield paths
    importlib.reload(paths)


class TestDataDirectories:
    """Test data directory creation and management."""

    def test_ensure_data_directories_creates_all_required_dirs(self, paths, tmp_path: Path):
        assert not (tmp_path / "db").exists()

        results = paths.ensure_data_directories()

        assert (tmp_path / "db").is_dir()
        assert (tmp_path / "logs").is_dir()
        assert (tmp_path / "screenshots" / "originals").is_dir()
        assert (tmp_path / "cache" / "ocr").is_dir()
        assert results["db"] is True
        assert all(results.values())

    def test_ensure_data_directories_is_idempotent(self, paths):
        paths.ensure_data_directories()

        results = paths.ensure_data_directories()

        assert not any(results.values())

    def test_data_root_override(self, paths, tmp_path: Path):
        assert paths.DATA_ROOT == tmp_path
        assert paths.DB_PATH == tmp_path / "db" / "screencap.sqlite"
        assert paths.CONFIG_PATH == tmp_path / "config.json"


class TestDailyPaths:
    """Test per-day directories."""

    def test_daily_dirs_use_compact_date(self, paths, tmp_path: Path):
        dirs = paths.get_daily_dirs(date(2025, 3, 7))

        assert dirs["originals"] == tmp_path / "screenshots" / "originals" / "20250307"
        assert dirs["ocr"] == tmp_path / "cache" / "ocr" / "20250307"

    def test_ensure_daily_dirs_creates_them(self, paths):
        dirs = paths.ensure_daily_dirs(datetime(2025, 3, 7, 14, 30))

        assert all(path.is_dir() for path in dirs.values())

    def test_screenshot_path(self, paths, tmp_path: Path):
        path = paths.get_screenshot_path("abc", datetime(2025, 3, 7, 23, 59))

        assert path == tmp_path / "screenshots" / "originals" / "20250307" / "abc.webp"
