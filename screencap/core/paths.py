"""
Data Directory Structure Management for Screencap

All paths are relative to the DATA_ROOT (~/Screencap by default).

Directory structure:
    Screencap/
    ├── config.json                # User configuration
    ├── db/screencap.sqlite        # SQLite database (source of truth)
    ├── logs/                      # Rotating log files
    ├── screenshots/
    │   └── originals/YYYYMMDD/    # Full-size captures referenced by events
    └── cache/
        └── ocr/YYYYMMDD/          # OCR results keyed by image hash
"""

import logging
import os
from datetime import date, datetime
from pathlib import Path

logger = logging.getLogger(__name__)

# Allow override via environment variable for testing
_data_root_override = os.environ.get("SCREENCAP_DATA_ROOT")
DATA_ROOT: Path = Path(_data_root_override) if _data_root_override else Path.home() / "Screencap"

# Primary directories
DB_DIR: Path = DATA_ROOT / "db"
LOG_DIR: Path = DATA_ROOT / "logs"
SCREENSHOTS_DIR: Path = DATA_ROOT / "screenshots"
CACHE_DIR: Path = DATA_ROOT / "cache"

# Files
DB_PATH: Path = DB_DIR / "screencap.sqlite"
CONFIG_PATH: Path = DATA_ROOT / "config.json"

# Screenshot subdirectories
ORIGINALS_DIR: Path = SCREENSHOTS_DIR / "originals"
OCR_CACHE_DIR: Path = CACHE_DIR / "ocr"

# All directories that should exist
_REQUIRED_DIRS: tuple[Path, ...] = (
    DB_DIR,
    LOG_DIR,
    SCREENSHOTS_DIR,
    ORIGINALS_DIR,
    CACHE_DIR,
    OCR_CACHE_DIR,
)


def ensure_data_directories() -> dict[str, bool]:
    """
    Ensure all required data directories exist.

    Idempotent and safe to call multiple times.

    Returns:
        Dictionary mapping directory names to whether they were created (True)
        or already existed (False).
    """
    results: dict[str, bool] = {}

    for dir_path in _REQUIRED_DIRS:
        try:
            created = not dir_path.exists()
            dir_path.mkdir(parents=True, exist_ok=True)
            results[str(dir_path.relative_to(DATA_ROOT))] = created
            if created:
                logger.info(f"Created directory: {dir_path}")
        except OSError as e:
            logger.error(f"Failed to create directory {dir_path}: {e}")
            raise

    return results


def _date_str(dt: datetime | date | None) -> str:
    if dt is None:
        dt = date.today()
    elif isinstance(dt, datetime):
        dt = dt.date()
    return f"{dt.year:04d}{dt.month:02d}{dt.day:02d}"


def get_daily_dirs(dt: datetime | date | None = None) -> dict[str, Path]:
    """
    Get the per-day screenshot and cache directories for a date.

    Args:
        dt: The datetime or date. Defaults to today.

    Returns:
        Dictionary with 'originals' and 'ocr' paths
    """
    date_str = _date_str(dt)
    return {
        "originals": ORIGINALS_DIR / date_str,
        "ocr": OCR_CACHE_DIR / date_str,
    }


def ensure_daily_dirs(dt: datetime | date | None = None) -> dict[str, Path]:
    """
    Ensure the per-day directories for a date exist.

    Args:
        dt: The datetime or date. Defaults to today.

    Returns:
        Dictionary with paths that were created/verified
    """
    dirs = get_daily_dirs(dt)

    for _name, dir_path in dirs.items():
        dir_path.mkdir(parents=True, exist_ok=True)
        logger.debug(f"Ensured directory exists: {dir_path}")

    return dirs


def get_screenshot_path(screenshot_id: str, dt: datetime | date | None = None) -> Path:
    """
    Get the path an original screenshot is stored at.

    Args:
        screenshot_id: Screenshot identifier
        dt: Capture time (selects the daily directory)

    Returns:
        Path to the WebP file
    """
    return get_daily_dirs(dt)["originals"] / f"{screenshot_id}.webp"


if __name__ == "__main__":
    import fire

    def init():
        """Initialize all data directories."""
        results = ensure_data_directories()
        created_count = sum(1 for created in results.values() if created)
        return {
            "data_root": str(DATA_ROOT),
            "directories": results,
            "created": created_count,
            "total": len(results),
        }

    def show():
        """Show all data directory paths."""
        return {
            "data_root": str(DATA_ROOT),
            "db_file": str(DB_PATH),
            "config": str(CONFIG_PATH),
            "logs": str(LOG_DIR),
            "originals": str(ORIGINALS_DIR),
            "ocr_cache": str(OCR_CACHE_DIR),
        }

    fire.Fire({"init": init, "show": show})
