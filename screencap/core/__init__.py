"""
Screencap Core Module

Path management, configuration, logging, errors and change notifications
shared by the capture and classification pipeline.
"""

from .paths import (
    CACHE_DIR,
    CONFIG_PATH,
    DATA_ROOT,
    DB_DIR,
    DB_PATH,
    LOG_DIR,
    OCR_CACHE_DIR,
    ORIGINALS_DIR,
    SCREENSHOTS_DIR,
    ensure_daily_dirs,
    ensure_data_directories,
    get_daily_dirs,
    get_screenshot_path,
)

__all__ = [
    # Directory paths
    "DATA_ROOT",
    "DB_DIR",
    "DB_PATH",
    "CONFIG_PATH",
    "LOG_DIR",
    "CACHE_DIR",
    "SCREENSHOTS_DIR",
    "ORIGINALS_DIR",
    "OCR_CACHE_DIR",
    # Functions
    "ensure_data_directories",
    "ensure_daily_dirs",
    "get_daily_dirs",
    "get_screenshot_path",
]
