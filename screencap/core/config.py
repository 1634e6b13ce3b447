"""
Configuration for Screencap.

Settings live in ``config.json`` under the data root and are merged over
DEFAULT_CONFIG on load, so new keys pick up their defaults automatically.
Secrets come from the environment (optionally via a ``.env`` file).

The pipeline components take a typed PipelineConfig built from the loaded
dict rather than reading the file themselves.
"""

import copy
import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from screencap.core.paths import CONFIG_PATH, DATA_ROOT

logger = logging.getLogger(__name__)

DEFAULT_CONFIG: dict[str, Any] = {
    "capture": {
        "interval_seconds": 300,
        "paused": False,
        "capture_all_displays": False,
    },
    "merge": {
        # interval * 2 + 30 so that a single skipped tick still merges
        "lookback_seconds": 630,
        "stable_hash_tolerance": 4,
        "requeue_confidence_below": 0.5,
    },
    "queue": {
        "max_attempts": 3,
        "backoff_base_seconds": 15.0,
        "backoff_max_seconds": 900.0,
        "poll_interval_seconds": 10,
        "batch_size": 10,
        "classify_concurrency": 2,
    },
    "confidence": {
        "addiction_auto_track": 0.75,
        "addiction_candidate": 0.4,
        "progress_auto_track": 0.7,
        "ocr_failure_confidence_ceiling": 0.6,
    },
    "projects": {
        "normalize_interval_minutes": 60,
    },
    "classifier": {
        "model": "gpt-4o-mini",
        "ocr_model": "gpt-4o-mini",
        "timeout_seconds": 60,
        "tracked_addictions": [],
        "known_projects": [],
    },
}


def load_config(path: Path | str | None = None) -> dict[str, Any]:
    """
    Load configuration, falling back to defaults for missing keys.

    A missing or unreadable file yields a copy of DEFAULT_CONFIG.
    """
    path = Path(path) if path else CONFIG_PATH
    config = copy.deepcopy(DEFAULT_CONFIG)

    if not path.exists():
        return config

    try:
        with open(path, encoding="utf-8") as f:
            stored = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.warning(f"Could not read config at {path}, using defaults: {e}")
        return config

    if not isinstance(stored, dict):
        logger.warning(f"Ignoring config at {path}: top level is not an object")
        return config

    for section, values in stored.items():
        if isinstance(values, dict) and isinstance(config.get(section), dict):
            config[section].update(values)
        else:
            config[section] = values

    return config


def save_config(config: dict[str, Any], path: Path | str | None = None) -> bool:
    """Write configuration to disk. Returns False on failure."""
    path = Path(path) if path else CONFIG_PATH
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = path.with_suffix(".json.tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(config, f, indent=2, sort_keys=True)
        tmp_path.replace(path)
        return True
    except OSError as e:
        logger.error(f"Failed to save config to {path}: {e}")
        return False


def get_config_value(key: str, config: dict[str, Any] | None = None) -> Any:
    """Look up a dot-separated key path such as ``capture.interval_seconds``."""
    node: Any = config if config is not None else load_config()
    for part in key.split("."):
        if not isinstance(node, dict) or part not in node:
            raise KeyError(key)
        node = node[part]
    return node


def set_config_value(key: str, value: Any, path: Path | str | None = None) -> bool:
    """
    Set a single value by dot-separated key path and persist it.

    The updated config must pass validate_config, otherwise nothing is written.
    """
    config = load_config(path)
    parts = key.split(".")
    node = config
    for part in parts[:-1]:
        node = node.setdefault(part, {})
        if not isinstance(node, dict):
            logger.error(f"Cannot set {key}: {part} is not a section")
            return False
    node[parts[-1]] = value

    errors = validate_config(config)
    if errors:
        logger.error(f"Rejected config update {key}={value!r}: {errors}")
        return False

    return save_config(config, path)


def _check_range(
    errors: list[str],
    config: dict[str, Any],
    key: str,
    low: float,
    high: float | None = None,
) -> None:
    try:
        value = get_config_value(key, config)
    except KeyError:
        errors.append(f"{key} is missing")
        return
    if isinstance(value, bool) or not isinstance(value, int | float):
        errors.append(f"{key} must be a number")
        return
    if value < low or (high is not None and value > high):
        bound = f"[{low}, {high}]" if high is not None else f">= {low}"
        errors.append(f"{key} must be {bound}, got {value}")


def validate_config(config: dict[str, Any]) -> list[str]:
    """Return a list of human-readable problems (empty when valid)."""
    errors: list[str] = []

    _check_range(errors, config, "capture.interval_seconds", 5)
    _check_range(errors, config, "merge.lookback_seconds", 0)
    _check_range(errors, config, "merge.stable_hash_tolerance", 0, 64)
    _check_range(errors, config, "merge.requeue_confidence_below", 0.0, 1.0)
    _check_range(errors, config, "queue.max_attempts", 1)
    _check_range(errors, config, "queue.backoff_base_seconds", 0)
    _check_range(errors, config, "queue.backoff_max_seconds", 0)
    _check_range(errors, config, "queue.poll_interval_seconds", 1)
    _check_range(errors, config, "queue.batch_size", 1)
    _check_range(errors, config, "queue.classify_concurrency", 1, 16)
    for key in (
        "addiction_auto_track",
        "addiction_candidate",
        "progress_auto_track",
        "ocr_failure_confidence_ceiling",
    ):
        _check_range(errors, config, f"confidence.{key}", 0.0, 1.0)

    if not errors:
        confidence = config["confidence"]
        if confidence["addiction_candidate"] > confidence["addiction_auto_track"]:
            errors.append("confidence.addiction_candidate must not exceed addiction_auto_track")
        queue = config["queue"]
        if queue["backoff_base_seconds"] > queue["backoff_max_seconds"]:
            errors.append("queue.backoff_base_seconds must not exceed backoff_max_seconds")

    return errors


def load_environment() -> None:
    """Load ``.env`` from the working directory and the data root."""
    load_dotenv()
    load_dotenv(DATA_ROOT / ".env")


def get_api_key() -> str | None:
    """OpenAI API key from the environment."""
    return os.environ.get("OPENAI_API_KEY") or None


@dataclass(frozen=True)
class PipelineConfig:
    """Typed view of the settings the capture and classification pipeline reads."""

    capture_interval_seconds: float = 300
    merge_lookback_seconds: float = 630
    stable_hash_tolerance: int = 4
    requeue_confidence_below: float = 0.5
    max_attempts: int = 3
    backoff_base_seconds: float = 15.0
    backoff_max_seconds: float = 900.0
    queue_poll_interval_seconds: float = 10
    queue_batch_size: int = 10
    classify_concurrency: int = 2
    addiction_auto_track: float = 0.75
    addiction_candidate: float = 0.4
    progress_auto_track: float = 0.7
    ocr_failure_confidence_ceiling: float = 0.6
    project_normalize_interval_minutes: float = 60
    classifier_model: str = "gpt-4o-mini"
    ocr_model: str = "gpt-4o-mini"
    classifier_timeout_seconds: float = 60
    capture_all_displays: bool = False

    @classmethod
    def from_config(cls, config: dict[str, Any] | None = None) -> "PipelineConfig":
        """Build from a loaded config dict (loads from disk when omitted)."""
        config = config if config is not None else load_config()
        capture = config.get("capture", {})
        merge = config.get("merge", {})
        queue = config.get("queue", {})
        confidence = config.get("confidence", {})
        classifier = config.get("classifier", {})
        defaults = cls()

        return cls(
            capture_interval_seconds=capture.get(
                "interval_seconds", defaults.capture_interval_seconds
            ),
            capture_all_displays=capture.get("capture_all_displays", defaults.capture_all_displays),
            merge_lookback_seconds=merge.get("lookback_seconds", defaults.merge_lookback_seconds),
            stable_hash_tolerance=merge.get(
                "stable_hash_tolerance", defaults.stable_hash_tolerance
            ),
            requeue_confidence_below=merge.get(
                "requeue_confidence_below", defaults.requeue_confidence_below
            ),
            max_attempts=queue.get("max_attempts", defaults.max_attempts),
            backoff_base_seconds=queue.get("backoff_base_seconds", defaults.backoff_base_seconds),
            backoff_max_seconds=queue.get("backoff_max_seconds", defaults.backoff_max_seconds),
            queue_poll_interval_seconds=queue.get(
                "poll_interval_seconds", defaults.queue_poll_interval_seconds
            ),
            queue_batch_size=queue.get("batch_size", defaults.queue_batch_size),
            classify_concurrency=queue.get("classify_concurrency", defaults.classify_concurrency),
            addiction_auto_track=confidence.get(
                "addiction_auto_track", defaults.addiction_auto_track
            ),
            addiction_candidate=confidence.get(
                "addiction_candidate", defaults.addiction_candidate
            ),
            progress_auto_track=confidence.get(
                "progress_auto_track", defaults.progress_auto_track
            ),
            ocr_failure_confidence_ceiling=confidence.get(
                "ocr_failure_confidence_ceiling", defaults.ocr_failure_confidence_ceiling
            ),
            project_normalize_interval_minutes=config.get("projects", {}).get(
                "normalize_interval_minutes", defaults.project_normalize_interval_minutes
            ),
            classifier_model=classifier.get("model", defaults.classifier_model),
            ocr_model=classifier.get("ocr_model", defaults.ocr_model),
            classifier_timeout_seconds=classifier.get(
                "timeout_seconds", defaults.classifier_timeout_seconds
            ),
        )
