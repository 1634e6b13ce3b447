"""Tests for configuration loading, validation and the typed view."""

import json
import os
from unittest import mock

from screencap.core.config import (
    DEFAULT_CONFIG,
    PipelineConfig,
    get_api_key,
    get_config_value,
    load_config,
    save_config,
    set_config_value,
    validate_config,
)


class TestLoadSave:
    """Test persistence of config.json."""

    def test_missing_file_yields_defaults(self, tmp_path):
        config = load_config(tmp_path / "config.json")

        assert config == DEFAULT_CONFIG
        assert config is not DEFAULT_CONFIG

    def test_stored_values_merge_over_defaults(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"capture": {"interval_seconds": 60}}))

        config = load_config(path)

        assert config["capture"]["interval_seconds"] == 60
        assert config["capture"]["paused"] is False
        assert config["queue"]["max_attempts"] == 3

    def test_corrupt_file_falls_back_to_defaults(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text("{not json")

        assert load_config(path) == DEFAULT_CONFIG

    def test_save_and_reload(self, tmp_path):
        path = tmp_path / "nested" / "config.json"
        config = load_config(path)
        config["merge"]["stable_hash_tolerance"] = 6

        assert save_config(config, path)
        assert load_config(path)["merge"]["stable_hash_tolerance"] == 6


class TestValues:
    def test_get_config_value_by_dotted_path(self):
        assert get_config_value("queue.backoff_base_seconds", DEFAULT_CONFIG) == 15.0

    def test_set_config_value_persists_valid_values(self, tmp_path):
        path = tmp_path / "config.json"

        assert set_config_value("capture.interval_seconds", 120, path)
        assert load_config(path)["capture"]["interval_seconds"] == 120

    def test_set_config_value_rejects_invalid_values(self, tmp_path):
        path = tmp_path / "config.json"

        assert not set_config_value("queue.classify_concurrency", 0, path)
        assert not path.exists()


class TestValidation:
    """Test validate_config."""

    def test_defaults_are_valid(self):
        assert validate_config(DEFAULT_CONFIG) == []

    def test_out_of_range_and_wrong_types(self):
        config = load_config("/nonexistent/config.json")
        config["confidence"]["addiction_auto_track"] = 1.5
        config["queue"]["max_attempts"] = "three"

        errors = validate_config(config)

        assert any("addiction_auto_track" in e for e in errors)
        assert any("max_attempts" in e for e in errors)

    def test_threshold_ordering(self):
        config = load_config("/nonexistent/config.json")
        config["confidence"]["addiction_candidate"] = 0.9

        assert validate_config(config) == [
            "confidence.addiction_candidate must not exceed addiction_auto_track"
        ]


class TestPipelineConfig:
    def test_built_from_sections(self):
        config = load_config("/nonexistent/config.json")
        config["merge"]["lookback_seconds"] = 120
        config["queue"]["classify_concurrency"] = 4

        pipeline = PipelineConfig.from_config(config)

        assert pipeline.merge_lookback_seconds == 120
        assert pipeline.classify_concurrency == 4
        assert pipeline.backoff_max_seconds == 900.0

    def test_empty_dict_uses_defaults(self):
        assert PipelineConfig.from_config({}) == PipelineConfig()


class TestEnvironment:
    def test_api_key_from_environment(self):
        with mock.patch.dict(os.environ, {"OPENAI_API_KEY": "sk-test"}):
            assert get_api_key() == "sk-test"
        with mock.patch.dict(os.environ, {"OPENAI_API_KEY": ""}):
            assert get_api_key() is None
