"""Tests for confidence thresholds."""

import pytest

from screencap.classify.confidence import ConfidenceThresholds, evaluate
from screencap.classify.schemas import ClassificationResult
from screencap.core.config import PipelineConfig
from screencap.db.models import EVIDENCE_LLM


def _result(**overrides) -> ClassificationResult:
    values = {"category": "Leisure", "confidence": 0.8}
    values.update(overrides)
    return ClassificationResult(**values)


class TestAddiction:
    """Test addiction thresholds."""

    @pytest.mark.parametrize(
        ("confidence", "tracked", "candidate"),
        [
            (0.9, "Doomscrolling", None),
            (0.75, "Doomscrolling", None),
            (0.5, None, "Doomscrolling"),
            (0.4, None, "Doomscrolling"),
            (0.2, None, None),
        ],
    )
    def test_thresholds(self, confidence, tracked, candidate):
        outcome = evaluate(
            _result(
                addiction_candidate="Doomscrolling",
                addiction_confidence=confidence,
                addiction_prompt="Were you doomscrolling?",
            )
        )

        assert outcome.tracked_addiction == tracked
        assert outcome.addiction_candidate == candidate
        assert (outcome.addiction_prompt is not None) == (candidate is not None)

    def test_custom_thresholds(self):
        thresholds = ConfidenceThresholds(addiction_auto_track=0.95, addiction_candidate=0.9)
        outcome = evaluate(
            _result(addiction_candidate="Gaming", addiction_confidence=0.92), thresholds
        )

        assert outcome.addiction_candidate == "Gaming"
        assert outcome.tracked_addiction is None


class TestProjectProgress:
    def test_confident_progress_on_named_project(self):
        outcome = evaluate(
            _result(project="Screencap", project_progress_shown=True, project_progress_confidence=0.7)
        )

        assert outcome.project_progress
        assert outcome.project_progress_confidence == 0.7
        assert outcome.project_progress_evidence == EVIDENCE_LLM

    @pytest.mark.parametrize(
        "overrides",
        [
            {"project": None, "project_progress_shown": True, "project_progress_confidence": 0.9},
            {"project": "Screencap", "project_progress_shown": False, "project_progress_confidence": 0.9},
            {"project": "Screencap", "project_progress_shown": True, "project_progress_confidence": 0.5},
        ],
    )
    def test_progress_not_flagged(self, overrides):
        outcome = evaluate(_result(**overrides))

        assert not outcome.project_progress
        assert outcome.project_progress_evidence is None


class TestMalformed:
    """Malformed input degrades to no flags."""

    def test_none_result(self):
        outcome = evaluate(None)
        assert outcome.confidence is None
        assert outcome.tracked_addiction is None

    @pytest.mark.parametrize("bad", [1.5, -0.1, float("nan"), "high"])
    def test_bad_confidence(self, bad):
        outcome = evaluate(_result(confidence=bad, addiction_candidate="X", addiction_confidence=0.9))

        assert outcome.confidence is None
        assert outcome.tracked_addiction is None
        assert not outcome.project_progress

    def test_thresholds_from_config(self):
        thresholds = ConfidenceThresholds.from_config(PipelineConfig(progress_auto_track=0.9))
        assert thresholds.progress_auto_track == 0.9
