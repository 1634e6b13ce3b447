"""Tests for classifier output validation."""

import json

from screencap.classify.schemas import (
    ClassificationResult,
    fix_common_issues,
    validate_classification,
    validate_with_retry,
)

VALID = {
    "category": "work",
    "subcategories": ["coding", "coding", " "],
    "caption": "Writing merge engine tests",
    "tags": "python",
    "confidence": 0.82,
    "project": "Screencap",
    "project_progress": {"shown": True, "confidence": 0.8},
    "addiction": None,
}


class TestValidation:
    """Test schema validation and normalization."""

    def test_valid_output_is_normalized(self):
        result = validate_classification(json.dumps(VALID))

        assert result.valid
        assert result.data.category == "Work"
        assert result.data.subcategories == ["coding"]
        assert result.data.tags == ["python"]
        assert result.data.addiction.name is None

    def test_unknown_category_becomes_unknown(self):
        result = validate_classification({**VALID, "category": "Gardening"})
        assert result.data.category == "Unknown"

    def test_out_of_range_confidence_is_invalid(self):
        result = validate_classification({**VALID, "confidence": 1.7})
        assert not result.valid

    def test_non_object_is_invalid(self):
        assert not validate_classification("[1, 2]").valid
        assert not validate_classification("not json").valid


class TestFixCommonIssues:
    def test_strips_fences_and_chatter(self):
        wrapped = f"Here you go:\n```json\n{json.dumps(VALID)}\n```\nAnything else?"

        assert json.loads(fix_common_issues(wrapped)) == VALID

    def test_validate_with_retry_recovers(self):
        result = validate_with_retry(f"Sure! {json.dumps(VALID)} Done.")

        assert result.valid
        assert result.data.project == "Screencap"


class TestClassificationResult:
    def test_from_schema(self):
        data = validate_classification(
            {**VALID, "addiction": {"name": "Doomscrolling", "confidence": 0.5, "prompt": "Doomscrolling?"}}
        ).data

        result = ClassificationResult.from_schema(data)

        assert result.category == "Work"
        assert result.caption == "Writing merge engine tests"
        assert result.project_progress_shown
        assert result.project_progress_confidence == 0.8
        assert result.addiction_candidate == "Doomscrolling"
        assert result.addiction_confidence == 0.5
        assert result.tracked_addiction is None

    def test_blank_caption_and_project_become_none(self):
        data = validate_classification({**VALID, "caption": None, "project": "  "}).data

        result = ClassificationResult.from_schema(data)

        assert result.caption is None
        assert result.project is None
