"""
Classification Output Schemas

Validates the classifier's JSON with pydantic and converts it into the
ClassificationResult the rest of the pipeline works with. Lenient about
missing fields and nulls (LLMs drop them), strict about types and ranges.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

CATEGORIES = ("Study", "Work", "Leisure", "Chores", "Social", "Unknown")

Category = Literal["Study", "Work", "Leisure", "Chores", "Social", "Unknown"]


class ProjectProgressItem(BaseModel):
    """Whether the screenshot shows visible progress on the project."""

    shown: bool = Field(False, description="A stakeholder-visible artifact of the project is on screen")
    confidence: float = Field(0.0, ge=0.0, le=1.0, description="Confidence score")


class AddictionItem(BaseModel):
    """Best match among the user's tracked addictions, if any."""

    name: str | None = Field(None, description="Tracked addiction name, or null")
    confidence: float = Field(0.0, ge=0.0, le=1.0, description="Confidence score")
    prompt: str | None = Field(None, description="Question to ask the user when unsure")


class ClassificationSchema(BaseModel):
    """Canonical schema for one classifier response."""

    category: Category = Field("Unknown", description="Top-level activity category")
    subcategories: list[str] = Field(default_factory=list)
    caption: str = Field("", description="3-8 word description of the activity")
    tags: list[str] = Field(default_factory=list)
    confidence: float = Field(0.0, ge=0.0, le=1.0)
    project: str | None = Field(None, description="One of the user's projects, or null")
    project_progress: ProjectProgressItem = Field(default_factory=ProjectProgressItem)
    addiction: AddictionItem = Field(default_factory=AddictionItem)

    @field_validator("category", mode="before")
    @classmethod
    def normalize_category(cls, v: Any) -> Any:
        if isinstance(v, str):
            for category in CATEGORIES:
                if v.strip().lower() == category.lower():
                    return category
            return "Unknown"
        return v

    @field_validator("subcategories", "tags", mode="before")
    @classmethod
    def clean_string_list(cls, v: Any) -> Any:
        if v is None:
            return []
        if isinstance(v, str):
            v = [v]
        if isinstance(v, list):
            seen = []
            for item in v:
                if isinstance(item, str) and item.strip() and item.strip() not in seen:
                    seen.append(item.strip())
            return seen
        return v

    @model_validator(mode="before")
    @classmethod
    def handle_missing_fields(cls, data: Any) -> Any:
        """Replace nulls with defaults so a partial answer still validates."""
        if isinstance(data, dict):
            for key in ("project_progress", "addiction"):
                if data.get(key) is None:
                    data.pop(key, None)
            if data.get("caption") is None:
                data["caption"] = ""
            if isinstance(data.get("project"), str) and not data["project"].strip():
                data["project"] = None
        return data


@dataclass
class ClassificationResult:
    """Normalized classifier output for one event."""

    category: str = "Unknown"
    subcategories: list[str] = field(default_factory=list)
    caption: str | None = None
    tags: list[str] = field(default_factory=list)
    confidence: float | None = None
    project: str | None = None
    project_progress_shown: bool = False
    project_progress_confidence: float | None = None
    tracked_addiction: str | None = None
    addiction_candidate: str | None = None
    addiction_confidence: float | None = None
    addiction_prompt: str | None = None
    evidence: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_schema(cls, schema: ClassificationSchema) -> "ClassificationResult":
        project_progress = schema.project_progress
        addiction = schema.addiction
        return cls(
            category=schema.category,
            subcategories=list(schema.subcategories),
            caption=schema.caption.strip() or None,
            tags=list(schema.tags),
            confidence=schema.confidence,
            project=schema.project.strip() if schema.project else None,
            project_progress_shown=project_progress.shown,
            project_progress_confidence=project_progress.confidence if project_progress.shown else 0.0,
            addiction_candidate=addiction.name.strip() if addiction.name and addiction.name.strip() else None,
            addiction_confidence=addiction.confidence if addiction.name else None,
            addiction_prompt=addiction.prompt,
        )


@dataclass
class SchemaValidationResult:
    """Result of schema validation."""

    valid: bool
    data: ClassificationSchema | None = None
    error: str | None = None
    raw_json: dict | None = None


def validate_classification(json_str: str | dict) -> SchemaValidationResult:
    """Validate classifier output (JSON string or parsed dict)."""
    if isinstance(json_str, str):
        try:
            data = json.loads(json_str)
        except json.JSONDecodeError as e:
            return SchemaValidationResult(valid=False, error=f"Invalid JSON: {e}")
    else:
        data = json_str

    if not isinstance(data, dict):
        return SchemaValidationResult(valid=False, error="Top level is not an object")

    try:
        validated = ClassificationSchema.model_validate(data)
    except ValidationError as e:
        return SchemaValidationResult(valid=False, error=str(e), raw_json=data)

    return SchemaValidationResult(valid=True, data=validated, raw_json=data)


def fix_common_issues(json_str: str) -> str:
    """Strip markdown fences and text around the outermost JSON object."""
    if "```json" in json_str:
        json_str = json_str.split("```json")[-1]
    if "```" in json_str:
        json_str = json_str.split("```")[0]

    json_str = json_str.strip()

    start_idx = json_str.find("{")
    if start_idx > 0:
        json_str = json_str[start_idx:]

    end_idx = json_str.rfind("}")
    if end_idx != -1:
        json_str = json_str[: end_idx + 1]

    return json_str


def validate_with_retry(json_str: str, max_attempts: int = 2) -> SchemaValidationResult:
    """
    Validate JSON, retrying after fix_common_issues.

    Returns:
        Result of the first successful attempt, else the last failure
    """
    last_result = None
    for attempt in range(1, max_attempts + 1):
        if attempt > 1:
            json_str = fix_common_issues(json_str)

        result = validate_classification(json_str)
        if result.valid:
            return result

        last_result = result
        logger.debug(f"Validation attempt {attempt} failed: {result.error}")

    return last_result or SchemaValidationResult(valid=False, error="Validation failed")


if __name__ == "__main__":
    import fire

    def validate(json_str: str):
        """Validate a classifier response."""
        result = validate_with_retry(json_str)
        return {"valid": result.valid, "error": result.error}

    def schema():
        """Print the JSON schema."""
        return ClassificationSchema.model_json_schema()

    fire.Fire({"validate": validate, "schema": schema})
