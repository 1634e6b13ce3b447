"""
Confidence Evaluation

Turns a classification result into the flags stored on an event. Pure and
side-effect free; anything malformed yields "no flags, confidence null"
rather than an error.
"""

import logging
import math
from dataclasses import dataclass

from screencap.classify.schemas import ClassificationResult
from screencap.core.config import PipelineConfig
from screencap.db.models import EVIDENCE_LLM

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConfidenceThresholds:
    addiction_auto_track: float = 0.75
    addiction_candidate: float = 0.4
    progress_auto_track: float = 0.7

    @classmethod
    def from_config(cls, config: PipelineConfig) -> "ConfidenceThresholds":
        return cls(
            addiction_auto_track=config.addiction_auto_track,
            addiction_candidate=config.addiction_candidate,
            progress_auto_track=config.progress_auto_track,
        )


@dataclass
class ConfidenceOutcome:
    """Flags derived from one result."""

    confidence: float | None = None
    tracked_addiction: str | None = None
    addiction_candidate: str | None = None
    addiction_confidence: float | None = None
    addiction_prompt: str | None = None
    project_progress: bool = False
    project_progress_confidence: float | None = None
    project_progress_evidence: str | None = None


def _probability(value: object) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    number = float(value)
    if math.isnan(number) or number < 0.0 or number > 1.0:
        raise ValueError(f"confidence out of range: {value!r}")
    return number


def evaluate(
    result: ClassificationResult | None,
    thresholds: ConfidenceThresholds | None = None,
) -> ConfidenceOutcome:
    """
    Apply confidence thresholds to a classification result.

    Addiction: at or above ``addiction_auto_track`` the addiction is tracked;
    at or above ``addiction_candidate`` it becomes a candidate awaiting user
    confirmation; below that nothing is flagged.

    Project progress: flagged only when progress was shown for a named project
    with confidence at or above ``progress_auto_track``.
    """
    thresholds = thresholds or ConfidenceThresholds()
    if result is None:
        return ConfidenceOutcome()

    try:
        outcome = ConfidenceOutcome(confidence=_probability(result.confidence))

        addiction_name = result.tracked_addiction or result.addiction_candidate
        addiction_confidence = _probability(result.addiction_confidence)
        if addiction_name and addiction_confidence is not None:
            if addiction_confidence >= thresholds.addiction_auto_track:
                outcome.tracked_addiction = addiction_name
                outcome.addiction_confidence = addiction_confidence
            elif addiction_confidence >= thresholds.addiction_candidate:
                outcome.addiction_candidate = addiction_name
                outcome.addiction_confidence = addiction_confidence
                outcome.addiction_prompt = result.addiction_prompt

        progress_confidence = _probability(result.project_progress_confidence)
        if (
            result.project_progress_shown
            and result.project
            and progress_confidence is not None
            and progress_confidence >= thresholds.progress_auto_track
        ):
            outcome.project_progress = True
            outcome.project_progress_confidence = progress_confidence
            outcome.project_progress_evidence = EVIDENCE_LLM

        return outcome
    except (TypeError, ValueError, AttributeError) as e:
        logger.warning(f"Ignoring malformed classification result: {e}")
        return ConfidenceOutcome()
