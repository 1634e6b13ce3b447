"""
Screencap Classify Module

Classifier gateway, output schemas, confidence thresholds and project
name canonicalization.
"""

from .confidence import ConfidenceOutcome, ConfidenceThresholds, evaluate
from .gateway import ClassifierGateway
from .projects import ProjectNormalizer, canonicalize_project, normalize_projects
from .schemas import ClassificationResult

__all__ = [
    "ClassificationResult",
    "ClassifierGateway",
    "ConfidenceOutcome",
    "ConfidenceThresholds",
    "ProjectNormalizer",
    "canonicalize_project",
    "evaluate",
    "normalize_projects",
]
