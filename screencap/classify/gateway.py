"""
Classifier Gateway

Sends an event's evidence to the OpenAI chat completions API and turns the
JSON answer into a ClassificationResult.

Failures are typed so the queue can apply the right policy:
- TransientServiceError: network, timeout, rate limit, 5xx
- PermanentServiceError: rejected request, unusable or invalid output
"""

import logging
import os
from typing import Any

from openai import OpenAI, OpenAIError

from screencap.capture.context import Evidence
from screencap.classify.prompts import build_classification_messages
from screencap.classify.schemas import ClassificationResult, validate_with_retry
from screencap.core.errors import PermanentServiceError, TransientServiceError
from screencap.core.logging import OperationTimer
from screencap.core.retry import is_retryable_openai_error

logger = logging.getLogger(__name__)

DEFAULT_CLASSIFIER_MODEL = "gpt-4o-mini"


class ClassifierGateway:
    """
    OpenAI-backed event classifier.

    The client is created lazily so the gateway can exist before an API key
    has been configured.
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str = DEFAULT_CLASSIFIER_MODEL,
        timeout: float = 60,
        projects: list[str] | None = None,
        tracked_addictions: list[str] | None = None,
    ):
        self.model = model
        self.timeout = timeout
        self.projects = list(projects or [])
        self.tracked_addictions = list(tracked_addictions or [])
        self._api_key = api_key
        self._client: OpenAI | None = None

    def _get_client(self) -> OpenAI:
        if self._client is None:
            self._client = OpenAI(api_key=self._api_key, timeout=self.timeout, max_retries=0)
        return self._client

    def is_configured(self) -> bool:
        """True when an API key is available."""
        return bool(self._api_key or os.environ.get("OPENAI_API_KEY"))

    def classify(
        self,
        evidence: Evidence,
        projects: list[str] | None = None,
        selected_project: str | None = None,
    ) -> ClassificationResult:
        """
        Classify one event.

        Args:
            evidence: Context, OCR text and screenshot for the event
            projects: Known project names (defaults to the configured list)
            selected_project: Project the user already assigned

        Returns:
            ClassificationResult with confidence capped by the evidence ceiling

        Raises:
            TransientServiceError: retry later
            PermanentServiceError: retrying will not help
        """
        messages = build_classification_messages(
            evidence,
            projects=projects if projects is not None else self.projects,
            tracked_addictions=self.tracked_addictions,
            selected_project=selected_project,
        )

        try:
            with OperationTimer(logger, "classify", event_id=evidence.event_id):
                response = self._get_client().chat.completions.create(
                    model=self.model,
                    messages=messages,
                    max_completion_tokens=1024,
                    response_format={"type": "json_object"},
                )
        except OpenAIError as e:
            if is_retryable_openai_error(e):
                raise TransientServiceError(f"Classifier unavailable: {e}", service="classifier") from e
            raise PermanentServiceError(f"Classifier rejected request: {e}", service="classifier") from e

        if not response.choices:
            raise PermanentServiceError("Classifier returned no choices", service="classifier")

        response_text = response.choices[0].message.content or ""
        validation = validate_with_retry(response_text)
        if not validation.valid:
            raise PermanentServiceError(
                f"Classifier output failed validation: {validation.error}", service="classifier"
            )

        result = ClassificationResult.from_schema(validation.data)
        if not self.tracked_addictions:
            result.addiction_candidate = None
            result.addiction_confidence = None
            result.addiction_prompt = None

        if evidence.confidence_ceiling is not None and result.confidence is not None:
            result.confidence = min(result.confidence, evidence.confidence_ceiling)

        result.evidence = {
            "model": self.model,
            "ocr_used": evidence.ocr_text is not None,
            "ocr_failed": evidence.ocr_failed,
        }
        return result

    def test_connection(self) -> dict[str, Any]:
        """Check that the API key works and the model is reachable."""
        if not self.is_configured():
            return {"success": False, "model": self.model, "error": "OPENAI_API_KEY is not set"}

        try:
            self._get_client().models.retrieve(self.model)
        except OpenAIError as e:
            logger.warning(f"Classifier connection test failed: {e}")
            return {"success": False, "model": self.model, "error": str(e)}

        return {"success": True, "model": self.model, "error": None}
