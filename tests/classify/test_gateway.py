"""Tests for the OpenAI classifier gateway."""

import json
import os
from unittest import mock

import httpx
import openai
import pytest

from screencap.capture.context import Evidence
from screencap.classify.gateway import ClassifierGateway
from screencap.core.errors import PermanentServiceError, TransientServiceError

ANSWER = {
    "category": "Leisure",
    "subcategories": ["video"],
    "caption": "Watching a cooking video",
    "tags": ["youtube"],
    "confidence": 0.9,
    "project": None,
    "project_progress": {"shown": False, "confidence": 0.0},
    "addiction": {"name": "YouTube", "confidence": 0.6, "prompt": "Watching YouTube?"},
}

REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")


def _response(content: str | None):
    message = mock.Mock(content=content)
    return mock.Mock(choices=[mock.Mock(message=message)])


def _gateway(tracked=("YouTube",)) -> ClassifierGateway:
    gateway = ClassifierGateway(api_key="sk-test", tracked_addictions=list(tracked))
    gateway._client = mock.Mock()
    return gateway


def _evidence(**overrides) -> Evidence:
    values = {"event_id": "evt-1", "image_path": None, "context": None, "app_name": "Safari"}
    values.update(overrides)
    return Evidence(**values)


class TestClassify:
    """Test classify() result handling."""

    def test_parses_answer(self):
        gateway = _gateway()
        gateway._client.chat.completions.create.return_value = _response(json.dumps(ANSWER))

        result = gateway.classify(_evidence(), projects=["Screencap"])

        assert result.category == "Leisure"
        assert result.caption == "Watching a cooking video"
        assert result.confidence == 0.9
        assert result.addiction_candidate == "YouTube"
        assert result.evidence["model"] == gateway.model
        kwargs = gateway._client.chat.completions.create.call_args.kwargs
        assert kwargs["response_format"] == {"type": "json_object"}

    def test_confidence_ceiling_caps_result(self):
        gateway = _gateway()
        gateway._client.chat.completions.create.return_value = _response(json.dumps(ANSWER))

        result = gateway.classify(_evidence(ocr_failed=True, confidence_ceiling=0.5))

        assert result.confidence == 0.5
        assert result.evidence["ocr_failed"]

    def test_addiction_cleared_when_nothing_tracked(self):
        gateway = _gateway(tracked=())
        gateway._client.chat.completions.create.return_value = _response(json.dumps(ANSWER))

        result = gateway.classify(_evidence())

        assert result.addiction_candidate is None
        assert result.addiction_confidence is None
        assert result.addiction_prompt is None


class TestFailures:
    def test_connection_error_is_transient(self):
        gateway = _gateway()
        gateway._client.chat.completions.create.side_effect = openai.APIConnectionError(request=REQUEST)

        with pytest.raises(TransientServiceError):
            gateway.classify(_evidence())

    def test_bad_request_is_permanent(self):
        gateway = _gateway()
        gateway._client.chat.completions.create.side_effect = openai.BadRequestError(
            "bad image", response=httpx.Response(400, request=REQUEST), body=None
        )

        with pytest.raises(PermanentServiceError):
            gateway.classify(_evidence())

    def test_invalid_output_is_permanent(self):
        gateway = _gateway()
        gateway._client.chat.completions.create.return_value = _response("I cannot help with that")

        with pytest.raises(PermanentServiceError):
            gateway.classify(_evidence())

    def test_no_choices_is_permanent(self):
        gateway = _gateway()
        gateway._client.chat.completions.create.return_value = mock.Mock(choices=[])

        with pytest.raises(PermanentServiceError):
            gateway.classify(_evidence())


class TestConnection:
    def test_without_key(self):
        with mock.patch.dict(os.environ, {"OPENAI_API_KEY": ""}):
            gateway = ClassifierGateway(api_key=None)
            assert not gateway.is_configured()
            result = gateway.test_connection()

        assert result["success"] is False

    def test_success(self):
        gateway = _gateway()

        result = gateway.test_connection()

        assert result == {"success": True, "model": gateway.model, "error": None}
        gateway._client.models.retrieve.assert_called_once_with(gateway.model)
