"""
Tests for per-image inference dispatch and the inference client.
"""
import asyncio
import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import httpx
import openai
import pytest

from app.features.audit.exceptions import ConfigurationError, ContractError, InferenceError
from app.features.audit.schemas.audit import AuditMode, CapturedImage, Framework
from app.features.audit.services.analysis.dispatcher import AnalysisDispatcher, parse_model_output
from app.features.audit.services.analysis.inference_client import InferenceClient, classify_inference_error
from app.features.audit.services.analysis.prompts import ACCESSIBILITY_EMPHASIS, build_analysis_prompt
from tests.features.audit.fakes import FakeInferenceClient, model_output

API_REQUEST = httpx.Request("POST", "https://api.groq.com/openai/v1/chat/completions")


def _images(count):
    return [CapturedImage(data=f"image-{i}".encode(), mime_type="image/png") for i in range(count)]


def _status_error(cls, status_code, message="upstream error"):
    return cls(message, response=httpx.Response(status_code, request=API_REQUEST), body=None)


class ScoreByImageClient:
    """Scores each image by its index; later images answer first."""

    def __init__(self, count):
        self.count = count
        self.running = 0
        self.max_running = 0

    async def complete(self, prompt, image, max_tokens):
        index = int(image.data.decode().split("-")[1])
        self.running += 1
        self.max_running = max(self.max_running, self.running)
        try:
            await asyncio.sleep(0.01 * (self.count - index))
        finally:
            self.running -= 1
        return json.dumps(model_output(score=10 * index))


class TestParseModelOutput:
    def test_plain_json(self):
        assert parse_model_output('{"score": 80}') == {"score": 80}

    def test_code_fences_are_stripped(self):
        assert parse_model_output('```json\n{"score": 80}\n```') == {"score": 80}
        assert parse_model_output('```\n{"score": 80}\n```') == {"score": 80}

    def test_invalid_json_is_invalid_response(self):
        with pytest.raises(ContractError) as exc_info:
            parse_model_output("Sure! Here is your audit: score 80")

        assert exc_info.value.error_code == "INVALID_RESPONSE"
        assert exc_info.value.status_code == 502

    def test_non_object_is_invalid_response(self):
        with pytest.raises(ContractError):
            parse_model_output("[1, 2, 3]")

    def test_empty_reply_is_invalid_response(self):
        with pytest.raises(ContractError):
            parse_model_output("")


class TestPrompts:
    def test_prompt_names_framework(self):
        prompt = build_analysis_prompt(Framework.wcag, AuditMode.upload)

        assert "**wcag**" in prompt
        assert "WCAG 2.1" in prompt
        assert ACCESSIBILITY_EMPHASIS not in prompt

    def test_accessibility_mode_adds_emphasis(self):
        prompt = build_analysis_prompt(Framework.nielsen, AuditMode.accessibility)

        assert ACCESSIBILITY_EMPHASIS in prompt


class TestAnalysisDispatcher:
    async def test_one_call_per_image_with_token_budget(self):
        client = FakeInferenceClient()
        dispatcher = AnalysisDispatcher(client=client)

        outputs = await dispatcher.analyze_all(_images(3), Framework.nielsen, AuditMode.crawler, 4000)

        assert len(outputs) == 3
        assert len(client.calls) == 3
        assert {call["max_tokens"] for call in client.calls} == {4000}
        assert all("one page of a multi-page website scan" in call["prompt"] for call in client.calls)

    async def test_results_keep_image_order(self):
        client = ScoreByImageClient(count=3)
        dispatcher = AnalysisDispatcher(client=client, concurrency=3)

        outputs = await dispatcher.analyze_all(_images(3), Framework.nielsen, AuditMode.crawler, 2000)

        assert [output["score"] for output in outputs] == [0, 10, 20]

    async def test_concurrency_is_bounded(self):
        client = ScoreByImageClient(count=5)
        dispatcher = AnalysisDispatcher(client=client, concurrency=2)

        await dispatcher.analyze_all(_images(5), Framework.gestalt, AuditMode.upload, 2000)

        assert client.max_running <= 2

    async def test_one_failure_fails_the_batch_and_cancels_the_rest(self):
        cancelled = []

        class FailFirstClient:
            async def complete(self, prompt, image, max_tokens):
                if image.data == b"image-0":
                    raise InferenceError("Model inference failed", status_code=502)
                try:
                    await asyncio.Event().wait()
                except asyncio.CancelledError:
                    cancelled.append(image.data)
                    raise
                return "{}"

        dispatcher = AnalysisDispatcher(client=FailFirstClient(), concurrency=3)

        with pytest.raises(InferenceError):
            await dispatcher.analyze_all(_images(3), Framework.nielsen, AuditMode.crawler, 2000)

        assert sorted(cancelled) == [b"image-1", b"image-2"]

    async def test_invalid_reply_fails_the_batch(self):
        replies = [json.dumps(model_output()), "not json"]
        dispatcher = AnalysisDispatcher(client=FakeInferenceClient(lambda i: replies[i]), concurrency=1)

        with pytest.raises(ContractError):
            await dispatcher.analyze_all(_images(2), Framework.nielsen, AuditMode.upload, 2000)


class TestClassifyInferenceError:
    def test_rate_limit_is_429(self):
        error = classify_inference_error(_status_error(openai.RateLimitError, 429, "Rate limit reached"))

        assert error.error_code == "MODEL_ERROR"
        assert error.status_code == 429
        assert error.message == "AI quota exceeded. Please wait and try again."

    def test_payload_too_large_is_413(self):
        error = classify_inference_error(_status_error(openai.APIStatusError, 413, "Request too large"))

        assert error.status_code == 413
        assert "fewer pages" in error.message

    def test_payload_message_without_status(self):
        error = classify_inference_error(RuntimeError("request payload exceeds limit"))

        assert error.status_code == 413

    def test_other_failures_are_502(self):
        error = classify_inference_error(_status_error(openai.InternalServerError, 500, "boom"))

        assert error.status_code == 502
        assert error.message == "Model inference failed"
        assert error.reason


class TestInferenceClient:
    def test_missing_api_key_is_missing_groq(self):
        with pytest.raises(ConfigurationError) as exc_info:
            InferenceClient(api_key="")

        assert exc_info.value.error_code == "MISSING_GROQ"
        assert exc_info.value.status_code == 500

    def test_dispatcher_without_key_is_missing_groq(self):
        with pytest.raises(ConfigurationError):
            AnalysisDispatcher()

    async def test_complete_sends_image_and_json_mode(self):
        api = MagicMock()
        api.chat.completions.create = AsyncMock(
            return_value=SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content='{"score": 1}'))])
        )
        image = CapturedImage(data=b"png-bytes", mime_type="image/png")

        text = await InferenceClient(client=api, model="vision-model").complete("audit this", image, 2000)

        assert text == '{"score": 1}'
        kwargs = api.chat.completions.create.await_args.kwargs
        assert kwargs["model"] == "vision-model"
        assert kwargs["max_tokens"] == 2000
        assert kwargs["response_format"] == {"type": "json_object"}
        user_content = kwargs["messages"][1]["content"]
        assert user_content[0] == {"type": "text", "text": "audit this"}
        assert user_content[1]["image_url"]["url"] == image.as_data_url()
        assert image.as_data_url().startswith("data:image/png;base64,")

    async def test_api_errors_become_model_errors(self):
        api = MagicMock()
        api.chat.completions.create = AsyncMock(side_effect=openai.APIConnectionError(request=API_REQUEST))

        with pytest.raises(InferenceError) as exc_info:
            await InferenceClient(client=api).complete("audit", _images(1)[0], 2000)

        assert exc_info.value.error_code == "MODEL_ERROR"
        assert exc_info.value.status_code == 502

    async def test_no_choices_is_invalid_response(self):
        api = MagicMock()
        api.chat.completions.create = AsyncMock(return_value=SimpleNamespace(choices=[]))

        with pytest.raises(ContractError):
            await InferenceClient(client=api).complete("audit", _images(1)[0], 2000)
