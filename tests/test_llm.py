"""Tests for the Gemini client, prompt templates and the quotation generator.

Covers:
- GeminiClient: governance gate, payload shape, multimodal parts, response
  vetting (block reason, no candidates, SAFETY, MAX_TOKENS, empty text),
  timeout / connection / HTTP errors, latency tracking
- build_quotation_prompt: team structure, capital, mockup, language
- GeminiQuotationGenerator: error wrapping

All network calls are mocked via ``unittest.mock.patch`` on ``httpx``.
"""
from __future__ import annotations

import base64
import logging
from unittest.mock import MagicMock, patch

import httpx
import pytest

from app.llm.client import (
    GeminiClient,
    LLMConnectionError,
    LLMDisabledError,
    LLMResponseError,
    LLMTimeoutError,
)
from app.llm.prompts import MOCKUP_FOLLOW_UP, SYSTEM_PROMPT, build_quotation_prompt
from app.quotations.entities import MockupImage, QuotationRequest
from app.quotations.generator import GeminiQuotationGenerator, QuotationGenerationError


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def _enable_llm(monkeypatch: pytest.MonkeyPatch):
    """Enable generation with a test key and the default Gemini endpoint."""
    monkeypatch.setenv("LLM_ENABLED", "true")
    monkeypatch.setenv("GEMINI_API_KEY", "test-key")
    monkeypatch.setenv("GEMINI_MODEL", "gemini-test")
    monkeypatch.setenv("GEMINI_URL", "https://gemini.example.com/v1beta")
    monkeypatch.setenv("GEMINI_TIMEOUT_S", "30")
    from app.core.settings import get_settings

    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def _disable_llm(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("LLM_ENABLED", "false")
    monkeypatch.setenv("GEMINI_API_KEY", "test-key")
    from app.core.settings import get_settings

    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def _no_api_key(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("LLM_ENABLED", "true")
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    from app.core.settings import get_settings

    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def _response(payload: dict) -> MagicMock:
    mock_resp = MagicMock()
    mock_resp.status_code = 200
    mock_resp.json.return_value = payload
    mock_resp.raise_for_status = MagicMock()
    return mock_resp


def _candidate(*texts: str, finish_reason: str = "STOP") -> dict:
    return {
        "candidates": [
            {
                "content": {"role": "model", "parts": [{"text": t} for t in texts]},
                "finishReason": finish_reason,
            }
        ]
    }


# ===========================================================================
# GeminiClient
# ===========================================================================


class TestGeminiClientGate:
    @pytest.mark.usefixtures("_disable_llm")
    def test_disabled_raises(self) -> None:
        with pytest.raises(LLMDisabledError, match="LLM_ENABLED"):
            GeminiClient().generate("hello")

    @pytest.mark.usefixtures("_no_api_key")
    def test_missing_api_key_raises(self) -> None:
        with patch("app.llm.client.httpx.post") as mock_post:
            with pytest.raises(LLMDisabledError, match="GEMINI_API_KEY"):
                GeminiClient().generate("hello")
        mock_post.assert_not_called()


class TestGeminiClientGenerate:
    @pytest.mark.usefixtures("_enable_llm")
    def test_joins_text_parts(self) -> None:
        with patch("app.llm.client.httpx.post", return_value=_response(_candidate("# Report", "\nBody"))):
            assert GeminiClient().generate("prompt") == "# Report\nBody"

    @pytest.mark.usefixtures("_enable_llm")
    def test_request_url_headers_and_config(self) -> None:
        with patch("app.llm.client.httpx.post", return_value=_response(_candidate("ok"))) as mock_post:
            GeminiClient().generate("prompt", system=SYSTEM_PROMPT)

        call = mock_post.call_args
        assert call.args[0] == "https://gemini.example.com/v1beta/models/gemini-test:generateContent"
        assert call.kwargs["headers"] == {"x-goog-api-key": "test-key"}
        assert call.kwargs["timeout"] == 30
        payload = call.kwargs["json"]
        assert payload["contents"][0]["parts"] == [{"text": "prompt"}]
        assert payload["systemInstruction"]["parts"][0]["text"] == SYSTEM_PROMPT
        assert payload["generationConfig"]["maxOutputTokens"] == 16384
        assert {s["threshold"] for s in payload["safetySettings"]} == {"BLOCK_MEDIUM_AND_ABOVE"}
        assert len(payload["safetySettings"]) == 4

    @pytest.mark.usefixtures("_enable_llm")
    def test_image_is_sent_as_inline_data(self) -> None:
        image = MockupImage(mime_type="image/png", data=b"\x89PNGdata")
        with patch("app.llm.client.httpx.post", return_value=_response(_candidate("ok"))) as mock_post:
            GeminiClient().generate("prompt", image=image, follow_up="now write it")

        parts = mock_post.call_args.kwargs["json"]["contents"][0]["parts"]
        assert parts[0] == {"text": "prompt"}
        assert parts[1]["inlineData"]["mimeType"] == "image/png"
        assert base64.b64decode(parts[1]["inlineData"]["data"]) == b"\x89PNGdata"
        assert parts[2] == {"text": "now write it"}

    @pytest.mark.usefixtures("_enable_llm")
    def test_latency_is_tracked(self) -> None:
        client = GeminiClient()
        assert client.last_latency_ms is None
        with patch("app.llm.client.httpx.post", return_value=_response(_candidate("ok"))):
            client.generate("prompt")
        assert isinstance(client.last_latency_ms, int)
        assert client.last_latency_ms >= 0


class TestGeminiClientResponseVetting:
    @pytest.mark.usefixtures("_enable_llm")
    def test_block_reason(self) -> None:
        payload = {"promptFeedback": {"blockReason": "SAFETY"}}
        with patch("app.llm.client.httpx.post", return_value=_response(payload)):
            with pytest.raises(LLMResponseError, match="blocked: SAFETY"):
                GeminiClient().generate("prompt")

    @pytest.mark.usefixtures("_enable_llm")
    def test_no_candidates(self) -> None:
        with patch("app.llm.client.httpx.post", return_value=_response({"candidates": []})):
            with pytest.raises(LLMResponseError, match="no content"):
                GeminiClient().generate("prompt")

    @pytest.mark.usefixtures("_enable_llm")
    def test_safety_finish_reason(self) -> None:
        with patch("app.llm.client.httpx.post", return_value=_response(_candidate("partial", finish_reason="SAFETY"))):
            with pytest.raises(LLMResponseError, match="safety"):
                GeminiClient().generate("prompt")

    @pytest.mark.usefixtures("_enable_llm")
    def test_max_tokens_returns_text_with_warning(self, caplog) -> None:
        with patch("app.llm.client.httpx.post", return_value=_response(_candidate("long", finish_reason="MAX_TOKENS"))):
            with caplog.at_level(logging.WARNING, logger="app.llm.client"):
                assert GeminiClient().generate("prompt") == "long"
        assert "MAX_TOKENS" in caplog.text

    @pytest.mark.usefixtures("_enable_llm")
    def test_empty_text(self) -> None:
        with patch("app.llm.client.httpx.post", return_value=_response(_candidate("  "))):
            with pytest.raises(LLMResponseError, match="empty"):
                GeminiClient().generate("prompt")

    @pytest.mark.usefixtures("_enable_llm")
    def test_non_json_body(self) -> None:
        html = httpx.Response(200, text="<html>gateway</html>", request=httpx.Request("POST", "https://gemini.test"))
        with patch("app.llm.client.httpx.post", return_value=html):
            with pytest.raises(LLMResponseError, match="not JSON"):
                GeminiClient().generate("prompt")


class TestGeminiClientTransportErrors:
    @pytest.mark.usefixtures("_enable_llm")
    def test_timeout(self) -> None:
        with patch("app.llm.client.httpx.post", side_effect=httpx.TimeoutException("timeout")):
            client = GeminiClient()
            with pytest.raises(LLMTimeoutError, match="30s"):
                client.generate("prompt")
        assert client.last_latency_ms is not None

    @pytest.mark.usefixtures("_enable_llm")
    def test_connection_error(self) -> None:
        with patch("app.llm.client.httpx.post", side_effect=httpx.ConnectError("refused")):
            with pytest.raises(LLMConnectionError, match="Cannot connect"):
                GeminiClient().generate("prompt")

    @pytest.mark.usefixtures("_enable_llm")
    def test_http_status_error(self) -> None:
        mock_resp = MagicMock()
        mock_resp.raise_for_status.side_effect = httpx.HTTPStatusError(
            "400 Bad Request", request=MagicMock(), response=MagicMock(),
        )
        with patch("app.llm.client.httpx.post", return_value=mock_resp):
            with pytest.raises(LLMConnectionError, match="HTTP error"):
                GeminiClient().generate("prompt")


# ===========================================================================
# Prompts
# ===========================================================================


class TestBuildQuotationPrompt:
    def test_solo_project_without_budget_or_mockup(self) -> None:
        request = QuotationRequest(name="Shop", description="Sell shoes online", is_self_made=True)
        prompt = build_quotation_prompt(request)
        assert "**Project Name:** Shop" in prompt
        assert "Sell shoes online" in prompt
        assert "Solo developer" in prompt
        assert "Not specified" in prompt
        assert "No mockup provided" in prompt
        assert "Write the report in Spanish" in prompt
        assert "based in Mexico" in prompt

    def test_team_project_with_budget_and_mockup(self) -> None:
        request = QuotationRequest(
            name="Shop",
            description="Sell shoes online",
            is_self_made=False,
            capital=5000,
            mockup=MockupImage(mime_type="image/png", data=b"x"),
        )
        prompt = build_quotation_prompt(request, language="English", market="Canada")
        assert "Team-based project" in prompt
        assert "USD 5,000.00" in prompt
        assert "Respect this budget" in prompt
        assert "and the provided mockup image" in prompt
        assert "Write the report in English" in prompt
        assert "based in Canada" in prompt

    def test_zero_capital_is_reported(self) -> None:
        request = QuotationRequest(name="Shop", description="d", is_self_made=True, capital=0)
        prompt = build_quotation_prompt(request)
        assert "USD 0.00" in prompt
        assert "Not specified" not in prompt

    def test_braces_in_description_are_kept(self) -> None:
        request = QuotationRequest(name="API", description="Return {json} payloads", is_self_made=True)
        assert "Return {json} payloads" in build_quotation_prompt(request)


# ===========================================================================
# GeminiQuotationGenerator
# ===========================================================================


class TestGeminiQuotationGenerator:
    def test_passes_prompt_system_and_mockup(self) -> None:
        client = MagicMock()
        client.generate.return_value = "# Report"
        mockup = MockupImage(mime_type="image/jpeg", data=b"jpg")
        request = QuotationRequest(name="Shop", description="d", is_self_made=True, mockup=mockup)

        assert GeminiQuotationGenerator(client).generate_report(request) == "# Report"

        call = client.generate.call_args
        assert "**Project Name:** Shop" in call.args[0]
        assert call.kwargs["system"] == SYSTEM_PROMPT
        assert call.kwargs["image"] is mockup
        assert call.kwargs["follow_up"] == MOCKUP_FOLLOW_UP

    def test_no_follow_up_without_mockup(self) -> None:
        client = MagicMock()
        client.generate.return_value = "# Report"
        GeminiQuotationGenerator(client).generate_report(
            QuotationRequest(name="Shop", description="d", is_self_made=True)
        )
        assert client.generate.call_args.kwargs["follow_up"] is None

    @pytest.mark.parametrize("error", [
        LLMDisabledError("off"),
        LLMTimeoutError("slow"),
        LLMConnectionError("down"),
        LLMResponseError("blocked"),
    ])
    def test_llm_errors_become_generation_errors(self, error) -> None:
        client = MagicMock()
        client.generate.side_effect = error
        with pytest.raises(QuotationGenerationError):
            GeminiQuotationGenerator(client).generate_report(
                QuotationRequest(name="Shop", description="d", is_self_made=True)
            )

    @pytest.mark.usefixtures("_enable_llm")
    def test_non_json_gemini_answer_becomes_generation_error(self) -> None:
        html = httpx.Response(200, text="<html>gateway</html>", request=httpx.Request("POST", "https://gemini.test"))
        with patch("app.llm.client.httpx.post", return_value=html):
            with pytest.raises(QuotationGenerationError, match="not JSON"):
                GeminiQuotationGenerator(GeminiClient()).generate_report(
                    QuotationRequest(name="Shop", description="d", is_self_made=True)
                )
