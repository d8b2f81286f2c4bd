"""Gemini LLM client wrapper -- governance-gated, latency-tracked.

Wraps the Gemini REST API (``POST /models/{model}:generateContent``) with:

- **Governance gate**: every call checks ``settings.llm_enabled`` and that an
  API key is configured.  Otherwise ``generate()`` raises ``LLMDisabledError``.
- **Response vetting**: blocked prompts, missing candidates, ``SAFETY``
  finish reasons and empty texts raise ``LLMResponseError``; a ``MAX_TOKENS``
  finish is logged as a possible truncation.
- **Latency tracking**: wall-clock time is measured per request.
- **Multimodal input**: an optional mockup image is sent as inline base64
  data after the prompt text.

The client uses ``httpx`` for synchronous HTTP calls; quotation creation
runs inside a sync FastAPI route.
"""
from __future__ import annotations

import base64
import logging
import time

import httpx

from app.core.settings import get_settings
from app.quotations.entities import MockupImage

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Custom exceptions
# ---------------------------------------------------------------------------


class LLMDisabledError(RuntimeError):
    """Raised when generation is switched off or no API key is configured."""


class LLMConnectionError(ConnectionError):
    """Raised when Gemini is unreachable or answers with an HTTP error."""


class LLMTimeoutError(TimeoutError):
    """Raised when the Gemini request exceeds the configured timeout."""


class LLMResponseError(RuntimeError):
    """Raised when Gemini answers but the answer is unusable."""


_SAFETY_CATEGORIES = (
    "HARM_CATEGORY_HARASSMENT",
    "HARM_CATEGORY_HATE_SPEECH",
    "HARM_CATEGORY_SEXUALLY_EXPLICIT",
    "HARM_CATEGORY_DANGEROUS_CONTENT",
)

SAFETY_SETTINGS = [
    {"category": category, "threshold": "BLOCK_MEDIUM_AND_ABOVE"}
    for category in _SAFETY_CATEGORIES
]


# ---------------------------------------------------------------------------
# GeminiClient
# ---------------------------------------------------------------------------


class GeminiClient:
    """Synchronous client for the Gemini ``generateContent`` endpoint.

    Parameters
    ----------
    api_key:
        Gemini API key.  Defaults to ``settings.gemini_api_key``.
    base_url:
        API base URL.  Defaults to ``settings.gemini_url``.
    model:
        Model name.  Defaults to ``settings.gemini_model``.
    timeout_s:
        Request timeout in seconds.  Defaults to ``settings.gemini_timeout_s``.
    """

    def __init__(
        self,
        *,
        api_key: str | None = None,
        base_url: str | None = None,
        model: str | None = None,
        timeout_s: int | None = None,
    ) -> None:
        settings = get_settings()
        self.api_key = api_key or settings.gemini_api_key
        self.base_url = (base_url or settings.gemini_url).rstrip("/")
        self.model = model or settings.gemini_model
        self.timeout_s = timeout_s if timeout_s is not None else settings.gemini_timeout_s
        self.max_output_tokens = settings.gemini_max_output_tokens
        self._last_latency_ms: int | None = None

    # -- public API ---------------------------------------------------------

    def generate(
        self,
        prompt: str,
        system: str | None = None,
        *,
        image: MockupImage | None = None,
        follow_up: str | None = None,
    ) -> str:
        """Send a prompt (and optional image) to Gemini and return the text.

        Raises
        ------
        LLMDisabledError
            If generation is disabled or no API key is set.
        LLMConnectionError
            If Gemini is unreachable or returns an HTTP error.
        LLMTimeoutError
            If the request exceeds the configured timeout.
        LLMResponseError
            If the response is blocked, empty or cut by the safety filter.
        """
        settings = get_settings()
        if not settings.llm_enabled:
            raise LLMDisabledError(
                "Quotation generation is disabled (LLM_ENABLED=false)."
            )
        if not self.api_key:
            raise LLMDisabledError(
                "Gemini API key is not configured (GEMINI_API_KEY). Cannot generate report."
            )

        payload = self._build_payload(prompt, system, image, follow_up)
        url = f"{self.base_url}/models/{self.model}:generateContent"
        logger.info("Sending request to Gemini model %s (image=%s)", self.model, image is not None)

        start = time.monotonic()
        try:
            response = httpx.post(
                url,
                json=payload,
                headers={"x-goog-api-key": self.api_key},
                timeout=self.timeout_s,
            )
            response.raise_for_status()
        except httpx.TimeoutException as exc:
            self._last_latency_ms = int((time.monotonic() - start) * 1000)
            raise LLMTimeoutError(
                f"Gemini request timed out after {self.timeout_s}s"
            ) from exc
        except httpx.ConnectError as exc:
            self._last_latency_ms = int((time.monotonic() - start) * 1000)
            raise LLMConnectionError(
                f"Cannot connect to Gemini at {self.base_url}"
            ) from exc
        except httpx.HTTPError as exc:
            self._last_latency_ms = int((time.monotonic() - start) * 1000)
            raise LLMConnectionError(
                f"Gemini HTTP error: {exc}"
            ) from exc

        self._last_latency_ms = int((time.monotonic() - start) * 1000)
        try:
            data = response.json()
        except ValueError as exc:
            raise LLMResponseError("Gemini returned a response that is not JSON") from exc
        text = self._extract_text(data)
        logger.info("Received %d characters from Gemini in %d ms", len(text), self._last_latency_ms)
        return text

    @property
    def last_latency_ms(self) -> int | None:
        """Wall-clock latency of the most recent ``generate()`` call (ms)."""
        return self._last_latency_ms

    # -- internals ----------------------------------------------------------

    def _build_payload(
        self,
        prompt: str,
        system: str | None,
        image: MockupImage | None,
        follow_up: str | None,
    ) -> dict:
        parts: list[dict] = [{"text": prompt}]
        if image is not None:
            parts.append({
                "inlineData": {
                    "mimeType": image.mime_type,
                    "data": base64.b64encode(image.data).decode("ascii"),
                }
            })
            if follow_up:
                parts.append({"text": follow_up})

        payload: dict = {
            "contents": [{"role": "user", "parts": parts}],
            "generationConfig": {
                "temperature": 1,
                "topK": 1,
                "topP": 1,
                "maxOutputTokens": self.max_output_tokens,
            },
            "safetySettings": SAFETY_SETTINGS,
        }
        if system is not None:
            payload["systemInstruction"] = {"parts": [{"text": system}]}
        return payload

    @staticmethod
    def _extract_text(data: dict) -> str:
        block_reason = (data.get("promptFeedback") or {}).get("blockReason")
        if block_reason:
            raise LLMResponseError(f"Gemini request was blocked: {block_reason}")

        candidates = data.get("candidates") or []
        if not candidates or not candidates[0].get("content"):
            finish_reason = candidates[0].get("finishReason") if candidates else None
            raise LLMResponseError(
                f"Gemini returned no content (finish reason: {finish_reason or 'unknown'})"
            )

        candidate = candidates[0]
        finish_reason = candidate.get("finishReason")
        if finish_reason == "SAFETY":
            raise LLMResponseError("Gemini response was blocked by safety settings")
        if finish_reason == "MAX_TOKENS":
            logger.warning("Gemini response may be truncated (MAX_TOKENS)")
        elif finish_reason and finish_reason != "STOP":
            logger.warning("Gemini finished with reason %s; content may be incomplete", finish_reason)

        text = "".join(part.get("text", "") for part in candidate["content"].get("parts") or [])
        if not text.strip():
            raise LLMResponseError("Gemini returned an empty text response")
        return text
