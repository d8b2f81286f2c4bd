"""Quotation text generation port and its Gemini adapter."""
from __future__ import annotations

import logging
from typing import Protocol

from app.core.settings import get_settings
from app.llm.client import (
    GeminiClient,
    LLMConnectionError,
    LLMDisabledError,
    LLMResponseError,
    LLMTimeoutError,
)
from app.llm.prompts import MOCKUP_FOLLOW_UP, SYSTEM_PROMPT, build_quotation_prompt
from app.quotations.entities import QuotationRequest

logger = logging.getLogger(__name__)

_LLM_ERRORS = (LLMDisabledError, LLMConnectionError, LLMTimeoutError, LLMResponseError)


class QuotationGenerationError(RuntimeError):
    """Raised when no report text could be produced for a request."""


class QuotationGenerator(Protocol):
    def generate_report(self, request: QuotationRequest) -> str: ...


class GeminiQuotationGenerator:
    """Build the quotation prompt and ask Gemini for the markdown report."""

    def __init__(self, client: GeminiClient | None = None) -> None:
        self.client = client or GeminiClient()

    def generate_report(self, request: QuotationRequest) -> str:
        settings = get_settings()
        prompt = build_quotation_prompt(
            request,
            language=settings.report_language,
            market=settings.market_region,
        )
        try:
            text = self.client.generate(
                prompt,
                system=SYSTEM_PROMPT,
                image=request.mockup,
                follow_up=MOCKUP_FOLLOW_UP if request.mockup is not None else None,
            )
        except _LLM_ERRORS as exc:
            logger.error("Quotation generation failed for %r: %s", request.name, exc)
            raise QuotationGenerationError(str(exc)) from exc
        return text
