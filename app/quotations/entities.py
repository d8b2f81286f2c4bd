"""Value objects passed between the quotation routes, service and LLM layer."""
from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class MockupImage:
    """A UI mockup uploaded with a quotation request."""

    mime_type: str
    data: bytes


@dataclass(frozen=True)
class QuotationRequest:
    name: str
    description: str
    is_self_made: bool
    capital: float | None = None
    mockup: MockupImage | None = None


@dataclass(frozen=True)
class RenderedDocument:
    content: bytes
    filename: str
    media_type: str
