"""Quotation use cases: create, look up and download.

The service owns the owner-equals-requester rule.  Routes translate its
exceptions into HTTP status codes:

- :class:`QuotationValidationError` -> 400
- :class:`QuotationNotFoundError` -> 404
- :class:`QuotationAccessDeniedError` -> 403
- :class:`~app.quotations.generator.QuotationGenerationError` -> 502
- :class:`~app.reports.docx_renderer.ReportGenerationError` -> 500

Rendered documents are never stored; every download renders again from the
saved markdown, dated with the quotation's ``created_at``.
"""
from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy.orm import Session

from app.db import models
from app.db.repositories import QuotationRepository
from app.quotations.entities import QuotationRequest, RenderedDocument
from app.quotations.generator import QuotationGenerator
from app.reports.docx_renderer import DOCX_MEDIA_TYPE, QuotationDocxRenderer

logger = logging.getLogger(__name__)

NAME_MAX_LENGTH = 255


class QuotationValidationError(ValueError):
    """Raised when a quotation request is incomplete or malformed."""


class QuotationNotFoundError(LookupError):
    """Raised when no quotation matches the requested id or name."""


class QuotationAccessDeniedError(PermissionError):
    """Raised when a user asks for a quotation they do not own."""


def document_filename(quotation_id: UUID) -> str:
    return f"quotation_{quotation_id}.docx"


def validate_request(request: QuotationRequest) -> None:
    if not request.name.strip():
        raise QuotationValidationError("Project name is required.")
    if len(request.name) > NAME_MAX_LENGTH:
        raise QuotationValidationError(f"Project name must be at most {NAME_MAX_LENGTH} characters.")
    if not request.description.strip():
        raise QuotationValidationError("Project description is required.")
    if request.capital is not None and request.capital < 0:
        raise QuotationValidationError("Capital must be a non-negative number.")


class QuotationService:
    def __init__(
        self,
        db: Session,
        generator: QuotationGenerator,
        renderer: QuotationDocxRenderer | None = None,
    ) -> None:
        self.repo = QuotationRepository(db)
        self.generator = generator
        self.renderer = renderer or QuotationDocxRenderer()

    def create(self, owner_id: str, request: QuotationRequest) -> models.Quotation:
        """Generate the report text for *request* and store it for *owner_id*."""
        validate_request(request)
        text = self.generator.generate_report(request)
        quotation = self.repo.create(
            owner_id=owner_id,
            name=request.name.strip(),
            quotation_text=text,
        )
        logger.info("Quotation %s created for owner %s", quotation.id, owner_id)
        return quotation

    def list_for_owner(self, owner_id: str) -> list[models.Quotation]:
        return self.repo.list_by_owner(owner_id)

    def get_by_name(self, owner_id: str, name: str) -> models.Quotation:
        quotation = self.repo.get_by_name(owner_id, name)
        if quotation is None:
            raise QuotationNotFoundError(f"No quotation named {name!r}")
        return quotation

    def get_owned(self, quotation_id: UUID, requester_id: str) -> models.Quotation:
        quotation = self.repo.get(quotation_id)
        if quotation is None:
            raise QuotationNotFoundError(f"Quotation {quotation_id} not found")
        if quotation.owner_id != requester_id:
            logger.warning(
                "Owner %s attempted to access quotation %s owned by %s",
                requester_id, quotation_id, quotation.owner_id,
            )
            raise QuotationAccessDeniedError(f"Quotation {quotation_id} belongs to another user")
        return quotation

    def download(self, quotation_id: UUID, requester_id: str) -> RenderedDocument:
        """Render the ``.docx`` for a quotation the requester owns.

        Raises
        ------
        QuotationNotFoundError
            If the quotation does not exist.
        QuotationAccessDeniedError
            If it belongs to someone else.
        ReportGenerationError
            If the document cannot be built.
        """
        quotation = self.get_owned(quotation_id, requester_id)
        content = self.renderer.render(quotation.name, quotation.quotation_text, quotation.created_at)
        return RenderedDocument(
            content=content,
            filename=document_filename(quotation.id),
            media_type=DOCX_MEDIA_TYPE,
        )
