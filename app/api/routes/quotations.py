"""Quotation routes.

POST /quotations generates and stores a quotation, then schedules the
"quotation ready" push notification as a background task.  The response is
202 whatever the notification outcome.

GET /quotations/user/{owner_id} lists a user's own quotations.
GET /quotations/by-name/{name} finds the caller's quotation by project name.
GET /quotations/{quotation_id}/download renders the ``.docx`` on demand.
"""
from __future__ import annotations

import logging
from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, HTTPException, UploadFile
from fastapi.responses import Response
from sqlalchemy.orm import Session

from app.api.deps import get_current_owner_id, get_db, get_quotation_service
from app.core.settings import get_settings
from app.quotations.entities import MockupImage, QuotationRequest
from app.quotations.generator import QuotationGenerationError
from app.quotations.notifications import notify_quotation_ready
from app.quotations.service import (
    QuotationAccessDeniedError,
    QuotationNotFoundError,
    QuotationService,
    QuotationValidationError,
)
from app.reports.docx_renderer import ReportGenerationError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/quotations", tags=["quotations"])

_TRUE_VALUES = frozenset({"true", "1", "yes", "on"})
_FALSE_VALUES = frozenset({"false", "0", "no", "off"})


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _serialize_quotation(quotation, include_text: bool = False) -> dict:
    data = {
        "id": str(quotation.id),
        "owner_id": quotation.owner_id,
        "name": quotation.name,
        "created_at": quotation.created_at.isoformat() if quotation.created_at else None,
    }
    if include_text:
        data["quotation_text"] = quotation.quotation_text
    return data


def _parse_flag(value: str | None) -> bool:
    if value is None or value.strip().lower() not in _TRUE_VALUES | _FALSE_VALUES:
        raise HTTPException(status_code=400, detail="is_self_made must be true or false")
    return value.strip().lower() in _TRUE_VALUES


def _parse_capital(value: str | None) -> float | None:
    if value is None or not value.strip():
        return None
    try:
        return float(value)
    except ValueError:
        raise HTTPException(status_code=400, detail="capital must be a number") from None


def _read_mockup(upload: UploadFile | None) -> MockupImage | None:
    if upload is None or not upload.filename:
        return None
    content_type = upload.content_type or ""
    if not content_type.startswith("image/"):
        raise HTTPException(status_code=400, detail="Only image files are allowed for the mockup")
    data = upload.file.read()
    limit = get_settings().mockup_max_bytes
    if len(data) > limit:
        raise HTTPException(status_code=400, detail=f"Mockup image exceeds {limit} bytes")
    if not data:
        return None
    return MockupImage(mime_type=content_type, data=data)


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

@router.post("", status_code=202, summary="Generate a quotation")
def create_quotation(
    background_tasks: BackgroundTasks,
    name: str = Form(default=""),
    description: str = Form(default=""),
    capital: str | None = Form(default=None),
    is_self_made: str | None = Form(default=None),
    mockup_image: UploadFile | None = File(default=None),
    owner_id: str = Depends(get_current_owner_id),
    service: QuotationService = Depends(get_quotation_service),
    db: Session = Depends(get_db),
):
    request = QuotationRequest(
        name=name,
        description=description,
        is_self_made=_parse_flag(is_self_made),
        capital=_parse_capital(capital),
        mockup=_read_mockup(mockup_image),
    )
    try:
        quotation = service.create(owner_id, request)
    except QuotationValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except QuotationGenerationError as exc:
        raise HTTPException(status_code=502, detail=f"Quotation generation failed: {exc}") from exc

    # The notification task reads from its own session.
    db.commit()
    background_tasks.add_task(notify_quotation_ready, quotation.id, owner_id, quotation.name)

    return {
        "status": "processing",
        "message": "Quotation generated; a notification will follow.",
        "data": {"quotation": _serialize_quotation(quotation)},
    }


@router.get("/user/{user_id}", summary="List a user's quotations")
def list_user_quotations(
    user_id: str,
    owner_id: str = Depends(get_current_owner_id),
    service: QuotationService = Depends(get_quotation_service),
):
    if user_id != owner_id:
        raise HTTPException(status_code=403, detail="You can only list your own quotations")
    return [_serialize_quotation(q, include_text=True) for q in service.list_for_owner(owner_id)]


@router.get("/by-name/{name}", summary="Find a quotation by project name")
def get_quotation_by_name(
    name: str,
    owner_id: str = Depends(get_current_owner_id),
    service: QuotationService = Depends(get_quotation_service),
):
    try:
        quotation = service.get_by_name(owner_id, name)
    except QuotationNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return _serialize_quotation(quotation, include_text=True)


@router.get("/{quotation_id}/download", summary="Download a quotation as .docx")
def download_quotation(
    quotation_id: UUID,
    owner_id: str = Depends(get_current_owner_id),
    service: QuotationService = Depends(get_quotation_service),
):
    try:
        document = service.download(quotation_id, owner_id)
    except QuotationNotFoundError as exc:
        raise HTTPException(status_code=404, detail="Quotation not found") from exc
    except QuotationAccessDeniedError as exc:
        raise HTTPException(status_code=403, detail="Not authorized to download this quotation") from exc
    except ReportGenerationError as exc:
        raise HTTPException(status_code=500, detail="Could not generate the quotation document") from exc

    return Response(
        content=document.content,
        media_type=document.media_type,
        headers={"Content-Disposition": f'attachment; filename="{document.filename}"'},
    )
