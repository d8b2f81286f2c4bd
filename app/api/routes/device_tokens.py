"""Device token registration for push delivery.

POST /device-tokens registers (or re-assigns) a token for the caller.
DELETE /device-tokens/{token} removes a token; removing an unknown token is
not an error.
"""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Response
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.api.deps import get_current_owner_id, get_db
from app.core.logging import short_token
from app.db.repositories import DeviceTokenRepository

router = APIRouter(prefix="/device-tokens", tags=["device-tokens"])

VALID_DEVICE_TYPES = frozenset({"android", "ios", "web"})


class RegisterTokenBody(BaseModel):
    token: str
    device_type: str | None = None


@router.post("", status_code=201, summary="Register a device token")
def register_token(
    body: RegisterTokenBody,
    owner_id: str = Depends(get_current_owner_id),
    db: Session = Depends(get_db),
):
    token = body.token.strip()
    if not token:
        raise HTTPException(status_code=400, detail="Device token is required")
    if body.device_type is not None and body.device_type not in VALID_DEVICE_TYPES:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid device_type: {body.device_type!r} (expected android, ios or web)",
        )

    entity = DeviceTokenRepository(db).save_token(owner_id, token, body.device_type)
    return {
        "message": "Device token registered",
        "data": {
            "owner_id": entity.owner_id,
            "token": short_token(entity.token),
            "device_type": entity.device_type,
        },
    }


@router.delete(
    "/{token}",
    status_code=204,
    summary="Remove a device token",
    dependencies=[Depends(get_current_owner_id)],
)
def delete_token(token: str, db: Session = Depends(get_db)) -> Response:
    DeviceTokenRepository(db).delete_token(token)
    return Response(status_code=204)
