from __future__ import annotations

import logging
from typing import Generic, TypeVar
from uuid import UUID

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.logging import short_token
from app.db import models
from app.notification.dispatcher import EndpointLookupError

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT")


class BaseRepository(Generic[ModelT]):
    model: type[ModelT]

    def __init__(self, db: Session):
        self.db = db

    def create(self, **kwargs) -> ModelT:
        entity = self.model(**kwargs)
        self.db.add(entity)
        self.db.flush()
        return entity

    def get(self, entity_id: UUID) -> ModelT | None:
        return self.db.get(self.model, entity_id)

    def update(self, entity: ModelT, **kwargs) -> ModelT:
        for key, value in kwargs.items():
            setattr(entity, key, value)
        self.db.flush()
        return entity


class QuotationRepository(BaseRepository[models.Quotation]):
    model = models.Quotation

    def list_by_owner(self, owner_id: str) -> list[models.Quotation]:
        stmt = (
            select(models.Quotation)
            .where(models.Quotation.owner_id == owner_id)
            .order_by(models.Quotation.created_at.desc())
        )
        return list(self.db.execute(stmt).scalars().all())

    def get_by_name(self, owner_id: str, name: str) -> models.Quotation | None:
        stmt = (
            select(models.Quotation)
            .where(models.Quotation.owner_id == owner_id, models.Quotation.name == name)
            .order_by(models.Quotation.created_at.desc())
        )
        return self.db.execute(stmt).scalars().first()


class DeviceTokenRepository(BaseRepository[models.DeviceToken]):
    """Endpoint registry backed by the ``device_tokens`` table.

    Tokens are unique on their own: saving a token that already exists moves
    it to the new owner instead of creating a second row.
    """

    model = models.DeviceToken

    def get_by_token(self, token: str) -> models.DeviceToken | None:
        stmt = select(models.DeviceToken).where(models.DeviceToken.token == token)
        return self.db.execute(stmt).scalar_one_or_none()

    def save_token(self, owner_id: str, token: str, device_type: str | None = None) -> models.DeviceToken:
        existing = self.get_by_token(token)
        if existing is not None:
            if existing.owner_id != owner_id:
                logger.info(
                    "Device token %s moved from owner %s to owner %s",
                    short_token(token), existing.owner_id, owner_id,
                )
            return self._refresh(existing, owner_id, device_type)

        try:
            with self.db.begin_nested():
                entity = self.create(owner_id=owner_id, token=token, device_type=device_type)
        except IntegrityError:
            # Registered concurrently; fall back to the update path.
            existing = self.get_by_token(token)
            if existing is None:
                raise
            return self._refresh(existing, owner_id, device_type)
        return entity

    def _refresh(self, entity: models.DeviceToken, owner_id: str, device_type: str | None) -> models.DeviceToken:
        return self.update(entity, owner_id=owner_id, device_type=device_type, updated_at=func.now())

    def list_by_owner(self, owner_id: str) -> list[str]:
        stmt = select(models.DeviceToken.token).where(models.DeviceToken.owner_id == owner_id)
        try:
            tokens = list(self.db.execute(stmt).scalars().all())
        except SQLAlchemyError as exc:
            raise EndpointLookupError(f"Could not load device tokens for owner {owner_id}") from exc
        logger.debug("Retrieved %d device tokens for owner %s", len(tokens), owner_id)
        return tokens

    def delete_token(self, token: str) -> bool:
        """Delete *token*; return ``False`` when it was already gone."""
        # Savepoint per delete: a failed statement must not abort the caller's transaction.
        with self.db.begin_nested():
            result = self.db.execute(delete(models.DeviceToken).where(models.DeviceToken.token == token))
            deleted = result.rowcount
        if not deleted:
            logger.info("Device token %s was not registered", short_token(token))
            return False
        logger.info("Deleted device token %s", short_token(token))
        return True
