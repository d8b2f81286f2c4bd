"""FastAPI dependency injection: database sessions, caller identity and services."""
from __future__ import annotations

import logging
from collections.abc import Generator

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from app.core.security import InvalidTokenError, TokenVerifier, extract_bearer_token
from app.core.settings import get_settings
from app.db.session import get_session_factory
from app.quotations.generator import GeminiQuotationGenerator, QuotationGenerator
from app.quotations.service import QuotationService
from app.reports.docx_renderer import QuotationDocxRenderer

logger = logging.getLogger(__name__)


def get_db() -> Generator[Session, None, None]:
    """Yield a SQLAlchemy session; commit on success, rollback on error."""
    factory = get_session_factory()
    db = factory()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def get_token_verifier() -> TokenVerifier:
    settings = get_settings()
    return TokenVerifier(secret=settings.jwt_secret, algorithm=settings.jwt_algorithm)


def get_current_owner_id(
    authorization: str | None = Header(default=None),
    verifier: TokenVerifier = Depends(get_token_verifier),
) -> str:
    """Return the owner id of the caller; 401 when the bearer token is missing or bad."""
    token = extract_bearer_token(authorization)
    if token is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Access denied. No token provided.",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        return verifier.owner_id(token)
    except InvalidTokenError as exc:
        logger.info("Rejected bearer token: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token.",
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc


def get_generator() -> QuotationGenerator:
    return GeminiQuotationGenerator()


def get_renderer() -> QuotationDocxRenderer:
    return QuotationDocxRenderer(author=get_settings().app_name)


def get_quotation_service(
    db: Session = Depends(get_db),
    generator: QuotationGenerator = Depends(get_generator),
    renderer: QuotationDocxRenderer = Depends(get_renderer),
) -> QuotationService:
    """Return a QuotationService bound to the current DB session."""
    return QuotationService(db, generator, renderer)
