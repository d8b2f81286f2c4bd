"""The "quotation ready" push notification."""
from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy.orm import sessionmaker

from app.core.settings import get_settings
from app.db.repositories import DeviceTokenRepository
from app.db.session import session_scope
from app.notification.dispatcher import DispatchResult, MulticastSender, NotificationDispatcher
from app.notification.fcm_sender import FcmMulticastSender

logger = logging.getLogger(__name__)

READY_TITLE = "Quotation Ready ✅"
READY_BODY = 'Your quotation for the project "{name}" is ready. Check it in the app!'
READY_KIND = "QUOTATION_READY"


def build_ready_message(quotation_id: UUID | str, owner_id: str, name: str) -> tuple[str, str, dict[str, str]]:
    """Return the ``(title, body, data)`` triple for a finished quotation."""
    data = {
        "quotationId": str(quotation_id),
        "quotationTitle": name,
        "ownerId": owner_id,
        "kind": READY_KIND,
    }
    return READY_TITLE, READY_BODY.format(name=name), data


def notify_quotation_ready(
    quotation_id: UUID | str,
    owner_id: str,
    name: str,
    sender: MulticastSender | None = None,
    session_factory: sessionmaker | None = None,
) -> DispatchResult | None:
    """Background task run after a quotation is created.

    Opens its own session: the request session is closed by the time this
    runs.  Returns ``None`` when push delivery is switched off.
    """
    if not get_settings().push_enabled:
        logger.info("Push delivery disabled; skipping notification for quotation %s", quotation_id)
        return None

    title, body, data = build_ready_message(quotation_id, owner_id, name)
    with session_scope(session_factory) as db:
        dispatcher = NotificationDispatcher(DeviceTokenRepository(db), sender or FcmMulticastSender())
        result = dispatcher.notify(owner_id, title, body, data)

    if result.all_delivered:
        logger.info("Quotation %s notification delivered to owner %s", quotation_id, owner_id)
    else:
        logger.warning(
            "Quotation %s notification not delivered to every device of owner %s",
            quotation_id, owner_id,
        )
    return result
