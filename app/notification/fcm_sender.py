"""Firebase Cloud Messaging multicast sender.

Wraps ``firebase_admin.messaging.send_each_for_multicast`` and turns the
SDK's per-token ``SendResponse`` objects into :class:`PerTokenOutcome`
records with stable, SDK-independent error codes.

The Firebase app is created lazily on first send, from a service-account
file when ``FIREBASE_CREDENTIALS_PATH`` is set and from application-default
credentials otherwise.
"""
from __future__ import annotations

import logging

import firebase_admin
from firebase_admin import credentials, exceptions, messaging

from app.core.settings import get_settings
from app.notification.dispatcher import MulticastSendError, PerTokenOutcome, PlatformHints

logger = logging.getLogger(__name__)

FIREBASE_APP_NAME = "quotation-push"

# Checked in order: subclasses before their bases.
_ERROR_CODES: tuple[tuple[type[Exception], str], ...] = (
    (messaging.UnregisteredError, "registration-token-not-registered"),
    (messaging.SenderIdMismatchError, "mismatched-credential"),
    (messaging.QuotaExceededError, "message-rate-exceeded"),
    (messaging.ThirdPartyAuthError, "third-party-auth-error"),
    (exceptions.InvalidArgumentError, "invalid-argument"),
)


def error_code_for(exc: Exception | None) -> str | None:
    """Return the normalised error code for a per-token send exception."""
    if exc is None:
        return None
    for exc_type, code in _ERROR_CODES:
        if isinstance(exc, exc_type):
            return code
    raw = getattr(exc, "code", None)
    if isinstance(raw, str) and raw:
        return raw.lower().replace("_", "-")
    return "unknown"


def _get_app() -> firebase_admin.App:
    try:
        return firebase_admin.get_app(FIREBASE_APP_NAME)
    except ValueError:
        pass

    settings = get_settings()
    if settings.firebase_credentials_path:
        cred = credentials.Certificate(settings.firebase_credentials_path)
    else:
        cred = credentials.ApplicationDefault()
    logger.info("Initialising Firebase app %r", FIREBASE_APP_NAME)
    try:
        return firebase_admin.initialize_app(
            cred,
            {"httpTimeout": settings.fcm_timeout_s},
            name=FIREBASE_APP_NAME,
        )
    except ValueError:
        # Another task initialised it first.
        return firebase_admin.get_app(FIREBASE_APP_NAME)


def build_multicast_message(
    title: str,
    body: str,
    data: dict[str, str],
    tokens: list[str],
    hints: PlatformHints,
) -> messaging.MulticastMessage:
    return messaging.MulticastMessage(
        tokens=tokens,
        notification=messaging.Notification(title=title, body=body),
        data=data,
        android=messaging.AndroidConfig(
            priority=hints.android_priority,
            notification=messaging.AndroidNotification(sound=hints.sound),
        ),
        apns=messaging.APNSConfig(
            payload=messaging.APNSPayload(
                aps=messaging.Aps(
                    alert=messaging.ApsAlert(title=title, body=body),
                    sound=hints.sound,
                    badge=hints.badge,
                ),
            ),
        ),
    )


class FcmMulticastSender:
    """Deliver one notification to many FCM registration tokens in one call."""

    def __init__(self, app: firebase_admin.App | None = None) -> None:
        self._app = app

    @property
    def app(self) -> firebase_admin.App:
        if self._app is None:
            self._app = _get_app()
        return self._app

    def send(
        self,
        title: str,
        body: str,
        data: dict[str, str],
        tokens: list[str],
        hints: PlatformHints,
    ) -> list[PerTokenOutcome]:
        message = build_multicast_message(title, body, data, tokens, hints)
        try:
            batch = messaging.send_each_for_multicast(message, app=self.app)
        except (exceptions.FirebaseError, ValueError) as exc:
            raise MulticastSendError(f"FCM multicast request failed: {exc}") from exc

        logger.info(
            "FCM multicast result: %d successes, %d failures",
            batch.success_count, batch.failure_count,
        )
        return [
            PerTokenOutcome(
                success=resp.success,
                message_id=resp.message_id,
                error_code=error_code_for(resp.exception),
                error_message=str(resp.exception) if resp.exception is not None else None,
            )
            for resp in batch.responses
        ]
