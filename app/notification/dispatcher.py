"""Multicast push dispatch with per-token failure triage.

Resolves every registered endpoint token for an owner, sends one multicast
request, then walks the index-aligned outcomes: successes are logged,
permanently invalid tokens are removed from the registry, anything else is
logged and left alone.  Per-token failures never escape ``notify()``; the
caller only learns whether every endpoint was reached.

Safety: endpoint tokens are never logged in full -- only their first
10 characters.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

from app.core.logging import short_token

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class EndpointLookupError(RuntimeError):
    """Raised by a registry that could not answer (not the same as "no tokens")."""


class MulticastSendError(RuntimeError):
    """Raised by a sender when the delivery backend could not be reached."""


# ---------------------------------------------------------------------------
# Outcome classification
# ---------------------------------------------------------------------------

# Codes after which a token will never succeed again.
PERMANENT_FAILURE_CODES: frozenset[str] = frozenset({
    "registration-token-not-registered",
    "invalid-registration-token",
    "invalid-argument",
})


class DeliveryStatus(str, Enum):
    DELIVERED = "delivered"
    FAILED_TRANSIENT = "failed-transient"
    FAILED_PERMANENT = "failed-permanent"


def classify_failure(code: str | None) -> DeliveryStatus:
    """Map a backend failure code to the action it warrants."""
    if code is not None and code in PERMANENT_FAILURE_CODES:
        return DeliveryStatus.FAILED_PERMANENT
    return DeliveryStatus.FAILED_TRANSIENT


@dataclass(frozen=True)
class PerTokenOutcome:
    """One entry of a multicast response, aligned with the request tokens."""

    success: bool
    message_id: str | None = None
    error_code: str | None = None
    error_message: str | None = None


@dataclass(frozen=True)
class PlatformHints:
    """Delivery hints applied uniformly to every recipient of a request."""

    sound: str = "default"
    badge: int | None = 1
    android_priority: str = "high"


@dataclass
class TokenReport:
    token: str
    status: DeliveryStatus
    error_code: str | None = None
    removed: bool = False


@dataclass
class DispatchResult:
    all_delivered: bool
    reports: list[TokenReport] = field(default_factory=list)

    @property
    def delivered_count(self) -> int:
        return sum(1 for r in self.reports if r.status is DeliveryStatus.DELIVERED)

    @property
    def removed_tokens(self) -> list[str]:
        return [r.token for r in self.reports if r.removed]


# ---------------------------------------------------------------------------
# Collaborator ports
# ---------------------------------------------------------------------------

class EndpointRegistry(Protocol):
    def list_by_owner(self, owner_id: str) -> list[str]:
        ...

    def delete_token(self, token: str) -> bool:
        ...


class MulticastSender(Protocol):
    def send(
        self,
        title: str,
        body: str,
        data: dict[str, str],
        tokens: list[str],
        hints: PlatformHints,
    ) -> list[PerTokenOutcome]:
        ...


# ---------------------------------------------------------------------------
# NotificationDispatcher
# ---------------------------------------------------------------------------

class NotificationDispatcher:
    """Send one notification to every endpoint an owner has registered."""

    def __init__(
        self,
        registry: EndpointRegistry,
        sender: MulticastSender,
        hints: PlatformHints | None = None,
    ) -> None:
        self.registry = registry
        self.sender = sender
        self.hints = hints or PlatformHints()

    def notify(
        self,
        owner_id: str,
        title: str,
        body: str,
        data: dict[str, str] | None = None,
    ) -> DispatchResult:
        try:
            return self._notify(owner_id, title, body, {k: str(v) for k, v in (data or {}).items()})
        except EndpointLookupError:
            logger.exception("Could not resolve device tokens for owner %s", owner_id)
        except MulticastSendError:
            logger.exception("Multicast send failed for owner %s", owner_id)
        except Exception:
            logger.exception("Unexpected error notifying owner %s", owner_id)
        return DispatchResult(all_delivered=False)

    # -- internals ----------------------------------------------------------

    def _notify(self, owner_id: str, title: str, body: str, data: dict[str, str]) -> DispatchResult:
        tokens = self.registry.list_by_owner(owner_id)
        if not tokens:
            logger.warning("No device tokens registered for owner %s; nothing to notify", owner_id)
            return DispatchResult(all_delivered=False)

        logger.info("Sending notification to %d device tokens for owner %s", len(tokens), owner_id)
        outcomes = self.sender.send(title, body, data, list(tokens), self.hints)
        if len(outcomes) != len(tokens):
            raise MulticastSendError(
                f"Sender returned {len(outcomes)} outcomes for {len(tokens)} tokens"
            )

        reports = [
            self._handle_outcome(token, outcome, owner_id)
            for token, outcome in zip(tokens, outcomes)
        ]
        result = DispatchResult(
            all_delivered=all(r.status is DeliveryStatus.DELIVERED for r in reports),
            reports=reports,
        )
        logger.info(
            "Multicast result for owner %s: %d delivered, %d failed",
            owner_id, result.delivered_count, len(reports) - result.delivered_count,
        )
        return result

    def _handle_outcome(self, token: str, outcome: PerTokenOutcome, owner_id: str) -> TokenReport:
        if outcome.success:
            logger.info("Delivered to token %s (message %s)", short_token(token), outcome.message_id)
            return TokenReport(token=token, status=DeliveryStatus.DELIVERED)

        status = classify_failure(outcome.error_code)
        if status is DeliveryStatus.FAILED_PERMANENT:
            logger.warning(
                "Token %s for owner %s is no longer valid (code %s); removing it",
                short_token(token), owner_id, outcome.error_code,
            )
            return TokenReport(
                token=token,
                status=status,
                error_code=outcome.error_code,
                removed=self._remove_token(token),
            )

        logger.error(
            "Unhandled delivery error for token %s: code=%s message=%s",
            short_token(token), outcome.error_code, outcome.error_message,
        )
        return TokenReport(token=token, status=status, error_code=outcome.error_code)

    def _remove_token(self, token: str) -> bool:
        try:
            return self.registry.delete_token(token)
        except Exception:
            logger.exception("Failed to delete invalid token %s", short_token(token))
            return False
