"""
TrustGate Auth - Audit Trail

Audit events go to an external ``AuditSink``; the broker never stores them
itself.
"""

from __future__ import annotations

import logging
from typing import Any

from .core import AuditEvent, AuditSink, AuditStatus, Clock, utcnow

logger = logging.getLogger("trustgate.audit")


class AuditEventType:
    LOGIN = "login"
    LOGOUT = "logout"
    LOGOUT_ALL = "logout_all"
    ACCOUNT_LOCKED = "account_locked"
    ACCOUNT_UNLOCKED = "account_unlocked"
    ACCOUNT_DEACTIVATED = "account_deactivated"
    MFA_CHALLENGE = "mfa_challenge"
    MFA_ENABLED = "mfa_enabled"
    MFA_DISABLED = "mfa_disabled"
    BACKUP_CODES_REGENERATED = "backup_codes_regenerated"
    PASSWORD_CHANGED = "password_changed"
    TOKEN_REVOKED = "token_revoked"
    KEY_ROTATED = "key_rotated"
    KEY_REVOKED = "key_revoked"


class MemoryAuditSink:
    """Keeps audit events in a list. Useful in tests."""

    def __init__(self):
        self.events: list[AuditEvent] = []

    async def emit(self, event: AuditEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: str) -> list[AuditEvent]:
        return [e for e in self.events if e.event_type == event_type]


class LoggingAuditSink:
    """Writes audit events to the ``trustgate.audit`` logger."""

    def __init__(self, audit_logger: logging.Logger | None = None):
        self.logger = audit_logger or logger

    async def emit(self, event: AuditEvent) -> None:
        self.logger.info(
            f"{event.event_type} {event.status.value}",
            extra={"audit_event": event.to_dict()},
        )


class AuditTrail:
    """
    Stamps and forwards audit events.

    A failing sink is logged and does not fail the operation being audited.
    """

    def __init__(self, sink: AuditSink | None = None, clock: Clock = utcnow):
        self.sink = sink or LoggingAuditSink()
        self.clock = clock

    async def success(
        self,
        event_type: str,
        *,
        user_id: str | None = None,
        consumer_id: str | None = None,
        **metadata: Any,
    ) -> AuditEvent:
        return await self._emit(event_type, AuditStatus.SUCCESS, user_id, consumer_id, None, metadata)

    async def failure(
        self,
        event_type: str,
        reason: str,
        *,
        user_id: str | None = None,
        consumer_id: str | None = None,
        **metadata: Any,
    ) -> AuditEvent:
        return await self._emit(event_type, AuditStatus.FAILURE, user_id, consumer_id, reason, metadata)

    async def _emit(
        self,
        event_type: str,
        status: AuditStatus,
        user_id: str | None,
        consumer_id: str | None,
        reason: str | None,
        metadata: dict[str, Any],
    ) -> AuditEvent:
        event = AuditEvent(
            event_type=event_type,
            status=status,
            user_id=user_id,
            consumer_id=consumer_id,
            reason=reason,
            metadata=metadata,
            occurred_at=self.clock(),
        )
        try:
            await self.sink.emit(event)
        except Exception:
            logger.exception(f"Audit sink failed for {event_type} event")
        return event
