"""MFA audit trail."""

from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from secondfactor.core.security_logging import log_security_event
from secondfactor.db.types import utcnow
from secondfactor.mfa.device_trust import DeviceContext
from secondfactor.models import AuditEvent


class AuditLogger:
    """Appends AuditEvent rows without ever failing the caller's operation."""

    def __init__(self, session: Session):
        self.session = session

    def record(
        self,
        principal_id: str,
        event_type: str,
        method: str | None = None,
        metadata: dict[str, Any] | None = None,
        device: DeviceContext | None = None,
        device_fingerprint: str | None = None,
        outcome: str = "allow",
        reason_code: str | None = None,
    ) -> AuditEvent | None:
        """
        Write one audit event inside a savepoint.

        Args:
            principal_id: Principal the event is about
            event_type: Event name (e.g. "mfa_enabled", "mfa_login_failed")
            method: Verification method, if any
            metadata: Extra event data (never secrets or codes)
            device: Device context of the request, for IP and user agent
            device_fingerprint: Fingerprint of the device involved, if known
            outcome: "allow" or "deny", forwarded to the security log
            reason_code: Error code for denied outcomes

        Returns:
            The stored event, or None if it could not be written.
        """
        event_metadata = dict(metadata or {})
        if reason_code:
            event_metadata.setdefault("reason_code", reason_code)

        log_security_event(
            event_type,
            outcome,
            reason_code=reason_code,
            principal_id=principal_id,
            method=method,
            device_fingerprint=device_fingerprint,
            ip_address=device.ip_address if device else None,
        )

        event = AuditEvent(
            principal_id=principal_id,
            event_type=event_type,
            method=method,
            ip_address=device.ip_address if device else None,
            user_agent=device.user_agent if device else None,
            device_fingerprint=device_fingerprint,
            event_metadata=event_metadata,
            created_at=utcnow(),
        )
        savepoint = self.session.begin_nested()
        try:
            self.session.add(event)
            self.session.flush()
            savepoint.commit()
        except SQLAlchemyError as e:
            savepoint.rollback()
            log_security_event(
                "audit_write_failed",
                "degraded",
                reason_code="AUDIT_WRITE_FAILED",
                principal_id=principal_id,
                audit_event_type=event_type,
                error=str(e),
            )
            return None
        return event

    def list_events(self, principal_id: str, limit: int = 50) -> list[AuditEvent]:
        """Most recent events for a principal."""
        return list(
            self.session.scalars(
                select(AuditEvent)
                .where(AuditEvent.principal_id == principal_id)
                .order_by(AuditEvent.created_at.desc())
                .limit(limit)
            )
        )
