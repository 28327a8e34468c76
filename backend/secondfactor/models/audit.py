"""MFA audit event model."""

import uuid

from sqlalchemy import JSON, Column, Index, String, Uuid, event

from secondfactor.db.base import Base
from secondfactor.db.types import UTCDateTime


class AuditEvent(Base):
    """Append-only record of an MFA-relevant action."""

    __tablename__ = "mfa_audit_log"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    principal_id = Column(String(64), nullable=False)
    event_type = Column(String(64), nullable=False)
    method = Column(String(32), nullable=True)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(String(512), nullable=True)
    device_fingerprint = Column(String(64), nullable=True)
    event_metadata = Column("metadata", JSON, nullable=False, default=dict)
    created_at = Column(UTCDateTime, nullable=False)

    __table_args__ = (Index("ix_mfa_audit_log_principal_created", "principal_id", "created_at"),)


class ImmutableAuditEventError(RuntimeError):
    """Raised when code tries to modify or delete an audit event."""


@event.listens_for(AuditEvent, "before_update")
def _reject_update(mapper, connection, target) -> None:
    raise ImmutableAuditEventError(f"Audit event {target.id} is append-only")


@event.listens_for(AuditEvent, "before_delete")
def _reject_delete(mapper, connection, target) -> None:
    raise ImmutableAuditEventError(f"Audit event {target.id} is append-only")
