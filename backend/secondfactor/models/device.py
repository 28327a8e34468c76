"""Trusted device model."""

import uuid
from enum import Enum as PyEnum

from sqlalchemy import JSON, Column, Enum, String, UniqueConstraint, Uuid
from sqlalchemy.sql import func

from secondfactor.db.base import Base
from secondfactor.db.types import UTCDateTime


class DeviceTrustStatus(str, PyEnum):
    """Device trust status."""

    TRUSTED = "trusted"
    UNTRUSTED = "untrusted"
    REVOKED = "revoked"


class TrustedDevice(Base):
    """A client device granted time-limited MFA bypass for one principal."""

    __tablename__ = "mfa_devices"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    principal_id = Column(String(64), nullable=False, index=True)
    device_fingerprint = Column(String(64), nullable=False)
    device_name = Column(String(255), nullable=True)
    device_type = Column(String(32), nullable=True)  # mobile, desktop, tablet
    user_agent = Column(String(512), nullable=True)
    browser_info = Column(JSON, nullable=True)
    ip_address = Column(String(64), nullable=True)
    trust_status = Column(
        Enum(
            DeviceTrustStatus,
            name="device_trust_status",
            native_enum=False,
            values_callable=lambda e: [m.value for m in e],
        ),
        default=DeviceTrustStatus.UNTRUSTED,
        nullable=False,
    )
    trust_token_hash = Column(String(64), nullable=True)
    trusted_at = Column(UTCDateTime, nullable=True)
    trust_expires_at = Column(UTCDateTime, nullable=True)
    last_used_at = Column(UTCDateTime, nullable=True)
    created_at = Column(UTCDateTime, server_default=func.now(), nullable=False)
    updated_at = Column(
        UTCDateTime,
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("principal_id", "device_fingerprint", name="uq_mfa_devices_principal_fingerprint"),
    )
