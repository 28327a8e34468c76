"""MFA models (settings, TOTP secrets, backup codes, verification attempts)."""

import uuid
from enum import Enum as PyEnum

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    Enum,
    Index,
    LargeBinary,
    String,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.sql import func, text

from secondfactor.db.base import Base
from secondfactor.db.types import UTCDateTime


def _enum_values(enum_cls: type[PyEnum]) -> list[str]:
    return [member.value for member in enum_cls]


class MfaMethod(str, PyEnum):
    """MFA method."""

    TOTP = "totp"
    SMS = "sms"
    EMAIL = "email"


class TotpStatus(str, PyEnum):
    """TOTP secret lifecycle status."""

    PENDING = "pending"
    ACTIVE = "active"
    DISABLED = "disabled"


class MfaSettings(Base):
    """Per-principal MFA configuration. Never hard-deleted."""

    __tablename__ = "mfa_settings"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    principal_id = Column(String(64), nullable=False, unique=True, index=True)
    enabled = Column(Boolean, default=False, nullable=False)
    enforced = Column(Boolean, default=False, nullable=False)  # Admin can enforce MFA
    primary_method = Column(
        Enum(MfaMethod, name="mfa_method", native_enum=False, values_callable=_enum_values),
        nullable=True,
    )
    backup_method = Column(
        Enum(MfaMethod, name="mfa_method", native_enum=False, values_callable=_enum_values),
        nullable=True,
    )
    last_verified_at = Column(UTCDateTime, nullable=True)
    created_at = Column(UTCDateTime, server_default=func.now(), nullable=False)
    updated_at = Column(
        UTCDateTime,
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


class TotpSecret(Base):
    """Encrypted TOTP secret. One active per principal, history retained."""

    __tablename__ = "mfa_totp_secrets"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    principal_id = Column(String(64), nullable=False, index=True)
    encrypted_secret = Column(LargeBinary, nullable=False)  # Envelope-encrypted blob
    status = Column(
        Enum(TotpStatus, name="mfa_totp_status", native_enum=False, values_callable=_enum_values),
        default=TotpStatus.PENDING,
        nullable=False,
    )
    last_used_step = Column(BigInteger, nullable=True)  # Highest accepted TOTP time step
    verified_at = Column(UTCDateTime, nullable=True)
    last_used_at = Column(UTCDateTime, nullable=True)
    created_at = Column(UTCDateTime, server_default=func.now(), nullable=False)
    updated_at = Column(
        UTCDateTime,
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    __table_args__ = (
        Index("ix_mfa_totp_secrets_principal_status", "principal_id", "status"),
        # At most one active secret per principal
        Index(
            "uq_mfa_totp_secrets_one_active",
            "principal_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
    )


class BackupCode(Base):
    """Single-use backup code, stored as a keyed hash."""

    __tablename__ = "mfa_backup_codes"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    principal_id = Column(String(64), nullable=False, index=True)
    code_hash = Column(String(64), nullable=False)
    used_at = Column(UTCDateTime, nullable=True)
    created_at = Column(UTCDateTime, server_default=func.now(), nullable=False)

    __table_args__ = (UniqueConstraint("principal_id", "code_hash", name="uq_mfa_backup_codes_hash"),)


class VerificationAttempt(Base):
    """Append-only verification attempt, used for rate limiting."""

    __tablename__ = "mfa_verification_attempts"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    principal_id = Column(String(64), nullable=False)
    method = Column(String(32), nullable=False)  # "totp" or "backup_code"
    success = Column(Boolean, nullable=False)
    device_fingerprint = Column(String(64), nullable=True)
    attempted_at = Column(UTCDateTime, nullable=False)

    __table_args__ = (
        Index("ix_mfa_verification_attempts_window", "principal_id", "success", "attempted_at"),
    )
