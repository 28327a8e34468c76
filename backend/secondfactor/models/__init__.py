"""Database models."""

# Import all models here so Alembic and create_all can detect them
from secondfactor.models.audit import AuditEvent
from secondfactor.models.device import DeviceTrustStatus, TrustedDevice
from secondfactor.models.mfa import (
    BackupCode,
    MfaMethod,
    MfaSettings,
    TotpSecret,
    TotpStatus,
    VerificationAttempt,
)

__all__ = [
    "AuditEvent",
    "BackupCode",
    "DeviceTrustStatus",
    "MfaMethod",
    "MfaSettings",
    "TotpSecret",
    "TotpStatus",
    "TrustedDevice",
    "VerificationAttempt",
]
