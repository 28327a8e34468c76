"""Multi-factor authentication module.

This module implements the second-factor core with:
- TOTP secrets envelope-encrypted at rest (AES-256-GCM, rotating KEKs)
- RFC 6238 verification with +-1 step of skew and per-step replay protection
- Single-use backup codes stored as keyed hashes
- Per-principal attempt rate limiting (Redis buckets or database window)
- Time-limited device trust
- Append-only audit trail
"""

from secondfactor.mfa.errors import (
    AlreadyEnabled,
    DeviceNotFound,
    DeviceTrustFailed,
    InvalidCode,
    MfaError,
    MfaNotEnabled,
    MfaNotFound,
    PersistenceError,
    RateLimited,
)
from secondfactor.mfa.service import MfaService, MfaState, VerificationMethod

__all__ = [
    "AlreadyEnabled",
    "DeviceNotFound",
    "DeviceTrustFailed",
    "InvalidCode",
    "MfaError",
    "MfaNotEnabled",
    "MfaNotFound",
    "MfaService",
    "MfaState",
    "PersistenceError",
    "RateLimited",
    "VerificationMethod",
]
