"""MFA domain errors."""

from typing import Any


class MfaError(Exception):
    """Base class for MFA errors with a stable error code."""

    code = "MFA_ERROR"
    default_message = "MFA operation failed"

    def __init__(self, message: str | None = None, details: dict[str, Any] | None = None):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)


class AlreadyEnabled(MfaError):
    code = "MFA_ALREADY_ENABLED"
    default_message = "MFA is already enabled"


class MfaNotFound(MfaError):
    """Enrollment state (pending secret) is missing."""

    code = "MFA_NOT_FOUND"
    default_message = "MFA setup not found"


class MfaNotEnabled(MfaError):
    code = "MFA_NOT_ENABLED"
    default_message = "MFA is not enabled"


class InvalidCode(MfaError):
    code = "INVALID_CODE"
    default_message = "Invalid verification code"


class RateLimited(MfaError):
    """Verification refused before the code was evaluated.

    Never carries a remaining-attempts count.
    """

    code = "RATE_LIMITED"
    default_message = "Too many MFA attempts. Please try again later."

    def __init__(self, message: str | None = None):
        super().__init__(message)


class DeviceTrustFailed(MfaError):
    code = "DEVICE_TRUST_FAILED"
    default_message = "Device trust could not be established"


class DeviceNotFound(DeviceTrustFailed):
    code = "DEVICE_NOT_FOUND"
    default_message = "Device not found"


class PersistenceError(MfaError):
    code = "PERSISTENCE_ERROR"
    default_message = "Storage operation failed"


class SecretDecryptionError(MfaError):
    """Encrypted secret failed authentication (tampered, wrong key or principal)."""

    code = "SECRET_DECRYPTION_FAILED"
    default_message = "TOTP secret could not be decrypted"
