"""Application-specific exceptions for consistent error handling."""

from typing import Any

from fastapi import HTTPException, status

from secondfactor.mfa.errors import MfaError


class AppError(HTTPException):
    """Application error with standardized error code."""

    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        details: dict[str, Any] | list[Any] | None = None,
    ):
        """Initialize application error."""
        super().__init__(
            status_code=status_code,
            detail={
                "code": code,
                "message": message,
                "details": details,
            },
        )
        self.code = code
        self.message = message
        self.details = details


# HTTP status for each MFA domain error code
MFA_ERROR_STATUS: dict[str, int] = {
    "MFA_ALREADY_ENABLED": status.HTTP_409_CONFLICT,
    "MFA_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "MFA_NOT_ENABLED": status.HTTP_400_BAD_REQUEST,
    "INVALID_CODE": status.HTTP_400_BAD_REQUEST,
    "RATE_LIMITED": status.HTTP_429_TOO_MANY_REQUESTS,
    "DEVICE_TRUST_FAILED": status.HTTP_400_BAD_REQUEST,
    "DEVICE_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "PERSISTENCE_ERROR": status.HTTP_500_INTERNAL_SERVER_ERROR,
    "SECRET_DECRYPTION_FAILED": status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def raise_for_mfa_error(exc: MfaError) -> None:
    """Convert an MFA domain error into an AppError."""
    raise AppError(
        status_code=MFA_ERROR_STATUS.get(exc.code, status.HTTP_400_BAD_REQUEST),
        code=exc.code,
        message=exc.message,
        details=exc.details,
    ) from exc
