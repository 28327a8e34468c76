"""MFA schemas."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from secondfactor.mfa.service import MfaState, VerificationMethod
from secondfactor.models import DeviceTrustStatus, MfaMethod


class DeviceSignals(BaseModel):
    """Client-side signals used to fingerprint a device."""

    model_config = ConfigDict(extra="allow")

    language: str | None = None
    platform: str | None = None
    screen: str | None = None  # e.g. "1920x1080x24"
    timezone: str | None = None
    hardware_concurrency: int | None = None


class MFAStatusResponse(BaseModel):
    """MFA status for the account settings screen."""

    state: MfaState
    enabled: bool
    enforced: bool
    primary_method: MfaMethod | None = None
    backup_method: MfaMethod | None = None
    last_verified_at: datetime | None = None
    backup_codes_remaining: int
    trusted_devices: int
    remaining_attempts: int


class MFASetupRequest(BaseModel):
    """MFA TOTP setup request."""

    account_name: str | None = Field(default=None, max_length=255)  # Label in the authenticator app


class MFASetupResponse(BaseModel):
    """MFA TOTP setup response."""

    provisioning_uri: str
    secret: str  # Return once for QR code generation
    backup_codes: list[str]  # Return once


class MFAEnableRequest(BaseModel):
    """Verify the first TOTP code and enable MFA."""

    code: str = Field(min_length=1, max_length=32)
    device_name: str | None = Field(default=None, max_length=255)  # Trust this device when set
    device: DeviceSignals | None = None


class MFALoginVerifyRequest(BaseModel):
    """Second-factor verification during login."""

    code: str = Field(min_length=1, max_length=32)  # TOTP code or backup code
    method: VerificationMethod | None = None  # Omit to infer from the code
    device: DeviceSignals | None = None


class MFAVerifyResponse(BaseModel):
    """MFA verification response."""

    success: bool
    method: VerificationMethod | None = None
    remaining_attempts: int | None = None  # Only on failure
    requires_device_trust: bool = False
    trust_token: str | None = None  # Return once
    trust_expires_at: datetime | None = None
    device_id: UUID | None = None


class MFADisableRequest(BaseModel):
    """MFA disable request."""

    code: str = Field(min_length=1, max_length=32)  # TOTP or backup code confirmation
    device: DeviceSignals | None = None


class MFADisableResponse(BaseModel):
    """MFA disable response."""

    status: str = "ok"
    message: str = "MFA disabled successfully"


class BackupCodesResponse(BaseModel):
    """Freshly generated backup codes."""

    backup_codes: list[str]  # Return once


class DeviceTrustRequest(BaseModel):
    """Trust the current device."""

    device_name: str | None = Field(default=None, max_length=255)
    device: DeviceSignals


class DeviceTrustResponse(BaseModel):
    """Device trust grant."""

    device_id: UUID
    trust_token: str  # Return once
    trust_expires_at: datetime


class DeviceCheckRequest(BaseModel):
    """Check whether the current device is trusted."""

    device: DeviceSignals
    trust_token: str | None = None


class DeviceCheckResponse(BaseModel):
    trusted: bool


class TrustedDeviceResponse(BaseModel):
    """Trusted device as shown to its owner."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    device_name: str | None = None
    device_type: str | None = None
    browser_info: dict[str, Any] | None = None
    ip_address: str | None = None
    trust_status: DeviceTrustStatus
    trusted_at: datetime | None = None
    trust_expires_at: datetime | None = None
    last_used_at: datetime | None = None


class AuditEventResponse(BaseModel):
    """Audit trail entry."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    event_type: str
    method: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    device_fingerprint: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict, validation_alias="event_metadata")
    created_at: datetime
