"""MFA endpoints."""

from uuid import UUID

from fastapi import APIRouter, Query, Request, status

from secondfactor.core.app_exceptions import raise_for_mfa_error
from secondfactor.core.dependencies import CurrentPrincipal, MfaServiceDep
from secondfactor.core.security_logging import get_client_ip, get_user_agent
from secondfactor.mfa.device_trust import DeviceContext
from secondfactor.mfa.errors import MfaError
from secondfactor.schemas.mfa import (
    AuditEventResponse,
    BackupCodesResponse,
    DeviceCheckRequest,
    DeviceCheckResponse,
    DeviceSignals,
    DeviceTrustRequest,
    DeviceTrustResponse,
    MFADisableRequest,
    MFADisableResponse,
    MFAEnableRequest,
    MFALoginVerifyRequest,
    MFASetupRequest,
    MFASetupResponse,
    MFAStatusResponse,
    MFAVerifyResponse,
    TrustedDeviceResponse,
)

router = APIRouter(tags=["MFA"])


def _device_context(request: Request, signals: DeviceSignals | None = None) -> DeviceContext:
    """Build the device context from body signals plus request headers."""
    return DeviceContext(
        signals=signals.model_dump(exclude_none=True) if signals else {},
        user_agent=get_user_agent(request),
        ip_address=get_client_ip(request),
    )


@router.get(
    "/status",
    response_model=MFAStatusResponse,
    status_code=status.HTTP_200_OK,
    summary="MFA status",
    description="Current MFA configuration of the authenticated principal.",
)
async def mfa_status(
    principal_id: CurrentPrincipal,
    service: MfaServiceDep,
) -> MFAStatusResponse:
    """Get MFA status."""
    mfa_status_ = service.get_status(principal_id)
    return MFAStatusResponse(
        state=mfa_status_.state,
        enabled=mfa_status_.enabled,
        enforced=mfa_status_.enforced,
        primary_method=mfa_status_.primary_method,
        backup_method=mfa_status_.backup_method,
        last_verified_at=mfa_status_.last_verified_at,
        backup_codes_remaining=mfa_status_.backup_codes_remaining,
        trusted_devices=mfa_status_.trusted_devices,
        remaining_attempts=mfa_status_.remaining_attempts,
    )


@router.post(
    "/totp/setup",
    response_model=MFASetupResponse,
    status_code=status.HTTP_200_OK,
    summary="Setup MFA TOTP",
    description="Generate TOTP secret, provisioning URI for QR code, and backup codes.",
)
async def mfa_totp_setup(
    request: Request,
    principal_id: CurrentPrincipal,
    service: MfaServiceDep,
    payload: MFASetupRequest | None = None,
) -> MFASetupResponse:
    """Setup MFA TOTP."""
    try:
        setup = service.initialize_mfa(
            principal_id,
            account_name=payload.account_name if payload else None,
            device=_device_context(request),
        )
    except MfaError as e:
        raise_for_mfa_error(e)

    return MFASetupResponse(
        provisioning_uri=setup.provisioning_uri,
        secret=setup.secret,
        backup_codes=setup.backup_codes,
    )


@router.post(
    "/totp/verify",
    response_model=MFAVerifyResponse,
    status_code=status.HTTP_200_OK,
    summary="Verify and enable MFA TOTP",
    description="Verify the first TOTP code from the authenticator app and enable MFA.",
)
async def mfa_totp_verify(
    request: Request,
    payload: MFAEnableRequest,
    principal_id: CurrentPrincipal,
    service: MfaServiceDep,
) -> MFAVerifyResponse:
    """Verify TOTP code and enable MFA."""
    try:
        result = service.verify_and_enable_mfa(
            principal_id,
            payload.code,
            device_name=payload.device_name,
            device=_device_context(request, payload.device),
        )
    except MfaError as e:
        raise_for_mfa_error(e)

    return MFAVerifyResponse(**vars(result))


@router.post(
    "/verify",
    response_model=MFAVerifyResponse,
    status_code=status.HTTP_200_OK,
    summary="Verify MFA during login",
    description="Verify a TOTP code or a backup code as the second login factor.",
)
async def mfa_verify(
    request: Request,
    payload: MFALoginVerifyRequest,
    principal_id: CurrentPrincipal,
    service: MfaServiceDep,
) -> MFAVerifyResponse:
    """Verify second factor."""
    try:
        result = service.verify_mfa_login(
            principal_id,
            payload.code,
            method=payload.method,
            device=_device_context(request, payload.device),
        )
    except MfaError as e:
        raise_for_mfa_error(e)

    return MFAVerifyResponse(**vars(result))


@router.post(
    "/disable",
    response_model=MFADisableResponse,
    status_code=status.HTTP_200_OK,
    summary="Disable MFA",
    description="Disable MFA after confirming with a TOTP or backup code. Revokes all trusted devices.",
)
async def mfa_disable(
    request: Request,
    payload: MFADisableRequest,
    principal_id: CurrentPrincipal,
    service: MfaServiceDep,
) -> MFADisableResponse:
    """Disable MFA."""
    try:
        service.disable_mfa(principal_id, payload.code, device=_device_context(request, payload.device))
    except MfaError as e:
        raise_for_mfa_error(e)

    return MFADisableResponse()


@router.post(
    "/backup-codes/regenerate",
    response_model=BackupCodesResponse,
    status_code=status.HTTP_200_OK,
    summary="Regenerate backup codes",
    description="Replace all unused backup codes with a fresh set.",
)
async def mfa_regenerate_backup_codes(
    request: Request,
    principal_id: CurrentPrincipal,
    service: MfaServiceDep,
) -> BackupCodesResponse:
    """Regenerate backup codes."""
    try:
        codes = service.generate_new_backup_codes(principal_id, device=_device_context(request))
    except MfaError as e:
        raise_for_mfa_error(e)

    return BackupCodesResponse(backup_codes=codes)


@router.get(
    "/devices",
    response_model=list[TrustedDeviceResponse],
    status_code=status.HTTP_200_OK,
    summary="List trusted devices",
)
async def mfa_list_devices(
    principal_id: CurrentPrincipal,
    service: MfaServiceDep,
) -> list[TrustedDeviceResponse]:
    """List trusted devices, most recently used first."""
    return [
        TrustedDeviceResponse.model_validate(device)
        for device in service.list_trusted_devices(principal_id)
    ]


@router.post(
    "/devices/trust",
    response_model=DeviceTrustResponse,
    status_code=status.HTTP_200_OK,
    summary="Trust this device",
    description="Skip MFA on this device for a limited time. Requires a recent MFA verification.",
)
async def mfa_trust_device(
    request: Request,
    payload: DeviceTrustRequest,
    principal_id: CurrentPrincipal,
    service: MfaServiceDep,
) -> DeviceTrustResponse:
    """Trust the current device."""
    try:
        grant = service.trust_device(
            principal_id,
            _device_context(request, payload.device),
            device_name=payload.device_name,
        )
    except MfaError as e:
        raise_for_mfa_error(e)

    return DeviceTrustResponse(
        device_id=grant.device.id,
        trust_token=grant.trust_token,
        trust_expires_at=grant.device.trust_expires_at,
    )


@router.post(
    "/devices/check",
    response_model=DeviceCheckResponse,
    status_code=status.HTTP_200_OK,
    summary="Check device trust",
)
async def mfa_check_device(
    request: Request,
    payload: DeviceCheckRequest,
    principal_id: CurrentPrincipal,
    service: MfaServiceDep,
) -> DeviceCheckResponse:
    """Check whether the current device may skip MFA."""
    trusted = service.is_device_trusted(
        principal_id,
        _device_context(request, payload.device),
        trust_token=payload.trust_token,
    )
    return DeviceCheckResponse(trusted=trusted)


@router.delete(
    "/devices/{device_id}",
    response_model=TrustedDeviceResponse,
    status_code=status.HTTP_200_OK,
    summary="Revoke device trust",
)
async def mfa_revoke_device(
    device_id: UUID,
    request: Request,
    principal_id: CurrentPrincipal,
    service: MfaServiceDep,
) -> TrustedDeviceResponse:
    """Revoke trust for one of the principal's devices."""
    try:
        device = service.revoke_device_trust(principal_id, device_id, device=_device_context(request))
    except MfaError as e:
        raise_for_mfa_error(e)

    return TrustedDeviceResponse.model_validate(device)


@router.get(
    "/audit-events",
    response_model=list[AuditEventResponse],
    status_code=status.HTTP_200_OK,
    summary="MFA audit trail",
)
async def mfa_audit_events(
    principal_id: CurrentPrincipal,
    service: MfaServiceDep,
    limit: int = Query(default=50, ge=1, le=200),
) -> list[AuditEventResponse]:
    """Recent MFA audit events for the principal."""
    return [
        AuditEventResponse.model_validate(event)
        for event in service.list_audit_events(principal_id, limit)
    ]
