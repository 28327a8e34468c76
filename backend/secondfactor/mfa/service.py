"""MFA enrollment and verification orchestration."""

from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Iterator
from uuid import UUID

import redis
from sqlalchemy import or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from secondfactor.core.config import Settings, settings
from secondfactor.core.logging import get_logger
from secondfactor.db.types import utcnow
from secondfactor.mfa.audit import AuditLogger
from secondfactor.mfa.backup_codes import BackupCodeManager
from secondfactor.mfa.device_trust import (
    DeviceContext,
    DeviceTrustManager,
    TrustGrant,
    compute_fingerprint,
)
from secondfactor.mfa.errors import (
    AlreadyEnabled,
    DeviceNotFound,
    DeviceTrustFailed,
    InvalidCode,
    MfaError,
    MfaNotEnabled,
    MfaNotFound,
    RateLimited,
    SecretDecryptionError,
)
from secondfactor.mfa.rate_limiter import RateLimiter
from secondfactor.mfa.secret_codec import SecretCodec, get_secret_codec
from secondfactor.mfa.totp import TotpEngine
from secondfactor.models import (
    AuditEvent,
    MfaMethod,
    MfaSettings,
    TotpSecret,
    TotpStatus,
    TrustedDevice,
)

logger = get_logger(__name__)


class VerificationMethod(str, Enum):
    """How a login code is checked."""

    TOTP = "totp"
    BACKUP_CODE = "backup_code"


class MfaState(str, Enum):
    """Persistent enrollment state of a principal."""

    NO_MFA = "no_mfa"
    PENDING_ENROLLMENT = "pending_enrollment"
    ACTIVE = "active"


@dataclass
class MfaSetup:
    secret: str
    provisioning_uri: str
    backup_codes: list[str]


@dataclass
class VerificationResult:
    """Outcome of a code check. Failures carry the attempts left in the window."""

    success: bool
    method: VerificationMethod | None = None
    remaining_attempts: int | None = None
    requires_device_trust: bool = False
    trust_token: str | None = None
    trust_expires_at: datetime | None = None
    device_id: UUID | None = None


@dataclass
class MfaStatus:
    principal_id: str
    state: MfaState
    enabled: bool
    enforced: bool
    primary_method: MfaMethod | None
    backup_method: MfaMethod | None
    last_verified_at: datetime | None
    backup_codes_remaining: int
    trusted_devices: int
    remaining_attempts: int


class MfaService:
    """
    Coordinates secret handling, code checks, backup codes, rate limiting,
    device trust and auditing for one database session.

    Every public operation commits its own transaction and records exactly
    one audit event, whether it succeeds or fails. Database errors roll the
    session back and propagate unchanged.
    """

    def __init__(
        self,
        session: Session,
        settings_: Settings | None = None,
        codec: SecretCodec | None = None,
        redis_client: redis.Redis | None = None,
    ):
        self.session = session
        self.settings = settings_ or settings
        self.codec = codec or get_secret_codec()
        self.totp = TotpEngine.from_settings(self.settings)
        self.backup_codes = BackupCodeManager(session, self.settings)
        self.rate_limiter = RateLimiter(session, self.settings, redis_client)
        self.devices = DeviceTrustManager(session, self.settings)
        self.audit = AuditLogger(session)

    # Transaction and lookup helpers

    def _commit(self) -> None:
        try:
            self.session.commit()
        except SQLAlchemyError:
            self.session.rollback()
            raise

    @contextmanager
    def _transaction(self) -> Iterator[None]:
        """Commit on success and on domain errors (attempts and audit persist)."""
        try:
            yield
        except MfaError:
            self._commit()
            raise
        except Exception:
            self.session.rollback()
            raise
        else:
            self._commit()

    def _deny(
        self,
        principal_id: str,
        event_type: str,
        error: MfaError,
        method: str | None = None,
        device: DeviceContext | None = None,
        fingerprint: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> MfaError:
        """Audit a refused operation and hand back the error to raise."""
        self.audit.record(
            principal_id,
            event_type,
            method=method,
            metadata=metadata,
            device=device,
            device_fingerprint=fingerprint,
            outcome="deny",
            reason_code=error.code,
        )
        return error

    def _get_settings(self, principal_id: str) -> MfaSettings | None:
        return self.session.scalar(
            select(MfaSettings).where(MfaSettings.principal_id == principal_id)
        )

    def _get_secret(self, principal_id: str, status: TotpStatus) -> TotpSecret | None:
        return self.session.scalar(
            select(TotpSecret)
            .where(TotpSecret.principal_id == principal_id, TotpSecret.status == status)
            .order_by(TotpSecret.created_at.desc())
            .limit(1)
        )

    @staticmethod
    def _fingerprint(device: DeviceContext | None) -> str | None:
        if device is None:
            return None
        try:
            return compute_fingerprint(device)
        except DeviceTrustFailed:
            return None

    # Code checks

    def _check_totp(self, principal_id: str, secret_row: TotpSecret, code: str) -> bool:
        """Match a TOTP code and claim its step so it can never be replayed."""
        secret = self.codec.decrypt(secret_row.encrypted_secret, principal_id)
        step = self.totp.match_step(secret, code)
        if step is None:
            return False

        result = self.session.execute(
            update(TotpSecret)
            .where(
                TotpSecret.id == secret_row.id,
                or_(TotpSecret.last_used_step.is_(None), TotpSecret.last_used_step < step),
            )
            .values(last_used_step=step, last_used_at=utcnow())
            .execution_options(synchronize_session="fetch")
        )
        if result.rowcount != 1:
            logger.warning(
                "Rejected replayed TOTP code",
                extra={"principal_id": principal_id, "step": step},
            )
            return False

        if self.codec.needs_rewrap(secret_row.encrypted_secret):
            secret_row.encrypted_secret = self.codec.encrypt(secret, principal_id)
        return True

    def _methods_for(self, code: str, method: VerificationMethod | None) -> list[VerificationMethod]:
        if method is not None:
            return [method]
        if self.backup_codes.looks_like_backup_code(code):
            return [VerificationMethod.BACKUP_CODE, VerificationMethod.TOTP]
        return [VerificationMethod.TOTP]

    def _verify_code(
        self,
        principal_id: str,
        code: str,
        method: VerificationMethod | None,
        fingerprint: str | None,
    ) -> VerificationMethod | None:
        """
        Rate-limited check of a login code against the active secret and backup codes.

        Records the attempt but writes no audit event, so callers stay in
        control of which single event describes their operation.

        Raises:
            RateLimited: Before the code is evaluated
            SecretDecryptionError: The active secret cannot be decrypted; the
                attempt is recorded as a failure first
        """
        reservation = self.rate_limiter.acquire(principal_id)
        candidates = self._methods_for(code, method)

        matched = None
        active = self._get_secret(principal_id, TotpStatus.ACTIVE)
        for candidate in candidates:
            if candidate == VerificationMethod.BACKUP_CODE:
                ok = self.backup_codes.consume(principal_id, code)
            else:
                try:
                    ok = active is not None and self._check_totp(principal_id, active, code)
                except SecretDecryptionError:
                    self.rate_limiter.record(
                        principal_id, candidate.value, False,
                        device_fingerprint=fingerprint, reservation=reservation,
                    )
                    raise
            if ok:
                matched = candidate
                break

        recorded_method = matched or candidates[0]
        self.rate_limiter.record(
            principal_id,
            recorded_method.value,
            matched is not None,
            device_fingerprint=fingerprint,
            reservation=reservation,
        )
        return matched

    # Enrollment

    def initialize_mfa(
        self,
        principal_id: str,
        account_name: str | None = None,
        device: DeviceContext | None = None,
    ) -> MfaSetup:
        """
        Start TOTP enrollment.

        Creates a pending secret (superseding any earlier pending one) and a
        fresh set of backup codes. The raw secret and codes are only ever
        returned here.

        Raises:
            AlreadyEnabled: If MFA is already enabled for the principal
        """
        with self._transaction():
            mfa_settings = self._get_settings(principal_id)
            if mfa_settings is not None and mfa_settings.enabled:
                raise self._deny(principal_id, "mfa_init_failed", AlreadyEnabled(), device=device)

            secret = self.codec.generate_secret()

            self.session.execute(
                update(TotpSecret)
                .where(
                    TotpSecret.principal_id == principal_id,
                    TotpSecret.status == TotpStatus.PENDING,
                )
                .values(status=TotpStatus.DISABLED)
                .execution_options(synchronize_session="fetch")
            )
            self.session.add(
                TotpSecret(
                    principal_id=principal_id,
                    encrypted_secret=self.codec.encrypt(secret, principal_id),
                    status=TotpStatus.PENDING,
                )
            )

            if mfa_settings is None:
                mfa_settings = MfaSettings(principal_id=principal_id, enabled=False, enforced=False)
                self.session.add(mfa_settings)
            mfa_settings.primary_method = MfaMethod.TOTP
            mfa_settings.backup_method = MfaMethod.EMAIL

            codes = self.backup_codes.generate(principal_id)

            self.audit.record(
                principal_id,
                "mfa_initialized",
                method=VerificationMethod.TOTP.value,
                metadata={"backup_codes": len(codes)},
                device=device,
            )

            return MfaSetup(
                secret=secret,
                provisioning_uri=self.totp.provisioning_uri(secret, account_name or principal_id),
                backup_codes=codes,
            )

    def verify_and_enable_mfa(
        self,
        principal_id: str,
        code: str,
        device_name: str | None = None,
        device: DeviceContext | None = None,
    ) -> VerificationResult:
        """
        Complete enrollment with a code from the authenticator app.

        When ``device_name`` and ``device`` are given, the device is trusted
        as part of enabling MFA.

        Raises:
            AlreadyEnabled: If MFA is already enabled
            RateLimited: If the principal has no attempts left
            SecretDecryptionError: If the stored secret cannot be decrypted
            MfaNotFound: If there is no pending enrollment
        """
        with self._transaction():
            fingerprint = self._fingerprint(device)
            mfa_settings = self._get_settings(principal_id)
            if mfa_settings is not None and mfa_settings.enabled:
                raise self._deny(
                    principal_id, "mfa_verification_failed", AlreadyEnabled(), device=device
                )

            method = VerificationMethod.TOTP.value
            try:
                reservation = self.rate_limiter.acquire(principal_id)
            except RateLimited as e:
                raise self._deny(
                    principal_id, "mfa_rate_limited", e, method=method, device=device,
                    fingerprint=fingerprint,
                )

            pending = self._get_secret(principal_id, TotpStatus.PENDING)
            if pending is None or mfa_settings is None:
                self.rate_limiter.record(principal_id, method, False, fingerprint, reservation)
                raise self._deny(
                    principal_id, "mfa_verification_failed", MfaNotFound(), method=method,
                    device=device, fingerprint=fingerprint,
                )

            try:
                ok = self._check_totp(principal_id, pending, code)
            except SecretDecryptionError as e:
                self.rate_limiter.record(principal_id, method, False, fingerprint, reservation)
                raise self._deny(
                    principal_id, "mfa_verification_failed", e, method=method,
                    device=device, fingerprint=fingerprint,
                )
            self.rate_limiter.record(principal_id, method, ok, fingerprint, reservation)

            if not ok:
                remaining = self.rate_limiter.remaining_attempts(principal_id)
                self._deny(
                    principal_id, "mfa_verification_failed", InvalidCode(), method=method,
                    device=device, fingerprint=fingerprint,
                    metadata={"remaining_attempts": remaining},
                )
                return VerificationResult(success=False, remaining_attempts=remaining)

            now = utcnow()
            pending.status = TotpStatus.ACTIVE
            pending.verified_at = now
            mfa_settings.enabled = True
            mfa_settings.last_verified_at = now

            result = VerificationResult(success=True, method=VerificationMethod.TOTP)
            if device_name and device is not None and fingerprint is not None:
                grant = self.devices.trust(principal_id, device, device_name)
                result.trust_token = grant.trust_token
                result.trust_expires_at = grant.device.trust_expires_at
                result.device_id = grant.device.id
            else:
                result.requires_device_trust = not (
                    fingerprint is not None and self.devices.is_trusted(principal_id, fingerprint)
                )

            self.audit.record(
                principal_id,
                "mfa_enabled",
                method=method,
                metadata={"device_trusted": result.trust_token is not None},
                device=device,
                device_fingerprint=fingerprint,
            )
            return result

    # Login challenge

    def verify_mfa_login(
        self,
        principal_id: str,
        code: str,
        method: VerificationMethod | None = None,
        device: DeviceContext | None = None,
    ) -> VerificationResult:
        """
        Check a second-factor code during login.

        Args:
            principal_id: Principal completing login
            code: TOTP code or backup code
            method: Force a verification path. When omitted, a code with the
                backup-code length is tried as a backup code first, then as TOTP.
            device: Device context, used for the trust check and the audit trail

        Raises:
            MfaNotEnabled: If the principal has not enabled MFA
            RateLimited: If the principal has no attempts left
            SecretDecryptionError: If the stored secret cannot be decrypted
        """
        with self._transaction():
            fingerprint = self._fingerprint(device)
            mfa_settings = self._get_settings(principal_id)
            if mfa_settings is None or not mfa_settings.enabled:
                raise self._deny(principal_id, "mfa_login_failed", MfaNotEnabled(), device=device)

            try:
                matched = self._verify_code(principal_id, code, method, fingerprint)
            except RateLimited as e:
                raise self._deny(
                    principal_id, "mfa_rate_limited", e,
                    method=method.value if method else None, device=device,
                    fingerprint=fingerprint,
                )
            except SecretDecryptionError as e:
                raise self._deny(
                    principal_id, "mfa_login_failed", e,
                    method=VerificationMethod.TOTP.value, device=device,
                    fingerprint=fingerprint,
                )

            if matched is None:
                remaining = self.rate_limiter.remaining_attempts(principal_id)
                self._deny(
                    principal_id, "mfa_login_failed", InvalidCode(),
                    method=method.value if method else None, device=device,
                    fingerprint=fingerprint, metadata={"remaining_attempts": remaining},
                )
                return VerificationResult(success=False, remaining_attempts=remaining)

            mfa_settings.last_verified_at = utcnow()
            expired = fingerprint is not None and (
                self.devices.expire_if_due(principal_id, fingerprint) is not None
            )
            trusted = fingerprint is not None and self.devices.is_trusted(principal_id, fingerprint)
            # Expiry rides on the login event
            extra = {"device_trust_expired": True} if expired else {}

            if matched == VerificationMethod.BACKUP_CODE:
                self.audit.record(
                    principal_id,
                    "backup_code_used",
                    method=matched.value,
                    metadata={
                        "backup_codes_remaining": self.backup_codes.remaining(principal_id),
                        **extra,
                    },
                    device=device,
                    device_fingerprint=fingerprint,
                )
            else:
                self.audit.record(
                    principal_id,
                    "mfa_verified",
                    method=matched.value,
                    metadata=extra or None,
                    device=device,
                    device_fingerprint=fingerprint,
                )

            return VerificationResult(
                success=True, method=matched, requires_device_trust=not trusted
            )

    # Disable / backup codes

    def disable_mfa(
        self, principal_id: str, code: str, device: DeviceContext | None = None
    ) -> None:
        """
        Turn MFA off after re-verifying the principal.

        Disables every TOTP secret, deletes unused backup codes and revokes
        every trusted device.

        Raises:
            MfaNotEnabled: If MFA is not enabled
            RateLimited: If the principal has no attempts left
            SecretDecryptionError: If the stored secret cannot be decrypted
            InvalidCode: If the code does not verify
        """
        with self._transaction():
            fingerprint = self._fingerprint(device)
            mfa_settings = self._get_settings(principal_id)
            if mfa_settings is None or not mfa_settings.enabled:
                raise self._deny(principal_id, "mfa_disable_failed", MfaNotEnabled(), device=device)

            try:
                matched = self._verify_code(principal_id, code, None, fingerprint)
            except RateLimited as e:
                raise self._deny(
                    principal_id, "mfa_rate_limited", e, device=device, fingerprint=fingerprint
                )
            except SecretDecryptionError as e:
                raise self._deny(
                    principal_id, "mfa_disable_failed", e,
                    method=VerificationMethod.TOTP.value, device=device,
                    fingerprint=fingerprint,
                )

            if matched is None:
                remaining = self.rate_limiter.remaining_attempts(principal_id)
                raise self._deny(
                    principal_id, "mfa_disable_failed",
                    InvalidCode(details={"remaining_attempts": remaining}),
                    device=device, fingerprint=fingerprint,
                    metadata={"remaining_attempts": remaining},
                )

            mfa_settings.enabled = False
            self.session.execute(
                update(TotpSecret)
                .where(
                    TotpSecret.principal_id == principal_id,
                    TotpSecret.status != TotpStatus.DISABLED,
                )
                .values(status=TotpStatus.DISABLED)
                .execution_options(synchronize_session="fetch")
            )
            deleted_codes = self.backup_codes.delete_unused(principal_id)
            revoked = self.devices.revoke_all(principal_id)

            self.audit.record(
                principal_id,
                "mfa_disabled",
                method=matched.value,
                metadata={"devices_revoked": revoked, "backup_codes_deleted": deleted_codes},
                device=device,
                device_fingerprint=fingerprint,
            )

    def generate_new_backup_codes(
        self, principal_id: str, device: DeviceContext | None = None
    ) -> list[str]:
        """Replace unused backup codes. Raises MfaNotEnabled unless MFA is on."""
        with self._transaction():
            mfa_settings = self._get_settings(principal_id)
            if mfa_settings is None or not mfa_settings.enabled:
                raise self._deny(principal_id, "backup_codes_failed", MfaNotEnabled(), device=device)

            codes = self.backup_codes.generate(principal_id)
            self.audit.record(
                principal_id,
                "backup_codes_generated",
                metadata={"count": len(codes)},
                device=device,
            )
            return codes

    # Device trust

    def trust_device(
        self,
        principal_id: str,
        device: DeviceContext,
        device_name: str | None = None,
    ) -> TrustGrant:
        """
        Trust the current device for MFA_DEVICE_TRUST_DAYS.

        Only allowed within MFA_DEVICE_TRUST_VERIFY_WINDOW_SECONDS of a
        successful verification.

        Raises:
            MfaNotEnabled: If MFA is not enabled
            DeviceTrustFailed: Without a recent verification or device signals
        """
        with self._transaction():
            mfa_settings = self._get_settings(principal_id)
            if mfa_settings is None or not mfa_settings.enabled:
                raise self._deny(principal_id, "device_trust_failed", MfaNotEnabled(), device=device)

            window = timedelta(seconds=self.settings.MFA_DEVICE_TRUST_VERIFY_WINDOW_SECONDS)
            verified_at = mfa_settings.last_verified_at
            if verified_at is None or utcnow() - verified_at > window:
                raise self._deny(
                    principal_id,
                    "device_trust_failed",
                    DeviceTrustFailed("A recent MFA verification is required to trust a device"),
                    device=device,
                )

            try:
                grant = self.devices.trust(principal_id, device, device_name)
            except DeviceTrustFailed as e:
                raise self._deny(principal_id, "device_trust_failed", e, device=device)

            self.audit.record(
                principal_id,
                "device_trust_reenrolled" if grant.reenrolled else "device_trusted",
                metadata={
                    "device_id": str(grant.device.id),
                    "expires_at": grant.device.trust_expires_at.isoformat(),
                },
                device=device,
                device_fingerprint=grant.device.device_fingerprint,
            )
            return grant

    def is_device_trusted(
        self,
        principal_id: str,
        device: DeviceContext,
        trust_token: str | None = None,
    ) -> bool:
        """Trust check for a device, optionally also checking its trust token."""
        fingerprint = self._fingerprint(device)
        if fingerprint is None:
            return False
        with self._transaction():
            expired = self.devices.expire_if_due(principal_id, fingerprint)
            if expired is not None:
                self.audit.record(
                    principal_id,
                    "device_trust_expired",
                    metadata={"device_id": str(expired.id)},
                    device=device,
                    device_fingerprint=fingerprint,
                )
                return False
            if trust_token is not None:
                return self.devices.verify_trust_token(principal_id, fingerprint, trust_token)
            return self.devices.is_trusted(principal_id, fingerprint)

    def list_trusted_devices(self, principal_id: str) -> list[TrustedDevice]:
        return self.devices.list_trusted(principal_id)

    def revoke_device_trust(
        self, principal_id: str, device_id: UUID, device: DeviceContext | None = None
    ) -> TrustedDevice:
        """Revoke one of the principal's devices. Raises DeviceNotFound otherwise."""
        with self._transaction():
            try:
                record = self.devices.revoke(principal_id, device_id)
            except DeviceNotFound as e:
                raise self._deny(
                    principal_id, "device_revoke_failed", e, device=device,
                    metadata={"device_id": str(device_id)},
                )

            self.audit.record(
                principal_id,
                "device_revoked",
                metadata={"device_id": str(record.id)},
                device=device,
                device_fingerprint=record.device_fingerprint,
            )
            return record

    # Read-only queries

    def state(self, principal_id: str) -> MfaState:
        mfa_settings = self._get_settings(principal_id)
        if mfa_settings is not None and mfa_settings.enabled:
            return MfaState.ACTIVE
        if self._get_secret(principal_id, TotpStatus.PENDING) is not None:
            return MfaState.PENDING_ENROLLMENT
        return MfaState.NO_MFA

    def remaining_attempts(self, principal_id: str) -> int:
        return self.rate_limiter.remaining_attempts(principal_id)

    def get_settings(self, principal_id: str) -> MfaSettings | None:
        return self._get_settings(principal_id)

    def get_status(self, principal_id: str) -> MfaStatus:
        """Summary of a principal's MFA configuration for the settings UI."""
        mfa_settings = self._get_settings(principal_id)
        return MfaStatus(
            principal_id=principal_id,
            state=self.state(principal_id),
            enabled=bool(mfa_settings and mfa_settings.enabled),
            enforced=bool(mfa_settings and mfa_settings.enforced),
            primary_method=mfa_settings.primary_method if mfa_settings else None,
            backup_method=mfa_settings.backup_method if mfa_settings else None,
            last_verified_at=mfa_settings.last_verified_at if mfa_settings else None,
            backup_codes_remaining=self.backup_codes.remaining(principal_id),
            trusted_devices=len(self.devices.list_trusted(principal_id)),
            remaining_attempts=self.rate_limiter.remaining_attempts(principal_id),
        )

    def list_audit_events(self, principal_id: str, limit: int = 50) -> list[AuditEvent]:
        return self.audit.list_events(principal_id, limit)
