"""Device fingerprinting and time-limited device trust."""

import hashlib
import json
import secrets
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from secondfactor.core.config import Settings
from secondfactor.core.logging import get_logger
from secondfactor.core.security import hash_token, tokens_match
from secondfactor.db.types import utcnow
from secondfactor.mfa.errors import DeviceNotFound, DeviceTrustFailed
from secondfactor.models import DeviceTrustStatus, TrustedDevice

logger = get_logger(__name__)

FINGERPRINT_LENGTH = 32


@dataclass
class DeviceContext:
    """Client signals describing the device a request comes from."""

    signals: dict[str, Any] = field(default_factory=dict)
    user_agent: str | None = None
    ip_address: str | None = None


@dataclass
class TrustGrant:
    device: TrustedDevice
    trust_token: str
    reenrolled: bool = False


def compute_fingerprint(device: DeviceContext) -> str:
    """
    Stable fingerprint of a device: SHA-256 over canonical JSON of its signals.

    Raises:
        DeviceTrustFailed: If the device sent no usable signals
    """
    signals = {key: value for key, value in device.signals.items() if value not in (None, "")}
    if device.user_agent:
        signals.setdefault("user_agent", device.user_agent)
    if not signals:
        raise DeviceTrustFailed("Device fingerprint requires at least one client signal")

    canonical = json.dumps(signals, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()[:FINGERPRINT_LENGTH]


def detect_device_type(user_agent: str | None) -> str:
    if not user_agent:
        return "unknown"
    ua = user_agent.lower()
    if "ipad" in ua or "tablet" in ua:
        return "tablet"
    if "mobi" in ua or "iphone" in ua or "android" in ua:
        return "mobile"
    return "desktop"


def detect_browser(user_agent: str | None) -> str:
    if not user_agent:
        return "unknown"
    # Order matters: Edge and Chrome UAs both mention Safari
    for token, name in (("edg/", "edge"), ("firefox/", "firefox"), ("chrome/", "chrome"), ("safari/", "safari")):
        if token in user_agent.lower():
            return name
    return "other"


class DeviceTrustManager:
    """Trusts, expires and revokes devices. Every lookup is scoped to one principal."""

    def __init__(self, session: Session, settings_: Settings):
        self.session = session
        self.trust_days = settings_.MFA_DEVICE_TRUST_DAYS
        self._pepper = settings_.TOKEN_PEPPER or settings_.backup_code_pepper

    def get(self, principal_id: str, fingerprint: str) -> TrustedDevice | None:
        return self.session.scalar(
            select(TrustedDevice).where(
                TrustedDevice.principal_id == principal_id,
                TrustedDevice.device_fingerprint == fingerprint,
            )
        )

    def trust(
        self, principal_id: str, device: DeviceContext, device_name: str | None = None
    ) -> TrustGrant:
        """
        Grant trust to a device, creating or refreshing its record.

        A revoked record is re-enrolled from scratch. The raw trust token is
        returned once and only its hash is stored.
        """
        fingerprint = compute_fingerprint(device)
        now = utcnow()
        token = secrets.token_urlsafe(32)

        record = self.get(principal_id, fingerprint)
        reenrolled = record is not None and record.trust_status == DeviceTrustStatus.REVOKED
        if record is None:
            record = TrustedDevice(principal_id=principal_id, device_fingerprint=fingerprint)
            self.session.add(record)

        record.device_name = device_name
        record.device_type = detect_device_type(device.user_agent)
        record.user_agent = device.user_agent
        record.browser_info = {
            "browser": detect_browser(device.user_agent),
            "platform": device.signals.get("platform"),
            "language": device.signals.get("language"),
        }
        record.ip_address = device.ip_address
        record.trust_status = DeviceTrustStatus.TRUSTED
        record.trust_token_hash = hash_token(token, self._pepper)
        record.trusted_at = now
        record.trust_expires_at = now + timedelta(days=self.trust_days)
        record.last_used_at = now

        self.session.flush()
        return TrustGrant(device=record, trust_token=token, reenrolled=reenrolled)

    def expire_if_due(self, principal_id: str, fingerprint: str) -> TrustedDevice | None:
        """Revoke a trusted record whose grant has run out. Returns it only if revoked now."""
        record = self.get(principal_id, fingerprint)
        if record is None or record.trust_status != DeviceTrustStatus.TRUSTED:
            return None
        if record.trust_expires_at is None or record.trust_expires_at > utcnow():
            return None

        record.trust_status = DeviceTrustStatus.REVOKED
        record.trust_token_hash = None
        self.session.flush()
        logger.info(
            "Device trust expired",
            extra={"principal_id": principal_id, "device_fingerprint": fingerprint},
        )
        return record

    def is_trusted(self, principal_id: str, fingerprint: str) -> bool:
        """True for a live trusted record. Expired trust is revoked on the spot."""
        if self.expire_if_due(principal_id, fingerprint) is not None:
            return False
        record = self.get(principal_id, fingerprint)
        if record is None or record.trust_status != DeviceTrustStatus.TRUSTED:
            return False

        record.last_used_at = utcnow()
        self.session.flush()
        return True

    def verify_trust_token(self, principal_id: str, fingerprint: str, token: str) -> bool:
        """Check the opaque token handed out by ``trust`` for this device."""
        record = self.get(principal_id, fingerprint)
        if record is None or not record.trust_token_hash or not token:
            return False
        if not tokens_match(token, record.trust_token_hash, self._pepper):
            return False
        return self.is_trusted(principal_id, fingerprint)

    def revoke(self, principal_id: str, device_id: UUID) -> TrustedDevice:
        """Permanently revoke a device. Raises DeviceNotFound for other principals' devices."""
        record = self.session.scalar(
            select(TrustedDevice).where(
                TrustedDevice.id == device_id,
                TrustedDevice.principal_id == principal_id,
            )
        )
        if record is None:
            raise DeviceNotFound()

        record.trust_status = DeviceTrustStatus.REVOKED
        record.trust_token_hash = None
        self.session.flush()
        return record

    def revoke_all(self, principal_id: str) -> int:
        result = self.session.execute(
            update(TrustedDevice)
            .where(
                TrustedDevice.principal_id == principal_id,
                TrustedDevice.trust_status != DeviceTrustStatus.REVOKED,
            )
            .values(trust_status=DeviceTrustStatus.REVOKED, trust_token_hash=None)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount

    def list_trusted(self, principal_id: str) -> list[TrustedDevice]:
        """Trusted devices, most recently used first."""
        return list(
            self.session.scalars(
                select(TrustedDevice)
                .where(
                    TrustedDevice.principal_id == principal_id,
                    TrustedDevice.trust_status == DeviceTrustStatus.TRUSTED,
                )
                .order_by(TrustedDevice.last_used_at.desc())
            )
        )
