"""Tests for device fingerprinting and trust."""

import uuid
from datetime import timedelta

import pytest
from sqlalchemy.orm import Session

from secondfactor.core.config import Settings
from secondfactor.db.types import utcnow
from secondfactor.mfa.device_trust import (
    DeviceContext,
    DeviceTrustManager,
    compute_fingerprint,
    detect_device_type,
)
from secondfactor.mfa.errors import DeviceNotFound, DeviceTrustFailed
from secondfactor.models import DeviceTrustStatus

CHROME_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)
IPHONE_UA = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1"
)


@pytest.fixture
def laptop() -> DeviceContext:
    return DeviceContext(
        signals={"language": "en-US", "platform": "Win32", "screen": "1920x1080x24", "timezone": "UTC"},
        user_agent=CHROME_UA,
        ip_address="203.0.113.7",
    )


@pytest.fixture
def manager(db: Session, test_settings: Settings) -> DeviceTrustManager:
    return DeviceTrustManager(db, test_settings)


class TestFingerprint:
    def test_stable_and_truncated(self, laptop: DeviceContext) -> None:
        fingerprint = compute_fingerprint(laptop)
        assert fingerprint == compute_fingerprint(laptop)
        assert len(fingerprint) == 32
        int(fingerprint, 16)

    def test_signal_order_does_not_matter(self, laptop: DeviceContext) -> None:
        reordered = DeviceContext(
            signals=dict(reversed(list(laptop.signals.items()))),
            user_agent=laptop.user_agent,
        )
        assert compute_fingerprint(reordered) == compute_fingerprint(laptop)

    def test_different_signals_differ(self, laptop: DeviceContext) -> None:
        other = DeviceContext(signals={**laptop.signals, "screen": "1280x720x24"}, user_agent=CHROME_UA)
        assert compute_fingerprint(other) != compute_fingerprint(laptop)

    def test_ip_address_is_not_a_signal(self, laptop: DeviceContext) -> None:
        moved = DeviceContext(signals=laptop.signals, user_agent=CHROME_UA, ip_address="198.51.100.1")
        assert compute_fingerprint(moved) == compute_fingerprint(laptop)

    def test_empty_signals_rejected(self) -> None:
        with pytest.raises(DeviceTrustFailed):
            compute_fingerprint(DeviceContext(signals={"language": None}))

    @pytest.mark.parametrize(
        "user_agent,expected",
        [(CHROME_UA, "desktop"), (IPHONE_UA, "mobile"), ("Mozilla/5.0 (iPad; CPU OS 17_0)", "tablet"), (None, "unknown")],
    )
    def test_device_type(self, user_agent, expected) -> None:
        assert detect_device_type(user_agent) == expected


class TestTrust:
    def test_trust_then_is_trusted(self, manager: DeviceTrustManager, laptop: DeviceContext) -> None:
        grant = manager.trust("user-1", laptop, "Work laptop")

        assert grant.trust_token
        assert grant.reenrolled is False
        assert grant.device.trust_status == DeviceTrustStatus.TRUSTED
        assert grant.device.device_type == "desktop"
        assert grant.device.browser_info["browser"] == "chrome"
        assert grant.device.trust_token_hash != grant.trust_token
        expires_in = grant.device.trust_expires_at - utcnow()
        assert timedelta(days=29, hours=23) < expires_in <= timedelta(days=30)

        assert manager.is_trusted("user-1", compute_fingerprint(laptop)) is True

    def test_unknown_device_not_trusted(self, manager: DeviceTrustManager) -> None:
        assert manager.is_trusted("user-1", "0" * 32) is False

    def test_expired_trust_is_revoked(
        self, manager: DeviceTrustManager, db: Session, laptop: DeviceContext
    ) -> None:
        grant = manager.trust("user-1", laptop)
        grant.device.trust_expires_at = utcnow() - timedelta(seconds=1)
        db.commit()

        fingerprint = compute_fingerprint(laptop)
        assert manager.is_trusted("user-1", fingerprint) is False
        assert manager.get("user-1", fingerprint).trust_status == DeviceTrustStatus.REVOKED

    def test_expire_if_due_reports_only_the_transition(
        self, manager: DeviceTrustManager, db: Session, laptop: DeviceContext
    ) -> None:
        grant = manager.trust("user-1", laptop)
        fingerprint = compute_fingerprint(laptop)
        assert manager.expire_if_due("user-1", fingerprint) is None

        grant.device.trust_expires_at = utcnow() - timedelta(seconds=1)
        db.commit()

        assert manager.expire_if_due("user-1", fingerprint).id == grant.device.id
        assert manager.expire_if_due("user-1", fingerprint) is None

    def test_is_trusted_refreshes_last_used(
        self, manager: DeviceTrustManager, db: Session, laptop: DeviceContext
    ) -> None:
        grant = manager.trust("user-1", laptop)
        earlier = utcnow() - timedelta(days=3)
        grant.device.last_used_at = earlier
        db.commit()

        assert manager.is_trusted("user-1", grant.device.device_fingerprint)
        assert grant.device.last_used_at > earlier

    def test_trust_is_scoped_to_principal(self, manager: DeviceTrustManager, laptop: DeviceContext) -> None:
        manager.trust("user-1", laptop)
        assert manager.is_trusted("user-2", compute_fingerprint(laptop)) is False

    def test_trust_token_verification(self, manager: DeviceTrustManager, laptop: DeviceContext) -> None:
        grant = manager.trust("user-1", laptop)
        fingerprint = compute_fingerprint(laptop)

        assert manager.verify_trust_token("user-1", fingerprint, grant.trust_token) is True
        assert manager.verify_trust_token("user-1", fingerprint, "forged-token") is False
        assert manager.verify_trust_token("user-2", fingerprint, grant.trust_token) is False

    def test_revoked_device_reenrolled_from_scratch(
        self, manager: DeviceTrustManager, laptop: DeviceContext
    ) -> None:
        first = manager.trust("user-1", laptop, "Old name")
        manager.revoke("user-1", first.device.id)

        second = manager.trust("user-1", laptop, "New name")

        assert second.reenrolled is True
        assert second.device.id == first.device.id
        assert second.device.device_name == "New name"
        assert second.trust_token != first.trust_token
        fingerprint = compute_fingerprint(laptop)
        assert manager.verify_trust_token("user-1", fingerprint, first.trust_token) is False
        assert manager.verify_trust_token("user-1", fingerprint, second.trust_token) is True


class TestRevoke:
    def test_revoke_is_permanent(self, manager: DeviceTrustManager, laptop: DeviceContext) -> None:
        grant = manager.trust("user-1", laptop)
        manager.revoke("user-1", grant.device.id)

        assert grant.device.trust_status == DeviceTrustStatus.REVOKED
        assert manager.is_trusted("user-1", compute_fingerprint(laptop)) is False

    def test_revoke_other_principals_device_not_found(
        self, manager: DeviceTrustManager, laptop: DeviceContext
    ) -> None:
        grant = manager.trust("user-1", laptop)
        with pytest.raises(DeviceNotFound):
            manager.revoke("user-2", grant.device.id)
        with pytest.raises(DeviceNotFound):
            manager.revoke("user-1", uuid.uuid4())

    def test_revoke_all_and_listing(self, manager: DeviceTrustManager, laptop: DeviceContext) -> None:
        phone = DeviceContext(signals={"platform": "iPhone"}, user_agent=IPHONE_UA)
        manager.trust("user-1", laptop)
        manager.trust("user-1", phone)
        manager.trust("user-2", laptop)

        listed = manager.list_trusted("user-1")
        assert [d.device_type for d in listed] == ["mobile", "desktop"]

        assert manager.revoke_all("user-1") == 2
        assert manager.list_trusted("user-1") == []
        assert len(manager.list_trusted("user-2")) == 1
