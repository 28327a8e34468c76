"""Tests for TOTP secret encryption at rest."""

import json

import pytest

from secondfactor.core.config import Settings
from secondfactor.mfa.errors import SecretDecryptionError
from secondfactor.mfa.secret_codec import (
    LocalKeyProvider,
    SecretCodec,
    decode_key,
    generate_key,
)


class TestSecretGeneration:
    def test_secret_is_160_bit_base32(self, codec: SecretCodec) -> None:
        secret = codec.generate_secret()
        assert len(secret) == 32
        assert set(secret) <= set("ABCDEFGHIJKLMNOPQRSTUVWXYZ234567")

    def test_secrets_are_unique(self, codec: SecretCodec) -> None:
        assert len({codec.generate_secret() for _ in range(20)}) == 20


class TestEnvelopeEncryption:
    def test_decrypt_returns_original_secret(self, codec: SecretCodec) -> None:
        secret = codec.generate_secret()
        blob = codec.encrypt(secret, "user-1")
        assert secret.encode() not in blob
        assert codec.decrypt(blob, "user-1") == secret

    def test_same_secret_encrypts_differently(self, codec: SecretCodec) -> None:
        secret = codec.generate_secret()
        assert codec.encrypt(secret, "user-1") != codec.encrypt(secret, "user-1")

    def test_wrong_principal_fails(self, codec: SecretCodec) -> None:
        blob = codec.encrypt(codec.generate_secret(), "user-1")
        with pytest.raises(SecretDecryptionError):
            codec.decrypt(blob, "user-2")

    def test_tampered_ciphertext_fails(self, codec: SecretCodec) -> None:
        blob = codec.encrypt(codec.generate_secret(), "user-1")
        envelope = json.loads(blob)
        ct = bytearray(envelope["ct"].encode())
        ct[0] = ord("A") if ct[0] != ord("A") else ord("B")
        envelope["ct"] = ct.decode()
        with pytest.raises(SecretDecryptionError):
            codec.decrypt(json.dumps(envelope).encode(), "user-1")

    def test_garbage_blob_fails(self, codec: SecretCodec) -> None:
        with pytest.raises(SecretDecryptionError):
            codec.decrypt(b"not-an-envelope", "user-1")

    def test_unknown_version_fails(self, codec: SecretCodec) -> None:
        envelope = json.loads(codec.encrypt(codec.generate_secret(), "user-1"))
        envelope["v"] = 99
        with pytest.raises(SecretDecryptionError):
            codec.decrypt(json.dumps(envelope).encode(), "user-1")


class TestKeyRotation:
    def test_previous_key_still_decrypts(self, test_settings: Settings) -> None:
        old_codec = SecretCodec(LocalKeyProvider.from_settings(test_settings))
        blob = old_codec.encrypt("JBSWY3DPEHPK3PXPJBSWY3DPEHPK3PXP", "user-1")

        rotated = test_settings.model_copy(
            update={
                "MFA_ENCRYPTION_KEY": generate_key(),
                "MFA_ENCRYPTION_KEY_ID": "local-v2",
                "MFA_PREVIOUS_ENCRYPTION_KEYS": f"local-v1:{test_settings.MFA_ENCRYPTION_KEY}",
            }
        )
        new_codec = SecretCodec(LocalKeyProvider.from_settings(rotated))

        assert new_codec.needs_rewrap(blob)
        assert new_codec.decrypt(blob, "user-1") == "JBSWY3DPEHPK3PXPJBSWY3DPEHPK3PXP"
        assert not new_codec.needs_rewrap(new_codec.encrypt("JBSWY3DPEHPK3PXPJBSWY3DPEHPK3PXP", "user-1"))

    def test_retired_key_removed_fails(self, test_settings: Settings) -> None:
        blob = SecretCodec(LocalKeyProvider.from_settings(test_settings)).encrypt("SECRET", "user-1")
        other = SecretCodec(LocalKeyProvider("local-v2", {"local-v2": decode_key(generate_key())}))
        with pytest.raises(SecretDecryptionError):
            other.decrypt(blob, "user-1")

    def test_missing_key_rejected(self, test_settings: Settings) -> None:
        with pytest.raises(ValueError):
            LocalKeyProvider.from_settings(test_settings.model_copy(update={"MFA_ENCRYPTION_KEY": None}))

    def test_short_key_rejected(self) -> None:
        with pytest.raises(ValueError):
            decode_key("c2hvcnQ=")
