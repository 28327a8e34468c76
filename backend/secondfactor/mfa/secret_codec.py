"""TOTP secret generation and envelope encryption at rest.

Each secret is sealed with its own AES-256-GCM data key (the principal id is
bound in as associated data), and the data key is wrapped with a
key-encryption key (KEK) from a key provider. The stored blob records the KEK
id so retired keys can still unwrap old secrets after rotation.
"""

import base64
import json
import os

import pyotp
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from secondfactor.core.config import Settings, settings
from secondfactor.core.logging import get_logger
from secondfactor.mfa.errors import SecretDecryptionError

logger = get_logger(__name__)

BLOB_VERSION = 1
NONCE_SIZE = 12
SECRET_LENGTH = 32  # base32 chars -> 160 bits


def _b64e(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii")


def _b64d(data: str) -> bytes:
    return base64.urlsafe_b64decode(data.encode("ascii"))


def decode_key(encoded: str) -> bytes:
    """Decode a urlsafe-base64 256-bit key."""
    key = _b64d(encoded.strip())
    if len(key) != 32:
        raise ValueError("MFA encryption keys must be 32 bytes (urlsafe base64 encoded)")
    return key


def generate_key() -> str:
    """Generate a new urlsafe-base64 KEK suitable for MFA_ENCRYPTION_KEY."""
    return _b64e(AESGCM.generate_key(bit_length=256))


class LocalKeyProvider:
    """Key provider backed by keys from settings.

    A KMS-backed provider only needs the same three members.
    """

    def __init__(self, current_key_id: str, keys: dict[str, bytes]):
        if current_key_id not in keys:
            raise ValueError(f"Current key id {current_key_id!r} has no key")
        self.current_key_id = current_key_id
        self._keys = keys

    @classmethod
    def from_settings(cls, settings_: Settings) -> "LocalKeyProvider":
        if not settings_.MFA_ENCRYPTION_KEY:
            raise ValueError("MFA_ENCRYPTION_KEY must be set")

        keys = {settings_.MFA_ENCRYPTION_KEY_ID: decode_key(settings_.MFA_ENCRYPTION_KEY)}
        if settings_.MFA_PREVIOUS_ENCRYPTION_KEYS:
            for entry in settings_.MFA_PREVIOUS_ENCRYPTION_KEYS.split(","):
                if not entry.strip():
                    continue
                key_id, _, encoded = entry.strip().partition(":")
                if not encoded:
                    raise ValueError("MFA_PREVIOUS_ENCRYPTION_KEYS entries must be 'id:key'")
                keys.setdefault(key_id, decode_key(encoded))
        return cls(settings_.MFA_ENCRYPTION_KEY_ID, keys)

    def wrap(self, data_key: bytes) -> tuple[str, bytes, bytes]:
        """Wrap a data key with the current KEK. Returns (key_id, nonce, wrapped)."""
        nonce = os.urandom(NONCE_SIZE)
        wrapped = AESGCM(self._keys[self.current_key_id]).encrypt(
            nonce, data_key, self.current_key_id.encode()
        )
        return self.current_key_id, nonce, wrapped

    def unwrap(self, key_id: str, nonce: bytes, wrapped: bytes) -> bytes:
        """Unwrap a data key with the KEK it was wrapped under."""
        kek = self._keys.get(key_id)
        if kek is None:
            raise SecretDecryptionError(f"Unknown key id {key_id!r}")
        return AESGCM(kek).decrypt(nonce, wrapped, key_id.encode())


class SecretCodec:
    """Generate, encrypt and decrypt TOTP shared secrets."""

    def __init__(self, key_provider: LocalKeyProvider):
        self.key_provider = key_provider

    @staticmethod
    def generate_secret() -> str:
        """Generate a new base32 TOTP secret (160 bits of entropy)."""
        return pyotp.random_base32(length=SECRET_LENGTH)

    def encrypt(self, secret: str, principal_id: str) -> bytes:
        """Seal a secret for storage, bound to its principal."""
        data_key = AESGCM.generate_key(bit_length=256)
        nonce = os.urandom(NONCE_SIZE)
        ciphertext = AESGCM(data_key).encrypt(nonce, secret.encode(), principal_id.encode())
        key_id, wrap_nonce, wrapped_key = self.key_provider.wrap(data_key)

        envelope = {
            "v": BLOB_VERSION,
            "kid": key_id,
            "wn": _b64e(wrap_nonce),
            "wk": _b64e(wrapped_key),
            "n": _b64e(nonce),
            "ct": _b64e(ciphertext),
        }
        return json.dumps(envelope, separators=(",", ":")).encode()

    def decrypt(self, blob: bytes, principal_id: str) -> str:
        """Open a sealed secret. Raises SecretDecryptionError on any mismatch."""
        try:
            envelope = json.loads(bytes(blob).decode())
            if envelope.get("v") != BLOB_VERSION:
                raise SecretDecryptionError(f"Unsupported secret blob version {envelope.get('v')!r}")
            data_key = self.key_provider.unwrap(
                envelope["kid"], _b64d(envelope["wn"]), _b64d(envelope["wk"])
            )
            plaintext = AESGCM(data_key).decrypt(
                _b64d(envelope["n"]), _b64d(envelope["ct"]), principal_id.encode()
            )
        except (InvalidTag, KeyError, ValueError, UnicodeDecodeError) as e:
            logger.warning(
                "TOTP secret failed to decrypt",
                extra={"principal_id": principal_id, "error_type": type(e).__name__},
            )
            raise SecretDecryptionError() from e
        return plaintext.decode()

    def needs_rewrap(self, blob: bytes) -> bool:
        """True when the blob was wrapped with a retired KEK."""
        try:
            return json.loads(bytes(blob).decode()).get("kid") != self.key_provider.current_key_id
        except (ValueError, UnicodeDecodeError):
            return False


# Cached codec for the global settings
_codec: SecretCodec | None = None


def get_secret_codec() -> SecretCodec:
    """Get the secret codec configured from global settings."""
    global _codec
    if _codec is None:
        _codec = SecretCodec(LocalKeyProvider.from_settings(settings))
    return _codec
