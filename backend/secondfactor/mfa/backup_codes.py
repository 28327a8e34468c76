"""Single-use backup (recovery) codes."""

import hashlib
import hmac
import secrets

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from secondfactor.core.config import Settings
from secondfactor.db.types import utcnow
from secondfactor.models import BackupCode

# Uppercase alphanumerics without 0/O, 1/I/L
BACKUP_CODE_ALPHABET = "ABCDEFGHJKMNPQRSTUVWXYZ23456789"


def normalize_backup_code(code: str) -> str:
    """Strip spaces and dashes, uppercase."""
    return "".join(code.split()).replace("-", "").upper()


class BackupCodeManager:
    """Generates, stores (hashed) and consumes backup codes for principals."""

    def __init__(self, session: Session, settings_: Settings):
        self.session = session
        self.count = settings_.MFA_BACKUP_CODES_COUNT
        self.length = settings_.MFA_BACKUP_CODE_LENGTH
        self._pepper = settings_.backup_code_pepper

    def hash_code(self, principal_id: str, code: str) -> str:
        """Keyed hash of a code, salted with the principal id."""
        if not self._pepper:
            raise ValueError("MFA_BACKUP_CODE_PEPPER or TOKEN_PEPPER must be set")
        message = f"{principal_id}:{normalize_backup_code(code)}".encode()
        return hmac.new(self._pepper.encode(), message, hashlib.sha256).hexdigest()

    def looks_like_backup_code(self, code: str) -> bool:
        return len(normalize_backup_code(code)) == self.length

    def _random_code(self) -> str:
        return "".join(secrets.choice(BACKUP_CODE_ALPHABET) for _ in range(self.length))

    def generate(self, principal_id: str) -> list[str]:
        """
        Replace a principal's unused codes with a fresh set.

        Used codes are kept for history. Nothing is committed here; the caller
        owns the transaction.

        Returns:
            The raw codes. This is the only time they exist in plaintext.
        """
        self.delete_unused(principal_id)

        used_hashes = set(
            self.session.scalars(
                select(BackupCode.code_hash).where(BackupCode.principal_id == principal_id)
            )
        )

        codes: list[str] = []
        hashes: set[str] = set()
        while len(codes) < self.count:
            code = self._random_code()
            code_hash = self.hash_code(principal_id, code)
            if code_hash in hashes or code_hash in used_hashes:
                continue
            hashes.add(code_hash)
            codes.append(code)
            self.session.add(BackupCode(principal_id=principal_id, code_hash=code_hash))

        self.session.flush()
        return codes

    def consume(self, principal_id: str, code: str) -> bool:
        """Atomically mark a code used. True only for the one caller that wins."""
        if not code or not self.looks_like_backup_code(code):
            return False

        result = self.session.execute(
            update(BackupCode)
            .where(
                BackupCode.principal_id == principal_id,
                BackupCode.code_hash == self.hash_code(principal_id, code),
                BackupCode.used_at.is_(None),
            )
            .values(used_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def remaining(self, principal_id: str) -> int:
        """Number of unused codes."""
        return self.session.scalar(
            select(func.count())
            .select_from(BackupCode)
            .where(BackupCode.principal_id == principal_id, BackupCode.used_at.is_(None))
        ) or 0

    def delete_unused(self, principal_id: str) -> int:
        result = self.session.execute(
            delete(BackupCode)
            .where(BackupCode.principal_id == principal_id, BackupCode.used_at.is_(None))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount
