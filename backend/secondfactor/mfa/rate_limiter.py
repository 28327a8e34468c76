"""Per-principal MFA verification rate limiting."""

import time
from datetime import datetime, timedelta

import redis
from redis.exceptions import RedisError
from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session

from secondfactor.core.config import Settings
from secondfactor.core.logging import get_logger
from secondfactor.db.types import utcnow
from secondfactor.mfa.errors import RateLimited
from secondfactor.models import MfaSettings, VerificationAttempt

logger = get_logger(__name__)


class RateLimiter:
    """
    Bounds failed verification attempts per principal in a rolling window.

    Every attempt is appended to ``mfa_verification_attempts``. The gate itself
    runs on one of two backends:

    - Redis: failures are counted in time buckets (``rl:mfa:{principal}:{bucket}``)
      so all instances share state. ``acquire`` reserves a slot with INCR and
      gives it back if the limit is exceeded; ``record`` releases the slot of a
      successful attempt and keeps the slot of a failed one.
    - Database: failed rows in the window are counted while the principal's
      MfaSettings row is locked, so concurrent checks for one principal are
      serialized until the caller commits.

    A Redis error falls back to the database backend.
    """

    key_prefix = "rl:mfa"

    def __init__(
        self,
        session: Session,
        settings_: Settings,
        redis_client: redis.Redis | None = None,
    ):
        self.session = session
        self.redis = redis_client
        self.max_attempts = settings_.MFA_RATE_LIMIT_MAX_ATTEMPTS
        self.window_seconds = settings_.MFA_RATE_LIMIT_WINDOW_SECONDS
        self.bucket_seconds = settings_.MFA_RATE_LIMIT_BUCKET_SECONDS

    # Redis backend

    def _bucket_key(self, principal_id: str, bucket: int) -> str:
        return f"{self.key_prefix}:{principal_id}:{bucket}"

    def _window_keys(self, principal_id: str, now: float) -> list[str]:
        current = int(now // self.bucket_seconds)
        first = int((now - self.window_seconds) // self.bucket_seconds) + 1
        return [self._bucket_key(principal_id, bucket) for bucket in range(first, current + 1)]

    def _redis_count(self, principal_id: str, now: float) -> int:
        values = self.redis.mget(self._window_keys(principal_id, now))
        return sum(int(value) for value in values if value)

    def _redis_acquire(self, principal_id: str) -> str:
        now = time.time()
        key = self._bucket_key(principal_id, int(now // self.bucket_seconds))

        # Atomic operation: INCR + EXPIRE in pipeline
        pipe = self.redis.pipeline()
        pipe.incr(key)
        pipe.expire(key, self.window_seconds + self.bucket_seconds)
        pipe.execute()

        if self._redis_count(principal_id, now) > self.max_attempts:
            self.redis.decr(key)
            raise RateLimited()
        return key

    # Database backend

    def _window_start(self) -> datetime:
        return utcnow() - timedelta(seconds=self.window_seconds)

    def _db_failed_count(self, principal_id: str) -> int:
        return self.session.scalar(
            select(func.count())
            .select_from(VerificationAttempt)
            .where(
                VerificationAttempt.principal_id == principal_id,
                VerificationAttempt.success.is_(False),
                VerificationAttempt.attempted_at >= self._window_start(),
            )
        ) or 0

    def _db_acquire(self, principal_id: str) -> None:
        # Serialize concurrent attempts for this principal
        self.session.execute(
            select(MfaSettings.id).where(MfaSettings.principal_id == principal_id).with_for_update()
        )
        if self._db_failed_count(principal_id) >= self.max_attempts:
            raise RateLimited()

    # Public API

    def acquire(self, principal_id: str) -> str | None:
        """
        Gate a verification attempt before the code is evaluated.

        Returns:
            The Redis key holding this attempt's reservation, or None when the
            database backend was used. Pass it back to ``record``.

        Raises:
            RateLimited: If the principal has no attempts left in the window
        """
        if self.redis is not None:
            try:
                return self._redis_acquire(principal_id)
            except RedisError as e:
                logger.warning(
                    f"Redis rate limit check failed for principal {principal_id}, using database: {e}",
                    extra={"principal_id": principal_id},
                )
        self._db_acquire(principal_id)
        return None

    def record(
        self,
        principal_id: str,
        method: str,
        success: bool,
        device_fingerprint: str | None = None,
        reservation: str | None = None,
    ) -> VerificationAttempt:
        """Append an attempt and settle its Redis reservation."""
        attempt = VerificationAttempt(
            principal_id=principal_id,
            method=method,
            success=success,
            device_fingerprint=device_fingerprint,
            attempted_at=utcnow(),
        )
        self.session.add(attempt)
        self.session.flush()

        if reservation is not None and success and self.redis is not None:
            try:
                self.redis.decr(reservation)
            except RedisError as e:
                logger.warning(
                    f"Failed to release rate limit reservation {reservation}: {e}",
                    extra={"principal_id": principal_id},
                )
        return attempt

    def failed_attempts(self, principal_id: str) -> int:
        """Failed attempts counted against the principal in the current window."""
        if self.redis is not None:
            try:
                return self._redis_count(principal_id, time.time())
            except RedisError as e:
                logger.warning(f"Redis rate limit read failed, using database: {e}")
        return self._db_failed_count(principal_id)

    def remaining_attempts(self, principal_id: str) -> int:
        return max(0, self.max_attempts - self.failed_attempts(principal_id))

    def prune(self, before: datetime | None = None) -> int:
        """Delete attempts older than ``before`` (default: start of the window)."""
        cutoff = before or self._window_start()
        result = self.session.execute(
            delete(VerificationAttempt)
            .where(VerificationAttempt.attempted_at < cutoff)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount
