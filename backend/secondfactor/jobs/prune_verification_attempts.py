"""Delete verification attempts that fell out of the rate-limit window."""

from datetime import datetime

from sqlalchemy.orm import Session

from secondfactor.core.config import Settings, settings
from secondfactor.core.logging import get_logger
from secondfactor.mfa.rate_limiter import RateLimiter

logger = get_logger(__name__)


def prune_verification_attempts(
    db: Session,
    settings_: Settings | None = None,
    before: datetime | None = None,
) -> dict[str, int]:
    """
    Prune old verification attempts.

    Args:
        db: Database session
        settings_: Settings providing the rate-limit window
        before: Delete attempts older than this (default: start of the window)

    Returns:
        Dict with the number of deleted rows
    """
    limiter = RateLimiter(db, settings_ or settings)
    deleted = limiter.prune(before)
    db.commit()

    logger.info(
        f"Pruned {deleted} MFA verification attempts",
        extra={"deleted": deleted, "window_seconds": limiter.window_seconds},
    )
    return {"deleted": deleted}
