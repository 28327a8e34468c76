"""Shared Redis connection for the MFA rate limiter.

Failed-attempt counters live in Redis when it is enabled, so every instance
of the service sees the same buckets. Without Redis the rate limiter counts
attempts in the database instead, which makes a missing server fatal only
when REDIS_REQUIRED is set.
"""

import redis
from redis.exceptions import RedisError

from secondfactor.core.config import Settings, settings
from secondfactor.core.logging import get_logger

logger = get_logger(__name__)

_client: redis.Redis | None = None


class RedisRequiredError(RuntimeError):
    """Redis is unreachable but REDIS_REQUIRED forbids the database fallback."""


def _fall_back(settings_: Settings, reason: str) -> None:
    if settings_.REDIS_REQUIRED:
        raise RedisRequiredError(f"Rate-limit Redis unavailable and REDIS_REQUIRED=true: {reason}")
    logger.warning("Rate limiting falls back to database counters", extra={"reason": reason})


def get_redis_client(settings_: Settings | None = None) -> redis.Redis | None:
    """
    Client for the shared rate-limit counters.

    Returns None when counters should be kept in the database: Redis is
    disabled, unconfigured, or unreachable and not required.

    Raises:
        RedisRequiredError: Redis cannot be used and REDIS_REQUIRED is set
    """
    global _client
    settings_ = settings_ or settings

    if not settings_.REDIS_ENABLED:
        return None
    if _client is not None:
        return _client
    if not settings_.REDIS_URL:
        _fall_back(settings_, "REDIS_URL not set")
        return None

    client = redis.from_url(
        settings_.REDIS_URL,
        decode_responses=True,
        socket_connect_timeout=1,
        socket_timeout=1,  # a slow Redis must not hold up a login
        health_check_interval=30,
    )
    try:
        client.ping()
    except RedisError as e:
        _fall_back(settings_, str(e))
        return None

    logger.info("Rate-limit counters shared through Redis")
    _client = client
    return _client


def reset_redis_client() -> None:
    """Forget the cached client so the next call reconnects."""
    global _client
    _client = None


def is_redis_available(settings_: Settings | None = None) -> bool:
    """Health check: True when the shared counters can be reached right now."""
    try:
        client = get_redis_client(settings_)
    except RedisRequiredError:
        return False
    if client is None:
        return False
    try:
        return bool(client.ping())
    except RedisError:
        return False


def init_redis(settings_: Settings | None = None) -> None:
    """Connect at startup so a required Redis fails the boot, not the first login."""
    get_redis_client(settings_)
