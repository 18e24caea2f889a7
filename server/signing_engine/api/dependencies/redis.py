from redis.asyncio import Redis

from signing_engine.core.config import Settings


def build_filing_lock_client(settings: Settings) -> Redis | None:
    """Redis client for the auto-filing lock, or None when the lock is disabled."""
    if not settings.filing_lock_enabled:
        return None
    # from_url only parses the URL; connections open lazily on first command.
    return Redis.from_url(settings.redis_url)
