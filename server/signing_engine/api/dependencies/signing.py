from functools import lru_cache

from signing_engine.api.dependencies.redis import build_filing_lock_client
from signing_engine.core.config import get_settings
from signing_engine.db.session import async_session_factory
from signing_engine.services.filing_service import DocumentFilingService
from signing_engine.services.signing_session import SigningSessionService


@lru_cache(maxsize=None)
def get_signing_service() -> SigningSessionService:
    """Process-wide signing service; its task runner is drained on shutdown."""
    settings = get_settings()
    filer = DocumentFilingService(
        async_session_factory,
        redis_client=build_filing_lock_client(settings),
        lock_ttl_seconds=settings.filing_lock_ttl_seconds,
    )
    return SigningSessionService(async_session_factory, document_filer=filer)
