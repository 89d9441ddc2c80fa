"""Rate limiting using slowapi."""

import logging

from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from assure.config import settings

logger = logging.getLogger(__name__)


def setup_rate_limiter(app) -> None:
    """Attach a per-client limiter to the FastAPI app.

    Local mode keeps counters in memory; deployments share them through Redis.
    """
    if not settings.rate_limit_enabled:
        return

    limiter = Limiter(
        key_func=get_remote_address,
        default_limits=[f"{settings.rate_limit_writes_per_minute}/minute"],
        storage_uri="memory://" if settings.local_mode else settings.redis_url,
    )
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)
    logger.info("Rate limiter configured (%d/min per client)", settings.rate_limit_writes_per_minute)
