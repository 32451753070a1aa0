"""
api/limiter.py -- The one slowapi Limiter for the auth service.

api/main.py mounts it (SlowAPIMiddleware + app.state.limiter) and the
credential routes in api/routes/auth.py decorate themselves with
@limiter.limit(auth_rate_limit). Counters live in process memory and are
keyed by client IP, so every limited route must use this instance.

The limit is a callable: RATE_LIMIT_REQUESTS / RATE_LIMIT_WINDOW are looked
up on each request instead of being fixed when the routes are imported.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")


def auth_rate_limit() -> str:
    return get_settings().rate_limit
