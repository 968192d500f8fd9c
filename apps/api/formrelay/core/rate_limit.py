"""Rate limiting for the public form endpoints."""

from slowapi import Limiter
from slowapi.util import get_remote_address

from formrelay.core.config import settings

# Multi-worker deployments point RATE_LIMIT_STORAGE_URI at a shared backend
# (e.g. redis://...); the default keeps counters in process memory.
limiter = Limiter(
    key_func=get_remote_address,
    storage_uri=settings.RATE_LIMIT_STORAGE_URI,
    default_limits=[],
    enabled=settings.RATE_LIMIT_ENABLED,
)
