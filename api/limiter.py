"""
api/limiter.py -- Shared slowapi rate limiter instance.

Imported by api/main.py (to mount as middleware) and api/routes/auth.py (to
limit POST /login with @limiter.limit()).

A single shared instance means all routes share the same in-memory counter
store. Counters are per process; that matches the single-process deployment.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")


def login_rate_limit() -> str:
    """Current LOGIN_RATE_LIMIT value, resolved when the limit is evaluated."""
    return get_settings().login_rate_limit
