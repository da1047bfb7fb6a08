"""
api/limiter.py -- Shared slowapi rate limiter and the identity route limits.

A single shared Limiter keeps one in-memory counter store for every route;
instances created per module would each count separately and never trigger.

Limits are passed to @limiter.limit() as callables so slowapi resolves them
from Settings at request time rather than at import time:
  login_limit()     -- LOGIN_RATE_LIMIT, brute-force mitigation on /login [H2]
  identity_limit()  -- IDENTITY_RATE_LIMIT, for registration and verification
                       (each registration sends an email; each verify attempt
                       is a guess at a 6-digit code)
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")


def login_limit() -> str:
    return get_settings().login_rate_limit


def identity_limit() -> str:
    return get_settings().identity_rate_limit
