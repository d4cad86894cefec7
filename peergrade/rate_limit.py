"""
Rate limiter shared by the app and the routes that declare limits.
"""
from slowapi import Limiter
from slowapi.util import get_remote_address

from peergrade.config.settings import settings

limiter = Limiter(key_func=get_remote_address, enabled=settings.RATE_LIMIT_ENABLED)
