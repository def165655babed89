"""Shared rate limiter for expensive endpoints"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from app.config import settings

limiter = Limiter(key_func=get_remote_address, enabled=settings.RATE_LIMIT_ENABLED)

BATCH_LIMIT = f"{settings.RATE_LIMIT_BATCH_PER_MINUTE}/minute"
