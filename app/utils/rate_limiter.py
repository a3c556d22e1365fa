"""
Rate Limiter Configuration

In-memory counters by default. Set RATE_LIMIT_STORAGE_URI (for example
redis://host:6379) so every instance shares the same counters.
"""

import logging
from slowapi import Limiter
from slowapi.util import get_remote_address
from fastapi import Request

from ..config import settings

logger = logging.getLogger(__name__)


def get_real_client_ip(request: Request) -> str:
    """Get real client IP behind reverse proxy"""
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # Take the first IP (original client)
        return forwarded_for.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    return get_remote_address(request)


def create_limiter() -> Limiter:
    """
    Create a rate limiter with appropriate storage backend.
    """
    if settings.rate_limit_storage_uri:
        logger.info("Using shared rate limiter storage")
        return Limiter(
            key_func=get_real_client_ip,
            storage_uri=settings.rate_limit_storage_uri,
            default_limits=["100/minute"]
        )

    logger.info("Using in-memory rate limiter storage")
    return Limiter(
        key_func=get_real_client_ip,
        default_limits=["100/minute"]
    )


# Global rate limiter instance
limiter = create_limiter()


# ================================
# RATE LIMIT CONFIGURATIONS
# ================================

RATE_LIMITS = {
    # Success page polls this while the PIN is being assigned
    "pass_status": "30/minute",

    # Card payments - strict
    "payment_intent": "10/minute",
    "sync_payment": "10/minute",

    # Provider webhooks - higher limits
    "webhook": "100/minute",
}


def get_rate_limit(operation: str) -> str:
    """Get rate limit for a specific operation."""
    return RATE_LIMITS.get(operation, "100/minute")
