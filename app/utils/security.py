"""
Shared-secret guards for operator endpoints

Integrator subscription management and the cron trigger are called by
machines, so they use a static bearer key instead of user sessions.
An empty key leaves the endpoint open (development only).
"""

import logging
import secrets
from typing import Optional
from fastapi import Header, HTTPException, status

from ..config import settings

logger = logging.getLogger(__name__)


def generate_webhook_secret() -> str:
    """Signing secret for a new webhook subscription (64 hex chars)"""
    return secrets.token_hex(32)


def bearer_matches(authorization: Optional[str], expected: str) -> bool:
    if not expected:
        return True
    if not authorization or not authorization.startswith("Bearer "):
        return False
    return secrets.compare_digest(authorization[len("Bearer "):], expected)


def require_admin_key(authorization: Optional[str] = Header(None)):
    if not bearer_matches(authorization, settings.admin_api_key):
        logger.warning("Rejected admin request with missing or invalid bearer key")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


def require_cron_secret(authorization: Optional[str] = Header(None)):
    if not bearer_matches(authorization, settings.cron_secret):
        logger.warning("Rejected cron request with missing or invalid bearer secret")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
