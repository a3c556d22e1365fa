"""
Outbound webhook signatures

Header format: t={unix_ms},v1={hex HMAC-SHA256(secret, "{t}.{payload}")}
Receivers reject signatures older than the tolerance to stop replays.
"""

import hmac
import time
import hashlib
from typing import Optional

DEFAULT_TOLERANCE_SECONDS = 300


def generate_webhook_signature(payload: str, secret: str, timestamp_ms: Optional[int] = None) -> str:
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)
    signed_payload = f"{timestamp_ms}.{payload}"
    signature = hmac.new(secret.encode(), signed_payload.encode(), hashlib.sha256).hexdigest()
    return f"t={timestamp_ms},v1={signature}"


def verify_webhook_signature(
    payload: str,
    signature: str,
    secret: str,
    tolerance_seconds: int = DEFAULT_TOLERANCE_SECONDS,
    now: Optional[float] = None
) -> bool:
    """Check a signature header against the payload, secret and clock."""
    parts = dict(
        part.split("=", 1) for part in (signature or "").split(",") if "=" in part
    )
    try:
        timestamp_ms = int(parts.get("t", "0"))
    except ValueError:
        return False
    received = parts.get("v1")
    if not timestamp_ms or not received:
        return False

    current = int(now if now is not None else time.time())
    if abs(current - timestamp_ms // 1000) > tolerance_seconds:
        return False

    signed_payload = f"{timestamp_ms}.{payload}"
    expected = hmac.new(secret.encode(), signed_payload.encode(), hashlib.sha256).hexdigest()
    return hmac.compare_digest(received, expected)
