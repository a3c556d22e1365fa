"""
Tests for outbound webhook signatures
"""

import hmac
import hashlib

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))


class TestWebhookSignature:

    def test_header_format(self):
        """t={ms},v1={hex hmac of "t.payload"}"""
        from app.services.webhook_signature import generate_webhook_signature

        header = generate_webhook_signature('{"a":1}', "secret", timestamp_ms=1700000000000)
        expected = hmac.new(b"secret", b'1700000000000.{"a":1}', hashlib.sha256).hexdigest()

        assert header == f"t=1700000000000,v1={expected}"

    def test_verify_accepts_fresh_signature(self):
        from app.services.webhook_signature import generate_webhook_signature, verify_webhook_signature

        header = generate_webhook_signature("body", "secret", timestamp_ms=1700000000000)

        assert verify_webhook_signature("body", header, "secret", now=1700000100) is True

    def test_verify_rejects_old_signature(self):
        """Older than the 5 minute tolerance is a replay"""
        from app.services.webhook_signature import generate_webhook_signature, verify_webhook_signature

        header = generate_webhook_signature("body", "secret", timestamp_ms=1700000000000)

        assert verify_webhook_signature("body", header, "secret", now=1700000301) is False

    def test_verify_rejects_tampering(self):
        from app.services.webhook_signature import generate_webhook_signature, verify_webhook_signature

        header = generate_webhook_signature("body", "secret", timestamp_ms=1700000000000)

        assert verify_webhook_signature("body!", header, "secret", now=1700000000) is False
        assert verify_webhook_signature("body", header, "other", now=1700000000) is False

    def test_verify_rejects_garbage(self):
        from app.services.webhook_signature import verify_webhook_signature

        assert verify_webhook_signature("body", "", "secret") is False
        assert verify_webhook_signature("body", "t=abc,v1=00", "secret") is False
        assert verify_webhook_signature("body", "v1=00", "secret") is False
