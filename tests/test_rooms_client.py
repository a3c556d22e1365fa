"""
Tests for the Rooms reservation gateway client

Tests cover:
- Payload translation (dates, guest id, room name)
- Configuration gaps come back as failed results
- Success, HTTP error, timeout and transport error handling
- Every call is written to integration_logs
"""

import json
import pytest
import httpx

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))


@pytest.fixture
def integration(db, directory):
    from app.models.integration import Integration

    row = Integration(
        organisation_id=directory.org.id,
        config={"base_url": "https://rooms.example/", "webhook_path": "api/v1/reservations"}
    )
    db.add(row)
    db.commit()
    return row


def _payload():
    from app.services.rooms_client import build_rooms_payload

    return build_rooms_payload(
        site_id="site-1",
        pass_id="pass-1",
        valid_from="2026-02-01T13:00:00Z",
        valid_to="2026-02-02T13:00:00Z",
        device_id="device-1",
        slug_path="test-org/north-ramp/gate-1",
        email="Visitor@Example.com",
        phone="+61400000000"
    )


class TestBuildRoomsPayload:

    def test_payload_shape(self):
        """Pass fields map onto the Rooms reservation JSON"""
        body = _payload().to_json()

        assert body["propertyId"] == "site-1"
        assert body["reservationId"] == "pass-1"
        assert body["arrivalDate"] == "2026-02-01"
        assert body["departureDate"] == "2026-02-02"
        assert body["roomId"] == "device-1"
        assert body["roomName"] == "test-org/north-ramp/gate-1"
        assert body["status"] == "Confirmed"
        assert body["guestFirstName"] == "Visitor"
        assert body["guestEmail"] == "Visitor@Example.com"

    def test_guest_id_is_stable_per_email(self):
        """Same email (any case) gives the same guest id"""
        from app.services.rooms_client import generate_guest_id

        assert generate_guest_id("a@example.com", "x") == generate_guest_id("A@Example.com ", "y")
        assert generate_guest_id(None, "pass-1") == generate_guest_id("", "pass-1")
        assert generate_guest_id("a@example.com", "x") != generate_guest_id("b@example.com", "x")

    def test_name_splits_into_first_and_last(self):
        from app.services.rooms_client import build_rooms_payload

        payload = build_rooms_payload("s", "p", "2026-02-01T00:00:00Z", "2026-02-02T00:00:00Z",
                                      "d", "a/b/c", name="Jane Q Public")
        assert payload.guest_first_name == "Jane"
        assert payload.guest_last_name == "Q Public"


class TestRoomsGateway:

    def test_not_configured(self, db, directory):
        """No integration row means a failed result, not an exception"""
        from app.services.rooms_client import RoomsGateway

        result = RoomsGateway(db).create_reservation(directory.org.id, _payload())

        assert result.success is False
        assert result.error_code == "not_configured"

    def test_missing_base_url(self, db, directory):
        from app.models.integration import Integration
        from app.services.rooms_client import RoomsGateway

        db.add(Integration(organisation_id=directory.org.id, config={}))
        db.commit()

        result = RoomsGateway(db).create_reservation(directory.org.id, _payload())

        assert result.success is False
        assert result.error_code == "not_configured"

    def test_success_posts_payload_and_logs(self, db, directory, integration):
        """A 2xx response is success and the call is logged"""
        from app.models.integration import IntegrationLog
        from app.services.rooms_client import RoomsGateway

        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            seen["request_id"] = request.headers.get("X-Request-ID")
            return httpx.Response(201, json={"id": "res-9"})

        gateway = RoomsGateway(db, transport=httpx.MockTransport(handler), request_id="req-1")
        result = gateway.create_reservation(directory.org.id, _payload())

        assert result.success is True
        assert result.reservation_id == "pass-1"
        assert result.data == {"id": "res-9"}
        assert seen["url"] == "https://rooms.example/api/v1/reservations"
        assert seen["body"]["reservationId"] == "pass-1"
        assert seen["request_id"] == "req-1"

        log = db.query(IntegrationLog).one()
        assert log.status == "success"
        assert log.http_status_code == 201
        assert log.operation == "create_reservation"

    def test_http_error_is_mapped(self, db, directory, integration):
        from app.models.integration import IntegrationLog
        from app.services.rooms_client import RoomsGateway

        transport = httpx.MockTransport(lambda request: httpx.Response(422, json={"message": "bad dates"}))
        result = RoomsGateway(db, transport=transport).create_reservation(directory.org.id, _payload())

        assert result.success is False
        assert result.status_code == 422
        assert result.error_code == "validation_error"
        assert result.error == "bad dates"
        assert db.query(IntegrationLog).one().status == "error"

    def test_timeout_is_failure(self, db, directory, integration):
        """A timeout never raises out of the gateway"""
        from app.models.integration import IntegrationLog
        from app.services.rooms_client import RoomsGateway

        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        result = RoomsGateway(db, transport=httpx.MockTransport(handler)).create_reservation(
            directory.org.id, _payload()
        )

        assert result.success is False
        assert result.error_code == "timeout"
        assert db.query(IntegrationLog).one().status == "timeout"

    def test_network_error_is_failure(self, db, directory, integration):
        from app.services.rooms_client import RoomsGateway

        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        result = RoomsGateway(db, transport=httpx.MockTransport(handler)).create_reservation(
            directory.org.id, _payload()
        )

        assert result.success is False
        assert result.error_code == "network_error"

    def test_sensitive_keys_are_redacted(self, db):
        from app.services.rooms_client import RoomsGateway

        cleaned = RoomsGateway(db)._sanitize_payload({"api_key": "k", "nested": {"Token": "t", "ok": 1}})

        assert cleaned == {"api_key": "[REDACTED]", "nested": {"Token": "[REDACTED]", "ok": 1}}
