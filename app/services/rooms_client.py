"""
Rooms Reservation Gateway Client

Synchronous HTTP client for the third-party "Rooms" reservation API:
- Per-organisation configuration from the integrations table
- One bounded POST per call (timeout = failure)
- Every attempt written to integration_logs with sanitised payloads
- Structured, typed results; nothing is raised across the public API

A successful call only means the reservation was accepted. The PIN is
delivered later by the gateway's own webhook, so results never carry one.
"""

import time
import uuid
import logging
from datetime import datetime
from typing import Dict, Optional, Any
from dataclasses import dataclass, field

import httpx
from sqlalchemy.orm import Session

from ..config import settings
from ..models.integration import (
    Integration,
    IntegrationLog,
    IntegrationType,
    IntegrationStatus,
    IntegrationLogStatus
)
from ..utils.timezone import parse_datetime

logger = logging.getLogger(__name__)

# Namespace for deterministic guest ids derived from an email address
GUEST_NAMESPACE = uuid.UUID("6f1c2b8e-3a52-4c8e-9d7a-1b2e4f6a8c90")


class ReservationStatus:
    PENDING = "Pending"
    CONFIRMED = "Confirmed"


@dataclass
class RoomsError:
    """Structured error from the Rooms API"""
    code: str
    message: str
    status_code: int
    retryable: bool = False


@dataclass
class RoomsReservationResult:
    """Outcome of one create_reservation call"""
    success: bool
    status_code: Optional[int] = None
    reservation_id: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    data: Optional[Dict] = None
    duration_ms: int = 0


# Error mapping for Rooms responses
ERROR_MAP = {
    400: RoomsError("bad_request", "Reservation payload rejected", 400, False),
    401: RoomsError("unauthorized", "Rooms credentials rejected", 401, False),
    403: RoomsError("forbidden", "Access denied to this property", 403, False),
    404: RoomsError("not_found", "Reservation endpoint not found", 404, False),
    409: RoomsError("conflict", "Reservation already exists", 409, False),
    422: RoomsError("validation_error", "Invalid reservation data", 422, False),
    429: RoomsError("rate_limited", "Too many requests", 429, True),
    500: RoomsError("server_error", "Rooms server error", 500, True),
    502: RoomsError("bad_gateway", "Rooms gateway error", 502, True),
    503: RoomsError("service_unavailable", "Rooms service unavailable", 503, True),
    504: RoomsError("gateway_timeout", "Rooms gateway timeout", 504, True),
}


@dataclass
class RoomsReservationPayload:
    property_id: str
    reservation_id: str
    arrival_date: str
    departure_date: str
    room_id: str
    room_name: str
    status: str = ReservationStatus.CONFIRMED
    guest_id: str = ""
    guest_first_name: str = ""
    guest_last_name: str = ""
    guest_email: str = ""
    guest_phone: str = ""
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_json(self) -> Dict[str, Any]:
        body = {
            "propertyId": self.property_id,
            "reservationId": self.reservation_id,
            "arrivalDate": self.arrival_date,
            "departureDate": self.departure_date,
            "guestId": self.guest_id,
            "guestFirstName": self.guest_first_name,
            "guestLastName": self.guest_last_name,
            "guestEmail": self.guest_email,
            "guestPhone": self.guest_phone,
            "roomId": self.room_id,
            "roomName": self.room_name,
            "status": self.status,
        }
        body.update(self.extra)
        return body


def generate_guest_id(email: Optional[str], fallback: str) -> str:
    """Stable guest id: the same email always maps to the same UUID."""
    source = (email or "").strip().lower() or fallback
    return str(uuid.uuid5(GUEST_NAMESPACE, source))


def build_rooms_payload(
    site_id: str,
    pass_id: str,
    valid_from: str,
    valid_to: str,
    device_id: str,
    slug_path: str,
    email: Optional[str] = None,
    phone: Optional[str] = None,
    name: Optional[str] = None,
    status: str = ReservationStatus.CONFIRMED
) -> RoomsReservationPayload:
    """
    Translate a pass and its access window into the Rooms payload shape.

    Dates are sent as YYYY-MM-DD in UTC. The pass id doubles as the
    reservation id so the gateway's PIN webhook can be matched back.
    """
    starts = parse_datetime(valid_from)
    ends = parse_datetime(valid_to)

    first_name, last_name = "Guest", ""
    if name and name.strip():
        parts = name.strip().split(" ", 1)
        first_name = parts[0]
        last_name = parts[1] if len(parts) > 1 else ""
    elif email:
        first_name = email.split("@")[0] or "Guest"

    return RoomsReservationPayload(
        property_id=site_id or "",
        reservation_id=pass_id,
        arrival_date=starts.date().isoformat() if starts else "",
        departure_date=ends.date().isoformat() if ends else "",
        guest_id=generate_guest_id(email, pass_id),
        guest_first_name=first_name,
        guest_last_name=last_name,
        guest_email=email or "",
        guest_phone=phone or "",
        room_id=device_id or "",
        room_name=slug_path,
        status=status
    )


class RoomsGateway:
    """
    Client for the Rooms reservation API.

    One instance per request; the session is used for the integration
    lookup and the audit log.
    """

    def __init__(
        self,
        db: Session,
        timeout: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None,
        request_id: Optional[str] = None
    ):
        self.db = db
        self.timeout = timeout if timeout is not None else settings.rooms_timeout_seconds
        self.transport = transport
        self.request_id = request_id or "no-request-id"

    def get_integration(self, organisation_id: str) -> Optional[Integration]:
        return (
            self.db.query(Integration)
            .filter(
                Integration.organisation_id == organisation_id,
                Integration.integration_type == IntegrationType.ROOMS.value,
                Integration.status == IntegrationStatus.ACTIVE.value
            )
            .first()
        )

    def _get_headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "User-Agent": "DayPass-Backend/1.0",
            "X-Request-ID": self.request_id
        }

    def _build_url(self, integration: Integration) -> Optional[str]:
        config = integration.config or {}
        base_url = (config.get("base_url") or "").rstrip("/")
        if not base_url:
            return None
        path = config.get("webhook_path") or settings.rooms_default_webhook_path
        if not path.startswith("/"):
            path = f"/{path}"
        return f"{base_url}{path}"

    def _sanitize_payload(self, payload: Optional[Dict]) -> Optional[Dict]:
        """Remove sensitive data from payload before logging"""
        if not payload:
            return None

        sensitive_keys = ["api_key", "password", "secret", "token", "authorization"]

        def sanitize_dict(d: Dict) -> Dict:
            result = {}
            for k, v in d.items():
                if any(sk in k.lower() for sk in sensitive_keys):
                    result[k] = "[REDACTED]"
                elif isinstance(v, dict):
                    result[k] = sanitize_dict(v)
                elif isinstance(v, list):
                    result[k] = [sanitize_dict(i) if isinstance(i, dict) else i for i in v]
                else:
                    result[k] = v
            return result

        return sanitize_dict(payload)

    def _log_request(
        self,
        integration: Integration,
        url: str,
        payload: Dict,
        status: IntegrationLogStatus,
        http_status_code: Optional[int],
        response_body: Any,
        error: Optional[str],
        duration_ms: int
    ):
        """Write the attempt to integration_logs and stamp last_used_at"""
        try:
            if response_body is not None and not isinstance(response_body, dict):
                response_body = {"raw": str(response_body)[:1000]}

            self.db.add(IntegrationLog(
                integration_id=integration.id,
                operation="create_reservation",
                request_payload={"url": url[:500], "payload": self._sanitize_payload(payload)},
                response_payload=self._sanitize_payload(response_body),
                status=status.value,
                http_status_code=http_status_code,
                error_message=error[:1000] if error else None,
                duration_ms=duration_ms
            ))
            integration.last_used_at = datetime.utcnow()
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.warning(f"[{self.request_id}] Failed to log Rooms request: {e}")

    def _map_error(self, status_code: int, response_data: Optional[Dict]) -> RoomsError:
        """Map HTTP status code to structured error"""
        if status_code in ERROR_MAP:
            error = ERROR_MAP[status_code]
            if response_data:
                msg = response_data.get("error") or response_data.get("message")
                if isinstance(msg, str) and msg:
                    return RoomsError(error.code, msg, status_code, error.retryable)
            return error

        if status_code >= 500:
            return RoomsError("server_error", f"Server error: {status_code}", status_code, True)

        return RoomsError("unknown", f"HTTP {status_code}", status_code, False)

    def create_reservation(
        self,
        organisation_id: str,
        payload: RoomsReservationPayload
    ) -> RoomsReservationResult:
        """
        Create or confirm a reservation for a pass.

        Never raises: configuration gaps, timeouts, transport errors and
        non-2xx responses all come back as a failed result.
        """
        try:
            integration = self.get_integration(organisation_id)
        except Exception as e:
            logger.error(f"[{self.request_id}] Rooms integration lookup failed: {e}")
            return RoomsReservationResult(success=False, error=str(e), error_code="lookup_failed")

        if not integration:
            logger.info(f"[{self.request_id}] Rooms integration not configured for org {organisation_id}")
            return RoomsReservationResult(
                success=False,
                error="Rooms integration not configured for this organisation",
                error_code="not_configured"
            )

        url = self._build_url(integration)
        if not url:
            logger.error(f"[{self.request_id}] Rooms integration {integration.id} has no base_url")
            return RoomsReservationResult(
                success=False,
                error="Rooms integration has no base_url",
                error_code="not_configured"
            )

        body = payload.to_json()
        start_time = time.time()

        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                response = client.post(url, json=body, headers=self._get_headers())
        except httpx.TimeoutException as e:
            duration_ms = int((time.time() - start_time) * 1000)
            logger.warning(f"[{self.request_id}] Rooms API timed out after {duration_ms}ms")
            self._log_request(
                integration, url, body, IntegrationLogStatus.TIMEOUT,
                None, None, f"Timeout: {e}", duration_ms
            )
            return RoomsReservationResult(
                success=False,
                error="Rooms API timed out",
                error_code="timeout",
                duration_ms=duration_ms
            )
        except httpx.HTTPError as e:
            duration_ms = int((time.time() - start_time) * 1000)
            logger.error(f"[{self.request_id}] Rooms API request failed: {e}")
            self._log_request(
                integration, url, body, IntegrationLogStatus.ERROR,
                None, None, str(e), duration_ms
            )
            return RoomsReservationResult(
                success=False,
                error=str(e) or "Rooms API request failed",
                error_code="network_error",
                duration_ms=duration_ms
            )

        duration_ms = int((time.time() - start_time) * 1000)
        try:
            data = response.json()
        except ValueError:
            data = {"raw": response.text[:1000]} if response.text else None

        if response.is_success:
            self._log_request(
                integration, url, body, IntegrationLogStatus.SUCCESS,
                response.status_code, data, None, duration_ms
            )
            logger.info(
                f"[{self.request_id}] Rooms reservation {payload.reservation_id} "
                f"accepted ({payload.status}) in {duration_ms}ms"
            )
            return RoomsReservationResult(
                success=True,
                status_code=response.status_code,
                reservation_id=payload.reservation_id,
                data=data if isinstance(data, dict) else None,
                duration_ms=duration_ms
            )

        error = self._map_error(response.status_code, data if isinstance(data, dict) else None)
        self._log_request(
            integration, url, body, IntegrationLogStatus.ERROR,
            response.status_code, data, error.message, duration_ms
        )
        logger.error(
            f"[{self.request_id}] Rooms API returned {response.status_code} "
            f"for reservation {payload.reservation_id}: {error.message}"
        )
        return RoomsReservationResult(
            success=False,
            status_code=response.status_code,
            error=error.message,
            error_code=error.code,
            data=data if isinstance(data, dict) else None,
            duration_ms=duration_ms
        )


def get_rooms_gateway(db: Session, request_id: Optional[str] = None) -> RoomsGateway:
    """Factory used by routers and the reconciler"""
    return RoomsGateway(db, request_id=request_id)
