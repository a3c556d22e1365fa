"""
Stripe payload schemas

Stripe metadata is a flat string map. PassMetadata is the one place it
is validated; the reconciler works on the typed result only.
"""

from enum import Enum
from typing import Optional, Dict, Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..utils.timezone import parse_datetime


class Product(str, Enum):
    PASS = "pass"
    ROOM = "room"


class StripeEventType(str, Enum):
    CHECKOUT_COMPLETED = "checkout.session.completed"
    PAYMENT_SUCCEEDED = "payment_intent.succeeded"
    PAYMENT_FAILED = "payment_intent.payment_failed"


class PassMetadata(BaseModel):
    """Metadata attached to a Checkout Session / PaymentIntent at creation"""
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    org_slug: str = Field(..., min_length=1)
    product: Product
    org_id: Optional[str] = None
    org_timezone: Optional[str] = None
    variant: Optional[str] = None
    pass_type_name: Optional[str] = None
    access_point_id: Optional[str] = None
    site_id: Optional[str] = None
    site_slug: Optional[str] = None
    device_slug: Optional[str] = None
    gate_id: Optional[str] = None
    pass_id: Optional[str] = None
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    customer_plate: Optional[str] = None
    number_of_days: Optional[str] = None
    return_url: Optional[str] = None
    valid_from: Optional[str] = None
    valid_to: Optional[str] = None
    backup_pincode: Optional[str] = None
    backup_pincode_fortnight: Optional[str] = None

    @field_validator(
        "org_id", "org_timezone", "variant", "pass_type_name", "access_point_id",
        "site_id", "site_slug", "device_slug", "gate_id", "pass_id",
        "customer_email", "customer_phone", "customer_plate", "number_of_days",
        "return_url", "valid_from", "valid_to", "backup_pincode",
        "backup_pincode_fortnight",
        mode="before"
    )
    @classmethod
    def empty_to_none(cls, v):
        # Stripe cannot store null, callers send "" for missing values
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("number_of_days")
    @classmethod
    def validate_number_of_days(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and (not v.isdigit() or int(v) < 1):
            raise ValueError("number_of_days must be a positive integer")
        return v

    @field_validator("valid_from", "valid_to")
    @classmethod
    def validate_iso_datetime(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and parse_datetime(v) is None:
            raise ValueError("must be an ISO8601 datetime")
        return v

    @property
    def device_id(self) -> Optional[str]:
        """access_point_id with gate_id as the legacy alias"""
        return self.access_point_id or self.gate_id

    @property
    def days(self) -> int:
        return int(self.number_of_days) if self.number_of_days else 1

    @property
    def customer_identifier(self) -> str:
        return self.customer_email or self.customer_phone or self.customer_plate or "unknown"

    @property
    def slug_path(self) -> str:
        return f"{self.org_slug}/{self.site_slug or 'site'}/{self.device_slug or 'device'}"

    @property
    def pass_type_display_name(self) -> str:
        if self.pass_type_name:
            return self.pass_type_name
        if self.variant and "camping" in self.variant.lower():
            return "Camping Pass"
        return "Day Pass"

    @property
    def window(self) -> tuple:
        return parse_datetime(self.valid_from), parse_datetime(self.valid_to)


def parse_metadata(raw: Optional[Dict[str, Any]]) -> Optional[PassMetadata]:
    """Validate a Stripe metadata map, None when it does not fit the schema."""
    try:
        return PassMetadata.model_validate(raw or {})
    except ValidationError:
        return None


class StripeObjectSummary(BaseModel):
    """The fields the reconciler reads from a Session or PaymentIntent"""
    model_config = ConfigDict(extra="ignore")

    id: str
    object: Optional[str] = None
    amount: Optional[int] = None
    amount_total: Optional[int] = None
    currency: Optional[str] = None
    payment_intent: Optional[Any] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    last_payment_error: Optional[Dict[str, Any]] = None

    @field_validator("metadata", mode="before")
    @classmethod
    def none_metadata(cls, v):
        return v or {}

    @property
    def intent_id(self) -> Optional[str]:
        """payment_intent may be an id string or an expanded object"""
        if self.object == "payment_intent":
            return self.id
        if isinstance(self.payment_intent, dict):
            return self.payment_intent.get("id")
        return self.payment_intent or None

    @property
    def failure_reason(self) -> Optional[str]:
        if self.last_payment_error:
            return self.last_payment_error.get("message")
        return None
