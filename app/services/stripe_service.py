"""Stripe API access: webhook verification and PaymentIntents."""

import json
import logging
from typing import Any, Dict, Optional

import stripe

from ..config import settings

logger = logging.getLogger(__name__)


class StripeNotConfiguredError(RuntimeError):
    pass


def _get_stripe_client(require_secret_key: bool = True):
    if require_secret_key and not settings.stripe_secret_key:
        raise StripeNotConfiguredError("Stripe is not configured")
    if settings.stripe_secret_key:
        stripe.api_key = settings.stripe_secret_key
    return stripe


def verify_webhook_signature(payload: bytes, sig_header: str) -> Dict[str, Any]:
    """
    Verify the Stripe-Signature header and return the event as a plain dict.

    Raises StripeNotConfiguredError when no signing secret is set and
    stripe.error.SignatureVerificationError / ValueError on bad input.
    """
    if not settings.stripe_webhook_secret:
        raise StripeNotConfiguredError("Stripe webhook secret is not configured")
    stripe_client = _get_stripe_client(require_secret_key=False)
    stripe_client.WebhookSignature.verify_header(
        payload.decode("utf-8"), sig_header, settings.stripe_webhook_secret
    )
    return json.loads(payload)


def create_payment_intent(
    amount_cents: int,
    currency: str,
    metadata: Dict[str, str],
    idempotency_key: str,
    receipt_email: Optional[str] = None,
    description: Optional[str] = None
) -> Dict[str, Any]:
    """Create a PaymentIntent; returns id and client_secret."""
    stripe_client = _get_stripe_client()
    params: Dict[str, Any] = {
        "amount": amount_cents,
        "currency": currency.lower(),
        "automatic_payment_methods": {"enabled": True},
        "metadata": metadata,
    }
    if receipt_email:
        params["receipt_email"] = receipt_email
    if description:
        params["description"] = description

    intent = stripe_client.PaymentIntent.create(idempotency_key=idempotency_key, **params)
    return {"id": intent["id"], "client_secret": intent["client_secret"]}


def retrieve_payment_intent(intent_id: str) -> Dict[str, Any]:
    """Fetch a PaymentIntent; returns id, status and metadata."""
    stripe_client = _get_stripe_client()
    intent = stripe_client.PaymentIntent.retrieve(intent_id)
    metadata = intent["metadata"] or {}
    return {
        "id": intent["id"],
        "status": intent["status"],
        "amount": intent["amount"],
        "currency": intent["currency"],
        # StripeObject -> plain str map
        "metadata": {key: metadata[key] for key in metadata.keys()},
    }
