"""
Stripe Checkout adapter.

The rest of the app only needs three things from the payment provider:
create a hosted checkout, ask "was this checkout paid, and by whom", and
verify webhook signatures. Any provider error or timeout is raised as
PaymentProviderError so callers fail closed.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional

import stripe

from app.core.config import (
    COURSE_CURRENCY,
    COURSE_NAME,
    COURSE_PRICE_CENTS,
    FRONTEND_URL,
    PAYMENT_TIMEOUT_SECONDS,
    STRIPE_PRICE_ID,
    STRIPE_SECRET_KEY,
    STRIPE_WEBHOOK_SECRET,
)
from app.core.errors import InvalidInput, PaymentProviderError

logger = logging.getLogger(__name__)

# Initialize Stripe
stripe.api_key = STRIPE_SECRET_KEY
stripe.max_network_retries = 1
stripe.default_http_client = stripe.RequestsClient(timeout=PAYMENT_TIMEOUT_SECONDS)


@dataclass
class PaymentConfirmation:
    payment_ref: str
    paid: bool
    email: Optional[str] = None
    phone: Optional[str] = None
    name: Optional[str] = None
    amount: Optional[Decimal] = None  # major units
    currency: Optional[str] = None


def _field(obj: Any, key: str) -> Any:
    """Read a key from a StripeObject or a plain dict, None when missing."""
    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj.get(key)
    return getattr(obj, key, None)


class StripePaymentAdapter:
    def __init__(self, api_key: str = None, webhook_secret: str = None):
        self.api_key = api_key if api_key is not None else STRIPE_SECRET_KEY
        self.webhook_secret = webhook_secret if webhook_secret is not None else STRIPE_WEBHOOK_SECRET

    def create_checkout_session(self, name: Optional[str], email: str, phone: Optional[str] = None) -> Dict[str, str]:
        if not self.api_key:
            raise PaymentProviderError("Stripe is not configured")

        if STRIPE_PRICE_ID:
            line_item = {"price": STRIPE_PRICE_ID, "quantity": 1}
        else:
            line_item = {
                "price_data": {
                    "currency": COURSE_CURRENCY,
                    "product_data": {"name": COURSE_NAME},
                    "unit_amount": COURSE_PRICE_CENTS,
                },
                "quantity": 1,
            }

        metadata = {"name": name or "", "email": email, "phone": phone or ""}
        try:
            session = stripe.checkout.Session.create(
                api_key=self.api_key,
                mode="payment",
                line_items=[line_item],
                customer_email=email,
                phone_number_collection={"enabled": True},
                success_url=f"{FRONTEND_URL}/success?session_id={{CHECKOUT_SESSION_ID}}",
                cancel_url=f"{FRONTEND_URL}/payment?canceled=true",
                metadata=metadata,
            )
        except stripe.StripeError as e:
            logger.error("[Stripe] Error creating checkout session for %s: %s", email, e)
            raise PaymentProviderError("Could not start the checkout") from e

        logger.info("[Stripe] Created checkout session %s for %s", session.id, email)
        return {"url": session.url, "id": session.id}

    def confirm(self, session_id: str) -> PaymentConfirmation:
        """Look the checkout session up at Stripe. Stripe is the source of truth for 'paid'."""
        if not session_id:
            raise InvalidInput("session_id is required")
        if not self.api_key:
            raise PaymentProviderError("Stripe is not configured")

        try:
            session = stripe.checkout.Session.retrieve(session_id, api_key=self.api_key)
        except stripe.InvalidRequestError as e:
            # Unknown session id: nothing was paid under that reference
            logger.warning("[Stripe] Unknown checkout session %s: %s", session_id, e)
            return PaymentConfirmation(payment_ref=session_id, paid=False)
        except stripe.StripeError as e:
            logger.error("[Stripe] Error retrieving checkout session %s: %s", session_id, e)
            raise PaymentProviderError("Could not verify the payment") from e

        details = _field(session, "customer_details")
        metadata = _field(session, "metadata")

        amount_total = _field(session, "amount_total")
        amount = None
        if amount_total is not None:
            # Stripe amounts are in minor units
            amount = (Decimal(str(amount_total)) / 100).quantize(Decimal("0.01"))

        return PaymentConfirmation(
            payment_ref=_field(session, "id") or session_id,
            paid=_field(session, "payment_status") == "paid",
            email=_field(details, "email") or _field(session, "customer_email") or _field(metadata, "email"),
            phone=_field(details, "phone") or _field(metadata, "phone") or None,
            name=_field(metadata, "name") or _field(details, "name") or None,
            amount=amount,
            currency=_field(session, "currency"),
        )

    def construct_event(self, payload: bytes, signature: Optional[str]):
        """Verify the Stripe-Signature header. Raises ValueError / stripe.SignatureVerificationError."""
        if not self.webhook_secret:
            raise PaymentProviderError("Stripe webhook secret is not configured")
        if not signature:
            raise stripe.SignatureVerificationError("Missing Stripe-Signature header", signature, payload)
        return stripe.Webhook.construct_event(payload, signature, self.webhook_secret)


_default_adapter: Optional[StripePaymentAdapter] = None


def get_payment_adapter() -> StripePaymentAdapter:
    global _default_adapter
    if _default_adapter is None:
        _default_adapter = StripePaymentAdapter()
    return _default_adapter
