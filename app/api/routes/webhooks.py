"""
Stripe webhook.
The raw request body is needed for signature verification, so this route
reads it itself instead of declaring a parsed body model.
"""
import logging

import stripe
from fastapi import APIRouter, Depends, HTTPException, Request, status
from starlette.concurrency import run_in_threadpool

from app.core.errors import (
    AccountDisabled,
    InvalidInput,
    PaymentNotCompleted,
)
from app.dependencies.access import get_access_manager, get_payments
from app.services.access_manager import AccessManager
from app.services.payment_adapter import StripePaymentAdapter

logger = logging.getLogger(__name__)

router = APIRouter()

CONFIRMING_EVENTS = (
    "checkout.session.completed",
    "checkout.session.async_payment_succeeded",
)


@router.post("/webhook")
@router.post("/webhook/stripe", include_in_schema=False)
async def stripe_webhook(
    request: Request,
    payments: StripePaymentAdapter = Depends(get_payments),
    manager: AccessManager = Depends(get_access_manager),
):
    """
    Register this URL in the Stripe dashboard:
    https://your-backend.com/webhook
    """
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")

    try:
        event = payments.construct_event(payload, sig_header)
    except ValueError:
        logger.warning("[Stripe webhook] Invalid payload")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid payload")
    except stripe.SignatureVerificationError:
        logger.warning("[Stripe webhook] Invalid signature")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid webhook signature")

    event_type = event["type"]
    session = event["data"]["object"]
    logger.info("[Stripe webhook] type=%s id=%s", event_type, event["id"])

    if event_type not in CONFIRMING_EVENTS:
        if event_type == "checkout.session.async_payment_failed":
            logger.warning("[Stripe webhook] Async payment failed for session %s", session["id"])
        return {"received": True}

    try:
        result = await run_in_threadpool(manager.confirm_payment, session["id"], "stripe-webhook")
    except PaymentNotCompleted:
        # e.g. voucher payments complete later with async_payment_succeeded
        logger.info("[Stripe webhook] Session %s not paid yet", session["id"])
        return {"received": True, "status": "pending"}
    except (InvalidInput, AccountDisabled) as e:
        # Retrying will not change the outcome, so acknowledge the event
        logger.warning("[Stripe webhook] Session %s rejected: %s", session["id"], e.message)
        return {"received": True, "status": "rejected"}

    logger.info(
        "[Stripe webhook] Session %s -> account %s (new credential: %s)",
        session["id"],
        result.account.id,
        result.is_new_credential,
    )
    return {"received": True, "status": "processed"}
