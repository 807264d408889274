"""
Checkout and access provisioning routes.
POST /create-checkout  -> hosted Stripe checkout
POST /verify-payment   -> synchronous confirmation after the Stripe redirect
POST /renew-access     -> confirm a renewal payment and extend access
POST /resend-notification -> send the current access code again
"""
import logging

from fastapi import APIRouter, Body, Depends, Request

from app.core.errors import InvalidInput
from app.dependencies.access import client_ip, get_access_manager
from app.schemas.access import (
    CheckoutRequest,
    CheckoutResponse,
    PaymentSessionResponse,
    RenewRequest,
    ResendRequest,
    VerifyPaymentRequest,
    user_with_code_out,
)
from app.services.access_manager import AccessManager, ConfirmationResult

logger = logging.getLogger(__name__)

router = APIRouter()


def _payment_session_response(manager: AccessManager, result: ConfirmationResult) -> PaymentSessionResponse:
    grant = manager.issue_grant(result.account)
    return PaymentSessionResponse(
        token=grant.token,
        tokenExpiresAt=grant.expires_at,
        isNewCredential=result.is_new_credential,
        renewed=result.renewed,
        user=user_with_code_out(result.account),
    )


@router.post("/create-checkout", response_model=CheckoutResponse)
@router.post("/create-checkout-session", response_model=CheckoutResponse, include_in_schema=False)
def create_checkout(
    request: CheckoutRequest = Body(...),
    manager: AccessManager = Depends(get_access_manager),
):
    """
    Create a Stripe Checkout Session for the course.
    Returns the checkout URL to redirect the user to.
    """
    if not request.email:
        raise InvalidInput("Email is required")
    return manager.start_checkout(request.name, request.email, request.phone)


@router.post("/verify-payment", response_model=PaymentSessionResponse)
def verify_payment(
    http_request: Request,
    request: VerifyPaymentRequest = Body(...),
    manager: AccessManager = Depends(get_access_manager),
):
    """
    Called by the success page right after the Stripe redirect. Converges
    with the webhook on the same idempotent confirmation, so whichever
    arrives second just gets the existing access code back.
    """
    if not request.session_id:
        raise InvalidInput("session_id is required")
    result = manager.confirm_payment(request.session_id, origin=client_ip(http_request))
    return _payment_session_response(manager, result)


@router.post("/renew-access", response_model=PaymentSessionResponse)
def renew_access(
    http_request: Request,
    request: RenewRequest = Body(...),
    manager: AccessManager = Depends(get_access_manager),
):
    if not request.email or not request.stripe_session_id:
        raise InvalidInput("email and stripe_session_id are required")
    result = manager.renew_access(request.email, request.stripe_session_id, origin=client_ip(http_request))
    return _payment_session_response(manager, result)


@router.post("/resend-notification")
def resend_notification(
    http_request: Request,
    request: ResendRequest = Body(...),
    manager: AccessManager = Depends(get_access_manager),
):
    if not request.email:
        raise InvalidInput("Email is required")
    sent = manager.resend_credential(request.email, origin=client_ip(http_request))
    return {"success": True, "sent": sent}
