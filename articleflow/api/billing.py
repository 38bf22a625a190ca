"""
Stripe billing API routes.

- POST /api/stripe/webhook: Stripe events (signature verified, idempotent)
- POST /api/stripe/verify-session: client-side checkout verification
- POST /api/stripe/checkout: create a subscription checkout session
- POST /api/stripe/portal: billing portal for the caller's customer
- GET  /api/stripe/subscription: canonical billing status for the caller
- POST /api/stripe/subscription/cancel: toggle cancel-at-period-end
"""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel

from articleflow.core.auth import get_current_user_id
from articleflow.core.container import ServiceContainer, get_services
from articleflow.core.logging import log_event
from articleflow.features.billing.provider import BillingWebhookError

router = APIRouter(prefix="/stripe", tags=["billing"])


class VerifySessionRequest(BaseModel):
    session_id: str


class CheckoutRequest(BaseModel):
    plan_id: str
    email: Optional[str] = None


class CancelRequest(BaseModel):
    cancel: bool = True


@router.post("/webhook")
async def stripe_webhook(request: Request, services: ServiceContainer = Depends(get_services)):
    """
    Handle Stripe webhook events.

    Returns 200 {"received": true} once the subscription record reflects the
    event, regardless of any downstream ledger sync.

    Errors:
        400: Invalid signature or payload
        503: Storage or provider failure (Stripe will redeliver)
    """
    body = await request.body()
    headers = dict(request.headers)
    try:
        result = services.reconciler.handle_webhook(headers, body)
    except BillingWebhookError as e:
        log_event("warning", "billing.webhook_rejected", error_code="invalid_signature", extra={"error": e})
        raise HTTPException(status_code=400, detail=str(e))
    return {"received": True, "duplicate": result.get("duplicate", False)}


@router.post("/verify-session")
def verify_session(
    body: VerifySessionRequest,
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_services),
):
    return services.reconciler.verify_checkout_session(body.session_id, user_id)


@router.post("/checkout")
def create_checkout(
    body: CheckoutRequest,
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_services),
):
    url = services.reconciler.create_checkout(user_id, body.plan_id, body.email)
    return {"url": url}


@router.post("/portal")
def create_portal(
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_services),
):
    return {"url": services.reconciler.create_portal(user_id)}


@router.get("/subscription")
def get_subscription(
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_services),
):
    status = services.reconciler.get_billing_status(user_id)
    period_end = status.get("current_period_end")
    if period_end is not None:
        status["current_period_end"] = period_end.isoformat()
    return status


@router.post("/subscription/cancel")
def set_cancel_at_period_end(
    body: CancelRequest,
    user_id: str = Depends(get_current_user_id),
    services: ServiceContainer = Depends(get_services),
):
    record = services.reconciler.set_cancel_at_period_end(user_id, body.cancel)
    return {"subscription": record.model_dump(mode="json")}
