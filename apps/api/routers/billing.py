from __future__ import annotations

import logging

import stripe
from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from core.auth import get_current_user
from core.cache import TTLCache, get_cache
from core.database import get_db
from core.exceptions import InvalidSignature, NotFoundError, ReconciliationFailed, ValidationError
from models import PricingPlan, User
from schemas import CheckoutRequest, CheckoutResponse, PortalResponse, SubscriptionResponse
from services.billing_events import parse_event
from services.dashboard_stats import ADMIN_CACHE_PREFIX
from services.stripe_service import StripeService
from services.subscription_reconciler import SubscriptionReconciler
from services.subscription_store import SubscriptionStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/billing", tags=["billing"])


@router.post("/checkout", response_model=CheckoutResponse)
def create_checkout(request: CheckoutRequest, db: Session = Depends(get_db)):
    """
    Create a Stripe Checkout Session for a new student.

    No account exists yet; the webhook creates it after payment.
    """
    plan = db.get(PricingPlan, request.plan_id)
    if plan is None or not plan.is_active:
        raise ValidationError("Invalid or inactive plan", field="plan_id")
    if not plan.price_id_for(request.billing_interval):
        raise ValidationError(
            f"Plan is not available for {request.billing_interval} billing", field="billing_interval"
        )

    existing = db.query(User).filter(User.email == request.email).first()
    if existing is not None:
        raise ValidationError("An account with this email already exists. Please log in instead.", field="email")

    try:
        return StripeService().create_checkout_session(
            plan=plan,
            billing_interval=request.billing_interval,
            email=request.email,
            first_name=request.first_name,
            last_name=request.last_name,
            year_group=request.year_group.value,
            subjects=[s.value for s in request.subjects],
        )
    except RuntimeError as e:
        raise HTTPException(status_code=503, detail=str(e))
    except stripe.StripeError as e:
        logger.error(f"Stripe checkout creation failed: {e}")
        raise HTTPException(status_code=500, detail="Failed to create checkout session")


@router.post("/portal", response_model=PortalResponse)
def create_portal(current_user: User = Depends(get_current_user)):
    """
    Create a Stripe Customer Portal Session.
    Returns a hosted URL.
    """
    sub = current_user.subscription
    customer_id = sub.stripe_customer_id if sub is not None else None
    if not customer_id:
        raise HTTPException(status_code=400, detail="No billing account found")

    try:
        url = StripeService().create_portal_session(customer_id=customer_id)
    except RuntimeError as e:
        raise HTTPException(status_code=503, detail=str(e))
    except stripe.StripeError as e:
        logger.error(f"Stripe portal creation failed: {e}")
        raise HTTPException(status_code=500, detail="Failed to create portal session")
    return {"url": url}


@router.get("/subscription", response_model=SubscriptionResponse)
def get_subscription(current_user: User = Depends(get_current_user)):
    if current_user.subscription is None:
        raise NotFoundError("Subscription", str(current_user.id))
    return current_user.subscription


@router.post("/webhooks/stripe")
async def stripe_webhook(
    request: Request,
    db: Session = Depends(get_db),
    cache: TTLCache = Depends(get_cache),
):
    """
    Stripe webhook endpoint.

    Verifies the signature before anything touches the database, then
    reconciles the event. Only persistence failures answer 5xx (Stripe retries);
    unknown, unmatched or malformed events are acknowledged.
    """
    sig = request.headers.get("stripe-signature")
    payload = await request.body()

    try:
        svc = StripeService()
        event = svc.construct_event(payload=payload, sig_header=sig)
    except InvalidSignature as e:
        logger.warning(f"Rejected Stripe webhook: {e}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid webhook signature")
    except RuntimeError as e:
        raise HTTPException(status_code=503, detail=str(e))

    reconciler = SubscriptionReconciler(
        SubscriptionStore(db),
        price_lookup=svc.subscription_price_id,
        on_change=lambda: cache.invalidate(ADMIN_CACHE_PREFIX),
    )
    try:
        # The price lookup is a blocking Stripe call; keep it off the event loop.
        await run_in_threadpool(reconciler.handle, parse_event(event))
    except ReconciliationFailed as e:
        raise HTTPException(status_code=500, detail=f"Webhook processing failed: {e.event_kind}")

    return {"received": True}
