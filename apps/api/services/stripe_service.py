from __future__ import annotations

from dataclasses import dataclass
import json
import logging
import os
from typing import Any, List, Optional

import stripe

from core.config import settings
from core.exceptions import InvalidSignature
from models import PricingPlan

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StripeConfig:
    secret_key: str
    webhook_secret: Optional[str]
    checkout_success_url: str
    checkout_cancel_url: str
    portal_return_url: str


def _get_stripe_config() -> StripeConfig:
    """
    Load Stripe config from environment via Settings.

    Fail closed: if configuration is missing, billing endpoints should not proceed.
    """
    # Support both "STRIPE_SECRET_KEY" and convenience local names (test/prod).
    secret_key = (
        settings.STRIPE_SECRET_KEY
        or os.getenv("STRIPE_SECRET_TEST_KEY")
        or os.getenv("STRIPE_SECRET_LIVE_KEY")
    )

    # Webhook secret is only required for the webhook endpoint; checkout/portal
    # work without it for local development before Stripe CLI is configured.
    webhook_secret = (
        settings.STRIPE_WEBHOOK_SECRET
        or os.getenv("STRIPE_WEBHOOK_TEST_SECRET")
        or os.getenv("STRIPE_WEBHOOK_LIVE_SECRET")
    )

    base = settings.WEB_APP_BASE_URL.rstrip("/")
    success_url = settings.STRIPE_CHECKOUT_SUCCESS_URL or f"{base}/auth/login?checkout=success&session_id={{CHECKOUT_SESSION_ID}}"
    cancel_url = settings.STRIPE_CHECKOUT_CANCEL_URL or f"{base}/pricing?checkout=cancelled"
    portal_return_url = settings.STRIPE_PORTAL_RETURN_URL or f"{base}/dashboard/subscription"

    if not secret_key:
        raise RuntimeError("Stripe not configured (missing: STRIPE_SECRET_KEY)")

    return StripeConfig(
        secret_key=str(secret_key),
        webhook_secret=str(webhook_secret) if webhook_secret else None,
        checkout_success_url=str(success_url),
        checkout_cancel_url=str(cancel_url),
        portal_return_url=str(portal_return_url),
    )


class StripeService:
    def __init__(self) -> None:
        cfg = _get_stripe_config()
        stripe.api_key = cfg.secret_key
        self.cfg = cfg

    def create_checkout_session(
        self,
        *,
        plan: PricingPlan,
        billing_interval: str,
        email: str,
        first_name: str,
        last_name: str,
        year_group: str,
        subjects: List[str],
    ) -> dict[str, str]:
        """
        Create a subscription-mode Checkout session for someone without an account.

        The account is created by the checkout.session.completed webhook from
        the metadata attached here.
        """
        price_id = plan.price_id_for(billing_interval)
        if not price_id:
            raise ValueError(f"Plan {plan.id} has no Stripe price for {billing_interval} billing")

        plan_md = {"planId": str(plan.id), "planTier": plan.tier}
        params: dict[str, Any] = {
            "mode": "subscription",
            "payment_method_types": ["card"],
            "customer_email": email.lower(),
            "success_url": self.cfg.checkout_success_url,
            "cancel_url": self.cfg.checkout_cancel_url,
            "line_items": [{"price": price_id, "quantity": 1}],
            "metadata": {
                **plan_md,
                "firstName": first_name,
                "lastName": last_name,
                "yearGroup": year_group,
                "subjects": json.dumps(list(subjects)),
            },
            "subscription_data": {"metadata": plan_md},
        }

        session = stripe.checkout.Session.create(**params)
        return {"session_id": str(session.id), "url": str(session.url)}

    def create_portal_session(self, *, customer_id: Optional[str]) -> str:
        if not customer_id:
            raise ValueError("No stripe_customer_id for user")
        sess = stripe.billing_portal.Session.create(
            customer=str(customer_id),
            return_url=self.cfg.portal_return_url,
        )
        return str(sess.url)

    def construct_event(self, *, payload: bytes, sig_header: Optional[str]):
        """Verify the webhook signature and return the parsed stripe.Event."""
        if not sig_header:
            raise InvalidSignature("Missing Stripe-Signature header")
        if not self.cfg.webhook_secret:
            raise RuntimeError("Stripe webhook secret not configured")
        try:
            return stripe.Webhook.construct_event(
                payload=payload,
                sig_header=sig_header,
                secret=self.cfg.webhook_secret,
            )
        except (ValueError, stripe.SignatureVerificationError) as e:
            raise InvalidSignature(str(e)) from e

    def subscription_price_id(self, subscription_id: str) -> Optional[str]:
        """
        Best-effort price id of a subscription's first item.

        Checkout sessions don't carry the price, so this is one extra API
        call. Stripe errors return None; the next subscription.updated event
        fills the price in anyway.
        """
        try:
            sub = stripe.Subscription.retrieve(subscription_id)
        except stripe.StripeError as e:
            logger.warning(f"Could not fetch Stripe subscription {subscription_id}: {e}")
            return None
        try:
            price = sub["items"]["data"][0]["price"]
        except (KeyError, IndexError, TypeError):
            return None
        price_id = price if isinstance(price, str) else price.get("id")
        return str(price_id) if price_id else None
