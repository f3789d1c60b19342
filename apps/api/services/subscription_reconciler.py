"""
Subscription reconciliation.

Applies verified Stripe lifecycle events to the local User/Subscription
mirror:

    checkout.session.completed     NONE|any -> ACTIVE   (upsert by email, welcome note for new users)
    customer.subscription.updated  any -> mapped status (period window, tier from price)
    customer.subscription.deleted  any -> CANCELLED      ("Subscription Cancelled" note)
    invoice.payment_failed         any -> PAST_DUE       ("Payment Failed" note)

Stripe delivers at least once, so every handler must converge on the same
end state when replayed. Checkout upserts keyed by the user's unique email;
the other three only mutate an existing row and never create one.

Events for subscriptions we don't know are logged and acknowledged. Stripe
is the source of truth and there is nothing local to correct.

Ordering between events for the same subscription is not enforced: a stale
``updated`` arriving after ``deleted`` will move the row back out of
CANCELLED.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from core.exceptions import MalformedMetadata, ReconciliationFailed, UnmatchedSubscription
from core.logging import bind_log_context, reset_log_context
from core.security import generate_placeholder_password, get_password_hash
from models import SubscriptionStatus, User
from services.billing_defaults import (
    CHECKOUT_DEFAULTS,
    INITIAL_PERIOD,
    NOTIFICATION_TEMPLATES,
    grants_homework_access,
    map_provider_status,
    welcome_notification,
)
from services.billing_events import (
    BillingEvent,
    CheckoutCompleted,
    EventKind,
    InvoicePaymentFailed,
    SubscriptionDeleted,
    SubscriptionUpdated,
)
from services.email_service import EmailService
from services.subscription_store import SubscriptionStore

logger = logging.getLogger(__name__)


APPLIED = "applied"
UNMATCHED = "unmatched"
IGNORED = "ignored"
DROPPED = "dropped"


@dataclass(frozen=True)
class ReconcileResult:
    event_id: str
    event_type: str
    outcome: str
    user_id: Optional[str] = None
    subscription_id: Optional[str] = None
    status: Optional[str] = None
    created_user: bool = False

    def as_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in self.__dict__.items() if v is not None}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SubscriptionReconciler:
    def __init__(
        self,
        store: SubscriptionStore,
        *,
        email_service: Optional[EmailService] = None,
        price_lookup: Optional[Callable[[str], Optional[str]]] = None,
        clock: Callable[[], datetime] = _utcnow,
        on_change: Optional[Callable[[], None]] = None,
    ) -> None:
        self.store = store
        self.email_service = email_service or EmailService()
        # Resolves a provider subscription id to its current price id; best-effort.
        self.price_lookup = price_lookup
        self.clock = clock
        self.on_change = on_change
        self._after_commit: List[Callable[[], None]] = []
        self._handlers = {
            EventKind.CHECKOUT_COMPLETED: self._checkout_completed,
            EventKind.SUBSCRIPTION_UPDATED: self._subscription_updated,
            EventKind.SUBSCRIPTION_DELETED: self._subscription_deleted,
            EventKind.INVOICE_PAYMENT_FAILED: self._invoice_payment_failed,
        }

    def handle(self, event: BillingEvent) -> ReconcileResult:
        """
        Apply one event and commit.

        Raises ReconciliationFailed on persistence errors (after rolling
        back) so the webhook can answer 5xx and Stripe redelivers. Logs
        written while the event is handled carry its id and type.
        """
        context_token = bind_log_context(
            stripe_event_id=event.event_id,
            stripe_event_type=getattr(event, "event_type", event.kind.value),
        )
        try:
            return self._handle(event)
        finally:
            reset_log_context(context_token)

    def _handle(self, event: BillingEvent) -> ReconcileResult:
        kind = event.kind
        handler = self._handlers.get(kind)
        if handler is None:
            event_type = getattr(event, "event_type", kind.value)
            logger.info(f"Ignoring unhandled Stripe event type {event_type}")
            return ReconcileResult(event_id=event.event_id, event_type=event_type, outcome=IGNORED)

        self._after_commit = []
        try:
            result = handler(event)
            self.store.commit()
        except MalformedMetadata as e:
            self.store.rollback()
            logger.error(
                f"Dropping {kind.value} event {event.event_id}: {e}",
                extra={"extra_fields": {"event_id": event.event_id, "event_type": kind.value}},
            )
            return ReconcileResult(event_id=event.event_id, event_type=kind.value, outcome=DROPPED)
        except UnmatchedSubscription as e:
            self.store.rollback()
            logger.info(
                f"Stripe {kind.value} for unknown subscription {e.provider_subscription_id}; acknowledged",
                extra={"extra_fields": {"event_id": event.event_id, "stripe_subscription_id": e.provider_subscription_id}},
            )
            return ReconcileResult(event_id=event.event_id, event_type=kind.value, outcome=UNMATCHED)
        except (SQLAlchemyError, LookupError) as e:
            self.store.rollback()
            logger.error(f"Reconciliation of {kind.value} event {event.event_id} failed", exc_info=True)
            raise ReconciliationFailed(kind.value, e) from e

        for action in self._after_commit:
            action()
        self._after_commit = []
        if self.on_change is not None:
            self.on_change()

        logger.info(
            f"Reconciled {kind.value} -> {result.status}",
            extra={"extra_fields": result.as_dict()},
        )
        return result

    # --- handlers -----------------------------------------------------------

    def _checkout_completed(self, event: CheckoutCompleted) -> ReconcileResult:
        if not event.has_metadata:
            raise MalformedMetadata("checkout session has no metadata")
        if not event.customer_email:
            raise MalformedMetadata("checkout session has no customer email")

        md = event.metadata
        tier = md.plan_tier

        user = self.store.find_user_by_email(event.customer_email)
        created = user is None
        if created:
            temporary_password = generate_placeholder_password()
            user = self.store.create_user({
                "email": event.customer_email,
                "password_hash": get_password_hash(temporary_password),
                "first_name": md.first_name,
                "last_name": md.last_name,
                "role": CHECKOUT_DEFAULTS["role"],
                "subjects": list(md.subjects),
                "year_group": md.year_group,
                # Payment success vouches for the identity.
                "is_active": True,
            })

        now = self.clock()
        fields: Dict[str, Any] = {
            "tier": tier,
            "status": SubscriptionStatus.ACTIVE.value,
            "current_period_start": now,
            "current_period_end": now + INITIAL_PERIOD,
            "homework_site_access": grants_homework_access(tier),
        }
        if event.customer_id:
            fields["stripe_customer_id"] = event.customer_id
        if event.subscription_id:
            fields["stripe_subscription_id"] = event.subscription_id
            price_id = self._lookup_price(event.subscription_id)
            if price_id:
                fields["stripe_price_id"] = price_id

        sub = self.store.upsert_subscription_for_user(user.id, fields)

        if created:
            self.store.create_notification({"user_id": user.id, **welcome_notification(tier)})
            self._after_commit.append(
                lambda: self._send_credentials(user, temporary_password, tier)
            )
            logger.info(f"New user created from checkout: {user.email}")

        return ReconcileResult(
            event_id=event.event_id,
            event_type=event.kind.value,
            outcome=APPLIED,
            user_id=str(user.id),
            subscription_id=str(sub.id),
            status=sub.status,
            created_user=created,
        )

    def _subscription_updated(self, event: SubscriptionUpdated) -> ReconcileResult:
        sub = self.store.find_subscription_by_provider_id(event.subscription_id)
        if sub is None:
            raise UnmatchedSubscription(event.subscription_id)

        fields: Dict[str, Any] = {"status": map_provider_status(event.provider_status)}
        if event.current_period_start is not None:
            fields["current_period_start"] = event.current_period_start
        if event.current_period_end is not None:
            fields["current_period_end"] = event.current_period_end

        if event.price_id:
            fields["stripe_price_id"] = event.price_id
            # Plan switches made in the billing portal show up as a new price.
            plan = self.store.find_plan_by_price_id(event.price_id)
            if plan is not None:
                fields["tier"] = plan.tier
                fields["homework_site_access"] = grants_homework_access(plan.tier)

        sub = self.store.update_subscription(sub.id, fields)
        return self._applied(event, sub)

    def _subscription_deleted(self, event: SubscriptionDeleted) -> ReconcileResult:
        sub = self.store.find_subscription_by_provider_id(event.subscription_id)
        if sub is None:
            raise UnmatchedSubscription(event.subscription_id)

        sub = self.store.update_subscription(sub.id, {"status": SubscriptionStatus.CANCELLED.value})
        self.store.create_notification({"user_id": sub.user_id, **NOTIFICATION_TEMPLATES["subscription_cancelled"]})
        return self._applied(event, sub)

    def _invoice_payment_failed(self, event: InvoicePaymentFailed) -> ReconcileResult:
        if not event.subscription_id:
            # One-off invoices have no subscription to mark.
            raise UnmatchedSubscription(None)
        sub = self.store.find_subscription_by_provider_id(event.subscription_id)
        if sub is None:
            raise UnmatchedSubscription(event.subscription_id)

        sub = self.store.update_subscription(sub.id, {"status": SubscriptionStatus.PAST_DUE.value})
        self.store.create_notification({"user_id": sub.user_id, **NOTIFICATION_TEMPLATES["payment_failed"]})
        return self._applied(event, sub)

    # --- helpers ------------------------------------------------------------

    @staticmethod
    def _applied(event: BillingEvent, sub) -> ReconcileResult:
        return ReconcileResult(
            event_id=event.event_id,
            event_type=event.kind.value,
            outcome=APPLIED,
            user_id=str(sub.user_id),
            subscription_id=str(sub.id),
            status=sub.status,
        )

    def _lookup_price(self, provider_subscription_id: str) -> Optional[str]:
        if self.price_lookup is None:
            return None
        return self.price_lookup(provider_subscription_id)

    def _send_credentials(self, user: User, temporary_password: str, tier: str) -> None:
        logger.info(f"Sending login details to checkout-created account {user.email}")
        delivered = self.email_service.send_account_credentials(user.email, user.first_name, temporary_password, tier)
        if not delivered:
            # Delivery is best-effort; the user can still use /v1/auth/forgot-password.
            logger.warning(f"Login details for {user.email} were not delivered")
