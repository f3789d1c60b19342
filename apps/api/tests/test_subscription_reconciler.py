"""
Subscription reconciliation against a real (SQLite) session.

Events are built as typed dataclasses directly; Stripe payload parsing has
its own tests in test_billing_events.py.
"""
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import SQLAlchemyError

from core.exceptions import ReconciliationFailed
from core.security import verify_password
from models import Notification, Subscription, User
from services.billing_defaults import CHECKOUT_DEFAULTS, INITIAL_PERIOD, WELCOME_TITLE
from services.billing_events import (
    CheckoutCompleted,
    CheckoutMetadata,
    InvoicePaymentFailed,
    SubscriptionDeleted,
    SubscriptionUpdated,
    UnknownEvent,
)
from services.subscription_reconciler import SubscriptionReconciler
from services.subscription_store import SubscriptionStore


NOW = datetime(2026, 1, 15, 9, 0, tzinfo=timezone.utc)


def _naive(dt):
    return dt.replace(tzinfo=None) if dt is not None and dt.tzinfo else dt


class _RecordingEmailService:
    def __init__(self):
        self.sent = []

    def send_account_credentials(self, to_email, first_name, temporary_password, tier):
        self.sent.append(
            {"to": to_email, "first_name": first_name, "password": temporary_password, "tier": tier}
        )
        return False


@pytest.fixture
def emails():
    return _RecordingEmailService()


@pytest.fixture
def store(db_session):
    return SubscriptionStore(db_session)


@pytest.fixture
def changes():
    return []


@pytest.fixture
def reconciler(store, emails, changes):
    return SubscriptionReconciler(
        store,
        email_service=emails,
        clock=lambda: NOW,
        on_change=lambda: changes.append(1),
    )


@pytest.fixture
def existing_subscription(db_session, make_user):
    user = make_user(email="member@example.com")
    sub = Subscription(
        user_id=user.id,
        stripe_customer_id="cus_member",
        stripe_subscription_id="sub_member",
        tier="BASIC",
        status="ACTIVE",
        homework_site_access=False,
    )
    db_session.add(sub)
    db_session.commit()
    return sub


def _checkout(email="new@x.com", event_id="evt_checkout_1", has_metadata=True, **metadata):
    return CheckoutCompleted(
        event_id=event_id,
        customer_email=email,
        customer_id="cus_new",
        subscription_id="sub_new",
        metadata=CheckoutMetadata(**metadata),
        has_metadata=has_metadata,
    )


def _updated(status, subscription_id="sub_member", price_id=None, start=None, end=None):
    return SubscriptionUpdated(
        event_id="evt_updated_1",
        subscription_id=subscription_id,
        customer_id="cus_member",
        provider_status=status,
        price_id=price_id,
        current_period_start=start,
        current_period_end=end,
    )


# --- checkout.session.completed ---------------------------------------------

def test_checkout_for_unseen_email_creates_user_and_active_subscription(db_session, reconciler, emails):
    result = reconciler.handle(_checkout(plan_tier="PREMIUM"))

    assert result.outcome == "applied"
    assert result.created_user is True

    users = db_session.query(User).all()
    assert len(users) == 1
    user = users[0]
    assert user.email == "new@x.com"
    assert user.is_active is True
    assert user.role == "STUDENT"

    subs = db_session.query(Subscription).all()
    assert len(subs) == 1
    sub = subs[0]
    assert sub.user_id == user.id
    assert sub.tier == "PREMIUM"
    assert sub.status == "ACTIVE"
    assert sub.homework_site_access is True
    assert sub.stripe_customer_id == "cus_new"
    assert sub.stripe_subscription_id == "sub_new"
    assert _naive(sub.current_period_start) == _naive(NOW)
    assert _naive(sub.current_period_end) == _naive(NOW + INITIAL_PERIOD)


def test_new_user_gets_placeholder_password_welcome_note_and_credentials_email(db_session, reconciler, emails):
    reconciler.handle(_checkout(plan_tier="PREMIUM", first_name="Ada"))

    user = db_session.query(User).one()
    assert len(emails.sent) == 1
    sent = emails.sent[0]
    assert sent["to"] == "new@x.com"
    assert sent["first_name"] == "Ada"
    assert sent["tier"] == "PREMIUM"
    assert len(sent["password"]) == 12
    assert sent["password"].isalnum()
    assert verify_password(sent["password"], user.password_hash)

    notes = db_session.query(Notification).filter(Notification.user_id == user.id).all()
    assert len(notes) == 1
    assert notes[0].type == "SYSTEM"
    assert notes[0].title == WELCOME_TITLE
    assert "PREMIUM" in notes[0].message


def test_checkout_metadata_defaults_fill_new_user(db_session, reconciler):
    reconciler.handle(_checkout())

    user = db_session.query(User).one()
    assert user.first_name == CHECKOUT_DEFAULTS["first_name"]
    assert user.last_name == CHECKOUT_DEFAULTS["last_name"]
    assert user.year_group == CHECKOUT_DEFAULTS["year_group"]
    assert user.subjects == CHECKOUT_DEFAULTS["subjects"]
    assert user.role == CHECKOUT_DEFAULTS["role"]

    sub = db_session.query(Subscription).one()
    assert sub.tier == CHECKOUT_DEFAULTS["plan_tier"]
    assert sub.homework_site_access is False


def test_redelivered_checkout_does_not_duplicate(db_session, reconciler, emails):
    event = _checkout(plan_tier="PREMIUM")
    first = reconciler.handle(event)
    second = reconciler.handle(event)

    assert db_session.query(User).count() == 1
    assert db_session.query(Subscription).count() == 1
    assert first.subscription_id == second.subscription_id
    assert second.created_user is False

    sub = db_session.query(Subscription).one()
    assert sub.status == "ACTIVE"
    assert sub.tier == "PREMIUM"
    # Welcome and credentials only on the run that created the account.
    assert db_session.query(Notification).count() == 1
    assert len(emails.sent) == 1


def test_checkout_for_existing_user_upserts_silently(db_session, make_user, reconciler, emails):
    user = make_user(email="mixed@example.com")

    result = reconciler.handle(_checkout(email="Mixed@Example.com", plan_tier="BASIC"))

    assert result.created_user is False
    assert db_session.query(User).count() == 1
    sub = db_session.query(Subscription).one()
    assert sub.user_id == user.id
    assert sub.status == "ACTIVE"
    assert db_session.query(Notification).count() == 0
    assert emails.sent == []


def test_checkout_reactivates_cancelled_subscription(db_session, reconciler, existing_subscription):
    existing_subscription.status = "CANCELLED"
    db_session.commit()

    reconciler.handle(_checkout(email="member@example.com", plan_tier="PREMIUM"))

    sub = db_session.query(Subscription).one()
    assert sub.id == existing_subscription.id
    assert sub.status == "ACTIVE"
    assert sub.tier == "PREMIUM"
    assert sub.stripe_subscription_id == "sub_new"


def test_checkout_records_price_from_lookup(db_session, store, emails):
    looked_up = []

    def _lookup(sub_id):
        looked_up.append(sub_id)
        return "price_premium_monthly"

    reconciler = SubscriptionReconciler(store, email_service=emails, price_lookup=_lookup, clock=lambda: NOW)
    reconciler.handle(_checkout(plan_tier="PREMIUM"))

    assert looked_up == ["sub_new"]
    assert db_session.query(Subscription).one().stripe_price_id == "price_premium_monthly"


def test_checkout_without_email_is_dropped(db_session, reconciler, changes):
    result = reconciler.handle(_checkout(email=None, plan_tier="PREMIUM"))

    assert result.outcome == "dropped"
    assert db_session.query(User).count() == 0
    assert db_session.query(Subscription).count() == 0
    assert changes == []


def test_checkout_without_metadata_is_dropped(db_session, reconciler):
    result = reconciler.handle(_checkout(has_metadata=False))

    assert result.outcome == "dropped"
    assert db_session.query(User).count() == 0


def test_checkout_persistence_failure_rolls_back_new_user(db_session, store, emails, monkeypatch):
    def _boom(user_id, fields):
        raise SQLAlchemyError("connection lost")

    monkeypatch.setattr(store, "upsert_subscription_for_user", _boom)
    reconciler = SubscriptionReconciler(store, email_service=emails, clock=lambda: NOW)

    with pytest.raises(ReconciliationFailed) as exc_info:
        reconciler.handle(_checkout(plan_tier="PREMIUM"))

    assert exc_info.value.event_kind == "checkout.session.completed"
    assert isinstance(exc_info.value.cause, SQLAlchemyError)
    assert db_session.query(User).count() == 0
    assert emails.sent == []


# --- customer.subscription.updated ------------------------------------------

@pytest.mark.parametrize(
    "provider_status, expected",
    [
        ("active", "ACTIVE"),
        ("canceled", "CANCELLED"),
        ("past_due", "PAST_DUE"),
        ("unpaid", "EXPIRED"),
        ("trialing", "ACTIVE"),
        ("incomplete", "ACTIVE"),
    ],
)
def test_updated_maps_provider_status(db_session, reconciler, existing_subscription, provider_status, expected):
    reconciler.handle(_updated(provider_status))

    db_session.refresh(existing_subscription)
    assert existing_subscription.status == expected


@pytest.mark.parametrize("prior", ["ACTIVE", "CANCELLED", "EXPIRED"])
def test_updated_past_due_wins_regardless_of_prior_status(db_session, reconciler, existing_subscription, prior):
    existing_subscription.status = prior
    db_session.commit()

    reconciler.handle(_updated("past_due"))

    db_session.refresh(existing_subscription)
    assert existing_subscription.status == "PAST_DUE"


def test_updated_sets_period_window_without_notification(db_session, reconciler, existing_subscription):
    start = datetime(2026, 2, 1, tzinfo=timezone.utc)
    end = start + timedelta(days=28)

    reconciler.handle(_updated("active", start=start, end=end))

    db_session.refresh(existing_subscription)
    assert _naive(existing_subscription.current_period_start) == _naive(start)
    assert _naive(existing_subscription.current_period_end) == _naive(end)
    assert db_session.query(Notification).count() == 0


def test_updated_with_known_price_switches_tier(db_session, reconciler, existing_subscription, premium_plan):
    reconciler.handle(_updated("active", price_id="price_premium_yearly"))

    db_session.refresh(existing_subscription)
    assert existing_subscription.tier == "PREMIUM"
    assert existing_subscription.homework_site_access is True
    assert existing_subscription.stripe_price_id == "price_premium_yearly"


def test_updated_with_unknown_price_keeps_tier(db_session, reconciler, existing_subscription):
    reconciler.handle(_updated("active", price_id="price_legacy"))

    db_session.refresh(existing_subscription)
    assert existing_subscription.tier == "BASIC"
    assert existing_subscription.stripe_price_id == "price_legacy"


def test_updated_for_unknown_subscription_changes_nothing(db_session, reconciler, existing_subscription, changes):
    result = reconciler.handle(_updated("canceled", subscription_id="sub_elsewhere"))

    assert result.outcome == "unmatched"
    db_session.refresh(existing_subscription)
    assert existing_subscription.status == "ACTIVE"
    assert changes == []


def test_updated_persistence_failure_raises_and_keeps_state(db_session, store, emails, existing_subscription, monkeypatch):
    def _boom(subscription_id, fields):
        raise SQLAlchemyError("deadlock detected")

    monkeypatch.setattr(store, "update_subscription", _boom)
    reconciler = SubscriptionReconciler(store, email_service=emails)

    with pytest.raises(ReconciliationFailed):
        reconciler.handle(_updated("canceled"))

    assert db_session.query(Subscription).one().status == "ACTIVE"


# --- customer.subscription.deleted ------------------------------------------

def test_deleted_cancels_and_notifies_once(db_session, reconciler, existing_subscription, changes):
    event = SubscriptionDeleted(event_id="evt_del_1", subscription_id="sub_member", customer_id="cus_member")

    result = reconciler.handle(event)

    assert result.outcome == "applied"
    db_session.refresh(existing_subscription)
    assert existing_subscription.status == "CANCELLED"

    notes = db_session.query(Notification).all()
    assert len(notes) == 1
    assert notes[0].type == "SUBSCRIPTION"
    assert notes[0].title == "Subscription Cancelled"
    assert notes[0].link == "/pricing"
    assert notes[0].user_id == existing_subscription.user_id
    assert changes == [1]


def test_deleted_redelivery_keeps_status_and_notifies_again(db_session, reconciler, existing_subscription):
    event = SubscriptionDeleted(event_id="evt_del_1", subscription_id="sub_member", customer_id="cus_member")

    reconciler.handle(event)
    reconciler.handle(event)

    assert db_session.query(Subscription).one().status == "CANCELLED"
    assert db_session.query(Notification).count() == 2


# --- invoice.payment_failed -------------------------------------------------

def test_payment_failed_marks_past_due(db_session, reconciler, existing_subscription):
    event = InvoicePaymentFailed(event_id="evt_inv_1", invoice_id="in_1", subscription_id="sub_member")

    reconciler.handle(event)

    db_session.refresh(existing_subscription)
    assert existing_subscription.status == "PAST_DUE"
    note = db_session.query(Notification).one()
    assert note.title == "Payment Failed"
    assert note.link == "/dashboard/subscription"


def test_payment_failed_for_unknown_subscription_is_harmless(db_session, reconciler, existing_subscription, changes):
    event = InvoicePaymentFailed(event_id="evt_inv_2", invoice_id="in_2", subscription_id="sub_unknown")

    result = reconciler.handle(event)

    assert result.outcome == "unmatched"
    db_session.refresh(existing_subscription)
    assert existing_subscription.status == "ACTIVE"
    assert db_session.query(Notification).count() == 0
    assert changes == []


def test_payment_failed_without_subscription_is_unmatched(db_session, reconciler):
    event = InvoicePaymentFailed(event_id="evt_inv_3", invoice_id="in_3", subscription_id=None)

    assert reconciler.handle(event).outcome == "unmatched"


# --- everything else --------------------------------------------------------

def test_unknown_event_is_ignored(db_session, reconciler, changes):
    result = reconciler.handle(UnknownEvent(event_id="evt_x", event_type="customer.created"))

    assert result.outcome == "ignored"
    assert result.event_type == "customer.created"
    assert changes == []
