"""
Typed billing events.

Stripe hands us loosely-typed objects discriminated by ``event.type``. This
module validates them once at the boundary and turns each into a frozen
dataclass tagged with an ``EventKind``. The reconciler dispatches on the
kind and never touches raw Stripe payloads.

Payload access works for ``stripe.Event`` (StripeObject), plain dicts and
simple attribute objects alike.
"""
from __future__ import annotations

import enum
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from services.billing_defaults import CHECKOUT_DEFAULTS, normalize_subjects, normalize_tier, normalize_year_group

logger = logging.getLogger(__name__)


class EventKind(str, enum.Enum):
    CHECKOUT_COMPLETED = "checkout.session.completed"
    SUBSCRIPTION_UPDATED = "customer.subscription.updated"
    SUBSCRIPTION_DELETED = "customer.subscription.deleted"
    INVOICE_PAYMENT_FAILED = "invoice.payment_failed"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class CheckoutMetadata:
    plan_tier: str = CHECKOUT_DEFAULTS["plan_tier"]
    first_name: str = CHECKOUT_DEFAULTS["first_name"]
    last_name: str = CHECKOUT_DEFAULTS["last_name"]
    year_group: str = CHECKOUT_DEFAULTS["year_group"]
    subjects: List[str] = field(default_factory=lambda: list(CHECKOUT_DEFAULTS["subjects"]))
    plan_id: Optional[str] = None


@dataclass(frozen=True)
class CheckoutCompleted:
    event_id: str
    customer_email: Optional[str]
    customer_id: Optional[str]
    subscription_id: Optional[str]
    metadata: CheckoutMetadata
    has_metadata: bool = True
    kind: EventKind = EventKind.CHECKOUT_COMPLETED


@dataclass(frozen=True)
class SubscriptionUpdated:
    event_id: str
    subscription_id: str
    customer_id: Optional[str]
    provider_status: Optional[str]
    price_id: Optional[str]
    current_period_start: Optional[datetime]
    current_period_end: Optional[datetime]
    kind: EventKind = EventKind.SUBSCRIPTION_UPDATED


@dataclass(frozen=True)
class SubscriptionDeleted:
    event_id: str
    subscription_id: str
    customer_id: Optional[str]
    kind: EventKind = EventKind.SUBSCRIPTION_DELETED


@dataclass(frozen=True)
class InvoicePaymentFailed:
    event_id: str
    invoice_id: Optional[str]
    subscription_id: Optional[str]
    kind: EventKind = EventKind.INVOICE_PAYMENT_FAILED


@dataclass(frozen=True)
class UnknownEvent:
    event_id: str
    event_type: str
    kind: EventKind = EventKind.UNKNOWN


BillingEvent = Union[CheckoutCompleted, SubscriptionUpdated, SubscriptionDeleted, InvoicePaymentFailed, UnknownEvent]


# --- payload access ---------------------------------------------------------

def _field(obj: Any, name: str) -> Any:
    """
    Read ``name`` from a Stripe object, dict or plain object.

    Item access comes first: on StripeObject, attributes like ``items`` are
    shadowed by mapping methods.
    """
    if obj is None:
        return None
    try:
        return obj[name]
    except KeyError:
        return None
    except TypeError:
        return getattr(obj, name, None)


def _as_dict(value: Any) -> Dict[str, Any]:
    if value is None:
        return {}
    if isinstance(value, dict):
        return dict(value)
    to_dict = getattr(value, "to_dict", None)
    if callable(to_dict):
        return dict(to_dict())
    try:
        return dict(value)
    except (TypeError, ValueError):
        return {}


def _str_or_none(value: Any) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        # Expanded objects (e.g. customer) carry their id.
        value = _field(value, "id") if _field(value, "id") is not None else value
    text = str(value).strip()
    return text or None


def _timestamp(ts: Any) -> Optional[datetime]:
    try:
        if ts is None:
            return None
        return datetime.fromtimestamp(int(ts), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError):
        return None


def _first_item(sub: Any) -> Any:
    items = _field(sub, "items")
    data = _field(items, "data") if items is not None else None
    if not data:
        return None
    return data[0]


def _period_ts(sub: Any, name: str) -> Optional[int]:
    """
    Stripe API compatibility:
    - Older API versions: ``subscription.current_period_*`` (top-level)
    - Newer API versions: period fields live on ``subscription.items.data[*]``
    """
    top = _field(sub, name)
    if top is not None:
        try:
            return int(top)
        except (TypeError, ValueError):
            pass

    items = _field(sub, "items")
    data = _field(items, "data") if items is not None else None
    values: List[int] = []
    for it in (data or []):
        v = _field(it, name)
        if v is not None:
            try:
                values.append(int(v))
            except (TypeError, ValueError):
                continue
    if not values:
        return None
    return min(values) if name == "current_period_start" else max(values)


def _parse_subjects(raw: Any) -> List[str]:
    if raw is None or raw == "":
        return list(CHECKOUT_DEFAULTS["subjects"])
    if isinstance(raw, list):
        parsed = raw
    else:
        try:
            parsed = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning(f"Unparseable subjects metadata {raw!r}; using defaults")
            return list(CHECKOUT_DEFAULTS["subjects"])
    if not isinstance(parsed, list):
        return list(CHECKOUT_DEFAULTS["subjects"])
    # An empty list from the form means "not chosen", same as absent.
    subjects = normalize_subjects(parsed)
    if parsed and len(subjects) < len(parsed):
        logger.warning(f"Dropped unknown or repeated subjects from metadata {parsed!r}; kept {subjects}")
    return subjects


def parse_checkout_metadata(md: Dict[str, Any]) -> CheckoutMetadata:
    def _text(key: str, default: str) -> str:
        value = md.get(key)
        value = str(value).strip() if value is not None else ""
        return value or default

    return CheckoutMetadata(
        plan_tier=normalize_tier(md.get("planTier")),
        first_name=_text("firstName", CHECKOUT_DEFAULTS["first_name"]),
        last_name=_text("lastName", CHECKOUT_DEFAULTS["last_name"]),
        year_group=normalize_year_group(md.get("yearGroup")),
        subjects=_parse_subjects(md.get("subjects")),
        plan_id=_str_or_none(md.get("planId")),
    )


# --- per-kind parsers -------------------------------------------------------

def _parse_checkout(event_id: str, obj: Any) -> CheckoutCompleted:
    raw_md = _field(obj, "metadata")
    md = _as_dict(raw_md)

    email = _str_or_none(_field(obj, "customer_email"))
    if not email:
        email = _str_or_none(_field(_field(obj, "customer_details"), "email"))

    return CheckoutCompleted(
        event_id=event_id,
        customer_email=email.lower() if email else None,
        customer_id=_str_or_none(_field(obj, "customer")),
        subscription_id=_str_or_none(_field(obj, "subscription")),
        metadata=parse_checkout_metadata(md),
        has_metadata=raw_md is not None,
    )


def _parse_subscription_updated(event_id: str, obj: Any) -> SubscriptionUpdated:
    first = _first_item(obj)
    price = _field(first, "price") if first is not None else None
    return SubscriptionUpdated(
        event_id=event_id,
        subscription_id=_str_or_none(_field(obj, "id")) or "",
        customer_id=_str_or_none(_field(obj, "customer")),
        provider_status=_str_or_none(_field(obj, "status")),
        price_id=_str_or_none(_field(price, "id")) if price is not None else None,
        current_period_start=_timestamp(_period_ts(obj, "current_period_start")),
        current_period_end=_timestamp(_period_ts(obj, "current_period_end")),
    )


def _parse_subscription_deleted(event_id: str, obj: Any) -> SubscriptionDeleted:
    return SubscriptionDeleted(
        event_id=event_id,
        subscription_id=_str_or_none(_field(obj, "id")) or "",
        customer_id=_str_or_none(_field(obj, "customer")),
    )


def _invoice_subscription_id(invoice: Any) -> Optional[str]:
    # Older API versions: invoice.subscription; newer: invoice.parent.subscription_details.subscription
    direct = _str_or_none(_field(invoice, "subscription"))
    if direct:
        return direct
    parent = _field(invoice, "parent")
    details = _field(parent, "subscription_details") if parent is not None else None
    return _str_or_none(_field(details, "subscription")) if details is not None else None


def _parse_invoice_failed(event_id: str, obj: Any) -> InvoicePaymentFailed:
    return InvoicePaymentFailed(
        event_id=event_id,
        invoice_id=_str_or_none(_field(obj, "id")),
        subscription_id=_invoice_subscription_id(obj),
    )


_PARSERS = {
    EventKind.CHECKOUT_COMPLETED.value: _parse_checkout,
    EventKind.SUBSCRIPTION_UPDATED.value: _parse_subscription_updated,
    EventKind.SUBSCRIPTION_DELETED.value: _parse_subscription_deleted,
    EventKind.INVOICE_PAYMENT_FAILED.value: _parse_invoice_failed,
}


def parse_event(event: Any) -> BillingEvent:
    """Turn a verified Stripe event into its typed variant."""
    event_id = _str_or_none(_field(event, "id")) or ""
    event_type = _str_or_none(_field(event, "type")) or ""

    parser = _PARSERS.get(event_type)
    if parser is None:
        return UnknownEvent(event_id=event_id, event_type=event_type or "unknown")

    obj = _field(_field(event, "data"), "object")
    return parser(event_id, obj)
