from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from flask import current_app
from sqlalchemy.orm import Session

from app.steward.audit import record_event
from app.steward.errors import ApiError
from app.steward.models import Church, User
from app.steward.modules.billing.models import Subscription
from app.steward.modules.billing.stripe_client import StripeClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlanInfo:
    key: str
    name: str
    monthly_price: int


PLANS = {
    "free": PlanInfo("free", "Free", 0),
    "basic": PlanInfo("basic", "Basic", 29),
    "premium": PlanInfo("premium", "Premium", 99),
}

PAID_PLANS = ("basic", "premium")


def stripe_configured() -> bool:
    return bool((current_app.config.get("STRIPE_SECRET_KEY") or "").strip())


def stripe_client() -> StripeClient:
    key = (current_app.config.get("STRIPE_SECRET_KEY") or "").strip()
    if not key:
        raise ApiError("Billing is not configured", status_code=503)
    return StripeClient(secret_key=key)


def price_id_for_plan(plan: str) -> str:
    price_ids = {
        "basic": current_app.config.get("STRIPE_PRICE_ID_BASIC") or "",
        "premium": current_app.config.get("STRIPE_PRICE_ID_PREMIUM") or "",
    }
    price_id = price_ids.get(plan, "").strip()
    if not price_id:
        raise ApiError(f"No price configured for plan: {plan}")
    return price_id


def plan_from_price_id(price_id: str | None) -> str | None:
    if not price_id:
        return None
    for plan, key in (("basic", "STRIPE_PRICE_ID_BASIC"), ("premium", "STRIPE_PRICE_ID_PREMIUM")):
        configured = (current_app.config.get(key) or "").strip()
        if configured and configured == price_id:
            return plan
    return None


def map_subscription_status(stripe_status: str | None) -> str:
    """Collapse Stripe subscription states onto the four church states."""
    if stripe_status in ("active", "trialing"):
        return "active"
    if stripe_status in ("past_due", "canceled", "unpaid"):
        return stripe_status
    return "unpaid"


def _ts(value: Any) -> datetime | None:
    if value in (None, ""):
        return None
    try:
        return datetime.utcfromtimestamp(int(value))
    except (TypeError, ValueError, OverflowError):
        return None


def _subscription_price_id(sub: dict[str, Any]) -> str | None:
    items = ((sub.get("items") or {}).get("data")) or []
    if not items:
        return None
    price = items[0].get("price") or {}
    return price.get("id") if isinstance(price, dict) else price


def _upsert_subscription(s: Session, church: Church, sub: dict[str, Any], *, plan: str) -> Subscription:
    sub_id = sub.get("id")
    row = s.query(Subscription).filter(Subscription.stripe_subscription_id == sub_id).one_or_none()
    if row is None:
        row = Subscription(
            church_id=church.id,
            stripe_subscription_id=sub_id,
            stripe_customer_id=sub.get("customer") or church.stripe_customer_id or "",
        )
        s.add(row)
    row.status = map_subscription_status(sub.get("status"))
    row.plan = plan
    row.current_period_start = _ts(sub.get("current_period_start"))
    row.current_period_end = _ts(sub.get("current_period_end"))
    row.cancel_at_period_end = bool(sub.get("cancel_at_period_end"))
    row.updated_at = datetime.utcnow()
    return row


def _handle_checkout_completed(s: Session, obj: dict[str, Any], client: StripeClient | None) -> None:
    metadata = obj.get("metadata") or {}
    church_id = metadata.get("church_id")
    subscription_id = obj.get("subscription")
    if not church_id or not subscription_id:
        logger.error("checkout.session.completed missing church_id or subscription id")
        return
    church = s.get(Church, int(church_id))
    if church is None:
        logger.error("checkout.session.completed for unknown church %s", church_id)
        return

    sub = client.get_subscription(subscription_id) if client else {"id": subscription_id}
    plan = plan_from_price_id(_subscription_price_id(sub)) or metadata.get("plan") or "basic"
    if plan not in PLANS:
        plan = "basic"

    church.stripe_customer_id = obj.get("customer") or church.stripe_customer_id
    church.stripe_subscription_id = subscription_id
    church.subscription_status = map_subscription_status(sub.get("status") or "active")
    church.subscription_plan = plan
    church.trial_ends_at = _ts(sub.get("trial_end"))
    church.updated_at = datetime.utcnow()
    _upsert_subscription(s, church, {**sub, "customer": church.stripe_customer_id}, plan=plan)
    record_event(
        s,
        actor=None,
        action="billing.checkout_completed",
        church_id=church.id,
        entity_type="Church",
        entity_id=str(church.id),
        metadata={"plan": plan, "status": church.subscription_status},
    )


def _church_for_customer(s: Session, customer_id: str | None) -> Church | None:
    if not customer_id:
        return None
    return s.query(Church).filter(Church.stripe_customer_id == customer_id).one_or_none()


def _handle_subscription_updated(s: Session, sub: dict[str, Any]) -> None:
    church = _church_for_customer(s, sub.get("customer"))
    if church is None:
        logger.error("Church not found for customer %s", sub.get("customer"))
        return
    church.subscription_status = map_subscription_status(sub.get("status"))
    plan = plan_from_price_id(_subscription_price_id(sub))
    if plan:
        church.subscription_plan = plan
    church.trial_ends_at = _ts(sub.get("trial_end"))
    church.updated_at = datetime.utcnow()
    _upsert_subscription(s, church, sub, plan=church.subscription_plan)
    record_event(
        s,
        actor=None,
        action="billing.subscription_updated",
        church_id=church.id,
        entity_type="Church",
        entity_id=str(church.id),
        metadata={"plan": church.subscription_plan, "status": church.subscription_status},
    )


def _handle_subscription_deleted(s: Session, sub: dict[str, Any]) -> None:
    church = _church_for_customer(s, sub.get("customer"))
    if church is None:
        logger.error("Church not found for customer %s", sub.get("customer"))
        return
    church.subscription_status = "canceled"
    church.updated_at = datetime.utcnow()
    row = s.query(Subscription).filter(Subscription.stripe_subscription_id == sub.get("id")).one_or_none()
    if row is not None:
        row.status = "canceled"
        row.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=None,
        action="billing.subscription_deleted",
        church_id=church.id,
        entity_type="Church",
        entity_id=str(church.id),
    )


def handle_webhook_event(s: Session, event: dict[str, Any], *, client: StripeClient | None = None) -> None:
    event_type = event.get("type")
    obj = ((event.get("data") or {}).get("object")) or {}
    if event_type == "checkout.session.completed":
        _handle_checkout_completed(s, obj, client)
    elif event_type == "customer.subscription.updated":
        _handle_subscription_updated(s, obj)
    elif event_type == "customer.subscription.deleted":
        _handle_subscription_deleted(s, obj)
    else:
        logger.info("Unhandled Stripe event type: %s", event_type)
        return
    s.commit()


def tenant_url(church: Church, path: str = "/") -> str:
    base = current_app.config.get("APP_BASE_URL") or ""
    root = (current_app.config.get("ROOT_DOMAIN") or "").strip()
    scheme = base.split("://", 1)[0] if "://" in base else "https"
    if root:
        return f"{scheme}://{church.subdomain}.{root}{path}"
    return f"{base}{path}"


def create_checkout(s: Session, church: Church, plan: str, *, user: User | None) -> str:
    if plan not in PAID_PLANS:
        raise ApiError("Plan must be basic or premium")
    client = stripe_client()
    if not church.stripe_customer_id:
        email = church.email or (user.email if user else "")
        customer = client.create_customer(email=email, name=church.name, church_id=church.id)
        church.stripe_customer_id = customer.get("id")
    session = client.create_checkout_session(
        customer_id=church.stripe_customer_id,
        price_id=price_id_for_plan(plan),
        church_id=church.id,
        plan=plan,
        success_url=tenant_url(church, "/dashboard?checkout=success"),
        cancel_url=tenant_url(church, "/setup?checkout=canceled"),
    )
    record_event(
        s,
        actor=user,
        action="billing.checkout_started",
        church_id=church.id,
        entity_type="Church",
        entity_id=str(church.id),
        metadata={"plan": plan},
    )
    s.commit()
    url = session.get("url")
    if not url:
        raise ApiError("Failed to create checkout session", status_code=502)
    return url


def create_portal(church: Church) -> str:
    if not church.stripe_customer_id:
        raise ApiError("No billing account found for this church")
    session = stripe_client().create_portal_session(
        customer_id=church.stripe_customer_id,
        return_url=tenant_url(church, "/settings"),
    )
    url = session.get("url")
    if not url:
        raise ApiError("Failed to create portal session", status_code=502)
    return url
