from __future__ import annotations

import json
import logging

from flask import Blueprint, current_app, g, jsonify, request

from app.steward.db import db_session
from app.steward.errors import ApiError
from app.steward.models import Church, User
from app.steward.modules.billing.service import (
    PLANS,
    create_checkout,
    create_portal,
    handle_webhook_event,
    stripe_client,
    stripe_configured,
)
from app.steward.modules.billing.stripe_client import StripeError, StripeSignatureError, verify_webhook_signature
from app.steward.rbac import require_permission
from app.steward.utils import get_json_body

logger = logging.getLogger(__name__)

bp = Blueprint("billing", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _church() -> Church:
    c = getattr(g, "church", None)
    if c is None:
        raise RuntimeError("No tenant church")
    return c


@bp.get("/stripe/plans")
def plans():
    return jsonify(
        {"plans": [{"key": p.key, "name": p.name, "monthlyPrice": p.monthly_price} for p in PLANS.values()]}
    )


@bp.post("/stripe/webhook")
def webhook():
    payload = request.get_data(cache=False)
    signature = request.headers.get("Stripe-Signature")
    if not signature:
        raise ApiError("Missing stripe-signature header")
    secret = (current_app.config.get("STRIPE_WEBHOOK_SECRET") or "").strip()
    if not secret:
        logger.error("Stripe webhook received but STRIPE_WEBHOOK_SECRET is not set")
        raise ApiError("Webhook signature verification failed")
    try:
        verify_webhook_signature(payload, signature, secret)
    except StripeSignatureError as e:
        logger.warning("Stripe webhook signature rejected: %s", e)
        raise ApiError("Webhook signature verification failed") from e

    try:
        event = json.loads(payload.decode("utf-8"))
    except ValueError as e:
        raise ApiError("Invalid webhook payload") from e
    if not isinstance(event, dict):
        raise ApiError("Invalid webhook payload")

    s = db_session()
    client = stripe_client() if stripe_configured() else None
    try:
        handle_webhook_event(s, event, client=client)
    except StripeError as e:
        s.rollback()
        logger.exception("Stripe webhook %s failed: %s", event.get("type"), e)
        raise ApiError("Webhook processing failed", status_code=500) from e
    return jsonify({"received": True})


@bp.post("/stripe/create-checkout")
@require_permission("billing.manage")
def checkout():
    plan = (get_json_body().get("plan") or "").strip().lower()
    s = db_session()
    try:
        url = create_checkout(s, _church(), plan, user=_current_user())
    except StripeError as e:
        s.rollback()
        logger.error("Checkout session failed: %s", e)
        raise ApiError("Failed to create checkout session", status_code=502) from e
    return jsonify({"url": url})


@bp.post("/stripe/portal")
@require_permission("billing.manage")
def portal():
    try:
        url = create_portal(_church())
    except StripeError as e:
        logger.error("Portal session failed: %s", e)
        raise ApiError("Failed to create portal session", status_code=502) from e
    return jsonify({"url": url})
