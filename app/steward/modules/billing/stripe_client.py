from __future__ import annotations

import hashlib
import hmac
import json
import time
import urllib.error
import urllib.parse
import urllib.request
import uuid
from dataclasses import dataclass
from typing import Any

TRIAL_PERIOD_DAYS = 14
SIGNATURE_TOLERANCE_SECONDS = 300


class StripeError(RuntimeError):
    pass


class StripeRateLimited(StripeError):
    pass


class StripeSignatureError(StripeError):
    pass


def _flatten(params: dict[str, Any], prefix: str = "") -> list[tuple[str, str]]:
    """
    Stripe form encoding: {"metadata": {"church_id": 1}} -> metadata[church_id]=1,
    {"line_items": [{"price": "p"}]} -> line_items[0][price]=p.
    """
    out: list[tuple[str, str]] = []
    for k, v in params.items():
        key = f"{prefix}[{k}]" if prefix else str(k)
        if v is None:
            continue
        if isinstance(v, dict):
            out.extend(_flatten(v, key))
        elif isinstance(v, (list, tuple)):
            for i, item in enumerate(v):
                if isinstance(item, dict):
                    out.extend(_flatten(item, f"{key}[{i}]"))
                else:
                    out.append((f"{key}[{i}]", str(item)))
        elif isinstance(v, bool):
            out.append((key, "true" if v else "false"))
        else:
            out.append((key, str(v)))
    return out


@dataclass(frozen=True)
class StripeClient:
    secret_key: str
    base_url: str = "https://api.stripe.com/v1"
    timeout_seconds: int = 30

    def request_json(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        retries: int = 3,
    ) -> dict[str, Any]:
        url = self.base_url.rstrip("/") + path
        data = None
        if params and method == "GET":
            url += "?" + urllib.parse.urlencode(_flatten(params))
        elif params:
            data = urllib.parse.urlencode(_flatten(params)).encode("utf-8")
        # Reused across retries of this call.
        idempotency_key = uuid.uuid4().hex if method == "POST" else None

        last_err: Exception | None = None
        for attempt in range(retries + 1):
            try:
                req = urllib.request.Request(url, data=data, method=method)
                req.add_header("Authorization", f"Bearer {self.secret_key}")
                req.add_header("Accept", "application/json")
                if idempotency_key:
                    req.add_header("Idempotency-Key", idempotency_key)
                if data is not None:
                    req.add_header("Content-Type", "application/x-www-form-urlencoded")
                with urllib.request.urlopen(req, timeout=self.timeout_seconds) as resp:
                    raw = resp.read()
                    try:
                        return json.loads(raw.decode("utf-8"))
                    except ValueError as e:
                        raise StripeError(f"Invalid JSON from Stripe ({path})") from e
            except urllib.error.HTTPError as e:
                if e.code == 429:
                    time.sleep(min(2 * (attempt + 1), 10))
                    last_err = StripeRateLimited("Rate limited (429)")
                    continue
                try:
                    body = e.read().decode("utf-8", errors="ignore")
                except OSError:
                    body = ""
                raise StripeError(f"HTTP {e.code} from Stripe: {body[:300]}") from e
            except (urllib.error.URLError, TimeoutError, ConnectionError) as e:
                last_err = e
                time.sleep(min(1 * (attempt + 1), 5))
                continue
        raise StripeError(f"Stripe request failed after retries: {last_err}")

    def create_customer(self, *, email: str, name: str, church_id: int | None = None) -> dict[str, Any]:
        params: dict[str, Any] = {"email": email, "name": name}
        if church_id is not None:
            params["metadata"] = {"church_id": church_id}
        return self.request_json("POST", "/customers", params=params)

    def create_checkout_session(
        self,
        *,
        customer_id: str,
        price_id: str,
        church_id: int,
        plan: str,
        success_url: str,
        cancel_url: str,
    ) -> dict[str, Any]:
        return self.request_json(
            "POST",
            "/checkout/sessions",
            params={
                "mode": "subscription",
                "customer": customer_id,
                "line_items": [{"price": price_id, "quantity": 1}],
                "success_url": success_url,
                "cancel_url": cancel_url,
                "metadata": {"church_id": church_id, "plan": plan},
                "subscription_data": {
                    "trial_period_days": TRIAL_PERIOD_DAYS,
                    "metadata": {"church_id": church_id, "plan": plan},
                },
            },
        )

    def get_subscription(self, subscription_id: str) -> dict[str, Any]:
        return self.request_json("GET", f"/subscriptions/{urllib.parse.quote(subscription_id)}")

    def cancel_subscription(self, subscription_id: str) -> dict[str, Any]:
        return self.request_json("DELETE", f"/subscriptions/{urllib.parse.quote(subscription_id)}")

    def update_subscription_plan(self, subscription_id: str, *, new_price_id: str) -> dict[str, Any]:
        sub = self.get_subscription(subscription_id)
        items = ((sub.get("items") or {}).get("data")) or []
        if not items:
            raise StripeError(f"Subscription {subscription_id} has no items")
        return self.request_json(
            "POST",
            f"/subscriptions/{urllib.parse.quote(subscription_id)}",
            params={
                "items": [{"id": items[0].get("id"), "price": new_price_id}],
                "proration_behavior": "always_invoice",
            },
        )

    def create_portal_session(self, *, customer_id: str, return_url: str) -> dict[str, Any]:
        return self.request_json(
            "POST",
            "/billing_portal/sessions",
            params={"customer": customer_id, "return_url": return_url},
        )


def verify_webhook_signature(
    payload: bytes,
    header: str,
    secret: str,
    *,
    tolerance: int = SIGNATURE_TOLERANCE_SECONDS,
    now: float | None = None,
) -> None:
    """
    Check a Stripe-Signature header ("t=...,v1=...[,v1=...]").
    Raises StripeSignatureError on a malformed header, mismatch, or stale timestamp.
    """
    timestamp: str | None = None
    signatures: list[str] = []
    for part in (header or "").split(","):
        k, sep, v = part.strip().partition("=")
        if not sep:
            continue
        if k == "t":
            timestamp = v
        elif k == "v1":
            signatures.append(v)
    if not timestamp or not signatures:
        raise StripeSignatureError("Malformed signature header")
    try:
        ts = int(timestamp)
    except ValueError as e:
        raise StripeSignatureError("Malformed signature timestamp") from e

    signed = f"{timestamp}.".encode("utf-8") + payload
    expected = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    if not any(hmac.compare_digest(expected, sig) for sig in signatures):
        raise StripeSignatureError("Signature mismatch")

    current = now if now is not None else time.time()
    if tolerance and abs(current - ts) > tolerance:
        raise StripeSignatureError("Timestamp outside tolerance")


def sign_payload(payload: bytes, secret: str, *, timestamp: int | None = None) -> str:
    """Build a Stripe-Signature header value for a payload."""
    ts = int(timestamp if timestamp is not None else time.time())
    sig = hmac.new(secret.encode("utf-8"), f"{ts}.".encode("utf-8") + payload, hashlib.sha256).hexdigest()
    return f"t={ts},v1={sig}"
