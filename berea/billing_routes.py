import os
from datetime import datetime, timedelta, timezone

import stripe
from fastapi import APIRouter, Depends, Request

from berea.billing import (
    get_billing_period_end,
    get_billing_period_start,
    get_stripe,
    get_subscription_row,
    get_subscription_status,
    get_usage_count,
    get_usage_limit,
    update_subscription_flags,
    upsert_subscription_from_stripe,
)
from berea.clerk import fetch_clerk_user, primary_email
from berea.config import APP_ENV, APP_URL
from berea.db import get_conn
from berea.deps import require_user
from berea.errors import api_error
from berea.events import log_api_event, log_billing_event
from berea.models import SubscriptionActionRequest, UsageResponse

STRIPE_PRICE_ID = os.getenv("STRIPE_PRICE_ID", "")
STRIPE_WEBHOOK_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET", "")
MOCK_PREFIX = "mock_"
HANDLED_SUBSCRIPTION_EVENTS = ("customer.subscription.updated", "customer.subscription.deleted")

router = APIRouter()


def _iso(value):
    return value.isoformat() if value else None


@router.get("/api/usage", response_model=UsageResponse)
def usage(current_user=Depends(require_user), conn=Depends(get_conn)):
    user_id = current_user["user_id"]
    subscription = get_subscription_status(conn, user_id)
    used = get_usage_count(conn, user_id)
    limit = get_usage_limit(subscription["is_active"])
    return {
        "used": used,
        "limit": limit,
        "remaining": max(limit - used, 0),
        "is_subscribed": subscription["is_active"],
    }


@router.get("/api/billing/status")
def billing_status(current_user=Depends(require_user), conn=Depends(get_conn)):
    user_id = current_user["user_id"]
    subscription = get_subscription_status(conn, user_id)
    return {
        "is_active": subscription["is_active"],
        "status": subscription["status"],
        "cancel_at_period_end": subscription["cancel_at_period_end"],
        "current_period_end": _iso(subscription["current_period_end"]),
        "usage_count": get_usage_count(conn, user_id),
        "usage_limit": get_usage_limit(subscription["is_active"]),
        "period_start": get_billing_period_start().isoformat(),
        "period_end": get_billing_period_end().isoformat(),
    }


@router.post("/api/billing/checkout")
def checkout(request: Request, current_user=Depends(require_user), conn=Depends(get_conn)):
    user_id = current_user["user_id"]
    if not STRIPE_PRICE_ID:
        raise api_error(500, "stripe_price_missing", "STRIPE_PRICE_ID is not configured")
    try:
        client = get_stripe()
    except RuntimeError as exc:
        raise api_error(500, "stripe_not_configured", str(exc))
    origin = (request.headers.get("origin") or APP_URL).rstrip("/")

    row = get_subscription_row(conn, user_id)
    customer_id = row.get("stripe_customer_id") if row else None
    if customer_id and customer_id.startswith(MOCK_PREFIX):
        customer_id = None
    try:
        if not customer_id:
            email = primary_email(fetch_clerk_user(user_id))
            customer = client.Customer.create(email=email, metadata={"clerkUserId": user_id})
            customer_id = customer["id"]
        with conn.cursor() as cur:
            cur.execute(
                """
                INSERT INTO user_subscription (user_id, stripe_customer_id, status)
                VALUES (%s, %s, 'incomplete')
                ON CONFLICT (user_id)
                DO UPDATE SET stripe_customer_id = EXCLUDED.stripe_customer_id, updated_at = now()
                """,
                (user_id, customer_id),
            )
        session = client.checkout.Session.create(
            mode="subscription",
            customer=customer_id,
            line_items=[{"price": STRIPE_PRICE_ID, "quantity": 1}],
            allow_promotion_codes=True,
            client_reference_id=user_id,
            subscription_data={"metadata": {"clerkUserId": user_id}},
            success_url=f"{origin}/billing?checkout=success",
            cancel_url=f"{origin}/billing?checkout=cancelled",
        )
    except stripe.error.StripeError as exc:
        conn.rollback()
        log_billing_event("checkout_error", {"user_id": user_id, "error": type(exc).__name__})
        raise api_error(502, "checkout_failed", "Could not start checkout.")
    conn.commit()
    log_billing_event("checkout_created", {"user_id": user_id, "session_id": session["id"]})
    return {"url": session["url"]}


async def read_raw_body(request: Request) -> bytes:
    return await request.body()


@router.post("/api/billing/webhook")
def webhook(request: Request, payload: bytes = Depends(read_raw_body), conn=Depends(get_conn)):
    if not STRIPE_WEBHOOK_SECRET:
        raise api_error(500, "webhook_secret_missing", "STRIPE_WEBHOOK_SECRET is not configured")
    signature = request.headers.get("stripe-signature")
    if not signature:
        raise api_error(400, "missing_signature", "Stripe-Signature header is required")
    try:
        event = stripe.Webhook.construct_event(payload, signature, STRIPE_WEBHOOK_SECRET)
    except (ValueError, stripe.error.SignatureVerificationError):
        log_billing_event("webhook_rejected", {"reason": "invalid_signature"})
        raise api_error(400, "invalid_signature", "Webhook signature verification failed")

    event_type = event["type"]
    obj = event["data"]["object"]
    user_id = None
    if event_type == "checkout.session.completed":
        subscription_id = obj.get("subscription")
        if subscription_id:
            subscription = get_stripe().Subscription.retrieve(subscription_id)
            user_id = upsert_subscription_from_stripe(conn, subscription, obj.get("client_reference_id"))
    elif event_type in HANDLED_SUBSCRIPTION_EVENTS:
        user_id = upsert_subscription_from_stripe(conn, obj)
    conn.commit()
    log_billing_event(
        "webhook_received",
        {"type": event_type, "event_id": event.get("id"), "user_id": user_id, "matched": bool(user_id)},
    )
    return {"received": True}


@router.post("/api/billing/subscription")
def update_subscription(
    payload: SubscriptionActionRequest,
    current_user=Depends(require_user),
    conn=Depends(get_conn),
):
    user_id = current_user["user_id"]
    if payload.action not in ("cancel", "resume"):
        raise api_error(400, "invalid_action", "action must be cancel or resume")
    row = get_subscription_row(conn, user_id)
    if not row or not row.get("stripe_subscription_id"):
        raise api_error(404, "subscription_not_found", "No subscription found")
    cancel = payload.action == "cancel"
    subscription_id = row["stripe_subscription_id"]
    if subscription_id.startswith(MOCK_PREFIX):
        period_end = row.get("current_period_end")
        subscription = {
            "status": row.get("status"),
            "cancel_at_period_end": cancel,
            "current_period_end": int(period_end.timestamp()) if period_end else None,
            "items": {"data": [{"price": {"id": row.get("price_id")}}]},
        }
    else:
        try:
            subscription = get_stripe().Subscription.modify(subscription_id, cancel_at_period_end=cancel)
        except stripe.error.StripeError as exc:
            log_billing_event("subscription_update_error", {"user_id": user_id, "error": type(exc).__name__})
            raise api_error(502, "subscription_update_failed", "Could not update the subscription.")
    result = update_subscription_flags(conn, user_id, subscription)
    conn.commit()
    log_billing_event("subscription_updated", {"user_id": user_id, "action": payload.action})
    return result


@router.post("/api/billing/mock-toggle")
def mock_toggle(current_user=Depends(require_user), conn=Depends(get_conn)):
    if APP_ENV == "production":
        raise api_error(403, "forbidden", "Mock billing is disabled in production.")
    user_id = current_user["user_id"]
    subscription = get_subscription_status(conn, user_id)
    if subscription["is_active"]:
        with conn.cursor() as cur:
            cur.execute("DELETE FROM user_subscription WHERE user_id = %s", (user_id,))
        conn.commit()
        log_api_event("billing_mock_toggle", {"user_id": user_id, "plan": "free"})
        return {"success": True, "plan": "free"}
    period_end = datetime.now(timezone.utc) + timedelta(days=30)
    with conn.cursor() as cur:
        cur.execute(
            """
            INSERT INTO user_subscription
            (user_id, stripe_customer_id, stripe_subscription_id, status, price_id,
             current_period_end, cancel_at_period_end)
            VALUES (%s, %s, %s, 'active', %s, %s, FALSE)
            ON CONFLICT (user_id)
            DO UPDATE SET
              stripe_customer_id = EXCLUDED.stripe_customer_id,
              stripe_subscription_id = EXCLUDED.stripe_subscription_id,
              status = 'active',
              price_id = EXCLUDED.price_id,
              current_period_end = EXCLUDED.current_period_end,
              cancel_at_period_end = FALSE,
              updated_at = now()
            """,
            (
                user_id,
                f"{MOCK_PREFIX}customer_{user_id}",
                f"{MOCK_PREFIX}sub_{user_id}",
                "mock_price",
                period_end,
            ),
        )
    conn.commit()
    log_api_event("billing_mock_toggle", {"user_id": user_id, "plan": "plus"})
    return {"success": True, "plan": "plus", "current_period_end": period_end.isoformat()}
