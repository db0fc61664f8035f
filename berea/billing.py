import os
from datetime import datetime, timezone

import stripe
from psycopg2.extras import RealDictCursor

from berea.errors import api_error

FREE_INSIGHT_LIMIT = int(os.getenv("FREE_INSIGHT_LIMIT", "10"))
PAID_INSIGHT_LIMIT = int(os.getenv("PAID_INSIGHT_LIMIT", "100"))
INSIGHT_FEATURE_KEY = "insight"
ACTIVE_STATUSES = {"active", "trialing"}

STRIPE_SECRET_KEY = os.getenv("STRIPE_SECRET_KEY", "")
STRIPE_API_VERSION = "2024-04-10"


def get_stripe():
    if not STRIPE_SECRET_KEY:
        raise RuntimeError("STRIPE_SECRET_KEY is not set")
    stripe.api_key = STRIPE_SECRET_KEY
    stripe.api_version = STRIPE_API_VERSION
    return stripe


def get_billing_period_start(now: datetime | None = None) -> datetime:
    now = now or datetime.now(timezone.utc)
    return datetime(now.year, now.month, 1, tzinfo=timezone.utc)


def get_billing_period_end(now: datetime | None = None) -> datetime:
    start = get_billing_period_start(now)
    if start.month == 12:
        return datetime(start.year + 1, 1, 1, tzinfo=timezone.utc)
    return datetime(start.year, start.month + 1, 1, tzinfo=timezone.utc)


def get_subscription_row(conn, user_id: str) -> dict | None:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT user_id, stripe_customer_id, stripe_subscription_id, status, price_id,
                   current_period_end, cancel_at_period_end
            FROM user_subscription
            WHERE user_id = %s
            """,
            (user_id,),
        )
        return cur.fetchone()


def get_subscription_status(conn, user_id: str) -> dict:
    row = get_subscription_row(conn, user_id)
    status = row.get("status") if row else None
    return {
        "is_active": status in ACTIVE_STATUSES,
        "status": status,
        "cancel_at_period_end": bool(row.get("cancel_at_period_end")) if row else False,
        "current_period_end": row.get("current_period_end") if row else None,
    }


def get_usage_count(conn, user_id: str, feature: str = INSIGHT_FEATURE_KEY) -> int:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT count
            FROM usage_counter
            WHERE user_id = %s AND feature = %s AND period_start = %s
            """,
            (user_id, feature, get_billing_period_start()),
        )
        row = cur.fetchone()
    return int(row["count"]) if row else 0


def increment_usage(conn, user_id: str, feature: str = INSIGHT_FEATURE_KEY) -> int:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            INSERT INTO usage_counter (user_id, feature, period_start, count)
            VALUES (%s, %s, %s, 1)
            ON CONFLICT (user_id, feature, period_start)
            DO UPDATE SET count = usage_counter.count + 1, updated_at = now()
            RETURNING count
            """,
            (user_id, feature, get_billing_period_start()),
        )
        row = cur.fetchone()
    return int(row["count"]) if row else 0


def get_usage_limit(is_active: bool) -> int:
    return PAID_INSIGHT_LIMIT if is_active else FREE_INSIGHT_LIMIT


def enforce_usage_limit(conn, user_id: str, exempt_subscribers: bool = False) -> dict:
    """Raise 429 when the monthly insight allowance is used up.

    With ``exempt_subscribers`` an active subscription is never blocked. Chat
    and the dashboard hold subscribers to the paid limit instead.
    """
    subscription = get_subscription_status(conn, user_id)
    usage_count = get_usage_count(conn, user_id, INSIGHT_FEATURE_KEY)
    usage_limit = get_usage_limit(subscription["is_active"])
    blocked = usage_count >= usage_limit
    if exempt_subscribers and subscription["is_active"]:
        blocked = False
    if blocked:
        raise api_error(
            429,
            "usage_limit_exceeded",
            f"You've reached your monthly limit of {usage_limit} AI requests. Upgrade to continue.",
        )
    return {
        "subscription": subscription,
        "used": usage_count,
        "limit": usage_limit,
    }


def _period_end_from_stripe(subscription) -> datetime | None:
    ts = subscription.get("current_period_end")
    if not ts:
        return None
    return datetime.fromtimestamp(int(ts), tz=timezone.utc)


def _price_id_from_stripe(subscription) -> str | None:
    items = subscription.get("items") or {}
    data = items.get("data") or []
    if not data:
        return None
    price = data[0].get("price") or {}
    return price.get("id")


def _customer_id_from_stripe(subscription) -> str | None:
    customer = subscription.get("customer")
    if isinstance(customer, str):
        return customer
    if customer:
        return customer.get("id")
    return None


def find_user_by_customer(conn, customer_id: str) -> str | None:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            "SELECT user_id FROM user_subscription WHERE stripe_customer_id = %s",
            (customer_id,),
        )
        row = cur.fetchone()
    return row["user_id"] if row else None


def upsert_subscription_from_stripe(conn, subscription, user_id_hint: str | None = None) -> str | None:
    """Mirror a Stripe subscription object into user_subscription.

    The owning user comes from the hint (checkout client_reference_id), the
    subscription metadata, or an existing row for the Stripe customer, in that
    order. Returns the user id, or ``None`` when no owner can be resolved.
    """
    customer_id = _customer_id_from_stripe(subscription)
    metadata = subscription.get("metadata") or {}
    user_id = user_id_hint or metadata.get("clerkUserId") or metadata.get("user_id")
    if not user_id and customer_id:
        user_id = find_user_by_customer(conn, customer_id)
    if not user_id:
        return None
    with conn.cursor() as cur:
        cur.execute(
            """
            INSERT INTO user_subscription
            (user_id, stripe_customer_id, stripe_subscription_id, status, price_id,
             current_period_end, cancel_at_period_end)
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (user_id)
            DO UPDATE SET
              stripe_customer_id = COALESCE(EXCLUDED.stripe_customer_id, user_subscription.stripe_customer_id),
              stripe_subscription_id = EXCLUDED.stripe_subscription_id,
              status = EXCLUDED.status,
              price_id = EXCLUDED.price_id,
              current_period_end = EXCLUDED.current_period_end,
              cancel_at_period_end = EXCLUDED.cancel_at_period_end,
              updated_at = now()
            """,
            (
                user_id,
                customer_id,
                subscription.get("id"),
                subscription.get("status"),
                _price_id_from_stripe(subscription),
                _period_end_from_stripe(subscription),
                bool(subscription.get("cancel_at_period_end")),
            ),
        )
    return user_id


def update_subscription_flags(conn, user_id: str, subscription) -> dict:
    period_end = _period_end_from_stripe(subscription)
    with conn.cursor() as cur:
        cur.execute(
            """
            UPDATE user_subscription
            SET status = %s, price_id = %s, current_period_end = %s,
                cancel_at_period_end = %s, updated_at = now()
            WHERE user_id = %s
            """,
            (
                subscription.get("status"),
                _price_id_from_stripe(subscription),
                period_end,
                bool(subscription.get("cancel_at_period_end")),
                user_id,
            ),
        )
    return {
        "status": subscription.get("status"),
        "cancel_at_period_end": bool(subscription.get("cancel_at_period_end")),
        "current_period_end": period_end.isoformat() if period_end else None,
    }
