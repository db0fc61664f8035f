import asyncio
import inspect
from datetime import datetime, timezone

import pytest
from fastapi import HTTPException

import berea.billing as billing_mod
import berea.billing_routes as routes_mod


class FakeCursor:
    def __init__(self):
        self.queries = []

    def execute(self, query, params=None):
        self.queries.append((" ".join(str(query).split()), params))

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False


class FakeConn:
    def __init__(self, cursor=None):
        self._cursor = cursor or FakeCursor()
        self.commits = 0

    def cursor(self, cursor_factory=None):
        return self._cursor

    def commit(self):
        self.commits += 1

    def rollback(self):
        return None


class FakeRequest:
    def __init__(self, headers, body=b"{}"):
        self.headers = headers
        self._body = body

    async def body(self):
        return self._body


def test_billing_period_is_calendar_month():
    now = datetime(2025, 12, 18, 23, 59, tzinfo=timezone.utc)
    assert billing_mod.get_billing_period_start(now) == datetime(2025, 12, 1, tzinfo=timezone.utc)
    assert billing_mod.get_billing_period_end(now) == datetime(2026, 1, 1, tzinfo=timezone.utc)


def test_usage_limit_by_plan():
    assert billing_mod.get_usage_limit(False) == billing_mod.FREE_INSIGHT_LIMIT
    assert billing_mod.get_usage_limit(True) == billing_mod.PAID_INSIGHT_LIMIT


def test_enforce_usage_limit_raises_429(monkeypatch):
    monkeypatch.setattr(billing_mod, "get_subscription_status", lambda _conn, _uid: {"is_active": False})
    monkeypatch.setattr(billing_mod, "get_usage_count", lambda *_args: billing_mod.FREE_INSIGHT_LIMIT)
    with pytest.raises(HTTPException) as exc:
        billing_mod.enforce_usage_limit(None, "u1")
    assert exc.value.status_code == 429
    assert exc.value.detail["error"] == "usage_limit_exceeded"


def test_enforce_usage_limit_allows_paid_users(monkeypatch):
    monkeypatch.setattr(billing_mod, "get_subscription_status", lambda _conn, _uid: {"is_active": True})
    monkeypatch.setattr(billing_mod, "get_usage_count", lambda *_args: billing_mod.FREE_INSIGHT_LIMIT)
    result = billing_mod.enforce_usage_limit(None, "u1")
    assert result["limit"] == billing_mod.PAID_INSIGHT_LIMIT


def test_upsert_subscription_resolves_user_from_metadata():
    cur = FakeCursor()
    subscription = {
        "id": "sub_1",
        "customer": "cus_1",
        "status": "active",
        "current_period_end": 1767225600,
        "cancel_at_period_end": False,
        "metadata": {"clerkUserId": "user_9"},
        "items": {"data": [{"price": {"id": "price_plus"}}]},
    }
    user_id = billing_mod.upsert_subscription_from_stripe(FakeConn(cur), subscription)
    assert user_id == "user_9"
    params = cur.queries[0][1]
    assert params[:5] == ("user_9", "cus_1", "sub_1", "active", "price_plus")
    assert params[5] == datetime(2026, 1, 1, tzinfo=timezone.utc)


def test_upsert_subscription_without_owner_is_skipped(monkeypatch):
    monkeypatch.setattr(billing_mod, "find_user_by_customer", lambda _conn, _cid: None)
    assert billing_mod.upsert_subscription_from_stripe(FakeConn(), {"customer": "cus_x"}) is None


def test_webhook_requires_signature(monkeypatch):
    monkeypatch.setattr(routes_mod, "STRIPE_WEBHOOK_SECRET", "whsec_test")
    with pytest.raises(HTTPException) as exc:
        routes_mod.webhook(FakeRequest({}), payload=b"{}", conn=FakeConn())
    assert exc.value.detail["error"] == "missing_signature"


def test_webhook_rejects_bad_signature(monkeypatch):
    monkeypatch.setattr(routes_mod, "STRIPE_WEBHOOK_SECRET", "whsec_test")

    def bad_event(*_args):
        raise ValueError("bad payload")

    monkeypatch.setattr(routes_mod.stripe.Webhook, "construct_event", bad_event)
    with pytest.raises(HTTPException) as exc:
        routes_mod.webhook(FakeRequest({"stripe-signature": "t=1,v1=x"}), payload=b"{}", conn=FakeConn())
    assert exc.value.status_code == 400
    assert exc.value.detail["error"] == "invalid_signature"


def test_webhook_syncs_subscription_updates(monkeypatch):
    monkeypatch.setattr(routes_mod, "STRIPE_WEBHOOK_SECRET", "whsec_test")
    event = {
        "id": "evt_1",
        "type": "customer.subscription.updated",
        "data": {"object": {"id": "sub_1", "status": "past_due"}},
    }
    monkeypatch.setattr(routes_mod.stripe.Webhook, "construct_event", lambda *_args: event)
    seen = []
    monkeypatch.setattr(
        routes_mod,
        "upsert_subscription_from_stripe",
        lambda _conn, sub, hint=None: seen.append(sub["status"]) or "u1",
    )
    conn = FakeConn()
    body = routes_mod.webhook(FakeRequest({"stripe-signature": "sig"}), payload=b"{}", conn=conn)
    assert body == {"received": True}
    assert seen == ["past_due"]
    assert conn.commits == 1


def test_mock_toggle_disabled_in_production(monkeypatch):
    monkeypatch.setattr(routes_mod, "APP_ENV", "production")
    with pytest.raises(HTTPException) as exc:
        routes_mod.mock_toggle(current_user={"user_id": "u1"}, conn=FakeConn())
    assert exc.value.status_code == 403


def test_mock_toggle_downgrades_active_user(monkeypatch):
    monkeypatch.setattr(routes_mod, "APP_ENV", "development")
    monkeypatch.setattr(routes_mod, "get_subscription_status", lambda _conn, _uid: {"is_active": True})
    cur = FakeCursor()
    body = routes_mod.mock_toggle(current_user={"user_id": "u1"}, conn=FakeConn(cur))
    assert body["plan"] == "free"
    assert cur.queries[0][0].startswith("DELETE FROM user_subscription")


def test_generation_features_exempt_subscribers(monkeypatch):
    monkeypatch.setattr(billing_mod, "get_subscription_status", lambda _conn, _uid: {"is_active": True})
    monkeypatch.setattr(billing_mod, "get_usage_count", lambda *_args: billing_mod.PAID_INSIGHT_LIMIT + 5)
    with pytest.raises(HTTPException):
        billing_mod.enforce_usage_limit(None, "u1")
    usage = billing_mod.enforce_usage_limit(None, "u1", exempt_subscribers=True)
    assert usage["used"] == billing_mod.PAID_INSIGHT_LIMIT + 5


def test_exemption_does_not_cover_free_users(monkeypatch):
    monkeypatch.setattr(billing_mod, "get_subscription_status", lambda _conn, _uid: {"is_active": False})
    monkeypatch.setattr(billing_mod, "get_usage_count", lambda *_args: billing_mod.FREE_INSIGHT_LIMIT)
    with pytest.raises(HTTPException) as exc:
        billing_mod.enforce_usage_limit(None, "u1", exempt_subscribers=True)
    assert exc.value.status_code == 429


def test_raw_body_dependency_reads_request():
    request = FakeRequest({"stripe-signature": "sig"}, body=b'{"id": "evt_1"}')
    assert asyncio.run(routes_mod.read_raw_body(request)) == b'{"id": "evt_1"}'


def test_webhook_handler_is_sync():
    assert not inspect.iscoroutinefunction(routes_mod.webhook)
