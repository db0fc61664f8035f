from datetime import datetime, timedelta, timezone

import pytest
from fastapi import HTTPException

import berea.invitation_routes as inv_mod


NOW = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)


def _invitation(status="pending", expires_in_days=3):
    return {
        "id": "i1",
        "circle_id": "c1",
        "status": status,
        "expires_at": NOW + timedelta(days=expires_in_days),
        "invited_by": "owner",
    }


def test_pending_invitation_passes():
    invitation = _invitation()
    assert inv_mod.check_invitation(invitation, now=NOW) is invitation


def test_missing_invitation_is_404():
    with pytest.raises(HTTPException) as exc:
        inv_mod.check_invitation(None, now=NOW)
    assert exc.value.status_code == 404


@pytest.mark.parametrize("status", ["pending", "accepted", "declined"])
def test_expired_invitation_is_410_regardless_of_status(status):
    with pytest.raises(HTTPException) as exc:
        inv_mod.check_invitation(_invitation(status=status, expires_in_days=-1), now=NOW)
    assert exc.value.status_code == 410
    assert exc.value.detail["error"] == "expired"


def test_answered_invitation_is_invalid_status():
    with pytest.raises(HTTPException) as exc:
        inv_mod.check_invitation(_invitation(status="accepted"), now=NOW)
    assert exc.value.status_code == 410
    assert exc.value.detail["error"] == "invalid_status"


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
    def __init__(self, cursor):
        self._cursor = cursor
        self.commits = 0

    def cursor(self, cursor_factory=None):
        return self._cursor

    def commit(self):
        self.commits += 1


def test_accept_when_already_member_marks_accepted(monkeypatch):
    cur = FakeCursor()
    conn = FakeConn(cur)
    monkeypatch.setattr(inv_mod, "get_invitation", lambda _conn, _token: _invitation(expires_in_days=3650))
    monkeypatch.setattr(inv_mod, "verify_circle_member", lambda *_args: {"role": "member"})
    body = inv_mod.invitations_accept("tok", current_user={"user_id": "u1"}, conn=conn)
    assert body["already_member"] is True
    assert any("status = %s" in q and p[0] == "accepted" for q, p in cur.queries)
    assert not any(q.startswith("INSERT") for q, _ in cur.queries)
    assert conn.commits == 1


def test_accept_full_circle_is_410(monkeypatch):
    conn = FakeConn(FakeCursor())
    monkeypatch.setattr(inv_mod, "get_invitation", lambda _conn, _token: _invitation(expires_in_days=3650))
    monkeypatch.setattr(inv_mod, "verify_circle_member", lambda *_args: None)
    monkeypatch.setattr(inv_mod, "is_circle_full", lambda *_args: True)
    with pytest.raises(HTTPException) as exc:
        inv_mod.invitations_accept("tok", current_user={"user_id": "u1"}, conn=conn)
    assert exc.value.status_code == 410
    assert exc.value.detail["error"] == "circle_full"
