import pytest
from fastapi import HTTPException

import berea.circle_routes as routes_mod
from berea.models import CircleCreateRequest, CircleUpdateRequest, InviteRequest, MemberUpdateRequest


class FakeCursor:
    def __init__(self, fetchone_results=None):
        self.queries = []
        self.fetchone_results = list(fetchone_results or [])

    def execute(self, query, params=None):
        self.queries.append((" ".join(str(query).split()), params))

    def fetchone(self):
        return self.fetchone_results.pop(0) if self.fetchone_results else None

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


def _member(role="member", **flags):
    row = {"role": role, "share_progress": False, "share_reflections": False, "share_verses": False, "share_prayers": False}
    row.update(flags)
    return row


@pytest.fixture
def members(monkeypatch):
    roster = {"owner": _member("owner"), "admin": _member("admin"), "alice": _member(), "bob": _member()}

    def lookup(_conn, _circle_id, user_id):
        return roster.get(user_id)

    def require(_conn, _circle_id, user_id):
        member = roster.get(user_id)
        if not member:
            raise HTTPException(status_code=403, detail={"error": "forbidden"})
        return member

    def admin(_conn, _circle_id, user_id):
        member = roster.get(user_id)
        return member if member and member["role"] in ("owner", "admin") else None

    monkeypatch.setattr(routes_mod, "verify_circle_member", lookup)
    monkeypatch.setattr(routes_mod, "require_circle_member", require)
    monkeypatch.setattr(routes_mod, "verify_circle_admin", admin)
    return roster


def test_circle_name_is_required_and_bounded():
    with pytest.raises(HTTPException):
        routes_mod._clean_name("   ")
    with pytest.raises(HTTPException):
        routes_mod._clean_name("x" * 101)
    assert routes_mod._clean_name("  Tuesday Group ") == "Tuesday Group"


@pytest.mark.parametrize("value,expected", [(None, 8), (2, 2), (5, 5), (8, 8), (1, 8), (9, 8), ("4", 8)])
def test_max_members_defaults_outside_range(value, expected):
    assert routes_mod._normalize_max_members(value) == expected


def test_create_circle_adds_owner_membership():
    cur = FakeCursor(fetchone_results=[{"id": "c1", "name": "Tuesday Group", "max_members": 4}])
    conn = FakeConn(cur)
    body = routes_mod.circles_create(
        CircleCreateRequest(name="Tuesday Group", max_members=4),
        current_user={"user_id": "owner"},
        conn=conn,
    )
    assert body["circle"]["member_count"] == 1
    assert "'owner', TRUE" in cur.queries[1][0]
    assert conn.commits == 1


def test_only_owner_updates_circle(monkeypatch):
    monkeypatch.setattr(routes_mod, "verify_circle_owner", lambda *_args: False)
    with pytest.raises(HTTPException) as exc:
        routes_mod.circles_update("c1", CircleUpdateRequest(name="New"), current_user={"user_id": "alice"}, conn=FakeConn())
    assert exc.value.status_code == 403


def test_update_requires_fields(monkeypatch):
    monkeypatch.setattr(routes_mod, "verify_circle_owner", lambda *_args: True)
    with pytest.raises(HTTPException) as exc:
        routes_mod.circles_update("c1", CircleUpdateRequest(), current_user={"user_id": "owner"}, conn=FakeConn())
    assert exc.value.status_code == 400


def test_members_cannot_change_roles(members):
    with pytest.raises(HTTPException) as exc:
        routes_mod.members_update(
            "c1", "bob", MemberUpdateRequest(role="admin"), current_user={"user_id": "alice"}, conn=FakeConn()
        )
    assert exc.value.status_code == 403


def test_owner_role_is_fixed(members):
    with pytest.raises(HTTPException) as exc:
        routes_mod.members_update(
            "c1", "owner", MemberUpdateRequest(role="member"), current_user={"user_id": "admin"}, conn=FakeConn()
        )
    assert exc.value.status_code == 403


def test_privacy_flags_are_self_service(members):
    with pytest.raises(HTTPException) as exc:
        routes_mod.members_update(
            "c1", "bob", MemberUpdateRequest(share_prayers=True), current_user={"user_id": "admin"}, conn=FakeConn()
        )
    assert exc.value.status_code == 403

    cur = FakeCursor(fetchone_results=[{"user_id": "bob", "share_prayers": True}])
    body = routes_mod.members_update(
        "c1", "bob", MemberUpdateRequest(share_prayers=True), current_user={"user_id": "bob"}, conn=FakeConn(cur)
    )
    assert body["member"]["share_prayers"] is True
    assert cur.queries[0][1] == (True, "c1", "bob")


def test_admin_assigns_roles(members):
    cur = FakeCursor(fetchone_results=[{"user_id": "alice", "role": "admin"}])
    routes_mod.members_update(
        "c1", "alice", MemberUpdateRequest(role="admin"), current_user={"user_id": "admin"}, conn=FakeConn(cur)
    )
    assert "role = %s" in cur.queries[0][0]
    with pytest.raises(HTTPException) as exc:
        routes_mod.members_update(
            "c1", "alice", MemberUpdateRequest(role="owner"), current_user={"user_id": "admin"}, conn=FakeConn()
        )
    assert exc.value.status_code == 400


def test_remove_member_rules(members):
    with pytest.raises(HTTPException) as exc:
        routes_mod.members_remove("c1", "bob", current_user={"user_id": "alice"}, conn=FakeConn())
    assert exc.value.status_code == 403
    with pytest.raises(HTTPException) as exc:
        routes_mod.members_remove("c1", "owner", current_user={"user_id": "owner"}, conn=FakeConn())
    assert exc.value.status_code == 403

    conn = FakeConn()
    assert routes_mod.members_remove("c1", "alice", current_user={"user_id": "alice"}, conn=conn) == {"success": True}
    assert conn.commits == 1


def test_invite_rejects_full_circle(members, monkeypatch):
    monkeypatch.setattr(routes_mod, "is_circle_full", lambda *_args: True)
    with pytest.raises(HTTPException) as exc:
        routes_mod.invite("c1", InviteRequest(), current_user={"user_id": "alice"}, conn=FakeConn())
    assert exc.value.status_code == 409
    assert exc.value.detail["error"] == "circle_full"


def test_invite_builds_link(members, monkeypatch):
    monkeypatch.setattr(routes_mod, "is_circle_full", lambda *_args: False)
    monkeypatch.setattr(routes_mod, "APP_URL", "https://app.example")
    cur = FakeCursor(fetchone_results=[{"id": "i1", "token": "abc", "status": "pending"}])
    body = routes_mod.invite("c1", InviteRequest(email="friend@example.com"), current_user={"user_id": "alice"}, conn=FakeConn(cur))
    token = cur.queries[0][1][2]
    assert len(token) == 64
    assert body["invite_url"] == f"https://app.example/invitations/{token}"

    with pytest.raises(HTTPException) as exc:
        routes_mod.invite("c1", InviteRequest(email="not-an-email"), current_user={"user_id": "alice"}, conn=FakeConn())
    assert exc.value.status_code == 400
