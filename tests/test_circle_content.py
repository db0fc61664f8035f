import pytest
from fastapi import HTTPException

import berea.circle_reflection_routes as reflection_mod
import berea.circle_sharing_routes as sharing_mod
from berea.models import (
    CirclePrayerCreateRequest,
    CirclePrayerUpdateRequest,
    CircleVerseDeleteRequest,
    CommentCreateRequest,
    EncouragementResponseRequest,
    ReactionRequest,
    ReflectionCreateRequest,
)


class FakeCursor:
    def __init__(self, rows=None, fetchall_results=None):
        self.rows = list(rows or [])
        self.fetchall_results = list(fetchall_results or [])
        self.queries = []

    def execute(self, query, params=None):
        self.queries.append((" ".join(str(query).split()), params))

    def fetchone(self):
        return self.rows.pop(0) if self.rows else None

    def fetchall(self):
        return self.fetchall_results.pop(0) if self.fetchall_results else []

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


USER = {"user_id": "u1"}


def _member(**flags):
    member = {
        "role": "member",
        "share_progress": False,
        "share_reflections": False,
        "share_verses": False,
        "share_prayers": False,
    }
    member.update(flags)
    return member


def test_posting_prayer_requires_prayer_sharing(monkeypatch):
    monkeypatch.setattr(sharing_mod, "require_circle_member", lambda *_args: _member())
    with pytest.raises(HTTPException) as exc:
        sharing_mod.prayers_create("c1", CirclePrayerCreateRequest(content="Please pray"), current_user=USER, conn=FakeConn())
    assert exc.value.status_code == 403
    assert "prayer sharing" in exc.value.detail["message"]


def test_prayer_content_limit(monkeypatch):
    monkeypatch.setattr(sharing_mod, "require_circle_member", lambda *_args: _member(share_prayers=True))
    payload = CirclePrayerCreateRequest(content="x" * 1001)
    with pytest.raises(HTTPException) as exc:
        sharing_mod.prayers_create("c1", payload, current_user=USER, conn=FakeConn())
    assert exc.value.status_code == 400


def test_prayer_create_inserts_and_commits(monkeypatch):
    monkeypatch.setattr(sharing_mod, "require_circle_member", lambda *_args: _member(share_prayers=True))
    cur = FakeCursor(rows=[{"id": "p1", "user_id": "u1", "content": "Please pray", "status": "ongoing"}])
    conn = FakeConn(cur)
    body = sharing_mod.prayers_create(
        "c1", CirclePrayerCreateRequest(content="  Please pray ", source="study", day_number=3), current_user=USER, conn=conn
    )
    assert body["prayer"]["id"] == "p1"
    assert conn.commits == 1
    _sql, params = cur.queries[0]
    assert params[4] == "Please pray"
    assert params[5] == "study"


def test_only_author_may_update_prayer(monkeypatch):
    monkeypatch.setattr(sharing_mod, "require_circle_member", lambda *_args: _member())
    cur = FakeCursor(rows=[{"id": "p1", "circle_id": "c1", "user_id": "someone-else"}])
    with pytest.raises(HTTPException) as exc:
        sharing_mod.prayers_update(
            "c1", "p1", CirclePrayerUpdateRequest(status="answered"), current_user=USER, conn=FakeConn(cur)
        )
    assert exc.value.status_code == 403


def test_prayer_status_must_be_known(monkeypatch):
    monkeypatch.setattr(sharing_mod, "require_circle_member", lambda *_args: _member())
    cur = FakeCursor(rows=[{"id": "p1", "circle_id": "c1", "user_id": "u1"}])
    with pytest.raises(HTTPException) as exc:
        sharing_mod.prayers_update(
            "c1", "p1", CirclePrayerUpdateRequest(status="forgotten"), current_user=USER, conn=FakeConn(cur)
        )
    assert exc.value.status_code == 400


def test_prayer_from_other_circle_is_forbidden(monkeypatch):
    monkeypatch.setattr(sharing_mod, "require_circle_member", lambda *_args: _member())
    cur = FakeCursor(rows=[{"id": "p1", "circle_id": "c2", "user_id": "u1"}])
    with pytest.raises(HTTPException) as exc:
        sharing_mod.prayers_delete("c1", "p1", current_user=USER, conn=FakeConn(cur))
    assert exc.value.status_code == 403


def test_only_author_may_delete_verse(monkeypatch):
    monkeypatch.setattr(sharing_mod, "require_circle_member", lambda *_args: _member())
    cur = FakeCursor(rows=[{"id": "v1", "circle_id": "c1", "user_id": "someone-else"}])
    with pytest.raises(HTTPException) as exc:
        sharing_mod.verses_delete("c1", CircleVerseDeleteRequest(verse_id="v1"), current_user=USER, conn=FakeConn(cur))
    assert exc.value.status_code == 403


def test_unsupported_reaction_type(monkeypatch):
    monkeypatch.setattr(sharing_mod, "require_circle_member", lambda *_args: _member())
    cur = FakeCursor(rows=[{"circle_id": "c1", "user_id": "u1"}])
    with pytest.raises(HTTPException) as exc:
        sharing_mod.verses_react("c1", "v1", ReactionRequest(reaction_type="praying"), current_user=USER, conn=FakeConn(cur))
    assert exc.value.status_code == 400


def test_reaction_toggle_reports_state(monkeypatch):
    monkeypatch.setattr(sharing_mod, "require_circle_member", lambda *_args: _member())
    monkeypatch.setattr(sharing_mod, "toggle_reaction", lambda *_args: True)
    monkeypatch.setattr(
        sharing_mod,
        "summarize_reactions",
        lambda _conn, _table, ids, _uid: {ids[0]: {"counts": {"amen": 1}, "mine": ["amen"]}},
    )
    cur = FakeCursor(rows=[{"circle_id": "c1", "user_id": "u1"}])
    body = sharing_mod.highlights_react("c1", "h1", ReactionRequest(reaction_type="amen"), current_user=USER, conn=FakeConn(cur))
    assert body["active"] is True
    assert body["reactions"]["mine"] == ["amen"]


def test_reflection_requires_reflection_sharing(monkeypatch):
    monkeypatch.setattr(reflection_mod, "require_circle_member", lambda *_args: _member(share_verses=True))
    payload = ReflectionCreateRequest(circle_plan_id="cp1", day_number=1, content="Grace abounds")
    with pytest.raises(HTTPException) as exc:
        reflection_mod.reflections_create("c1", payload, current_user=USER, conn=FakeConn())
    assert exc.value.status_code == 403


def test_reflection_plan_must_belong_to_circle(monkeypatch):
    monkeypatch.setattr(reflection_mod, "require_circle_member", lambda *_args: _member(share_reflections=True))
    payload = ReflectionCreateRequest(circle_plan_id="cp-other", day_number=1, content="Grace abounds")
    with pytest.raises(HTTPException) as exc:
        reflection_mod.reflections_create("c1", payload, current_user=USER, conn=FakeConn(FakeCursor(rows=[None])))
    assert exc.value.status_code == 400
    assert exc.value.detail["error"] == "invalid_payload"


def test_reflection_length_limit(monkeypatch):
    monkeypatch.setattr(reflection_mod, "require_circle_member", lambda *_args: _member(share_reflections=True))
    payload = ReflectionCreateRequest(circle_plan_id="cp1", day_number=1, content="x" * 501)
    with pytest.raises(HTTPException) as exc:
        reflection_mod.reflections_create("c1", payload, current_user=USER, conn=FakeConn())
    assert exc.value.status_code == 400


def test_comment_length_limit(monkeypatch):
    monkeypatch.setattr(reflection_mod, "require_circle_member", lambda *_args: _member())
    with pytest.raises(HTTPException) as exc:
        reflection_mod.comments_create(
            "c1", "r1", CommentCreateRequest(content="y" * 201), current_user=USER, conn=FakeConn()
        )
    assert exc.value.status_code == 400


def test_custom_encouragement_response_limit(monkeypatch):
    monkeypatch.setattr(reflection_mod, "require_circle_member", lambda *_args: _member())
    payload = EncouragementResponseRequest(source="user_custom", content="z" * 501)
    with pytest.raises(HTTPException) as exc:
        reflection_mod.encouragements_respond("c1", "e1", payload, current_user=USER, conn=FakeConn())
    assert exc.value.status_code == 400


def test_encouragement_response_source_is_checked(monkeypatch):
    monkeypatch.setattr(reflection_mod, "require_circle_member", lambda *_args: _member())
    payload = EncouragementResponseRequest(source="copied", content="hello")
    with pytest.raises(HTTPException) as exc:
        reflection_mod.encouragements_respond("c1", "e1", payload, current_user=USER, conn=FakeConn())
    assert exc.value.status_code == 400


def _hidden(*_args):
    return False


def _reflection_row(user_id="someone-else"):
    return {"id": "r1", "circle_plan_id": "cp1", "user_id": user_id, "day_number": 1, "circle_id": "c1"}


def test_hidden_reflection_comments_are_not_found(monkeypatch):
    monkeypatch.setattr(reflection_mod, "require_circle_member", lambda *_args: _member())
    monkeypatch.setattr(reflection_mod, "can_view_reflections", _hidden)
    with pytest.raises(HTTPException) as exc:
        reflection_mod.comments_list("c1", "r1", current_user=USER, conn=FakeConn(FakeCursor(rows=[_reflection_row()])))
    assert exc.value.status_code == 404

    cur = FakeCursor(rows=[_reflection_row()])
    with pytest.raises(HTTPException) as exc:
        reflection_mod.comments_create("c1", "r1", CommentCreateRequest(content="Amen"), current_user=USER, conn=FakeConn(cur))
    assert exc.value.status_code == 404
    assert not any("INSERT INTO reflection_comment" in sql for sql, _params in cur.queries)


def test_hidden_reflection_cannot_be_reacted_to(monkeypatch):
    monkeypatch.setattr(reflection_mod, "require_circle_member", lambda *_args: _member())
    monkeypatch.setattr(reflection_mod, "can_view_reflections", _hidden)
    with pytest.raises(HTTPException) as exc:
        reflection_mod.reflections_react(
            "c1", "r1", ReactionRequest(reaction_type="amen"), current_user=USER, conn=FakeConn(FakeCursor(rows=[_reflection_row()]))
        )
    assert exc.value.status_code == 404


def test_visible_reflection_lists_comments(monkeypatch):
    monkeypatch.setattr(reflection_mod, "require_circle_member", lambda *_args: _member())
    monkeypatch.setattr(sharing_mod, "get_formatted_user_names", lambda ids: {uid: uid.upper() for uid in ids})
    comments = [
        {"id": "cm1", "reflection_id": "r1", "user_id": "u2", "content": "So true"},
        {"id": "cm2", "reflection_id": "r1", "user_id": "u1", "content": "Thanks"},
    ]
    cur = FakeCursor(rows=[_reflection_row(user_id="u1")], fetchall_results=[comments])
    body = reflection_mod.comments_list("c1", "r1", current_user=USER, conn=FakeConn(cur))
    assert [c["id"] for c in body["comments"]] == ["cm1", "cm2"]
    assert body["comments"][0]["user_name"] == "U2"


def test_hidden_prayer_cannot_be_supported(monkeypatch):
    monkeypatch.setattr(sharing_mod, "require_circle_member", lambda *_args: _member())
    monkeypatch.setattr(sharing_mod, "can_view_prayers", _hidden)
    cur = FakeCursor(rows=[{"id": "p1", "circle_id": "c1", "user_id": "someone-else"}])
    conn = FakeConn(cur)
    with pytest.raises(HTTPException) as exc:
        sharing_mod.prayers_support("c1", "p1", current_user=USER, conn=conn)
    assert exc.value.status_code == 404
    assert conn.commits == 0


def test_hidden_verse_and_highlight_cannot_be_reacted_to(monkeypatch):
    monkeypatch.setattr(sharing_mod, "require_circle_member", lambda *_args: _member())
    monkeypatch.setattr(sharing_mod, "can_view_verses", _hidden)
    with pytest.raises(HTTPException) as exc:
        sharing_mod.verses_react(
            "c1",
            "v1",
            ReactionRequest(reaction_type="amen"),
            current_user=USER,
            conn=FakeConn(FakeCursor(rows=[{"circle_id": "c1", "user_id": "someone-else"}])),
        )
    assert exc.value.status_code == 404
    with pytest.raises(HTTPException) as exc:
        sharing_mod.highlights_react(
            "c1",
            "h1",
            ReactionRequest(reaction_type="amen"),
            current_user=USER,
            conn=FakeConn(FakeCursor(rows=[{"circle_id": "c1", "user_id": "someone-else"}])),
        )
    assert exc.value.status_code == 404


def test_prayer_back_to_ongoing_clears_answered_at(monkeypatch):
    monkeypatch.setattr(sharing_mod, "require_circle_member", lambda *_args: _member())
    cur = FakeCursor(rows=[{"id": "p1", "circle_id": "c1", "user_id": "u1"}, {"id": "p1", "status": "ongoing"}])
    sharing_mod.prayers_update("c1", "p1", CirclePrayerUpdateRequest(status="ongoing"), current_user=USER, conn=FakeConn(cur))
    assert "answered_at = NULL" in cur.queries[-1][0]

    cur = FakeCursor(rows=[{"id": "p1", "circle_id": "c1", "user_id": "u1"}, {"id": "p1", "status": "answered"}])
    sharing_mod.prayers_update("c1", "p1", CirclePrayerUpdateRequest(status="answered"), current_user=USER, conn=FakeConn(cur))
    assert "answered_at = now()" in cur.queries[-1][0]


def test_visible_prayers_are_listed(monkeypatch):
    monkeypatch.setattr(sharing_mod, "require_circle_member", lambda *_args: _member())
    monkeypatch.setattr(sharing_mod, "get_formatted_user_names", lambda ids: {uid: "Name" for uid in ids})
    monkeypatch.setattr(
        sharing_mod, "filter_visible_prayers", lambda _conn, rows, _cid, _uid: [r for r in rows if r["user_id"] == "u1"]
    )
    rows = [
        {"id": "p1", "user_id": "u1", "content": "Mine", "support_count": 2, "supported_by_me": False},
        {"id": "p2", "user_id": "hidden", "content": "Private", "support_count": 0, "supported_by_me": False},
    ]
    body = sharing_mod.prayers_list("c1", current_user=USER, conn=FakeConn(FakeCursor(fetchall_results=[rows])))
    assert [p["id"] for p in body["prayers"]] == ["p1"]
