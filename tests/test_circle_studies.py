import pytest
from fastapi import HTTPException

import berea.circle_studies as studies_mod
import berea.circle_study_routes as routes_mod
from berea.models import CircleStudyCreateRequest, StudyIntentionRequest
from berea.study_templates import build_plan_from_template


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
        self.rollbacks = 0

    def cursor(self, cursor_factory=None):
        return self._cursor

    def commit(self):
        self.commits += 1

    def rollback(self):
        self.rollbacks += 1


def _canonical_days(duration):
    return build_plan_from_template("template_gospel", duration)["days"]


@pytest.mark.parametrize("duration", [7, 21])
def test_join_creates_exactly_duration_days(monkeypatch, duration):
    captured = {}

    def fake_insert(_conn, user_id, plan, plan_duration, source):
        captured.update({"user_id": user_id, "days": plan["days"], "duration": plan_duration, "source": source})
        return "sp1"

    monkeypatch.setattr(studies_mod, "get_circle_study_days", lambda _conn, _id: _canonical_days(duration))
    monkeypatch.setattr(studies_mod, "insert_plan", fake_insert)
    monkeypatch.setattr(studies_mod, "_link_member_plan", lambda *_args: None)

    circle_plan = {
        "id": "cp1",
        "title": "Gospel",
        "description": "d",
        "duration": duration,
        "template_source": "template_gospel",
    }
    study_plan_id = studies_mod.join_circle_study(FakeConn(), circle_plan, "u2")

    assert study_plan_id == "sp1"
    assert len(captured["days"]) == duration
    assert [d["day_number"] for d in captured["days"]] == list(range(1, duration + 1))
    assert captured["source"] == "circle_template_gospel"


def test_create_skips_members_with_active_plan(monkeypatch):
    enrolled = []
    monkeypatch.setattr(studies_mod, "execute_values", lambda *_args, **_kw: None)
    monkeypatch.setattr(studies_mod, "circle_member_ids", lambda _conn, _cid: ["owner", "busy", "free"])
    monkeypatch.setattr(studies_mod, "users_with_active_plan", lambda _conn, _ids: {"busy"})
    monkeypatch.setattr(
        studies_mod,
        "insert_plan",
        lambda _conn, user_id, _plan, _duration, _source: enrolled.append(user_id) or f"sp-{user_id}",
    )
    monkeypatch.setattr(studies_mod, "_link_member_plan", lambda *_args: None)

    plan = build_plan_from_template("template_grace", 7)
    result = studies_mod.create_circle_study(FakeConn(), "c1", "owner", plan, 7, "template_grace")

    assert enrolled == ["owner", "free"]
    assert result["enrolled_user_ids"] == ["owner", "free"]
    assert result["skipped_user_ids"] == ["busy"]


def _member_stub(monkeypatch):
    monkeypatch.setattr(routes_mod, "require_circle_member", lambda *_args: {"role": "member"})
    monkeypatch.setattr(
        routes_mod,
        "get_circle_study",
        lambda _conn, plan_id: {"id": plan_id, "circle_id": "c1", "duration": 7, "template_source": "template_grace"},
    )


def test_join_twice_is_conflict(monkeypatch):
    _member_stub(monkeypatch)
    monkeypatch.setattr(routes_mod, "get_member_plan", lambda *_args: {"study_plan_id": "sp1"})
    with pytest.raises(HTTPException) as exc:
        routes_mod.studies_join("c1", "cp1", current_user={"user_id": "u1"}, conn=FakeConn())
    assert exc.value.status_code == 409


def test_join_with_active_personal_plan_is_conflict(monkeypatch):
    _member_stub(monkeypatch)
    monkeypatch.setattr(routes_mod, "get_member_plan", lambda *_args: None)
    monkeypatch.setattr(routes_mod, "users_with_active_plan", lambda _conn, ids: set(ids))
    with pytest.raises(HTTPException) as exc:
        routes_mod.studies_join("c1", "cp1", current_user={"user_id": "u1"}, conn=FakeConn())
    assert exc.value.status_code == 409
    assert "active study plan" in exc.value.detail["message"]


def test_study_from_other_circle_is_forbidden(monkeypatch):
    _member_stub(monkeypatch)
    with pytest.raises(HTTPException) as exc:
        routes_mod.studies_join("c2", "cp1", current_user={"user_id": "u1"}, conn=FakeConn())
    assert exc.value.status_code == 403


def test_generated_plan_must_match_duration(monkeypatch):
    monkeypatch.setattr(routes_mod, "require_circle_member", lambda *_args: {"role": "member"})
    plan = {"title": "t", "description": "d", "days": [{"title": "x", "content": "y", "reflection": "z"}] * 5}
    payload = CircleStudyCreateRequest(duration=7, ai_generated=True, generated_plan=plan)
    with pytest.raises(HTTPException) as exc:
        routes_mod.studies_create("c1", payload, current_user={"user_id": "u1"}, conn=FakeConn())
    assert exc.value.status_code == 400
    assert "exactly 7 days" in exc.value.detail["message"]


def test_unknown_template_is_invalid_source(monkeypatch):
    monkeypatch.setattr(routes_mod, "require_circle_member", lambda *_args: {"role": "member"})
    payload = CircleStudyCreateRequest(duration=7, template_source="template_missing")
    with pytest.raises(HTTPException) as exc:
        routes_mod.studies_create("c1", payload, current_user={"user_id": "u1"}, conn=FakeConn())
    assert exc.value.detail["error"] == "invalid_source"


def test_create_study_commits_once(monkeypatch):
    monkeypatch.setattr(routes_mod, "require_circle_member", lambda *_args: {"role": "member"})
    monkeypatch.setattr(routes_mod, "get_active_circle_study", lambda *_args: None)
    monkeypatch.setattr(
        routes_mod,
        "create_circle_study",
        lambda *_args: {"id": "cp9", "enrolled_user_ids": ["u1"], "skipped_user_ids": []},
    )
    monkeypatch.setattr(
        routes_mod,
        "get_circle_study",
        lambda _conn, plan_id: {"id": plan_id, "circle_id": "c1", "title": "t", "duration": 7},
    )
    conn = FakeConn()
    payload = CircleStudyCreateRequest(duration=7, template_source="template_grace")
    body = routes_mod.studies_create("c1", payload, current_user={"user_id": "u1"}, conn=conn)
    assert body["study"]["id"] == "cp9"
    assert conn.commits == 1


def _intention(**overrides):
    data = {
        "selected_topics": ["faith_doubt", "prayer"],
        "depth_level": 5,
        "current_season": "growing",
        "study_pace": "moderate",
        "heart_question": None,
    }
    data.update(overrides)
    return StudyIntentionRequest(**data)


def test_valid_intention_passes():
    routes_mod.validate_intention(_intention())


@pytest.mark.parametrize(
    "overrides",
    [
        {"selected_topics": []},
        {"selected_topics": ["faith_doubt", "prayer", "purpose", "forgiveness"]},
        {"selected_topics": ["astrology"]},
        {"depth_level": 11},
        {"current_season": "winter"},
        {"study_pace": "sprint"},
        {"heart_question": "x" * 301},
    ],
)
def test_invalid_intentions_are_rejected(overrides):
    with pytest.raises(HTTPException) as exc:
        routes_mod.validate_intention(_intention(**overrides))
    assert exc.value.status_code == 400
