from datetime import datetime, timedelta, timezone

import pytest
from fastapi import HTTPException

import berea.study_plan_routes as routes_mod
import berea.study_plans as plans_mod
from berea.models import StudyPlanCreateRequest


NOW = datetime(2025, 5, 20, 9, 30, tzinfo=timezone.utc)


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

    def cursor(self, cursor_factory=None):
        return self._cursor

    def commit(self):
        return None

    def rollback(self):
        return None


def _streak(**overrides):
    streak = {field: 0 for field in plans_mod.STREAK_FIELDS}
    streak["last_study_date"] = None
    streak["unlocked_achievements"] = []
    streak.update(overrides)
    return streak


def test_first_study_day_starts_streak():
    result = plans_mod.next_streak(_streak(), NOW)
    assert result["current_streak"] == 1
    assert result["longest_streak"] == 1
    assert result["total_days_studied"] == 1
    assert result["last_study_date"] == NOW


def test_same_day_does_not_double_count():
    streak = _streak(current_streak=4, longest_streak=6, total_days_studied=10, last_study_date=NOW - timedelta(hours=3))
    result = plans_mod.next_streak(streak, NOW)
    assert result["current_streak"] == 4
    assert result["total_days_studied"] == 10


def test_next_day_extends_streak():
    streak = _streak(current_streak=6, longest_streak=6, total_days_studied=6, last_study_date=NOW - timedelta(days=1))
    result = plans_mod.next_streak(streak, NOW)
    assert result["current_streak"] == 7
    assert result["longest_streak"] == 7
    assert result["total_days_studied"] == 7


def test_gap_resets_streak_but_keeps_longest():
    streak = _streak(current_streak=9, longest_streak=12, total_days_studied=30, last_study_date=NOW - timedelta(days=3))
    result = plans_mod.next_streak(streak, NOW)
    assert result["current_streak"] == 1
    assert result["longest_streak"] == 12
    assert result["total_days_studied"] == 31


def test_engagement_score_and_percent():
    assert plans_mod.engagement_score(True, {"verse_saved": True, "chat_engaged": True}) == 80
    assert plans_mod.engagement_score(False, {}) == 0
    assert plans_mod.percent_complete(3, 7) == 43
    assert plans_mod.percent_complete(0, 0) == 0


def test_plan_engagement_score_covers_every_day():
    days = _states(3, verse_saved=True)
    # three days at 60, four at 20: 260 of a possible 700
    assert plans_mod.plan_engagement_score(days, 7) == 37
    assert plans_mod.plan_engagement_score(_states(7), 7) == 40
    assert plans_mod.plan_engagement_score([], 0) == 0


def test_plan_day_rows_keeps_day_numbers():
    days = [{"day_number": n, "title": f"Day {n}", "content": "c"} for n in range(1, 8)]
    rows = plans_mod.plan_day_rows("p1", days)
    assert len(rows) == 7
    assert [row[2] for row in rows] == list(range(1, 8))
    assert all(row[1] == "p1" for row in rows)


def _states(completed_count, total=7, **flags):
    return [
        {"day_number": n, "completed": n <= completed_count, "verse_saved": False, "prayer_generated": False, "chat_engaged": False, **flags}
        for n in range(1, total + 1)
    ]


def _wire_progress(monkeypatch, day, states, streak):
    saved = {}
    monkeypatch.setattr(plans_mod, "_get_day", lambda _conn, _pid, _n: day)
    monkeypatch.setattr(plans_mod, "_get_day_states", lambda _conn, _pid: states)
    monkeypatch.setattr(plans_mod, "get_streak", lambda _conn, _uid: dict(streak))
    monkeypatch.setattr(plans_mod, "save_streak", lambda _conn, _uid, s: saved.update(s))
    return saved


def _day(**overrides):
    day = {
        "id": "d7",
        "completed": False,
        "completed_at": None,
        "verse_saved": False,
        "prayer_generated": False,
        "chat_engaged": False,
    }
    day.update(overrides)
    return day


def test_completing_last_day_completes_plan(monkeypatch):
    cur = FakeCursor()
    streak = _streak(current_streak=6, longest_streak=6, total_days_studied=6, last_study_date=NOW - timedelta(days=1))
    saved = _wire_progress(monkeypatch, _day(), _states(7), streak)
    plan = {"id": "p1", "duration": 7, "status": "active"}

    result = plans_mod.update_day_progress(
        FakeConn(cur), "u1", plan, 7, True, {"verse_saved": True}, now=NOW
    )

    assert result["plan_completed"] is True
    assert result["progress"] == {"completed_days": 7, "total_days": 7, "percent_complete": 100, "engagement_score": 40}
    assert result["day_engagement_score"] == 60
    assert result["streak"]["current_streak"] == 7
    assert result["milestone"]["days"] == 7
    ids = [a["id"] for a in result["new_achievements"]]
    assert "week_of_devotion" in ids
    assert "first_journey" in ids
    assert saved["total_plans_completed"] == 1
    assert saved["total_7_day_completed"] == 1
    assert saved["total_verses_from_plans"] == 1
    assert any("SET status = 'completed'" in q for q, _ in cur.queries)


def test_uncompleting_a_day_rolls_back_streak(monkeypatch):
    streak = _streak(current_streak=3, longest_streak=3, total_days_studied=3, last_study_date=NOW)
    saved = _wire_progress(monkeypatch, _day(completed=True, completed_at=NOW), _states(2), streak)
    plan = {"id": "p1", "duration": 7, "status": "active"}

    result = plans_mod.update_day_progress(FakeConn(FakeCursor()), "u1", plan, 3, False, now=NOW)

    assert result["plan_completed"] is False
    assert saved["current_streak"] == 2
    assert saved["longest_streak"] == 3
    assert result["milestone"] is None


def test_unknown_day_is_rejected(monkeypatch):
    _wire_progress(monkeypatch, None, _states(0), _streak())
    with pytest.raises(HTTPException) as exc:
        plans_mod.update_day_progress(FakeConn(FakeCursor()), "u1", {"id": "p1", "duration": 7}, 9, True)
    assert exc.value.status_code == 400
    assert exc.value.detail["error"] == "invalid_day"


def test_second_active_plan_is_conflict(monkeypatch):
    monkeypatch.setattr(routes_mod, "get_active_plan", lambda _conn, _uid: {"id": "existing"})
    payload = StudyPlanCreateRequest(source="template_grace", duration=7)
    with pytest.raises(HTTPException) as exc:
        routes_mod.study_plans_create(payload, current_user={"user_id": "u1"}, conn=FakeConn(FakeCursor()))
    assert exc.value.status_code == 409


def test_invalid_duration_is_rejected():
    payload = StudyPlanCreateRequest(source="template_grace", duration=14)
    with pytest.raises(HTTPException) as exc:
        routes_mod.study_plans_create(payload, current_user={"user_id": "u1"}, conn=FakeConn(FakeCursor()))
    assert exc.value.detail["error"] == "invalid_duration"


def test_template_plan_is_inserted(monkeypatch):
    inserted = {}

    def fake_insert(_conn, user_id, plan, duration, source):
        inserted.update({"user_id": user_id, "days": len(plan["days"]), "duration": duration, "source": source})
        return "p-new"

    monkeypatch.setattr(routes_mod, "get_active_plan", lambda _conn, _uid: None)
    monkeypatch.setattr(routes_mod, "insert_plan", fake_insert)
    monkeypatch.setattr(
        routes_mod,
        "get_owned_plan",
        lambda _conn, _pid, _uid: {
            "id": "p-new",
            "title": "t",
            "description": "d",
            "duration": 21,
            "source": "template_gospel",
            "status": "active",
            "start_date": NOW,
            "completed_at": None,
            "created_at": NOW,
        },
    )
    monkeypatch.setattr(routes_mod, "get_plan_days", lambda _conn, _pid: [])

    payload = StudyPlanCreateRequest(source="template_gospel", duration=21)
    body = routes_mod.study_plans_create(payload, current_user={"user_id": "u1"}, conn=FakeConn(FakeCursor()))

    assert body["success"] is True
    assert inserted == {"user_id": "u1", "days": 21, "duration": 21, "source": "template_gospel"}


def test_progress_reports_plan_totals(monkeypatch):
    streak = _streak(current_streak=1, longest_streak=1, total_days_studied=1, last_study_date=NOW - timedelta(days=1))
    _wire_progress(monkeypatch, _day(id="d3"), _states(3, total=21, chat_engaged=True), streak)
    plan = {"id": "p1", "duration": 21, "status": "active"}

    result = plans_mod.update_day_progress(FakeConn(FakeCursor()), "u1", plan, 3, True, {"chat_engaged": True}, now=NOW)

    assert result["plan_completed"] is False
    assert result["progress"]["completed_days"] == 3
    assert result["progress"]["total_days"] == 21
    assert result["progress"]["percent_complete"] == 14
    # 3 * 60 + 18 * 20 = 540 of 2100
    assert result["progress"]["engagement_score"] == 26
