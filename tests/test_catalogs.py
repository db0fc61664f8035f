from berea.achievements import ACHIEVEMENTS, check_new_achievements, get_next_achievements
from berea.milestones import (
    CIRCLE_MILESTONES,
    check_milestone,
    circle_celebration_message,
    get_milestone_progress,
    get_next_circle_milestone,
)
from berea.study_templates import STUDY_TEMPLATES, TEMPLATE_OPTIONS, build_plan_from_template


def test_achievement_catalog_shape():
    assert len(ACHIEVEMENTS) == 20
    assert len({a["id"] for a in ACHIEVEMENTS}) == 20
    assert {a["tier"] for a in ACHIEVEMENTS} == {"bronze", "silver", "gold", "platinum"}


def test_new_achievements_only_on_crossing():
    previous = {"current_streak": 6}
    current = {"current_streak": 7}
    ids = [a["id"] for a in check_new_achievements(previous, current, [])]
    assert ids == ["week_of_devotion"]
    assert check_new_achievements(current, {"current_streak": 8}, []) == []
    assert check_new_achievements(previous, current, ["week_of_devotion"]) == []


def test_next_achievements_sorted_by_percent():
    upcoming = get_next_achievements({"current_streak": 6, "total_days_studied": 10}, limit=2)
    assert len(upcoming) == 2
    assert upcoming[0]["achievement"]["id"] == "week_of_devotion"
    assert upcoming[0]["percent"] == 86
    assert upcoming[0]["percent"] >= upcoming[1]["percent"]


def test_streak_milestones_are_exact():
    assert check_milestone(7)["title"] == "One Week Strong"
    assert check_milestone(8) is None


def test_milestone_progress_between_steps():
    progress = get_milestone_progress(10)
    assert progress["next"]["days"] == 14
    assert progress["days_remaining"] == 4
    assert progress["percent"] == 43
    assert get_milestone_progress(400) == {"next": None, "days_remaining": 0, "percent": 100}


def test_circle_milestones():
    assert len(CIRCLE_MILESTONES) == 14
    new = [m for m in CIRCLE_MILESTONES if m["id"] == "first_reflection"]
    nxt = get_next_circle_milestone({"total_prayers": 20}, category="prayer")
    assert nxt["milestone"]["id"] == "prayer_warriors"
    assert nxt["progress"] == 40
    assert circle_celebration_message([]) is None
    assert "First Reflection" in circle_celebration_message(new)


def test_template_catalog():
    assert set(STUDY_TEMPLATES) == {
        "template_grace",
        "template_gospel",
        "template_prayer_fasting",
        "template_love_compassion",
        "template_faith_action",
    }
    assert {o["id"] for o in TEMPLATE_OPTIONS} == set(STUDY_TEMPLATES)


def test_build_plan_from_template_slices_days():
    week = build_plan_from_template("template_grace", 7)
    assert len(week["days"]) == 7
    assert week["title"].startswith("7-Day Journey")
    full = build_plan_from_template("template_grace", 21)
    assert len(full["days"]) == 21
    assert all(day["verse_reference"] and day["verse_text"] for day in full["days"])


def test_short_templates_reject_long_durations():
    assert build_plan_from_template("template_faith_action", 7) is not None
    assert build_plan_from_template("template_faith_action", 21) is None
    assert build_plan_from_template("template_unknown", 7) is None
