"""Streak milestones for personal plans and group milestones for circles."""

from typing import List, Optional

STREAK_MILESTONES = [
    {"days": 3, "title": "Getting Started", "message": "Three days in a row. A habit is forming."},
    {"days": 7, "title": "One Week Strong", "message": "A full week of time in the Word."},
    {"days": 14, "title": "Two Weeks Faithful", "message": "Two weeks of steady study."},
    {"days": 21, "title": "Three Weeks Rooted", "message": "Twenty-one days. This is becoming part of you."},
    {"days": 30, "title": "Month of Devotion", "message": "A whole month of faithfulness."},
    {"days": 50, "title": "Fifty Days", "message": "Fifty days of seeking God daily."},
    {"days": 100, "title": "Century of Study", "message": "One hundred days in a row."},
    {"days": 365, "title": "Year of the Word", "message": "A full year of daily study."},
]


def check_milestone(streak: int) -> Optional[dict]:
    """Return the milestone reached exactly at ``streak`` days, if any."""
    for milestone in STREAK_MILESTONES:
        if milestone["days"] == streak:
            return milestone
    return None


def get_milestone_progress(streak: int) -> dict:
    previous = 0
    for milestone in STREAK_MILESTONES:
        if milestone["days"] > streak:
            span = milestone["days"] - previous
            return {
                "next": milestone,
                "days_remaining": milestone["days"] - streak,
                "percent": round((streak - previous) / span * 100),
            }
        previous = milestone["days"]
    return {"next": None, "days_remaining": 0, "percent": 100}


# (id, name, description, stat, threshold, category)
_CIRCLE_ROWS = [
    ("first_study", "First Study Together", "Complete your first circle study", "completed_studies", 1, "study"),
    ("unified_week", "Unified Week", "Study together 7 days in a row", "longest_streak", 7, "study"),
    ("century_club", "Century Club", "Complete 100 study days as a circle", "total_days_completed", 100, "study"),
    ("marathon_readers", "Marathon Readers", "Complete 500 study days as a circle", "total_days_completed", 500, "study"),
    ("first_reflection", "First Reflection", "Share your first reflection", "total_reflections", 1, "community"),
    ("thoughtful_circle", "Thoughtful Circle", "Share 50 reflections", "total_reflections", 50, "community"),
    ("wisdom_keepers", "Wisdom Keepers", "Share 100 reflections", "total_reflections", 100, "community"),
    ("engaged_community", "Engaged Community", "Leave 100 comments", "total_comments", 100, "community"),
    ("prayer_warriors", "Prayer Warriors", "Share 50 prayer requests", "total_prayers", 50, "prayer"),
    ("faithful_intercessors", "Faithful Intercessors", "Share 100 prayer requests", "total_prayers", 100, "prayer"),
    ("supporting_circle", "Supporting Circle", "Support prayers 200 times", "total_support", 200, "prayer"),
    ("scripture_seekers", "Scripture Seekers", "Share 25 verses", "total_verses", 25, "scripture"),
    ("word_treasurers", "Word Treasurers", "Share 100 verses", "total_verses", 100, "scripture"),
    ("consistent_circle", "Consistent Circle", "Be active on 30 different days", "active_days", 30, "study"),
]

CIRCLE_MILESTONES = [
    {
        "id": row[0],
        "name": row[1],
        "description": row[2],
        "stat": row[3],
        "threshold": row[4],
        "category": row[5],
    }
    for row in _CIRCLE_ROWS
]


def _circle_stat(stats: dict, key: str) -> int:
    return int((stats or {}).get(key) or 0)


def check_circle_milestones(stats: dict) -> List[dict]:
    return [m for m in CIRCLE_MILESTONES if _circle_stat(stats, m["stat"]) >= m["threshold"]]


def get_next_circle_milestone(stats: dict, category: Optional[str] = None) -> Optional[dict]:
    achieved = {m["id"] for m in check_circle_milestones(stats)}
    candidates = [
        m
        for m in CIRCLE_MILESTONES
        if m["id"] not in achieved and (category is None or m["category"] == category)
    ]
    if not candidates:
        return None
    milestone = min(candidates, key=lambda m: m["threshold"])
    current = _circle_stat(stats, milestone["stat"])
    return {
        "milestone": milestone,
        "current": current,
        "progress": min(100, round(current / milestone["threshold"] * 100)),
    }


def circle_celebration_message(milestones: List[dict]) -> Optional[str]:
    if not milestones:
        return None
    if len(milestones) == 1:
        return f"Your circle reached a milestone: {milestones[0]['name']}!"
    names = ", ".join(m["name"] for m in milestones)
    return f"Your circle reached {len(milestones)} milestones: {names}!"
