from typing import List

# (id, name, description, stat, threshold, tier)
_ACHIEVEMENT_ROWS = [
    ("week_of_devotion", "Week of Devotion", "Study 7 days in a row", "current_streak", 7, "bronze"),
    ("fortnight_faithful", "Fortnight Faithful", "Study 14 days in a row", "current_streak", 14, "silver"),
    ("three_weeks_strong", "Three Weeks Strong", "Study 21 days in a row", "current_streak", 21, "silver"),
    ("month_of_faithfulness", "Month of Faithfulness", "Study 30 days in a row", "current_streak", 30, "gold"),
    ("unwavering_dedication", "Unwavering Dedication", "Study 100 days in a row", "current_streak", 100, "platinum"),
    ("longest_streak_10", "Perseverance", "Reach a 10-day longest streak", "longest_streak", 10, "bronze"),
    ("longest_streak_50", "Steadfast", "Reach a 50-day longest streak", "longest_streak", 50, "gold"),
    ("first_journey", "First Journey", "Complete a 7-day plan", "total_7_day_completed", 1, "bronze"),
    ("journey_explorer", "Journey Explorer", "Complete five 7-day plans", "total_7_day_completed", 5, "silver"),
    ("deep_diver", "Deep Diver", "Complete a 21-day plan", "total_21_day_completed", 1, "silver"),
    ("depth_seeker", "Depth Seeker", "Complete three 21-day plans", "total_21_day_completed", 3, "gold"),
    ("dedicated_scholar", "Dedicated Scholar", "Complete 10 study plans", "total_plans_completed", 10, "gold"),
    ("master_student", "Master Student", "Complete 25 study plans", "total_plans_completed", 25, "platinum"),
    ("scripture_collector", "Scripture Collector", "Save 25 verses from plans", "total_verses_from_plans", 25, "silver"),
    ("word_treasure", "Treasure of the Word", "Save 100 verses from plans", "total_verses_from_plans", 100, "gold"),
    ("prayer_warrior", "Prayer Warrior", "Pray through 50 plan days", "total_prayers_from_plans", 50, "gold"),
    ("intercessor", "Intercessor", "Pray through 100 plan days", "total_prayers_from_plans", 100, "platinum"),
    ("fifty_days_strong", "Fifty Days Strong", "Study on 50 different days", "total_days_studied", 50, "silver"),
    ("hundred_days_strong", "Hundred Days Strong", "Study on 100 different days", "total_days_studied", 100, "gold"),
    ("year_of_study", "Year of Study", "Study on 365 different days", "total_days_studied", 365, "platinum"),
]

ACHIEVEMENTS = [
    {
        "id": row[0],
        "name": row[1],
        "description": row[2],
        "stat": row[3],
        "threshold": row[4],
        "tier": row[5],
    }
    for row in _ACHIEVEMENT_ROWS
]

ACHIEVEMENTS_BY_ID = {a["id"]: a for a in ACHIEVEMENTS}

STAT_KEYS = (
    "current_streak",
    "longest_streak",
    "total_plans_completed",
    "total_7_day_completed",
    "total_21_day_completed",
    "total_days_studied",
    "total_verses_from_plans",
    "total_prayers_from_plans",
)


def _stat(stats: dict, key: str) -> int:
    return int((stats or {}).get(key) or 0)


def is_met(achievement: dict, stats: dict) -> bool:
    return _stat(stats, achievement["stat"]) >= achievement["threshold"]


def check_new_achievements(previous: dict, current: dict, unlocked: List[str]) -> List[dict]:
    unlocked_ids = set(unlocked or [])
    return [
        a
        for a in ACHIEVEMENTS
        if a["id"] not in unlocked_ids and is_met(a, current) and not is_met(a, previous)
    ]


def get_next_achievements(stats: dict, limit: int = 3) -> List[dict]:
    upcoming = []
    for a in ACHIEVEMENTS:
        if is_met(a, stats):
            continue
        value = _stat(stats, a["stat"])
        upcoming.append(
            {
                "achievement": a,
                "progress": value,
                "total": a["threshold"],
                "percent": min(100, round(value / a["threshold"] * 100)),
            }
        )
    upcoming.sort(key=lambda item: -item["percent"])
    return upcoming[:limit]
