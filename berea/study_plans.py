import json
from datetime import date, datetime, timezone
from typing import List, Optional

from psycopg2.extras import RealDictCursor, execute_values

from berea.achievements import check_new_achievements
from berea.conversations import recent_conversations
from berea.db import new_id
from berea.errors import api_error
from berea.milestones import check_milestone

VALID_DURATIONS = (7, 21)
ENGAGEMENT_FLAGS = ("verse_saved", "prayer_generated", "chat_engaged")
ENGAGEMENT_COUNTERS = {
    "verse_saved": "total_verses_from_plans",
    "prayer_generated": "total_prayers_from_plans",
    "chat_engaged": "total_chats_from_plans",
}
STREAK_FIELDS = (
    "current_streak",
    "longest_streak",
    "last_study_date",
    "total_days_studied",
    "total_plans_completed",
    "total_7_day_completed",
    "total_21_day_completed",
    "total_verses_from_plans",
    "total_prayers_from_plans",
    "total_chats_from_plans",
)

PLAN_COLUMNS = """
    id, user_id, title, description, duration, source, status,
    start_date, completed_at, created_at, updated_at
"""
DAY_COLUMNS = """
    id, plan_id, day_number, title, content, reflection, prayer,
    verse_reference, verse_text, completed, completed_at,
    verse_saved, prayer_generated, chat_engaged
"""

INSERT_DAYS_SQL = """
INSERT INTO study_plan_day
(id, plan_id, day_number, title, content, reflection, prayer, verse_reference, verse_text)
VALUES %s
"""


def get_active_plan(conn, user_id: str) -> dict | None:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            SELECT {PLAN_COLUMNS}
            FROM study_plan
            WHERE user_id = %s AND status = 'active' AND deleted_at IS NULL
            ORDER BY created_at DESC
            LIMIT 1
            """,
            (user_id,),
        )
        return cur.fetchone()


def get_latest_completed_plan(conn, user_id: str) -> dict | None:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            SELECT {PLAN_COLUMNS}
            FROM study_plan
            WHERE user_id = %s AND status = 'completed' AND deleted_at IS NULL
            ORDER BY completed_at DESC NULLS LAST
            LIMIT 1
            """,
            (user_id,),
        )
        return cur.fetchone()


def get_owned_plan(conn, plan_id: str, user_id: str) -> dict | None:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            SELECT {PLAN_COLUMNS}
            FROM study_plan
            WHERE id = %s AND user_id = %s AND deleted_at IS NULL
            """,
            (plan_id, user_id),
        )
        return cur.fetchone()


def get_plan_days(conn, plan_id: str) -> List[dict]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            SELECT {DAY_COLUMNS}
            FROM study_plan_day
            WHERE plan_id = %s
            ORDER BY day_number ASC
            """,
            (plan_id,),
        )
        return cur.fetchall()


def plan_day_rows(plan_id: str, days: List[dict]) -> List[tuple]:
    return [
        (
            new_id(),
            plan_id,
            day["day_number"],
            day["title"],
            day["content"],
            day.get("reflection"),
            day.get("prayer"),
            day.get("verse_reference"),
            day.get("verse_text"),
        )
        for day in days
    ]


def insert_plan(conn, user_id: str, plan: dict, duration: int, source: str) -> str:
    """Insert a plan with its days. The caller commits."""
    plan_id = new_id()
    with conn.cursor() as cur:
        cur.execute(
            """
            INSERT INTO study_plan (id, user_id, title, description, duration, source, status)
            VALUES (%s, %s, %s, %s, %s, %s, 'active')
            """,
            (plan_id, user_id, plan["title"], plan.get("description"), duration, source),
        )
        execute_values(cur, INSERT_DAYS_SQL, plan_day_rows(plan_id, plan["days"]))
    return plan_id


def get_streak(conn, user_id: str) -> dict:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT current_streak, longest_streak, last_study_date, total_days_studied,
                   total_plans_completed, total_7_day_completed, total_21_day_completed,
                   total_verses_from_plans, total_prayers_from_plans, total_chats_from_plans,
                   unlocked_achievements
            FROM study_streak
            WHERE user_id = %s
            """,
            (user_id,),
        )
        row = cur.fetchone()
    streak = {field: 0 for field in STREAK_FIELDS}
    streak["last_study_date"] = None
    streak["unlocked_achievements"] = []
    if row:
        streak.update(row)
        unlocked = row.get("unlocked_achievements") or []
        if isinstance(unlocked, str):
            unlocked = json.loads(unlocked)
        streak["unlocked_achievements"] = list(unlocked)
    return streak


def save_streak(conn, user_id: str, streak: dict) -> None:
    values = [streak.get(field) for field in STREAK_FIELDS]
    with conn.cursor() as cur:
        cur.execute(
            f"""
            INSERT INTO study_streak (user_id, {", ".join(STREAK_FIELDS)}, unlocked_achievements)
            VALUES (%s, {", ".join(["%s"] * len(STREAK_FIELDS))}, %s::jsonb)
            ON CONFLICT (user_id)
            DO UPDATE SET
              {", ".join(f"{field} = EXCLUDED.{field}" for field in STREAK_FIELDS)},
              unlocked_achievements = EXCLUDED.unlocked_achievements,
              updated_at = now()
            """,
            (user_id, *values, json.dumps(streak.get("unlocked_achievements") or [])),
        )


def _as_utc_date(value) -> Optional[date]:
    if value is None:
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).date()
    return value


def next_streak(streak: dict, now: datetime | None = None) -> dict:
    """Apply one completed study day to the streak counters.

    Days are compared as UTC calendar dates: the same day keeps the streak, the
    next day extends it and any longer gap starts over at 1.
    """
    now = now or datetime.now(timezone.utc)
    current = int(streak.get("current_streak") or 0)
    longest = int(streak.get("longest_streak") or 0)
    total_days = int(streak.get("total_days_studied") or 0)
    last = _as_utc_date(streak.get("last_study_date"))
    today = _as_utc_date(now)
    if last is None:
        current = 1
        total_days += 1
    else:
        gap = (today - last).days
        if gap == 0:
            current = max(1, current)
        elif gap == 1:
            current += 1
            total_days += 1
        else:
            current = 1
            total_days += 1
    updated = dict(streak)
    updated["current_streak"] = current
    updated["longest_streak"] = max(longest, current)
    updated["total_days_studied"] = total_days
    updated["last_study_date"] = now
    return updated


def undo_streak_day(streak: dict) -> dict:
    updated = dict(streak)
    updated["current_streak"] = max(0, int(streak.get("current_streak") or 0) - 1)
    updated["total_days_studied"] = max(0, int(streak.get("total_days_studied") or 0) - 1)
    return updated


def engagement_score(completed: bool, engagement: dict) -> int:
    score = 40 if completed else 0
    for flag in ENGAGEMENT_FLAGS:
        if engagement.get(flag):
            score += 20
    return score


def percent_complete(completed_days: int, duration: int) -> int:
    if not duration:
        return 0
    return round(completed_days / duration * 100)


def plan_engagement_score(days: List[dict], total_days: int) -> int:
    """Plan-wide engagement as a percent of the best possible score."""
    if not total_days:
        return 0
    total = sum(engagement_score(bool(d["completed"]), d) for d in days)
    return round(total / (total_days * 100) * 100)


def _get_day_states(conn, plan_id: str) -> List[dict]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT day_number, completed, verse_saved, prayer_generated, chat_engaged
            FROM study_plan_day
            WHERE plan_id = %s
            ORDER BY day_number
            """,
            (plan_id,),
        )
        return cur.fetchall()


def _get_day(conn, plan_id: str, day_number: int) -> dict | None:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"SELECT {DAY_COLUMNS} FROM study_plan_day WHERE plan_id = %s AND day_number = %s",
            (plan_id, day_number),
        )
        return cur.fetchone()


def update_day_progress(
    conn,
    user_id: str,
    plan: dict,
    day_number: int,
    completed: bool,
    engagement: dict | None = None,
    now: datetime | None = None,
) -> dict:
    """Record progress on one day of an active plan and update streak stats.

    Runs inside the caller's transaction; the caller commits.
    """
    now = now or datetime.now(timezone.utc)
    engagement = engagement or {}
    day = _get_day(conn, plan["id"], day_number)
    if not day:
        raise api_error(400, "invalid_day", f"Day {day_number} is not part of this plan.")

    was_completed = bool(day["completed"])
    flags = {}
    for flag in ENGAGEMENT_FLAGS:
        requested = engagement.get(flag)
        flags[flag] = bool(day[flag]) if requested is None else bool(requested)
    newly_engaged = [flag for flag in ENGAGEMENT_FLAGS if flags[flag] and not day[flag]]

    if completed and not was_completed:
        completed_at = now
    elif completed:
        completed_at = day.get("completed_at")
    else:
        completed_at = None
    with conn.cursor() as cur:
        cur.execute(
            """
            UPDATE study_plan_day
            SET completed = %s, completed_at = %s,
                verse_saved = %s, prayer_generated = %s, chat_engaged = %s
            WHERE id = %s
            """,
            (
                completed,
                completed_at,
                flags["verse_saved"],
                flags["prayer_generated"],
                flags["chat_engaged"],
                day["id"],
            ),
        )

    previous = get_streak(conn, user_id)
    streak = dict(previous)
    if completed and not was_completed:
        streak = next_streak(streak, now)
    elif was_completed and not completed:
        streak = undo_streak_day(streak)
    for flag in newly_engaged:
        counter = ENGAGEMENT_COUNTERS[flag]
        streak[counter] = int(streak.get(counter) or 0) + 1

    day_states = _get_day_states(conn, plan["id"])
    total_days = len(day_states) or int(plan["duration"])
    done = sum(1 for d in day_states if d["completed"])
    percent = percent_complete(done, total_days)
    plan_completed = percent >= 100 and plan.get("status") == "active"
    if plan_completed:
        with conn.cursor() as cur:
            cur.execute(
                """
                UPDATE study_plan
                SET status = 'completed', completed_at = %s, updated_at = now()
                WHERE id = %s
                """,
                (now, plan["id"]),
            )
        streak["total_plans_completed"] = int(streak.get("total_plans_completed") or 0) + 1
        duration_key = "total_7_day_completed" if int(plan["duration"]) == 7 else "total_21_day_completed"
        streak[duration_key] = int(streak.get(duration_key) or 0) + 1
    else:
        with conn.cursor() as cur:
            cur.execute("UPDATE study_plan SET updated_at = now() WHERE id = %s", (plan["id"],))

    new_achievements = check_new_achievements(previous, streak, previous["unlocked_achievements"])
    streak["unlocked_achievements"] = previous["unlocked_achievements"] + [a["id"] for a in new_achievements]
    save_streak(conn, user_id, streak)

    milestone = None
    if completed and not was_completed:
        milestone = check_milestone(streak["current_streak"])
    return {
        "day_number": day_number,
        "completed": completed,
        "engagement": flags,
        "day_engagement_score": engagement_score(completed, flags),
        "progress": {
            "completed_days": done,
            "total_days": total_days,
            "percent_complete": percent,
            "engagement_score": plan_engagement_score(day_states, total_days),
        },
        "plan_completed": plan_completed,
        "streak": {
            "current_streak": streak["current_streak"],
            "longest_streak": streak["longest_streak"],
            "total_days_studied": streak["total_days_studied"],
        },
        "milestone": milestone,
        "new_achievements": new_achievements,
    }


def serialize_plan(plan: dict, days: List[dict]) -> dict:
    completed = sum(1 for d in days if d.get("completed"))
    return {
        "id": plan["id"],
        "title": plan["title"],
        "description": plan.get("description"),
        "duration": plan["duration"],
        "source": plan["source"],
        "status": plan["status"],
        "start_date": plan["start_date"].isoformat() if plan.get("start_date") else None,
        "completed_at": plan["completed_at"].isoformat() if plan.get("completed_at") else None,
        "percent_complete": percent_complete(completed, int(plan["duration"])),
        "days": [
            {
                "day_number": d["day_number"],
                "title": d["title"],
                "content": d["content"],
                "reflection": d.get("reflection"),
                "prayer": d.get("prayer"),
                "verse_reference": d.get("verse_reference"),
                "verse_text": d.get("verse_text"),
                "completed": bool(d.get("completed")),
                "completed_at": d["completed_at"].isoformat() if d.get("completed_at") else None,
                "verse_saved": bool(d.get("verse_saved")),
                "prayer_generated": bool(d.get("prayer_generated")),
                "chat_engaged": bool(d.get("chat_engaged")),
            }
            for d in days
        ],
    }


def load_journey(conn, user_id: str) -> dict:
    """Recent activity used to personalise a generated plan."""
    conversations = recent_conversations(conn, user_id, limit=3, message_limit=5)
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT reference, text
            FROM saved_verse
            WHERE user_id = %s
            ORDER BY created_at DESC
            LIMIT 5
            """,
            (user_id,),
        )
        saved_verses = cur.fetchall()
        cur.execute(
            """
            SELECT title, content
            FROM prayer_request
            WHERE user_id = %s AND deleted_at IS NULL
            ORDER BY created_at DESC
            LIMIT 3
            """,
            (user_id,),
        )
        prayers = cur.fetchall()
        cur.execute(
            """
            SELECT reference
            FROM memorized_verse
            WHERE user_id = %s
            ORDER BY created_at DESC
            LIMIT 3
            """,
            (user_id,),
        )
        memorized = cur.fetchall()
    return {
        "conversations": conversations,
        "saved_verses": saved_verses,
        "prayers": prayers,
        "memorized": memorized,
    }
