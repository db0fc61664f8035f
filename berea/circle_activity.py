"""Circle activity feed and aggregate statistics."""

from datetime import date, datetime, timedelta
from typing import Iterable, List, Optional

from psycopg2.extras import RealDictCursor

from berea.milestones import check_circle_milestones, circle_celebration_message, get_next_circle_milestone

ACTIVITY_PREVIEW_CHARS = 100
DEFAULT_ACTIVITY_LIMIT = 20


def preview(text: Optional[str], limit: int = ACTIVITY_PREVIEW_CHARS) -> Optional[str]:
    if text is None:
        return None
    return text[:limit]


def merge_activity(reflections: List[dict], prayers: List[dict], verses: List[dict], limit: int) -> List[dict]:
    activities = []
    for r in reflections:
        activities.append(
            {
                "id": r["id"],
                "type": "reflection",
                "user_id": r["user_id"],
                "content": preview(r["content"]),
                "day_number": r["day_number"],
                "study_plan_id": r["circle_plan_id"],
                "created_at": r["created_at"],
            }
        )
    for p in prayers:
        activities.append(
            {
                "id": p["id"],
                "type": "prayer",
                "user_id": p["user_id"],
                "title": p.get("title"),
                "content": preview(p["content"]),
                "status": p.get("status"),
                "created_at": p["created_at"],
            }
        )
    for v in verses:
        activities.append(
            {
                "id": v["id"],
                "type": "verse",
                "user_id": v["user_id"],
                "reference": v["reference"],
                "content": preview(v.get("note")),
                "created_at": v["created_at"],
            }
        )
    activities.sort(key=lambda a: a["created_at"], reverse=True)
    return activities[:limit]


def load_activity(conn, circle_id: str, requesting_user_id: str, limit: int = DEFAULT_ACTIVITY_LIMIT) -> List[dict]:
    """Newest visible circle items.

    Sharing flags are checked in SQL before each LIMIT is applied.
    """
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT r.id, r.user_id, r.day_number, r.content, r.circle_plan_id, r.created_at
            FROM circle_reflection r
            JOIN circle_study_plan p ON p.id = r.circle_plan_id
            JOIN study_circle_member m ON m.circle_id = p.circle_id AND m.user_id = r.user_id
            WHERE p.circle_id = %s AND (m.share_reflections OR r.user_id = %s)
            ORDER BY r.created_at DESC
            LIMIT %s
            """,
            (circle_id, requesting_user_id, limit),
        )
        reflections = cur.fetchall()
        cur.execute(
            """
            SELECT x.id, x.user_id, x.title, x.content, x.status, x.created_at
            FROM circle_prayer x
            JOIN study_circle_member m ON m.circle_id = x.circle_id AND m.user_id = x.user_id
            WHERE x.circle_id = %s AND (m.share_prayers OR x.user_id = %s)
            ORDER BY x.created_at DESC
            LIMIT %s
            """,
            (circle_id, requesting_user_id, limit),
        )
        prayers = cur.fetchall()
        cur.execute(
            """
            SELECT x.id, x.user_id, x.reference, x.note, x.created_at
            FROM circle_verse x
            JOIN study_circle_member m ON m.circle_id = x.circle_id AND m.user_id = x.user_id
            WHERE x.circle_id = %s AND (m.share_verses OR x.user_id = %s)
            ORDER BY x.created_at DESC
            LIMIT %s
            """,
            (circle_id, requesting_user_id, limit),
        )
        verses = cur.fetchall()

    return merge_activity(reflections, prayers, verses, limit)


def _as_date(value) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def longest_consecutive_run(dates: Iterable) -> int:
    """Length of the longest run of consecutive calendar days."""
    days = sorted({_as_date(d) for d in dates if d is not None})
    longest = 0
    run = 0
    previous = None
    for day in days:
        if previous is not None and day - previous == timedelta(days=1):
            run += 1
        else:
            run = 1
        longest = max(longest, run)
        previous = day
    return longest


def average_progress(active_plans: List[dict]) -> int:
    """Mean completion percent across active studies.

    Each plan carries ``duration`` and ``member_completed``, the completed day
    count of every enrolled member.
    """
    if not active_plans:
        return 0
    total = 0.0
    for plan in active_plans:
        completed = plan["member_completed"]
        member_sum = sum(c / plan["duration"] * 100 for c in completed)
        total += member_sum / max(len(completed), 1)
    return round(total / len(active_plans))


def _scalar(cur, sql: str, params: tuple) -> int:
    cur.execute(sql, params)
    row = cur.fetchone()
    return int(row["count"] or 0) if row else 0


def compute_circle_stats(conn, circle_id: str) -> dict:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT
                p.id,
                p.duration,
                p.status,
                mp.user_id,
                (
                    SELECT COUNT(*) FROM study_plan_day d
                    WHERE d.plan_id = mp.study_plan_id AND d.completed
                ) AS completed_days
            FROM circle_study_plan p
            LEFT JOIN member_study_plan mp ON mp.circle_plan_id = p.id
            WHERE p.circle_id = %s
            """,
            (circle_id,),
        )
        plan_rows = cur.fetchall()

        member_count = _scalar(
            cur, "SELECT COUNT(*) AS count FROM study_circle_member WHERE circle_id = %s", (circle_id,)
        )
        total_reflections = _scalar(
            cur,
            """
            SELECT COUNT(*) AS count FROM circle_reflection r
            JOIN circle_study_plan p ON p.id = r.circle_plan_id
            WHERE p.circle_id = %s
            """,
            (circle_id,),
        )
        total_comments = _scalar(
            cur,
            """
            SELECT COUNT(*) AS count FROM reflection_comment c
            JOIN circle_reflection r ON r.id = c.reflection_id
            JOIN circle_study_plan p ON p.id = r.circle_plan_id
            WHERE p.circle_id = %s
            """,
            (circle_id,),
        )
        total_prayers = _scalar(
            cur, "SELECT COUNT(*) AS count FROM circle_prayer WHERE circle_id = %s", (circle_id,)
        )
        total_support = _scalar(
            cur,
            """
            SELECT COUNT(*) AS count FROM prayer_support s
            JOIN circle_prayer p ON p.id = s.prayer_id
            WHERE p.circle_id = %s
            """,
            (circle_id,),
        )
        total_verses = _scalar(
            cur, "SELECT COUNT(*) AS count FROM circle_verse WHERE circle_id = %s", (circle_id,)
        )
        cur.execute(
            """
            SELECT DISTINCT (r.created_at AT TIME ZONE 'UTC')::date AS day
            FROM circle_reflection r
            JOIN circle_study_plan p ON p.id = r.circle_plan_id
            WHERE p.circle_id = %s
            UNION
            SELECT DISTINCT (created_at AT TIME ZONE 'UTC')::date FROM circle_prayer WHERE circle_id = %s
            UNION
            SELECT DISTINCT (created_at AT TIME ZONE 'UTC')::date FROM circle_verse WHERE circle_id = %s
            UNION
            SELECT DISTINCT (d.completed_at AT TIME ZONE 'UTC')::date
            FROM study_plan_day d
            JOIN member_study_plan mp ON mp.study_plan_id = d.plan_id
            JOIN circle_study_plan p ON p.id = mp.circle_plan_id
            WHERE p.circle_id = %s AND d.completed_at IS NOT NULL
            """,
            (circle_id, circle_id, circle_id, circle_id),
        )
        active_dates = [row["day"] for row in cur.fetchall()]

    plans: dict = {}
    total_days_completed = 0
    for row in plan_rows:
        plan = plans.setdefault(
            row["id"],
            {"duration": int(row["duration"]), "status": row["status"], "member_completed": []},
        )
        if row["user_id"] is not None:
            completed = int(row["completed_days"] or 0)
            plan["member_completed"].append(completed)
            total_days_completed += completed

    active_plans = [p for p in plans.values() if p["status"] == "active"]
    stats = {
        "total_days_completed": total_days_completed,
        "average_progress": average_progress(active_plans) if member_count else 0,
        "total_reflections": total_reflections,
        "total_comments": total_comments,
        "total_prayers": total_prayers,
        "total_support": total_support,
        "total_verses": total_verses,
        "active_days": len(set(active_dates)),
        "member_count": member_count,
        "completed_studies": sum(1 for p in plans.values() if p["status"] == "completed"),
        "longest_streak": longest_consecutive_run(active_dates),
    }
    return stats


def milestone_summary(stats: dict, seen: Optional[Iterable[str]] = None) -> dict:
    """Achieved and next circle milestones.

    When ``seen`` lists milestone ids the client has already celebrated, the
    summary also carries the newly reached ones and a celebration message.
    """
    achieved = check_circle_milestones(stats)
    summary = {
        "achieved": [m["id"] for m in achieved],
        "next": get_next_circle_milestone(stats),
    }
    if seen is not None:
        seen_ids = set(seen)
        new = [m for m in achieved if m["id"] not in seen_ids]
        summary["new"] = [m["id"] for m in new]
        summary["celebration"] = circle_celebration_message(new)
    return summary
