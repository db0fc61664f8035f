from typing import List

from psycopg2.extras import RealDictCursor, execute_values

from berea.db import new_id
from berea.study_plans import insert_plan

INSERT_CIRCLE_DAYS_SQL = """
INSERT INTO circle_study_day
(id, circle_plan_id, day_number, title, content, reflection, prayer, verse_reference, verse_text)
VALUES %s
"""

CIRCLE_PLAN_COLUMNS = """
    id, circle_id, title, description, duration, template_source, status,
    start_date, created_by, created_at
"""


def get_active_circle_study(conn, circle_id: str) -> dict | None:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            SELECT {CIRCLE_PLAN_COLUMNS}
            FROM circle_study_plan
            WHERE circle_id = %s AND status = 'active'
            ORDER BY created_at DESC
            LIMIT 1
            """,
            (circle_id,),
        )
        return cur.fetchone()


def get_circle_study(conn, circle_plan_id: str) -> dict | None:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"SELECT {CIRCLE_PLAN_COLUMNS} FROM circle_study_plan WHERE id = %s",
            (circle_plan_id,),
        )
        return cur.fetchone()


def list_circle_studies(conn, circle_id: str, user_id: str) -> List[dict]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT
                p.id,
                p.title,
                p.description,
                p.duration,
                p.template_source,
                p.status,
                p.start_date,
                p.created_by,
                p.created_at,
                (SELECT COUNT(*) FROM member_study_plan mp WHERE mp.circle_plan_id = p.id) AS member_count,
                (
                    SELECT mp.study_plan_id
                    FROM member_study_plan mp
                    WHERE mp.circle_plan_id = p.id AND mp.user_id = %s
                ) AS my_study_plan_id
            FROM circle_study_plan p
            WHERE p.circle_id = %s
            ORDER BY p.created_at DESC
            """,
            (user_id, circle_id),
        )
        return cur.fetchall()


def get_circle_study_days(conn, circle_plan_id: str) -> List[dict]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT day_number, title, content, reflection, prayer, verse_reference, verse_text
            FROM circle_study_day
            WHERE circle_plan_id = %s
            ORDER BY day_number ASC
            """,
            (circle_plan_id,),
        )
        return cur.fetchall()


def circle_member_ids(conn, circle_id: str) -> List[str]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            "SELECT user_id FROM study_circle_member WHERE circle_id = %s ORDER BY joined_at ASC",
            (circle_id,),
        )
        return [row["user_id"] for row in cur.fetchall()]


def users_with_active_plan(conn, user_ids: List[str]) -> set:
    if not user_ids:
        return set()
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT DISTINCT user_id
            FROM study_plan
            WHERE user_id = ANY(%s) AND status = 'active' AND deleted_at IS NULL
            """,
            (list(user_ids),),
        )
        return {row["user_id"] for row in cur.fetchall()}


def _link_member_plan(conn, circle_plan_id: str, user_id: str, study_plan_id: str) -> None:
    with conn.cursor() as cur:
        cur.execute(
            """
            INSERT INTO member_study_plan (id, circle_plan_id, user_id, study_plan_id)
            VALUES (%s, %s, %s, %s)
            """,
            (new_id(), circle_plan_id, user_id, study_plan_id),
        )


def create_circle_study(
    conn,
    circle_id: str,
    created_by: str,
    plan: dict,
    duration: int,
    template_source: str,
) -> dict:
    """Create a circle study and a personal copy for each member.

    Members who already have an active personal plan are skipped; they can
    join later. The caller commits.
    """
    circle_plan_id = new_id()
    with conn.cursor() as cur:
        cur.execute(
            """
            INSERT INTO circle_study_plan
            (id, circle_id, title, description, duration, template_source, status, created_by)
            VALUES (%s, %s, %s, %s, %s, %s, 'active', %s)
            """,
            (
                circle_plan_id,
                circle_id,
                plan["title"],
                plan.get("description"),
                duration,
                template_source,
                created_by,
            ),
        )
        execute_values(
            cur,
            INSERT_CIRCLE_DAYS_SQL,
            [
                (
                    new_id(),
                    circle_plan_id,
                    day["day_number"],
                    day["title"],
                    day["content"],
                    day.get("reflection"),
                    day.get("prayer"),
                    day.get("verse_reference"),
                    day.get("verse_text"),
                )
                for day in plan["days"]
            ],
        )

    member_ids = circle_member_ids(conn, circle_id)
    busy = users_with_active_plan(conn, member_ids)
    enrolled = []
    for user_id in member_ids:
        if user_id in busy:
            continue
        study_plan_id = insert_plan(conn, user_id, plan, duration, f"circle_{template_source}")
        _link_member_plan(conn, circle_plan_id, user_id, study_plan_id)
        enrolled.append(user_id)
    return {
        "id": circle_plan_id,
        "enrolled_user_ids": enrolled,
        "skipped_user_ids": [u for u in member_ids if u in busy],
    }


def get_member_plan(conn, circle_plan_id: str, user_id: str) -> dict | None:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT id, study_plan_id
            FROM member_study_plan
            WHERE circle_plan_id = %s AND user_id = %s
            """,
            (circle_plan_id, user_id),
        )
        return cur.fetchone()


def join_circle_study(conn, circle_plan: dict, user_id: str) -> str:
    """Give the user a personal copy of every canonical day. The caller commits."""
    days = get_circle_study_days(conn, circle_plan["id"])
    plan = {
        "title": circle_plan["title"],
        "description": circle_plan.get("description"),
        "days": days,
    }
    study_plan_id = insert_plan(
        conn,
        user_id,
        plan,
        int(circle_plan["duration"]),
        f"circle_{circle_plan['template_source']}",
    )
    _link_member_plan(conn, circle_plan["id"], user_id, study_plan_id)
    return study_plan_id


def member_progress(conn, circle_plan_id: str) -> List[dict]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT
                mp.user_id,
                mp.study_plan_id,
                mp.joined_at,
                d.day_number,
                d.title,
                d.completed,
                d.completed_at
            FROM member_study_plan mp
            JOIN study_plan_day d ON d.plan_id = mp.study_plan_id
            WHERE mp.circle_plan_id = %s
            ORDER BY mp.joined_at ASC, d.day_number ASC
            """,
            (circle_plan_id,),
        )
        rows = cur.fetchall()
    members: dict = {}
    for row in rows:
        entry = members.setdefault(
            row["user_id"],
            {
                "user_id": row["user_id"],
                "study_plan_id": row["study_plan_id"],
                "joined_at": row["joined_at"],
                "days": [],
            },
        )
        entry["days"].append(
            {
                "day_number": row["day_number"],
                "title": row["title"],
                "completed": bool(row["completed"]),
                "completed_at": row["completed_at"],
            }
        )
    return list(members.values())
