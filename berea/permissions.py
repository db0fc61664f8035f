"""Circle membership and per-member visibility checks.

Every circle-scoped handler calls :func:`verify_circle_member` before touching
circle data, and every list of member-authored items goes through the matching
``filter_visible_*`` helper before it leaves the API. A member always sees their
own items; other members see them only when the author's sharing flag is on.
"""

from psycopg2.extras import RealDictCursor

from berea.errors import api_error

SHARE_FLAGS = ("share_progress", "share_reflections", "share_verses", "share_prayers")
ADMIN_ROLES = {"owner", "admin"}


def verify_circle_member(conn, circle_id: str, user_id: str) -> dict | None:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT
                m.id,
                m.circle_id,
                m.user_id,
                m.role,
                m.share_progress,
                m.share_reflections,
                m.share_verses,
                m.share_prayers,
                m.joined_at,
                c.name AS circle_name,
                c.created_by,
                c.max_members
            FROM study_circle_member m
            JOIN study_circle c ON c.id = m.circle_id
            WHERE m.circle_id = %s AND m.user_id = %s
            """,
            (circle_id, user_id),
        )
        return cur.fetchone()


def verify_circle_admin(conn, circle_id: str, user_id: str) -> dict | None:
    member = verify_circle_member(conn, circle_id, user_id)
    if not member or member["role"] not in ADMIN_ROLES:
        return None
    return member


def verify_circle_owner(conn, circle_id: str, user_id: str) -> dict | None:
    member = verify_circle_member(conn, circle_id, user_id)
    if not member or member["role"] != "owner":
        return None
    return member


def get_member_privacy_settings(conn, circle_id: str, user_id: str) -> dict:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT share_progress, share_reflections, share_verses, share_prayers
            FROM study_circle_member
            WHERE circle_id = %s AND user_id = %s
            """,
            (circle_id, user_id),
        )
        row = cur.fetchone()
    if not row:
        return {flag: False for flag in SHARE_FLAGS}
    return {flag: bool(row.get(flag)) for flag in SHARE_FLAGS}


def _can_view(conn, flag: str, circle_id: str, target_user_id: str, requesting_user_id: str) -> bool:
    if target_user_id == requesting_user_id:
        return True
    return get_member_privacy_settings(conn, circle_id, target_user_id)[flag]


def can_view_reflections(conn, circle_id: str, target_user_id: str, requesting_user_id: str) -> bool:
    return _can_view(conn, "share_reflections", circle_id, target_user_id, requesting_user_id)


def can_view_progress(conn, circle_id: str, target_user_id: str, requesting_user_id: str) -> bool:
    return _can_view(conn, "share_progress", circle_id, target_user_id, requesting_user_id)


def can_view_verses(conn, circle_id: str, target_user_id: str, requesting_user_id: str) -> bool:
    return _can_view(conn, "share_verses", circle_id, target_user_id, requesting_user_id)


def can_view_prayers(conn, circle_id: str, target_user_id: str, requesting_user_id: str) -> bool:
    return _can_view(conn, "share_prayers", circle_id, target_user_id, requesting_user_id)


def _filter_visible(conn, predicate, items: list[dict], circle_id: str, requesting_user_id: str) -> list[dict]:
    decisions: dict[str, bool] = {}
    visible = []
    for item in items:
        author = item.get("user_id")
        if author not in decisions:
            decisions[author] = predicate(conn, circle_id, author, requesting_user_id)
        if decisions[author]:
            visible.append(item)
    return visible


def filter_visible_reflections(conn, items: list[dict], circle_id: str, requesting_user_id: str) -> list[dict]:
    return _filter_visible(conn, can_view_reflections, items, circle_id, requesting_user_id)


def filter_visible_prayers(conn, items: list[dict], circle_id: str, requesting_user_id: str) -> list[dict]:
    return _filter_visible(conn, can_view_prayers, items, circle_id, requesting_user_id)


def filter_visible_verses(conn, items: list[dict], circle_id: str, requesting_user_id: str) -> list[dict]:
    return _filter_visible(conn, can_view_verses, items, circle_id, requesting_user_id)


def count_circle_members(conn, circle_id: str) -> int:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            "SELECT COUNT(*) AS count FROM study_circle_member WHERE circle_id = %s",
            (circle_id,),
        )
        row = cur.fetchone()
    return int(row["count"]) if row else 0


def is_circle_full(conn, circle_id: str) -> bool:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT c.max_members, COUNT(m.id) AS member_count
            FROM study_circle c
            LEFT JOIN study_circle_member m ON m.circle_id = c.id
            WHERE c.id = %s
            GROUP BY c.id, c.max_members
            """,
            (circle_id,),
        )
        row = cur.fetchone()
    if not row:
        return True
    return int(row["member_count"]) >= int(row["max_members"])


def require_circle_member(conn, circle_id: str, user_id: str) -> dict:
    member = verify_circle_member(conn, circle_id, user_id)
    if not member:
        raise api_error(403, "forbidden", "Not a member of this circle.")
    return member
