from fastapi import APIRouter, Depends, Query
from psycopg2.extras import RealDictCursor

from berea.clerk import get_formatted_user_names
from berea.db import get_conn, new_id, to_json_row
from berea.deps import require_user
from berea.errors import api_error
from berea.events import log_api_event
from berea.models import (
    CirclePrayerCreateRequest,
    CirclePrayerUpdateRequest,
    CircleVerseCreateRequest,
    CircleVerseDeleteRequest,
    HighlightCreateRequest,
    ReactionRequest,
)
from berea.permissions import (
    can_view_prayers,
    can_view_verses,
    filter_visible_prayers,
    filter_visible_verses,
    require_circle_member,
)
from berea.reactions import allowed_reactions, summarize_reactions, toggle_reaction

PRAYER_SOURCES = ("verse", "chat", "manual", "study")
PRAYER_STATUSES = ("ongoing", "answered")
PRAYER_CONTENT_MAX = 1000
TITLE_MAX = 100
REFERENCE_MAX = 100
VERSE_TEXT_MAX = 2000
NOTE_MAX = 500
INSIGHT_MAX = 500

router = APIRouter()


def with_user_names(items: list[dict]) -> list[dict]:
    names = get_formatted_user_names({item["user_id"] for item in items})
    result = []
    for item in items:
        row = to_json_row(item)
        row["user_name"] = names.get(item["user_id"], "Unknown User")
        result.append(row)
    return result


def require_sharing(member: dict, flag: str, label: str) -> None:
    if not member.get(flag):
        raise api_error(
            403,
            "forbidden",
            f"You must enable {label} sharing in your privacy settings first",
        )


def check_length(value: str | None, limit: int, field: str) -> None:
    if value and len(value) > limit:
        raise api_error(400, "invalid_payload", f"{field} must be {limit} characters or fewer")


def react_to(conn, table: str, entity_id: str, user_id: str, reaction_type: str) -> dict:
    if reaction_type not in allowed_reactions(table):
        raise api_error(400, "invalid_payload", f"Unsupported reaction: {reaction_type}")
    active = toggle_reaction(conn, table, entity_id, user_id, reaction_type)
    conn.commit()
    summary = summarize_reactions(conn, table, [entity_id], user_id)[entity_id]
    return {"success": True, "active": active, "reactions": summary}


def _get_circle_prayer(conn, circle_id: str, prayer_id: str) -> dict:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT id, circle_id, user_id, title, content, source, source_reference,
                   day_number, status, answered_at, created_at, updated_at
            FROM circle_prayer
            WHERE id = %s
            """,
            (prayer_id,),
        )
        prayer = cur.fetchone()
    if not prayer:
        raise api_error(404, "not_found", "Prayer request not found")
    if prayer["circle_id"] != circle_id:
        raise api_error(403, "forbidden", "Prayer request does not belong to this circle")
    return prayer


@router.get("/api/circles/{circle_id}/prayers")
def prayers_list(circle_id: str, current_user=Depends(require_user), conn=Depends(get_conn)):
    user_id = current_user["user_id"]
    require_circle_member(conn, circle_id, user_id)
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT
                p.id, p.user_id, p.title, p.content, p.source, p.source_reference,
                p.day_number, p.status, p.answered_at, p.created_at, p.updated_at,
                COUNT(s.id) AS support_count,
                BOOL_OR(s.user_id = %s) AS supported_by_me
            FROM circle_prayer p
            LEFT JOIN prayer_support s ON s.prayer_id = p.id
            WHERE p.circle_id = %s
            GROUP BY p.id
            ORDER BY p.created_at DESC
            """,
            (user_id, circle_id),
        )
        rows = cur.fetchall()
    visible = filter_visible_prayers(conn, rows, circle_id, user_id)
    prayers = with_user_names(visible)
    for prayer in prayers:
        prayer["support_count"] = int(prayer["support_count"])
        prayer["supported_by_me"] = bool(prayer["supported_by_me"])
    return {"success": True, "prayers": prayers}


@router.post("/api/circles/{circle_id}/prayers")
def prayers_create(
    circle_id: str,
    payload: CirclePrayerCreateRequest,
    current_user=Depends(require_user),
    conn=Depends(get_conn),
):
    user_id = current_user["user_id"]
    member = require_circle_member(conn, circle_id, user_id)
    require_sharing(member, "share_prayers", "prayer")
    content = (payload.content or "").strip()
    if not content:
        raise api_error(400, "invalid_payload", "Prayer content is required")
    check_length(content, PRAYER_CONTENT_MAX, "content")
    check_length(payload.title, TITLE_MAX, "title")
    if payload.source not in PRAYER_SOURCES:
        raise api_error(400, "invalid_payload", "source must be verse, chat, manual or study")
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            INSERT INTO circle_prayer
            (id, circle_id, user_id, title, content, source, source_reference, day_number)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING id, user_id, title, content, source, source_reference, day_number,
                      status, answered_at, created_at, updated_at
            """,
            (
                new_id(),
                circle_id,
                user_id,
                (payload.title or "").strip() or None,
                content,
                payload.source,
                (payload.source_reference or "").strip() or None,
                payload.day_number,
            ),
        )
        prayer = cur.fetchone()
    conn.commit()
    log_api_event("circle_prayer_create", {"user_id": user_id, "circle_id": circle_id, "source": payload.source})
    return {"success": True, "prayer": to_json_row(prayer)}


@router.patch("/api/circles/{circle_id}/prayers/{prayer_id}")
def prayers_update(
    circle_id: str,
    prayer_id: str,
    payload: CirclePrayerUpdateRequest,
    current_user=Depends(require_user),
    conn=Depends(get_conn),
):
    user_id = current_user["user_id"]
    require_circle_member(conn, circle_id, user_id)
    prayer = _get_circle_prayer(conn, circle_id, prayer_id)
    if prayer["user_id"] != user_id:
        raise api_error(403, "forbidden", "You can only edit your own prayer requests")

    updates = {}
    if payload.content is not None:
        content = payload.content.strip()
        if not content:
            raise api_error(400, "invalid_payload", "Content cannot be empty")
        check_length(content, PRAYER_CONTENT_MAX, "content")
        updates["content"] = content
    if payload.title is not None:
        check_length(payload.title, TITLE_MAX, "title")
        updates["title"] = payload.title.strip() or None
    if payload.status is not None:
        if payload.status not in PRAYER_STATUSES:
            raise api_error(400, "invalid_payload", 'Status must be either "ongoing" or "answered"')
        updates["status"] = payload.status
    if not updates:
        raise api_error(400, "invalid_payload", "Nothing to update")

    assignments = [f"{column} = %s" for column in updates]
    if updates.get("status") == "answered":
        assignments.append("answered_at = now()")
    elif "status" in updates:
        assignments.append("answered_at = NULL")
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            UPDATE circle_prayer
            SET {", ".join(assignments)}, updated_at = now()
            WHERE id = %s
            RETURNING id, user_id, title, content, source, source_reference, day_number,
                      status, answered_at, created_at, updated_at
            """,
            (*updates.values(), prayer_id),
        )
        updated = cur.fetchone()
    conn.commit()
    log_api_event("circle_prayer_update", {"user_id": user_id, "circle_id": circle_id, "fields": list(updates)})
    return {"success": True, "prayer": to_json_row(updated)}


@router.delete("/api/circles/{circle_id}/prayers/{prayer_id}")
def prayers_delete(circle_id: str, prayer_id: str, current_user=Depends(require_user), conn=Depends(get_conn)):
    user_id = current_user["user_id"]
    require_circle_member(conn, circle_id, user_id)
    prayer = _get_circle_prayer(conn, circle_id, prayer_id)
    if prayer["user_id"] != user_id:
        raise api_error(403, "forbidden", "You can only delete your own prayer requests")
    with conn.cursor() as cur:
        cur.execute("DELETE FROM circle_prayer WHERE id = %s", (prayer_id,))
    conn.commit()
    log_api_event("circle_prayer_delete", {"user_id": user_id, "circle_id": circle_id})
    return {"success": True}


@router.post("/api/circles/{circle_id}/prayers/{prayer_id}/support")
def prayers_support(circle_id: str, prayer_id: str, current_user=Depends(require_user), conn=Depends(get_conn)):
    user_id = current_user["user_id"]
    require_circle_member(conn, circle_id, user_id)
    prayer = _get_circle_prayer(conn, circle_id, prayer_id)
    if not can_view_prayers(conn, circle_id, prayer["user_id"], user_id):
        raise api_error(404, "not_found", "Prayer request not found")
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            "DELETE FROM prayer_support WHERE prayer_id = %s AND user_id = %s RETURNING id",
            (prayer_id, user_id),
        )
        removed = cur.fetchone()
        if not removed:
            cur.execute(
                """
                INSERT INTO prayer_support (id, prayer_id, user_id)
                VALUES (%s, %s, %s)
                ON CONFLICT DO NOTHING
                """,
                (new_id(), prayer_id, user_id),
            )
        cur.execute("SELECT COUNT(*) AS count FROM prayer_support WHERE prayer_id = %s", (prayer_id,))
        count = int(cur.fetchone()["count"])
    conn.commit()
    supported = not removed
    log_api_event("circle_prayer_support", {"user_id": user_id, "circle_id": circle_id, "supported": supported})
    return {"success": True, "supported": supported, "support_count": count}


@router.get("/api/circles/{circle_id}/verses")
def verses_list(circle_id: str, current_user=Depends(require_user), conn=Depends(get_conn)):
    user_id = current_user["user_id"]
    require_circle_member(conn, circle_id, user_id)
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT id, user_id, reference, text, note, from_day_number, created_at
            FROM circle_verse
            WHERE circle_id = %s
            ORDER BY created_at DESC
            """,
            (circle_id,),
        )
        rows = cur.fetchall()
    visible = filter_visible_verses(conn, rows, circle_id, user_id)
    reactions = summarize_reactions(conn, "verse_reaction", [v["id"] for v in visible], user_id)
    verses = with_user_names(visible)
    for verse in verses:
        verse["reactions"] = reactions[verse["id"]]
    return {"success": True, "verses": verses}


@router.post("/api/circles/{circle_id}/verses")
def verses_create(
    circle_id: str,
    payload: CircleVerseCreateRequest,
    current_user=Depends(require_user),
    conn=Depends(get_conn),
):
    user_id = current_user["user_id"]
    member = require_circle_member(conn, circle_id, user_id)
    require_sharing(member, "share_verses", "verse")
    reference = (payload.reference or "").strip()
    text = (payload.text or "").strip()
    if not reference or not text:
        raise api_error(400, "invalid_payload", "reference and text are required")
    check_length(reference, REFERENCE_MAX, "reference")
    check_length(text, VERSE_TEXT_MAX, "text")
    check_length(payload.note, NOTE_MAX, "note")
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            INSERT INTO circle_verse (id, circle_id, user_id, reference, text, note, from_day_number)
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            RETURNING id, user_id, reference, text, note, from_day_number, created_at
            """,
            (
                new_id(),
                circle_id,
                user_id,
                reference,
                text,
                (payload.note or "").strip() or None,
                payload.from_day_number,
            ),
        )
        verse = cur.fetchone()
    conn.commit()
    log_api_event("circle_verse_share", {"user_id": user_id, "circle_id": circle_id, "reference": reference})
    return {"success": True, "verse": to_json_row(verse)}


@router.delete("/api/circles/{circle_id}/verses")
def verses_delete(
    circle_id: str,
    payload: CircleVerseDeleteRequest,
    current_user=Depends(require_user),
    conn=Depends(get_conn),
):
    user_id = current_user["user_id"]
    require_circle_member(conn, circle_id, user_id)
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute("SELECT id, circle_id, user_id FROM circle_verse WHERE id = %s", (payload.verse_id,))
        verse = cur.fetchone()
    if not verse or verse["circle_id"] != circle_id:
        raise api_error(404, "not_found", "Verse not found")
    if verse["user_id"] != user_id:
        raise api_error(403, "forbidden", "You can only delete verses you shared")
    with conn.cursor() as cur:
        cur.execute("DELETE FROM circle_verse WHERE id = %s", (payload.verse_id,))
    conn.commit()
    log_api_event("circle_verse_delete", {"user_id": user_id, "circle_id": circle_id})
    return {"success": True}


@router.post("/api/circles/{circle_id}/verses/{verse_id}/react")
def verses_react(
    circle_id: str,
    verse_id: str,
    payload: ReactionRequest,
    current_user=Depends(require_user),
    conn=Depends(get_conn),
):
    user_id = current_user["user_id"]
    require_circle_member(conn, circle_id, user_id)
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute("SELECT circle_id, user_id FROM circle_verse WHERE id = %s", (verse_id,))
        verse = cur.fetchone()
    if (
        not verse
        or verse["circle_id"] != circle_id
        or not can_view_verses(conn, circle_id, verse["user_id"], user_id)
    ):
        raise api_error(404, "not_found", "Verse not found")
    return react_to(conn, "verse_reaction", verse_id, user_id, payload.reaction_type)


@router.get("/api/circles/{circle_id}/highlights")
def highlights_list(
    circle_id: str,
    day_number: int | None = Query(None),
    current_user=Depends(require_user),
    conn=Depends(get_conn),
):
    user_id = current_user["user_id"]
    require_circle_member(conn, circle_id, user_id)
    query = """
        SELECT id, user_id, reference, text, insight, from_day_number, created_at
        FROM circle_highlight
        WHERE circle_id = %s
    """
    params: list = [circle_id]
    if day_number is not None:
        query += " AND from_day_number = %s"
        params.append(day_number)
    query += " ORDER BY created_at DESC"
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(query, tuple(params))
        rows = cur.fetchall()
    # highlights follow the verse sharing flag
    visible = filter_visible_verses(conn, rows, circle_id, user_id)
    reactions = summarize_reactions(conn, "highlight_reaction", [h["id"] for h in visible], user_id)
    highlights = with_user_names(visible)
    for highlight in highlights:
        highlight["reactions"] = reactions[highlight["id"]]
    return {"success": True, "highlights": highlights}


@router.post("/api/circles/{circle_id}/highlights")
def highlights_create(
    circle_id: str,
    payload: HighlightCreateRequest,
    current_user=Depends(require_user),
    conn=Depends(get_conn),
):
    user_id = current_user["user_id"]
    member = require_circle_member(conn, circle_id, user_id)
    require_sharing(member, "share_verses", "verse")
    reference = (payload.reference or "").strip()
    text = (payload.text or "").strip()
    if not reference or not text:
        raise api_error(400, "invalid_payload", "reference and text are required")
    check_length(reference, REFERENCE_MAX, "reference")
    check_length(text, VERSE_TEXT_MAX, "text")
    check_length(payload.insight, INSIGHT_MAX, "insight")
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            INSERT INTO circle_highlight (id, circle_id, user_id, reference, text, insight, from_day_number)
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            RETURNING id, user_id, reference, text, insight, from_day_number, created_at
            """,
            (
                new_id(),
                circle_id,
                user_id,
                reference,
                text,
                (payload.insight or "").strip() or None,
                payload.from_day_number,
            ),
        )
        highlight = cur.fetchone()
    conn.commit()
    log_api_event("circle_highlight_create", {"user_id": user_id, "circle_id": circle_id})
    return {"success": True, "highlight": to_json_row(highlight)}


@router.post("/api/circles/{circle_id}/highlights/{highlight_id}/react")
def highlights_react(
    circle_id: str,
    highlight_id: str,
    payload: ReactionRequest,
    current_user=Depends(require_user),
    conn=Depends(get_conn),
):
    user_id = current_user["user_id"]
    require_circle_member(conn, circle_id, user_id)
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute("SELECT circle_id, user_id FROM circle_highlight WHERE id = %s", (highlight_id,))
        highlight = cur.fetchone()
    if (
        not highlight
        or highlight["circle_id"] != circle_id
        or not can_view_verses(conn, circle_id, highlight["user_id"], user_id)
    ):
        raise api_error(404, "not_found", "Highlight not found")
    return react_to(conn, "highlight_reaction", highlight_id, user_id, payload.reaction_type)
