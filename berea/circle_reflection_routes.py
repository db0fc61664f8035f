from fastapi import APIRouter, Depends, Query
from psycopg2.extras import RealDictCursor

from berea.circle_sharing_routes import check_length, react_to, require_sharing, with_user_names
from berea.db import get_conn, is_unique_violation, new_id, to_json_row
from berea.deps import require_user
from berea.errors import api_error
from berea.events import log_api_event
from berea.models import (
    CommentCreateRequest,
    CommentDeleteRequest,
    CommentUpdateRequest,
    EncouragementCreateRequest,
    EncouragementResponseRequest,
    ReactionRequest,
    ReflectionCreateRequest,
    ReflectionUpdateRequest,
)
from berea.permissions import can_view_reflections, filter_visible_reflections, require_circle_member
from berea.reactions import summarize_reactions

REFLECTION_MAX = 500
VERSE_HIGHLIGHT_MAX = 500
COMMENT_MAX = 200
PROMPT_MAX = 200
CUSTOM_RESPONSE_MAX = 500
RESPONSE_SOURCES = ("ai_generated", "user_custom")
DEFAULT_ENCOURAGEMENT_LIMIT = 10

REFLECTION_COLUMNS = """
    r.id, r.circle_plan_id, r.user_id, r.day_number, r.content, r.verse_highlight,
    r.created_at, r.updated_at
"""

router = APIRouter()


def _get_circle_reflection(conn, circle_id: str, reflection_id: str) -> dict:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            SELECT {REFLECTION_COLUMNS}, p.circle_id
            FROM circle_reflection r
            JOIN circle_study_plan p ON p.id = r.circle_plan_id
            WHERE r.id = %s
            """,
            (reflection_id,),
        )
        reflection = cur.fetchone()
    if not reflection:
        raise api_error(404, "not_found", "Reflection not found")
    if reflection["circle_id"] != circle_id:
        raise api_error(403, "forbidden", "Reflection does not belong to this circle")
    return reflection


def _get_comment(conn, reflection_id: str, comment_id: str) -> dict:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            "SELECT id, reflection_id, user_id FROM reflection_comment WHERE id = %s",
            (comment_id,),
        )
        comment = cur.fetchone()
    if not comment or comment["reflection_id"] != reflection_id:
        raise api_error(404, "not_found", "Comment not found")
    return comment


def _get_visible_reflection(conn, circle_id: str, reflection_id: str, user_id: str) -> dict:
    reflection = _get_circle_reflection(conn, circle_id, reflection_id)
    if not can_view_reflections(conn, circle_id, reflection["user_id"], user_id):
        raise api_error(404, "not_found", "Reflection not found")
    return reflection


def _clean_comment(content: str | None) -> str:
    content = (content or "").strip()
    if not content:
        raise api_error(400, "invalid_payload", "Comment content is required")
    check_length(content, COMMENT_MAX, "Comment")
    return content


@router.get("/api/circles/{circle_id}/reflections")
def reflections_list(
    circle_id: str,
    circle_plan_id: str | None = Query(None),
    day_number: int | None = Query(None),
    current_user=Depends(require_user),
    conn=Depends(get_conn),
):
    user_id = current_user["user_id"]
    require_circle_member(conn, circle_id, user_id)
    query = f"""
        SELECT {REFLECTION_COLUMNS},
               (SELECT COUNT(*) FROM reflection_comment c WHERE c.reflection_id = r.id) AS comment_count
        FROM circle_reflection r
        JOIN circle_study_plan p ON p.id = r.circle_plan_id
        WHERE p.circle_id = %s
    """
    params: list = [circle_id]
    if circle_plan_id:
        query += " AND r.circle_plan_id = %s"
        params.append(circle_plan_id)
    if day_number is not None:
        query += " AND r.day_number = %s"
        params.append(day_number)
    query += " ORDER BY r.created_at DESC"
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(query, tuple(params))
        rows = cur.fetchall()

    visible = filter_visible_reflections(conn, rows, circle_id, user_id)
    reactions = summarize_reactions(conn, "reflection_reaction", [r["id"] for r in visible], user_id)
    reflections = with_user_names(visible)
    for reflection in reflections:
        reflection["comment_count"] = int(reflection["comment_count"])
        reflection["reactions"] = reactions[reflection["id"]]
    return {"success": True, "reflections": reflections}


@router.post("/api/circles/{circle_id}/reflections")
def reflections_create(
    circle_id: str,
    payload: ReflectionCreateRequest,
    current_user=Depends(require_user),
    conn=Depends(get_conn),
):
    user_id = current_user["user_id"]
    member = require_circle_member(conn, circle_id, user_id)
    require_sharing(member, "share_reflections", "reflection")
    if not payload.circle_plan_id:
        raise api_error(400, "invalid_payload", "Study plan ID is required")
    if payload.day_number < 1:
        raise api_error(400, "invalid_payload", "Valid day number is required")
    content = (payload.content or "").strip()
    if not content:
        raise api_error(400, "invalid_payload", "Reflection content is required")
    check_length(content, REFLECTION_MAX, "Reflection")
    check_length(payload.verse_highlight, VERSE_HIGHLIGHT_MAX, "verse_highlight")

    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            "SELECT id, duration FROM circle_study_plan WHERE id = %s AND circle_id = %s",
            (payload.circle_plan_id, circle_id),
        )
        circle_plan = cur.fetchone()
    if not circle_plan:
        raise api_error(400, "invalid_payload", "Study plan does not belong to this circle")
    if payload.day_number > circle_plan["duration"]:
        raise api_error(400, "invalid_payload", "Valid day number is required")

    try:
        with conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(
                """
                INSERT INTO circle_reflection
                (id, circle_plan_id, user_id, day_number, content, verse_highlight)
                VALUES (%s, %s, %s, %s, %s, %s)
                RETURNING id, circle_plan_id, user_id, day_number, content, verse_highlight,
                          created_at, updated_at
                """,
                (
                    new_id(),
                    payload.circle_plan_id,
                    user_id,
                    payload.day_number,
                    content,
                    (payload.verse_highlight or "").strip() or None,
                ),
            )
            reflection = cur.fetchone()
    except Exception as exc:
        if not is_unique_violation(exc):
            raise
        conn.rollback()
        raise api_error(409, "conflict", "You have already shared a reflection for this day")
    conn.commit()
    log_api_event(
        "circle_reflection_create",
        {"user_id": user_id, "circle_id": circle_id, "day_number": payload.day_number},
    )
    return {"success": True, "reflection": to_json_row(reflection)}


@router.patch("/api/circles/{circle_id}/reflections/{reflection_id}")
def reflections_update(
    circle_id: str,
    reflection_id: str,
    payload: ReflectionUpdateRequest,
    current_user=Depends(require_user),
    conn=Depends(get_conn),
):
    user_id = current_user["user_id"]
    require_circle_member(conn, circle_id, user_id)
    reflection = _get_circle_reflection(conn, circle_id, reflection_id)
    if reflection["user_id"] != user_id:
        raise api_error(403, "forbidden", "You can only edit your own reflections")

    content = reflection["content"]
    if payload.content is not None:
        content = payload.content.strip()
        if not content:
            raise api_error(400, "invalid_payload", "Reflection content is required")
        check_length(content, REFLECTION_MAX, "Reflection")
    verse_highlight = reflection["verse_highlight"]
    if payload.verse_highlight is not None:
        check_length(payload.verse_highlight, VERSE_HIGHLIGHT_MAX, "verse_highlight")
        verse_highlight = payload.verse_highlight.strip() or None

    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            UPDATE circle_reflection
            SET content = %s, verse_highlight = %s, updated_at = now()
            WHERE id = %s
            RETURNING id, circle_plan_id, user_id, day_number, content, verse_highlight,
                      created_at, updated_at
            """,
            (content, verse_highlight, reflection_id),
        )
        updated = cur.fetchone()
    conn.commit()
    log_api_event("circle_reflection_update", {"user_id": user_id, "circle_id": circle_id})
    return {"success": True, "reflection": to_json_row(updated)}


@router.delete("/api/circles/{circle_id}/reflections/{reflection_id}")
def reflections_delete(
    circle_id: str,
    reflection_id: str,
    current_user=Depends(require_user),
    conn=Depends(get_conn),
):
    user_id = current_user["user_id"]
    require_circle_member(conn, circle_id, user_id)
    reflection = _get_circle_reflection(conn, circle_id, reflection_id)
    if reflection["user_id"] != user_id:
        raise api_error(403, "forbidden", "You can only delete your own reflections")
    with conn.cursor() as cur:
        cur.execute("DELETE FROM circle_reflection WHERE id = %s", (reflection_id,))
    conn.commit()
    log_api_event("circle_reflection_delete", {"user_id": user_id, "circle_id": circle_id})
    return {"success": True}


@router.post("/api/circles/{circle_id}/reflections/{reflection_id}/react")
def reflections_react(
    circle_id: str,
    reflection_id: str,
    payload: ReactionRequest,
    current_user=Depends(require_user),
    conn=Depends(get_conn),
):
    user_id = current_user["user_id"]
    require_circle_member(conn, circle_id, user_id)
    _get_visible_reflection(conn, circle_id, reflection_id, user_id)
    return react_to(conn, "reflection_reaction", reflection_id, user_id, payload.reaction_type)


@router.get("/api/circles/{circle_id}/reflections/{reflection_id}/comments")
def comments_list(
    circle_id: str,
    reflection_id: str,
    current_user=Depends(require_user),
    conn=Depends(get_conn),
):
    user_id = current_user["user_id"]
    require_circle_member(conn, circle_id, user_id)
    _get_visible_reflection(conn, circle_id, reflection_id, user_id)
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT id, reflection_id, user_id, content, created_at, updated_at
            FROM reflection_comment
            WHERE reflection_id = %s
            ORDER BY created_at ASC
            """,
            (reflection_id,),
        )
        rows = cur.fetchall()
    return {"success": True, "comments": with_user_names(rows)}


@router.post("/api/circles/{circle_id}/reflections/{reflection_id}/comments")
def comments_create(
    circle_id: str,
    reflection_id: str,
    payload: CommentCreateRequest,
    current_user=Depends(require_user),
    conn=Depends(get_conn),
):
    user_id = current_user["user_id"]
    require_circle_member(conn, circle_id, user_id)
    content = _clean_comment(payload.content)
    _get_visible_reflection(conn, circle_id, reflection_id, user_id)
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            INSERT INTO reflection_comment (id, reflection_id, user_id, content)
            VALUES (%s, %s, %s, %s)
            RETURNING id, reflection_id, user_id, content, created_at, updated_at
            """,
            (new_id(), reflection_id, user_id, content),
        )
        comment = cur.fetchone()
    conn.commit()
    log_api_event("circle_comment_create", {"user_id": user_id, "circle_id": circle_id})
    return {"success": True, "comment": with_user_names([comment])[0]}


@router.patch("/api/circles/{circle_id}/reflections/{reflection_id}/comments")
def comments_update(
    circle_id: str,
    reflection_id: str,
    payload: CommentUpdateRequest,
    current_user=Depends(require_user),
    conn=Depends(get_conn),
):
    user_id = current_user["user_id"]
    if not payload.comment_id:
        raise api_error(400, "invalid_payload", "Comment ID is required")
    require_circle_member(conn, circle_id, user_id)
    _get_visible_reflection(conn, circle_id, reflection_id, user_id)
    comment = _get_comment(conn, reflection_id, payload.comment_id)
    if comment["user_id"] != user_id:
        raise api_error(403, "forbidden", "You can only edit your own comments")
    content = _clean_comment(payload.content)
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            UPDATE reflection_comment
            SET content = %s, updated_at = now()
            WHERE id = %s
            RETURNING id, reflection_id, user_id, content, created_at, updated_at
            """,
            (content, payload.comment_id),
        )
        updated = cur.fetchone()
    conn.commit()
    log_api_event("circle_comment_update", {"user_id": user_id, "circle_id": circle_id})
    return {"success": True, "comment": to_json_row(updated)}


@router.delete("/api/circles/{circle_id}/reflections/{reflection_id}/comments")
def comments_delete(
    circle_id: str,
    reflection_id: str,
    payload: CommentDeleteRequest,
    current_user=Depends(require_user),
    conn=Depends(get_conn),
):
    user_id = current_user["user_id"]
    if not payload.comment_id:
        raise api_error(400, "invalid_payload", "Comment ID is required")
    require_circle_member(conn, circle_id, user_id)
    _get_visible_reflection(conn, circle_id, reflection_id, user_id)
    comment = _get_comment(conn, reflection_id, payload.comment_id)
    if comment["user_id"] != user_id:
        raise api_error(403, "forbidden", "You can only delete your own comments")
    with conn.cursor() as cur:
        cur.execute("DELETE FROM reflection_comment WHERE id = %s", (payload.comment_id,))
    conn.commit()
    log_api_event("circle_comment_delete", {"user_id": user_id, "circle_id": circle_id})
    return {"success": True}


def _get_circle_encouragement(conn, circle_id: str, encouragement_id: str) -> dict:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            "SELECT id, circle_id FROM circle_encouragement WHERE id = %s",
            (encouragement_id,),
        )
        encouragement = cur.fetchone()
    if not encouragement:
        raise api_error(404, "not_found", "Encouragement prompt not found")
    if encouragement["circle_id"] != circle_id:
        raise api_error(403, "forbidden", "Encouragement does not belong to this circle")
    return encouragement


@router.get("/api/circles/{circle_id}/encouragements")
def encouragements_list(
    circle_id: str,
    limit: int = Query(DEFAULT_ENCOURAGEMENT_LIMIT, ge=1, le=50),
    current_user=Depends(require_user),
    conn=Depends(get_conn),
):
    user_id = current_user["user_id"]
    require_circle_member(conn, circle_id, user_id)
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT id, created_by AS user_id, prompt_text, day_number, created_at
            FROM circle_encouragement
            WHERE circle_id = %s
            ORDER BY created_at DESC
            LIMIT %s
            """,
            (circle_id, limit),
        )
        prompts = cur.fetchall()
        responses = []
        if prompts:
            cur.execute(
                """
                SELECT id, encouragement_id, user_id, source, content, scripture_ref,
                       scripture_text, reflection, prayer_prompt, created_at
                FROM encouragement_response
                WHERE encouragement_id = ANY(%s)
                ORDER BY created_at DESC
                """,
                ([p["id"] for p in prompts],),
            )
            responses = cur.fetchall()

    reactions = summarize_reactions(conn, "encouragement_reaction", [r["id"] for r in responses], user_id)
    named_responses = with_user_names(responses)
    by_prompt: dict = {}
    for response in named_responses:
        response["reactions"] = reactions[response["id"]]
        by_prompt.setdefault(response["encouragement_id"], []).append(response)

    encouragements = []
    for prompt in with_user_names(prompts):
        prompt["created_by"] = prompt.pop("user_id")
        prompt["created_by_name"] = prompt.pop("user_name")
        prompt["responses"] = by_prompt.get(prompt["id"], [])
        prompt["response_count"] = len(prompt["responses"])
        encouragements.append(prompt)
    return {"success": True, "encouragements": encouragements}


@router.post("/api/circles/{circle_id}/encouragements")
def encouragements_create(
    circle_id: str,
    payload: EncouragementCreateRequest,
    current_user=Depends(require_user),
    conn=Depends(get_conn),
):
    user_id = current_user["user_id"]
    require_circle_member(conn, circle_id, user_id)
    prompt_text = (payload.prompt_text or "").strip()
    if not prompt_text:
        raise api_error(400, "invalid_payload", "Prompt text is required")
    check_length(prompt_text, PROMPT_MAX, "Prompt text")
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            INSERT INTO circle_encouragement (id, circle_id, created_by, prompt_text, day_number)
            VALUES (%s, %s, %s, %s, %s)
            RETURNING id, created_by, prompt_text, day_number, created_at
            """,
            (new_id(), circle_id, user_id, prompt_text, payload.day_number),
        )
        encouragement = cur.fetchone()
    conn.commit()
    log_api_event("circle_encouragement_create", {"user_id": user_id, "circle_id": circle_id})
    body = to_json_row(encouragement)
    body["responses"] = []
    body["response_count"] = 0
    return {"success": True, "encouragement": body}


@router.post("/api/circles/{circle_id}/encouragements/{encouragement_id}/responses")
def encouragements_respond(
    circle_id: str,
    encouragement_id: str,
    payload: EncouragementResponseRequest,
    current_user=Depends(require_user),
    conn=Depends(get_conn),
):
    user_id = current_user["user_id"]
    require_circle_member(conn, circle_id, user_id)
    if payload.source not in RESPONSE_SOURCES:
        raise api_error(400, "invalid_payload", "source must be ai_generated or user_custom")
    content = (payload.content or "").strip()
    if not content:
        raise api_error(400, "invalid_payload", "Response content is required")
    if payload.source == "user_custom":
        check_length(content, CUSTOM_RESPONSE_MAX, "Response")
    _get_circle_encouragement(conn, circle_id, encouragement_id)
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            INSERT INTO encouragement_response
            (id, encouragement_id, user_id, source, content, scripture_ref, scripture_text,
             reflection, prayer_prompt)
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
            RETURNING id, encouragement_id, user_id, source, content, scripture_ref,
                      scripture_text, reflection, prayer_prompt, created_at
            """,
            (
                new_id(),
                encouragement_id,
                user_id,
                payload.source,
                content,
                payload.scripture_ref,
                payload.scripture_text,
                payload.reflection,
                payload.prayer_prompt,
            ),
        )
        response = cur.fetchone()
    conn.commit()
    log_api_event(
        "circle_encouragement_respond",
        {"user_id": user_id, "circle_id": circle_id, "source": payload.source},
    )
    return {"success": True, "response": with_user_names([response])[0]}


@router.post("/api/circles/{circle_id}/encouragements/{encouragement_id}/responses/{response_id}/react")
def encouragements_react(
    circle_id: str,
    encouragement_id: str,
    response_id: str,
    payload: ReactionRequest,
    current_user=Depends(require_user),
    conn=Depends(get_conn),
):
    user_id = current_user["user_id"]
    require_circle_member(conn, circle_id, user_id)
    _get_circle_encouragement(conn, circle_id, encouragement_id)
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute("SELECT encouragement_id FROM encouragement_response WHERE id = %s", (response_id,))
        response = cur.fetchone()
    if not response or response["encouragement_id"] != encouragement_id:
        raise api_error(404, "not_found", "Response not found")
    return react_to(conn, "encouragement_reaction", response_id, user_id, payload.reaction_type)
