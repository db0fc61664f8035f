from fastapi import APIRouter, Depends
from psycopg2.extras import RealDictCursor

from berea.conversations import (
    MESSAGE_ROLES,
    append_message,
    create_conversation,
    delete_conversation,
    get_conversation,
    get_messages,
    list_conversations,
)
from berea.db import get_conn, new_id, to_json_row
from berea.deps import require_user
from berea.errors import api_error
from berea.events import log_api_event
from berea.models import (
    ConversationCreateRequest,
    ConversationMessageRequest,
    IdRequest,
    MemorizedVerseRequest,
    PrayerCreateRequest,
    PrayerUpdateRequest,
    SavedVerseRequest,
    VerseReferenceRequest,
)

PRAYER_STATUSES = ("ongoing", "answered")

router = APIRouter()


def _owned_conversation(conn, conversation_id: str, user_id: str) -> dict:
    conversation = get_conversation(conn, conversation_id)
    if not conversation:
        raise api_error(404, "not_found", "Conversation not found")
    if conversation["user_id"] != user_id:
        raise api_error(403, "forbidden", "Not your conversation")
    return conversation


@router.get("/api/conversations")
def conversations_list(current_user=Depends(require_user), conn=Depends(get_conn)):
    rows = list_conversations(conn, current_user["user_id"])
    items = [
        {
            "id": row["id"],
            "title": row["title"],
            "summary": row["summary"],
            "message_count": int(row["message_count"]),
            "created_at": row["created_at"].isoformat(),
            "updated_at": row["updated_at"].isoformat(),
        }
        for row in rows
    ]
    return {"conversations": items}


@router.post("/api/conversations")
def conversations_create(
    payload: ConversationCreateRequest,
    current_user=Depends(require_user),
    conn=Depends(get_conn),
):
    title = (payload.title or "").strip() or None
    row = create_conversation(conn, current_user["user_id"], title)
    conn.commit()
    log_api_event("conversation_create", {"user_id": current_user["user_id"], "conversation_id": row["id"]})
    return {"success": True, "conversation": to_json_row(row)}


@router.get("/api/conversations/{conversation_id}")
def conversations_get(conversation_id: str, current_user=Depends(require_user), conn=Depends(get_conn)):
    conversation = _owned_conversation(conn, conversation_id, current_user["user_id"])
    messages = [to_json_row(m) for m in get_messages(conn, conversation_id)]
    body = to_json_row(conversation)
    body.pop("user_id", None)
    body["messages"] = messages
    return {"conversation": body}


@router.post("/api/conversations/{conversation_id}/messages")
def conversations_append(
    conversation_id: str,
    payload: ConversationMessageRequest,
    current_user=Depends(require_user),
    conn=Depends(get_conn),
):
    _owned_conversation(conn, conversation_id, current_user["user_id"])
    if payload.role not in MESSAGE_ROLES:
        raise api_error(400, "invalid_payload", "role must be user or assistant")
    if not payload.content.strip():
        raise api_error(400, "invalid_payload", "content is required")
    message = append_message(conn, conversation_id, payload.role, payload.content)
    conn.commit()
    log_api_event(
        "conversation_message",
        {"user_id": current_user["user_id"], "conversation_id": conversation_id, "role": payload.role},
    )
    return {"success": True, "message": to_json_row(message)}


@router.delete("/api/conversations/{conversation_id}")
def conversations_delete(conversation_id: str, current_user=Depends(require_user), conn=Depends(get_conn)):
    _owned_conversation(conn, conversation_id, current_user["user_id"])
    delete_conversation(conn, conversation_id)
    conn.commit()
    log_api_event("conversation_delete", {"user_id": current_user["user_id"], "conversation_id": conversation_id})
    return {"success": True}


@router.get("/api/verses/saved")
def saved_verses_list(current_user=Depends(require_user), conn=Depends(get_conn)):
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT id, reference, text, created_at
            FROM saved_verse
            WHERE user_id = %s
            ORDER BY created_at DESC
            """,
            (current_user["user_id"],),
        )
        rows = cur.fetchall()
    return {"verses": [to_json_row(row) for row in rows]}


@router.post("/api/verses/saved")
def saved_verses_create(payload: SavedVerseRequest, current_user=Depends(require_user), conn=Depends(get_conn)):
    if not payload.reference or not payload.text:
        raise api_error(400, "invalid_payload", "reference and text are required")
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            INSERT INTO saved_verse (id, user_id, reference, text)
            VALUES (%s, %s, %s, %s)
            ON CONFLICT (user_id, reference)
            DO UPDATE SET text = EXCLUDED.text
            RETURNING id, reference, text, created_at
            """,
            (new_id(), current_user["user_id"], payload.reference, payload.text),
        )
        row = cur.fetchone()
    conn.commit()
    log_api_event("saved_verse_upsert", {"user_id": current_user["user_id"], "reference": payload.reference})
    return {"success": True, "verse": to_json_row(row)}


@router.delete("/api/verses/saved")
def saved_verses_delete(
    payload: VerseReferenceRequest,
    current_user=Depends(require_user),
    conn=Depends(get_conn),
):
    with conn.cursor() as cur:
        cur.execute(
            "DELETE FROM saved_verse WHERE user_id = %s AND reference = %s",
            (current_user["user_id"], payload.reference),
        )
        deleted = cur.rowcount > 0
    conn.commit()
    log_api_event("saved_verse_delete", {"user_id": current_user["user_id"], "deleted": deleted})
    return {"success": True, "deleted": deleted}


@router.get("/api/verses/memorized")
def memorized_list(current_user=Depends(require_user), conn=Depends(get_conn)):
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT id, reference, text, memorized_at, created_at
            FROM memorized_verse
            WHERE user_id = %s
            ORDER BY memorized_at DESC NULLS LAST, created_at DESC
            """,
            (current_user["user_id"],),
        )
        rows = cur.fetchall()
    return {"verses": [to_json_row(row) for row in rows]}


@router.post("/api/verses/memorized")
def memorized_upsert(
    payload: MemorizedVerseRequest,
    current_user=Depends(require_user),
    conn=Depends(get_conn),
):
    if not payload.reference:
        raise api_error(400, "invalid_payload", "reference is required")
    mark = bool(payload.mark_as_memorized)
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            INSERT INTO memorized_verse (id, user_id, reference, text, memorized_at)
            VALUES (%s, %s, %s, %s, CASE WHEN %s THEN now() ELSE NULL END)
            ON CONFLICT (user_id, reference)
            DO UPDATE SET
              text = COALESCE(EXCLUDED.text, memorized_verse.text),
              memorized_at = EXCLUDED.memorized_at
            RETURNING id, reference, text, memorized_at, created_at
            """,
            (new_id(), current_user["user_id"], payload.reference, payload.text, mark),
        )
        row = cur.fetchone()
    conn.commit()
    log_api_event(
        "memorized_verse_upsert",
        {"user_id": current_user["user_id"], "reference": payload.reference, "memorized": mark},
    )
    return {"success": True, "verse": to_json_row(row)}


@router.delete("/api/verses/memorized")
def memorized_delete(
    payload: VerseReferenceRequest,
    current_user=Depends(require_user),
    conn=Depends(get_conn),
):
    with conn.cursor() as cur:
        cur.execute(
            "DELETE FROM memorized_verse WHERE user_id = %s AND reference = %s",
            (current_user["user_id"], payload.reference),
        )
        deleted = cur.rowcount > 0
    conn.commit()
    return {"success": True, "deleted": deleted}


@router.get("/api/prayers")
def prayers_list(current_user=Depends(require_user), conn=Depends(get_conn)):
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT id, title, content, source, source_reference, status, answered_at,
                   created_at, updated_at
            FROM prayer_request
            WHERE user_id = %s AND deleted_at IS NULL
            ORDER BY status DESC, created_at DESC
            """,
            (current_user["user_id"],),
        )
        rows = cur.fetchall()
    return {"prayers": [to_json_row(row) for row in rows]}


@router.post("/api/prayers")
def prayers_create(payload: PrayerCreateRequest, current_user=Depends(require_user), conn=Depends(get_conn)):
    content = (payload.content or "").strip()
    if not content:
        raise api_error(400, "invalid_payload", "content is required")
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            INSERT INTO prayer_request (id, user_id, title, content, source, source_reference)
            VALUES (%s, %s, %s, %s, %s, %s)
            RETURNING id, title, content, source, source_reference, status, answered_at,
                      created_at, updated_at
            """,
            (
                new_id(),
                current_user["user_id"],
                payload.title,
                content,
                payload.source or "manual",
                payload.source_reference,
            ),
        )
        row = cur.fetchone()
    conn.commit()
    log_api_event("prayer_create", {"user_id": current_user["user_id"], "source": row["source"]})
    return {"success": True, "prayer": to_json_row(row)}


@router.patch("/api/prayers")
def prayers_update(payload: PrayerUpdateRequest, current_user=Depends(require_user), conn=Depends(get_conn)):
    if payload.status not in PRAYER_STATUSES:
        raise api_error(400, "invalid_payload", "status must be ongoing or answered")
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            UPDATE prayer_request
            SET status = %s,
                answered_at = CASE WHEN %s = 'answered' THEN now() ELSE NULL END,
                updated_at = now()
            WHERE id = %s AND user_id = %s AND deleted_at IS NULL
            RETURNING id, title, content, source, source_reference, status, answered_at,
                      created_at, updated_at
            """,
            (payload.status, payload.status, payload.id, current_user["user_id"]),
        )
        row = cur.fetchone()
    if not row:
        raise api_error(404, "not_found", "Prayer not found")
    conn.commit()
    log_api_event("prayer_update", {"user_id": current_user["user_id"], "status": payload.status})
    return {"success": True, "prayer": to_json_row(row)}


@router.delete("/api/prayers")
def prayers_delete(payload: IdRequest, current_user=Depends(require_user), conn=Depends(get_conn)):
    with conn.cursor() as cur:
        cur.execute(
            "DELETE FROM prayer_request WHERE id = %s AND user_id = %s",
            (payload.id, current_user["user_id"]),
        )
        deleted = cur.rowcount > 0
    conn.commit()
    log_api_event("prayer_delete", {"user_id": current_user["user_id"], "deleted": deleted})
    return {"success": True, "deleted": deleted}
