import secrets
from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends
from psycopg2.extras import RealDictCursor

from berea.circle_studies import get_active_circle_study
from berea.clerk import get_formatted_user_names
from berea.config import APP_URL
from berea.db import get_conn, new_id, to_json_row
from berea.deps import require_user
from berea.errors import api_error
from berea.events import log_api_event
from berea.models import CircleCreateRequest, CircleUpdateRequest, InviteRequest, MemberUpdateRequest
from berea.permissions import (
    SHARE_FLAGS,
    is_circle_full,
    require_circle_member,
    verify_circle_admin,
    verify_circle_member,
    verify_circle_owner,
)

NAME_MAX_LENGTH = 100
DEFAULT_MAX_MEMBERS = 8
INVITATION_TTL_DAYS = 7
ASSIGNABLE_ROLES = ("member", "admin")

router = APIRouter()


def _clean_name(name: str | None) -> str:
    name = (name or "").strip()
    if not name:
        raise api_error(400, "invalid_payload", "name is required")
    if len(name) > NAME_MAX_LENGTH:
        raise api_error(400, "invalid_payload", f"name must be {NAME_MAX_LENGTH} characters or fewer")
    return name


def _normalize_max_members(value) -> int:
    if isinstance(value, int) and 2 <= value <= 8:
        return value
    return DEFAULT_MAX_MEMBERS


def _list_members(conn, circle_id: str) -> list[dict]:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT user_id, role, share_progress, share_reflections, share_verses,
                   share_prayers, joined_at
            FROM study_circle_member
            WHERE circle_id = %s
            ORDER BY CASE role WHEN 'owner' THEN 0 WHEN 'admin' THEN 1 ELSE 2 END, joined_at ASC
            """,
            (circle_id,),
        )
        rows = cur.fetchall()
    names = get_formatted_user_names([row["user_id"] for row in rows])
    members = []
    for row in rows:
        item = to_json_row(row)
        item["name"] = names.get(row["user_id"], "Unknown User")
        members.append(item)
    return members


@router.get("/api/circles")
def circles_list(current_user=Depends(require_user), conn=Depends(get_conn)):
    user_id = current_user["user_id"]
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT
                c.id,
                c.name,
                c.description,
                c.created_by,
                c.max_members,
                c.created_at,
                c.updated_at,
                my.role AS my_role,
                (SELECT COUNT(*) FROM study_circle_member m WHERE m.circle_id = c.id) AS member_count,
                (SELECT COUNT(*) FROM circle_study_plan p WHERE p.circle_id = c.id) AS plan_count
            FROM study_circle c
            JOIN study_circle_member my ON my.circle_id = c.id AND my.user_id = %s
            ORDER BY c.updated_at DESC
            """,
            (user_id,),
        )
        circles = cur.fetchall()
        circle_ids = [c["id"] for c in circles]
        preview_rows = []
        plan_rows = []
        if circle_ids:
            cur.execute(
                """
                SELECT circle_id, user_id, role, joined_at
                FROM (
                    SELECT circle_id, user_id, role, joined_at,
                           ROW_NUMBER() OVER (PARTITION BY circle_id ORDER BY joined_at ASC) AS rn
                    FROM study_circle_member
                    WHERE circle_id = ANY(%s)
                ) ranked
                WHERE rn <= 5
                ORDER BY circle_id, joined_at ASC
                """,
                (circle_ids,),
            )
            preview_rows = cur.fetchall()
            cur.execute(
                """
                SELECT DISTINCT ON (circle_id)
                    id, circle_id, title, duration, status, start_date
                FROM circle_study_plan
                WHERE circle_id = ANY(%s) AND status = 'active'
                ORDER BY circle_id, created_at DESC
                """,
                (circle_ids,),
            )
            plan_rows = cur.fetchall()

    previews: dict = {}
    for row in preview_rows:
        previews.setdefault(row["circle_id"], []).append(
            {"user_id": row["user_id"], "role": row["role"], "joined_at": row["joined_at"].isoformat()}
        )
    active_plans = {row["circle_id"]: to_json_row(row) for row in plan_rows}
    items = []
    for circle in circles:
        item = to_json_row(circle)
        item["member_count"] = int(circle["member_count"])
        item["plan_count"] = int(circle["plan_count"])
        item["members"] = previews.get(circle["id"], [])
        item["active_plan"] = active_plans.get(circle["id"])
        items.append(item)
    log_api_event("circle_list", {"user_id": user_id, "count": len(items)})
    return {"success": True, "circles": items}


@router.post("/api/circles")
def circles_create(payload: CircleCreateRequest, current_user=Depends(require_user), conn=Depends(get_conn)):
    user_id = current_user["user_id"]
    name = _clean_name(payload.name)
    max_members = _normalize_max_members(payload.max_members)
    circle_id = new_id()
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            INSERT INTO study_circle (id, name, description, created_by, max_members)
            VALUES (%s, %s, %s, %s, %s)
            RETURNING id, name, description, created_by, max_members, created_at, updated_at
            """,
            (circle_id, name, (payload.description or "").strip() or None, user_id, max_members),
        )
        circle = cur.fetchone()
        cur.execute(
            """
            INSERT INTO study_circle_member (id, circle_id, user_id, role, share_progress)
            VALUES (%s, %s, %s, 'owner', TRUE)
            """,
            (new_id(), circle_id, user_id),
        )
    conn.commit()
    log_api_event("circle_create", {"user_id": user_id, "circle_id": circle_id, "max_members": max_members})
    body = to_json_row(circle)
    body["member_count"] = 1
    return {"success": True, "circle": body}


@router.get("/api/circles/{circle_id}")
def circles_get(circle_id: str, current_user=Depends(require_user), conn=Depends(get_conn)):
    user_id = current_user["user_id"]
    member = require_circle_member(conn, circle_id, user_id)
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT id, name, description, created_by, max_members, created_at, updated_at
            FROM study_circle
            WHERE id = %s
            """,
            (circle_id,),
        )
        circle = cur.fetchone()
    if not circle:
        raise api_error(404, "not_found", "Circle not found")
    body = to_json_row(circle)
    body["members"] = _list_members(conn, circle_id)
    body["active_plan"] = to_json_row(get_active_circle_study(conn, circle_id))
    body["my_role"] = member["role"]
    body["my_privacy"] = {flag: bool(member[flag]) for flag in SHARE_FLAGS}
    return {"success": True, "circle": body}


@router.patch("/api/circles/{circle_id}")
def circles_update(
    circle_id: str,
    payload: CircleUpdateRequest,
    current_user=Depends(require_user),
    conn=Depends(get_conn),
):
    user_id = current_user["user_id"]
    if not verify_circle_owner(conn, circle_id, user_id):
        raise api_error(403, "forbidden", "Only the circle owner can update the circle.")
    updates = {}
    if payload.name is not None:
        updates["name"] = _clean_name(payload.name)
    if payload.description is not None:
        updates["description"] = payload.description.strip() or None
    if not updates:
        raise api_error(400, "invalid_payload", "Nothing to update")
    assignments = ", ".join(f"{column} = %s" for column in updates)
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            UPDATE study_circle
            SET {assignments}, updated_at = now()
            WHERE id = %s
            RETURNING id, name, description, created_by, max_members, created_at, updated_at
            """,
            (*updates.values(), circle_id),
        )
        circle = cur.fetchone()
    conn.commit()
    log_api_event("circle_update", {"user_id": user_id, "circle_id": circle_id, "fields": list(updates)})
    return {"success": True, "circle": to_json_row(circle)}


@router.delete("/api/circles/{circle_id}")
def circles_delete(circle_id: str, current_user=Depends(require_user), conn=Depends(get_conn)):
    user_id = current_user["user_id"]
    if not verify_circle_owner(conn, circle_id, user_id):
        raise api_error(403, "forbidden", "Only the circle owner can delete the circle.")
    with conn.cursor() as cur:
        cur.execute("DELETE FROM study_circle WHERE id = %s", (circle_id,))
    conn.commit()
    log_api_event("circle_delete", {"user_id": user_id, "circle_id": circle_id})
    return {"success": True}


@router.get("/api/circles/{circle_id}/members")
def members_list(circle_id: str, current_user=Depends(require_user), conn=Depends(get_conn)):
    require_circle_member(conn, circle_id, current_user["user_id"])
    return {"success": True, "members": _list_members(conn, circle_id)}


@router.patch("/api/circles/{circle_id}/members/{member_user_id}")
def members_update(
    circle_id: str,
    member_user_id: str,
    payload: MemberUpdateRequest,
    current_user=Depends(require_user),
    conn=Depends(get_conn),
):
    user_id = current_user["user_id"]
    require_circle_member(conn, circle_id, user_id)
    target = verify_circle_member(conn, circle_id, member_user_id)
    if not target:
        raise api_error(404, "not_found", "Member not found")

    updates = {}
    if payload.role is not None:
        if not verify_circle_admin(conn, circle_id, user_id):
            raise api_error(403, "forbidden", "Only admins can change roles.")
        if target["role"] == "owner":
            raise api_error(403, "forbidden", "The owner's role cannot be changed.")
        if payload.role not in ASSIGNABLE_ROLES:
            raise api_error(400, "invalid_payload", "role must be member or admin")
        updates["role"] = payload.role
    flags = {flag: getattr(payload, flag) for flag in SHARE_FLAGS if getattr(payload, flag) is not None}
    if flags:
        if member_user_id != user_id:
            raise api_error(403, "forbidden", "You can only change your own privacy settings.")
        updates.update(flags)
    if not updates:
        raise api_error(400, "invalid_payload", "Nothing to update")

    assignments = ", ".join(f"{column} = %s" for column in updates)
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            f"""
            UPDATE study_circle_member
            SET {assignments}
            WHERE circle_id = %s AND user_id = %s
            RETURNING user_id, role, share_progress, share_reflections, share_verses,
                      share_prayers, joined_at
            """,
            (*updates.values(), circle_id, member_user_id),
        )
        row = cur.fetchone()
    conn.commit()
    log_api_event(
        "circle_member_update",
        {"user_id": user_id, "target_user_id": member_user_id, "fields": list(updates)},
    )
    return {"success": True, "member": to_json_row(row)}


@router.delete("/api/circles/{circle_id}/members/{member_user_id}")
def members_remove(
    circle_id: str,
    member_user_id: str,
    current_user=Depends(require_user),
    conn=Depends(get_conn),
):
    user_id = current_user["user_id"]
    require_circle_member(conn, circle_id, user_id)
    if member_user_id != user_id and not verify_circle_admin(conn, circle_id, user_id):
        raise api_error(403, "forbidden", "Only admins can remove other members.")
    target = verify_circle_member(conn, circle_id, member_user_id)
    if not target:
        raise api_error(404, "not_found", "Member not found")
    if target["role"] == "owner":
        raise api_error(403, "forbidden", "The circle owner cannot be removed.")
    with conn.cursor() as cur:
        cur.execute(
            "DELETE FROM study_circle_member WHERE circle_id = %s AND user_id = %s",
            (circle_id, member_user_id),
        )
    conn.commit()
    log_api_event(
        "circle_member_remove",
        {"user_id": user_id, "target_user_id": member_user_id, "self": member_user_id == user_id},
    )
    return {"success": True}


@router.post("/api/circles/{circle_id}/invite")
def invite(circle_id: str, payload: InviteRequest, current_user=Depends(require_user), conn=Depends(get_conn)):
    user_id = current_user["user_id"]
    require_circle_member(conn, circle_id, user_id)
    if is_circle_full(conn, circle_id):
        raise api_error(409, "circle_full", "This circle is full.")
    email = (payload.email or "").strip() or None
    if email and "@" not in email:
        raise api_error(400, "invalid_payload", "email is not valid")
    token = secrets.token_hex(32)
    expires_at = datetime.now(timezone.utc) + timedelta(days=INVITATION_TTL_DAYS)
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            INSERT INTO circle_invitation (id, circle_id, token, email, invited_by, status, expires_at)
            VALUES (%s, %s, %s, %s, %s, 'pending', %s)
            RETURNING id, token, email, status, expires_at, created_at
            """,
            (new_id(), circle_id, token, email, user_id, expires_at),
        )
        invitation = cur.fetchone()
    conn.commit()
    log_api_event("circle_invite", {"user_id": user_id, "circle_id": circle_id, "has_email": bool(email)})
    return {
        "success": True,
        "invitation": to_json_row(invitation),
        "invite_url": f"{APP_URL}/invitations/{token}",
    }
