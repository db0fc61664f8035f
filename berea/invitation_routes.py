from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from psycopg2.extras import RealDictCursor

from berea.clerk import get_formatted_user_name
from berea.db import get_conn, new_id
from berea.deps import get_optional_user, require_user
from berea.errors import api_error
from berea.events import log_api_event
from berea.permissions import count_circle_members, is_circle_full, verify_circle_member

router = APIRouter()


def get_invitation(conn, token: str) -> dict | None:
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT
                i.id,
                i.circle_id,
                i.token,
                i.email,
                i.invited_by,
                i.status,
                i.expires_at,
                i.created_at,
                c.name AS circle_name,
                c.description AS circle_description,
                c.max_members
            FROM circle_invitation i
            JOIN study_circle c ON c.id = i.circle_id
            WHERE i.token = %s
            """,
            (token,),
        )
        return cur.fetchone()


def check_invitation(invitation: dict | None, now: datetime | None = None) -> dict:
    """Reject missing, expired or already answered invitations.

    Expiry is checked before status, so an expired invitation is always 410
    ``expired`` whatever its status.
    """
    if not invitation:
        raise api_error(404, "not_found", "Invitation not found")
    now = now or datetime.now(timezone.utc)
    if now > invitation["expires_at"]:
        raise api_error(410, "expired", "Invitation has expired")
    if invitation["status"] != "pending":
        raise api_error(410, "invalid_status", f"Invitation has already been {invitation['status']}")
    return invitation


def _set_status(conn, invitation_id: str, status: str) -> None:
    with conn.cursor() as cur:
        cur.execute(
            "UPDATE circle_invitation SET status = %s, responded_at = now() WHERE id = %s",
            (status, invitation_id),
        )


@router.get("/api/invitations")
def invitations_list(current_user=Depends(require_user)):
    # invitations are shared by link; there is no per-user inbox yet
    return {"success": True, "invitations": []}


@router.get("/api/invitations/{token}")
def invitations_get(token: str, current_user=Depends(get_optional_user), conn=Depends(get_conn)):
    invitation = check_invitation(get_invitation(conn, token))
    already_member = bool(current_user) and bool(
        verify_circle_member(conn, invitation["circle_id"], current_user["user_id"])
    )
    if is_circle_full(conn, invitation["circle_id"]):
        raise api_error(410, "circle_full", "This circle is full")
    return {
        "success": True,
        "invitation": {
            "circle_id": invitation["circle_id"],
            "circle_name": invitation["circle_name"],
            "circle_description": invitation["circle_description"],
            "member_count": count_circle_members(conn, invitation["circle_id"]),
            "max_members": invitation["max_members"],
            "invited_by": get_formatted_user_name(invitation["invited_by"]),
            "expires_at": invitation["expires_at"].isoformat(),
        },
        "already_member": already_member,
    }


@router.post("/api/invitations/{token}/accept")
def invitations_accept(token: str, current_user=Depends(require_user), conn=Depends(get_conn)):
    user_id = current_user["user_id"]
    invitation = check_invitation(get_invitation(conn, token))
    circle_id = invitation["circle_id"]

    if verify_circle_member(conn, circle_id, user_id):
        _set_status(conn, invitation["id"], "accepted")
        conn.commit()
        log_api_event("invitation_accept", {"user_id": user_id, "circle_id": circle_id, "already_member": True})
        return {"success": True, "circle_id": circle_id, "already_member": True}

    if is_circle_full(conn, circle_id):
        raise api_error(410, "circle_full", "This circle is full")
    with conn.cursor() as cur:
        cur.execute(
            """
            INSERT INTO study_circle_member (id, circle_id, user_id, role, share_progress)
            VALUES (%s, %s, %s, 'member', TRUE)
            """,
            (new_id(), circle_id, user_id),
        )
    _set_status(conn, invitation["id"], "accepted")
    conn.commit()
    log_api_event("invitation_accept", {"user_id": user_id, "circle_id": circle_id, "already_member": False})
    return {"success": True, "circle_id": circle_id, "already_member": False}


@router.post("/api/invitations/{token}/decline")
def invitations_decline(token: str, current_user=Depends(require_user), conn=Depends(get_conn)):
    invitation = check_invitation(get_invitation(conn, token))
    _set_status(conn, invitation["id"], "declined")
    conn.commit()
    log_api_event("invitation_decline", {"user_id": current_user["user_id"], "circle_id": invitation["circle_id"]})
    return {"success": True}
