import time

from fastapi import APIRouter, Depends

from berea.achievements import get_next_achievements
from berea.ai import build_journey_context, generate_study_plan
from berea.billing import enforce_usage_limit, increment_usage
from berea.db import get_conn
from berea.deps import require_user
from berea.errors import api_error
from berea.events import log_api_event
from berea.milestones import get_milestone_progress
from berea.models import ProgressUpdateRequest, StudyPlanCreateRequest
from berea.study_plans import (
    VALID_DURATIONS,
    get_active_plan,
    get_latest_completed_plan,
    get_owned_plan,
    get_plan_days,
    get_streak,
    insert_plan,
    load_journey,
    serialize_plan,
    update_day_progress,
)
from berea.study_templates import TEMPLATE_OPTIONS, build_plan_from_template

AI_SOURCE = "ai_personalized"

router = APIRouter()


def _streak_stats(streak: dict) -> dict:
    return {
        "current_streak": streak["current_streak"],
        "longest_streak": streak["longest_streak"],
        "total_days_studied": streak["total_days_studied"],
        "total_plans_completed": streak["total_plans_completed"],
        "last_study_date": streak["last_study_date"].isoformat() if streak.get("last_study_date") else None,
        "unlocked_achievements": streak["unlocked_achievements"],
        "next_achievements": get_next_achievements(streak),
        "milestone_progress": get_milestone_progress(int(streak["current_streak"])),
    }


@router.get("/api/study-plans")
def study_plans_current(current_user=Depends(require_user), conn=Depends(get_conn)):
    user_id = current_user["user_id"]
    plan = get_active_plan(conn, user_id) or get_latest_completed_plan(conn, user_id)
    body = serialize_plan(plan, get_plan_days(conn, plan["id"])) if plan else None
    return {
        "plan": body,
        "stats": _streak_stats(get_streak(conn, user_id)),
        "templates": TEMPLATE_OPTIONS,
    }


@router.post("/api/study-plans")
def study_plans_create(payload: StudyPlanCreateRequest, current_user=Depends(require_user), conn=Depends(get_conn)):
    user_id = current_user["user_id"]
    if payload.duration not in VALID_DURATIONS:
        raise api_error(400, "invalid_duration", "duration must be 7 or 21")
    if get_active_plan(conn, user_id):
        raise api_error(409, "conflict", "You already have an active study plan. Complete or delete it first.")

    start = time.perf_counter()
    if payload.source == AI_SOURCE:
        enforce_usage_limit(conn, user_id, exempt_subscribers=True)
        journey = load_journey(conn, user_id)
        context = build_journey_context(
            journey["conversations"],
            journey["saved_verses"],
            journey["prayers"],
            journey["memorized"],
            payload.duration,
        )
        plan = generate_study_plan(context, payload.duration)
        increment_usage(conn, user_id)
    else:
        plan = build_plan_from_template(payload.source, payload.duration)
        if not plan:
            raise api_error(400, "invalid_source", f"Unknown plan source or unsupported duration: {payload.source}")

    plan_id = insert_plan(conn, user_id, plan, payload.duration, payload.source)
    conn.commit()
    elapsed_ms = int((time.perf_counter() - start) * 1000)
    log_api_event(
        "study_plan_create",
        {
            "user_id": user_id,
            "source": payload.source,
            "duration": payload.duration,
            "days": len(plan["days"]),
            "elapsed_ms": elapsed_ms,
        },
    )
    created = get_owned_plan(conn, plan_id, user_id)
    return {"success": True, "plan": serialize_plan(created, get_plan_days(conn, plan_id))}


@router.post("/api/study-plans/fix-deleted")
def study_plans_fix_deleted(current_user=Depends(require_user), conn=Depends(get_conn)):
    user_id = current_user["user_id"]
    with conn.cursor() as cur:
        cur.execute(
            """
            UPDATE study_plan
            SET status = 'deleted', updated_at = now()
            WHERE user_id = %s AND deleted_at IS NOT NULL AND status = 'active'
            """,
            (user_id,),
        )
        fixed = cur.rowcount
    conn.commit()
    log_api_event("study_plan_fix_deleted", {"user_id": user_id, "fixed": fixed})
    return {"success": True, "fixed": fixed}


@router.get("/api/study-plans/{plan_id}")
def study_plans_get(plan_id: str, current_user=Depends(require_user), conn=Depends(get_conn)):
    plan = get_owned_plan(conn, plan_id, current_user["user_id"])
    if not plan:
        raise api_error(404, "not_found", "Study plan not found")
    return {"plan": serialize_plan(plan, get_plan_days(conn, plan_id))}


@router.delete("/api/study-plans/{plan_id}")
def study_plans_delete(plan_id: str, current_user=Depends(require_user), conn=Depends(get_conn)):
    user_id = current_user["user_id"]
    with conn.cursor() as cur:
        cur.execute(
            """
            UPDATE study_plan
            SET status = 'deleted', deleted_at = now(), updated_at = now()
            WHERE id = %s AND user_id = %s AND deleted_at IS NULL
            """,
            (plan_id, user_id),
        )
        deleted = cur.rowcount > 0
    if not deleted:
        raise api_error(404, "not_found", "Study plan not found")
    conn.commit()
    log_api_event("study_plan_delete", {"user_id": user_id})
    return {"success": True}


@router.patch("/api/study-plans/{plan_id}/progress")
def study_plans_progress(
    plan_id: str,
    payload: ProgressUpdateRequest,
    current_user=Depends(require_user),
    conn=Depends(get_conn),
):
    user_id = current_user["user_id"]
    plan = get_owned_plan(conn, plan_id, user_id)
    if not plan or plan["status"] != "active":
        raise api_error(404, "not_found", "Active study plan not found")
    engagement = payload.engagement.model_dump() if payload.engagement else {}
    result = update_day_progress(conn, user_id, plan, payload.day_number, payload.completed, engagement)
    conn.commit()
    log_api_event(
        "study_plan_progress",
        {
            "user_id": user_id,
            "day_number": payload.day_number,
            "completed": payload.completed,
            "percent_complete": result["progress"]["percent_complete"],
            "plan_completed": result["plan_completed"],
            "achievements": [a["id"] for a in result["new_achievements"]],
        },
    )
    return {"success": True, **result}
