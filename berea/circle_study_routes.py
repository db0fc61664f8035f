import json

from fastapi import APIRouter, Depends, Query
from psycopg2.extras import RealDictCursor

from berea.ai import PACE_LABELS, SEASON_LABELS, TOPIC_LABELS, AIServiceError, validate_generated_plan
from berea.circle_activity import DEFAULT_ACTIVITY_LIMIT, compute_circle_stats, load_activity, milestone_summary
from berea.circle_sharing_routes import with_user_names
from berea.circle_studies import (
    create_circle_study,
    get_active_circle_study,
    get_circle_study,
    get_circle_study_days,
    get_member_plan,
    join_circle_study,
    list_circle_studies,
    member_progress,
    users_with_active_plan,
)
from berea.clerk import get_formatted_user_names
from berea.db import get_conn, new_id, to_json_row
from berea.deps import require_user
from berea.errors import api_error
from berea.events import log_api_event
from berea.models import CircleStudyCreateRequest, StudyIntentionRequest
from berea.permissions import can_view_progress, count_circle_members, require_circle_member
from berea.study_plans import VALID_DURATIONS
from berea.study_templates import build_plan_from_template

AI_TEMPLATE_SOURCE = "ai_collaborative"
MAX_TOPICS = 3
HEART_QUESTION_MAX = 300

router = APIRouter()


def _circle_study_for(conn, circle_id: str, plan_id: str) -> dict:
    circle_plan = get_circle_study(conn, plan_id)
    if not circle_plan:
        raise api_error(404, "not_found", "Study plan not found")
    if circle_plan["circle_id"] != circle_id:
        raise api_error(403, "forbidden", "Study plan does not belong to this circle")
    return circle_plan


def _resolve_study_plan(payload: CircleStudyCreateRequest) -> tuple[dict, str]:
    if payload.ai_generated:
        generated = payload.generated_plan or {}
        days = generated.get("days")
        if not generated.get("title") or not generated.get("description") or not isinstance(days, list):
            raise api_error(400, "invalid_payload", "Generated plan must include title, description, and days")
        if len(days) != payload.duration:
            raise api_error(400, "invalid_payload", f"Generated plan must have exactly {payload.duration} days")
        try:
            plan = validate_generated_plan(generated, payload.duration)
        except AIServiceError as exc:
            raise api_error(400, "invalid_payload", exc.message)
        return plan, AI_TEMPLATE_SOURCE

    if not payload.template_source:
        raise api_error(400, "invalid_payload", "Template source is required")
    plan = build_plan_from_template(payload.template_source, payload.duration)
    if not plan:
        raise api_error(400, "invalid_source", "Invalid template source")
    return plan, payload.template_source


def validate_intention(payload: StudyIntentionRequest) -> None:
    topics = payload.selected_topics or []
    if not 1 <= len(topics) <= MAX_TOPICS:
        raise api_error(400, "invalid_payload", f"Select between 1 and {MAX_TOPICS} topics")
    unknown = [t for t in topics if t not in TOPIC_LABELS]
    if unknown:
        raise api_error(400, "invalid_payload", f"Unknown topics: {', '.join(unknown)}")
    if not 1 <= payload.depth_level <= 10:
        raise api_error(400, "invalid_payload", "depth_level must be between 1 and 10")
    if payload.current_season not in SEASON_LABELS:
        raise api_error(400, "invalid_payload", "Invalid current_season")
    if payload.study_pace not in PACE_LABELS:
        raise api_error(400, "invalid_payload", "Invalid study_pace")
    if payload.heart_question and len(payload.heart_question) > HEART_QUESTION_MAX:
        raise api_error(400, "invalid_payload", f"heart_question must be {HEART_QUESTION_MAX} characters or fewer")


@router.get("/api/circles/{circle_id}/studies")
def studies_list(circle_id: str, current_user=Depends(require_user), conn=Depends(get_conn)):
    user_id = current_user["user_id"]
    require_circle_member(conn, circle_id, user_id)
    studies = []
    for row in list_circle_studies(conn, circle_id, user_id):
        study = to_json_row(row)
        study["member_count"] = int(row["member_count"])
        study["joined"] = row["my_study_plan_id"] is not None
        studies.append(study)
    return {"success": True, "studies": studies}


@router.post("/api/circles/{circle_id}/studies")
def studies_create(
    circle_id: str,
    payload: CircleStudyCreateRequest,
    current_user=Depends(require_user),
    conn=Depends(get_conn),
):
    user_id = current_user["user_id"]
    require_circle_member(conn, circle_id, user_id)
    if payload.duration not in VALID_DURATIONS:
        raise api_error(400, "invalid_payload", "Duration must be 7 or 21 days")
    plan, template_source = _resolve_study_plan(payload)
    if get_active_circle_study(conn, circle_id):
        raise api_error(409, "conflict", "This circle already has an active study")

    try:
        created = create_circle_study(conn, circle_id, user_id, plan, payload.duration, template_source)
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    log_api_event(
        "circle_study_create",
        {
            "user_id": user_id,
            "circle_id": circle_id,
            "template_source": template_source,
            "duration": payload.duration,
            "enrolled": len(created["enrolled_user_ids"]),
            "skipped": len(created["skipped_user_ids"]),
        },
    )
    study = to_json_row(get_circle_study(conn, created["id"]))
    study["enrolled_user_ids"] = created["enrolled_user_ids"]
    study["skipped_user_ids"] = created["skipped_user_ids"]
    return {"success": True, "study": study}


@router.get("/api/circles/{circle_id}/studies/{plan_id}")
def studies_get(circle_id: str, plan_id: str, current_user=Depends(require_user), conn=Depends(get_conn)):
    user_id = current_user["user_id"]
    require_circle_member(conn, circle_id, user_id)
    circle_plan = _circle_study_for(conn, circle_id, plan_id)

    members = member_progress(conn, plan_id)
    names = get_formatted_user_names({m["user_id"] for m in members})
    progress = []
    for member in members:
        visible = can_view_progress(conn, circle_id, member["user_id"], user_id)
        completed = sum(1 for d in member["days"] if d["completed"])
        progress.append(
            {
                "user_id": member["user_id"],
                "user_name": names.get(member["user_id"], "Unknown User"),
                "joined_at": member["joined_at"].isoformat(),
                "progress_visible": visible,
                "completed_days": completed if visible else None,
                "days": [to_json_row(d) for d in member["days"]] if visible else [],
            }
        )

    study = to_json_row(circle_plan)
    study["days"] = [dict(d) for d in get_circle_study_days(conn, plan_id)]
    mine = get_member_plan(conn, plan_id, user_id)
    study["my_study_plan_id"] = mine["study_plan_id"] if mine else None
    return {"success": True, "study": study, "member_progress": progress}


@router.post("/api/circles/{circle_id}/studies/{plan_id}/join")
def studies_join(circle_id: str, plan_id: str, current_user=Depends(require_user), conn=Depends(get_conn)):
    user_id = current_user["user_id"]
    require_circle_member(conn, circle_id, user_id)
    circle_plan = _circle_study_for(conn, circle_id, plan_id)
    if get_member_plan(conn, plan_id, user_id):
        raise api_error(409, "conflict", "You have already joined this study")
    if users_with_active_plan(conn, [user_id]):
        raise api_error(409, "conflict", "You already have an active study plan. Complete or delete it first.")

    try:
        study_plan_id = join_circle_study(conn, circle_plan, user_id)
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    log_api_event("circle_study_join", {"user_id": user_id, "circle_id": circle_id})
    return {"success": True, "study_plan_id": study_plan_id, "message": "Successfully joined the study"}


@router.get("/api/circles/{circle_id}/study-intentions")
def intentions_list(circle_id: str, current_user=Depends(require_user), conn=Depends(get_conn)):
    user_id = current_user["user_id"]
    require_circle_member(conn, circle_id, user_id)
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT id, user_id, selected_topics, depth_level, current_season, study_pace,
                   heart_question, created_at, updated_at
            FROM circle_study_intention
            WHERE circle_id = %s
            ORDER BY created_at ASC
            """,
            (circle_id,),
        )
        rows = cur.fetchall()
    intentions = with_user_names(rows)
    mine = next((i for i in intentions if i["user_id"] == user_id), None)
    return {
        "success": True,
        "intentions": intentions,
        "my_intention": mine,
        "total_submitted": len(intentions),
        "total_members": count_circle_members(conn, circle_id),
    }


@router.post("/api/circles/{circle_id}/study-intentions")
def intentions_submit(
    circle_id: str,
    payload: StudyIntentionRequest,
    current_user=Depends(require_user),
    conn=Depends(get_conn),
):
    user_id = current_user["user_id"]
    require_circle_member(conn, circle_id, user_id)
    if get_active_circle_study(conn, circle_id):
        raise api_error(403, "forbidden", "This circle already has an active study")
    validate_intention(payload)
    heart_question = (payload.heart_question or "").strip() or None
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            INSERT INTO circle_study_intention
            (id, circle_id, user_id, selected_topics, depth_level, current_season, study_pace, heart_question)
            VALUES (%s, %s, %s, %s::jsonb, %s, %s, %s, %s)
            ON CONFLICT (circle_id, user_id)
            DO UPDATE SET
              selected_topics = EXCLUDED.selected_topics,
              depth_level = EXCLUDED.depth_level,
              current_season = EXCLUDED.current_season,
              study_pace = EXCLUDED.study_pace,
              heart_question = EXCLUDED.heart_question,
              updated_at = now()
            RETURNING id, user_id, selected_topics, depth_level, current_season, study_pace,
                      heart_question, created_at, updated_at
            """,
            (
                new_id(),
                circle_id,
                user_id,
                json.dumps(payload.selected_topics),
                payload.depth_level,
                payload.current_season,
                payload.study_pace,
                heart_question,
            ),
        )
        intention = cur.fetchone()
    conn.commit()
    log_api_event(
        "circle_intention_submit",
        {"user_id": user_id, "circle_id": circle_id, "topics": payload.selected_topics},
    )
    return {"success": True, "intention": to_json_row(intention)}


@router.get("/api/circles/{circle_id}/activity")
def activity_feed(
    circle_id: str,
    limit: int = Query(DEFAULT_ACTIVITY_LIMIT, ge=1, le=100),
    current_user=Depends(require_user),
    conn=Depends(get_conn),
):
    user_id = current_user["user_id"]
    require_circle_member(conn, circle_id, user_id)
    activities = with_user_names(load_activity(conn, circle_id, user_id, limit))
    return {"success": True, "activities": activities}


@router.get("/api/circles/{circle_id}/stats")
def circle_stats(
    circle_id: str,
    seen: str | None = Query(None),
    current_user=Depends(require_user),
    conn=Depends(get_conn),
):
    require_circle_member(conn, circle_id, current_user["user_id"])
    stats = compute_circle_stats(conn, circle_id)
    seen_ids = [s.strip() for s in seen.split(",") if s.strip()] if seen is not None else None
    return {"success": True, "stats": stats, "milestones": milestone_summary(stats, seen_ids)}
