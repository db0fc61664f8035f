import time

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse
from psycopg2.extras import RealDictCursor

from berea.ai import (
    AIServiceError,
    DEFAULT_SUGGESTIONS,
    build_journey_context,
    chat_messages,
    explain_passage,
    generate_collaborative_study,
    generate_dashboard,
    generate_encouragement,
    generate_prayer,
    generate_study_plan,
    generate_suggestions,
    iter_chat_stream,
    min_intentions_required,
    open_chat_stream,
)
from berea.billing import enforce_usage_limit, get_subscription_status, increment_usage
from berea.circle_studies import get_active_circle_study
from berea.conversations import recent_conversations
from berea.db import get_conn, new_id
from berea.deps import require_user
from berea.errors import api_error
from berea.events import log_api_event
from berea.models import (
    ChatRequest,
    CollaborativeStudyRequest,
    DashboardRequest,
    ExplainRequest,
    ExplainResponse,
    GenerateEncouragementRequest,
    GeneratePrayerRequest,
    GenerateStudyPlanRequest,
    SaveResponseRequest,
)
from berea.permissions import count_circle_members, require_circle_member
from berea.study_plans import VALID_DURATIONS, load_journey

router = APIRouter()


@router.post("/api/ai/explain", response_model=ExplainResponse)
def explain(payload: ExplainRequest):
    reference = (payload.reference or "").strip()
    if not reference:
        raise api_error(400, "reference_required", "reference is required")
    start = time.perf_counter()
    result = explain_passage(reference, payload.question)
    elapsed_ms = int((time.perf_counter() - start) * 1000)
    log_api_event(
        "ai_explain",
        {"reference": reference, "sections": len(result["sections"]), "elapsed_ms": elapsed_ms},
    )
    return result


@router.post("/api/ai/dashboard")
def dashboard(payload: DashboardRequest, current_user=Depends(require_user), conn=Depends(get_conn)):
    user_id = current_user["user_id"]
    query = (payload.query or "").strip()
    if not query:
        raise api_error(400, "invalid_payload", "query is required")
    usage = enforce_usage_limit(conn, user_id)
    start = time.perf_counter()
    result = generate_dashboard(query)
    used = increment_usage(conn, user_id)
    conn.commit()
    elapsed_ms = int((time.perf_counter() - start) * 1000)
    log_api_event(
        "ai_dashboard",
        {"user_id": user_id, "used": used, "limit": usage["limit"], "elapsed_ms": elapsed_ms},
    )
    return result


@router.post("/api/ai/chat")
def chat(payload: ChatRequest, current_user=Depends(require_user), conn=Depends(get_conn)):
    user_id = current_user["user_id"]
    history = [m.model_dump() for m in payload.messages]
    query = (payload.query or "").strip()
    if query:
        history.append({"type": "user", "content": query})
    if not history:
        raise api_error(400, "invalid_payload", "query or messages are required")
    usage = enforce_usage_limit(conn, user_id)
    stream = open_chat_stream(chat_messages(history))
    used = increment_usage(conn, user_id)
    conn.commit()
    log_api_event(
        "ai_chat",
        {"user_id": user_id, "turns": len(history), "used": used, "limit": usage["limit"]},
    )
    return StreamingResponse(iter_chat_stream(stream), media_type="text/plain; charset=utf-8")


def _prayer_prompt(payload: GeneratePrayerRequest) -> tuple[str, str | None]:
    if payload.source == "verse":
        if not payload.verse_reference or not payload.verse_text:
            raise api_error(400, "invalid_payload", "verse_reference and verse_text are required")
        prompt = (
            f"Write a personal prayer inspired by {payload.verse_reference}:\n"
            f'"{payload.verse_text}"'
        )
        return prompt, payload.verse_reference
    if payload.source == "chat":
        if not payload.chat_context:
            raise api_error(400, "invalid_payload", "chat_context is required")
        prompt = f"Write a personal prayer drawn from this Bible study conversation:\n{payload.chat_context}"
        return prompt, None
    raise api_error(400, "invalid_payload", "source must be verse or chat")


@router.post("/api/ai/generate-prayer")
def create_prayer(payload: GeneratePrayerRequest, current_user=Depends(require_user), conn=Depends(get_conn)):
    user_id = current_user["user_id"]
    prompt, source_reference = _prayer_prompt(payload)
    enforce_usage_limit(conn, user_id, exempt_subscribers=True)
    prayer = generate_prayer(prompt)
    used = increment_usage(conn, user_id)
    conn.commit()
    log_api_event(
        "ai_generate_prayer",
        {"user_id": user_id, "source": payload.source, "chars": len(prayer), "used": used},
    )
    return {
        "success": True,
        "prayer": prayer,
        "source": payload.source,
        "source_reference": source_reference,
    }


@router.post("/api/ai/generate-encouragement")
def create_encouragement(
    payload: GenerateEncouragementRequest,
    current_user=Depends(require_user),
    conn=Depends(get_conn),
):
    user_id = current_user["user_id"]
    prompt_text = (payload.prompt_text or "").strip()
    if not prompt_text:
        raise api_error(400, "invalid_payload", "prompt_text is required")
    enforce_usage_limit(conn, user_id, exempt_subscribers=True)
    result = generate_encouragement(prompt_text, payload.context)
    used = increment_usage(conn, user_id)
    conn.commit()
    log_api_event(
        "ai_generate_encouragement",
        {"user_id": user_id, "reference": result["scripture_reference"], "used": used},
    )
    return {"success": True, **result}


@router.post("/api/ai/generate-study-plan")
def create_study_plan_draft(
    payload: GenerateStudyPlanRequest,
    current_user=Depends(require_user),
    conn=Depends(get_conn),
):
    user_id = current_user["user_id"]
    if payload.duration not in VALID_DURATIONS:
        raise api_error(400, "invalid_duration", "duration must be 7 or 21")
    enforce_usage_limit(conn, user_id, exempt_subscribers=True)
    journey = load_journey(conn, user_id)
    context = build_journey_context(
        journey["conversations"],
        journey["saved_verses"],
        journey["prayers"],
        journey["memorized"],
        payload.duration,
    )
    start = time.perf_counter()
    plan = generate_study_plan(context, payload.duration)
    increment_usage(conn, user_id)
    conn.commit()
    elapsed_ms = int((time.perf_counter() - start) * 1000)
    log_api_event(
        "ai_generate_study_plan",
        {"user_id": user_id, "duration": payload.duration, "days": len(plan["days"]), "elapsed_ms": elapsed_ms},
    )
    return {"success": True, "plan": plan}


@router.post("/api/ai/generate-collaborative-study")
def create_collaborative_study(
    payload: CollaborativeStudyRequest,
    current_user=Depends(require_user),
    conn=Depends(get_conn),
):
    user_id = current_user["user_id"]
    member = require_circle_member(conn, payload.circle_id, user_id)
    if member["created_by"] != user_id:
        raise api_error(403, "forbidden", "Only the circle creator can generate a study.")
    if get_active_circle_study(conn, payload.circle_id):
        raise api_error(403, "forbidden", "This circle already has an active study.")
    if payload.duration not in VALID_DURATIONS:
        raise api_error(400, "invalid_duration", "duration must be 7 or 21")

    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT user_id, selected_topics, depth_level, current_season, study_pace, heart_question
            FROM circle_study_intention
            WHERE circle_id = %s
            """,
            (payload.circle_id,),
        )
        intentions = cur.fetchall()
    required = min_intentions_required(count_circle_members(conn, payload.circle_id))
    if len(intentions) < required:
        raise api_error(
            400,
            "insufficient_data",
            f"At least {required} members need to share their study intentions first.",
        )

    enforce_usage_limit(conn, user_id, exempt_subscribers=True)
    start = time.perf_counter()
    study = generate_collaborative_study(intentions, payload.duration)
    increment_usage(conn, user_id)
    conn.commit()
    elapsed_ms = int((time.perf_counter() - start) * 1000)
    log_api_event(
        "ai_generate_collaborative_study",
        {
            "user_id": user_id,
            "circle_id": payload.circle_id,
            "intentions": len(intentions),
            "duration": payload.duration,
            "elapsed_ms": elapsed_ms,
        },
    )
    return {"success": True, "study": study}


@router.post("/api/ai/save")
def save_response(payload: SaveResponseRequest, current_user=Depends(require_user), conn=Depends(get_conn)):
    user_id = current_user["user_id"]
    if not get_subscription_status(conn, user_id)["is_active"]:
        raise api_error(403, "subscription_required", "Saving responses requires a subscription.")
    if not payload.feature or not payload.response:
        raise api_error(400, "invalid_payload", "feature and response are required")
    response_id = new_id()
    with conn.cursor() as cur:
        cur.execute(
            """
            INSERT INTO saved_ai_response (id, user_id, feature, reference, prompt, response)
            VALUES (%s, %s, %s, %s, %s, %s)
            """,
            (response_id, user_id, payload.feature, payload.reference, payload.prompt, payload.response),
        )
    conn.commit()
    log_api_event("ai_save", {"user_id": user_id, "feature": payload.feature})
    return {"id": response_id}


@router.get("/api/suggestions")
def suggestions(current_user=Depends(require_user), conn=Depends(get_conn)):
    user_id = current_user["user_id"]
    conversations = recent_conversations(conn, user_id, limit=5, message_limit=10)
    if len(conversations) < 2:
        return {"suggestions": DEFAULT_SUGGESTIONS, "personalized": False}
    try:
        personalized = generate_suggestions(conversations)
    except AIServiceError as exc:
        log_api_event("suggestions_fallback", {"user_id": user_id, "error": exc.code})
        personalized = None
    if not personalized:
        return {"suggestions": DEFAULT_SUGGESTIONS, "personalized": False}
    log_api_event("suggestions", {"user_id": user_id, "conversations": len(conversations)})
    return {"suggestions": personalized, "personalized": True}


@router.get("/api/history")
def history(current_user=Depends(require_user), conn=Depends(get_conn)):
    with conn.cursor(cursor_factory=RealDictCursor) as cur:
        cur.execute(
            """
            SELECT id, prompt, response, created_at
            FROM saved_ai_response
            WHERE user_id = %s AND feature = 'dashboard'
            ORDER BY created_at DESC
            LIMIT 20
            """,
            (current_user["user_id"],),
        )
        rows = cur.fetchall()
    items = [
        {
            "id": row["id"],
            "prompt": row["prompt"],
            "response": row["response"],
            "created_at": row["created_at"].isoformat(),
        }
        for row in rows
    ]
    return {"items": items}
