import json
import math
import os
import time
from datetime import datetime, timezone
from typing import Iterator, List, Optional

import openai
from openai import OpenAI
from tenacity import retry, retry_if_exception_type, stop_after_attempt

from berea.events import log_ai_event

OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
OPENAI_PLAN_MODEL = os.getenv("OPENAI_PLAN_MODEL", "gpt-4o")
OPENAI_TIMEOUT_SEC = float(os.getenv("OPENAI_TIMEOUT_SEC", "90"))
COLLAB_FILTER_RETRIES = 2

DEFAULT_SUGGESTIONS = [
    "How do I deal with anxiety?",
    "What does the Bible say about forgiveness?",
    "Help me understand Romans 8",
]

TONE_RULES = (
    "- Be calm, measured and pastoral in tone.\n"
    "- Cite Scripture and keep the text distinct from interpretation.\n"
    "- Do not give commands or prescriptive advice.\n"
    "- Never claim divine authority or personal prophecy.\n"
    "- Avoid sensational or alarmist language.\n"
)

EXPLAIN_SYSTEM_PROMPT = (
    "You are a Scripture-guided study companion.\n"
    + TONE_RULES
    + "Return JSON with keys: reference, sections (array of {title, content})."
)

DASHBOARD_SYSTEM_PROMPT = (
    "You are a Scripture-guided study companion. For the user's query give four perspectives:\n"
    "insight {title, mainInsight, scriptureContext {reference, text}, application, deeperTruth};\n"
    "life {title, situation, biblicalPrinciples [{reference, text}] (3 to 6), practicalWisdom, encouragement};\n"
    "prophecy {past {title, scripture {reference, text}, context}, present {title, word}, future {title, promise}};\n"
    "daily {title, date, scripture {reference, text}, reflection, prayer, actionStep}.\n"
    + TONE_RULES
    + "Always quote the full Scripture text. Return only JSON with keys insight, life, prophecy, daily."
)

CHAT_SYSTEM_PROMPT = (
    "You are Berea, a Bible study companion for people who came here to study Scripture.\n"
    "Answer charitably and assume questions are about the Bible unless they clearly are not; "
    "for clearly unrelated topics, gently offer to explore a biblical topic instead.\n"
    "Wrap every verse reference in double brackets, e.g. [[John 3:16]], and quote the full verse "
    "text right after it.\n"
    "Where the conversation touches something worth praying about, wrap the subject of prayer "
    "(not the instruction to pray) in double braces, e.g. {{your job search}}, roughly once per "
    "hundred words and each about a different facet.\n"
    + TONE_RULES
)

PRAYER_SYSTEM_PROMPT = (
    "You help believers write short, sincere prayers grounded in Scripture.\n"
    "Write one prayer of 3 to 5 sentences that addresses God directly (You/Your), "
    "uses plain conversational language and reflects the verse or need given. "
    "Avoid cliches and dramatic language."
)

ENCOURAGEMENT_SYSTEM_PROMPT = (
    "You help believers find hope in Scripture.\n"
    + TONE_RULES
    + "Return JSON: {\"encouragement\": 2-3 sentences, \"scriptureReference\": str, "
    "\"scriptureText\": full verse, \"reflection\": one question, \"prayerPrompt\": one sentence}."
)

SUGGESTIONS_SYSTEM_PROMPT = (
    "You suggest follow-up questions for a Bible study app user based on recent conversations.\n"
    "Suggest 3 inviting questions under 12 words each that build on their themes. "
    "Return only a JSON array of 3 strings."
)

STUDY_PLAN_SYSTEM_PROMPT = (
    "You design personalised {duration}-day Bible study plans.\n"
    "Build on the user's journey, give each day a 200-300 word reflection, 2-3 reflection "
    "questions, a short prayer and one Scripture passage with its full text, and keep a "
    "progressive arc across all {duration} days.\n"
    "Return only JSON: {{\"title\": \"{title_prefix}: <theme>\", \"description\": 2-3 sentences, "
    "\"days\": [{{\"dayNumber\", \"title\", \"content\", \"reflection\", \"prayer\", "
    "\"verseReference\", \"verseText\"}}]}}."
)

COLLAB_SYSTEM_PROMPT = (
    "You are a pastoral study designer writing educational Bible study guides for Christian "
    "small groups. Quoting Scripture verbatim is the purpose of this content. "
    "Always return valid, complete JSON with every required field."
)

TOPIC_LABELS = {
    "faith_doubt": "Faith & Doubt",
    "relationships": "Relationships",
    "purpose": "Purpose",
    "prayer": "Prayer",
    "scripture_study": "Scripture Study",
    "spiritual_growth": "Spiritual Growth",
    "forgiveness": "Forgiveness",
    "hope_healing": "Hope & Healing",
}

SEASON_LABELS = {
    "seeking": "Seeking answers",
    "growing": "Growing deeper",
    "struggling": "Struggling with doubt",
    "celebrating": "Celebrating breakthrough",
    "distant": "Feeling distant",
    "serving": "Ready to serve",
}

PACE_LABELS = {
    "light": "Light (5-10 min daily)",
    "moderate": "Moderate (15-20 min daily)",
    "deep": "Deep (25-30 min daily)",
}

PACE_WORDS = {
    "light": "250-350",
    "moderate": "350-450",
    "deep": "450-550",
}


class AIServiceError(Exception):
    def __init__(self, status_code: int, code: str, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message


_CLIENT = None


def get_client() -> OpenAI:
    global _CLIENT
    if not OPENAI_API_KEY:
        raise AIServiceError(503, "ai_unavailable", "AI service is not configured.")
    if _CLIENT is None:
        _CLIENT = OpenAI(api_key=OPENAI_API_KEY, timeout=OPENAI_TIMEOUT_SEC)
    return _CLIENT


def _normalize_openai_error(exc: Exception) -> AIServiceError:
    if isinstance(exc, openai.RateLimitError):
        return AIServiceError(429, "ai_rate_limited", "AI service is busy. Try again shortly.")
    if isinstance(exc, openai.APIStatusError):
        status = exc.status_code if 400 <= exc.status_code < 600 else 502
        if status < 500:
            status = 502
        return AIServiceError(status, "ai_service_error", "AI service error.")
    return AIServiceError(502, "ai_service_error", "AI service error.")


def chat_completion(
    feature: str,
    messages: List[dict],
    model: Optional[str] = None,
    temperature: float = 0.7,
    max_tokens: Optional[int] = None,
    json_mode: bool = False,
) -> tuple[str, Optional[str]]:
    """Run one chat completion and return (content, finish_reason)."""
    client = get_client()
    model = model or OPENAI_MODEL
    kwargs = {"model": model, "messages": messages, "temperature": temperature}
    if max_tokens:
        kwargs["max_tokens"] = max_tokens
    if json_mode:
        kwargs["response_format"] = {"type": "json_object"}
    start = time.perf_counter()
    try:
        completion = client.chat.completions.create(**kwargs)
    except openai.OpenAIError as exc:
        elapsed_ms = int((time.perf_counter() - start) * 1000)
        log_ai_event(feature, model, elapsed_ms, error=type(exc).__name__)
        raise _normalize_openai_error(exc) from exc
    elapsed_ms = int((time.perf_counter() - start) * 1000)
    choice = completion.choices[0] if completion.choices else None
    content = (choice.message.content or "").strip() if choice and choice.message else ""
    finish_reason = choice.finish_reason if choice else None
    log_ai_event(feature, model, elapsed_ms, finish_reason=finish_reason, chars=len(content))
    return content, finish_reason


def extract_json(text: str) -> Optional[dict]:
    text = (text or "").strip()
    if text.startswith("```"):
        text = text.strip("`")
        if text.lower().startswith("json"):
            text = text[4:]
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass
    if "{" in text and "}" in text:
        start = text.find("{")
        end = text.rfind("}")
        try:
            return json.loads(text[start : end + 1])
        except json.JSONDecodeError:
            return None
    return None


def _explain_prompt(reference: str, question: Optional[str]) -> str:
    lines = [
        f"Passage: {reference}",
        f"User question: {question}" if question else "User question: (none)",
        "Provide: 1) What the text clearly says 2) Context to consider 3) Reflection question.",
    ]
    return "\n".join(lines)


@retry(stop=stop_after_attempt(2), retry=retry_if_exception_type(AIServiceError), reraise=True)
def _explain_once(reference: str, question: Optional[str]) -> str:
    content, _ = chat_completion(
        "explain",
        [
            {"role": "system", "content": EXPLAIN_SYSTEM_PROMPT},
            {"role": "user", "content": _explain_prompt(reference, question)},
        ],
        temperature=0.3,
    )
    if not content:
        raise AIServiceError(502, "ai_service_error", "AI response was empty.")
    return content


def explain_passage(reference: str, question: Optional[str] = None) -> dict:
    get_client()
    content = _explain_once(reference, question)
    parsed = extract_json(content)
    if not isinstance(parsed, dict):
        raise AIServiceError(502, "ai_invalid_response", "AI response was not valid JSON.")
    sections = parsed.get("sections") or []
    return {
        "reference": parsed.get("reference") or reference,
        "sections": [
            {"title": str(s.get("title", "")), "content": str(s.get("content", ""))}
            for s in sections
            if isinstance(s, dict)
        ],
    }


@retry(stop=stop_after_attempt(2), retry=retry_if_exception_type(AIServiceError), reraise=True)
def generate_dashboard(query: str) -> dict:
    today = datetime.now(timezone.utc).date().isoformat()
    content, _ = chat_completion(
        "dashboard",
        [
            {"role": "system", "content": DASHBOARD_SYSTEM_PROMPT},
            {
                "role": "user",
                "content": f"User query: {query}\nToday's date: {today}\nReturn ONLY valid JSON.",
            },
        ],
        temperature=0.7,
        max_tokens=2500,
        json_mode=True,
    )
    parsed = extract_json(content)
    if not isinstance(parsed, dict):
        raise AIServiceError(502, "ai_invalid_response", "AI response was not valid JSON.")
    missing = [key for key in ("insight", "life", "prophecy", "daily") if key not in parsed]
    if missing:
        raise AIServiceError(502, "ai_invalid_response", f"AI response missing: {', '.join(missing)}")
    return parsed


def chat_messages(history: List[dict]) -> List[dict]:
    messages = [{"role": "system", "content": CHAT_SYSTEM_PROMPT}]
    for msg in history:
        msg_type = msg.get("type") or msg.get("role")
        content = msg.get("content")
        if not msg_type or not content:
            continue
        messages.append({"role": "user" if msg_type == "user" else "assistant", "content": content})
    return messages


def open_chat_stream(messages: List[dict]):
    client = get_client()
    try:
        return client.chat.completions.create(
            model=OPENAI_MODEL,
            messages=messages,
            temperature=0.7,
            max_tokens=1500,
            stream=True,
        )
    except openai.OpenAIError as exc:
        raise _normalize_openai_error(exc) from exc


def iter_chat_stream(stream) -> Iterator[str]:
    start = time.perf_counter()
    chars = 0
    try:
        for chunk in stream:
            if not chunk.choices:
                continue
            delta = chunk.choices[0].delta
            text = delta.content if delta else None
            if text:
                chars += len(text)
                yield text
    finally:
        elapsed_ms = int((time.perf_counter() - start) * 1000)
        log_ai_event("chat", OPENAI_MODEL, elapsed_ms, chars=chars, streamed=True)


def generate_prayer(user_prompt: str) -> str:
    content, _ = chat_completion(
        "generate_prayer",
        [
            {"role": "system", "content": PRAYER_SYSTEM_PROMPT},
            {"role": "user", "content": user_prompt},
        ],
        temperature=0.8,
        max_tokens=300,
    )
    if not content:
        raise AIServiceError(502, "ai_service_error", "No prayer generated.")
    return content


def generate_encouragement(prompt_text: str, context: Optional[str] = None) -> dict:
    user_prompt = f"Generate encouragement for: {prompt_text}"
    if context:
        user_prompt += f"\n\nAdditional context: {context}"
    content, _ = chat_completion(
        "generate_encouragement",
        [
            {"role": "system", "content": ENCOURAGEMENT_SYSTEM_PROMPT},
            {"role": "user", "content": user_prompt},
        ],
        temperature=0.7,
        max_tokens=500,
        json_mode=True,
    )
    parsed = extract_json(content)
    if not isinstance(parsed, dict):
        raise AIServiceError(502, "ai_invalid_response", "AI response was not valid JSON.")
    encouragement = parsed.get("encouragement")
    reference = parsed.get("scriptureReference")
    text = parsed.get("scriptureText")
    if not encouragement or not reference or not text:
        raise AIServiceError(502, "ai_invalid_response", "Invalid encouragement response format.")
    return {
        "encouragement": encouragement,
        "scripture_reference": reference,
        "scripture_text": text,
        "reflection": parsed.get("reflection") or None,
        "prayer_prompt": parsed.get("prayerPrompt") or None,
    }


def generate_suggestions(conversations: List[dict]) -> Optional[List[str]]:
    """Return three personalised questions, or None when the model output is unusable."""
    summaries = []
    for index, conv in enumerate(conversations, start=1):
        title = conv.get("title") or "Untitled conversation"
        preview = "\n".join(
            f"{m['role']}: {m['content'][:150]}..." for m in (conv.get("messages") or [])[:3]
        )
        summaries.append(f"{index}. {title}\n{preview}")
    content, _ = chat_completion(
        "suggestions",
        [
            {"role": "system", "content": SUGGESTIONS_SYSTEM_PROMPT},
            {
                "role": "user",
                "content": "Recent Bible study conversations:\n\n" + "\n\n".join(summaries),
            },
        ],
        temperature=0.8,
        max_tokens=200,
    )
    try:
        suggestions = json.loads(content)
    except json.JSONDecodeError:
        return None
    if not isinstance(suggestions, list) or len(suggestions) != 3:
        return None
    if not all(isinstance(s, str) and s.strip() for s in suggestions):
        return None
    return [s.strip() for s in suggestions]


def build_journey_context(conversations, saved_verses, prayers, memorized, duration: int) -> str:
    lines = ["User's Spiritual Journey:", ""]
    if conversations:
        lines.append("RECENT CONVERSATION TOPICS:")
        for conv in conversations:
            messages = conv.get("messages") or []
            preview = messages[0]["content"][:100] if messages else "No messages"
            title = conv.get("title") or "Untitled conversation"
            lines.append(f'- "{title}" ({len(messages)} messages): {preview}...')
        lines.append("")
    if saved_verses:
        lines.append("VERSES THEY'VE SAVED:")
        for verse in saved_verses:
            lines.append(f'- {verse["reference"]}: "{(verse.get("text") or "")[:100]}..."')
        lines.append("")
    if prayers:
        lines.append("RECENT PRAYER REQUESTS:")
        for prayer in prayers:
            title = prayer.get("title") or "Prayer request"
            lines.append(f"- {title}: {prayer['content'][:100]}...")
        lines.append("")
    if memorized:
        lines.append("VERSES THEY'RE MEMORIZING:")
        for verse in memorized:
            lines.append(f"- {verse['reference']}")
        lines.append("")
    if not conversations and not saved_verses and not prayers:
        lines.append(
            "This user is new. Create a foundational plan covering essential Christian topics "
            "for someone beginning or deepening their walk with God."
        )
    lines.append(
        f"Based on this journey, create a personalised {duration}-day study plan that builds on "
        "their interests and needs."
    )
    return "\n".join(lines)


def _plan_day(day: dict, index: int) -> dict:
    return {
        "day_number": index,
        "title": str(day.get("title") or "").strip(),
        "content": str(day.get("content") or "").strip(),
        "reflection": str(day.get("reflection") or "").strip(),
        "prayer": (str(day.get("prayer")).strip() if day.get("prayer") else None),
        "verse_reference": (day.get("verseReference") or day.get("verse_reference") or None),
        "verse_text": (day.get("verseText") or day.get("verse_text") or None),
    }


def validate_generated_plan(parsed, duration: int, require_all: bool = False) -> dict:
    """Check a generated plan and renumber its days 1..duration.

    A plan must supply at least ``duration`` days; extra days are dropped.
    ``require_all`` additionally demands a prayer and verse on every day and an
    exact day count, which collaborative studies rely on.
    """
    if not isinstance(parsed, dict):
        raise AIServiceError(502, "ai_invalid_response", "AI response was not valid JSON.")
    title = parsed.get("title")
    description = parsed.get("description")
    days = parsed.get("days")
    if not title or not description or not isinstance(days, list) or not days:
        raise AIServiceError(502, "ai_invalid_response", "Invalid study plan structure.")
    if len(days) < duration or (require_all and len(days) != duration):
        raise AIServiceError(502, "ai_invalid_response", f"Expected {duration} days, got {len(days)}.")
    normalized = []
    for index, day in enumerate(days[:duration], start=1):
        if not isinstance(day, dict):
            raise AIServiceError(502, "ai_invalid_response", f"Invalid day {index} structure.")
        item = _plan_day(day, index)
        if not item["title"] or not item["content"] or not item["reflection"]:
            raise AIServiceError(502, "ai_invalid_response", f"Invalid day {index} structure.")
        if require_all and not (item["prayer"] and item["verse_reference"] and item["verse_text"]):
            raise AIServiceError(502, "ai_invalid_response", f"Invalid day {index} structure.")
        normalized.append(item)
    return {"title": str(title).strip(), "description": str(description).strip(), "days": normalized}


def generate_study_plan(journey_context: str, duration: int) -> dict:
    title_prefix = "7-Day Journey" if duration == 7 else "21-Day Deep Dive"
    content, finish_reason = chat_completion(
        "generate_study_plan",
        [
            {
                "role": "system",
                "content": STUDY_PLAN_SYSTEM_PROMPT.format(duration=duration, title_prefix=title_prefix),
            },
            {"role": "user", "content": journey_context},
        ],
        model=OPENAI_PLAN_MODEL,
        temperature=0.7,
        max_tokens=4000 if duration == 7 else 10000,
        json_mode=True,
    )
    if finish_reason == "length":
        raise AIServiceError(502, "ai_invalid_response", "Study plan generation was cut short.")
    return validate_generated_plan(extract_json(content), duration)


def _counts(values) -> List[tuple]:
    counts: dict = {}
    for value in values:
        counts[value] = counts.get(value, 0) + 1
    return sorted(counts.items(), key=lambda kv: -kv[1])


def build_collaborative_prompt(intentions: List[dict], duration: int) -> str:
    topics = []
    for intention in intentions:
        selected = intention.get("selected_topics") or []
        if isinstance(selected, str):
            selected = json.loads(selected)
        topics.extend(selected)
    top_topics = [f"{TOPIC_LABELS.get(t, t)} ({n} members)" for t, n in _counts(topics)]
    avg_depth = round(sum(int(i["depth_level"]) for i in intentions) / len(intentions))
    seasons = [f"{SEASON_LABELS.get(s, s)} ({n} members)" for s, n in _counts(i["current_season"] for i in intentions)]
    pace = _counts(i["study_pace"] for i in intentions)[0][0]
    heart_questions = [f'"{i["heart_question"]}"' for i in intentions if i.get("heart_question")]

    lines = [
        "Create a Bible study for a small group.",
        "",
        "GROUP INPUT:",
        f"- Group size: {len(intentions)} members",
        f"- Top topics: {', '.join(top_topics)}",
        f"- Average depth preference: level {avg_depth}/10 (1 = foundational, 10 = deep theological)",
        f"- Seasons represented: {', '.join(seasons)}",
        f"- Preferred pace: {PACE_LABELS.get(pace, pace)}",
    ]
    if heart_questions:
        lines.append("- Heart questions from members:")
        lines.extend(f"  {q}" for q in heart_questions)
    lines.extend(
        [
            "",
            "REQUIREMENTS:",
            f"1. A cohesive {duration}-day study that weaves the top 2-3 topics throughout.",
            "2. Honour both the struggles and the celebrations represented.",
            f"3. {PACE_WORDS.get(pace, '350-450')} words of teaching content per day.",
            "4. Use the heart questions as recurring threads.",
            f"5. Match theological depth to level {avg_depth}/10.",
            "6. Use diverse passages; do not repeat verses.",
            "",
            "Return ONLY JSON: {\"title\", \"description\", \"days\": [{\"dayNumber\", \"title\", "
            "\"content\", \"reflection\", \"prayer\", \"verseReference\", \"verseText\"}]} with exactly "
            f"{duration} days numbered 1 to {duration}.",
        ]
    )
    return "\n".join(lines)


def min_intentions_required(member_count: int) -> int:
    if member_count <= 1:
        return 1
    return max(2, math.ceil(member_count * 0.5))


def generate_collaborative_study(intentions: List[dict], duration: int) -> dict:
    prompt = build_collaborative_prompt(intentions, duration)
    content, finish_reason = "", None
    for _attempt in range(COLLAB_FILTER_RETRIES + 1):
        content, finish_reason = chat_completion(
            "generate_collaborative_study",
            [
                {"role": "system", "content": COLLAB_SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            model=OPENAI_PLAN_MODEL,
            temperature=0.7,
            max_tokens=12000 if duration == 7 else 16000,
            json_mode=True,
        )
        if finish_reason != "content_filter":
            break
    if finish_reason == "content_filter":
        raise AIServiceError(502, "ai_service_error", "Study generation was blocked by content filtering.")
    if finish_reason == "length":
        raise AIServiceError(502, "ai_invalid_response", "Study generation was incomplete.")
    if not content:
        raise AIServiceError(502, "ai_service_error", "No study generated.")
    plan = validate_generated_plan(extract_json(content), duration, require_all=True)
    plan["duration"] = duration
    return plan
