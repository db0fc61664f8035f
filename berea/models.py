from typing import List, Optional
from pydantic import BaseModel


class HealthResponse(BaseModel):
    status: str
    version: str


class VerseResponse(BaseModel):
    reference: str
    text: str
    translation: str


class ExplainRequest(BaseModel):
    reference: Optional[str] = None
    question: Optional[str] = None


class ExplainSection(BaseModel):
    title: str
    content: str


class ExplainResponse(BaseModel):
    reference: str
    sections: List[ExplainSection]


class DashboardRequest(BaseModel):
    query: Optional[str] = None


class ChatHistoryItem(BaseModel):
    type: str
    content: str


class ChatRequest(BaseModel):
    query: Optional[str] = None
    messages: List[ChatHistoryItem] = []


class GeneratePrayerRequest(BaseModel):
    source: Optional[str] = None
    verse_reference: Optional[str] = None
    verse_text: Optional[str] = None
    chat_context: Optional[str] = None


class GenerateEncouragementRequest(BaseModel):
    prompt_text: Optional[str] = None
    context: Optional[str] = None


class GenerateStudyPlanRequest(BaseModel):
    duration: int = 7


class CollaborativeStudyRequest(BaseModel):
    circle_id: str
    duration: int = 7


class SaveResponseRequest(BaseModel):
    feature: Optional[str] = None
    reference: Optional[str] = None
    prompt: Optional[str] = None
    response: Optional[str] = None


class UsageResponse(BaseModel):
    used: int
    limit: int
    remaining: int
    is_subscribed: bool


class SubscriptionActionRequest(BaseModel):
    action: Optional[str] = None


class ConversationCreateRequest(BaseModel):
    title: Optional[str] = None


class ConversationMessageRequest(BaseModel):
    role: str
    content: str


class SavedVerseRequest(BaseModel):
    reference: Optional[str] = None
    text: Optional[str] = None


class VerseReferenceRequest(BaseModel):
    reference: str


class MemorizedVerseRequest(BaseModel):
    reference: Optional[str] = None
    text: Optional[str] = None
    mark_as_memorized: Optional[bool] = None


class PrayerCreateRequest(BaseModel):
    title: Optional[str] = None
    content: Optional[str] = None
    source: Optional[str] = None
    source_reference: Optional[str] = None


class PrayerUpdateRequest(BaseModel):
    id: str
    status: str


class IdRequest(BaseModel):
    id: str


class StudyPlanCreateRequest(BaseModel):
    source: str
    duration: int


class EngagementUpdate(BaseModel):
    verse_saved: Optional[bool] = None
    prayer_generated: Optional[bool] = None
    chat_engaged: Optional[bool] = None


class ProgressUpdateRequest(BaseModel):
    day_number: int
    completed: bool
    engagement: Optional[EngagementUpdate] = None


class CircleCreateRequest(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    max_members: Optional[int] = None


class CircleUpdateRequest(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None


class MemberUpdateRequest(BaseModel):
    role: Optional[str] = None
    share_progress: Optional[bool] = None
    share_reflections: Optional[bool] = None
    share_verses: Optional[bool] = None
    share_prayers: Optional[bool] = None


class InviteRequest(BaseModel):
    email: Optional[str] = None


class CirclePrayerCreateRequest(BaseModel):
    title: Optional[str] = None
    content: Optional[str] = None
    source: str = "manual"
    source_reference: Optional[str] = None
    day_number: Optional[int] = None


class CirclePrayerUpdateRequest(BaseModel):
    title: Optional[str] = None
    content: Optional[str] = None
    status: Optional[str] = None


class CircleVerseCreateRequest(BaseModel):
    reference: Optional[str] = None
    text: Optional[str] = None
    note: Optional[str] = None
    from_day_number: Optional[int] = None


class CircleVerseDeleteRequest(BaseModel):
    verse_id: str


class ReactionRequest(BaseModel):
    reaction_type: str


class HighlightCreateRequest(BaseModel):
    reference: Optional[str] = None
    text: Optional[str] = None
    insight: Optional[str] = None
    from_day_number: Optional[int] = None


class ReflectionCreateRequest(BaseModel):
    circle_plan_id: str
    day_number: int
    content: Optional[str] = None
    verse_highlight: Optional[str] = None


class ReflectionUpdateRequest(BaseModel):
    content: Optional[str] = None
    verse_highlight: Optional[str] = None


class CommentCreateRequest(BaseModel):
    content: Optional[str] = None


class CommentUpdateRequest(BaseModel):
    comment_id: str
    content: Optional[str] = None


class CommentDeleteRequest(BaseModel):
    comment_id: str


class EncouragementCreateRequest(BaseModel):
    prompt_text: Optional[str] = None
    day_number: Optional[int] = None


class EncouragementResponseRequest(BaseModel):
    source: str
    content: Optional[str] = None
    scripture_ref: Optional[str] = None
    scripture_text: Optional[str] = None
    reflection: Optional[str] = None
    prayer_prompt: Optional[str] = None


class StudyIntentionRequest(BaseModel):
    selected_topics: List[str]
    depth_level: int
    current_season: str
    study_pace: str
    heart_question: Optional[str] = None


class CircleStudyCreateRequest(BaseModel):
    duration: int
    template_source: Optional[str] = None
    ai_generated: bool = False
    generated_plan: Optional[dict] = None
