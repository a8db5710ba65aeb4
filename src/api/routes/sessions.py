"""
Learner session endpoints: adaptive quiz, telemetry, and remediation.
"""

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from src.api.dependencies import get_registry, get_session
from src.repository.models import (
    BehaviorEventType,
    Feedback,
    Question,
    RemediationSuggestion,
    VideoProgress,
)
from src.session.controller import LearnerSession
from src.session.registry import SessionRegistry

router = APIRouter(prefix="/sessions", tags=["sessions"])


class CreateSessionRequest(BaseModel):
    learner_id: str
    module_id: str
    company_id: Optional[str] = None
    assignment_id: Optional[str] = None
    scene_id: Optional[str] = None


class AnswerRequest(BaseModel):
    answer: Optional[str] = None
    is_correct: Optional[bool] = None


class EventRequest(BaseModel):
    event_type: BehaviorEventType
    current_time: Optional[float] = None
    duration: Optional[float] = None
    engagement_score: float = 0.0
    metadata: Dict[str, Any] = Field(default_factory=dict)


class VideoEventRequest(BaseModel):
    """Explicit player event, or a bare position update when event_type is omitted."""
    event_type: Optional[BehaviorEventType] = None
    current_time: float
    duration: float
    metadata: Dict[str, Any] = Field(default_factory=dict)
    topic: Optional[str] = None


class DropoutRequest(BaseModel):
    current_time: float
    duration: float
    reason: str = "navigation"


class ProgressRequest(BaseModel):
    current_time: float = Field(ge=0)
    duration: float = Field(ge=0)


class SignalRequest(BaseModel):
    topic: Optional[str] = None


class SessionResponse(BaseModel):
    key: Optional[str]
    session: Dict[str, Any]
    feedback: List[Feedback] = Field(default_factory=list)


class QuestionResponse(BaseModel):
    question: Optional[Dict[str, Any]]
    completed: bool
    feedback: List[Feedback] = Field(default_factory=list)


class AnswerResponse(BaseModel):
    correct: bool
    time_spent_seconds: float
    transition: str
    current_difficulty: str
    performance_score: float
    topic_label: Optional[str]
    explanation: Optional[str]
    suggestions: List[RemediationSuggestion]
    feedback: List[Feedback] = Field(default_factory=list)


class SuggestionsResponse(BaseModel):
    suggestions: List[RemediationSuggestion]


class ProgressResponse(BaseModel):
    progress: Optional[VideoProgress]


def _public_question(question: Question) -> Dict[str, Any]:
    return question.model_dump(mode="json", exclude={"correct_answer", "explanation"})


@router.post("", response_model=SessionResponse)
async def create_session(
    body: CreateSessionRequest,
    registry: SessionRegistry = Depends(get_registry),
):
    """Initialize (or resume) the adaptive session for a learner and module."""
    session = await registry.get_or_create(
        body.learner_id,
        body.module_id,
        company_id=body.company_id,
        assignment_id=body.assignment_id,
        scene_id=body.scene_id,
    )
    return SessionResponse(
        key=session.key,
        session=session.snapshot(),
        feedback=session.feedback.drain(),
    )


@router.get("/{key}", response_model=SessionResponse)
async def get_session_state(session: LearnerSession = Depends(get_session)):
    return SessionResponse(key=session.key, session=session.snapshot())


@router.delete("/{key}")
async def teardown_session(key: str, registry: SessionRegistry = Depends(get_registry)):
    """Flush telemetry and drop the live session."""
    await registry.close(key)
    return {"key": key, "closed": True}


@router.get("/{key}/questions/next", response_model=QuestionResponse)
async def next_question(session: LearnerSession = Depends(get_session)):
    question = await session.get_next_question()
    return QuestionResponse(
        question=_public_question(question) if question else None,
        completed=question is None,
        feedback=session.feedback.drain(),
    )


@router.post("/{key}/answers", response_model=AnswerResponse)
async def submit_answer(body: AnswerRequest, session: LearnerSession = Depends(get_session)):
    question = session.current_question
    outcome = await session.process_answer(body.answer, body.is_correct)
    return AnswerResponse(
        correct=outcome.correct,
        time_spent_seconds=outcome.time_spent_seconds,
        transition=outcome.transition.kind.value,
        current_difficulty=outcome.session.current_difficulty.value,
        performance_score=outcome.performance_score,
        topic_label=outcome.topic_label,
        explanation=question.explanation if question else None,
        suggestions=session.active_suggestions,
        feedback=session.feedback.drain(),
    )


@router.post("/{key}/complete", response_model=SessionResponse)
async def complete_quiz(session: LearnerSession = Depends(get_session)):
    await session.complete_quiz()
    return SessionResponse(
        key=session.key,
        session=session.snapshot(),
        feedback=session.feedback.drain(),
    )


@router.post("/{key}/events")
async def track_event(body: EventRequest, session: LearnerSession = Depends(get_session)):
    event = await session.track_event(
        body.event_type,
        current_time=body.current_time,
        duration=body.duration,
        engagement_score=body.engagement_score,
        metadata=body.metadata,
    )
    return event.model_dump(mode="json")


@router.post("/{key}/video-events")
async def track_video_event(body: VideoEventRequest, session: LearnerSession = Depends(get_session)):
    if body.event_type is None:
        events = await session.observe_playback(body.current_time, body.duration, topic=body.topic)
    else:
        events = [await session.track_video_event(
            body.event_type,
            body.current_time,
            body.duration,
            extra=body.metadata,
            topic=body.topic,
        )]
    return {
        "events": [event.model_dump(mode="json") for event in events],
        "suggestions": [s.model_dump(mode="json") for s in session.active_suggestions],
    }


@router.post("/{key}/dropout")
async def track_dropout(body: DropoutRequest, session: LearnerSession = Depends(get_session)):
    event = await session.track_dropout(body.current_time, body.duration, body.reason)
    return event.model_dump(mode="json")


@router.get("/{key}/progress", response_model=ProgressResponse)
async def get_progress(session: LearnerSession = Depends(get_session)):
    """Saved playback position to resume from, if any."""
    return ProgressResponse(progress=await session.load_progress())


@router.post("/{key}/progress", response_model=ProgressResponse)
async def save_progress(body: ProgressRequest, session: LearnerSession = Depends(get_session)):
    return ProgressResponse(progress=await session.save_progress(body.current_time, body.duration))


@router.post("/{key}/signals/coach", response_model=SuggestionsResponse)
async def coach_activation(body: SignalRequest, session: LearnerSession = Depends(get_session)):
    return SuggestionsResponse(suggestions=await session.record_coach_activation(body.topic))


@router.post("/{key}/signals/help", response_model=SuggestionsResponse)
async def help_request(body: SignalRequest, session: LearnerSession = Depends(get_session)):
    return SuggestionsResponse(suggestions=await session.record_help_request(body.topic))


@router.get("/{key}/suggestions", response_model=SuggestionsResponse)
async def list_suggestions(session: LearnerSession = Depends(get_session)):
    return SuggestionsResponse(suggestions=session.active_suggestions)


@router.post("/{key}/suggestions/{suggestion_id}/accept", response_model=RemediationSuggestion)
async def accept_suggestion(suggestion_id: str, session: LearnerSession = Depends(get_session)):
    return await session.accept_suggestion(suggestion_id)


@router.post("/{key}/suggestions/{suggestion_id}/dismiss", response_model=RemediationSuggestion)
async def dismiss_suggestion(suggestion_id: str, session: LearnerSession = Depends(get_session)):
    return await session.dismiss_suggestion(suggestion_id)
