"""
Pydantic models for engine entities and log records.
"""

import re
from enum import Enum
from typing import Optional, List, Dict, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


class BehaviorEventType(str, Enum):
    """Behavior event types emitted by the player and quiz UI."""
    PLAY = "play"
    PAUSE = "pause"
    SEEK = "seek"
    REWIND = "rewind"
    QUIZ_ATTEMPT = "quiz_attempt"
    QUIZ_PASS = "quiz_pass"
    QUIZ_FAIL = "quiz_fail"
    DROPOUT = "dropout"
    COMPLETE = "complete"


VIDEO_EVENT_TYPES = {
    BehaviorEventType.PLAY,
    BehaviorEventType.PAUSE,
    BehaviorEventType.SEEK,
    BehaviorEventType.REWIND,
    BehaviorEventType.COMPLETE,
}

QUIZ_EVENT_TYPES = {
    BehaviorEventType.QUIZ_ATTEMPT,
    BehaviorEventType.QUIZ_PASS,
    BehaviorEventType.QUIZ_FAIL,
}


class BehaviorEvent(BaseModel):
    """Immutable behavior event, owned by the collector until flushed."""
    model_config = ConfigDict(frozen=True)

    session_id: str
    learner_id: str
    scene_id: Optional[str] = None
    assignment_id: Optional[str] = None
    event_type: BehaviorEventType
    timestamp: float
    current_time_seconds: Optional[float] = None
    video_duration_seconds: Optional[float] = None
    engagement_score: float = 0.0
    metadata: Dict[str, Any] = Field(default_factory=dict)


class EngagementHeatmapPoint(BaseModel):
    """Aggregated engagement for one percentage bucket of a scene."""
    module_id: str
    scene_id: str
    time_position_percent: int = Field(ge=0, le=100)
    engagement_score: float = 0.0
    dropout_count: int = 0
    pause_count: int = 0
    seek_count: int = 0
    rewatch_count: int = 0


class ModuleAnalytics(BaseModel):
    """Module-level dropout rollup."""
    module_id: str
    average_completion_time: float = 0.0
    dropout_rate: float = 0.0
    dropout_points: List[float] = Field(default_factory=list)


class VideoProgress(BaseModel):
    """Saved playback position for one learner, scene, and assignment."""
    learner_id: str
    scene_id: str
    assignment_id: Optional[str] = None
    current_time_seconds: float = 0.0
    duration_seconds: float = 0.0
    completion_percentage: float = Field(default=0.0, ge=0.0, le=100.0)
    is_completed: bool = False
    completed_at: Optional[float] = None
    updated_at: float


class DifficultyLevel(str, Enum):
    """Question pool tiers, in ascending order."""
    BASIC = "basic"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"


DIFFICULTY_ORDER = [
    DifficultyLevel.BASIC,
    DifficultyLevel.INTERMEDIATE,
    DifficultyLevel.ADVANCED,
]


class SessionStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"


class AdaptiveRules(BaseModel):
    """Versioned adaptive rule set attached to each quiz session."""
    version: int = 1
    correct_streak_to_advance: int = Field(default=3, ge=1)
    incorrect_streak_to_regress: int = Field(default=2, ge=1)
    # Stored and reported, not enforced by selection or transitions
    min_questions_per_level: int = 5
    max_retries: int = 3
    struggling_threshold: float = Field(default=0.6, ge=0.0, le=1.0)
    mastery_threshold: float = Field(default=0.85, ge=0.0, le=1.0)


class AdaptiveQuizSession(BaseModel):
    """Adaptive quiz session state, persisted after every answer."""
    id: str
    learner_id: str
    company_id: Optional[str] = None
    module_id: str
    assignment_id: Optional[str] = None
    status: SessionStatus = SessionStatus.ACTIVE
    current_difficulty: DifficultyLevel = DifficultyLevel.BASIC
    correct_streak: int = 0
    incorrect_streak: int = 0
    total_questions_answered: int = 0
    performance_score: float = Field(default=0.0, ge=0.0, le=1.0)
    struggle_topics: List[str] = Field(default_factory=list)
    mastered_topics: List[str] = Field(default_factory=list)
    question_history: List[str] = Field(default_factory=list)
    adaptive_rules: AdaptiveRules = Field(default_factory=AdaptiveRules)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    started_at: float
    completed_at: Optional[float] = None


class Question(BaseModel):
    """Question bank record."""
    id: str
    company_id: Optional[str] = None
    text: str
    type: str = "multiple_choice"
    options: List[str] = Field(default_factory=list)
    correct_answer: str
    difficulty: DifficultyLevel
    topic: str
    hint: Optional[str] = None
    explanation: Optional[str] = None

    def is_correct(self, answer: Optional[str]) -> bool:
        """Case- and whitespace-insensitive answer match. No answer is wrong."""
        if answer is None:
            return False

        def normalize(value: str) -> str:
            return re.sub(r"\s+", " ", str(value)).strip().lower()

        return normalize(answer) == normalize(self.correct_answer)


class StruggleType(str, Enum):
    QUIZ_FAILURE = "quiz_failure"
    EXCESSIVE_PAUSES = "excessive_pauses"
    COACH_ACTIVATION = "coach_activation"
    VIDEO_SKIPPING = "video_skipping"
    HELP_REQUESTS = "help_requests"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class StrugglePattern(BaseModel):
    """A struggle signal that crossed its trigger rule."""
    type: StruggleType
    severity: Severity
    topic: str
    count: int = 0
    context: Dict[str, Any] = Field(default_factory=dict)
    detected_at: float


class SuggestionType(str, Enum):
    EXPLANATION = "explanation"
    MICROLEARNING = "microlearning"
    EXAMPLE = "example"
    REMINDER = "reminder"
    PEER_SUPPORT = "peer_support"


class SuggestionStatus(str, Enum):
    ACTIVE = "active"
    ACCEPTED = "accepted"
    DISMISSED = "dismissed"


class RemediationSuggestion(BaseModel):
    """Contextual intervention offered to a struggling learner."""
    id: str
    type: SuggestionType
    title: str
    content: str
    action_label: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    status: SuggestionStatus = SuggestionStatus.ACTIVE


class QuestionAttemptLog(BaseModel):
    """Append-only record per answered question."""
    log_type: Literal["question_attempt"] = "question_attempt"
    session_id: str
    question_id: str
    difficulty_presented: DifficultyLevel
    topic: str
    correct: bool
    user_answer: Optional[str] = None
    time_spent_seconds: float
    adaptive_reason: str
    created_at: float


class StruggleEventRecord(BaseModel):
    """Behavior-tracking record written for every struggle signal observation."""
    log_type: Literal["struggle_event"] = "struggle_event"
    session_id: str
    learner_id: str
    scene_id: Optional[str] = None
    signal: StruggleType
    topic: str
    counter_value: int = 0
    triggered: bool = False
    details: Dict[str, Any] = Field(default_factory=dict)
    created_at: float


class RemediationEventRecord(BaseModel):
    """Suggestion lifecycle record."""
    log_type: Literal["remediation_event"] = "remediation_event"
    action: Literal["remediation_suggested", "remediation_accepted", "remediation_dismissed"]
    session_id: str
    learner_id: str
    scene_id: Optional[str] = None
    suggestion_id: str
    suggestion_type: SuggestionType
    pattern: Optional[StrugglePattern] = None
    created_at: float


LogRecord = Union[QuestionAttemptLog, StruggleEventRecord, RemediationEventRecord]


class FeedbackSeverity(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class Feedback(BaseModel):
    """User-visible notification handed to the UI feedback sink."""
    title: str
    description: str
    severity: FeedbackSeverity = FeedbackSeverity.INFO
