"""
Collaborator interfaces for persistence and question delivery.
"""

from abc import ABC, abstractmethod
from typing import List, Dict, Any, Optional

from src.repository.models import (
    AdaptiveQuizSession,
    BehaviorEvent,
    DifficultyLevel,
    EngagementHeatmapPoint,
    LogRecord,
    ModuleAnalytics,
    Question,
    VideoProgress,
)


class Repository(ABC):
    """
    Opaque store used by every engine component.

    Implementations must make each single-row upsert atomic. No cross-row
    transaction is assumed.
    """

    @abstractmethod
    async def insert_batch(self, events: List[BehaviorEvent]) -> None:
        """Bulk insert an ordered batch of behavior events."""

    @abstractmethod
    async def get_heatmap_point(
        self,
        module_id: str,
        scene_id: str,
        time_position_percent: int
    ) -> Optional[EngagementHeatmapPoint]:
        """Fetch one heatmap bucket."""

    @abstractmethod
    async def upsert_heatmap_point(self, point: EngagementHeatmapPoint) -> None:
        """Insert or replace one heatmap bucket."""

    @abstractmethod
    async def get_module_analytics(self, module_id: str) -> Optional[ModuleAnalytics]:
        """Fetch the module dropout rollup."""

    @abstractmethod
    async def upsert_module_analytics(self, analytics: ModuleAnalytics) -> None:
        """Insert or replace the module dropout rollup."""

    @abstractmethod
    async def get_video_progress(
        self,
        learner_id: str,
        scene_id: str,
        assignment_id: Optional[str]
    ) -> Optional[VideoProgress]:
        """Fetch the saved playback position for (learner, scene, assignment)."""

    @abstractmethod
    async def upsert_video_progress(self, progress: VideoProgress) -> None:
        """Insert or replace the saved playback position."""

    @abstractmethod
    async def find_active_session(
        self,
        learner_id: str,
        module_id: str,
        assignment_id: Optional[str]
    ) -> Optional[AdaptiveQuizSession]:
        """Return the active quiz session for (learner, module, assignment), if any."""

    @abstractmethod
    async def insert_session(self, session: AdaptiveQuizSession) -> None:
        """Create a quiz session row."""

    @abstractmethod
    async def update_session(self, session: AdaptiveQuizSession) -> None:
        """Replace a quiz session row by id."""

    @abstractmethod
    async def insert_log(self, record: LogRecord) -> None:
        """Append an attempt, struggle-event, or remediation-event record."""

    @abstractmethod
    async def select(self, table: str, criteria: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """
        Select rows by equality criteria.

        Args:
            table: Logical table name (see TABLES)
            criteria: Column -> value equality filters

        Returns:
            List of row dicts in insertion order
        """

    async def ping(self) -> bool:
        """Health check."""
        return True


# Logical table names shared by all adapters
TABLES = {
    "behavior_events",
    "engagement_heatmap",
    "module_analytics",
    "video_progress",
    "adaptive_quiz_sessions",
    "question_attempts",
    "behavior_tracking",
    "remediation_events",
}

LOG_TABLES = {
    "question_attempt": "question_attempts",
    "struggle_event": "behavior_tracking",
    "remediation_event": "remediation_events",
}


class QuestionBank(ABC):
    """Source of candidate questions."""

    @abstractmethod
    async def fetch_candidates(
        self,
        company_id: Optional[str],
        difficulty: Optional[DifficultyLevel],
        exclude_ids: List[str],
        limit: int
    ) -> List[Question]:
        """
        Fetch candidate questions.

        Args:
            company_id: Tenant filter; shared questions (no company) always match
            difficulty: Tier filter, or None for all tiers
            exclude_ids: Question ids already presented in the session
            limit: Maximum number of candidates

        Returns:
            Candidates in bank order
        """
