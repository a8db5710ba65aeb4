"""
In-process Repository and QuestionBank adapters.
Used by tests, the simulation script, and single-node deployments without a database.
"""

from pathlib import Path
from typing import List, Dict, Any, Optional, Tuple, Iterable

import yaml

from src.repository.base import Repository, QuestionBank, TABLES, LOG_TABLES
from src.repository.models import (
    AdaptiveQuizSession,
    BehaviorEvent,
    DifficultyLevel,
    EngagementHeatmapPoint,
    LogRecord,
    ModuleAnalytics,
    Question,
    SessionStatus,
    VideoProgress,
)
from src.shared.exceptions import RepositoryError
from src.shared.logging import get_logger

logger = get_logger(__name__)


class InMemoryRepository(Repository):
    """Dict-backed repository. Rows are stored as JSON-mode dicts."""

    def __init__(self):
        self._rows: Dict[str, List[Dict[str, Any]]] = {table: [] for table in TABLES}
        self._heatmap: Dict[Tuple[str, str, int], Dict[str, Any]] = {}
        self._analytics: Dict[str, Dict[str, Any]] = {}
        self._progress: Dict[Tuple[str, str, Optional[str]], Dict[str, Any]] = {}
        self._sessions: Dict[str, Dict[str, Any]] = {}

    async def insert_batch(self, events: List[BehaviorEvent]) -> None:
        self._rows["behavior_events"].extend(e.model_dump(mode="json") for e in events)

    async def get_heatmap_point(
        self,
        module_id: str,
        scene_id: str,
        time_position_percent: int
    ) -> Optional[EngagementHeatmapPoint]:
        row = self._heatmap.get((module_id, scene_id, time_position_percent))
        return EngagementHeatmapPoint(**row) if row else None

    async def upsert_heatmap_point(self, point: EngagementHeatmapPoint) -> None:
        key = (point.module_id, point.scene_id, point.time_position_percent)
        self._heatmap[key] = point.model_dump(mode="json")

    async def get_module_analytics(self, module_id: str) -> Optional[ModuleAnalytics]:
        row = self._analytics.get(module_id)
        return ModuleAnalytics(**row) if row else None

    async def upsert_module_analytics(self, analytics: ModuleAnalytics) -> None:
        self._analytics[analytics.module_id] = analytics.model_dump(mode="json")

    async def get_video_progress(
        self,
        learner_id: str,
        scene_id: str,
        assignment_id: Optional[str]
    ) -> Optional[VideoProgress]:
        row = self._progress.get((learner_id, scene_id, assignment_id))
        return VideoProgress(**row) if row else None

    async def upsert_video_progress(self, progress: VideoProgress) -> None:
        key = (progress.learner_id, progress.scene_id, progress.assignment_id)
        self._progress[key] = progress.model_dump(mode="json")

    async def find_active_session(
        self,
        learner_id: str,
        module_id: str,
        assignment_id: Optional[str]
    ) -> Optional[AdaptiveQuizSession]:
        for row in self._sessions.values():
            if (
                row["learner_id"] == learner_id
                and row["module_id"] == module_id
                and row["assignment_id"] == assignment_id
                and row["status"] == SessionStatus.ACTIVE.value
            ):
                return AdaptiveQuizSession(**row)
        return None

    async def insert_session(self, session: AdaptiveQuizSession) -> None:
        if session.id in self._sessions:
            raise RepositoryError(f"Session {session.id} already exists")
        self._sessions[session.id] = session.model_dump(mode="json")

    async def update_session(self, session: AdaptiveQuizSession) -> None:
        if session.id not in self._sessions:
            raise RepositoryError(f"Session {session.id} does not exist")
        self._sessions[session.id] = session.model_dump(mode="json")

    async def insert_log(self, record: LogRecord) -> None:
        self._rows[LOG_TABLES[record.log_type]].append(record.model_dump(mode="json"))

    async def select(self, table: str, criteria: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        if table not in TABLES:
            raise RepositoryError(f"Unknown table: {table}")

        if table == "engagement_heatmap":
            rows: Iterable[Dict[str, Any]] = self._heatmap.values()
        elif table == "module_analytics":
            rows = self._analytics.values()
        elif table == "video_progress":
            rows = self._progress.values()
        elif table == "adaptive_quiz_sessions":
            rows = self._sessions.values()
        else:
            rows = self._rows[table]

        criteria = criteria or {}
        return [
            dict(row) for row in rows
            if all(row.get(column) == value for column, value in criteria.items())
        ]


class InMemoryQuestionBank(QuestionBank):
    """List-backed question bank preserving insertion order."""

    def __init__(self, questions: Optional[List[Question]] = None):
        self.questions: List[Question] = list(questions or [])

    def add(self, question: Question):
        self.questions.append(question)

    async def fetch_candidates(
        self,
        company_id: Optional[str],
        difficulty: Optional[DifficultyLevel],
        exclude_ids: List[str],
        limit: int
    ) -> List[Question]:
        excluded = set(exclude_ids)
        candidates = []
        for question in self.questions:
            if question.id in excluded:
                continue
            if question.company_id not in (None, company_id):
                continue
            if difficulty is not None and question.difficulty != difficulty:
                continue
            candidates.append(question)
            if len(candidates) >= limit:
                break
        return candidates


def load_questions(path: Path) -> List[Question]:
    """
    Load questions from a YAML file.

    Expected layout:
        questions:
          - id: q1
            text: ...
            correct_answer: ...
            difficulty: basic
            topic: ...
    """
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    questions = [Question(**item) for item in data.get("questions", [])]
    logger.info(f"Loaded {len(questions)} questions from {path}")
    return questions
