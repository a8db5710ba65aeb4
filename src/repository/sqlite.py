"""
SQLiteRepository: SQLite + WAL mode store for engine entities and logs.
"""

import sqlite3
import json
from pathlib import Path
from typing import Optional, Dict, Any, List
from contextlib import contextmanager

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
from src.shared.config import settings
from src.shared.exceptions import RepositoryError, QuestionBankError
from src.shared.logging import get_logger

logger = get_logger(__name__)


SCHEMA = """
    CREATE TABLE IF NOT EXISTS behavior_events (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        session_id TEXT NOT NULL,
        learner_id TEXT NOT NULL,
        event_type TEXT NOT NULL,
        timestamp REAL NOT NULL,
        payload TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS engagement_heatmap (
        module_id TEXT NOT NULL,
        scene_id TEXT NOT NULL,
        time_position_percent INTEGER NOT NULL CHECK (time_position_percent BETWEEN 0 AND 100),
        payload TEXT NOT NULL,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        PRIMARY KEY (module_id, scene_id, time_position_percent)
    );

    CREATE TABLE IF NOT EXISTS module_analytics (
        module_id TEXT PRIMARY KEY,
        payload TEXT NOT NULL,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    );

    CREATE TABLE IF NOT EXISTS video_progress (
        learner_id TEXT NOT NULL,
        scene_id TEXT NOT NULL,
        assignment_key TEXT NOT NULL,
        payload TEXT NOT NULL,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        PRIMARY KEY (learner_id, scene_id, assignment_key)
    );

    CREATE TABLE IF NOT EXISTS adaptive_quiz_sessions (
        id TEXT PRIMARY KEY,
        learner_id TEXT NOT NULL,
        module_id TEXT NOT NULL,
        assignment_id TEXT,
        status TEXT NOT NULL,
        payload TEXT NOT NULL,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    );

    CREATE TABLE IF NOT EXISTS question_attempts (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        session_id TEXT NOT NULL,
        payload TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS behavior_tracking (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        session_id TEXT NOT NULL,
        payload TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS remediation_events (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        session_id TEXT NOT NULL,
        payload TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS questions (
        position INTEGER PRIMARY KEY AUTOINCREMENT,
        id TEXT NOT NULL UNIQUE,
        company_id TEXT,
        difficulty TEXT NOT NULL,
        payload TEXT NOT NULL
    );

    CREATE INDEX IF NOT EXISTS idx_events_session ON behavior_events(session_id);
    CREATE INDEX IF NOT EXISTS idx_sessions_lookup
        ON adaptive_quiz_sessions(learner_id, module_id, assignment_id, status);
    CREATE INDEX IF NOT EXISTS idx_attempts_session ON question_attempts(session_id);
    CREATE INDEX IF NOT EXISTS idx_tracking_session ON behavior_tracking(session_id);
    CREATE INDEX IF NOT EXISTS idx_remediation_session ON remediation_events(session_id);
    CREATE INDEX IF NOT EXISTS idx_questions_tier ON questions(company_id, difficulty);
"""


def _assignment_key(assignment_id: Optional[str]) -> str:
    # NULLs never conflict in a primary key, so "no assignment" is stored as ""
    return assignment_id or ""


class SQLiteDatabase:
    """Shared connection handling and schema bootstrap."""

    def __init__(self, db_path: Optional[Path] = None):
        self.db_path = Path(db_path or settings.database_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_database()

    def _init_database(self):
        """Initialize database schema."""
        with self._get_connection() as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.executescript(SCHEMA)

    @contextmanager
    def _get_connection(self):
        """Get database connection; sqlite errors surface as RepositoryError."""
        try:
            conn = sqlite3.connect(str(self.db_path), timeout=30.0)
        except sqlite3.Error as e:
            raise RepositoryError(f"Cannot open {self.db_path}: {str(e)}") from e
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise RepositoryError(f"SQLite error: {str(e)}") from e
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()


class SQLiteRepository(Repository):
    """Repository over SQLite. Each upsert is a single-statement, per-row atomic write."""

    def __init__(self, db_path: Optional[Path] = None):
        self.db = SQLiteDatabase(db_path)

    async def insert_batch(self, events: List[BehaviorEvent]) -> None:
        if not events:
            return
        with self.db._get_connection() as conn:
            conn.executemany(
                """INSERT INTO behavior_events (session_id, learner_id, event_type, timestamp, payload)
                   VALUES (?, ?, ?, ?, ?)""",
                [
                    (e.session_id, e.learner_id, e.event_type.value, e.timestamp, e.model_dump_json())
                    for e in events
                ]
            )

    async def get_heatmap_point(
        self,
        module_id: str,
        scene_id: str,
        time_position_percent: int
    ) -> Optional[EngagementHeatmapPoint]:
        with self.db._get_connection() as conn:
            row = conn.execute(
                """SELECT payload FROM engagement_heatmap
                   WHERE module_id = ? AND scene_id = ? AND time_position_percent = ?""",
                (module_id, scene_id, time_position_percent)
            ).fetchone()
        return EngagementHeatmapPoint.model_validate_json(row["payload"]) if row else None

    async def upsert_heatmap_point(self, point: EngagementHeatmapPoint) -> None:
        with self.db._get_connection() as conn:
            conn.execute(
                """INSERT INTO engagement_heatmap (module_id, scene_id, time_position_percent, payload)
                   VALUES (?, ?, ?, ?)
                   ON CONFLICT (module_id, scene_id, time_position_percent)
                   DO UPDATE SET payload = excluded.payload, updated_at = CURRENT_TIMESTAMP""",
                (point.module_id, point.scene_id, point.time_position_percent, point.model_dump_json())
            )

    async def get_module_analytics(self, module_id: str) -> Optional[ModuleAnalytics]:
        with self.db._get_connection() as conn:
            row = conn.execute(
                "SELECT payload FROM module_analytics WHERE module_id = ?",
                (module_id,)
            ).fetchone()
        return ModuleAnalytics.model_validate_json(row["payload"]) if row else None

    async def upsert_module_analytics(self, analytics: ModuleAnalytics) -> None:
        with self.db._get_connection() as conn:
            conn.execute(
                """INSERT INTO module_analytics (module_id, payload) VALUES (?, ?)
                   ON CONFLICT (module_id)
                   DO UPDATE SET payload = excluded.payload, updated_at = CURRENT_TIMESTAMP""",
                (analytics.module_id, analytics.model_dump_json())
            )

    async def get_video_progress(
        self,
        learner_id: str,
        scene_id: str,
        assignment_id: Optional[str]
    ) -> Optional[VideoProgress]:
        with self.db._get_connection() as conn:
            row = conn.execute(
                """SELECT payload FROM video_progress
                   WHERE learner_id = ? AND scene_id = ? AND assignment_key = ?""",
                (learner_id, scene_id, _assignment_key(assignment_id))
            ).fetchone()
        return VideoProgress.model_validate_json(row["payload"]) if row else None

    async def upsert_video_progress(self, progress: VideoProgress) -> None:
        with self.db._get_connection() as conn:
            conn.execute(
                """INSERT INTO video_progress (learner_id, scene_id, assignment_key, payload)
                   VALUES (?, ?, ?, ?)
                   ON CONFLICT (learner_id, scene_id, assignment_key)
                   DO UPDATE SET payload = excluded.payload, updated_at = CURRENT_TIMESTAMP""",
                (
                    progress.learner_id,
                    progress.scene_id,
                    _assignment_key(progress.assignment_id),
                    progress.model_dump_json()
                )
            )

    async def find_active_session(
        self,
        learner_id: str,
        module_id: str,
        assignment_id: Optional[str]
    ) -> Optional[AdaptiveQuizSession]:
        with self.db._get_connection() as conn:
            row = conn.execute(
                """SELECT payload FROM adaptive_quiz_sessions
                   WHERE learner_id = ? AND module_id = ? AND assignment_id IS ? AND status = ?
                   ORDER BY updated_at DESC
                   LIMIT 1""",
                (learner_id, module_id, assignment_id, SessionStatus.ACTIVE.value)
            ).fetchone()
        return AdaptiveQuizSession.model_validate_json(row["payload"]) if row else None

    async def insert_session(self, session: AdaptiveQuizSession) -> None:
        with self.db._get_connection() as conn:
            conn.execute(
                """INSERT INTO adaptive_quiz_sessions
                   (id, learner_id, module_id, assignment_id, status, payload)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (
                    session.id,
                    session.learner_id,
                    session.module_id,
                    session.assignment_id,
                    session.status.value,
                    session.model_dump_json()
                )
            )

    async def update_session(self, session: AdaptiveQuizSession) -> None:
        with self.db._get_connection() as conn:
            cursor = conn.execute(
                """UPDATE adaptive_quiz_sessions
                   SET status = ?, payload = ?, updated_at = CURRENT_TIMESTAMP
                   WHERE id = ?""",
                (session.status.value, session.model_dump_json(), session.id)
            )
            if cursor.rowcount == 0:
                raise RepositoryError(f"Session {session.id} does not exist")

    async def insert_log(self, record: LogRecord) -> None:
        table = LOG_TABLES[record.log_type]
        with self.db._get_connection() as conn:
            conn.execute(
                f"INSERT INTO {table} (session_id, payload) VALUES (?, ?)",
                (record.session_id, record.model_dump_json())
            )

    async def select(self, table: str, criteria: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        if table not in TABLES:
            raise RepositoryError(f"Unknown table: {table}")

        # Table name is checked against TABLES above; filters apply to the decoded payload
        with self.db._get_connection() as conn:
            rows = conn.execute(f"SELECT payload FROM {table} ORDER BY rowid ASC").fetchall()

        criteria = criteria or {}
        results = []
        for row in rows:
            data = json.loads(row["payload"])
            if all(data.get(column) == value for column, value in criteria.items()):
                results.append(data)
        return results

    async def ping(self) -> bool:
        try:
            with self.db._get_connection() as conn:
                conn.execute("SELECT 1").fetchone()
            return True
        except RepositoryError as e:
            logger.error(f"Repository health check failed: {str(e)}")
            return False


class SQLiteQuestionBank(QuestionBank):
    """Question bank stored in the same SQLite file as the repository."""

    def __init__(self, db_path: Optional[Path] = None):
        self.db = SQLiteDatabase(db_path)

    def add_questions(self, questions: List[Question]) -> int:
        """Insert or replace questions; returns the number written."""
        with self.db._get_connection() as conn:
            conn.executemany(
                """INSERT INTO questions (id, company_id, difficulty, payload)
                   VALUES (?, ?, ?, ?)
                   ON CONFLICT (id) DO UPDATE SET
                       company_id = excluded.company_id,
                       difficulty = excluded.difficulty,
                       payload = excluded.payload""",
                [(q.id, q.company_id, q.difficulty.value, q.model_dump_json()) for q in questions]
            )
        return len(questions)

    async def fetch_candidates(
        self,
        company_id: Optional[str],
        difficulty: Optional[DifficultyLevel],
        exclude_ids: List[str],
        limit: int
    ) -> List[Question]:
        query = "SELECT payload FROM questions WHERE (company_id IS NULL OR company_id IS ?)"
        params: List[Any] = [company_id]

        if difficulty is not None:
            query += " AND difficulty = ?"
            params.append(difficulty.value)

        if exclude_ids:
            placeholders = ", ".join("?" for _ in exclude_ids)
            query += f" AND id NOT IN ({placeholders})"
            params.extend(exclude_ids)

        query += " ORDER BY position ASC LIMIT ?"
        params.append(limit)

        try:
            with self.db._get_connection() as conn:
                rows = conn.execute(query, params).fetchall()
        except RepositoryError as e:
            raise QuestionBankError(str(e)) from e

        return [Question.model_validate_json(row["payload"]) for row in rows]
