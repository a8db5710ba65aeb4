"""
Session registry with per-learner, per-module, per-assignment isolation.
"""

import asyncio
import logging
import time
from typing import Dict, List, Optional, Callable

from src.repository.base import Repository, QuestionBank
from src.session.controller import LearnerSession
from src.session.feedback import BufferedFeedbackSink
from src.shared.config import settings
from src.shared.exceptions import SessionNotFoundError
from src.shared.ids import IdGenerator, uuid4_generator
from src.shared.logging import get_logger, log_with_context

logger = get_logger(__name__)


class SessionRegistry:
    """Keeps one live LearnerSession per key and tears idle ones down."""

    def __init__(
        self,
        repository: Repository,
        question_bank: QuestionBank,
        config: Optional[Dict] = None,
        session_config: Optional[Dict] = None,
        clock: Callable[[], float] = time.time,
        id_generator: IdGenerator = uuid4_generator
    ):
        self.repository = repository
        self.question_bank = question_bank
        self.config = config or {}
        self.idle_timeout_minutes = self.config.get(
            "idle_timeout_minutes", settings.session.idle_timeout_minutes
        )
        self.eviction_interval_seconds = self.config.get(
            "eviction_interval_seconds", settings.session.eviction_interval_seconds
        )
        self.session_config = session_config or {}
        self.clock = clock
        self.id_generator = id_generator

        self._sessions: Dict[str, LearnerSession] = {}
        self._lock = asyncio.Lock()
        self.running = False

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, key: str) -> bool:
        return key in self._sessions

    @property
    def sessions(self) -> List[LearnerSession]:
        return list(self._sessions.values())

    @staticmethod
    def generate_session_key(
        learner_id: str,
        module_id: str,
        assignment_id: Optional[str] = None
    ) -> str:
        """Generate session key: session:<module>:<learner>:<assignment>."""
        return f"session:{module_id}:{learner_id}:{assignment_id or 'none'}"

    async def get_or_create(
        self,
        learner_id: str,
        module_id: str,
        company_id: Optional[str] = None,
        assignment_id: Optional[str] = None,
        scene_id: Optional[str] = None
    ) -> LearnerSession:
        """
        Return the live session for this key, or initialize a new one.

        An expired session is closed and replaced. A session that fails to
        initialize is not registered.
        """
        key = self.generate_session_key(learner_id, module_id, assignment_id)

        async with self._lock:
            existing = self._sessions.get(key)
            if existing:
                if not self._is_expired(existing):
                    return existing
                await self._close_locked(key, "session_expired")

            session = LearnerSession(
                self.repository,
                self.question_bank,
                learner_id,
                module_id,
                company_id=company_id,
                assignment_id=assignment_id,
                scene_id=scene_id,
                feedback=BufferedFeedbackSink(),
                config=self.session_config,
                clock=self.clock,
                id_generator=self.id_generator,
                key=key,
            )
            await session.initialize_session()
            self._sessions[key] = session

        log_with_context(
            logger, logging.INFO,
            f"Session registered: {key}",
            learner_id=learner_id,
            action="session_created",
            session_id=session.session_id,
        )
        return session

    def get(self, key: str) -> LearnerSession:
        session = self._sessions.get(key)
        if session is None:
            raise SessionNotFoundError(f"No live session for key {key}")
        return session

    async def close(self, key: str):
        async with self._lock:
            if key not in self._sessions:
                raise SessionNotFoundError(f"No live session for key {key}")
            await self._close_locked(key, "session_torn_down")

    async def evict_idle(self) -> List[str]:
        """Close every session idle longer than the timeout. Returns evicted keys."""
        async with self._lock:
            expired = [key for key, s in self._sessions.items() if self._is_expired(s)]
            for key in expired:
                await self._close_locked(key, "session_evicted")
        return expired

    async def run_eviction(self, interval: Optional[float] = None):
        """Evict idle sessions every `interval` seconds until stopped or cancelled."""
        interval = interval or self.eviction_interval_seconds
        self.running = True
        logger.info(f"Idle session eviction started, every {interval}s")

        while self.running:
            try:
                await self.evict_idle()
            except Exception as e:
                logger.error(f"Idle session eviction failed: {str(e)}")

            await asyncio.sleep(interval)

    def stop(self):
        self.running = False
        logger.info("Idle session eviction stopped")

    async def close_all(self):
        async with self._lock:
            for key in list(self._sessions):
                await self._close_locked(key, "session_shutdown")

    def pending_events(self) -> int:
        return sum(len(s.collector.pending) for s in self._sessions.values())

    def _is_expired(self, session: LearnerSession) -> bool:
        return session.idle_seconds() > self.idle_timeout_minutes * 60

    async def _close_locked(self, key: str, action: str):
        session = self._sessions.pop(key)
        try:
            await session.close()
        except Exception as e:
            logger.warning(f"Error closing session {key}: {str(e)}")
        log_with_context(
            logger, logging.INFO,
            f"Session removed: {key}",
            learner_id=session.learner_id,
            action=action,
            session_id=session.session_id,
        )
