"""
Learner session controller. Owns the telemetry collector, engagement
aggregator, adaptive engine, and struggle detector for one learner, and
serializes every operation on them.
"""

import asyncio
import logging
import time
from typing import Dict, Any, List, Optional, Callable, Union

from src.adaptive.engine import AdaptiveSessionEngine, AnswerOutcome
from src.engagement.heatmap import EngagementAggregator
from src.remediation.detector import StruggleDetector
from src.repository.base import Repository, QuestionBank
from src.repository.models import (
    AdaptiveQuizSession,
    BehaviorEvent,
    BehaviorEventType,
    Question,
    RemediationSuggestion,
    VideoProgress,
)
from src.session.feedback import FeedbackSink, BufferedFeedbackSink
from src.shared.exceptions import SessionStateError
from src.shared.ids import IdGenerator, uuid4_generator
from src.shared.logging import get_logger, log_with_context
from src.telemetry.collector import TelemetryCollector
from src.telemetry.scoring import COMPLETION_FRACTION, PlaybackObserver, completion_percentage

logger = get_logger(__name__)

DEFAULT_TOPIC = "this lesson"


class LearnerSession:
    """
    One learner working through one module (and optional assignment).

    Config is a dict of per-component overrides:
    {"telemetry": {...}, "heatmap": {...}, "adaptive": {...},
     "struggle": {...}, "rules": {...}}
    """

    def __init__(
        self,
        repository: Repository,
        question_bank: QuestionBank,
        learner_id: str,
        module_id: str,
        company_id: Optional[str] = None,
        assignment_id: Optional[str] = None,
        scene_id: Optional[str] = None,
        feedback: Optional[FeedbackSink] = None,
        config: Optional[Dict] = None,
        clock: Callable[[], float] = time.time,
        id_generator: IdGenerator = uuid4_generator,
        key: Optional[str] = None
    ):
        self.repository = repository
        self.learner_id = learner_id
        self.module_id = module_id
        self.company_id = company_id
        self.assignment_id = assignment_id
        self.scene_id = scene_id or module_id
        self.feedback = feedback or BufferedFeedbackSink()
        self.config = config or {}
        self.clock = clock
        self.key = key
        self.session_id = id_generator()

        self.collector = TelemetryCollector(
            repository,
            learner_id,
            scene_id=self.scene_id,
            assignment_id=assignment_id,
            session_id=self.session_id,
            config=self.config.get("telemetry"),
            clock=clock,
            id_generator=id_generator,
        )
        self.aggregator = EngagementAggregator(
            repository,
            module_id,
            self.scene_id,
            session_id=self.session_id,
            config=self.config.get("heatmap"),
            clock=clock,
        )
        self.engine = AdaptiveSessionEngine(
            repository,
            question_bank,
            learner_id,
            module_id,
            company_id=company_id,
            assignment_id=assignment_id,
            feedback=self.feedback,
            rules=self.config.get("rules"),
            config=self.config.get("adaptive"),
            clock=clock,
            id_generator=id_generator,
        )
        self.detector = StruggleDetector(
            repository,
            learner_id,
            self.session_id,
            scene_id=self.scene_id,
            config=self.config.get("struggle"),
            clock=clock,
            id_generator=id_generator,
        )
        self.playback = PlaybackObserver()
        self.progress: Optional[VideoProgress] = None

        self._lock = asyncio.Lock()
        self.last_activity = clock()
        self.closed = False

    @property
    def quiz_session(self) -> Optional[AdaptiveQuizSession]:
        return self.engine.session

    @property
    def current_question(self) -> Optional[Question]:
        presented = self.engine.current
        return presented.question if presented else None

    @property
    def active_suggestions(self) -> List[RemediationSuggestion]:
        return list(self.detector.active_suggestions)

    # Adaptive quiz

    async def initialize_session(self) -> AdaptiveQuizSession:
        """Start or resume the quiz, and resume playback from saved progress."""
        async with self._lock:
            self._touch()
            quiz = await self.engine.initialize_session()
            try:
                await self._load_progress()
            except Exception as e:
                logger.warning(f"Video progress load failed for scene {self.scene_id}: {str(e)}")
            return quiz

    async def get_next_question(self) -> Optional[Question]:
        async with self._lock:
            self._touch()
            return await self.engine.select_next_question()

    async def process_answer(
        self,
        answer: Optional[str],
        is_correct: Optional[bool] = None
    ) -> AnswerOutcome:
        """
        Grade and record an answer to the presented question.

        When is_correct is None the answer is graded against the question's
        correct_answer. The result is mirrored into telemetry, and a wrong
        answer feeds the quiz-failure signal.
        """
        async with self._lock:
            self._touch()
            question = self.current_question
            if question is None:
                raise SessionStateError("No question has been presented")

            correct = question.is_correct(answer) if is_correct is None else bool(is_correct)
            outcome = await self.engine.process_answer(answer, correct)

            quiz_data = {
                "question_id": question.id,
                "topic": question.topic,
                "difficulty": question.difficulty.value,
                "correct": correct,
                "time_spent_seconds": outcome.time_spent_seconds,
            }
            await self.collector.track_quiz_event(BehaviorEventType.QUIZ_ATTEMPT, quiz_data)
            await self.collector.track_quiz_event(
                BehaviorEventType.QUIZ_PASS if correct else BehaviorEventType.QUIZ_FAIL,
                quiz_data,
            )

            if not correct:
                await self.detector.record_quiz_failure(question.topic, question.id)

            return outcome

    async def complete_quiz(self) -> AdaptiveQuizSession:
        async with self._lock:
            self._touch()
            return await self.engine.complete_quiz()

    # Telemetry

    async def track_event(
        self,
        event_type: Union[BehaviorEventType, str],
        current_time: Optional[float] = None,
        duration: Optional[float] = None,
        engagement_score: float = 0.0,
        metadata: Optional[Dict[str, Any]] = None
    ) -> BehaviorEvent:
        """Enqueue a raw behavior event without any mirroring."""
        async with self._lock:
            self._touch()
            return await self.collector.track_event(
                event_type,
                current_time=current_time,
                duration=duration,
                engagement_score=engagement_score,
                metadata=metadata,
            )

    async def track_video_event(
        self,
        event_type: Union[BehaviorEventType, str],
        current_time: float,
        duration: float,
        extra: Optional[Dict[str, Any]] = None,
        topic: Optional[str] = None
    ) -> BehaviorEvent:
        async with self._lock:
            self._touch()
            return await self._track_video_event(event_type, current_time, duration, extra, topic)

    async def track_quiz_event(
        self,
        event_type: Union[BehaviorEventType, str],
        quiz_data: Optional[Dict[str, Any]] = None
    ) -> BehaviorEvent:
        async with self._lock:
            self._touch()
            return await self.collector.track_quiz_event(event_type, quiz_data)

    async def track_dropout(
        self,
        current_time: float,
        duration: float,
        reason: str = "navigation"
    ) -> BehaviorEvent:
        """Record a dropout in telemetry, the heatmap, and the module rollup."""
        async with self._lock:
            self._touch()
            return await self._track_dropout(current_time, duration, reason)

    async def leave_scene(
        self,
        current_time: float,
        duration: Optional[float],
        reason: str = "navigation"
    ) -> Optional[BehaviorEvent]:
        """Report a dropout only if the learner left between start and completion."""
        async with self._lock:
            self._touch()
            if not PlaybackObserver.should_report_dropout(current_time, duration):
                return None
            return await self._track_dropout(current_time, duration, reason)

    async def observe_playback(
        self,
        current_time: float,
        duration: float,
        topic: Optional[str] = None
    ) -> List[BehaviorEvent]:
        """Feed a playback position update; inferred seek/rewind/complete events are tracked."""
        async with self._lock:
            self._touch()
            tracked = []
            for inferred in self.playback.observe(current_time, duration):
                tracked.append(await self._track_video_event(
                    inferred.event_type,
                    inferred.current_time,
                    duration,
                    inferred.metadata,
                    topic,
                ))
            return tracked

    async def save_progress(self, current_time: float, duration: float) -> Optional[VideoProgress]:
        """Persist the playback position. Ignored until the duration is known."""
        async with self._lock:
            self._touch()
            return await self._save_progress(current_time, duration)

    async def load_progress(self) -> Optional[VideoProgress]:
        async with self._lock:
            self._touch()
            return await self._load_progress()

    # Struggle signals

    async def record_coach_activation(self, topic: Optional[str] = None) -> List[RemediationSuggestion]:
        async with self._lock:
            self._touch()
            return await self.detector.record_coach_activation(self._topic(topic))

    async def record_help_request(self, topic: Optional[str] = None) -> List[RemediationSuggestion]:
        async with self._lock:
            self._touch()
            return await self.detector.record_help_request(self._topic(topic))

    async def accept_suggestion(self, suggestion_id: str) -> RemediationSuggestion:
        async with self._lock:
            self._touch()
            return await self.detector.accept_suggestion(suggestion_id)

    async def dismiss_suggestion(self, suggestion_id: str) -> RemediationSuggestion:
        async with self._lock:
            self._touch()
            return await self.detector.dismiss_suggestion(suggestion_id)

    async def close(self):
        """Stop the flush timer and make a final best-effort flush."""
        async with self._lock:
            if self.closed:
                return
            self.closed = True
            await self.collector.close()
            log_with_context(
                logger, logging.INFO,
                "Learner session closed",
                learner_id=self.learner_id,
                action="session_closed",
                session_id=self.session_id,
                unflushed_events=len(self.collector.pending),
            )

    def idle_seconds(self) -> float:
        return self.clock() - self.last_activity

    def snapshot(self) -> Dict[str, Any]:
        """Summary of the session for hosts and health checks."""
        quiz = self.engine.session
        return {
            "key": self.key,
            "session_id": self.session_id,
            "learner_id": self.learner_id,
            "module_id": self.module_id,
            "assignment_id": self.assignment_id,
            "quiz_session_id": quiz.id if quiz else None,
            "status": quiz.status.value if quiz else None,
            "current_difficulty": quiz.current_difficulty.value if quiz else None,
            "performance_score": quiz.performance_score if quiz else None,
            "pending_events": len(self.collector.pending),
            "active_suggestions": len(self.detector.active_suggestions),
            "video_progress": self.progress.model_dump(mode="json") if self.progress else None,
            "telemetry": dict(self.collector.metrics),
        }

    async def _track_video_event(
        self,
        event_type: Union[BehaviorEventType, str],
        current_time: float,
        duration: float,
        extra: Optional[Dict[str, Any]],
        topic: Optional[str]
    ) -> BehaviorEvent:
        event_type = BehaviorEventType(event_type)
        extra = extra or {}
        previous_time = self.playback.last_time

        event = await self.collector.track_video_event(event_type, current_time, duration, extra)
        # Keep position updates from re-detecting a jump the player already reported
        self.playback.sync(current_time, completed=event_type == BehaviorEventType.COMPLETE)
        await self._update_heatmap(current_time, duration, event.engagement_score, event_type)

        if event_type == BehaviorEventType.PAUSE:
            await self.detector.record_pause(self._topic(topic), timestamp=event.timestamp)
        elif event_type == BehaviorEventType.SEEK:
            await self.detector.record_skip(
                self._topic(topic),
                extra.get("seek_from", previous_time),
                extra.get("seek_to", current_time),
            )
        elif event_type == BehaviorEventType.COMPLETE:
            await self._save_progress(current_time, duration)

        return event

    async def _track_dropout(self, current_time: float, duration: float, reason: str) -> BehaviorEvent:
        event = await self.collector.track_dropout(current_time, duration, reason)
        await self._update_heatmap(
            current_time, duration, event.engagement_score, BehaviorEventType.DROPOUT
        )
        try:
            await self.aggregator.record_dropout(
                current_time, duration, event.metadata["session_duration"]
            )
        except Exception as e:
            logger.warning(f"Module dropout rollup failed for {self.module_id}: {str(e)}")
        await self._save_progress(current_time, duration)
        return event

    async def _save_progress(self, current_time: float, duration: float) -> Optional[VideoProgress]:
        if not duration or duration <= 0:
            return None

        percentage = min(completion_percentage(current_time, duration), 100.0)
        previous = self.progress
        # Completion is sticky once the mark has been reached
        completed = percentage >= COMPLETION_FRACTION * 100 or bool(previous and previous.is_completed)
        completed_at = previous.completed_at if previous and previous.completed_at else None
        if completed and completed_at is None:
            completed_at = self.clock()

        progress = VideoProgress(
            learner_id=self.learner_id,
            scene_id=self.scene_id,
            assignment_id=self.assignment_id,
            current_time_seconds=current_time,
            duration_seconds=duration,
            completion_percentage=round(percentage, 2),
            is_completed=completed,
            completed_at=completed_at,
            updated_at=self.clock(),
        )
        try:
            await self.repository.upsert_video_progress(progress)
        except Exception as e:
            logger.warning(f"Video progress save failed for scene {self.scene_id}: {str(e)}")
            return None

        self.progress = progress
        return progress

    async def _load_progress(self) -> Optional[VideoProgress]:
        progress = await self.repository.get_video_progress(
            self.learner_id, self.scene_id, self.assignment_id
        )
        if progress:
            self.progress = progress
            self.playback.sync(progress.current_time_seconds, completed=progress.is_completed)
        return progress

    async def _update_heatmap(
        self,
        current_time: float,
        duration: float,
        engagement_score: float,
        event_type: BehaviorEventType
    ):
        # Heatmap is best-effort analytics; a failed write never fails the event
        try:
            await self.aggregator.update_heatmap(current_time, duration, engagement_score, event_type)
        except Exception as e:
            logger.warning(f"Heatmap update failed for scene {self.scene_id}: {str(e)}")

    def _topic(self, topic: Optional[str]) -> str:
        if topic:
            return topic
        question = self.current_question
        if question:
            return question.topic
        return DEFAULT_TOPIC

    def _touch(self):
        self.last_activity = self.clock()
