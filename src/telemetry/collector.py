"""
Behavior event collector: buffers events per learner session and flushes
them to the repository in ordered batches.
"""

import asyncio
import logging
import time
from typing import List, Dict, Any, Optional, Callable, Union

from src.repository.base import Repository
from src.repository.models import BehaviorEvent, BehaviorEventType
from src.shared.config import settings
from src.shared.exceptions import TelemetryError
from src.shared.ids import IdGenerator, uuid4_generator
from src.shared.logging import get_logger, log_with_context
from src.telemetry.scoring import (
    DROPOUT_SCORE,
    completion_percentage,
    quiz_engagement_score,
    video_engagement_score,
)

logger = get_logger(__name__)


class TelemetryCollector:
    """
    FIFO event buffer scoped to one learner session.

    A flush runs when the queue reaches batch_size or when the flush timer
    fires, whichever comes first. A failed batch goes back to the front of
    the queue and is retried on the next cycle, with no attempt limit.
    """

    def __init__(
        self,
        repository: Repository,
        learner_id: str,
        scene_id: Optional[str] = None,
        assignment_id: Optional[str] = None,
        session_id: Optional[str] = None,
        config: Optional[Dict] = None,
        clock: Callable[[], float] = time.time,
        id_generator: IdGenerator = uuid4_generator
    ):
        self.repository = repository
        self.learner_id = learner_id
        self.scene_id = scene_id
        self.assignment_id = assignment_id
        self.config = config or {}
        self.batch_size = self.config.get("batch_size", settings.telemetry.batch_size)
        self.flush_interval = self.config.get(
            "flush_interval_ms", settings.telemetry.flush_interval_ms
        ) / 1000
        self.clock = clock
        self.session_id = session_id or id_generator()

        self.session_start = clock()
        self.last_event_time = self.session_start

        self._queue: List[BehaviorEvent] = []
        self._timer: Optional[asyncio.Task] = None
        self._flush_lock = asyncio.Lock()
        self.active = True

        self.metrics = {
            "events_tracked": 0,
            "flushes": 0,
            "events_flushed": 0,
            "failed_flushes": 0,
            "requeued_events": 0,
        }

    @property
    def pending(self) -> List[BehaviorEvent]:
        """Snapshot of buffered events in submission order."""
        return list(self._queue)

    def should_flush(self) -> bool:
        """Check if the queue has reached the batch size."""
        return len(self._queue) >= self.batch_size

    async def track_event(
        self,
        event_type: Union[BehaviorEventType, str],
        current_time: Optional[float] = None,
        duration: Optional[float] = None,
        engagement_score: float = 0.0,
        metadata: Optional[Dict[str, Any]] = None,
        scene_id: Optional[str] = None
    ) -> BehaviorEvent:
        """
        Stamp and enqueue a behavior event.

        Args:
            event_type: Behavior event type
            current_time: Playback position in seconds, if any
            duration: Video duration in seconds, if any
            engagement_score: Heuristic engagement contribution
            metadata: Free-form event context
            scene_id: Overrides the collector scene for this event

        Returns:
            The immutable event as queued
        """
        if not self.active:
            raise TelemetryError(f"Collector for session {self.session_id} is closed")

        now = self.clock()
        stamped = dict(metadata or {})
        stamped["session_duration"] = now - self.session_start
        stamped["time_since_last_event"] = now - self.last_event_time
        self.last_event_time = now

        event = BehaviorEvent(
            session_id=self.session_id,
            learner_id=self.learner_id,
            scene_id=scene_id or self.scene_id,
            assignment_id=self.assignment_id,
            event_type=BehaviorEventType(event_type),
            timestamp=now,
            current_time_seconds=current_time,
            video_duration_seconds=duration,
            engagement_score=engagement_score,
            metadata=stamped,
        )

        self._queue.append(event)
        self.metrics["events_tracked"] += 1

        if self.should_flush():
            self._cancel_timer()
            await self.flush()
        else:
            self._ensure_timer()

        return event

    async def track_video_event(
        self,
        event_type: Union[BehaviorEventType, str],
        current_time: float,
        duration: float,
        extra: Optional[Dict[str, Any]] = None
    ) -> BehaviorEvent:
        """Track a player event with its engagement score and completion percentage."""
        event_type = BehaviorEventType(event_type)
        metadata = dict(extra or {})
        metadata["completion_percentage"] = completion_percentage(current_time, duration)

        return await self.track_event(
            event_type,
            current_time=current_time,
            duration=duration,
            engagement_score=video_engagement_score(event_type, current_time, duration),
            metadata=metadata,
        )

    async def track_quiz_event(
        self,
        event_type: Union[BehaviorEventType, str],
        quiz_data: Optional[Dict[str, Any]] = None
    ) -> BehaviorEvent:
        """Track a quiz attempt/pass/fail event."""
        event_type = BehaviorEventType(event_type)
        return await self.track_event(
            event_type,
            engagement_score=quiz_engagement_score(event_type),
            metadata=dict(quiz_data or {}),
        )

    async def track_dropout(
        self,
        current_time: float,
        duration: float,
        reason: str
    ) -> BehaviorEvent:
        """Track a learner leaving the scene before completion."""
        return await self.track_event(
            BehaviorEventType.DROPOUT,
            current_time=current_time,
            duration=duration,
            engagement_score=DROPOUT_SCORE,
            metadata={
                "reason": reason,
                "completion_percentage": completion_percentage(current_time, duration),
            },
        )

    async def flush(self) -> int:
        """
        Send the current queue to the repository as one ordered batch.

        Returns:
            Number of events persisted (0 on failure or empty queue)
        """
        async with self._flush_lock:
            if not self._queue:
                return 0

            batch = list(self._queue)
            self._queue.clear()

            try:
                await self.repository.insert_batch(batch)
            except Exception as e:
                # Failed batch goes back ahead of events that arrived meanwhile
                self._queue[:0] = batch
                self.metrics["failed_flushes"] += 1
                self.metrics["requeued_events"] += len(batch)
                log_with_context(
                    logger, logging.WARNING,
                    f"Telemetry flush failed, {len(batch)} events re-queued: {str(e)}",
                    learner_id=self.learner_id,
                    action="telemetry_flush_failed",
                    session_id=self.session_id,
                    queue_depth=len(self._queue),
                )
                if self.active:
                    self._ensure_timer()
                return 0

            self.metrics["flushes"] += 1
            self.metrics["events_flushed"] += len(batch)
            log_with_context(
                logger, logging.DEBUG,
                f"Flushed {len(batch)} behavior events",
                learner_id=self.learner_id,
                action="telemetry_flush",
                session_id=self.session_id,
            )
            return len(batch)

    async def close(self):
        """Cancel the flush timer, attempt one final flush, and deactivate."""
        if not self.active:
            return

        self._cancel_timer()
        self.active = False
        flushed = await self.flush()

        if self._queue:
            logger.warning(
                f"Collector closed with {len(self._queue)} unflushed events "
                f"(session {self.session_id})"
            )
        else:
            logger.info(f"Collector closed after final flush of {flushed} events")

    def _ensure_timer(self):
        """Arm the interval flush if no timer is pending."""
        if self._timer is None or self._timer.done():
            self._timer = asyncio.create_task(self._flush_after_interval())

    def _cancel_timer(self):
        timer = self._timer
        self._timer = None
        if timer and not timer.done() and timer is not asyncio.current_task():
            timer.cancel()

    async def _flush_after_interval(self):
        await asyncio.sleep(self.flush_interval)
        self._timer = None
        await self.flush()
