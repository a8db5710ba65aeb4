"""
Struggle detection and remediation dispatch for one learner session.
"""

import logging
import time
from dataclasses import dataclass, asdict
from typing import Dict, Any, List, Optional, Callable

from src.remediation.templates import render_templates
from src.repository.base import Repository
from src.repository.models import (
    LogRecord,
    RemediationEventRecord,
    RemediationSuggestion,
    Severity,
    StruggleEventRecord,
    StrugglePattern,
    StruggleType,
    SuggestionStatus,
)
from src.shared.config import settings
from src.shared.exceptions import SuggestionNotFoundError
from src.shared.ids import IdGenerator, uuid4_generator
from src.shared.logging import get_logger, log_with_context

logger = get_logger(__name__)


@dataclass
class StruggleCounters:
    """Per-session signal counters. In-memory only."""
    quiz_failures: int = 0
    pause_count: int = 0
    last_pause_time: Optional[float] = None
    coach_activations: int = 0
    help_requests: int = 0
    skipping_events: int = 0


class StruggleDetector:
    """
    Watches struggle signals and dispatches remediation suggestions.

    Each signal has its own trigger rule:
    - quiz_failure: 2+ failures (high severity from 3), never reset
    - excessive_pauses: 3 pauses each < 30s apart, reset after trigger
    - coach_activation: 2+ activations, never reset
    - video_skipping: any forward skip > 30s (high above 120s)
    - help_requests: 3+ requests, never reset
    """

    def __init__(
        self,
        repository: Repository,
        learner_id: str,
        session_id: str,
        scene_id: Optional[str] = None,
        config: Optional[Dict] = None,
        clock: Callable[[], float] = time.time,
        id_generator: IdGenerator = uuid4_generator
    ):
        self.repository = repository
        self.learner_id = learner_id
        self.session_id = session_id
        self.scene_id = scene_id
        self.config = config or {}
        self.clock = clock
        self.id_generator = id_generator

        thresholds = settings.struggle.model_dump()
        thresholds.update(self.config)
        self.thresholds = thresholds

        self.counters = StruggleCounters()
        self.active_suggestions: List[RemediationSuggestion] = []
        self.patterns: List[StrugglePattern] = []

    async def record_quiz_failure(self, topic: str, question_id: Optional[str] = None) -> List[RemediationSuggestion]:
        """Count a failed quiz attempt."""
        self.counters.quiz_failures += 1
        attempt = self.counters.quiz_failures

        pattern = None
        if attempt >= self.thresholds["quiz_failure_threshold"]:
            severity = (
                Severity.HIGH
                if attempt >= self.thresholds["quiz_failure_high_threshold"]
                else Severity.MEDIUM
            )
            pattern = self._pattern(StruggleType.QUIZ_FAILURE, severity, topic, attempt,
                                    {"question_id": question_id})

        await self._observe(StruggleType.QUIZ_FAILURE, topic, attempt, pattern,
                            {"question_id": question_id})
        return await self.dispatch(pattern) if pattern else []

    async def record_pause(self, topic: str, timestamp: Optional[float] = None) -> List[RemediationSuggestion]:
        """
        Count a pause. Pauses closer than the pause window extend the current
        burst; any other pause starts a new burst at 1.
        """
        now = self.clock() if timestamp is None else timestamp
        last = self.counters.last_pause_time
        gap = None if last is None else now - last

        if gap is not None and gap < self.thresholds["pause_window_seconds"]:
            self.counters.pause_count += 1
        else:
            self.counters.pause_count = 1
        self.counters.last_pause_time = now
        count = self.counters.pause_count

        pattern = None
        if count >= self.thresholds["pause_threshold"]:
            pattern = self._pattern(StruggleType.EXCESSIVE_PAUSES, Severity.MEDIUM, topic, count,
                                    {"seconds_since_last_pause": gap})
            self.counters.pause_count = 0

        await self._observe(StruggleType.EXCESSIVE_PAUSES, topic, count, pattern,
                            {"seconds_since_last_pause": gap})
        return await self.dispatch(pattern) if pattern else []

    async def record_coach_activation(self, topic: str) -> List[RemediationSuggestion]:
        """Count a coaching assistant invocation."""
        self.counters.coach_activations += 1
        count = self.counters.coach_activations

        pattern = None
        if count >= self.thresholds["coach_activation_threshold"]:
            pattern = self._pattern(StruggleType.COACH_ACTIVATION, Severity.MEDIUM, topic, count)

        await self._observe(StruggleType.COACH_ACTIVATION, topic, count, pattern)
        return await self.dispatch(pattern) if pattern else []

    async def record_skip(self, topic: str, skip_from: float, skip_to: float) -> List[RemediationSuggestion]:
        """Evaluate a playback jump; forward skips past the limit trigger immediately."""
        distance = skip_to - skip_from
        details = {"skip_from": skip_from, "skip_to": skip_to, "skip_distance": distance}

        pattern = None
        if distance > self.thresholds["skip_distance_seconds"]:
            self.counters.skipping_events += 1
            severity = (
                Severity.HIGH
                if distance > self.thresholds["skip_high_distance_seconds"]
                else Severity.MEDIUM
            )
            pattern = self._pattern(StruggleType.VIDEO_SKIPPING, severity, topic,
                                    self.counters.skipping_events, details)

        await self._observe(StruggleType.VIDEO_SKIPPING, topic,
                            self.counters.skipping_events, pattern, details)
        return await self.dispatch(pattern) if pattern else []

    async def record_help_request(self, topic: str) -> List[RemediationSuggestion]:
        """Count an explicit help request."""
        self.counters.help_requests += 1
        count = self.counters.help_requests

        pattern = None
        if count >= self.thresholds["help_request_threshold"]:
            pattern = self._pattern(StruggleType.HELP_REQUESTS, Severity.HIGH, topic, count)

        await self._observe(StruggleType.HELP_REQUESTS, topic, count, pattern)
        return await self.dispatch(pattern) if pattern else []

    def generate_remediation(self, pattern: StrugglePattern) -> List[RemediationSuggestion]:
        """Build suggestions for a pattern from its type's templates."""
        suggestions = []
        for template in render_templates(pattern.type, pattern.topic):
            suggestions.append(RemediationSuggestion(
                id=self.id_generator(),
                type=template["type"],
                title=template["title"],
                content=template["content"],
                action_label=template["action_label"],
                metadata={
                    "struggle_type": pattern.type.value,
                    "severity": pattern.severity.value,
                    "topic": pattern.topic,
                    "scene_id": self.scene_id,
                },
            ))
        return suggestions

    async def dispatch(self, pattern: StrugglePattern) -> List[RemediationSuggestion]:
        """Generate, activate, and log suggestions for a detected pattern."""
        self.patterns.append(pattern)
        suggestions = self.generate_remediation(pattern)
        self.active_suggestions.extend(suggestions)

        for suggestion in suggestions:
            await self._log(RemediationEventRecord(
                action="remediation_suggested",
                session_id=self.session_id,
                learner_id=self.learner_id,
                scene_id=self.scene_id,
                suggestion_id=suggestion.id,
                suggestion_type=suggestion.type,
                pattern=pattern,
                created_at=self.clock(),
            ))

        log_with_context(
            logger, logging.INFO,
            f"Struggle detected: {pattern.type.value} on '{pattern.topic}' "
            f"({pattern.severity.value}), {len(suggestions)} suggestions",
            learner_id=self.learner_id,
            action="struggle_detected",
            session_id=self.session_id,
        )
        return suggestions

    async def accept_suggestion(self, suggestion_id: str) -> RemediationSuggestion:
        return await self._resolve(suggestion_id, SuggestionStatus.ACCEPTED, "remediation_accepted")

    async def dismiss_suggestion(self, suggestion_id: str) -> RemediationSuggestion:
        return await self._resolve(suggestion_id, SuggestionStatus.DISMISSED, "remediation_dismissed")

    async def _resolve(self, suggestion_id: str, status: SuggestionStatus, action: str) -> RemediationSuggestion:
        for index, suggestion in enumerate(self.active_suggestions):
            if suggestion.id == suggestion_id:
                break
        else:
            raise SuggestionNotFoundError(f"No active suggestion {suggestion_id}")

        resolved = self.active_suggestions.pop(index).model_copy(update={"status": status})
        await self._log(RemediationEventRecord(
            action=action,
            session_id=self.session_id,
            learner_id=self.learner_id,
            scene_id=self.scene_id,
            suggestion_id=resolved.id,
            suggestion_type=resolved.type,
            created_at=self.clock(),
        ))
        log_with_context(
            logger, logging.INFO,
            f"Suggestion {resolved.id} {status.value}",
            learner_id=self.learner_id,
            action=action,
            session_id=self.session_id,
        )
        return resolved

    def counters_snapshot(self) -> Dict[str, Any]:
        return asdict(self.counters)

    def _pattern(
        self,
        struggle_type: StruggleType,
        severity: Severity,
        topic: str,
        count: int,
        context: Optional[Dict[str, Any]] = None
    ) -> StrugglePattern:
        return StrugglePattern(
            type=struggle_type,
            severity=severity,
            topic=topic,
            count=count,
            context={"scene_id": self.scene_id, **(context or {})},
            detected_at=self.clock(),
        )

    async def _observe(
        self,
        signal: StruggleType,
        topic: str,
        counter_value: int,
        pattern: Optional[StrugglePattern],
        details: Optional[Dict[str, Any]] = None
    ):
        """Write the behavior-tracking record for one signal observation."""
        await self._log(StruggleEventRecord(
            session_id=self.session_id,
            learner_id=self.learner_id,
            scene_id=self.scene_id,
            signal=signal,
            topic=topic,
            counter_value=counter_value,
            triggered=pattern is not None,
            details=details or {},
            created_at=self.clock(),
        ))

    async def _log(self, record: LogRecord):
        # Analytics writes never block detection
        try:
            await self.repository.insert_log(record)
        except Exception as e:
            logger.warning(f"Failed to log {record.log_type} for session {self.session_id}: {str(e)}")
