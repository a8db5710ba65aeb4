"""
Engagement scoring for behavior events, plus seek/rewind detection
from raw playback positions.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from src.repository.models import BehaviorEventType


# Fixed engagement contributions per event type
VIDEO_EVENT_SCORES = {
    BehaviorEventType.PLAY: 1.0,
    BehaviorEventType.SEEK: -1.0,
    BehaviorEventType.REWIND: -2.0,
    BehaviorEventType.COMPLETE: 10.0,
}

QUIZ_EVENT_SCORES = {
    BehaviorEventType.QUIZ_PASS: 10.0,
    BehaviorEventType.QUIZ_FAIL: -2.0,
    BehaviorEventType.QUIZ_ATTEMPT: 5.0,
}

DROPOUT_SCORE = -5.0

# Pauses inside the opening fraction of a video are not penalized
EARLY_PAUSE_FRACTION = 0.10

# Playback jumps larger than this are reported as seek/rewind
SEEK_DETECTION_SECONDS = 5.0

# Completion fraction that unlocks the next step
COMPLETION_FRACTION = 0.90


def completion_percentage(current_time: float, duration: float) -> float:
    """current_time / duration * 100, or 0 when duration is unknown."""
    if not duration or duration <= 0:
        return 0.0
    return (current_time / duration) * 100


def video_engagement_score(
    event_type: BehaviorEventType,
    current_time: float,
    duration: float
) -> float:
    """Engagement contribution of a single video event."""
    if event_type == BehaviorEventType.PAUSE:
        if duration and duration > 0 and current_time < duration * EARLY_PAUSE_FRACTION:
            return 0.0
        return -1.0
    return VIDEO_EVENT_SCORES.get(event_type, 0.0)


def quiz_engagement_score(event_type: BehaviorEventType) -> float:
    """Engagement contribution of a quiz event."""
    return QUIZ_EVENT_SCORES.get(event_type, 0.0)


@dataclass
class PlaybackEvent:
    """A video event inferred from consecutive playback positions."""
    event_type: BehaviorEventType
    current_time: float
    metadata: Dict[str, Any] = field(default_factory=dict)


class PlaybackObserver:
    """
    Turns periodic playback position updates into seek, rewind, and
    completion events.

    A jump of more than SEEK_DETECTION_SECONDS between two updates is a
    rewind when it goes backwards and a seek when it goes forwards.
    Completion is reported once, the first time COMPLETION_FRACTION of the
    duration is reached.
    """

    def __init__(self, seek_threshold: float = SEEK_DETECTION_SECONDS):
        self.seek_threshold = seek_threshold
        self.last_time = 0.0
        self.completed = False

    def observe(self, current_time: float, duration: float) -> list[PlaybackEvent]:
        events = []
        distance = current_time - self.last_time

        if abs(distance) > self.seek_threshold and self.last_time > 0:
            event_type = BehaviorEventType.REWIND if distance < 0 else BehaviorEventType.SEEK
            events.append(PlaybackEvent(
                event_type=event_type,
                current_time=current_time,
                metadata={
                    "seek_from": self.last_time,
                    "seek_to": current_time,
                    "seek_distance": abs(distance),
                },
            ))

        self.last_time = current_time

        percentage = completion_percentage(current_time, duration)
        if not self.completed and percentage >= COMPLETION_FRACTION * 100:
            self.completed = True
            events.append(PlaybackEvent(
                event_type=BehaviorEventType.COMPLETE,
                current_time=current_time,
                metadata={"completion_percentage": percentage},
            ))

        return events

    def sync(self, current_time: float, completed: bool = False):
        """Move the tracked position without inferring events from the jump."""
        self.last_time = current_time
        self.completed = self.completed or completed

    @staticmethod
    def should_report_dropout(current_time: float, duration: Optional[float]) -> bool:
        """A learner leaving before the completion mark counts as a dropout."""
        if not duration or duration <= 0:
            return False
        return 0 < current_time < duration * COMPLETION_FRACTION
