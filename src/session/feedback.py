"""
UI feedback sinks. The engine reports difficulty changes, completions,
and user-visible errors here; it never renders anything itself.
"""

import logging
from abc import ABC, abstractmethod
from typing import List

from src.repository.models import Feedback, FeedbackSeverity
from src.shared.logging import get_logger

logger = get_logger(__name__)


_LOG_LEVELS = {
    FeedbackSeverity.INFO: logging.INFO,
    FeedbackSeverity.SUCCESS: logging.INFO,
    FeedbackSeverity.WARNING: logging.WARNING,
    FeedbackSeverity.ERROR: logging.ERROR,
}


class FeedbackSink(ABC):
    """Receives user-facing notifications."""

    @abstractmethod
    def notify(self, feedback: Feedback) -> None:
        pass


class LoggingFeedbackSink(FeedbackSink):
    """Writes notifications to the structured log."""

    def notify(self, feedback: Feedback) -> None:
        logger.log(
            _LOG_LEVELS[feedback.severity],
            f"{feedback.title}: {feedback.description}",
            extra={"action": "feedback", "severity": feedback.severity.value},
        )


class BufferedFeedbackSink(FeedbackSink):
    """Collects notifications until the host drains them."""

    def __init__(self):
        self.items: List[Feedback] = []

    def notify(self, feedback: Feedback) -> None:
        self.items.append(feedback)

    def drain(self) -> List[Feedback]:
        items, self.items = self.items, []
        return items
