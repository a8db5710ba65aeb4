"""
Hysteresis rules for quiz difficulty. Single-step transitions only.
"""

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple

from src.repository.models import AdaptiveRules, DifficultyLevel, DIFFICULTY_ORDER


class TransitionKind(str, Enum):
    ADVANCE = "advance"
    REGRESS = "regress"
    HOLD = "hold"


@dataclass
class Transition:
    """Outcome of evaluating the difficulty rules after one answer."""
    kind: TransitionKind
    previous: DifficultyLevel
    current: DifficultyLevel

    @property
    def changed(self) -> bool:
        return self.previous != self.current


def step(level: DifficultyLevel, delta: int) -> DifficultyLevel:
    """Move one tier up or down, clamped to [basic, advanced]."""
    index = DIFFICULTY_ORDER.index(level) + delta
    index = max(0, min(len(DIFFICULTY_ORDER) - 1, index))
    return DIFFICULTY_ORDER[index]


def running_average(old_score: float, old_count: int, correct: bool) -> float:
    """Online mean of correctness after one more answer."""
    new_count = old_count + 1
    return (old_score * old_count + (1.0 if correct else 0.0)) / new_count


def evaluate_transition(
    level: DifficultyLevel,
    correct_streak: int,
    incorrect_streak: int,
    performance_score: float,
    rules: AdaptiveRules
) -> Transition:
    """
    Apply the advance rule first, then the regress rule.

    Advance: correct_streak >= correct_streak_to_advance and
    score >= mastery_threshold.
    Regress: incorrect_streak >= incorrect_streak_to_regress or
    score < struggling_threshold, and only when advance did not hold.
    """
    if (
        correct_streak >= rules.correct_streak_to_advance
        and performance_score >= rules.mastery_threshold
    ):
        return Transition(TransitionKind.ADVANCE, level, step(level, +1))

    if (
        incorrect_streak >= rules.incorrect_streak_to_regress
        or performance_score < rules.struggling_threshold
    ):
        return Transition(TransitionKind.REGRESS, level, step(level, -1))

    return Transition(TransitionKind.HOLD, level, level)


def classify_topic(
    topic: str,
    correct: bool,
    time_spent: float,
    struggle_topics: List[str],
    mastered_topics: List[str],
    struggle_time: float = 30.0,
    mastery_time: float = 15.0
) -> Tuple[List[str], List[str], Optional[str]]:
    """
    Timing heuristic for topic sets. Returns new (struggle, mastered) lists
    and the label applied, if any. A topic never ends up in both lists.
    """
    struggle = list(struggle_topics)
    mastered = list(mastered_topics)

    if not correct and time_spent > struggle_time:
        if topic not in struggle:
            struggle.append(topic)
        if topic in mastered:
            mastered.remove(topic)
        return struggle, mastered, "struggle"

    if correct and time_spent < mastery_time:
        if topic not in mastered:
            mastered.append(topic)
        if topic in struggle:
            struggle.remove(topic)
        return struggle, mastered, "mastered"

    return struggle, mastered, None
