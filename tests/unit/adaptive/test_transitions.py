"""
Tests for difficulty hysteresis and topic classification.
"""

import pytest

from src.adaptive.transitions import (
    TransitionKind,
    classify_topic,
    evaluate_transition,
    running_average,
    step,
)
from src.repository.models import AdaptiveRules, DifficultyLevel

BASIC = DifficultyLevel.BASIC
INTERMEDIATE = DifficultyLevel.INTERMEDIATE
ADVANCED = DifficultyLevel.ADVANCED


@pytest.fixture
def rules():
    return AdaptiveRules()


def test_step_is_clamped():
    assert step(BASIC, -1) == BASIC
    assert step(BASIC, +1) == INTERMEDIATE
    assert step(ADVANCED, +1) == ADVANCED


def test_advance_requires_streak_and_mastery(rules):
    assert evaluate_transition(BASIC, 3, 0, 0.9, rules).current == INTERMEDIATE
    assert evaluate_transition(BASIC, 3, 0, 0.8, rules).kind == TransitionKind.HOLD
    assert evaluate_transition(BASIC, 2, 0, 1.0, rules).kind == TransitionKind.HOLD


def test_advance_caps_at_advanced(rules):
    transition = evaluate_transition(ADVANCED, 5, 0, 1.0, rules)
    assert transition.kind == TransitionKind.ADVANCE
    assert transition.current == ADVANCED
    assert transition.changed is False


def test_regress_on_streak_or_low_score(rules):
    assert evaluate_transition(ADVANCED, 0, 2, 0.7, rules).current == INTERMEDIATE
    assert evaluate_transition(INTERMEDIATE, 1, 0, 0.5, rules).current == BASIC


def test_regress_floors_at_basic(rules):
    transition = evaluate_transition(BASIC, 0, 10, 0.0, rules)
    assert transition.kind == TransitionKind.REGRESS
    assert transition.current == BASIC


def test_advance_is_evaluated_before_regress():
    lenient = AdaptiveRules(mastery_threshold=0.5, struggling_threshold=0.6)
    transition = evaluate_transition(BASIC, 3, 0, 0.55, lenient)
    assert transition.kind == TransitionKind.ADVANCE


def test_running_average():
    score, count = 0.0, 0
    answers = [True, False, True, True, False]
    for correct in answers:
        score = running_average(score, count, correct)
        count += 1
    assert score == pytest.approx(3 / 5)


def test_slow_wrong_answer_marks_struggle():
    struggle, mastered, label = classify_topic("mfa", False, 45.0, [], ["mfa"])
    assert struggle == ["mfa"]
    assert mastered == []
    assert label == "struggle"


def test_fast_correct_answer_marks_mastery():
    struggle, mastered, label = classify_topic("mfa", True, 5.0, ["mfa"], [])
    assert struggle == []
    assert mastered == ["mfa"]
    assert label == "mastered"


def test_middle_timing_leaves_sets_alone():
    struggle, mastered, label = classify_topic("mfa", True, 20.0, ["x"], ["y"])
    assert (struggle, mastered, label) == (["x"], ["y"], None)
