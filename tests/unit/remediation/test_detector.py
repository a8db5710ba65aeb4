"""
Tests for struggle detection and the suggestion lifecycle.
"""

import pytest
from unittest.mock import AsyncMock

from src.remediation.detector import StruggleDetector
from src.repository.models import Severity, StruggleType, SuggestionStatus, SuggestionType
from src.shared.exceptions import RepositoryError, SuggestionNotFoundError


def make_detector(repository, clock, ids):
    return StruggleDetector(repository, "learner-1", "session-1", scene_id="scene-1",
                            clock=clock, id_generator=ids)


@pytest.mark.asyncio
async def test_three_close_pauses_trigger_once_and_reset(repository, clock, ids):
    detector = make_detector(repository, clock, ids)

    assert await detector.record_pause("encryption", timestamp=0.0) == []
    assert await detector.record_pause("encryption", timestamp=10.0) == []
    suggestions = await detector.record_pause("encryption", timestamp=20.0)

    assert [s.type for s in suggestions] == [SuggestionType.EXPLANATION]
    assert "encryption" in suggestions[0].title
    assert detector.counters.pause_count == 0
    assert detector.patterns[-1].type == StruggleType.EXCESSIVE_PAUSES
    assert detector.patterns[-1].severity == Severity.MEDIUM

    # A fourth pause right after the trigger starts a fresh count
    assert await detector.record_pause("encryption", timestamp=25.0) == []
    assert detector.counters.pause_count == 1
    assert len(detector.active_suggestions) == 1


@pytest.mark.asyncio
async def test_spread_out_pauses_never_trigger(repository, clock, ids):
    detector = make_detector(repository, clock, ids)

    for timestamp in (0.0, 30.0, 60.0, 90.0):
        assert await detector.record_pause("encryption", timestamp=timestamp) == []
        assert detector.counters.pause_count == 1


@pytest.mark.asyncio
async def test_long_forward_skip_triggers_high_severity(repository, clock, ids):
    detector = make_detector(repository, clock, ids)

    suggestions = await detector.record_skip("phishing", 10.0, 160.0)

    assert [s.type for s in suggestions] == [SuggestionType.REMINDER]
    assert detector.patterns[-1].severity == Severity.HIGH
    assert detector.patterns[-1].context["skip_distance"] == 150.0


@pytest.mark.asyncio
async def test_skip_thresholds(repository, clock, ids):
    detector = make_detector(repository, clock, ids)

    assert await detector.record_skip("phishing", 10.0, 30.0) == []
    assert await detector.record_skip("phishing", 100.0, 10.0) == []

    await detector.record_skip("phishing", 10.0, 70.0)
    assert detector.patterns[-1].severity == Severity.MEDIUM
    assert detector.counters.skipping_events == 1


@pytest.mark.asyncio
async def test_quiz_failures_escalate_without_reset(repository, clock, ids):
    detector = make_detector(repository, clock, ids)

    assert await detector.record_quiz_failure("mfa") == []

    second = await detector.record_quiz_failure("mfa")
    assert [s.type for s in second] == [SuggestionType.EXPLANATION, SuggestionType.MICROLEARNING]
    assert detector.patterns[-1].severity == Severity.MEDIUM

    third = await detector.record_quiz_failure("mfa")
    assert len(third) == 2
    assert detector.patterns[-1].severity == Severity.HIGH
    assert detector.counters.quiz_failures == 3


@pytest.mark.asyncio
async def test_coach_and_help_thresholds(repository, clock, ids):
    detector = make_detector(repository, clock, ids)

    assert await detector.record_coach_activation("mfa") == []
    coach = await detector.record_coach_activation("mfa")
    assert [s.type for s in coach] == [SuggestionType.EXAMPLE]

    assert await detector.record_help_request("mfa") == []
    assert await detector.record_help_request("mfa") == []
    help_suggestions = await detector.record_help_request("mfa")
    assert [s.type for s in help_suggestions] == [SuggestionType.PEER_SUPPORT]
    assert detector.patterns[-1].severity == Severity.HIGH


@pytest.mark.asyncio
async def test_every_observation_is_logged(repository, clock, ids):
    detector = make_detector(repository, clock, ids)

    await detector.record_pause("mfa", timestamp=0.0)
    await detector.record_skip("mfa", 0.0, 10.0)
    await detector.record_quiz_failure("mfa")
    await detector.record_quiz_failure("mfa")

    tracking = await repository.select("behavior_tracking", {"session_id": "session-1"})
    assert [row["signal"] for row in tracking] == [
        "excessive_pauses", "video_skipping", "quiz_failure", "quiz_failure"
    ]
    assert [row["triggered"] for row in tracking] == [False, False, False, True]

    suggested = await repository.select("remediation_events", {"action": "remediation_suggested"})
    assert len(suggested) == 2
    assert suggested[0]["pattern"]["type"] == "quiz_failure"
    assert suggested[0]["scene_id"] == "scene-1"


@pytest.mark.asyncio
async def test_accept_and_dismiss_remove_suggestions(repository, clock, ids):
    detector = make_detector(repository, clock, ids)
    await detector.record_quiz_failure("mfa")
    explanation, microlearning = await detector.record_quiz_failure("mfa")

    accepted = await detector.accept_suggestion(explanation.id)
    dismissed = await detector.dismiss_suggestion(microlearning.id)

    assert accepted.status == SuggestionStatus.ACCEPTED
    assert dismissed.status == SuggestionStatus.DISMISSED
    assert detector.active_suggestions == []

    actions = [row["action"] for row in await repository.select("remediation_events")]
    assert actions == [
        "remediation_suggested", "remediation_suggested",
        "remediation_accepted", "remediation_dismissed",
    ]

    with pytest.raises(SuggestionNotFoundError):
        await detector.accept_suggestion(explanation.id)


@pytest.mark.asyncio
async def test_log_failures_do_not_block_detection(repository, clock, ids):
    repository.insert_log = AsyncMock(side_effect=RepositoryError("db down"))
    detector = make_detector(repository, clock, ids)

    await detector.record_help_request("mfa")
    await detector.record_help_request("mfa")
    suggestions = await detector.record_help_request("mfa")

    assert len(suggestions) == 1
    assert detector.active_suggestions == suggestions
