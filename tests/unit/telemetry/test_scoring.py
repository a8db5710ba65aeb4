"""
Tests for engagement scoring and playback observation.
"""

from src.repository.models import BehaviorEventType
from src.telemetry.scoring import (
    PlaybackObserver,
    completion_percentage,
    quiz_engagement_score,
    video_engagement_score,
)


def test_completion_percentage_guards_zero_duration():
    assert completion_percentage(30.0, 120.0) == 25.0
    assert completion_percentage(30.0, 0) == 0.0
    assert completion_percentage(30.0, None) == 0.0


def test_pause_score_depends_on_position():
    assert video_engagement_score(BehaviorEventType.PAUSE, 9.0, 100.0) == 0.0
    assert video_engagement_score(BehaviorEventType.PAUSE, 10.0, 100.0) == -1.0
    assert video_engagement_score(BehaviorEventType.PAUSE, 5.0, 0.0) == -1.0


def test_fixed_scores():
    assert video_engagement_score(BehaviorEventType.PLAY, 0.0, 100.0) == 1.0
    assert video_engagement_score(BehaviorEventType.SEEK, 0.0, 100.0) == -1.0
    assert quiz_engagement_score(BehaviorEventType.QUIZ_ATTEMPT) == 5.0
    assert quiz_engagement_score(BehaviorEventType.PLAY) == 0.0


def test_observer_reports_seek_and_rewind():
    observer = PlaybackObserver()

    assert observer.observe(10.0, 300.0) == []
    assert observer.observe(13.0, 300.0) == []

    seek = observer.observe(60.0, 300.0)
    assert [e.event_type for e in seek] == [BehaviorEventType.SEEK]
    assert seek[0].metadata == {"seek_from": 13.0, "seek_to": 60.0, "seek_distance": 47.0}

    rewind = observer.observe(20.0, 300.0)
    assert [e.event_type for e in rewind] == [BehaviorEventType.REWIND]
    assert rewind[0].metadata["seek_distance"] == 40.0


def test_first_jump_from_start_is_not_a_seek():
    observer = PlaybackObserver()
    assert observer.observe(100.0, 300.0) == []


def test_completion_reported_once():
    observer = PlaybackObserver()
    observer.observe(85.0, 100.0)

    first = observer.observe(90.0, 100.0)
    again = observer.observe(92.0, 100.0)

    assert [e.event_type for e in first] == [BehaviorEventType.COMPLETE]
    assert again == []


def test_should_report_dropout():
    assert PlaybackObserver.should_report_dropout(30.0, 100.0) is True
    assert PlaybackObserver.should_report_dropout(0.0, 100.0) is False
    assert PlaybackObserver.should_report_dropout(95.0, 100.0) is False
    assert PlaybackObserver.should_report_dropout(30.0, None) is False
