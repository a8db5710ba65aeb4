"""
Tests for the learner session controller and its cross-component mirroring.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from src.repository.models import BehaviorEventType, SuggestionType
from src.session.controller import LearnerSession
from src.shared.exceptions import RepositoryError, SessionStateError, TelemetryError

CONFIG = {
    "telemetry": {"flush_interval_ms": 60000},
    "heatmap": {"throttle_ms": 0},
}


def make_session(repository, question_bank, clock, ids, config=None):
    return LearnerSession(
        repository,
        question_bank,
        "learner-1",
        "module-1",
        scene_id="scene-1",
        config=config or CONFIG,
        clock=clock,
        id_generator=ids,
    )


@pytest.mark.asyncio
async def test_answers_are_graded_and_mirrored(repository, question_bank, clock, ids):
    session = make_session(repository, question_bank, clock, ids)
    await session.initialize_session()

    await session.get_next_question()
    wrong = await session.process_answer("b")
    await session.get_next_question()
    right = await session.process_answer("  A ")

    assert wrong.correct is False
    assert right.correct is True
    assert [e.event_type for e in session.collector.pending] == [
        BehaviorEventType.QUIZ_ATTEMPT, BehaviorEventType.QUIZ_FAIL,
        BehaviorEventType.QUIZ_ATTEMPT, BehaviorEventType.QUIZ_PASS,
    ]
    assert session.collector.pending[1].metadata["question_id"] == "b1"
    assert session.detector.counters.quiz_failures == 1

    await session.close()
    assert len(await repository.select("behavior_events")) == 4


@pytest.mark.asyncio
async def test_explicit_grade_overrides_answer_check(repository, question_bank, clock, ids):
    session = make_session(repository, question_bank, clock, ids)
    await session.initialize_session()
    await session.get_next_question()

    outcome = await session.process_answer("anything", is_correct=True)

    assert outcome.correct is True
    await session.close()


@pytest.mark.asyncio
async def test_repeated_quiz_failures_surface_suggestions(repository, question_bank, clock, ids):
    session = make_session(repository, question_bank, clock, ids)
    await session.initialize_session()

    for _ in range(2):
        await session.get_next_question()
        await session.process_answer("wrong")

    types = [s.type for s in session.active_suggestions]
    assert types == [SuggestionType.EXPLANATION, SuggestionType.MICROLEARNING]
    assert session.active_suggestions[0].metadata["topic"] == "passwords"
    await session.close()


@pytest.mark.asyncio
async def test_pauses_feed_heatmap_and_pause_signal(repository, question_bank, clock, ids):
    session = make_session(repository, question_bank, clock, ids)

    for _ in range(3):
        clock.advance(5)
        await session.track_video_event("pause", 50.0, 100.0, topic="encryption")

    point = await repository.get_heatmap_point("module-1", "scene-1", 50)
    assert point.pause_count == 3
    assert [s.type for s in session.active_suggestions] == [SuggestionType.EXPLANATION]
    assert "encryption" in session.active_suggestions[0].content
    await session.close()


@pytest.mark.asyncio
async def test_observed_seek_feeds_skip_signal(repository, question_bank, clock, ids):
    session = make_session(repository, question_bank, clock, ids)

    assert await session.observe_playback(10.0, 300.0) == []
    events = await session.observe_playback(100.0, 300.0)

    assert [e.event_type for e in events] == [BehaviorEventType.SEEK]
    assert events[0].metadata["seek_from"] == 10.0
    assert [s.type for s in session.active_suggestions] == [SuggestionType.REMINDER]
    assert session.active_suggestions[0].metadata["topic"] == "this lesson"

    point = await repository.get_heatmap_point("module-1", "scene-1", 33)
    assert point.seek_count == 1
    await session.close()


@pytest.mark.asyncio
async def test_dropout_updates_heatmap_and_rollup(repository, question_bank, clock, ids):
    session = make_session(repository, question_bank, clock, ids)
    clock.advance(60)

    event = await session.track_dropout(30.0, 120.0, "tab_closed")

    assert event.event_type == BehaviorEventType.DROPOUT
    point = await repository.get_heatmap_point("module-1", "scene-1", 25)
    assert point.dropout_count == 1
    analytics = await repository.get_module_analytics("module-1")
    assert analytics.dropout_rate == 1
    assert analytics.average_completion_time == 60.0
    await session.close()


@pytest.mark.asyncio
async def test_leave_scene_only_reports_mid_video_exits(repository, question_bank, clock, ids):
    session = make_session(repository, question_bank, clock, ids)

    assert await session.leave_scene(95.0, 100.0) is None
    assert await session.leave_scene(0.0, 100.0) is None
    assert await session.leave_scene(50.0, 100.0) is not None
    await session.close()


@pytest.mark.asyncio
async def test_concurrent_operations_are_serialized(repository, question_bank, clock, ids):
    session = make_session(repository, question_bank, clock, ids)

    await asyncio.gather(*[
        session.track_event("play", current_time=float(i)) for i in range(5)
    ])

    assert [e.current_time_seconds for e in session.collector.pending] == [0.0, 1.0, 2.0, 3.0, 4.0]
    await session.close()


@pytest.mark.asyncio
async def test_close_flushes_once_and_rejects_new_events(repository, question_bank, clock, ids):
    session = make_session(repository, question_bank, clock, ids)
    await session.track_event("play")

    await session.close()
    await session.close()

    assert session.closed is True
    assert len(await repository.select("behavior_events")) == 1
    with pytest.raises(TelemetryError):
        await session.track_event("play")


@pytest.mark.asyncio
async def test_reported_seek_is_not_detected_again_from_positions(repository, question_bank, clock, ids):
    session = make_session(repository, question_bank, clock, ids)

    await session.observe_playback(10.0, 300.0)
    await session.track_video_event("seek", 160.0, 300.0, {"seek_from": 10.0, "seek_to": 160.0})
    events = await session.observe_playback(161.0, 300.0)

    assert events == []
    assert [s.type for s in session.active_suggestions] == [SuggestionType.REMINDER]
    assert session.detector.counters.skipping_events == 1
    await session.close()


@pytest.mark.asyncio
async def test_seek_without_origin_starts_from_last_position(repository, question_bank, clock, ids):
    session = make_session(repository, question_bank, clock, ids)

    await session.observe_playback(20.0, 300.0)
    await session.track_video_event("seek", 100.0, 300.0)

    assert session.detector.counters.skipping_events == 1
    skips = await repository.select("behavior_tracking", {"signal": "video_skipping"})
    assert skips[0]["details"]["skip_from"] == 20.0
    assert skips[0]["details"]["skip_distance"] == 80.0
    await session.close()


@pytest.mark.asyncio
async def test_answer_without_question_is_a_state_error(repository, question_bank, clock, ids):
    session = make_session(repository, question_bank, clock, ids)
    await session.initialize_session()

    with pytest.raises(SessionStateError):
        await session.process_answer("a")
    await session.close()


@pytest.mark.asyncio
async def test_completion_saves_progress_and_stays_completed(repository, question_bank, clock, ids):
    session = make_session(repository, question_bank, clock, ids)

    await session.track_video_event("complete", 270.0, 300.0)
    clock.advance(30)
    await session.track_dropout(100.0, 300.0)

    progress = await repository.get_video_progress("learner-1", "scene-1", None)
    assert progress.current_time_seconds == 100.0
    assert progress.completion_percentage == pytest.approx(33.33)
    assert progress.is_completed is True
    assert progress.completed_at == 1000.0
    assert await session.observe_playback(272.0, 300.0) == []
    assert session.snapshot()["video_progress"]["is_completed"] is True
    await session.close()


@pytest.mark.asyncio
async def test_new_session_resumes_saved_position(repository, question_bank, clock, ids):
    first = make_session(repository, question_bank, clock, ids)
    await first.initialize_session()
    await first.track_dropout(150.0, 300.0)
    await first.close()

    second = make_session(repository, question_bank, clock, ids)
    await second.initialize_session()

    assert second.progress.current_time_seconds == 150.0
    assert second.progress.is_completed is False
    assert await second.observe_playback(152.0, 300.0) == []
    await second.close()


@pytest.mark.asyncio
async def test_progress_waits_for_duration_and_tolerates_store_failure(repository, question_bank, clock, ids):
    session = make_session(repository, question_bank, clock, ids)

    assert await session.save_progress(10.0, 0.0) is None

    repository.upsert_video_progress = AsyncMock(side_effect=RepositoryError("db down"))
    event = await session.track_dropout(30.0, 120.0)

    assert event.event_type == BehaviorEventType.DROPOUT
    assert session.progress is None
    await session.close()
