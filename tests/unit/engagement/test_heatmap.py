"""
Tests for heatmap aggregation and the module dropout rollup.
"""

import pytest

from src.engagement.heatmap import EngagementAggregator, position_bucket


def make_aggregator(repository, clock, **config):
    return EngagementAggregator(repository, "module-1", "scene-1", session_id="s-1",
                                config=config, clock=clock)


def test_position_bucket():
    assert position_bucket(33.4, 100.0) == 33
    assert position_bucket(60.0, 120.0) == 50
    assert position_bucket(130.0, 120.0) == 100
    assert position_bucket(10.0, 0) == 0


@pytest.mark.asyncio
async def test_new_bucket_starts_matching_counter_at_one(repository, clock):
    aggregator = make_aggregator(repository, clock)

    assert await aggregator.update_heatmap(50.0, 100.0, -1.0, "pause") is True

    point = await repository.get_heatmap_point("module-1", "scene-1", 50)
    assert point.engagement_score == -1.0
    assert point.pause_count == 1
    assert point.seek_count == 0
    assert point.dropout_count == 0
    assert point.rewatch_count == 0


@pytest.mark.asyncio
async def test_updates_inside_window_are_dropped(repository, clock):
    aggregator = make_aggregator(repository, clock)

    assert await aggregator.update_heatmap(50.0, 100.0, -1.0, "pause") is True
    clock.advance(4.9)
    assert await aggregator.update_heatmap(50.0, 100.0, 3.0, "pause") is False

    point = await repository.get_heatmap_point("module-1", "scene-1", 50)
    assert point.pause_count == 1
    assert aggregator.throttle.dropped == 1

    clock.advance(1.0)
    assert await aggregator.update_heatmap(50.0, 100.0, 3.0, "rewind") is True

    point = await repository.get_heatmap_point("module-1", "scene-1", 50)
    assert point.engagement_score == 1.0
    assert point.pause_count == 1
    assert point.rewatch_count == 1


@pytest.mark.asyncio
async def test_play_increments_no_counter(repository, clock):
    aggregator = make_aggregator(repository, clock, throttle_ms=0)

    await aggregator.update_heatmap(10.0, 100.0, 1.0, "play")
    await aggregator.update_heatmap(10.0, 100.0, 1.0, "play")

    point = await repository.get_heatmap_point("module-1", "scene-1", 10)
    assert (point.dropout_count, point.pause_count, point.seek_count, point.rewatch_count) == (0, 0, 0, 0)


@pytest.mark.asyncio
async def test_bucket_score_stays_within_input_range(repository, clock):
    aggregator = make_aggregator(repository, clock, throttle_ms=0)
    inputs = [10.0, -5.0, 1.0, -2.0, 10.0, -1.0, 0.0]

    for score in inputs:
        await aggregator.update_heatmap(40.0, 100.0, score, "seek")

    point = await repository.get_heatmap_point("module-1", "scene-1", 40)
    assert min(inputs) <= point.engagement_score <= max(inputs)
    assert point.seek_count == len(inputs)


@pytest.mark.asyncio
async def test_dropout_rollup(repository, clock):
    aggregator = make_aggregator(repository, clock, dropout_points_kept=2)

    first = await aggregator.record_dropout(25.0, 100.0, session_duration=60.0)
    assert first.dropout_rate == 1
    assert first.average_completion_time == 60.0
    assert first.dropout_points == [25.0]

    await aggregator.record_dropout(50.0, 100.0, session_duration=100.0)
    third = await aggregator.record_dropout(75.0, 100.0, session_duration=20.0)

    assert third.dropout_rate == 3
    assert third.average_completion_time == 50.0
    assert third.dropout_points == [50.0, 75.0]
    assert await repository.get_module_analytics("module-1") == third
