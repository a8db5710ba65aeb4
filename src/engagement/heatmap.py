"""
Engagement heatmap aggregation per (module, scene, time-position bucket),
plus the module-level dropout rollup.
"""

import logging
import time
from typing import Dict, Optional, Callable, Union

from src.repository.base import Repository
from src.repository.models import (
    BehaviorEventType,
    EngagementHeatmapPoint,
    ModuleAnalytics,
)
from src.shared.config import settings
from src.shared.logging import get_logger, log_with_context
from src.shared.throttle import Throttle

logger = get_logger(__name__)


# Event type -> heatmap counter it increments
COUNTER_FIELDS = {
    BehaviorEventType.DROPOUT: "dropout_count",
    BehaviorEventType.PAUSE: "pause_count",
    BehaviorEventType.SEEK: "seek_count",
    BehaviorEventType.REWIND: "rewatch_count",
}


def position_bucket(time_position: float, duration: float) -> int:
    """Integer percentage bucket in [0, 100]; 0 when duration is unknown."""
    if not duration or duration <= 0:
        return 0
    percent = round(time_position / duration * 100)
    return max(0, min(100, percent))


class EngagementAggregator:
    """
    Maintains the engagement heatmap for one learner session.

    Heatmap updates are throttled: at most one per throttle window, and
    updates inside the window are dropped rather than queued. The dropout
    rollup is not throttled.
    """

    def __init__(
        self,
        repository: Repository,
        module_id: str,
        scene_id: str,
        session_id: Optional[str] = None,
        config: Optional[Dict] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        self.repository = repository
        self.module_id = module_id
        self.scene_id = scene_id
        self.session_id = session_id
        self.config = config or {}
        throttle_ms = self.config.get("throttle_ms", settings.heatmap.throttle_ms)
        self.dropout_points_kept = self.config.get(
            "dropout_points_kept", settings.heatmap.dropout_points_kept
        )
        self.throttle = Throttle(throttle_ms / 1000, clock=clock)

    async def update_heatmap(
        self,
        time_position: float,
        duration: float,
        engagement_score: float,
        event_type: Union[BehaviorEventType, str]
    ) -> bool:
        """
        Fold one observation into its heatmap bucket.

        Returns:
            True if the bucket was written, False if the update was throttled
        """
        if not self.throttle.try_acquire():
            logger.debug(f"Heatmap update dropped by throttle (session {self.session_id})")
            return False

        event_type = BehaviorEventType(event_type)
        bucket = position_bucket(time_position, duration)
        counter = COUNTER_FIELDS.get(event_type)

        existing = await self.repository.get_heatmap_point(self.module_id, self.scene_id, bucket)

        if existing:
            point = existing.model_copy(update={
                "engagement_score": (existing.engagement_score + engagement_score) / 2,
            })
            if counter:
                setattr(point, counter, getattr(existing, counter) + 1)
        else:
            point = EngagementHeatmapPoint(
                module_id=self.module_id,
                scene_id=self.scene_id,
                time_position_percent=bucket,
                engagement_score=engagement_score,
            )
            if counter:
                setattr(point, counter, 1)

        await self.repository.upsert_heatmap_point(point)
        return True

    async def record_dropout(
        self,
        time_position: float,
        duration: float,
        session_duration: float
    ) -> ModuleAnalytics:
        """
        Update the module dropout rollup.

        dropout_rate is a running count, and average_completion_time is
        averaged pairwise with each new session duration.
        """
        point = float(position_bucket(time_position, duration))
        existing = await self.repository.get_module_analytics(self.module_id)

        if existing:
            analytics = ModuleAnalytics(
                module_id=self.module_id,
                average_completion_time=(existing.average_completion_time + session_duration) / 2,
                dropout_rate=existing.dropout_rate + 1,
                dropout_points=(existing.dropout_points + [point])[-self.dropout_points_kept:],
            )
        else:
            analytics = ModuleAnalytics(
                module_id=self.module_id,
                average_completion_time=session_duration,
                dropout_rate=1,
                dropout_points=[point],
            )

        await self.repository.upsert_module_analytics(analytics)

        log_with_context(
            logger, logging.INFO,
            f"Dropout recorded at {point:.0f}% of scene {self.scene_id}",
            action="module_dropout",
            session_id=self.session_id,
            module_id=self.module_id,
            dropout_rate=analytics.dropout_rate,
        )
        return analytics
