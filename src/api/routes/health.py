"""
Liveness and readiness of the engine host.
"""

import time
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from src.api.dependencies import get_registry, get_repository
from src.repository.base import Repository
from src.session.registry import SessionRegistry

router = APIRouter(tags=["health"])

_started_at: Optional[float] = None


def set_start_time(t: float):
    global _started_at
    _started_at = t


class HealthResponse(BaseModel):
    status: str
    repository_connected: bool
    active_sessions: int
    pending_events: int
    uptime_seconds: float


@router.get("/health", response_model=HealthResponse)
async def health_check(
    repository: Repository = Depends(get_repository),
    registry: SessionRegistry = Depends(get_registry),
):
    """Degraded when the repository does not answer; buffered telemetry is reported either way."""
    connected = await repository.ping()
    uptime = round(time.time() - _started_at, 2) if _started_at else 0.0

    return HealthResponse(
        status="healthy" if connected else "degraded",
        repository_connected=connected,
        active_sessions=len(registry),
        pending_events=registry.pending_events(),
        uptime_seconds=uptime,
    )
