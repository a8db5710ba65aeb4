"""
FastAPI dependency injection for engine services.
"""

from fastapi import Request

from src.repository.base import Repository
from src.session.controller import LearnerSession
from src.session.registry import SessionRegistry


def get_repository(request: Request) -> Repository:
    """Get Repository singleton from lifespan state."""
    return request.app.state.repository


def get_registry(request: Request) -> SessionRegistry:
    """Get SessionRegistry singleton from lifespan state."""
    return request.app.state.registry


def get_session(key: str, request: Request) -> LearnerSession:
    """Resolve the live session for the path key (404 if unknown)."""
    return request.app.state.registry.get(key)
