"""
Assessment engine FastAPI application.
"""

import asyncio
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.api.routes import health, sessions
from src.api.middleware.rate_limit import RateLimitMiddleware
from src.repository.base import Repository, QuestionBank
from src.repository.memory import load_questions
from src.repository.sqlite import SQLiteRepository, SQLiteQuestionBank
from src.session.registry import SessionRegistry
from src.shared.config import settings
from src.shared.exceptions import (
    SessionError,
    SessionNotFoundError,
    SessionStateError,
    SuggestionNotFoundError,
    TelemetryError,
)
from src.shared.logging import get_logger

logger = get_logger(__name__)


def _build_stores():
    """SQLite repository and question bank at the configured database path."""
    repository = SQLiteRepository(settings.database_path)
    question_bank = SQLiteQuestionBank(settings.database_path)
    if settings.question_bank_path and settings.question_bank_path.exists():
        question_bank.add_questions(load_questions(settings.question_bank_path))
    return repository, question_bank


def create_app(
    repository: Optional[Repository] = None,
    question_bank: Optional[QuestionBank] = None
) -> FastAPI:
    """Create and configure FastAPI application. Stores default to SQLite."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan: startup and shutdown."""
        logger.info("Starting assessment engine API")

        repo, bank = repository, question_bank
        if repo is None or bank is None:
            default_repo, default_bank = _build_stores()
            repo = repo or default_repo
            bank = bank or default_bank

        app.state.repository = repo
        app.state.question_bank = bank
        registry = SessionRegistry(repo, bank)
        app.state.registry = registry

        # Close sessions that outlive the idle timeout
        app.state.eviction_task = asyncio.create_task(registry.run_eviction())

        health.set_start_time(time.time())

        logger.info("Assessment engine API ready")
        yield

        logger.info("Shutting down assessment engine API")
        registry.stop()
        eviction_task = app.state.eviction_task
        if not eviction_task.done():
            eviction_task.cancel()
            try:
                await eviction_task
            except asyncio.CancelledError:
                pass
        await registry.close_all()
        logger.info("Assessment engine API stopped")

    app = FastAPI(
        title="Adaptive Assessment Engine",
        description="Adaptive quizzing, engagement telemetry, and struggle remediation",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.api.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Rate limiting (after CORS so CORS headers applied first)
    app.add_middleware(RateLimitMiddleware)

    @app.exception_handler(SessionNotFoundError)
    @app.exception_handler(SuggestionNotFoundError)
    async def not_found_handler(request: Request, exc: Exception):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(SessionStateError)
    @app.exception_handler(TelemetryError)
    async def conflict_handler(request: Request, exc: Exception):
        return JSONResponse(status_code=409, content={"detail": str(exc)})

    @app.exception_handler(SessionError)
    async def session_error_handler(request: Request, exc: SessionError):
        return JSONResponse(status_code=503, content={"detail": str(exc)})

    app.include_router(health.router)
    app.include_router(sessions.router)

    @app.get("/")
    async def root():
        return {"service": "assessment-engine", "status": "running"}

    return app


def main():
    """CLI entry point for uvicorn."""
    import uvicorn

    uvicorn.run(
        "src.api.app:create_app",
        factory=True,
        host=settings.api.host,
        port=settings.api.port,
        reload=False,
    )


if __name__ == "__main__":
    main()
