"""
Adaptive quiz session engine: session bootstrap, question selection,
answer evaluation, and completion.
"""

import logging
import time
from dataclasses import dataclass
from typing import Dict, Any, List, Optional, Callable, Tuple

from src.adaptive.transitions import (
    Transition,
    TransitionKind,
    classify_topic,
    evaluate_transition,
    running_average,
)
from src.repository.base import Repository, QuestionBank
from src.repository.models import (
    AdaptiveQuizSession,
    AdaptiveRules,
    Feedback,
    FeedbackSeverity,
    Question,
    QuestionAttemptLog,
    SessionStatus,
)
from src.session.feedback import FeedbackSink, LoggingFeedbackSink
from src.shared.config import settings
from src.shared.exceptions import SessionError, SessionNotInitializedError, SessionStateError
from src.shared.ids import IdGenerator, uuid4_generator
from src.shared.logging import get_logger, log_with_context

logger = get_logger(__name__)


@dataclass
class PresentedQuestion:
    """The question currently in front of the learner."""
    question: Question
    presented_at: float
    adaptive_reason: str


@dataclass
class AnswerOutcome:
    """Result of processing one answer."""
    correct: bool
    time_spent_seconds: float
    transition: Transition
    topic_label: Optional[str]
    session: AdaptiveQuizSession

    @property
    def performance_score(self) -> float:
        return self.session.performance_score


def default_rules(overrides: Optional[Dict[str, Any]] = None) -> AdaptiveRules:
    """Rule set from settings, with per-session overrides."""
    base = {
        name: getattr(settings.adaptive, name)
        for name in AdaptiveRules.model_fields
        if name != "version"
    }
    base.update(overrides or {})
    return AdaptiveRules(**base)


class AdaptiveSessionEngine:
    """Owns the quiz session state machine for one learner."""

    def __init__(
        self,
        repository: Repository,
        question_bank: QuestionBank,
        learner_id: str,
        module_id: str,
        company_id: Optional[str] = None,
        assignment_id: Optional[str] = None,
        feedback: Optional[FeedbackSink] = None,
        rules: Optional[Dict[str, Any]] = None,
        config: Optional[Dict] = None,
        clock: Callable[[], float] = time.time,
        id_generator: IdGenerator = uuid4_generator
    ):
        self.repository = repository
        self.question_bank = question_bank
        self.learner_id = learner_id
        self.module_id = module_id
        self.company_id = company_id
        self.assignment_id = assignment_id
        self.feedback = feedback or LoggingFeedbackSink()
        self.rule_overrides = rules or {}
        self.config = config or {}
        self.candidate_limit = self.config.get("candidate_limit", settings.adaptive.candidate_limit)
        self.fallback_limit = self.config.get("fallback_limit", settings.adaptive.fallback_limit)
        self.struggle_time = self.config.get(
            "struggle_time_seconds", settings.adaptive.struggle_time_seconds
        )
        self.mastery_time = self.config.get(
            "mastery_time_seconds", settings.adaptive.mastery_time_seconds
        )
        self.clock = clock
        self.id_generator = id_generator

        self.session: Optional[AdaptiveQuizSession] = None
        self.current: Optional[PresentedQuestion] = None

    async def initialize_session(self) -> AdaptiveQuizSession:
        """Reuse the active session for (learner, module, assignment) or create one."""
        try:
            existing = await self.repository.find_active_session(
                self.learner_id, self.module_id, self.assignment_id
            )
            if existing:
                session = existing
                action = "quiz_session_resumed"
            else:
                session = AdaptiveQuizSession(
                    id=self.id_generator(),
                    learner_id=self.learner_id,
                    company_id=self.company_id,
                    module_id=self.module_id,
                    assignment_id=self.assignment_id,
                    adaptive_rules=default_rules(self.rule_overrides),
                    started_at=self.clock(),
                )
                await self.repository.insert_session(session)
                action = "quiz_session_created"
        except Exception as e:
            self._report_failure("Could not start the quiz", e)
            raise SessionError(f"Session initialization failed: {str(e)}") from e

        self.session = session
        log_with_context(
            logger, logging.INFO,
            f"Quiz session ready at {session.current_difficulty.value} difficulty",
            learner_id=self.learner_id,
            action=action,
            session_id=session.id,
        )
        return session

    async def select_next_question(self) -> Optional[Question]:
        """
        Choose the next question, or complete the quiz if none remain.

        Returns:
            The presented question, or None once the quiz is complete
        """
        session = self._require_session()
        if session.status == SessionStatus.COMPLETED:
            return None

        try:
            candidates = await self.question_bank.fetch_candidates(
                session.company_id,
                session.current_difficulty,
                list(session.question_history),
                self.candidate_limit,
            )
            fallback = False
            if not candidates:
                candidates = await self.question_bank.fetch_candidates(
                    session.company_id,
                    None,
                    list(session.question_history),
                    self.fallback_limit,
                )
                fallback = True
        except Exception as e:
            self._report_failure("Could not load the next question", e)
            raise SessionError(f"Question fetch failed: {str(e)}") from e

        if not candidates:
            logger.info(f"Question pool exhausted for session {session.id}")
            await self.complete_quiz()
            return None

        question, reason = self._choose(candidates, session)
        if fallback:
            reason = f"fallback_pool:{reason}"

        session.question_history.append(question.id)
        self.current = PresentedQuestion(question, self.clock(), reason)
        return question

    def _choose(
        self,
        candidates: List[Question],
        session: AdaptiveQuizSession
    ) -> Tuple[Question, str]:
        """Struggle topics first, then unmastered topics, then the first candidate."""
        for question in candidates:
            if question.topic in session.struggle_topics:
                return question, "struggle_topic"

        for question in candidates:
            if question.topic not in session.mastered_topics:
                return question, "unmastered_topic"

        return candidates[0], "first_available"

    async def process_answer(self, user_answer: Optional[str], is_correct: bool) -> AnswerOutcome:
        """
        Evaluate an answer to the presented question.

        The new session state is built on a copy and only replaces the
        in-memory session after the attempt log and session row are written.
        """
        session = self._require_session()
        if self.current is None:
            raise SessionStateError("No question has been presented")

        presented = self.current
        question = presented.question
        now = self.clock()
        time_spent = max(0.0, now - presented.presented_at)
        correct = bool(is_correct)

        answered = session.total_questions_answered
        score = running_average(session.performance_score, answered, correct)
        correct_streak = session.correct_streak + 1 if correct else 0
        incorrect_streak = 0 if correct else session.incorrect_streak + 1

        transition = evaluate_transition(
            session.current_difficulty,
            correct_streak,
            incorrect_streak,
            score,
            session.adaptive_rules,
        )
        struggle, mastered, topic_label = classify_topic(
            question.topic,
            correct,
            time_spent,
            session.struggle_topics,
            session.mastered_topics,
            struggle_time=self.struggle_time,
            mastery_time=self.mastery_time,
        )

        updated = session.model_copy(deep=True, update={
            "total_questions_answered": answered + 1,
            "correct_streak": correct_streak,
            "incorrect_streak": incorrect_streak,
            "performance_score": score,
            "current_difficulty": transition.current,
            "struggle_topics": struggle,
            "mastered_topics": mastered,
        })

        attempt = QuestionAttemptLog(
            session_id=session.id,
            question_id=question.id,
            difficulty_presented=question.difficulty,
            topic=question.topic,
            correct=correct,
            user_answer=None if user_answer is None else str(user_answer),
            time_spent_seconds=time_spent,
            adaptive_reason=presented.adaptive_reason,
            created_at=now,
        )

        try:
            await self.repository.insert_log(attempt)
            await self.repository.update_session(updated)
        except Exception as e:
            self._report_failure("Could not save your answer", e)
            raise SessionError(f"Answer processing failed: {str(e)}") from e

        self.session = updated
        self.current = None

        if transition.changed:
            self._announce_transition(transition, updated)

        return AnswerOutcome(
            correct=correct,
            time_spent_seconds=time_spent,
            transition=transition,
            topic_label=topic_label,
            session=updated,
        )

    async def complete_quiz(self) -> AdaptiveQuizSession:
        """Mark the session completed with elapsed time and final score."""
        session = self._require_session()
        if session.status == SessionStatus.COMPLETED:
            return session

        now = self.clock()
        metadata = dict(session.metadata)
        metadata["total_time_seconds"] = now - session.started_at
        metadata["final_score"] = session.performance_score

        updated = session.model_copy(deep=True, update={
            "status": SessionStatus.COMPLETED,
            "completed_at": now,
            "metadata": metadata,
        })

        try:
            await self.repository.update_session(updated)
        except Exception as e:
            self._report_failure("Could not complete the quiz", e)
            raise SessionError(f"Quiz completion failed: {str(e)}") from e

        self.session = updated
        self.current = None

        self.feedback.notify(Feedback(
            title="Quiz Complete!",
            description=(
                f"You answered {updated.total_questions_answered} questions "
                f"with a score of {updated.performance_score:.0%}."
            ),
            severity=FeedbackSeverity.SUCCESS,
        ))
        log_with_context(
            logger, logging.INFO,
            f"Quiz completed with score {updated.performance_score:.2f}",
            learner_id=self.learner_id,
            action="quiz_completed",
            session_id=updated.id,
            total_time_seconds=metadata["total_time_seconds"],
        )
        return updated

    def _announce_transition(self, transition: Transition, session: AdaptiveQuizSession):
        level = transition.current.value
        if transition.kind == TransitionKind.ADVANCE:
            feedback = Feedback(
                title="Level Up!",
                description=f"Great work! Moving on to {level} questions.",
                severity=FeedbackSeverity.SUCCESS,
            )
        else:
            feedback = Feedback(
                title="Adjusting Difficulty",
                description=f"Let's build confidence with some {level} questions.",
                severity=FeedbackSeverity.INFO,
            )
        self.feedback.notify(feedback)

        log_with_context(
            logger, logging.INFO,
            f"Difficulty {transition.kind.value}: {transition.previous.value} -> {level}",
            learner_id=self.learner_id,
            action="difficulty_transition",
            session_id=session.id,
        )

    def _report_failure(self, title: str, error: Exception):
        logger.error(f"{title}: {str(error)}")
        self.feedback.notify(Feedback(
            title=title,
            description="Something went wrong. Please try again.",
            severity=FeedbackSeverity.ERROR,
        ))

    def _require_session(self) -> AdaptiveQuizSession:
        if self.session is None:
            raise SessionNotInitializedError("Call initialize_session() first")
        return self.session
