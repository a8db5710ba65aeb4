"""
Shared fixtures: in-memory stores, a controllable clock, deterministic ids.
"""

import pytest

from src.repository.memory import InMemoryRepository, InMemoryQuestionBank
from src.repository.models import DifficultyLevel, Question
from src.session.feedback import BufferedFeedbackSink
from src.shared.ids import SequentialIdGenerator


class FakeClock:
    """Manually advanced clock returning seconds."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


def make_question(qid, difficulty, topic, company_id=None, answer="a"):
    return Question(
        id=qid,
        company_id=company_id,
        text=f"Question {qid}",
        options=["a", "b", "c"],
        correct_answer=answer,
        difficulty=DifficultyLevel(difficulty),
        topic=topic,
        explanation=f"Explanation for {qid}",
    )


SAMPLE_QUESTIONS = [
    ("b1", "basic", "phishing"),
    ("b2", "basic", "passwords"),
    ("b3", "basic", "phishing"),
    ("b4", "basic", "mfa"),
    ("i1", "intermediate", "phishing"),
    ("i2", "intermediate", "mfa"),
    ("i3", "intermediate", "passwords"),
    ("a1", "advanced", "mfa"),
    ("a2", "advanced", "data-handling"),
]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def ids():
    return SequentialIdGenerator("id")


@pytest.fixture
def repository():
    return InMemoryRepository()


@pytest.fixture
def sample_questions():
    return [make_question(*row) for row in SAMPLE_QUESTIONS]


@pytest.fixture
def question_bank(sample_questions):
    return InMemoryQuestionBank(sample_questions)


@pytest.fixture
def feedback_sink():
    return BufferedFeedbackSink()


@pytest.fixture
def question_factory():
    return make_question
