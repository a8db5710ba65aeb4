"""
CLI entry point for a scripted learner run against the SQLite stores.
"""

import asyncio
import argparse
import random
from pathlib import Path

from src.repository.memory import load_questions
from src.repository.sqlite import SQLiteRepository, SQLiteQuestionBank
from src.session.registry import SessionRegistry
from src.shared.config import settings
from src.shared.logging import setup_logging


async def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Simulate a learner session")
    parser.add_argument(
        "--questions",
        type=Path,
        default=settings.question_bank_path or Path("config/questions.yaml"),
        help="Question bank YAML file"
    )
    parser.add_argument(
        "--db",
        type=Path,
        default=Path(settings.database_path),
        help="SQLite database path"
    )
    parser.add_argument("--learner", default="learner-1", help="Learner id")
    parser.add_argument("--module", default="module-1", help="Module id")
    parser.add_argument("--company", default=None, help="Company id")
    parser.add_argument(
        "--accuracy",
        type=float,
        default=0.7,
        help="Probability the simulated learner answers correctly"
    )
    parser.add_argument("--seed", type=int, default=None, help="Random seed")

    args = parser.parse_args()

    setup_logging()
    rng = random.Random(args.seed)

    repository = SQLiteRepository(args.db)
    question_bank = SQLiteQuestionBank(args.db)
    if args.questions.exists():
        question_bank.add_questions(load_questions(args.questions))

    registry = SessionRegistry(repository, question_bank)
    session = await registry.get_or_create(args.learner, args.module, company_id=args.company)

    # Watch the lesson video with a couple of pauses and one skip ahead
    duration = 300.0
    await session.track_video_event("play", 0.0, duration)
    for position in (40.0, 45.0, 50.0):
        await session.track_video_event("pause", position, duration)
    await session.observe_playback(60.0, duration)
    await session.observe_playback(200.0, duration)
    await session.observe_playback(280.0, duration)

    answered = 0
    while True:
        question = await session.get_next_question()
        if question is None:
            break
        correct = rng.random() < args.accuracy
        answer = question.correct_answer if correct else "not sure"
        await session.process_answer(answer)
        answered += 1

    quiz = session.quiz_session
    suggestions = session.active_suggestions
    await registry.close_all()

    print("\n" + "=" * 50)
    print("Learner Simulation Summary")
    print("=" * 50)
    print(f"Questions answered: {answered}")
    print(f"Final difficulty: {quiz.current_difficulty.value}")
    print(f"Performance score: {quiz.performance_score:.2f}")
    print(f"Struggle topics: {', '.join(quiz.struggle_topics) or '-'}")
    print(f"Mastered topics: {', '.join(quiz.mastered_topics) or '-'}")
    print(f"Active suggestions: {len(suggestions)}")
    for suggestion in suggestions:
        print(f"  [{suggestion.type.value}] {suggestion.title}")
    print("=" * 50)


if __name__ == "__main__":
    asyncio.run(main())
