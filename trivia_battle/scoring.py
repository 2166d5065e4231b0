"""
Scoring, accuracy and rank tier lookup.

All functions here are pure so that rounds can be replayed in tests.
"""
from typing import Dict, Sequence

from .models import RankBand

BONUS_WINDOW_SECONDS = 30

DIFFICULTY_POINTS: Dict[str, int] = {
    "easy": 10,
    "medium": 15,
    "hard": 20,
}

RANK_TABLE: Sequence[RankBand] = (
    RankBand("Beginner", 0, 100),
    RankBand("Learner", 101, 500),
    RankBand("Scholar", 501, 1000),
    RankBand("Expert", 1001, 2000),
    RankBand("Master", 2001, 5000),
    RankBand("Legend", 5001, None),
)


def base_points(difficulty: str, difficulty_points: Dict[str, int] = DIFFICULTY_POINTS) -> int:
    """
    Look up the base point value of a difficulty.

    Raises:
        ValueError: If the difficulty is unknown
    """
    key = (difficulty or "").lower()
    if key not in difficulty_points:
        raise ValueError(f"Invalid difficulty: {difficulty}")
    return difficulty_points[key]


def calculate_points(
    difficulty: str,
    elapsed_ms: float,
    difficulty_points: Dict[str, int] = DIFFICULTY_POINTS
) -> int:
    """
    Points for a correct answer: base points plus one bonus point for every
    whole second left in the bonus window.

    Args:
        difficulty: Difficulty name (easy, medium, hard)
        elapsed_ms: Milliseconds between question reveal and the answer

    Returns:
        Points awarded, never below the base value
    """
    elapsed_seconds = int(max(0, elapsed_ms) // 1000)
    time_bonus = max(0, BONUS_WINDOW_SECONDS - elapsed_seconds)
    return base_points(difficulty, difficulty_points) + time_bonus


def score_answer(
    is_correct: bool,
    difficulty: str,
    elapsed_ms: float,
    difficulty_points: Dict[str, int] = DIFFICULTY_POINTS
) -> int:
    """Incorrect answers always score 0 regardless of elapsed time."""
    if not is_correct:
        return 0
    return calculate_points(difficulty, elapsed_ms, difficulty_points)


def calculate_accuracy(correct_answers: int, total_answers: int) -> int:
    """Accuracy as an integer percentage, rounded half up."""
    if total_answers <= 0:
        return 0
    return int(correct_answers * 100 / total_answers + 0.5)


def rank_for_points(points: int, rank_table: Sequence[RankBand] = RANK_TABLE) -> str:
    """Return the name of the first band containing ``points``."""
    for band in rank_table:
        if band.contains(points):
            return band.name
    return rank_table[0].name if rank_table else "Beginner"


def level_for_points(points: int) -> int:
    return max(0, points) // 100 + 1
