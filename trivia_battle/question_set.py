"""
Question set construction: normalization, usability filtering and the
sample-set fallback.
"""
import html
import logging
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Union

from .errors import ProviderError
from .models import Question
from .question_bank import QuestionProvider, SampleQuestionProvider
from .scoring import DIFFICULTY_POINTS, base_points

logger = logging.getLogger(__name__)


def normalize_text(value) -> str:
    """Decode HTML entities and strip surrounding whitespace."""
    return html.unescape(str(value)).strip()


def build_question(
    raw: Union[dict, Question],
    category: str,
    difficulty: str,
    points: int,
    time_limit: float
) -> Optional[Question]:
    """
    Turn a provider item into a Question, or None when it is not usable.

    A usable question has at least two options and its correct answer
    matches exactly one of them.
    """
    if isinstance(raw, Question):
        text, correct, options = raw.text, raw.correct_answer, list(raw.options)
    else:
        text = raw.get("question", raw.get("text"))
        correct = raw.get("correct_answer", raw.get("answer"))
        options = raw.get("options") or []
    if text is None or correct is None:
        return None

    text = normalize_text(text)
    correct = normalize_text(correct)
    options = tuple(normalize_text(o) for o in options)

    if not text or len(options) < 2 or options.count(correct) != 1:
        return None

    return Question(
        text=text,
        options=options,
        correct_answer=correct,
        points=points,
        time_limit=time_limit,
        category=category,
        difficulty=difficulty
    )


class QuestionSet(Sequence):
    """Fixed, ordered questions drawn for one round."""

    def __init__(self, questions: Iterable[Question], category: str = "", difficulty: str = ""):
        self._questions = tuple(questions)
        self.category = category
        self.difficulty = difficulty

    def __getitem__(self, index):
        return self._questions[index]

    def __len__(self) -> int:
        return len(self._questions)

    def __iter__(self) -> Iterator[Question]:
        return iter(self._questions)

    def as_tuple(self):
        return self._questions


async def draw_question_set(
    provider: QuestionProvider,
    category: str,
    difficulty: str,
    count: int,
    minimum: Optional[int] = None,
    fallback: Optional[QuestionProvider] = None,
    time_limit: float = 30,
    difficulty_points: Dict[str, int] = DIFFICULTY_POINTS
) -> QuestionSet:
    """
    Obtain a question set for a round.

    Falls back to the built-in sample questions when the provider fails.

    Args:
        provider: Primary question provider
        category: Question category
        difficulty: Difficulty name, determines the base points
        count: Number of questions wanted
        minimum: Fewest usable questions accepted, defaults to ``count``

    Returns:
        QuestionSet of at most ``count`` usable questions

    Raises:
        ValueError: If the difficulty is unknown
        ProviderError: If fewer than ``minimum`` usable questions are available
    """
    points = base_points(difficulty, difficulty_points)
    minimum = count if minimum is None else minimum
    fallback = fallback or SampleQuestionProvider()

    try:
        raw = await provider.fetch(category, difficulty, count)
        if not raw:
            raise ProviderError(f"No questions found for {category}/{difficulty}")
    except ProviderError as e:
        logger.warning(
            f"Question provider failed for {category}/{difficulty}: {e}; using sample questions",
            extra={
                'event_type': 'question_provider_fallback',
                'category': category,
                'difficulty': difficulty,
                'error': str(e)
            }
        )
        raw = await fallback.fetch(category, difficulty, count) if fallback is not provider else []

    questions: List[Question] = []
    for item in raw:
        question = build_question(item, category, difficulty.lower(), points, time_limit)
        if question is None:
            logger.warning(f"Dropping unusable question from provider: {item!r}")
            continue
        questions.append(question)
        if len(questions) >= count:
            break

    if len(questions) < minimum:
        raise ProviderError(
            f"Could only fetch {len(questions)} questions. Try a different category or difficulty."
        )

    return QuestionSet(questions, category=category, difficulty=difficulty.lower())
