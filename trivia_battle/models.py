"""
Core data models for the Trivia Battle Bot.
"""
import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Dict, List, Optional, Tuple

if TYPE_CHECKING:
    from .timers import RoundTimer


class SessionStage(Enum):
    """Stages of a group trivia session."""
    READY = "ready"
    QUESTION_ACTIVE = "question_active"
    ENDED = "ended"


class ChallengeStatus(Enum):
    """Lifecycle of a 1-on-1 challenge."""
    PENDING = "pending"
    ACCEPTED = "accepted"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    DECLINED = "declined"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self in (ChallengeStatus.COMPLETED, ChallengeStatus.DECLINED, ChallengeStatus.EXPIRED)


class Turn(Enum):
    """Which side of a challenge may answer."""
    CHALLENGER = "challenger"
    OPPONENT = "opponent"

    def flipped(self) -> "Turn":
        return Turn.OPPONENT if self is Turn.CHALLENGER else Turn.CHALLENGER


@dataclass(frozen=True)
class Question:
    """A single graded multiple-choice question."""
    text: str
    options: Tuple[str, ...]
    correct_answer: str
    points: int = 10
    time_limit: float = 30
    category: str = ""
    difficulty: str = "medium"

    def option_at(self, index: Optional[int]) -> Optional[str]:
        """Return the option at ``index`` or None when out of bounds."""
        if index is None or not isinstance(index, int) or index < 0 or index >= len(self.options):
            return None
        return self.options[index]

    def is_correct(self, index: Optional[int]) -> bool:
        option = self.option_at(index)
        return option is not None and option == self.correct_answer


@dataclass(frozen=True)
class Answer:
    """One recorded answer (or missed turn) for a question."""
    question_index: int
    chosen_option: Optional[str]
    correct: bool
    points_earned: int
    latency_ms: int
    answered_at: datetime = field(default_factory=datetime.now)


@dataclass
class Participant:
    """A player taking part in a group session."""
    user_id: str
    name: str
    cumulative_score: int = 0
    answers: List[Answer] = field(default_factory=list)
    joined_at: datetime = field(default_factory=datetime.now)

    def has_answered(self, question_index: int) -> bool:
        return any(a.question_index == question_index for a in self.answers)

    @property
    def correct_count(self) -> int:
        return sum(1 for a in self.answers if a.correct)


@dataclass
class GroupSession:
    """A live trivia battle in a group channel."""
    session_id: str
    group_id: str
    category: str
    difficulty: str
    questions: Tuple[Question, ...]
    started_by: str
    started_by_name: str = ""
    current_index: int = -1
    stage: SessionStage = SessionStage.READY
    participants: Dict[str, Participant] = field(default_factory=dict)
    question_started_at: Optional[float] = None
    settle_pending: bool = False
    started_at: datetime = field(default_factory=datetime.now)
    ended_at: Optional[datetime] = None
    question_timer: Optional["RoundTimer"] = field(default=None, repr=False, compare=False)
    settle_timer: Optional["RoundTimer"] = field(default=None, repr=False, compare=False)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False, compare=False)

    @property
    def current_question(self) -> Optional[Question]:
        if 0 <= self.current_index < len(self.questions):
            return self.questions[self.current_index]
        return None

    @property
    def total_questions(self) -> int:
        return len(self.questions)


@dataclass
class Challenge:
    """A turn-based 1-on-1 trivia challenge."""
    challenge_id: str
    challenger_id: str
    challenger_name: str
    opponent_id: str
    opponent_name: str
    category: str
    difficulty: str
    questions: Tuple[Question, ...]
    expires_at: datetime
    status: ChallengeStatus = ChallengeStatus.PENDING
    current_index: int = 0
    turn: Turn = Turn.CHALLENGER
    challenger_answers: List[Answer] = field(default_factory=list)
    opponent_answers: List[Answer] = field(default_factory=list)
    turn_started_at: Optional[float] = None
    winner_id: Optional[str] = None
    winner_name: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.now)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    expiry_timer: Optional["RoundTimer"] = field(default=None, repr=False, compare=False)
    turn_timer: Optional["RoundTimer"] = field(default=None, repr=False, compare=False)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False, compare=False)

    def player_on_turn(self) -> str:
        return self.challenger_id if self.turn is Turn.CHALLENGER else self.opponent_id

    def name_of(self, player_id: str) -> str:
        return self.challenger_name if player_id == self.challenger_id else self.opponent_name

    def answers_for(self, turn: Turn) -> List[Answer]:
        return self.challenger_answers if turn is Turn.CHALLENGER else self.opponent_answers

    @property
    def challenger_score(self) -> int:
        return sum(a.points_earned for a in self.challenger_answers)

    @property
    def opponent_score(self) -> int:
        return sum(a.points_earned for a in self.opponent_answers)

    @property
    def current_question(self) -> Optional[Question]:
        if 0 <= self.current_index < len(self.questions):
            return self.questions[self.current_index]
        return None


@dataclass(frozen=True)
class AnswerOutcome:
    """What a submitted answer earned."""
    is_correct: bool
    correct_answer: str
    points_awarded: int
    cumulative_score: int
    question_index: int


@dataclass(frozen=True)
class RankBand:
    """A rank tier: inclusive point range, ``max_points`` None for unbounded."""
    name: str
    min_points: int
    max_points: Optional[int]

    def contains(self, points: int) -> bool:
        if points < self.min_points:
            return False
        return self.max_points is None or points <= self.max_points


@dataclass(frozen=True)
class StatsDelta:
    """A single logical stats update for one participant."""
    user_id: str
    name: str
    points: int = 0
    quizzes_played: int = 0
    quizzes_won: int = 0
    challenges_played: int = 0
    challenges_won: int = 0
    challenges_tied: int = 0
    correct_answers: int = 0
    total_answers: int = 0


@dataclass
class PlayerProfile:
    """Persisted cumulative statistics of a player."""
    user_id: str
    name: str
    points: int = 0
    quizzes_played: int = 0
    quizzes_won: int = 0
    challenges_played: int = 0
    challenges_won: int = 0
    challenges_tied: int = 0
    correct_answers: int = 0
    total_answers: int = 0
    accuracy: int = 0
    rank: str = "Beginner"
    level: int = 1
    is_blocked: bool = False
    updated_at: Optional[str] = None

    def apply(self, delta: StatsDelta, rank_table=None) -> "PlayerProfile":
        """Fold ``delta`` into this profile and recompute derived fields."""
        # scoring imports RankBand from this module
        from .scoring import RANK_TABLE, calculate_accuracy, level_for_points, rank_for_points

        if delta.name:
            self.name = delta.name
        self.points += delta.points
        self.quizzes_played += delta.quizzes_played
        self.quizzes_won += delta.quizzes_won
        self.challenges_played += delta.challenges_played
        self.challenges_won += delta.challenges_won
        self.challenges_tied += delta.challenges_tied
        self.correct_answers += delta.correct_answers
        self.total_answers += delta.total_answers
        self.accuracy = calculate_accuracy(self.correct_answers, self.total_answers)
        self.rank = rank_for_points(self.points, rank_table or RANK_TABLE)
        self.level = level_for_points(self.points)
        self.updated_at = datetime.now().isoformat()
        return self


@dataclass(frozen=True)
class Standing:
    """One row of a final leaderboard."""
    user_id: str
    name: str
    score: int
    position: int
    correct_answers: int
    answered: int


@dataclass
class RoundResult:
    """Terminal record of a group session or challenge."""
    kind: str
    round_id: str
    key: str
    status: str
    category: str
    difficulty: str
    total_questions: int
    standings: List[Standing] = field(default_factory=list)
    winner_id: Optional[str] = None
    winner_name: Optional[str] = None
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    persisted: bool = True
    failed_updates: List[str] = field(default_factory=list)

    @property
    def is_tie(self) -> bool:
        return self.kind == "challenge" and self.status == ChallengeStatus.COMPLETED.value and self.winner_id is None


@dataclass
class GameSettings:
    """Timing and round-size settings shared by both engines."""
    question_timeout: float = 30
    settle_delay: float = 2
    challenge_expiry: float = 120
    default_question_count: int = 10
    max_question_count: int = 20
    challenge_question_count: int = 5
    challenge_min_questions: int = 3
    admin_ids: List[str] = field(default_factory=list)
