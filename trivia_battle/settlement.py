"""
Settlement of finished rounds: final ranking, winner, persisted round record
and per-participant stat updates.
"""
import logging
import time
from datetime import datetime
from typing import Iterable, List, Sequence, Tuple

from .models import (
    Answer,
    Challenge,
    GroupSession,
    RankBand,
    RoundResult,
    Standing,
    StatsDelta,
)
from .registry import pair_key
from .scoring import RANK_TABLE
from .store import CHALLENGE_KIND, GROUP_KIND, Store


def rank_standings(entries: Iterable[Tuple[str, str, List[Answer]]]) -> List[Standing]:
    """
    Rank players by total score, highest first.

    Args:
        entries: (user_id, name, answers) in join or turn order

    Returns:
        Standings with 1-based positions; ties keep their original order
    """
    rows = []
    for user_id, name, answers in entries:
        rows.append((
            user_id,
            name,
            sum(a.points_earned for a in answers),
            sum(1 for a in answers if a.correct),
            len(answers)
        ))
    # sorted() is stable, so the first-seen player wins a tie
    rows = sorted(rows, key=lambda row: row[2], reverse=True)
    return [
        Standing(user_id=uid, name=name, score=score, position=i + 1, correct_answers=correct, answered=answered)
        for i, (uid, name, score, correct, answered) in enumerate(rows)
    ]


class Settlement:
    """Computes and persists the outcome of finished sessions and challenges."""

    def __init__(self, store: Store, rank_table: Sequence[RankBand] = RANK_TABLE):
        self.logger = logging.getLogger(__name__)
        self.store = store
        self.rank_table = rank_table

    async def settle_session(self, session: GroupSession) -> RoundResult:
        """
        Settle a group session that reached its end.

        The top-ranked participant wins when they scored at all.
        """
        standings = rank_standings(
            (p.user_id, p.name, p.answers) for p in session.participants.values()
        )
        winner = standings[0] if standings and standings[0].score > 0 else None
        revealed = max(0, min(session.current_index + 1, session.total_questions))

        result = RoundResult(
            kind=GROUP_KIND,
            round_id=session.session_id,
            key=session.group_id,
            status="ended",
            category=session.category,
            difficulty=session.difficulty,
            total_questions=session.total_questions,
            standings=standings,
            winner_id=winner.user_id if winner else None,
            winner_name=winner.name if winner else None,
            started_at=session.started_at,
            ended_at=session.ended_at or datetime.now()
        )

        deltas = [
            StatsDelta(
                user_id=s.user_id,
                name=s.name,
                points=s.score,
                quizzes_played=1,
                quizzes_won=1 if winner and s.user_id == winner.user_id else 0,
                correct_answers=s.correct_answers,
                total_answers=revealed
            )
            for s in standings
        ]
        await self._persist(result, deltas)
        return result

    async def settle_challenge(self, challenge: Challenge) -> RoundResult:
        """
        Settle a completed challenge. Equal scores leave the winner unset.
        """
        challenger_score = challenge.challenger_score
        opponent_score = challenge.opponent_score
        if challenger_score > opponent_score:
            challenge.winner_id, challenge.winner_name = challenge.challenger_id, challenge.challenger_name
        elif opponent_score > challenger_score:
            challenge.winner_id, challenge.winner_name = challenge.opponent_id, challenge.opponent_name
        else:
            challenge.winner_id, challenge.winner_name = None, None

        standings = rank_standings([
            (challenge.challenger_id, challenge.challenger_name, challenge.challenger_answers),
            (challenge.opponent_id, challenge.opponent_name, challenge.opponent_answers),
        ])
        result = self._challenge_result(challenge, standings)

        tied = challenge.winner_id is None
        deltas = [
            StatsDelta(
                user_id=s.user_id,
                name=s.name,
                points=s.score,
                challenges_played=1,
                challenges_won=1 if s.user_id == challenge.winner_id else 0,
                challenges_tied=1 if tied else 0,
                correct_answers=s.correct_answers,
                total_answers=s.answered
            )
            for s in standings
        ]
        await self._persist(result, deltas)
        return result

    async def record_terminal(self, challenge: Challenge) -> RoundResult:
        """Persist a declined or expired challenge. No stats change."""
        result = self._challenge_result(challenge, [])
        await self._persist(result, [])
        return result

    def _challenge_result(self, challenge: Challenge, standings: List[Standing]) -> RoundResult:
        return RoundResult(
            kind=CHALLENGE_KIND,
            round_id=challenge.challenge_id,
            key=pair_key(challenge.challenger_id, challenge.opponent_id),
            status=challenge.status.value,
            category=challenge.category,
            difficulty=challenge.difficulty,
            total_questions=len(challenge.questions),
            standings=standings,
            winner_id=challenge.winner_id,
            winner_name=challenge.winner_name,
            started_at=challenge.started_at or challenge.created_at,
            ended_at=challenge.completed_at or datetime.now()
        )

    async def _persist(self, result: RoundResult, deltas: List[StatsDelta]) -> None:
        try:
            await self.store.save_round_result(result)
        except Exception as e:
            result.persisted = False
            self.logger.error(
                f"Failed to save round record {result.round_id}: {e}",
                exc_info=True,
                extra={
                    'event_type': 'round_record_save_failed',
                    'round_id': result.round_id,
                    'timestamp': time.time()
                }
            )

        for delta in deltas:
            try:
                await self.store.update_participant_stats(delta.user_id, delta)
            except Exception as e:
                result.failed_updates.append(delta.user_id)
                self.logger.error(
                    f"Failed to update stats for {delta.user_id} after {result.round_id}: {e}",
                    exc_info=True,
                    extra={
                        'event_type': 'participant_stats_update_failed',
                        'round_id': result.round_id,
                        'user_id': delta.user_id,
                        'timestamp': time.time()
                    }
                )

        self.logger.info(
            f"Settled {result.kind} {result.round_id}: winner={result.winner_id}, "
            f"participants={len(result.standings)}, failed_updates={len(result.failed_updates)}",
            extra={
                'event_type': 'round_settled',
                'round_id': result.round_id,
                'kind': result.kind,
                'winner_id': result.winner_id,
                'failed_updates': list(result.failed_updates),
                'timestamp': time.time()
            }
        )
