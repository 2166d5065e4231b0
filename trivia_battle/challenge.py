"""
Turn-based 1-on-1 challenges.

Players take alternate questions, challenger first. A missed turn is
recorded as a zero-point answer and play moves on.
"""
import functools
import logging
import time
import uuid
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple

from .errors import ConflictError, NotFoundError, PermissionDeniedError
from .formatting import (
    format_challenge_declined,
    format_challenge_expired,
    format_challenge_result,
    format_turn_result,
)
from .models import (
    Answer,
    AnswerOutcome,
    Challenge,
    ChallengeStatus,
    GameSettings,
    RoundResult,
    Turn,
)
from .notifier import Notifier
from .question_bank import QuestionProvider
from .question_set import draw_question_set
from .registry import ChallengeRegistry, pair_key
from .scoring import score_answer
from .settlement import Settlement
from .store import CHALLENGE_KIND, Store
from .timers import RoundTimer, TimerLifecycleLogger

TurnToken = Tuple[int, Turn]


class ChallengeEngine:
    """Runs challenges from proposal to settlement or a terminal refusal."""

    def __init__(
        self,
        provider: QuestionProvider,
        store: Store,
        notifier: Notifier,
        settings: Optional[GameSettings] = None,
        registry: Optional[ChallengeRegistry] = None,
        settlement: Optional[Settlement] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        self.logger = logging.getLogger(__name__)
        self.provider = provider
        self.store = store
        self.notifier = notifier
        self.settings = settings or GameSettings()
        self.registry = registry if registry is not None else ChallengeRegistry()
        self.settlement = settlement or Settlement(store)
        self.clock = clock

    async def propose(
        self,
        challenger_id: str,
        challenger_name: str,
        opponent_id: str,
        opponent_name: str,
        category: str,
        difficulty: str
    ) -> Challenge:
        """
        Create a pending challenge and start its expiry countdown.

        Raises:
            ConflictError: On a self-challenge, a blocked opponent or an
                existing open challenge between the two players
            ProviderError: If too few usable questions are available
            ValueError: If the difficulty is unknown
        """
        challenger_id, opponent_id = str(challenger_id), str(opponent_id)
        if challenger_id == opponent_id:
            raise ConflictError("You cannot challenge yourself")
        if await self.store.is_blocked(opponent_id):
            raise ConflictError(f"{opponent_name} is not accepting challenges")

        key = pair_key(challenger_id, opponent_id)
        self.registry.reserve(key)
        try:
            if await self.store.find_non_terminal_challenge(key):
                raise ConflictError(f"There is already a pending challenge between {key}")

            question_set = await draw_question_set(
                self.provider,
                category,
                difficulty,
                self.settings.challenge_question_count,
                minimum=self.settings.challenge_min_questions,
                time_limit=self.settings.question_timeout
            )
            challenge = Challenge(
                challenge_id=f"challenge_{uuid.uuid4().hex[:12]}",
                challenger_id=challenger_id,
                challenger_name=challenger_name or challenger_id,
                opponent_id=opponent_id,
                opponent_name=opponent_name or opponent_id,
                category=category,
                difficulty=question_set.difficulty,
                questions=question_set.as_tuple(),
                expires_at=datetime.now() + timedelta(seconds=self.settings.challenge_expiry)
            )
            await self.store.open_round(CHALLENGE_KIND, challenge.challenge_id, key)
        except BaseException:
            self.registry.release(key)
            raise

        self.registry.bind(key, challenge)
        challenge.expiry_timer = RoundTimer(challenge.challenge_id, "challenge_expiry").arm(
            self.settings.challenge_expiry,
            functools.partial(self.expire, challenge.challenge_id)
        )
        self.logger.info(
            f"Challenge {challenge.challenge_id} proposed: {challenger_id} vs {opponent_id}, "
            f"{category}/{challenge.difficulty}, {len(challenge.questions)} questions",
            extra={
                'event_type': 'challenge_proposed',
                'challenge_id': challenge.challenge_id,
                'challenger_id': challenger_id,
                'opponent_id': opponent_id,
                'timestamp': time.time()
            }
        )
        return challenge

    async def respond(self, challenge_id: str, responder_id: str, accept: bool) -> Challenge:
        """
        Accept or decline a pending challenge.

        Raises:
            NotFoundError: If the challenge is unknown or already over
            PermissionDeniedError: If the responder is not the challenged player
            ConflictError: If the challenge is no longer pending
        """
        challenge = self._require(challenge_id)
        responder_id = str(responder_id)
        if responder_id != challenge.opponent_id:
            raise PermissionDeniedError("Only the challenged player can respond to this challenge")

        async with challenge.lock:
            if challenge.status is not ChallengeStatus.PENDING:
                raise ConflictError(f"Challenge is already {challenge.status.value}")
            if challenge.expiry_timer is not None:
                challenge.expiry_timer.cancel()

            if accept:
                self._transition(challenge, ChallengeStatus.ACCEPTED)
                self._transition(challenge, ChallengeStatus.IN_PROGRESS)
                challenge.started_at = datetime.now()
                challenge.turn = Turn.CHALLENGER
                challenge.current_index = 0
                await self._dispatch_turn(challenge)
            else:
                self._transition(challenge, ChallengeStatus.DECLINED)
                challenge.completed_at = datetime.now()
                await self._close_terminal(challenge, format_challenge_declined(challenge))
            return challenge

    async def submit_answer(self, challenge_id: str, player_id: str, option_index: int) -> Optional[AnswerOutcome]:
        """
        Record the on-turn player's answer and pass the turn.

        Returns:
            The outcome, or None when the caller is not on turn or the
            challenge is not being played

        Raises:
            NotFoundError: If the challenge is unknown or already over
        """
        challenge = self._require(challenge_id)
        player_id = str(player_id)

        async with challenge.lock:
            if challenge.status is not ChallengeStatus.IN_PROGRESS or player_id != challenge.player_on_turn():
                self.logger.debug(
                    f"Ignoring answer from {player_id} in {challenge_id}: "
                    f"status {challenge.status.value}, on turn {challenge.player_on_turn()}"
                )
                return None
            return await self._record_turn(challenge, option_index, timed_out=False)

    async def turn_timeout(self, challenge_id: str, turn_token: Optional[TurnToken] = None) -> bool:
        """
        Record a missed turn as a zero-point answer.

        Args:
            turn_token: (question index, turn) the timer was armed for

        Returns:
            True if the timeout took effect, False if it was stale
        """
        challenge = self.registry.get_by_id(challenge_id)
        if challenge is None:
            TimerLifecycleLogger.log_stale_fire(challenge_id, "turn timeout after challenge end")
            return False

        async with challenge.lock:
            if challenge.status is not ChallengeStatus.IN_PROGRESS:
                TimerLifecycleLogger.log_stale_fire(challenge_id, f"turn timeout in status {challenge.status.value}")
                return False
            if turn_token is not None and turn_token != (challenge.current_index, challenge.turn):
                TimerLifecycleLogger.log_stale_fire(
                    challenge_id, f"turn timeout for {turn_token}, current ({challenge.current_index}, {challenge.turn})"
                )
                return False

            self.logger.info(
                f"Turn timed out in {challenge_id}: {challenge.player_on_turn()} on question {challenge.current_index + 1}",
                extra={
                    'event_type': 'turn_timeout',
                    'challenge_id': challenge_id,
                    'player_id': challenge.player_on_turn(),
                    'question_index': challenge.current_index,
                    'timestamp': time.time()
                }
            )
            await self._record_turn(challenge, None, timed_out=True)
            return True

    async def expire(self, challenge_id: str) -> bool:
        """
        Expire a challenge nobody responded to.

        Returns:
            True on the transition to EXPIRED, False on any later call
        """
        challenge = self.registry.get_by_id(challenge_id)
        if challenge is None:
            TimerLifecycleLogger.log_stale_fire(challenge_id, "expiry after challenge end")
            return False

        async with challenge.lock:
            if challenge.status is not ChallengeStatus.PENDING:
                TimerLifecycleLogger.log_stale_fire(challenge_id, f"expiry in status {challenge.status.value}")
                return False
            if challenge.expiry_timer is not None:
                challenge.expiry_timer.cancel()
            self._transition(challenge, ChallengeStatus.EXPIRED)
            challenge.completed_at = datetime.now()
            await self._close_terminal(challenge, format_challenge_expired(challenge))
            return True

    def get_challenge(self, challenge_id: str) -> Optional[Challenge]:
        return self.registry.get_by_id(challenge_id)

    def find_by_pair(self, first_id: str, second_id: str) -> Optional[Challenge]:
        return self.registry.get(pair_key(first_id, second_id))

    def open_challenges_for(self, player_id: str) -> List[Challenge]:
        player_id = str(player_id)
        return [c for c in self.registry.active() if player_id in (c.challenger_id, c.opponent_id)]

    def get_status(self, challenge_id: str) -> Optional[Dict[str, Any]]:
        """
        Get a snapshot of an open challenge.

        Returns:
            Dictionary with status, scores and the player on turn, or None
        """
        challenge = self.registry.get_by_id(challenge_id)
        if challenge is None:
            return None

        in_progress = challenge.status is ChallengeStatus.IN_PROGRESS
        return {
            'challenge_id': challenge.challenge_id,
            'status': challenge.status.value,
            'challenger': challenge.challenger_name,
            'opponent': challenge.opponent_name,
            'category': challenge.category,
            'difficulty': challenge.difficulty,
            'current_question': challenge.current_index + 1,
            'total_questions': len(challenge.questions),
            'challenger_score': challenge.challenger_score,
            'opponent_score': challenge.opponent_score,
            'on_turn': challenge.name_of(challenge.player_on_turn()) if in_progress else None,
            'expires_at': challenge.expires_at.isoformat()
        }

    def shutdown(self) -> None:
        """Disarm the timers of every open challenge."""
        challenges = self.registry.active()
        for challenge in challenges:
            self._cancel_timers(challenge)
        self.logger.info(f"Challenge engine shut down, {len(challenges)} challenges left open")

    def _require(self, challenge_id: str) -> Challenge:
        challenge = self.registry.get_by_id(challenge_id)
        if challenge is None or challenge.status.is_terminal:
            raise NotFoundError(f"No open challenge {challenge_id}")
        return challenge

    def _transition(self, challenge: Challenge, status: ChallengeStatus) -> None:
        previous = challenge.status
        challenge.status = status
        self.logger.info(
            f"Challenge {challenge.challenge_id}: {previous.value} -> {status.value}",
            extra={
                'event_type': 'challenge_transition',
                'challenge_id': challenge.challenge_id,
                'from_status': previous.value,
                'to_status': status.value,
                'timestamp': time.time()
            }
        )

    def _cancel_timers(self, challenge: Challenge) -> None:
        for timer in (challenge.expiry_timer, challenge.turn_timer):
            if timer is not None:
                timer.cancel()

    async def _dispatch_turn(self, challenge: Challenge) -> None:
        question = challenge.current_question
        token = (challenge.current_index, challenge.turn)
        challenge.turn_started_at = self.clock()
        challenge.turn_timer = RoundTimer(challenge.challenge_id, "turn").arm(
            question.time_limit,
            functools.partial(self.turn_timeout, challenge.challenge_id, token)
        )
        try:
            await self.notifier.deliver_question(
                challenge.player_on_turn(),
                question,
                challenge.current_index + 1,
                len(challenge.questions),
                challenge.challenge_id
            )
        except Exception as e:
            self.logger.error(
                f"Question delivery failed for {challenge.challenge_id}: {e}",
                exc_info=True,
                extra={'event_type': 'delivery_failed', 'challenge_id': challenge.challenge_id}
            )

    async def _record_turn(self, challenge: Challenge, option_index: Optional[int], timed_out: bool) -> AnswerOutcome:
        if challenge.turn_timer is not None:
            challenge.turn_timer.cancel()

        turn = challenge.turn
        player_id = challenge.player_on_turn()
        index = challenge.current_index
        question = challenge.current_question
        elapsed_ms = int(max(0.0, self.clock() - (challenge.turn_started_at or self.clock())) * 1000)

        if timed_out:
            chosen, correct, points = None, False, 0
        else:
            chosen = question.option_at(option_index)
            correct = question.is_correct(option_index)
            points = score_answer(correct, challenge.difficulty, elapsed_ms)

        answers = challenge.answers_for(turn)
        answers.append(Answer(
            question_index=index,
            chosen_option=chosen,
            correct=correct,
            points_earned=points,
            latency_ms=elapsed_ms
        ))
        outcome = AnswerOutcome(
            is_correct=correct,
            correct_answer=question.correct_answer,
            points_awarded=points,
            cumulative_score=sum(a.points_earned for a in answers),
            question_index=index
        )
        await self._deliver_result(challenge, player_id, format_turn_result(outcome, timed_out=timed_out))

        challenge.turn = turn.flipped()
        challenge.current_index += 1

        if challenge.current_index >= len(challenge.questions):
            await self._complete(challenge)
        else:
            await self._dispatch_turn(challenge)
        return outcome

    async def _complete(self, challenge: Challenge) -> RoundResult:
        self._cancel_timers(challenge)
        self._transition(challenge, ChallengeStatus.COMPLETED)
        challenge.completed_at = datetime.now()

        try:
            result = await self.settlement.settle_challenge(challenge)
        finally:
            self.registry.release(pair_key(challenge.challenger_id, challenge.opponent_id))

        text = format_challenge_result(challenge)
        await self._deliver_result(challenge, challenge.challenger_id, text)
        await self._deliver_result(challenge, challenge.opponent_id, text)
        return result

    async def _close_terminal(self, challenge: Challenge, text: str) -> None:
        self._cancel_timers(challenge)
        try:
            await self.settlement.record_terminal(challenge)
        finally:
            self.registry.release(pair_key(challenge.challenger_id, challenge.opponent_id))
        await self._deliver_result(challenge, challenge.challenger_id, text)

    async def _deliver_result(self, challenge: Challenge, target: str, text: str) -> None:
        try:
            await self.notifier.deliver_result(target, text)
        except Exception as e:
            self.logger.error(
                f"Result delivery failed for {challenge.challenge_id}: {e}",
                exc_info=True,
                extra={'event_type': 'delivery_failed', 'challenge_id': challenge.challenge_id}
            )
