"""
Group trivia sessions: one shared question set played by everyone in a
group channel, with a per-question timer and a short settle delay after
the first answer.
"""
import functools
import logging
import time
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from .errors import ConflictError, NotFoundError, PermissionDeniedError
from .formatting import format_answer_result, format_session_results, format_timeout
from .models import (
    Answer,
    AnswerOutcome,
    GameSettings,
    GroupSession,
    Participant,
    Question,
    RoundResult,
    SessionStage,
)
from .notifier import Notifier
from .question_bank import QuestionProvider
from .question_set import draw_question_set
from .registry import SessionRegistry
from .scoring import score_answer
from .settlement import Settlement
from .store import GROUP_KIND, Store
from .timers import RoundTimer, TimerLifecycleLogger


class GroupSessionEngine:
    """
    Runs group sessions from start to settlement.

    Every state change of a session happens under that session's lock.
    Timer callbacks carry the question index they were armed for and do
    nothing once the session has moved past it.
    """

    def __init__(
        self,
        provider: QuestionProvider,
        store: Store,
        notifier: Notifier,
        settings: Optional[GameSettings] = None,
        registry: Optional[SessionRegistry] = None,
        settlement: Optional[Settlement] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        self.logger = logging.getLogger(__name__)
        self.provider = provider
        self.store = store
        self.notifier = notifier
        self.settings = settings or GameSettings()
        self.registry = registry if registry is not None else SessionRegistry()
        self.settlement = settlement or Settlement(store)
        self.clock = clock

    async def start(
        self,
        group_id: str,
        starter_id: str,
        category: str,
        difficulty: str,
        question_count: Optional[int] = None,
        starter_name: Optional[str] = None
    ) -> GroupSession:
        """
        Create a session for a group. The first question is sent by ``advance``.

        Args:
            group_id: Channel the session runs in
            starter_id: User starting the session, allowed to stop it
            category: Question category
            difficulty: easy, medium or hard
            question_count: Questions in the round, defaults to the configured count

        Returns:
            The new session in the READY stage

        Raises:
            ConflictError: If the group already has an active session
            ProviderError: If not enough usable questions are available
            ValueError: If the difficulty or question count is invalid
        """
        group_id = str(group_id)
        count = self.settings.default_question_count if question_count is None else question_count
        if count < 1 or count > self.settings.max_question_count:
            raise ValueError(f"Question count must be between 1 and {self.settings.max_question_count}")

        # Claimed before any await so concurrent starts see the conflict
        self.registry.reserve(group_id)
        try:
            existing = await self.store.find_active_session(group_id)
            if existing:
                raise ConflictError(f"A quiz is already active in group {group_id}")

            question_set = await draw_question_set(
                self.provider,
                category,
                difficulty,
                count,
                minimum=count,
                time_limit=self.settings.question_timeout
            )
            session = GroupSession(
                session_id=f"quiz_{uuid.uuid4().hex[:12]}",
                group_id=group_id,
                category=category,
                difficulty=question_set.difficulty,
                questions=question_set.as_tuple(),
                started_by=str(starter_id),
                started_by_name=starter_name or str(starter_id)
            )
            await self.store.open_round(GROUP_KIND, session.session_id, group_id)
        except BaseException:
            self.registry.release(group_id)
            raise

        self.registry.bind(group_id, session)
        self.logger.info(
            f"Started session {session.session_id} in group {group_id}: "
            f"{category}/{session.difficulty}, {session.total_questions} questions",
            extra={
                'event_type': 'session_started',
                'session_id': session.session_id,
                'group_id': group_id,
                'started_by': session.started_by,
                'timestamp': time.time()
            }
        )
        return session

    async def advance(self, session_id: str, expected_index: Optional[int] = None) -> Optional[Question]:
        """
        Move to the next question, or end the session after the last one.

        Args:
            session_id: Session to advance
            expected_index: Index the caller saw; the call is ignored when
                the session has moved on since

        Returns:
            The question now being asked, or None if the session ended or
            the call was stale
        """
        session = self.registry.get_by_id(session_id)
        if session is None:
            if expected_index is not None:
                TimerLifecycleLogger.log_stale_fire(session_id, "advance after session end")
                return None
            raise NotFoundError(f"No active session {session_id}")

        async with session.lock:
            return await self._advance_locked(session, expected_index)

    async def submit_answer(
        self,
        session_id: str,
        user_id: str,
        user_name: str,
        option_index: int
    ) -> Optional[AnswerOutcome]:
        """
        Grade and record one participant's answer to the current question.

        Returns:
            The outcome, or None when the answer came in between questions
            or the user already answered this question

        Raises:
            NotFoundError: If the session is unknown or has ended
        """
        session = self._require(session_id)
        user_id = str(user_id)

        async with session.lock:
            if session.stage is not SessionStage.QUESTION_ACTIVE:
                self.logger.debug(f"Ignoring answer from {user_id} in {session_id}: stage {session.stage.value}")
                return None

            index = session.current_index
            participant = session.participants.get(user_id)
            if participant is not None and participant.has_answered(index):
                self.logger.debug(f"Ignoring duplicate answer from {user_id} for question {index + 1}")
                return None

            if session.question_timer is not None:
                session.question_timer.cancel()

            question = session.current_question
            elapsed_ms = int(max(0.0, self.clock() - session.question_started_at) * 1000)
            correct = question.is_correct(option_index)
            points = score_answer(correct, session.difficulty, elapsed_ms)

            if participant is None:
                participant = Participant(user_id=user_id, name=user_name or user_id)
                session.participants[user_id] = participant
            participant.answers.append(Answer(
                question_index=index,
                chosen_option=question.option_at(option_index),
                correct=correct,
                points_earned=points,
                latency_ms=elapsed_ms
            ))
            participant.cumulative_score += points

            outcome = AnswerOutcome(
                is_correct=correct,
                correct_answer=question.correct_answer,
                points_awarded=points,
                cumulative_score=participant.cumulative_score,
                question_index=index
            )
            self.logger.info(
                f"Answer from {user_id} in {session_id} q{index + 1}: "
                f"{'correct' if correct else 'incorrect'}, +{points}",
                extra={
                    'event_type': 'answer_recorded',
                    'session_id': session_id,
                    'user_id': user_id,
                    'question_index': index,
                    'points': points,
                    'latency_ms': elapsed_ms,
                    'timestamp': time.time()
                }
            )
            await self._deliver_result(session, format_answer_result(participant.name, outcome))

            if not session.settle_pending:
                session.settle_pending = True
                session.settle_timer = RoundTimer(session_id, "settle").arm(
                    self.settings.settle_delay,
                    functools.partial(self.advance, session_id, index)
                )
            return outcome

    async def timeout(self, session_id: str, question_index: Optional[int] = None) -> bool:
        """
        Close the current question because nobody answered in time.

        Returns:
            True if the timeout took effect, False if it was stale
        """
        session = self.registry.get_by_id(session_id)
        if session is None:
            TimerLifecycleLogger.log_stale_fire(session_id, "timeout after session end")
            return False

        async with session.lock:
            if session.stage is not SessionStage.QUESTION_ACTIVE or session.settle_pending:
                TimerLifecycleLogger.log_stale_fire(
                    session_id, f"timeout in stage {session.stage.value}, settle pending {session.settle_pending}"
                )
                return False
            if question_index is not None and question_index != session.current_index:
                TimerLifecycleLogger.log_stale_fire(
                    session_id, f"timeout for question {question_index}, current {session.current_index}"
                )
                return False

            self.logger.info(
                f"Question {session.current_index + 1} timed out in {session_id}",
                extra={
                    'event_type': 'question_timeout',
                    'session_id': session_id,
                    'question_index': session.current_index,
                    'timestamp': time.time()
                }
            )
            await self._deliver_result(session, format_timeout(session.current_question))
            await self._advance_locked(session, session.current_index)
            return True

    async def stop(self, session_id: str, requester_id: str) -> RoundResult:
        """
        End a session early and settle it with the current scores.

        Raises:
            NotFoundError: If the session is unknown or has ended
            PermissionDeniedError: If the requester is neither the starter nor an administrator
        """
        session = self._require(session_id)
        requester_id = str(requester_id)
        if requester_id != session.started_by and requester_id not in self.settings.admin_ids:
            raise PermissionDeniedError("Only the quiz starter or an administrator can stop this quiz")

        self._cancel_timers(session)
        async with session.lock:
            if session.stage is SessionStage.ENDED:
                raise NotFoundError(f"Session {session_id} has already ended")
            self.logger.info(
                f"Session {session_id} stopped by {requester_id}",
                extra={'event_type': 'session_stopped', 'session_id': session_id, 'requester_id': requester_id}
            )
            return await self._finish(session)

    def get_session(self, session_id: str) -> Optional[GroupSession]:
        return self.registry.get_by_id(session_id)

    def find_by_group(self, group_id: str) -> Optional[GroupSession]:
        return self.registry.get(str(group_id))

    def get_status(self, session_id: str) -> Optional[Dict[str, Any]]:
        """
        Get a snapshot of a live session.

        Returns:
            Dictionary with progress, participants and time remaining, or None
        """
        session = self.registry.get_by_id(session_id)
        if session is None:
            return None

        timer = session.question_timer
        return {
            'session_id': session.session_id,
            'group_id': session.group_id,
            'category': session.category,
            'difficulty': session.difficulty,
            'stage': session.stage.value,
            'current_question': session.current_index + 1,
            'total_questions': session.total_questions,
            'participants': len(session.participants),
            'scores': {p.name: p.cumulative_score for p in session.participants.values()},
            'time_remaining': timer.remaining_time if timer is not None and timer.is_armed else 0,
            'started_by': session.started_by_name
        }

    def shutdown(self) -> None:
        """Disarm the timers of every live session."""
        sessions = self.registry.active()
        for session in sessions:
            self._cancel_timers(session)
        self.logger.info(f"Group engine shut down, {len(sessions)} sessions left unsettled")

    def _require(self, session_id: str) -> GroupSession:
        session = self.registry.get_by_id(session_id)
        if session is None or session.stage is SessionStage.ENDED:
            raise NotFoundError(f"No active session {session_id}")
        return session

    def _cancel_timers(self, session: GroupSession) -> None:
        for timer in (session.question_timer, session.settle_timer):
            if timer is not None:
                timer.cancel()

    async def _advance_locked(self, session: GroupSession, expected_index: Optional[int]) -> Optional[Question]:
        if session.stage is SessionStage.ENDED:
            return None
        if expected_index is not None and expected_index != session.current_index:
            TimerLifecycleLogger.log_stale_fire(
                session.session_id, f"advance for question {expected_index}, current {session.current_index}"
            )
            return None

        self._cancel_timers(session)
        session.settle_pending = False

        if session.current_index + 1 >= session.total_questions:
            await self._finish(session)
            return None

        session.current_index += 1
        index = session.current_index
        question = session.current_question
        session.question_started_at = self.clock()
        session.stage = SessionStage.QUESTION_ACTIVE
        session.question_timer = RoundTimer(session.session_id, "question").arm(
            question.time_limit,
            functools.partial(self.timeout, session.session_id, index)
        )

        try:
            await self.notifier.deliver_question(
                session.group_id, question, index + 1, session.total_questions, session.session_id
            )
        except Exception as e:
            self.logger.error(
                f"Question delivery failed for {session.session_id}: {e}",
                exc_info=True,
                extra={'event_type': 'delivery_failed', 'session_id': session.session_id}
            )
        return question

    async def _finish(self, session: GroupSession) -> RoundResult:
        self._cancel_timers(session)
        session.stage = SessionStage.ENDED
        session.settle_pending = False
        session.ended_at = datetime.now()

        try:
            result = await self.settlement.settle_session(session)
        finally:
            self.registry.release(session.group_id)

        await self._deliver_result(session, format_session_results(session, result))
        self.logger.info(
            f"Session {session.session_id} ended after {session.current_index + 1} of "
            f"{session.total_questions} questions",
            extra={
                'event_type': 'session_ended',
                'session_id': session.session_id,
                'group_id': session.group_id,
                'winner_id': result.winner_id,
                'timestamp': time.time()
            }
        )
        return result

    async def _deliver_result(self, session: GroupSession, text: str) -> None:
        try:
            await self.notifier.deliver_result(session.group_id, text)
        except Exception as e:
            self.logger.error(
                f"Result delivery failed for {session.session_id}: {e}",
                exc_info=True,
                extra={'event_type': 'delivery_failed', 'session_id': session.session_id}
            )
