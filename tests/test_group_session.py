"""
Tests for the group session engine: lifecycle, scoring, timers, stop
permissions and the submit/timeout race.
"""
import asyncio
import unittest

from trivia_battle.errors import ConflictError, NotFoundError, PermissionDeniedError, ProviderError
from trivia_battle.group_session import GroupSessionEngine
from trivia_battle.models import GroupSession, SessionStage
from trivia_battle.store import GROUP_KIND, MemoryStore
from tests.test_fixtures import (
    AsyncTestHelpers,
    FakeClock,
    FakeProvider,
    RecordingNotifier,
    TestFixtures,
    async_test,
)

CORRECT = TestFixtures.CORRECT
WRONG = TestFixtures.WRONG


class GroupEngineTestCase(unittest.TestCase):

    def setUp(self):
        self.store = MemoryStore()
        self.notifier = RecordingNotifier()
        self.clock = FakeClock()
        self.provider = FakeProvider(available=10)
        self.settings = TestFixtures.create_settings(admin_ids=["admin"])
        self.engine = GroupSessionEngine(
            self.provider, self.store, self.notifier, settings=self.settings, clock=self.clock
        )

    async def start(self, group_id="g1", count=3, difficulty="easy") -> GroupSession:
        return await self.engine.start(group_id, "starter", "general", difficulty,
                                       question_count=count, starter_name="Starter")


class TestStart(GroupEngineTestCase):
    """Test cases for session creation."""

    async def test_start_creates_ready_session(self):
        session = await self.start()

        self.assertTrue(session.session_id.startswith("quiz_"))
        self.assertEqual(session.stage, SessionStage.READY)
        self.assertEqual(session.current_index, -1)
        self.assertEqual(session.total_questions, 3)
        self.assertIs(self.engine.find_by_group("g1"), session)
        self.assertEqual(await self.store.find_active_session("g1"), session.session_id)
        self.assertEqual(self.notifier.questions, [])

    async def test_second_start_in_group_conflicts(self):
        await self.start()
        with self.assertRaises(ConflictError):
            await self.start()

    async def test_concurrent_starts_yield_one_session(self):
        self.provider.delay = 0.01

        results = await asyncio.gather(
            self.start(), self.start(), self.start(), return_exceptions=True
        )

        sessions = [r for r in results if isinstance(r, GroupSession)]
        conflicts = [r for r in results if isinstance(r, ConflictError)]
        self.assertEqual(len(sessions), 1)
        self.assertEqual(len(conflicts), 2)
        self.assertEqual(self.engine.registry.active_count(), 1)

    async def test_different_groups_run_independently(self):
        first = await self.start("g1")
        second = await self.start("g2")
        self.assertNotEqual(first.session_id, second.session_id)

    async def test_store_reported_session_conflicts_and_releases_key(self):
        self.store.open_rounds[(GROUP_KIND, "g1")] = "quiz_elsewhere"

        with self.assertRaises(ConflictError):
            await self.start()
        self.assertFalse(self.engine.registry.is_taken("g1"))

    async def test_provider_shortfall_releases_key(self):
        self.provider.available = 2

        with self.assertRaises(ProviderError):
            await self.start(count=5)
        self.assertFalse(self.engine.registry.is_taken("g1"))

    async def test_invalid_difficulty_releases_key(self):
        with self.assertRaises(ValueError):
            await self.start(difficulty="legendary")
        self.assertFalse(self.engine.registry.is_taken("g1"))

    async def test_question_count_over_maximum(self):
        with self.assertRaises(ValueError):
            await self.start(count=21)

    async def test_zero_question_count_is_rejected(self):
        with self.assertRaises(ValueError):
            await self.start(count=0)
        self.assertFalse(self.engine.registry.is_taken("g1"))
        self.assertEqual(self.provider.calls, [])

    async def test_omitted_question_count_uses_default(self):
        session = await self.start(count=None)
        self.assertEqual(session.total_questions, self.settings.default_question_count)


class TestAdvanceAndAnswers(GroupEngineTestCase):
    """Test cases for question flow and answer handling."""

    async def test_advance_delivers_first_question(self):
        session = await self.start()
        question = await self.engine.advance(session.session_id)

        self.assertEqual(session.current_index, 0)
        self.assertEqual(session.stage, SessionStage.QUESTION_ACTIVE)
        self.assertIs(question, session.questions[0])
        target, delivered, index, total, round_id = self.notifier.questions[0]
        self.assertEqual((target, index, total, round_id), ("g1", 1, 3, session.session_id))
        self.assertEqual(delivered.options, question.options)
        self.assertTrue(session.question_timer.is_armed)
        await AsyncTestHelpers.drain(self.engine)

    async def test_answer_scored_by_elapsed_time(self):
        """Easy answer after five seconds earns 35 points."""
        session = await self.start()
        await self.engine.advance(session.session_id)
        self.clock.advance(5)

        outcome = await self.engine.submit_answer(session.session_id, "p1", "Player One", CORRECT)

        self.assertTrue(outcome.is_correct)
        self.assertEqual(outcome.points_awarded, 35)
        self.assertEqual(outcome.cumulative_score, 35)
        self.assertEqual(outcome.correct_answer, "Right 1")
        self.assertEqual(outcome.question_index, 0)
        self.assertEqual(session.participants["p1"].answers[0].latency_ms, 5000)
        self.assertIn("Player One", self.notifier.results_for("g1")[-1])
        await AsyncTestHelpers.drain(self.engine)

    async def test_wrong_answer_scores_zero(self):
        session = await self.start()
        await self.engine.advance(session.session_id)

        outcome = await self.engine.submit_answer(session.session_id, "p1", "P1", WRONG)

        self.assertFalse(outcome.is_correct)
        self.assertEqual(outcome.points_awarded, 0)
        self.assertEqual(session.participants["p1"].answers[0].chosen_option, "Wrong 1a")
        await AsyncTestHelpers.drain(self.engine)

    async def test_first_answer_disarms_question_timer_and_arms_settle(self):
        session = await self.start()
        await self.engine.advance(session.session_id)
        question_timer = session.question_timer

        await self.engine.submit_answer(session.session_id, "p1", "P1", CORRECT)

        self.assertTrue(question_timer.is_cancelled)
        self.assertTrue(session.settle_pending)
        settle_timer = session.settle_timer
        self.assertTrue(settle_timer.is_armed)

        await self.engine.submit_answer(session.session_id, "p2", "P2", CORRECT)
        self.assertIs(session.settle_timer, settle_timer)
        await AsyncTestHelpers.drain(self.engine)

    async def test_duplicate_answer_ignored(self):
        session = await self.start()
        await self.engine.advance(session.session_id)

        first = await self.engine.submit_answer(session.session_id, "p1", "P1", CORRECT)
        second = await self.engine.submit_answer(session.session_id, "p1", "P1", WRONG)

        self.assertIsNotNone(first)
        self.assertIsNone(second)
        self.assertEqual(len(session.participants["p1"].answers), 1)
        self.assertEqual(session.participants["p1"].cumulative_score, first.points_awarded)
        await AsyncTestHelpers.drain(self.engine)

    async def test_answer_before_first_question_ignored(self):
        session = await self.start()
        self.assertIsNone(await self.engine.submit_answer(session.session_id, "p1", "P1", CORRECT))
        self.assertEqual(session.participants, {})

    async def test_answer_to_unknown_session_raises(self):
        with self.assertRaises(NotFoundError):
            await self.engine.submit_answer("quiz_missing", "p1", "P1", CORRECT)

    async def test_out_of_range_option_is_incorrect(self):
        session = await self.start()
        await self.engine.advance(session.session_id)

        outcome = await self.engine.submit_answer(session.session_id, "p1", "P1", 9)

        self.assertFalse(outcome.is_correct)
        self.assertIsNone(session.participants["p1"].answers[0].chosen_option)
        await AsyncTestHelpers.drain(self.engine)

    async def test_stale_advance_is_ignored(self):
        session = await self.start()
        await self.engine.advance(session.session_id)
        await self.engine.advance(session.session_id, expected_index=0)

        self.assertIsNone(await self.engine.advance(session.session_id, expected_index=0))
        self.assertEqual(session.current_index, 1)
        await AsyncTestHelpers.drain(self.engine)

    async def test_participants_keep_join_order(self):
        session = await self.start()
        await self.engine.advance(session.session_id)
        for user in ("p3", "p1", "p2"):
            await self.engine.submit_answer(session.session_id, user, user.upper(), WRONG)

        self.assertEqual(list(session.participants), ["p3", "p1", "p2"])
        await AsyncTestHelpers.drain(self.engine)

    async def test_delivery_failure_does_not_break_transition(self):
        self.engine.notifier = RecordingNotifier(fail=True)
        session = await self.start()

        question = await self.engine.advance(session.session_id)
        outcome = await self.engine.submit_answer(session.session_id, "p1", "P1", CORRECT)

        self.assertIsNotNone(question)
        self.assertTrue(outcome.is_correct)
        await AsyncTestHelpers.drain(self.engine)


class TestFullSession(GroupEngineTestCase):
    """Test cases for complete sessions and settlement."""

    async def play_question(self, session, answers, expected_index=None):
        await self.engine.advance(session.session_id, expected_index)
        for user_id, option in answers:
            await self.engine.submit_answer(session.session_id, user_id, user_id.upper(), option)

    async def test_three_question_session_ranks_and_settles(self):
        """P1 answers all three correctly, P2 none: P1 ranks first and wins."""
        session = await self.start()
        await self.play_question(session, [("p1", CORRECT), ("p2", WRONG)])
        await self.play_question(session, [("p1", CORRECT), ("p2", WRONG)], expected_index=0)
        await self.play_question(session, [("p1", CORRECT), ("p2", WRONG)], expected_index=1)

        self.assertIsNone(await self.engine.advance(session.session_id, expected_index=2))

        self.assertEqual(session.stage, SessionStage.ENDED)
        self.assertIsNone(self.engine.get_session(session.session_id))
        self.assertIsNone(await self.store.find_active_session("g1"))

        record = self.store.rounds[-1]
        self.assertEqual([s['user_id'] for s in record['standings']], ["p1", "p2"])
        self.assertEqual(record['winner_id'], "p1")

        p1 = await self.store.get_profile("p1")
        p2 = await self.store.get_profile("p2")
        self.assertEqual(p1.quizzes_won, 1)
        self.assertEqual(p1.points, 120)
        self.assertEqual(p1.correct_answers, 3)
        self.assertEqual(p1.accuracy, 100)
        self.assertEqual(p2.quizzes_won, 0)
        self.assertEqual(p2.quizzes_played, 1)
        self.assertEqual(p2.total_answers, 3)
        self.assertEqual(p2.accuracy, 0)
        self.assertIn("Quiz Finished", self.notifier.results_for("g1")[-1])

    async def test_no_winner_when_nobody_scores(self):
        session = await self.start(count=1)
        await self.play_question(session, [("p1", WRONG)])
        await self.engine.advance(session.session_id, expected_index=0)

        self.assertIsNone(self.store.rounds[-1]['winner_id'])
        self.assertEqual((await self.store.get_profile("p1")).quizzes_won, 0)

    async def test_group_can_start_again_after_end(self):
        session = await self.start(count=1)
        await self.play_question(session, [("p1", CORRECT)])
        await self.engine.advance(session.session_id, expected_index=0)

        again = await self.start(count=1)
        self.assertNotEqual(again.session_id, session.session_id)

    async def test_answer_after_end_raises(self):
        session = await self.start(count=1)
        await self.play_question(session, [("p1", CORRECT)])
        await self.engine.advance(session.session_id, expected_index=0)

        with self.assertRaises(NotFoundError):
            await self.engine.submit_answer(session.session_id, "p2", "P2", CORRECT)

    async def test_timers_drive_a_silent_session_to_the_end(self):
        self.engine.settings = TestFixtures.create_settings(question_timeout=0.05, settle_delay=0.05)
        self.engine.clock = asyncio.get_running_loop().time
        session = await self.start(count=2)

        await self.engine.advance(session.session_id)
        await asyncio.sleep(0.5)

        self.assertEqual(session.stage, SessionStage.ENDED)
        timeouts = [t for t in self.notifier.results_for("g1") if "Time's Up" in t]
        self.assertEqual(len(timeouts), 2)
        self.assertEqual(len(self.store.rounds), 1)

    async def test_settle_timer_advances_after_answer(self):
        self.engine.settings = TestFixtures.create_settings(question_timeout=30, settle_delay=0.05)
        session = await self.start()

        await self.engine.advance(session.session_id)
        await self.engine.submit_answer(session.session_id, "p1", "P1", CORRECT)
        await asyncio.sleep(0.3)

        self.assertEqual(session.current_index, 1)
        self.assertFalse(session.settle_pending)
        self.assertTrue(session.question_timer.is_armed)
        await AsyncTestHelpers.drain(self.engine)


class TestSubmitTimeoutRace(GroupEngineTestCase):
    """A timeout racing a submission advances the question exactly once."""

    async def test_submission_wins_race(self):
        session = await self.start()
        await self.engine.advance(session.session_id)

        outcome, timed_out = await asyncio.gather(
            self.engine.submit_answer(session.session_id, "p1", "P1", CORRECT),
            self.engine.timeout(session.session_id, 0)
        )

        self.assertIsNotNone(outcome)
        self.assertFalse(timed_out)
        self.assertEqual(session.current_index, 0)
        self.assertTrue(session.settle_pending)

        await self.engine.advance(session.session_id, expected_index=0)
        self.assertEqual(session.current_index, 1)
        self.assertEqual(len(self.notifier.questions), 2)
        await AsyncTestHelpers.drain(self.engine)

    async def test_timeout_wins_race(self):
        session = await self.start()
        await self.engine.advance(session.session_id)

        self.assertTrue(await self.engine.timeout(session.session_id, 0))
        self.assertEqual(session.current_index, 1)

        # Settle advance armed for question 0 arrives late
        self.assertIsNone(await self.engine.advance(session.session_id, expected_index=0))
        self.assertFalse(await self.engine.timeout(session.session_id, 0))
        self.assertEqual(session.current_index, 1)
        self.assertEqual(len(self.notifier.questions), 2)
        await AsyncTestHelpers.drain(self.engine)

    async def test_timeout_ignored_while_settle_pending(self):
        session = await self.start()
        await self.engine.advance(session.session_id)
        await self.engine.submit_answer(session.session_id, "p1", "P1", WRONG)

        self.assertFalse(await self.engine.timeout(session.session_id))
        self.assertEqual(session.current_index, 0)
        await AsyncTestHelpers.drain(self.engine)

    async def test_timeout_for_unknown_session_is_noop(self):
        self.assertFalse(await self.engine.timeout("quiz_missing", 0))


class TestStop(GroupEngineTestCase):
    """Test cases for stopping a session."""

    async def test_other_user_cannot_stop(self):
        session = await self.start()
        with self.assertRaises(PermissionDeniedError):
            await self.engine.stop(session.session_id, "someone_else")
        self.assertIs(self.engine.get_session(session.session_id), session)

    async def test_starter_stop_settles_current_scores(self):
        session = await self.start()
        await self.engine.advance(session.session_id)
        await self.engine.submit_answer(session.session_id, "p1", "P1", CORRECT)
        question_timer = session.question_timer
        settle_timer = session.settle_timer

        result = await self.engine.stop(session.session_id, "starter")

        self.assertEqual(session.stage, SessionStage.ENDED)
        self.assertEqual(result.winner_id, "p1")
        self.assertEqual(result.status, "ended")
        self.assertFalse(question_timer.is_armed)
        self.assertTrue(settle_timer.is_cancelled)
        self.assertEqual(len(self.store.rounds), 1)
        self.assertEqual((await self.store.get_profile("p1")).total_answers, 1)

    async def test_admin_can_stop(self):
        session = await self.start()
        result = await self.engine.stop(session.session_id, "admin")
        self.assertEqual(result.standings, [])

    async def test_stop_twice_raises(self):
        session = await self.start()
        await self.engine.stop(session.session_id, "starter")
        with self.assertRaises(NotFoundError):
            await self.engine.stop(session.session_id, "starter")
        self.assertEqual(len(self.store.rounds), 1)

    async def test_status_snapshot(self):
        session = await self.start()
        await self.engine.advance(session.session_id)
        await self.engine.submit_answer(session.session_id, "p1", "Player One", CORRECT)

        status = self.engine.get_status(session.session_id)

        self.assertEqual(status['current_question'], 1)
        self.assertEqual(status['total_questions'], 3)
        self.assertEqual(status['participants'], 1)
        self.assertEqual(status['stage'], "question_active")
        self.assertIn("Player One", status['scores'])
        self.assertIsNone(self.engine.get_status("quiz_missing"))
        await AsyncTestHelpers.drain(self.engine)


def _wrap_async_tests(*test_classes):
    for test_class in test_classes:
        for name in dir(test_class):
            method = getattr(test_class, name)
            if name.startswith("test_") and asyncio.iscoroutinefunction(method):
                setattr(test_class, name, async_test(method))


_wrap_async_tests(TestStart, TestAdvanceAndAnswers, TestFullSession, TestSubmitTimeoutRace, TestStop)


if __name__ == '__main__':
    unittest.main()
