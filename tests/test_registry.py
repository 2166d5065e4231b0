"""
Unit tests for the session and challenge registries.
"""
import threading
import unittest
from datetime import datetime

from trivia_battle.errors import ConflictError
from trivia_battle.models import Challenge, GroupSession
from trivia_battle.registry import ChallengeRegistry, SessionRegistry, pair_key


def make_session(session_id="quiz_1", group_id="g1") -> GroupSession:
    return GroupSession(
        session_id=session_id,
        group_id=group_id,
        category="general",
        difficulty="easy",
        questions=(),
        started_by="u1"
    )


class TestPairKey(unittest.TestCase):

    def test_order_independent(self):
        self.assertEqual(pair_key("alice", "bob"), pair_key("bob", "alice"))
        self.assertEqual(pair_key(2, 1), "1:2")


class TestSessionRegistry(unittest.TestCase):
    """Test cases for one-session-per-group enforcement."""

    def setUp(self):
        self.registry = SessionRegistry()

    def test_reserve_then_bind(self):
        session = make_session()
        self.registry.reserve("g1")

        self.assertTrue(self.registry.is_taken("g1"))
        self.assertIsNone(self.registry.get("g1"))

        self.registry.bind("g1", session)
        self.assertIs(self.registry.get("g1"), session)
        self.assertIs(self.registry.get_by_id("quiz_1"), session)
        self.assertEqual(self.registry.active_count(), 1)

    def test_second_reservation_conflicts(self):
        self.registry.reserve("g1")
        with self.assertRaises(ConflictError):
            self.registry.reserve("g1")

    def test_bind_without_reservation_conflicts(self):
        with self.assertRaises(ConflictError):
            self.registry.bind("g1", make_session())

    def test_release_clears_both_indexes(self):
        self.registry.reserve("g1")
        self.registry.bind("g1", make_session())
        self.registry.release("g1")

        self.assertFalse(self.registry.is_taken("g1"))
        self.assertIsNone(self.registry.get_by_id("quiz_1"))
        self.registry.reserve("g1")

    def test_release_of_reservation_only(self):
        self.registry.reserve("g1")
        self.registry.release("g1")
        self.assertEqual(self.registry.active(), [])
        self.assertFalse(self.registry.is_taken("g1"))

    def test_concurrent_reservations_single_winner(self):
        """Only one thread wins a reservation race for the same key."""
        wins = []
        conflicts = []
        barrier = threading.Barrier(8)

        def worker():
            barrier.wait()
            try:
                self.registry.reserve("g1")
                wins.append(1)
            except ConflictError:
                conflicts.append(1)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(len(wins), 1)
        self.assertEqual(len(conflicts), 7)


class TestChallengeRegistry(unittest.TestCase):

    def test_keyed_by_unordered_pair(self):
        registry = ChallengeRegistry()
        challenge = Challenge(
            challenge_id="challenge_1",
            challenger_id="a",
            challenger_name="A",
            opponent_id="b",
            opponent_name="B",
            category="general",
            difficulty="easy",
            questions=(),
            expires_at=datetime.now()
        )
        registry.reserve(pair_key("a", "b"))
        registry.bind(pair_key("a", "b"), challenge)

        self.assertIs(registry.get(pair_key("b", "a")), challenge)
        with self.assertRaises(ConflictError):
            registry.reserve(pair_key("b", "a"))


if __name__ == '__main__':
    unittest.main()
