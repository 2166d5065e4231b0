"""
Tests for question and result delivery through Discord, with mocked
discord objects.
"""
import unittest
from unittest.mock import AsyncMock, Mock, patch

import discord

from trivia_battle.notifier import AnswerView, DiscordNotifier, LoggingNotifier, build_question_embed
from tests.test_fixtures import MockDiscordObjects, TestFixtures, async_test


class TestQuestionEmbed(unittest.TestCase):

    def test_embed_shows_progress_and_text(self):
        question = TestFixtures.create_question()
        embed = build_question_embed(question, 2, 5)

        self.assertEqual(embed.title, "🎯 Question 2/5")
        self.assertEqual(embed.description, "What is 2+2?")
        self.assertEqual(len(embed.fields), 2)


class TestAnswerView(unittest.TestCase):
    """Test cases for the answer button view."""

    async def test_one_button_per_option_in_order(self):
        question = TestFixtures.create_question()
        view = AnswerView("quiz_abc", question, AsyncMock())

        labels = [item.label for item in view.children]
        custom_ids = [item.custom_id for item in view.children]
        self.assertEqual(labels, ["A. 3", "B. 4", "C. 5", "D. 22"])
        self.assertEqual(custom_ids, ["quiz_abc:0", "quiz_abc:1", "quiz_abc:2", "quiz_abc:3"])

    async def test_button_routes_round_and_option(self):
        callback = AsyncMock()
        view = AnswerView("challenge_xyz", TestFixtures.create_question(), callback)
        interaction = MockDiscordObjects.create_mock_interaction()

        await view.children[2].callback(interaction)

        callback.assert_awaited_once_with(interaction, "challenge_xyz", 2)


class TestDiscordNotifier(unittest.TestCase):
    """Test cases for DiscordNotifier delivery and failure handling."""

    def setUp(self):
        self.channel = MockDiscordObjects.create_mock_channel(12345)
        self.user = Mock()
        self.user.send = AsyncMock()
        self.client = MockDiscordObjects.create_mock_client(channels={12345: self.channel}, users={777: self.user})
        self.answer_callback = AsyncMock()
        self.notifier = DiscordNotifier(self.client, self.answer_callback)

    async def test_question_sent_to_channel_with_buttons(self):
        await self.notifier.deliver_question("12345", TestFixtures.create_question(), 1, 3, "quiz_abc")

        self.channel.send.assert_awaited_once()
        kwargs = self.channel.send.call_args.kwargs
        self.assertIsInstance(kwargs['embed'], discord.Embed)
        self.assertIsInstance(kwargs['view'], AnswerView)

    async def test_question_without_round_id_has_no_buttons(self):
        await self.notifier.deliver_question("12345", TestFixtures.create_question(), 1, 3)

        self.assertNotIn('view', self.channel.send.call_args.kwargs)

    async def test_result_sent_to_user_by_dm(self):
        await self.notifier.deliver_result("777", "✅ Correct!")

        self.user.send.assert_awaited_once_with("✅ Correct!")
        self.channel.send.assert_not_awaited()

    async def test_http_error_is_logged_not_raised(self):
        self.channel.send.side_effect = discord.HTTPException(Mock(status=500, reason="Server Error"), "boom")

        with patch.object(self.notifier.logger, 'error') as mock_error:
            await self.notifier.deliver_result("12345", "text")

        mock_error.assert_called_once()

    async def test_unknown_target_is_logged_not_raised(self):
        with patch.object(self.notifier.logger, 'error') as mock_error:
            await self.notifier.deliver_result("999", "text")

        mock_error.assert_called_once()
        self.client.fetch_user.assert_awaited_once_with(999)
        self.client.fetch_channel.assert_awaited_once_with(999)

    async def test_non_numeric_target_is_logged(self):
        with patch.object(self.notifier.logger, 'error') as mock_error:
            await self.notifier.deliver_result("not-an-id", "text")
        mock_error.assert_called_once()


class TestLoggingNotifier(unittest.TestCase):

    async def test_deliveries_are_logged(self):
        notifier = LoggingNotifier()
        with patch.object(notifier.logger, 'info') as mock_info:
            await notifier.deliver_question("g1", TestFixtures.create_question(), 1, 1)
            await notifier.deliver_result("g1", "done")
        self.assertEqual(mock_info.call_count, 2)


TestAnswerView.test_one_button_per_option_in_order = async_test(TestAnswerView.test_one_button_per_option_in_order)
TestAnswerView.test_button_routes_round_and_option = async_test(TestAnswerView.test_button_routes_round_and_option)
TestDiscordNotifier.test_question_sent_to_channel_with_buttons = async_test(
    TestDiscordNotifier.test_question_sent_to_channel_with_buttons
)
TestDiscordNotifier.test_question_without_round_id_has_no_buttons = async_test(
    TestDiscordNotifier.test_question_without_round_id_has_no_buttons
)
TestDiscordNotifier.test_result_sent_to_user_by_dm = async_test(TestDiscordNotifier.test_result_sent_to_user_by_dm)
TestDiscordNotifier.test_http_error_is_logged_not_raised = async_test(
    TestDiscordNotifier.test_http_error_is_logged_not_raised
)
TestDiscordNotifier.test_unknown_target_is_logged_not_raised = async_test(
    TestDiscordNotifier.test_unknown_target_is_logged_not_raised
)
TestDiscordNotifier.test_non_numeric_target_is_logged = async_test(TestDiscordNotifier.test_non_numeric_target_is_logged)
TestLoggingNotifier.test_deliveries_are_logged = async_test(TestLoggingNotifier.test_deliveries_are_logged)


if __name__ == '__main__':
    unittest.main()
