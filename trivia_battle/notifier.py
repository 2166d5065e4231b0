"""
Delivery of questions and results to players.
"""
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Optional

import discord

from .models import Question

AnswerCallback = Callable[[discord.Interaction, str, int], Awaitable[Any]]


class Notifier(ABC):
    """Messaging collaborator. Delivery failures are logged, never raised."""

    @abstractmethod
    async def deliver_question(
        self,
        target: str,
        question: Question,
        index: int,
        total: int,
        round_id: Optional[str] = None
    ) -> None:
        """Present question ``index`` (1-based) of ``total`` to a channel or user."""

    @abstractmethod
    async def deliver_result(self, target: str, text: str) -> None:
        """Send a plain-text result to a channel or user."""


class LoggingNotifier(Notifier):
    """Notifier that only logs, for headless runs."""

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    async def deliver_question(self, target, question, index, total, round_id=None) -> None:
        self.logger.info(f"[{target}] Question {index}/{total}: {question.text} {list(question.options)}")

    async def deliver_result(self, target, text) -> None:
        self.logger.info(f"[{target}] {text}")


class AnswerView(discord.ui.View):
    """One button per answer option, in stored order."""

    def __init__(self, round_id: str, question: Question, answer_callback: AnswerCallback):
        super().__init__(timeout=question.time_limit + 5)
        self.round_id = round_id
        self.answer_callback = answer_callback
        for index, option in enumerate(question.options):
            button = discord.ui.Button(
                label=f"{chr(65 + index)}. {option}"[:80],
                style=discord.ButtonStyle.primary,
                custom_id=f"{round_id}:{index}"[:100]
            )
            button.callback = self._make_callback(index)
            self.add_item(button)

    def _make_callback(self, option_index: int):
        async def callback(interaction: discord.Interaction):
            await self.answer_callback(interaction, self.round_id, option_index)
        return callback


def build_question_embed(question: Question, index: int, total: int) -> discord.Embed:
    embed = discord.Embed(
        title=f"🎯 Question {index}/{total}",
        description=question.text,
        color=0x00ff00
    )
    embed.add_field(
        name="⏱️ Time Limit",
        value=f"{int(question.time_limit)} seconds",
        inline=True
    )
    embed.add_field(
        name="📚 Category",
        value=f"{question.category or 'General'} ({question.difficulty})",
        inline=True
    )
    embed.set_footer(text=f"Worth {question.points} points plus a speed bonus")
    return embed


class DiscordNotifier(Notifier):
    """Delivers to Discord text channels, or to users by direct message."""

    def __init__(self, client: discord.Client, answer_callback: Optional[AnswerCallback] = None):
        self.logger = logging.getLogger(__name__)
        self.client = client
        self.answer_callback = answer_callback

    async def _resolve(self, target: str):
        target_id = int(target)
        channel = self.client.get_channel(target_id)
        if channel is not None:
            return channel
        user = self.client.get_user(target_id)
        if user is not None:
            return user
        try:
            return await self.client.fetch_user(target_id)
        except discord.NotFound:
            return await self.client.fetch_channel(target_id)

    async def deliver_question(self, target, question, index, total, round_id=None) -> None:
        try:
            destination = await self._resolve(target)
            embed = build_question_embed(question, index, total)
            if round_id and self.answer_callback is not None:
                await destination.send(embed=embed, view=AnswerView(round_id, question, self.answer_callback))
            else:
                await destination.send(embed=embed)
        except (discord.HTTPException, ValueError) as e:
            self.logger.error(
                f"Failed to deliver question {index}/{total} to {target}: {e}",
                extra={'event_type': 'question_delivery_failed', 'target': target, 'round_id': round_id}
            )

    async def deliver_result(self, target, text) -> None:
        try:
            destination = await self._resolve(target)
            await destination.send(text)
        except (discord.HTTPException, ValueError) as e:
            self.logger.error(
                f"Failed to deliver result to {target}: {e}",
                extra={'event_type': 'result_delivery_failed', 'target': target}
            )
