import logging
import os
from typing import Optional

import discord
from discord.ext import commands

from .challenge import ChallengeEngine
from .config_manager import ConfigManager
from .errors import ConflictError, NotFoundError, PermissionDeniedError, ProviderError, TriviaError
from .formatting import format_challenge_invite
from .group_session import GroupSessionEngine
from .notifier import DiscordNotifier
from .question_bank import JsonQuestionBank
from .store import JsonFileStore

logger = logging.getLogger(__name__)

DIFFICULTIES = ("easy", "medium", "hard")


def user_message_for(error: Exception) -> str:
    """Translate an engine error into a message for the player."""
    if isinstance(error, ConflictError):
        return f"⚠️ {error}"
    if isinstance(error, PermissionDeniedError):
        return f"🚫 {error}"
    if isinstance(error, ProviderError):
        return f"📚 {error}"
    if isinstance(error, NotFoundError):
        return "❓ That quiz or challenge is no longer active."
    if isinstance(error, ValueError):
        return f"❌ {error}"
    if isinstance(error, TriviaError):
        return f"❌ {error}"
    return "❌ Something went wrong. Please try again."


class ChallengeInviteView(discord.ui.View):
    """Accept and decline buttons shown to the challenged player."""

    def __init__(self, bot: "TriviaBot", challenge_id: str, timeout: float):
        super().__init__(timeout=timeout)
        self.bot = bot
        self.challenge_id = challenge_id

        accept = discord.ui.Button(
            label="Accept", style=discord.ButtonStyle.success, custom_id=f"accept:{challenge_id}"
        )
        decline = discord.ui.Button(
            label="Decline", style=discord.ButtonStyle.danger, custom_id=f"decline:{challenge_id}"
        )
        accept.callback = self._make_callback(True)
        decline.callback = self._make_callback(False)
        self.add_item(accept)
        self.add_item(decline)

    def _make_callback(self, accept: bool):
        async def callback(interaction: discord.Interaction):
            await self.bot.handle_challenge_response(interaction, self.challenge_id, accept)
        return callback


class TriviaBot(commands.Bot):
    """Discord bot hosting group trivia battles and 1-on-1 challenges"""

    def __init__(self, config=None):
        intents = discord.Intents.none()
        intents.guilds = True

        command_prefix = '!'
        if config and 'bot' in config:
            command_prefix = config['bot'].get('command_prefix', '!')

        super().__init__(
            command_prefix=command_prefix,
            intents=intents,
            help_command=None
        )

        self.app_config = config or {}
        self.config_manager: Optional[ConfigManager] = None
        self.question_bank: Optional[JsonQuestionBank] = None
        self.store: Optional[JsonFileStore] = None
        self.group_engine: Optional[GroupSessionEngine] = None
        self.challenge_engine: Optional[ChallengeEngine] = None

    async def setup_hook(self):
        """Called when the bot is starting up"""
        try:
            logger.info("Setting up bot components...")

            self.config_manager = ConfigManager()
            failures = self.config_manager.apply_config(self.app_config)
            for failure in failures:
                logger.warning(f"Ignoring invalid setting: {failure['error']}")
            settings = self.config_manager.get_game_settings()

            self.question_bank = JsonQuestionBank(self.config_manager.get_question_directory())
            loaded = self.question_bank.load_question_files()
            logger.info(f"Loaded {len(loaded)} question categories")

            self.store = JsonFileStore(self.config_manager.get_data_directory())
            notifier = DiscordNotifier(self, self.handle_answer)
            self.group_engine = GroupSessionEngine(self.question_bank, self.store, notifier, settings=settings)
            self.challenge_engine = ChallengeEngine(self.question_bank, self.store, notifier, settings=settings)

            await self.setup_commands()
            logger.info("Bot setup completed successfully")

        except Exception as e:
            logger.error(f"Error during bot setup: {e}", exc_info=True)
            raise

    async def setup_commands(self):
        """Register all slash commands"""

        @self.tree.command(name="help", description="Display available commands")
        async def help_command(interaction: discord.Interaction):
            await self.handle_help(interaction)

        @self.tree.command(name="quiz", description="Start a trivia battle in this channel")
        async def quiz_command(
            interaction: discord.Interaction,
            category: str = "general",
            difficulty: str = "medium",
            questions: Optional[int] = None
        ):
            await self.handle_quiz(interaction, category, difficulty, questions)

        @self.tree.command(name="stop", description="Stop the trivia battle in this channel")
        async def stop_command(interaction: discord.Interaction):
            await self.handle_stop(interaction)

        @self.tree.command(name="challenge", description="Challenge another player to a 1-on-1 battle")
        async def challenge_command(
            interaction: discord.Interaction,
            opponent: discord.User,
            category: str = "general",
            difficulty: str = "medium"
        ):
            await self.handle_challenge(interaction, opponent, category, difficulty)

        @self.tree.command(name="status", description="Show the current quiz or your open challenges")
        async def status_command(interaction: discord.Interaction):
            await self.handle_status(interaction)

        @self.tree.command(name="profile", description="Show trivia statistics for a player")
        async def profile_command(interaction: discord.Interaction, user: Optional[discord.User] = None):
            await self.handle_profile(interaction, user)

        @self.tree.command(name="leaderboard", description="Show the top players")
        async def leaderboard_command(interaction: discord.Interaction):
            await self.handle_leaderboard(interaction)

        @self.tree.command(name="block", description="Stop a player from receiving challenges (admins only)")
        async def block_command(interaction: discord.Interaction, user: discord.User):
            await self.handle_block(interaction, user)

        logger.info("Slash commands registered successfully")

    async def on_ready(self):
        """Called when the bot has successfully connected to Discord"""
        logger.info(f"Bot is ready! Logged in as {self.user}, in {len(self.guilds)} guilds")
        try:
            synced = await self.tree.sync()
            logger.info(f"Synced {len(synced)} slash commands")
        except discord.HTTPException as e:
            logger.error(f"Failed to sync slash commands: {e}")

    async def on_error(self, event, *args, **kwargs):
        """Handle general bot errors"""
        logger.error(f"An error occurred in event {event}", exc_info=True)

    async def close(self):
        if self.group_engine is not None:
            self.group_engine.shutdown()
        if self.challenge_engine is not None:
            self.challenge_engine.shutdown()
        await super().close()

    async def handle_help(self, interaction: discord.Interaction):
        """Handle /help command"""
        embed = discord.Embed(
            title="🎯 Trivia Battle Commands",
            description="Play trivia with your channel or challenge a friend",
            color=0x00ff00
        )
        embed.add_field(
            name="🎮 Group Battles",
            value=(
                "`/quiz [category] [difficulty] [questions]` - Start a battle in this channel\n"
                "`/stop` - Stop the battle (starter or admin only)\n"
                "`/status` - Show the current battle"
            ),
            inline=False
        )
        embed.add_field(
            name="⚔️ Challenges",
            value="`/challenge <opponent> [category] [difficulty]` - Start a 1-on-1 challenge",
            inline=False
        )
        embed.add_field(
            name="📊 Stats",
            value="`/profile [user]` - Player statistics\n`/leaderboard` - Top players",
            inline=False
        )
        embed.add_field(
            name="⚙️ Current Settings",
            value=f"```\n{self.config_manager.get_settings_summary()}\n```",
            inline=False
        )
        categories = self.question_bank.get_available_categories()
        if categories:
            embed.add_field(name="📚 Categories", value=", ".join(categories[:15]), inline=False)
        embed.set_footer(text=f"Difficulties: {', '.join(DIFFICULTIES)}")
        await interaction.response.send_message(embed=embed)

    async def handle_quiz(
        self,
        interaction: discord.Interaction,
        category: str,
        difficulty: str,
        questions: Optional[int]
    ):
        """Handle /quiz command"""
        await interaction.response.defer()
        try:
            session = await self.group_engine.start(
                str(interaction.channel_id),
                str(interaction.user.id),
                category.lower(),
                difficulty.lower(),
                question_count=questions,
                starter_name=interaction.user.display_name
            )
        except (TriviaError, ValueError) as e:
            await self.send_error_response(interaction, user_message_for(e), "❌ Could Not Start Quiz")
            return

        embed = discord.Embed(
            title="🎯 Trivia Battle Started!",
            description=(
                f"**Category:** {session.category}\n"
                f"**Difficulty:** {session.difficulty}\n"
                f"**Questions:** {session.total_questions}"
            ),
            color=0x00ff00
        )
        embed.set_footer(text=f"Started by {session.started_by_name}")
        try:
            await interaction.followup.send(embed=embed)
        except discord.HTTPException as e:
            logger.error(f"Failed to announce session {session.session_id}: {e}")
        # advance arms the first question timer
        await self.group_engine.advance(session.session_id)

    async def handle_stop(self, interaction: discord.Interaction):
        """Handle /stop command"""
        session = self.group_engine.find_by_group(str(interaction.channel_id))
        if session is None:
            await self.send_info_response(interaction, "There is no trivia battle running in this channel.")
            return

        await interaction.response.defer(ephemeral=True)
        try:
            await self.group_engine.stop(session.session_id, str(interaction.user.id))
        except TriviaError as e:
            await self.send_error_response(interaction, user_message_for(e), "❌ Could Not Stop Quiz")
            return
        await interaction.followup.send("🛑 Quiz stopped.", ephemeral=True)

    async def handle_challenge(
        self,
        interaction: discord.Interaction,
        opponent: discord.User,
        category: str,
        difficulty: str
    ):
        """Handle /challenge command"""
        if opponent.bot:
            await self.send_error_response(interaction, "⚠️ Bots cannot be challenged.", "❌ Invalid Opponent")
            return

        await interaction.response.defer()
        try:
            challenge = await self.challenge_engine.propose(
                str(interaction.user.id),
                interaction.user.display_name,
                str(opponent.id),
                opponent.display_name,
                category.lower(),
                difficulty.lower()
            )
        except (TriviaError, ValueError) as e:
            await self.send_error_response(interaction, user_message_for(e), "❌ Could Not Create Challenge")
            return

        expiry = self.challenge_engine.settings.challenge_expiry
        await interaction.followup.send(
            content=f"{opponent.mention}\n{format_challenge_invite(challenge, expiry)}",
            view=ChallengeInviteView(self, challenge.challenge_id, expiry)
        )

    async def handle_challenge_response(self, interaction: discord.Interaction, challenge_id: str, accept: bool):
        """Handle a click on an accept or decline button"""
        await interaction.response.defer(ephemeral=True)
        try:
            challenge = await self.challenge_engine.respond(challenge_id, str(interaction.user.id), accept)
        except TriviaError as e:
            await self.send_error_response(interaction, user_message_for(e), "❌ Challenge")
            return

        if accept:
            message = f"⚔️ Challenge accepted! {challenge.challenger_name} goes first; questions arrive by DM."
        else:
            message = "Challenge declined."
        await interaction.followup.send(message, ephemeral=True)

    async def handle_answer(self, interaction: discord.Interaction, round_id: str, option_index: int):
        """Route an answer button to the engine that owns the round"""
        await interaction.response.defer(ephemeral=True)
        user_id = str(interaction.user.id)
        try:
            if round_id.startswith("quiz_"):
                outcome = await self.group_engine.submit_answer(
                    round_id, user_id, interaction.user.display_name, option_index
                )
            elif round_id.startswith("challenge_"):
                outcome = await self.challenge_engine.submit_answer(round_id, user_id, option_index)
            else:
                logger.warning(f"Answer for unknown round id {round_id}")
                return
        except TriviaError as e:
            await self.send_error_response(interaction, user_message_for(e), "❌ Answer Not Recorded")
            return

        if outcome is None:
            await interaction.followup.send("⏳ That answer was not counted.", ephemeral=True)
        else:
            await interaction.followup.send("📝 Answer recorded!", ephemeral=True)

    async def handle_status(self, interaction: discord.Interaction):
        """Handle /status command"""
        embed = discord.Embed(title="📊 Trivia Status", color=0x6699ff)

        session = self.group_engine.find_by_group(str(interaction.channel_id))
        status = self.group_engine.get_status(session.session_id) if session else None
        if status:
            scores = "\n".join(f"{name}: {score}" for name, score in status['scores'].items()) or "No answers yet"
            embed.add_field(
                name="🎮 Battle in this channel",
                value=(
                    f"**Category:** {status['category']} ({status['difficulty']})\n"
                    f"**Question:** {status['current_question']}/{status['total_questions']}\n"
                    f"**Time remaining:** {int(status['time_remaining'])}s\n"
                    f"**Scores:**\n{scores}"
                ),
                inline=False
            )

        for challenge in self.challenge_engine.open_challenges_for(str(interaction.user.id)):
            status = self.challenge_engine.get_status(challenge.challenge_id)
            if status is None:
                continue
            embed.add_field(
                name=f"⚔️ {status['challenger']} vs {status['opponent']}",
                value=(
                    f"**Status:** {status['status']}\n"
                    f"**Question:** {status['current_question']}/{status['total_questions']}\n"
                    f"**Score:** {status['challenger_score']} - {status['opponent_score']}"
                ),
                inline=False
            )

        if not embed.fields:
            embed.description = "No active trivia battle here and no open challenges."
        await interaction.response.send_message(embed=embed, ephemeral=True)

    async def handle_profile(self, interaction: discord.Interaction, user: Optional[discord.User]):
        """Handle /profile command"""
        target = user or interaction.user
        profile = await self.store.get_profile(str(target.id))
        if profile is None:
            await self.send_info_response(interaction, f"{target.display_name} has not played yet.")
            return

        embed = discord.Embed(title=f"👤 {profile.name}", color=0x6699ff)
        embed.add_field(name="🏅 Rank", value=f"{profile.rank} (level {profile.level})", inline=True)
        embed.add_field(name="⭐ Points", value=str(profile.points), inline=True)
        embed.add_field(name="🎯 Accuracy", value=f"{profile.accuracy}%", inline=True)
        embed.add_field(
            name="🎮 Quizzes",
            value=f"{profile.quizzes_won} won of {profile.quizzes_played}",
            inline=True
        )
        embed.add_field(
            name="⚔️ Challenges",
            value=f"{profile.challenges_won} won, {profile.challenges_tied} tied of {profile.challenges_played}",
            inline=True
        )
        await interaction.response.send_message(embed=embed)

    async def handle_leaderboard(self, interaction: discord.Interaction):
        """Handle /leaderboard command"""
        profiles = await self.store.top_profiles(10)
        if not profiles:
            await self.send_info_response(interaction, "Nobody has played yet.")
            return

        lines = [
            f"**{i}.** {p.name} - {p.points} points ({p.rank})"
            for i, p in enumerate(profiles, start=1)
        ]
        embed = discord.Embed(title="🏆 Leaderboard", description="\n".join(lines), color=0xffd700)
        await interaction.response.send_message(embed=embed)

    async def handle_block(self, interaction: discord.Interaction, user: discord.User):
        """Handle /block command"""
        if not self.config_manager.is_admin(str(interaction.user.id)):
            await self.send_error_response(interaction, "Only bot admins can block players.", "🚫 Not Allowed")
            return

        self.store.block_user(str(user.id))
        logger.info(f"User {interaction.user.id} blocked {user.id}")
        await self.send_info_response(interaction, f"{user.display_name} can no longer be challenged.")

    async def send_error_response(self, interaction: discord.Interaction, message: str, title: str = "❌ Error"):
        """Send formatted error response to user"""
        try:
            embed = discord.Embed(
                title=title,
                description=message,
                color=0xff0000
            )
            embed.set_footer(text="If this error persists, try using /help for available commands")

            if interaction.response.is_done():
                await interaction.followup.send(embed=embed, ephemeral=True)
            else:
                await interaction.response.send_message(embed=embed, ephemeral=True)
        except discord.HTTPException:
            logger.error("Failed to send error response to user")

    async def send_info_response(self, interaction: discord.Interaction, message: str, title: str = "ℹ️ Information"):
        """Send formatted info response to user"""
        try:
            embed = discord.Embed(
                title=title,
                description=message,
                color=0x6699ff
            )

            if interaction.response.is_done():
                await interaction.followup.send(embed=embed, ephemeral=True)
            else:
                await interaction.response.send_message(embed=embed, ephemeral=True)
        except discord.HTTPException:
            logger.error("Failed to send info response to user")


async def run_bot(token=None, config=None):
    """Run the bot with proper error handling"""
    if not token:
        token = os.getenv('DISCORD_BOT_TOKEN')

    if not token:
        logger.error("No Discord bot token provided")
        return

    bot = TriviaBot(config)

    try:
        logger.info("Starting Trivia Battle Bot...")
        await bot.start(token)
    except discord.LoginFailure:
        logger.error("Invalid bot token provided")
    except discord.HTTPException as e:
        logger.error(f"HTTP error occurred: {e}")
    finally:
        if not bot.is_closed():
            await bot.close()
