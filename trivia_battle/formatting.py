"""
Plain-text messages delivered to players through the Notifier.
"""
from .models import AnswerOutcome, Challenge, GroupSession, Question, RoundResult

MEDALS = ("🥇", "🥈", "🥉")


def format_answer_result(user_name: str, outcome: AnswerOutcome) -> str:
    if outcome.is_correct:
        return (
            f"✅ **Correct!** {user_name} answered correctly!\n\n"
            f"🎯 Points: +{outcome.points_awarded}\n"
            f"📊 Total: {outcome.cumulative_score}"
        )
    return f"❌ **Incorrect!** {user_name}, the correct answer was: **{outcome.correct_answer}**"


def format_timeout(question: Question) -> str:
    return f"⏰ **Time's Up!**\n\nThe correct answer was: **{question.correct_answer}**"


def format_session_results(session: GroupSession, result: RoundResult) -> str:
    lines = ["🏁 **Quiz Finished!**", "", "📊 **Final Results:**", ""]
    if not result.standings:
        lines.append("Nobody answered this time.")
    for standing in result.standings:
        index = standing.position - 1
        medal = MEDALS[index] if index < len(MEDALS) else f"{standing.position}."
        lines.append(f"{medal} **{standing.name}** - {standing.score} points")

    if result.winner_id:
        lines.append("")
        lines.append(f"🎉 **Winner:** {result.winner_name} with {result.standings[0].score} points!")
    lines.append(f"🏆 **Category:** {session.category} | **Difficulty:** {session.difficulty}")
    return "\n".join(lines)


def format_challenge_invite(challenge: Challenge, expiry_seconds: float) -> str:
    return (
        f"⚔️ **Challenge Created!**\n\n"
        f"Challenger: **{challenge.challenger_name}**\n"
        f"Opponent: **{challenge.opponent_name}**\n"
        f"Category: **{challenge.category}**\n"
        f"Difficulty: **{challenge.difficulty}**\n\n"
        f"{challenge.opponent_name} has {int(expiry_seconds)} seconds to accept."
    )


def format_turn_result(outcome: AnswerOutcome, timed_out: bool = False) -> str:
    if timed_out:
        return f"⏰ **Time's Up!**\n\nCorrect answer: **{outcome.correct_answer}**"
    if outcome.is_correct:
        return f"✅ **Correct!** +{outcome.points_awarded} points\n\nCorrect answer: **{outcome.correct_answer}**"
    return f"❌ **Incorrect!**\n\nCorrect answer: **{outcome.correct_answer}**"


def format_challenge_result(challenge: Challenge) -> str:
    text = (
        f"⚔️ **Challenge Results!**\n\n"
        f"🎯 Category: **{challenge.category}**\n"
        f"📊 Difficulty: **{challenge.difficulty}**\n\n"
        f"👤 {challenge.challenger_name}: **{challenge.challenger_score}** points\n"
        f"👤 {challenge.opponent_name}: **{challenge.opponent_score}** points\n\n"
    )
    if challenge.winner_id:
        return text + f"🏆 **Winner:** {challenge.winner_name}!\n🎉 Congratulations!"
    return text + "🤝 **It's a tie!**"


def format_challenge_declined(challenge: Challenge) -> str:
    return f"❌ {challenge.opponent_name} declined your challenge."


def format_challenge_expired(challenge: Challenge) -> str:
    return f"⌛ Your challenge to {challenge.opponent_name} expired without a response."
