"""Text formatting utilities for round results and standings."""

from collections.abc import Sequence
from typing import Optional

from game.services.level_service import level_progress
from models import PlayerRating, RoundOutcome, SettlementSummary

OUTCOME_HEADLINES = {
    RoundOutcome.SUCCESS: "You found it!",
    RoundOutcome.HARD_STOP: "Better luck next time! (10 misses)",
    RoundOutcome.GIVE_UP: "Better luck next time!",
}


def format_duration(ms: float) -> str:
    """Format milliseconds as seconds with two decimals."""
    return f"{ms / 1000:.2f}s"


def format_signed(value: int) -> str:
    return f"+{value}" if value > 0 else str(value)


def format_stars(stars: int) -> str:
    return "★" * stars + "☆" * (5 - stars)


def format_settlement(summary: SettlementSummary) -> str:
    """Format a settlement summary for display."""
    lines = [OUTCOME_HEADLINES[summary.outcome], ""]

    time_line = f"Time: {format_duration(summary.used_ms)}"
    if summary.miss_count > 0:
        time_line += f" ({summary.miss_count} misses)"
    lines.append(time_line)

    pct = summary.percent_vs_baseline
    direction = "faster" if pct > 0 else "slower"
    lines.append(f"Performance vs baseline: {abs(pct)}% {direction}")

    if summary.stars is not None:
        lines.append(f"Rating: {format_stars(summary.stars)}")

    if summary.practice:
        lines.append("Practice run — rating unchanged.")
    elif summary.rating_before is not None and summary.rating_after is not None:
        lines.append(
            f"Elo: {summary.rating_before:.0f} → {summary.rating_after:.0f} "
            f"({format_signed(summary.rating_delta)})"
        )
        if summary.penalty > 0:
            lines.append(f"Miss penalty: -{summary.penalty}")

    if summary.save_error:
        lines.append("")
        lines.append(f"⚠️ Couldn't save this round: {summary.save_error}")

    return "\n".join(lines)


def format_leaderboard(players: Sequence[PlayerRating]) -> str:
    """Format the rating leaderboard."""
    if not players:
        return "No rated players yet. Play a round!"

    lines = ["# Leaderboard", ""]
    for i, player in enumerate(players, 1):
        name = player.display_name or player.player_id
        lines.append(f"{i}. **{name}** — {player.rating:.0f} ({player.games_played} rounds)")
    return "\n".join(lines)


def format_player_stats(player: Optional[PlayerRating], rank: int) -> str:
    """Format a single player's stats."""
    if player is None:
        return "No stats yet. Play a round!"

    name = player.display_name or player.player_id
    return "\n".join(
        [
            f"# Stats for {name}",
            "",
            f"Rating: {player.rating:.0f}",
            f"Rank: #{rank}",
            f"Rated rounds: {player.games_played}",
            format_level(player.xp),
        ]
    )


def format_level(xp: int) -> str:
    """Format a player's level and progress within it, e.g. ``Level 2 (50/182 XP)``."""
    info = level_progress(xp)
    have = max(0, xp) - info.current_level_xp
    need = info.next_level_xp - info.current_level_xp
    return f"Level {info.level} ({have}/{need} XP)"
