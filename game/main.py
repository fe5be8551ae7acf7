"""Terminal entry point for playing rounds against the local database."""

import asyncio
import logging
import sys
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from config import Config
from db.database import Database
from game.services.level_service import level_for_xp
from game.services.round_service import RoundService
from models import Target
from utils.formatting import format_leaderboard, format_level, format_player_stats, format_settlement

# Configure logging
logging.basicConfig(
    level=getattr(logging, Config.LOG_LEVEL, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

HELP_TEXT = """Commands:
  start <image_id> <player_id> <cx> <cy> <radius> <width> <height> [name]
  click <x> <y> [rendered_width rendered_height]
  giveup
  board
  stats <player_id>
  xp <player_id> <amount>
  quit"""


def _floats(values: list[str]) -> Optional[list[float]]:
    try:
        return [float(v) for v in values]
    except ValueError:
        return None


def parse_command(line: str) -> Optional[tuple[str, dict[str, Any]]]:
    """Parse a command line into (name, arguments). Returns None if malformed."""
    parts = line.split()
    if not parts:
        return None
    name, args = parts[0].lower(), parts[1:]

    if name == "start" and len(args) in (7, 8):
        numbers = _floats(args[2:7])
        if numbers is None:
            return None
        cx, cy, radius, width, height = numbers
        try:
            target = Target(image_id=args[0], cx=cx, cy=cy, radius=radius, width=width, height=height)
        except ValidationError:
            return None
        return ("start", {"target": target, "player_id": args[1], "display_name": args[7] if len(args) == 8 else None})

    if name == "click" and len(args) in (2, 4):
        numbers = _floats(args)
        if numbers is None:
            return None
        parsed = {"x": numbers[0], "y": numbers[1], "rendered_width": None, "rendered_height": None}
        if len(numbers) == 4:
            if numbers[2] <= 0 or numbers[3] <= 0:
                return None
            parsed["rendered_width"], parsed["rendered_height"] = numbers[2], numbers[3]
        return ("click", parsed)

    if name == "stats" and len(args) == 1:
        return ("stats", {"player_id": args[0]})

    if name == "xp" and len(args) == 2:
        try:
            amount = int(args[1])
        except ValueError:
            return None
        if amount <= 0:
            return None
        return ("xp", {"player_id": args[0], "amount": amount})

    if name in ("giveup", "board", "quit", "help") and not args:
        return (name, {})

    return None


class TerminalGame:
    """Runs commands against a round service, one current round at a time."""

    def __init__(self, db: Database):
        self.db = db
        self.rounds = RoundService(db)
        self.current: Optional[tuple[str, str]] = None

    async def handle(self, name: str, args: dict[str, Any]) -> str:
        if name == "help":
            return HELP_TEXT

        if name == "start":
            success, message = self.rounds.start_round(args["target"], args["player_id"], args["display_name"])
            if not success:
                return message
            self.current = (args["player_id"], args["target"].image_id)
            return "Round started! Find the target."

        if name == "click":
            if self.current is None:
                return "No active round! Start one with `start`."
            summary = await self.rounds.register_click(*self.current, **args)
            if summary is None:
                controller = self.rounds.get_round(*self.current)
                if controller is None:
                    return "No active round! Start one with `start`."
                return f"Miss! ({controller.session.miss_count}/{Config.MAX_MISSES})"
            self.current = None
            return format_settlement(summary)

        if name == "giveup":
            if self.current is None:
                return "No active round to give up!"
            summary = await self.rounds.give_up(*self.current)
            self.current = None
            return format_settlement(summary) if summary else "No active round to give up!"

        if name == "board":
            return format_leaderboard(await self.db.get_leaderboard())

        if name == "stats":
            player = await self.db.get_player_stats(args["player_id"])
            rank = await self.db.get_player_rank(args["player_id"])
            return format_player_stats(player, rank)

        if name == "xp":
            total = await self.db.award_xp(args["player_id"], args["amount"])
            if total is None:
                return f"Unknown player: {args['player_id']}"
            before = level_for_xp(total - args["amount"])
            after = level_for_xp(total)
            lines = [f"+{args['amount']} XP. {format_level(total)}"]
            if after > before:
                lines.append(f"Level up! You reached level {after}.")
            logger.info(f"Awarded {args['amount']} XP to {args['player_id']} (total {total})")
            return "\n".join(lines)

        return HELP_TEXT


async def main():
    """Main entry point."""
    db = Database(Config.DATABASE_PATH)
    await db.connect()
    logger.info(f"Connected to database: {Config.DATABASE_PATH}")

    game = TerminalGame(db)
    print(HELP_TEXT)
    try:
        while True:
            line = await asyncio.to_thread(sys.stdin.readline)
            if not line:
                break
            command = parse_command(line)
            if command is None:
                print("Couldn't understand that. Type `help` for commands.")
                continue
            name, args = command
            if name == "quit":
                break
            print(await game.handle(name, args))
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    finally:
        await db.close()


if __name__ == "__main__":
    asyncio.run(main())
