"""Tests for the terminal command parser and handler."""

import pytest

from game.main import TerminalGame, parse_command
from game.services.round_service import RoundService


class TestParseCommand:
    def test_start(self):
        name, args = parse_command("start img1 player1 100 100 20 1000 800")
        assert name == "start"
        assert args["target"].image_id == "img1"
        assert args["target"].radius == 20
        assert args["player_id"] == "player1"
        assert args["display_name"] is None

    def test_start_with_name(self):
        _, args = parse_command("start img1 player1 100 100 20 1000 800 Ann")
        assert args["display_name"] == "Ann"

    def test_start_rejects_bad_numbers(self):
        assert parse_command("start img1 player1 x 100 20 1000 800") is None
        assert parse_command("start img1 player1 100 100 0 1000 800") is None
        assert parse_command("start img1 player1 100 100 20") is None

    def test_click(self):
        assert parse_command("click 10 20") == (
            "click",
            {"x": 10.0, "y": 20.0, "rendered_width": None, "rendered_height": None},
        )

    def test_click_with_rendered_size(self):
        _, args = parse_command("CLICK 10 20 500 400")
        assert args["rendered_width"] == 500
        assert args["rendered_height"] == 400

    def test_click_rejects_zero_size(self):
        assert parse_command("click 10 20 0 400") is None

    def test_simple_commands(self):
        assert parse_command("giveup") == ("giveup", {})
        assert parse_command("board") == ("board", {})
        assert parse_command("quit") == ("quit", {})
        assert parse_command("stats player1") == ("stats", {"player_id": "player1"})

    def test_xp(self):
        assert parse_command("xp player1 40") == ("xp", {"player_id": "player1", "amount": 40})
        assert parse_command("xp player1 lots") is None
        assert parse_command("xp player1 0") is None
        assert parse_command("xp player1") is None

    def test_garbage(self):
        assert parse_command("") is None
        assert parse_command("   ") is None
        assert parse_command("dance") is None
        assert parse_command("giveup now") is None


class TestTerminalGame:
    @pytest.mark.asyncio
    async def test_play_a_round(self, db, clock):
        game = TerminalGame(db)
        game.rounds = RoundService(db, clock=clock)

        assert "Round started" in await game.handle(*parse_command("start img1 player1 100 100 20 1000 800 Ann"))

        clock.advance(1000)
        assert "Miss! (1/10)" in await game.handle(*parse_command("click 900 700"))

        clock.advance(1000)
        result = await game.handle(*parse_command("click 100 100"))
        assert "You found it!" in result
        assert game.current is None

        board = await game.handle(*parse_command("board"))
        assert "Ann" in board

        stats = await game.handle(*parse_command("stats player1"))
        assert "Rank: #1" in stats

    @pytest.mark.asyncio
    async def test_click_without_round(self, db):
        game = TerminalGame(db)
        assert "No active round" in await game.handle(*parse_command("click 1 1"))
        assert "No active round" in await game.handle(*parse_command("giveup"))

    @pytest.mark.asyncio
    async def test_award_xp(self, db):
        game = TerminalGame(db)
        await db.set_display_name("player1", "Ann")

        result = await game.handle(*parse_command("xp player1 60"))
        assert result == "+60 XP. Level 1 (60/100 XP)"

        result = await game.handle(*parse_command("xp player1 90"))
        assert "Level 2 (50/182 XP)" in result
        assert "Level up! You reached level 2." in result

        stats = await game.handle(*parse_command("stats player1"))
        assert "Level 2" in stats

    @pytest.mark.asyncio
    async def test_award_xp_unknown_player(self, db):
        game = TerminalGame(db)
        assert await game.handle(*parse_command("xp nobody 10")) == "Unknown player: nobody"
