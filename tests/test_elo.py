"""Tests for the Elo rating updater."""

import asyncio

import pytest

from config import Config
from db.database import IMAGE, PLAYER
from game.services.elo_service import (
    EloRatingUpdater,
    compute_update,
    expected_score,
    miss_penalty_points,
)
from game.services.scoring_service import score
from models import PerformanceScore, ScoreOverride


def perf(s: float, ratio: float = 1.0) -> PerformanceScore:
    return PerformanceScore(ratio=ratio, score=s)


class TestExpectedScore:
    def test_equal_ratings(self):
        assert expected_score(1500, 1500) == 0.5

    def test_four_hundred_points_is_ten_to_one(self):
        assert expected_score(1900, 1500) == pytest.approx(10 / 11)
        assert expected_score(1500, 1900) == pytest.approx(1 / 11)


class TestMissPenalty:
    def test_scales_linearly_to_seven(self):
        assert miss_penalty_points(0) == 0
        assert miss_penalty_points(1) == 3
        assert miss_penalty_points(3) == 9
        assert miss_penalty_points(4) == 11
        assert miss_penalty_points(7) == 20

    def test_capped_above_seven(self):
        assert miss_penalty_points(10) == 20


class TestComputeUpdate:
    def test_score_equal_to_expectation_gives_no_change(self):
        expected = expected_score(1600, 1400)
        result = compute_update(1600, 1400, perf(expected), misses=0)
        assert result.base_delta == 0
        assert result.player_after == 1600
        assert result.image_after == 1400

    def test_first_round_at_baseline(self):
        result = compute_update(1500, 1500, score(180000, 180000), misses=0)
        assert result.expected == 0.5
        assert result.base_delta == 1
        assert result.penalty == 0
        assert result.player_after == 1501
        assert result.image_after == 1499

    def test_image_mirrors_only_performance_delta(self):
        result = compute_update(1500, 1500, perf(0.9), misses=7)
        # round(20 * 0.4) = 8, penalty 20
        assert result.base_delta == 8
        assert result.penalty == 20
        assert result.total_delta == -12
        assert result.player_after == 1488
        assert result.image_after == 1492

    def test_forced_failure_parameters(self):
        override = ScoreOverride(forced_score=0.05, k_factor=16)
        result = compute_update(1500, 1500, score(1080000, 180000, override), misses=10, override=override)
        assert result.k_factor == 16
        assert result.base_delta == -7
        assert result.penalty == 20
        assert result.player_after == 1473
        assert result.image_after == 1507

    def test_miss_penalty_override(self):
        result = compute_update(1500, 1500, perf(0.5), misses=10, override=ScoreOverride(miss_penalty=0))
        assert result.penalty == 0
        assert result.total_delta == 0


class TestApplyRound:
    @pytest.mark.asyncio
    async def test_creates_ratings_on_first_round(self, db):
        updater = EloRatingUpdater(db)
        result = await updater.apply_round("player1", "img1", score(180000, 180000), 0, display_name="Ann")

        assert result.player_before == 1500
        assert result.player_after == 1501
        assert result.image_after == 1499

        player = await db.fetch_rating(PLAYER, "player1")
        image = await db.fetch_rating(IMAGE, "img1")
        assert player.rating == 1501
        assert player.games_played == 1
        assert player.display_name == "Ann"
        assert image.rating == 1499
        assert image.attempts == 1

    @pytest.mark.asyncio
    async def test_new_ratings_start_at_configured_rating(self, db, monkeypatch):
        monkeypatch.setattr(Config, "INITIAL_RATING", 1200)

        result = await EloRatingUpdater(db).apply_round("player1", "img1", perf(0.5), 0)

        assert result.player_before == 1200
        assert result.image_before == 1200
        assert (await db.fetch_rating(PLAYER, "player1")).rating == 1200

    @pytest.mark.asyncio
    async def test_uses_stored_ratings(self, db):
        await db.insert_rating(PLAYER, "player1", 1600)
        await db.insert_rating(IMAGE, "img1", 1400)

        updater = EloRatingUpdater(db)
        result = await updater.apply_round("player1", "img1", perf(expected_score(1600, 1400)), 0)

        assert result.player_before == 1600
        assert result.image_before == 1400
        assert result.base_delta == 0

    @pytest.mark.asyncio
    async def test_renames_player(self, db):
        await db.insert_rating(PLAYER, "player1", 1500, display_name="Old")

        updater = EloRatingUpdater(db)
        await updater.apply_round("player1", "img1", perf(0.5), 0, display_name="New")

        player = await db.fetch_rating(PLAYER, "player1")
        assert player.display_name == "New"

    @pytest.mark.asyncio
    async def test_concurrent_updates_are_not_lost(self, db):
        """Two settlements reading the same stale rating must both count."""
        updater = EloRatingUpdater(db)
        results = await asyncio.gather(
            updater.apply_round("player1", "img1", perf(0.9), 0),
            updater.apply_round("player1", "img2", perf(0.9), 0),
        )

        player = await db.fetch_rating(PLAYER, "player1")
        assert player.games_played == 2
        assert player.rating == 1500 + sum(r.total_delta for r in results)
