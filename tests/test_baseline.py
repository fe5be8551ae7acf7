"""Tests for baseline estimation."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from config import Config
from game.services.baseline_service import BaselineEstimator, percentile


async def seed_durations(db, make_record, image_id, durations):
    for duration in durations:
        await db.append_round_record(make_record(image_id=image_id, used_duration_ms=duration))


class TestPercentile:
    def test_empty(self):
        assert percentile([], 0.6) is None

    def test_lower_nearest_rank(self):
        # floor(0.6 * 9) = 5 -> sixth smallest
        assert percentile(list(range(10, 0, -1)), 0.6) == 6

    def test_single_value(self):
        assert percentile([42], 0.6) == 42


class TestEstimateBaseline:
    @pytest.mark.asyncio
    async def test_no_data_returns_default(self, db):
        estimator = BaselineEstimator(db)
        assert await estimator.estimate_baseline("img1") == Config.DEFAULT_BASELINE_MS
        assert await estimator.estimate_baseline("img1") == 180000

    @pytest.mark.asyncio
    async def test_uses_image_history_with_enough_samples(self, db, make_record):
        durations = [200000 + i * 10000 for i in range(10)]
        await seed_durations(db, make_record, "img1", durations)
        # Lots of fast global data that must be ignored
        await seed_durations(db, make_record, "img2", [500000] * 20)

        estimator = BaselineEstimator(db)
        assert await estimator.estimate_baseline("img1") == 250000

    @pytest.mark.asyncio
    async def test_falls_back_to_global_history(self, db, make_record):
        await seed_durations(db, make_record, "img1", [900000] * 9)
        await seed_durations(db, make_record, "img2", [300000] * 11)

        estimator = BaselineEstimator(db)
        # 20 global samples: floor(0.6 * 19) = 11 -> first of the 900000s
        assert await estimator.estimate_baseline("img1") == 900000

    @pytest.mark.asyncio
    async def test_global_history_for_unplayed_image(self, db, make_record):
        await seed_durations(db, make_record, "img2", [400000] * 3)

        estimator = BaselineEstimator(db)
        assert await estimator.estimate_baseline("new-image") == 400000

    @pytest.mark.asyncio
    async def test_fast_history_is_floored_to_default(self, db, make_record):
        await seed_durations(db, make_record, "img1", [1000 * i for i in range(1, 13)])

        estimator = BaselineEstimator(db)
        assert await estimator.estimate_baseline("img1") == 180000

    @pytest.mark.asyncio
    async def test_only_recent_image_samples_count(self, db, make_record, monkeypatch):
        monkeypatch.setattr(Config, "IMAGE_BASELINE_SAMPLES", 10)
        # Old slow rounds, then ten newer rounds at 300000
        await seed_durations(db, make_record, "img1", [900000] * 10)
        await seed_durations(db, make_record, "img1", [300000] * 10)

        estimator = BaselineEstimator(db)
        assert await estimator.estimate_baseline("img1") == 300000

    @pytest.mark.asyncio
    async def test_errors_degrade_to_default(self, db):
        db.fetch_recent_durations = AsyncMock(side_effect=RuntimeError("database is locked"))

        estimator = BaselineEstimator(db)
        assert await estimator.estimate_baseline("img1") == 180000

    @pytest.mark.asyncio
    async def test_timeout_degrades_to_default(self, db, monkeypatch):
        monkeypatch.setattr(Config, "DATA_TIMEOUT_SECONDS", 0.01)

        async def slow_fetch(*args, **kwargs):
            await asyncio.sleep(1)
            return []

        db.fetch_recent_durations = slow_fetch

        estimator = BaselineEstimator(db)
        assert await estimator.estimate_baseline("img1") == 180000

    @pytest.mark.asyncio
    async def test_custom_default(self, db):
        estimator = BaselineEstimator(db, default_baseline_ms=60000)
        assert await estimator.estimate_baseline("img1") == 60000
