"""Baseline service for estimating the expected completion time of an image."""

import asyncio
import logging
import math
from collections.abc import Sequence
from typing import Optional

from config import Config
from db.database import Database

logger = logging.getLogger(__name__)


def percentile(values: Sequence[float], fraction: float) -> Optional[float]:
    """Lower nearest-rank percentile: sorted ascending, index floor(fraction * (n - 1))."""
    if not values:
        return None
    ordered = sorted(values)
    return ordered[math.floor(fraction * (len(ordered) - 1))]


class BaselineEstimator:
    """Estimates a fair time baseline for an image from recent round durations.

    Uses the image's own history once it has enough samples, falls back to
    the global history, and finally to a fixed default. Never raises.
    """

    def __init__(
        self,
        db: Database,
        default_baseline_ms: Optional[float] = None,
        percentile_fraction: Optional[float] = None,
    ):
        self.db = db
        self.default_baseline_ms = (
            default_baseline_ms if default_baseline_ms is not None else Config.DEFAULT_BASELINE_MS
        )
        self.percentile_fraction = (
            percentile_fraction if percentile_fraction is not None else Config.BASELINE_PERCENTILE
        )

    async def estimate_baseline(self, image_id: str) -> float:
        """Return the baseline in milliseconds for an image."""
        try:
            return await asyncio.wait_for(self._estimate(image_id), timeout=Config.DATA_TIMEOUT_SECONDS)
        except Exception as e:
            logger.warning(f"Error fetching baseline data for {image_id}, using default: {e!r}")
            return self.default_baseline_ms

    async def _estimate(self, image_id: str) -> float:
        image_rows = await self.db.fetch_recent_durations(
            image_id, Config.IMAGE_BASELINE_SAMPLES, exclude_null=True
        )
        if len(image_rows) >= Config.MIN_IMAGE_SAMPLES:
            baseline = self._from_rows(image_rows)
            logger.debug(f"Baseline for {image_id}: image P60 {baseline}ms from {len(image_rows)} samples")
            return baseline

        global_rows = await self.db.fetch_recent_durations(
            None, Config.GLOBAL_BASELINE_SAMPLES, exclude_null=True
        )
        if global_rows:
            baseline = self._from_rows(global_rows)
            logger.debug(
                f"Baseline for {image_id}: global P60 {baseline}ms from {len(global_rows)} samples "
                f"(image had {len(image_rows)})"
            )
            return baseline

        logger.debug(f"Baseline for {image_id}: default {self.default_baseline_ms}ms (no prior data)")
        return self.default_baseline_ms

    def _from_rows(self, rows) -> float:
        durations = [row["duration_ms"] for row in rows if row["duration_ms"] is not None]
        p60 = percentile(durations, self.percentile_fraction)
        if p60 is None:
            return self.default_baseline_ms
        return max(p60, self.default_baseline_ms)
