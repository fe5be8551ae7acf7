"""Elo service for updating paired player and image ratings."""

import logging
from typing import Optional

from config import Config
from db.database import IMAGE, PLAYER, Database
from game.services.scoring_service import round_half_up
from models import EloResult, ImageRating, PerformanceScore, PlayerRating, ScoreOverride

logger = logging.getLogger(__name__)

ELO_DIVISOR = 400

# Full miss deduction is reached at MISSES_FOR_FULL_PENALTY misses
MISS_STANDARD_DEDUCTION = 20
MISSES_FOR_FULL_PENALTY = 7


def expected_score(player_rating: float, image_rating: float) -> float:
    """Elo expected score of the player against the image."""
    diff = player_rating - image_rating
    return 1 / (1 + 10 ** (-diff / ELO_DIVISOR))


def miss_penalty_points(misses: int) -> int:
    """Rating points deducted for misses (0-20)."""
    scale = min(1.0, max(0.0, misses / MISSES_FOR_FULL_PENALTY))
    return round_half_up(MISS_STANDARD_DEDUCTION * scale)


def compute_update(
    player_rating: float,
    image_rating: float,
    performance: PerformanceScore,
    misses: int,
    override: Optional[ScoreOverride] = None,
) -> EloResult:
    """Compute new ratings without touching storage.

    The miss penalty only applies to the player; the image mirrors the
    performance delta alone.
    """
    k_factor = Config.ELO_K_FACTOR
    penalty = miss_penalty_points(misses)
    if override is not None:
        if override.k_factor is not None:
            k_factor = override.k_factor
        if override.miss_penalty is not None:
            penalty = override.miss_penalty

    expected = expected_score(player_rating, image_rating)
    base_delta = round_half_up(k_factor * (performance.score - expected))
    total_delta = base_delta - penalty

    return EloResult(
        player_before=player_rating,
        player_after=player_rating + total_delta,
        image_before=image_rating,
        image_after=image_rating - base_delta,
        score=performance.score,
        expected=expected,
        ratio=performance.ratio,
        k_factor=k_factor,
        base_delta=base_delta,
        penalty=penalty,
        total_delta=total_delta,
    )


class EloRatingUpdater:
    """Applies a round's result to the stored player and image ratings."""

    def __init__(self, db: Database, initial_rating: Optional[float] = None):
        self.db = db
        self.initial_rating = initial_rating if initial_rating is not None else Config.INITIAL_RATING

    async def _get_or_create_player(self, player_id: str, display_name: Optional[str]) -> PlayerRating:
        player = await self.db.fetch_rating(PLAYER, player_id)
        if player is None:
            await self.db.insert_rating(PLAYER, player_id, self.initial_rating, display_name=display_name)
            player = await self.db.fetch_rating(PLAYER, player_id)
        elif display_name and display_name != player.display_name:
            await self.db.set_display_name(player_id, display_name)
        return player

    async def _get_or_create_image(self, image_id: str) -> ImageRating:
        image = await self.db.fetch_rating(IMAGE, image_id)
        if image is None:
            await self.db.insert_rating(IMAGE, image_id, self.initial_rating)
            image = await self.db.fetch_rating(IMAGE, image_id)
        return image

    async def apply_round(
        self,
        player_id: str,
        image_id: str,
        performance: PerformanceScore,
        misses: int,
        override: Optional[ScoreOverride] = None,
        display_name: Optional[str] = None,
    ) -> EloResult:
        """Update both ratings for a rated round and return the snapshot.

        Ratings and counters are written as increments so that concurrent
        settlements for the same player or image add up instead of
        overwriting each other.
        """
        player = await self._get_or_create_player(player_id, display_name)
        image = await self._get_or_create_image(image_id)

        result = compute_update(player.rating, image.rating, performance, misses, override)

        player_after = await self.db.update_rating(PLAYER, player_id, result.total_delta, counter_delta=1)
        image_after = await self.db.update_rating(IMAGE, image_id, -result.base_delta, counter_delta=1)
        if player_after is not None:
            result.player_after = player_after
        if image_after is not None:
            result.image_after = image_after

        logger.debug(
            f"Elo update: ratio={result.ratio:.2f}, S={result.score:.3f}, E={result.expected:.3f}, "
            f"K={result.k_factor}, player {result.player_before}->{result.player_after}, "
            f"image {result.image_before}->{result.image_after}"
        )
        return result
