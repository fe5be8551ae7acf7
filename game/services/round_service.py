"""Round service for driving a single round from start to settlement."""

import asyncio
import logging
import math
import threading
import time
from collections.abc import Callable
from typing import Optional

from config import Config
from db.database import Database
from game.services import scoring_service
from game.services.baseline_service import BaselineEstimator
from game.services.elo_service import EloRatingUpdater
from models import (
    EloResult,
    RoundOutcome,
    RoundRecord,
    RoundStatus,
    ScoreOverride,
    SettlementSummary,
    Target,
)

logger = logging.getLogger(__name__)


def monotonic_ms() -> float:
    return time.monotonic() * 1000


class RoundSession:
    """In-memory state of one round.

    ``locked`` flips exactly once, when the round reaches a terminal state.
    Once set, no click or abort is processed again.
    """

    def __init__(self):
        self.status = RoundStatus.READY
        self.miss_count = 0
        self.last_miss_at: Optional[float] = None
        self.started_at: Optional[float] = None
        self.outcome: Optional[RoundOutcome] = None
        self._locked = False
        self._mutex = threading.Lock()

    @property
    def locked(self) -> bool:
        return self._locked

    def try_lock(self) -> bool:
        """Lock the round. Returns False if it was already locked."""
        with self._mutex:
            if self._locked:
                return False
            self._locked = True
            return True


class RoundLifecycleController:
    """Owns one round: ready -> active -> success / hard_stop / give_up.

    Settlement happens at most once per round. Clicks, aborts and repeated
    settlement requests arriving after the round is locked are ignored.
    """

    def __init__(
        self,
        db: Database,
        target: Target,
        player_id: str,
        display_name: Optional[str] = None,
        clock: Callable[[], float] = monotonic_ms,
        baseline_estimator: Optional[BaselineEstimator] = None,
        elo_updater: Optional[EloRatingUpdater] = None,
    ):
        self.db = db
        self.target = target
        self.player_id = player_id
        self.display_name = display_name
        self.clock = clock
        self.baseline_estimator = baseline_estimator or BaselineEstimator(db)
        self.elo_updater = elo_updater or EloRatingUpdater(db)
        self.session = RoundSession()
        self.summary: Optional[SettlementSummary] = None

    @property
    def image_id(self) -> str:
        return self.target.image_id

    def start(self) -> bool:
        """Start the timer. Returns False unless the round was ready."""
        if self.session.status != RoundStatus.READY:
            return False
        self.session.started_at = self.clock()
        self.session.status = RoundStatus.ACTIVE
        logger.debug(f"Round started for player {self.player_id} on image {self.image_id}")
        return True

    def is_hit(
        self,
        x: float,
        y: float,
        rendered_width: Optional[float] = None,
        rendered_height: Optional[float] = None,
    ) -> bool:
        """Check a click in rendered coordinates against the target."""
        rendered_width = rendered_width or self.target.width
        rendered_height = rendered_height or self.target.height
        native_x = x * self.target.width / rendered_width
        native_y = y * self.target.height / rendered_height
        distance = math.hypot(native_x - self.target.cx, native_y - self.target.cy)
        return distance <= self.target.radius

    async def register_click(
        self,
        x: float,
        y: float,
        rendered_width: Optional[float] = None,
        rendered_height: Optional[float] = None,
    ) -> Optional[SettlementSummary]:
        """Register a click.

        Returns the settlement summary if the click ended the round, or None
        for a miss or an ignored click.
        """
        session = self.session
        if session.locked or session.status != RoundStatus.ACTIVE:
            return None
        if session.miss_count >= Config.MAX_MISSES:
            return None

        now = self.clock()
        if session.last_miss_at is not None and now - session.last_miss_at < Config.MISS_COOLDOWN_MS:
            return None

        if self.is_hit(x, y, rendered_width, rendered_height):
            return await self.settle(RoundOutcome.SUCCESS, ended_at=now)

        session.miss_count = min(Config.MAX_MISSES, session.miss_count + 1)
        session.last_miss_at = now
        logger.debug(f"Miss {session.miss_count}/{Config.MAX_MISSES} for player {self.player_id}")

        if session.miss_count >= Config.MAX_MISSES:
            return await self.settle(RoundOutcome.HARD_STOP, ended_at=now)
        return None

    async def give_up(self) -> Optional[SettlementSummary]:
        """Abort the round. Ignored unless the round is active."""
        if self.session.status != RoundStatus.ACTIVE:
            return None
        return await self.settle(RoundOutcome.GIVE_UP)

    async def settle(
        self, outcome: RoundOutcome, ended_at: Optional[float] = None
    ) -> Optional[SettlementSummary]:
        """Settle the round with a terminal outcome.

        The lock is taken before anything is awaited, so a hit racing a
        final miss settles only once. Returns None if already settled.
        """
        if self.session.status != RoundStatus.ACTIVE or not self.session.try_lock():
            return None
        if ended_at is None:
            ended_at = self.clock()

        self.session.status = RoundStatus.SETTLED
        self.session.outcome = outcome
        self.summary = await self._settle(outcome, ended_at)
        return self.summary

    async def _settle(self, outcome: RoundOutcome, ended_at: float) -> SettlementSummary:
        miss_count = self.session.miss_count
        raw_ms = max(0, scoring_service.round_half_up(ended_at - self.session.started_at))

        baseline_ms = await self.baseline_estimator.estimate_baseline(self.image_id)

        override: Optional[ScoreOverride] = None
        if outcome == RoundOutcome.SUCCESS:
            used_ms = scoring_service.penalize(raw_ms, miss_count)
        else:
            used_ms = scoring_service.failure_duration(raw_ms, baseline_ms)
            override = ScoreOverride(
                forced_score=Config.FORCED_FAIL_SCORE,
                k_factor=Config.FORCED_FAIL_K_FACTOR,
            )
        performance = scoring_service.score(used_ms, baseline_ms, override)

        rated: Optional[bool] = None
        elo: Optional[EloResult] = None
        record_id: Optional[int] = None
        save_error: Optional[str] = None
        try:
            rated, elo, record_id = await asyncio.wait_for(
                self._persist(outcome, raw_ms, used_ms, miss_count, performance, override),
                timeout=Config.DATA_TIMEOUT_SECONDS,
            )
        except Exception as e:
            logger.exception(f"Failed to save round for player {self.player_id} on image {self.image_id}")
            save_error = str(e) or type(e).__name__

        summary = SettlementSummary(
            outcome=outcome,
            raw_ms=raw_ms,
            used_ms=used_ms,
            baseline_ms=baseline_ms,
            percent_vs_baseline=scoring_service.percent_vs_baseline(used_ms, baseline_ms),
            miss_count=miss_count,
            practice=rated is False,
            rating_delta=elo.total_delta if elo else 0,
            base_delta=elo.base_delta if elo else 0,
            penalty=elo.penalty if elo else 0,
            rating_before=elo.player_before if elo else None,
            rating_after=elo.player_after if elo else None,
            stars=(
                scoring_service.star_rating(used_ms, baseline_ms)
                if outcome == RoundOutcome.SUCCESS
                else None
            ),
            record_id=record_id,
            save_error=save_error,
        )
        logger.info(
            f"Round settled: player={self.player_id} image={self.image_id} outcome={outcome.value} "
            f"raw={raw_ms}ms used={used_ms:.0f}ms misses={miss_count} rated={rated} "
            f"delta={summary.rating_delta}"
        )
        return summary

    async def _persist(self, outcome, raw_ms, used_ms, miss_count, performance, override):
        """Check eligibility, update ratings and append the record as one unit.

        Nothing is kept if any step fails, and a concurrent settlement for
        the same player and image sees either all of it or none of it.
        """
        async with self.db.transaction():
            # Always asked fresh: another round for this pair may have settled meanwhile
            rated = not await self.db.has_prior_success(self.player_id, self.image_id)

            elo: Optional[EloResult] = None
            if rated:
                elo = await self.elo_updater.apply_round(
                    self.player_id,
                    self.image_id,
                    performance,
                    miss_count,
                    override=override,
                    display_name=self.display_name,
                )
            elif self.display_name:
                await self.db.set_display_name(self.player_id, self.display_name)

            record = RoundRecord(
                image_id=self.image_id,
                player_id=self.player_id,
                display_name=self.display_name,
                raw_duration_ms=raw_ms,
                used_duration_ms=used_ms,
                miss_count=miss_count,
                outcome=outcome,
                rated=rated,
                player_rating_before=elo.player_before if elo else None,
                player_rating_after=elo.player_after if elo else None,
                image_rating_before=elo.image_before if elo else None,
                image_rating_after=elo.image_after if elo else None,
            )
            record_id = await self.db.append_round_record(record)
        return rated, elo, record_id


class RoundService:
    """Keeps the in-progress rounds, one controller per player and image."""

    def __init__(self, db: Database, clock: Callable[[], float] = monotonic_ms):
        self.db = db
        self.clock = clock
        self.baseline_estimator = BaselineEstimator(db)
        self.elo_updater = EloRatingUpdater(db)
        self._rounds: dict[tuple[str, str], RoundLifecycleController] = {}

    def get_round(self, player_id: str, image_id: str) -> Optional[RoundLifecycleController]:
        return self._rounds.get((player_id, image_id))

    def start_round(
        self,
        target: Optional[Target],
        player_id: str,
        display_name: Optional[str] = None,
    ) -> tuple[bool, str]:
        """Start a new round for a player on an image.

        Returns (success, message) tuple.
        """
        if not player_id:
            return (False, "No player identity!")
        if target is None or not target.image_id:
            return (False, "No target for this image!")

        key = (player_id, target.image_id)
        existing = self._rounds.get(key)
        if existing and not existing.session.locked:
            return (False, "A round is already active on this image! Finish or give up first.")

        controller = RoundLifecycleController(
            self.db,
            target,
            player_id,
            display_name=display_name,
            clock=self.clock,
            baseline_estimator=self.baseline_estimator,
            elo_updater=self.elo_updater,
        )
        controller.start()
        self._rounds[key] = controller
        logger.info(f"Started round for player {player_id} on image {target.image_id}")
        return (True, "")

    async def register_click(
        self,
        player_id: str,
        image_id: str,
        x: float,
        y: float,
        rendered_width: Optional[float] = None,
        rendered_height: Optional[float] = None,
    ) -> Optional[SettlementSummary]:
        controller = self._rounds.get((player_id, image_id))
        if controller is None:
            return None
        summary = await controller.register_click(x, y, rendered_width, rendered_height)
        self._discard_if_settled(player_id, image_id, controller)
        return summary

    async def give_up(self, player_id: str, image_id: str) -> Optional[SettlementSummary]:
        controller = self._rounds.get((player_id, image_id))
        if controller is None:
            return None
        summary = await controller.give_up()
        self._discard_if_settled(player_id, image_id, controller)
        return summary

    def _discard_if_settled(self, player_id: str, image_id: str, controller: RoundLifecycleController):
        key = (player_id, image_id)
        if controller.session.status == RoundStatus.SETTLED and self._rounds.get(key) is controller:
            del self._rounds[key]
