"""Scoring service for turning round times into performance scores."""

import math
from typing import Optional

from models import PerformanceScore, ScoreOverride

# Logistic curve: a player 20% slower than baseline scores about 0.5
CURVE_CENTER = 1.20
CURVE_SLOPE = 0.90

# Final scores are squeezed into [SCORE_FLOOR, SCORE_FLOOR + SCORE_SPAN]
SCORE_FLOOR = 0.08
SCORE_SPAN = 0.84

MISS_TIME_PENALTY = 0.04
MAX_TIME_PENALTY_FACTOR = 1.40

# Failed rounds never score better than this multiple of the baseline
FAILURE_BASELINE_MULTIPLIER = 6

STAR_CURVE_SLOPE = 3


def round_half_up(value: float) -> int:
    """Round to the nearest integer, with halves going up."""
    return math.floor(value + 0.5)


def time_penalty_factor(miss_count: int) -> float:
    """Time multiplier for a miss count: +4% per miss, capped at +40%."""
    return min(1.0 + MISS_TIME_PENALTY * miss_count, MAX_TIME_PENALTY_FACTOR)


def penalize(raw_ms: float, miss_count: int) -> float:
    """Inflate a raw duration by the miss penalty.

    Every outcome path goes through this one function.
    """
    return raw_ms * time_penalty_factor(miss_count)


def failure_duration(raw_ms: float, baseline_ms: float) -> int:
    """Duration charged for a hard stop or give up."""
    penalized = round_half_up(raw_ms * MAX_TIME_PENALTY_FACTOR)
    very_slow = round_half_up(baseline_ms * FAILURE_BASELINE_MULTIPLIER)
    return max(penalized, very_slow)


def duration_ratio(used_ms: float, baseline_ms: float) -> float:
    return used_ms / max(1, baseline_ms)


def score(
    used_ms: float,
    baseline_ms: float,
    override: Optional[ScoreOverride] = None,
) -> PerformanceScore:
    """Map a used duration and a baseline to a performance score.

    The score follows a gentle logistic curve and is compressed into
    [0.08, 0.92]. When ``override.forced_score`` is set, the curve is
    skipped and the forced value (clamped to [0, 1]) is used instead.
    ``ratio`` is always reported unclamped.
    """
    ratio = duration_ratio(used_ms, baseline_ms)

    if override is not None and override.forced_score is not None:
        forced = min(1.0, max(0.0, override.forced_score))
        return PerformanceScore(ratio=ratio, s_raw=None, score=forced)

    # Very slow rounds overflow exp(); the curve has already bottomed out
    try:
        s_raw = 1 / (1 + math.exp(CURVE_SLOPE * (ratio - CURVE_CENTER)))
    except OverflowError:
        s_raw = 0.0
    return PerformanceScore(ratio=ratio, s_raw=s_raw, score=SCORE_FLOOR + SCORE_SPAN * s_raw)


def percent_vs_baseline(used_ms: float, baseline_ms: float) -> int:
    """Percentage faster (positive) or slower (negative) than baseline."""
    return round_half_up((1 - duration_ratio(used_ms, baseline_ms)) * 100)


def star_rating(duration_ms: float, baseline_ms: float) -> int:
    """Calculate a 1-5 star rating for a completion time.

    A time equal to the baseline earns 3 stars; much faster earns 5 and
    much slower earns 1.
    """
    ratio = duration_ratio(duration_ms, baseline_ms)
    try:
        score01 = 1 / (1 + math.exp(STAR_CURVE_SLOPE * (ratio - 1)))
    except OverflowError:
        score01 = 0.0
    stars = round_half_up(1 + 4 * score01)
    return min(5, max(1, stars))
