"""Pydantic models for game data structures."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class RoundOutcome(str, Enum):
    """Terminal outcome of a round."""

    SUCCESS = "success"
    HARD_STOP = "hard_stop"
    GIVE_UP = "give_up"


class RoundStatus(str, Enum):
    """Lifecycle status of an in-memory round session."""

    READY = "ready"
    ACTIVE = "active"
    SETTLED = "settled"


class PlayerRating(BaseModel):
    """A player's rating row."""

    player_id: str
    rating: float
    games_played: int = 0
    xp: int = 0
    display_name: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ImageRating(BaseModel):
    """An image's difficulty rating row."""

    image_id: str
    rating: float
    attempts: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class RoundRecord(BaseModel):
    """An immutable record of one completed round attempt."""

    model_config = ConfigDict(frozen=True)

    id: Optional[int] = None
    image_id: str
    player_id: str
    display_name: Optional[str] = None
    raw_duration_ms: int
    used_duration_ms: Optional[float]
    miss_count: int = Field(default=0, ge=0, le=10)
    outcome: RoundOutcome
    rated: bool
    player_rating_before: Optional[float] = None
    player_rating_after: Optional[float] = None
    image_rating_before: Optional[float] = None
    image_rating_after: Optional[float] = None
    created_at: Optional[datetime] = None


class Target(BaseModel):
    """The hidden circular target on an image, in native pixel coordinates."""

    image_id: str
    cx: float
    cy: float
    radius: float = Field(gt=0)
    width: float = Field(gt=0)
    height: float = Field(gt=0)


class ScoreOverride(BaseModel):
    """Forced parameters for rounds that bypass the logistic mapping."""

    forced_score: Optional[float] = None
    k_factor: Optional[float] = None
    miss_penalty: Optional[int] = None


class PerformanceScore(BaseModel):
    """Result of mapping a duration against a baseline."""

    ratio: float
    s_raw: Optional[float] = None
    score: float


class EloResult(BaseModel):
    """Outcome of a single Elo update for a player/image pair."""

    player_before: float
    player_after: float
    image_before: float
    image_after: float
    score: float
    expected: float
    ratio: float
    k_factor: float
    base_delta: int
    penalty: int
    total_delta: int


class SettlementSummary(BaseModel):
    """What the caller is told once a round is settled."""

    outcome: RoundOutcome
    raw_ms: int
    used_ms: float
    baseline_ms: float
    percent_vs_baseline: int
    miss_count: int
    practice: bool
    rating_delta: int = 0
    base_delta: int = 0
    penalty: int = 0
    rating_before: Optional[float] = None
    rating_after: Optional[float] = None
    stars: Optional[int] = None
    record_id: Optional[int] = None
    save_error: Optional[str] = None


class LevelInfo(BaseModel):
    """Where a total XP amount sits on the level curve."""

    level: int
    current_level_xp: int
    next_level_xp: int
    progress: float = Field(ge=0, le=1)
