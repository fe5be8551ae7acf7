"""Application configuration using pydantic-settings."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Database
    database_path: str = Field(default="spotter.db", alias="DATABASE_PATH")
    data_timeout_seconds: float = Field(default=10, alias="DATA_TIMEOUT_SECONDS")

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Baseline estimation
    default_baseline_ms: float = Field(default=180000, alias="DEFAULT_BASELINE_MS")
    image_baseline_samples: int = Field(default=200, alias="IMAGE_BASELINE_SAMPLES")
    global_baseline_samples: int = Field(default=500, alias="GLOBAL_BASELINE_SAMPLES")
    min_image_samples: int = Field(default=10, alias="MIN_IMAGE_SAMPLES")
    baseline_percentile: float = Field(default=0.60, alias="BASELINE_PERCENTILE")

    # Ratings
    initial_rating: float = Field(default=1500, alias="INITIAL_RATING")
    elo_k_factor: float = Field(default=20, alias="ELO_K_FACTOR")
    forced_fail_k_factor: float = Field(default=16, alias="FORCED_FAIL_K_FACTOR")
    forced_fail_score: float = Field(default=0.05, alias="FORCED_FAIL_SCORE")

    # Round settings
    max_misses: int = Field(default=10, alias="MAX_MISSES")
    miss_cooldown_ms: float = Field(default=250, alias="MISS_COOLDOWN_MS")
    default_player_name: str = Field(default="Guest", alias="DEFAULT_PLAYER_NAME")


# Global settings instance
settings = Settings()


class Config:
    """Upper-case config interface used by the services."""

    DATABASE_PATH = settings.database_path
    DATA_TIMEOUT_SECONDS = settings.data_timeout_seconds
    LOG_LEVEL = settings.log_level.upper()
    DEFAULT_BASELINE_MS = settings.default_baseline_ms
    IMAGE_BASELINE_SAMPLES = settings.image_baseline_samples
    GLOBAL_BASELINE_SAMPLES = settings.global_baseline_samples
    MIN_IMAGE_SAMPLES = settings.min_image_samples
    BASELINE_PERCENTILE = settings.baseline_percentile
    INITIAL_RATING = settings.initial_rating
    ELO_K_FACTOR = settings.elo_k_factor
    FORCED_FAIL_K_FACTOR = settings.forced_fail_k_factor
    FORCED_FAIL_SCORE = settings.forced_fail_score
    MAX_MISSES = settings.max_misses
    MISS_COOLDOWN_MS = settings.miss_cooldown_ms
    DEFAULT_PLAYER_NAME = settings.default_player_name
