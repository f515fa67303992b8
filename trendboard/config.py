"""
Pipeline configuration loaded from environment variables.

Every tunable of the clustering and scoring passes lives here so it can be
changed without touching code. Variables use the TRENDBOARD_ prefix; mapping
fields are read as JSON, e.g.

    TRENDBOARD_WINDOW_PLATFORM_WEIGHTS='{"now": {"youtube": 1, "reddit": 1, "x": 1}}'
"""
from functools import lru_cache
from typing import Dict, List

from pydantic import BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict


class DriverThresholds(BaseModel):
    """Editorial thresholds for the driver rule chain."""
    dominant_share: float = 0.6
    clip_spike_momentum: float = 50.0
    dunk_thread_momentum: float = 40.0
    consolidation_mentions: int = 10
    balanced_max_share: float = 0.5
    cross_platform_momentum: float = 30.0
    comeback_previous_rank: int = 20
    comeback_current_rank: int = 10
    heating_up_micro_momentum: float = 50.0
    heating_up_momentum: float = 20.0
    slow_burn_max_momentum: float = 20.0


class Settings(BaseSettings):
    # ─── Storage ───────────────────────────────────────────────────
    database_url: str = "sqlite:///./trendboard.db"

    # ─── Clustering ────────────────────────────────────────────────
    similarity_threshold: float = 0.55
    cluster_lookback_hours: float = 12
    candidate_limit: int = 100
    time_bucket_hours: int = 6
    event_key_tokens: int = 8
    dedup_hours_back: float = 48
    min_token_length: int = 3
    stopwords: List[str] = [
        "trendboard", "clip", "clips", "reaction", "reactions",
        "highlights", "live", "stream", "streams", "podcast", "podcasts",
        "show", "shows", "episode", "episodes",
    ]

    # ─── Scoring ───────────────────────────────────────────────────
    # counter name -> weight, per platform (weights are applied to per-minute velocities)
    platform_formulas: Dict[str, Dict[str, float]] = {
        "youtube": {"views": 0.4, "likes": 0.3, "comments": 0.3},
        "reddit": {"upvotes": 0.5, "comments": 0.5},
        "x": {"reposts": 0.4, "likes": 0.3, "replies": 0.3},
    }
    authority_platforms: List[str] = ["youtube", "x"]
    # counter used to pick an event's hottest member
    primary_counters: Dict[str, str] = {"youtube": "views", "reddit": "upvotes", "x": "views"}

    window_hours: Dict[str, float] = {"now": 6, "24h": 24, "7d": 168}
    momentum_slice_hours: Dict[str, float] = {"now": 3, "24h": 12, "7d": 84}
    micro_momentum_minutes: float = 60
    # x stays disabled until its connector ships
    window_platform_weights: Dict[str, Dict[str, float]] = {
        "now": {"youtube": 1.0, "reddit": 1.0, "x": 0.0},
        "24h": {"youtube": 1.0, "reddit": 1.0, "x": 0.0},
        "7d": {"youtube": 1.0, "reddit": 1.0, "x": 0.0},
    }
    driver_thresholds: DriverThresholds = DriverThresholds()

    # ─── Runner ────────────────────────────────────────────────────
    run_interval_seconds: int = 300
    run_in_process: bool = True

    model_config = SettingsConfigDict(
        env_prefix="TRENDBOARD_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def platforms(self) -> List[str]:
        return list(self.platform_formulas.keys())

    @property
    def windows(self) -> List[str]:
        return list(self.window_hours.keys())

    @property
    def shortest_window(self) -> str:
        return min(self.window_hours, key=self.window_hours.get)

    @property
    def longest_window(self) -> str:
        return max(self.window_hours, key=self.window_hours.get)


@lru_cache
def get_settings() -> Settings:
    return Settings()
