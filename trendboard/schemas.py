from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from trendboard.models import ensure_utc


class Platform(str, Enum):
    youtube = "youtube"
    reddit = "reddit"
    x = "x"


class MatchType(str, Enum):
    exact = "exact"
    contains = "contains"
    regex = "regex"


class ItemIngest(BaseModel):
    """Shape a connector hands to the core for one piece of platform content."""
    platform: Platform
    external_id: str
    url: Optional[str] = None
    title: Optional[str] = None
    body: Optional[str] = None
    channel_name: Optional[str] = None
    authority_weight: float = Field(default=1.0, ge=0.0)
    published_at: datetime
    metrics: Dict[str, float] = {}
    # when the counters were read; defaults to ingestion time
    captured_at: Optional[datetime] = None
    raw_payload: Optional[Dict[str, Any]] = None

    @field_validator("published_at", "captured_at")
    @classmethod
    def _to_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        # stored columns carry no offset, so everything is converted here
        return ensure_utc(value)


class AliasIn(BaseModel):
    alias_text: str
    match_type: MatchType = MatchType.contains
    platform_scope: str = "any"
    confidence_weight: float = Field(default=1.0, ge=0.0)


class EntityCreate(BaseModel):
    type: str
    canonical_name: str
    description: Optional[str] = None
    enabled: bool = True
    aliases: List[AliasIn] = []


class EntityResponse(BaseModel):
    id: int
    type: str
    canonical_name: str
    enabled: bool

    model_config = ConfigDict(from_attributes=True)


class EventResponse(BaseModel):
    """Shape used by feed builders to render a trending event."""
    id: int
    event_key: str
    title: str
    first_seen_at: datetime
    last_seen_at: datetime
    primary_item_id: Optional[int] = None
    platform_mix: Dict[str, bool]
    item_count: int
    related_count: int

    model_config = ConfigDict(from_attributes=True)


class ScoreRow(BaseModel):
    entity_id: int
    rank: int
    delta_rank: int
    score: float
    momentum: float
    micro_momentum: Optional[float] = None
    sources_breakdown: Dict[str, float]
    driver_label: Optional[str] = None
    event_count: int

    model_config = ConfigDict(from_attributes=True)


class SnapshotResponse(BaseModel):
    window: str
    computed_at: Optional[datetime] = None
    rows: List[ScoreRow]


class DedupResult(BaseModel):
    processed: int = 0
    created: int = 0
    attached: int = 0
    failed: int = 0
    primaries_updated: int = 0


class WindowResult(BaseModel):
    window: str
    computed_at: datetime
    items: int
    written: int
    failed: int = 0
