from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)

from trendboard.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """
    Normalize to aware UTC. Naive values are taken as UTC, which is how SQLite
    hands stored datetimes back; offset values are converted.
    """
    if value is None:
        return value
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Item(Base):
    """One piece of platform content, as persisted by an ingestion connector."""
    __tablename__ = "items"
    __table_args__ = (
        UniqueConstraint("platform", "external_id", name="items_platform_external_id_unique"),
        Index("items_published_at_idx", "published_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    platform = Column(String, nullable=False)        # "youtube", "reddit", "x"
    external_id = Column(String, nullable=False)     # video id, post id, tweet id
    url = Column(Text, nullable=True)
    title = Column(Text, nullable=True)
    body = Column(Text, nullable=True)
    channel_name = Column(String, nullable=True)     # channel title / author / account handle
    authority_weight = Column(Float, nullable=False, default=1.0)
    published_at = Column(DateTime(timezone=True), nullable=False)
    metrics = Column(JSON, nullable=False, default=dict)  # latest counters, e.g. {"views": 10}
    raw_payload = Column(JSON, nullable=True)

    fetched_at = Column(DateTime(timezone=True), default=utcnow)


class ItemMetricSnapshot(Base):
    """Append-only counter history; never updated."""
    __tablename__ = "item_metric_snapshots"
    __table_args__ = (
        Index("item_metric_snapshots_item_captured_idx", "item_id", "captured_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    item_id = Column(Integer, ForeignKey("items.id", ondelete="CASCADE"), nullable=False)
    captured_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    metrics = Column(JSON, nullable=False, default=dict)


class Event(Base):
    """A deduplicated cluster of items believed to describe one occurrence."""
    __tablename__ = "events"
    __table_args__ = (
        Index("events_first_seen_at_idx", "first_seen_at"),
        Index("events_last_seen_at_idx", "last_seen_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_key = Column(String(64), nullable=False, unique=True)
    first_seen_at = Column(DateTime(timezone=True), nullable=False)
    last_seen_at = Column(DateTime(timezone=True), nullable=False)
    primary_item_id = Column(Integer, ForeignKey("items.id"), nullable=True)
    platform_mix = Column(JSON, nullable=False, default=dict)  # {"youtube": true, "reddit": false, ...}
    title = Column(Text, nullable=False, default="")
    item_count = Column(Integer, nullable=False, default=1)
    related_count = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class EventItem(Base):
    """Item -> event link. Keyed on item_id so an item belongs to at most one event."""
    __tablename__ = "event_items"

    item_id = Column(Integer, ForeignKey("items.id", ondelete="CASCADE"), primary_key=True)
    event_id = Column(Integer, ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)


class Entity(Base):
    """A curated subject (character, storyline, show, ...) tracked through its aliases."""
    __tablename__ = "entities"

    id = Column(Integer, primary_key=True, autoincrement=True)
    type = Column(String, nullable=False)
    canonical_name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    enabled = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)


class EntityAlias(Base):
    __tablename__ = "entity_aliases"
    __table_args__ = (
        UniqueConstraint("entity_id", "alias_text", "platform_scope", name="entity_aliases_unique"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    entity_id = Column(Integer, ForeignKey("entities.id", ondelete="CASCADE"), nullable=False, index=True)
    alias_text = Column(String(255), nullable=False)
    match_type = Column(String, nullable=False, default="contains")  # exact | contains | regex
    platform_scope = Column(String(50), nullable=False, default="any")
    confidence_weight = Column(Float, nullable=False, default=1.0)


class Score(Base):
    """
    One row of a ranked snapshot. (window, entity_id, computed_at) is the primary key,
    so re-running a pass with the same timestamp upserts instead of duplicating.
    """
    __tablename__ = "scores"
    __table_args__ = (
        Index("scores_window_rank_idx", "time_window", "rank"),
        Index("scores_computed_at_idx", "computed_at"),
    )

    window = Column("time_window", String, primary_key=True)
    entity_id = Column(Integer, ForeignKey("entities.id", ondelete="CASCADE"), primary_key=True)
    computed_at = Column(DateTime(timezone=True), primary_key=True)

    rank = Column(Integer, nullable=False)
    delta_rank = Column(Integer, nullable=False, default=0)
    score = Column(Float, nullable=False)
    momentum = Column(Float, nullable=False)
    micro_momentum = Column(Float, nullable=True)
    sources_breakdown = Column(JSON, nullable=False)
    driver_label = Column(String, nullable=True)
    event_count = Column(Integer, nullable=False, default=0)


class JobRun(Base):
    """Status record for each pipeline pass, for monitoring."""
    __tablename__ = "job_runs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    job_type = Column(String(100), nullable=False, index=True)
    status = Column(String(50), nullable=False)  # running | completed | empty | failed
    started_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    summary = Column(JSON, nullable=True)
    error_message = Column(Text, nullable=True)
