"""
Shared fixtures: an in-memory SQLite database per test and small factories
for items, snapshots and entities. No network, no files.
"""
import itertools
from datetime import datetime, timezone

import pytest
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from trendboard.database import Base, build_engine
from trendboard.models import Entity, EntityAlias, Item, ItemMetricSnapshot

NOW = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def engine():
    engine = build_engine("sqlite:///:memory:", poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def make_item(db):
    """Insert an Item (plus optional snapshot history) directly, bypassing ingestion."""
    ids = itertools.count(1)

    def _make(title="Test clip", platform="youtube", channel_name="Test Channel",
              published_at=NOW, metrics=None, snapshots=(), **kwargs):
        item = Item(
            platform=platform,
            external_id=kwargs.pop("external_id", f"ext-{next(ids)}"),
            title=title,
            channel_name=channel_name,
            published_at=published_at,
            metrics=metrics or {},
            **kwargs,
        )
        db.add(item)
        db.flush()
        for captured_at, counters in snapshots:
            db.add(ItemMetricSnapshot(item_id=item.id, captured_at=captured_at, metrics=counters))
        db.commit()
        return item

    return _make


@pytest.fixture
def make_entity(db):
    """Insert an Entity; aliases are strings or (text, match_type, scope, weight) tuples."""

    def _make(name, aliases=(), type="character", enabled=True):
        entity = Entity(type=type, canonical_name=name, enabled=enabled)
        db.add(entity)
        db.flush()
        for alias in aliases:
            text, match_type, scope, weight = (alias, "contains", "any", 1.0) if isinstance(alias, str) else alias
            db.add(EntityAlias(entity_id=entity.id, alias_text=text, match_type=match_type,
                               platform_scope=scope, confidence_weight=weight))
        db.commit()
        return entity

    return _make
