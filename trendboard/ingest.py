import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from trendboard.models import Item, ItemMetricSnapshot, ensure_utc, utcnow
from trendboard.schemas import ItemIngest

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Connector interface: platform clients live outside this package
# ---------------------------------------------------------------------------

class BaseSource(ABC):
    """
    Abstract base class for platform connectors.
    To add a platform: subclass this, set source_name, implement fetch() and
    register an instance in SOURCES.
    """
    source_name: str  # unique slug, e.g. "youtube-clippers"

    @abstractmethod
    def fetch(self) -> List[ItemIngest]:
        """Return the items (with current counters) seen since the last call."""
        pass


# Registry of active connectors, polled by the runner before each pass
SOURCES: List[BaseSource] = []


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------

def add_metric_snapshot(
    db: Session, item_id: int, metrics: Dict[str, float], captured_at: Optional[datetime] = None
) -> ItemMetricSnapshot:
    """Append one counter reading. History rows are never updated."""
    captured_at = ensure_utc(captured_at) if captured_at else utcnow()
    snapshot = ItemMetricSnapshot(item_id=item_id, metrics=dict(metrics), captured_at=captured_at)
    db.add(snapshot)
    return snapshot


def upsert_item(db: Session, payload: ItemIngest) -> Item:
    """
    Insert or refresh an item keyed on (platform, external_id) and record its counters.

    A refresh updates the descriptive fields and the latest counters on the item;
    the previous counters survive in the snapshot history.
    """
    platform = payload.platform.value
    item = (
        db.query(Item)
        .filter(Item.platform == platform, Item.external_id == payload.external_id)
        .first()
    )
    if item is None:
        item = Item(platform=platform, external_id=payload.external_id)
        db.add(item)

    item.url = payload.url
    item.title = payload.title
    item.body = payload.body
    item.channel_name = payload.channel_name
    item.authority_weight = payload.authority_weight
    item.published_at = payload.published_at
    item.metrics = dict(payload.metrics)
    item.raw_payload = payload.raw_payload
    item.fetched_at = utcnow()
    db.flush()

    if payload.metrics:
        add_metric_snapshot(db, item.id, payload.metrics, payload.captured_at)
    return item


def ingest_items(db: Session, payloads: List[ItemIngest]) -> int:
    """Persist a batch; one bad record is logged and skipped, the rest are kept."""
    stored = 0
    for payload in payloads:
        try:
            upsert_item(db, payload)
            db.commit()
            stored += 1
        except OperationalError:
            db.rollback()
            raise
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to store {payload.platform.value} item '{payload.external_id}': {e}")
    return stored


def poll_sources(db: Session, sources: Optional[List[BaseSource]] = None) -> int:
    """Fetch every registered connector; a failing connector does not stop the others."""
    stored = 0
    for source in SOURCES if sources is None else sources:
        try:
            payloads = source.fetch()
        except Exception as e:
            logger.error(f"[{source.source_name}] Failed to fetch: {e}")
            continue

        if not payloads:
            continue
        count = ingest_items(db, payloads)
        logger.info(f"[{source.source_name}] Stored {count}/{len(payloads)} items")
        stored += count
    return stored
