import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from trendboard.config import get_settings
from trendboard.database import get_db
from trendboard.ingest import ingest_items
from trendboard.models import Entity, EntityAlias, Event
from trendboard.ranking import current_snapshot
from trendboard.runner import PipelineRunner
from trendboard.schemas import (
    DedupResult,
    EntityCreate,
    EntityResponse,
    EventResponse,
    ItemIngest,
    ScoreRow,
    SnapshotResponse,
    WindowResult,
)

logger = logging.getLogger(__name__)

router = APIRouter()

runner = PipelineRunner()


def _check_window(window: str) -> None:
    if window not in get_settings().window_hours:
        raise HTTPException(status_code=404, detail=f"Unknown window '{window}'")


@router.post("/ingest", status_code=200)
def ingest(items: List[ItemIngest], db: Session = Depends(get_db)):
    """
    Accept a batch of items from a connector and persist them with a metrics snapshot.
    Returns an acknowledgment with the count of items received.
    """
    logger.info(f"[/ingest] Received batch of {len(items)} items")
    stored = ingest_items(db, items)
    return {"status": "ok", "received": len(items), "stored": stored}


@router.post("/entities", response_model=EntityResponse, status_code=201)
def create_entity(payload: EntityCreate, db: Session = Depends(get_db)):
    entity = Entity(
        type=payload.type,
        canonical_name=payload.canonical_name,
        description=payload.description,
        enabled=payload.enabled,
    )
    db.add(entity)
    db.flush()
    for alias in payload.aliases:
        db.add(EntityAlias(
            entity_id=entity.id,
            alias_text=alias.alias_text,
            match_type=alias.match_type.value,
            platform_scope=alias.platform_scope,
            confidence_weight=alias.confidence_weight,
        ))
    db.commit()
    logger.info(f"[/entities] Created entity {entity.id} '{entity.canonical_name}' with {len(payload.aliases)} aliases")
    return entity


@router.post("/jobs/deduplicate", response_model=DedupResult)
def run_deduplication(db: Session = Depends(get_db)):
    """Cluster unclustered items and refresh primary items. Blocks until complete."""
    return runner.deduplicate(db)


@router.post("/jobs/score", response_model=List[WindowResult])
def run_scoring(window: Optional[str] = None, db: Session = Depends(get_db)):
    """Score one window, or every window when none is given. Blocks until complete."""
    if window is not None:
        _check_window(window)
    return runner.score(db, window)


@router.get("/events", response_model=List[EventResponse])
def recent_events(limit: int = 50, db: Session = Depends(get_db)):
    """Most recently active events, for feed builders."""
    return (
        db.query(Event)
        .order_by(Event.last_seen_at.desc(), Event.id.desc())
        .limit(min(max(limit, 1), 500))
        .all()
    )


@router.get("/scores/{window}", response_model=SnapshotResponse)
def scores(window: str, db: Session = Depends(get_db)):
    """
    The current snapshot of a window: every row sharing the latest computed_at.
    Never mixes rows from two passes.
    """
    _check_window(window)
    computed_at, rows = current_snapshot(db, window)
    logger.info(f"[/scores/{window}] Returning {len(rows)} rows")
    return SnapshotResponse(
        window=window,
        computed_at=computed_at,
        rows=[ScoreRow.model_validate(row) for row in rows],
    )
