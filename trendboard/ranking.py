import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from trendboard.models import Score

logger = logging.getLogger(__name__)


@dataclass
class ScoredEntity:
    entity_id: int
    score: float
    momentum: float
    micro_momentum: Optional[float]
    sources: Dict[str, float]
    mention_count: int
    rank: int = 0
    delta_rank: int = 0
    previous_rank: Optional[int] = None
    driver: Optional[str] = field(default=None)


def assign_ranks(entities: List[ScoredEntity]) -> List[ScoredEntity]:
    """
    Sort by score descending and number the result 1..n.

    The sort is stable, so equal scores keep the order the entities were
    passed in (entity insertion order) and get consecutive ranks.
    """
    ranked = sorted(entities, key=lambda e: e.score, reverse=True)
    for position, entity in enumerate(ranked, start=1):
        entity.rank = position
    return ranked


def previous_ranks(db: Session, window: str, before: datetime) -> Dict[int, int]:
    """Ranks from the newest snapshot of `window` computed before `before`."""
    previous_at = (
        db.query(func.max(Score.computed_at))
        .filter(Score.window == window, Score.computed_at < before)
        .scalar()
    )
    if previous_at is None:
        return {}
    rows = db.query(Score.entity_id, Score.rank).filter(Score.window == window, Score.computed_at == previous_at)
    return {entity_id: rank for entity_id, rank in rows}


def apply_rank_deltas(ranked: List[ScoredEntity], previous: Dict[int, int]) -> None:
    """deltaRank = previous - current, so moving up is positive. Newcomers get 0."""
    for entity in ranked:
        entity.previous_rank = previous.get(entity.entity_id)
        entity.delta_rank = entity.previous_rank - entity.rank if entity.previous_rank is not None else 0


def write_snapshot(db: Session, window: str, ranked: List[ScoredEntity], computed_at: datetime) -> int:
    """
    Persist one snapshot: every row shares `computed_at` and is committed together.

    Rows are keyed on (window, entity_id, computed_at); merge() turns a retried
    pass with the same timestamp into an overwrite. On failure nothing is kept,
    leaving the previous snapshot as the current one.
    """
    try:
        for entity in ranked:
            db.merge(Score(
                window=window,
                entity_id=entity.entity_id,
                computed_at=computed_at,
                rank=entity.rank,
                delta_rank=entity.delta_rank,
                score=entity.score,
                momentum=entity.momentum,
                micro_momentum=entity.micro_momentum,
                sources_breakdown=entity.sources,
                driver_label=entity.driver,
                event_count=entity.mention_count,
            ))
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Snapshot write for window '{window}' failed, previous snapshot kept: {e}")
        raise

    logger.info(f"Wrote {len(ranked)} scores for window '{window}' at {computed_at.isoformat()}")
    return len(ranked)


def current_snapshot(db: Session, window: str) -> Tuple[Optional[datetime], List[Score]]:
    """The rows sharing the latest computed_at for `window`, in rank order."""
    latest = db.query(func.max(Score.computed_at)).filter(Score.window == window).scalar()
    if latest is None:
        return None, []
    rows = (
        db.query(Score)
        .filter(Score.window == window, Score.computed_at == latest)
        .order_by(Score.rank)
        .all()
    )
    return latest, rows
