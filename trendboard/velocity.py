from collections import defaultdict
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence

from sqlalchemy.orm import Session

from trendboard.models import Item, ItemMetricSnapshot, ensure_utc


def latest_snapshots(db: Session, item_ids: Iterable[int], per_item: int = 2) -> Dict[int, List[ItemMetricSnapshot]]:
    """Return the newest `per_item` snapshots of each item, newest first."""
    item_ids = list(item_ids)
    if not item_ids:
        return {}

    rows = (
        db.query(ItemMetricSnapshot)
        .filter(ItemMetricSnapshot.item_id.in_(item_ids))
        .order_by(ItemMetricSnapshot.item_id, ItemMetricSnapshot.captured_at.desc(), ItemMetricSnapshot.id.desc())
        .all()
    )
    grouped: Dict[int, List[ItemMetricSnapshot]] = defaultdict(list)
    for row in rows:
        if len(grouped[row.item_id]) < per_item:
            grouped[row.item_id].append(row)
    return grouped


def _counter(metrics: Optional[dict], key: str) -> float:
    try:
        return float((metrics or {}).get(key) or 0)
    except (TypeError, ValueError):
        return 0.0


def snapshot_delta(snapshots: Sequence[ItemMetricSnapshot], key: str) -> Optional[float]:
    """
    Δcounter / Δminutes between the two newest snapshots, or None with fewer than two.
    Returns 0 when both were captured at the same instant.
    """
    if len(snapshots) < 2:
        return None
    newest, previous = snapshots[0], snapshots[1]
    minutes = (ensure_utc(newest.captured_at) - ensure_utc(previous.captured_at)).total_seconds() / 60
    if minutes <= 0:
        return 0.0
    return (_counter(newest.metrics, key) - _counter(previous.metrics, key)) / minutes


def primary_velocity(item: Item, snapshots: Sequence[ItemMetricSnapshot], key: str = "views") -> float:
    """Velocity used to choose an event's representative item; falls back to the raw count."""
    delta = snapshot_delta(snapshots, key)
    if delta is not None:
        return delta
    if snapshots:
        return _counter(snapshots[0].metrics, key)
    return _counter(item.metrics, key)


def counter_velocity(
    item: Item,
    snapshots: Sequence[ItemMetricSnapshot],
    key: str,
    now: datetime,
) -> float:
    """
    Per-minute velocity of one counter for scoring.

    Uses the two newest snapshots when available, otherwise the lifetime rate
    (counter / minutes since publish, at least one minute). Never negative:
    platforms occasionally walk counters back and that is not engagement.
    """
    delta = snapshot_delta(snapshots, key)
    if delta is None:
        current = snapshots[0].metrics if snapshots else item.metrics
        age_minutes = (ensure_utc(now) - ensure_utc(item.published_at)).total_seconds() / 60
        delta = _counter(current, key) / max(age_minutes, 1.0)
    return max(0.0, delta)
