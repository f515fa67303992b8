import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Set, Tuple

from sqlalchemy.orm import Session

from trendboard.aliases import AliasIndex
from trendboard.config import Settings, get_settings
from trendboard.drivers import DriverContext, classify_driver, default_rules
from trendboard.models import EventItem, Item, ensure_utc, utcnow
from trendboard.ranking import ScoredEntity, apply_rank_deltas, assign_ranks, previous_ranks, write_snapshot
from trendboard.schemas import WindowResult
from trendboard.scoring import PlatformMetrics, combine_scores, momentum, platform_score
from trendboard.velocity import counter_velocity, latest_snapshots

logger = logging.getLogger(__name__)

# Slices every entity is aggregated over during a window pass
WINDOW = "window"
CURRENT = "current"
PRIOR = "prior"
MICRO_CURRENT = "micro_current"
MICRO_PRIOR = "micro_prior"


@dataclass
class _Accumulator:
    velocities: Dict[str, float] = field(default_factory=lambda: defaultdict(float))
    authority_total: float = 0.0
    mentions: int = 0

    def add(self, velocities: Dict[str, float], weight: float, authority: float) -> None:
        for counter, value in velocities.items():
            self.velocities[counter] += value * weight
        self.authority_total += authority
        self.mentions += 1

    def metrics(self) -> PlatformMetrics:
        authority = self.authority_total / self.mentions if self.mentions else 1.0
        return PlatformMetrics(velocities=dict(self.velocities), authority_weight=authority, mentions=self.mentions)


@dataclass
class _EntityActivity:
    """Everything one entity accumulated during a window pass."""
    slices: Dict[str, Dict[str, _Accumulator]] = field(
        default_factory=lambda: defaultdict(lambda: defaultdict(_Accumulator))
    )
    events: Set[str] = field(default_factory=set)

    @property
    def window_mentions(self) -> int:
        return sum(acc.mentions for acc in self.slices[WINDOW].values())


class ScoringService:
    """Turns the items of one time window into a ranked, labelled snapshot."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    def slice_bounds(self, window: str, now: datetime) -> Dict[str, Tuple[datetime, datetime]]:
        """(start, end] bounds of every slice of `window` ending at `now`."""
        duration = timedelta(hours=self.settings.window_hours[window])
        half = timedelta(hours=self.settings.momentum_slice_hours[window])
        micro = timedelta(minutes=self.settings.micro_momentum_minutes)
        return {
            WINDOW: (now - duration, now),
            CURRENT: (now - half, now),
            PRIOR: (now - 2 * half, now - half),
            MICRO_CURRENT: (now - micro, now),
            MICRO_PRIOR: (now - 2 * micro, now - micro),
        }

    def _item_velocities(self, item: Item, snapshots, now: datetime) -> Dict[str, float]:
        counters = self.settings.platform_formulas.get(item.platform, {})
        return {counter: counter_velocity(item, snapshots, counter, now) for counter in counters}

    def collect_activity(
        self, db: Session, window: str, now: datetime, index: AliasIndex
    ) -> Tuple[int, Dict[int, _EntityActivity]]:
        """Attribute every item in reach of the window's slices to the entities it mentions."""
        bounds = self.slice_bounds(window, now)
        earliest = min(start for start, _ in bounds.values())

        items = (
            db.query(Item)
            .filter(Item.published_at > earliest, Item.published_at <= now)
            .order_by(Item.published_at, Item.id)
            .all()
        )
        if not items:
            return 0, {}

        item_ids = [item.id for item in items]
        event_of = dict(
            db.query(EventItem.item_id, EventItem.event_id).filter(EventItem.item_id.in_(item_ids)).all()
        )
        snapshots = latest_snapshots(db, item_ids)

        activity: Dict[int, _EntityActivity] = defaultdict(_EntityActivity)
        in_window = 0
        for item in items:
            published = ensure_utc(item.published_at)
            if bounds[WINDOW][0] < published:
                in_window += 1
            try:
                mentions = index.match_item(item)
                if not mentions:
                    continue
                velocities = self._item_velocities(item, snapshots.get(item.id, []), now)
                authority = item.authority_weight if item.authority_weight is not None else 1.0
            except Exception as e:
                logger.error(f"Skipping item {item.id} while scoring window '{window}': {e}")
                continue

            for slice_name, (start, end) in bounds.items():
                if not start < published <= end:
                    continue
                for entity_id, weight in mentions.items():
                    activity[entity_id].slices[slice_name][item.platform].add(velocities, weight, authority)
                    if slice_name == WINDOW:
                        event_id = event_of.get(item.id)
                        activity[entity_id].events.add(f"event:{event_id}" if event_id else f"item:{item.id}")

        return in_window, activity

    def _slice_score(self, activity: _EntityActivity, slice_name: str, weights: Dict[str, float]):
        platform_scores = {
            platform: platform_score(
                platform,
                activity.slices[slice_name][platform].metrics(),
                self.settings.platform_formulas,
                self.settings.authority_platforms,
            )
            for platform in self.settings.platforms
        }
        return combine_scores(platform_scores, weights)

    def score_entity(self, entity_id: int, activity: _EntityActivity, window: str) -> ScoredEntity:
        weights = self.settings.window_platform_weights.get(window, {})
        combined = self._slice_score(activity, WINDOW, weights)
        current = self._slice_score(activity, CURRENT, weights).score
        prior = self._slice_score(activity, PRIOR, weights).score
        micro_current = self._slice_score(activity, MICRO_CURRENT, weights).score
        micro_prior = self._slice_score(activity, MICRO_PRIOR, weights).score
        return ScoredEntity(
            entity_id=entity_id,
            score=combined.score,
            momentum=momentum(current, prior),
            micro_momentum=momentum(micro_current, micro_prior),
            sources=combined.sources,
            mention_count=len(activity.events),
        )

    def score_window(
        self,
        db: Session,
        window: str,
        now: Optional[datetime] = None,
        index: Optional[AliasIndex] = None,
    ) -> WindowResult:
        """Score, rank, label and persist one window. All rows share computed_at = now."""
        if window not in self.settings.window_hours:
            raise ValueError(f"Unknown window '{window}'")

        computed_at = ensure_utc(now) if now else utcnow()
        index = index if index is not None else AliasIndex.from_db(db)
        if not index.entity_ids:
            logger.info(f"No enabled entities, nothing to score for window '{window}'")
            return WindowResult(window=window, computed_at=computed_at, items=0, written=0)

        item_count, activity = self.collect_activity(db, window, computed_at, index)
        if item_count == 0:
            logger.info(f"No items in window '{window}', nothing to score")
            return WindowResult(window=window, computed_at=computed_at, items=0, written=0)

        scored: List[ScoredEntity] = []
        failed = 0
        # iterate in entity insertion order so the stable sort breaks ties by it
        for entity_id in index.entity_ids:
            entity_activity = activity.get(entity_id)
            if entity_activity is None or entity_activity.window_mentions == 0:
                continue
            try:
                scored.append(self.score_entity(entity_id, entity_activity, window))
            except Exception as e:
                logger.error(f"Scoring failed for entity {entity_id} in window '{window}': {e}")
                failed += 1

        ranked = assign_ranks(scored)
        apply_rank_deltas(ranked, previous_ranks(db, window, computed_at))

        rules = default_rules(self.settings.driver_thresholds)
        shortest, longest = self.settings.shortest_window, self.settings.longest_window
        for entity in ranked:
            entity.driver = classify_driver(
                DriverContext(
                    sources=entity.sources,
                    momentum=entity.momentum,
                    micro_momentum=entity.micro_momentum or 0.0,
                    mention_count=entity.mention_count,
                    previous_rank=entity.previous_rank,
                    current_rank=entity.rank,
                    is_shortest_window=window == shortest,
                    is_longest_window=window == longest,
                ),
                rules,
            )

        written = write_snapshot(db, window, ranked, computed_at)
        return WindowResult(window=window, computed_at=computed_at, items=item_count, written=written, failed=failed)

    def score_all(self, db: Session, now: Optional[datetime] = None) -> List[WindowResult]:
        """Score every configured window against one alias snapshot."""
        now = now or utcnow()
        index = AliasIndex.from_db(db)
        return [self.score_window(db, window, now, index) for window in self.settings.windows]
