import logging
from collections import defaultdict
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session

from trendboard.clustering import Candidate, best_match, event_key, identity_key
from trendboard.config import Settings, get_settings
from trendboard.models import Event, EventItem, Item, ensure_utc, utcnow
from trendboard.normalizer import normalize_title
from trendboard.schemas import DedupResult
from trendboard.velocity import latest_snapshots, primary_velocity

logger = logging.getLogger(__name__)


class EventStore:
    """
    Clusters items into events and keeps event aggregates up to date.

    Every write tolerates a concurrent pass doing the same work: event creation
    is guarded by the unique event key and item links by the item_id primary key,
    so the loser of a race ends up attaching to the winner's row.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    # ------------------------------------------------------------------
    # Tokens & candidates
    # ------------------------------------------------------------------

    def tokens_for(self, item: Item) -> List[str]:
        return normalize_title(
            item.title or "",
            item.channel_name or "",
            stopwords=self.settings.stopwords,
            min_length=self.settings.min_token_length,
        )

    def candidates(self, db: Session, now: datetime) -> List[Candidate]:
        """Open events first seen inside the lookback window, newest first, capped."""
        cutoff = now - timedelta(hours=self.settings.cluster_lookback_hours)
        rows = (
            db.query(Event, Item)
            .join(Item, Item.id == Event.primary_item_id)
            .filter(Event.first_seen_at >= cutoff)
            .order_by(Event.created_at.desc(), Event.id.desc())
            .limit(self.settings.candidate_limit)
            .all()
        )
        return [Candidate(event.id, frozenset(self.tokens_for(primary))) for event, primary in rows]

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def link_item(self, db: Session, event_id: int, item_id: int) -> bool:
        """Insert an item -> event link. Returns False when the item was already linked."""
        if db.get(EventItem, item_id) is not None:
            return False
        try:
            with db.begin_nested():
                db.add(EventItem(item_id=item_id, event_id=event_id))
        except IntegrityError:
            # another pass linked it first; that is the state we wanted
            logger.debug(f"Item {item_id} already linked, skipping")
            return False
        return True

    def owner_of(self, db: Session, item_id: int) -> Optional[int]:
        link = db.get(EventItem, item_id)
        return link.event_id if link is not None else None

    def attach(self, db: Session, event: Event, item: Item) -> Event:
        self.link_item(db, event.id, item.id)
        owner_id = self.owner_of(db, item.id)
        if owner_id != event.id:
            # the item was clustered elsewhere by an overlapping pass
            logger.warning(f"Item {item.id} belongs to event {owner_id}, leaving event {event.id} unchanged")
            return event

        linked = db.query(func.count(EventItem.item_id)).filter(EventItem.event_id == event.id).scalar()
        event.related_count = linked
        event.item_count = linked
        event.last_seen_at = max(ensure_utc(event.last_seen_at), ensure_utc(item.published_at))

        mix = dict(event.platform_mix or {})
        mix[item.platform] = True
        event.platform_mix = mix
        db.flush()
        return event

    def create(self, db: Session, item: Item, key: str) -> Tuple[Event, bool]:
        """
        Create an event seeded by `item`, or attach to the event that already owns `key`.
        Returns (event, created).
        """
        existing = db.query(Event).filter(Event.event_key == key).first()
        if existing is not None:
            return self.attach(db, existing, item), False

        event = Event(
            event_key=key,
            first_seen_at=item.published_at,
            last_seen_at=item.published_at,
            primary_item_id=item.id,
            platform_mix={p: p == item.platform for p in self.settings.platforms},
            title=item.title or "",
            item_count=1,
            related_count=1,
        )
        try:
            with db.begin_nested():
                db.add(event)
        except IntegrityError:
            logger.info(f"Event key {key} created concurrently, attaching item {item.id} instead")
            winner = db.query(Event).filter(Event.event_key == key).one()
            return self.attach(db, winner, item), False

        if not self.link_item(db, event.id, item.id):
            owner_id = self.owner_of(db, item.id)
            if owner_id is not None and owner_id != event.id:
                logger.info(f"Item {item.id} was clustered into event {owner_id} concurrently, dropping event {event.id}")
                db.delete(event)
                db.flush()
                return db.get(Event, owner_id), False
        return event, True

    def assign(self, db: Session, item: Item, now: datetime) -> Tuple[Event, bool]:
        """Attach `item` to its best matching open event, or start a new one."""
        tokens = self.tokens_for(item)
        if not tokens:
            # nothing to compare on; fall back to exact identity
            logger.warning(f"Item {item.id} has no usable title tokens, clustering by identity")
            return self.create(db, item, identity_key(item.platform, item.external_id, item.url))

        match = best_match(tokens, self.candidates(db, now), self.settings.similarity_threshold)
        if match is not None:
            event = db.get(Event, match.event_id)
            logger.info(
                f"Attached '{(item.title or '')[:60]}' to event {event.id} "
                f"(similarity={match.similarity:.2f})"
            )
            return self.attach(db, event, item), False

        event, created = self.create(db, item, event_key(tokens, item.published_at, self.settings.event_key_tokens))
        if created:
            logger.info(f"Created event {event.id}: '{(item.title or '')[:60]}'")
        return event, created

    # ------------------------------------------------------------------
    # Passes
    # ------------------------------------------------------------------

    def deduplicate(self, db: Session, now: Optional[datetime] = None, hours_back: Optional[float] = None) -> DedupResult:
        """Cluster every recent item that does not belong to an event yet."""
        now = now or utcnow()
        hours_back = hours_back if hours_back is not None else self.settings.dedup_hours_back
        cutoff = now - timedelta(hours=hours_back)

        items = (
            db.query(Item)
            .outerjoin(EventItem, EventItem.item_id == Item.id)
            .filter(EventItem.item_id.is_(None), Item.published_at >= cutoff)
            .order_by(Item.published_at, Item.id)
            .all()
        )
        result = DedupResult()
        if not items:
            logger.info(f"No unclustered items in the last {hours_back}h, nothing to do")
            return result

        logger.info(f"Clustering {len(items)} unclustered items")
        for item in items:
            item_id = item.id
            try:
                _, created = self.assign(db, item, now)
                db.commit()
            except OperationalError:
                db.rollback()
                raise
            except Exception as e:
                db.rollback()
                logger.error(f"Clustering failed for item {item_id}: {e}")
                result.failed += 1
                continue

            result.processed += 1
            if created:
                result.created += 1
            else:
                result.attached += 1

        logger.info(
            f"Clustering complete: processed={result.processed} created={result.created} "
            f"attached={result.attached} failed={result.failed}"
        )
        return result

    def reselect_primaries(self, db: Session) -> int:
        """
        Make each event's primary item its currently fastest-growing member.

        Eventually consistent: a concurrent attach may land after this read,
        and the next run picks it up. Last writer wins on primary_item_id.
        """
        members = defaultdict(list)
        for event_id, item in db.query(EventItem.event_id, Item).join(Item, Item.id == EventItem.item_id):
            members[event_id].append(item)
        if not members:
            return 0

        snapshots = latest_snapshots(db, [item.id for items in members.values() for item in items])
        updated = 0
        for event in db.query(Event).filter(Event.id.in_(list(members))).order_by(Event.id):
            try:
                velocities = {
                    item.id: primary_velocity(
                        item,
                        snapshots.get(item.id, []),
                        self.settings.primary_counters.get(item.platform, "views"),
                    )
                    for item in members[event.id]
                }
                best_item, best_velocity = None, velocities.get(event.primary_item_id, float("-inf"))
                for item in members[event.id]:
                    if velocities[item.id] > best_velocity:
                        best_item, best_velocity = item, velocities[item.id]
            except Exception as e:
                logger.error(f"Primary reselection failed for event {event.id}: {e}")
                continue

            if best_item is not None and best_item.id != event.primary_item_id:
                event.primary_item_id = best_item.id
                event.title = best_item.title or event.title
                updated += 1

        db.commit()
        logger.info(f"Updated {updated} primary items")
        return updated
