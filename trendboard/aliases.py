import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Pattern, Tuple

from sqlalchemy.orm import Session

from trendboard.models import Entity, EntityAlias, Item

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AliasRule:
    entity_id: int
    pattern: Pattern
    platform_scope: str
    weight: float

    def applies_to(self, platform: str) -> bool:
        return self.platform_scope in ("any", platform)


def compile_alias(alias_text: str, match_type: str) -> Pattern:
    """
    Compile an alias into a case-insensitive pattern.

    exact    -> the alias as a whole word/phrase
    contains -> the alias anywhere, including inside longer words
    regex    -> the alias is already a pattern
    """
    if match_type == "regex":
        return re.compile(alias_text, re.IGNORECASE)
    escaped = re.escape(alias_text.strip())
    if match_type == "exact":
        return re.compile(rf"\b{escaped}\b", re.IGNORECASE)
    return re.compile(escaped, re.IGNORECASE)


class AliasIndex:
    """
    Immutable alias -> entity lookup built once at the start of a pass and
    passed explicitly to the code that attributes mentions.
    """

    def __init__(self, entity_ids: List[int], rules: List[AliasRule]):
        self._entity_ids = tuple(entity_ids)
        self._rules = tuple(rules)

    @property
    def entity_ids(self) -> Tuple[int, ...]:
        """Enabled entities in insertion order."""
        return self._entity_ids

    def __len__(self) -> int:
        return len(self._rules)

    @classmethod
    def from_db(cls, db: Session) -> "AliasIndex":
        entities = db.query(Entity.id).filter(Entity.enabled.is_(True)).order_by(Entity.id).all()
        entity_ids = [row.id for row in entities]

        rows = (
            db.query(EntityAlias)
            .join(Entity, Entity.id == EntityAlias.entity_id)
            .filter(Entity.enabled.is_(True))
            .order_by(EntityAlias.entity_id, EntityAlias.id)
            .all()
        )
        rules = []
        for alias in rows:
            if not (alias.alias_text or "").strip():
                continue
            try:
                pattern = compile_alias(alias.alias_text, alias.match_type)
            except re.error as e:
                logger.warning(f"Skipping alias {alias.id} ('{alias.alias_text}'): invalid pattern: {e}")
                continue
            rules.append(AliasRule(alias.entity_id, pattern, alias.platform_scope or "any", alias.confidence_weight))

        index = cls(entity_ids, rules)
        logger.info(f"Loaded {len(index)} aliases for {len(index.entity_ids)} entities")
        return index

    def match_text(self, text: str, platform: str) -> Dict[int, float]:
        """Entities mentioned in `text`, each with its strongest alias weight."""
        matches: Dict[int, float] = {}
        for rule in self._rules:
            if not rule.applies_to(platform):
                continue
            if rule.pattern.search(text):
                matches[rule.entity_id] = max(rule.weight, matches.get(rule.entity_id, 0.0))
        return matches

    def match_item(self, item: Item) -> Dict[int, float]:
        return self.match_text(f"{item.title or ''} {item.channel_name or ''}", item.platform)
