"""
Driver labels: a short "why is this moving" tag per ranked entity.

The rules are data, an ordered list of (label, predicate) pairs. The first
predicate that holds wins, so order is part of the behaviour.
"""
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from trendboard.config import DriverThresholds, get_settings

CLIP_SPIKE = "clip_spike"
DUNK_THREAD = "dunk_thread"
DISCUSSION_CONSOLIDATION = "reddit_consolidation"
CROSS_PLATFORM_PICKUP = "cross_platform_pickup"
COMEBACK = "comeback"
HEATING_UP = "heating_up"
SLOW_BURN = "slow_burn"


@dataclass(frozen=True)
class DriverContext:
    sources: Dict[str, float]
    momentum: float
    micro_momentum: float
    mention_count: int
    previous_rank: Optional[int]
    current_rank: int
    is_shortest_window: bool
    is_longest_window: bool

    def share(self, platform: str) -> float:
        return self.sources.get(platform, 0.0)


@dataclass(frozen=True)
class DriverRule:
    label: str
    predicate: Callable[[DriverContext], bool]


def default_rules(t: Optional[DriverThresholds] = None) -> List[DriverRule]:
    t = t or get_settings().driver_thresholds
    return [
        DriverRule(
            CLIP_SPIKE,
            lambda c: c.share("youtube") > t.dominant_share
            and c.momentum > t.clip_spike_momentum
            and c.is_shortest_window,
        ),
        DriverRule(
            DUNK_THREAD,
            lambda c: c.share("x") > t.dominant_share and c.momentum > t.dunk_thread_momentum,
        ),
        DriverRule(
            DISCUSSION_CONSOLIDATION,
            lambda c: c.share("reddit") > t.dominant_share and c.mention_count > t.consolidation_mentions,
        ),
        DriverRule(
            CROSS_PLATFORM_PICKUP,
            lambda c: max(c.sources.values(), default=0.0) <= t.balanced_max_share
            and c.momentum > t.cross_platform_momentum,
        ),
        DriverRule(
            COMEBACK,
            lambda c: (c.previous_rank is None or c.previous_rank > t.comeback_previous_rank)
            and c.current_rank <= t.comeback_current_rank,
        ),
        DriverRule(
            HEATING_UP,
            lambda c: c.micro_momentum > t.heating_up_micro_momentum and c.momentum > t.heating_up_momentum,
        ),
        DriverRule(
            SLOW_BURN,
            lambda c: c.is_longest_window and 0 < c.momentum < t.slow_burn_max_momentum,
        ),
    ]


def classify_driver(context: DriverContext, rules: Optional[List[DriverRule]] = None) -> Optional[str]:
    for rule in rules if rules is not None else default_rules():
        if rule.predicate(context):
            return rule.label
    return None
