from dataclasses import dataclass, field
from typing import Dict, Iterable, Optional

from trendboard.config import get_settings

# ---------------------------------------------------------------------------
# Platform scores are clamped to [0, 100]. The weighted sums are unbounded, so
# 100 is a soft ceiling rather than a percentile: two very different entities
# can both sit at 100.
# ---------------------------------------------------------------------------

MIN_SCORE = 0.0
MAX_SCORE = 100.0


@dataclass
class PlatformMetrics:
    """One entity's aggregated activity on one platform over one time slice."""
    velocities: Dict[str, float] = field(default_factory=dict)  # counter -> per-minute velocity
    authority_weight: float = 1.0
    mentions: int = 0


@dataclass(frozen=True)
class CombinedScore:
    score: float
    sources: Dict[str, float]


def clamp(value: float, low: float = MIN_SCORE, high: float = MAX_SCORE) -> float:
    return min(high, max(low, value))


def platform_score(
    platform: str,
    metrics: PlatformMetrics,
    formulas: Optional[Dict[str, Dict[str, float]]] = None,
    authority_platforms: Optional[Iterable[str]] = None,
) -> float:
    """
    Weighted velocity score for one platform, clamped to [0, 100].

    youtube: 0.4 views + 0.3 likes + 0.3 comments, times channel authority
    reddit:  0.5 upvotes + 0.5 comments
    x:       0.4 reposts + 0.3 likes + 0.3 replies, times account authority
    """
    settings = get_settings()
    formulas = formulas if formulas is not None else settings.platform_formulas
    authority_platforms = authority_platforms if authority_platforms is not None else settings.authority_platforms

    weights = formulas.get(platform, {})
    raw = sum(weight * metrics.velocities.get(counter, 0.0) for counter, weight in weights.items())
    if platform in authority_platforms:
        raw *= metrics.authority_weight
    return clamp(raw)


def combine_scores(platform_scores: Dict[str, float], weights: Dict[str, float]) -> CombinedScore:
    """
    Weighted mean of per-platform scores plus each platform's share of the raw total.

    The breakdown is presentation metadata and does not feed the ranking. A
    platform with weight 0 still shows up in the breakdown.
    """
    platforms = list(dict.fromkeys([*platform_scores, *weights]))

    total_weight = sum(weights.get(p, 0.0) for p in platforms)
    weighted = sum(platform_scores.get(p, 0.0) * weights.get(p, 0.0) for p in platforms)
    score = weighted / total_weight if total_weight > 0 else 0.0

    total = sum(platform_scores.get(p, 0.0) for p in platforms)
    sources = {p: (platform_scores.get(p, 0.0) / total if total > 0 else 0.0) for p in platforms}
    return CombinedScore(score=score, sources=sources)


def momentum(current: float, prior: float) -> float:
    """
    Percentage change between two equal slices.

    A zero baseline has no defined ratio: new activity reports 100, none reports 0.
    """
    if prior == 0:
        return 100.0 if current > 0 else 0.0
    return (current - prior) / prior * 100
