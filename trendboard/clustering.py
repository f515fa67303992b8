"""
Pure clustering primitives: event keys, Jaccard similarity and the
attach-or-create decision. No database access happens here.
"""
import hashlib
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional, Sequence, Set
from urllib.parse import parse_qs, urlparse

from trendboard.config import get_settings

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_REDDIT_POST = re.compile(r"/comments/([a-z0-9]+)")


def _short_hash(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()[:16]


def time_bucket(ts: datetime, bucket_hours: Optional[int] = None) -> datetime:
    """Floor a timestamp to the start of its fixed-width UTC bucket."""
    bucket_hours = bucket_hours or get_settings().time_bucket_hours
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    width = timedelta(hours=bucket_hours)
    return _EPOCH + ((ts - _EPOCH) // width) * width


def event_key(tokens: Sequence[str], published_at: datetime, top_n: Optional[int] = None) -> str:
    """
    Coarse grouping key: hash of the 6h bucket start and the sorted first N tokens.
    Only a pre-filter; similarity decides membership.
    """
    top_n = top_n or get_settings().event_key_tokens
    bucket = time_bucket(published_at).isoformat()
    top_tokens = "_".join(sorted(tokens[:top_n]))
    return _short_hash(f"{bucket}|{top_tokens}")


def normalize_url(url: str) -> str:
    """Reduce a content URL to a stable identity string."""
    try:
        parsed = urlparse(url)
    except ValueError:
        return url.lower()

    host = (parsed.hostname or "").lower()
    if "youtube.com" in host or "youtu.be" in host:
        video_id = parse_qs(parsed.query).get("v", [None])[0] or parsed.path.rstrip("/").split("/")[-1]
        return f"youtube:{video_id}"
    if "reddit.com" in host:
        match = _REDDIT_POST.search(parsed.path)
        if match:
            return f"reddit:{match.group(1)}"
    if not host:
        return url.lower()
    return f"{host}{parsed.path}".lower()


def identity_key(platform: str, external_id: str, url: Optional[str] = None) -> str:
    """Exact-identity key for items that have no usable title tokens."""
    if url:
        return _short_hash(normalize_url(url))
    return _short_hash(f"{platform}:{external_id}")


def jaccard(a: Set[str], b: Set[str]) -> float:
    union = a | b
    if not union:
        return 0.0
    return len(a & b) / len(union)


@dataclass(frozen=True)
class Candidate:
    """An open event as seen by the matcher: its id and its primary item's tokens."""
    event_id: int
    tokens: frozenset


@dataclass(frozen=True)
class Match:
    event_id: int
    similarity: float


def best_match(
    tokens: Iterable[str],
    candidates: Iterable[Candidate],
    threshold: Optional[float] = None,
) -> Optional[Match]:
    """
    Return the candidate to attach to, or None to create a new event.

    Candidates must be ordered newest first. Only a strictly higher similarity
    replaces the current best, so among exact ties the most recently created
    event wins.
    """
    threshold = get_settings().similarity_threshold if threshold is None else threshold
    token_set = set(tokens)
    if not token_set:
        return None

    best: Optional[Match] = None
    for candidate in candidates:
        similarity = jaccard(token_set, set(candidate.tokens))
        if similarity < threshold:
            continue
        if best is None or similarity > best.similarity:
            best = Match(candidate.event_id, similarity)
    return best
