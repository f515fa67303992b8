import re
from typing import Iterable, List, Optional

from trendboard.config import get_settings

_NON_WORD = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")


def normalize_text(text: str) -> str:
    """Lowercase, turn punctuation into spaces, collapse whitespace."""
    text = _NON_WORD.sub(" ", (text or "").lower())
    return _WHITESPACE.sub(" ", text).strip()


def normalize_title(
    title: str,
    channel_name: str = "",
    stopwords: Optional[Iterable[str]] = None,
    min_length: Optional[int] = None,
) -> List[str]:
    """
    Turn a raw title into the ordered token list used for clustering.

    Tokens of the channel name are removed first so a channel's own name
    ("after hours with joe") does not make every one of its uploads look alike.
    Duplicates are kept; callers build sets as needed.
    """
    settings = get_settings()
    stop = set(stopwords if stopwords is not None else settings.stopwords)
    min_length = min_length if min_length is not None else settings.min_token_length

    normalized = normalize_text(title)
    for token in normalize_text(channel_name).split():
        normalized = re.sub(rf"\b{re.escape(token)}\b", " ", normalized)

    return [
        token
        for token in normalized.split()
        if len(token) >= min_length and token not in stop
    ]
