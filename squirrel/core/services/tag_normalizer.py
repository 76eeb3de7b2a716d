"""
Tag normalization - the only path by which tags enter the system.

Raw candidates (model output or heuristic keywords) are lowercased, stripped
of punctuation, hyphenated, filtered against a stop-word list and
deduplicated, keeping first occurrences in order.
"""

import re
from typing import Iterable, List

MAX_TAGS = 5
MIN_TAG_LENGTH = 2
MAX_TAG_LENGTH = 30

STOPWORDS = frozenset([
    'a', 'an', 'and', 'are', 'as', 'at', 'be', 'by', 'for', 'from',
    'has', 'he', 'in', 'is', 'it', 'its', 'of', 'on', 'that', 'the',
    'to', 'was', 'will', 'with', 'this', 'but', 'they', 'have', 'had',
    'what', 'when', 'where', 'who', 'which', 'why', 'how', 'or', 'can',
    'do', 'does', 'did', 'been', 'being', 'am', 'were', 'would', 'could',
    'should', 'may', 'might', 'must', 'shall', 'not', 'no', 'yes', 'so',
])

_WHITESPACE = re.compile(r"\s+")
_HYPHENS = re.compile(r"-+")
_RESPONSE_PREFIX = re.compile(r"^(tags?:|keywords?:|here are|the tags are):?\s*", re.IGNORECASE)
_RESPONSE_SPLIT = re.compile(r"[,\n]")


def normalize_tag(candidate: str) -> str:
    """Applies the cleaning steps to one candidate without filtering it."""
    lowered = candidate.lower()
    kept = "".join(ch for ch in lowered if ch.isalnum() or ch.isspace() or ch == "-")
    hyphenated = _WHITESPACE.sub("-", kept.strip())
    return _HYPHENS.sub("-", hyphenated).strip("-")


def is_valid_tag(tag: str) -> bool:
    if not tag or len(tag) < MIN_TAG_LENGTH or len(tag) > MAX_TAG_LENGTH:
        return False
    # Digits from any script, not just ASCII
    if tag.isnumeric():
        return False
    if tag in STOPWORDS:
        return False
    # Multi-word tags need at least one word that carries meaning
    return any(word not in STOPWORDS for word in tag.split("-"))


def clean_tags(candidates: Iterable[str]) -> List[str]:
    """
    Turns raw candidate strings into a clean, deduplicated tag list.

    >>> clean_tags(["The", "a-a", "cats!!", "cats", "cats"])
    ['cats']
    """
    seen = set()
    cleaned = []
    for candidate in candidates:
        if candidate is None:
            continue
        tag = normalize_tag(str(candidate))
        if not is_valid_tag(tag) or tag in seen:
            continue
        seen.add(tag)
        cleaned.append(tag)
    return cleaned


def parse_tag_response(response: str) -> List[str]:
    """Splits a comma/newline separated model reply into raw candidates."""
    text = _RESPONSE_PREFIX.sub("", (response or "").strip())
    return [part.strip() for part in _RESPONSE_SPLIT.split(text) if part.strip()]
