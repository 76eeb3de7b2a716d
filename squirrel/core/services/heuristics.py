"""
Deterministic local fallbacks used when a model capability is unavailable.

None of these touch the network. They are intentionally crude: the hash
embedding only clusters texts that share words, and the keyword tagger is
plain word frequency.
"""

import math
import re
from collections import Counter
from typing import List

from squirrel.core.services.tag_normalizer import MAX_TAGS, clean_tags

HASH_EMBEDDING_DIMENSIONS = 384
NO_INFO_ANSWER = "No info found."

_PUNCTUATION = re.compile(r"[^\w\s]")


def hash_embedding(text: str, dimensions: int = HASH_EMBEDDING_DIMENSIONS) -> List[float]:
    """Hash-mixed pseudo-embedding, L2-normalized."""
    embedding = [0.0] * dimensions
    words = text.lower().split()

    for i, word in enumerate(words):
        for j, char in enumerate(word):
            code = ord(char)
            index = (code * (i + 1) * (j + 1)) % dimensions
            embedding[index] += math.sin(code * 0.1) / (i + 1)

    norm = math.sqrt(sum(v * v for v in embedding)) or 1.0
    return [v / norm for v in embedding]


def keyword_candidates(content: str, limit: int = MAX_TAGS) -> List[str]:
    """Most frequent words longer than three characters."""
    words = [w for w in _PUNCTUATION.sub(" ", content.lower()).split() if len(w) > 3]
    # Counter.most_common keeps first-seen order among equal counts
    return [word for word, _ in Counter(words).most_common(limit)]


def keyword_tags(content: str) -> List[str]:
    return clean_tags(keyword_candidates(content))[:MAX_TAGS]


def extractive_answer(question: str, context: str, max_lines: int = 6) -> str:
    """
    Answers without a language model by echoing the most relevant context.

    Used by the local provider only; it never invents content.
    """
    if not context.strip():
        return NO_INFO_ANSWER

    lines = [line for line in context.splitlines() if line.strip()]
    terms = {w for w in _PUNCTUATION.sub(" ", question.lower()).split() if len(w) > 3}
    if terms:
        matching = [line for line in lines if terms & set(_PUNCTUATION.sub(" ", line.lower()).split())]
        if matching:
            lines = matching

    excerpt = "\n".join(line.strip() for line in lines[:max_lines])
    return f"From your notes:\n{excerpt}"
