"""Keyword extraction — frequency-ranked salient terms from raw text."""

import re
from collections import Counter

MAX_KEYWORDS = 5
MIN_TOKEN_LENGTH = 4

STOP_WORDS = frozenset({
    "the", "and", "that", "for", "with", "this", "have", "from",
    "they", "what", "when", "where", "which", "your", "about",
    "would", "there", "their", "were", "will", "just", "like",
})

_NON_WORD_RE = re.compile(r"[^\w\s]")


def extract_keywords(text: str) -> list[str]:
    """Return up to five salient terms from *text*, most frequent first.

    Ties keep first-occurrence order. Empty or all-stop-word input yields
    an empty list.
    """
    words = _NON_WORD_RE.sub(" ", text.lower()).split()
    candidates = [
        word for word in words
        if len(word) >= MIN_TOKEN_LENGTH and word not in STOP_WORDS
    ]
    frequency = Counter(candidates)
    # Counter preserves first-insertion order and sorted() is stable
    ranked = sorted(frequency.items(), key=lambda item: item[1], reverse=True)
    return [word for word, _ in ranked[:MAX_KEYWORDS]]
