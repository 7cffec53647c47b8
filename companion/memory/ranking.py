"""Relevance ranking of stored memories against a query."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from companion.memory.keywords import extract_keywords
from companion.memory.models import Memory, MemoryType, ScoredMemory
from companion.models import utc_now

if TYPE_CHECKING:
    from collections.abc import Sequence

KEYWORD_MATCH_SCORE = 2.0
CONTENT_MATCH_SCORE = 1.0
RECENCY_BOOST = 1.0
RECENCY_WINDOW = timedelta(hours=24)
ACCESS_BOOST_PER_HIT = 0.5
MAX_ACCESS_BOOST = 3.0


def score_memory(memory: Memory, query_keywords: Sequence[str], now: datetime) -> float:
    """Heuristic relevance of one memory.

    Keyword-list and content-substring matches are counted independently,
    so one query term can contribute to both.
    """
    score = 0.0
    content = memory.content.lower()
    for keyword in query_keywords:
        if keyword in memory.keywords:
            score += KEYWORD_MATCH_SCORE
        if keyword.lower() in content:
            score += CONTENT_MATCH_SCORE

    timestamp = memory.timestamp
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=UTC)
    if now - timestamp < RECENCY_WINDOW:
        score += RECENCY_BOOST

    if memory.access_count is not None:
        score += min(MAX_ACCESS_BOOST, memory.access_count * ACCESS_BOOST_PER_HIT)

    return score


def rank_memories(
    query: str,
    short_term: Sequence[Memory],
    long_term: Sequence[Memory],
    limit: int = 5,
    now: datetime | None = None,
) -> list[ScoredMemory]:
    """Return the top *limit* memories for *query*, best first.

    Candidates scoring zero are dropped. Ties keep short-term-then-long-term
    insertion order. Neither input collection is modified.
    """
    now = now or utc_now()
    query_keywords = extract_keywords(query)

    candidates: list[tuple[Memory, MemoryType]] = [
        *((m, "stm") for m in short_term),
        *((m, "ltm") for m in long_term),
    ]

    scored: list[ScoredMemory] = []
    for memory, origin in candidates:
        score = score_memory(memory, query_keywords, now)
        if score <= 0:
            continue
        scored.append(
            ScoredMemory(**memory.model_dump(), relevance_score=score, origin=origin)
        )

    scored.sort(key=lambda m: m.relevance_score, reverse=True)
    return scored[:limit]
