"""Memory engine — keyword extraction, promotion, ranking, and the bounded store."""

from companion.memory.keywords import extract_keywords
from companion.memory.models import Keyword, Memory, ScoredMemory
from companion.memory.ranking import rank_memories
from companion.memory.store import MemoryStore

__all__ = [
    "Keyword",
    "Memory",
    "MemoryStore",
    "ScoredMemory",
    "extract_keywords",
    "rank_memories",
]
