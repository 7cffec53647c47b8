"""Bounded short-term / long-term memory with a keyword registry.

Both collections are newest-first. Inserts go at the head and, once a
collection is over capacity, entries fall off the tail (insertion order,
not least-recently-used). Every mutating method persists all three
collections as one snapshot before returning.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from pydantic import TypeAdapter, ValidationError

from companion import events
from companion.config import settings
from companion.errors import MemoryNotFound
from companion.memory.keywords import extract_keywords
from companion.memory.models import Keyword, Memory, MemorySource, MemoryType, ScoredMemory
from companion.memory.promotion import should_promote
from companion.memory.ranking import rank_memories
from companion.models import utc_now

if TYPE_CHECKING:
    from collections.abc import Iterable

    from companion.chat.models import Message
    from companion.events import EventBus
    from companion.persistence import Persistence

logger = logging.getLogger(__name__)

STM_KEY = "memory_stm"
LTM_KEY = "memory_ltm"
KEYWORDS_KEY = "memory_keywords"

# Removal by message matches on this many leading characters of its content
MESSAGE_PREFIX_LENGTH = 50

USAGE_IMPORTANCE_STEP = 0.1
MANUAL_IMPORTANCE_STEP = 0.2
NEW_KEYWORD_IMPORTANCE = 0.5
MANUAL_KEYWORD_IMPORTANCE = 0.8

_memories = TypeAdapter(list[Memory])
_keywords = TypeAdapter(list[Keyword])


class MemoryStore:
    """Owns short-term memory, long-term memory and the keyword registry.

    Collaborators are passed in explicitly; *events* is optional and, when
    absent, change notifications are simply not sent.
    """

    def __init__(
        self,
        persistence: Persistence,
        events_bus: EventBus | None = None,
        *,
        stm_capacity: int | None = None,
        ltm_capacity: int | None = None,
        keyword_capacity: int | None = None,
    ) -> None:
        self._persistence = persistence
        self._events = events_bus
        self.stm_capacity = settings.stm_capacity if stm_capacity is None else stm_capacity
        self.ltm_capacity = settings.ltm_capacity if ltm_capacity is None else ltm_capacity
        self.keyword_capacity = (
            settings.keyword_capacity if keyword_capacity is None else keyword_capacity
        )
        self.short_term: list[Memory] = []
        self.long_term: list[Memory] = []
        self.keywords: list[Keyword] = []

    # -- Persistence -----------------------------------------------------------

    async def load(self) -> None:
        """Load all three collections. Corrupt data resets memory to empty."""
        try:
            stm = await self._persistence.load(STM_KEY)
            ltm = await self._persistence.load(LTM_KEY)
            kws = await self._persistence.load(KEYWORDS_KEY)
            self.short_term = _memories.validate_python(stm or [])
            self.long_term = _memories.validate_python(ltm or [])
            self.keywords = _keywords.validate_python(kws or [])
        except (ValidationError, ValueError, TypeError):
            logger.exception("Error loading memory, starting empty")
            self.short_term = []
            self.long_term = []
            self.keywords = []
        logger.info(
            "Memory loaded: %d short-term, %d long-term, %d keywords",
            len(self.short_term),
            len(self.long_term),
            len(self.keywords),
        )

    async def _save(self, collection: str) -> None:
        await self._persistence.save_many({
            STM_KEY: [m.to_json() for m in self.short_term],
            LTM_KEY: [m.to_json() for m in self.long_term],
            KEYWORDS_KEY: [k.to_json() for k in self.keywords],
        })
        if self._events:
            self._events.emit(events.MEMORY_CHANGED, collection=collection, store=self)

    # -- Internal helpers ------------------------------------------------------

    def _collection(self, memory_type: MemoryType) -> list[Memory]:
        if memory_type == "stm":
            return self.short_term
        if memory_type == "ltm":
            return self.long_term
        msg = f"Unknown memory type '{memory_type}'"
        raise ValueError(msg)

    def _insert_stm(self, content: str, keywords: list[str]) -> Memory:
        memory = Memory(content=content, keywords=keywords, source="chat")
        self.short_term.insert(0, memory)
        del self.short_term[self.stm_capacity:]
        return memory

    def _insert_ltm(self, content: str, keywords: list[str], source: MemorySource) -> Memory:
        memory = Memory(content=content, keywords=keywords, source=source, access_count=0)
        self.long_term.insert(0, memory)
        del self.long_term[self.ltm_capacity:]
        return memory

    def _find_keyword(self, text: str) -> Keyword | None:
        return next((k for k in self.keywords if k.text == text), None)

    def _sort_keywords(self) -> None:
        self.keywords.sort(key=lambda k: k.importance, reverse=True)
        del self.keywords[self.keyword_capacity:]

    def _register_usage(self, terms: Iterable[str]) -> None:
        now = utc_now()
        for term in terms:
            existing = self._find_keyword(term)
            if existing:
                existing.count += 1
                existing.last_used = now
                existing.importance = min(1.0, existing.importance + USAGE_IMPORTANCE_STEP)
            else:
                self.keywords.append(
                    Keyword(
                        text=term,
                        importance=NEW_KEYWORD_IMPORTANCE,
                        created_at=now,
                        last_used=now,
                    )
                )
        self._sort_keywords()

    # -- Write -----------------------------------------------------------------

    async def process(self, message: Message) -> Memory:
        """Remember a chat message.

        Inserts into short-term memory, copies to long-term memory when the
        promotion policy fires, then counts its keywords. Promotion is judged
        against the registry as it was before this message.

        Returns the short-term memory that was created.
        """
        keywords = extract_keywords(message.content)
        memory = self._insert_stm(message.content, keywords)

        promoted = should_promote(message.content, keywords, self.keywords)
        if promoted:
            self._insert_ltm(message.content, keywords, "auto_promoted")

        self._register_usage(keywords)
        await self._save("ltm" if promoted else "stm")

        logger.debug(
            "Processed %s message: keywords=%s promoted=%s",
            message.role,
            keywords,
            promoted,
        )
        return memory

    async def add_manual(
        self,
        target: MemoryType,
        content: str,
        keywords: list[str] | None = None,
    ) -> Memory:
        """Add a memory directly, bypassing the promotion policy."""
        if keywords is None:
            keywords = extract_keywords(content)
        if target == "stm":
            memory = self._insert_stm(content, keywords)
        elif target == "ltm":
            memory = self._insert_ltm(content, keywords, "manual")
        else:
            msg = f"Unknown memory type '{target}'"
            raise ValueError(msg)
        await self._save(target)
        logger.info("Added manual %s memory: %s", target, content[:80])
        return memory

    async def add_keyword(self, text: str) -> Keyword:
        """Register a keyword by hand. New ones start at high importance."""
        text = text.strip().lower()
        now = utc_now()
        keyword = self._find_keyword(text)
        if keyword:
            keyword.importance = min(1.0, keyword.importance + MANUAL_IMPORTANCE_STEP)
            keyword.last_used = now
        else:
            keyword = Keyword(
                text=text,
                importance=MANUAL_KEYWORD_IMPORTANCE,
                created_at=now,
                last_used=now,
            )
            self.keywords.append(keyword)
        self._sort_keywords()
        await self._save("keywords")
        return keyword

    async def edit(self, memory_id: str, memory_type: MemoryType, new_content: str) -> Memory:
        """Replace a memory's content and re-derive its keywords."""
        memory = next((m for m in self._collection(memory_type) if m.id == memory_id), None)
        if memory is None:
            msg = f"No {memory_type} memory with id '{memory_id}'"
            raise MemoryNotFound(msg)

        memory.content = new_content
        memory.keywords = extract_keywords(new_content)
        memory.edited = True
        memory.edit_timestamp = utc_now()
        await self._save(memory_type)
        return memory

    async def record_access(self, memories: Iterable[ScoredMemory]) -> None:
        """Count prompt injections of long-term memories."""
        ids = {m.id for m in memories if m.origin == "ltm"}
        if not ids:
            return
        for memory in self.long_term:
            if memory.id in ids:
                memory.access_count = (memory.access_count or 0) + 1
        await self._save("ltm")

    # -- Delete ----------------------------------------------------------------

    async def delete(self, memory_id: str, memory_type: MemoryType) -> bool:
        """Delete a memory by ID. Returns True if it existed."""
        collection = self._collection(memory_type)
        before = len(collection)
        collection[:] = [m for m in collection if m.id != memory_id]
        if len(collection) == before:
            return False
        await self._save(memory_type)
        logger.info("Deleted %s memory: %s", memory_type, memory_id)
        return True

    async def delete_keyword(self, text: str) -> bool:
        """Remove a keyword from the registry."""
        before = len(self.keywords)
        self.keywords = [k for k in self.keywords if k.text != text]
        if len(self.keywords) == before:
            return False
        await self._save("keywords")
        return True

    async def remove_by_message(self, message: Message) -> int:
        """Forget memories derived from a deleted message.

        Memories carry no message id, so a memory matches when its content
        contains the first 50 characters of the message. This can remove
        unrelated memories that share that text. An empty message matches
        nothing. Returns the number of memories removed.
        """
        prefix = message.content[:MESSAGE_PREFIX_LENGTH]
        if not prefix:
            return 0

        before = len(self.short_term) + len(self.long_term)
        self.short_term = [m for m in self.short_term if prefix not in m.content]
        self.long_term = [m for m in self.long_term if prefix not in m.content]
        removed = before - len(self.short_term) - len(self.long_term)

        await self._save("all")
        if removed:
            logger.info("Removed %d memories for message %s", removed, message.id)
        return removed

    async def clear(self) -> None:
        """Forget everything."""
        self.short_term = []
        self.long_term = []
        self.keywords = []
        await self._save("all")

    # -- Read ------------------------------------------------------------------

    def rank(self, query: str, limit: int | None = None) -> list[ScoredMemory]:
        """Rank stored memories against *query* without modifying them."""
        return rank_memories(
            query,
            self.short_term,
            self.long_term,
            limit=settings.memory_query_limit if limit is None else limit,
        )
