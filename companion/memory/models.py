"""Data models for memories and the keyword registry."""

from datetime import datetime
from typing import Literal

from pydantic import Field

from companion.models import CamelModel, new_id, utc_now

MemorySource = Literal["chat", "manual", "auto_promoted"]
MemoryType = Literal["stm", "ltm"]


class Memory(CamelModel):
    """A remembered piece of conversation text.

    ``access_count`` is None for short-term memories, which do not track
    access; long-term memories start at 0.
    """

    id: str = Field(default_factory=new_id)
    content: str
    keywords: list[str] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=utc_now)
    source: MemorySource = "chat"
    access_count: int | None = Field(default=None, ge=0)
    edited: bool | None = None
    edit_timestamp: datetime | None = None


class ScoredMemory(Memory):
    """A memory returned by the ranker, with its score and collection."""

    relevance_score: float
    origin: MemoryType


class Keyword(CamelModel):
    """A salient term seen in conversation."""

    text: str
    count: int = Field(default=1, ge=0)
    importance: float = Field(default=0.5, ge=0.0, le=1.0)
    created_at: datetime = Field(default_factory=utc_now)
    last_used: datetime = Field(default_factory=utc_now)
