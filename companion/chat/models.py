"""Data models for chat messages and personas."""

from datetime import datetime
from typing import Literal

from pydantic import Field

from companion.models import CamelModel, new_id, utc_now

Role = Literal["user", "assistant", "system"]
PersonaType = Literal["user", "ai"]


class Message(CamelModel):
    """A single conversation turn in a session's log."""

    id: str = Field(default_factory=new_id)
    role: Role
    content: str
    timestamp: datetime = Field(default_factory=utc_now)
    persona_id: str | None = None
    edited: bool | None = None
    edit_timestamp: datetime | None = None
    is_streaming: bool | None = None
    is_error: bool | None = None

    def to_api(self) -> dict[str, str]:
        """Format for the completions API."""
        return {"role": self.role, "content": self.content}


class Persona(CamelModel):
    """A character on either side of the conversation."""

    id: str = Field(default_factory=new_id)
    type: PersonaType
    name: str
    age: int | None = None
    gender: str | None = None
    backstory: str | None = None
    physical: str | None = None
    directive: str | None = None
    created_at: datetime = Field(default_factory=utc_now)
