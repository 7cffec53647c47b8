"""Persona lookup.

Persona editing is a presentation concern. The core only needs to resolve a
persona by ``(id, type)``, which is what ``PersonaProvider`` describes.
``PersonaBook`` is the stored implementation, seeded with one default
persona per side.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from pydantic import TypeAdapter, ValidationError

from companion.chat.models import Persona, PersonaType

if TYPE_CHECKING:
    from companion.persistence import Persistence

logger = logging.getLogger(__name__)

_PERSONA_KEYS: dict[str, str] = {"user": "personas_user", "ai": "personas_ai"}

_personas = TypeAdapter(list[Persona])


@runtime_checkable
class PersonaProvider(Protocol):
    """Resolves personas for the context builder and session keys."""

    def get_persona(self, persona_id: str, persona_type: PersonaType) -> Persona | None:
        ...


def default_personas() -> list[Persona]:
    """The personas a fresh install starts with."""
    return [
        Persona(
            id="user_default",
            type="user",
            name="You",
            backstory="A curious person interested in AI conversations",
        ),
        Persona(
            id="ai_default",
            type="ai",
            name="AI Companion",
            gender="AI",
            backstory="A helpful and knowledgeable AI assistant",
            physical="A digital entity represented by text",
            directive="Be helpful, informative, and engaging. Provide thoughtful responses.",
        ),
    ]


class PersonaBook:
    """Personas kept in persistence, one document per side."""

    def __init__(self, persistence: Persistence) -> None:
        self._persistence = persistence
        self._personas: dict[str, list[Persona]] = {"user": [], "ai": []}

    async def load(self) -> None:
        """Load personas, seeding the default for each side that has none."""
        for persona_type, key in _PERSONA_KEYS.items():
            try:
                raw = await self._persistence.load(key)
                self._personas[persona_type] = _personas.validate_python(raw or [])
            except (ValidationError, ValueError):
                logger.exception("Error loading %s personas", persona_type)
                self._personas[persona_type] = []

        seeded = False
        for persona in default_personas():
            if not self._personas[persona.type]:
                self._personas[persona.type].append(persona)
                seeded = True
        if seeded:
            await self._save()

    async def _save(self) -> None:
        await self._persistence.save_many({
            key: [p.to_json() for p in self._personas[persona_type]]
            for persona_type, key in _PERSONA_KEYS.items()
        })

    def get_persona(self, persona_id: str, persona_type: PersonaType) -> Persona | None:
        return next((p for p in self._personas[persona_type] if p.id == persona_id), None)

    def list_personas(self, persona_type: PersonaType) -> list[Persona]:
        return list(self._personas[persona_type])

    async def save_persona(self, persona: Persona) -> Persona:
        """Add or replace a persona. A same-named persona of the same type is replaced."""
        bucket = self._personas[persona.type]
        index = next(
            (i for i, p in enumerate(bucket) if p.id == persona.id or p.name == persona.name),
            None,
        )
        if index is None:
            bucket.append(persona)
        else:
            bucket[index] = persona
        await self._save()
        return persona
