"""Tests for PersonaBook."""

from companion.chat.models import Persona
from companion.persistence import InMemoryPersistence
from companion.personas import PersonaBook, PersonaProvider


async def test_load_seeds_defaults(persistence: InMemoryPersistence) -> None:
    book = PersonaBook(persistence)
    await book.load()

    user = book.get_persona("user_default", "user")
    ai = book.get_persona("ai_default", "ai")
    assert user is not None and user.name == "You"
    assert ai is not None and ai.name == "AI Companion"
    assert (await persistence.load("personas_user"))[0]["id"] == "user_default"


async def test_lookup_respects_type(persistence: InMemoryPersistence) -> None:
    book = PersonaBook(persistence)
    await book.load()
    assert book.get_persona("user_default", "ai") is None


async def test_save_persona_adds_and_persists(persistence: InMemoryPersistence) -> None:
    book = PersonaBook(persistence)
    await book.load()
    await book.save_persona(Persona(id="ai_luna", type="ai", name="Luna", age=28))

    reloaded = PersonaBook(persistence)
    await reloaded.load()
    luna = reloaded.get_persona("ai_luna", "ai")
    assert luna is not None and luna.age == 28
    assert len(reloaded.list_personas("ai")) == 2


async def test_save_persona_replaces_same_name(persistence: InMemoryPersistence) -> None:
    book = PersonaBook(persistence)
    await book.load()
    await book.save_persona(Persona(id="ai_other", type="ai", name="AI Companion"))

    assert [p.id for p in book.list_personas("ai")] == ["ai_other"]


async def test_existing_personas_not_reseeded(persistence: InMemoryPersistence) -> None:
    await persistence.save("personas_user", [{"id": "u1", "type": "user", "name": "Sam"}])
    book = PersonaBook(persistence)
    await book.load()

    assert [p.id for p in book.list_personas("user")] == ["u1"]
    assert [p.id for p in book.list_personas("ai")] == ["ai_default"]


async def test_each_side_seeded_on_its_own(persistence: InMemoryPersistence) -> None:
    await persistence.save("personas_ai", [{"id": "ai_luna", "type": "ai", "name": "Luna"}])
    book = PersonaBook(persistence)
    await book.load()

    assert [p.id for p in book.list_personas("user")] == ["user_default"]
    assert [p.id for p in book.list_personas("ai")] == ["ai_luna"]
    stored = await persistence.load("personas_ai")
    assert [p["id"] for p in stored] == ["ai_luna"]


async def test_personas_that_are_not_json(sqlite_store, corrupt_blob) -> None:
    await corrupt_blob("personas_user")
    book = PersonaBook(sqlite_store)

    await book.load()

    assert [p.id for p in book.list_personas("user")] == ["user_default"]


def test_book_is_a_provider(persistence: InMemoryPersistence) -> None:
    assert isinstance(PersonaBook(persistence), PersonaProvider)
