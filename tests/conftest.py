"""Shared test fixtures."""

import aiosqlite
import pytest

from companion.chat.log import MessageLog
from companion.events import EventBus
from companion.memory.store import MemoryStore
from companion.persistence import InMemoryPersistence, SqlitePersistence


@pytest.fixture
def persistence() -> InMemoryPersistence:
    return InMemoryPersistence()


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def recorded(bus: EventBus) -> list[tuple[str, dict]]:
    """Every event emitted on ``bus``, in order."""
    seen: list[tuple[str, dict]] = []
    for name in (
        "memory_changed",
        "message_appended",
        "message_updated",
        "message_removed",
        "streaming_delta",
        "generation_ended",
        "notification",
    ):
        bus.subscribe(name, lambda _name=name, **payload: seen.append((_name, payload)))
    return seen


@pytest.fixture
def memory(persistence: InMemoryPersistence, bus: EventBus) -> MemoryStore:
    return MemoryStore(persistence, bus, stm_capacity=20, ltm_capacity=100, keyword_capacity=50)


@pytest.fixture
def log(persistence: InMemoryPersistence, bus: EventBus) -> MessageLog:
    return MessageLog(persistence, "test", bus)


@pytest.fixture
def sqlite_store(tmp_path) -> SqlitePersistence:
    return SqlitePersistence(db_path=tmp_path / "test.db")


@pytest.fixture
def corrupt_blob(sqlite_store: SqlitePersistence):
    """Overwrite a stored document with text that is not JSON."""

    async def _corrupt(key: str, raw: str = "{not json") -> None:
        await sqlite_store.save(key, {})
        async with aiosqlite.connect(str(sqlite_store._db_path)) as db:
            await db.execute("UPDATE blobs SET value = ? WHERE key = ?", (raw, key))
            await db.commit()

    return _corrupt
