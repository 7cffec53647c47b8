"""Shared base model and helpers for persisted records."""

import uuid
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


def utc_now() -> datetime:
    return datetime.now(UTC)


def new_id() -> str:
    """Generate a new record ID."""
    return uuid.uuid4().hex


class CamelModel(BaseModel):
    """Base for records stored as JSON.

    Python code uses snake_case; the stored and exported JSON uses camelCase
    (``accessCount``, ``isStreaming``) so documents keep one shape on disk
    and in session exports.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json(self) -> dict[str, Any]:
        """Serialize to a JSON-ready dict, omitting unset optional flags."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
