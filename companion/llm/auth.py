"""API credential handling for the completions endpoint."""

from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

from companion.config import settings
from companion.errors import Unauthenticated

logger = logging.getLogger(__name__)

VALID_KEY_PREFIXES = ("sk_", "pk_")


@runtime_checkable
class AuthProvider(Protocol):
    """Supplies request headers. Raises ``Unauthenticated`` when it cannot."""

    def is_authenticated(self) -> bool:
        ...

    def get_headers(self) -> dict[str, str]:
        ...


def is_valid_key(api_key: str) -> bool:
    """Secret keys start with ``sk_``, publishable keys with ``pk_``."""
    return bool(api_key) and api_key.startswith(VALID_KEY_PREFIXES)


class ApiKeyAuth:
    """Bearer-token auth from a configured API key."""

    def __init__(self, api_key: str | None = None) -> None:
        self._api_key = ""
        key = settings.completions_api_key if api_key is None else api_key
        if key:
            self.set_key(key)

    def set_key(self, api_key: str) -> None:
        """Install a new key. Raises ValueError on a malformed key."""
        if not is_valid_key(api_key):
            msg = "Invalid API key format. API keys should start with 'sk_' or 'pk_'"
            raise ValueError(msg)
        self._api_key = api_key
        logger.info("API key set (%s)", self.key_type)

    def clear(self) -> None:
        self._api_key = ""

    @property
    def key_type(self) -> str | None:
        if not self._api_key:
            return None
        return "secret" if self._api_key.startswith("sk_") else "publishable"

    def is_authenticated(self) -> bool:
        return bool(self._api_key)

    def get_headers(self) -> dict[str, str]:
        if not self._api_key:
            msg = "No API key available"
            raise Unauthenticated(msg)
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
