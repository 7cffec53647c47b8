"""Exception hierarchy for the companion core.

Extraction, ranking and promotion never raise. Everything here surfaces at
the network boundary or from an explicit user action.
"""


class CompanionError(Exception):
    """Base class for all companion errors."""


class Unauthenticated(CompanionError):
    """No usable API credential. Raised before any log mutation."""


class Busy(CompanionError):
    """A generation is already in flight for this session."""


class TransportError(CompanionError):
    """Network or HTTP failure while talking to the completions endpoint."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class MalformedFrame(CompanionError):
    """A single streaming frame could not be decoded. Never fatal to a stream."""


class GenerationCancelled(CompanionError):
    """The user stopped the generation. Partial output is preserved."""


class MessageNotFound(CompanionError):
    """No message with the given id in the active session."""


class MemoryNotFound(CompanionError):
    """No memory with the given id in the requested collection."""


class InvalidTarget(CompanionError):
    """The action does not apply to this message (e.g. regenerating a reply)."""


class NothingToRegenerate(CompanionError):
    """The user message has no following assistant reply."""


class InvalidSessionDocument(CompanionError):
    """An imported session document failed validation."""
