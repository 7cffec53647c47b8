"""Chat sessions — message log, prompt assembly, and response generation."""

from companion.chat.controller import ResponseController
from companion.chat.log import MessageLog
from companion.chat.models import Message, Persona
from companion.chat.session import ChatSession

__all__ = [
    "ChatSession",
    "Message",
    "MessageLog",
    "Persona",
    "ResponseController",
]
