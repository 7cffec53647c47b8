"""Promotion policy — which short-term observations also become long-term.

A message is promoted when any one heuristic fires:

- one of its keywords appears in a registered keyword with importance > 0.7
- it is longer than 100 characters
- it contains a question mark
- it contains an emphasis word (important, remember, never, always, love, hate)

Promotion copies; the short-term memory stays where it is.
"""

import re
from collections.abc import Iterable

from companion.memory.models import Keyword

IMPORTANCE_THRESHOLD = 0.7
LONG_CONTENT_LENGTH = 100

_EMPHASIS_RE = re.compile(r"\b(important|remember|never|always|love|hate)\b", re.IGNORECASE)


def has_important_keyword(keywords: Iterable[str], registry: Iterable[Keyword]) -> bool:
    """True if any keyword is contained in a high-importance registry term."""
    important = [k.text.lower() for k in registry if k.importance > IMPORTANCE_THRESHOLD]
    return any(kw.lower() in text for kw in keywords for text in important)


def should_promote(content: str, keywords: Iterable[str], registry: Iterable[Keyword]) -> bool:
    """Decide whether *content* is durable enough for long-term memory."""
    return (
        has_important_keyword(keywords, registry)
        or len(content) > LONG_CONTENT_LENGTH
        or "?" in content
        or _EMPHASIS_RE.search(content) is not None
    )
