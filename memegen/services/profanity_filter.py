"""Profanity lexicon: forbidden-term detection and masking."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from pathlib import Path

logger = logging.getLogger(__name__)

MASK_CHAR = "*"


class ProfanityLexicon:
    """Case-insensitive substring matcher over a set of forbidden terms.

    Entries are lower-cased and stripped; single-character entries are
    ignored because they would match almost any text.
    """

    def __init__(self, words: Iterable[str] = ()):
        cleaned = {w.strip().lower() for w in words}
        self._words: frozenset[str] = frozenset(w for w in cleaned if len(w) > 1)
        # Longest first so a short entry never fragments a longer match
        self._by_length: list[str] = sorted(self._words, key=lambda w: (-len(w), w))

    @classmethod
    def from_file(cls, path: str | Path) -> ProfanityLexicon:
        """Load one entry per line. A missing or unreadable file yields an empty lexicon."""
        try:
            content = Path(path).read_text(encoding="utf-8")
        except OSError as e:
            logger.error("Failed to load profanity lexicon from %s: %s", path, e)
            return cls()
        lexicon = cls(content.splitlines())
        logger.info("Loaded %d profanity lexicon entries", lexicon.size)
        return lexicon

    @property
    def size(self) -> int:
        return len(self._words)

    def find(self, text: str) -> list[str]:
        """Return every lexicon entry that occurs in text, longest first."""
        lowered = text.lower()
        return [w for w in self._by_length if w in lowered]

    def contains(self, text: str) -> bool:
        lowered = text.lower()
        return any(w in lowered for w in self._words)

    def redact(self, text: str) -> str:
        """Replace every matched span with mask characters of equal length."""
        for word in self._by_length:
            if word not in text.lower():
                continue
            text = re.sub(re.escape(word), lambda m: MASK_CHAR * len(m.group(0)), text, flags=re.IGNORECASE)
        return text
