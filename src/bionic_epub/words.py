from __future__ import annotations

import math
import re
from dataclasses import dataclass

from .options import BionicOptions

# Letters, apostrophes and hyphens bounded by ASCII word boundaries, so runs
# glued to digits ("abc123") or non-ASCII letters are never treated as words.
WORD_PATTERN = re.compile(r"\b[a-zA-Z'-]+\b", re.ASCII)


@dataclass(frozen=True, slots=True)
class Skip:
    """Leave the word untouched."""


@dataclass(frozen=True, slots=True)
class Split:
    """Emphasize the first ``prefix_length`` characters of the word."""

    prefix_length: int

    def apply(self, word: str) -> tuple[str, str]:
        return word[: self.prefix_length], word[self.prefix_length :]


EmphasisDecision = Skip | Split

SKIP = Skip()


def prefix_length(length: int, options: BionicOptions) -> int:
    raw = min(math.ceil(length * options.max_prefix_ratio), options.max_prefix_length)
    return max(0, min(raw, length))


def decide(word: str, options: BionicOptions) -> EmphasisDecision:
    if len(word) < options.min_word_length:
        return SKIP
    # Acronym heuristic; anything without lowercase letters counts as upper case.
    if options.skip_uppercase and word == word.upper():
        return SKIP
    return Split(prefix_length(len(word), options))


def iter_words(text: str):
    """Yield ``(start, end, word)`` for every word run in ``text``."""
    for match in WORD_PATTERN.finditer(text):
        yield match.start(), match.end(), match.group(0)


__all__ = [
    "EmphasisDecision",
    "SKIP",
    "Skip",
    "Split",
    "WORD_PATTERN",
    "decide",
    "iter_words",
    "prefix_length",
]
