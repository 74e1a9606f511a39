"""Deterministic filler-word scan over one transcribed answer."""

from __future__ import annotations

import re
from typing import Dict

from viva.sessions import AnalysisResult

FILLER_WORDS = frozenset(
    {
        "um",
        "uh",
        "like",
        "actually",
        "basically",
        # Hinglish fillers
        "matlab",
        "toh",
    }
)

FILLER_PHRASES = ("you know", "i mean", "sort of", "haan na")

_STRIP_CHARS = ".,/#!$%^&*;:{}=-_`~()"
_STRIP_TABLE = str.maketrans("", "", _STRIP_CHARS)
_PHRASE_PATTERNS = {phrase: re.compile(re.escape(phrase)) for phrase in FILLER_PHRASES}


def analyze_speech(text: str) -> AnalysisResult:
    """Count filler words and phrases in a single transcript fragment.

    Phrase hits are added on top of single-word hits; words inside a phrase
    are not subtracted. Phrases are matched as plain substrings of the
    lower-cased text.
    """
    lowered = (text or "").lower()
    words = [w for w in lowered.split() if w]
    filler_count = 0
    by_word: Dict[str, int] = {}

    for word in words:
        clean = word.translate(_STRIP_TABLE)
        if clean in FILLER_WORDS:
            filler_count += 1
            by_word[clean] = by_word.get(clean, 0) + 1

    for phrase, pattern in _PHRASE_PATTERNS.items():
        hits = len(pattern.findall(lowered))
        if hits:
            filler_count += hits
            by_word[phrase] = by_word.get(phrase, 0) + hits

    return AnalysisResult(total_words=len(words), filler_count=filler_count, by_word=by_word)
