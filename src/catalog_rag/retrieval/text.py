"""Text normalization shared by matching, gating and context inference."""

from __future__ import annotations

import re

_ALEF_VARIANTS = re.compile(r"[أإآ]")
_YEH_VARIANTS = re.compile(r"ى")
_TEH_MARBUTA = re.compile(r"ة")
_DIACRITICS = re.compile(r"[\u064B-\u0652]")
_WHITESPACE = re.compile(r"\s+")
_WORD = re.compile(r"\w+", flags=re.UNICODE)


def normalize_text(text: str) -> str:
    """Lower-case, fold Arabic letter variants and strip diacritics.

    Alef forms fold to bare alef, alef maqsura to yeh and teh marbuta to heh,
    so "ساعة" and "ساعه" compare equal.
    """

    if not text:
        return ""
    folded = _ALEF_VARIANTS.sub("ا", text)
    folded = _YEH_VARIANTS.sub("ي", folded)
    folded = _TEH_MARBUTA.sub("ه", folded)
    folded = _DIACRITICS.sub("", folded)
    return _WHITESPACE.sub(" ", folded).strip().lower()


def tokenize(text: str) -> list[str]:
    return _WORD.findall(normalize_text(text))


def word_count(text: str) -> int:
    return len(text.split())


def contains_any(text: str, markers: tuple[str, ...]) -> bool:
    """Substring test of normalized `markers` against normalized `text`."""
    haystack = normalize_text(text)
    return any(normalize_text(marker) in haystack for marker in markers if marker)


def contains_phrase(text: str, phrases: tuple[str, ...]) -> bool:
    """Whole-word test: does `text` contain any phrase as a token sequence."""
    haystack = f" {' '.join(tokenize(text))} "
    for phrase in phrases:
        needle = " ".join(tokenize(phrase))
        if needle and f" {needle} " in haystack:
            return True
    return False
