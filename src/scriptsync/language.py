# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Script language detection, used to pick a recognition locale automatically.

Non-Latin writing systems are identified from Unicode ranges. Latin text is
scored against small sets of very common function words per language.
"""

import locale as locale_m
import logging
from collections.abc import Sequence

from .normalizer import split_text_into_words, strip_to_alnum

logger = logging.getLogger(__name__)

# (first code point, last code point, language)
SCRIPT_RANGES: list[tuple[int, int, str]] = [
    (0x0370, 0x03FF, "el"),
    (0x0400, 0x04FF, "ru"),
    (0x0590, 0x05FF, "he"),
    (0x0600, 0x06FF, "ar"),
    (0x0900, 0x097F, "hi"),
    (0x0E00, 0x0E7F, "th"),
    (0x3040, 0x30FF, "ja"),
    (0xAC00, 0xD7AF, "ko"),
    (0x4E00, 0x9FFF, "zh"),
]

UKRAINIAN_LETTERS: frozenset[str] = frozenset("іїєґ")

STOPWORDS: dict[str, frozenset[str]] = {
    "en": frozenset(["the", "and", "is", "of", "to", "in", "that", "it",
                     "you", "this", "with", "for", "are", "was", "we"]),
    "de": frozenset(["der", "die", "das", "und", "ist", "nicht", "ich",
                     "mit", "sie", "ein", "eine", "zu", "auf", "wir", "den"]),
    "fr": frozenset(["le", "la", "les", "et", "est", "une", "des", "que",
                     "pas", "pour", "dans", "nous", "vous", "du", "ce"]),
    "es": frozenset(["el", "los", "las", "y", "es", "una", "que", "por",
                     "para", "con", "del", "pero", "como", "se", "muy"]),
    "it": frozenset(["il", "gli", "che", "di", "una", "per", "non", "sono",
                     "della", "con", "questo", "anche", "come", "ma", "è"]),
    "pt": frozenset(["o", "os", "as", "uma", "que", "não", "com", "para",
                     "por", "mais", "como", "mas", "você", "da", "do"]),
    "nl": frozenset(["de", "het", "een", "en", "is", "van", "niet", "dat",
                     "ik", "je", "met", "voor", "op", "zijn", "we"]),
}

# Region preference when a language has several supported locales
STANDARD_REGIONS: list[str] = [
    "US", "RU", "GB", "DE", "FR", "ES", "IT", "JP", "KR", "CN", "BR", "IN"
]


def _script_language(text: str) -> str | None:
    counts: dict[str, int] = {}
    latin: int = 0
    for char in text:
        code = ord(char)
        if char.isascii():
            if char.isalpha():
                latin += 1
            continue
        for first, last, lang in SCRIPT_RANGES:
            if first <= code <= last:
                counts[lang] = counts.get(lang, 0) + 1
                break
        else:
            if char.isalpha():
                latin += 1

    if not counts:
        return None
    lang, count = max(counts.items(), key=lambda item: item[1])
    if count < latin:
        return None
    # Kana alongside Han means Japanese
    if lang == "zh" and counts.get("ja"):
        return "ja"
    if lang == "ru" and any(c in UKRAINIAN_LETTERS for c in text.lower()):
        return "uk"
    return lang


def detect_language(text: str) -> str | None:
    """
    Detect the dominant language of a script.

    Args:
        text: Script text

    Returns:
        ISO 639-1 language code, or None if the language could not be determined
    """
    by_script = _script_language(text)
    if by_script:
        return by_script

    words: list[str] = [strip_to_alnum(w) for w in split_text_into_words(text)]
    scores: dict[str, int] = {lang: 0 for lang in STOPWORDS}
    for word in words:
        for lang, stopwords in STOPWORDS.items():
            if word in stopwords:
                scores[lang] += 1

    lang, score = max(scores.items(), key=lambda item: item[1])
    if score == 0:
        return None
    return lang


def user_region() -> str:
    """Region of the current user's locale, e.g. "US" for en_US."""
    name: str | None = locale_m.getlocale()[0]
    if name and "_" in name:
        return name.split("_", 1)[1].split(".", 1)[0].upper()
    return "US"


def _region(locale_id: str) -> str:
    parts = locale_id.replace("_", "-").split("-")
    return parts[1].upper() if len(parts) > 1 else ""


def locale_for_language(
    language: str,
    supported: Sequence[str],
    region: str | None = None
) -> str | None:
    """
    Pick the best supported locale for a language.

    Prefers the user's region, then the standard region order.

    Args:
        language: ISO 639-1 language code
        supported: Locale identifiers the backend can recognize (e.g. "en-US")
        region: User region, or None to read it from the environment

    Returns:
        Locale identifier, or None if no supported locale has that language
    """
    matching: list[str] = [
        loc for loc in supported
        if loc.replace("_", "-").split("-")[0].lower() == language
    ]
    if not matching:
        return None

    preferred: str = region or user_region()

    def rank(loc: str) -> tuple[int, int]:
        reg = _region(loc)
        std = STANDARD_REGIONS.index(reg) if reg in STANDARD_REGIONS else len(STANDARD_REGIONS)
        return (0 if reg == preferred else 1, std)

    return sorted(matching, key=rank)[0]


def detect_locale(text: str, supported: Sequence[str], region: str | None = None) -> str | None:
    """Detect the script language and map it to a supported locale."""
    language = detect_language(text)
    if language is None:
        return None
    detected = locale_for_language(language, supported, region)
    logger.debug("Detected language %s -> locale %s", language, detected)
    return detected
