# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Fuzzy alignment of recognized speech against a reference script.

Two matchers run over the part of the script that has not been consumed
yet: a character-level walker that resynchronizes after small recognizer
errors, and a word-level walker that tolerates substituted, inserted and
dropped words. Whichever gets further wins, and progress only moves forward.
"""

import logging
from dataclasses import dataclass, replace

from rapidfuzz.distance import Levenshtein

from .normalizer import (
    is_annotation_word,
    normalize,
    split_text_into_words,
    strip_to_alnum,
)

logger = logging.getLogger(__name__)

# How far either stream may be skipped to recover from a mismatch
RESYNC_LOOKAHEAD: int = 3
MAX_WORD_SKIP: int = 3


@dataclass(frozen=True)
class ReferenceScript:
    """The script being read, collapsed to single-spaced words."""
    source_text: str  # Original casing and punctuation, used for offsets
    normalized_source: str  # Comparison form of source_text

    @classmethod
    def from_text(cls, text: str) -> 'ReferenceScript':
        """Build a reference script from raw user text."""
        collapsed: str = ' '.join(split_text_into_words(text))
        return cls(source_text=collapsed, normalized_source=normalize(collapsed))

    def __len__(self) -> int:
        return len(self.source_text)


@dataclass
class AlignmentCursor:
    """Progress through the script, as character offsets into source_text."""
    match_start_offset: int = 0  # Where the next alignment attempt begins
    recognized_char_count: int = 0  # How far the speaker has got

    @classmethod
    def at(cls, offset: int) -> 'AlignmentCursor':
        """Cursor with both fields at the same offset."""
        return cls(match_start_offset=offset, recognized_char_count=offset)


def edit_distance(a: str, b: str) -> int:
    """Levenshtein distance with unit costs for insert, delete and substitute."""
    return Levenshtein.distance(a, b)


def is_fuzzy_match(a: str, b: str) -> bool:
    """
    Check whether two normalized words should count as the same word.

    Recognizers often return a shorter or longer form of a word ("not" for
    "notch"), a spelling variant ("colour" for "color") or a near miss. The
    edit distance tolerance grows with the length of the shorter word.

    Args:
        a: First normalized word
        b: Second normalized word

    Returns:
        True if the words are considered equivalent
    """
    if not a or not b:
        return False
    if a == b:
        return True
    if a.startswith(b) or b.startswith(a):
        return True
    if a in b or b in a:
        return True

    shorter: int = min(len(a), len(b))
    shared: int = 0
    for ca, cb in zip(a, b):
        if ca != cb:
            break
        shared += 1
    if shorter >= 2 and shared >= max(2, shorter * 3 // 5):
        return True

    dist: int = edit_distance(a, b)
    if shorter <= 4:
        return dist <= 1
    if shorter <= 8:
        return dist <= 2
    return dist <= max(len(a), len(b)) // 3


def _lower_char(char: str) -> str:
    # Keep one character per source character so indices stay aligned
    lowered = char.lower()
    return lowered[0] if lowered else char


def _find_ahead(chars: list[str], index: int, target: str, lookahead: int) -> int:
    """Return how many positions past index target appears, or 0 if not within lookahead."""
    max_skip: int = min(lookahead, len(chars) - index - 1)
    for skip in range(1, max_skip + 1):
        if chars[index + skip] == target:
            return skip
    return 0


def char_level_match(remainder: str, spoken: str,
                     lookahead: int = RESYNC_LOOKAHEAD) -> int:
    """
    Walk the remainder of the script against the spoken text character by character.

    Args:
        remainder: Unconsumed part of the source text
        spoken: Recognized text
        lookahead: Characters either stream may be skipped to resynchronize

    Returns:
        Index into remainder just past the last exactly matched character
    """
    src: list[str] = [_lower_char(c) for c in remainder]
    spk: list[str] = list(normalize(spoken))

    si: int = 0
    ri: int = 0
    last_good: int = 0

    while si < len(src) and ri < len(spk):
        sc: str = src[si]
        rc: str = spk[ri]

        if not sc.isalnum():
            si += 1
            continue
        if not rc.isalnum():
            ri += 1
            continue

        if sc == rc:
            si += 1
            ri += 1
            last_good = si
            continue

        # Recognizer inserted characters
        skip: int = _find_ahead(spk, ri, sc, lookahead)
        if skip:
            ri += skip
            continue

        # Recognizer dropped characters the speaker said
        skip = _find_ahead(src, si, rc, lookahead)
        if skip:
            si += skip
            continue

        # Substitution
        si += 1
        ri += 1

    return last_good


def _words_equivalent(a: str, b: str) -> bool:
    return a == b or is_fuzzy_match(a, b)


def word_level_match(remainder: str, spoken: str,
                     max_skip: int = MAX_WORD_SKIP) -> int:
    """
    Match the remainder of the script against the spoken text word by word.

    Annotation words in the script are credited without being spoken.
    Filler or hallucinated spoken words and script words the recognizer
    missed are skipped, up to max_skip at a time.

    Args:
        remainder: Unconsumed part of the source text
        spoken: Recognized text
        max_skip: Maximum words skipped in either stream to find a match

    Returns:
        Number of remainder characters credited as read
    """
    source_words: list[str] = split_text_into_words(remainder)
    spoken_words: list[str] = split_text_into_words(spoken.lower())
    last: int = len(source_words) - 1

    def credit(index: int) -> int:
        # Word plus the space that follows it, except after the final word
        return len(source_words[index]) + (1 if index < last else 0)

    si: int = 0
    ri: int = 0
    matched: int = 0

    while si < len(source_words) and ri < len(spoken_words):
        if is_annotation_word(source_words[si]):
            matched += credit(si)
            si += 1
            continue

        src_word: str = strip_to_alnum(source_words[si])
        spk_word: str = strip_to_alnum(spoken_words[ri])

        if _words_equivalent(src_word, spk_word):
            matched += credit(si)
            si += 1
            ri += 1
            continue

        found: bool = False
        for skip in range(1, min(max_skip, len(spoken_words) - ri - 1) + 1):
            if _words_equivalent(src_word, strip_to_alnum(spoken_words[ri + skip])):
                ri += skip
                found = True
                break
        if found:
            continue

        for skip in range(1, min(max_skip, len(source_words) - si - 1) + 1):
            if _words_equivalent(strip_to_alnum(source_words[si + skip]), spk_word):
                for s in range(skip):
                    matched += len(source_words[si + s]) + 1
                si += skip
                found = True
                break
        if found:
            continue

        if not src_word:
            matched += credit(si)
            si += 1
            continue

        ri += 1

    while si < len(source_words) and is_annotation_word(source_words[si]):
        matched += credit(si)
        si += 1

    return matched


def advance(fragment: str, cursor: AlignmentCursor, source_text: str) -> AlignmentCursor:
    """
    Compute progress after a new recognized fragment.

    The fragment is the full text recognized since matching last restarted
    at cursor.match_start_offset. The returned cursor never has a lower
    recognized_char_count than the one passed in.

    Args:
        fragment: Recognized text
        cursor: Current cursor (not modified)
        source_text: The reference script's source text

    Returns:
        The updated cursor (the same object if nothing moved)
    """
    start: int = cursor.match_start_offset
    remainder: str = source_text[start:]

    char_result: int = char_level_match(remainder, fragment)
    word_result: int = word_level_match(remainder, fragment)
    best: int = max(char_result, word_result)

    new_count: int = min(start + best, len(source_text))
    if new_count <= cursor.recognized_char_count:
        return cursor

    logger.debug("Advance %d -> %d (char=%d, word=%d)",
                 cursor.recognized_char_count, new_count, char_result, word_result)
    return replace(cursor, recognized_char_count=new_count)


def jump_to(offset: int) -> AlignmentCursor:
    """Cursor for an explicit user jump; the only way progress may go backwards."""
    return AlignmentCursor.at(offset)
