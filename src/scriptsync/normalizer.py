# Copyright © 2025 Ed Nutting
# SPDX-License-Identifier: MIT
# See LICENSE file for details

"""
Text normalization for comparing spoken text against the script.
"""


def _keep(char: str) -> bool:
    return char.isalnum() or char.isspace()


def normalize(text: str) -> str:
    """Lowercase and keep only letters, digits and whitespace.

    The result is for comparison only and is never used for offsets.
    Applying it twice gives the same result as applying it once.
    """
    return ''.join(c for c in text.lower() if _keep(c))


def strip_to_alnum(word: str) -> str:
    """Lowercase a single word and drop everything but letters and digits."""
    return ''.join(c for c in word.lower() if c.isalnum())


def split_text_into_words(text: str) -> list[str]:
    """Split script text on any whitespace, dropping empty tokens."""
    return [w for w in text.split() if w]


def is_annotation_word(word: str) -> bool:
    """Check if a script token is a cue rather than spoken content.

    Bracketed cues like "[pause]" and tokens with no letters or digits
    (emoji stage directions, dashes) are never spoken.
    """
    if word.startswith('[') and word.endswith(']'):
        return True
    return not any(c.isalnum() for c in word)
