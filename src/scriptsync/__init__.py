"""
scriptsync - Live speech-to-script alignment.

Follows a speaker through a known script using streaming speech
recognition, reporting how far into the script they have read as a
character offset.
"""

__version__ = "0.1.0"

from .aligner import AlignmentCursor, ReferenceScript, advance, is_fuzzy_match, jump_to
from .errors import RecognitionError
from .normalizer import normalize
from .session import SessionController, SessionState

__all__ = [
    "AlignmentCursor",
    "ReferenceScript",
    "advance",
    "is_fuzzy_match",
    "jump_to",
    "normalize",
    "RecognitionError",
    "SessionController",
    "SessionState",
]
