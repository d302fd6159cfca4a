"""Tests for text normalization helpers."""

import pytest

from scriptsync.normalizer import (
    is_annotation_word,
    normalize,
    split_text_into_words,
    strip_to_alnum,
)


class TestNormalize:
    """Test the comparison form of text."""

    def test_lowercases_and_drops_punctuation(self):
        assert normalize("Hello, World!") == "hello world"

    def test_keeps_digits_and_whitespace(self):
        assert normalize("Chapter 3:\tBegin") == "chapter 3\tbegin"

    def test_keeps_non_latin_letters(self):
        assert normalize("Привет, мир!") == "привет мир"

    @pytest.mark.parametrize("text", [
        "Don't stop -- believing!",
        "  [pause]  ",
        "Ünïcödé text",
        "",
    ])
    def test_idempotent(self, text):
        once = normalize(text)
        assert normalize(once) == once


class TestWordHelpers:
    """Test word splitting and annotation detection."""

    def test_split_drops_empty_tokens(self):
        assert split_text_into_words("  one\n two\t\tthree ") == ["one", "two", "three"]

    def test_strip_to_alnum(self):
        assert strip_to_alnum("\"Well,\"") == "well"

    def test_bracketed_cue_is_annotation(self):
        assert is_annotation_word("[pause]")
        assert is_annotation_word("[LOOK_AT_CAMERA]")

    def test_symbol_only_token_is_annotation(self):
        assert is_annotation_word("--")
        assert is_annotation_word("🎬")

    def test_spoken_words_are_not_annotations(self):
        assert not is_annotation_word("hello")
        assert not is_annotation_word("(aside)")
