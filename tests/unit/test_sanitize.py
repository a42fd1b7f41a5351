"""
Unit tests for the escape-sequence sanitizer.
"""

import pytest

from termrelay.sanitize import protect_legacy_prefix, sanitize, strip_osc, unwrap_legacy_prefix


class TestLegacyPrefix:
    """The single-character framing prefix of older recordings."""

    def test_output_prefix_stripped(self):
        assert sanitize("0hello") == "hello"

    def test_window_title_chunk_dropped(self):
        assert sanitize("1my title") == ""

    def test_preferences_chunk_dropped(self):
        assert sanitize('2{"fontSize":14}') == ""

    def test_unprefixed_chunk_untouched(self):
        assert sanitize("hello") == "hello"

    def test_prefix_only_chunk_becomes_empty(self):
        assert sanitize("0") == ""

    def test_empty_chunk(self):
        assert sanitize("") == ""
        assert unwrap_legacy_prefix("") == ""

    def test_prefix_ignored_when_disabled(self):
        assert sanitize("0 files", legacy_prefix=False) == "0 files"
        assert sanitize("1 match", legacy_prefix=False) == "1 match"

    def test_prefix_stripped_before_osc(self):
        assert sanitize("0\x1b]0;title\x07$ ") == "$ "


class TestOscStripping:
    """OSC sequences are removed; everything else passes through."""

    def test_bel_terminated(self):
        assert sanitize("\x1b]0;user@host: ~\x07$ ls") == "$ ls"

    def test_st_terminated(self):
        assert sanitize("a\x1b]2;title\x1b\\b") == "ab"

    def test_multiple_sequences(self):
        assert sanitize("\x1b]0;a\x07x\x1b]1;b\x07y") == "xy"

    def test_multi_digit_code(self):
        assert sanitize("\x1b]133;A\x07prompt") == "prompt"

    def test_color_sequences_preserved(self):
        text = "\x1b[31mred\x1b[0m \x1b[1;32mbold green\x1b[0m"
        assert sanitize(text) == text

    def test_cursor_movement_preserved(self):
        text = "\x1b[2J\x1b[H\x1b[10;5Hx"
        assert sanitize(text) == text

    def test_unterminated_osc_left_in_place(self):
        text = "\x1b]0;no terminator"
        assert sanitize(text) == text

    def test_removal_exposing_new_sequence(self):
        nested = "\x1b]0;\x1b]0;inner\x07x\x07"
        assert strip_osc(nested) == strip_osc(strip_osc(nested))

    def test_non_osc_escape_untouched(self):
        assert strip_osc("\x1b]abc\x07") == "\x1b]abc\x07"


class TestSanitizeProperties:
    @pytest.mark.parametrize(
        "chunk",
        [
            "plain text",
            "0\x1b]0;title\x07$ ls\r\n",
            "\x1b[31mred\x1b[0m",
            "\x1b]2;t\x1b\\after",
            "\x1b]0;unterminated",
            "1title",
        ],
    )
    def test_idempotent(self, chunk):
        once = sanitize(chunk)
        assert sanitize(once) == once
        assert strip_osc(once) == once

    def test_one_prefix_removed_per_pass(self):
        # A result that itself starts with a digit is read as a new prefix.
        assert sanitize("00abc") == "0abc"
        assert sanitize("0abc") == "abc"
        assert sanitize(sanitize("00abc"), legacy_prefix=False) == "0abc"

    def test_output_never_contains_complete_osc(self):
        result = sanitize("a\x1b]0;x\x07b\x1b]7;file:///tmp\x1b\\c")
        assert "\x1b]" not in result
        assert result == "abc"


class TestProtectLegacyPrefix:
    """Writer-side framing so replay recovers output unchanged."""

    @pytest.mark.parametrize("text", ["0 files", "1 match", "2 errors"])
    def test_ambiguous_first_character_framed(self, text):
        framed = protect_legacy_prefix(text)
        assert framed == "0" + text
        assert sanitize(framed) == text

    def test_plain_text_stored_as_is(self):
        assert protect_legacy_prefix("$ ls") == "$ ls"
        assert sanitize(protect_legacy_prefix("$ ls")) == "$ ls"

    def test_empty(self):
        assert protect_legacy_prefix("") == ""
