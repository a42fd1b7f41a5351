"""
Escape-sequence sanitizer for terminal output.

Strips the legacy single-character framing prefix used by older recordings and
removes OSC (Operating System Command) sequences such as window-title updates.
All other ANSI/VT sequences pass through for the terminal view to interpret.
"""

import re

# Legacy framing prefixes written by older recorders.
PREFIX_OUTPUT = "0"
PREFIX_SET_WINDOW_TITLE = "1"
PREFIX_SET_PREFERENCES = "2"

LEGACY_PREFIXES = (PREFIX_OUTPUT, PREFIX_SET_WINDOW_TITLE, PREFIX_SET_PREFERENCES)

# ESC ] <digits> ; <text> terminated by BEL or ST (ESC \).
# An unterminated sequence never matches and is left in place.
OSC_PATTERN = re.compile(r"\x1b\]\d+;[^\x07\x1b]*(?:\x07|\x1b\\)")


def unwrap_legacy_prefix(chunk: str) -> str:
    """Remove the legacy type prefix; directive chunks become empty."""
    if not chunk:
        return chunk
    first = chunk[0]
    if first == PREFIX_OUTPUT:
        return chunk[1:]
    if first in (PREFIX_SET_WINDOW_TITLE, PREFIX_SET_PREFERENCES):
        return ""
    return chunk


def strip_osc(text: str) -> str:
    """Remove every complete OSC sequence, including ones exposed by a removal."""
    while True:
        stripped = OSC_PATTERN.sub("", text)
        if stripped == text:
            return stripped
        text = stripped


def sanitize(chunk: str, legacy_prefix: bool = True) -> str:
    """
    Clean a raw output chunk so it is safe to append to a display buffer.

    Args:
        chunk: Raw output text
        legacy_prefix: Honour the legacy '0'/'1'/'2' framing prefix. Live JSON
            output frames carry no prefix and pass False.

    Returns:
        The chunk without framing prefix and OSC sequences
    """
    if legacy_prefix:
        chunk = unwrap_legacy_prefix(chunk)
    if not chunk:
        return ""
    return strip_osc(chunk)


def protect_legacy_prefix(text: str) -> str:
    """
    Frame output so that legacy-aware readers recover it unchanged.

    Output whose first character looks like a legacy prefix gets an explicit
    plain-output prefix; anything else is stored as is.
    """
    if text and text[0] in LEGACY_PREFIXES:
        return PREFIX_OUTPUT + text
    return text
