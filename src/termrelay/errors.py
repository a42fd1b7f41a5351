"""
Error taxonomy for termrelay.

Transport errors end only the affected session; replay parse errors are
isolated to the offending line.
"""

from typing import Optional


class TermRelayError(Exception):
    """Base class for all termrelay errors."""


class TransportConnectionError(TermRelayError):
    """Handshake or channel failure. Terminal for the session, never retried."""


class AuthExpired(TermRelayError):
    """A request or heartbeat was rejected as not found or forbidden."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class MalformedFrame(TermRelayError):
    """A wire message could not be decoded into a frame."""


class MalformedLogLine(TermRelayError):
    """A recorded event line could not be decoded."""

    def __init__(self, line_number: int, reason: str):
        super().__init__(f"line {line_number}: {reason}")
        self.line_number = line_number
        self.reason = reason


class RecordingLoadError(TermRelayError):
    """A recording could not be fetched or its header could not be read."""


class RecordingAbsent(TermRelayError):
    """The session has no recording. A normal outcome, not a load failure."""


class TargetNotFound(TermRelayError):
    """Lookup of a target or session found nothing."""


class TargetForbidden(TermRelayError):
    """The caller may not use the target or session."""
