"""
Exceptions raised inside the punch pipeline. Each carries an ErrorKind so the
orchestrator can turn it into a terminal state with a specific message.
"""

from .models import ErrorKind


class PunchError(Exception):
    kind = ErrorKind.UNKNOWN

    def __init__(self, message="", kind=None):
        super().__init__(message)
        if kind is not None:
            self.kind = kind

    @property
    def message(self):
        return str(self)


class InvalidIdentifierError(PunchError):
    """Malformed organization/user id or source. Never sent to the server."""

    kind = ErrorKind.INVALID_IDENTIFIER


class CaptureCancelled(PunchError):
    """The user closed the capture step without taking a photo."""

    kind = ErrorKind.CAPTURE_FAILED
