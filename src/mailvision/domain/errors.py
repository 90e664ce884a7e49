"""Error taxonomy for the mailbox watcher."""

from __future__ import annotations


class MailVisionError(Exception):
    """Base class for all mailvision errors."""


class ConnectivityError(MailVisionError):
    """Transport dropped, I/O fault or protocol error. Recovered by reconnecting."""


class AuthenticationError(MailVisionError):
    """Credentials were rejected. Fatal, never retried."""


class FolderNotFoundError(MailVisionError):
    """The Sent folder could not be located on the server."""


class OperationCancelled(MailVisionError):
    """Cancellation was requested. Unwinds the loop, not a failure."""


class DecodeError(MailVisionError):
    """An image part could not be decoded into raw bytes."""


class PersistenceError(MailVisionError):
    """The image store failed to read or write."""


class AnalysisServiceError(MailVisionError):
    """The external analysis service failed.

    ``retriable`` separates transport trouble (timeouts, throttling, 5xx)
    from terminal content errors such as an unsupported image.
    """

    def __init__(self, message: str, *, retriable: bool, status_code: int | None = None):
        super().__init__(message)
        self.retriable = retriable
        self.status_code = status_code
