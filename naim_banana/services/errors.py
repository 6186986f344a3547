"""Exception hierarchy shared by the editing core and its collaborators."""

from __future__ import annotations


class NaimBananaError(Exception):
    """Base class for every error raised by the application."""


class InvalidStateError(NaimBananaError):
    """An operation that needs a base image was called on an empty history."""


class NoOpError(NaimBananaError):
    """Undo or redo was requested at a history boundary.

    Non-fatal: the session layer swallows it so it never reaches the user.
    """


class LimitExceeded(NaimBananaError):
    """A usage policy rejected the request."""

    def __init__(self, message: str, limit: int) -> None:
        super().__init__(message)
        self.limit = limit


class QuotaExceeded(LimitExceeded):
    """The generation quota for the current window is used up."""


class EditLimitExceeded(LimitExceeded):
    """The current image already carries the maximum number of edits."""


class PersistenceError(NaimBananaError):
    """The durable storage could not be read or written."""


class SessionBusy(NaimBananaError):
    """Another edit or generation is still in flight."""


class EditBackendError(NaimBananaError):
    """The image provider failed or returned no image."""
