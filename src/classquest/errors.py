"""Primary-path error kinds.

Raised before any mutation when an operation cannot proceed. Callers map
them onto their own transport (HTTP status, CLI exit code, ...).
"""


class ProgressionError(Exception):
    """Base class for errors surfaced by progression operations."""


class NotFoundError(ProgressionError, LookupError):
    """A behavior, mission, classroom, badge or student does not exist."""


class ForbiddenError(ProgressionError, PermissionError):
    """The acting teacher has no permission on the classroom."""


class InvalidInputError(ProgressionError, ValueError):
    """The request is well-formed but not valid for the current state."""
