"""Domain exceptions raised by core business logic.

Routes translate these into HTTP responses; core never imports FastAPI.
"""


class BeBusyError(Exception):
    """Base exception for platform errors."""
    pass


class NotAuthenticatedError(BeBusyError):
    """No resolvable identity (no session, or no profile for it)."""
    pass


class PermissionDeniedError(BeBusyError):
    """Acting user's role does not allow the operation."""
    pass


class BannedError(PermissionDeniedError):
    """Acting user is currently banned."""
    pass


class NotFoundError(BeBusyError):
    """Referenced entity does not exist."""
    pass


class FocusGroupNotFoundError(NotFoundError):
    """Focus group does not exist (distinct from a full focus group)."""
    pass


class AlreadyMemberError(BeBusyError):
    """A membership row already exists for this (user, focus group)."""

    def __init__(self, message: str = "Already a member of this focus group", status=None):
        super().__init__(message)
        self.status = status


class CapacityRaceError(BeBusyError):
    """The store rejected the membership insert (e.g. last spot taken concurrently).

    The message is the store's own error text.
    """
    pass
