"""Translate core domain errors into HTTP errors."""

from fastapi import HTTPException

from core.errors import (
    AlreadyMemberError,
    BeBusyError,
    CapacityRaceError,
    NotAuthenticatedError,
    NotFoundError,
    PermissionDeniedError,
)

STATUS_CODES = {
    NotAuthenticatedError: 401,
    PermissionDeniedError: 403,
    NotFoundError: 404,
    AlreadyMemberError: 409,
    CapacityRaceError: 409,
}


def to_http_exception(error: BeBusyError) -> HTTPException:
    """Map a domain error to an HTTPException carrying the error message."""
    for error_type in type(error).__mro__:
        status_code = STATUS_CODES.get(error_type)
        if status_code is not None:
            return HTTPException(status_code=status_code, detail=str(error))
    return HTTPException(status_code=400, detail=str(error))
