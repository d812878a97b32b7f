"""Domain exception -> HTTP status translation shared by v1 routers"""

import logging

from fastapi import HTTPException

from tabs_billing.domain.exceptions import (
    DatabaseError,
    DomainException,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)


def to_http_exception(error: Exception, request_id: str) -> HTTPException:
    """
    Map a service failure to the status code callers rely on.

    NotFoundError -> 404, ValidationError -> 400, UnauthorizedError -> 403, anything else
    -> 500 without leaking internals.
    """
    if isinstance(error, NotFoundError):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, ValidationError):
        return HTTPException(status_code=400, detail=str(error))
    if isinstance(error, UnauthorizedError):
        return HTTPException(status_code=403, detail=str(error))

    if isinstance(error, DatabaseError):
        logging.error(f"Database error: {error}", extra={"request_id": request_id})
    elif not isinstance(error, DomainException):
        logging.error(f"Unexpected error: {error}", extra={"request_id": request_id})
    return HTTPException(status_code=500, detail="Internal server error")
