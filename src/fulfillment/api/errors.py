"""Translation of engine errors into HTTP responses."""

from __future__ import annotations

import logging

from fastapi import HTTPException, status

from ..errors import FulfillmentError, InvalidInput, InvalidState, LocationMissing, NotFound, Unavailable

logger = logging.getLogger(__name__)

_STATUS_CODES: tuple[tuple[type[FulfillmentError], int], ...] = (
    (NotFound, status.HTTP_404_NOT_FOUND),
    (InvalidInput, status.HTTP_400_BAD_REQUEST),
    (LocationMissing, 422),
    (InvalidState, status.HTTP_409_CONFLICT),
    (Unavailable, status.HTTP_503_SERVICE_UNAVAILABLE),
)


def status_code_for(error: FulfillmentError) -> int:
    for error_type, code in _STATUS_CODES:
        if isinstance(error, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def to_http_exception(error: FulfillmentError) -> HTTPException:
    code = status_code_for(error)
    if code >= 500:
        logger.warning("Request failed with %s: %s", error.code, error.message)
    headers = {"Retry-After": "1"} if error.retryable else None
    return HTTPException(status_code=code, detail=error.to_dict(), headers=headers)
