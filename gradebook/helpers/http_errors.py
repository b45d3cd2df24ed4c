import logging

from fastapi import HTTPException, status

from gradebook.errors import (
    ConcurrentGradingError,
    GradebookError,
    NotFoundError,
    PermanentGradingError,
    PermissionDeniedError,
    PersistenceError,
    SubmissionValidationError,
    TransientGradingError,
)

logger = logging.getLogger(__name__)

# Most specific first
_STATUS_BY_ERROR = (
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (PermissionDeniedError, status.HTTP_403_FORBIDDEN),
    (SubmissionValidationError, status.HTTP_400_BAD_REQUEST),
    (TransientGradingError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (PermanentGradingError, status.HTTP_502_BAD_GATEWAY),
    (ConcurrentGradingError, status.HTTP_409_CONFLICT),
    (PersistenceError, status.HTTP_500_INTERNAL_SERVER_ERROR),
)


def to_http_exception(error: GradebookError) -> HTTPException:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            break
    else:
        status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    if status_code >= 500:
        logger.error("Request failed: %s", error)
        if isinstance(error, PersistenceError):
            return HTTPException(status_code=status_code, detail="Failed to save grading data")
    return HTTPException(status_code=status_code, detail=str(error))
