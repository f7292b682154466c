# markwise/api/deps.py
from fastapi import HTTPException, Request, status

from markwise.core.exceptions import (
    BackendError,
    ConfigurationError,
    MarkwiseError,
    PermissionDeniedError,
    ScoreAdjustmentError,
    SubmissionInputError,
    SubmissionStateError,
)
from markwise.services.grading_pipeline import SubmissionPipeline

_STATUS_BY_ERROR = [
    (ConfigurationError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (PermissionDeniedError, status.HTTP_403_FORBIDDEN),
    (SubmissionStateError, status.HTTP_409_CONFLICT),
    (SubmissionInputError, status.HTTP_400_BAD_REQUEST),
    (ScoreAdjustmentError, status.HTTP_400_BAD_REQUEST),
    (BackendError, status.HTTP_502_BAD_GATEWAY),
]


def http_error(exc: MarkwiseError) -> HTTPException:
    """Map a domain error onto the HTTP status the API reports for it."""
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=str(exc))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


def get_pipeline(request: Request) -> SubmissionPipeline:
    resources = getattr(request.app.state, "grading", None)
    if resources is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Grading pipeline is not available",
        )
    return resources.pipeline
