"""
Domain errors raised by the grading pipeline and the score ledger.

Endpoints translate these into HTTP responses; workers log them.
"""


class MarkwiseError(Exception):
    """Base class for all domain errors."""


class ConfigurationError(MarkwiseError):
    """Extraction or grading backend is missing or misconfigured."""


class BackendError(MarkwiseError):
    """Transient failure talking to the extraction or grading backend."""


class BackendResponseError(BackendError):
    """Backend answered, but the payload could not be understood."""


class SubmissionInputError(MarkwiseError):
    """Submission rejected before any extraction call was made."""


class SubmissionStateError(MarkwiseError):
    """Submission is not in a state that allows the requested operation."""


class GradingInProgressError(SubmissionStateError):
    """Another grading run already holds the submission."""


class ScoreAdjustmentError(MarkwiseError):
    """Teacher score adjustment failed validation."""


class PermissionDeniedError(MarkwiseError):
    """Caller is not allowed to act on the resource."""


def describe_failure(exc: BaseException) -> str:
    """Human-readable reason stored on a FAILED submission."""
    if isinstance(exc, ConfigurationError):
        return (
            "Configuration error: the grading service is not properly "
            f"configured ({exc}). Please contact your administrator."
        )
    if isinstance(exc, BackendResponseError):
        return (
            "Processing error: the grading service returned an unexpected "
            f"response ({exc}). Please try again."
        )
    if isinstance(exc, BackendError):
        return (
            "Connection error: unable to reach the grading service "
            f"({exc}). Please try again."
        )
    if isinstance(exc, MarkwiseError):
        return str(exc)
    return "An unexpected error occurred while processing the submission."
