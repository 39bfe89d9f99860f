class TaskScoreError(Exception):
    """Base exception for the service."""

    code = "error"
    retry = True


class NotConfigured(TaskScoreError):
    """Credentials or identifiers for an external service are missing."""

    code = "not_configured"
    retry = False


class TaskSourceError(TaskScoreError):
    """Raised when task rows cannot be read from the spreadsheet."""


class PermissionDenied(TaskSourceError):
    code = "permission_denied"


class GenericFetchFailure(TaskSourceError):
    code = "fetch_failed"


class EmptyResult(TaskScoreError):
    """No task rows to analyse. Informational, not a failure."""

    code = "empty"


class DispatchFailure(TaskScoreError):
    """The run could not be handed to the worker queue."""

    code = "dispatch_failed"


class EvaluatorError(TaskScoreError):
    """Raised by the evaluator client for a single task."""

    retriable = False


class Blocked(EvaluatorError):
    code = "blocked"


class MalformedResponse(EvaluatorError):
    code = "malformed_response"


class TransientServerError(EvaluatorError):
    code = "transient_server_error"
    retriable = True


class EvaluatorRequestError(EvaluatorError):
    """Network, auth or other non-transient HTTP failure."""

    code = "request_failed"
