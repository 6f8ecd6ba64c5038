class GradingError(Exception):
    """Base class for failures reported to the caller as a structured error."""

    error_type = "grading_error"
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(GradingError):
    error_type = "validation_error"
    status_code = 400


class NotFoundError(GradingError):
    error_type = "not_found"
    status_code = 404


class ForbiddenError(GradingError):
    error_type = "forbidden"
    status_code = 403


class PersistenceError(GradingError):
    error_type = "persistence_error"
    status_code = 500


class ExecutionError(Exception):
    """A single test case could not be executed to completion.

    Never escapes the orchestrator: it is recorded on the TestResult.
    """


class MalformedInputError(ExecutionError):
    """A test case input does not match the exercise's declared input format."""
