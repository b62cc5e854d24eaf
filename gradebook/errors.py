"""Error taxonomy for the result engine."""


class GradebookError(Exception):
    """Base class for all engine errors."""
    code = "gradebook_error"
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(GradebookError):
    """Score, weighting or identifier input rejected before computation."""
    code = "validation_error"
    status_code = 422


class ConfigurationError(GradebookError):
    """Grading scale or engine configuration cannot classify a score."""
    code = "configuration_error"
    status_code = 400


class StateError(GradebookError):
    """Illegal report-card or result lifecycle transition."""
    code = "state_error"
    status_code = 409


class ConsistencyError(GradebookError):
    """Cross-record invariant violated (multiple active terms, stale write)."""
    code = "consistency_error"
    status_code = 409


class StaleResultError(ConsistencyError):
    """A result was saved from an outdated version."""
    code = "stale_result"


class NotFoundError(GradebookError):
    """Referenced student, school or result does not exist."""
    code = "not_found"
    status_code = 404
