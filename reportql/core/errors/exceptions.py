"""Base exception for faults raised by the reporting engine."""

from reportql.core.errors.codes import ErrorCode


class ReportError(Exception):
    """
    Base class for engine faults.

    Subclasses pin a taxonomy ``code`` so the classifier does not
    have to guess from the message text.
    """

    code: ErrorCode = ErrorCode.QUERY_EXECUTION_FAILED

    def __init__(self, message: str = "", **details):
        super().__init__(message)
        self.details = details


class PermissionDeniedError(ReportError):
    """Raised when the actor may not read a table, e.g. a tenant-scoped one without a tenant."""

    code = ErrorCode.PERMISSION_DENIED
