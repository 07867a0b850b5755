"""
Error taxonomy for the reporting engine.

Every fault that reaches a caller is mapped onto one of these codes,
each with a stable numeric id, a user-facing message and remediation hints.
"""

from dataclasses import dataclass
from enum import Enum


class ErrorCode(str, Enum):
    """Stable error codes exposed to callers."""

    VALIDATION_FAILED = "VALIDATION_FAILED"
    TABLE_NOT_FOUND = "TABLE_NOT_FOUND"
    COLUMN_NOT_FOUND = "COLUMN_NOT_FOUND"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    QUERY_EXECUTION_FAILED = "QUERY_EXECUTION_FAILED"
    EXPORT_FAILED = "EXPORT_FAILED"
    TIMEOUT = "TIMEOUT"
    MEMORY_LIMIT = "MEMORY_LIMIT"
    INVALID_CONFIGURATION = "INVALID_CONFIGURATION"
    SCHEMA_ERROR = "SCHEMA_ERROR"
    CONNECTION_ERROR = "CONNECTION_ERROR"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"


@dataclass(frozen=True)
class ErrorDescriptor:
    """User-facing description of an error code."""

    number: int
    message: str
    suggestions: tuple[str, ...]
    retry_after_seconds: int | None = None

    @property
    def recoverable(self) -> bool:
        return self.retry_after_seconds is not None


ERROR_DESCRIPTORS: dict[ErrorCode, ErrorDescriptor] = {
    ErrorCode.VALIDATION_FAILED: ErrorDescriptor(
        number=1001,
        message="The report configuration contains validation errors.",
        suggestions=(
            "Review the listed errors and correct the report configuration",
            "Check that all selected columns exist in the chosen table",
            "Verify that condition operators and values are compatible",
        ),
    ),
    ErrorCode.TABLE_NOT_FOUND: ErrorDescriptor(
        number=1002,
        message="The requested table is not available for reporting.",
        suggestions=(
            "Select a table from the list of available reporting tables",
            "Contact an administrator if the table should be reportable",
        ),
    ),
    ErrorCode.COLUMN_NOT_FOUND: ErrorDescriptor(
        number=1003,
        message="One or more requested columns do not exist.",
        suggestions=(
            "Refresh the table schema and reselect the columns",
            "Check related-table columns use the 'relationship.column' form",
        ),
    ),
    ErrorCode.PERMISSION_DENIED: ErrorDescriptor(
        number=1004,
        message="You do not have permission to run this report.",
        suggestions=(
            "Ask an administrator for reporting access",
            "Remove columns or tables you are not allowed to view",
        ),
    ),
    ErrorCode.QUERY_EXECUTION_FAILED: ErrorDescriptor(
        number=1005,
        message="The report query could not be executed.",
        suggestions=(
            "Simplify the report by removing conditions or joins",
            "Try again later; contact support if the problem persists",
        ),
    ),
    ErrorCode.EXPORT_FAILED: ErrorDescriptor(
        number=1006,
        message="The report results could not be exported.",
        suggestions=(
            "Try a different export format",
            "Reduce the number of rows by adding a limit or conditions",
        ),
    ),
    ErrorCode.TIMEOUT: ErrorDescriptor(
        number=1007,
        message="The report took too long to run.",
        suggestions=(
            "Add conditions to reduce the amount of data scanned",
            "Lower the row limit or remove joins",
            "Filter on indexed columns such as id or created_at",
        ),
        retry_after_seconds=30,
    ),
    ErrorCode.MEMORY_LIMIT: ErrorDescriptor(
        number=1008,
        message="The report requires more memory than is available.",
        suggestions=(
            "Lower the row limit",
            "Select fewer columns",
        ),
        retry_after_seconds=60,
    ),
    ErrorCode.INVALID_CONFIGURATION: ErrorDescriptor(
        number=1009,
        message="The report configuration is malformed.",
        suggestions=(
            "Recreate the report from the report builder",
            "Check the configuration matches the documented format",
        ),
    ),
    ErrorCode.SCHEMA_ERROR: ErrorDescriptor(
        number=1010,
        message="The report references schema elements that could not be resolved.",
        suggestions=(
            "Refresh the table schema and rebuild the report",
            "Contact an administrator if the schema recently changed",
        ),
    ),
    ErrorCode.CONNECTION_ERROR: ErrorDescriptor(
        number=1011,
        message="The reporting database is temporarily unavailable.",
        suggestions=(
            "Wait a few seconds and try again",
            "Contact support if the problem persists",
        ),
        retry_after_seconds=10,
    ),
    ErrorCode.RATE_LIMIT_EXCEEDED: ErrorDescriptor(
        number=1012,
        message="Too many report requests were made in a short period.",
        suggestions=(
            "Wait a few minutes before running the report again",
            "Schedule large reports instead of running them repeatedly",
        ),
        retry_after_seconds=300,
    ),
}


def describe(code: ErrorCode) -> ErrorDescriptor:
    """Return the descriptor for an error code."""
    return ERROR_DESCRIPTORS[code]
