"""Report query service - validate, execute and export report configurations."""

from .execution import (
    ExecutionResult,
    QueryExecutionError,
    QueryExecutor,
    QueryTimeoutError,
)
from .service import ReportQueryService

__all__ = [
    "ExecutionResult",
    "QueryExecutionError",
    "QueryExecutor",
    "QueryTimeoutError",
    "ReportQueryService",
]
