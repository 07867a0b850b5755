"""
Query execution layer.

Runs a compiled report inside a single transaction. The timeout is
advisory: elapsed time is compared against the ceiling only after the
statement has returned and the transaction has committed, so a slow
query is never interrupted.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable

from sqlalchemy.engine import Dialect, Engine

from reportql.core.constants import DEFAULT_QUERY_TIMEOUT_SECONDS
from reportql.core.errors.codes import ErrorCode
from reportql.core.errors.exceptions import ReportError
from reportql.core.sql_ast.compiler import CompiledQuery

logger = logging.getLogger(__name__)


@dataclass
class ExecutionResult:
    """Result of report execution."""

    rows: list[dict[str, Any]]
    row_count: int
    execution_time_ms: float

    @property
    def execution_time(self) -> float:
        """Elapsed time in seconds."""
        return self.execution_time_ms / 1000


class QueryExecutionError(ReportError):
    """Raised when report execution fails."""

    code = ErrorCode.QUERY_EXECUTION_FAILED


class QueryTimeoutError(ReportError):
    """Raised after a report ran longer than the advisory timeout."""

    code = ErrorCode.TIMEOUT

    def __init__(self, elapsed_seconds: float, limit_seconds: float, result: ExecutionResult):
        super().__init__(
            f"Query execution exceeded timeout limit of {limit_seconds} seconds",
            execution_time=round(elapsed_seconds, 3),
            timeout_limit=limit_seconds,
        )
        self.elapsed_seconds = elapsed_seconds
        self.limit_seconds = limit_seconds
        self.result = result


class QueryExecutor:
    """
    Executes compiled reports against a SQLAlchemy engine.

    This is a thin execution layer with no business logic.
    """

    def __init__(
        self,
        engine: Engine,
        timeout_seconds: float = DEFAULT_QUERY_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.perf_counter,
    ):
        self._engine = engine
        self._timeout = timeout_seconds
        self._clock = clock

    @property
    def dialect(self) -> Dialect:
        return self._engine.dialect

    @property
    def timeout_seconds(self) -> float:
        return self._timeout

    def execute(self, compiled: CompiledQuery) -> ExecutionResult:
        """
        Execute a compiled report and return its rows.

        Rows are dicts whose key order follows the select list.

        Raises:
            QueryExecutionError: If execution fails; the transaction is rolled back.
            QueryTimeoutError: If the committed query ran past the advisory timeout.
        """
        start = self._clock()
        try:
            with self._engine.connect() as connection:
                transaction = connection.begin()
                try:
                    result = connection.execute(compiled.statement)
                    rows = [dict(row._mapping) for row in result]
                    transaction.commit()
                except Exception:
                    transaction.rollback()
                    raise
        except Exception as e:
            # Don't expose raw driver errors to users
            raise QueryExecutionError(
                f"Query execution failed: {type(e).__name__}",
                table=compiled.table_name,
            ) from e

        elapsed = self._clock() - start
        execution = ExecutionResult(
            rows=rows,
            row_count=len(rows),
            execution_time_ms=round(elapsed * 1000, 2),
        )
        logger.debug(
            "Executed report on '%s': %d rows in %.2f ms",
            compiled.table_name,
            execution.row_count,
            execution.execution_time_ms,
        )

        if elapsed > self._timeout:
            logger.warning(
                "Report on '%s' took %.2fs, over the %.2fs timeout (already completed)",
                compiled.table_name,
                elapsed,
                self._timeout,
            )
            raise QueryTimeoutError(elapsed, self._timeout, execution)

        return execution
