"""
Error classifier for the reporting engine.

Maps any fault raised while validating, compiling, executing or exporting
a report onto the fixed error taxonomy. The full fault is logged under a
correlation id; callers only ever receive the sanitized response.
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterator

from sqlalchemy.exc import DBAPIError, DisconnectionError, StatementError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from reportql.core.errors.codes import ErrorCode, describe

logger = logging.getLogger(__name__)


# Ordered keyword hints: first match wins
_KEYWORD_HINTS: tuple[tuple[ErrorCode, tuple[str, ...], tuple[str, ...]], ...] = (
    (ErrorCode.TABLE_NOT_FOUND, ("table",), ("not found", "does not exist", "no such table")),
    (ErrorCode.COLUMN_NOT_FOUND, ("column",), ("not found", "does not exist", "no such column", "unknown column")),
    (ErrorCode.PERMISSION_DENIED, (), ("permission", "access denied")),
    (ErrorCode.TIMEOUT, (), ("timeout", "timed out", "time limit")),
    (ErrorCode.MEMORY_LIMIT, (), ("memory",)),
    (ErrorCode.CONNECTION_ERROR, (), ("connection", "database")),
    (ErrorCode.VALIDATION_FAILED, (), ("validation", "invalid")),
)


# -----------------------------
# Response
# -----------------------------


@dataclass
class ErrorResponse:
    """Sanitized, user-safe description of a failure."""

    code: ErrorCode
    error_id: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)
    suggestions: list[str] = field(default_factory=list)
    timestamp: str = ""
    retry: dict[str, Any] | None = None

    @property
    def correlation_id(self) -> str:
        return self.error_id

    @property
    def recoverable(self) -> bool:
        return self.retry is not None

    def to_dict(self) -> dict[str, Any]:
        error = {
            "code": self.code.value,
            "number": describe(self.code).number,
            "error_id": self.error_id,
            "message": self.message,
            "details": self.details,
            "suggestions": list(self.suggestions),
            "timestamp": self.timestamp,
            "recoverable": self.recoverable,
        }
        if self.retry is not None:
            error["retry"] = self.retry
        return {"success": False, "error": error}

    def to_text(self) -> str:
        lines = [f"Error [{self.error_id}]: {self.message}"]
        if self.suggestions:
            lines.append("")
            lines.append("Suggestions:")
            lines.extend(f"  - {suggestion}" for suggestion in self.suggestions)
        if self.retry is not None:
            lines.append("")
            lines.append(self.retry["message"])
        return "\n".join(lines)


# -----------------------------
# Classifier
# -----------------------------


class ErrorClassifier:
    """Classifies faults and builds sanitized error responses."""

    def classify(self, fault: BaseException) -> ErrorCode:
        """
        Map a fault to an error code.

        Typed engine faults carry their own code. Driver faults are
        inspected for connection problems, then every message in the
        cause chain is matched against keyword hints.
        """
        for link in _cause_chain(fault):
            code = getattr(link, "code", None)
            if isinstance(code, ErrorCode) and code is not ErrorCode.QUERY_EXECUTION_FAILED:
                return code
            if isinstance(link, DisconnectionError):
                return ErrorCode.CONNECTION_ERROR
            if isinstance(link, DBAPIError) and link.connection_invalidated:
                return ErrorCode.CONNECTION_ERROR
            if isinstance(link, PoolTimeoutError):
                return ErrorCode.CONNECTION_ERROR
            if isinstance(link, MemoryError):
                return ErrorCode.MEMORY_LIMIT

        for link in _cause_chain(fault):
            code = self._classify_message(_fault_message(link))
            if code is not None:
                return code

        return ErrorCode.QUERY_EXECUTION_FAILED

    def handle(
        self,
        fault: BaseException,
        context: dict[str, Any] | None = None,
        actor: str | None = None,
        tenant: str | None = None,
    ) -> ErrorResponse:
        """Log a fault with full context and return the sanitized response."""
        code = self.classify(fault)
        details: dict[str, Any] = {"type": type(fault).__name__}
        details.update(getattr(fault, "details", None) or {})
        return self._respond(code, details, fault=fault, context=context, actor=actor, tenant=tenant)

    def handle_validation_error(
        self,
        validation: dict[str, Any],
        context: dict[str, Any] | None = None,
        actor: str | None = None,
        tenant: str | None = None,
    ) -> ErrorResponse:
        """Build a response for a configuration that failed validation."""
        details = {
            "validation_errors": list(validation.get("errors", [])),
            "validation_warnings": list(validation.get("warnings", [])),
        }
        return self._respond(
            ErrorCode.VALIDATION_FAILED,
            details,
            context=context,
            actor=actor,
            tenant=tenant,
        )

    def handle_timeout(
        self,
        elapsed_seconds: float,
        limit_seconds: float,
        context: dict[str, Any] | None = None,
        actor: str | None = None,
        tenant: str | None = None,
    ) -> ErrorResponse:
        """Build a response for a query that exceeded the advisory timeout."""
        details = {
            "execution_time": round(elapsed_seconds, 3),
            "timeout_limit": limit_seconds,
        }
        return self._respond(
            ErrorCode.TIMEOUT,
            details,
            context=context,
            actor=actor,
            tenant=tenant,
        )

    def handle_export_error(
        self,
        fault: BaseException,
        export_format: str,
        context: dict[str, Any] | None = None,
        actor: str | None = None,
        tenant: str | None = None,
    ) -> ErrorResponse:
        """Build a response for a failed export."""
        code = self.classify(fault)
        if code is ErrorCode.QUERY_EXECUTION_FAILED:
            code = ErrorCode.EXPORT_FAILED
        details = {"type": type(fault).__name__, "format": export_format}
        return self._respond(code, details, fault=fault, context=context, actor=actor, tenant=tenant)

    @staticmethod
    def is_recoverable(code: ErrorCode) -> bool:
        return describe(code).recoverable

    @staticmethod
    def retry_strategy(code: ErrorCode) -> dict[str, Any] | None:
        """Suggested retry delay for recoverable codes, None otherwise."""
        wait = describe(code).retry_after_seconds
        if wait is None:
            return None
        return {
            "wait_time": wait,
            "message": f"Please wait {wait} seconds before trying again.",
        }

    # -------------------------
    # Helpers
    # -------------------------

    def _respond(
        self,
        code: ErrorCode,
        details: dict[str, Any],
        fault: BaseException | None = None,
        context: dict[str, Any] | None = None,
        actor: str | None = None,
        tenant: str | None = None,
    ) -> ErrorResponse:
        descriptor = describe(code)
        error_id = generate_error_id()

        logger.error(
            "Report error %s [%s]: %s",
            error_id,
            code.value,
            fault if fault is not None else descriptor.message,
            exc_info=fault,
            extra={
                "error_id": error_id,
                "error_code": code.value,
                "report_context": context or {},
                "actor": actor,
                "tenant": tenant,
            },
        )

        return ErrorResponse(
            code=code,
            error_id=error_id,
            message=descriptor.message,
            details=details,
            suggestions=list(descriptor.suggestions),
            timestamp=datetime.now(timezone.utc).isoformat(),
            retry=self.retry_strategy(code),
        )

    @staticmethod
    def _classify_message(message: str) -> ErrorCode | None:
        text = message.lower()
        for code, required, any_of in _KEYWORD_HINTS:
            if all(word in text for word in required) and any(
                word in text for word in any_of
            ):
                return code
        return None


def generate_error_id() -> str:
    """Generate a correlation id of the form ERR_XXXXXXXX_<unix seconds>."""
    return f"ERR_{uuid.uuid4().hex[:8].upper()}_{int(time.time())}"


def _cause_chain(fault: BaseException) -> Iterator[BaseException]:
    seen: set[int] = set()
    link: BaseException | None = fault
    while link is not None and id(link) not in seen:
        seen.add(id(link))
        yield link
        link = link.__cause__ or link.__context__


def _fault_message(link: BaseException) -> str:
    # Statement errors render the SQL text too; only the driver message is matched
    if isinstance(link, StatementError):
        return str(link.orig) if link.orig is not None else ""
    return str(link)
