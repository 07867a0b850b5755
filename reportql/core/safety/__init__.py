"""Safety module for ReportQL - configuration validation and expression screening."""

from .computed_columns import ComputedColumnResult, ComputedColumnValidator
from .validator import QueryValidator, ValidationResult

__all__ = [
    "ComputedColumnResult",
    "ComputedColumnValidator",
    "QueryValidator",
    "ValidationResult",
]
