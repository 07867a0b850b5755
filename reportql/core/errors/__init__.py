"""Error taxonomy and classification for the reporting engine."""

from .classifier import ErrorClassifier, ErrorResponse, generate_error_id
from .codes import ERROR_DESCRIPTORS, ErrorCode, ErrorDescriptor, describe
from .exceptions import PermissionDeniedError, ReportError

__all__ = [
    "ERROR_DESCRIPTORS",
    "ErrorClassifier",
    "ErrorCode",
    "ErrorDescriptor",
    "ErrorResponse",
    "PermissionDeniedError",
    "ReportError",
    "describe",
    "generate_error_id",
]
