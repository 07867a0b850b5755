"""Result export for ReportQL - CSV, Excel, JSON, XML and printable HTML."""

from .exporter import (
    SUPPORTED_FORMATS,
    ExportColumn,
    ExportError,
    ExportFormat,
    ExportResult,
    ResultExporter,
    build_filename,
)
from .formatting import excel_cell, format_cell, format_currency

__all__ = [
    "SUPPORTED_FORMATS",
    "ExportColumn",
    "ExportError",
    "ExportFormat",
    "ExportResult",
    "ResultExporter",
    "build_filename",
    "excel_cell",
    "format_cell",
    "format_currency",
]
