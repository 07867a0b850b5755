"""
Result exporter for ReportQL.

Writes a result set plus its column descriptors to a file in one of the
supported formats and returns a uniform descriptor of the written file.
"""

import csv
import html
import json
import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Iterable
from xml.etree.ElementTree import Element, ElementTree, SubElement, indent

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

from reportql.core.errors.codes import ErrorCode
from reportql.core.errors.exceptions import ReportError
from reportql.core.export.formatting import excel_cell, format_cell

logger = logging.getLogger(__name__)

HEADER_COLOR = "4472C4"
MAX_COLUMN_WIDTH = 50
DOWNLOAD_ROUTE = "v1/reports/export-download"
FILE_ROUTE = "v1/reports/download"


class ExportFormat(str, Enum):
    CSV = "csv"
    EXCEL = "excel"
    JSON = "json"
    XML = "xml"
    PDF = "pdf"


FORMAT_ALIASES = {"xlsx": ExportFormat.EXCEL}

SUPPORTED_FORMATS: dict[ExportFormat, dict[str, str]] = {
    ExportFormat.CSV: {
        "label": "CSV",
        "mime_type": "text/csv",
        "extension": "csv",
        "description": "Comma-separated values, opens in any spreadsheet",
    },
    ExportFormat.EXCEL: {
        "label": "Excel",
        "mime_type": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        "extension": "xlsx",
        "description": "Formatted spreadsheet with a styled header and metadata sheet",
    },
    ExportFormat.JSON: {
        "label": "JSON",
        "mime_type": "application/json",
        "extension": "json",
        "description": "Structured data with metadata and column definitions",
    },
    ExportFormat.XML: {
        "label": "XML",
        "mime_type": "application/xml",
        "extension": "xml",
        "description": "Structured XML document",
    },
    ExportFormat.PDF: {
        "label": "PDF",
        "mime_type": "text/html",
        "extension": "html",
        "description": "Printable HTML document for rendering to PDF",
    },
}


# -----------------------------
# Errors / results
# -----------------------------


class ExportError(ReportError):
    """Raised when an export cannot be produced."""

    code = ErrorCode.EXPORT_FAILED


@dataclass(frozen=True)
class ExportColumn:
    key: str
    label: str
    type: str = "string"


@dataclass
class ExportResult:
    """Uniform descriptor of a written export file."""

    success: bool
    format: str
    filename: str
    filepath: str
    size: int
    rows: int
    url: str
    download_url: str
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        payload = {
            "success": self.success,
            "format": self.format,
            "filename": self.filename,
            "filepath": self.filepath,
            "size": self.size,
            "rows": self.rows,
            "url": self.url,
            "download_url": self.download_url,
        }
        payload.update(self.extra)
        return payload


# -----------------------------
# Exporter
# -----------------------------


class ResultExporter:
    """
    Exports result sets to files.

    Options understood by the writers:
        csv: include_bom (default True), delimiter, enclosure
        excel: sheet_title, include_metadata (default True)
        json: compact (default False)
        pdf: title
        all: currency (default "USD")
    """

    def __init__(
        self,
        export_dir: str | Path,
        base_url: str = "",
        clock: Callable[[], datetime] = datetime.now,
    ):
        self._dir = Path(export_dir)
        self._base_url = base_url.rstrip("/")
        self._clock = clock

    @staticmethod
    def supported_formats() -> dict[str, dict[str, str]]:
        return {fmt.value: dict(info) for fmt, info in SUPPORTED_FORMATS.items()}

    @staticmethod
    def normalize_format(export_format: str) -> ExportFormat:
        """
        Map a requested format name to an ExportFormat.

        Raises:
            ExportError: If the format is not supported.
        """
        name = (export_format or "").strip().lower()
        if name in FORMAT_ALIASES:
            return FORMAT_ALIASES[name]
        try:
            return ExportFormat(name)
        except ValueError:
            raise ExportError(
                f"Unsupported export format '{export_format}'", format=export_format
            ) from None

    def export(
        self,
        rows: list[dict[str, Any]],
        columns: Iterable[Any],
        export_format: str = "csv",
        metadata: dict[str, Any] | None = None,
        table_name: str = "report",
        options: dict[str, Any] | None = None,
    ) -> ExportResult:
        """
        Write rows to a file.

        Args:
            rows: Result rows keyed by column name.
            columns: Column descriptors (dicts or objects with name/label/type).
            export_format: One of the supported formats (or an alias).
            metadata: Free-form metadata written alongside the data.
            table_name: Used to build the filename.
            options: Writer options, see class docstring.

        Raises:
            ExportError: On unsupported formats or I/O failure.
        """
        fmt = self.normalize_format(export_format)
        options = options or {}
        metadata = dict(metadata or {})
        export_columns = _normalize_columns(columns, rows)
        extension = SUPPORTED_FORMATS[fmt]["extension"]
        filename = build_filename(table_name, extension, self._clock())
        path = self._dir / filename

        writer = {
            ExportFormat.CSV: self._write_csv,
            ExportFormat.EXCEL: self._write_excel,
            ExportFormat.JSON: self._write_json,
            ExportFormat.XML: self._write_xml,
            ExportFormat.PDF: self._write_html,
        }[fmt]

        try:
            self._dir.mkdir(parents=True, exist_ok=True)
            writer(path, rows, export_columns, metadata, options)
            size = path.stat().st_size
        except OSError as e:
            raise ExportError(
                f"Failed to write {fmt.value} export: {type(e).__name__}", format=fmt.value
            ) from e

        logger.info("Exported %d rows to %s (%d bytes)", len(rows), filename, size)

        extra: dict[str, Any] = {"mime_type": SUPPORTED_FORMATS[fmt]["mime_type"]}
        if fmt is ExportFormat.PDF:
            extra["renderer"] = "external"

        return ExportResult(
            success=True,
            format=fmt.value,
            filename=filename,
            filepath=str(path),
            size=size,
            rows=len(rows),
            url=f"{self._base_url}/{DOWNLOAD_ROUTE}/{filename}",
            download_url=f"{self._base_url}/{FILE_ROUTE}/{filename}",
            extra=extra,
        )

    def resolve_download(self, filename: str) -> Path:
        """
        Resolve an export filename to a path inside the export directory.

        Raises:
            ExportError: For traversal attempts or missing files.
        """
        if not filename or ".." in filename or "/" in filename or "\\" in filename:
            raise ExportError("Invalid export filename")
        path = self._dir / filename
        if not path.is_file():
            raise ExportError("Export file not found")
        return path

    # -------------------------
    # Writers
    # -------------------------

    def _write_csv(self, path: Path, rows, columns: list[ExportColumn], metadata, options) -> None:
        encoding = "utf-8-sig" if options.get("include_bom", True) else "utf-8"
        currency = options.get("currency", "USD")
        with open(path, "w", newline="", encoding=encoding) as handle:
            writer = csv.writer(
                handle,
                delimiter=options.get("delimiter", ","),
                quotechar=options.get("enclosure", '"'),
                quoting=csv.QUOTE_MINIMAL,
            )
            writer.writerow([column.label for column in columns])
            for row in rows:
                writer.writerow(
                    [format_cell(row.get(column.key), column.type, currency) for column in columns]
                )

    def _write_excel(self, path: Path, rows, columns: list[ExportColumn], metadata, options) -> None:
        currency = options.get("currency", "USD")
        workbook = Workbook()
        sheet = workbook.active
        sheet.title = str(options.get("sheet_title", "Report"))[:31]

        thin = Side(style="thin", color="D9D9D9")
        border = Border(left=thin, right=thin, top=thin, bottom=thin)
        header_font = Font(bold=True, color="FFFFFF", size=12)
        header_fill = PatternFill(start_color=HEADER_COLOR, end_color=HEADER_COLOR, fill_type="solid")
        header_alignment = Alignment(horizontal="center", vertical="center")

        for col_num, column in enumerate(columns, start=1):
            cell = sheet.cell(row=1, column=col_num, value=column.label)
            cell.font = header_font
            cell.fill = header_fill
            cell.alignment = header_alignment
            cell.border = border

        for row_num, row in enumerate(rows, start=2):
            for col_num, column in enumerate(columns, start=1):
                value, number_format = excel_cell(row.get(column.key), column.type, currency)
                cell = sheet.cell(row=row_num, column=col_num, value=value)
                cell.border = border
                if number_format:
                    cell.number_format = number_format

        _auto_adjust_columns(sheet)
        sheet.freeze_panes = "A2"

        if options.get("include_metadata", True):
            meta_sheet = workbook.create_sheet("Metadata")
            meta_sheet.append(["Property", "Value"])
            meta_sheet["A1"].font = Font(bold=True)
            meta_sheet["B1"].font = Font(bold=True)
            for key, value in metadata.items():
                meta_sheet.append([str(key), _scalar(value)])
            meta_sheet.append(["Total Rows", len(rows)])
            meta_sheet.append(["Exported At", self._clock().strftime("%Y-%m-%d %H:%M:%S")])
            _auto_adjust_columns(meta_sheet)

        workbook.save(path)

    def _write_json(self, path: Path, rows, columns: list[ExportColumn], metadata, options) -> None:
        payload = {
            "metadata": {
                **metadata,
                "exported_at": self._clock().isoformat(),
                "total_rows": len(rows),
                "columns_count": len(columns),
                "format": ExportFormat.JSON.value,
            },
            "columns": [
                {"name": column.key, "label": column.label, "type": column.type}
                for column in columns
            ],
            "data": rows,
        }
        with open(path, "w", encoding="utf-8") as handle:
            if options.get("compact", False):
                json.dump(payload, handle, default=_json_serializer, ensure_ascii=False, separators=(",", ":"))
            else:
                json.dump(payload, handle, default=_json_serializer, ensure_ascii=False, indent=2)

    def _write_xml(self, path: Path, rows, columns: list[ExportColumn], metadata, options) -> None:
        currency = options.get("currency", "USD")
        root = Element("report")

        meta_element = SubElement(root, "metadata")
        for key, value in metadata.items():
            SubElement(meta_element, _xml_tag(str(key))).text = str(_scalar(value))
        SubElement(meta_element, "total_rows").text = str(len(rows))

        columns_element = SubElement(root, "columns")
        for column in columns:
            SubElement(
                columns_element,
                "column",
                {"name": column.key, "label": column.label, "type": column.type},
            )

        data_element = SubElement(root, "data")
        for row in rows:
            row_element = SubElement(data_element, "row")
            for column in columns:
                value = format_cell(row.get(column.key), column.type, currency)
                SubElement(row_element, _xml_tag(column.key)).text = str(value)

        tree = ElementTree(root)
        indent(tree, space="  ")
        tree.write(path, encoding="utf-8", xml_declaration=True)

    def _write_html(self, path: Path, rows, columns: list[ExportColumn], metadata, options) -> None:
        currency = options.get("currency", "USD")
        title = html.escape(str(options.get("title") or metadata.get("title") or "Report"))
        generated = self._clock().strftime("%Y-%m-%d %H:%M:%S")

        header_cells = "".join(f"<th>{html.escape(column.label)}</th>" for column in columns)
        body_rows = []
        for row in rows:
            cells = "".join(
                f"<td>{html.escape(str(format_cell(row.get(column.key), column.type, currency)))}</td>"
                for column in columns
            )
            body_rows.append(f"<tr>{cells}</tr>")

        document = "\n".join(
            [
                "<!DOCTYPE html>",
                "<html>",
                "<head>",
                '<meta charset="utf-8">',
                f"<title>{title}</title>",
                "<style>",
                "body { font-family: Helvetica, Arial, sans-serif; font-size: 10px; }",
                "table { border-collapse: collapse; width: 100%; }",
                "th, td { border: 1px solid #d9d9d9; padding: 4px; text-align: left; }",
                f"th {{ background: #{HEADER_COLOR}; color: #ffffff; }}",
                "</style>",
                "</head>",
                "<body>",
                f"<h1>{title}</h1>",
                f"<p>Generated {generated} &middot; {len(rows)} rows</p>",
                f"<table><thead><tr>{header_cells}</tr></thead>",
                "<tbody>",
                *body_rows,
                "</tbody></table>",
                "</body>",
                "</html>",
            ]
        )
        path.write_text(document, encoding="utf-8")


# -----------------------------
# Helpers
# -----------------------------


def build_filename(table_name: str, extension: str, moment: datetime) -> str:
    """``report-{slug}-{YYYY-MM-DD-HHMMSS}.{ext}``."""
    slug = re.sub(r"[^a-z0-9]+", "-", table_name.lower()).strip("-") or "report"
    return f"report-{slug}-{moment.strftime('%Y-%m-%d-%H%M%S')}.{extension}"


def _normalize_columns(columns: Iterable[Any], rows: list[dict[str, Any]]) -> list[ExportColumn]:
    normalized = []
    for column in columns:
        if isinstance(column, ExportColumn):
            normalized.append(column)
            continue
        if isinstance(column, dict):
            key = column.get("name") or column.get("key")
            label = column.get("label")
            column_type = column.get("type")
        else:
            key = getattr(column, "name", None)
            label = getattr(column, "label", None)
            column_type = getattr(column, "type", None)
        if not key:
            raise ExportError("Export column is missing a name")
        normalized.append(ExportColumn(key=key, label=label or key, type=column_type or "string"))

    if not normalized and rows:
        normalized = [ExportColumn(key=key, label=key) for key in rows[0]]
    return normalized


def _auto_adjust_columns(worksheet) -> None:
    """Auto-adjust column widths, capped at MAX_COLUMN_WIDTH."""
    for column in worksheet.columns:
        max_length = max(
            (len(str(cell.value)) for cell in column if cell.value is not None),
            default=0,
        )
        worksheet.column_dimensions[get_column_letter(column[0].column)].width = min(
            max_length + 2, MAX_COLUMN_WIDTH
        )


def _json_serializer(value: Any):
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    return str(value)


def _scalar(value: Any) -> Any:
    if value is None or isinstance(value, (str, int, float, bool)):
        return "" if value is None else value
    return json.dumps(value, default=_json_serializer)


def _xml_tag(name: str) -> str:
    tag = re.sub(r"[^A-Za-z0-9_.-]", "_", name)
    if not tag or not (tag[0].isalpha() or tag[0] == "_"):
        tag = f"_{tag}"
    return tag
