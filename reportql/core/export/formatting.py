"""
Per-cell formatting by semantic column type.

``format_cell`` produces the text-oriented form used by CSV, JSON, XML and
HTML exports. ``excel_cell`` keeps native values and pairs them with a
spreadsheet number format instead.
"""

import json
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

CURRENCY_SYMBOLS = {
    "USD": "$",
    "EUR": "€",
    "GBP": "£",
    "JPY": "¥",
}

EXCEL_NUMBER_FORMATS = {
    "date": "yyyy-mm-dd",
    "datetime": "yyyy-mm-dd hh:mm:ss",
    "number": "#,##0",
    "integer": "#,##0",
    "decimal": "#,##0.00",
    "percentage": "0.00%",
}

_FALSE_STRINGS = {"", "0", "false", "no", "n", "off"}


def format_cell(value: Any, column_type: str | None, currency: str = "USD") -> Any:
    """Format one value for text-based exports."""
    if value is None or value == "":
        return ""

    try:
        match column_type:
            case "date":
                return to_datetime(value).strftime("%Y-%m-%d")
            case "datetime":
                return to_datetime(value).strftime("%Y-%m-%d %H:%M:%S")
            case "number" | "integer" | "decimal":
                return to_number(value)
            case "currency":
                return format_currency(value, currency)
            case "percentage":
                return f"{float(to_decimal(value) * 100):.2f}%"
            case "boolean":
                return "Yes" if to_bool(value) else "No"
            case "json":
                return value if isinstance(value, str) else json.dumps(value, default=str)
            case _:
                return str(value)
    except (ValueError, TypeError, InvalidOperation):
        return str(value)


def excel_cell(value: Any, column_type: str | None, currency: str = "USD") -> tuple[Any, str | None]:
    """Return a native cell value and its number format."""
    if value is None or value == "":
        return None, None

    if column_type == "currency":
        number_format = currency_number_format(currency)
    else:
        number_format = EXCEL_NUMBER_FORMATS.get(column_type or "")
    try:
        match column_type:
            case "date":
                return to_datetime(value).date(), number_format
            case "datetime":
                # openpyxl cannot store timezone-aware datetimes
                return to_datetime(value).replace(tzinfo=None), number_format
            case "number" | "integer" | "decimal" | "currency" | "percentage":
                return to_number(value), number_format
            case "boolean":
                return ("Yes" if to_bool(value) else "No"), None
            case "json":
                return (value if isinstance(value, str) else json.dumps(value, default=str)), None
            case _:
                if isinstance(value, (int, float)) and not isinstance(value, bool):
                    return value, None
                return str(value), None
    except (ValueError, TypeError, InvalidOperation):
        return str(value), None


def format_currency(value: Any, currency: str = "USD") -> str:
    """Format an amount as e.g. ``$1,234.50`` or ``-$5.00``."""
    amount = to_decimal(value)
    sign = "-" if amount < 0 else ""
    digits = f"{abs(amount):,.2f}"
    symbol = CURRENCY_SYMBOLS.get(currency.upper())
    if symbol is None:
        return f"{sign}{currency.upper()} {digits}"
    return f"{sign}{symbol}{digits}"


def currency_number_format(currency: str = "USD") -> str:
    """Spreadsheet number format matching ``format_currency``, e.g. ``"€"#,##0.00``."""
    symbol = CURRENCY_SYMBOLS.get(currency.upper())
    if symbol == "$":
        return "$#,##0.00"
    if symbol is None:
        return f'"{currency.upper()} "#,##0.00'
    return f'"{symbol}"#,##0.00'


def to_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, str):
        return datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    raise TypeError(f"Cannot interpret {type(value).__name__} as a date")


def to_decimal(value: Any) -> Decimal:
    if isinstance(value, bool):
        raise TypeError("Booleans are not numeric")
    if isinstance(value, Decimal):
        return value
    if isinstance(value, (int, float)):
        return Decimal(str(value))
    return Decimal(str(value).strip())


def to_number(value: Any) -> int | float:
    """Locale-free numeric value: ints stay ints, everything else becomes a float."""
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    number = to_decimal(value)
    if not number.is_finite():
        raise ValueError("Non-finite number")
    return float(number)


def to_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() not in _FALSE_STRINGS
    return bool(value)
