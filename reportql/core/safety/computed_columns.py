"""
Computed column validator for ReportQL.

Computed columns are user-authored SQL fragments embedded verbatim in the
generated query, so they are gatekept here before compilation:
- No forbidden keywords (DDL/DML, file access, timing functions)
- Only whitelisted functions
- No comment, statement or string-concatenation operators
- Every identifier must resolve against the catalog

The expression is never executed here.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Iterable

from reportql.core.schema_registry.registry import (
    ColumnType,
    SchemaCatalog,
    Table,
)


# -----------------------------
# Whitelists / deny-lists
# -----------------------------

FORBIDDEN_KEYWORDS: tuple[str, ...] = (
    "DROP",
    "DELETE",
    "UPDATE",
    "INSERT",
    "TRUNCATE",
    "ALTER",
    "CREATE",
    "GRANT",
    "REVOKE",
    "EXEC",
    "EXECUTE",
    "UNION",
    "INTO",
    "INFORMATION_SCHEMA",
    "LOAD_FILE",
    "OUTFILE",
    "DUMPFILE",
    "BENCHMARK",
    "SLEEP",
)

ALLOWED_FUNCTIONS: frozenset[str] = frozenset(
    {
        # Date
        "DATEDIFF", "DATE_ADD", "DATE_SUB", "DATE_FORMAT", "NOW", "CURDATE",
        "CURTIME", "YEAR", "MONTH", "DAY", "HOUR", "MINUTE", "SECOND",
        # String
        "CONCAT", "UPPER", "LOWER", "TRIM", "LENGTH", "SUBSTRING", "REPLACE",
        # Numeric
        "ROUND", "ABS", "LEAST", "GREATEST",
        # Conditional
        "COALESCE", "IFNULL", "NULLIF", "CASE",
        # Aggregate
        "COUNT", "SUM", "AVG", "MIN", "MAX", "GROUP_CONCAT",
    }
)

# Words that may appear in an expression without being column references
SQL_KEYWORDS: frozenset[str] = frozenset(
    {
        "AND", "OR", "NOT", "IS", "NULL", "TRUE", "FALSE", "AS", "IN", "LIKE",
        "BETWEEN", "DISTINCT", "CASE", "WHEN", "THEN", "ELSE", "END",
        "INTERVAL", "FROM", "WHERE", "SEPARATOR",
        "MICROSECOND", "SECOND", "MINUTE", "HOUR", "DAY", "WEEK", "MONTH",
        "QUARTER", "YEAR",
    }
)

DANGEROUS_OPERATORS: tuple[str, ...] = ("||", "&&", ";", "--", "/*", "*/")

_STRING_LITERAL = re.compile(r"'(?:[^'\\]|\\.)*'|\"(?:[^\"\\]|\\.)*\"", re.DOTALL)
_FUNCTION_CALL = re.compile(r"\b([A-Za-z_][A-Za-z0-9_]*)\s*\(")
_IDENTIFIER = re.compile(r"(?<![\w.])([A-Za-z_][A-Za-z0-9_]*(?:\.[A-Za-z_][A-Za-z0-9_]*)*)")
_FORBIDDEN_PATTERNS = {
    keyword: re.compile(rf"\b{keyword}\b", re.IGNORECASE) for keyword in FORBIDDEN_KEYWORDS
}


def strip_string_literals(expression: str) -> str:
    """Replace quoted string literals with empty literals."""
    return _STRING_LITERAL.sub("''", expression)


# -----------------------------
# Result
# -----------------------------


@dataclass
class ComputedColumnResult:
    """Outcome of validating one expression."""

    valid: bool
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"valid": self.valid, "errors": list(self.errors)}


# -----------------------------
# Validator
# -----------------------------


class ComputedColumnValidator:
    """
    Validates computed column expressions against the catalog.

    All checks run and their errors accumulate; nothing short-circuits
    except an unknown base table, which skips column resolution.
    """

    def __init__(self, catalog: SchemaCatalog):
        self._catalog = catalog

    def validate(
        self,
        expression: str,
        table_name: str,
        siblings: Iterable[str] = (),
    ) -> ComputedColumnResult:
        """
        Validate an expression.

        Args:
            expression: The SQL expression text.
            table_name: Base table the expression is evaluated against.
            siblings: Other computed column names the expression may reference.

        Returns:
            ComputedColumnResult with accumulated errors.
        """
        if not expression or not expression.strip():
            return ComputedColumnResult(valid=False, errors=["Expression must not be empty"])

        errors: list[str] = []
        stripped = strip_string_literals(expression)

        errors.extend(self._check_forbidden_keywords(expression))
        errors.extend(self._check_functions(stripped))
        errors.extend(self._check_operators(stripped))

        table = self._catalog.get(table_name)
        if table is None:
            errors.append(f"Table '{table_name}' not found in schema catalog")
        else:
            errors.extend(self._check_column_references(stripped, table, set(siblings)))

        return ComputedColumnResult(valid=not errors, errors=errors)

    # -------------------------
    # Checks
    # -------------------------

    def _check_forbidden_keywords(self, expression: str) -> list[str]:
        return [
            f"Expression contains forbidden SQL keyword: {keyword}"
            for keyword, pattern in _FORBIDDEN_PATTERNS.items()
            if pattern.search(expression)
        ]

    def _check_functions(self, stripped: str) -> list[str]:
        errors = []
        seen: set[str] = set()
        for match in _FUNCTION_CALL.finditer(stripped):
            name = match.group(1).upper()
            if name in ALLOWED_FUNCTIONS or name in SQL_KEYWORDS or name in seen:
                continue
            seen.add(name)
            errors.append(
                f"Function '{name}' is not allowed. "
                f"Allowed functions: {', '.join(sorted(ALLOWED_FUNCTIONS))}"
            )
        return errors

    def _check_operators(self, stripped: str) -> list[str]:
        return [
            f"Operator '{operator}' is not allowed"
            for operator in DANGEROUS_OPERATORS
            if operator in stripped
        ]

    def _check_column_references(
        self,
        stripped: str,
        table: Table,
        siblings: set[str],
    ) -> list[str]:
        errors = []
        seen: set[str] = set()
        for reference in extract_identifiers(stripped):
            if reference in seen or reference in siblings:
                continue
            seen.add(reference)
            if table.get_computed_column(reference) is not None:
                continue
            if not self._resolves(table, reference):
                errors.append(
                    f"Column reference '{reference}' does not exist in table "
                    f"'{table.name}' or its relationships"
                )
        return errors

    def _resolves(self, table: Table, reference: str) -> bool:
        parts = reference.split(".")

        if len(parts) == 1:
            return table.get_column(reference) is not None

        if len(parts) > 2:
            # Deeper paths may be nested relationships; allowed conservatively
            return True

        head, tail = parts
        column = table.get_column(head)
        if column is not None and column.type is ColumnType.JSON:
            return True

        relationship = table.get_relationship(head)
        if relationship is None:
            return False
        if not relationship.columns and not self._catalog.has_table(relationship.table):
            # Nothing known about the target; cannot disprove the reference
            return True
        return self._catalog.relationship_column(relationship, tail) is not None


def extract_identifiers(stripped: str) -> list[str]:
    """
    Identifiers in an expression that may be column references.

    Function names, keywords and numeric literals are skipped.
    """
    identifiers = []
    for match in _IDENTIFIER.finditer(stripped):
        name = match.group(1)
        upper = name.upper()
        if upper in SQL_KEYWORDS or upper in FORBIDDEN_KEYWORDS:
            continue
        if stripped[match.end():].lstrip().startswith("("):
            continue
        if "." not in name and upper in ALLOWED_FUNCTIONS:
            continue
        identifiers.append(name)
    return identifiers
