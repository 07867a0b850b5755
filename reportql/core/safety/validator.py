"""
Query validator for ReportQL.

Ensures a report configuration is:
- Structurally well-formed
- Referentially valid (every table, column and relationship is whitelisted)
- Free of injection-looking strings
- Within row limits

and estimates how expensive it will be. Invalid input is a normal outcome:
the validator reports it and never raises.

Injection screening here is defense in depth only. Generated SQL binds
every condition value as a parameter regardless of what passes this check.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Iterable

from reportql.core.constants import (
    ALIAS_PATTERN,
    CARTESIAN_JOIN_WARNING,
    COMPLEXITY_LOW_CEILING,
    COMPLEXITY_MEDIUM_CEILING,
    DEFAULT_MAX_CONDITION_DEPTH,
    HARD_ROW_LIMIT,
    INDEX_HINT_CONDITION_THRESHOLD,
    INDEXED_COLUMN_NAMES,
    LARGE_LIMIT_WARNING,
    MAX_ALIAS_LENGTH,
    MAX_CONDITIONS_WARNING,
    MAX_MANUAL_JOINS_WARNING,
    MAX_SELECTED_COLUMNS_WARNING,
    RESOURCE_SCORE_WARNING,
    SENSITIVE_COLUMN_PATTERNS,
)
from reportql.core.safety.computed_columns import ComputedColumnValidator
from reportql.core.schema_registry.registry import ColumnRef, SchemaCatalog, Table
from reportql.core.sql_ast.models import (
    LIST_OPERATORS,
    NULL_OPERATORS,
    RANGE_OPERATORS,
    AggregateFunction,
    BooleanOperator,
    ConditionGroup,
    ConditionLeaf,
    QueryConfig,
    QueryConfigError,
    SortDirection,
    parse_query_config,
)


INJECTION_PATTERNS: dict[str, re.Pattern] = {
    "union_select": re.compile(r"union\s+(all\s+)?select", re.IGNORECASE),
    "drop_table": re.compile(r"drop\s+table", re.IGNORECASE),
    "delete_from": re.compile(r"delete\s+from", re.IGNORECASE),
    "insert_into": re.compile(r"insert\s+into", re.IGNORECASE),
    "update_set": re.compile(r"update\s+\S+\s+set\b", re.IGNORECASE),
    "exec": re.compile(r"\bexec(ute)?\s*\(", re.IGNORECASE),
    "sleep": re.compile(r"\b(sleep|benchmark)\s*\(", re.IGNORECASE),
    "script_tag": re.compile(r"<\s*/?\s*script\b", re.IGNORECASE),
}

_ALIAS_RE = re.compile(ALIAS_PATTERN)

COMPLEXITY_LOW = "low"
COMPLEXITY_MEDIUM = "medium"
COMPLEXITY_HIGH = "high"


# -----------------------------
# Result
# -----------------------------


@dataclass
class ValidationResult:
    """Outcome of validating a report configuration."""

    valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    summary: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "valid": self.valid,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "summary": dict(self.summary),
        }


@dataclass
class _Findings:
    """Per-call accumulator; keeps the validator itself stateless."""

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    auto_paths: set[str] = field(default_factory=set)

    def error(self, message: str) -> None:
        if message not in self.errors:
            self.errors.append(message)

    def warn(self, message: str) -> None:
        if message not in self.warnings:
            self.warnings.append(message)


# -----------------------------
# Validator
# -----------------------------


class QueryValidator:
    """
    Validates report configurations against the schema catalog.

    Validation rules:
    1. Configuration must have a table and at least one column
    2. Every referenced column must resolve, directly or through one relationship
    3. Operators, aggregate functions and sort directions must be known
    4. Limit must be within the hard ceiling
    5. No injection-looking strings anywhere in the configuration
    """

    def __init__(
        self,
        catalog: SchemaCatalog,
        max_condition_depth: int = DEFAULT_MAX_CONDITION_DEPTH,
        computed_validator: ComputedColumnValidator | None = None,
    ):
        self._catalog = catalog
        self._max_depth = max_condition_depth
        self._computed = computed_validator or ComputedColumnValidator(catalog)

    def validate(self, raw: dict[str, Any] | QueryConfig) -> ValidationResult:
        """
        Validate a report configuration.

        Args:
            raw: Raw JSON-like configuration, or an already parsed QueryConfig.

        Returns:
            ValidationResult; ``valid`` is False when any blocking error was found.
        """
        findings = _Findings()
        if isinstance(raw, QueryConfig):
            config: QueryConfig | None = raw
            raw = raw.model_dump(by_alias=True, exclude_none=True)
        else:
            config = self._parse(raw, findings)

        if config is None:
            return ValidationResult(
                valid=False,
                errors=findings.errors,
                warnings=findings.warnings,
                summary=_empty_summary(),
            )

        table = self._catalog.get(config.table)
        if table is None:
            findings.error(f"Table '{config.table}' is not available for reporting")
        else:
            manual = self._validate_joins(config, table, findings)
            self._validate_columns(config, table, manual, findings)
            self._validate_conditions(config, table, manual, findings)
            self._validate_group_by(config, table, manual, findings)
            self._validate_sort(config, table, manual, findings)
            self._validate_computed_columns(config, table, findings)

        self._validate_limit(config, table, findings)
        self._validate_security(raw, findings)
        summary = self._analyze_performance(config, findings)

        return ValidationResult(
            valid=not findings.errors,
            errors=findings.errors,
            warnings=findings.warnings,
            summary=summary,
        )

    # -------------------------
    # Structural
    # -------------------------

    def _parse(self, raw: Any, findings: _Findings) -> QueryConfig | None:
        if not isinstance(raw, dict):
            findings.error("Query configuration must be an object")
            return None

        table = raw.get("table")
        table_name = table.get("name") if isinstance(table, dict) else table
        if table is None:
            findings.error("Table name is required")
        elif not isinstance(table_name, str) or not table_name.strip():
            findings.error("Table name must be a non-empty string")

        columns = raw.get("columns")
        if not isinstance(columns, list):
            findings.error("Columns must be a list of selected columns")
        elif not columns:
            findings.error("At least one column must be selected")

        for key in ("joins", "groupBy", "sortBy", "computedColumns"):
            if raw.get(key) is not None and not isinstance(raw[key], list):
                findings.error(f"'{key}' must be a list")

        limit = raw.get("limit")
        if limit is not None and not _is_integer_like(limit):
            findings.error("Limit must be a positive integer")

        depth = _raw_condition_depth(raw.get("conditions"), self._max_depth)
        if depth > self._max_depth:
            findings.error(
                f"Conditions are nested too deeply (maximum depth is {self._max_depth})"
            )

        if findings.errors:
            return None

        try:
            return parse_query_config(raw)
        except QueryConfigError as e:
            for message in e.messages:
                findings.error(message)
            return None

    # -------------------------
    # Referential
    # -------------------------

    def _validate_joins(
        self, config: QueryConfig, table: Table, findings: _Findings
    ) -> list[str]:
        """Validate manual joins; returns the keys usable for column resolution."""
        usable: list[str] = []

        for join in config.joins:
            relationship = table.get_relationship(join.key)
            if relationship is None:
                findings.error(
                    f"Join relationship '{join.key}' is not available for table '{table.name}'"
                )
            if not self._catalog.has_table(join.table):
                findings.error(f"Join table '{join.table}' is not available for reporting")
            if relationship is not None and relationship.table != join.table:
                findings.error(
                    f"Join relationship '{join.key}' targets table "
                    f"'{relationship.table}', not '{join.table}'"
                )
            if join.alias is not None and not _valid_alias(join.alias):
                findings.error(f"Invalid alias format '{join.alias}' for join '{join.key}'")
            if relationship is None:
                continue

            local_key = join.local_key or relationship.local_key
            if table.get_column(local_key) is None:
                findings.error(
                    f"Join key '{local_key}' does not exist in table '{table.name}'"
                )
            foreign_key = join.foreign_key or relationship.foreign_key
            if self._catalog.relationship_column(relationship, foreign_key) is None:
                findings.error(
                    f"Join key '{foreign_key}' does not exist in joined table '{join.table}'"
                )

            usable.append(join.key)
            for selected in join.selected_columns:
                column_name = _strip_prefix(selected.name, join.key)
                if self._catalog.relationship_column(relationship, column_name) is None:
                    findings.error(
                        f"Column '{selected.name}' does not exist in joined table '{join.table}'"
                    )
                if selected.alias is not None and not _valid_alias(selected.alias):
                    findings.error(
                        f"Invalid alias format '{selected.alias}' for column '{selected.name}'"
                    )

        if len(config.joins) > MAX_MANUAL_JOINS_WARNING:
            findings.warn(
                f"Multiple joins ({len(config.joins)}) may significantly impact performance"
            )
        return usable

    def _validate_columns(
        self,
        config: QueryConfig,
        table: Table,
        manual: list[str],
        findings: _Findings,
    ) -> None:
        output_names: set[str] = set()

        for column in config.columns:
            if self._resolve(table, column.name, manual, findings) is None:
                findings.error(f"Column '{column.name}' does not exist in table '{table.name}'")
            if column.alias is not None and not _valid_alias(column.alias):
                findings.error(f"Invalid alias format '{column.alias}' for column '{column.name}'")
            if _is_sensitive(column.name):
                findings.warn(f"Accessing potentially sensitive column: {column.name}")

            if column.output_name in output_names:
                findings.error(
                    f"Duplicate output column '{column.output_name}'; use an alias to disambiguate"
                )
            output_names.add(column.output_name)

        total = _total_columns(config)
        if total > MAX_SELECTED_COLUMNS_WARNING:
            findings.warn(f"Selecting many columns ({total}) may impact performance")

    def _validate_conditions(
        self,
        config: QueryConfig,
        table: Table,
        manual: list[str],
        findings: _Findings,
    ) -> None:
        if config.conditions is None:
            return

        self._validate_group(config.conditions, "Conditions", table, manual, findings)

        count = config.condition_count()
        if count > MAX_CONDITIONS_WARNING:
            findings.warn(f"Many conditions ({count}) may impact query performance")

    def _validate_group(
        self,
        group: ConditionGroup,
        path: str,
        table: Table,
        manual: list[str],
        findings: _Findings,
    ) -> None:
        if group.boolean not in _values(BooleanOperator):
            findings.error(f"{path}: Invalid boolean operator '{group.boolean}'")

        prefix = "Condition " if path == "Conditions" else f"{path}."
        for index, node in enumerate(group.conditions, start=1):
            node_path = f"{prefix}{index}"
            if isinstance(node, ConditionGroup):
                self._validate_group(node, node_path, table, manual, findings)
            else:
                self._validate_leaf(node, node_path, table, manual, findings)

    def _validate_leaf(
        self,
        leaf: ConditionLeaf,
        path: str,
        table: Table,
        manual: list[str],
        findings: _Findings,
    ) -> None:
        if self._resolve(table, leaf.field, manual, findings) is None:
            findings.error(f"{path}: Field '{leaf.field}' is not available in the query")
        if _is_sensitive(leaf.field):
            findings.warn(f"Accessing potentially sensitive column: {leaf.field}")

        if leaf.logical_operator is not None and (
            leaf.logical_operator.lower() not in _values(BooleanOperator)
        ):
            findings.error(f"{path}: Invalid logical operator '{leaf.logical_operator}'")

        operator = leaf.normalized_operator
        if operator is None:
            findings.error(f"{path}: Invalid operator '{leaf.operator}'")
            return

        value = leaf.value
        if operator in NULL_OPERATORS:
            return
        if operator in LIST_OPERATORS:
            if not _is_list_value(value):
                findings.error(
                    f"{path}: Operator '{operator.value}' requires an array or "
                    "comma-separated value"
                )
            return
        if operator in RANGE_OPERATORS:
            if not isinstance(value, list) or len(value) != 2:
                findings.error(f"{path}: Operator '{operator.value}' requires exactly two values")
            return

        if isinstance(value, (list, dict)):
            findings.error(f"{path}: Operator '{operator.value}' requires a single value")
        elif value is None or value == "":
            findings.warn(f"{path}: Empty value for operator '{operator.value}'")

    def _validate_group_by(
        self,
        config: QueryConfig,
        table: Table,
        manual: list[str],
        findings: _Findings,
    ) -> None:
        if not config.group_by:
            return

        group_fields: set[str] = set()
        for index, entry in enumerate(config.group_by, start=1):
            label = f"Group By {index}"
            group_fields.add(entry.group_by)
            if self._resolve(table, entry.group_by, manual, findings) is None:
                findings.error(f"{label}: Field '{entry.group_by}' is not available in the query")

            if entry.aggregate_fn is None:
                continue
            if entry.aggregate_fn not in _values(AggregateFunction):
                findings.error(f"{label}: Invalid aggregate function '{entry.aggregate_fn}'")
                continue
            if not table.supports_aggregates:
                findings.error(f"Table '{table.name}' does not support aggregate functions")

            target = entry.aggregate_by or "*"
            if target == "*":
                if entry.aggregate_fn != AggregateFunction.COUNT.value:
                    findings.error(
                        f"{label}: Wildcard '*' can only be used with COUNT function"
                    )
            elif self._resolve(table, target, manual, findings) is None:
                findings.error(f"{label}: Aggregate field '{target}' is not available in the query")

        selected = [column.name for column in config.columns]
        for join in config.joins:
            selected += [
                f"{join.key}.{_strip_prefix(column.name, join.key)}"
                for column in join.selected_columns
            ]
        for name in selected:
            if name not in group_fields:
                findings.error(f"Column '{name}' must be grouped or aggregated when GROUP BY is used")

    def _validate_sort(
        self,
        config: QueryConfig,
        table: Table,
        manual: list[str],
        findings: _Findings,
    ) -> None:
        extra = {computed.name for computed in config.computed_columns}
        extra.update(entry.aggregate_label for entry in config.group_by if entry.aggregate_fn)

        for index, entry in enumerate(config.sort_by, start=1):
            label = f"Sort By {index}"
            if entry.column not in extra and (
                self._resolve(table, entry.column, manual, findings) is None
            ):
                findings.error(f"{label}: Field '{entry.column}' is not available in the query")
            if entry.direction not in _values(SortDirection):
                findings.error(f"{label}: Invalid sort direction '{entry.direction}'")

    def _validate_computed_columns(
        self, config: QueryConfig, table: Table, findings: _Findings
    ) -> None:
        names = [computed.name for computed in config.computed_columns]
        outputs = {column.output_name for column in config.columns}

        for computed in config.computed_columns:
            if not _valid_alias(computed.name):
                findings.error(f"Invalid computed column name '{computed.name}'")
            if names.count(computed.name) > 1 or computed.name in outputs:
                findings.error(f"Duplicate output column '{computed.name}'")

            siblings = [name for name in names if name != computed.name]
            result = self._computed.validate(computed.expression, table.name, siblings)
            for error in result.errors:
                findings.error(f"Computed column '{computed.name}': {error}")

    # -------------------------
    # Limit
    # -------------------------

    def _validate_limit(
        self, config: QueryConfig, table: Table | None, findings: _Findings
    ) -> None:
        limit = config.limit
        if limit is None:
            return

        if limit < 1:
            findings.error("Limit must be a positive integer")
            return
        if limit > HARD_ROW_LIMIT:
            findings.error(f"Limit cannot exceed {HARD_ROW_LIMIT:,} rows")
            return

        if limit > LARGE_LIMIT_WARNING:
            findings.warn(f"Large limit ({limit}) may impact performance")

        if table is not None:
            max_rows = table.max_rows or HARD_ROW_LIMIT
            if limit > max_rows:
                findings.warn(
                    f"Requested limit ({limit}) exceeds maximum allowed ({max_rows}) for table"
                )

    # -------------------------
    # Security
    # -------------------------

    def _validate_security(self, raw: Any, findings: _Findings) -> None:
        for text in _iter_strings(raw):
            for name, pattern in INJECTION_PATTERNS.items():
                if pattern.search(text):
                    findings.error(f"Potential SQL injection detected: {name}")

    # -------------------------
    # Performance
    # -------------------------

    def _analyze_performance(self, config: QueryConfig, findings: _Findings) -> dict[str, Any]:
        total_columns = _total_columns(config)
        total_joins = len(config.joins) + len(findings.auto_paths)
        total_conditions = config.condition_count()
        total_groups = len(config.group_by)
        total_sorts = len(config.sort_by)

        score = (
            total_columns
            + 3 * total_joins
            + 2 * total_conditions
            + 4 * total_groups
            + total_sorts
        )
        if score < COMPLEXITY_LOW_CEILING:
            complexity = COMPLEXITY_LOW
        elif score < COMPLEXITY_MEDIUM_CEILING:
            complexity = COMPLEXITY_MEDIUM
        else:
            complexity = COMPLEXITY_HIGH

        if complexity == COMPLEXITY_HIGH:
            findings.warn("Query complexity is high and may result in slow execution")

        if total_conditions > INDEX_HINT_CONDITION_THRESHOLD and not any(
            _is_indexed(leaf.field) for leaf in config.iter_leaves()
        ):
            findings.warn("Consider adding conditions on indexed columns for better performance")

        if total_joins > CARTESIAN_JOIN_WARNING:
            findings.warn(
                "Multiple joins may result in cartesian products - ensure proper join conditions"
            )

        resource_score = total_columns + 5 * total_joins + (config.limit or 0) / 100
        if resource_score > RESOURCE_SCORE_WARNING:
            findings.warn("Query may consume significant system resources")

        if complexity == COMPLEXITY_LOW and total_joins <= 1 and total_conditions <= 3:
            performance = "fast"
        elif complexity != COMPLEXITY_HIGH and total_joins <= 3 and total_conditions <= 10:
            performance = "moderate"
        else:
            performance = "slow"

        return {
            "complexity": complexity,
            "complexity_score": score,
            "total_columns": total_columns,
            "total_joins": total_joins,
            "total_conditions": total_conditions,
            "total_computed_columns": len(config.computed_columns),
            "has_grouping": bool(config.group_by),
            "has_sorting": bool(config.sort_by),
            "has_limit": config.limit is not None,
            "estimated_performance": performance,
        }

    # -------------------------
    # Helpers
    # -------------------------

    def _resolve(
        self,
        table: Table,
        name: str,
        manual: list[str],
        findings: _Findings,
    ) -> ColumnRef | None:
        ref = self._catalog.resolve(table.name, name, manual_joins=manual)
        if ref is not None and ref.path is not None and ref.path not in manual:
            findings.auto_paths.add(ref.path)
        return ref


def _values(enum_cls) -> set[str]:
    return {member.value for member in enum_cls}


def _valid_alias(alias: str) -> bool:
    return bool(_ALIAS_RE.match(alias)) and len(alias) <= MAX_ALIAS_LENGTH


def _is_sensitive(name: str) -> bool:
    lowered = name.lower()
    return any(pattern in lowered for pattern in SENSITIVE_COLUMN_PATTERNS)


def _is_indexed(name: str) -> bool:
    column = name.rsplit(".", 1)[-1].lower()
    return column in INDEXED_COLUMN_NAMES or column.endswith(("_id", "_uuid"))


def _is_integer_like(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    return isinstance(value, str) and value.strip().lstrip("-").isdigit()


def _is_list_value(value: Any) -> bool:
    if isinstance(value, list):
        return bool(value)
    return isinstance(value, str) and bool(value.strip())


def _strip_prefix(name: str, key: str) -> str:
    prefix = f"{key}."
    return name[len(prefix):] if name.startswith(prefix) else name


def _total_columns(config: QueryConfig) -> int:
    return (
        len(config.columns)
        + sum(len(join.selected_columns) for join in config.joins)
        + len(config.computed_columns)
    )


def _iter_strings(value: Any) -> Iterable[str]:
    stack = [value]
    while stack:
        item = stack.pop()
        if isinstance(item, str):
            yield item
        elif isinstance(item, dict):
            stack.extend(reversed(list(item.values())))
        elif isinstance(item, (list, tuple)):
            stack.extend(reversed(item))


def _raw_condition_depth(node: Any, ceiling: int) -> int:
    """Depth of a raw condition tree, counted in groups; stops past ``ceiling``."""
    if node is None or node == [] or node == {}:
        return 0
    if isinstance(node, list) or (isinstance(node, dict) and "conditions" not in node):
        node = {"conditions": node if isinstance(node, list) else [node]}

    deepest = 0
    stack = [(node, 1)]
    while stack:
        current, depth = stack.pop()
        deepest = max(deepest, depth)
        if deepest > ceiling:
            return deepest
        children = current.get("conditions") if isinstance(current, dict) else None
        if isinstance(children, list):
            for child in children:
                if isinstance(child, dict) and "conditions" in child:
                    stack.append((child, depth + 1))
    return deepest


def _empty_summary() -> dict[str, Any]:
    return {
        "complexity": COMPLEXITY_LOW,
        "complexity_score": 0,
        "total_columns": 0,
        "total_joins": 0,
        "total_conditions": 0,
        "total_computed_columns": 0,
        "has_grouping": False,
        "has_sorting": False,
        "has_limit": False,
        "estimated_performance": "fast",
    }
