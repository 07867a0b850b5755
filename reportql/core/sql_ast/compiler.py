"""
SQLAlchemy Compiler for ReportQL.

Transforms a validated QueryConfig and JoinPlan into a SQLAlchemy Select.

Condition values are always bound parameters; they never appear in the SQL
text. The only raw fragments are computed column expressions, which must
have passed the computed column validator first.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import (
    String,
    and_,
    cast,
    column as sa_column,
    func,
    literal,
    literal_column,
    not_,
    or_,
    select,
    table as sa_table,
)
from sqlalchemy.engine import Dialect
from sqlalchemy.sql import Select
from sqlalchemy.sql.elements import ColumnElement, Label

from reportql.core.constants import MAX_COMPUTED_EXPANSION_DEPTH
from reportql.core.errors.codes import ErrorCode
from reportql.core.errors.exceptions import PermissionDeniedError, ReportError
from reportql.core.safety.computed_columns import (
    ALLOWED_FUNCTIONS,
    FORBIDDEN_KEYWORDS,
    SQL_KEYWORDS,
)
from reportql.core.schema_registry.registry import (
    ColumnRef,
    ColumnType,
    JoinMode,
    JoinType,
    SchemaCatalog,
    Table,
    make_label,
)
from reportql.core.sql_ast.join_resolver import JoinPlan, JoinResolver, JoinStep
from reportql.core.sql_ast.models import (
    AggregateFunction,
    ComputedColumnConfig,
    ConditionGroup,
    ConditionLeaf,
    ConditionOperator,
    QueryConfig,
    SelectedColumn,
    SortDirection,
    parse_query_config,
)

logger = logging.getLogger(__name__)

AGGREGATE_TYPES: dict[str, ColumnType] = {
    AggregateFunction.COUNT.value: ColumnType.INTEGER,
    AggregateFunction.SUM.value: ColumnType.DECIMAL,
    AggregateFunction.AVG.value: ColumnType.DECIMAL,
    AggregateFunction.MIN.value: ColumnType.STRING,
    AggregateFunction.MAX.value: ColumnType.STRING,
    AggregateFunction.GROUP_CONCAT.value: ColumnType.STRING,
}

AGGREGATE_LABELS: dict[str, str] = {
    AggregateFunction.COUNT.value: "Count",
    AggregateFunction.SUM.value: "Sum",
    AggregateFunction.AVG.value: "Average",
    AggregateFunction.MIN.value: "Min",
    AggregateFunction.MAX.value: "Max",
    AggregateFunction.GROUP_CONCAT.value: "Concatenate",
}

_STRING_LITERAL = re.compile(r"('(?:[^'\\]|\\.)*'|\"(?:[^\"\\]|\\.)*\")", re.DOTALL)
_IDENTIFIER = re.compile(r"(?<![\w.])([A-Za-z_][A-Za-z0-9_]*(?:\.[A-Za-z_][A-Za-z0-9_]*)*)")


# -----------------------------
# Errors
# -----------------------------


class SQLCompileError(ReportError):
    """Raised when SQL compilation fails."""

    code = ErrorCode.SCHEMA_ERROR


# -----------------------------
# Results
# -----------------------------


@dataclass(frozen=True)
class ColumnDescriptor:
    """Describes one output column of a compiled report."""

    name: str  # key in each result row
    column_name: str  # reference as written in the configuration
    label: str
    type: str
    join_path: str | None = None
    auto_join: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "column_name": self.column_name,
            "label": self.label,
            "type": self.type,
            "auto_join_path": self.join_path if self.auto_join else None,
        }


@dataclass
class CompiledQuery:
    """A compiled report: statement, SQL text, bindings and join metadata."""

    statement: Select
    sql: str
    params: dict[str, Any]
    join_plan: JoinPlan
    columns: list[ColumnDescriptor] = field(default_factory=list)
    table_name: str = ""

    @property
    def bindings(self) -> list[Any]:
        """Bound values in order of appearance in the SQL text."""
        return list(self.params.values())

    @property
    def aliases(self) -> dict[str, str]:
        return self.join_plan.aliases

    @property
    def auto_joins(self) -> list[dict[str, str]]:
        return [join.to_dict() for join in self.join_plan.auto_joins]

    @property
    def manual_joins(self) -> list[dict[str, str]]:
        return [join.to_dict() for join in self.join_plan.manual_joins]

    @property
    def joined_tables(self) -> list[str]:
        return [join.table for join in self.join_plan.joins]


@dataclass
class _Scope:
    """Per-compile lookup state."""

    table: Table
    base: Any
    clauses: dict[str, Any]
    steps: dict[str, JoinStep]
    manual_keys: list[str]
    computed: dict[str, str]


# -----------------------------
# Compiler
# -----------------------------


class SQLCompiler:
    """
    Compiles a QueryConfig and JoinPlan into a SQLAlchemy Select statement.

    Table objects are built on the fly from catalog metadata, so only
    whitelisted columns can ever be referenced.
    """

    def __init__(self, catalog: SchemaCatalog, dialect: Dialect | None = None):
        """
        Initialize the compiler.

        Args:
            catalog: Schema catalog for table and column lookups.
            dialect: Dialect used to render SQL text. The generic SQLAlchemy
                dialect is used if not provided.
        """
        self._catalog = catalog
        self._dialect = dialect
        self._resolver = JoinResolver(catalog)

    def compile(
        self,
        config: QueryConfig | dict[str, Any],
        join_plan: JoinPlan | None = None,
        tenant: str | None = None,
    ) -> CompiledQuery:
        """
        Compile a config (and optionally a pre-resolved JoinPlan).

        Args:
            config: Report configuration.
            join_plan: Pre-resolved joins. Resolved from the config if not provided.
            tenant: Tenant the rows are scoped to. Required for tables that
                declare a tenant column; ignored for the others.

        Raises:
            TableNotFoundError: If the base table is not registered.
            PermissionDeniedError: If a tenant-scoped table is compiled without a tenant.
            SQLCompileError: If a reference cannot be compiled.
        """
        config = parse_query_config(config)
        table = self._catalog.require(config.table)
        if table.tenant_column and not tenant:
            raise PermissionDeniedError(
                f"Table '{table.name}' is tenant scoped and no tenant was given",
                table=table.name,
            )
        plan = join_plan or self._resolver.resolve(config)
        scope = self._build_scope(table, plan, config)

        # 1. FROM clause with joins
        from_clause = scope.base
        for step in plan.joins:
            from_clause = self._apply_join(from_clause, scope, step)

        # 2. SELECT columns
        if config.group_by:
            select_columns, descriptors, group_by, labels = self._grouped_select(config, scope)
        else:
            select_columns, descriptors, labels = self._plain_select(config, scope)
            group_by = []

        for computed in config.computed_columns:
            expr = self._computed_expression(computed, scope)
            select_columns.append(expr)
            labels[computed.name] = expr
            descriptors.append(
                ColumnDescriptor(
                    name=computed.name,
                    column_name=computed.name,
                    label=computed.label or make_label(computed.name),
                    type=computed.type,
                )
            )

        query = select(*select_columns).select_from(from_clause)

        # 3. WHERE, tenant scope first
        if table.tenant_column:
            query = query.where(scope.base.c[table.tenant_column] == tenant)
        if config.conditions is not None:
            where = self._condition_group(config.conditions, scope)
            if where is not None:
                query = query.where(where)

        # 4. GROUP BY
        if group_by:
            query = query.group_by(*group_by)

        # 5. ORDER BY
        for entry in config.sort_by:
            order_expr = self._order_expression(entry.column, config, scope, labels)
            if order_expr is None:
                logger.debug("Skipping sort on '%s': not available in grouped output", entry.column)
                continue
            if entry.direction == SortDirection.DESC.value:
                order_expr = order_expr.desc()
            else:
                order_expr = order_expr.asc()
            query = query.order_by(order_expr)

        # 6. LIMIT / OFFSET
        if config.limit is not None:
            query = query.limit(config.limit)
        if config.offset:
            query = query.offset(config.offset)

        compiled = query.compile(dialect=self._dialect) if self._dialect else query.compile()
        return CompiledQuery(
            statement=query,
            sql=str(compiled),
            params=dict(compiled.params),
            join_plan=plan,
            columns=descriptors,
            table_name=table.name,
        )

    # -------------------------
    # Tables and joins
    # -------------------------

    def _build_scope(self, table: Table, plan: JoinPlan, config: QueryConfig) -> _Scope:
        base_columns = [c.name for c in table.columns if c.name not in table.exclude_columns]
        base_columns += [rel.local_key for rel in table.relationships]
        if table.tenant_column:
            base_columns.append(table.tenant_column)
        base = sa_table(table.name, *(sa_column(name) for name in _unique(base_columns)))

        clauses: dict[str, Any] = {}
        steps: dict[str, JoinStep] = {}
        for step in plan.joins:
            names = self._target_columns(table, step)
            target = sa_table(step.table, *(sa_column(name) for name in names))
            clauses[step.path] = target if step.alias == step.table else target.alias(step.alias)
            steps[step.path] = step

        computed = {c.name: c.expression for c in table.computed_columns}
        computed.update({c.name: c.expression for c in config.computed_columns})

        return _Scope(
            table=table,
            base=base,
            clauses=clauses,
            steps=steps,
            manual_keys=[step.path for step in plan.manual_joins],
            computed=computed,
        )

    def _target_columns(self, table: Table, step: JoinStep) -> list[str]:
        names: list[str] = []
        relationship = table.get_relationship(step.path)
        if relationship is not None:
            names += [c.name for c in relationship.columns]
        target = self._catalog.get(step.table)
        if target is not None:
            names += [c.name for c in target.columns if c.name not in target.exclude_columns]
        return _unique(names)

    def _apply_join(self, from_clause, scope: _Scope, step: JoinStep):
        """Apply a join step to the FROM clause."""
        right = scope.clauses[step.path]
        try:
            onclause = scope.base.c[step.local_key] == right.c[step.foreign_key]
        except KeyError as e:
            raise SQLCompileError(
                f"Join key '{e.args[0]}' is not defined for join '{step.path}'",
                join=step.path,
            ) from e

        match step.join_type:
            case JoinType.INNER:
                return from_clause.join(right, onclause)
            case JoinType.LEFT:
                return from_clause.join(right, onclause, isouter=True)
            case JoinType.RIGHT:
                # A RIGHT JOIN B == B LEFT JOIN A
                return right.join(from_clause, onclause, isouter=True)
            case _:
                raise SQLCompileError(f"Unsupported join type: {step.join_type}")

    # -------------------------
    # Column Resolution
    # -------------------------

    def _resolve(self, name: str, scope: _Scope) -> tuple[ColumnElement, ColumnRef]:
        """Resolve a dotted reference to a SQLAlchemy column."""
        ref = self._catalog.resolve(scope.table.name, name, manual_joins=scope.manual_keys)
        if ref is None:
            raise SQLCompileError(
                f"Column '{name}' cannot be resolved on table '{scope.table.name}'",
                column=name,
            )

        if ref.path is None:
            clause = scope.base
        else:
            clause = scope.clauses.get(ref.path)
            if clause is None:
                raise SQLCompileError(f"No join available for relationship '{ref.path}'", column=name)

        try:
            return clause.c[ref.column], ref
        except KeyError as e:
            raise SQLCompileError(f"Column '{name}' is not defined", column=name) from e

    def _describe(
        self,
        selected: SelectedColumn,
        ref: ColumnRef,
        scope: _Scope,
    ) -> ColumnDescriptor:
        meta_label = ref.meta.label if ref.meta is not None else make_label(ref.column)
        if ref.relationship is not None:
            meta_label = f"{ref.relationship.label} - {meta_label}"
        step = scope.steps.get(ref.path) if ref.path else None
        return ColumnDescriptor(
            name=selected.output_name,
            column_name=selected.name,
            label=selected.label or meta_label,
            type=selected.type or (ref.meta.type.value if ref.meta else ColumnType.STRING.value),
            join_path=ref.path,
            auto_join=step is not None and step.mode is JoinMode.AUTO,
        )

    # -------------------------
    # Select lists
    # -------------------------

    def _plain_select(self, config: QueryConfig, scope: _Scope):
        select_columns: list[ColumnElement] = []
        descriptors: list[ColumnDescriptor] = []
        labels: dict[str, Label] = {}

        for selected in _all_selected(config):
            col, ref = self._resolve(selected.name, scope)
            labelled = col.label(selected.output_name)
            select_columns.append(labelled)
            labels[selected.output_name] = labelled
            descriptors.append(self._describe(selected, ref, scope))

        return select_columns, descriptors, labels

    def _grouped_select(self, config: QueryConfig, scope: _Scope):
        select_columns: list[ColumnElement] = []
        descriptors: list[ColumnDescriptor] = []
        group_by: list[ColumnElement] = []
        labels: dict[str, Label] = {}
        selected_by_name = {selected.name: selected for selected in _all_selected(config)}
        grouped_fields: set[str] = set()

        # Group keys
        for entry in config.group_by:
            if entry.group_by in grouped_fields:
                continue
            grouped_fields.add(entry.group_by)
            selected = selected_by_name.get(entry.group_by) or SelectedColumn(name=entry.group_by)
            col, ref = self._resolve(entry.group_by, scope)
            labelled = col.label(selected.output_name)
            select_columns.append(labelled)
            group_by.append(col)
            labels[selected.output_name] = labelled
            labels.setdefault(entry.group_by, labelled)
            descriptors.append(self._describe(selected, ref, scope))

        # Aggregates
        for entry in config.group_by:
            if not entry.aggregate_fn:
                continue
            name = entry.aggregate_label
            if name in labels:
                continue
            target = entry.aggregate_by or "*"
            if target == "*":
                expr = func.count()
                target_label = "All"
            else:
                col, ref = self._resolve(target, scope)
                expr = self._aggregate(entry.aggregate_fn, col)
                target_label = ref.meta.label if ref.meta is not None else make_label(ref.column)

            labelled = expr.label(name)
            select_columns.append(labelled)
            labels[name] = labelled
            descriptors.append(
                ColumnDescriptor(
                    name=name,
                    column_name=target,
                    label=f"{AGGREGATE_LABELS[entry.aggregate_fn]} of {target_label}",
                    type=AGGREGATE_TYPES[entry.aggregate_fn].value,
                )
            )

        return select_columns, descriptors, group_by, labels

    def _aggregate(self, function: str, col: ColumnElement) -> ColumnElement:
        match function:
            case "count":
                return func.count(col)
            case "sum":
                return func.sum(col)
            case "avg":
                return func.avg(col)
            case "min":
                return func.min(col)
            case "max":
                return func.max(col)
            case "group_concat":
                if self._dialect is not None and self._dialect.name == "postgresql":
                    return func.string_agg(cast(col, String), literal(","))
                return func.group_concat(col)
            case _:
                raise SQLCompileError(f"Unsupported aggregate function: {function}")

    def _order_expression(
        self,
        name: str,
        config: QueryConfig,
        scope: _Scope,
        labels: dict[str, Label],
    ) -> ColumnElement | None:
        if name in labels:
            return labels[name]
        if config.group_by:
            return None
        col, _ = self._resolve(name, scope)
        return col

    # -------------------------
    # Conditions
    # -------------------------

    def _condition_group(self, group: ConditionGroup, scope: _Scope) -> ColumnElement | None:
        clauses = []
        for node in group.conditions:
            if isinstance(node, ConditionGroup):
                clause = self._condition_group(node, scope)
            else:
                clause = self._condition_leaf(node, scope)
            if clause is not None:
                clauses.append(clause)

        if not clauses:
            return None
        if len(clauses) == 1:
            return clauses[0]
        return or_(*clauses) if group.boolean == "or" else and_(*clauses)

    def _condition_leaf(self, leaf: ConditionLeaf, scope: _Scope) -> ColumnElement:
        operator = leaf.normalized_operator
        if operator is None:
            raise SQLCompileError(f"Unsupported condition operator: {leaf.operator}")
        col, _ = self._resolve(leaf.field, scope)
        return apply_operator(col, operator, leaf.value)

    # -------------------------
    # Computed columns
    # -------------------------

    def _computed_expression(self, computed: ComputedColumnConfig, scope: _Scope) -> Label:
        sql = self._expand(computed.expression, scope, depth=0, stack=(computed.name,))
        return literal_column(f"({sql})").label(computed.name)

    def _expand(self, expression: str, scope: _Scope, depth: int, stack: tuple[str, ...]) -> str:
        if depth > MAX_COMPUTED_EXPANSION_DEPTH:
            raise SQLCompileError(
                f"Computed column '{stack[0]}' exceeds maximum expansion depth"
            )

        def qualify(match: re.Match) -> str:
            name = match.group(1)
            upper = name.upper()
            rest = match.string[match.end():]
            if rest.lstrip().startswith("(") or upper in SQL_KEYWORDS:
                return name
            if "." not in name and (upper in ALLOWED_FUNCTIONS or upper in FORBIDDEN_KEYWORDS):
                return name
            if name in scope.computed:
                if name in stack:
                    raise SQLCompileError(f"Computed column '{name}' references itself")
                inner = self._expand(scope.computed[name], scope, depth + 1, stack + (name,))
                return f"({inner})"
            return self._qualified_name(name, scope)

        # Odd chunks are string literals and stay untouched
        chunks = _STRING_LITERAL.split(expression)
        return "".join(
            chunk if index % 2 else _IDENTIFIER.sub(qualify, chunk)
            for index, chunk in enumerate(chunks)
        )

    def _qualified_name(self, name: str, scope: _Scope) -> str:
        ref = self._catalog.resolve(scope.table.name, name, manual_joins=scope.manual_keys)
        if ref is None:
            # JSON sub-field access and deeper paths pass through unchanged
            return name
        if ref.path is None:
            return f"{scope.table.name}.{ref.column}"
        step = scope.steps.get(ref.path)
        if step is None:
            return name
        return f"{step.alias}.{ref.column}"


# -----------------------------
# Operators
# -----------------------------


def apply_operator(col: ColumnElement, operator: ConditionOperator, value: Any) -> ColumnElement:
    """Translate one predicate; values are always bound parameters."""
    match operator:
        case ConditionOperator.EQ:
            return col == value
        case ConditionOperator.NEQ:
            return col != value
        case ConditionOperator.GT:
            return col > value
        case ConditionOperator.GTE:
            return col >= value
        case ConditionOperator.LT:
            return col < value
        case ConditionOperator.LTE:
            return col <= value
        case ConditionOperator.LIKE:
            return col.like(f"%{value}%")
        case ConditionOperator.NOT_LIKE:
            return col.not_like(f"%{value}%")
        case ConditionOperator.CONTAINS:
            return col.contains(str(value), autoescape=True)
        case ConditionOperator.STARTS_WITH:
            return col.startswith(str(value), autoescape=True)
        case ConditionOperator.ENDS_WITH:
            return col.endswith(str(value), autoescape=True)
        case ConditionOperator.IN:
            return col.in_([literal(v) for v in split_list_value(value)])
        case ConditionOperator.NOT_IN:
            return col.not_in([literal(v) for v in split_list_value(value)])
        case ConditionOperator.BETWEEN:
            low, high = _bounds(value)
            return col.between(low, high)
        case ConditionOperator.NOT_BETWEEN:
            low, high = _bounds(value)
            return not_(col.between(low, high))
        case ConditionOperator.IS_NULL:
            return col.is_(None)
        case ConditionOperator.IS_NOT_NULL:
            return col.is_not(None)
        case _:
            raise SQLCompileError(f"Unsupported condition operator: {operator}")


def split_list_value(value: Any) -> list[Any]:
    """Accept an array or a comma-separated string."""
    if isinstance(value, str):
        items = [item.strip() for item in value.split(",")]
        values: list[Any] = [item for item in items if item]
    elif isinstance(value, (list, tuple)):
        values = list(value)
    else:
        values = [value]
    if not values:
        raise SQLCompileError("IN conditions require at least one value")
    return values


def _bounds(value: Any) -> tuple[Any, Any]:
    if not isinstance(value, (list, tuple)) or len(value) != 2:
        raise SQLCompileError("BETWEEN conditions require exactly two values")
    return value[0], value[1]


def _all_selected(config: QueryConfig) -> list[SelectedColumn]:
    """Selected columns followed by columns selected through manual joins."""
    selected = list(config.columns)
    for join in config.joins:
        prefix = f"{join.key}."
        for column in join.selected_columns:
            name = column.name if column.name.startswith(prefix) else prefix + column.name
            selected.append(column.model_copy(update={"name": name}))
    return selected


def _unique(names: list[str]) -> list[str]:
    return list(dict.fromkeys(names))
