"""
Schema Catalog for ReportQL.

This module defines:
- Which tables are reportable
- Which columns each table exposes (and which stay hidden)
- How tables relate to each other (auto vs manual joins)
- Row ceilings and aggregate support per table

This is the SINGLE whitelist every report configuration is checked against.
"""

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from threading import Lock
from typing import Any, Callable, Iterable

from reportql.core.constants import DEFAULT_CATALOG_CACHE_TTL_SECONDS
from reportql.core.errors.codes import ErrorCode
from reportql.core.errors.exceptions import ReportError

logger = logging.getLogger(__name__)


# -----------------------------
# Types
# -----------------------------


class ColumnType(str, Enum):
    """Semantic column types."""

    STRING = "string"
    NUMBER = "number"
    INTEGER = "integer"
    DECIMAL = "decimal"
    DATE = "date"
    DATETIME = "datetime"
    BOOLEAN = "boolean"
    CURRENCY = "currency"
    PERCENTAGE = "percentage"
    JSON = "json"


NUMERIC_TYPES = frozenset(
    {
        ColumnType.NUMBER,
        ColumnType.INTEGER,
        ColumnType.DECIMAL,
        ColumnType.CURRENCY,
        ColumnType.PERCENTAGE,
    }
)


class JoinType(str, Enum):
    """Supported SQL join types."""

    INNER = "inner"
    LEFT = "left"
    RIGHT = "right"


class JoinMode(str, Enum):
    """How a relationship may be joined into a report."""

    AUTO = "auto"  # joined implicitly when one of its columns is referenced
    MANUAL = "manual"  # must be declared in the report's join list


# -----------------------------
# Errors
# -----------------------------


class CatalogError(ReportError):
    """Raised for invalid catalog definitions."""

    code = ErrorCode.SCHEMA_ERROR


class TableNotFoundError(CatalogError):
    """Raised when a table is not registered in the catalog."""

    code = ErrorCode.TABLE_NOT_FOUND

    def __init__(self, table_name: str):
        super().__init__(f"Table '{table_name}' not found in schema catalog", table=table_name)
        self.table_name = table_name


# -----------------------------
# Metadata
# -----------------------------


def make_label(name: str) -> str:
    """Derive a human label from a column name: customer_name -> Customer Name."""
    return " ".join(part.capitalize() for part in name.replace(".", "_").split("_") if part)


@dataclass(frozen=True)
class Column:
    """Metadata for a single physical column."""

    name: str
    type: ColumnType = ColumnType.STRING
    label: str = ""
    hidden: bool = False  # excluded from listings, still resolvable
    aggregatable: bool | None = None  # None -> derived from type
    description: str = ""

    def __post_init__(self) -> None:
        if not self.name:
            raise CatalogError("Column name must not be empty")
        object.__setattr__(self, "type", ColumnType(self.type))
        if not self.label:
            object.__setattr__(self, "label", make_label(self.name))
        if self.aggregatable is None:
            object.__setattr__(self, "aggregatable", self.type in NUMERIC_TYPES)

    @classmethod
    def make(cls, name: str, type: ColumnType | str = ColumnType.STRING, **kwargs: Any) -> "Column":
        return cls(name=name, type=ColumnType(type), **kwargs)

    @property
    def is_foreign_key(self) -> bool:
        return self.name.endswith(("_id", "_uuid"))

    @property
    def visible(self) -> bool:
        return not self.hidden and not self.is_foreign_key


@dataclass(frozen=True)
class ComputedColumn:
    """A named SQL expression exposed alongside physical columns."""

    name: str
    expression: str
    type: ColumnType = ColumnType.STRING
    label: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "type", ColumnType(self.type))
        if not self.label:
            object.__setattr__(self, "label", make_label(self.name))


@dataclass(frozen=True)
class Relationship:
    """
    A one-hop relationship from a table to another table.

    The join condition is ``<base>.<local_key> = <target>.<foreign_key>``.
    """

    name: str
    table: str
    type: JoinType = JoinType.LEFT
    label: str = ""
    local_key: str = ""
    foreign_key: str = "uuid"
    mode: JoinMode = JoinMode.MANUAL
    columns: tuple[Column, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "type", JoinType(self.type))
        object.__setattr__(self, "mode", JoinMode(self.mode))
        if not self.label:
            object.__setattr__(self, "label", make_label(self.name))
        if not self.local_key:
            object.__setattr__(self, "local_key", f"{self.name}_uuid")
        object.__setattr__(self, "columns", tuple(self.columns))

    @property
    def auto(self) -> bool:
        return self.mode is JoinMode.AUTO

    def get_column(self, name: str) -> Column | None:
        for column in self.columns:
            if column.name == name:
                return column
        return None


@dataclass(frozen=True)
class Table:
    """Metadata for a reportable table."""

    name: str
    label: str = ""
    description: str = ""
    category: str = "general"
    extension: str | None = None
    columns: tuple[Column, ...] = ()
    relationships: tuple[Relationship, ...] = ()
    computed_columns: tuple[ComputedColumn, ...] = ()
    exclude_columns: frozenset[str] = field(default_factory=frozenset)
    supports_aggregates: bool = True
    max_rows: int | None = None
    # Rows are scoped to the caller's tenant through this column when set
    tenant_column: str | None = None

    def __post_init__(self) -> None:
        if not self.name:
            raise CatalogError("Table name must not be empty")
        if not self.label:
            object.__setattr__(self, "label", make_label(self.name))
        object.__setattr__(self, "columns", tuple(self.columns))
        object.__setattr__(self, "relationships", tuple(self.relationships))
        object.__setattr__(self, "computed_columns", tuple(self.computed_columns))
        object.__setattr__(self, "exclude_columns", frozenset(self.exclude_columns))

        seen: set[str] = set()
        for column in self.columns:
            if column.name in seen:
                raise CatalogError(f"Duplicate column '{column.name}' in table '{self.name}'")
            seen.add(column.name)
        names = [rel.name for rel in self.relationships]
        if len(names) != len(set(names)):
            raise CatalogError(f"Duplicate relationship name in table '{self.name}'")

    def get_column(self, name: str) -> Column | None:
        """Get a resolvable column (hidden allowed, excluded never)."""
        if name in self.exclude_columns:
            return None
        for column in self.columns:
            if column.name == name:
                return column
        return None

    def visible_columns(self) -> list[Column]:
        return [
            column
            for column in self.columns
            if column.visible and column.name not in self.exclude_columns
        ]

    def get_relationship(self, name: str) -> Relationship | None:
        for relationship in self.relationships:
            if relationship.name == name:
                return relationship
        return None

    def get_computed_column(self, name: str) -> ComputedColumn | None:
        for computed in self.computed_columns:
            if computed.name == name:
                return computed
        return None


@dataclass(frozen=True)
class CatalogColumn:
    """A column as listed by the catalog, possibly reached through an auto-join."""

    name: str  # "status" or "customer.name"
    label: str
    type: ColumnType
    auto_join_path: str | None = None
    aggregatable: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "label": self.label,
            "type": self.type.value,
            "auto_join_path": self.auto_join_path,
            "aggregatable": self.aggregatable,
        }


@dataclass(frozen=True)
class ColumnRef:
    """A dotted reference resolved against the catalog."""

    path: str | None  # relationship name, None for the base table
    table: str  # physical table holding the column
    column: str
    meta: Column | None = None
    relationship: Relationship | None = None

    @property
    def dotted(self) -> str:
        return f"{self.path}.{self.column}" if self.path else self.column


# -----------------------------
# Catalog
# -----------------------------


class SchemaCatalog:
    """
    In-memory registry of reportable tables.

    Derived listings (columns, relationships, auto-join columns) are cached
    per table with a TTL. Registering a table drops every cached entry
    keyed by its name, so reads after a completed registration never see
    the previous definition.
    """

    def __init__(
        self,
        tables: Iterable[Table] = (),
        cache_ttl_seconds: float = DEFAULT_CATALOG_CACHE_TTL_SECONDS,
        cache_enabled: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._tables: dict[str, Table] = {}
        self._cache: dict[tuple[str, str], tuple[float, Any]] = {}
        self._lock = Lock()
        self._ttl = cache_ttl_seconds
        self._cache_enabled = cache_enabled and cache_ttl_seconds > 0
        self._clock = clock

        for table in tables:
            self.register(table)

    # -------------------------
    # Registration
    # -------------------------

    def register(self, table: Table) -> None:
        """Register (or re-register) a table and invalidate its cached listings."""
        with self._lock:
            replaced = table.name in self._tables
            self._tables[table.name] = table
            self._invalidate(table.name)
        logger.info(
            "%s reporting table '%s'", "Re-registered" if replaced else "Registered", table.name
        )

    def clear_cache(self, table_name: str | None = None) -> None:
        """Drop cached listings for one table, or for all tables."""
        with self._lock:
            if table_name is None:
                self._cache.clear()
            else:
                self._invalidate(table_name)

    # -------------------------
    # Lookup Methods
    # -------------------------

    def get(self, table_name: str) -> Table | None:
        """Get a registered table, or None."""
        with self._lock:
            return self._tables.get(table_name)

    def has_table(self, table_name: str) -> bool:
        with self._lock:
            return table_name in self._tables

    def require(self, table_name: str) -> Table:
        """Get a registered table or raise TableNotFoundError."""
        table = self.get(table_name)
        if table is None:
            raise TableNotFoundError(table_name)
        return table

    def list_tables(self) -> list[str]:
        with self._lock:
            return sorted(self._tables)

    def columns(self, table_name: str) -> list[CatalogColumn]:
        """
        Visible columns of a table followed by its auto-join columns.

        Returns an empty list for unregistered tables.
        """
        return self._cached("columns", table_name, self._build_columns)

    def relationships(self, table_name: str) -> list[Relationship]:
        return self._cached(
            "relationships",
            table_name,
            lambda table: list(table.relationships),
        )

    def auto_join_columns(self, table_name: str) -> list[CatalogColumn]:
        """Columns reachable through auto relationships, labelled 'Rel - Col'."""
        return self._cached("auto_join_columns", table_name, self._build_auto_join_columns)

    def is_column_allowed(self, table_name: str, dotted_name: str) -> bool:
        """True for a resolvable base column or an auto relationship column."""
        return self.resolve(table_name, dotted_name) is not None

    def resolve(
        self,
        table_name: str,
        dotted_name: str,
        manual_joins: Iterable[str] = (),
    ) -> ColumnRef | None:
        """
        Resolve a column reference against a table.

        ``manual_joins`` names relationships declared in the report's join
        list; those are resolvable in addition to auto relationships. Only
        one relationship hop is supported.
        """
        table = self.get(table_name)
        if table is None or not dotted_name:
            return None

        if "." not in dotted_name:
            column = table.get_column(dotted_name)
            if column is None:
                return None
            return ColumnRef(path=None, table=table.name, column=column.name, meta=column)

        path, _, column_name = dotted_name.partition(".")
        if not column_name or "." in column_name:
            return None

        relationship = table.get_relationship(path)
        if relationship is None:
            return None
        if not relationship.auto and path not in set(manual_joins):
            return None

        column = self.relationship_column(relationship, column_name)
        if column is None:
            return None
        return ColumnRef(
            path=path,
            table=relationship.table,
            column=column.name,
            meta=column,
            relationship=relationship,
        )

    def relationship_column(self, relationship: Relationship, column_name: str) -> Column | None:
        """Find a column exposed by a relationship or by its registered target table."""
        column = relationship.get_column(column_name)
        if column is not None:
            return column
        target = self.get(relationship.table)
        if target is not None:
            return target.get_column(column_name)
        return None

    def available_tables(
        self,
        extension: str | None = None,
        category: str | None = None,
    ) -> list[dict[str, Any]]:
        """Summaries of registered tables, optionally filtered, sorted by label."""
        with self._lock:
            tables = list(self._tables.values())

        summaries = [
            {
                "name": table.name,
                "label": table.label,
                "description": table.description,
                "category": table.category,
                "extension": table.extension,
                "supports_aggregates": table.supports_aggregates,
                "max_rows": table.max_rows,
            }
            for table in tables
            if (extension is None or table.extension == extension)
            and (category is None or table.category == category)
        ]
        return sorted(summaries, key=lambda summary: summary["label"])

    def table_schema(self, table_name: str) -> dict[str, Any] | None:
        """Full schema description of a table, or None if unregistered."""
        table = self.get(table_name)
        if table is None:
            return None

        return {
            "name": table.name,
            "label": table.label,
            "description": table.description,
            "category": table.category,
            "extension": table.extension,
            "columns": [column.to_dict() for column in self.columns(table_name)],
            "computed_columns": [
                {
                    "name": computed.name,
                    "label": computed.label,
                    "type": computed.type.value,
                    "expression": computed.expression,
                }
                for computed in table.computed_columns
            ],
            "relationships": [
                {
                    "name": rel.name,
                    "label": rel.label,
                    "table": rel.table,
                    "type": rel.type.value,
                    "local_key": rel.local_key,
                    "foreign_key": rel.foreign_key,
                    "mode": rel.mode.value,
                }
                for rel in self.relationships(table_name)
            ],
            "supports_aggregates": table.supports_aggregates,
            "max_rows": table.max_rows,
            "tenant_scoped": table.tenant_column is not None,
        }

    # -------------------------
    # Cache helpers
    # -------------------------

    def _cached(self, kind: str, table_name: str, build: Callable[[Table], list]) -> list:
        with self._lock:
            table = self._tables.get(table_name)
            if table is None:
                return []

            key = (kind, table_name)
            now = self._clock()
            if self._cache_enabled:
                entry = self._cache.get(key)
                if entry is not None and entry[0] > now:
                    return list(entry[1])

            value = build(table)
            if self._cache_enabled:
                self._cache[key] = (now + self._ttl, value)
            return list(value)

    def _invalidate(self, table_name: str) -> None:
        # Listings of a table embed the columns of its relationship targets
        affected = {table_name}
        affected.update(
            name
            for name, table in self._tables.items()
            if any(rel.table == table_name for rel in table.relationships)
        )
        stale = [key for key in self._cache if key[1] in affected]
        for key in stale:
            del self._cache[key]
        if stale:
            logger.debug(
                "Invalidated %d cached listings for '%s' and %d dependent tables",
                len(stale),
                table_name,
                len(affected) - 1,
            )

    def _build_columns(self, table: Table) -> list[CatalogColumn]:
        columns = [
            CatalogColumn(
                name=column.name,
                label=column.label,
                type=column.type,
                aggregatable=bool(column.aggregatable),
            )
            for column in table.visible_columns()
        ]
        return columns + self._build_auto_join_columns(table)

    def _build_auto_join_columns(self, table: Table) -> list[CatalogColumn]:
        columns: list[CatalogColumn] = []
        for relationship in table.relationships:
            if not relationship.auto:
                continue
            for column in self._exposed_columns(relationship):
                columns.append(
                    CatalogColumn(
                        name=f"{relationship.name}.{column.name}",
                        label=f"{relationship.label} - {column.label}",
                        type=column.type,
                        auto_join_path=relationship.name,
                        aggregatable=bool(column.aggregatable),
                    )
                )
        return columns

    def _exposed_columns(self, relationship: Relationship) -> list[Column]:
        # Called with the lock held, so read the target directly
        if relationship.columns:
            return [column for column in relationship.columns if column.visible]
        target = self._tables.get(relationship.table)
        return target.visible_columns() if target is not None else []
