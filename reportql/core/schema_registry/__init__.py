"""Schema Catalog for ReportQL - reportable tables, columns and relationships."""

from .defaults import DEFAULT_TABLES, get_default_catalog
from .registry import (
    CatalogColumn,
    CatalogError,
    Column,
    ColumnRef,
    ColumnType,
    ComputedColumn,
    JoinMode,
    JoinType,
    Relationship,
    SchemaCatalog,
    Table,
    TableNotFoundError,
    make_label,
)

__all__ = [
    "CatalogColumn",
    "CatalogError",
    "Column",
    "ColumnRef",
    "ColumnType",
    "ComputedColumn",
    "DEFAULT_TABLES",
    "JoinMode",
    "JoinType",
    "Relationship",
    "SchemaCatalog",
    "Table",
    "TableNotFoundError",
    "get_default_catalog",
    "make_label",
]
