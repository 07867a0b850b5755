"""Report configuration models, join resolution and SQL compilation for ReportQL."""

from .compiler import (
    ColumnDescriptor,
    CompiledQuery,
    SQLCompileError,
    SQLCompiler,
    apply_operator,
)
from .join_resolver import (
    AliasAllocator,
    JoinPlan,
    JoinResolutionError,
    JoinResolver,
    JoinStep,
    auto_join_alias,
)
from .models import (
    AggregateFunction,
    ComputedColumnConfig,
    ConditionGroup,
    ConditionLeaf,
    ConditionOperator,
    GroupByEntry,
    ManualJoin,
    QueryConfig,
    QueryConfigError,
    SelectedColumn,
    SortDirection,
    SortEntry,
    normalize_operator,
    parse_query_config,
)

__all__ = [
    "AggregateFunction",
    "AliasAllocator",
    "ColumnDescriptor",
    "CompiledQuery",
    "ComputedColumnConfig",
    "ConditionGroup",
    "ConditionLeaf",
    "ConditionOperator",
    "GroupByEntry",
    "JoinPlan",
    "JoinResolutionError",
    "JoinResolver",
    "JoinStep",
    "ManualJoin",
    "QueryConfig",
    "QueryConfigError",
    "SQLCompileError",
    "SQLCompiler",
    "SelectedColumn",
    "SortDirection",
    "SortEntry",
    "apply_operator",
    "auto_join_alias",
    "normalize_operator",
    "parse_query_config",
]
