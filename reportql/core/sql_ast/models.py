"""
Report configuration models for ReportQL.

These models define the ONLY structured format a report may be described
in. Incoming JSON is parsed into them once; validation and compilation
only ever work on the typed form.

Operators, aggregate functions and directions are kept as plain strings
here so the validator can report them with a precise location instead of
failing the whole parse.
"""

from enum import Enum
from typing import Annotated, Any, Iterator, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Discriminator,
    Field,
    Tag,
    ValidationError,
    field_validator,
)

from reportql.core.errors.codes import ErrorCode
from reportql.core.errors.exceptions import ReportError
from reportql.core.schema_registry.registry import JoinType


# -----------------------------
# Enums
# -----------------------------


class ConditionOperator(str, Enum):
    """Supported condition operators (symbolic forms map onto these)."""

    EQ = "eq"
    NEQ = "neq"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    LIKE = "like"
    NOT_LIKE = "not_like"
    IN = "in"
    NOT_IN = "not_in"
    BETWEEN = "between"
    NOT_BETWEEN = "not_between"
    IS_NULL = "is_null"
    IS_NOT_NULL = "is_not_null"
    CONTAINS = "contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"


OPERATOR_SYMBOLS: dict[str, ConditionOperator] = {
    "=": ConditionOperator.EQ,
    "!=": ConditionOperator.NEQ,
    "<>": ConditionOperator.NEQ,
    ">": ConditionOperator.GT,
    ">=": ConditionOperator.GTE,
    "<": ConditionOperator.LT,
    "<=": ConditionOperator.LTE,
}

NULL_OPERATORS = frozenset({ConditionOperator.IS_NULL, ConditionOperator.IS_NOT_NULL})
LIST_OPERATORS = frozenset({ConditionOperator.IN, ConditionOperator.NOT_IN})
RANGE_OPERATORS = frozenset({ConditionOperator.BETWEEN, ConditionOperator.NOT_BETWEEN})


def normalize_operator(raw: str) -> ConditionOperator | None:
    """Map an operator string (symbolic or named) to a ConditionOperator."""
    text = raw.strip().lower()
    if text in OPERATOR_SYMBOLS:
        return OPERATOR_SYMBOLS[text]
    try:
        return ConditionOperator(text)
    except ValueError:
        return None


class AggregateFunction(str, Enum):
    """Supported aggregate functions for group-by entries."""

    COUNT = "count"
    SUM = "sum"
    AVG = "avg"
    MIN = "min"
    MAX = "max"
    GROUP_CONCAT = "group_concat"


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


class BooleanOperator(str, Enum):
    AND = "and"
    OR = "or"


# -----------------------------
# Errors
# -----------------------------


class QueryConfigError(ReportError):
    """Raised when a report configuration cannot be parsed."""

    code = ErrorCode.INVALID_CONFIGURATION

    def __init__(self, messages: list[str]):
        super().__init__("Invalid report configuration: " + "; ".join(messages))
        self.messages = messages


# -----------------------------
# Helpers
# -----------------------------


def _unwrap(value: Any, key: str) -> Any:
    """Accept both ``{"name": "x"}`` and ``"x"`` forms."""
    if isinstance(value, dict) and key in value:
        return value[key]
    return value


class _ConfigModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


# -----------------------------
# Nodes
# -----------------------------


class SelectedColumn(_ConfigModel):
    """A selected column, e.g. ``status`` or ``customer.name``."""

    name: str = Field(..., min_length=1)
    alias: str | None = None
    type: str | None = None
    label: str | None = None

    @property
    def path(self) -> str | None:
        return self.name.partition(".")[0] if "." in self.name else None

    @property
    def output_name(self) -> str:
        return self.alias or self.name.replace(".", "_")


class ManualJoin(_ConfigModel):
    """A join the caller declares explicitly."""

    table: str = Field(..., min_length=1)
    type: JoinType = JoinType.LEFT
    local_key: str | None = Field(default=None, alias="localKey")
    foreign_key: str | None = Field(default=None, alias="foreignKey")
    alias: str | None = None
    name: str | None = None
    selected_columns: list[SelectedColumn] = Field(
        default_factory=list, alias="selectedColumns"
    )

    @field_validator("type", mode="before")
    @classmethod
    def lowercase_type(cls, v: Any) -> Any:
        return v.strip().lower() if isinstance(v, str) else v

    @property
    def key(self) -> str:
        """Relationship name the join is registered under."""
        return self.name or self.table

    @property
    def requested_alias(self) -> str:
        return self.alias or self.table


class ConditionLeaf(_ConfigModel):
    """A single predicate: ``field operator value``."""

    field: str = Field(..., min_length=1)
    operator: str = Field(..., min_length=1)
    value: Any = None
    logical_operator: str | None = Field(default=None, alias="logicalOperator")

    @field_validator("field", mode="before")
    @classmethod
    def unwrap_field(cls, v: Any) -> Any:
        return _unwrap(v, "name")

    @field_validator("operator", mode="before")
    @classmethod
    def unwrap_operator(cls, v: Any) -> Any:
        return _unwrap(v, "value")

    @property
    def normalized_operator(self) -> ConditionOperator | None:
        return normalize_operator(self.operator)


class ConditionGroup(_ConfigModel):
    """A group of conditions joined by one boolean operator."""

    conditions: list["ConditionNode"] = Field(default_factory=list)
    boolean: str = "and"

    @field_validator("boolean", mode="before")
    @classmethod
    def lowercase_boolean(cls, v: Any) -> Any:
        if v is None:
            return "and"
        return v.strip().lower() if isinstance(v, str) else v

    def iter_leaves(self) -> Iterator[ConditionLeaf]:
        for node in self.conditions:
            if isinstance(node, ConditionGroup):
                yield from node.iter_leaves()
            else:
                yield node


def _condition_kind(value: Any) -> str:
    if isinstance(value, dict):
        return "group" if "conditions" in value else "leaf"
    return "group" if isinstance(value, ConditionGroup) else "leaf"


ConditionNode = Annotated[
    Union[
        Annotated[ConditionGroup, Tag("group")],
        Annotated[ConditionLeaf, Tag("leaf")],
    ],
    Discriminator(_condition_kind),
]

ConditionGroup.model_rebuild()


class GroupByEntry(_ConfigModel):
    """Group field plus an optional aggregate over a target field."""

    group_by: str = Field(..., min_length=1, alias="groupBy")
    aggregate_fn: str | None = Field(default=None, alias="aggregateFn")
    aggregate_by: str | None = Field(default=None, alias="aggregateBy")

    @field_validator("group_by", "aggregate_by", mode="before")
    @classmethod
    def unwrap_name(cls, v: Any) -> Any:
        return _unwrap(v, "name")

    @field_validator("aggregate_fn", mode="before")
    @classmethod
    def unwrap_value(cls, v: Any) -> Any:
        v = _unwrap(v, "value")
        return v.strip().lower() if isinstance(v, str) else v

    @property
    def aggregate_label(self) -> str | None:
        """Output label of the aggregate, e.g. ``count_all`` or ``sum_total``."""
        if not self.aggregate_fn:
            return None
        target = self.aggregate_by or "*"
        base = "all" if target == "*" else target.replace(".", "_")
        return f"{self.aggregate_fn}_{base}"


class SortEntry(_ConfigModel):
    column: str = Field(..., min_length=1)
    direction: str = "asc"

    @field_validator("column", mode="before")
    @classmethod
    def unwrap_column(cls, v: Any) -> Any:
        return _unwrap(v, "name")

    @field_validator("direction", mode="before")
    @classmethod
    def unwrap_direction(cls, v: Any) -> Any:
        v = _unwrap(v, "value")
        if v is None:
            return "asc"
        return v.strip().lower() if isinstance(v, str) else v


class ComputedColumnConfig(_ConfigModel):
    """A user-authored SQL expression selected under ``name``."""

    name: str = Field(..., min_length=1)
    expression: str = Field(..., min_length=1)
    type: str = "string"
    label: str | None = None


class QueryConfig(_ConfigModel):
    """
    The complete report configuration.

    ``conditions`` always parses to a root group: a bare list becomes an
    ``and`` group and a single leaf is wrapped in one.
    """

    table: str = Field(..., min_length=1)
    columns: list[SelectedColumn] = Field(default_factory=list)
    joins: list[ManualJoin] = Field(default_factory=list)
    conditions: ConditionGroup | None = None
    group_by: list[GroupByEntry] = Field(default_factory=list, alias="groupBy")
    sort_by: list[SortEntry] = Field(default_factory=list, alias="sortBy")
    limit: int | None = None
    offset: int | None = Field(default=None, ge=0)
    computed_columns: list[ComputedColumnConfig] = Field(
        default_factory=list, alias="computedColumns"
    )

    @field_validator("table", mode="before")
    @classmethod
    def unwrap_table(cls, v: Any) -> Any:
        return _unwrap(v, "name")

    @field_validator("conditions", mode="before")
    @classmethod
    def wrap_conditions(cls, v: Any) -> Any:
        if v is None or v == [] or v == {}:
            return None
        if isinstance(v, list):
            return {"conditions": v, "boolean": "and"}
        if isinstance(v, dict) and "conditions" not in v:
            return {"conditions": [v], "boolean": "and"}
        return v

    def iter_leaves(self) -> Iterator[ConditionLeaf]:
        if self.conditions is not None:
            yield from self.conditions.iter_leaves()

    def condition_count(self) -> int:
        return sum(1 for _ in self.iter_leaves())


def parse_query_config(raw: dict[str, Any] | QueryConfig) -> QueryConfig:
    """
    Parse raw configuration into a QueryConfig.

    Raises:
        QueryConfigError: With one message per pydantic error.
    """
    if isinstance(raw, QueryConfig):
        return raw
    try:
        return QueryConfig.model_validate(raw)
    except ValidationError as e:
        raise QueryConfigError(format_validation_errors(e)) from e


def format_validation_errors(error: ValidationError) -> list[str]:
    """Render pydantic errors as ``loc.path: message`` strings."""
    messages = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"] if not _is_union_tag(part))
        messages.append(f"{location}: {item['msg']}" if location else item["msg"])
    return messages


def _is_union_tag(part: Any) -> bool:
    return part in ("group", "leaf")
