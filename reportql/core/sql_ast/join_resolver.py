"""
Join Resolver for ReportQL.

Determines which joins a report needs and which alias each one gets:
- Manual joins are taken from the configuration, in declared order
- Auto joins are added for every auto relationship a column, condition,
  group-by, sort or computed expression references

Every relationship path is joined exactly once and gets exactly one alias.
"""

import logging
from dataclasses import dataclass
from typing import Iterator

from reportql.core.constants import MAX_ALIAS_LENGTH
from reportql.core.errors.codes import ErrorCode
from reportql.core.errors.exceptions import ReportError
from reportql.core.safety.computed_columns import extract_identifiers, strip_string_literals
from reportql.core.schema_registry.registry import (
    JoinMode,
    JoinType,
    SchemaCatalog,
)
from reportql.core.sql_ast.models import QueryConfig

logger = logging.getLogger(__name__)


# -----------------------------
# Data structures
# -----------------------------


@dataclass(frozen=True)
class JoinStep:
    """Represents a single join from the base table."""

    path: str  # relationship name the join is reachable under
    table: str  # target physical table
    alias: str
    local_key: str
    foreign_key: str
    join_type: JoinType = JoinType.LEFT
    mode: JoinMode = JoinMode.AUTO

    def to_dict(self) -> dict[str, str]:
        return {
            "path": self.path,
            "table": self.table,
            "alias": self.alias,
            "type": self.join_type.value,
            "local_key": self.local_key,
            "foreign_key": self.foreign_key,
        }


@dataclass(frozen=True)
class JoinPlan:
    """
    Complete join plan for a report.

    Contains the base table and the ordered list of joins to execute.
    """

    base_table: str
    joins: tuple[JoinStep, ...]  # Use tuple for immutability

    def alias_for(self, path: str) -> str | None:
        for join in self.joins:
            if join.path == path:
                return join.alias
        return None

    @property
    def aliases(self) -> dict[str, str]:
        """Relationship path -> generated alias."""
        return {join.path: join.alias for join in self.joins}

    @property
    def auto_joins(self) -> list[JoinStep]:
        return [join for join in self.joins if join.mode is JoinMode.AUTO]

    @property
    def manual_joins(self) -> list[JoinStep]:
        return [join for join in self.joins if join.mode is JoinMode.MANUAL]


# -----------------------------
# Errors
# -----------------------------


class JoinResolutionError(ReportError):
    """Raised when joins cannot be resolved for a report."""

    code = ErrorCode.SCHEMA_ERROR


# -----------------------------
# Alias allocation
# -----------------------------


class AliasAllocator:
    """
    Hands out unique table aliases within one query.

    The preferred alias is returned unchanged when free; otherwise a
    numeric suffix (_2, _3, ...) is appended. Comparison is
    case-insensitive because most databases fold unquoted identifiers.
    """

    def __init__(self, reserved: tuple[str, ...] = ()):
        self._taken: set[str] = {name.lower() for name in reserved}

    def allocate(self, preferred: str) -> str:
        candidate = preferred[:MAX_ALIAS_LENGTH]
        counter = 2
        while candidate.lower() in self._taken:
            suffix = f"_{counter}"
            candidate = preferred[: MAX_ALIAS_LENGTH - len(suffix)] + suffix
            counter += 1
        self._taken.add(candidate.lower())
        return candidate


def auto_join_alias(base_table: str, path: str) -> str:
    """Preferred alias for an auto-joined relationship path."""
    return f"{base_table}_{path.replace('.', '_')}"


# -----------------------------
# Resolver
# -----------------------------


class JoinResolver:
    """
    Resolves the required joins for a QueryConfig.

    Uses the schema catalog to decide which referenced relationships are
    auto-joinable and how to join them.
    """

    def __init__(self, catalog: SchemaCatalog):
        self._catalog = catalog

    def resolve(self, config: QueryConfig) -> JoinPlan:
        """
        Given a validated config, determine the join steps and their aliases.

        Raises:
            TableNotFoundError: If the base table is not registered.
            JoinResolutionError: If a manual join cannot be resolved.
        """
        table = self._catalog.require(config.table)
        allocator = AliasAllocator(reserved=(table.name,))
        joins: list[JoinStep] = []
        joined_paths: set[str] = set()

        # Manual joins claim their aliases first
        for join in config.joins:
            relationship = table.get_relationship(join.key)
            if relationship is None:
                raise JoinResolutionError(
                    f"Relationship '{join.key}' is not defined on table '{table.name}'",
                    relationship=join.key,
                )
            if join.key in joined_paths:
                raise JoinResolutionError(
                    f"Relationship '{join.key}' is joined more than once",
                    relationship=join.key,
                )
            joined_paths.add(join.key)
            joins.append(
                JoinStep(
                    path=join.key,
                    table=join.table,
                    alias=allocator.allocate(join.requested_alias),
                    local_key=join.local_key or relationship.local_key,
                    foreign_key=join.foreign_key or relationship.foreign_key,
                    join_type=join.type,
                    mode=JoinMode.MANUAL,
                )
            )

        for path in self._collect_auto_paths(config):
            if path in joined_paths:
                continue
            relationship = table.get_relationship(path)
            if relationship is None or not relationship.auto:
                continue
            joined_paths.add(path)
            joins.append(
                JoinStep(
                    path=path,
                    table=relationship.table,
                    alias=allocator.allocate(auto_join_alias(table.name, path)),
                    local_key=relationship.local_key,
                    foreign_key=relationship.foreign_key,
                    join_type=relationship.type,
                    mode=JoinMode.AUTO,
                )
            )

        plan = JoinPlan(base_table=table.name, joins=tuple(joins))
        logger.debug("Resolved joins for '%s': %s", table.name, plan.aliases)
        return plan

    # -------------------------
    # Helpers
    # -------------------------

    def _collect_auto_paths(self, config: QueryConfig) -> list[str]:
        """Distinct relationship paths in first-reference order."""
        paths: list[str] = []
        for name in _referenced_names(config):
            if "." not in name:
                continue
            path = name.partition(".")[0]
            if path not in paths:
                paths.append(path)
        return paths


def _referenced_names(config: QueryConfig) -> Iterator[str]:
    for column in config.columns:
        yield column.name
    for leaf in config.iter_leaves():
        yield leaf.field
    for entry in config.group_by:
        yield entry.group_by
        if entry.aggregate_by and entry.aggregate_by != "*":
            yield entry.aggregate_by
    for entry in config.sort_by:
        yield entry.column
    for computed in config.computed_columns:
        yield from extract_identifiers(strip_string_literals(computed.expression))
