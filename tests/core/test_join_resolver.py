"""
Tests for Join Resolver.

Tests that the correct join steps and unique aliases are produced for
auto and manual relationships.
"""

import pytest

from reportql.core.errors.codes import ErrorCode
from reportql.core.schema_registry.defaults import get_default_catalog
from reportql.core.schema_registry.registry import (
    Column,
    JoinMode,
    JoinType,
    Relationship,
    SchemaCatalog,
    Table,
    TableNotFoundError,
)
from reportql.core.sql_ast.join_resolver import (
    AliasAllocator,
    JoinPlan,
    JoinResolutionError,
    JoinResolver,
    auto_join_alias,
)
from reportql.core.sql_ast.models import parse_query_config


# -----------------------------
# Fixtures
# -----------------------------


@pytest.fixture
def resolver() -> JoinResolver:
    """Create a resolver with the demo catalog."""
    return JoinResolver(get_default_catalog())


def _resolve(resolver: JoinResolver, **config) -> JoinPlan:
    config.setdefault("table", "orders")
    config.setdefault("columns", [{"name": "status"}])
    return resolver.resolve(parse_query_config(config))


# -----------------------------
# Auto Join Tests
# -----------------------------


class TestAutoJoins:
    """Tests for joins derived from dotted references."""

    def test_no_joins_for_base_columns(self, resolver: JoinResolver) -> None:
        plan = _resolve(resolver, columns=[{"name": "status"}, {"name": "total"}])

        assert plan.base_table == "orders"
        assert plan.joins == ()

    def test_single_auto_join(self, resolver: JoinResolver) -> None:
        plan = _resolve(resolver, columns=[{"name": "status"}, {"name": "customer.name"}])

        assert len(plan.joins) == 1
        step = plan.joins[0]
        assert step.path == "customer"
        assert step.table == "customers"
        assert step.alias == "orders_customer"
        assert step.local_key == "customer_uuid"
        assert step.foreign_key == "uuid"
        assert step.join_type is JoinType.LEFT
        assert step.mode is JoinMode.AUTO

    def test_path_joined_once(self, resolver: JoinResolver) -> None:
        """Every reference to one path reuses the same alias."""
        plan = _resolve(
            resolver,
            columns=[{"name": "customer.name"}, {"name": "customer.segment"}],
            conditions=[{"field": "customer.country", "operator": "eq", "value": "NL"}],
            sortBy=[{"column": "customer.name"}],
        )
        assert [step.alias for step in plan.joins] == ["orders_customer"]
        assert plan.alias_for("customer") == "orders_customer"

    def test_paths_from_conditions_and_computed(self, resolver: JoinResolver) -> None:
        plan = _resolve(
            resolver,
            computedColumns=[{"name": "who", "expression": "UPPER(customer.name)"}],
        )
        assert plan.aliases == {"customer": "orders_customer"}

    def test_manual_relationship_is_not_auto_joined(self, resolver: JoinResolver) -> None:
        plan = _resolve(resolver, columns=[{"name": "product.name"}])
        assert plan.joins == ()

    def test_unknown_table(self, resolver: JoinResolver) -> None:
        with pytest.raises(TableNotFoundError):
            resolver.resolve(parse_query_config({"table": "invoices", "columns": [{"name": "x"}]}))


# -----------------------------
# Manual Join Tests
# -----------------------------


class TestManualJoins:
    """Tests for joins declared in the configuration."""

    def test_manual_join(self, resolver: JoinResolver) -> None:
        plan = _resolve(resolver, joins=[{"table": "products", "name": "product", "type": "inner"}])

        assert len(plan.manual_joins) == 1
        step = plan.manual_joins[0]
        assert step.alias == "products"
        assert step.local_key == "product_uuid"
        assert step.join_type is JoinType.INNER
        assert step.mode is JoinMode.MANUAL

    def test_manual_join_key_overrides(self, resolver: JoinResolver) -> None:
        plan = _resolve(
            resolver,
            joins=[
                {
                    "table": "products",
                    "name": "product",
                    "alias": "p",
                    "localKey": "product_uuid",
                    "foreignKey": "uuid",
                }
            ],
        )
        assert plan.alias_for("product") == "p"

    def test_manual_join_shadows_auto_join(self, resolver: JoinResolver) -> None:
        plan = _resolve(
            resolver,
            columns=[{"name": "customer.name"}],
            joins=[{"table": "customers", "name": "customer", "type": "inner"}],
        )
        assert len(plan.joins) == 1
        assert plan.joins[0].mode is JoinMode.MANUAL
        assert plan.auto_joins == []

    def test_unknown_relationship(self, resolver: JoinResolver) -> None:
        with pytest.raises(JoinResolutionError) as exc_info:
            _resolve(resolver, joins=[{"table": "suppliers"}])
        assert exc_info.value.code is ErrorCode.SCHEMA_ERROR

    def test_duplicate_manual_join(self, resolver: JoinResolver) -> None:
        with pytest.raises(JoinResolutionError, match="more than once"):
            _resolve(
                resolver,
                joins=[
                    {"table": "products", "name": "product"},
                    {"table": "products", "name": "product", "alias": "p2"},
                ],
            )


# -----------------------------
# Alias Tests
# -----------------------------


class TestAliases:
    """Tests for alias allocation."""

    def test_auto_join_alias(self) -> None:
        assert auto_join_alias("orders", "customer") == "orders_customer"

    def test_allocator_suffixes_collisions(self) -> None:
        allocator = AliasAllocator(reserved=("orders",))
        assert allocator.allocate("orders") == "orders_2"
        assert allocator.allocate("ORDERS") == "ORDERS_3"
        assert allocator.allocate("customers") == "customers"

    def test_allocator_respects_length_limit(self) -> None:
        allocator = AliasAllocator()
        long_name = "x" * 80
        first = allocator.allocate(long_name)
        second = allocator.allocate(long_name)
        assert len(first) == 64
        assert len(second) == 64
        assert second.endswith("_2")

    def test_manual_alias_collides_with_auto_alias(self, resolver: JoinResolver) -> None:
        plan = _resolve(
            resolver,
            columns=[{"name": "customer.name"}],
            joins=[{"table": "products", "name": "product", "alias": "orders_customer"}],
        )
        assert plan.alias_for("product") == "orders_customer"
        assert plan.alias_for("customer") == "orders_customer_2"

    def test_manual_alias_cannot_take_base_name(self, resolver: JoinResolver) -> None:
        plan = _resolve(resolver, joins=[{"table": "products", "name": "product", "alias": "orders"}])
        assert plan.alias_for("product") == "orders_2"

    @pytest.mark.parametrize("relationship_count", [1, 3, 8])
    def test_aliases_are_unique(self, relationship_count: int) -> None:
        """Aliases stay unique even when relationship names collide with each other."""
        relationships = []
        for index in range(relationship_count):
            relationships.append(
                Relationship(
                    name=f"rel_{index}",
                    table="targets",
                    local_key=f"rel_{index}_uuid",
                    mode=JoinMode.AUTO,
                )
            )
        catalog = SchemaCatalog(
            [
                Table(
                    name="base",
                    columns=(Column.make("a"),),
                    relationships=tuple(relationships),
                ),
                Table(name="base_rel", columns=(Column.make("label"),)),
                Table(name="targets", columns=(Column.make("label"),)),
            ]
        )
        columns = [{"name": f"rel_{index}.label"} for index in range(relationship_count)]
        joins = [{"table": "targets", "name": "rel_0", "alias": "base_rel_1"}]

        plan = JoinResolver(catalog).resolve(
            parse_query_config({"table": "base", "columns": columns, "joins": joins})
        )

        aliases = [step.alias.lower() for step in plan.joins]
        assert len(aliases) == relationship_count
        assert len(set(aliases)) == len(aliases)
        assert "base" not in aliases
