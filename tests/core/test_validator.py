"""
Tests for Query Validator.

Tests that report configurations are validated against the schema catalog
and that invalid input is reported, never raised.
"""

import pytest

from reportql.core.schema_registry.defaults import DEFAULT_TABLES, get_default_catalog
from reportql.core.schema_registry.registry import Column, SchemaCatalog, Table
from reportql.core.safety.validator import QueryValidator, ValidationResult
from reportql.core.sql_ast.models import QueryConfig


# -----------------------------
# Fixtures
# -----------------------------


@pytest.fixture
def validator() -> QueryValidator:
    """Create a validator with the demo catalog."""
    return QueryValidator(get_default_catalog())


@pytest.fixture
def accounts_validator() -> QueryValidator:
    """Validator over a catalog that also exposes an accounts table."""
    accounts = Table(
        name="accounts",
        columns=(Column.make("email"), Column.make("password"), Column.make("created_at")),
    )
    return QueryValidator(SchemaCatalog((*DEFAULT_TABLES, accounts)))


@pytest.fixture
def valid_config() -> dict:
    """A valid configuration touching every section."""
    return {
        "table": {"name": "orders"},
        "columns": [{"name": "status"}, {"name": "customer.name", "alias": "customer_name"}],
        "conditions": [
            {"field": {"name": "total"}, "operator": {"value": ">"}, "value": 100},
            {"field": "order_date", "operator": "between", "value": ["2024-01-01", "2024-03-31"]},
        ],
        "sortBy": [{"column": {"name": "status"}, "direction": {"value": "desc"}}],
        "limit": 100,
    }


def _config(**overrides) -> dict:
    config = {"table": {"name": "orders"}, "columns": [{"name": "status"}]}
    config.update(overrides)
    return config


# -----------------------------
# Valid Configuration Tests
# -----------------------------


class TestValidConfigs:
    """Tests for valid configuration scenarios."""

    def test_valid_config(self, validator: QueryValidator, valid_config: dict) -> None:
        result = validator.validate(valid_config)
        assert result.valid, result.errors
        assert result.errors == []

    def test_auto_join_column(self, validator: QueryValidator) -> None:
        """Auto relationship columns resolve without a declared join."""
        result = validator.validate(
            _config(columns=[{"name": "status"}, {"name": "customer.name"}])
        )
        assert result.valid
        assert result.summary["total_joins"] == 1

    def test_accepts_parsed_config(self, validator: QueryValidator, valid_config: dict) -> None:
        result = validator.validate(QueryConfig.model_validate(valid_config))
        assert result.valid, result.errors

    def test_plain_string_table(self, validator: QueryValidator) -> None:
        assert validator.validate({"table": "orders", "columns": [{"name": "total"}]}).valid

    def test_validation_is_idempotent(self, validator: QueryValidator, valid_config: dict) -> None:
        first = validator.validate(valid_config).to_dict()
        second = validator.validate(valid_config).to_dict()
        assert first == second

    def test_validation_does_not_mutate_input(
        self, validator: QueryValidator, valid_config: dict
    ) -> None:
        snapshot = repr(valid_config)
        validator.validate(valid_config)
        assert repr(valid_config) == snapshot


# -----------------------------
# Structural Tests
# -----------------------------


class TestStructure:
    """Tests for structural errors."""

    def test_non_object(self, validator: QueryValidator) -> None:
        result = validator.validate(["orders"])
        assert not result.valid
        assert result.errors == ["Query configuration must be an object"]

    def test_missing_table(self, validator: QueryValidator) -> None:
        result = validator.validate({"columns": [{"name": "status"}]})
        assert "Table name is required" in result.errors

    def test_blank_table_name(self, validator: QueryValidator) -> None:
        result = validator.validate({"table": {"name": "  "}, "columns": [{"name": "status"}]})
        assert "Table name must be a non-empty string" in result.errors

    def test_missing_columns(self, validator: QueryValidator) -> None:
        result = validator.validate({"table": {"name": "orders"}})
        assert "Columns must be a list of selected columns" in result.errors

    def test_empty_columns(self, validator: QueryValidator) -> None:
        result = validator.validate(_config(columns=[]))
        assert "At least one column must be selected" in result.errors

    def test_non_numeric_limit(self, validator: QueryValidator) -> None:
        result = validator.validate(_config(limit="lots"))
        assert not result.valid
        assert "Limit must be a positive integer" in result.errors

    def test_condition_depth(self, validator: QueryValidator) -> None:
        node: dict = {"field": "status", "operator": "=", "value": "paid"}
        for _ in range(12):
            node = {"boolean": "and", "conditions": [node]}

        result = validator.validate(_config(conditions=node))

        assert not result.valid
        assert any("nested too deeply" in error for error in result.errors)

    def test_invalid_result_has_summary(self, validator: QueryValidator) -> None:
        result = validator.validate({})
        assert result.summary["complexity"] == "low"
        assert result.summary["total_columns"] == 0


# -----------------------------
# Referential Tests
# -----------------------------


class TestReferences:
    """Tests for table, column and join references."""

    def test_unknown_table(self, validator: QueryValidator) -> None:
        result = validator.validate({"table": {"name": "invoices"}, "columns": [{"name": "id"}]})
        assert result.errors == ["Table 'invoices' is not available for reporting"]

    def test_missing_column(self, validator: QueryValidator) -> None:
        result = validator.validate(_config(columns=[{"name": "missing"}]))
        assert not result.valid
        assert "Column 'missing' does not exist in table 'orders'" in result.errors

    def test_manual_relationship_needs_join(self, validator: QueryValidator) -> None:
        result = validator.validate(_config(columns=[{"name": "product.name"}]))
        assert "Column 'product.name' does not exist in table 'orders'" in result.errors

    def test_manual_join_makes_columns_available(self, validator: QueryValidator) -> None:
        result = validator.validate(
            _config(
                columns=[{"name": "status"}, {"name": "product.category"}],
                joins=[
                    {
                        "table": "products",
                        "name": "product",
                        "type": "INNER",
                        "selectedColumns": [{"name": "name", "alias": "product_name"}],
                    }
                ],
            )
        )
        assert result.valid, result.errors
        assert result.summary["total_joins"] == 1
        assert result.summary["total_columns"] == 3

    def test_unknown_join(self, validator: QueryValidator) -> None:
        result = validator.validate(_config(joins=[{"table": "suppliers"}]))
        assert "Join relationship 'suppliers' is not available for table 'orders'" in result.errors
        assert "Join table 'suppliers' is not available for reporting" in result.errors

    def test_join_selected_column_missing(self, validator: QueryValidator) -> None:
        result = validator.validate(
            _config(
                joins=[{"table": "products", "name": "product", "selectedColumns": [{"name": "sku"}]}]
            )
        )
        assert "Column 'sku' does not exist in joined table 'products'" in result.errors

    def test_explicit_join_keys(self, validator: QueryValidator) -> None:
        result = validator.validate(
            _config(
                joins=[
                    {
                        "table": "products",
                        "name": "product",
                        "localKey": "product_uuid",
                        "foreignKey": "uuid",
                    }
                ]
            )
        )
        assert result.valid, result.errors

    def test_unknown_join_keys(self, validator: QueryValidator) -> None:
        """Join keys must resolve against the catalog before anything reaches the database."""
        result = validator.validate(
            _config(
                joins=[
                    {
                        "table": "products",
                        "name": "product",
                        "localKey": "no_such_local",
                        "foreignKey": "no_such_column",
                    }
                ]
            )
        )
        assert not result.valid
        assert "Join key 'no_such_local' does not exist in table 'orders'" in result.errors
        assert "Join key 'no_such_column' does not exist in joined table 'products'" in result.errors

    def test_excluded_join_key(self) -> None:
        products = Table(
            name="products",
            columns=(Column.make("uuid"), Column.make("name"), Column.make("legacy_code")),
            exclude_columns=frozenset({"legacy_code"}),
        )
        tables = [t for t in DEFAULT_TABLES if t.name != "products"] + [products]
        result = QueryValidator(SchemaCatalog(tables)).validate(
            _config(joins=[{"table": "products", "name": "product", "foreignKey": "legacy_code"}])
        )
        assert "Join key 'legacy_code' does not exist in joined table 'products'" in result.errors

    def test_invalid_alias(self, validator: QueryValidator) -> None:
        result = validator.validate(_config(columns=[{"name": "status", "alias": "order status"}]))
        assert "Invalid alias format 'order status' for column 'status'" in result.errors

    def test_duplicate_output_name(self, validator: QueryValidator) -> None:
        result = validator.validate(
            _config(columns=[{"name": "status"}, {"name": "total", "alias": "status"}])
        )
        assert not result.valid
        assert any("Duplicate output column 'status'" in error for error in result.errors)


# -----------------------------
# Condition Tests
# -----------------------------


class TestConditions:
    """Tests for condition tree validation."""

    def test_sensitive_condition_field_warns(self, accounts_validator: QueryValidator) -> None:
        result = accounts_validator.validate(
            {
                "table": {"name": "accounts"},
                "columns": [{"name": "email"}],
                "conditions": [{"field": "password", "operator": "=", "value": "x"}],
            }
        )
        assert result.valid, result.errors
        assert "Accessing potentially sensitive column: password" in result.warnings

    def test_invalid_operator(self, validator: QueryValidator) -> None:
        result = validator.validate(
            _config(conditions=[{"field": "status", "operator": "~~", "value": "x"}])
        )
        assert "Condition 1: Invalid operator '~~'" in result.errors

    def test_nested_error_path(self, validator: QueryValidator) -> None:
        conditions = {
            "boolean": "or",
            "conditions": [
                {"field": "status", "operator": "eq", "value": "paid"},
                {
                    "boolean": "and",
                    "conditions": [{"field": "nope", "operator": "eq", "value": 1}],
                },
            ],
        }
        result = validator.validate(_config(conditions=conditions))
        assert result.errors == ["Condition 2.1: Field 'nope' is not available in the query"]

    def test_invalid_boolean(self, validator: QueryValidator) -> None:
        result = validator.validate(
            _config(
                conditions={
                    "boolean": "xor",
                    "conditions": [{"field": "status", "operator": "eq", "value": "a"}],
                }
            )
        )
        assert "Conditions: Invalid boolean operator 'xor'" in result.errors

    @pytest.mark.parametrize(
        "operator,value",
        [
            ("in", []),
            ("between", ["2024-01-01"]),
            ("eq", ["a", "b"]),
        ],
    )
    def test_value_shapes(self, validator: QueryValidator, operator: str, value) -> None:
        result = validator.validate(
            _config(conditions=[{"field": "order_date", "operator": operator, "value": value}])
        )
        assert not result.valid

    def test_comma_separated_in_value(self, validator: QueryValidator) -> None:
        result = validator.validate(
            _config(conditions=[{"field": "status", "operator": "in", "value": "paid, shipped"}])
        )
        assert result.valid

    def test_null_operator_needs_no_value(self, validator: QueryValidator) -> None:
        result = validator.validate(
            _config(conditions=[{"field": "customer.email", "operator": "is_null"}])
        )
        assert result.valid
        assert result.warnings == []

    def test_empty_value_warns(self, validator: QueryValidator) -> None:
        result = validator.validate(
            _config(conditions=[{"field": "status", "operator": "eq", "value": ""}])
        )
        assert result.valid
        assert "Condition 1: Empty value for operator 'eq'" in result.warnings

    def test_injection_in_value(self, validator: QueryValidator) -> None:
        result = validator.validate(
            _config(
                conditions=[
                    {"field": "status", "operator": "eq", "value": "x' UNION SELECT password FROM users"}
                ]
            )
        )
        assert not result.valid
        assert "Potential SQL injection detected: union_select" in result.errors


# -----------------------------
# Group By Tests
# -----------------------------


class TestGroupBy:
    """Tests for group-by and aggregate validation."""

    def test_count_wildcard(self, validator: QueryValidator) -> None:
        result = validator.validate(
            _config(
                groupBy=[
                    {
                        "groupBy": {"name": "status"},
                        "aggregateFn": {"value": "count"},
                        "aggregateBy": {"name": "*"},
                    }
                ]
            )
        )
        assert result.valid, result.errors
        assert result.summary["has_grouping"] is True

    def test_sum_wildcard_rejected(self, validator: QueryValidator) -> None:
        result = validator.validate(
            _config(
                groupBy=[
                    {
                        "groupBy": {"name": "status"},
                        "aggregateFn": {"value": "sum"},
                        "aggregateBy": {"name": "*"},
                    }
                ]
            )
        )
        assert not result.valid
        assert "Group By 1: Wildcard '*' can only be used with COUNT function" in result.errors

    def test_unknown_aggregate(self, validator: QueryValidator) -> None:
        result = validator.validate(
            _config(groupBy=[{"groupBy": "status", "aggregateFn": "median", "aggregateBy": "total"}])
        )
        assert "Group By 1: Invalid aggregate function 'median'" in result.errors

    def test_ungrouped_column(self, validator: QueryValidator) -> None:
        result = validator.validate(
            _config(
                columns=[{"name": "status"}, {"name": "total"}],
                groupBy=[{"groupBy": "status"}],
            )
        )
        assert "Column 'total' must be grouped or aggregated when GROUP BY is used" in result.errors

    def test_table_without_aggregates(self) -> None:
        validator = QueryValidator(
            SchemaCatalog([Table(name="logs", columns=(Column.make("level"),), supports_aggregates=False)])
        )
        result = validator.validate(
            {
                "table": "logs",
                "columns": [{"name": "level"}],
                "groupBy": [{"groupBy": "level", "aggregateFn": "count", "aggregateBy": "*"}],
            }
        )
        assert "Table 'logs' does not support aggregate functions" in result.errors

    def test_sort_by_aggregate_label(self, validator: QueryValidator) -> None:
        result = validator.validate(
            _config(
                groupBy=[{"groupBy": "status", "aggregateFn": "sum", "aggregateBy": "total"}],
                sortBy=[{"column": "sum_total", "direction": "desc"}],
            )
        )
        assert result.valid, result.errors


# -----------------------------
# Sort / Computed Tests
# -----------------------------


class TestSortAndComputed:
    """Tests for sort entries and computed columns."""

    def test_unknown_sort_field(self, validator: QueryValidator) -> None:
        result = validator.validate(_config(sortBy=[{"column": "nope"}]))
        assert "Sort By 1: Field 'nope' is not available in the query" in result.errors

    def test_invalid_sort_direction(self, validator: QueryValidator) -> None:
        result = validator.validate(_config(sortBy=[{"column": "status", "direction": "sideways"}]))
        assert "Sort By 1: Invalid sort direction 'sideways'" in result.errors

    def test_valid_computed_column(self, validator: QueryValidator) -> None:
        result = validator.validate(
            _config(
                computedColumns=[{"name": "unit_price", "expression": "total / quantity"}],
                sortBy=[{"column": "unit_price"}],
            )
        )
        assert result.valid, result.errors
        assert result.summary["total_computed_columns"] == 1

    def test_invalid_computed_column(self, validator: QueryValidator) -> None:
        result = validator.validate(
            _config(computedColumns=[{"name": "bad", "expression": "total + mystery"}])
        )
        assert (
            "Computed column 'bad': Column reference 'mystery' does not exist "
            "in table 'orders' or its relationships"
        ) in result.errors


# -----------------------------
# Limit Tests
# -----------------------------


class TestLimit:
    """Tests for row limit boundaries."""

    def test_hard_ceiling_allowed(self, validator: QueryValidator) -> None:
        assert validator.validate(_config(limit=50000)).valid

    def test_hard_ceiling_exceeded(self, validator: QueryValidator) -> None:
        result = validator.validate(_config(limit=50001))
        assert not result.valid
        assert any("cannot exceed 50,000" in error for error in result.errors)

    def test_large_limit_warns(self, validator: QueryValidator) -> None:
        result = validator.validate(_config(limit=20000))
        assert result.valid
        assert "Large limit (20000) may impact performance" in result.warnings

    @pytest.mark.parametrize("limit", [0, -5])
    def test_non_positive_limit(self, validator: QueryValidator, limit: int) -> None:
        result = validator.validate(_config(limit=limit))
        assert "Limit must be a positive integer" in result.errors

    def test_table_max_rows_is_read_from_catalog(self, validator: QueryValidator) -> None:
        """orders declares max_rows=10000; customers declares none."""
        orders = validator.validate(_config(limit=10001))
        assert orders.valid
        assert (
            "Requested limit (10001) exceeds maximum allowed (10000) for table" in orders.warnings
        )

        customers = validator.validate(
            {"table": "customers", "columns": [{"name": "name"}], "limit": 10001}
        )
        assert not any("maximum allowed" in warning for warning in customers.warnings)


# -----------------------------
# Summary Tests
# -----------------------------


class TestSummary:
    """Tests for the complexity summary."""

    def test_simple_query_is_fast(self, validator: QueryValidator) -> None:
        result = validator.validate(
            _config(columns=[{"name": "status"}, {"name": "customer.name"}])
        )
        assert result.summary == {
            "complexity": "low",
            "complexity_score": 5,
            "total_columns": 2,
            "total_joins": 1,
            "total_conditions": 0,
            "total_computed_columns": 0,
            "has_grouping": False,
            "has_sorting": False,
            "has_limit": False,
            "estimated_performance": "fast",
        }

    def test_complex_query_warns(self, validator: QueryValidator) -> None:
        conditions = [
            {"field": "status", "operator": "eq", "value": f"s{i}"} for i in range(8)
        ]
        result = validator.validate(
            _config(
                columns=[{"name": "status"}, {"name": "customer.name"}],
                conditions=conditions,
                groupBy=[
                    {"groupBy": "status"},
                    {"groupBy": "customer.name"},
                ],
            )
        )
        assert result.summary["complexity"] == "high"
        assert result.summary["estimated_performance"] == "slow"
        assert "Query complexity is high and may result in slow execution" in result.warnings
        assert (
            "Consider adding conditions on indexed columns for better performance"
            in result.warnings
        )

    def test_result_to_dict(self, validator: QueryValidator) -> None:
        result = validator.validate(_config())
        assert isinstance(result, ValidationResult)
        assert set(result.to_dict()) == {"valid", "errors", "warnings", "summary"}
