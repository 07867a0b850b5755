"""
Tests for the Query Executor.

Runs compiled reports against an in-memory SQLite database.
"""

from decimal import Decimal

import pytest
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError

from reportql.core.errors.codes import ErrorCode
from reportql.core.schema_registry.defaults import get_default_catalog
from reportql.core.schema_registry.registry import Column, SchemaCatalog, Table
from reportql.core.sql_ast.compiler import SQLCompiler
from reportql.services.report_query.execution import (
    QueryExecutionError,
    QueryExecutor,
    QueryTimeoutError,
)


class SteppingClock:
    """Returns the given readings in order."""

    def __init__(self, *readings: float) -> None:
        self._readings = list(readings)

    def __call__(self) -> float:
        return self._readings.pop(0)


# -----------------------------
# Fixtures
# -----------------------------


@pytest.fixture
def compiler(engine: Engine) -> SQLCompiler:
    return SQLCompiler(get_default_catalog(), dialect=engine.dialect)


@pytest.fixture
def executor(engine: Engine) -> QueryExecutor:
    return QueryExecutor(engine, timeout_seconds=30)


# -----------------------------
# Execution Tests
# -----------------------------


class TestExecute:
    """Tests for successful execution."""

    def test_rows_follow_select_order(self, compiler: SQLCompiler, executor: QueryExecutor) -> None:
        compiled = compiler.compile(
            {
                "table": "orders",
                "columns": [{"name": "order_number"}, {"name": "customer.name"}],
                "sortBy": [{"column": "order_number"}],
            }
        )

        result = executor.execute(compiled)

        assert result.row_count == 3
        assert list(result.rows[0]) == ["order_number", "customer_name"]
        assert [row["customer_name"] for row in result.rows] == ["Acme", "Globex", "Globex"]
        assert result.execution_time_ms >= 0
        assert result.execution_time == result.execution_time_ms / 1000

    def test_conditions_and_limit(self, compiler: SQLCompiler, executor: QueryExecutor) -> None:
        compiled = compiler.compile(
            {
                "table": "orders",
                "columns": [{"name": "order_number"}],
                "conditions": {
                    "boolean": "or",
                    "conditions": [
                        {"field": "status", "operator": "eq", "value": "pending"},
                        {"field": "customer.country", "operator": "eq", "value": "NL"},
                    ],
                },
                "sortBy": [{"column": "order_number", "direction": "desc"}],
                "limit": 5,
            }
        )

        result = executor.execute(compiled)

        assert [row["order_number"] for row in result.rows] == ["ORD-000002", "ORD-000001"]

    def test_grouped_report(self, compiler: SQLCompiler, executor: QueryExecutor) -> None:
        compiled = compiler.compile(
            {
                "table": "orders",
                "columns": [{"name": "customer.segment"}],
                "groupBy": [
                    {"groupBy": "customer.segment", "aggregateFn": "sum", "aggregateBy": "total"}
                ],
                "sortBy": [{"column": "sum_total", "direction": "desc"}],
            }
        )

        rows = executor.execute(compiled).rows

        assert [row["customer_segment"] for row in rows] == ["Enterprise", "SMB"]
        assert Decimal(str(rows[0]["sum_total"])) == Decimal("60")

    def test_manual_join_and_computed_column(
        self, compiler: SQLCompiler, executor: QueryExecutor
    ) -> None:
        compiled = compiler.compile(
            {
                "table": "orders",
                "columns": [{"name": "order_number"}],
                "joins": [
                    {
                        "table": "products",
                        "name": "product",
                        "type": "inner",
                        "selectedColumns": [{"name": "name", "alias": "product_name"}],
                    }
                ],
                "computedColumns": [{"name": "unit_price", "expression": "total / quantity"}],
                "sortBy": [{"column": "order_number"}],
            }
        )

        rows = executor.execute(compiled).rows

        assert len(rows) == 2  # the order without a product is dropped by the inner join
        assert rows[0]["product_name"] == "Widget"
        assert float(rows[0]["unit_price"]) == pytest.approx(10.0)


# -----------------------------
# Failure Tests
# -----------------------------


class TestFailures:
    """Tests for failed and slow executions."""

    def test_driver_error_is_wrapped(self, engine: Engine) -> None:
        catalog = SchemaCatalog([Table(name="ghosts", columns=(Column.make("name"),))])
        compiled = SQLCompiler(catalog, dialect=engine.dialect).compile(
            {"table": "ghosts", "columns": [{"name": "name"}]}
        )

        with pytest.raises(QueryExecutionError) as exc_info:
            QueryExecutor(engine).execute(compiled)

        assert str(exc_info.value) == "Query execution failed: OperationalError"
        assert "ghosts" not in str(exc_info.value)
        assert isinstance(exc_info.value.__cause__, OperationalError)

    def test_engine_usable_after_failure(self, engine: Engine, compiler: SQLCompiler) -> None:
        catalog = SchemaCatalog([Table(name="ghosts", columns=(Column.make("name"),))])
        broken = SQLCompiler(catalog, dialect=engine.dialect).compile(
            {"table": "ghosts", "columns": [{"name": "name"}]}
        )
        executor = QueryExecutor(engine)
        with pytest.raises(QueryExecutionError):
            executor.execute(broken)

        compiled = compiler.compile({"table": "orders", "columns": [{"name": "status"}]})
        assert executor.execute(compiled).row_count == 3

    def test_timeout_is_checked_after_completion(
        self, engine: Engine, compiler: SQLCompiler
    ) -> None:
        executor = QueryExecutor(engine, timeout_seconds=30, clock=SteppingClock(0.0, 45.0))
        compiled = compiler.compile({"table": "orders", "columns": [{"name": "status"}]})

        with pytest.raises(QueryTimeoutError) as exc_info:
            executor.execute(compiled)

        error = exc_info.value
        assert error.code is ErrorCode.TIMEOUT
        assert error.elapsed_seconds == 45.0
        assert error.limit_seconds == 30
        assert error.details == {"execution_time": 45.0, "timeout_limit": 30}
        # The query still ran to completion
        assert error.result.row_count == 3

    def test_under_timeout(self, engine: Engine, compiler: SQLCompiler) -> None:
        executor = QueryExecutor(engine, timeout_seconds=30, clock=SteppingClock(0.0, 29.5))
        compiled = compiler.compile({"table": "orders", "columns": [{"name": "status"}]})

        result = executor.execute(compiled)

        assert result.execution_time_ms == 29500.0
