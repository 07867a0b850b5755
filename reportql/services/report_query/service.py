"""
Report Query Service.

Orchestrates the full reporting pipeline:
1. Validate the configuration against the catalog
2. Resolve joins
3. Compile SQL
4. Execute inside a transaction
5. Check the advisory timeout
6. Optionally export the rows to a file

Every failure is routed through the error classifier, so callers only
ever see sanitized responses.
"""

from datetime import datetime, timezone
from typing import Any

from reportql.core.config import ReportingSettings, get_settings
from reportql.core.errors.classifier import ErrorClassifier
from reportql.core.export.exporter import ResultExporter
from reportql.core.safety.computed_columns import ComputedColumnValidator
from reportql.core.safety.validator import QueryValidator, ValidationResult
from reportql.core.schema_registry.defaults import get_default_catalog
from reportql.core.schema_registry.registry import SchemaCatalog
from reportql.core.sql_ast.compiler import CompiledQuery, SQLCompiler
from reportql.core.sql_ast.models import QueryConfig, parse_query_config
from reportql.services.report_query.execution import (
    ExecutionResult,
    QueryExecutor,
    QueryTimeoutError,
)


class ReportQueryService:
    """
    Service for validating, running and exporting report configurations.

    The catalog and executor are injected; nothing is looked up globally
    once the service is constructed.
    """

    def __init__(
        self,
        catalog: SchemaCatalog | None = None,
        executor: QueryExecutor | None = None,
        settings: ReportingSettings | None = None,
        classifier: ErrorClassifier | None = None,
        exporter: ResultExporter | None = None,
    ):
        """
        Initialize the service.

        Args:
            catalog: Schema catalog. Uses the demo catalog if not provided.
            executor: Query executor. Built from settings if not provided.
            settings: Reporting settings. Uses cached settings if not provided.
            classifier: Error classifier.
            exporter: Result exporter. Built from settings if not provided.
        """
        self._settings = settings or get_settings()
        self._catalog = catalog or get_default_catalog(
            cache_ttl_seconds=self._settings.catalog_cache_ttl_seconds,
            cache_enabled=self._settings.catalog_cache_enabled,
        )
        self._executor = executor or self._create_default_executor()
        self._classifier = classifier or ErrorClassifier()
        self._exporter = exporter or ResultExporter(
            export_dir=self._settings.export_dir,
            base_url=self._settings.export_base_url,
        )

        self._validator = QueryValidator(
            self._catalog,
            max_condition_depth=self._settings.max_condition_depth,
        )
        self._computed_validator = ComputedColumnValidator(self._catalog)
        self._compiler = SQLCompiler(self._catalog, dialect=self._executor.dialect)

    @property
    def catalog(self) -> SchemaCatalog:
        return self._catalog

    # -------------------------
    # Operations
    # -------------------------

    def validate(self, config: dict[str, Any] | QueryConfig) -> dict[str, Any]:
        """Validate a configuration; never raises for invalid input."""
        return self._validator.validate(config).to_dict()

    def validate_computed_column(
        self,
        expression: str,
        table_name: str,
        siblings: list[str] | None = None,
    ) -> dict[str, Any]:
        return self._computed_validator.validate(expression, table_name, siblings or []).to_dict()

    def compile(
        self, config: dict[str, Any] | QueryConfig, tenant: str | None = None
    ) -> CompiledQuery:
        """Compile an already validated configuration."""
        return self._compiler.compile(parse_query_config(config), tenant=tenant)

    def execute(
        self,
        config: dict[str, Any] | QueryConfig,
        context: dict[str, Any] | None = None,
        actor: str | None = None,
        tenant: str | None = None,
    ) -> dict[str, Any]:
        """
        Validate, compile and execute a configuration.

        Rows of tenant-scoped tables are limited to ``tenant``; such tables
        are refused when no tenant is given.

        Returns:
            ExecutionResponse dict on success, or ``{success: False, error: {...}}``.
        """
        outcome = self._run(config, context, actor, tenant)
        if isinstance(outcome, dict):
            return outcome

        compiled, execution, validation = outcome
        return {
            "success": True,
            "data": execution.rows,
            "columns": [column.to_dict() for column in compiled.columns],
            "meta": self._build_meta(compiled, execution),
            "warnings": validation.warnings,
        }

    def export(
        self,
        config: dict[str, Any] | QueryConfig,
        export_format: str = "csv",
        options: dict[str, Any] | None = None,
        context: dict[str, Any] | None = None,
        actor: str | None = None,
        tenant: str | None = None,
    ) -> dict[str, Any]:
        """
        Execute a configuration and export the rows.

        Returns:
            ExportResponse dict on success, or ``{success: False, error: {...}}``.
        """
        context = {**(context or {}), "export_format": export_format}
        try:
            self._exporter.normalize_format(export_format)
        except Exception as e:
            return self._classifier.handle_export_error(
                e, export_format, context=context, actor=actor, tenant=tenant
            ).to_dict()

        outcome = self._run(config, context, actor, tenant)
        if isinstance(outcome, dict):
            return outcome

        compiled, execution, _ = outcome
        metadata = {
            "table_name": compiled.table_name,
            "total_rows": execution.row_count,
            "execution_time_ms": execution.execution_time_ms,
            "generated_at": datetime.now(timezone.utc).isoformat(),
        }
        try:
            result = self._exporter.export(
                rows=execution.rows,
                columns=compiled.columns,
                export_format=export_format,
                metadata=metadata,
                table_name=compiled.table_name,
                options=options,
            )
        except Exception as e:
            return self._classifier.handle_export_error(
                e, export_format, context=context, actor=actor, tenant=tenant
            ).to_dict()
        return result.to_dict()

    def analyze(self, config: dict[str, Any] | QueryConfig) -> dict[str, Any]:
        """Validation summary plus recommendations for improving the report."""
        validation = self._validator.validate(config)
        analysis: dict[str, Any] = {
            "validation": validation.to_dict(),
            "summary": validation.summary,
            "recommendations": [],
        }
        if not validation.summary.get("total_columns"):
            return analysis

        summary = validation.summary
        recommendations = analysis["recommendations"]
        if not summary["has_limit"]:
            recommendations.append("Add a limit to cap the number of returned rows")
        if summary["total_joins"] > 2:
            recommendations.append("Reduce the number of joins or split the report")
        if summary["total_conditions"] > 10:
            recommendations.append("Simplify the condition tree")
        if summary["total_columns"] > 20:
            recommendations.append("Select fewer columns")
        if summary["has_grouping"] and not summary["has_sorting"]:
            recommendations.append("Add sorting to grouped results for a stable order")
        return analysis

    def available_tables(
        self, extension: str | None = None, category: str | None = None
    ) -> list[dict[str, Any]]:
        return self._catalog.available_tables(extension=extension, category=category)

    def table_schema(self, table_name: str) -> dict[str, Any] | None:
        return self._catalog.table_schema(table_name)

    # -------------------------
    # Helpers
    # -------------------------

    def _run(
        self,
        config: dict[str, Any] | QueryConfig,
        context: dict[str, Any] | None,
        actor: str | None,
        tenant: str | None,
    ) -> tuple[CompiledQuery, ExecutionResult, ValidationResult] | dict[str, Any]:
        validation = self._validator.validate(config)
        if not validation.valid:
            return self._classifier.handle_validation_error(
                validation.to_dict(), context=context, actor=actor, tenant=tenant
            ).to_dict()

        context = {**(context or {}), "table_name": _table_name(config)}
        try:
            compiled = self._compiler.compile(parse_query_config(config), tenant=tenant)
            execution = self._executor.execute(compiled)
        except QueryTimeoutError as e:
            return self._classifier.handle_timeout(
                e.elapsed_seconds, e.limit_seconds, context=context, actor=actor, tenant=tenant
            ).to_dict()
        except Exception as e:
            return self._classifier.handle(e, context=context, actor=actor, tenant=tenant).to_dict()

        return compiled, execution, validation

    def _build_meta(self, compiled: CompiledQuery, execution: ExecutionResult) -> dict[str, Any]:
        return {
            "total_rows": execution.row_count,
            "row_count": execution.row_count,
            "execution_time_ms": execution.execution_time_ms,
            "execution_time": execution.execution_time,
            "query_sql": compiled.sql,
            "query_bindings": compiled.bindings,
            "selected_columns": [column.name for column in compiled.columns],
            "joined_tables": compiled.joined_tables,
            "auto_joins_used": compiled.auto_joins,
            "manual_joins_used": compiled.manual_joins,
            "table_name": compiled.table_name,
            "executed_at": datetime.now(timezone.utc).isoformat(),
        }

    def _create_default_executor(self) -> QueryExecutor:
        from reportql.db.base import get_engine

        return QueryExecutor(
            get_engine(self._settings.database_url),
            timeout_seconds=self._settings.query_timeout_seconds,
        )


def _table_name(config: dict[str, Any] | QueryConfig) -> str | None:
    if isinstance(config, QueryConfig):
        return config.table
    table = config.get("table") if isinstance(config, dict) else None
    return table.get("name") if isinstance(table, dict) else table
