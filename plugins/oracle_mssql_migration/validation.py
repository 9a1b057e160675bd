"""
Data Migration Validation Module

This module verifies a migration by comparing row counts between the Oracle
source and the SQL Server target, and renders the end-of-run report.

Validation is deliberately limited to counts; row content is not compared.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional
import logging

from airflow.providers.oracle.hooks.oracle import OracleHook

from oracle_mssql_migration.data_transfer import quote_oracle_identifier
from oracle_mssql_migration.ddl_generator import quote_identifier
from oracle_mssql_migration.errors import ConversionWarning
from oracle_mssql_migration.events import EventSink, default_sink
from oracle_mssql_migration.odbc_helper import OdbcConnectionHelper
from oracle_mssql_migration.schema_model import Table

logger = logging.getLogger(__name__)


@dataclass
class ValidationResult:
    table_name: str
    is_valid: bool
    source_row_count: Optional[int] = None
    target_row_count: Optional[int] = None
    errors: List[str] = field(default_factory=list)

    @property
    def row_difference(self) -> Optional[int]:
        if self.source_row_count is None or self.target_row_count is None:
            return None
        return self.target_row_count - self.source_row_count

    def to_dict(self) -> Dict[str, Any]:
        return {
            'table_name': self.table_name,
            'is_valid': self.is_valid,
            'source_row_count': self.source_row_count,
            'target_row_count': self.target_row_count,
            'row_difference': self.row_difference,
            'errors': list(self.errors),
        }


class MigrationValidator:
    """Validate data migration from Oracle to SQL Server."""

    def __init__(
        self,
        oracle_conn_id: str,
        mssql_conn_id: str,
        target_schema: Optional[str] = None,
        events: Optional[EventSink] = None,
    ):
        """
        Initialize the migration validator.

        Args:
            oracle_conn_id: Airflow connection ID for Oracle
            mssql_conn_id: Airflow connection ID for SQL Server
            target_schema: SQL Server schema holding the migrated tables;
                defaults to each table's Oracle owner
            events: Event sink; defaults to this module's logger
        """
        self.oracle_hook = OracleHook(oracle_conn_id=oracle_conn_id)
        self.mssql_helper = OdbcConnectionHelper(odbc_conn_id=mssql_conn_id)
        self.target_schema = target_schema
        self.events = events or default_sink(__name__)

    def validate_table(self, table: Table) -> ValidationResult:
        """
        Compare row counts between source and target tables.

        A failed count query does not raise: the result is invalid and the
        error is recorded on it.

        Args:
            table: Source table

        Returns:
            ValidationResult; valid only when both counts succeed and match
        """
        result = ValidationResult(table_name=table.full_name, is_valid=False)

        source_query = (
            f"SELECT COUNT(*) FROM {quote_oracle_identifier(table.schema_name)}.{quote_oracle_identifier(table.table_name)}"
        )
        try:
            row = self.oracle_hook.get_first(source_query)
            result.source_row_count = int(row[0] or 0) if row else 0
        except Exception as e:
            result.errors.append(f"Source count failed: {e}")

        target_schema = self.target_schema or table.schema_name
        target_query = (
            f"SELECT COUNT_BIG(*) FROM {quote_identifier(target_schema)}.{quote_identifier(table.table_name)}"
        )
        try:
            row = self.mssql_helper.get_first(target_query)
            result.target_row_count = int(row[0] or 0) if row else 0
        except Exception as e:
            result.errors.append(f"Target count failed: {e}")

        if result.errors:
            self.events.error("Validation failed", table=table.full_name, errors='; '.join(result.errors))
            return result

        if result.source_row_count == result.target_row_count:
            result.is_valid = True
            self.events.info(
                f"Row count validation passed for {table.full_name}: {result.source_row_count:,} rows"
            )
        else:
            result.errors.append(
                f"Row count mismatch: Source={result.source_row_count}, Target={result.target_row_count}"
            )
            self.events.warning(
                f"Row count mismatch for {table.full_name}",
                source=result.source_row_count,
                target=result.target_row_count,
                difference=result.row_difference,
            )
        return result

    def validate_tables_batch(self, tables: List[Table]) -> Dict[str, Any]:
        """
        Validate multiple tables.

        Returns:
            Batch validation results with per-table ValidationResult entries
        """
        results = {
            'total_tables': len(tables),
            'passed_tables': [],
            'failed_tables': [],
            'results': [],
            'overall_success': True,
            'validation_time': datetime.now().isoformat(),
        }

        for table in tables:
            result = self.validate_table(table)
            results['results'].append(result)
            if result.is_valid:
                results['passed_tables'].append(table.full_name)
            else:
                results['failed_tables'].append(table.full_name)
                results['overall_success'] = False

        results['passed_count'] = len(results['passed_tables'])
        results['failed_count'] = len(results['failed_tables'])
        results['success_rate'] = (
            results['passed_count'] / results['total_tables'] * 100
            if results['total_tables'] > 0 else 0
        )
        return results


def generate_migration_report(
    validation_results: Dict[str, Any],
    transfer_results: Optional[Dict[str, Any]] = None,
    warnings: Optional[List[ConversionWarning]] = None,
    generated_at: Optional[datetime] = None,
) -> str:
    """
    Generate a human-readable migration report.

    Args:
        validation_results: Output of validate_tables_batch
        transfer_results: Optional BatchMigrationResult.to_dict() output
        warnings: Conversion warnings collected during DDL generation
        generated_at: Report timestamp (defaults to now)

    Returns:
        Formatted report string
    """
    report_lines = [
        "=" * 80,
        "ORACLE TO SQL SERVER MIGRATION REPORT",
        "=" * 80,
        f"Generated: {(generated_at or datetime.now()).strftime('%Y-%m-%d %H:%M:%S')}",
        "",
        "SUMMARY",
        "-" * 40,
        f"Total Tables: {validation_results.get('total_tables', 0)}",
        f"Successful: {validation_results.get('passed_count', 0)}",
        f"Failed: {validation_results.get('failed_count', 0)}",
        f"Success Rate: {validation_results.get('success_rate', 0):.1f}%",
        "",
    ]

    if transfer_results:
        total_rows = transfer_results.get('total_rows_migrated', 0)
        total_time = transfer_results.get('duration_seconds', 0)
        avg_rate = total_rows / total_time if total_time > 0 else 0
        report_lines.extend([
            "TRANSFER STATISTICS",
            "-" * 40,
            f"Tables Attempted: {transfer_results.get('attempted_tables', 0)}"
            f" of {transfer_results.get('total_tables', 0)}",
            f"Tables Failed: {transfer_results.get('failed_tables', 0)}",
            f"Total Rows Transferred: {total_rows:,}",
            f"Total Time: {total_time:.2f} seconds",
            f"Average Transfer Rate: {avg_rate:,.0f} rows/second",
            "",
        ])
        failed_transfers = [r for r in transfer_results.get('table_results', []) if not r.get('success')]
        if failed_transfers:
            report_lines.extend(["FAILED TRANSFERS", "-" * 40])
            for r in failed_transfers:
                report_lines.append(f"  - {r['table_name']}: {r.get('error_message')}")
            report_lines.append("")

    report_lines.extend(["TABLE DETAILS", "-" * 40])
    for result in validation_results.get('results', []):
        if result.is_valid:
            report_lines.append(f"PASS | {result.table_name:<40} | {result.source_row_count:>12,} rows")
        elif result.source_row_count is not None and result.target_row_count is not None:
            report_lines.append(
                f"FAIL | {result.table_name:<40} | Source: {result.source_row_count:>12,} | "
                f"Target: {result.target_row_count:>12,} | Diff: {result.row_difference:>+12,}"
            )
        else:
            report_lines.append(f"FAIL | {result.table_name:<40} | {'; '.join(result.errors)}")

    if validation_results.get('failed_tables'):
        report_lines.extend(["", "FAILED TABLES REQUIRING ATTENTION", "-" * 40])
        for table_name in validation_results['failed_tables']:
            report_lines.append(f"  - {table_name}")

    if warnings:
        report_lines.extend(["", f"CONVERSION WARNINGS ({len(warnings)})", "-" * 40])
        for warning in warnings:
            report_lines.append(f"  - {warning}")

    report_lines.extend(["", "=" * 80, "END OF REPORT", "=" * 80])
    return "\n".join(report_lines)
