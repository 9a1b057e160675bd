"""
Oracle to SQL Server Migration DAG

This DAG performs a complete schema and data migration from Oracle to SQL Server.
It handles:
1. Schema extraction from the Oracle catalog
2. Type mapping and SQL Server DDL generation (scripts written to disk)
3. Schema and table creation in SQL Server
4. Data transfer in dependency order with parallel table workers
5. Index, constraint and foreign key creation after the load
6. Row count validation and reporting

Settings default to environment variables (MIGRATION_BATCH_SIZE,
MAX_PARALLEL_TRANSFERS, ...) and can be overridden per run with params.
"""

from airflow.sdk import dag, task
from airflow.models.param import Param
from pendulum import datetime
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict
import logging

from oracle_mssql_migration.data_transfer import DataMigrator, LoggingProgressObserver
from oracle_mssql_migration.ddl_generator import DDLGenerator, execute_scripts
from oracle_mssql_migration.dependency_resolver import order_tables_by_dependencies
from oracle_mssql_migration.migration_config import MigrationConfiguration
from oracle_mssql_migration.odbc_helper import OdbcConnectionHelper
from oracle_mssql_migration.schema_extractor import OracleSchemaExtractor
from oracle_mssql_migration.script_writer import (
    load_schema_json,
    load_scripts,
    write_schema_json,
    write_scripts,
)
from oracle_mssql_migration.validation import MigrationValidator, generate_migration_report

logger = logging.getLogger(__name__)


def _config(context) -> MigrationConfiguration:
    return MigrationConfiguration.from_params(context["params"])


@dag(
    start_date=datetime(2025, 1, 1),
    schedule=None,  # Run manually or trigger via API
    catchup=False,
    max_active_runs=1,
    is_paused_upon_creation=False,
    doc_md=__doc__,
    default_args={
        "owner": "data-team",
        "retries": 2,
        "retry_delay": timedelta(seconds=30),
    },
    params={
        "oracle_conn_id": Param(
            default="oracle_source",
            type="string",
            description="Oracle connection ID"
        ),
        "mssql_conn_id": Param(
            default="mssql_target",
            type="string",
            description="SQL Server connection ID"
        ),
        "source_schema": Param(
            default="",
            type="string",
            description="Oracle schema owner (empty = connection's current schema)"
        ),
        "target_schema": Param(
            default="dbo",
            type="string",
            description="Target schema in SQL Server"
        ),
        "scope": Param(
            default="full",
            type="string",
            enum=["full", "schema_only", "data_only"],
            description="Migrate schema, data or both"
        ),
        "batch_size": Param(
            default=10000,
            type="integer",
            minimum=1,
            maximum=500000,
            description="Number of rows to transfer per batch"
        ),
        "max_parallelism": Param(
            default=4,
            type="integer",
            minimum=1,
            maximum=32,
            description="Maximum number of tables transferred concurrently"
        ),
        "include_tables": Param(
            default=[],
            type="array",
            description="Tables to migrate (empty = all tables)"
        ),
        "exclude_tables": Param(
            default=[],
            type="array",
            description="List of table patterns to exclude (supports wildcards)"
        ),
        "continue_on_error": Param(
            default=False,
            type="boolean",
            description="Record failed statements/tables and keep going"
        ),
        "strict_load_order": Param(
            default=False,
            type="boolean",
            description="Wait for referenced tables to finish loading before loading a table"
        ),
        "truncate_target": Param(
            default=True,
            type="boolean",
            description="Empty each target table before loading it (keeps task retries from duplicating rows)"
        ),
        "drop_existing_tables": Param(
            default=False,
            type="boolean",
            description="Drop target tables before creating them"
        ),
    },
    tags=["migration", "oracle", "mssql", "etl", "full-refresh"],
)
def oracle_to_mssql_migration():
    """
    Main DAG for Oracle to SQL Server migration.
    """

    @task
    def extract_source_schema(**context) -> Dict[str, Any]:
        """
        Extract the Oracle schema and persist it as schema.json.

        Returns:
            Summary with the output directory and object counts
        """
        config = _config(context)
        extractor = OracleSchemaExtractor(config.oracle_conn_id, owner=config.source_schema)
        schema = extractor.extract_schema(
            include_tables=config.include_tables,
            exclude_tables=config.exclude_tables,
            table_patterns=config.table_patterns,
        )

        write_schema_json(schema, config.output_directory)

        context["ti"].xcom_push(key="extracted_tables", value=[t.table_name for t in schema.tables])
        context["ti"].xcom_push(key="total_row_count", value=sum(t.row_count for t in schema.tables))

        return {
            "output_directory": config.output_directory,
            "schema_name": schema.schema_name,
            "tables": len(schema.tables),
            "objects": schema.total_object_count,
        }

    @task
    def generate_scripts(extract_summary: Dict[str, Any], **context) -> Dict[str, Any]:
        """Generate the phase scripts and warnings file from schema.json."""
        config = _config(context)
        output_dir = extract_summary["output_directory"]
        schema = load_schema_json(output_dir)

        generator = DDLGenerator(target_schema=config.target_schema)
        scripts = generator.generate_migration_scripts(schema)
        written = write_scripts(scripts, output_dir)

        for key, message in scripts.warnings.items():
            logger.warning(f"Conversion warning {key}: {message}")

        return {
            "output_directory": output_dir,
            "files": {stem: str(path) for stem, path in written.items()},
            "warnings": len(scripts.warnings),
        }

    @task
    def create_target_tables(scripts_summary: Dict[str, Any], **context) -> str:
        """Run pre-migration and table creation scripts on SQL Server."""
        config = _config(context)
        if not config.scope.includes_schema:
            logger.info(f"Scope {config.scope.value}: skipping table creation")
            return "skipped"

        output_dir = scripts_summary["output_directory"]
        scripts = load_scripts(output_dir)
        helper = OdbcConnectionHelper(config.mssql_conn_id, command_timeout=config.command_timeout)

        if config.drop_existing_tables:
            schema = load_schema_json(output_dir)
            generator = DDLGenerator(target_schema=config.target_schema)
            # Referencing tables first
            drops = [generator.generate_drop_table(t)
                     for t in reversed(order_tables_by_dependencies(list(schema.tables)))]
            execute_scripts(helper, drops, continue_on_error=config.continue_on_error)

        failures = execute_scripts(
            helper,
            scripts.pre_migration + scripts.table_creation,
            continue_on_error=config.continue_on_error,
        )
        logger.info(f"Created target tables ({len(failures)} statements failed)")
        return f"{len(failures)} failures"

    @task
    def transfer_data(table_status: str, scripts_summary: Dict[str, Any], **context) -> Dict[str, Any]:
        """
        Copy all table rows in dependency order.

        Returns:
            BatchMigrationResult as a dictionary
        """
        config = _config(context)
        if not config.scope.includes_data:
            logger.info(f"Scope {config.scope.value}: skipping data transfer")
            return {}

        schema = load_schema_json(scripts_summary["output_directory"])
        migrator = DataMigrator(config.oracle_conn_id, config.mssql_conn_id, config.transfer_options())
        result = migrator.migrate_all_tables(list(schema.tables), progress=LoggingProgressObserver())

        summary = result.to_dict()
        context["ti"].xcom_push(key="transfer_summary", value={
            "attempted_tables": summary["attempted_tables"],
            "failed_tables": summary["failed_tables"],
            "total_rows_migrated": summary["total_rows_migrated"],
        })
        return summary

    @task
    def create_indexes_and_constraints(transfer_summary: Dict[str, Any], scripts_summary: Dict[str, Any],
                                       **context) -> str:
        """Run index, constraint and post-migration scripts after the load."""
        config = _config(context)
        if not config.scope.includes_schema:
            logger.info(f"Scope {config.scope.value}: skipping index and constraint creation")
            return "skipped"

        scripts = load_scripts(scripts_summary["output_directory"])
        helper = OdbcConnectionHelper(config.mssql_conn_id, command_timeout=config.command_timeout)
        failures = execute_scripts(
            helper,
            scripts.index_creation + scripts.constraint_creation + scripts.post_migration,
            continue_on_error=config.continue_on_error,
        )
        logger.info(f"Created indexes and constraints ({len(failures)} statements failed)")
        return f"{len(failures)} failures"

    @task
    def validate_migration(constraint_status: str, transfer_summary: Dict[str, Any],
                           scripts_summary: Dict[str, Any], **context) -> Dict[str, Any]:
        """
        Validate row counts and write the migration report.

        Returns:
            Validation summary
        """
        config = _config(context)
        output_dir = scripts_summary["output_directory"]
        schema = load_schema_json(output_dir)
        scripts = load_scripts(output_dir)

        if not config.scope.includes_data:
            logger.info(f"Scope {config.scope.value}: skipping row count validation")
            return {"overall_success": True, "total_tables": 0}

        validator = MigrationValidator(config.oracle_conn_id, config.mssql_conn_id,
                                       target_schema=config.target_schema)
        validation_results = validator.validate_tables_batch(list(schema.tables))
        report = generate_migration_report(
            validation_results,
            transfer_results=transfer_summary or None,
            warnings=scripts.conversion_warnings(),
        )
        Path(output_dir, "migration_report.txt").write_text(report, encoding="utf-8")
        logger.info(f"\n{report}")

        if not validation_results["overall_success"]:
            logger.warning(
                f"Migration validation failed for {validation_results['failed_count']} tables. "
                f"Check the report for details."
            )

        return {
            "total_tables": validation_results["total_tables"],
            "passed_tables": validation_results["passed_count"],
            "failed_tables": validation_results["failed_count"],
            "success_rate": validation_results["success_rate"],
            "overall_success": validation_results["overall_success"],
        }

    # Define the task flow
    extract_summary = extract_source_schema()
    scripts_summary = generate_scripts(extract_summary)
    table_status = create_target_tables(scripts_summary)
    transfer_summary = transfer_data(table_status, scripts_summary)
    constraint_status = create_indexes_and_constraints(transfer_summary, scripts_summary)
    validate_migration(constraint_status, transfer_summary, scripts_summary)


# Instantiate the DAG
oracle_to_mssql_migration()
