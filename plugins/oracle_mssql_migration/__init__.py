"""
Oracle to SQL Server Migration Utilities

This package provides utilities for migrating schemas and data from Oracle
to Microsoft SQL Server using Apache Airflow.

Modules:
- schema_model: In-memory schema model (tables, columns, indexes, ...)
- schema_extractor: Extract schema information from the Oracle catalog
- type_mapping: Map Oracle types and expressions to SQL Server
- ddl_generator: Generate and execute SQL Server DDL statements
- dependency_resolver: Order tables by foreign key dependencies
- data_transfer: Transfer data in batches with parallel table workers
- validation: Validate migration results by row count
- migration_config: Run configuration from environment and DAG params
- script_writer: Write schema JSON, phase scripts and warnings to disk

Performance Options:
- MIGRATION_BATCH_SIZE=N: Rows per fetch/insert batch
- MAX_PARALLEL_TRANSFERS=N: Max concurrent table transfers
- STRICT_LOAD_ORDER=true: Wait for referenced tables before loading a table
"""

__version__ = "1.0.0"

# Core modules
from oracle_mssql_migration import schema_model
from oracle_mssql_migration import schema_extractor
from oracle_mssql_migration import type_mapping
from oracle_mssql_migration import ddl_generator
from oracle_mssql_migration import dependency_resolver
from oracle_mssql_migration import data_transfer
from oracle_mssql_migration import validation

# Run configuration and artifacts
from oracle_mssql_migration import migration_config
from oracle_mssql_migration import script_writer

__all__ = [
    "schema_model",
    "schema_extractor",
    "type_mapping",
    "ddl_generator",
    "dependency_resolver",
    "data_transfer",
    "validation",
    "migration_config",
    "script_writer",
]
