"""
Migration Configuration Module

Run-level settings for an Oracle to SQL Server migration. Defaults come from
environment variables (see the *_from_env helpers) and can be overridden by
Airflow DAG params.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional
import logging
import os

from oracle_mssql_migration.data_transfer import MigrationOptions
from oracle_mssql_migration.table_config import (
    expand_table_list_param,
    load_table_list_from_env,
    validate_table_names,
)

logger = logging.getLogger(__name__)

DEFAULT_ORACLE_CONN_ID = 'oracle_source'
DEFAULT_MSSQL_CONN_ID = 'mssql_target'


class MigrationScope(Enum):
    SCHEMA_ONLY = "schema_only"
    DATA_ONLY = "data_only"
    FULL = "full"

    @property
    def includes_schema(self) -> bool:
        return self is not MigrationScope.DATA_ONLY

    @property
    def includes_data(self) -> bool:
        return self is not MigrationScope.SCHEMA_ONLY


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Ignoring non-integer {name}={raw!r}; using {default}")
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in ('1', 'true', 'yes', 'on')


@dataclass
class MigrationConfiguration:
    """Everything one migration run needs to know."""

    oracle_conn_id: str = DEFAULT_ORACLE_CONN_ID
    mssql_conn_id: str = DEFAULT_MSSQL_CONN_ID
    source_schema: Optional[str] = None
    target_schema: Optional[str] = None
    scope: MigrationScope = MigrationScope.FULL
    batch_size: int = 10000
    max_parallelism: int = 4
    command_timeout: int = 600
    continue_on_error: bool = False
    disable_indexes: bool = True
    disable_constraints: bool = True
    truncate_target: bool = False
    strict_load_order: bool = False
    drop_existing_tables: bool = False
    output_directory: str = './migration_output'
    include_tables: List[str] = field(default_factory=list)
    exclude_tables: List[str] = field(default_factory=list)
    table_patterns: List[str] = field(default_factory=list)

    def __post_init__(self):
        if isinstance(self.scope, str):
            self.scope = MigrationScope(self.scope.lower())
        validate_table_names(self.include_tables)
        validate_table_names(self.exclude_tables)
        validate_table_names(self.table_patterns)

    @classmethod
    def from_env(cls) -> "MigrationConfiguration":
        """Build a configuration from environment variables and defaults."""
        return cls(
            oracle_conn_id=os.environ.get('ORACLE_CONN_ID', DEFAULT_ORACLE_CONN_ID),
            mssql_conn_id=os.environ.get('MSSQL_CONN_ID', DEFAULT_MSSQL_CONN_ID),
            source_schema=os.environ.get('ORACLE_SOURCE_SCHEMA') or None,
            target_schema=os.environ.get('MSSQL_TARGET_SCHEMA') or None,
            scope=os.environ.get('MIGRATION_SCOPE', MigrationScope.FULL.value),
            batch_size=_env_int('MIGRATION_BATCH_SIZE', 10000),
            max_parallelism=_env_int('MAX_PARALLEL_TRANSFERS', 4),
            command_timeout=_env_int('MIGRATION_COMMAND_TIMEOUT', 600),
            continue_on_error=_env_bool('CONTINUE_ON_ERROR', False),
            disable_indexes=_env_bool('DISABLE_INDEXES_DURING_MIGRATION', True),
            disable_constraints=_env_bool('DISABLE_CONSTRAINTS_DURING_MIGRATION', True),
            truncate_target=_env_bool('TRUNCATE_TARGET_TABLES', False),
            strict_load_order=_env_bool('STRICT_LOAD_ORDER', False),
            drop_existing_tables=_env_bool('DROP_EXISTING_TABLES', False),
            output_directory=os.environ.get('MIGRATION_OUTPUT_DIR', './migration_output'),
            include_tables=load_table_list_from_env('INCLUDE_TABLES'),
            exclude_tables=load_table_list_from_env('EXCLUDE_TABLES'),
            table_patterns=load_table_list_from_env('TABLE_PATTERNS'),
        )

    @classmethod
    def from_params(cls, params: Dict[str, Any], base: Optional["MigrationConfiguration"] = None) -> "MigrationConfiguration":
        """
        Overlay DAG params on a base configuration (environment by default).

        Params that are missing, None or empty strings keep the base value.
        Table lists accept the same formats as expand_table_list_param().
        """
        config = base or cls.from_env()
        overrides: Dict[str, Any] = {}

        for key in ('oracle_conn_id', 'mssql_conn_id', 'source_schema', 'target_schema',
                    'output_directory'):
            value = params.get(key)
            if value not in (None, ''):
                overrides[key] = value

        if params.get('scope') not in (None, ''):
            overrides['scope'] = MigrationScope(str(params['scope']).lower())

        for key in ('batch_size', 'max_parallelism', 'command_timeout'):
            value = params.get(key)
            if value not in (None, ''):
                overrides[key] = int(value)

        for key in ('continue_on_error', 'disable_indexes', 'disable_constraints',
                    'truncate_target', 'strict_load_order', 'drop_existing_tables'):
            value = params.get(key)
            if value is not None:
                overrides[key] = value if isinstance(value, bool) else str(value).lower() in ('1', 'true', 'yes')

        for key in ('include_tables', 'exclude_tables', 'table_patterns'):
            if key in params and params[key] is not None:
                expanded = expand_table_list_param(params[key])
                if expanded:
                    overrides[key] = expanded

        return replace(config, **overrides)

    def transfer_options(self) -> MigrationOptions:
        """Transfer engine options derived from this configuration."""
        return MigrationOptions(
            batch_size=self.batch_size,
            max_parallelism=self.max_parallelism,
            command_timeout=self.command_timeout,
            continue_on_error=self.continue_on_error,
            disable_indexes=self.disable_indexes,
            disable_constraints=self.disable_constraints,
            truncate_target=self.truncate_target,
            strict_load_order=self.strict_load_order,
            target_schema=self.target_schema,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'oracle_conn_id': self.oracle_conn_id,
            'mssql_conn_id': self.mssql_conn_id,
            'source_schema': self.source_schema,
            'target_schema': self.target_schema,
            'scope': self.scope.value,
            'batch_size': self.batch_size,
            'max_parallelism': self.max_parallelism,
            'command_timeout': self.command_timeout,
            'continue_on_error': self.continue_on_error,
            'disable_indexes': self.disable_indexes,
            'disable_constraints': self.disable_constraints,
            'truncate_target': self.truncate_target,
            'strict_load_order': self.strict_load_order,
            'drop_existing_tables': self.drop_existing_tables,
            'output_directory': self.output_directory,
            'include_tables': list(self.include_tables),
            'exclude_tables': list(self.exclude_tables),
            'table_patterns': list(self.table_patterns),
        }
