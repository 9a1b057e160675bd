"""
SQL Server DDL Generation Module

This module generates SQL Server DDL from the (converted) Oracle schema model,
groups it into the five migration phases, and executes it on the target.

Generation is pure: the same model and timestamp always produce the same
scripts. Only the primary key is created with the table; every other index,
constraint and foreign key is a separate statement so it can be applied
after the bulk load.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Tuple
import logging
import re

from oracle_mssql_migration.errors import ConversionWarning, DDLExecutionError
from oracle_mssql_migration.events import EventSink, default_sink
from oracle_mssql_migration.schema_model import (
    Constraint,
    ConstraintKind,
    ForeignKey,
    Index,
    IndexKind,
    Schema,
    Sequence,
    Table,
)
from oracle_mssql_migration.type_mapping import (
    collect_column_warnings,
    convert_check_condition,
    convert_expression,
    identity_column_type,
    map_table_schema,
    map_type,
)

logger = logging.getLogger(__name__)

BIGINT_MIN = -9223372036854775808
BIGINT_MAX = 9223372036854775807

# Oracle delete rules SQL Server understands; anything else becomes NO ACTION
REFERENTIAL_ACTIONS = ('CASCADE', 'SET NULL', 'SET DEFAULT', 'NO ACTION')

GO_SEPARATOR = re.compile(r'^\s*GO\s*;?\s*$', re.IGNORECASE | re.MULTILINE)


@dataclass
class MigrationScripts:
    """Ordered DDL bundle, one list per migration phase."""

    pre_migration: List[str] = field(default_factory=list)
    table_creation: List[str] = field(default_factory=list)
    index_creation: List[str] = field(default_factory=list)
    constraint_creation: List[str] = field(default_factory=list)
    post_migration: List[str] = field(default_factory=list)
    warnings: Dict[str, str] = field(default_factory=dict)

    PHASES = (
        ('01_pre_migration', 'pre_migration'),
        ('02_create_tables', 'table_creation'),
        ('03_create_indexes', 'index_creation'),
        ('04_create_constraints', 'constraint_creation'),
        ('05_post_migration', 'post_migration'),
    )

    def phases(self) -> List[Tuple[str, List[str]]]:
        return [(name, getattr(self, attr)) for name, attr in self.PHASES]

    def add_warning(self, warning: ConversionWarning) -> None:
        self.warnings[warning.object_name] = warning.message

    def conversion_warnings(self) -> List[ConversionWarning]:
        return [ConversionWarning(k, v) for k, v in self.warnings.items()]


def quote_identifier(identifier: str) -> str:
    """
    Quote a SQL Server identifier with brackets.

    Embedded closing brackets are doubled so names cannot break out.
    """
    return f"[{identifier.replace(']', ']]')}]"


def split_batches(script: str) -> List[str]:
    """Split a script on GO batch separators; GO is a client command, not T-SQL."""
    return [part.strip() for part in GO_SEPARATOR.split(script) if part.strip()]


class DDLGenerator:
    """Generate SQL Server DDL statements from schema metadata."""

    def __init__(self, target_schema: Optional[str] = None, events: Optional[EventSink] = None):
        """
        Initialize the DDL generator.

        Args:
            target_schema: SQL Server schema to create objects in. Defaults to
                the Oracle owner name of each table.
            events: Event sink; defaults to this module's logger
        """
        self.target_schema = target_schema
        self.events = events or default_sink(__name__)

    def _schema_for(self, table: Table) -> str:
        return self.target_schema or table.schema_name

    def _qualified(self, table: Table) -> str:
        return f"{quote_identifier(self._schema_for(table))}.{quote_identifier(table.table_name)}"

    def _qualified_name(self, schema_name: str, table_name: str) -> str:
        return f"{quote_identifier(self.target_schema or schema_name)}.{quote_identifier(table_name)}"

    def generate_column_definition(self, column, warnings: Optional[Dict[str, str]] = None,
                                   table: Optional[Table] = None) -> str:
        """
        Generate one column line for CREATE TABLE.

        Virtual columns become computed columns; the expression is only run
        through the built-in substitution pass.
        """
        name = quote_identifier(column.column_name)

        if column.is_virtual and column.virtual_expression:
            if warnings is not None and table is not None:
                warnings[f"{table.full_name}.{column.column_name}"] = (
                    "Virtual column emitted as computed column. Review expression: "
                    f"{column.virtual_expression}"
                )
            return f"    {name} AS ({column.virtual_expression})"

        data_type = column.target_data_type or map_type(
            column.data_type, column.max_length, column.precision, column.scale
        )
        if column.is_identity:
            data_type = identity_column_type(data_type)
        parts = [name, data_type]

        if column.is_identity:
            parts.append("IDENTITY(1,1)")

        parts.append("NULL" if column.is_nullable else "NOT NULL")

        if column.default_value:
            parts.append(f"DEFAULT {column.default_value}")

        return '    ' + ' '.join(parts)

    def generate_create_table(self, table: Table, warnings: Optional[Dict[str, str]] = None) -> str:
        """
        Generate CREATE TABLE for a converted table.

        Columns are listed in ordinal order; the primary key, if any, is
        added inline as a clustered constraint.

        Args:
            table: Converted table (columns carry target_data_type)
            warnings: Optional dict collecting warnings keyed by object identity

        Returns:
            CREATE TABLE DDL statement
        """
        lines = [f"-- Create table {table.full_name}", f"CREATE TABLE {self._qualified(table)} ("]

        definitions = [
            self.generate_column_definition(column, warnings, table)
            for column in table.ordered_columns
        ]

        pk = table.primary_key
        if pk is not None and pk.columns:
            pk_columns = ', '.join(quote_identifier(c) for c in pk.columns)
            definitions.append(
                f"    CONSTRAINT {quote_identifier(pk.constraint_name)} PRIMARY KEY CLUSTERED ({pk_columns})"
            )

        lines.append(',\n'.join(definitions))
        lines.append(");")
        return '\n'.join(lines)

    def generate_drop_table(self, table: Table) -> str:
        """Generate DROP TABLE IF EXISTS (SQL Server 2016+)."""
        return f"DROP TABLE IF EXISTS {self._qualified(table)};"

    def generate_truncate_table(self, table: Table) -> str:
        return f"TRUNCATE TABLE {self._qualified(table)};"

    def generate_create_index(self, index: Index, table: Table,
                              warnings: Optional[Dict[str, str]] = None) -> Optional[str]:
        """
        Generate CREATE INDEX for a secondary index.

        Every index kind becomes an ordinary NONCLUSTERED index. Kinds with no
        SQL Server counterpart are annotated with a warning instead of
        rejected.

        Returns:
            CREATE INDEX statement, or None for primary key indexes and
            indexes with no base columns
        """
        if index.is_primary_key:
            return None

        key = f"{table.full_name}.{index.index_name}"
        lines = []
        note = None

        if index.kind is IndexKind.BITMAP:
            note = "Bitmap index converted to regular non-clustered index. Consider a filtered or columnstore index."
            lines.append(f"-- Original Oracle bitmap index: {index.index_name}")
        elif index.kind is IndexKind.FUNCTION_BASED:
            note = (
                "Function-based index converted to regular non-clustered index on its base columns. "
                f"Original expression: {index.function_expression or 'unknown'}. Manual conversion may be required."
            )
            lines.append(f"-- Original function-based index expression: {index.function_expression or 'unknown'}")
        elif index.kind in (IndexKind.SPATIAL, IndexKind.FULLTEXT, IndexKind.HASH):
            note = f"{index.kind.value} index converted to regular non-clustered index."
        elif index.kind not in (IndexKind.BTREE, IndexKind.UNIQUE):
            raise ValueError(f"Unhandled index kind {index.kind}")

        if note and index.is_unique:
            note = note.replace("regular non-clustered index", "unique non-clustered index", 1)

        if not index.columns:
            if warnings is not None:
                warnings[key] = (
                    f"Index has no base columns (expression: {index.function_expression or 'unknown'}). "
                    "Not created; manual conversion required."
                )
            return None

        if note and warnings is not None:
            warnings[key] = note

        unique_clause = "UNIQUE " if index.is_unique else ""
        columns = ', '.join(f"{quote_identifier(c)} ASC" for c in index.columns)
        statement = (
            f"CREATE {unique_clause}NONCLUSTERED INDEX {quote_identifier(index.index_name)}\n"
            f"    ON {self._qualified(table)} ({columns})"
        )
        if index.included_columns:
            included = ', '.join(quote_identifier(c) for c in index.included_columns)
            statement += f"\n    INCLUDE ({included})"
        if index.filter_condition:
            statement += f"\n    WHERE {convert_expression(index.filter_condition)}"

        lines.append(statement + ";")
        return '\n'.join(lines)

    def generate_constraint(self, constraint: Constraint, table: Table) -> Optional[str]:
        """
        Generate ALTER TABLE ADD CONSTRAINT for unique and check constraints.

        Primary keys are created with the table; NOT NULL and DEFAULT live in
        the column definition. Disabled source constraints are added
        WITH NOCHECK and then disabled, preserving their state.
        """
        kind = constraint.kind
        if kind in (ConstraintKind.PRIMARY_KEY, ConstraintKind.NOT_NULL, ConstraintKind.DEFAULT):
            return None

        if kind is ConstraintKind.UNIQUE:
            body = f"UNIQUE ({', '.join(quote_identifier(c) for c in constraint.columns)})"
        elif kind is ConstraintKind.CHECK:
            body = f"CHECK ({convert_check_condition(constraint.check_condition)})"
        else:
            raise ValueError(f"Unhandled constraint kind {kind}")

        check_clause = "" if constraint.is_enabled else " WITH NOCHECK"
        statement = (
            f"ALTER TABLE {self._qualified(table)}{check_clause}\n"
            f"    ADD CONSTRAINT {quote_identifier(constraint.constraint_name)} {body};"
        )
        if not constraint.is_enabled:
            statement += (
                f"\nALTER TABLE {self._qualified(table)} "
                f"NOCHECK CONSTRAINT {quote_identifier(constraint.constraint_name)};"
            )
        return statement

    def generate_foreign_key(self, foreign_key: ForeignKey, table: Table) -> str:
        """Generate ALTER TABLE ADD CONSTRAINT ... FOREIGN KEY."""
        from_columns = ', '.join(quote_identifier(c) for c in foreign_key.from_columns)
        to_columns = ', '.join(quote_identifier(c) for c in foreign_key.to_columns)
        referenced = self._qualified_name(foreign_key.to_schema or table.schema_name, foreign_key.to_table)

        check_clause = "" if foreign_key.is_enabled else " WITH NOCHECK"
        lines = [
            f"ALTER TABLE {self._qualified(table)}{check_clause}",
            f"    ADD CONSTRAINT {quote_identifier(foreign_key.foreign_key_name)}",
            f"    FOREIGN KEY ({from_columns})",
            f"    REFERENCES {referenced} ({to_columns})",
        ]
        delete_action = (foreign_key.on_delete or 'NO ACTION').upper()
        if delete_action not in REFERENTIAL_ACTIONS:
            delete_action = 'NO ACTION'
        if delete_action != 'NO ACTION':
            lines.append(f"    ON DELETE {delete_action}")
        update_action = (foreign_key.on_update or 'NO ACTION').upper()
        if update_action in REFERENTIAL_ACTIONS and update_action != 'NO ACTION':
            lines.append(f"    ON UPDATE {update_action}")

        statement = '\n'.join(lines) + ";"
        if not foreign_key.is_enabled:
            statement += (
                f"\nALTER TABLE {self._qualified(table)} "
                f"NOCHECK CONSTRAINT {quote_identifier(foreign_key.foreign_key_name)};"
            )
        return statement

    def generate_sequence(self, sequence: Sequence, schema_name: str) -> str:
        """Convert an Oracle sequence to CREATE SEQUENCE."""
        name = f"{quote_identifier(self.target_schema or schema_name)}.{quote_identifier(sequence.sequence_name)}"
        lines = [
            f"-- Create sequence {sequence.sequence_name}",
            f"CREATE SEQUENCE {name} AS BIGINT",
            f"    START WITH {_clamp_bigint(sequence.current_value)}",
            f"    INCREMENT BY {sequence.increment_by}",
            f"    MINVALUE {_clamp_bigint(sequence.min_value)}",
            f"    MAXVALUE {_clamp_bigint(sequence.max_value)}",
            "    CYCLE" if sequence.is_cyclic else "    NO CYCLE",
        ]
        if sequence.cache_size > 0:
            lines.append(f"    CACHE {sequence.cache_size}")
        else:
            lines.append("    NO CACHE")
        return '\n'.join(lines) + ";"

    def generate_migration_scripts(self, schema: Schema, generated_at: Optional[datetime] = None) -> MigrationScripts:
        """
        Generate the complete, phase-ordered script bundle for a schema.

        Args:
            schema: Extracted source schema; it is converted here, not mutated
            generated_at: Optional timestamp for the header; the header
                line is omitted when None, so output depends only on schema

        Returns:
            MigrationScripts bundle with warnings keyed by object identity
        """
        self.events.info("Generating migration scripts", schema=schema.schema_name)

        scripts = MigrationScripts()
        warnings = scripts.warnings
        target_schema = self.target_schema or schema.schema_name
        converted_tables = [map_table_schema(t) for t in schema.tables]

        # Pre-migration
        scripts.pre_migration.append(f"-- Migration for schema: {schema.schema_name}")
        scripts.pre_migration.append(f"-- Database: {schema.database_name}")
        if generated_at is not None:
            scripts.pre_migration.append(f"-- Generated: {generated_at.strftime('%Y-%m-%d %H:%M:%S')}")
        literal = target_schema.replace("'", "''")
        quoted = quote_identifier(target_schema).replace("'", "''")
        scripts.pre_migration.append(
            f"IF NOT EXISTS (SELECT * FROM sys.schemas WHERE name = N'{literal}')\n"
            f"BEGIN\n"
            f"    EXEC('CREATE SCHEMA {quoted}')\n"
            f"END\n"
            f"GO"
        )

        # Sequences and tables (no foreign keys)
        for sequence in schema.sequences:
            scripts.table_creation.append(self.generate_sequence(sequence, schema.schema_name))

        for table in converted_tables:
            scripts.table_creation.append(self.generate_create_table(table, warnings))
            for key, note in collect_column_warnings(table).items():
                warnings.setdefault(key, note)

        # Indexes
        for table in converted_tables:
            for index in table.indexes:
                statement = self.generate_create_index(index, table, warnings)
                if statement:
                    scripts.index_creation.append(statement)

        # Unique/check constraints, then foreign keys
        for table in converted_tables:
            for constraint in table.constraints:
                statement = self.generate_constraint(constraint, table)
                if statement:
                    scripts.constraint_creation.append(statement)

        for table in converted_tables:
            for foreign_key in table.foreign_keys:
                scripts.constraint_creation.append(self.generate_foreign_key(foreign_key, table))

        # Post-migration
        scripts.post_migration.append("-- Update statistics")
        for table in converted_tables:
            scripts.post_migration.append(f"UPDATE STATISTICS {self._qualified(table)};")

        self._append_unconverted_source(schema, scripts)

        self.events.info(
            "Migration scripts generated",
            tables=len(converted_tables),
            indexes=len(scripts.index_creation),
            warnings=len(warnings),
        )
        return scripts

    def _append_unconverted_source(self, schema: Schema, scripts: MigrationScripts) -> None:
        """Carry views, routines and triggers through as commented source text."""
        objects = (
            [(f"{'MATERIALIZED VIEW' if v.is_materialized else 'VIEW'}", v.view_name, v.definition)
             for v in schema.views]
            + [(r.routine_type, r.routine_name, r.source_code) for r in schema.routines]
            + [('TRIGGER', t.trigger_name, t.source_code) for t in schema.triggers]
        )
        for object_type, name, source in objects:
            scripts.post_migration.append(_comment_block(object_type, name, source))
            scripts.warnings[f"{schema.schema_name}.{name}"] = (
                f"{object_type} carried through as Oracle source text. Manual conversion required."
            )


def _clamp_bigint(value: int) -> int:
    # Oracle sequences allow 28 digits
    return max(BIGINT_MIN, min(value, BIGINT_MAX))


def _comment_block(object_type: str, name: str, source: str) -> str:
    body = '\n'.join(f"-- {line}" for line in (source or '').splitlines())
    return f"-- Oracle {object_type} {name} (not converted)\n{body}"


def execute_scripts(
    helper,
    statements: List[str],
    continue_on_error: bool = False,
    events: Optional[EventSink] = None,
    cancel_token=None,
) -> List[DDLExecutionError]:
    """
    Execute DDL statements on the SQL Server target in order.

    Each statement is split on GO separators and committed batch by batch.

    Args:
        helper: OdbcConnectionHelper for the target
        statements: Statements from one or more MigrationScripts phases
        continue_on_error: Record failures and keep going instead of raising
        events: Event sink; defaults to this module's logger
        cancel_token: Optional CancellationToken checked before each batch

    Returns:
        Errors recorded when continue_on_error is set (empty otherwise)

    Raises:
        DDLExecutionError: First failure, when continue_on_error is not set
    """
    events = events or default_sink(__name__)
    failures: List[DDLExecutionError] = []

    conn = helper.get_conn()
    try:
        cursor = conn.cursor()
        for statement in statements:
            for batch in split_batches(statement):
                if _is_comment_only(batch):
                    continue
                if cancel_token is not None and cancel_token.is_cancelled:
                    events.warning("DDL execution cancelled", remaining_statement=_head(batch))
                    return failures
                events.debug("Executing DDL", statement=_head(batch))
                try:
                    cursor.execute(batch)
                    conn.commit()
                except Exception as e:
                    conn.rollback()
                    error = DDLExecutionError(str(e), object_name=_head(batch), statement=batch)
                    if not continue_on_error:
                        raise error from e
                    events.error("DDL statement failed", statement=_head(batch), error=str(e))
                    failures.append(error)
    finally:
        conn.close()

    return failures


def _is_comment_only(batch: str) -> bool:
    return all(not line.strip() or line.strip().startswith('--') for line in batch.splitlines())


def _head(statement: str) -> str:
    """First non-comment line of a statement, used to name the object in errors."""
    for line in statement.splitlines():
        stripped = line.strip()
        if stripped and not stripped.startswith('--'):
            return stripped[:120]
    return statement.strip()[:120]
