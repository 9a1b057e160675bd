"""
Oracle Schema Extraction Module

This module extracts schema metadata from Oracle through the ALL_* catalog
views and builds the Schema Model consumed by the converter.

Any catalog failure raises ExtractionError naming the object being read: a
partial schema is not safe to build the target on.
"""

from typing import Any, Dict, List, Optional, Tuple
import logging
import re

from airflow.providers.oracle.hooks.oracle import OracleHook

from oracle_mssql_migration.errors import ExtractionError
from oracle_mssql_migration.events import EventSink, default_sink
from oracle_mssql_migration.schema_model import (
    Column,
    Constraint,
    ConstraintKind,
    ForeignKey,
    Index,
    IndexKind,
    Routine,
    Schema,
    Sequence,
    Table,
    Trigger,
    View,
)
from oracle_mssql_migration.table_config import is_table_selected

logger = logging.getLogger(__name__)

# Oracle block size assumed for size estimates (used for ETA only)
BLOCK_SIZE_BYTES = 8192

CHARACTER_TYPES = ('CHAR', 'NCHAR', 'VARCHAR2', 'NVARCHAR2', 'VARCHAR')

# System-generated NOT NULL checks look like: "COL" IS NOT NULL
_NOT_NULL_CHECK = re.compile(r'^\s*"?([^"\s]+)"?\s+IS\s+NOT\s+NULL\s*$', re.IGNORECASE)

_QUOTED_NAME = re.compile(r'"([^"]+)"')


class OracleSchemaExtractor:
    """Extract schema information from an Oracle database."""

    def __init__(self, oracle_conn_id: str, owner: Optional[str] = None, events: Optional[EventSink] = None):
        """
        Initialize the schema extractor.

        Args:
            oracle_conn_id: Airflow connection ID for Oracle
            owner: Schema owner to read; defaults to the session's current schema
            events: Event sink; defaults to this module's logger
        """
        self.oracle_hook = OracleHook(oracle_conn_id=oracle_conn_id)
        self.events = events or default_sink(__name__)
        self._owner = owner.upper() if owner else None

    def _records(self, sql: str, parameters: Dict[str, Any], object_name: str) -> List[Tuple[Any, ...]]:
        try:
            return self.oracle_hook.get_records(sql, parameters=parameters) or []
        except Exception as e:
            raise ExtractionError(f"catalog query failed: {e}", object_name=object_name) from e

    def _first(self, sql: str, parameters: Optional[Dict[str, Any]], object_name: str) -> Optional[Tuple[Any, ...]]:
        try:
            return self.oracle_hook.get_first(sql, parameters=parameters)
        except Exception as e:
            raise ExtractionError(f"catalog query failed: {e}", object_name=object_name) from e

    @property
    def owner(self) -> str:
        if self._owner is None:
            row = self._first("SELECT SYS_CONTEXT('USERENV', 'CURRENT_SCHEMA') FROM DUAL", None, 'session')
            if not row or not row[0]:
                raise ExtractionError("could not determine current schema", object_name='session')
            self._owner = row[0]
        return self._owner

    def get_database_info(self) -> Dict[str, str]:
        """Return the current schema, database name and server version string."""
        row = self._first(
            "SELECT SYS_CONTEXT('USERENV', 'CURRENT_SCHEMA'), SYS_CONTEXT('USERENV', 'DB_NAME') FROM DUAL",
            None,
            'session',
        )
        version = self._first(
            "SELECT product || ' ' || version FROM product_component_version "
            "WHERE product LIKE 'Oracle%' AND ROWNUM = 1",
            None,
            'product_component_version',
        )
        return {
            'schema_name': (row[0] if row else None) or 'Unknown',
            'database_name': (row[1] if row else None) or 'Unknown',
            'version': (version[0] if version else None) or 'Unknown',
        }

    def get_tables(
        self,
        include_tables: Optional[List[str]] = None,
        exclude_tables: Optional[List[str]] = None,
        table_patterns: Optional[List[str]] = None,
    ) -> List[Dict[str, Any]]:
        """
        List tables in the owner's schema with their size estimates.

        Row and size estimates come from optimizer statistics, so they may be
        stale or zero; they only feed progress ETA.

        Returns:
            List of table information dictionaries
        """
        query = """
        SELECT
            t.table_name,
            t.num_rows,
            t.blocks,
            t.partitioned,
            t.tablespace_name
        FROM all_tables t
        WHERE t.owner = :owner
          AND t.nested = 'NO'
          AND t.secondary = 'N'
          AND t.table_name NOT LIKE 'BIN$%'
          AND NOT EXISTS (
              SELECT 1 FROM all_mviews m
              WHERE m.owner = t.owner AND m.mview_name = t.table_name
          )
        ORDER BY t.table_name
        """
        rows = self._records(query, {'owner': self.owner}, f"{self.owner} tables")

        result = []
        for row in rows:
            table_name = row[0]
            if not is_table_selected(table_name, include_tables, exclude_tables, table_patterns):
                continue
            result.append({
                'table_name': table_name,
                'row_count': int(row[1] or 0),
                'size_bytes': int(row[2] or 0) * BLOCK_SIZE_BYTES,
                'is_partitioned': (row[3] or '').strip().upper() == 'YES',
                'tablespace': row[4],
            })

        self.events.info("Found tables", schema=self.owner, count=len(result))
        return result

    def get_columns(self, table_name: str) -> List[Column]:
        """
        Get the visible columns of a table in column order.

        Ordinal positions are renumbered 1..n so they stay contiguous when
        the catalog has gaps (invisible columns).
        """
        query = """
        SELECT
            column_name,
            data_type,
            data_length,
            char_length,
            data_precision,
            data_scale,
            nullable,
            data_default,
            virtual_column,
            identity_column
        FROM all_tab_cols
        WHERE owner = :owner
          AND table_name = :table_name
          AND hidden_column = 'NO'
          AND column_id IS NOT NULL
        ORDER BY column_id
        """
        rows = self._records(
            query, {'owner': self.owner, 'table_name': table_name}, f"{self.owner}.{table_name} columns"
        )

        columns = []
        for position, row in enumerate(rows, start=1):
            data_type = row[1]
            is_virtual = (row[8] or '').upper() == 'YES'
            default_text = row[7].strip() if isinstance(row[7], str) else None
            is_identity = (row[9] or '').upper() == 'YES'

            if data_type and data_type.upper() in CHARACTER_TYPES and row[3]:
                max_length = int(row[3])
            else:
                max_length = int(row[2]) if row[2] is not None else None

            columns.append(Column(
                column_name=row[0],
                data_type=data_type,
                ordinal_position=position,
                max_length=max_length,
                precision=int(row[4]) if row[4] is not None else None,
                scale=int(row[5]) if row[5] is not None else None,
                is_nullable=(row[6] or 'Y').upper() == 'Y',
                # Identity columns report their sequence as default
                default_value=None if (is_virtual or is_identity) else (default_text or None),
                is_identity=is_identity,
                is_virtual=is_virtual,
                virtual_expression=default_text if is_virtual else None,
            ))

        return columns

    def _constraint_columns(self, owner: str, constraint_name: str) -> Tuple[str, ...]:
        query = """
        SELECT column_name
        FROM all_cons_columns
        WHERE owner = :owner
          AND constraint_name = :constraint_name
        ORDER BY position
        """
        rows = self._records(query, {'owner': owner, 'constraint_name': constraint_name}, constraint_name)
        return tuple(r[0] for r in rows)

    def get_constraints(self, table_name: str) -> Tuple[List[Constraint], Dict[str, str]]:
        """
        Get primary key, unique and check constraints for a table.

        Returns:
            (constraints, backing_indexes) where backing_indexes maps the name
            of each index that enforces a P/U constraint to its constraint type
        """
        query = """
        SELECT
            constraint_name,
            constraint_type,
            search_condition,
            status,
            validated,
            generated,
            index_name
        FROM all_constraints
        WHERE owner = :owner
          AND table_name = :table_name
          AND constraint_type IN ('P', 'U', 'C')
        ORDER BY constraint_name
        """
        rows = self._records(
            query, {'owner': self.owner, 'table_name': table_name}, f"{self.owner}.{table_name} constraints"
        )

        constraints = []
        backing_indexes = {}
        for row in rows:
            name, constraint_type, condition = row[0], row[1], row[2]
            is_enabled = (row[3] or '') == 'ENABLED'
            is_validated = (row[4] or '') == 'VALIDATED'

            if constraint_type == 'C':
                match = _NOT_NULL_CHECK.match(condition or '')
                if match and (row[5] or '') == 'GENERATED NAME':
                    constraints.append(Constraint(
                        constraint_name=name,
                        kind=ConstraintKind.NOT_NULL,
                        columns=(match.group(1),),
                        is_enabled=is_enabled,
                        is_validated=is_validated,
                    ))
                    continue
                kind = ConstraintKind.CHECK
            elif constraint_type == 'P':
                kind = ConstraintKind.PRIMARY_KEY
            else:
                kind = ConstraintKind.UNIQUE

            if row[6] and constraint_type in ('P', 'U'):
                backing_indexes[row[6]] = constraint_type

            constraints.append(Constraint(
                constraint_name=name,
                kind=kind,
                columns=self._constraint_columns(self.owner, name),
                check_condition=condition if kind is ConstraintKind.CHECK else None,
                is_enabled=is_enabled,
                is_validated=is_validated,
            ))

        return constraints, backing_indexes

    def get_indexes(self, table_name: str, columns: List[Column],
                    backing_indexes: Optional[Dict[str, str]] = None) -> List[Index]:
        """
        Get indexes for a table.

        The index enforcing the primary key is flagged is_primary_key; indexes
        enforcing unique constraints are skipped because the constraint
        recreates them. Function-based index keys are resolved to the table
        columns referenced by their expressions.
        """
        backing_indexes = backing_indexes or {}
        query = """
        SELECT
            index_name,
            index_type,
            uniqueness,
            tablespace_name
        FROM all_indexes
        WHERE table_owner = :owner
          AND table_name = :table_name
          AND index_type <> 'LOB'
        ORDER BY index_name
        """
        rows = self._records(
            query, {'owner': self.owner, 'table_name': table_name}, f"{self.owner}.{table_name} indexes"
        )
        column_names = {c.column_name for c in columns}

        indexes = []
        for row in rows:
            index_name = row[0]
            if backing_indexes.get(index_name) == 'U':
                continue

            kind = IndexKind.from_oracle(row[1], row[2])
            key_columns, expressions = self._index_columns(index_name, column_names)

            indexes.append(Index(
                index_name=index_name,
                kind=kind,
                columns=tuple(key_columns),
                function_expression=', '.join(expressions) if expressions else None,
                is_primary_key=backing_indexes.get(index_name) == 'P',
                tablespace=row[3],
                unique=(row[2] or '').upper() == 'UNIQUE',
            ))

        return indexes

    def _index_columns(self, index_name: str, column_names: set) -> Tuple[List[str], List[str]]:
        query = """
        SELECT c.column_name, e.column_expression
        FROM all_ind_columns c
        LEFT JOIN all_ind_expressions e
          ON e.index_owner = c.index_owner
         AND e.index_name = c.index_name
         AND e.column_position = c.column_position
        WHERE c.index_owner = :owner
          AND c.index_name = :index_name
        ORDER BY c.column_position
        """
        rows = self._records(query, {'owner': self.owner, 'index_name': index_name}, index_name)

        key_columns: List[str] = []
        expressions: List[str] = []
        for column_name, expression in rows:
            if expression:
                expressions.append(expression)
                for referenced in _QUOTED_NAME.findall(expression):
                    if referenced in column_names and referenced not in key_columns:
                        key_columns.append(referenced)
            elif column_name not in key_columns:
                key_columns.append(column_name)
        return key_columns, expressions

    def get_foreign_keys(self, table_name: str) -> List[ForeignKey]:
        """Get foreign keys declared on a table."""
        query = """
        SELECT
            c.constraint_name,
            c.r_constraint_name,
            c.delete_rule,
            c.status,
            rc.table_name AS referenced_table,
            rc.owner AS referenced_owner
        FROM all_constraints c
        JOIN all_constraints rc
          ON c.r_constraint_name = rc.constraint_name
         AND c.r_owner = rc.owner
        WHERE c.owner = :owner
          AND c.table_name = :table_name
          AND c.constraint_type = 'R'
        ORDER BY c.constraint_name
        """
        rows = self._records(
            query, {'owner': self.owner, 'table_name': table_name}, f"{self.owner}.{table_name} foreign keys"
        )

        foreign_keys = []
        for row in rows:
            fk_name, referenced_constraint, referenced_owner = row[0], row[1], row[5]
            foreign_keys.append(ForeignKey(
                foreign_key_name=fk_name,
                from_table=table_name,
                from_columns=self._constraint_columns(self.owner, fk_name),
                to_table=row[4],
                to_columns=self._constraint_columns(referenced_owner, referenced_constraint),
                on_delete=row[2] or 'NO ACTION',
                is_enabled=(row[3] or '') == 'ENABLED',
                to_schema=referenced_owner if referenced_owner != self.owner else None,
            ))
        return foreign_keys

    def get_table(self, table_info: Dict[str, Any]) -> Table:
        """Assemble the full Table record for one entry from get_tables()."""
        table_name = table_info['table_name']
        columns = self.get_columns(table_name)
        constraints, backing_indexes = self.get_constraints(table_name)

        try:
            return Table(
                schema_name=self.owner,
                table_name=table_name,
                columns=tuple(columns),
                indexes=tuple(self.get_indexes(table_name, columns, backing_indexes)),
                constraints=tuple(constraints),
                foreign_keys=tuple(self.get_foreign_keys(table_name)),
                row_count=table_info.get('row_count', 0),
                size_bytes=table_info.get('size_bytes', 0),
                is_partitioned=table_info.get('is_partitioned', False),
                tablespace=table_info.get('tablespace'),
            )
        except ValueError as e:
            raise ExtractionError(str(e), object_name=f"{self.owner}.{table_name}") from e

    def get_sequences(self) -> List[Sequence]:
        query = """
        SELECT
            sequence_name,
            last_number,
            increment_by,
            min_value,
            max_value,
            cycle_flag,
            cache_size
        FROM all_sequences
        WHERE sequence_owner = :owner
          AND sequence_name NOT LIKE 'ISEQ$$%'
        ORDER BY sequence_name
        """
        rows = self._records(query, {'owner': self.owner}, f"{self.owner} sequences")
        return [
            Sequence(
                sequence_name=row[0],
                current_value=int(row[1]),
                increment_by=int(row[2]),
                min_value=int(row[3]),
                max_value=int(row[4]),
                is_cyclic=(row[5] or 'N') == 'Y',
                cache_size=int(row[6] or 0),
            )
            for row in rows
        ]

    def get_views(self) -> List[View]:
        """Get views and materialized views with their defining query text."""
        views = [
            View(view_name=row[0], definition=row[1] or '')
            for row in self._records(
                "SELECT view_name, text FROM all_views WHERE owner = :owner ORDER BY view_name",
                {'owner': self.owner},
                f"{self.owner} views",
            )
        ]
        views.extend(
            View(view_name=row[0], definition=row[1] or '', is_materialized=True)
            for row in self._records(
                "SELECT mview_name, query FROM all_mviews WHERE owner = :owner ORDER BY mview_name",
                {'owner': self.owner},
                f"{self.owner} materialized views",
            )
        )
        return views

    def _source_text(self, name: str, object_type: str) -> str:
        query = """
        SELECT text
        FROM all_source
        WHERE owner = :owner
          AND name = :name
          AND type = :object_type
        ORDER BY line
        """
        rows = self._records(query, {'owner': self.owner, 'name': name, 'object_type': object_type}, name)
        return ''.join(r[0] or '' for r in rows)

    def get_routines(self) -> List[Routine]:
        """Get procedures, functions and packages with their PL/SQL source."""
        query = """
        SELECT object_name, object_type
        FROM all_objects
        WHERE owner = :owner
          AND object_type IN ('PROCEDURE', 'FUNCTION', 'PACKAGE', 'PACKAGE BODY')
        ORDER BY object_type, object_name
        """
        rows = self._records(query, {'owner': self.owner}, f"{self.owner} routines")
        return [
            Routine(routine_name=name, routine_type=object_type, source_code=self._source_text(name, object_type))
            for name, object_type in rows
        ]

    def get_triggers(self) -> List[Trigger]:
        query = """
        SELECT
            trigger_name,
            table_name,
            trigger_type,
            triggering_event,
            status,
            description,
            trigger_body
        FROM all_triggers
        WHERE owner = :owner
        ORDER BY trigger_name
        """
        rows = self._records(query, {'owner': self.owner}, f"{self.owner} triggers")
        return [
            Trigger(
                trigger_name=row[0],
                table_name=row[1] or '',
                trigger_type=row[2] or '',
                trigger_event=row[3] or '',
                is_enabled=(row[4] or '') == 'ENABLED',
                source_code=f"CREATE OR REPLACE TRIGGER {row[5] or ''}{row[6] or ''}",
            )
            for row in rows
        ]

    def extract_schema(
        self,
        include_tables: Optional[List[str]] = None,
        exclude_tables: Optional[List[str]] = None,
        table_patterns: Optional[List[str]] = None,
        include_code_objects: bool = True,
    ) -> Schema:
        """
        Extract the complete schema model.

        Args:
            include_tables: Table names to include (all when empty)
            exclude_tables: Names or wildcard patterns to exclude
            table_patterns: Wildcard patterns to include
            include_code_objects: Also read views, routines and triggers

        Returns:
            A fresh Schema instance

        Raises:
            ExtractionError: On any catalog access failure
        """
        info = self.get_database_info()
        self.events.info(
            "Analyzing Oracle schema",
            schema=self.owner,
            database=info['database_name'],
            version=info['version'],
        )

        tables = [
            self.get_table(t)
            for t in self.get_tables(include_tables, exclude_tables, table_patterns)
        ]
        sequences = self.get_sequences()
        views: List[View] = []
        routines: List[Routine] = []
        triggers: List[Trigger] = []
        if include_code_objects:
            views = self.get_views()
            routines = self.get_routines()
            selected = {t.table_name for t in tables}
            triggers = [t for t in self.get_triggers() if t.table_name in selected]

        schema = Schema(
            schema_name=self.owner,
            database_name=info['database_name'],
            tables=tuple(tables),
            views=tuple(views),
            sequences=tuple(sequences),
            routines=tuple(routines),
            triggers=tuple(triggers),
        )
        self.events.info(
            "Schema analysis completed",
            tables=len(schema.tables),
            views=len(schema.views),
            sequences=len(schema.sequences),
            routines=len(schema.routines),
            triggers=len(schema.triggers),
        )
        return schema
