"""
Data Transfer Module

This module handles the actual data migration from Oracle to SQL Server:
per-table load phases, batched streaming copy, progress snapshots and the
multi-table worker pool.

Rows are streamed with cursor.fetchmany() from Oracle and written with
pyodbc fast_executemany, one commit per batch. Every table worker opens its
own source and target connections.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Optional
import contextlib
import decimal
import logging
import math
import queue
import threading
import time

from airflow.providers.oracle.hooks.oracle import OracleHook
import oracledb

from oracle_mssql_migration.dependency_resolver import order_tables_by_dependencies, referenced_tables
from oracle_mssql_migration.ddl_generator import quote_identifier
from oracle_mssql_migration.errors import TransferError
from oracle_mssql_migration.events import EventSink, default_sink
from oracle_mssql_migration.odbc_helper import OdbcConnectionHelper
from oracle_mssql_migration.schema_model import Column, Table
from oracle_mssql_migration.type_mapping import canonical_type_name

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "cancelled"

# How often a worker waiting on the load-order barrier re-checks cancellation
BARRIER_POLL_SECONDS = 0.5


@dataclass
class MigrationOptions:
    """Knobs for the transfer engine."""

    batch_size: int = 10000
    max_parallelism: int = 4
    command_timeout: int = 600
    continue_on_error: bool = False
    disable_indexes: bool = True
    disable_constraints: bool = True
    truncate_target: bool = False
    strict_load_order: bool = False
    # SQL Server schema to load into; defaults to each table's Oracle owner
    target_schema: Optional[str] = None

    def __post_init__(self):
        if self.batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {self.batch_size}")
        if self.max_parallelism < 1:
            raise ValueError(f"max_parallelism must be at least 1, got {self.max_parallelism}")
        if self.command_timeout < 0:
            raise ValueError(f"command_timeout cannot be negative, got {self.command_timeout}")


class CancellationToken:
    """
    Cooperative cancellation signal shared by all workers.

    Checked before each table starts and between batches; a batch that is
    already being written always finishes.
    """

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._event.wait(timeout)


@dataclass(frozen=True)
class MigrationProgress:
    """Immutable progress snapshot, emitted after each committed batch."""

    table_name: str
    rows_processed: int
    total_rows: int
    percent_complete: float
    elapsed_seconds: float
    rows_per_second: float
    estimated_seconds_remaining: float
    is_final: bool = False

    @property
    def estimated_time_remaining(self) -> timedelta:
        return timedelta(seconds=self.estimated_seconds_remaining)


def compute_progress(
    table_name: str,
    rows_processed: int,
    total_rows: int,
    elapsed_seconds: float,
    is_final: bool = False,
) -> MigrationProgress:
    """
    Build a progress snapshot.

    Percent is 0 when the row estimate is 0 or unknown, capped at 100, and
    forced to 100 on the final batch. Estimates come from optimizer
    statistics and can be stale in both directions.

    Args:
        table_name: Qualified source table name
        rows_processed: Rows committed so far
        total_rows: Estimated total rows (may be 0)
        elapsed_seconds: Time since the copy started
        is_final: True when this snapshot follows the last batch

    Returns:
        MigrationProgress snapshot
    """
    if total_rows <= 0:
        percent = 0.0
    elif is_final:
        percent = 100.0
    else:
        percent = min(100.0, rows_processed * 100.0 / total_rows)

    throughput = rows_processed / elapsed_seconds if elapsed_seconds > 0 else 0.0
    remaining = total_rows - rows_processed
    if remaining <= 0 or throughput <= 0 or is_final:
        eta = 0.0
    else:
        eta = remaining / throughput

    return MigrationProgress(
        table_name=table_name,
        rows_processed=rows_processed,
        total_rows=total_rows,
        percent_complete=percent,
        elapsed_seconds=elapsed_seconds,
        rows_per_second=throughput,
        estimated_seconds_remaining=eta,
        is_final=is_final,
    )


class ProgressObserver:
    """Receives progress snapshots. Called from worker threads."""

    def on_progress(self, progress: MigrationProgress) -> None:
        raise NotImplementedError


class QueueProgressObserver(ProgressObserver):
    """
    Channel of progress snapshots.

    Producers (table workers) never block on the consumer: when the queue is
    bounded and full, the oldest snapshot is dropped.
    """

    def __init__(self, maxsize: int = 0):
        self.queue: "queue.Queue[MigrationProgress]" = queue.Queue(maxsize=maxsize)
        self.dropped = 0

    def on_progress(self, progress: MigrationProgress) -> None:
        while True:
            try:
                self.queue.put_nowait(progress)
                return
            except queue.Full:
                try:
                    self.queue.get_nowait()
                    self.dropped += 1
                except queue.Empty:
                    pass

    def drain(self) -> List[MigrationProgress]:
        """Return every snapshot currently in the channel."""
        items = []
        while True:
            try:
                items.append(self.queue.get_nowait())
            except queue.Empty:
                return items


class CallbackProgressObserver(ProgressObserver):
    def __init__(self, callback: Callable[[MigrationProgress], None]):
        self._callback = callback

    def on_progress(self, progress: MigrationProgress) -> None:
        self._callback(progress)


class LoggingProgressObserver(ProgressObserver):
    """Log a progress line per snapshot through an event sink."""

    def __init__(self, events: Optional[EventSink] = None):
        self.events = events or default_sink(__name__)

    def on_progress(self, progress: MigrationProgress) -> None:
        self.events.info(
            f"Progress {progress.table_name}: {progress.rows_processed:,}/{progress.total_rows:,} rows",
            percent=f"{progress.percent_complete:.1f}",
            rows_per_second=int(progress.rows_per_second),
            eta_seconds=int(progress.estimated_seconds_remaining),
        )


@dataclass
class TableMigrationResult:
    table_name: str
    success: bool
    rows_migrated: int = 0
    duration_seconds: float = 0.0
    error_message: Optional[str] = None
    warnings: List[str] = field(default_factory=list)

    @property
    def cancelled(self) -> bool:
        return not self.success and self.error_message == CANCELLED_MESSAGE

    def to_dict(self) -> Dict[str, Any]:
        return {
            'table_name': self.table_name,
            'success': self.success,
            'rows_migrated': self.rows_migrated,
            'duration_seconds': round(self.duration_seconds, 3),
            'error_message': self.error_message,
            'warnings': list(self.warnings),
        }


@dataclass
class BatchMigrationResult:
    """
    Aggregate of a multi-table run.

    Workers call add() concurrently; totals and the result list are only
    changed under the lock.
    """

    total_tables: int = 0
    attempted_tables: int = 0
    successful_tables: int = 0
    failed_tables: int = 0
    total_rows_migrated: int = 0
    duration_seconds: float = 0.0
    table_results: List[TableMigrationResult] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def add(self, result: TableMigrationResult) -> None:
        with self._lock:
            self.table_results.append(result)
            self.attempted_tables = len(self.table_results)
            if result.success:
                self.successful_tables += 1
            else:
                self.failed_tables += 1
            self.total_rows_migrated += result.rows_migrated

    @property
    def success(self) -> bool:
        return self.failed_tables == 0 and self.attempted_tables == self.total_tables

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            return {
                'total_tables': self.total_tables,
                'attempted_tables': self.attempted_tables,
                'successful_tables': self.successful_tables,
                'failed_tables': self.failed_tables,
                'total_rows_migrated': self.total_rows_migrated,
                'duration_seconds': round(self.duration_seconds, 3),
                'success': self.failed_tables == 0 and self.attempted_tables == self.total_tables,
                'table_results': [r.to_dict() for r in self.table_results],
                'timestamp': datetime.now().isoformat(),
            }


class _Cancelled(Exception):
    """Raised inside a table worker when the cancellation token fires."""


def output_type_handler(cursor, metadata):
    """
    Fetch CLOB/NCLOB/BLOB columns as str/bytes instead of LOB locators, and
    fractional or unsized NUMBER columns as Decimal instead of float.
    """
    if metadata.type_code == oracledb.DB_TYPE_NUMBER:
        # Unsized NUMBER reports precision 0 and scale -127
        if metadata.scale != 0 or not metadata.precision:
            return cursor.var(decimal.Decimal, arraysize=cursor.arraysize)
        return None
    if metadata.type_code == oracledb.DB_TYPE_CLOB:
        return cursor.var(oracledb.DB_TYPE_LONG, arraysize=cursor.arraysize)
    if metadata.type_code == oracledb.DB_TYPE_NCLOB:
        return cursor.var(oracledb.DB_TYPE_LONG_NVARCHAR, arraysize=cursor.arraysize)
    if metadata.type_code == oracledb.DB_TYPE_BLOB:
        return cursor.var(oracledb.DB_TYPE_LONG_RAW, arraysize=cursor.arraysize)
    return None


def quote_oracle_identifier(identifier: str) -> str:
    return '"' + identifier.replace('"', '""') + '"'


# DATETIMEOFFSET literal; pyodbc drops tzinfo from datetime parameters
TIME_ZONE_FORMAT = 'YYYY-MM-DD HH24:MI:SS.FF7 TZH:TZM'
TIME_ZONE_TYPES = ("TIMESTAMP WITH TIME ZONE", "TIMESTAMP WITH LOCAL TIME ZONE")


def source_expression(column: Column) -> str:
    """
    SELECT-list expression for a source column.

    Time zone aware timestamps are read as text carrying their offset;
    LOCAL TIME ZONE values are first resolved to the session time zone.
    """
    name = quote_oracle_identifier(column.column_name)
    if canonical_type_name(column.data_type) in TIME_ZONE_TYPES:
        return f"TO_CHAR(CAST({name} AS TIMESTAMP WITH TIME ZONE), '{TIME_ZONE_FORMAT}')"
    return name


def _normalize_interval_ym(value: Any) -> Any:
    if value is None:
        return None
    # oracledb.IntervalYM(years, months)
    return value.years * 12 + value.months


def _normalize_interval_ds(value: Any) -> Any:
    if value is None:
        return None
    return value // timedelta(milliseconds=1)


def _normalize_rowid(value: Any) -> Any:
    # Row addresses mean nothing on the target
    return None


def _normalize_bfile(value: Any) -> Any:
    if value is None:
        return None
    directory, file_name = value.getfilename()
    return f"{directory}/{file_name}"


def _normalize_default(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, float) and not math.isfinite(value):
        return None
    if isinstance(value, decimal.Decimal) and not value.is_finite():
        return None
    if isinstance(value, oracledb.LOB):
        return value.read()
    return value


NORMALIZERS = {
    "INTERVAL YEAR TO MONTH": _normalize_interval_ym,
    "INTERVAL DAY TO SECOND": _normalize_interval_ds,
    "ROWID": _normalize_rowid,
    "UROWID": _normalize_rowid,
    "BFILE": _normalize_bfile,
}


def value_normalizer(column: Column) -> Callable[[Any], Any]:
    """Pick the per-value conversion for a source column's Oracle type."""
    return NORMALIZERS.get(canonical_type_name(column.data_type), _normalize_default)


def normalize_row(row, normalizers: List[Callable[[Any], Any]]) -> tuple:
    return tuple(fn(value) for fn, value in zip(normalizers, row))


class DataMigrator:
    """Copy table data from Oracle to SQL Server."""

    def __init__(
        self,
        oracle_conn_id: str,
        mssql_conn_id: str,
        options: Optional[MigrationOptions] = None,
        events: Optional[EventSink] = None,
    ):
        """
        Initialize the data migrator.

        Args:
            oracle_conn_id: Airflow connection ID for the Oracle source
            mssql_conn_id: Airflow connection ID for the SQL Server target
            options: Engine options; defaults apply when omitted
            events: Event sink; defaults to this module's logger
        """
        self.options = options or MigrationOptions()
        self.events = events or default_sink(__name__)
        self.oracle_hook = OracleHook(oracle_conn_id=oracle_conn_id)
        self.mssql_helper = OdbcConnectionHelper(
            odbc_conn_id=mssql_conn_id,
            command_timeout=self.options.command_timeout,
        )

    @contextlib.contextmanager
    def _oracle_connection(self):
        conn = self.oracle_hook.get_conn()
        try:
            if self.options.command_timeout:
                conn.call_timeout = self.options.command_timeout * 1000
            conn.outputtypehandler = output_type_handler
            yield conn
        finally:
            conn.close()

    @contextlib.contextmanager
    def _mssql_connection(self):
        conn = self.mssql_helper.get_conn()
        try:
            yield conn
        finally:
            conn.close()

    def _target_name(self, table: Table) -> str:
        schema_name = self.options.target_schema or table.schema_name
        return f"{quote_identifier(schema_name)}.{quote_identifier(table.table_name)}"

    def _best_effort(self, conn, statements: List[str], phase: str, table: Table,
                     result: TableMigrationResult) -> None:
        """Run phase statements; failures are warnings, never fatal."""
        cursor = conn.cursor()
        for statement in statements:
            try:
                cursor.execute(statement)
                conn.commit()
            except Exception as e:
                conn.rollback()
                message = f"{phase} failed: {e}"
                result.warnings.append(message)
                self.events.warning(message, table=table.full_name, statement=statement)

    def _disabled_index_names(self, conn, target_name: str) -> List[str]:
        cursor = conn.cursor()
        cursor.execute(
            """
            SELECT i.name
            FROM sys.indexes i
            WHERE i.object_id = OBJECT_ID(?)
              AND i.is_primary_key = 0
              AND i.type_desc = 'NONCLUSTERED'
              AND i.is_disabled = 0
              AND i.name IS NOT NULL
            ORDER BY i.name
            """,
            target_name,
        )
        return [row[0] for row in cursor.fetchall()]

    def migrate_table(
        self,
        table: Table,
        progress: Optional[ProgressObserver] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> TableMigrationResult:
        """
        Migrate one table's rows.

        Phases: disable secondary indexes, disable constraint checking, bulk
        copy, re-enable constraints with validation, rebuild indexes. All
        phases except the copy are best-effort.

        Args:
            table: Source table (its columns drive the column mapping)
            progress: Optional observer receiving a snapshot per batch
            cancel_token: Optional cancellation signal, checked between batches

        Returns:
            TableMigrationResult; a cancelled table is a failed result with
            error_message "cancelled"

        Raises:
            TransferError: The copy failed and continue_on_error is not set
        """
        result = TableMigrationResult(table_name=table.full_name, success=False)
        start_time = time.monotonic()

        if cancel_token is not None and cancel_token.is_cancelled:
            result.error_message = CANCELLED_MESSAGE
            return result

        target_name = self._target_name(table)
        self.events.info("Starting table migration", table=table.full_name, estimated_rows=table.row_count)

        try:
            with self._mssql_connection() as target_conn:
                disabled_indexes: List[str] = []
                if self.options.disable_indexes:
                    try:
                        disabled_indexes = self._disabled_index_names(target_conn, target_name)
                    except Exception as e:
                        message = f"Listing target indexes failed: {e}"
                        result.warnings.append(message)
                        self.events.warning(message, table=table.full_name)
                    self._best_effort(
                        target_conn,
                        [f"ALTER INDEX {quote_identifier(i)} ON {target_name} DISABLE" for i in disabled_indexes],
                        "Disabling index",
                        table,
                        result,
                    )

                if self.options.disable_constraints:
                    self._best_effort(
                        target_conn, [f"ALTER TABLE {target_name} NOCHECK CONSTRAINT ALL"],
                        "Disabling constraints", table, result,
                    )

                try:
                    result.rows_migrated = self._copy_rows(table, target_conn, target_name, progress, cancel_token)
                    result.success = True
                except _Cancelled as e:
                    result.rows_migrated = e.args[0]
                    result.error_message = CANCELLED_MESSAGE
                    self.events.warning("Table migration cancelled", table=table.full_name,
                                        rows_migrated=result.rows_migrated)
                finally:
                    if self.options.disable_constraints:
                        self._best_effort(
                            target_conn, [f"ALTER TABLE {target_name} WITH CHECK CHECK CONSTRAINT ALL"],
                            "Re-enabling constraints", table, result,
                        )
                    if disabled_indexes:
                        self._best_effort(
                            target_conn,
                            [f"ALTER INDEX {quote_identifier(i)} ON {target_name} REBUILD" for i in disabled_indexes],
                            "Rebuilding index",
                            table,
                            result,
                        )
        except TransferError as e:
            result.rows_migrated = e.rows_migrated
            result.error_message = str(e)
            result.duration_seconds = time.monotonic() - start_time
            self.events.error("Table migration failed", table=table.full_name, error=str(e))
            if not self.options.continue_on_error:
                raise
            return result
        except Exception as e:
            # Target connection could not be opened
            error = TransferError(f"target connection failed: {e}", object_name=table.full_name)
            result.error_message = str(error)
            result.duration_seconds = time.monotonic() - start_time
            self.events.error("Table migration failed", table=table.full_name, error=str(e))
            if not self.options.continue_on_error:
                raise error from e
            return result

        result.duration_seconds = time.monotonic() - start_time
        if result.success:
            self.events.info(
                "Table migration completed",
                table=table.full_name,
                rows=result.rows_migrated,
                seconds=round(result.duration_seconds, 2),
            )
        return result

    def _copy_rows(
        self,
        table: Table,
        target_conn,
        target_name: str,
        progress: Optional[ProgressObserver],
        cancel_token: Optional[CancellationToken],
    ) -> int:
        """
        Stream rows batch by batch; returns rows committed.

        One batch of lookahead is kept so the snapshot after the last batch
        is flagged final.
        """
        columns = [c for c in table.ordered_columns if not c.is_virtual]
        if not columns:
            raise TransferError("table has no copyable columns", object_name=table.full_name)

        batch_size = self.options.batch_size
        normalizers = [value_normalizer(c) for c in columns]
        source_columns = ', '.join(source_expression(c) for c in columns)
        select_sql = (
            f"SELECT {source_columns} FROM {quote_oracle_identifier(table.schema_name)}.{quote_oracle_identifier(table.table_name)}"
        )
        target_columns = ', '.join(quote_identifier(c.column_name) for c in columns)
        placeholders = ', '.join('?' for _ in columns)
        insert_sql = f"INSERT INTO {target_name} ({target_columns}) VALUES ({placeholders})"
        has_identity = any(c.is_identity for c in columns)

        rows_processed = 0
        target_cursor = target_conn.cursor()
        target_cursor.fast_executemany = True

        try:
            with self._oracle_connection() as source_conn:
                source_cursor = source_conn.cursor()
                source_cursor.arraysize = batch_size
                source_cursor.execute(select_sql)

                if self.options.truncate_target:
                    self._truncate(target_conn, target_name, table)

                if has_identity:
                    target_cursor.execute(f"SET IDENTITY_INSERT {target_name} ON")

                start_time = time.monotonic()
                batch = source_cursor.fetchmany(batch_size)
                while batch:
                    next_batch = source_cursor.fetchmany(batch_size)

                    target_cursor.executemany(insert_sql, [normalize_row(row, normalizers) for row in batch])
                    target_conn.commit()
                    rows_processed += len(batch)

                    if progress is not None:
                        progress.on_progress(compute_progress(
                            table.full_name,
                            rows_processed,
                            table.row_count,
                            time.monotonic() - start_time,
                            is_final=not next_batch,
                        ))

                    batch = next_batch
                    if batch and cancel_token is not None and cancel_token.is_cancelled:
                        raise _Cancelled(rows_processed)
        except (_Cancelled, TransferError):
            raise
        except Exception as e:
            try:
                target_conn.rollback()
            except Exception as rollback_error:
                self.events.warning("Rollback after failed batch failed", table=table.full_name,
                                    error=str(rollback_error))
            raise TransferError(
                f"bulk copy failed after {rows_processed} rows: {e}",
                object_name=table.full_name,
                rows_migrated=rows_processed,
            ) from e
        finally:
            if has_identity:
                try:
                    target_cursor.execute(f"SET IDENTITY_INSERT {target_name} OFF")
                except Exception as e:
                    self.events.warning("Resetting IDENTITY_INSERT failed", table=table.full_name, error=str(e))

        return rows_processed

    def _truncate(self, target_conn, target_name: str, table: Table) -> None:
        cursor = target_conn.cursor()
        try:
            cursor.execute(f"TRUNCATE TABLE {target_name}")
        except Exception as e:
            # TRUNCATE is refused on tables referenced by a foreign key
            self.events.debug("TRUNCATE refused, deleting instead", table=table.full_name, error=str(e))
            target_conn.rollback()
            cursor.execute(f"DELETE FROM {target_name}")
        target_conn.commit()

    def migrate_all_tables(
        self,
        tables: List[Table],
        progress: Optional[ProgressObserver] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> BatchMigrationResult:
        """
        Migrate many tables with up to max_parallelism workers.

        Tables are dequeued in dependency order. With strict_load_order a
        worker also waits until every referenced table has finished before
        starting a referencing one; without it the order is only a hint.

        Args:
            tables: Tables to migrate
            progress: Optional observer shared by all workers
            cancel_token: Optional cancellation signal, checked before each
                table and between batches

        Returns:
            BatchMigrationResult; tables never started because of cancellation
            are not counted as attempted

        Raises:
            CycleDetectedError: Foreign keys between the tables form a cycle
            TransferError: A copy failed and continue_on_error is not set;
                raised after in-flight tables finish
        """
        ordered = order_tables_by_dependencies(tables)
        batch_result = BatchMigrationResult(total_tables=len(ordered))
        start_time = time.monotonic()

        work_queue: "queue.Queue[Table]" = queue.Queue()
        for table in ordered:
            work_queue.put(table)

        names = {t.table_name for t in ordered}
        finished = {t.table_name: threading.Event() for t in ordered}
        stop = threading.Event()
        first_error: List[TransferError] = []
        error_lock = threading.Lock()

        def should_stop() -> bool:
            return stop.is_set() or (cancel_token is not None and cancel_token.is_cancelled)

        def wait_for_dependencies(table: Table) -> bool:
            for dependency in referenced_tables(table, names):
                while not finished[dependency].wait(BARRIER_POLL_SECONDS):
                    if should_stop():
                        return False
            return True

        def worker() -> None:
            while not should_stop():
                try:
                    table = work_queue.get_nowait()
                except queue.Empty:
                    return
                try:
                    if self.options.strict_load_order and not wait_for_dependencies(table):
                        return
                    if should_stop():
                        return
                    started = time.monotonic()
                    try:
                        result = self.migrate_table(table, progress, cancel_token)
                    except TransferError as e:
                        result = TableMigrationResult(
                            table_name=table.full_name,
                            success=False,
                            rows_migrated=e.rows_migrated,
                            duration_seconds=time.monotonic() - started,
                            error_message=str(e),
                        )
                        with error_lock:
                            first_error.append(e)
                        stop.set()
                    batch_result.add(result)
                finally:
                    finished[table.table_name].set()

        workers = min(self.options.max_parallelism, len(ordered)) or 1
        self.events.info("Starting data migration", tables=len(ordered), workers=workers)

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix='table-migration') as executor:
            futures = [executor.submit(worker) for _ in range(workers)]
            for future in futures:
                future.result()

        batch_result.duration_seconds = time.monotonic() - start_time
        self.events.info(
            "Data migration finished",
            attempted=batch_result.attempted_tables,
            succeeded=batch_result.successful_tables,
            failed=batch_result.failed_tables,
            rows=batch_result.total_rows_migrated,
            seconds=round(batch_result.duration_seconds, 2),
        )

        if first_error:
            raise first_error[0]
        return batch_result
