"""
SQL Server ODBC Connection Helper

Target-side client for the migration. Resolves an Airflow connection into a
pyodbc connection string and offers the small MsSqlHook-like surface the
pipeline needs: get_records, get_first and run.

Every call opens its own connection, so parallel
table workers never share a pyodbc connection (they are not thread-safe).
"""

from typing import Any, List, Optional, Tuple
import contextlib
from airflow.hooks.base import BaseHook
import pyodbc
import logging

logger = logging.getLogger(__name__)

DEFAULT_DRIVER = '{ODBC Driver 18 for SQL Server}'


class OdbcConnectionHelper:
    """
    pyodbc access to the SQL Server target, configured from an Airflow connection.

    Extra fields on the Airflow connection:
        driver: ODBC driver name (default ODBC Driver 18 for SQL Server)
        trust_server_certificate: 'yes' / 'no' (default 'yes')
    """

    def __init__(self, odbc_conn_id: str, command_timeout: int = 0):
        """
        Initialize the ODBC connection helper.

        Args:
            odbc_conn_id: Airflow connection ID for the SQL Server target
            command_timeout: Per-statement timeout in seconds (0 = no limit)
        """
        self.conn_id = odbc_conn_id
        self.command_timeout = command_timeout
        self._conn_config = None

    def _get_connection_config(self) -> dict:
        """
        Get connection configuration from Airflow connection.

        Returns:
            Dictionary with ODBC connection parameters
        """
        if self._conn_config is None:
            conn = BaseHook.get_connection(self.conn_id)
            extra = conn.extra_dejson if isinstance(getattr(conn, 'extra_dejson', None), dict) else {}

            port = conn.port or 1433
            server = f"{conn.host},{port}" if port != 1433 else conn.host

            self._conn_config = {
                'DRIVER': extra.get('driver', DEFAULT_DRIVER),
                'SERVER': server,
                'DATABASE': conn.schema,
                'TrustServerCertificate': extra.get('trust_server_certificate', 'yes'),
            }

            # Support both SQL Auth and Windows Auth
            if conn.login:
                self._conn_config['UID'] = conn.login
                self._conn_config['PWD'] = conn.password or ''
                self._conn_config['Trusted_Connection'] = 'no'
            else:
                self._conn_config['Trusted_Connection'] = 'yes'

        return self._conn_config

    def _build_connection_string(self) -> str:
        config = self._get_connection_config()
        return ';'.join([f"{k}={v}" for k, v in config.items() if v])

    @property
    def database(self) -> Optional[str]:
        return self._get_connection_config().get('DATABASE')

    def get_conn(self) -> pyodbc.Connection:
        """
        Open a new pyodbc connection to the target.

        Returns:
            pyodbc Connection object with the command timeout applied
        """
        conn = pyodbc.connect(self._build_connection_string(), timeout=30)
        if self.command_timeout:
            conn.timeout = self.command_timeout
        return conn

    @contextlib.contextmanager
    def _executed(self, sql: str, parameters: Optional[List[Any]], autocommit: bool = False):
        """
        Open a connection, run one statement and yield (conn, cursor).

        On failure the statement is logged, an open transaction is rolled
        back and the error propagates. The connection is always closed.
        """
        conn = None
        try:
            conn = self.get_conn()
            if autocommit:
                conn.autocommit = True
            cursor = conn.cursor()
            if parameters:
                cursor.execute(sql, parameters)
            else:
                cursor.execute(sql)
            yield conn, cursor
        except Exception as e:
            logger.error(f"Statement failed on {self.conn_id}: {e}")
            logger.error(f"SQL: {sql}")
            if conn is not None and not autocommit:
                conn.rollback()
            raise
        finally:
            if conn is not None:
                conn.close()

    def get_records(self, sql: str, parameters: Optional[List[Any]] = None) -> List[Tuple[Any, ...]]:
        """Run a query and return every row."""
        with self._executed(sql, parameters) as (_, cursor):
            return cursor.fetchall()

    def get_first(self, sql: str, parameters: Optional[List[Any]] = None) -> Optional[Tuple[Any, ...]]:
        """Run a query and return its first row, or None when it has none."""
        with self._executed(sql, parameters) as (_, cursor):
            return cursor.fetchone()

    def run(self, sql: str, parameters: Optional[List[Any]] = None, autocommit: bool = False) -> None:
        """
        Execute a statement (typically DDL or DML) and commit it.

        Args:
            sql: Statement to execute
            parameters: Optional positional parameters
            autocommit: Run in autocommit mode instead of committing explicitly
        """
        with self._executed(sql, parameters, autocommit=autocommit) as (conn, _):
            if not autocommit:
                conn.commit()
