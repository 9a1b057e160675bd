"""
Tests for ODBC Connection Helper Module

These tests validate connection string construction from Airflow
connections, the command timeout, and cleanup and rollback on errors.
"""

import pytest
from unittest.mock import Mock, MagicMock, patch
from oracle_mssql_migration.odbc_helper import OdbcConnectionHelper


def _airflow_connection(host='localhost', port=1433, login='sa', password='TestPassword123', extra=None):
    conn = Mock()
    conn.host = host
    conn.port = port
    conn.schema = 'TargetDB'
    conn.login = login
    conn.password = password
    conn.extra_dejson = extra or {}
    return conn


class TestConnectionConfig:
    """Test connection string construction."""

    def _config(self, airflow_conn):
        with patch('oracle_mssql_migration.odbc_helper.BaseHook.get_connection') as mock_get_conn:
            mock_get_conn.return_value = airflow_conn
            helper = OdbcConnectionHelper('mssql_test')
            return helper._get_connection_config()

    def test_sql_auth(self):
        config = self._config(_airflow_connection())

        assert config['DRIVER'] == '{ODBC Driver 18 for SQL Server}'
        # Port 1433 is default, so not appended to server string
        assert config['SERVER'] == 'localhost'
        assert config['DATABASE'] == 'TargetDB'
        assert config['UID'] == 'sa'
        assert config['PWD'] == 'TestPassword123'
        assert config['Trusted_Connection'] == 'no'
        assert config['TrustServerCertificate'] == 'yes'

    def test_windows_auth(self):
        config = self._config(_airflow_connection(login=None, password=None))

        assert config['Trusted_Connection'] == 'yes'
        assert 'UID' not in config
        assert 'PWD' not in config

    def test_non_standard_port(self):
        config = self._config(_airflow_connection(host='sqlserver.example.com', port=14330))
        assert config['SERVER'] == 'sqlserver.example.com,14330'

    def test_missing_port_uses_default(self):
        config = self._config(_airflow_connection(host='sqlserver.example.com', port=None))
        assert config['SERVER'] == 'sqlserver.example.com'

    def test_driver_from_extra(self):
        config = self._config(_airflow_connection(extra={
            'driver': '{ODBC Driver 17 for SQL Server}',
            'trust_server_certificate': 'no',
        }))

        assert config['DRIVER'] == '{ODBC Driver 17 for SQL Server}'
        assert config['TrustServerCertificate'] == 'no'

    def test_config_is_cached(self):
        with patch('oracle_mssql_migration.odbc_helper.BaseHook.get_connection') as mock_get_conn:
            mock_get_conn.return_value = _airflow_connection()
            helper = OdbcConnectionHelper('mssql_test')
            helper._get_connection_config()
            helper._get_connection_config()

            mock_get_conn.assert_called_once_with('mssql_test')


class TestOdbcConnectionHelper:
    """Test query helpers against a mocked pyodbc."""

    @pytest.fixture
    def helper(self):
        with patch('oracle_mssql_migration.odbc_helper.BaseHook.get_connection') as mock_get_conn:
            mock_get_conn.return_value = _airflow_connection()
            helper = OdbcConnectionHelper('mssql_test', command_timeout=120)
            # Pre-cache the connection config so it doesn't need to call BaseHook again
            helper._get_connection_config()
            yield helper

    @pytest.fixture
    def mock_connection(self):
        with patch('oracle_mssql_migration.odbc_helper.pyodbc.connect') as mock_connect:
            connection = MagicMock()
            mock_connect.return_value = connection
            yield connection

    def test_build_connection_string(self, helper):
        conn_str = helper._build_connection_string()

        assert 'DRIVER={ODBC Driver 18 for SQL Server}' in conn_str
        assert 'SERVER=localhost' in conn_str
        assert 'DATABASE=TargetDB' in conn_str
        assert 'UID=sa' in conn_str
        assert 'PWD=TestPassword123' in conn_str

    def test_database_property(self, helper):
        assert helper.database == 'TargetDB'

    def test_get_conn_applies_command_timeout(self, helper, mock_connection):
        conn = helper.get_conn()

        assert conn is mock_connection
        assert conn.timeout == 120

    @patch('oracle_mssql_migration.odbc_helper.pyodbc.connect')
    def test_get_conn_without_timeout(self, mock_connect):
        with patch('oracle_mssql_migration.odbc_helper.BaseHook.get_connection') as mock_get_conn:
            mock_get_conn.return_value = _airflow_connection()
            helper = OdbcConnectionHelper('mssql_test')
            connection = Mock(spec=['cursor', 'close'])
            mock_connect.return_value = connection

            helper.get_conn()

            assert not hasattr(connection, 'timeout')
            assert mock_connect.call_args.kwargs['timeout'] == 30

    def test_get_records(self, helper, mock_connection):
        cursor = mock_connection.cursor.return_value
        cursor.fetchall.return_value = [(1, 'Alice'), (2, 'Bob')]

        result = helper.get_records('SELECT id, name FROM dbo.users')

        assert result == [(1, 'Alice'), (2, 'Bob')]
        cursor.execute.assert_called_once_with('SELECT id, name FROM dbo.users')
        mock_connection.close.assert_called_once()

    def test_get_records_with_parameters(self, helper, mock_connection):
        cursor = mock_connection.cursor.return_value
        cursor.fetchall.return_value = [(1, 'Alice')]

        helper.get_records('SELECT * FROM dbo.users WHERE id = ?', parameters=[1])

        cursor.execute.assert_called_once_with('SELECT * FROM dbo.users WHERE id = ?', [1])

    def test_get_first(self, helper, mock_connection):
        mock_connection.cursor.return_value.fetchone.return_value = (42,)
        assert helper.get_first('SELECT COUNT_BIG(*) FROM dbo.users') == (42,)

    def test_get_first_no_rows(self, helper, mock_connection):
        mock_connection.cursor.return_value.fetchone.return_value = None
        assert helper.get_first('SELECT 1 WHERE 1 = 0') is None

    def test_run_commits(self, helper, mock_connection):
        helper.run('CREATE TABLE dbo.t (id INT)')

        mock_connection.cursor.return_value.execute.assert_called_once_with('CREATE TABLE dbo.t (id INT)')
        mock_connection.commit.assert_called_once()

    def test_run_with_autocommit(self, helper, mock_connection):
        helper.run('DROP TABLE dbo.t', autocommit=True)

        assert mock_connection.autocommit is True
        mock_connection.commit.assert_not_called()

    def test_run_rolls_back_on_error(self, helper, mock_connection):
        mock_connection.cursor.return_value.execute.side_effect = Exception('Insert failed')

        with pytest.raises(Exception, match='Insert failed'):
            helper.run('INSERT INTO dbo.t VALUES (1)')

        mock_connection.rollback.assert_called_once()
        mock_connection.close.assert_called_once()

    def test_connection_closed_on_query_error(self, helper, mock_connection):
        mock_connection.cursor.return_value.execute.side_effect = Exception('Database error')

        with pytest.raises(Exception):
            helper.get_records('SELECT * FROM dbo.nonexistent')

        mock_connection.close.assert_called_once()

    @patch('oracle_mssql_migration.odbc_helper.logger')
    def test_error_logging_includes_query(self, mock_logger, helper, mock_connection):
        mock_connection.cursor.return_value.execute.side_effect = Exception('Syntax error')

        with pytest.raises(Exception):
            helper.get_first('SELECT * FROM bad syntax')

        assert any('SELECT * FROM bad syntax' in str(c) for c in mock_logger.error.call_args_list)

    def test_parameterization_prevents_sql_injection(self, helper, mock_connection):
        cursor = mock_connection.cursor.return_value
        cursor.fetchall.return_value = []
        malicious_input = "'; DROP TABLE users; --"

        helper.get_records('SELECT * FROM dbo.users WHERE name = ?', parameters=[malicious_input])

        assert cursor.execute.call_args.args == ('SELECT * FROM dbo.users WHERE name = ?', [malicious_input])
