"""
Tests for Oracle Schema Extraction Module

These tests run the extractor against a fake catalog served through a
mocked OracleHook and check the resulting schema model.
"""

import pytest
from unittest.mock import Mock, patch
from oracle_mssql_migration.errors import ExtractionError
from oracle_mssql_migration.schema_extractor import OracleSchemaExtractor
from oracle_mssql_migration.schema_model import ConstraintKind, IndexKind


CATALOG = {
    'tables': [
        ('DEPARTMENTS', 27, 5, 'NO', 'USERS'),
        ('EMPLOYEES', 107, None, 'YES', 'USERS'),
        ('JOB_HISTORY', None, None, 'NO', 'USERS'),
    ],
    'columns': {
        'DEPARTMENTS': [
            ('DEPARTMENT_ID', 'NUMBER', 22, 0, 4, 0, 'N', None, 'NO', 'YES'),
            ('DEPARTMENT_NAME', 'VARCHAR2', 120, 30, None, None, 'N', None, 'NO', 'NO'),
            ('CREATED_AT', 'DATE', 7, 0, None, None, 'Y', 'SYSDATE ', 'NO', 'NO'),
        ],
        'EMPLOYEES': [
            ('EMPLOYEE_ID', 'NUMBER', 22, 0, 6, 0, 'N', None, 'NO', 'NO'),
            ('EMAIL', 'VARCHAR2', 25, 25, None, None, 'N', None, 'NO', 'NO'),
            ('SALARY', 'NUMBER', 22, 0, 8, 2, 'Y', None, 'NO', 'NO'),
            ('ANNUAL_SALARY', 'NUMBER', 22, 0, None, None, 'Y', '"SALARY"*12', 'YES', 'NO'),
            ('DEPARTMENT_ID', 'NUMBER', 22, 0, 4, 0, 'Y', None, 'NO', 'NO'),
        ],
        'JOB_HISTORY': [
            ('EMPLOYEE_ID', 'NUMBER', 22, 0, 6, 0, 'N', None, 'NO', 'NO'),
        ],
    },
    'constraints': {
        'DEPARTMENTS': [
            ('DEPT_ID_PK', 'P', None, 'ENABLED', 'VALIDATED', 'USER NAME', 'DEPT_ID_PK'),
            ('SYS_C0011', 'C', '"DEPARTMENT_NAME" IS NOT NULL', 'ENABLED', 'VALIDATED', 'GENERATED NAME', None),
        ],
        'EMPLOYEES': [
            ('EMP_EMAIL_UK', 'U', None, 'ENABLED', 'VALIDATED', 'USER NAME', 'EMP_EMAIL_UK'),
            ('EMP_EMP_ID_PK', 'P', None, 'ENABLED', 'VALIDATED', 'USER NAME', 'EMP_EMP_ID_PK'),
            ('EMP_SALARY_MIN', 'C', 'salary > 0', 'ENABLED', 'NOT VALIDATED', 'USER NAME', None),
        ],
    },
    'constraint_columns': {
        'DEPT_ID_PK': [('DEPARTMENT_ID',)],
        'EMP_EMAIL_UK': [('EMAIL',)],
        'EMP_EMP_ID_PK': [('EMPLOYEE_ID',)],
        'EMP_SALARY_MIN': [('SALARY',)],
        'EMP_DEPT_FK': [('DEPARTMENT_ID',)],
        'JHIST_EMP_FK': [('EMPLOYEE_ID',)],
    },
    'indexes': {
        'DEPARTMENTS': [
            ('DEPT_ID_PK', 'NORMAL', 'UNIQUE', 'USERS'),
        ],
        'EMPLOYEES': [
            ('EMP_EMAIL_UK', 'NORMAL', 'UNIQUE', 'USERS'),
            ('EMP_EMP_ID_PK', 'NORMAL', 'UNIQUE', 'USERS'),
            ('EMP_UPPER_EMAIL_IX', 'FUNCTION-BASED NORMAL', 'NONUNIQUE', 'USERS'),
            ('EMP_LOWER_EMAIL_UX', 'FUNCTION-BASED NORMAL', 'UNIQUE', 'USERS'),
            ('EMP_DEPT_IX', 'BITMAP', 'NONUNIQUE', 'USERS'),
        ],
    },
    'index_columns': {
        'DEPT_ID_PK': [('DEPARTMENT_ID', None)],
        'EMP_EMP_ID_PK': [('EMPLOYEE_ID', None)],
        'EMP_UPPER_EMAIL_IX': [('SYS_NC00009$', 'UPPER("EMAIL")')],
        'EMP_LOWER_EMAIL_UX': [('SYS_NC00010$', 'LOWER("EMAIL")')],
        'EMP_DEPT_IX': [('DEPARTMENT_ID', None)],
    },
    'foreign_keys': {
        'EMPLOYEES': [('EMP_DEPT_FK', 'DEPT_ID_PK', 'SET NULL', 'ENABLED', 'DEPARTMENTS', 'HR')],
        'JOB_HISTORY': [('JHIST_EMP_FK', 'EMP_EMP_ID_PK', 'NO ACTION', 'DISABLED', 'EMPLOYEES', 'PAYROLL')],
    },
    'sequences': [
        ('EMPLOYEES_SEQ', 207, 1, 1, 9999999999, 'N', 20),
    ],
    'views': [('EMP_DETAILS_VIEW', 'SELECT e.employee_id FROM employees e')],
    'mviews': [('DEPT_SUMMARY_MV', 'SELECT department_id, COUNT(*) FROM employees GROUP BY department_id')],
    'objects': [('SECURE_DML', 'PROCEDURE')],
    'source': {
        'SECURE_DML': [('PROCEDURE secure_dml\n',), ('IS\nBEGIN\n  NULL;\nEND;\n',)],
    },
    'triggers': [
        ('SECURE_EMPLOYEES', 'EMPLOYEES', 'BEFORE STATEMENT', 'INSERT OR UPDATE OR DELETE', 'ENABLED',
         'secure_employees\nBEFORE INSERT OR UPDATE OR DELETE ON employees\n', 'BEGIN\n  secure_dml;\nEND;'),
        ('REGIONS_TRG', 'REGIONS', 'BEFORE EACH ROW', 'INSERT', 'DISABLED', 'regions_trg\n', 'BEGIN NULL; END;'),
    ],
}


def fake_get_records(sql, parameters=None):
    parameters = parameters or {}
    table = parameters.get('table_name')
    if 'FROM all_tables' in sql:
        return CATALOG['tables']
    if 'FROM all_tab_cols' in sql:
        return CATALOG['columns'].get(table, [])
    if 'FROM all_cons_columns' in sql:
        return CATALOG['constraint_columns'].get(parameters['constraint_name'], [])
    if "constraint_type = 'R'" in sql:
        return CATALOG['foreign_keys'].get(table, [])
    if 'FROM all_constraints' in sql:
        return CATALOG['constraints'].get(table, [])
    if 'FROM all_indexes' in sql:
        return CATALOG['indexes'].get(table, [])
    if 'FROM all_ind_columns' in sql:
        return CATALOG['index_columns'].get(parameters['index_name'], [])
    if 'FROM all_sequences' in sql:
        return CATALOG['sequences']
    if 'FROM all_views' in sql:
        return CATALOG['views']
    if 'FROM all_mviews' in sql:
        return CATALOG['mviews']
    if 'FROM all_objects' in sql:
        return CATALOG['objects']
    if 'FROM all_source' in sql:
        return CATALOG['source'].get(parameters['name'], [])
    if 'FROM all_triggers' in sql:
        return CATALOG['triggers']
    raise AssertionError(f"unexpected catalog query: {sql}")


def fake_get_first(sql, parameters=None):
    if 'product_component_version' in sql:
        return ('Oracle Database 19c Enterprise Edition 19.0.0.0.0',)
    if "'DB_NAME'" in sql:
        return ('HR', 'ORCLPDB1')
    return ('HR',)


@pytest.fixture
def mock_oracle_hook():
    hook = Mock()
    hook.get_records.side_effect = fake_get_records
    hook.get_first.side_effect = fake_get_first
    return hook


@pytest.fixture
def extractor(mock_oracle_hook):
    with patch('oracle_mssql_migration.schema_extractor.OracleHook') as MockOracle:
        MockOracle.return_value = mock_oracle_hook
        return OracleSchemaExtractor('oracle_test')


class TestSessionInfo:
    def test_owner_from_current_schema(self, extractor, mock_oracle_hook):
        assert extractor.owner == 'HR'
        assert extractor.owner == 'HR'
        # Cached after the first lookup
        assert mock_oracle_hook.get_first.call_count == 1

    def test_explicit_owner_is_uppercased(self, mock_oracle_hook):
        with patch('oracle_mssql_migration.schema_extractor.OracleHook', return_value=mock_oracle_hook):
            extractor = OracleSchemaExtractor('oracle_test', owner='hr')

        assert extractor.owner == 'HR'
        mock_oracle_hook.get_first.assert_not_called()

    def test_database_info(self, extractor):
        info = extractor.get_database_info()

        assert info['schema_name'] == 'HR'
        assert info['database_name'] == 'ORCLPDB1'
        assert info['version'].startswith('Oracle Database 19c')


class TestTables:
    def test_size_estimates(self, extractor):
        tables = {t['table_name']: t for t in extractor.get_tables()}

        assert tables['DEPARTMENTS']['row_count'] == 27
        assert tables['DEPARTMENTS']['size_bytes'] == 5 * 8192
        assert tables['EMPLOYEES']['is_partitioned'] is True
        # Missing statistics are zero, not an error
        assert tables['JOB_HISTORY']['row_count'] == 0
        assert tables['JOB_HISTORY']['size_bytes'] == 0

    def test_owner_bound_as_parameter(self, extractor, mock_oracle_hook):
        extractor.get_tables()

        sql, = mock_oracle_hook.get_records.call_args.args
        assert ':owner' in sql
        assert mock_oracle_hook.get_records.call_args.kwargs['parameters'] == {'owner': 'HR'}

    def test_include_and_exclude(self, extractor):
        names = [t['table_name'] for t in extractor.get_tables(exclude_tables=['JOB_*'])]
        assert names == ['DEPARTMENTS', 'EMPLOYEES']

        names = [t['table_name'] for t in extractor.get_tables(include_tables=['employees'])]
        assert names == ['EMPLOYEES']


class TestColumns:
    def test_character_length_uses_char_length(self, extractor):
        columns = {c.column_name: c for c in extractor.get_columns('DEPARTMENTS')}

        assert columns['DEPARTMENT_NAME'].max_length == 30
        assert columns['DEPARTMENT_NAME'].is_nullable is False

    def test_identity_column_has_no_default(self, extractor):
        column = extractor.get_columns('DEPARTMENTS')[0]

        assert column.is_identity is True
        assert column.default_value is None

    def test_default_text_trimmed(self, extractor):
        column = extractor.get_columns('DEPARTMENTS')[2]
        assert column.default_value == 'SYSDATE'

    def test_virtual_column(self, extractor):
        column = extractor.get_columns('EMPLOYEES')[3]

        assert column.is_virtual is True
        assert column.virtual_expression == '"SALARY"*12'
        assert column.default_value is None

    def test_ordinals_contiguous(self, extractor):
        positions = [c.ordinal_position for c in extractor.get_columns('EMPLOYEES')]
        assert positions == [1, 2, 3, 4, 5]


class TestConstraintsAndIndexes:
    def test_not_null_check_classified(self, extractor):
        constraints, _ = extractor.get_constraints('DEPARTMENTS')
        kinds = {c.constraint_name: c.kind for c in constraints}

        assert kinds['DEPT_ID_PK'] is ConstraintKind.PRIMARY_KEY
        assert kinds['SYS_C0011'] is ConstraintKind.NOT_NULL

    def test_check_condition_and_validation_state(self, extractor):
        constraints, backing = extractor.get_constraints('EMPLOYEES')
        check = next(c for c in constraints if c.kind is ConstraintKind.CHECK)

        assert check.check_condition == 'salary > 0'
        assert check.columns == ('SALARY',)
        assert check.is_validated is False
        assert backing == {'EMP_EMAIL_UK': 'U', 'EMP_EMP_ID_PK': 'P'}

    def test_indexes(self, extractor):
        columns = extractor.get_columns('EMPLOYEES')
        _, backing = extractor.get_constraints('EMPLOYEES')

        indexes = {i.index_name: i for i in extractor.get_indexes('EMPLOYEES', columns, backing)}

        # Unique-constraint indexes are recreated by the constraint itself
        assert 'EMP_EMAIL_UK' not in indexes
        assert indexes['EMP_EMP_ID_PK'].is_primary_key is True
        assert indexes['EMP_DEPT_IX'].kind is IndexKind.BITMAP
        function_based = indexes['EMP_UPPER_EMAIL_IX']
        assert function_based.kind is IndexKind.FUNCTION_BASED
        assert function_based.columns == ('EMAIL',)
        assert function_based.function_expression == 'UPPER("EMAIL")'
        assert function_based.is_unique is False

    def test_unique_function_based_index_keeps_uniqueness(self, extractor):
        columns = extractor.get_columns('EMPLOYEES')

        indexes = {i.index_name: i for i in extractor.get_indexes('EMPLOYEES', columns)}

        unique_fbi = indexes['EMP_LOWER_EMAIL_UX']
        assert unique_fbi.kind is IndexKind.FUNCTION_BASED
        assert unique_fbi.is_unique is True
        assert unique_fbi.columns == ('EMAIL',)

    def test_foreign_keys(self, extractor):
        fk, = extractor.get_foreign_keys('EMPLOYEES')

        assert fk.from_columns == ('DEPARTMENT_ID',)
        assert fk.to_table == 'DEPARTMENTS'
        assert fk.to_columns == ('DEPARTMENT_ID',)
        assert fk.on_delete == 'SET NULL'
        assert fk.to_schema is None

    def test_cross_schema_disabled_foreign_key(self, extractor):
        fk, = extractor.get_foreign_keys('JOB_HISTORY')

        assert fk.to_schema == 'PAYROLL'
        assert fk.is_enabled is False


class TestExtractSchema:
    def test_full_extraction(self, extractor):
        schema = extractor.extract_schema()

        assert schema.schema_name == 'HR'
        assert schema.database_name == 'ORCLPDB1'
        assert [t.table_name for t in schema.tables] == ['DEPARTMENTS', 'EMPLOYEES', 'JOB_HISTORY']
        assert schema.table('EMPLOYEES').row_count == 107
        assert schema.sequences[0].current_value == 207
        assert [v.is_materialized for v in schema.views] == [False, True]
        assert schema.routines[0].source_code.startswith('PROCEDURE secure_dml')

    def test_triggers_limited_to_selected_tables(self, extractor):
        schema = extractor.extract_schema()

        assert [t.trigger_name for t in schema.triggers] == ['SECURE_EMPLOYEES']
        trigger = schema.triggers[0]
        assert trigger.source_code.startswith('CREATE OR REPLACE TRIGGER secure_employees')
        assert trigger.source_code.endswith('END;')

    def test_code_objects_optional(self, extractor, mock_oracle_hook):
        schema = extractor.extract_schema(include_code_objects=False)

        assert schema.views == ()
        assert schema.routines == ()
        assert schema.triggers == ()
        queries = [c.args[0] for c in mock_oracle_hook.get_records.call_args_list]
        assert not any('FROM all_triggers' in q for q in queries)

    def test_catalog_failure_raises_extraction_error(self, extractor, mock_oracle_hook):
        mock_oracle_hook.get_records.side_effect = Exception('ORA-01031: insufficient privileges')

        with pytest.raises(ExtractionError) as exc_info:
            extractor.get_tables()

        assert 'ORA-01031' in str(exc_info.value)
        assert exc_info.value.object_name == 'HR tables'
