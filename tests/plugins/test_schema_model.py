"""
Tests for Schema Model Module

These tests validate construction invariants, index classification and
the JSON document round trip used for the schema.json artifact.
"""

import json

import pytest
from oracle_mssql_migration.schema_model import (
    Column,
    Constraint,
    ConstraintKind,
    ForeignKey,
    Index,
    IndexKind,
    Schema,
    Sequence,
    Table,
    Trigger,
    View,
)


def _columns(*names):
    return tuple(Column(name, "VARCHAR2", i, max_length=10) for i, name in enumerate(names, start=1))


class TestTableInvariants:
    def test_contiguous_ordinals_accepted(self):
        table = Table("HR", "JOBS", columns=_columns("JOB_ID", "JOB_TITLE"))
        assert table.full_name == "HR.JOBS"

    def test_gap_in_ordinals_rejected(self):
        with pytest.raises(ValueError, match="ordinal"):
            Table("HR", "JOBS", columns=(Column("A", "NUMBER", 1), Column("B", "NUMBER", 3)))

    def test_duplicate_ordinals_rejected(self):
        with pytest.raises(ValueError):
            Table("HR", "JOBS", columns=(Column("A", "NUMBER", 1), Column("B", "NUMBER", 1)))

    def test_ordinals_must_start_at_one(self):
        with pytest.raises(ValueError):
            Table("HR", "JOBS", columns=(Column("A", "NUMBER", 0),))

    def test_two_primary_keys_rejected(self):
        constraints = (
            Constraint("PK_1", ConstraintKind.PRIMARY_KEY, ("A",)),
            Constraint("PK_2", ConstraintKind.PRIMARY_KEY, ("B",)),
        )
        with pytest.raises(ValueError, match="primary key"):
            Table("HR", "JOBS", columns=_columns("A", "B"), constraints=constraints)

    def test_ordered_columns_sorted_by_ordinal(self):
        columns = (Column("B", "NUMBER", 2), Column("A", "NUMBER", 1))
        table = Table("HR", "T", columns=columns)
        assert [c.column_name for c in table.ordered_columns] == ["A", "B"]

    def test_primary_key_and_secondary_indexes(self):
        table = Table(
            "HR", "T",
            columns=_columns("A", "B"),
            indexes=(
                Index("PK_T", IndexKind.UNIQUE, ("A",), is_primary_key=True),
                Index("IX_T_B", IndexKind.BTREE, ("B",)),
            ),
            constraints=(Constraint("PK_T", ConstraintKind.PRIMARY_KEY, ("A",)),),
        )
        assert table.primary_key.constraint_name == "PK_T"
        assert [i.index_name for i in table.secondary_indexes] == ["IX_T_B"]
        assert table.column("B").ordinal_position == 2
        assert table.column("MISSING") is None

    def test_records_are_frozen(self):
        column = Column("A", "NUMBER", 1)
        with pytest.raises(Exception):
            column.data_type = "VARCHAR2"


class TestForeignKey:
    def test_arity_mismatch_rejected(self):
        with pytest.raises(ValueError):
            ForeignKey("FK_X", "ORDERS", ("A", "B"), "CUSTOMERS", ("ID",))


class TestIndexKind:
    @pytest.mark.parametrize("index_type,uniqueness,expected", [
        ("NORMAL", "NONUNIQUE", IndexKind.BTREE),
        ("NORMAL", "UNIQUE", IndexKind.UNIQUE),
        ("BITMAP", "NONUNIQUE", IndexKind.BITMAP),
        ("FUNCTION-BASED NORMAL", "NONUNIQUE", IndexKind.FUNCTION_BASED),
        ("FUNCTION-BASED BITMAP", "NONUNIQUE", IndexKind.BITMAP),
        ("DOMAIN", "NONUNIQUE", IndexKind.SPATIAL),
        (None, None, IndexKind.BTREE),
    ])
    def test_from_oracle(self, index_type, uniqueness, expected):
        assert IndexKind.from_oracle(index_type, uniqueness) is expected

    def test_is_unique(self):
        assert Index("UX", IndexKind.UNIQUE, ("A",)).is_unique
        assert not Index("IX", IndexKind.BTREE, ("A",)).is_unique

    def test_uniqueness_independent_of_kind(self):
        index = Index("UX_LOWER", IndexKind.FUNCTION_BASED, ("A",), function_expression='LOWER("A")', unique=True)
        assert index.kind is IndexKind.FUNCTION_BASED
        assert index.is_unique


class TestSchemaDocument:
    @pytest.fixture
    def schema(self):
        departments = Table(
            "HR", "DEPARTMENTS",
            columns=(
                Column("DEPARTMENT_ID", "NUMBER", 1, precision=4, scale=0, is_nullable=False),
                Column("DEPARTMENT_NAME", "VARCHAR2", 2, max_length=30, is_nullable=False),
            ),
            indexes=(Index("DEPT_ID_PK", IndexKind.UNIQUE, ("DEPARTMENT_ID",), is_primary_key=True),),
            constraints=(Constraint("DEPT_ID_PK", ConstraintKind.PRIMARY_KEY, ("DEPARTMENT_ID",)),),
            row_count=27,
            size_bytes=65536,
        )
        employees = Table(
            "HR", "EMPLOYEES",
            columns=(
                Column("EMPLOYEE_ID", "NUMBER", 1, precision=6, scale=0, is_nullable=False),
                Column("DEPARTMENT_ID", "NUMBER", 2, precision=4, scale=0),
            ),
            foreign_keys=(
                ForeignKey("EMP_DEPT_FK", "EMPLOYEES", ("DEPARTMENT_ID",), "DEPARTMENTS", ("DEPARTMENT_ID",)),
            ),
            row_count=107,
            size_bytes=8192,
        )
        return Schema(
            schema_name="HR",
            database_name="ORCLPDB1",
            tables=(departments, employees),
            views=(View("EMP_DETAILS_VIEW", "SELECT * FROM EMPLOYEES"),),
            sequences=(Sequence("EMPLOYEES_SEQ", current_value=207, cache_size=20),),
            triggers=(Trigger("SECURE_EMPLOYEES", "EMPLOYEES", "BEFORE STATEMENT", "INSERT OR UPDATE"),),
        )

    def test_to_dict_is_json_serializable(self, schema):
        document = json.dumps(schema.to_dict())
        data = json.loads(document)

        assert data["tables"][0]["indexes"][0]["kind"] == "unique"
        assert data["tables"][0]["constraints"][0]["kind"] == "primary_key"
        assert data["tables"][1]["foreign_keys"][0]["from_columns"] == ["DEPARTMENT_ID"]

    def test_from_dict_restores_model(self, schema):
        restored = Schema.from_dict(json.loads(json.dumps(schema.to_dict())))
        assert restored == schema

    def test_aggregates(self, schema):
        assert schema.total_size_bytes == 65536 + 8192
        assert schema.total_object_count == 4
        assert schema.table("EMPLOYEES").row_count == 107
        assert schema.table("NOPE") is None

    def test_with_tables_leaves_original(self, schema):
        narrowed = schema.with_tables([schema.tables[0]])
        assert len(narrowed.tables) == 1
        assert len(schema.tables) == 2
