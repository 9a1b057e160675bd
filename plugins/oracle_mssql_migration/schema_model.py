"""
Schema Model Module

Passive, immutable records describing an Oracle schema and its SQL Server
conversion: tables, columns, indexes, constraints, foreign keys, sequences,
plus views, routines and triggers whose source text is carried through
unconverted.

A model is built fresh by each extraction run. The converter never mutates
it; it derives a second, independent model with target annotations added.
Models serialize to plain dictionaries for the schema.json artifact.
"""

from dataclasses import dataclass, fields, replace, asdict
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class IndexKind(Enum):
    """Closed set of index kinds recognised in the source catalog."""

    BTREE = "btree"
    UNIQUE = "unique"
    BITMAP = "bitmap"
    FUNCTION_BASED = "function_based"
    SPATIAL = "spatial"
    FULLTEXT = "fulltext"
    HASH = "hash"

    @classmethod
    def from_oracle(cls, index_type: Optional[str], uniqueness: Optional[str]) -> "IndexKind":
        """
        Classify an ALL_INDEXES row.

        Oracle reports e.g. 'NORMAL', 'BITMAP', 'FUNCTION-BASED NORMAL',
        'FUNCTION-BASED BITMAP', 'DOMAIN'. Bitmap wins over function-based.
        """
        index_type = (index_type or '').upper()
        if 'BITMAP' in index_type:
            return cls.BITMAP
        if 'FUNCTION-BASED' in index_type:
            return cls.FUNCTION_BASED
        if index_type == 'DOMAIN':
            return cls.SPATIAL
        if (uniqueness or '').upper() == 'UNIQUE':
            return cls.UNIQUE
        return cls.BTREE


class ConstraintKind(Enum):
    """Closed set of table constraint kinds (foreign keys are separate)."""

    PRIMARY_KEY = "primary_key"
    UNIQUE = "unique"
    CHECK = "check"
    NOT_NULL = "not_null"
    DEFAULT = "default"


@dataclass(frozen=True)
class Column:
    column_name: str
    data_type: str
    ordinal_position: int
    max_length: Optional[int] = None
    precision: Optional[int] = None
    scale: Optional[int] = None
    is_nullable: bool = True
    default_value: Optional[str] = None
    is_identity: bool = False
    is_virtual: bool = False
    virtual_expression: Optional[str] = None
    comment: Optional[str] = None
    # Populated by the converter only
    target_data_type: Optional[str] = None
    conversion_note: Optional[str] = None

    @property
    def is_converted(self) -> bool:
        return self.target_data_type is not None


@dataclass(frozen=True)
class Index:
    index_name: str
    kind: IndexKind
    columns: Tuple[str, ...]
    included_columns: Tuple[str, ...] = ()
    filter_condition: Optional[str] = None
    # Only meaningful for FUNCTION_BASED
    function_expression: Optional[str] = None
    is_primary_key: bool = False
    tablespace: Optional[str] = None
    # Uniqueness is independent of kind: function-based and descending
    # indexes can be UNIQUE too
    unique: bool = False

    @property
    def is_unique(self) -> bool:
        return self.unique or self.kind is IndexKind.UNIQUE


@dataclass(frozen=True)
class Constraint:
    constraint_name: str
    kind: ConstraintKind
    columns: Tuple[str, ...] = ()
    # Only meaningful for CHECK
    check_condition: Optional[str] = None
    is_enabled: bool = True
    is_validated: bool = True


@dataclass(frozen=True)
class ForeignKey:
    foreign_key_name: str
    from_table: str
    from_columns: Tuple[str, ...]
    to_table: str
    to_columns: Tuple[str, ...]
    on_delete: str = "NO ACTION"
    on_update: str = "NO ACTION"
    is_enabled: bool = True
    to_schema: Optional[str] = None

    def __post_init__(self):
        if len(self.from_columns) != len(self.to_columns):
            raise ValueError(
                f"Foreign key {self.foreign_key_name} has {len(self.from_columns)} columns "
                f"but references {len(self.to_columns)}"
            )


@dataclass(frozen=True)
class Sequence:
    sequence_name: str
    current_value: int = 1
    min_value: int = 1
    max_value: int = 9223372036854775807
    increment_by: int = 1
    is_cyclic: bool = False
    cache_size: int = 0


@dataclass(frozen=True)
class View:
    view_name: str
    definition: str = ''
    is_materialized: bool = False


@dataclass(frozen=True)
class Routine:
    """Stored procedure, function or package; body kept as source text."""

    routine_name: str
    routine_type: str
    source_code: str = ''


@dataclass(frozen=True)
class Trigger:
    trigger_name: str
    table_name: str
    trigger_type: str = ''
    trigger_event: str = ''
    source_code: str = ''
    is_enabled: bool = True


@dataclass(frozen=True)
class Table:
    schema_name: str
    table_name: str
    columns: Tuple[Column, ...] = ()
    indexes: Tuple[Index, ...] = ()
    constraints: Tuple[Constraint, ...] = ()
    foreign_keys: Tuple[ForeignKey, ...] = ()
    row_count: int = 0
    size_bytes: int = 0
    is_partitioned: bool = False
    tablespace: Optional[str] = None

    def __post_init__(self):
        positions = sorted(c.ordinal_position for c in self.columns)
        if positions != list(range(1, len(self.columns) + 1)):
            raise ValueError(
                f"Table {self.full_name} column ordinal positions must be unique and "
                f"contiguous from 1, got {positions}"
            )
        pk_count = sum(1 for c in self.constraints if c.kind is ConstraintKind.PRIMARY_KEY)
        if pk_count > 1:
            raise ValueError(f"Table {self.full_name} has {pk_count} primary key constraints")

    @property
    def full_name(self) -> str:
        return f"{self.schema_name}.{self.table_name}"

    @property
    def ordered_columns(self) -> List[Column]:
        return sorted(self.columns, key=lambda c: c.ordinal_position)

    @property
    def primary_key(self) -> Optional[Constraint]:
        for constraint in self.constraints:
            if constraint.kind is ConstraintKind.PRIMARY_KEY:
                return constraint
        return None

    @property
    def secondary_indexes(self) -> List[Index]:
        return [i for i in self.indexes if not i.is_primary_key]

    def column(self, name: str) -> Optional[Column]:
        for col in self.columns:
            if col.column_name == name:
                return col
        return None


@dataclass(frozen=True)
class Schema:
    schema_name: str
    database_name: str = ''
    tables: Tuple[Table, ...] = ()
    views: Tuple[View, ...] = ()
    sequences: Tuple[Sequence, ...] = ()
    routines: Tuple[Routine, ...] = ()
    triggers: Tuple[Trigger, ...] = ()

    @property
    def total_size_bytes(self) -> int:
        return sum(t.size_bytes for t in self.tables)

    @property
    def total_object_count(self) -> int:
        return len(self.tables) + len(self.views) + len(self.routines) + len(self.triggers)

    def table(self, table_name: str) -> Optional[Table]:
        for t in self.tables:
            if t.table_name == table_name:
                return t
        return None

    def with_tables(self, tables: List[Table]) -> "Schema":
        return replace(self, tables=tuple(tables))

    def to_dict(self) -> Dict[str, Any]:
        return _to_plain(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Schema":
        return cls(
            schema_name=data['schema_name'],
            database_name=data.get('database_name', ''),
            tables=tuple(_table_from_dict(t) for t in data.get('tables', [])),
            views=tuple(_record_from_dict(View, v) for v in data.get('views', [])),
            sequences=tuple(_record_from_dict(Sequence, s) for s in data.get('sequences', [])),
            routines=tuple(_record_from_dict(Routine, r) for r in data.get('routines', [])),
            triggers=tuple(_record_from_dict(Trigger, t) for t in data.get('triggers', [])),
        )


def _to_plain(value: Any) -> Any:
    """asdict() keeps Enum members and tuples; JSON wants values and lists."""
    if hasattr(value, '__dataclass_fields__'):
        return {k: _to_plain(v) for k, v in asdict(value).items()}
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {k: _to_plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_plain(v) for v in value]
    return value


def _record_from_dict(record_type, data: Dict[str, Any]):
    known = {f.name for f in fields(record_type)}
    kwargs = {}
    for key, value in data.items():
        if key not in known:
            continue
        kwargs[key] = tuple(value) if isinstance(value, list) else value
    return record_type(**kwargs)


def _table_from_dict(data: Dict[str, Any]) -> Table:
    columns = tuple(_record_from_dict(Column, c) for c in data.get('columns', []))
    indexes = tuple(
        _record_from_dict(Index, {**i, 'kind': IndexKind(i['kind'])})
        for i in data.get('indexes', [])
    )
    constraints = tuple(
        _record_from_dict(Constraint, {**c, 'kind': ConstraintKind(c['kind'])})
        for c in data.get('constraints', [])
    )
    foreign_keys = tuple(_record_from_dict(ForeignKey, fk) for fk in data.get('foreign_keys', []))
    scalars = {
        k: v for k, v in data.items()
        if k not in ('columns', 'indexes', 'constraints', 'foreign_keys')
    }
    return _record_from_dict(Table, {
        **scalars,
        'columns': columns,
        'indexes': indexes,
        'constraints': constraints,
        'foreign_keys': foreign_keys,
    })
