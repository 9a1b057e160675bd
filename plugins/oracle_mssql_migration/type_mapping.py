"""
Oracle to SQL Server Type Mapping Module

This module maps Oracle data types to SQL Server, converts default and check
expressions, and derives the converted (target) schema model from the
extracted source model.

map_type() is total: every input, including empty or unknown type names,
resolves to a SQL Server type. Unknown types fall back to NVARCHAR(MAX).
"""

from dataclasses import replace
from typing import Dict, List, Optional
import logging
import re

from oracle_mssql_migration.schema_model import Column, Schema, Table

logger = logging.getLogger(__name__)

FALLBACK_TYPE = "NVARCHAR(MAX)"
DEFAULT_NUMBER_TYPE = "DECIMAL(38, 10)"

# Direct Oracle -> SQL Server mapping. Placeholders are filled by map_type();
# a placeholder with no value falls back to DEFAULT_ARGUMENTS or is dropped.
TYPE_MAPPING = {
    # Numeric Types (NUMBER is handled by _map_number)
    "INTEGER": "INT",
    "INT": "INT",
    "SMALLINT": "SMALLINT",
    "FLOAT": "FLOAT({precision})",
    "DOUBLE PRECISION": "FLOAT(53)",
    "REAL": "REAL",
    "BINARY_FLOAT": "REAL",
    "BINARY_DOUBLE": "FLOAT",

    # Character String Types
    "VARCHAR2": "NVARCHAR({length})",
    "VARCHAR": "NVARCHAR({length})",
    "NVARCHAR2": "NVARCHAR({length})",
    "CHAR": "NCHAR({length})",
    "NCHAR": "NCHAR({length})",
    "LONG": "NVARCHAR(MAX)",

    # Large Object Types
    "CLOB": "NVARCHAR(MAX)",
    "NCLOB": "NVARCHAR(MAX)",
    "BLOB": "VARBINARY(MAX)",
    "LONG RAW": "VARBINARY(MAX)",
    "RAW": "VARBINARY({length})",

    # Date and Time Types
    "DATE": "DATETIME2",
    "TIMESTAMP": "DATETIME2({precision})",
    "TIMESTAMP WITH TIME ZONE": "DATETIMEOFFSET({precision})",
    "TIMESTAMP WITH LOCAL TIME ZONE": "DATETIMEOFFSET({precision})",
    "INTERVAL YEAR TO MONTH": "INT",  # total months
    "INTERVAL DAY TO SECOND": "BIGINT",  # total milliseconds

    # Other Types
    "ROWID": "UNIQUEIDENTIFIER",
    "UROWID": "UNIQUEIDENTIFIER",
    "XMLTYPE": "XML",
    "BFILE": "NVARCHAR(255)",  # file path only
}

# Defaults for placeholders that have no value. None means "drop the
# parenthesised argument", e.g. TIMESTAMP -> DATETIME2.
DEFAULT_ARGUMENTS = {
    "VARCHAR2": 4000,
    "VARCHAR": 4000,
    "NVARCHAR2": 4000,
    "CHAR": 1,
    "NCHAR": 1,
    "RAW": 2000,
    "FLOAT": None,
    "TIMESTAMP": None,
    "TIMESTAMP WITH TIME ZONE": None,
    "TIMESTAMP WITH LOCAL TIME ZONE": None,
}

# Types whose conversion loses information. Each note is surfaced as a
# conversion warning for every column using the type.
SPECIAL_HANDLING_NOTES = {
    "INTERVAL YEAR TO MONTH": "Stored as INT (total months). Application logic needed.",
    "INTERVAL DAY TO SECOND": "Stored as BIGINT (total milliseconds). Application logic needed.",
    "BFILE": "BFILE stores external file path only. File content not migrated.",
    "ROWID": "Mapped to UNIQUEIDENTIFIER. Original ROWID values will be lost.",
    "UROWID": "Mapped to UNIQUEIDENTIFIER. Original ROWID values will be lost.",
    "LONG": "LONG is deprecated. Mapped to NVARCHAR(MAX).",
    "LONG RAW": "LONG RAW is deprecated. Mapped to VARBINARY(MAX).",
}

# Advisory notes that do not imply data loss
CONVERSION_NOTES = {
    "NUMBER": "Mapped to DECIMAL. Review precision and scale.",
    "TIMESTAMP WITH TIME ZONE": "Mapped to DATETIMEOFFSET. Offsets preserved; named regions become fixed offsets.",
    "TIMESTAMP WITH LOCAL TIME ZONE": (
        "Mapped to DATETIMEOFFSET. Values carry the extraction session's time zone offset."
    ),
    "CLOB": "Mapped to NVARCHAR(MAX). Consider data size.",
    "NCLOB": "Mapped to NVARCHAR(MAX). Consider data size.",
    "BLOB": "Mapped to VARBINARY(MAX). Consider data size.",
    **SPECIAL_HANDLING_NOTES,
}

# Known Oracle built-ins inside default/check/filter expressions. Applied in
# order, matched case-insensitively on word boundaries.
EXPRESSION_SUBSTITUTIONS = [
    (r'\bSYSTIMESTAMP\b', 'SYSDATETIME()'),
    (r'\bSYSDATE\b', 'GETDATE()'),
    (r'\bSYS_GUID\s*\(\s*\)', 'NEWID()'),
    (r'\bNVL\s*\(', 'ISNULL('),
]


def canonical_type_name(oracle_type: Optional[str]) -> str:
    """
    Reduce an Oracle type name to its lookup key.

    ALL_TAB_COLUMNS reports e.g. 'TIMESTAMP(6) WITH TIME ZONE' and
    'INTERVAL DAY(2) TO SECOND(6)', so composite categories are matched by
    substring before the direct lookup.
    """
    upper_type = (oracle_type or '').upper().strip()

    if 'TIMESTAMP' in upper_type:
        if 'WITH LOCAL TIME ZONE' in upper_type:
            return "TIMESTAMP WITH LOCAL TIME ZONE"
        if 'WITH TIME ZONE' in upper_type:
            return "TIMESTAMP WITH TIME ZONE"
        return "TIMESTAMP"

    if 'INTERVAL' in upper_type:
        if 'YEAR' in upper_type or 'MONTH' in upper_type:
            return "INTERVAL YEAR TO MONTH"
        return "INTERVAL DAY TO SECOND"

    return upper_type


def _map_number(precision: Optional[int], scale: Optional[int]) -> str:
    """Pick the narrowest exact SQL Server type for NUMBER(p, s)."""
    if precision is None and scale is None:
        return DEFAULT_NUMBER_TYPE

    if not scale:
        if precision is None:
            # NUMBER(*, 0): Oracle allows 38 digits
            return "DECIMAL(38, 0)"
        if precision <= 2:
            return "TINYINT"
        if precision <= 4:
            return "SMALLINT"
        if precision <= 9:
            return "INT"
        if precision <= 18:
            return "BIGINT"
        return f"DECIMAL({precision}, 0)"

    return f"DECIMAL({precision if precision is not None else 38}, {scale})"


def map_type(
    oracle_type: Optional[str],
    max_length: Optional[int] = None,
    precision: Optional[int] = None,
    scale: Optional[int] = None,
) -> str:
    """
    Map an Oracle data type to its SQL Server equivalent.

    Args:
        oracle_type: The Oracle data type name as reported by the catalog
        max_length: Length for character/binary types
        precision: Precision for numeric/timestamp types
        scale: Scale for numeric types

    Returns:
        The SQL Server data type (never empty)
    """
    if not oracle_type or not oracle_type.strip():
        return FALLBACK_TYPE

    key = canonical_type_name(oracle_type)

    if key in ("NUMBER", "NUMERIC", "DECIMAL"):
        return _map_number(precision, scale)

    if key not in TYPE_MAPPING:
        logger.warning(f"Unknown Oracle type '{oracle_type}', using {FALLBACK_TYPE} as fallback")
        return FALLBACK_TYPE

    target_type = TYPE_MAPPING[key]

    if key.startswith("TIMESTAMP") and precision is None:
        # Fractional seconds precision is part of the name, e.g. TIMESTAMP(6)
        match = re.search(r"\((\d+)\)", oracle_type)
        if match:
            precision = int(match.group(1))

    values = {'length': max_length, 'precision': precision}
    for placeholder, value in values.items():
        token = "{" + placeholder + "}"
        if token not in target_type:
            continue
        if value is None:
            value = DEFAULT_ARGUMENTS.get(key)
        if value is None:
            target_type = target_type.replace(f"({token})", "")
        else:
            target_type = target_type.replace(token, str(value))

    return _cap_length(target_type)


def _cap_length(target_type: str) -> str:
    """Clamp sizes to SQL Server limits (NVARCHAR 4000, VARBINARY 8000, FLOAT 53, fractional seconds 7)."""
    match = re.match(r'^(FLOAT|DATETIME2|DATETIMEOFFSET)\((\d+)\)$', target_type)
    if match:
        base, size = match.group(1), int(match.group(2))
        limit = 53 if base == "FLOAT" else 7
        return f"{base}({min(size, limit)})"

    match = re.match(r'^(NVARCHAR|NCHAR|VARBINARY)\((\d+)\)$', target_type)
    if not match:
        return target_type
    base, size = match.group(1), int(match.group(2))
    if base == "VARBINARY":
        return target_type if size <= 8000 else "VARBINARY(MAX)"
    return target_type if size <= 4000 else "NVARCHAR(MAX)"


def get_conversion_notes(oracle_type: Optional[str]) -> str:
    """Return the advisory note for a type, or '' if none applies."""
    return CONVERSION_NOTES.get(canonical_type_name(oracle_type), '')


def identity_column_type(target_type: str) -> str:
    """
    Narrow a mapped type so SQL Server accepts it as an IDENTITY column.

    IDENTITY needs scale 0; unsized NUMBER identities map to DECIMAL(38, 10).
    """
    match = re.match(r'^DECIMAL\((\d+),\s*(\d+)\)$', target_type)
    if match and int(match.group(2)) > 0:
        return f"DECIMAL({match.group(1)}, 0)"
    return target_type


def requires_special_handling(oracle_type: Optional[str]) -> bool:
    """Check if a type's conversion is a documented approximation."""
    return canonical_type_name(oracle_type) in SPECIAL_HANDLING_NOTES


def convert_expression(expression: Optional[str]) -> Optional[str]:
    """
    Substitute known Oracle built-ins with SQL Server equivalents.

    Unrecognised text passes through unchanged and is not validated.
    """
    if expression is None:
        return None
    converted = expression.strip()
    if not converted:
        return None
    for pattern, replacement in EXPRESSION_SUBSTITUTIONS:
        converted = re.sub(pattern, replacement, converted, flags=re.IGNORECASE)
    return converted


def map_default_value(oracle_default: Optional[str]) -> Optional[str]:
    """Map an Oracle column DEFAULT expression to SQL Server."""
    return convert_expression(oracle_default)


def convert_check_condition(oracle_condition: Optional[str]) -> str:
    """Map an Oracle CHECK condition. DECODE and friends need manual review."""
    return convert_expression(oracle_condition) or ''


def map_column(column: Column) -> Column:
    """
    Return a converted copy of a source column.

    The source column is left untouched; the copy carries the SQL Server
    type, the converted default and any conversion note.
    """
    target_type = map_type(column.data_type, column.max_length, column.precision, column.scale)
    note = get_conversion_notes(column.data_type) or None
    if column.is_identity:
        identity_type = identity_column_type(target_type)
        if identity_type != target_type:
            note = f"Identity column mapped to {identity_type} instead of {target_type}; IDENTITY requires scale 0."
            target_type = identity_type

    return replace(
        column,
        target_data_type=target_type,
        default_value=map_default_value(column.default_value),
        virtual_expression=convert_expression(column.virtual_expression),
        conversion_note=note,
    )


def map_table_schema(table: Table) -> Table:
    """Return a converted copy of a table with every column mapped."""
    return replace(table, columns=tuple(map_column(c) for c in table.columns))


def map_schema(schema: Schema) -> Schema:
    """Return an independent, converted copy of a whole schema."""
    return schema.with_tables([map_table_schema(t) for t in schema.tables])


def collect_column_warnings(table: Table) -> Dict[str, str]:
    """Warnings keyed by 'schema.table.column' for a converted table."""
    warnings = {}
    for column in table.ordered_columns:
        if column.conversion_note:
            warnings[f"{table.full_name}.{column.column_name}"] = column.conversion_note
    return warnings


def validate_type_mapping(oracle_type: str) -> bool:
    """
    Check if an Oracle type has a known mapping (not the fallback).

    Args:
        oracle_type: The Oracle data type to check

    Returns:
        True if the type has a mapping, False otherwise
    """
    key = canonical_type_name(oracle_type)
    return key in TYPE_MAPPING or key in ("NUMBER", "NUMERIC", "DECIMAL")


def get_supported_types() -> List[str]:
    """
    Get a list of all supported Oracle data types.

    Returns:
        List of supported Oracle data type names
    """
    return ["NUMBER"] + list(TYPE_MAPPING.keys())
