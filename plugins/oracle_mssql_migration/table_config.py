"""
Table Selection Utility Module

This module normalizes the include/exclude table parameters coming from DAG
params or environment variables and decides which extracted tables take part
in a migration run.
"""

import fnmatch
import json
import os
from typing import Any, Iterable, List, Optional
import logging

logger = logging.getLogger(__name__)


def expand_table_list_param(raw: Any) -> List[str]:
    """
    Expand and normalize a table-list parameter from various input formats.

    Handles:
    - List of strings: ["EMPLOYEES", "DEPARTMENTS"]
    - JSON string: '["EMPLOYEES", "DEPARTMENTS"]'
    - Comma-separated string: "EMPLOYEES,DEPARTMENTS"
    - List with comma-separated items: ["EMPLOYEES,DEPARTMENTS"]

    Args:
        raw: Raw parameter value from DAG params or the environment

    Returns:
        Normalized list of table names or patterns
    """
    if raw is None:
        return []

    if isinstance(raw, str):
        raw = raw.strip()
        if not raw:
            return []
        try:
            parsed = json.loads(raw)
            raw = parsed if isinstance(parsed, list) else [str(parsed)]
        except json.JSONDecodeError:
            raw = [t.strip() for t in raw.split(',') if t.strip()]

    if isinstance(raw, (list, tuple)):
        expanded = []
        for item in raw:
            if not isinstance(item, str):
                continue
            expanded.extend(t.strip() for t in item.split(',') if t.strip())
        return expanded

    logger.warning(
        "expand_table_list_param received unsupported type %s; returning empty list.",
        type(raw).__name__,
    )
    return []


def load_table_list_from_env(var_name: str) -> List[str]:
    """Read a table list (JSON or comma-separated) from an environment variable."""
    return expand_table_list_param(os.environ.get(var_name, ''))


def matches_pattern(table_name: str, pattern: str) -> bool:
    """
    Case-insensitive wildcard match (``*`` and ``?``).

    Oracle folds unquoted names to upper case, so 'emp*' matches 'EMPLOYEES'.
    """
    return fnmatch.fnmatchcase(table_name.upper(), pattern.upper())


def is_table_selected(
    table_name: str,
    include_tables: Optional[Iterable[str]] = None,
    exclude_tables: Optional[Iterable[str]] = None,
    table_patterns: Optional[Iterable[str]] = None,
) -> bool:
    """
    Decide whether a table takes part in the run.

    A table is selected when it is named in include_tables or matches one of
    table_patterns (everything is selected when both are empty), and it does
    not match any exclude_tables entry. Exclusion always wins.
    """
    include_tables = list(include_tables or [])
    table_patterns = list(table_patterns or [])

    for pattern in exclude_tables or []:
        if matches_pattern(table_name, pattern):
            logger.info(f"Excluding table {table_name} (matches pattern '{pattern}')")
            return False

    if not include_tables and not table_patterns:
        return True

    if any(table_name.upper() == name.upper() for name in include_tables):
        return True

    return any(matches_pattern(table_name, pattern) for pattern in table_patterns)


def validate_table_names(table_names: List[str]) -> None:
    """
    Validate entries of an include/exclude list.

    Raises:
        ValueError: If an entry is empty or contains characters that cannot
            be part of an Oracle identifier or wildcard pattern
    """
    for entry in table_names:
        if not entry or not entry.strip():
            raise ValueError("Table list entries cannot be empty")
        stripped = entry.replace('*', '').replace('?', '')
        if stripped and not all(ch.isalnum() or ch in '_$#' for ch in stripped):
            raise ValueError(
                f"Invalid table entry '{entry}': only letters, digits, _, $, # and wildcards are allowed"
            )
