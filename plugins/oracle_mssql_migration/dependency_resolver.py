"""
Table Dependency Resolution

Orders tables so that every table referenced by a foreign key is created and
loaded before the tables that reference it.
"""

from typing import Dict, List, Set
import logging

from oracle_mssql_migration.errors import CycleDetectedError
from oracle_mssql_migration.schema_model import Table

logger = logging.getLogger(__name__)

_UNVISITED = 0
_VISITING = 1
_VISITED = 2


def referenced_tables(table: Table, table_names: Set[str]) -> List[str]:
    """
    Names of the tables this table depends on, within the working set.

    References to tables outside the set count as already satisfied, and a
    self-reference (e.g. EMPLOYEES.MANAGER_ID) is not a dependency.
    """
    seen = []
    for fk in table.foreign_keys:
        target = fk.to_table
        if target == table.table_name or target not in table_names or target in seen:
            continue
        seen.append(target)
    return seen


def order_tables_by_dependencies(tables: List[Table]) -> List[Table]:
    """
    Return tables in load order: for every foreign key A -> B, B precedes A.

    Depth-first post-order with three colours. Each table is emitted exactly
    once however many paths reach it. Input order is kept among tables with
    no dependency between them, so the result is deterministic.

    Args:
        tables: Tables with their foreign keys

    Returns:
        A permutation of the input tables

    Raises:
        CycleDetectedError: The foreign keys form a cycle (self-references excluded)
    """
    by_name: Dict[str, Table] = {t.table_name: t for t in tables}
    names = set(by_name)
    state: Dict[str, int] = {name: _UNVISITED for name in by_name}
    ordered: List[Table] = []

    for root in tables:
        if state[root.table_name] != _UNVISITED:
            continue

        # Explicit stack of (table name, iterator over its dependencies)
        state[root.table_name] = _VISITING
        path = [root.table_name]
        stack = [(root.table_name, iter(referenced_tables(root, names)))]

        while stack:
            name, deps = stack[-1]
            advanced = False
            for dep in deps:
                if state[dep] == _VISITING:
                    cycle = path[path.index(dep):] + [dep]
                    raise CycleDetectedError(cycle)
                if state[dep] == _UNVISITED:
                    state[dep] = _VISITING
                    path.append(dep)
                    stack.append((dep, iter(referenced_tables(by_name[dep], names))))
                    advanced = True
                    break
            if advanced:
                continue

            stack.pop()
            path.pop()
            state[name] = _VISITED
            ordered.append(by_name[name])

    logger.debug(f"Resolved load order: {[t.table_name for t in ordered]}")
    return ordered
