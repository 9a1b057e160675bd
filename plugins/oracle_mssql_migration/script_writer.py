"""
Migration Artifact Writer

Persists what a migration run produces: the schema metadata document, one
SQL file per DDL phase and the conversion warnings list.
"""

from pathlib import Path
from typing import Dict, List, Union
import json
import logging

from oracle_mssql_migration.ddl_generator import MigrationScripts
from oracle_mssql_migration.schema_model import Schema

logger = logging.getLogger(__name__)

SCHEMA_FILE = 'schema.json'
WARNINGS_FILE = 'warnings.txt'


def write_schema_json(schema: Schema, output_dir: Union[str, Path]) -> Path:
    """Write the schema model as an indented JSON document."""
    path = Path(output_dir)
    path.mkdir(parents=True, exist_ok=True)
    target = path / SCHEMA_FILE
    target.write_text(json.dumps(schema.to_dict(), indent=2, default=str), encoding='utf-8')
    logger.info(f"Wrote schema metadata to {target}")
    return target


def load_schema_json(path: Union[str, Path]) -> Schema:
    """
    Read a schema document written by write_schema_json.

    Args:
        path: The JSON file, or the directory holding schema.json
    """
    path = Path(path)
    if path.is_dir():
        path = path / SCHEMA_FILE
    return Schema.from_dict(json.loads(path.read_text(encoding='utf-8')))


def write_scripts(scripts: MigrationScripts, output_dir: Union[str, Path]) -> Dict[str, Path]:
    """
    Write one .sql file per migration phase plus warnings.txt.

    Statements are separated by GO so the files also run in sqlcmd and
    SSMS, and each statement is its own batch. warnings.txt holds one
    "object: message" line per warning and is always written, empty when
    there is nothing to report.

    Returns:
        Mapping of file stem to written path
    """
    path = Path(output_dir)
    path.mkdir(parents=True, exist_ok=True)

    written: Dict[str, Path] = {}
    for stem, statements in scripts.phases():
        target = path / f"{stem}.sql"
        target.write_text(_render(statements), encoding='utf-8')
        written[stem] = target

    warnings_path = path / WARNINGS_FILE
    warnings_path.write_text(
        ''.join(f"{key}: {message}\n" for key, message in scripts.warnings.items()),
        encoding='utf-8',
    )
    written['warnings'] = warnings_path

    logger.info(f"Wrote {len(written)} migration files to {path} ({len(scripts.warnings)} warnings)")
    return written


def load_scripts(output_dir: Union[str, Path]) -> MigrationScripts:
    """
    Read phase files back into a MigrationScripts bundle.

    Each file comes back as one entry; execute_scripts splits it on GO
    into the original statements.
    """
    path = Path(output_dir)
    scripts = MigrationScripts()
    for stem, attr in MigrationScripts.PHASES:
        target = path / f"{stem}.sql"
        if target.exists():
            text = target.read_text(encoding='utf-8').strip()
            if text:
                getattr(scripts, attr).append(text)

    warnings_path = path / WARNINGS_FILE
    if warnings_path.exists():
        for line in warnings_path.read_text(encoding='utf-8').splitlines():
            key, sep, message = line.partition(': ')
            if sep:
                scripts.warnings[key] = message
    return scripts


def _render(statements: List[str]) -> str:
    if not statements:
        return ''
    return '\nGO\n\n'.join(statements) + '\nGO\n'
