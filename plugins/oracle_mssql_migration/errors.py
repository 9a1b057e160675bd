"""
Migration Error Types

Exceptions raised by the migration pipeline. Every fatal error names the
object it was working on and chains the underlying driver error.
"""

from dataclasses import dataclass
from typing import List, Optional


class MigrationError(Exception):
    """Base class for all migration pipeline errors."""

    def __init__(self, message: str, object_name: Optional[str] = None):
        self.object_name = object_name
        if object_name:
            message = f"{object_name}: {message}"
        super().__init__(message)


class ExtractionError(MigrationError):
    """Catalog access failed while reading source metadata."""


class DDLExecutionError(MigrationError):
    """A DDL statement failed on the target database."""

    def __init__(self, message: str, object_name: Optional[str] = None, statement: Optional[str] = None):
        super().__init__(message, object_name)
        self.statement = statement


class TransferError(MigrationError):
    """
    Bulk copy of a table's rows failed.

    rows_migrated counts the batches committed before the failure; they stay
    on the target.
    """

    def __init__(self, message: str, object_name: Optional[str] = None, rows_migrated: int = 0):
        super().__init__(message, object_name)
        self.rows_migrated = rows_migrated


class CycleDetectedError(MigrationError):
    """Foreign keys form a cycle, so no load order exists."""

    def __init__(self, cycle: List[str]):
        self.cycle = list(cycle)
        super().__init__(f"Foreign key cycle detected: {' -> '.join(self.cycle)}")


@dataclass(frozen=True)
class ConversionWarning:
    """
    A non-fatal conversion issue recorded against an object.

    Not raised; collected into the script bundle and reported at the end
    of the run.
    """

    object_name: str
    message: str

    def __str__(self) -> str:
        return f"{self.object_name}: {self.message}"
