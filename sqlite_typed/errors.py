"""Error taxonomy.

Every error carries the backend's native result code and message. Codes come
from ``sqlite3.Error.sqlite_errorcode`` when the interpreter exposes it
(Python 3.11+), otherwise from the exception class.
"""
from __future__ import annotations
import sqlite3
from typing import Optional, Type, TypeVar

# Primary SQLite result codes used by this layer.
SQLITE_ERROR = 1
SQLITE_BUSY = 5
SQLITE_READONLY = 8
SQLITE_CANTOPEN = 14
SQLITE_TOOBIG = 18
SQLITE_CONSTRAINT = 19
SQLITE_MISMATCH = 20
SQLITE_MISUSE = 21
SQLITE_RANGE = 25
SQLITE_NOTADB = 26

_CODE_NAMES = {
    SQLITE_ERROR: "SQLITE_ERROR",
    SQLITE_BUSY: "SQLITE_BUSY",
    SQLITE_READONLY: "SQLITE_READONLY",
    SQLITE_CANTOPEN: "SQLITE_CANTOPEN",
    SQLITE_TOOBIG: "SQLITE_TOOBIG",
    SQLITE_CONSTRAINT: "SQLITE_CONSTRAINT",
    SQLITE_MISMATCH: "SQLITE_MISMATCH",
    SQLITE_MISUSE: "SQLITE_MISUSE",
    SQLITE_RANGE: "SQLITE_RANGE",
    SQLITE_NOTADB: "SQLITE_NOTADB",
}

E = TypeVar("E", bound="SQLiteError")


class SQLiteError(Exception):
    """Base class: backend result code + human readable message."""

    default_code = SQLITE_ERROR

    def __init__(self, message: str, code: Optional[int] = None, name: Optional[str] = None):
        self.code = self.default_code if code is None else code
        self.message = message
        self.name = name or _CODE_NAMES.get(self.code & 0xFF, "SQLITE_ERROR")
        super().__init__(message)

    def __str__(self) -> str:
        return f"{self.message} ({self.name}, code={self.code})"

    @classmethod
    def from_sqlite(cls: Type[E], exc: sqlite3.Error, prefix: str = "") -> E:
        code = getattr(exc, "sqlite_errorcode", None)
        name = getattr(exc, "sqlite_errorname", None)
        if code is None:
            code = _fallback_code(exc)
        message = f"{prefix}{exc}" if prefix else str(exc)
        return cls(message, code=code, name=name)


class DatabaseConnectionError(SQLiteError):
    """Open failed; no handle was retained."""
    default_code = SQLITE_CANTOPEN


class PrepareError(SQLiteError):
    pass


class ExecutionError(SQLiteError):
    """Runtime failure: constraint violations, lock timeouts, bad control statements."""


class ValueTooLargeError(SQLiteError):
    default_code = SQLITE_TOOBIG


class OutOfRangeError(SQLiteError):
    default_code = SQLITE_RANGE


class TypeMismatchError(SQLiteError):
    default_code = SQLITE_MISMATCH


class InvalidStateError(SQLiteError):
    """Use of a closed connection, finalized statement or finished transaction."""
    default_code = SQLITE_MISUSE


def _fallback_code(exc: sqlite3.Error) -> int:
    if isinstance(exc, sqlite3.IntegrityError):
        return SQLITE_CONSTRAINT
    if isinstance(exc, sqlite3.DataError):
        return SQLITE_TOOBIG
    if isinstance(exc, (sqlite3.ProgrammingError, sqlite3.InterfaceError)):
        return SQLITE_MISUSE
    text = str(exc).lower()
    if "locked" in text or "busy" in text:
        return SQLITE_BUSY
    if "readonly" in text or "read-only" in text:
        return SQLITE_READONLY
    if "not a database" in text:
        return SQLITE_NOTADB
    if "unable to open" in text:
        return SQLITE_CANTOPEN
    return SQLITE_ERROR


def translate(exc: sqlite3.Error, default: Type[SQLiteError], prefix: str = "") -> SQLiteError:
    """Map a driver exception onto this layer's taxonomy.

    Cross-thread use and use of a closed handle surface as InvalidStateError no
    matter which operation hit them.
    """
    text = str(exc)
    if isinstance(exc, sqlite3.ProgrammingError) and (
        "closed" in text or "thread" in text
    ):
        return InvalidStateError.from_sqlite(exc, prefix)
    return default.from_sqlite(exc, prefix)
