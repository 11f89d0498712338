"""Typed access layer over SQLite.

Connection -> Statement / Transaction; see the module docstrings for details.
"""

PACKAGE_VERSION = "0.1.0"  # Keep in sync with pyproject version.

from .connection import Connection, ConnectionConfig, OpenFlag, DEFAULT_FLAGS
from .errors import (
    SQLiteError, DatabaseConnectionError, PrepareError, ExecutionError, ValueTooLargeError,
    OutOfRangeError, TypeMismatchError, InvalidStateError,
)
from .statement import Statement
from .transaction import Transaction, TransactionMode, TransactionState
from .values import (
    Value, ValueKind, IntKind, Int8, Int16, Int32, Int64, UInt8, UInt16, UInt32, UInt64,
)

__all__ = [
    "PACKAGE_VERSION",
    "Connection", "ConnectionConfig", "OpenFlag", "DEFAULT_FLAGS",
    "SQLiteError", "DatabaseConnectionError", "PrepareError", "ExecutionError",
    "ValueTooLargeError", "OutOfRangeError", "TypeMismatchError", "InvalidStateError",
    "Statement", "Transaction", "TransactionMode", "TransactionState",
    "Value", "ValueKind", "IntKind",
    "Int8", "Int16", "Int32", "Int64", "UInt8", "UInt16", "UInt32", "UInt64",
]
