"""Scoped transaction with rollback-on-abandon.

    with Transaction(conn, TransactionMode.IMMEDIATE) as tx:
        ...
        tx.commit()

Leaving the block (or dropping the object) without commit() or rollback()
issues ROLLBACK. A failure of that implicit rollback is logged and discarded
so it can never replace the exception already unwinding the block.
"""
from __future__ import annotations
from enum import Enum
from typing import TYPE_CHECKING

from .errors import InvalidStateError
from .logging_util import debug, warn

if TYPE_CHECKING:
    from .connection import Connection


class TransactionMode(Enum):
    DEFERRED = "DEFERRED"    # locks taken lazily on first access
    IMMEDIATE = "IMMEDIATE"  # write lock taken at BEGIN
    EXCLUSIVE = "EXCLUSIVE"  # strongest lock taken at BEGIN


class TransactionState(Enum):
    ACTIVE = "active"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


class Transaction:
    def __init__(self, connection: Connection, mode: TransactionMode = TransactionMode.DEFERRED):
        self._needs_rollback = False
        self._connection = connection
        self.mode = TransactionMode(mode)
        connection.exec(f"BEGIN {self.mode.value} TRANSACTION")
        self._needs_rollback = True
        self.state = TransactionState.ACTIVE
        debug("transaction_begin", path=connection.path, mode=self.mode.value)

    @property
    def needs_rollback(self) -> bool:
        return self._needs_rollback

    def commit(self) -> None:
        """COMMIT. On failure the transaction stays active and the error propagates."""
        self._require_active("commit")
        self._connection.exec("COMMIT TRANSACTION")
        self._needs_rollback = False
        self.state = TransactionState.COMMITTED
        debug("transaction_commit", path=self._connection.path)

    def rollback(self) -> None:
        self._require_active("rollback")
        self._needs_rollback = False
        self.state = TransactionState.ROLLED_BACK
        self._connection.exec("ROLLBACK TRANSACTION")
        debug("transaction_rollback", path=self._connection.path)

    def _require_active(self, op: str) -> None:
        if self.state is not TransactionState.ACTIVE:
            raise InvalidStateError(f"cannot {op}: transaction already {self.state.value}")

    def _abandon(self) -> None:
        try:
            self.rollback()
        except Exception as e:
            # Ignore failed rollbacks during teardown.
            warn("transaction_rollback_failed", mode=self.mode.value, error=str(e))

    def __enter__(self) -> "Transaction":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        if self._needs_rollback:
            self._abandon()
        return False

    def __del__(self):
        if getattr(self, "_needs_rollback", False):
            self._abandon()
