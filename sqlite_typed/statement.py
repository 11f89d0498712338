"""Prepared statement: positional binding, stepping, typed column access.

A Statement borrows its Connection and must not outlive it. Parameters are
1-based (``?`` / ``?NNN`` placeholders); columns are 0-based, matching the
backend's own numbering. The compiled program lives in the driver's statement
cache, so re-running after ``reset()`` or a rebind does not recompile.

Ownership of text/blob input is chosen at the bind call site:
    - default: the bytes are copied when ``bind`` is called
    - borrow=True: a reference to the (mutable) buffer is kept and read when
      the statement executes, so later writes to the buffer are seen
"""
from __future__ import annotations
import re, sqlite3
from typing import TYPE_CHECKING, Any, List, Optional, Sequence, Tuple, Union

from .errors import (
    ExecutionError, InvalidStateError, OutOfRangeError, PrepareError, TypeMismatchError,
    ValueTooLargeError, translate,
)
from .logging_util import debug, sql_preview
from .values import NULL, Value, ValueKind, byte_length, unwrap_optional

if TYPE_CHECKING:
    from .connection import Connection

_BINDINGS_RE = re.compile(r"uses (\d+), and there (?:are|is) \d+ supplied")
_EXPLAIN_RE = re.compile(r"^\s*explain\b", re.IGNORECASE)

Buffer = Union[bytes, bytearray, memoryview]


class _Borrowed:
    """Slot that reads a caller-owned buffer at execution time."""
    __slots__ = ("buffer", "kind")

    def __init__(self, buffer: Buffer, kind: ValueKind):
        self.buffer = buffer
        self.kind = kind

    def resolve(self) -> Value:
        try:
            data = bytes(self.buffer)
        except ValueError as e:  # released memoryview
            raise InvalidStateError(f"borrowed buffer no longer available: {e}") from e
        if self.kind is ValueKind.TEXT:
            return Value.of(data, str)
        return Value(ValueKind.BLOB, data)


Slot = Union[Value, _Borrowed]


def parameter_count(raw: sqlite3.Connection, sql: str) -> int:
    """Compile ``sql`` without running it and return its parameter count.

    EXPLAIN compiles the statement but only lists its program, so nothing
    executes. The driver reports the expected count when given too few
    bindings.
    """
    if not sql.strip():
        raise PrepareError("empty SQL text")
    probe = sql if _EXPLAIN_RE.match(sql) else f"EXPLAIN {sql}"
    try:
        raw.execute(probe).close()
        return 0
    except sqlite3.ProgrammingError as e:
        m = _BINDINGS_RE.search(str(e))
        if not m:
            raise translate(e, PrepareError) from e
        count = int(m.group(1))
    except sqlite3.Error as e:
        raise translate(e, PrepareError) from e
    try:
        raw.execute(probe, [None] * count).close()
    except sqlite3.Error as e:
        raise translate(e, PrepareError) from e
    return count


class Statement:
    def __init__(self, connection: Connection, sql: str):
        self._connection = connection
        self.sql = sql
        self._finalized = False
        self._cursor: Optional[sqlite3.Cursor] = None
        self._row: Optional[Tuple[Any, ...]] = None
        self._columns: Tuple[str, ...] = ()
        self._done = False
        self._last_insert_rowid = 0
        self._changes = 0
        self.parameter_count = parameter_count(connection.raw(), sql)
        self._slots: List[Slot] = [NULL] * self.parameter_count
        debug("prepare", sql=sql_preview(sql), params=self.parameter_count)

    # --- Binding --------------------------------------------------------------------
    def bind(self, position: int, value: Any, type_: Any = None, *, borrow: bool = False) -> None:
        """Bind ``value`` to the 1-based parameter ``position``.

        ``type_`` optionally declares the host type (``int``, ``UInt8``,
        ``Optional[str]``...) and is checked before anything is stored.
        ``borrow=True`` keeps a reference to a bytearray/memoryview instead
        of copying it.
        """
        if borrow and isinstance(value, (bytearray, memoryview)):
            inner = unwrap_optional(type_)[0] if type_ is not None else bytes
            if inner not in (str, bytes):
                raise TypeMismatchError(f"{type(value).__name__} given for {inner!r}")
            kind = ValueKind.TEXT if inner is str else ValueKind.BLOB
            self._store(position, _Borrowed(value, kind))
            return
        self._store(position, Value.of(value, type_))

    def bind_text(self, position: int, value: Union[str, Buffer], *, borrow: bool = False) -> None:
        if isinstance(value, str):
            self._store(position, Value.of(value))
        else:
            self.bind(position, value, str, borrow=borrow)

    def bind_blob(self, position: int, value: Buffer, *, borrow: bool = False) -> None:
        if not isinstance(value, (bytes, bytearray, memoryview)):
            raise TypeMismatchError(f"{type(value).__name__} given for blob")
        self.bind(position, value, bytes, borrow=borrow)

    def bind_all(self, *values: Any) -> None:
        """Bind positions 1..len(values) in order."""
        for position, value in enumerate(values, start=1):
            self.bind(position, value)

    def clear_bindings(self) -> None:
        """Set every parameter back to NULL."""
        self._check_usable()
        self._rewind()
        self._slots = [NULL] * self.parameter_count

    def _store(self, position: int, slot: Slot) -> None:
        self._check_usable()
        self._check_parameter(position)
        length = self._slot_length(slot)
        if length > self._connection.max_length:
            raise ValueTooLargeError(
                f"value of {length} bytes exceeds limit of {self._connection.max_length} for parameter {position}")
        if self._cursor is not None or self._done:
            self._rewind()
        self._slots[position - 1] = slot

    @staticmethod
    def _slot_length(slot: Slot) -> int:
        if isinstance(slot, _Borrowed):
            return memoryview(slot.buffer).nbytes
        return byte_length(slot)

    # --- Execution ------------------------------------------------------------------
    def run(self) -> bool:
        """Advance one row. True while a row is available, then False.

        The first call after prepare/reset/rebind executes the statement.
        Once False has been returned, further calls keep returning False
        until the statement is reset or rebound.
        """
        self._check_usable()
        if self._done:
            return False
        if self._cursor is None:
            self._execute()
        try:
            row = self._cursor.fetchone()
        except sqlite3.Error as e:
            self._finish()
            raise translate(e, ExecutionError) from e
        if row is None:
            self._finish()
            return False
        self._row = row
        return True

    def _execute(self) -> None:
        raw = self._connection.raw()
        params = [self._param(i, slot) for i, slot in enumerate(self._slots, start=1)]
        try:
            self._cursor = raw.execute(self.sql, params)
        except sqlite3.Error as e:
            self._finish()
            raise translate(e, ExecutionError) from e
        description = self._cursor.description
        self._columns = tuple(d[0] for d in description) if description else ()
        self._last_insert_rowid, self._changes = self._connection.counters()

    def _param(self, position: int, slot: Slot) -> Any:
        if isinstance(slot, _Borrowed):
            value = slot.resolve()
            if byte_length(value) > self._connection.max_length:
                self._finish()
                raise ValueTooLargeError(
                    f"borrowed buffer for parameter {position} grew past {self._connection.max_length} bytes")
            return value.to_param()
        return slot.to_param()

    def reset(self) -> None:
        """Rewind to re-execute from the start; bindings are kept."""
        self._check_usable()
        self._rewind()

    def _rewind(self) -> None:
        self._close_cursor()
        self._row = None
        self._done = False

    def _finish(self) -> None:
        self._close_cursor()
        self._row = None
        self._done = True

    def _close_cursor(self) -> None:
        cursor, self._cursor = self._cursor, None
        if cursor is not None:
            cursor.close()

    # --- Columns --------------------------------------------------------------------
    def get(self, position: int, type_: Any) -> Any:
        """Read 0-based column ``position`` of the current row as ``type_``.

        Timestamps come back UTC-aware; a naive datetime that was bound is
        read back as the same instant with ``tzinfo=timezone.utc``.
        """
        self._check_usable()
        if self._row is None:
            raise InvalidStateError("no current row; call run() first")
        if not 0 <= position < len(self._row):
            raise OutOfRangeError(f"column {position} out of range (0..{len(self._row) - 1})")
        return Value.from_column(self._row[position]).convert(type_)

    def row(self, *types: Any) -> Tuple[Any, ...]:
        """Read the first len(types) columns at once."""
        return tuple(self.get(i, t) for i, t in enumerate(types))

    @property
    def column_count(self) -> int:
        return len(self._columns)

    @property
    def column_names(self) -> Sequence[str]:
        return self._columns

    def last_insert_rowid(self) -> int:
        return self._last_insert_rowid

    def changes(self) -> int:
        return self._changes

    # --- Lifecycle ------------------------------------------------------------------
    def finalize(self) -> None:
        """Release execution state. Idempotent."""
        if self._finalized:
            return
        self._close_cursor()
        self._row = None
        self._finalized = True

    def __enter__(self) -> "Statement":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.finalize()

    def _check_usable(self) -> None:
        if self._finalized:
            raise InvalidStateError("statement has been finalized")
        if not self._connection.is_open:
            raise InvalidStateError("statement used after its connection was closed")

    def _check_parameter(self, position: int) -> None:
        if not 1 <= position <= self.parameter_count:
            raise OutOfRangeError(
                f"parameter {position} out of range (1..{self.parameter_count})")

    def __repr__(self) -> str:
        return f"<Statement {sql_preview(self.sql, 60)!r}>"
