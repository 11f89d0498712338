"""SQLite connection with explicit open flags and busy timeout.

Responsibilities:
    - Translate OpenFlag sets into URI options (mode=ro|rw|rwc|memory, cache, immutable)
    - Open atomically: a handle is either fully configured or closed and discarded
    - Environment driven tuning with clamping + sanity logging
    - exec / prepare / transaction entry points, health check helper

The driver runs in autocommit mode (isolation_level=None); transactions are
only ever started explicitly through ``Transaction``.
"""
from __future__ import annotations
import sqlite3, os, weakref
from dataclasses import dataclass, replace
from datetime import timedelta
from enum import IntFlag
from typing import Any, Dict, Optional, Tuple, Union
from urllib.parse import quote

from .errors import (
    SQLITE_MISUSE, DatabaseConnectionError, ExecutionError, InvalidStateError, translate,
)
from .logging_util import debug, info, warn, sql_preview
from .statement import Statement
from .transaction import Transaction, TransactionMode

MAX_BIND_LENGTH = 2 ** 31 - 1          # largest length sqlite3_bind_text accepts
DEFAULT_BUSY_TIMEOUT_MS = 5000
MAX_BUSY_TIMEOUT_MS = 10 * 60 * 1000   # 10 minutes
MEMORY_PATH = ":memory:"

Duration = Union[timedelta, int, float]


class OpenFlag(IntFlag):
    """Same bit values as the SQLITE_OPEN_* constants."""
    READ_ONLY = 0x00000001
    READ_WRITE = 0x00000002
    CREATE = 0x00000004
    MEMORY = 0x00000080
    SHARED_CACHE = 0x00020000
    PRIVATE_CACHE = 0x00040000
    IMMUTABLE = 0x10000000  # no SQLITE_OPEN_* equivalent; maps to immutable=1


DEFAULT_FLAGS = OpenFlag.READ_WRITE | OpenFlag.CREATE


@dataclass
class ConnectionConfig:
    busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS
    max_length: int = MAX_BIND_LENGTH
    foreign_keys: bool = True
    verify_on_connect: bool = False

    @classmethod
    def from_env(cls) -> "ConnectionConfig":
        def _int(name: str, default: int) -> int:
            raw = os.environ.get(name)
            if raw is None:
                return default
            try:
                return int(raw)
            except ValueError:
                warn("invalid_env_int", key=name, value=raw, default=default)
                return default
        busy = _int("BUSY_TIMEOUT_MS", DEFAULT_BUSY_TIMEOUT_MS)
        max_length = _int("MAX_BIND_LENGTH", MAX_BIND_LENGTH)
        foreign_keys = os.environ.get("FOREIGN_KEYS", "1") == "1"
        verify = os.environ.get("VERIFY_ON_CONNECT", "0") == "1"
        # Clamp
        adjusted = {}
        if busy < 0 or busy > MAX_BUSY_TIMEOUT_MS:
            adjusted["busy_timeout_ms"] = busy
            busy = min(MAX_BUSY_TIMEOUT_MS, max(0, busy))
        if max_length < 1 or max_length > MAX_BIND_LENGTH:
            adjusted["max_length"] = max_length
            max_length = min(MAX_BIND_LENGTH, max(1, max_length))
        if adjusted:
            warn("connection_config_clamped", original=adjusted,
                 clamped={"busy_timeout_ms": busy, "max_length": max_length})
        return cls(busy_timeout_ms=busy, max_length=max_length,
                   foreign_keys=foreign_keys, verify_on_connect=verify)


def timeout_ms(duration: Duration) -> int:
    if isinstance(duration, timedelta):
        ms = int(duration.total_seconds() * 1000)
    else:
        ms = int(duration)
    if ms < 0:
        raise ValueError(f"busy timeout must be >= 0 ms, got {ms}")
    return ms


def connect_options(flags: OpenFlag, path: str = "") -> Dict[str, str]:
    """URI query options for a flag set. No flags -> no options."""
    if flags & OpenFlag.READ_ONLY and flags & (OpenFlag.READ_WRITE | OpenFlag.CREATE):
        raise DatabaseConnectionError("READ_ONLY cannot be combined with READ_WRITE or CREATE",
                                      code=SQLITE_MISUSE)
    if flags & OpenFlag.SHARED_CACHE and flags & OpenFlag.PRIVATE_CACHE:
        raise DatabaseConnectionError("SHARED_CACHE cannot be combined with PRIVATE_CACHE",
                                      code=SQLITE_MISUSE)
    options: Dict[str, str] = {}
    if flags & OpenFlag.MEMORY:
        options["mode"] = "memory"
    elif path == MEMORY_PATH:
        pass  # mode= is meaningless for the anonymous in-memory database
    elif flags & OpenFlag.READ_ONLY:
        options["mode"] = "ro"
    elif flags & OpenFlag.READ_WRITE:
        options["mode"] = "rwc" if flags & OpenFlag.CREATE else "rw"
    if flags & OpenFlag.SHARED_CACHE:
        options["cache"] = "shared"
    elif flags & OpenFlag.PRIVATE_CACHE:
        options["cache"] = "private"
    if flags & OpenFlag.IMMUTABLE:
        options["immutable"] = "1"
    return options


def options_string(options: Dict[str, str]) -> str:
    return ";".join(f"{k}={v}" for k, v in options.items())


def build_uri(path: str, options: Dict[str, str]) -> str:
    uri = "file:" + quote(path, safe="/:\\")
    if options:
        uri += "?" + "&".join(f"{k}={v}" for k, v in options.items())
    return uri


class Connection:
    """Exclusive owner of one open SQLite handle.

    Use ``Connection.open`` rather than the constructor. Truthiness reports
    whether the handle is still open; every operation on a closed connection
    raises InvalidStateError.
    """

    def __init__(self, raw: sqlite3.Connection, path: str, flags: OpenFlag,
                 options: Dict[str, str], config: ConnectionConfig):
        self._raw: Optional[sqlite3.Connection] = raw
        self.path = path
        self.flags = flags
        self.options = options
        self.config = config
        self.busy_timeout_ms = config.busy_timeout_ms
        self.max_length = config.max_length
        self._statements: "weakref.WeakSet[Statement]" = weakref.WeakSet()

    # --- Lifecycle ------------------------------------------------------------------
    @classmethod
    def open(cls, path: Union[str, os.PathLike], flags: OpenFlag = DEFAULT_FLAGS,
             busy_timeout: Optional[Duration] = None,
             config: Optional[ConnectionConfig] = None) -> "Connection":
        """Open (or create, per flags) the database at ``path``.

        Raises DatabaseConnectionError with the backend code and message when
        the backend rejects the path or flags. Nothing is retained on failure.
        """
        path = os.fspath(path)
        config = config or ConnectionConfig.from_env()
        if busy_timeout is not None:
            config = replace(config, busy_timeout_ms=timeout_ms(busy_timeout))
        flags = OpenFlag(flags)
        options = connect_options(flags, path)
        _precheck(path, flags)

        uri = build_uri(path, options)
        try:
            raw = sqlite3.connect(uri, uri=True, isolation_level=None,
                                  timeout=config.busy_timeout_ms / 1000.0)
        except sqlite3.Error as e:
            raise DatabaseConnectionError.from_sqlite(e, f"cannot open {path}: ") from e
        try:
            _configure(raw, config, writable=not flags & OpenFlag.READ_ONLY, path=path)
        except sqlite3.Error as e:
            raw.close()
            raise DatabaseConnectionError.from_sqlite(e, f"cannot open {path}: ") from e
        except BaseException:
            raw.close()
            raise
        info("connection_open", path=path, options=options_string(options),
             busy_timeout_ms=config.busy_timeout_ms)
        return cls(raw, path, flags, options, config)

    @property
    def is_open(self) -> bool:
        return self._raw is not None

    def __bool__(self) -> bool:
        return self.is_open

    def close(self) -> None:
        """Finalize live statements and close the handle. Idempotent."""
        if self._raw is None:
            return
        for stmt in list(self._statements):
            stmt.finalize()
        raw, self._raw = self._raw, None
        raw.close()
        info("connection_close", path=self.path)

    def __enter__(self) -> "Connection":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __repr__(self) -> str:
        state = "open" if self.is_open else "closed"
        return f"<Connection {self.path!r} {state}>"

    # --- Public API -----------------------------------------------------------------
    def set_busy_timeout(self, duration: Duration) -> None:
        """Change how long a blocked call waits for a lock before failing.

        Either the new timeout is in effect afterwards or ExecutionError is
        raised and the old one still is.
        """
        ms = timeout_ms(duration)
        raw = self.raw()
        try:
            raw.execute(f"PRAGMA busy_timeout = {ms}").close()
        except sqlite3.Error as e:
            raise translate(e, ExecutionError, "busy_timeout: ") from e
        self.busy_timeout_ms = ms
        debug("busy_timeout_set", path=self.path, ms=ms)

    def exec(self, sql: str) -> None:
        """Execute one complete statement; any rows it produces are discarded."""
        raw = self.raw()
        debug("exec", sql=sql_preview(sql))
        try:
            raw.execute(sql).close()
        except sqlite3.Error as e:
            raise translate(e, ExecutionError) from e

    def prepare(self, sql: str) -> Statement:
        stmt = Statement(self, sql)
        self._statements.add(stmt)
        return stmt

    def transaction(self, mode: Optional[TransactionMode] = None) -> Transaction:
        return Transaction(self, mode or TransactionMode.DEFERRED)

    @property
    def in_transaction(self) -> bool:
        return self.raw().in_transaction

    def last_insert_rowid(self) -> int:
        return self.counters()[0]

    def changes(self) -> int:
        return self.counters()[1]

    def counters(self) -> Tuple[int, int]:
        """(last_insert_rowid, changes) as maintained by the backend."""
        raw = self.raw()
        try:
            row = raw.execute("SELECT last_insert_rowid(), changes()").fetchone()
        except sqlite3.Error as e:
            raise translate(e, ExecutionError) from e
        return int(row[0]), max(0, int(row[1]))

    def raw(self) -> sqlite3.Connection:
        """Underlying driver handle; raises InvalidStateError once closed."""
        if self._raw is None:
            raise InvalidStateError(f"connection to {self.path} is closed")
        return self._raw

    def health_check(self) -> Dict[str, Any]:
        """Return current core pragma values and basic status."""
        if self._raw is None:
            return {"ok": False, "path": self.path, "error": "connection is closed"}
        try:
            raw = self._raw
            return {
                "ok": True,
                "path": self.path,
                "options": options_string(self.options),
                "busy_timeout_ms": raw.execute("PRAGMA busy_timeout").fetchone()[0],
                "journal_mode": raw.execute("PRAGMA journal_mode").fetchone()[0],
                "foreign_keys": raw.execute("PRAGMA foreign_keys").fetchone()[0],
                "in_transaction": raw.in_transaction,
            }
        except sqlite3.Error as e:
            return {"ok": False, "path": self.path, "error": str(e)}


# --- Internal -----------------------------------------------------------------------
def _precheck(path: str, flags: OpenFlag) -> None:
    if path == MEMORY_PATH or flags & OpenFlag.MEMORY:
        return
    if os.path.isdir(path):  # directory misuse
        raise DatabaseConnectionError(f"Path points to a directory, expected file: {path}")
    if flags & OpenFlag.READ_ONLY and not os.path.exists(path):
        # Friendly pre-check before SQLite cryptic error
        raise DatabaseConnectionError(f"Database not found and read-only open requested: {path}")


def _configure(raw: sqlite3.Connection, config: ConnectionConfig, writable: bool, path: str) -> None:
    # Touches the file header, so a non-database file fails here instead of later.
    raw.execute("PRAGMA schema_version").fetchone()
    raw.execute(f"PRAGMA busy_timeout = {config.busy_timeout_ms}").close()
    raw.execute(f"PRAGMA foreign_keys = {'ON' if config.foreign_keys else 'OFF'}").close()
    if config.verify_on_connect and writable:
        res = raw.execute("PRAGMA integrity_check").fetchone()[0]
        if res != "ok":
            warn("integrity_check_failed", path=path, result=res)


def cli_dump_config():  # pragma: no cover - thin CLI wrapper
    """CLI helper: print resolved ConnectionConfig + health_check JSON."""
    import argparse, json
    ap = argparse.ArgumentParser(description='Dump connection config and health info')
    ap.add_argument('db', help='Path to SQLite database')
    ap.add_argument('--read-only', action='store_true', help='Open with READ_ONLY instead of READ_WRITE|CREATE')
    args = ap.parse_args()
    flags = OpenFlag.READ_ONLY if args.read_only else DEFAULT_FLAGS
    with Connection.open(args.db, flags) as conn:
        out = {'config': conn.config.__dict__.copy(), 'health_check': conn.health_check()}
    print(json.dumps(out, indent=2))

if __name__ == '__main__':  # pragma: no cover
    cli_dump_config()
