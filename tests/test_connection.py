import threading
from datetime import timedelta
import pytest
from sqlite_typed import (
    Connection, ConnectionConfig, OpenFlag, DatabaseConnectionError, ExecutionError,
    InvalidStateError, Transaction, TransactionMode,
)
from sqlite_typed.connection import (
    MAX_BUSY_TIMEOUT_MS, DEFAULT_BUSY_TIMEOUT_MS, connect_options, options_string, build_uri,
)
from sqlite_typed.errors import SQLITE_MISUSE, SQLITE_CANTOPEN


def test_open_and_close_memory():
    conn = Connection.open(':memory:', config=ConnectionConfig())
    assert conn and conn.is_open
    conn.exec("CREATE TABLE x(a)")
    conn.close()
    assert not conn
    conn.close()  # idempotent
    with pytest.raises(InvalidStateError):
        conn.exec("SELECT 1")
    with pytest.raises(InvalidStateError):
        conn.prepare("SELECT 1")


def test_context_manager_closes():
    with Connection.open(':memory:', config=ConnectionConfig()) as conn:
        conn.exec("SELECT 1")
    assert not conn.is_open


def test_missing_file_read_only(tmp_path):
    db_path = tmp_path / 'does_not_exist.db'
    with pytest.raises(DatabaseConnectionError) as exc:
        Connection.open(db_path, OpenFlag.READ_ONLY)
    assert 'not found' in str(exc.value).lower()
    assert not db_path.exists()


def test_directory_path_rejected(tmp_path):
    with pytest.raises(DatabaseConnectionError) as exc:
        Connection.open(tmp_path)
    assert 'directory' in exc.value.message


def test_conflicting_flags_rejected(tmp_path):
    with pytest.raises(DatabaseConnectionError) as exc:
        Connection.open(tmp_path / 'x.db', OpenFlag.READ_ONLY | OpenFlag.CREATE)
    assert exc.value.code == SQLITE_MISUSE
    assert not (tmp_path / 'x.db').exists()


def test_unopenable_path_carries_backend_code(tmp_path):
    with pytest.raises(DatabaseConnectionError) as exc:
        Connection.open(tmp_path / 'missing_dir' / 'x.db')
    assert exc.value.code & 0xFF == SQLITE_CANTOPEN
    assert 'unable to open' in exc.value.message


def test_rw_without_create_needs_existing_file(tmp_path):
    with pytest.raises(DatabaseConnectionError):
        Connection.open(tmp_path / 'new.db', OpenFlag.READ_WRITE)
    assert not (tmp_path / 'new.db').exists()


def test_not_a_database_fails_at_open(tmp_path):
    junk = tmp_path / 'junk.db'
    junk.write_bytes(b'this is definitely not sqlite ' * 64)
    with pytest.raises(DatabaseConnectionError) as exc:
        Connection.open(junk)
    assert 'not a database' in exc.value.message


def test_read_only_rejects_writes(db_path):
    with Connection.open(db_path, OpenFlag.READ_ONLY, config=ConnectionConfig()) as conn:
        with pytest.raises(ExecutionError) as exc:
            conn.exec("INSERT INTO t(name) VALUES ('blocked')")
        assert 'readonly' in exc.value.message.lower()
        # reads still fine
        with conn.prepare("SELECT name FROM t") as stmt:
            assert stmt.run() and stmt.get(0, str) == 'seed'


def test_immutable_read_only(db_path):
    flags = OpenFlag.READ_ONLY | OpenFlag.IMMUTABLE
    with Connection.open(db_path, flags, config=ConnectionConfig()) as conn:
        assert conn.options == {'mode': 'ro', 'immutable': '1'}
        with pytest.raises(ExecutionError):
            conn.exec("DELETE FROM t")


def test_connect_options_encoding():
    assert connect_options(OpenFlag(0)) == {}
    assert options_string(connect_options(OpenFlag(0))) == ''
    opts = connect_options(OpenFlag.READ_ONLY | OpenFlag.SHARED_CACHE)
    assert options_string(opts) == 'mode=ro;cache=shared'
    assert connect_options(OpenFlag.READ_WRITE | OpenFlag.CREATE) == {'mode': 'rwc'}
    assert connect_options(OpenFlag.READ_WRITE | OpenFlag.CREATE, ':memory:') == {}
    assert build_uri('a b.db', {}) == 'file:a%20b.db'
    assert build_uri(':memory:', {'cache': 'shared'}) == 'file::memory:?cache=shared'


def test_shared_cache_memory_database():
    flags = OpenFlag.READ_WRITE | OpenFlag.CREATE | OpenFlag.MEMORY | OpenFlag.SHARED_CACHE
    a = Connection.open('shared_mem_test', flags, config=ConnectionConfig())
    b = Connection.open('shared_mem_test', flags, config=ConnectionConfig())
    try:
        a.exec("CREATE TABLE s(v INTEGER)")
        a.exec("INSERT INTO s VALUES (7)")
        with b.prepare("SELECT v FROM s") as stmt:
            assert stmt.run() and stmt.get(0, int) == 7
    finally:
        a.close()
        b.close()


def test_set_busy_timeout(db):
    db.set_busy_timeout(timedelta(milliseconds=250))
    assert db.busy_timeout_ms == 250
    assert db.health_check()['busy_timeout_ms'] == 250
    with pytest.raises(ValueError):
        db.set_busy_timeout(-1)
    assert db.busy_timeout_ms == 250
    db.set_busy_timeout(0)
    assert db.health_check()['busy_timeout_ms'] == 0


def test_open_busy_timeout_argument_overrides_config(db_path):
    config = ConnectionConfig(busy_timeout_ms=1234)
    with Connection.open(db_path, busy_timeout=timedelta(seconds=2), config=config) as conn:
        assert conn.busy_timeout_ms == 2000
        assert conn.health_check()['busy_timeout_ms'] == 2000
    assert config.busy_timeout_ms == 1234


def test_lock_contention_surfaces_after_timeout(db_path):
    holder = Connection.open(db_path, busy_timeout=0, config=ConnectionConfig())
    waiter = Connection.open(db_path, busy_timeout=50, config=ConnectionConfig())
    try:
        tx = Transaction(holder, TransactionMode.EXCLUSIVE)
        with pytest.raises(ExecutionError) as exc:
            waiter.exec("INSERT INTO t(name) VALUES ('x')")
        assert 'locked' in exc.value.message
        tx.rollback()
        waiter.exec("INSERT INTO t(name) VALUES ('x')")
    finally:
        waiter.close()
        holder.close()


def test_counters(table):
    table.exec("INSERT INTO t(name) VALUES ('a')")
    table.exec("INSERT INTO t(name) VALUES ('b')")
    assert table.last_insert_rowid() == 2
    table.exec("UPDATE t SET name = 'z'")
    assert table.changes() == 2


def test_exec_error_keeps_code(table):
    with pytest.raises(ExecutionError) as exc:
        table.exec("INSERT INTO nope VALUES (1)")
    assert exc.value.code != 0
    assert 'no such table' in exc.value.message


def test_exec_multiple_statements_rejected(db):
    with pytest.raises(ExecutionError):
        db.exec("CREATE TABLE a(x); CREATE TABLE b(y)")


def test_use_from_other_thread_is_detected(db):
    errors = []

    def worker():
        try:
            db.exec("SELECT 1")
        except Exception as e:  # collected for the assertion below
            errors.append(e)

    th = threading.Thread(target=worker)
    th.start()
    th.join()
    assert len(errors) == 1 and isinstance(errors[0], InvalidStateError)


def test_close_finalizes_statements(db):
    stmt = db.prepare("SELECT 1")
    assert stmt.run()
    db.close()
    with pytest.raises(InvalidStateError):
        stmt.run()


def test_health_check(db_path):
    with Connection.open(db_path, config=ConnectionConfig()) as conn:
        hc = conn.health_check()
        for k in ['ok', 'path', 'options', 'busy_timeout_ms', 'journal_mode', 'foreign_keys', 'in_transaction']:
            assert k in hc
        assert hc['ok'] is True
        assert hc['options'] == 'mode=rwc'
        assert hc['foreign_keys'] == 1
    assert conn.health_check()['ok'] is False


def test_env_clamping(monkeypatch, capsys):
    monkeypatch.setenv('BUSY_TIMEOUT_MS', str(MAX_BUSY_TIMEOUT_MS * 10))
    monkeypatch.setenv('MAX_BIND_LENGTH', '0')
    cfg = ConnectionConfig.from_env()
    assert cfg.busy_timeout_ms == MAX_BUSY_TIMEOUT_MS
    assert cfg.max_length == 1
    assert 'connection_config_clamped' in capsys.readouterr().err


def test_invalid_env_values_warning(monkeypatch, capsys):
    monkeypatch.setenv('BUSY_TIMEOUT_MS', 'soon')
    monkeypatch.setenv('FOREIGN_KEYS', '0')
    cfg = ConnectionConfig.from_env()
    captured = capsys.readouterr()
    assert 'invalid_env_int' in captured.err
    assert 'BUSY_TIMEOUT_MS' in captured.err
    assert cfg.busy_timeout_ms == DEFAULT_BUSY_TIMEOUT_MS
    assert cfg.foreign_keys is False
    with Connection.open(':memory:', config=cfg) as conn:
        assert conn.health_check()['foreign_keys'] == 0


def test_verify_on_connect_integrity(monkeypatch, db_path):
    monkeypatch.setenv('VERIFY_ON_CONNECT', '1')
    with Connection.open(db_path) as conn:
        assert conn.config.verify_on_connect is True
        with conn.prepare("SELECT count(*) FROM t") as stmt:
            assert stmt.run() and stmt.get(0, int) == 1
