import sqlite3, pytest
from pathlib import Path
from sqlite_typed import Connection, ConnectionConfig

@pytest.fixture()
def db():
    # Explicit config so LOG_LEVEL / BUSY_TIMEOUT_MS etc. in the environment don't leak in
    conn = Connection.open(':memory:', config=ConnectionConfig())
    try:
        yield conn
    finally:
        conn.close()

@pytest.fixture()
def table(db):
    db.exec("CREATE TABLE t(id INTEGER PRIMARY KEY, name TEXT)")
    return db

@pytest.fixture()
def db_path(tmp_path):
    path = tmp_path / 'test.db'
    conn = sqlite3.connect(path)
    try:
        conn.execute("CREATE TABLE t(id INTEGER PRIMARY KEY, name TEXT)")
        conn.execute("INSERT INTO t(name) VALUES ('seed')")
        conn.commit()
    finally:
        conn.close()
    return str(path)

@pytest.fixture()
def count_rows():
    def _count(conn, sql="SELECT count(*) FROM t"):
        with conn.prepare(sql) as stmt:
            assert stmt.run()
            return stmt.get(0, int)
    return _count
