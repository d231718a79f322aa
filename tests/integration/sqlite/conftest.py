"""
Fixtures for SQLite-specific integration tests.
"""
import dbexec
import pytest


@pytest.fixture
def sqlite_file(tmp_path):
    """Path of a file-based SQLite database holding test_table."""
    db_file = str(tmp_path / 'test_sqlite.db')
    with dbexec.connect({'drivername': 'sqlite', 'database': db_file}) as conn:
        conn.run("""
        CREATE TABLE test_table (
            id INTEGER PRIMARY KEY,
            name TEXT NOT NULL UNIQUE,
            value INTEGER NOT NULL
        )
        """)
        conn.run("INSERT INTO test_table (name, value) VALUES ('Alice', 10), ('Bob', 20), ('Charlie', 30)")
        conn.commit()
    return db_file


@pytest.fixture
def sqlite_file_conn(sqlite_file):
    """File-based SQLite connection for testing persistence across connections."""
    conn = dbexec.connect({'drivername': 'sqlite', 'database': sqlite_file})
    yield conn
    conn.logoff()
