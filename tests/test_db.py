import sqlite3

import pytest

from queuewatch.db import Database
from queuewatch.exceptions import DatabaseError


def test_database_initialization(temp_db):
    with temp_db.connection() as conn:
        cursor = conn.cursor()
        cursor.execute("SELECT name FROM sqlite_master WHERE type='table'")
        tables = [row[0] for row in cursor.fetchall()]

        assert 'jobs' in tables
        assert 'workers' in tables
        assert 'commands' in tables
        assert 'config' in tables


def test_commands_table_layout(temp_db):
    with temp_db.connection() as conn:
        columns = [row['name'] for row in conn.execute("PRAGMA table_info(commands)")]
        indexes = [row['name'] for row in conn.execute("PRAGMA index_list(commands)")]

    assert columns == ['id', 'key', 'value', 'expires_at', 'created_at']
    assert 'idx_commands_expires_at' in indexes


def test_command_key_is_unique(temp_db):
    with temp_db.transaction() as conn:
        conn.execute("INSERT INTO commands (key, value) VALUES ('k', 'a')")

    with pytest.raises(sqlite3.IntegrityError):
        with temp_db.transaction() as conn:
            conn.execute("INSERT INTO commands (key, value) VALUES ('k', 'b')")


def test_job_status_is_constrained(temp_db):
    with pytest.raises(sqlite3.IntegrityError):
        with temp_db.transaction() as conn:
            conn.execute("""
                INSERT INTO jobs (job_id, status, created_at, updated_at)
                VALUES ('j1', 'dead', '2026-01-01', '2026-01-01')
            """)


def test_transaction_rolls_back_on_error(temp_db):
    with pytest.raises(RuntimeError):
        with temp_db.transaction() as conn:
            conn.execute("INSERT INTO config (key, value) VALUES ('a', 'b')")
            raise RuntimeError("abort")

    with temp_db.connection() as conn:
        assert conn.execute("SELECT COUNT(*) FROM config").fetchone()[0] == 0


def test_reopening_existing_database(temp_db):
    with temp_db.transaction() as conn:
        conn.execute("INSERT INTO config (key, value) VALUES ('a', 'b')")

    reopened = Database(temp_db.db_path)
    with reopened.connection() as conn:
        assert conn.execute("SELECT value FROM config WHERE key = 'a'").fetchone()[0] == 'b'


def test_unopenable_database_raises_database_error(tmp_path):
    db = Database(str(tmp_path / "queuewatch.db"))
    db.db_path = str(tmp_path)

    with pytest.raises(DatabaseError):
        with db.connection():
            pass
