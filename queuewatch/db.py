import json
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Optional
from .exceptions import DatabaseError
from .models import Job, JobStatus, Worker, WorkerStatus
from .utils import parse_ts


JOB_COLUMNS = """
    job_id, queue, connection, payload, status, attempts, worker_id,
    queued_at, started_at, completed_at, exception, created_at, updated_at
"""

WORKER_COLUMNS = """
    worker_id, queue, status, started_at, last_heartbeat_at, pid, hostname
"""


class Database:
    def __init__(self, db_path: str):
        self.db_path = db_path
        self._ensure_db_directory()
        self._init_schema()

    def _ensure_db_directory(self):
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

    def _init_schema(self):
        with self.connection() as conn:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS jobs (
                    job_id TEXT PRIMARY KEY,
                    queue TEXT NOT NULL DEFAULT 'default',
                    connection TEXT,
                    payload TEXT,
                    status TEXT NOT NULL CHECK (status IN ('pending', 'processing', 'completed', 'failed')),
                    attempts INTEGER NOT NULL DEFAULT 0,
                    worker_id TEXT,
                    queued_at TEXT,
                    started_at TEXT,
                    completed_at TEXT,
                    exception TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_jobs_status_queue ON jobs(status, queue);
                CREATE INDEX IF NOT EXISTS idx_jobs_completed_at ON jobs(completed_at);
                CREATE INDEX IF NOT EXISTS idx_jobs_created_at ON jobs(created_at);

                CREATE TABLE IF NOT EXISTS workers (
                    worker_id TEXT PRIMARY KEY,
                    queue TEXT NOT NULL DEFAULT 'default',
                    status TEXT NOT NULL CHECK (status IN ('running', 'paused', 'stopped')),
                    started_at TEXT NOT NULL,
                    last_heartbeat_at TEXT NOT NULL,
                    pid INTEGER,
                    hostname TEXT
                );

                CREATE INDEX IF NOT EXISTS idx_workers_status ON workers(status);

                CREATE TABLE IF NOT EXISTS commands (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    key TEXT NOT NULL UNIQUE,
                    value TEXT NOT NULL,
                    expires_at TEXT,
                    created_at TEXT
                );

                CREATE INDEX IF NOT EXISTS idx_commands_expires_at ON commands(expires_at);

                CREATE TABLE IF NOT EXISTS config (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                );
            """)

    @contextmanager
    def connection(self):
        conn = None
        try:
            conn = sqlite3.connect(self.db_path, timeout=30.0)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=NORMAL")
        except sqlite3.Error as e:
            if conn:
                conn.close()
            raise DatabaseError(f"Cannot open database {self.db_path}: {e}") from e

        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(self):
        with self.connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
                conn.commit()
            except Exception:
                conn.rollback()
                raise

    def get_job(self, conn, job_id: str) -> Optional[Job]:
        cursor = conn.cursor()
        cursor.execute(f"SELECT {JOB_COLUMNS} FROM jobs WHERE job_id = ?", (job_id,))
        row = cursor.fetchone()
        if not row:
            return None
        return self.row_to_job(row)

    def get_worker(self, conn, worker_id: str) -> Optional[Worker]:
        cursor = conn.cursor()
        cursor.execute(f"SELECT {WORKER_COLUMNS} FROM workers WHERE worker_id = ?", (worker_id,))
        row = cursor.fetchone()
        if not row:
            return None
        return self.row_to_worker(row)

    @staticmethod
    def row_to_job(row) -> Job:
        return Job(
            job_id=row['job_id'],
            queue=row['queue'],
            connection=row['connection'],
            payload_summary=json.loads(row['payload']) if row['payload'] else {},
            status=JobStatus(row['status']),
            attempts=row['attempts'],
            worker_id=row['worker_id'],
            queued_at=parse_ts(row['queued_at']),
            started_at=parse_ts(row['started_at']),
            completed_at=parse_ts(row['completed_at']),
            exception=row['exception'],
            created_at=parse_ts(row['created_at']),
            updated_at=parse_ts(row['updated_at'])
        )

    @staticmethod
    def row_to_worker(row) -> Worker:
        return Worker(
            worker_id=row['worker_id'],
            queue=row['queue'],
            status=WorkerStatus(row['status']),
            started_at=parse_ts(row['started_at']),
            last_heartbeat_at=parse_ts(row['last_heartbeat_at']),
            pid=row['pid'],
            hostname=row['hostname']
        )
