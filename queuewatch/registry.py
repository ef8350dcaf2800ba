from typing import Callable, Dict, List, Optional

from .db import WORKER_COLUMNS, Database
from .models import WORKER_STATUS_ORDER, Worker, WorkerStatus
from .utils import format_ts, utcnow


class WorkerRegistry:
    def __init__(self, database: Database, clock: Callable = utcnow,
                 heartbeat_timeout_seconds: int = 30):
        self.db = database
        self.clock = clock
        self.heartbeat_timeout_seconds = heartbeat_timeout_seconds

    def register(self, worker: Worker):
        with self.db.transaction() as conn:
            conn.execute("""
                INSERT OR REPLACE INTO workers
                (worker_id, queue, status, started_at, last_heartbeat_at, pid, hostname)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (
                worker.worker_id, worker.queue, worker.status.value,
                format_ts(worker.started_at), format_ts(worker.last_heartbeat_at),
                worker.pid, worker.hostname
            ))

    def heartbeat(self, worker_id: str) -> bool:
        with self.db.transaction() as conn:
            cursor = conn.execute("""
                UPDATE workers
                SET last_heartbeat_at = ?
                WHERE worker_id = ?
            """, (format_ts(self.clock()), worker_id))
            return cursor.rowcount == 1

    def set_status(self, worker_id: str, status: WorkerStatus) -> bool:
        with self.db.transaction() as conn:
            cursor = conn.execute("""
                UPDATE workers
                SET status = ?, last_heartbeat_at = ?
                WHERE worker_id = ?
            """, (status.value, format_ts(self.clock()), worker_id))
            return cursor.rowcount == 1

    def get(self, worker_id: str) -> Optional[Worker]:
        with self.db.connection() as conn:
            return self.db.get_worker(conn, worker_id)

    def list_workers(self, status: Optional[WorkerStatus] = None) -> List[Worker]:
        query = f"SELECT {WORKER_COLUMNS} FROM workers"
        params = []

        if status is not None:
            query += " WHERE status = ?"
            params.append(status.value)

        query += " ORDER BY started_at ASC, worker_id ASC"

        with self.db.connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            return [self.db.row_to_worker(row) for row in cursor.fetchall()]

    def running_workers(self) -> List[Worker]:
        return self.list_workers(WorkerStatus.RUNNING)

    def count(self, status: WorkerStatus) -> int:
        with self.db.connection() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT COUNT(*) FROM workers WHERE status = ?", (status.value,))
            return cursor.fetchone()[0]

    def count_by_status(self) -> Dict[WorkerStatus, int]:
        counts = {status: 0 for status in WorkerStatus}

        with self.db.connection() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT status, COUNT(*) FROM workers GROUP BY status")
            for row in cursor.fetchall():
                counts[WorkerStatus(row[0])] = row[1]

        return counts

    def active_workers(self) -> List[Worker]:
        """Every known worker, running first, then paused, then stopped."""
        order = {status: position for position, status in enumerate(WORKER_STATUS_ORDER)}
        return sorted(self.list_workers(), key=lambda worker: order[worker.status])

    def uptime(self, worker: Worker) -> int:
        return abs(int((self.clock() - worker.started_at).total_seconds()))

    def is_healthy(self, worker: Worker) -> bool:
        if worker.status != WorkerStatus.RUNNING:
            return False
        age = (self.clock() - worker.last_heartbeat_at).total_seconds()
        return age <= self.heartbeat_timeout_seconds
