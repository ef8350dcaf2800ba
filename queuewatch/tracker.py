import json
import logging
from typing import Callable, List, Optional

from .db import JOB_COLUMNS, Database
from .events import (
    JobCompleted,
    JobEvent,
    JobFailed,
    JobProcessing,
    JobQueued,
    JobRetryRequested,
    extract_job_id,
    extract_payload_summary,
    format_exception,
    payload_or_empty,
)
from .exceptions import TrackerError
from .logging_utils import component_logger
from .models import Job, JobStatus
from .outcome import Guard, Outcome
from .utils import format_ts, utcnow


def _statuses_allowing(target: JobStatus) -> List[str]:
    """Current statuses from which a move to ``target`` is forward (or a re-apply)."""
    return [
        status.value for status in JobStatus
        if status.rank < target.rank or status == target
    ]


class LifecycleTracker:
    """Upserts job state from lifecycle events, keyed on ``job_id``.

    Every ``record_*`` call returns an :class:`Outcome` and never raises, so a
    tracking failure cannot disturb the queue system that emitted the event.
    An update for a ``job_id`` with no row is a silent no-op; the row may
    simply not exist yet.
    """

    def __init__(self, database: Database, clock: Callable = utcnow,
                 logger: Optional[logging.Logger] = None):
        self.db = database
        self.clock = clock
        self.logger = logger or component_logger('tracker')
        self.guard = Guard(self.logger)
        self._handlers = {
            JobQueued: self.record_queued,
            JobProcessing: self.record_processing,
            JobCompleted: self.record_completed,
            JobFailed: self.record_failed,
            JobRetryRequested: self.record_retry_requested,
        }

    def handle(self, event: JobEvent) -> Outcome:
        handler = self._handlers.get(type(event))
        if handler is None:
            error = TrackerError(f"Unsupported lifecycle event: {type(event).__name__}")
            self.logger.error(str(error))
            return Outcome(error=error)
        return handler(event)

    def record_queued(self, event: JobQueued) -> Outcome:
        return self.guard.call("Recording queued job", self._record_queued, event)

    def record_processing(self, event: JobProcessing) -> Outcome:
        return self.guard.call("Recording job start", self._record_processing, event, default=0)

    def record_completed(self, event: JobCompleted) -> Outcome:
        return self.guard.call("Recording job completion", self._record_completed, event, default=0)

    def record_failed(self, event: JobFailed) -> Outcome:
        return self.guard.call("Recording job failure", self._record_failed, event, default=0)

    def record_retry_requested(self, event: JobRetryRequested) -> Outcome:
        return self.guard.call("Recording job retry", self._record_retry_requested, event, default=0)

    def _record_queued(self, event: JobQueued) -> str:
        job_id = extract_job_id(event)
        now = format_ts(self.clock())
        summary = extract_payload_summary(payload_or_empty(event))

        with self.db.transaction() as conn:
            conn.execute("""
                INSERT INTO jobs (job_id, queue, connection, payload, status, attempts,
                                  queued_at, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, 0, ?, ?, ?)
                ON CONFLICT(job_id) DO NOTHING
            """, (
                job_id, event.queue or 'default', event.connection,
                json.dumps(summary, default=str), JobStatus.PENDING.value,
                now, now, now
            ))

        return job_id

    def _record_processing(self, event: JobProcessing) -> int:
        now = format_ts(self.clock())
        return self._transition(
            extract_job_id(event), JobStatus.PROCESSING,
            "started_at = ?, worker_id = COALESCE(?, worker_id)",
            (now, event.worker_id), now
        )

    def _record_completed(self, event: JobCompleted) -> int:
        now = format_ts(self.clock())
        return self._transition(
            extract_job_id(event), JobStatus.COMPLETED,
            "completed_at = ?", (now,), now
        )

    def _record_failed(self, event: JobFailed) -> int:
        now = format_ts(self.clock())
        return self._transition(
            extract_job_id(event), JobStatus.FAILED,
            "completed_at = ?, exception = ?", (now, format_exception(event.exception)), now
        )

    def _record_retry_requested(self, event: JobRetryRequested) -> int:
        job_id = extract_job_id(event)

        with self.db.transaction() as conn:
            cursor = conn.execute("""
                UPDATE jobs
                SET attempts = attempts + 1, updated_at = ?
                WHERE job_id = ?
            """, (format_ts(self.clock()), job_id))
            return cursor.rowcount

    def _transition(self, job_id: str, target: JobStatus, assignments: str,
                    params: tuple, now: str) -> int:
        allowed = _statuses_allowing(target)
        placeholders = ", ".join("?" for _ in allowed)

        with self.db.transaction() as conn:
            cursor = conn.execute(f"""
                UPDATE jobs
                SET status = ?, {assignments}, updated_at = ?
                WHERE job_id = ? AND status IN ({placeholders})
            """, (target.value, *params, now, job_id, *allowed))
            updated = cursor.rowcount

        if updated == 0:
            self.logger.debug(f"No {target.value} transition applied for job {job_id}")
        return updated

    def get_job(self, job_id: str) -> Optional[Job]:
        with self.db.connection() as conn:
            return self.db.get_job(conn, job_id)

    def recent_jobs(self, limit: int = 20) -> List[Job]:
        with self.db.connection() as conn:
            cursor = conn.cursor()
            cursor.execute(f"""
                SELECT {JOB_COLUMNS} FROM jobs
                ORDER BY created_at DESC, rowid DESC
                LIMIT ?
            """, (limit,))
            return [self.db.row_to_job(row) for row in cursor.fetchall()]
