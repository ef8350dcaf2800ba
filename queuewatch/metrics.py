from collections import OrderedDict, defaultdict
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterator, List

from .db import Database
from .models import JobStatus, WorkerStatus
from .registry import WorkerRegistry
from .utils import ONE_HOUR, ONE_MINUTE, floor_hour, floor_minute, format_ts, parse_ts, seconds_between, utcnow


class WindowSeries:
    """Fixed-width, calendar-anchored windows counted lazily on iteration.

    The anchor is taken once, when the series is built, so iterating again
    re-counts the same windows. Windows are half-open: ``[start, start + width)``.
    """

    def __init__(self, anchor: datetime, width: timedelta, size: int,
                 count: Callable[[datetime, datetime], Dict[str, int]], label: str):
        self.anchor = anchor
        self.width = width
        self.size = size
        self._count = count
        self._label = label

    def __len__(self) -> int:
        return self.size

    def __iter__(self) -> Iterator[Dict]:
        for offset in range(self.size - 1, -1, -1):
            start = self.anchor - self.width * offset
            end = start + self.width
            bucket = {self._label: start.strftime('%H:%M')}
            bucket.update(self._count(start, end))
            yield bucket


class MetricsAggregator:
    """Point-in-time read queries over job and worker state."""

    def __init__(self, database: Database, registry: WorkerRegistry, clock: Callable = utcnow):
        self.db = database
        self.registry = registry
        self.clock = clock

    def _count(self, where: str = "", params: tuple = ()) -> int:
        query = "SELECT COUNT(*) FROM jobs"
        if where:
            query += " WHERE " + where

        with self.db.connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            return cursor.fetchone()[0]

    def _status_counts(self) -> Dict[JobStatus, int]:
        counts = {status: 0 for status in JobStatus}

        with self.db.connection() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT status, COUNT(*) FROM jobs GROUP BY status")
            for row in cursor.fetchall():
                counts[JobStatus(row[0])] = row[1]

        return counts

    def _finished_between(self, statuses, start: datetime, end: datetime) -> int:
        placeholders = ", ".join("?" for _ in statuses)
        return self._count(
            f"status IN ({placeholders}) AND completed_at >= ? AND completed_at < ?",
            (*[status.value for status in statuses], format_ts(start), format_ts(end))
        )

    def overall_stats(self) -> Dict[str, int]:
        now = self.clock()
        hour_ago = format_ts(now - ONE_HOUR)
        counts = self._status_counts()
        workers = self.registry.count_by_status()

        return {
            'total_jobs': sum(counts.values()),
            'pending': counts[JobStatus.PENDING],
            'processing': counts[JobStatus.PROCESSING],
            'completed': counts[JobStatus.COMPLETED],
            'failed': counts[JobStatus.FAILED],
            'completed_last_hour': self._count(
                "status = ? AND completed_at >= ?", (JobStatus.COMPLETED.value, hour_ago)
            ),
            'failed_last_hour': self._count(
                "status = ? AND completed_at >= ?", (JobStatus.FAILED.value, hour_ago)
            ),
            'active_workers': workers[WorkerStatus.RUNNING],
            'paused_workers': workers[WorkerStatus.PAUSED],
        }

    def hourly_throughput(self, hours: int = 24) -> WindowSeries:
        def count(start, end):
            return {
                'completed': self._finished_between([JobStatus.COMPLETED], start, end),
                'failed': self._finished_between([JobStatus.FAILED], start, end),
            }

        return WindowSeries(floor_hour(self.clock()), ONE_HOUR, hours, count, 'hour')

    def recent_throughput(self, minutes: int = 10) -> List[Dict]:
        def count(start, end):
            return {
                'count': self._finished_between([JobStatus.COMPLETED, JobStatus.FAILED], start, end),
            }

        return list(WindowSeries(floor_minute(self.clock()), ONE_MINUTE, minutes, count, 'minute'))

    def queue_depths(self) -> Dict[str, int]:
        with self.db.connection() as conn:
            cursor = conn.cursor()
            cursor.execute("""
                SELECT queue, COUNT(*) AS depth
                FROM jobs
                WHERE status = ?
                GROUP BY queue
                ORDER BY depth DESC, queue ASC
            """, (JobStatus.PENDING.value,))
            return OrderedDict((row['queue'], row['depth']) for row in cursor.fetchall())

    def average_durations(self) -> Dict[str, float]:
        totals = defaultdict(float)
        counts = defaultdict(int)

        with self.db.connection() as conn:
            cursor = conn.cursor()
            cursor.execute("""
                SELECT queue, started_at, completed_at
                FROM jobs
                WHERE status = ?
                AND started_at IS NOT NULL
                AND completed_at IS NOT NULL
            """, (JobStatus.COMPLETED.value,))

            for row in cursor.fetchall():
                duration = seconds_between(parse_ts(row['started_at']), parse_ts(row['completed_at']))
                totals[row['queue']] += abs(duration)
                counts[row['queue']] += 1

        return {queue: round(totals[queue] / counts[queue], 2) for queue in sorted(counts)}

    def worker_stats(self) -> Dict[str, int]:
        workers = self.registry.list_workers()

        return {
            'total': len(workers),
            'running': sum(1 for w in workers if w.status == WorkerStatus.RUNNING),
            'paused': sum(1 for w in workers if w.status == WorkerStatus.PAUSED),
            'stopped': sum(1 for w in workers if w.status == WorkerStatus.STOPPED),
            'healthy': sum(1 for w in workers if self.registry.is_healthy(w)),
        }
