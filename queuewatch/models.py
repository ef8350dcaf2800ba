from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class JobStatus(Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def rank(self) -> int:
        return _JOB_STATUS_RANK[self]

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


_JOB_STATUS_RANK = {
    JobStatus.PENDING: 0,
    JobStatus.PROCESSING: 1,
    JobStatus.COMPLETED: 2,
    JobStatus.FAILED: 2,
}


class WorkerStatus(Enum):
    RUNNING = "running"
    PAUSED = "paused"
    STOPPED = "stopped"


# Display order for the active worker set.
WORKER_STATUS_ORDER = (WorkerStatus.RUNNING, WorkerStatus.PAUSED, WorkerStatus.STOPPED)

PAYLOAD_SUMMARY_FIELDS = ('display_name', 'handler', 'max_tries', 'max_exceptions', 'timeout', 'data')


@dataclass
class Job:
    job_id: str
    queue: str
    status: JobStatus
    attempts: int = 0
    connection: Optional[str] = None
    payload_summary: Dict[str, Any] = field(default_factory=dict)
    worker_id: Optional[str] = None
    queued_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    exception: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.started_at is None or self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        return {
            'job_id': self.job_id,
            'queue': self.queue,
            'connection': self.connection,
            'payload': dict(self.payload_summary),
            'status': self.status.value,
            'attempts': self.attempts,
            'worker_id': self.worker_id,
            'queued_at': self.queued_at.isoformat() if self.queued_at else None,
            'started_at': self.started_at.isoformat() if self.started_at else None,
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
            'exception': self.exception,
        }


@dataclass
class Worker:
    worker_id: str
    queue: str
    status: WorkerStatus
    started_at: datetime
    last_heartbeat_at: datetime
    pid: Optional[int] = None
    hostname: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'worker_id': self.worker_id,
            'queue': self.queue,
            'status': self.status.value,
            'started_at': self.started_at.isoformat(),
            'last_heartbeat_at': self.last_heartbeat_at.isoformat(),
            'pid': self.pid,
            'hostname': self.hostname,
        }


@dataclass
class CommandEntry:
    key: str
    value: str
    expires_at: Optional[datetime]
    created_at: Optional[datetime] = None

    def is_live(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at > now


@dataclass
class Config:
    db_path: str = ".data/queuewatch.db"
    command_backend: str = "database"
    redis_url: str = "redis://localhost:6379/0"
    command_namespace: str = "queuewatch"
    command_ttl_seconds: int = 300
    worker_heartbeat_interval_seconds: int = 5
    worker_heartbeat_timeout_seconds: int = 30
    terminate_poll_interval_seconds: int = 2
    terminate_wait_timeout_seconds: int = 60
    dashboard_poll_interval_ms: int = 3000
    log_dir: Optional[str] = None
