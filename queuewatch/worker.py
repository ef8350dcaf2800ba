import os
import signal
import socket
import sys
import time
import uuid
from datetime import datetime
from typing import Callable, Optional
from .channel import CommandChannel, global_terminate_key, worker_command_key
from .models import Config, Worker, WorkerStatus
from .registry import WorkerRegistry
from .logging_utils import setup_logging
from .utils import from_unix_timestamp, utcnow


class WorkerAgent:
    """Worker-side poll loop for the command channel.

    Reports itself to the registry, heartbeats, and picks up operator commands
    between iterations. Job execution belongs to the host queue system; the
    agent only keeps the worker's reported state in step with the channel.
    """

    def __init__(self, channel: CommandChannel, registry: WorkerRegistry,
                 config: Optional[Config] = None, queue: str = 'default',
                 worker_id: Optional[str] = None, poll_interval_ms: int = 500,
                 clock: Callable = utcnow, install_signal_handlers: bool = True):
        self.worker_id = worker_id or f"worker-{uuid.uuid4().hex[:8]}"
        self.channel = channel
        self.registry = registry
        self.config = config or Config()
        self.queue = queue
        self.poll_interval_ms = poll_interval_ms
        self.clock = clock
        self.stopping = False
        self.status = WorkerStatus.RUNNING
        self.started_at: Optional[datetime] = None
        self.logger = setup_logging(self.config.log_dir, self.worker_id)

        if install_signal_handlers:
            signal.signal(signal.SIGINT, self._signal_handler)
            if hasattr(signal, 'SIGTERM'):
                signal.signal(signal.SIGTERM, self._signal_handler)

            if sys.platform == "win32" and hasattr(signal, 'SIGBREAK'):
                signal.signal(signal.SIGBREAK, self._signal_handler)

    @property
    def command_key(self) -> str:
        return worker_command_key(self.config.command_namespace, self.worker_id)

    def _signal_handler(self, signum, frame):
        self.logger.info(f"Worker {self.worker_id} received signal {signum}, shutting down gracefully")
        self.stopping = True

    def register(self):
        now = self.clock()
        self.started_at = now
        self.status = WorkerStatus.RUNNING
        self.registry.register(Worker(
            worker_id=self.worker_id,
            queue=self.queue,
            status=WorkerStatus.RUNNING,
            started_at=now,
            last_heartbeat_at=now,
            pid=os.getpid(),
            hostname=socket.gethostname()
        ))
        self.logger.info(f"Worker {self.worker_id} registered on queue {self.queue}")

    def run(self):
        if self.started_at is None:
            self.register()
        self.logger.info(f"Worker {self.worker_id} starting main loop")
        last_heartbeat = self.clock()

        try:
            while not self.stopping:
                last_heartbeat = self._heartbeat_if_needed(last_heartbeat)
                self.check_commands()
                if not self.stopping:
                    time.sleep(self.poll_interval_ms / 1000)
        finally:
            self.cleanup()

    def _heartbeat_if_needed(self, last_heartbeat: datetime) -> datetime:
        now = self.clock()
        if (now - last_heartbeat).total_seconds() >= self.config.worker_heartbeat_interval_seconds:
            self.registry.heartbeat(self.worker_id)
            return now
        return last_heartbeat

    def check_commands(self) -> Optional[str]:
        """Consume at most one pending command; returns the command acted on."""
        if self._global_terminate_requested():
            self.logger.info(f"Worker {self.worker_id} received global terminate")
            self.stopping = True
            return 'terminate'

        command = self.channel.get(self.command_key)
        if command is None:
            return None

        self.channel.forget(self.command_key)

        if command == 'terminate':
            self.logger.info(f"Worker {self.worker_id} received terminate")
            self.stopping = True
        elif command == 'pause':
            self._set_status(WorkerStatus.PAUSED)
        elif command == 'resume':
            self._set_status(WorkerStatus.RUNNING)
        else:
            self.logger.warning(f"Worker {self.worker_id} ignoring unknown command '{command}'")
            return None

        return command

    def _global_terminate_requested(self) -> bool:
        value = self.channel.get(global_terminate_key(self.config.command_namespace))
        if value is None or self.started_at is None:
            return False

        try:
            issued_at = from_unix_timestamp(float(value))
        except ValueError:
            self.logger.warning(f"Ignoring malformed terminate timestamp '{value}'")
            return False

        # Signals issued before this worker started were meant for its predecessors.
        return issued_at >= self.started_at.replace(microsecond=0)

    def _set_status(self, status: WorkerStatus):
        if self.status == status:
            return
        self.status = status
        self.registry.set_status(self.worker_id, status)
        self.logger.info(f"Worker {self.worker_id} is now {status.value}")

    def cleanup(self):
        self.logger.info(f"Worker {self.worker_id} cleaning up")
        self.status = WorkerStatus.STOPPED
        self.registry.set_status(self.worker_id, WorkerStatus.STOPPED)
        self.logger.info(f"Worker {self.worker_id} shutdown complete")
