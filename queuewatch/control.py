import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from .channel import CommandChannel, global_terminate_key, worker_command_key
from .logging_utils import component_logger
from .metrics import MetricsAggregator
from .models import Config, WorkerStatus
from .registry import WorkerRegistry
from .tracker import LifecycleTracker
from .utils import unix_timestamp, utcnow


WORKER_COMMANDS = ('terminate', 'pause', 'resume')


@dataclass
class TerminateOutcome:
    signaled: List[str] = field(default_factory=list)
    state: str = 'signaled'
    still_running: int = 0
    waited_seconds: int = 0

    @property
    def message(self) -> str:
        return f"Sent terminate signal to {len(self.signaled)} worker(s)."

    @property
    def timed_out(self) -> bool:
        return self.state == 'timeout'


class ControlCommands:
    """Operator-side operations: status reports, broadcasts and dashboard reads."""

    def __init__(self, channel: CommandChannel, registry: WorkerRegistry,
                 metrics: MetricsAggregator, tracker: LifecycleTracker,
                 config: Optional[Config] = None, clock: Callable = utcnow,
                 sleep: Callable[[float], None] = time.sleep,
                 logger: Optional[logging.Logger] = None):
        self.channel = channel
        self.registry = registry
        self.metrics = metrics
        self.tracker = tracker
        self.config = config or Config()
        self.clock = clock
        self.sleep = sleep
        self.logger = logger or component_logger('control')

    def status_report(self) -> Dict:
        workers = []
        for worker in self.registry.active_workers():
            entry = worker.to_dict()
            entry['uptime_seconds'] = self.registry.uptime(worker)
            entry['healthy'] = self.registry.is_healthy(worker)
            workers.append(entry)

        return {
            'worker_stats': self.metrics.worker_stats(),
            'workers': workers,
            'jobs': self.metrics.overall_stats(),
            'queue_depths': dict(self.metrics.queue_depths()),
        }

    def send(self, worker_id: str, command: str):
        if command not in WORKER_COMMANDS:
            raise ValueError(f"Unknown worker command '{command}' (expected one of {', '.join(WORKER_COMMANDS)})")

        key = worker_command_key(self.config.command_namespace, worker_id)
        self.channel.put(key, command, self.config.command_ttl_seconds)
        self.logger.info(f"Sent {command} to worker {worker_id}")

    def terminate(self, wait: bool = False,
                  on_progress: Optional[Callable[[int], None]] = None) -> TerminateOutcome:
        namespace = self.config.command_namespace
        ttl = self.config.command_ttl_seconds

        self.channel.put(global_terminate_key(namespace), str(unix_timestamp(self.clock())), ttl)

        outcome = TerminateOutcome()
        for worker in self.registry.running_workers():
            self.channel.put(worker_command_key(namespace, worker.worker_id), 'terminate', ttl)
            outcome.signaled.append(worker.worker_id)

        self.logger.info(outcome.message)

        if wait:
            self.wait_for_termination(outcome, on_progress)

        return outcome

    def wait_for_termination(self, outcome: TerminateOutcome,
                              on_progress: Optional[Callable[[int], None]]):
        interval = self.config.terminate_poll_interval_seconds
        max_wait = self.config.terminate_wait_timeout_seconds
        waited = 0

        while waited < max_wait:
            running = self.registry.count(WorkerStatus.RUNNING)
            if running == 0:
                outcome.state = 'terminated'
                outcome.still_running = 0
                outcome.waited_seconds = waited
                self.logger.info("All workers have terminated")
                return

            if on_progress:
                on_progress(running)
            self.sleep(interval)
            waited += interval

        outcome.still_running = self.registry.count(WorkerStatus.RUNNING)
        outcome.waited_seconds = waited
        if outcome.still_running == 0:
            outcome.state = 'terminated'
            self.logger.info("All workers have terminated")
            return

        outcome.state = 'timeout'
        self.logger.warning(
            f"Timeout waiting for workers to terminate ({outcome.still_running} still running after {waited}s)"
        )

    def dashboard_snapshot(self, recent_limit: int = 20) -> Dict:
        return {
            'stats': self.metrics.overall_stats(),
            'recent_jobs': [job.to_dict() for job in self.tracker.recent_jobs(recent_limit)],
            'workers': [worker.to_dict() for worker in self.registry.running_workers()],
            'poll_interval': self.config.dashboard_poll_interval_ms,
        }
