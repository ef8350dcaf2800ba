import random
from concurrent.futures import ThreadPoolExecutor

from queuewatch.channel import DatabaseCommandChannel
from queuewatch.control import ControlCommands
from queuewatch.events import JobCompleted, JobProcessing, JobQueued, JobRetryRequested
from queuewatch.metrics import MetricsAggregator
from queuewatch.models import Config, JobStatus, WorkerStatus
from queuewatch.registry import WorkerRegistry
from queuewatch.tracker import LifecycleTracker
from queuewatch.worker import WorkerAgent


def test_concurrent_event_delivery_converges(temp_db):
    tracker = LifecycleTracker(temp_db)

    for i in range(10):
        tracker.record_queued(JobQueued(id=f"job{i}", queue="emails"))

    events = []
    for i in range(10):
        events.append(JobProcessing(payload={"id": f"job{i}"}, worker_id=f"worker-{i % 3}"))
        events.append(JobProcessing(payload={"id": f"job{i}"}))
        events.append(JobRetryRequested(payload={"id": f"job{i}"}))
        events.append(JobCompleted(payload={"id": f"job{i}"}))

    # Completions go out after every start so started_at is always set.
    with ThreadPoolExecutor(max_workers=4) as executor:
        outcomes = list(executor.map(tracker.handle, [e for e in events if not isinstance(e, JobCompleted)]))
        outcomes += list(executor.map(tracker.handle, [e for e in events if isinstance(e, JobCompleted)]))

    assert all(outcome.ok for outcome in outcomes)

    metrics = MetricsAggregator(temp_db, WorkerRegistry(temp_db))
    stats = metrics.overall_stats()
    assert stats['total_jobs'] == 10
    assert stats['completed'] == 10
    assert stats['completed_last_hour'] == 10

    for i in range(10):
        job = tracker.get_job(f"job{i}")
        assert job.status == JobStatus.COMPLETED
        assert job.attempts == 1
        assert job.worker_id == f"worker-{i % 3}"


def test_shuffled_events_never_regress_status(temp_db):
    tracker = LifecycleTracker(temp_db)
    tracker.record_queued(JobQueued(id="j1"))

    events = [JobProcessing(payload={"id": "j1"}) for _ in range(5)] + [JobCompleted(payload={"id": "j1"})]
    random.Random(7).shuffle(events)
    for event in events:
        tracker.handle(event)

    assert tracker.get_job("j1").status == JobStatus.COMPLETED


def test_operator_terminate_reaches_worker_agents(temp_db):
    channel = DatabaseCommandChannel(temp_db)
    registry = WorkerRegistry(temp_db)
    config = Config()

    agents = [
        WorkerAgent(channel, registry, config, worker_id=f"agent-{i}", install_signal_handlers=False)
        for i in range(3)
    ]
    for agent in agents:
        agent.register()

    tracker = LifecycleTracker(temp_db)
    control = ControlCommands(
        channel, registry, MetricsAggregator(temp_db, registry), tracker, config,
        sleep=lambda seconds: [agent.run() for agent in agents]
    )

    outcome = control.terminate(wait=True)

    assert outcome.message == "Sent terminate signal to 3 worker(s)."
    assert outcome.state == 'terminated'
    assert registry.count(WorkerStatus.RUNNING) == 0
    assert all(registry.get(a.worker_id).status == WorkerStatus.STOPPED for a in agents)
