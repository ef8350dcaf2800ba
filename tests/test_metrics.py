from datetime import datetime

import pytest

from conftest import FakeClock
from queuewatch.events import JobCompleted, JobFailed, JobProcessing, JobQueued
from queuewatch.metrics import MetricsAggregator
from queuewatch.models import Worker, WorkerStatus
from queuewatch.registry import WorkerRegistry
from queuewatch.tracker import LifecycleTracker


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 3, 14, 10, 20, 30))


@pytest.fixture
def registry(temp_db, clock):
    return WorkerRegistry(temp_db, clock=clock)


@pytest.fixture
def tracker(temp_db, clock):
    return LifecycleTracker(temp_db, clock=clock)


@pytest.fixture
def metrics(temp_db, registry, clock):
    return MetricsAggregator(temp_db, registry, clock=clock)


def run_job(tracker, clock, job_id, queue="default", duration=0, fail=False):
    tracker.record_queued(JobQueued(id=job_id, queue=queue))
    tracker.record_processing(JobProcessing(payload={"id": job_id}))
    clock.advance(duration)
    if fail:
        tracker.record_failed(JobFailed(payload={"id": job_id}, exception="boom"))
    else:
        tracker.record_completed(JobCompleted(payload={"id": job_id}))


def add_worker(registry, clock, worker_id, status=WorkerStatus.RUNNING):
    registry.register(Worker(
        worker_id=worker_id, queue="default", status=status,
        started_at=clock(), last_heartbeat_at=clock()
    ))


def test_overall_stats_empty(metrics):
    assert metrics.overall_stats() == {
        'total_jobs': 0,
        'pending': 0,
        'processing': 0,
        'completed': 0,
        'failed': 0,
        'completed_last_hour': 0,
        'failed_last_hour': 0,
        'active_workers': 0,
        'paused_workers': 0,
    }


def test_overall_stats_counts(metrics, tracker, registry, clock):
    tracker.record_queued(JobQueued(id="pending-1", queue="emails"))
    tracker.record_queued(JobQueued(id="busy-1"))
    tracker.record_processing(JobProcessing(payload={"id": "busy-1"}))
    run_job(tracker, clock, "old-done", duration=1)
    clock.advance(hours=2)
    run_job(tracker, clock, "done-1", duration=1)
    run_job(tracker, clock, "failed-1", duration=1, fail=True)
    add_worker(registry, clock, "w1")
    add_worker(registry, clock, "w2", WorkerStatus.PAUSED)

    stats = metrics.overall_stats()

    assert stats['total_jobs'] == 5
    assert stats['pending'] == 1
    assert stats['processing'] == 1
    assert stats['completed'] == 2
    assert stats['failed'] == 1
    assert stats['completed_last_hour'] == 1
    assert stats['failed_last_hour'] == 1
    assert stats['active_workers'] == 1
    assert stats['paused_workers'] == 1


def test_lifecycle_scenario_counts_in_last_hour(metrics, tracker, clock):
    tracker.record_queued(JobQueued(id="j1", queue="emails"))
    t1 = clock.advance(1)
    tracker.record_processing(JobProcessing(payload={"id": "j1"}))
    t2 = clock.advance(1)
    tracker.record_completed(JobCompleted(payload={"id": "j1"}))

    assert metrics.overall_stats()['completed_last_hour'] >= 1
    job = tracker.get_job("j1")
    assert (job.started_at, job.completed_at) == (t1, t2)


def test_queue_depths_sorted_and_conserved(metrics, tracker):
    for i in range(3):
        tracker.record_queued(JobQueued(id=f"e{i}", queue="emails"))
    tracker.record_queued(JobQueued(id="r0", queue="reports"))
    tracker.record_queued(JobQueued(id="r1", queue="reports"))
    tracker.record_queued(JobQueued(id="x0", queue="exports"))
    tracker.record_processing(JobProcessing(payload={"id": "x0"}))

    depths = metrics.queue_depths()

    assert list(depths.items()) == [("emails", 3), ("reports", 2)]
    assert sum(depths.values()) == metrics.overall_stats()['pending']


def test_average_durations(metrics, tracker, clock):
    run_job(tracker, clock, "j1", queue="emails", duration=10)

    assert metrics.average_durations() == {"emails": 10.00}


def test_average_durations_rounds_and_skips_unfinished(metrics, tracker, clock):
    run_job(tracker, clock, "a", queue="emails", duration=1)
    run_job(tracker, clock, "b", queue="emails", duration=2)
    run_job(tracker, clock, "c", queue="emails", duration=2)
    run_job(tracker, clock, "f", queue="reports", duration=5, fail=True)
    tracker.record_queued(JobQueued(id="p", queue="pending-only"))
    tracker.record_completed(JobCompleted(payload={"id": "p"}))

    assert metrics.average_durations() == {"emails": 1.67}


def test_hourly_throughput_buckets(metrics, tracker, clock):
    run_job(tracker, clock, "now-1")
    run_job(tracker, clock, "now-2", fail=True)
    clock.advance(hours=-3)
    run_job(tracker, clock, "earlier")
    clock.advance(hours=3)

    series = metrics.hourly_throughput()
    buckets = list(series)

    assert len(series) == 24
    assert len(buckets) == 24
    assert buckets[0]['hour'] == "11:00"
    assert buckets[-1] == {'hour': "10:00", 'completed': 1, 'failed': 1}
    assert buckets[-4] == {'hour': "07:00", 'completed': 1, 'failed': 0}
    assert sum(b['completed'] for b in buckets) == 2


def test_hourly_throughput_is_restartable(metrics, tracker, clock):
    series = metrics.hourly_throughput(24)
    first = list(series)

    run_job(tracker, clock, "late")

    second = list(series)
    assert [b['hour'] for b in first] == [b['hour'] for b in second]
    assert second[-1]['completed'] == 1


def test_hourly_throughput_excludes_window_end(metrics, tracker):
    clock = FakeClock(datetime(2026, 3, 14, 10, 0, 0))
    tracker.clock = clock
    metrics.clock = clock
    run_job(tracker, clock, "on-the-hour")

    buckets = list(metrics.hourly_throughput())
    assert buckets[-1]['completed'] == 1
    assert buckets[-2]['completed'] == 0


def test_recent_throughput(metrics, tracker, clock):
    run_job(tracker, clock, "a")
    run_job(tracker, clock, "b", fail=True)
    clock.advance(minutes=-5)
    run_job(tracker, clock, "c")
    clock.advance(minutes=-10)
    run_job(tracker, clock, "too-old")
    clock.advance(minutes=15)

    buckets = metrics.recent_throughput()

    assert len(buckets) == 10
    assert buckets[0]['minute'] == "10:11"
    assert buckets[-1] == {'minute': "10:20", 'count': 2}
    assert buckets[-6] == {'minute': "10:15", 'count': 1}
    assert sum(b['count'] for b in buckets) == 3


def test_worker_stats(metrics, registry, clock):
    add_worker(registry, clock, "w1")
    add_worker(registry, clock, "w2")
    add_worker(registry, clock, "w3", WorkerStatus.PAUSED)
    add_worker(registry, clock, "w4", WorkerStatus.STOPPED)
    clock.advance(20)
    registry.heartbeat("w1")
    clock.advance(20)

    assert metrics.worker_stats() == {
        'total': 4,
        'running': 2,
        'paused': 1,
        'stopped': 1,
        'healthy': 1,
    }
