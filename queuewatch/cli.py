import json
import sys
import click
from .channel import create_channel
from .config import ConfigManager
from .control import ControlCommands
from .db import Database
from .metrics import MetricsAggregator
from .models import WorkerStatus
from .registry import WorkerRegistry
from .tracker import LifecycleTracker
from .utils import format_uptime
from .version import __version__
from .worker import WorkerAgent


STATUS_COLORS = {
    WorkerStatus.RUNNING.value: 'green',
    WorkerStatus.PAUSED.value: 'yellow',
    WorkerStatus.STOPPED.value: 'red',
}


class Context:
    def __init__(self, db_path: str):
        self.database = Database(db_path)
        self.config = ConfigManager(self.database).get_config()
        self.config.db_path = db_path

    def registry(self) -> WorkerRegistry:
        return WorkerRegistry(self.database, heartbeat_timeout_seconds=self.config.worker_heartbeat_timeout_seconds)

    def channel(self):
        return create_channel(self.config, self.database)

    def control(self) -> ControlCommands:
        registry = self.registry()
        return ControlCommands(
            channel=self.channel(),
            registry=registry,
            metrics=MetricsAggregator(self.database, registry),
            tracker=LifecycleTracker(self.database),
            config=self.config
        )


def _fail(error: Exception):
    click.echo(f"Error: {error}", err=True)
    sys.exit(1)


@click.group()
@click.version_option(version=__version__)
@click.help_option('--help', '-h')
@click.option('--db-path', default='.data/queuewatch.db', envvar='QUEUEWATCH_DB_PATH',
              show_default=True, help='Path to the queuewatch database')
@click.pass_context
def cli(ctx, db_path):
    """QueueWatch - control plane for a fleet of queue workers.

    Broadcast commands to running workers and inspect job and worker
    state recorded from the queue's lifecycle events.

    Examples:
        queuewatch status
        queuewatch terminate --wait
        queuewatch command send worker-1a2b3c4d pause
        queuewatch dashboard
    """
    ctx.obj = db_path


def _context(ctx) -> Context:
    return Context(ctx.obj)


@cli.command()
@click.pass_context
def status(ctx):
    """Show worker, job and queue depth status.

    Examples:
        queuewatch status
    """
    try:
        report = _context(ctx).control().status_report()
    except Exception as e:
        _fail(e)

    stats = report['worker_stats']
    click.echo("=== QueueWatch Status ===")
    click.echo()
    click.echo(
        f"Workers  Total: {stats['total']}  "
        f"Running: {click.style(str(stats['running']), fg='green')}  "
        f"Paused: {click.style(str(stats['paused']), fg='yellow')}  "
        f"Stopped: {click.style(str(stats['stopped']), fg='red')}  "
        f"Healthy: {stats['healthy']}"
    )

    if not report['workers']:
        click.echo()
        click.echo(click.style("  No workers registered. Start one with: queuewatch worker run", fg='yellow'))
    else:
        click.echo()
        click.echo(f"  {'ID':<20} {'Queue':<15} {'Status':<10} {'Uptime':<10}")
        click.echo("  " + "-" * 58)
        for worker in report['workers']:
            status_text = click.style(f"{worker['status']:<10}", fg=STATUS_COLORS.get(worker['status']))
            health = '' if worker['healthy'] or worker['status'] != 'running' else click.style(' (stale)', fg='red')
            click.echo(
                f"  {worker['worker_id']:<20} {worker['queue']:<15} {status_text} "
                f"{format_uptime(worker['uptime_seconds']):<10}{health}"
            )

    jobs = report['jobs']
    click.echo()
    click.echo(
        f"Jobs (last hour)  Pending: {jobs['pending']}  Processing: {jobs['processing']}  "
        f"Completed: {click.style(str(jobs['completed_last_hour']), fg='green')}  "
        f"Failed: {click.style(str(jobs['failed_last_hour']), fg='red')}"
    )

    depths = report['queue_depths']
    if depths:
        click.echo()
        click.echo("Queue Depths")
        width = max(len(name) for name in depths)
        for queue, count in depths.items():
            dots = '.' * (width - len(queue) + 4)
            click.echo(f"  {queue} {dots} {click.style(str(count), fg='yellow' if count > 0 else 'green')}")


@cli.command()
@click.option('--wait', is_flag=True, help='Wait for all workers to terminate')
@click.pass_context
def terminate(ctx, wait):
    """Broadcast a terminate signal to every running worker.

    Examples:
        queuewatch terminate
        queuewatch terminate --wait
    """
    try:
        context = _context(ctx)
        control = context.control()

        click.echo("Broadcasting terminate signal to all workers...")
        outcome = control.terminate()
        for worker_id in outcome.signaled:
            click.echo(f"  -> Sent terminate to worker [{worker_id}]")
        click.echo()
        click.echo(outcome.message)

        if wait:
            click.echo("Waiting for workers to terminate...")
            control.wait_for_termination(
                outcome,
                lambda running: click.echo(f"  Waiting... ({running} worker(s) still running)")
            )
            if outcome.timed_out:
                click.echo(click.style("Timeout waiting for workers to terminate.", fg='yellow'))
            else:
                click.echo("All workers have terminated.")
    except Exception as e:
        _fail(e)


@cli.command()
@click.option('--limit', default=20, help='Number of recent jobs to include')
@click.pass_context
def dashboard(ctx, limit):
    """Print the dashboard polling snapshot as JSON.

    Examples:
        queuewatch dashboard
        queuewatch dashboard --limit 50
    """
    try:
        snapshot = _context(ctx).control().dashboard_snapshot(limit)
        click.echo(json.dumps(snapshot, indent=2, default=str))
    except Exception as e:
        _fail(e)


@cli.group()
def command():
    """Send and inspect individual command channel entries."""
    pass


@command.command('send')
@click.argument('worker_id')
@click.argument('name', type=click.Choice(['terminate', 'pause', 'resume']))
@click.pass_context
def send(ctx, worker_id, name):
    """Send a command to a single worker.

    Examples:
        queuewatch command send worker-1a2b3c4d pause
    """
    try:
        _context(ctx).control().send(worker_id, name)
        click.echo(f"Sent {name} to worker [{worker_id}]")
    except Exception as e:
        _fail(e)


@command.command('get')
@click.argument('key')
@click.pass_context
def get_command(ctx, key):
    """Show the live value stored under KEY."""
    try:
        value = _context(ctx).channel().get(key)
    except Exception as e:
        _fail(e)

    if value is None:
        click.echo(f"No live command under '{key}'", err=True)
        sys.exit(1)
    click.echo(value)


@command.command('forget')
@click.argument('key')
@click.pass_context
def forget(ctx, key):
    """Remove the entry stored under KEY."""
    try:
        _context(ctx).channel().forget(key)
        click.echo(f"Forgot {key}")
    except Exception as e:
        _fail(e)


@cli.group()
def worker():
    """Run a command-channel worker agent."""
    pass


@worker.command()
@click.option('--queue', default='default', help='Queue the worker serves')
@click.option('--worker-id', help='Worker ID (auto-generated if not provided)')
@click.option('--poll-interval-ms', default=500, help='Polling interval in milliseconds')
@click.pass_context
def run(ctx, queue, worker_id, poll_interval_ms):
    """Run a worker agent in the foreground until terminated.

    Examples:
        queuewatch worker run --queue emails
        queuewatch worker run --worker-id worker-a --poll-interval-ms 1000
    """
    try:
        context = _context(ctx)
        agent = WorkerAgent(
            context.channel(), context.registry(), context.config,
            queue=queue, worker_id=worker_id, poll_interval_ms=poll_interval_ms
        )
        click.echo(f"Starting worker {agent.worker_id} on queue {queue} (Press Ctrl+C to stop)")
        agent.run()
    except Exception as e:
        _fail(e)


@cli.group()
def config():
    """Read and change queuewatch settings."""
    pass


@config.command('set')
@click.argument('key')
@click.argument('value')
@click.pass_context
def set_config(ctx, key, value):
    try:
        ConfigManager(Database(ctx.obj)).set(key, value)
        click.echo(f"Set {key} = {value}")
    except Exception as e:
        _fail(e)


@config.command('get')
@click.argument('key')
@click.pass_context
def get_config(ctx, key):
    try:
        value = ConfigManager(Database(ctx.obj)).get(key)
    except Exception as e:
        _fail(e)

    if value is None:
        click.echo(f"Configuration key '{key}' not found", err=True)
        sys.exit(1)
    click.echo(value)


@config.command('list')
@click.pass_context
def list_config(ctx):
    try:
        config_dict = ConfigManager(Database(ctx.obj)).list_all()
    except Exception as e:
        _fail(e)

    for key, value in sorted(config_dict.items()):
        click.echo(f"{key} = {value}")


if __name__ == '__main__':
    cli()
