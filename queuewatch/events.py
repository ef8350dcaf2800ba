"""Job lifecycle events as delivered by the host job-queue system.

Events come from different transports and drivers, so the objects hanging off
them are duck-typed: the job handle may expose ``get_job_id()``, ``uuid()`` or
neither, and payloads arrive as dicts, JSON strings or callables returning
either. The helpers here pull what they can out of those shapes and never
raise on a malformed one.
"""
import json
import traceback
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from .models import PAYLOAD_SUMMARY_FIELDS


GENERATED_ID_PREFIX = "queuewatch_"

# payload key -> summary field
_PAYLOAD_KEYS = {
    'displayName': 'display_name',
    'job': 'handler',
    'maxTries': 'max_tries',
    'maxExceptions': 'max_exceptions',
    'timeout': 'timeout',
    'data': 'data',
}


@dataclass
class JobEvent:
    job: Any = None
    payload: Any = None
    worker_id: Optional[str] = None

    kind = 'event'


@dataclass
class JobQueued(JobEvent):
    id: Optional[str] = None
    queue: Optional[str] = None
    connection: Optional[str] = None

    kind = 'queued'


@dataclass
class JobProcessing(JobEvent):
    kind = 'processing'


@dataclass
class JobCompleted(JobEvent):
    kind = 'completed'


@dataclass
class JobFailed(JobEvent):
    exception: Union[BaseException, str, None] = None

    kind = 'failed'


@dataclass
class JobRetryRequested(JobEvent):
    kind = 'retry_requested'


def _call_or_read(obj: Any, name: str) -> Any:
    attr = getattr(obj, name, None)
    if callable(attr):
        return attr()
    return attr


def resolve_payload(event: JobEvent) -> Dict[str, Any]:
    payload = event.payload
    if payload is None and event.job is not None:
        payload = _call_or_read(event.job, 'payload')
    elif callable(payload):
        payload = payload()

    if isinstance(payload, (str, bytes)):
        try:
            payload = json.loads(payload)
        except ValueError:
            return {}

    if not isinstance(payload, dict):
        return {}

    return payload


def payload_or_empty(event: JobEvent) -> Dict[str, Any]:
    """Like resolve_payload, but a payload that cannot be produced reads as empty."""
    try:
        return resolve_payload(event)
    except Exception:
        return {}


def extract_job_id(event: JobEvent) -> str:
    if isinstance(event, JobQueued) and event.id:
        return str(event.id)

    job = event.job
    if job is not None:
        for name in ('get_job_id', 'uuid'):
            try:
                value = _call_or_read(job, name)
            except Exception:
                value = None
            if value:
                return str(value)

    payload = payload_or_empty(event)

    for name in ('id', 'uuid'):
        if payload.get(name):
            return str(payload[name])

    return f"{GENERATED_ID_PREFIX}{uuid.uuid4().hex}"


def extract_payload_summary(payload: Any) -> Dict[str, Any]:
    summary = {name: None for name in PAYLOAD_SUMMARY_FIELDS}
    if not isinstance(payload, dict):
        return summary

    for source, target in _PAYLOAD_KEYS.items():
        summary[target] = payload.get(source)

    return summary


def format_exception(exception: Union[BaseException, str, None]) -> Optional[str]:
    if exception is None:
        return None
    if isinstance(exception, str):
        return exception

    tb = exception.__traceback__
    frames = traceback.extract_tb(tb) if tb is not None else []
    if frames:
        filename, lineno = frames[-1].filename, frames[-1].lineno
    else:
        filename, lineno = 'unknown', 0

    stack = ''.join(traceback.format_tb(tb)) if tb is not None else ''

    return (
        f"{type(exception).__qualname__}: {exception} in {filename}:{lineno}\n\n"
        f"Stack trace:\n{stack}"
    )
