import gc
import os
import tempfile
import time
from datetime import datetime, timedelta

import pytest
import redis

from queuewatch.db import Database


class FakeClock:
    def __init__(self, start: datetime = datetime(2026, 3, 14, 10, 20, 30)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 0, **kwargs) -> datetime:
        self.now = self.now + timedelta(seconds=seconds, **kwargs)
        return self.now


class FakeRedis:
    """In-memory stand-in for a redis client: SET with EX, GET, DEL."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.store = {}
        self.calls = []

    def set(self, key, value, ex=None):
        self.calls.append(('set', key, value, ex))
        if ex is not None and ex <= 0:
            raise redis.ResponseError("invalid expire time in 'set' command")
        expires_at = self.clock() + timedelta(seconds=ex) if ex else None
        self.store[key] = (value, expires_at)
        return True

    def get(self, key):
        self.calls.append(('get', key))
        entry = self.store.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and expires_at <= self.clock():
            del self.store[key]
            return None
        return value

    def delete(self, key):
        self.calls.append(('delete', key))
        return 1 if self.store.pop(key, None) is not None else 0


@pytest.fixture
def temp_db():
    with tempfile.NamedTemporaryFile(suffix='.db', delete=False) as f:
        db_path = f.name

    db = Database(db_path)
    yield db

    try:
        gc.collect()
        time.sleep(0.1)
        os.unlink(db_path)
    except (OSError, PermissionError):
        time.sleep(0.5)
        try:
            os.unlink(db_path)
        except (OSError, PermissionError):
            pass


@pytest.fixture
def clock():
    return FakeClock()
