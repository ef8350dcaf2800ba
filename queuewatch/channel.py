"""Best-effort, TTL-bound command channel between an operator and workers.

Every backend honours the same contract: ``put`` overwrites the single live
value for a key, ``get`` never returns a value whose expiry has passed, and
``forget`` is idempotent. Storage or network failures are logged and turned
into a no-op (``put``/``forget``) or ``None`` (``get``); callers never see an
exception from a channel.
"""
import logging
import math
from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Callable, Optional

import redis

from .db import Database
from .exceptions import CommandChannelError, ConfigurationError
from .logging_utils import component_logger
from .models import CommandEntry, Config
from .outcome import Guard
from .utils import format_ts, parse_ts, utcnow


DEFAULT_TTL_SECONDS = 300
DEFAULT_REDIS_URL = "redis://localhost:6379/0"


def global_terminate_key(namespace: str) -> str:
    return f"{namespace}:terminate"


def worker_command_key(namespace: str, worker_id: str) -> str:
    return f"{namespace}:worker:{worker_id}:command"


class CommandChannel(ABC):
    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or component_logger('channel')
        self.guard = Guard(self.logger)

    def put(self, key: str, value: str, ttl: Optional[float] = DEFAULT_TTL_SECONDS) -> None:
        self.guard.call(f"Command put for {key}", self._store, key, value, ttl)

    def _store(self, key: str, value: str, ttl: Optional[float]):
        if ttl is None:
            ttl = DEFAULT_TTL_SECONDS
        if ttl <= 0:
            # Already expired on arrival.
            self._forget(key)
            return
        self._put(key, str(value), math.ceil(ttl))

    def get(self, key: str) -> Optional[str]:
        return self.guard.call(f"Command get for {key}", self._get, key).value

    def forget(self, key: str) -> None:
        self.guard.call(f"Command forget for {key}", self._forget, key)

    @abstractmethod
    def _put(self, key: str, value: str, ttl: int):
        ...

    @abstractmethod
    def _get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    def _forget(self, key: str):
        ...


class DatabaseCommandChannel(CommandChannel):
    def __init__(self, database: Database, clock: Callable = utcnow,
                 logger: Optional[logging.Logger] = None):
        super().__init__(logger)
        self.db = database
        self.clock = clock

    def _put(self, key: str, value: str, ttl: int):
        now = self.clock()
        expires_at = now + timedelta(seconds=ttl)

        with self.db.transaction() as conn:
            conn.execute("""
                INSERT INTO commands (key, value, expires_at, created_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    expires_at = excluded.expires_at,
                    created_at = excluded.created_at
            """, (key, value, format_ts(expires_at), format_ts(now)))

    def _get(self, key: str) -> Optional[str]:
        now = format_ts(self.clock())

        with self.db.transaction() as conn:
            conn.execute("DELETE FROM commands WHERE expires_at <= ?", (now,))

            cursor = conn.cursor()
            cursor.execute("""
                SELECT value FROM commands
                WHERE key = ? AND expires_at > ?
            """, (key, now))
            row = cursor.fetchone()

        return row[0] if row else None

    def _forget(self, key: str):
        with self.db.transaction() as conn:
            conn.execute("DELETE FROM commands WHERE key = ?", (key,))

    def entry(self, key: str) -> Optional[CommandEntry]:
        """Raw row for ``key``, expired or not. Intended for inspection only."""
        with self.db.connection() as conn:
            cursor = conn.cursor()
            cursor.execute("""
                SELECT key, value, expires_at, created_at
                FROM commands WHERE key = ?
            """, (key,))
            row = cursor.fetchone()

        if not row:
            return None

        return CommandEntry(
            key=row['key'],
            value=row['value'],
            expires_at=parse_ts(row['expires_at']),
            created_at=parse_ts(row['created_at'])
        )

    def purge_expired(self) -> int:
        outcome = self.guard.call("Command purge", self._purge_expired, default=0)
        return outcome.value

    def _purge_expired(self) -> int:
        with self.db.transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM commands WHERE expires_at <= ?", (format_ts(self.clock()),)
            )
            return cursor.rowcount


class RedisCommandChannel(CommandChannel):
    def __init__(self, client=None, url: str = DEFAULT_REDIS_URL,
                 logger: Optional[logging.Logger] = None):
        super().__init__(logger)
        self.client = client if client is not None else redis.from_url(url, decode_responses=True)

    def _put(self, key: str, value: str, ttl: int):
        try:
            self.client.set(key, value, ex=ttl)
        except redis.RedisError as e:
            raise CommandChannelError(f"Redis SET failed for {key}: {e}") from e

    def _get(self, key: str) -> Optional[str]:
        try:
            value = self.client.get(key)
        except redis.RedisError as e:
            raise CommandChannelError(f"Redis GET failed for {key}: {e}") from e

        if isinstance(value, bytes):
            return value.decode('utf-8')
        return value

    def _forget(self, key: str):
        try:
            self.client.delete(key)
        except redis.RedisError as e:
            raise CommandChannelError(f"Redis DEL failed for {key}: {e}") from e


def create_channel(config: Config, database: Optional[Database] = None,
                   clock: Callable = utcnow, logger: Optional[logging.Logger] = None) -> CommandChannel:
    backend = config.command_backend

    if backend == 'redis':
        return RedisCommandChannel(url=config.redis_url, logger=logger)

    if backend == 'database':
        if database is None:
            database = Database(config.db_path)
        return DatabaseCommandChannel(database, clock=clock, logger=logger)

    raise ConfigurationError(f"Unknown command backend '{backend}' (expected 'database' or 'redis')")
