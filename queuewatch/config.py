from typing import Dict, Optional
from .db import Database
from .exceptions import ConfigurationError
from .models import Config


INTEGER_KEYS = (
    'command_ttl_seconds',
    'worker_heartbeat_interval_seconds',
    'worker_heartbeat_timeout_seconds',
    'terminate_poll_interval_seconds',
    'terminate_wait_timeout_seconds',
    'dashboard_poll_interval_ms',
)

COMMAND_BACKENDS = ('database', 'redis')


class ConfigManager:
    def __init__(self, database: Database):
        self.db = database
        self._defaults = {
            'db_path': '.data/queuewatch.db',
            'command_backend': 'database',
            'redis_url': 'redis://localhost:6379/0',
            'command_namespace': 'queuewatch',
            'command_ttl_seconds': '300',
            'worker_heartbeat_interval_seconds': '5',
            'worker_heartbeat_timeout_seconds': '30',
            'terminate_poll_interval_seconds': '2',
            'terminate_wait_timeout_seconds': '60',
            'dashboard_poll_interval_ms': '3000'
        }

    def get(self, key: str) -> Optional[str]:
        with self.db.connection() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT value FROM config WHERE key = ?", (key,))
            row = cursor.fetchone()
            if row:
                return row[0]
            return self._defaults.get(key)

    def set(self, key: str, value: str):
        with self.db.transaction() as conn:
            conn.execute("""
                INSERT OR REPLACE INTO config (key, value)
                VALUES (?, ?)
            """, (key, value))

    def list_all(self) -> Dict[str, str]:
        result = self._defaults.copy()

        with self.db.connection() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT key, value FROM config")
            for row in cursor.fetchall():
                result[row[0]] = row[1]

        return result

    def get_config(self) -> Config:
        config_dict = self.list_all()

        numbers = {}
        for key in INTEGER_KEYS:
            try:
                numbers[key] = int(config_dict[key])
            except ValueError:
                raise ConfigurationError(f"Configuration key '{key}' must be an integer, got '{config_dict[key]}'")

        backend = config_dict['command_backend']
        if backend not in COMMAND_BACKENDS:
            raise ConfigurationError(
                f"Configuration key 'command_backend' must be one of {', '.join(COMMAND_BACKENDS)}, got '{backend}'"
            )

        return Config(
            db_path=config_dict['db_path'],
            command_backend=backend,
            redis_url=config_dict['redis_url'],
            command_namespace=config_dict['command_namespace'],
            log_dir=config_dict.get('log_dir'),
            **numbers
        )
