class QueueWatchError(Exception):
    pass


class CommandChannelError(QueueWatchError):
    pass


class TrackerError(QueueWatchError):
    pass


class DatabaseError(QueueWatchError):
    pass


class ConfigurationError(QueueWatchError):
    pass
