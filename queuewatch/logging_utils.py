import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Optional


ROOT_LOGGER = 'queuewatch'
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
LOG_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'
MAX_LOG_BYTES = 10 * 1024 * 1024
LOG_BACKUPS = 5


def component_logger(component: str) -> logging.Logger:
    """Child of the package logger, so one setup_logging call covers every component."""
    return logging.getLogger(f'{ROOT_LOGGER}.{component}')


def log_file_name(worker_id: Optional[str] = None) -> str:
    return f'worker_{worker_id}.log' if worker_id else f'{ROOT_LOGGER}.log'


def setup_logging(log_dir: Optional[str] = None, worker_id: Optional[str] = None,
                  level: str = 'INFO') -> logging.Logger:
    """Configure the ``queuewatch`` logger hierarchy.

    The stdout handler is installed once per process. Each distinct log file
    (one per worker, or ``queuewatch.log`` for operator commands) is attached
    the first time it is requested, so an agent started after the CLI already
    logged still gets its own rotating file.
    """
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(getattr(logging, level.upper()))
    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    if not any(getattr(h, 'queuewatch_console', False) for h in logger.handlers):
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(formatter)
        console_handler.queuewatch_console = True
        logger.addHandler(console_handler)

    if log_dir:
        log_path = (Path(log_dir) / log_file_name(worker_id)).resolve()
        attached = {
            Path(h.baseFilename) for h in logger.handlers
            if isinstance(h, logging.handlers.RotatingFileHandler)
        }
        if log_path not in attached:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.handlers.RotatingFileHandler(
                log_path, maxBytes=MAX_LOG_BYTES, backupCount=LOG_BACKUPS
            )
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)

    return logger
