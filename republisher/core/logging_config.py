"""
Logging Configuration - Console and rotating-file logging for the republisher.

Records can carry job context (``series_id``, ``episode_id``, ``upload_id``).
The context lives in a ``ContextVar`` so concurrent downloads in one batch
each log their own ids.
"""
import logging
import logging.handlers
import sys
import json
import traceback
from contextlib import contextmanager
from contextvars import ContextVar
from pathlib import Path
from typing import Any, Dict, Iterator, Optional
from datetime import datetime, timezone

from republisher.config import settings

_RESERVED_ATTRS = set(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "taskName"}

_job_context: ContextVar[Dict[str, Any]] = ContextVar("job_context", default={})

# Levels applied outside production; production raises all of them to WARNING
THIRD_PARTY_LEVELS = {
    'httpx': logging.WARNING,
    'httpcore': logging.WARNING,
    'sqlalchemy.engine': logging.WARNING,
    'sqlalchemy.pool': logging.WARNING,
    'uvicorn.access': logging.INFO,
    'websockets': logging.INFO,
}


class StructuredFormatter(logging.Formatter):
    """JSON lines formatter. Job context keys are lifted to the top level."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry: Dict[str, Any] = {
            'timestamp': datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            'service': settings.APP_NAME,
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'location': f"{record.module}:{record.funcName}:{record.lineno}",
        }

        extra = {key: value for key, value in vars(record).items() if key not in _RESERVED_ATTRS}
        for key in ('series_id', 'episode_id', 'upload_id'):
            if key in extra:
                log_entry[key] = extra.pop(key)
        if extra:
            log_entry['extra'] = extra

        if record.exc_info and record.exc_info[0]:
            log_entry['exception'] = {
                'type': record.exc_info[0].__name__,
                'message': str(record.exc_info[1]),
                'traceback': traceback.format_exception(*record.exc_info),
            }

        return json.dumps(log_entry, default=str)


class ContextFilter(logging.Filter):
    """Copy the current job context onto every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in _job_context.get().items():
            setattr(record, key, value)
        return True


@contextmanager
def log_context(**kwargs) -> Iterator[None]:
    """
    Attach job ids to every record logged inside the block.

    Example:
        with log_context(series_id=3, episode_id=41):
            logger.info("Downloading")
    """
    token = _job_context.set({**_job_context.get(), **kwargs})
    try:
        yield
    finally:
        _job_context.reset(token)


class LoggingManager:
    """Builds the root logger handlers once per process."""

    def __init__(self):
        self.context_filter = ContextFilter()
        self.configured = False

    def configure_logging(self):
        """Configure application logging."""
        if self.configured:
            return

        root_logger = logging.getLogger()
        root_logger.setLevel(getattr(logging, settings.LOG_LEVEL.upper()))
        root_logger.handlers.clear()

        if settings.LOG_TO_CONSOLE:
            root_logger.addHandler(self._build_console_handler())

        if settings.LOG_TO_FILE and settings.LOG_FILE_PATH:
            file_handler = self._build_file_handler(settings.LOG_FILE_PATH)
            if file_handler:
                root_logger.addHandler(file_handler)

        for name, level in THIRD_PARTY_LEVELS.items():
            logging.getLogger(name).setLevel(logging.WARNING if settings.is_production else level)

        self.configured = True

        logging.getLogger(__name__).info(
            f"Logging configured (level={settings.LOG_LEVEL}, console={settings.LOG_TO_CONSOLE}, "
            f"file={settings.LOG_FILE_PATH if settings.LOG_TO_FILE else None})"
        )

    def _build_console_handler(self) -> logging.Handler:
        handler = logging.StreamHandler(sys.stdout)
        if settings.is_production:
            handler.setFormatter(StructuredFormatter())
        else:
            handler.setFormatter(logging.Formatter(fmt=settings.LOG_FORMAT, datefmt='%Y-%m-%d %H:%M:%S'))
        handler.addFilter(self.context_filter)
        return handler

    def _build_file_handler(self, path: str) -> Optional[logging.Handler]:
        """Rotating JSON file handler, or None when the directory is not writable."""
        try:
            Path(path).parent.mkdir(parents=True, exist_ok=True)
            handler = logging.handlers.RotatingFileHandler(
                filename=path,
                maxBytes=settings.LOG_MAX_BYTES,
                backupCount=settings.LOG_BACKUP_COUNT,
                encoding='utf-8'
            )
        except OSError as e:
            logging.getLogger(__name__).error(f"Failed to configure file logging at {path}: {e}")
            return None

        handler.setFormatter(StructuredFormatter())
        handler.addFilter(self.context_filter)
        return handler

    def get_logger(self, name: str) -> logging.Logger:
        if not self.configured:
            self.configure_logging()
        return logging.getLogger(name)


class TransferLogger:
    """Logger for transfer throughput of downloads and uploads."""

    def __init__(self):
        self.logger = logging.getLogger('republisher.transfers')

    def log_transfer(self, direction: str, episode_id: int, file_size: int,
                     duration_seconds: float, path: Optional[str] = None):
        """
        Log a finished byte transfer.

        Args:
            direction: "download" or "upload"
            episode_id: Episode the bytes belong to
            file_size: Bytes moved
            duration_seconds: Wall time of the transfer
            path: Local file path
        """
        throughput_mbps = (file_size / (1024 * 1024)) / duration_seconds if duration_seconds > 0 else 0

        self.logger.info(
            f"{direction.capitalize()} of episode {episode_id} finished: "
            f"{file_size} bytes in {duration_seconds:.1f}s ({throughput_mbps:.2f} MB/s)",
            extra={
                'direction': direction,
                'episode_id': episode_id,
                'file_size_bytes': file_size,
                'throughput_mbps': round(throughput_mbps, 2),
                'path': path,
            }
        )


# Global instances
logging_manager = LoggingManager()
transfer_logger = TransferLogger()


def get_logger(name: str) -> logging.Logger:
    """
    Get configured logger instance.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Configured logger
    """
    return logging_manager.get_logger(name)


def configure_logging():
    """Configure application logging."""
    logging_manager.configure_logging()
