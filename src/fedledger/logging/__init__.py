"""Round-aware logging for submission runs.

Configures the ``fedledger`` logger hierarchy with:
- Console output
- A plain-text log file per run
- A JSON-lines stream of structured records

Modules log through ``logging.getLogger("fedledger....")`` and pass the
round number as ``extra={'round': n}``; records without one show ``-``.
"""

import logging
import os
import json
from datetime import datetime
from typing import Dict, List, Optional
from dataclasses import dataclass, asdict
from enum import Enum


ROOT_LOGGER = "fedledger"

LOG_FORMAT = '%(asctime)s | %(name)s | R%(round)s | %(levelname)s | %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


class LogLevel(Enum):
    """Log levels for run logging"""
    DEBUG = logging.DEBUG
    INFO = logging.INFO
    WARNING = logging.WARNING
    ERROR = logging.ERROR
    CRITICAL = logging.CRITICAL


@dataclass
class RunLogRecord:
    """Structured log record for submission events"""
    timestamp: str
    round_num: Optional[int]
    component: str
    message: str
    level: str = "INFO"

    def to_dict(self) -> Dict:
        """Convert to dictionary"""
        return {k: v for k, v in asdict(self).items() if v is not None}

    def to_json(self) -> str:
        """Convert to JSON string"""
        return json.dumps(self.to_dict())


class RoundFilter(logging.Filter):
    """Gives every record a ``round`` attribute so the format never fails"""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, 'round'):
            record.round = '-'
        return True


class JsonLinesHandler(logging.Handler):
    """Appends one RunLogRecord per log record to a .jsonl file"""

    def __init__(self, path: str, level: int = logging.NOTSET):
        super().__init__(level)
        self.path = path
        self._file = open(path, 'a')

    def emit(self, record: logging.LogRecord) -> None:
        round_num = getattr(record, 'round', None)
        entry = RunLogRecord(
            timestamp=datetime.fromtimestamp(record.created).isoformat(),
            round_num=round_num if isinstance(round_num, int) else None,
            component=record.name,
            message=record.getMessage(),
            level=record.levelname
        )
        try:
            self.acquire()
            self._file.write(entry.to_json() + '\n')
            self._file.flush()
        except (OSError, ValueError):
            self.handleError(record)
        finally:
            self.release()

    def close(self) -> None:
        self.acquire()
        try:
            if not self._file.closed:
                self._file.close()
        finally:
            self.release()
        super().close()


def setup_logging(
    log_dir: Optional[str] = "outputs/logs",
    level: LogLevel = LogLevel.INFO,
    enable_console: bool = True,
    enable_file: bool = True,
    enable_json: bool = True,
    name: str = "run"
) -> logging.Logger:
    """Configure the fedledger logger hierarchy.

    Replaces any handlers a previous call installed.

    Args:
        log_dir: Directory for log files (None disables file output)
        level: Minimum log level
        enable_console: Enable console output
        enable_file: Enable plain-text file logging ({name}.log)
        enable_json: Enable JSON structured logs ({name}.jsonl)
        name: Base name of the log files

    Returns:
        The configured root ``fedledger`` logger
    """
    logger = logging.getLogger(ROOT_LOGGER)
    close_logging()
    logger.setLevel(level.value)
    logger.propagate = False

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    handlers: List[logging.Handler] = []

    if enable_console:
        handlers.append(logging.StreamHandler())

    if log_dir and (enable_file or enable_json):
        os.makedirs(log_dir, exist_ok=True)
        if enable_file:
            handlers.append(logging.FileHandler(os.path.join(log_dir, f"{name}.log"), mode='a'))
        if enable_json:
            handlers.append(JsonLinesHandler(os.path.join(log_dir, f"{name}.jsonl")))

    for handler in handlers:
        handler.setLevel(level.value)
        handler.setFormatter(formatter)
        handler.addFilter(RoundFilter())
        logger.addHandler(handler)

    return logger


def get_logger(component: str) -> logging.Logger:
    """Get a logger inside the fedledger hierarchy"""
    if component == ROOT_LOGGER or component.startswith(ROOT_LOGGER + "."):
        return logging.getLogger(component)
    return logging.getLogger(f"{ROOT_LOGGER}.{component}")


def close_logging() -> None:
    """Close and detach all handlers of the fedledger logger"""
    logger = logging.getLogger(ROOT_LOGGER)
    for handler in logger.handlers[:]:
        handler.close()
        logger.removeHandler(handler)
    logger.propagate = True
