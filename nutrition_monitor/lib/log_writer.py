"""Category log files: one JSON-lines file per category under the logs dir.

Each category gets its own ``logging.Logger`` with a midnight-rotating file
handler. Files are created lazily on first write; at the first write after UTC
midnight ``<category>.log`` is renamed to ``<category>.log.<YYYY-MM-DD>`` and
archives beyond the retention count are deleted. The rename is not coordinated
with other processes appending to the same file.
"""

import json
import logging
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Any, Dict, List, Optional

from nutrition_monitor.lib.structured_logger import StructuredLogger

logger = StructuredLogger(__name__)


class JSONLineFormatter(logging.Formatter):
    """Render a record whose message is a mapping as one JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        return json.dumps(record.msg, default=str)


class CategoryFileHandler(TimedRotatingFileHandler):
    """Daily (UTC midnight) rotating JSON-lines file for one category."""

    def __init__(self, path: Path, retention_days: Optional[int] = None):
        super().__init__(
            path,
            when='midnight',
            backupCount=retention_days or 0,
            encoding='utf-8',
            delay=True,
            utc=True,
        )
        self.setFormatter(JSONLineFormatter())
        self.failed = False

    def handleError(self, record: logging.LogRecord) -> None:
        # The base class prints the traceback to stderr and never raises.
        self.failed = True
        super().handleError(record)


class CategoryLogWriter:
    """JSON line writer keyed by category name.

    Write failures are reported and swallowed so observability never becomes a
    failure mode for the host application.
    """

    def __init__(self, logs_dir: Path | str, retention_days: Optional[int] = None):
        """Initialize the writer.

        Args:
            logs_dir: Directory holding the <category>.log files
            retention_days: Daily archives kept per category (None keeps all)
        """
        self.logs_dir = Path(logs_dir)
        self.retention_days = retention_days
        self._loggers: Dict[str, logging.Logger] = {}

    def path_for(self, category: str) -> Path:
        return self.logs_dir / f'{category}.log'

    def handler_for(self, category: str) -> CategoryFileHandler:
        return self._logger_for(category).handlers[0]

    def _logger_for(self, category: str) -> logging.Logger:
        category_logger = self._loggers.get(category)
        if category_logger is None:
            # Not registered with the logging manager: each writer owns its handlers.
            category_logger = logging.Logger(f'nutrition_monitor.logs.{category}', logging.INFO)
            category_logger.propagate = False
            category_logger.addHandler(CategoryFileHandler(self.path_for(category), self.retention_days))
            self._loggers[category] = category_logger
        return category_logger

    def write(self, category: str, entry: Dict[str, Any]) -> bool:
        """Append one entry as a JSON line.

        Args:
            category: Log category ('query_metrics', 'errors', 'alerts', ...)
            entry: JSON-serializable mapping (non-serializable values are stringified)

        Returns:
            True if the line was written, False if the write failed
        """
        try:
            self.logs_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error(f'Failed to write log: {e}', category=category)
            return False

        category_logger = self._logger_for(category)
        handler = category_logger.handlers[0]
        handler.failed = False
        category_logger.info(entry)
        if handler.failed:
            logger.error('Failed to write log', category=category)
            return False
        return True

    def read(self, category: str) -> List[Dict[str, Any]]:
        """Read back the current (unrotated) file for a category, skipping bad lines."""
        path = self.path_for(category)
        if not path.exists():
            return []

        entries = []
        with open(path, encoding='utf-8') as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    entries.append(json.loads(line))
                except json.JSONDecodeError:
                    continue
        return entries

    def close(self) -> None:
        """Close every open category file."""
        for category_logger in self._loggers.values():
            for handler in list(category_logger.handlers):
                handler.close()
                category_logger.removeHandler(handler)
        self._loggers.clear()
