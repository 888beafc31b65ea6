"""Ring buffer of recent log entries, served by ``GET /api/logs``."""
import logging
from collections import deque
from datetime import datetime, timezone
from typing import Deque, Dict, List, Optional

from recall_db.errors import ValidationError

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def parse_level(level: Optional[str]) -> int:
    """Turn a level name such as "warning" into its number (NOTSET for None)."""
    if level is None:
        return logging.NOTSET
    number = logging.getLevelName(level.upper())
    if not isinstance(number, int):
        raise ValidationError(f"Unknown log level: {level!r}")
    return number


class MemoryLogHandler(logging.Handler):
    """Keeps the newest ``capacity`` records as JSON-ready dicts."""

    def __init__(self, capacity: int = 100):
        if capacity < 1:
            raise ValidationError(f"Log buffer capacity must be positive, got {capacity!r}")
        super().__init__()
        self.entries: Deque[Dict] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self.entries.maxlen

    def emit(self, record: logging.LogRecord):
        try:
            entry = {
                "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
                "level": record.levelname,
                "levelno": record.levelno,
                "logger": record.name,
                "message": self.format(record),
            }
        except Exception:
            self.handleError(record)
            return
        with self.lock:
            self.entries.append(entry)

    def recent(
        self, n: int = 10, min_level: Optional[str] = None, logger_prefix: Optional[str] = None
    ) -> List[Dict]:
        """Newest ``n`` entries, oldest first.

        ``min_level`` drops entries below that level; ``logger_prefix`` keeps
        only entries from that logger and its children.
        """
        if n <= 0:
            return []
        threshold = parse_level(min_level)
        with self.lock:
            entries = list(self.entries)
        selected = [
            entry for entry in entries
            if entry["levelno"] >= threshold
            and (
                logger_prefix is None
                or entry["logger"] == logger_prefix
                or entry["logger"].startswith(logger_prefix + ".")
            )
        ]
        return selected[-n:]

    def clear(self) -> None:
        with self.lock:
            self.entries.clear()


_memory_handler: Optional[MemoryLogHandler] = None


def get_memory_handler(capacity: int = 100) -> MemoryLogHandler:
    """Return the process-wide handler, installing it on the root logger once."""
    global _memory_handler
    if _memory_handler is None:
        handler = MemoryLogHandler(capacity=capacity)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logging.getLogger().addHandler(handler)
        _memory_handler = handler
    return _memory_handler
