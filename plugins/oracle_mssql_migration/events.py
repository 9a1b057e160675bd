"""
Structured Event Sink

Components receive an EventSink in their constructor instead of writing to
a shared logger directly. The default sink forwards to the standard logging
module, so Airflow task logs still show everything.
"""

from typing import Any, Dict, List, Tuple
import logging
import threading

logger = logging.getLogger(__name__)


class EventSink:
    """Accepts a level, a message and key/value fields."""

    def emit(self, level: int, message: str, **fields: Any) -> None:
        raise NotImplementedError

    def debug(self, message: str, **fields: Any) -> None:
        self.emit(logging.DEBUG, message, **fields)

    def info(self, message: str, **fields: Any) -> None:
        self.emit(logging.INFO, message, **fields)

    def warning(self, message: str, **fields: Any) -> None:
        self.emit(logging.WARNING, message, **fields)

    def error(self, message: str, **fields: Any) -> None:
        self.emit(logging.ERROR, message, **fields)


class LoggingEventSink(EventSink):
    """
    Forward events to a logging.Logger.

    Fields are appended to the message as key=value pairs and also passed
    through ``extra`` so structured log handlers can pick them up.
    """

    def __init__(self, target_logger: logging.Logger = None):
        self._logger = target_logger or logger

    def emit(self, level: int, message: str, **fields: Any) -> None:
        if not self._logger.isEnabledFor(level):
            return
        if fields:
            rendered = ' '.join(f"{k}={v}" for k, v in fields.items())
            text = f"{message} [{rendered}]"
        else:
            text = message
        self._logger.log(level, text, extra={'event_fields': dict(fields)})


class CollectingEventSink(EventSink):
    """Keep events in memory. Used for end-of-run summaries and tests."""

    def __init__(self):
        self.events: List[Tuple[int, str, Dict[str, Any]]] = []
        self._lock = threading.Lock()

    def emit(self, level: int, message: str, **fields: Any) -> None:
        with self._lock:
            self.events.append((level, message, dict(fields)))

    def messages(self, level: int = None) -> List[str]:
        with self._lock:
            return [m for lvl, m, _ in self.events if level is None or lvl == level]


def default_sink(name: str) -> EventSink:
    """Return a logging-backed sink for the given module name."""
    return LoggingEventSink(logging.getLogger(name))
