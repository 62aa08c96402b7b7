"""
Progress/Log Reporter - operator-facing progress and log stream.

Holds the row counter, the current operation label and an append-only log
for one import run, and the cooperative cancellation flag that the
pipeline checks between batches.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LogEntry:
    """A timestamped operator log line."""
    timestamp: datetime
    message: str

    @property
    def is_error(self) -> bool:
        return 'error' in self.message.lower()

    def format(self) -> str:
        return f"[{self.timestamp.strftime('%H:%M:%S')}] {self.message}"


class ProgressReporter:
    """
    Progress state for a single import invocation.

    ``listener`` receives a snapshot dict whenever the counter, stage or
    operation changes. ``cancel_check`` lets an outside party (e.g. a
    Redis flag set by the API) request cancellation; once it reports True
    the reporter stays cancelled.
    """

    def __init__(
        self,
        total: int = 0,
        listener: Optional[Callable[[Dict[str, Any]], None]] = None,
        cancel_check: Optional[Callable[[], bool]] = None
    ):
        self.total = total
        self.current = 0
        self.stage = 'pending'
        self.operation = ''
        self.entries: List[LogEntry] = []
        self.listener = listener
        self.cancel_check = cancel_check
        self._cancelled = False

    def start(self, total: int, operation: str):
        self.total = total
        self.current = 0
        self.stage = 'starting'
        self.operation = operation
        self._notify()

    def set_stage(self, stage: str, operation: str):
        self.stage = stage
        self.operation = operation
        self._notify()

    def update(self, current: int, operation: Optional[str] = None):
        """Advance the row counter; it never moves backwards."""
        current = max(self.current, current)
        if self.total:
            current = min(current, self.total)
        self.current = current
        if operation is not None:
            self.operation = operation
        self._notify()

    def log(self, message: str):
        entry = LogEntry(timestamp=datetime.utcnow(), message=message)
        self.entries.append(entry)

        if entry.is_error or message.lower().startswith('warning'):
            logger.warning(message)
        else:
            logger.info(message)

    def warning(self, message: str):
        self.log(f"Warning: {message}")

    def error(self, message: str):
        self.log(f"Error: {message}")

    def cancel(self):
        """Request cancellation; honoured at the next batch boundary."""
        if not self._cancelled:
            self._cancelled = True
            logger.info("Cancellation requested")

    @property
    def cancelled(self) -> bool:
        if not self._cancelled and self.cancel_check is not None and self.cancel_check():
            self.cancel()
        return self._cancelled

    @property
    def percent(self) -> float:
        if not self.total:
            return 0.0
        return round(100.0 * self.current / self.total, 2)

    @property
    def errors(self) -> List[str]:
        return [entry.message for entry in self.entries if entry.is_error]

    def lines(self) -> List[str]:
        return [entry.format() for entry in self.entries]

    def snapshot(self) -> Dict[str, Any]:
        return {
            'stage': self.stage,
            'current': self.current,
            'total': self.total,
            'percent': self.percent,
            'message': self.operation,
            'logs': self.lines(),
            'error_count': len(self.errors),
            'cancel_requested': self._cancelled,
            'timestamp': datetime.utcnow().isoformat()
        }

    def _notify(self):
        if self.listener is not None:
            self.listener(self.snapshot())
