"""
Result Logger - console of script results and panel activity.

Results arrive asynchronously on the script result topic. Each one is
classified by its leading marker and appended as a timestamped line.
"""

import logging
import time
from collections import deque
from dataclasses import dataclass, asdict
from typing import Callable, Deque, List, Optional

from .message import ResultEvent

logger = logging.getLogger(__name__)

CLEARED_LINE = "[System] Console cleared"
READY_LINE = "[System] Ready"


@dataclass
class LogEntry:
    """One console line."""
    timestamp: float
    level: str
    text: str

    @property
    def line(self) -> str:
        if self.text.startswith("[System]"):
            return self.text
        clock = time.strftime("%H:%M:%S", time.localtime(self.timestamp))
        return f"[{clock}] {self.text}"

    def to_dict(self) -> dict:
        payload = asdict(self)
        payload["line"] = self.line
        return payload


class ResultLogger:
    """
    Append-only, bounded console log.

    Listeners are called with every new entry, and with the system line
    after a clear.
    """

    def __init__(self, max_entries: int = 500):
        self.max_entries = max_entries
        self._entries: Deque[LogEntry] = deque(maxlen=max_entries)
        self._listeners: List[Callable[[LogEntry], None]] = []
        self._entries.append(LogEntry(time.time(), "info", READY_LINE))

    def add_listener(self, callback: Callable[[LogEntry], None]) -> None:
        self._listeners.append(callback)

    def remove_listener(self, callback: Callable[[LogEntry], None]) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    def on_result(self, payload: Optional[str]) -> LogEntry:
        """Handle one script result payload."""
        event = ResultEvent.from_payload(payload)
        logger.info(f"Script result ({event.classification}): {event.text}")
        return self._append(event.classification, event.text)

    def info(self, text: str) -> LogEntry:
        return self._append("info", text)

    def clear(self) -> LogEntry:
        self._entries.clear()
        return self._append("info", CLEARED_LINE)

    def entries(self) -> List[LogEntry]:
        return list(self._entries)

    def _append(self, level: str, text: str) -> LogEntry:
        entry = LogEntry(timestamp=time.time(), level=level, text=text)
        self._entries.append(entry)
        for callback in list(self._listeners):
            try:
                callback(entry)
            except Exception as e:
                logger.error(f"Error in log listener: {e}")
        return entry
