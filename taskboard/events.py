"""
Notification bridge: makes board changes and failures observable.

The engine, session and form controller emit events here; the HTTP layer
(or any UI) subscribes. Failures are always emitted as ``notice`` events
and kept in a bounded list so they can be shown after the fact.
"""
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Deque, Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class Notice:
    """A user-visible message."""
    level: str                  # "info" | "error"
    message: str
    kind: str = ""              # error kind, e.g. "store_unavailable"
    task_id: Optional[str] = None
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {
            "level": self.level,
            "message": self.message,
            "kind": self.kind,
            "task_id": self.task_id,
            "timestamp": self.timestamp,
        }


class BoardEventBridge:
    """Routes board events to subscribers."""

    def __init__(self, notice_limit: int = 50):
        self.subscribers: Dict[str, list] = {}  # event_type -> list of callbacks
        self.notices: Deque[Notice] = deque(maxlen=notice_limit)

    def subscribe(self, event_type: str, callback: Callable) -> None:
        """Register a callback for an event type."""
        if event_type not in self.subscribers:
            self.subscribers[event_type] = []
        self.subscribers[event_type].append(callback)

    def emit(self, event_type: str, **kwargs) -> None:
        """Emit an event to all subscribers. A failing subscriber never stops the others."""
        for callback in self.subscribers.get(event_type, []):
            try:
                callback(**kwargs)
            except Exception as e:
                logger.error(f"Error in {event_type} callback: {e}")

    def notify(self, message: str, level: str = "info", kind: str = "",
               task_id: Optional[str] = None) -> Notice:
        """Record a user-visible notice and emit it."""
        notice = Notice(level=level, message=message, kind=kind, task_id=task_id)
        self.notices.append(notice)
        self.emit("notice", notice=notice)
        return notice

    def recent_notices(self, limit: Optional[int] = None) -> List[Notice]:
        """Most recent first."""
        items = list(reversed(self.notices))
        return items[:limit] if limit else items
