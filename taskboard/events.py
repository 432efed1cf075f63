"""
Event bridge: notifies UI subscribers of cache changes and user-facing results.

The caches emit; presentation (toasts, re-rendering) subscribes. Events:

  error                 message, op
  success               message, op
  boards_changed        boards
  active_board_changed  board_id, previous
  tasks_changed         board_id
"""
import logging
from typing import Callable, Dict, List

logger = logging.getLogger(__name__)

ERROR = "error"
SUCCESS = "success"
BOARDS_CHANGED = "boards_changed"
ACTIVE_BOARD_CHANGED = "active_board_changed"
TASKS_CHANGED = "tasks_changed"


class SyncEventBridge:
    """Routes cache events to registered callbacks."""

    def __init__(self):
        self.subscribers: Dict[str, List[Callable]] = {}  # event_type -> callbacks

    def subscribe(self, event_type: str, callback: Callable) -> None:
        """Register a callback for an event type."""
        if event_type not in self.subscribers:
            self.subscribers[event_type] = []
        self.subscribers[event_type].append(callback)

    def unsubscribe(self, event_type: str, callback: Callable) -> None:
        callbacks = self.subscribers.get(event_type, [])
        if callback in callbacks:
            callbacks.remove(callback)

    def emit(self, event_type: str, **kwargs) -> None:
        """Emit an event to all subscribers. A failing subscriber is logged and skipped."""
        for callback in list(self.subscribers.get(event_type, [])):
            try:
                callback(**kwargs)
            except Exception as e:
                logger.error(f"Error in {event_type} callback: {e}")

    def error(self, message: str, op: str = "") -> None:
        self.emit(ERROR, message=message, op=op)

    def success(self, message: str, op: str = "") -> None:
        self.emit(SUCCESS, message=message, op=op)
