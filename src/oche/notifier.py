"""
In-process change notifications.

The core calls ``emit`` after each committed state change; delivery to
subscribers (the live stream, tests, ...) is handled here.
"""
import logging
import queue
import threading
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class ChangeEvent:
    def __init__(self, entity: str, entity_id: str, tournament_id: Optional[str] = None):
        self.entity = entity
        self.entity_id = entity_id
        self.tournament_id = tournament_id

    def to_dict(self) -> dict:
        return {'entity': self.entity, 'id': self.entity_id, 'tournament_id': self.tournament_id}

    def __repr__(self):
        return f"ChangeEvent(entity={self.entity}, id={self.entity_id}, tournament_id={self.tournament_id})"


class ChangeNotifier:
    def __init__(self):
        self._subscribers = []
        self._lock = threading.Lock()

    def subscribe(self, callback: Callable[[ChangeEvent], None]) -> Callable[[], None]:
        """Register a callback. Returns a function that removes it again."""
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe():
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def subscribe_queue(self, tournament_id: Optional[str] = None):
        """Subscribe a queue that receives events (optionally for one tournament).

        Returns ``(queue, unsubscribe)``.
        """
        events = queue.Queue()

        def put(event):
            if tournament_id is None or event.tournament_id == tournament_id:
                events.put(event)

        return events, self.subscribe(put)

    def emit(self, entity: str, entity_id: str, tournament_id: Optional[str] = None):
        event = ChangeEvent(entity, entity_id, tournament_id)
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(event)
            except Exception:
                # The change is already committed; log and keep delivering.
                logger.exception('Change subscriber failed for %r', event)
