# polar_pmd/protocol/_internal/event_worker.py
from __future__ import annotations

import logging
import queue
import threading
from typing import Any, Optional


class EventWorker(threading.Thread):
    """
    Delivers decoded events to the user's handler off the receive path.

    Events are (method_name, args) pairs. A full queue drops the event; after
    discard() whatever is still queued is thrown away instead of delivered.
    """

    def __init__(self, handler: Any, *, maxsize: int = 1024, logger: Optional[logging.Logger] = None):
        super().__init__(daemon=True, name="pmd-events")
        self.handler = handler
        self._log = logger or logging.getLogger(__name__)
        self._queue: "queue.Queue[tuple[str, tuple]]" = queue.Queue(maxsize=maxsize)
        self._stop_event = threading.Event()
        self._discard = threading.Event()
        self.dropped = 0
        self.discarded = 0
        self.delivered = 0

    def post(self, method: str, *args: Any) -> bool:
        if self._discard.is_set():
            self.discarded += 1
            return False
        try:
            self._queue.put_nowait((method, args))
        except queue.Full:
            self.dropped += 1
            self._log.warning("EVENT_QUEUE_FULL dropped=%s total_dropped=%d", method, self.dropped)
            return False
        return True

    def run(self) -> None:
        while not (self._stop_event.is_set() and self._queue.empty()):
            try:
                method, args = self._queue.get(timeout=0.05)
            except queue.Empty:
                continue
            if self._discard.is_set():
                self.discarded += 1
                continue
            self._deliver(method, args)

        if self.discarded:
            self._log.debug("EVENTS_DISCARDED count=%d", self.discarded)

    def _deliver(self, method: str, args: tuple) -> None:
        try:
            getattr(self.handler, method)(*args)
        except Exception:
            self._log.exception("EVENT_HANDLER_ERROR method=%s", method)
        self.delivered += 1

    def discard(self) -> None:
        """Drop queued and future events instead of delivering them."""
        self._discard.set()

    def stop(self) -> None:
        """Finish delivering what is queued, then exit."""
        self._stop_event.set()
