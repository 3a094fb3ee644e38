# polar_pmd/transport/memory.py
from __future__ import annotations

import logging
import queue
import threading
from typing import Callable, Dict, Iterator, List, Mapping, Optional

from .base import Notification, Transport
from .errors import TransportClosedError, TransportError, TransportIOError

_log = logging.getLogger(__name__)


class _LinkDown:
    __slots__ = ("error",)

    def __init__(self, error: Optional[TransportError]):
        self.error = error


class MemoryTransport(Transport):
    """
    In-process transport for tests and simulation.

    Inbound notifications are queued with push(); writes are recorded and
    optionally handed to `on_write`, which can play the device side.
    """

    def __init__(
        self,
        *,
        values: Optional[Mapping[str, bytes]] = None,
        on_write: Optional[Callable[[bytes], None]] = None,
    ):
        self.on_write = on_write
        self.values: Dict[str, bytes] = {k.lower(): bytes(v) for k, v in (values or {}).items()}

        self.writes: List[bytes] = []
        self.reads: List[str] = []
        self.notify_enabled: Dict[str, bool] = {}

        self._queue: "queue.Queue[Notification | _LinkDown]" = queue.Queue()
        self._lock = threading.Lock()
        self._connected = True
        self._consumer: Optional[_Stream] = None

    # ---------------- Simulation side ----------------
    def push(self, uuid: str, payload: bytes) -> None:
        self._queue.put((uuid.lower(), bytes(payload)))

    def drop_link(self, error: Optional[TransportError] = None) -> None:
        """End the notification stream, cleanly or by raising `error` in the consumer."""
        with self._lock:
            if not self._connected:
                return
            self._connected = False
        self._queue.put(_LinkDown(error))
        _log.info("LINK_DROPPED error=%s", error)

    # ---------------- Transport ----------------
    def write(self, data: bytes) -> None:
        if not self.is_connected():
            raise TransportClosedError("write on a closed link")
        self.writes.append(bytes(data))
        if self.on_write is not None:
            self.on_write(bytes(data))

    def notifications(self) -> Iterator[Notification]:
        with self._lock:
            if not self._connected and self._queue.empty():
                raise TransportClosedError("link is closed")
            if self._consumer is not None:
                raise TransportIOError("notification stream already has a consumer")
            stream = self._consumer = _Stream(self)
        return stream

    def _iterate(self, stream: "_Stream") -> Iterator[Notification]:
        try:
            while True:
                item = self._queue.get()
                if isinstance(item, _LinkDown):
                    if item.error is not None:
                        raise item.error
                    return
                yield item
        finally:
            self._release(stream)

    def _release(self, stream: "_Stream") -> None:
        with self._lock:
            if self._consumer is stream:
                self._consumer = None

    def is_connected(self) -> bool:
        with self._lock:
            return self._connected

    def disconnect(self) -> None:
        self.drop_link()

    def set_notify(self, uuid: str, enabled: bool) -> None:
        if not self.is_connected():
            raise TransportClosedError("set_notify on a closed link")
        self.notify_enabled[uuid.lower()] = bool(enabled)

    def read(self, uuid: str) -> bytes:
        if not self.is_connected():
            raise TransportClosedError("read on a closed link")
        key = uuid.lower()
        self.reads.append(key)
        if key not in self.values:
            raise TransportIOError(f"characteristic {uuid} is not readable")
        return self.values[key]


class _Stream:
    """The single consumer's view of the queue; close() frees the slot even before the first item."""

    def __init__(self, owner: MemoryTransport):
        self._owner = owner
        self._gen = owner._iterate(self)

    def __iter__(self) -> "_Stream":
        return self

    def __next__(self) -> Notification:
        return next(self._gen)

    def close(self) -> None:
        self._gen.close()
        self._owner._release(self)
