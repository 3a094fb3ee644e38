# polar_pmd/transport/__init__.py

from .base import Notification, Transport
from .errors import TransportClosedError, TransportError, TransportIOError
from .memory import MemoryTransport

__all__ = [
    "Notification", "Transport",
    "TransportError", "TransportIOError", "TransportClosedError",
    "MemoryTransport",
]
