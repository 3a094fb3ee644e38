# polar_pmd/transport/base.py
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Iterator, Tuple

Notification = Tuple[str, bytes]   # (characteristic UUID, payload)


class Transport(ABC):
    """
    Abstract link to an already-connected sensor.

    Contract:
      - write(data) sends one PMD control point write.
      - notifications() yields (characteristic_uuid, payload) pairs for every
        enabled characteristic. The iterator blocks between notifications and
        ends (or raises TransportError) when the link is lost; a lost link
        cannot be resumed. Only one consumer may iterate at a time.
      - set_notify(uuid, enabled) toggles notifications for a characteristic.
      - read(uuid) returns a characteristic's current value.
      - Failures raise TransportError.
    """

    @abstractmethod
    def write(self, data: bytes) -> None: ...

    @abstractmethod
    def notifications(self) -> Iterator[Notification]: ...

    @abstractmethod
    def is_connected(self) -> bool: ...

    @abstractmethod
    def disconnect(self) -> None: ...

    @abstractmethod
    def set_notify(self, uuid: str, enabled: bool) -> None: ...

    @abstractmethod
    def read(self, uuid: str) -> bytes: ...

    def __enter__(self) -> "Transport":
        return self

    def __exit__(self, exc_type: type | None, exc_val: BaseException | None, exc_tb: Any) -> None:
        self.disconnect()
