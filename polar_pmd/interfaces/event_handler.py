# polar_pmd/interfaces/event_handler.py
from __future__ import annotations

import weakref
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from polar_pmd.protocol.core.messages import DataFrame, StreamKind
    from polar_pmd.protocol.errors import DecodeError
    from polar_pmd.runtime.device_session import DeviceSession


@dataclass(frozen=True)
class DecodeContext:
    """Where an undecodable notification came from."""
    source: str                         # characteristic UUID
    kind: Optional["StreamKind"]        # None when the payload could not be attributed
    payload: bytes


class EventHandler:
    """
    Receives decoded events from the dispatch loop.

    Override what you need; every method defaults to a no-op. Callbacks run on
    the event worker thread, never on the receive path, so they may issue
    commands through `self.session`.
    """

    _session_ref: Optional["weakref.ReferenceType[DeviceSession]"] = None

    def bind(self, session: "DeviceSession") -> None:
        self._session_ref = weakref.ref(session)

    @property
    def session(self) -> Optional["DeviceSession"]:
        """The session driving this handler, or None once it is gone."""
        return self._session_ref() if self._session_ref is not None else None

    def on_battery(self, level: int) -> None:
        pass

    def on_heart_rate(self, bpm: int, rr_intervals: tuple[int, ...]) -> None:
        pass

    def on_pmd(self, kind: "StreamKind", frame: "DataFrame") -> None:
        pass

    def on_decode_error(self, context: DecodeContext, error: "DecodeError") -> None:
        pass

    def should_stop(self) -> bool:
        """Polled on the dispatch thread before each notification; True ends the loop."""
        return False
