# polar_pmd/protocol/registry.py
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, replace
from enum import Enum
from typing import Dict, List, Optional

from .core.messages import ControlCommand, ControlResponse, MeasurementSetting, Opcode, StreamKind
from .errors import Busy, Mismatch


class SessionState(str, Enum):
    IDLE = "IDLE"
    SETTINGS_REQUESTED = "SETTINGS_REQUESTED"
    START_REQUESTED = "START_REQUESTED"
    STREAMING = "STREAMING"
    STOP_REQUESTED = "STOP_REQUESTED"


# opcode -> (state it starts from, state while in flight, state on success)
_TRANSITIONS: Dict[Opcode, tuple[SessionState, SessionState, SessionState]] = {
    Opcode.GET_SETTINGS: (SessionState.IDLE, SessionState.SETTINGS_REQUESTED, SessionState.IDLE),
    Opcode.START: (SessionState.IDLE, SessionState.START_REQUESTED, SessionState.STREAMING),
    Opcode.STOP: (SessionState.STREAMING, SessionState.STOP_REQUESTED, SessionState.IDLE),
}


@dataclass
class Session:
    kind: StreamKind
    subscribed: bool = False
    state: SessionState = SessionState.IDLE
    settings: tuple[MeasurementSetting, ...] = ()


@dataclass(frozen=True)
class RequestToken:
    """Identifies the single outstanding control exchange."""
    request_id: int
    kind: StreamKind
    command: ControlCommand
    prior_state: SessionState


class SessionRegistry:
    """
    Per-stream subscription and lifecycle state.

    The PMD control point is one channel shared by every measurement type, so
    at most one control exchange is outstanding across all PMD sessions. Every
    check-and-set happens under one lock. Sessions handed out are copies.
    """

    def __init__(self, *, logger: Optional[logging.Logger] = None):
        self._log = logger or logging.getLogger(__name__)
        self._lock = threading.Lock()
        self._sessions: Dict[StreamKind, Session] = {}
        self._outstanding: Optional[RequestToken] = None
        self._next_id = 1

    # ---------------- Subscriptions ----------------
    def subscribe(self, kind: StreamKind) -> bool:
        """Mark `kind` subscribed. Returns False if it already was."""
        kind = StreamKind(kind)
        with self._lock:
            session = self._sessions.setdefault(kind, Session(kind))
            if session.subscribed:
                return False
            session.subscribed = True
            if not kind.is_pmd:
                session.state = SessionState.STREAMING
        self._log.debug("SESSION_SUBSCRIBED stream=%s", kind.value)
        return True

    def unsubscribe(self, kind: StreamKind) -> bool:
        """
        Drop the subscription for `kind`. Returns False if it was not subscribed.

        A PMD session that is still streaming keeps its record (unsubscribed) so
        it can still be stopped.
        """
        kind = StreamKind(kind)
        with self._lock:
            if self._outstanding is not None and self._outstanding.kind is kind:
                raise Busy(f"{kind.value} has a control exchange in flight")
            session = self._sessions.get(kind)
            if session is None or not session.subscribed:
                return False
            if kind.is_pmd and session.state is not SessionState.IDLE:
                session.subscribed = False
            else:
                del self._sessions[kind]
        self._log.debug("SESSION_UNSUBSCRIBED stream=%s", kind.value)
        return True

    # ---------------- Control exchanges ----------------
    def begin_request(self, kind: StreamKind, command: ControlCommand) -> Optional[RequestToken]:
        """
        Reserve the control point for `command`.

        Returns None for a STOP on an idle session: nothing needs to be sent.
        """
        kind = StreamKind(kind)
        if not kind.is_pmd:
            raise ValueError(f"{kind.value} does not use the control point")
        if command.measurement is not kind.measurement:
            raise ValueError(f"{command.describe()} does not target {kind.value}")

        start_state, pending_state, _ = _TRANSITIONS[command.opcode]

        with self._lock:
            if self._outstanding is not None:
                raise Busy(
                    f"{command.describe()} refused: {self._outstanding.command.describe()} is outstanding",
                    details={"outstanding": self._outstanding.command.describe()},
                )

            session = self._sessions.get(kind)
            current = session.state if session else SessionState.IDLE

            if command.opcode is Opcode.STOP and current is SessionState.IDLE:
                return None

            if current is not start_state:
                raise Busy(
                    f"{command.describe()} refused: {kind.value} is {current.value}",
                    details={"state": current.value},
                )

            if session is None:
                session = self._sessions[kind] = Session(kind)

            token = RequestToken(self._next_id, kind, command, current)
            self._next_id += 1
            session.state = pending_state
            self._outstanding = token

        self._log.debug("REQUEST_BEGIN id=%d cmd=%s", token.request_id, command.describe())
        return token

    def complete_request(self, token: RequestToken, response: ControlResponse) -> Session:
        """Apply the device's answer to the outstanding exchange and release the control point."""
        cmd = token.command
        with self._lock:
            if self._outstanding is None or self._outstanding.request_id != token.request_id:
                raise Mismatch(f"request {token.request_id} ({cmd.describe()}) is not outstanding")
            if response.opcode is not cmd.opcode or response.measurement is not cmd.measurement:
                raise Mismatch(
                    f"response {response.opcode.value}({response.measurement.value}) "
                    f"does not answer {cmd.describe()}"
                )

            self._outstanding = None
            session = self._sessions.setdefault(token.kind, Session(token.kind))

            if response.ok:
                session.state = _TRANSITIONS[cmd.opcode][2]
                if cmd.opcode is Opcode.GET_SETTINGS:
                    session.settings = response.settings
            else:
                session.state = token.prior_state

            snapshot = replace(session)

        self._log.debug(
            "REQUEST_COMPLETE id=%d cmd=%s status=%s state=%s",
            token.request_id, cmd.describe(), response.status.value, snapshot.state.value,
        )
        return snapshot

    def abandon_request(self, token: RequestToken) -> bool:
        """
        Release the control point without a response (timeout, send failure).
        Returns False if `token` was no longer outstanding.
        """
        with self._lock:
            if self._outstanding is None or self._outstanding.request_id != token.request_id:
                return False
            self._outstanding = None
            session = self._sessions.get(token.kind)
            if session is not None:
                session.state = token.prior_state
        self._log.debug("REQUEST_ABANDONED id=%d cmd=%s", token.request_id, token.command.describe())
        return True

    def reset_all(self) -> Optional[RequestToken]:
        """Forget every session (link loss). Returns the exchange that was in flight, if any."""
        with self._lock:
            outstanding = self._outstanding
            self._outstanding = None
            dropped = len(self._sessions)
            self._sessions.clear()
        self._log.info("SESSIONS_RESET dropped=%d", dropped)
        return outstanding

    # ---------------- Queries ----------------
    def outstanding(self) -> Optional[RequestToken]:
        with self._lock:
            return self._outstanding

    def state(self, kind: StreamKind) -> SessionState:
        with self._lock:
            session = self._sessions.get(StreamKind(kind))
            return session.state if session else SessionState.IDLE

    def cached_settings(self, kind: StreamKind) -> tuple[MeasurementSetting, ...]:
        with self._lock:
            session = self._sessions.get(StreamKind(kind))
            return session.settings if session else ()

    def is_subscribed(self, kind: StreamKind) -> bool:
        with self._lock:
            session = self._sessions.get(StreamKind(kind))
            return bool(session and session.subscribed)

    def has_subscriptions(self) -> bool:
        with self._lock:
            return any(s.subscribed for s in self._sessions.values())

    def active_streams(self) -> List[StreamKind]:
        with self._lock:
            return sorted(k for k, s in self._sessions.items() if s.subscribed)

    def streaming(self) -> List[StreamKind]:
        """PMD types the device is currently streaming."""
        with self._lock:
            return sorted(
                k for k, s in self._sessions.items()
                if k.is_pmd and s.state is SessionState.STREAMING
            )

    def sessions(self) -> Dict[StreamKind, Session]:
        with self._lock:
            return {k: replace(s) for k, s in sorted(self._sessions.items())}
