# polar_pmd/protocol/engine.py
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional

from polar_pmd.interfaces.command_sink import CommandEvent, CommandSink
from polar_pmd.interfaces.event_handler import DecodeContext, EventHandler
from polar_pmd.transport.base import Transport
from polar_pmd.transport.errors import TransportError

from .core import (
    ControlCommand, ControlResponse, Protocol, StreamKind,
    decode_battery, decode_control_response, decode_data_frame, decode_heart_rate, encode_command,
)
from .errors import (
    Busy, CommandTimeout, DecodeError, DeviceStatusError, DispatchNotRunning,
    LinkLost, Mismatch, NoSubscriptions, SendFailed, Truncated,
)
from .registry import SessionRegistry
from ._internal.event_worker import EventWorker
from ._internal.pending_request import PendingRequest


class LoopOutcome(str, Enum):
    LINK_LOST = "LINK_LOST"
    HANDLER_STOPPED = "HANDLER_STOPPED"
    CANCELLED = "CANCELLED"


@dataclass(frozen=True)
class LoopResult:
    """How a dispatch loop ended, with its counters."""
    outcome: LoopOutcome
    notifications: int = 0
    decode_errors: int = 0
    dropped_events: int = 0
    error: Optional[BaseException] = None     # transport error behind a LINK_LOST, if any


class ProtocolEngine:
    """
    PMD protocol engine.

    Owns the receive path (run) and the request side of control exchanges
    (submit/wait). Control requests are correlated with responses through the
    SessionRegistry, which allows one outstanding exchange at a time.
    """

    def __init__(
        self,
        proto: Protocol,
        transport: Transport,
        registry: SessionRegistry,
        *,
        cmd_timeout_s: float = 5.0,
        event_queue_size: int = 1024,
        worker_join_timeout_s: float = 1.0,
        cmd_sink: Optional[CommandSink] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.proto = proto
        self.transport = transport
        self.registry = registry

        self._log = logger or logging.getLogger(__name__)
        self._cmd_sink = cmd_sink

        self.cmd_timeout_s = float(cmd_timeout_s)
        self.event_queue_size = int(event_queue_size)
        self.worker_join_timeout_s = float(worker_join_timeout_s)

        self._lock = threading.Lock()
        self._pending: Dict[int, PendingRequest] = {}

        self._running = threading.Event()
        self._cancel = threading.Event()

    # ---------------- Command API ----------------
    def submit(self, kind: StreamKind, command: ControlCommand) -> Optional[PendingRequest]:
        """
        Encode `command`, reserve the control point and write it.

        Returns None when there is nothing to send (STOP on an idle session).
        """
        raw = encode_command(command, proto=self.proto)
        cmd_name = command.describe()

        token = self.registry.begin_request(kind, command)
        if token is None:
            self._log.debug("CMD_SKIPPED cmd=%s reason=idle", cmd_name)
            return None

        pending = PendingRequest(token, self.cmd_timeout_s)
        if self._cmd_sink:
            pending.add_done_callback(self._telemetry_callback(pending))

        with self._lock:
            self._pending[token.request_id] = pending

        self._log.debug("SENDING_CMD cmd=%s id=%d raw=%s", cmd_name, token.request_id, raw.hex())

        try:
            self.transport.write(raw)
        except Exception as e:
            with self._lock:
                self._pending.pop(token.request_id, None)
            self.registry.abandon_request(token)

            err = SendFailed(cmd_name, str(e) or type(e).__name__)
            pending.fail(err)
            self._log.exception("CMD_SEND_FAILED cmd=%s", cmd_name)
            raise err from e

        return pending

    def wait(self, pending: PendingRequest, timeout: Optional[float] = None) -> ControlResponse:
        """Block until `pending` is answered; on timeout release the control point and raise."""
        try:
            return pending.wait(timeout)
        except CommandTimeout as e:
            if not self.registry.abandon_request(pending.token):
                # Answered (or reset) concurrently; its outcome is about to land.
                return pending.wait(self.cmd_timeout_s)
            with self._lock:
                self._pending.pop(pending.request_id, None)
            self._log.warning("CMD_TIMEOUT cmd=%s timeout_s=%.3f", pending.cmd_name, e.timeout_s)
            pending.fail(e)
            raise

    def send(self, kind: StreamKind, command: ControlCommand, timeout: Optional[float] = None) -> Optional[ControlResponse]:
        pending = self.submit(kind, command)
        if pending is None:
            return None
        return self.wait(pending, timeout)

    def _telemetry_callback(self, pending: PendingRequest):
        start_ts = pending.created_at
        name = pending.cmd_name
        request_id = str(pending.request_id)

        def _on_done(fut):
            rtt_ms = (time.perf_counter() - start_ts) * 1000.0
            exc = fut.exception()
            if exc is not None:
                kind = "timeout" if isinstance(exc, CommandTimeout) else "error"
                payload = {"error": str(exc), "error_code": getattr(exc, "code", None), "rtt_ms": rtt_ms}
            else:
                resp: ControlResponse = fut.result()
                kind = "ok" if resp.ok else "device_status"
                payload = {
                    "status": resp.status.value,
                    "status_code": resp.status_code,
                    "settings": {s.kind.value: list(s.values) for s in resp.settings},
                    "rtt_ms": rtt_ms,
                }
            try:
                self._cmd_sink.on_command(CommandEvent(name=name, kind=kind, payload=payload, request_id=request_id))
            except Exception:
                self._log.exception("CMD_SINK_ERROR cmd=%s", name)

        return _on_done

    # ---------------- Dispatch loop ----------------
    @property
    def running(self) -> bool:
        return self._running.is_set()

    def wait_until_running(self, timeout: Optional[float] = None) -> bool:
        return self._running.wait(timeout)

    def require_running(self) -> None:
        if not self._running.is_set():
            raise DispatchNotRunning()

    def cancel(self) -> None:
        """
        Ask the loop to end; observed before the next notification is handled.

        A loop blocked on the transport wakes on the next notification, which
        is then dropped: at most one notification is consumed after cancel().
        """
        self._cancel.set()

    def run(self, handler: EventHandler, *, stop_event: Optional[threading.Event] = None) -> LoopResult:
        """
        Consume transport notifications until link loss, handler stop or cancellation.

        handler.should_stop() is polled on this thread before each notification
        is routed; once it returns True, events still queued are discarded.
        Must not be entered with zero subscriptions.
        """
        if not self.registry.has_subscriptions():
            raise NoSubscriptions()
        if self._running.is_set():
            raise Busy("dispatch loop is already running")

        self._cancel.clear()
        events = EventWorker(handler, maxsize=self.event_queue_size, logger=self._log)
        events.start()

        notifications = 0
        decode_errors = 0
        outcome = LoopOutcome.LINK_LOST
        error: Optional[BaseException] = None
        stream = None

        self._running.set()
        self._log.info(
            "DISPATCH_LOOP_STARTED streams=%s",
            ",".join(k.value for k in self.registry.active_streams()),
        )

        try:
            stream = self.transport.notifications()
            while True:
                if self._cancelled(stop_event):
                    outcome = LoopOutcome.CANCELLED
                    break

                try:
                    source, payload = next(stream)
                except StopIteration:
                    break

                # Pulled while blocked; it is not handled once the loop is told to end.
                if self._cancelled(stop_event):
                    outcome = LoopOutcome.CANCELLED
                    self._log.debug("NOTIFICATION_DISCARDED source=%s reason=cancelled", source)
                    break
                if self._handler_wants_stop(handler):
                    outcome = LoopOutcome.HANDLER_STOPPED
                    events.discard()
                    self._log.debug("NOTIFICATION_DISCARDED source=%s reason=handler_stop", source)
                    break

                notifications += 1
                if not self._route(str(source).lower(), bytes(payload), events):
                    decode_errors += 1
        except TransportError as e:
            error = e
            self._log.warning("TRANSPORT_ERROR err=%s", e)
        finally:
            close = getattr(stream, "close", None)
            if close is not None:
                close()
            self._running.clear()
            events.stop()
            events.join(self.worker_join_timeout_s)

        if outcome is LoopOutcome.LINK_LOST:
            self._on_link_lost()
        else:
            self._abandon_pending()

        result = LoopResult(
            outcome=outcome,
            notifications=notifications,
            decode_errors=decode_errors,
            dropped_events=events.dropped,
            error=error,
        )
        self._log.info(
            "DISPATCH_LOOP_ENDED outcome=%s notifications=%d decode_errors=%d dropped=%d",
            outcome.value, notifications, decode_errors, events.dropped,
        )
        return result

    def _cancelled(self, stop_event: Optional[threading.Event]) -> bool:
        return self._cancel.is_set() or (stop_event is not None and stop_event.is_set())

    def _handler_wants_stop(self, handler: EventHandler) -> bool:
        # Only the dispatch thread calls should_stop.
        try:
            return bool(handler.should_stop())
        except Exception:
            self._log.exception("SHOULD_STOP_ERROR")
            return False

    def _route(self, source: str, payload: bytes, events: EventWorker) -> bool:
        """Decode and dispatch one notification. Returns False if it could not be decoded."""
        kind: Optional[StreamKind] = None
        try:
            if source == self.proto.pmd_control_uuid:
                self._on_control(payload)
                return True

            if source == self.proto.pmd_data_uuid:
                if not payload:
                    raise Truncated("PMD data frame", self.proto.data_header_len, 0)
                kind = StreamKind.for_measurement(self.proto.measurement_for(payload[0]))
                events.post("on_pmd", kind, decode_data_frame(kind, payload, proto=self.proto))
                return True

            kind = self.proto.stream_kind_for_uuid(source)
            if kind is StreamKind.HEART_RATE:
                hr = decode_heart_rate(payload, proto=self.proto)
                events.post("on_heart_rate", hr.beats_per_minute, hr.rr_intervals)
            elif kind is StreamKind.BATTERY:
                events.post("on_battery", decode_battery(payload, proto=self.proto))
            else:
                self._log.debug("NOTIFICATION_UNROUTED source=%s len=%d", source, len(payload))
            return True

        except DecodeError as e:
            self._log.warning(
                "DECODE_FAILED source=%s kind=%s code=%s err=%s",
                source, kind.value if kind else None, e.code, e,
            )
            events.post("on_decode_error", DecodeContext(source, kind, payload), e)
            return False

    def _on_control(self, payload: bytes) -> None:
        response = decode_control_response(payload, proto=self.proto)

        token = self.registry.outstanding()
        if token is None:
            self._log.warning(
                "CONTROL_RESPONSE_UNSOLICITED opcode=%s type=%s status=%s",
                response.opcode.value, response.measurement.value, response.status.value,
            )
            return

        try:
            self.registry.complete_request(token, response)
        except Mismatch as e:
            self._log.warning("CONTROL_RESPONSE_MISMATCH id=%d err=%s", token.request_id, e)
            return

        with self._lock:
            pending = self._pending.pop(token.request_id, None)
        if pending is not None:
            pending.resolve(response)

        if not response.ok:
            self._log.info(
                "CMD_REJECTED cmd=%s status=%s code=0x%02X",
                token.command.describe(), response.status.value, response.status_code,
            )

    def _drain_pending(self) -> List[PendingRequest]:
        with self._lock:
            pending = list(self._pending.values())
            self._pending.clear()
        return pending

    def _on_link_lost(self) -> None:
        self.registry.reset_all()
        for pending in self._drain_pending():
            pending.fail(LinkLost(f"link lost while {pending.cmd_name} was in flight", cmd=pending.cmd_name))
        self._log.warning("LINK_LOST")

    def _abandon_pending(self) -> None:
        for pending in self._drain_pending():
            self.registry.abandon_request(pending.token)
            pending.fail(DispatchNotRunning(f"dispatch loop ended before {pending.cmd_name} was answered"))

    # ---------------- Helpers ----------------
    @staticmethod
    def require_success(command: ControlCommand, response: ControlResponse) -> ControlResponse:
        if not response.ok:
            raise DeviceStatusError(command.describe(), response)
        return response

    # ---------------- Factory ----------------
    @classmethod
    def create(
        cls,
        proto: Protocol,
        transport: Transport,
        *,
        cmd_timeout_s: float = 5.0,
        event_queue_size: int = 1024,
        cmd_sink: Optional[CommandSink] = None,
        logger: Optional[logging.Logger] = None,
    ) -> "ProtocolEngine":
        return cls(
            proto,
            transport,
            SessionRegistry(logger=logger),
            cmd_timeout_s=cmd_timeout_s,
            event_queue_size=event_queue_size,
            cmd_sink=cmd_sink,
            logger=logger,
        )
