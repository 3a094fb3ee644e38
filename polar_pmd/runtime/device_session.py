# polar_pmd/runtime/device_session.py
from __future__ import annotations

import logging
import threading
from typing import Any, List, Optional

from polar_pmd.config import PmdConfig, load_protocol
from polar_pmd.interfaces.command_sink import CommandSink
from polar_pmd.interfaces.event_handler import EventHandler
from polar_pmd.protocol.client import PmdClient, SettingsArg
from polar_pmd.protocol.core.defs import Protocol
from polar_pmd.protocol.core.messages import ControlResponse, MeasurementSetting, MeasurementType, StreamKind
from polar_pmd.protocol.engine import LoopResult, ProtocolEngine
from polar_pmd.protocol.errors import Busy, DispatchNotRunning, NoSubscriptions, Truncated
from polar_pmd.protocol.registry import SessionRegistry
from polar_pmd.protocol._internal.dispatch_worker import DispatchWorker
from polar_pmd.runtime.state import DeviceInfo, SessionStatus, StreamState
from polar_pmd.transport.base import Transport
from polar_pmd.transport.errors import TransportIOError


class DeviceSession:
    """
    High-level session over one connected sensor.

    Owns the registry, engine and client for a transport. The dispatch loop
    runs either in a background thread (start) or in the caller's thread
    (event_loop); control requests need it running.
    """

    def __init__(
        self,
        transport: Transport,
        *,
        config: Optional[PmdConfig] = None,
        proto: Optional[Protocol] = None,
        cmd_sink: Optional[CommandSink] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.config = config or PmdConfig()
        self.transport = transport
        self.proto = proto or load_protocol(self.config.protocol_dir)
        self._log = logger or logging.getLogger(__name__)

        self._lock = threading.RLock()

        self.registry = SessionRegistry(logger=logger)
        self.engine = ProtocolEngine(
            self.proto,
            transport,
            self.registry,
            cmd_timeout_s=self.config.cmd_timeout_s,
            event_queue_size=self.config.event_queue_size,
            worker_join_timeout_s=self.config.worker_join_timeout_s,
            cmd_sink=cmd_sink,
            logger=logger,
        )
        self.client = PmdClient(self.engine, logger=logger)

        self._worker: Optional[DispatchWorker] = None
        self._last_result: Optional[LoopResult] = None

    @property
    def is_running(self) -> bool:
        return self.engine.running

    # ---------------- Subscriptions ----------------
    def subscribe(self, kind: StreamKind) -> None:
        self.client.subscribe(kind)

    def unsubscribe(self, kind: StreamKind) -> None:
        self.client.unsubscribe(kind)

    # ---------------- Control requests ----------------
    def request_settings(self, measurement: MeasurementType, timeout: Optional[float] = None) -> tuple[MeasurementSetting, ...]:
        return self.client.request_settings(measurement, timeout)

    def start_measurement(
        self,
        measurement: MeasurementType,
        settings: Optional[SettingsArg] = None,
        timeout: Optional[float] = None,
    ) -> ControlResponse:
        self._log.info("START_MEASUREMENT type=%s settings=%s", MeasurementType(measurement).value, dict(settings or {}))
        return self.client.start_measurement(measurement, settings, timeout)

    def stop_measurement(self, measurement: MeasurementType, timeout: Optional[float] = None) -> Optional[ControlResponse]:
        self._log.info("STOP_MEASUREMENT type=%s", MeasurementType(measurement).value)
        return self.client.stop_measurement(measurement, timeout)

    def stop_all(self, timeout: Optional[float] = None) -> List[MeasurementType]:
        return self.client.stop_all(timeout)

    # ---------------- Dispatch ----------------
    def event_loop(self, handler: EventHandler, *, stop_event: Optional[threading.Event] = None) -> LoopResult:
        """Run the dispatch loop in this thread until it ends."""
        self._bind(handler)
        result = self.engine.run(handler, stop_event=stop_event)
        with self._lock:
            self._last_result = result
        return result

    def start(self, handler: EventHandler) -> None:
        """Run the dispatch loop in a background thread; returns once it is consuming notifications."""
        with self._lock:
            if self._worker is not None and self._worker.is_alive():
                raise Busy("dispatch loop is already running")
            if not self.registry.has_subscriptions():
                raise NoSubscriptions()

            self._bind(handler)
            worker = DispatchWorker(self.engine, handler)
            self._worker = worker
            worker.start()

        if not self.engine.wait_until_running(self.config.start_timeout_s):
            worker.join(self.config.worker_join_timeout_s)
            if worker.error is not None:
                raise worker.error
            raise DispatchNotRunning("dispatch loop did not start")
        self._log.info("SESSION_DISPATCH_STARTED")

    def wait(self, timeout: Optional[float] = None) -> Optional[LoopResult]:
        """Wait for a background loop to end and return its result."""
        with self._lock:
            worker = self._worker
        if worker is None:
            return self._last_result

        result = worker.wait(timeout)
        if not worker.is_alive():
            with self._lock:
                self._last_result = result
                if self._worker is worker:
                    self._worker = None
        return result

    def cancel(self) -> None:
        """Ask the dispatch loop to end. Device measurements are not stopped."""
        with self._lock:
            worker = self._worker
        if worker is not None:
            worker.stop()
        self.engine.cancel()

    def disconnect(self) -> Optional[LoopResult]:
        """Tear down: end the dispatch loop and close the link."""
        self._log.info("SESSION_DISCONNECT")
        self.cancel()
        try:
            self.transport.disconnect()
        finally:
            result = self.wait(self.config.worker_join_timeout_s)
        return result

    def _bind(self, handler: EventHandler) -> None:
        bind = getattr(handler, "bind", None)
        if bind is not None:
            bind(self)

    # ---------------- Reads ----------------
    def features(self) -> frozenset[MeasurementType]:
        return self.client.features()

    def device_info(self) -> DeviceInfo:
        fields = {}
        for name, uuid in self.proto.device_info_uuids.items():
            if name not in DeviceInfo.__dataclass_fields__:
                continue
            try:
                raw = self.transport.read(uuid)
            except TransportIOError as e:
                self._log.debug("DEVICE_INFO_UNAVAILABLE field=%s err=%s", name, e)
                fields[name] = None
                continue
            if name == "system_id":
                fields[name] = raw.hex()
            else:
                fields[name] = raw.rstrip(b"\x00").decode("utf-8", errors="replace")
        return DeviceInfo(**fields)

    def body_location(self) -> str:
        raw = self.transport.read(self.proto.characteristic("body_location"))
        if not raw:
            raise Truncated("body location", 1, 0)
        return self.proto.body_locations.get(raw[0], "UNKNOWN")

    # ---------------- Status ----------------
    def status(self) -> SessionStatus:
        token = self.registry.outstanding()
        streams = tuple(
            StreamState(kind=s.kind, subscribed=s.subscribed, state=s.state, settings=s.settings)
            for s in self.registry.sessions().values()
        )
        with self._lock:
            last = self._last_result
        return SessionStatus(
            connected=self.transport.is_connected(),
            dispatching=self.engine.running,
            streams=streams,
            outstanding=token.command.describe() if token else None,
            last_result=last,
        )

    def __enter__(self) -> "DeviceSession":
        return self

    def __exit__(self, exc_type: type | None, exc_val: BaseException | None, exc_tb: Any) -> None:
        self.disconnect()
