# polar_pmd/protocol/client.py
from __future__ import annotations

import logging
import threading
from typing import List, Mapping, Optional

from .core import (
    ControlCommand, ControlResponse, MeasurementSetting, MeasurementType,
    SettingKind, StreamKind, decode_features,
)
from .engine import ProtocolEngine
from .errors import UnsupportedSetting
from .registry import SessionState

SettingsArg = Mapping["SettingKind | str", int]


class PmdClient:
    """
    Typed PMD client API built on top of ProtocolEngine.

    Control requests block the calling thread until the device answers; the
    dispatch loop must be running in another thread to deliver that answer.
    """

    def __init__(self, engine: ProtocolEngine, *, logger: Optional[logging.Logger] = None):
        self.engine = engine
        self.proto = engine.proto
        self.registry = engine.registry
        self.transport = engine.transport
        self._log = logger or logging.getLogger(__name__)
        self._lock = threading.Lock()
        self._pmd_notify = False

    # ---------------- Subscriptions ----------------
    def subscribe(self, kind: StreamKind) -> None:
        kind = StreamKind(kind)
        if self.registry.is_subscribed(kind):
            return
        if kind.is_pmd:
            self._enable_pmd_notifications()
        else:
            self.transport.set_notify(self.proto.uuid_for_kind(kind), True)
        self.registry.subscribe(kind)
        self._log.info("SUBSCRIBED stream=%s", kind.value)

    def unsubscribe(self, kind: StreamKind) -> None:
        kind = StreamKind(kind)
        if not self.registry.is_subscribed(kind):
            return
        if kind.is_pmd:
            if self.registry.state(kind) is SessionState.STREAMING:
                self._log.warning("UNSUBSCRIBE_WHILE_STREAMING stream=%s", kind.value)
        else:
            self.transport.set_notify(self.proto.uuid_for_kind(kind), False)
        self.registry.unsubscribe(kind)
        self._log.info("UNSUBSCRIBED stream=%s", kind.value)

    def _enable_pmd_notifications(self) -> None:
        with self._lock:
            if self._pmd_notify:
                return
            self.transport.set_notify(self.proto.pmd_control_uuid, True)
            self.transport.set_notify(self.proto.pmd_data_uuid, True)
            self._pmd_notify = True

    # ---------------- Control requests ----------------
    def request_settings(self, measurement: MeasurementType, timeout: Optional[float] = None) -> tuple[MeasurementSetting, ...]:
        """Ask the device which settings `measurement` supports; the answer is cached for start_measurement."""
        measurement = MeasurementType(measurement)
        resp = self._exchange(ControlCommand.get_settings(measurement), timeout)
        return resp.settings if resp is not None else ()

    def start_measurement(
        self,
        measurement: MeasurementType,
        settings: Optional[SettingsArg] = None,
        timeout: Optional[float] = None,
    ) -> ControlResponse:
        """
        Start streaming `measurement`.

        `settings` picks one value per setting kind, e.g. {"sample_rate": 130}.
        Kinds left out use the first advertised value. Every value must be in
        the set advertised by the last request_settings.
        """
        measurement = MeasurementType(measurement)
        chosen = self.resolve_settings(measurement, settings)
        return self._exchange(ControlCommand.start(measurement, chosen), timeout)

    def stop_measurement(self, measurement: MeasurementType, timeout: Optional[float] = None) -> Optional[ControlResponse]:
        """
        Stop streaming `measurement`. Returns None if it was not streaming.

        An idle measurement is a no-op that needs neither the dispatch loop
        nor the device.
        """
        measurement = MeasurementType(measurement)
        command = ControlCommand.stop(measurement)
        kind = StreamKind.for_measurement(measurement)
        token = self.registry.outstanding()
        if self.registry.state(kind) is SessionState.IDLE and (token is None or token.kind is not kind):
            self._log.debug("CMD_NOOP cmd=%s", command.describe())
            return None
        return self._exchange(command, timeout)

    def stop_all(self, timeout: Optional[float] = None) -> List[MeasurementType]:
        stopped = []
        for kind in self.registry.streaming():
            if self.stop_measurement(kind.measurement, timeout) is not None:
                stopped.append(kind.measurement)
        return stopped

    def resolve_settings(
        self, measurement: MeasurementType, settings: Optional[SettingsArg] = None
    ) -> tuple[MeasurementSetting, ...]:
        """Validate a settings choice against the cached advertised settings."""
        advertised = self.registry.cached_settings(StreamKind.for_measurement(measurement))
        requested = {SettingKind.parse(k): int(v) for k, v in (settings or {}).items()}

        if not advertised:
            if requested:
                raise UnsupportedSetting(
                    f"no advertised settings known for {MeasurementType(measurement).value}",
                    hint="call request_settings first",
                )
            return ()

        by_kind = {s.kind: s for s in advertised}
        for kind in requested:
            if kind not in by_kind:
                raise UnsupportedSetting(
                    f"{MeasurementType(measurement).value} does not advertise {kind.value}",
                    details={"kind": kind.value, "advertised": [k.value for k in by_kind]},
                )

        return tuple(
            s.select(requested.get(s.kind, s.values[0] if s.values else None))
            for s in advertised
            if s.values or s.kind in requested
        )

    def _exchange(self, command: ControlCommand, timeout: Optional[float]) -> Optional[ControlResponse]:
        self.engine.require_running()
        self._enable_pmd_notifications()

        kind = StreamKind.for_measurement(command.measurement)
        resp = self.engine.send(kind, command, timeout)
        if resp is None:
            self._log.debug("CMD_NOOP cmd=%s", command.describe())
            return None
        return self.engine.require_success(command, resp)

    # ---------------- Reads ----------------
    def features(self) -> frozenset[MeasurementType]:
        """Measurement types the device supports (control point read)."""
        return decode_features(self.transport.read(self.proto.pmd_control_uuid), proto=self.proto)
