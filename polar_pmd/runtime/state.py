# polar_pmd/runtime/state.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from polar_pmd.protocol.core.messages import MeasurementSetting, StreamKind
from polar_pmd.protocol.engine import LoopResult
from polar_pmd.protocol.registry import SessionState


@dataclass(frozen=True)
class StreamState:
    """
    Runtime state of one subscribed (or still streaming) data type.
    """
    kind: StreamKind
    subscribed: bool
    state: SessionState
    settings: tuple[MeasurementSetting, ...] = ()


@dataclass(frozen=True)
class SessionStatus:
    """
    A snapshot of the full session status, safe to share across threads.
    """
    connected: bool
    dispatching: bool
    streams: tuple[StreamState, ...]
    outstanding: Optional[str] = None          # e.g. "START(ECG)"
    last_result: Optional[LoopResult] = None


@dataclass(frozen=True)
class DeviceInfo:
    """Device Information Service strings; None where the device does not expose one."""
    model_number: Optional[str] = None
    manufacturer_name: Optional[str] = None
    hardware_revision: Optional[str] = None
    firmware_revision: Optional[str] = None
    software_revision: Optional[str] = None
    serial_number: Optional[str] = None
    system_id: Optional[str] = None
