# polar_pmd/protocol/core/messages.py
"""
Typed PMD control messages and data frames.

Enum values are the names used in the definition YAML files; wire codes are
resolved through :class:`polar_pmd.protocol.Protocol`.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Optional

from ..errors import UnsupportedSetting


class MeasurementType(str, Enum):
    ECG = "ECG"
    PPG = "PPG"
    ACCELEROMETER = "ACCELEROMETER"
    PPI = "PPI"
    GYROSCOPE = "GYROSCOPE"
    MAGNETOMETER = "MAGNETOMETER"


class Opcode(str, Enum):
    GET_SETTINGS = "GET_SETTINGS"
    START = "START"
    STOP = "STOP"


class SettingKind(str, Enum):
    SAMPLE_RATE = "SAMPLE_RATE"
    RESOLUTION = "RESOLUTION"
    RANGE = "RANGE"
    CHANNELS = "CHANNELS"

    @classmethod
    def parse(cls, value: "SettingKind | str") -> "SettingKind":
        """Accept an enum member or a case-insensitive name ("sample_rate", "Range")."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().upper().replace("-", "_"))
        except ValueError:
            raise UnsupportedSetting(f"unknown setting kind {value!r}") from None


class Status(str, Enum):
    SUCCESS = "SUCCESS"
    INVALID_OP_CODE = "INVALID_OP_CODE"
    INVALID_MEASUREMENT_TYPE = "INVALID_MEASUREMENT_TYPE"
    NOT_SUPPORTED = "NOT_SUPPORTED"
    INVALID_LENGTH = "INVALID_LENGTH"
    INVALID_PARAMETER = "INVALID_PARAMETER"
    ALREADY_IN_STATE = "ALREADY_IN_STATE"
    INVALID_RESOLUTION = "INVALID_RESOLUTION"
    INVALID_SAMPLE_RATE = "INVALID_SAMPLE_RATE"
    INVALID_RANGE = "INVALID_RANGE"
    INVALID_MTU = "INVALID_MTU"
    INVALID_NUMBER_OF_CHANNELS = "INVALID_NUMBER_OF_CHANNELS"
    INVALID_STATE = "INVALID_STATE"
    DEVICE_IN_CHARGER = "DEVICE_IN_CHARGER"
    DEVICE_IN_CHARACTERISTIC_READ_STATE = "DEVICE_IN_CHARACTERISTIC_READ_STATE"
    UNKNOWN = "UNKNOWN"


class StreamKind(str, Enum):
    """Everything a session can subscribe to: the two plain characteristics plus each PMD type."""

    BATTERY = "BATTERY"
    HEART_RATE = "HEART_RATE"
    ECG = "ECG"
    PPG = "PPG"
    ACCELEROMETER = "ACCELEROMETER"
    PPI = "PPI"
    GYROSCOPE = "GYROSCOPE"
    MAGNETOMETER = "MAGNETOMETER"

    @property
    def is_pmd(self) -> bool:
        return self not in (StreamKind.BATTERY, StreamKind.HEART_RATE)

    @property
    def measurement(self) -> Optional[MeasurementType]:
        return MeasurementType(self.value) if self.is_pmd else None

    @classmethod
    def for_measurement(cls, measurement: MeasurementType) -> "StreamKind":
        return cls(MeasurementType(measurement).value)

    def __lt__(self, other: Any) -> bool:
        if not isinstance(other, StreamKind):
            return NotImplemented
        order = list(StreamKind)
        return order.index(self) < order.index(other)


@dataclass(frozen=True)
class MeasurementSetting:
    """
    One configurable axis of a measurement type.

    `values` are the supported values as advertised by the device, in wire
    order. `selected`, when set, is always one of them.
    """
    kind: SettingKind
    values: tuple[int, ...]
    selected: Optional[int] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "kind", SettingKind.parse(self.kind))
        object.__setattr__(self, "values", tuple(int(v) for v in self.values))
        if self.selected is not None and int(self.selected) not in self.values:
            raise UnsupportedSetting(
                f"{self.kind.value}={self.selected} not in supported values {list(self.values)}",
                details={"kind": self.kind.value, "value": self.selected, "supported": list(self.values)},
            )

    def select(self, value: int) -> "MeasurementSetting":
        return replace(self, selected=int(value))

    @property
    def wire_values(self) -> tuple[int, ...]:
        """Values to put on the wire: the selection alone, or everything advertised."""
        if self.selected is not None:
            return (int(self.selected),)
        return self.values


@dataclass(frozen=True)
class ControlCommand:
    opcode: Opcode
    measurement: Optional[MeasurementType] = None
    settings: tuple[MeasurementSetting, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "opcode", Opcode(self.opcode))
        if self.measurement is not None:
            object.__setattr__(self, "measurement", MeasurementType(self.measurement))
        object.__setattr__(self, "settings", tuple(self.settings))

    @classmethod
    def get_settings(cls, measurement: MeasurementType) -> "ControlCommand":
        return cls(Opcode.GET_SETTINGS, measurement)

    @classmethod
    def start(cls, measurement: MeasurementType, settings=()) -> "ControlCommand":
        return cls(Opcode.START, measurement, tuple(settings))

    @classmethod
    def stop(cls, measurement: MeasurementType) -> "ControlCommand":
        return cls(Opcode.STOP, measurement)

    def describe(self) -> str:
        mt = self.measurement.value if self.measurement else "-"
        return f"{self.opcode.value}({mt})"


@dataclass(frozen=True)
class ControlResponse:
    opcode: Opcode
    measurement: MeasurementType
    status: Status
    status_code: int
    more_available: bool = False
    settings: tuple[MeasurementSetting, ...] = ()

    @property
    def ok(self) -> bool:
        return self.status is Status.SUCCESS

    def setting(self, kind: SettingKind | str) -> Optional[MeasurementSetting]:
        kind = SettingKind.parse(kind)
        for s in self.settings:
            if s.kind is kind:
                return s
        return None


@dataclass(frozen=True)
class DataFrame:
    """One decoded notification payload from a data stream."""
    kind: StreamKind
    timestamp: Optional[int]           # device clock, ns; None for heart rate
    frame_type: Optional[int]
    samples: tuple[Any, ...] = field(default_factory=tuple)
