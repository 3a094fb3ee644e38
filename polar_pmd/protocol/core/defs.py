# polar_pmd/protocol/core/defs.py
from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

from .messages import MeasurementType, Opcode, SettingKind, Status, StreamKind
from .types import WIRE_TYPES, FrameLayout
from ..errors import UnknownCode
from ..loader import ProtocolLoader

DEFINITIONS_DIR = Path(__file__).resolve().parents[1] / "definitions"


class Protocol:
    """Runtime access to the PMD definition set."""

    def __init__(self, loader: ProtocolLoader):
        self.constants: Dict[str, Any] = loader.constants
        self.commands: Dict[str, Dict[str, Any]] = loader.commands
        self.measurements: Dict[str, Dict[str, Any]] = loader.measurements
        self.settings: Dict[str, Dict[str, Any]] = loader.settings
        self.errors: Dict[str, Any] = loader.errors

        self.version = loader.protocol_version()
        self.file_hashes: Dict[str, str] = dict(loader.file_hashes)

        c = self.constants
        self.response_marker = int(c.get("response_marker", 0xF0))
        self.features_marker = int(c.get("features_marker", 0x0F))
        self.control_header_len = int(c.get("control_header_len", 5))
        self.data_header_len = int(c.get("data_header_len", 10))
        self.timestamp_len = int(c.get("timestamp_len", 8))
        self.setting_value_width = int(c.get("setting_value_width", 2))

        hr = c.get("heart_rate", {}) or {}
        self.hr_bpm_type = str(hr.get("bpm_type", "u16"))
        self.hr_rr_type = str(hr.get("rr_type", "u16"))
        for t in (self.hr_bpm_type, self.hr_rr_type):
            if t not in WIRE_TYPES:
                raise ValueError(f"Unknown heart_rate wire type '{t}' in constants.yml")
        self.rr_resolution = int(hr.get("rr_resolution", 1024))
        self.battery_max = int((c.get("battery", {}) or {}).get("max_level", 100))

        self.characteristics: Dict[str, str] = {
            k: str(v).lower() for k, v in (c.get("characteristics", {}) or {}).items()
        }
        self.device_info_uuids: Dict[str, str] = {
            k: str(v).lower() for k, v in (c.get("device_info", {}) or {}).items()
        }
        self.body_locations: Dict[int, str] = {
            int(k): str(v) for k, v in (c.get("body_locations", {}) or {}).items()
        }

        # Fast lookup maps
        self.opcodes: Dict[Opcode, int] = self._code_map(Opcode, self.commands, "opcode", "commands.yml")
        self.measurement_codes: Dict[MeasurementType, int] = self._code_map(
            MeasurementType, self.measurements, "code", "measurements.yml"
        )
        self.setting_codes: Dict[SettingKind, int] = self._code_map(SettingKind, self.settings, "code", "settings.yml")

        self.opcodes_by_code = {v: k for k, v in self.opcodes.items()}
        self.measurements_by_code = {v: k for k, v in self.measurement_codes.items()}
        self.settings_by_code = {v: k for k, v in self.setting_codes.items()}

        self.status_by_code: Dict[int, Status] = {}
        for name, code in self.errors.items():
            try:
                status = Status(str(name))
            except ValueError as e:
                raise ValueError(f"Unknown status '{name}' in errors.yml") from e
            if int(code) in self.status_by_code:
                raise ValueError(f"Duplicate status code={code} in errors.yml")
            self.status_by_code[int(code)] = status

        self.frame_layouts: Dict[tuple[MeasurementType, int], FrameLayout] = {}
        for name, mdef in self.measurements.items():
            mt = MeasurementType(name)
            for ft, fdef in (mdef.get("frame_types", {}) or {}).items():
                self.frame_layouts[(mt, int(ft))] = self._build_layout(name, int(ft), fdef or {})

        self._kinds_by_uuid: Dict[str, StreamKind] = {}
        for name, kind in (("battery", StreamKind.BATTERY), ("heart_rate", StreamKind.HEART_RATE)):
            if name in self.characteristics:
                self._kinds_by_uuid[self.characteristics[name]] = kind

    @classmethod
    def from_dir(cls, config_dir: Path) -> "Protocol":
        loader = ProtocolLoader(config_dir)
        loader.load_all()
        return cls(loader)

    @staticmethod
    def _code_map(enum_cls, doc: Dict[str, Any], key: str, filename: str) -> dict:
        out: dict = {}
        seen: Dict[int, str] = {}
        for name, d in doc.items():
            try:
                member = enum_cls(str(name))
            except ValueError as e:
                raise ValueError(f"Unknown entry '{name}' in {filename}") from e
            if not isinstance(d, dict) or key not in d:
                raise ValueError(f"{filename}: '{name}' needs '{key}'")
            code = int(d[key])
            if code in seen:
                raise ValueError(f"Duplicate {key}={code} for '{name}' and '{seen[code]}' in {filename}")
            seen[code] = str(name)
            out[member] = code
        return out

    @staticmethod
    def _build_layout(name: str, ft: int, d: Dict[str, Any]) -> FrameLayout:
        layout = d.get("layout")
        if layout in ("scalar", "vector"):
            t = d.get("type")
            if t not in WIRE_TYPES:
                raise ValueError(f"Unknown field type '{t}' in {name} frame type {ft}")
            channels = int(d.get("channels", 1)) if layout == "vector" else 1
            if channels < 1:
                raise ValueError(f"{name} frame type {ft}: channels must be >= 1")
            return FrameLayout(layout=layout, type=t, channels=channels)
        if layout == "record":
            fields = tuple((str(f["name"]), str(f["type"])) for f in d.get("fields", []) or [])
            if not fields:
                raise ValueError(f"{name} frame type {ft}: record layout needs fields")
            for fname, t in fields:
                if t not in WIRE_TYPES:
                    raise ValueError(f"Unknown field type '{t}' for '{fname}' in {name} frame type {ft}")
            return FrameLayout(layout="record", fields=fields)
        raise ValueError(f"{name} frame type {ft}: unknown layout {layout!r}")

    # Code lookups
    def opcode_code(self, opcode: Opcode) -> int:
        return self.opcodes[Opcode(opcode)]

    def opcode_for(self, code: int) -> Opcode:
        try:
            return self.opcodes_by_code[code]
        except KeyError:
            raise UnknownCode("opcode", code) from None

    def measurement_code(self, measurement: MeasurementType) -> int:
        return self.measurement_codes[MeasurementType(measurement)]

    def measurement_for(self, code: int) -> MeasurementType:
        try:
            return self.measurements_by_code[code]
        except KeyError:
            raise UnknownCode("measurement type", code) from None

    def setting_code(self, kind: SettingKind) -> int:
        return self.setting_codes[SettingKind(kind)]

    def setting_for(self, code: int) -> SettingKind:
        try:
            return self.settings_by_code[code]
        except KeyError:
            raise UnknownCode("setting kind", code) from None

    def status_for(self, code: int) -> Status:
        return self.status_by_code.get(code, Status.UNKNOWN)

    def frame_layout(self, measurement: MeasurementType, frame_type: int) -> FrameLayout:
        layout = self.frame_layouts.get((MeasurementType(measurement), frame_type))
        if layout is None:
            raise UnknownCode(f"{MeasurementType(measurement).value} frame type", frame_type)
        return layout

    # Per-definition flags
    def requires_settings(self, measurement: MeasurementType) -> bool:
        return bool(self.measurements[MeasurementType(measurement).value].get("requires_settings", True))

    def has_measurement_type(self, opcode: Opcode) -> bool:
        return bool(self.commands[Opcode(opcode).value].get("has_measurement_type", True))

    def takes_settings(self, opcode: Opcode) -> bool:
        return bool(self.commands[Opcode(opcode).value].get("takes_settings", False))

    # Characteristics
    def characteristic(self, name: str) -> str:
        if name not in self.characteristics:
            raise ValueError(f"Unknown characteristic: {name}")
        return self.characteristics[name]

    @property
    def pmd_control_uuid(self) -> str:
        return self.characteristic("pmd_control")

    @property
    def pmd_data_uuid(self) -> str:
        return self.characteristic("pmd_data")

    def stream_kind_for_uuid(self, uuid: str) -> Optional[StreamKind]:
        """HeartRate/Battery by characteristic; PMD data is routed by payload, not UUID."""
        return self._kinds_by_uuid.get(str(uuid).lower())

    def uuid_for_kind(self, kind: StreamKind) -> str:
        if kind is StreamKind.BATTERY:
            return self.characteristic("battery")
        if kind is StreamKind.HEART_RATE:
            return self.characteristic("heart_rate")
        return self.pmd_data_uuid


@lru_cache(maxsize=1)
def default_protocol() -> Protocol:
    """The bundled definition set, loaded once."""
    return Protocol.from_dir(DEFINITIONS_DIR)
