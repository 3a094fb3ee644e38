# polar_pmd/protocol/__init__.py

from .core import (
    Protocol, default_protocol,
    ControlCommand, ControlResponse, DataFrame, MeasurementSetting,
    MeasurementType, Opcode, SettingKind, Status, StreamKind,
    encode_command, decode_control_response, decode_features,
    decode_data_frame, decode_heart_rate, decode_battery,
)
from .registry import RequestToken, Session, SessionRegistry, SessionState
from .engine import LoopOutcome, LoopResult, ProtocolEngine
from .client import PmdClient

__all__ = [
    "Protocol", "default_protocol",
    "ControlCommand", "ControlResponse", "DataFrame", "MeasurementSetting",
    "MeasurementType", "Opcode", "SettingKind", "Status", "StreamKind",
    "encode_command", "decode_control_response", "decode_features",
    "decode_data_frame", "decode_heart_rate", "decode_battery",
    "RequestToken", "Session", "SessionRegistry", "SessionState",
    "LoopOutcome", "LoopResult", "ProtocolEngine",
    "PmdClient",
]
