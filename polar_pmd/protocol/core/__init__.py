# polar_pmd/protocol/core/__init__.py

from .defs import Protocol, default_protocol
from .messages import (
    ControlCommand, ControlResponse, DataFrame, MeasurementSetting,
    MeasurementType, Opcode, SettingKind, Status, StreamKind,
)
from .samples import Accelerometer, Ecg, Gyroscope, HeartRate, Magnetometer, Ppg, Ppi
from .frames import (
    encode_command, decode_control_response, decode_features,
    decode_data_frame, decode_heart_rate, decode_battery,
)

__all__ = [
    "Protocol", "default_protocol",
    "ControlCommand", "ControlResponse", "DataFrame", "MeasurementSetting",
    "MeasurementType", "Opcode", "SettingKind", "Status", "StreamKind",
    "Accelerometer", "Ecg", "Gyroscope", "HeartRate", "Magnetometer", "Ppg", "Ppi",
    "encode_command", "decode_control_response", "decode_features",
    "decode_data_frame", "decode_heart_rate", "decode_battery",
]
