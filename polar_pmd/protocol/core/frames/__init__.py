# polar_pmd/protocol/core/frames/__init__.py

from .command import encode_command
from .response import decode_control_response, decode_features
from .stream import decode_battery, decode_data_frame, decode_heart_rate

__all__ = [
    "encode_command",
    "decode_control_response",
    "decode_features",
    "decode_data_frame",
    "decode_heart_rate",
    "decode_battery",
]
