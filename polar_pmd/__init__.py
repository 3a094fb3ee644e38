# polar_pmd/__init__.py
"""Client-side protocol engine for Polar sensors speaking PMD (Polar Measurement Data)."""

from polar_pmd.errors import ConfigError, PmdError
from polar_pmd.config import PmdConfig, load_protocol
from polar_pmd.interfaces import DecodeContext, EventHandler
from polar_pmd.protocol import (
    DataFrame, LoopOutcome, LoopResult, MeasurementSetting, MeasurementType,
    SettingKind, StreamKind,
)
from polar_pmd.runtime import DeviceSession

__version__ = "0.1.0"

__all__ = [
    "PmdError", "ConfigError",
    "PmdConfig", "load_protocol",
    "DecodeContext", "EventHandler",
    "DataFrame", "LoopOutcome", "LoopResult", "MeasurementSetting", "MeasurementType",
    "SettingKind", "StreamKind",
    "DeviceSession",
]
