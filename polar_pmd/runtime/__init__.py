# polar_pmd/runtime/__init__.py

from .device_session import DeviceSession
from .state import DeviceInfo, SessionStatus, StreamState

__all__ = ["DeviceSession", "DeviceInfo", "SessionStatus", "StreamState"]
