# polar_pmd/protocol/errors.py
from __future__ import annotations

from typing import TYPE_CHECKING, Any, Optional

from polar_pmd.errors import PmdError

if TYPE_CHECKING:
    from .core.messages import ControlResponse


# ---------------------------------------------------------------------------
# Codec errors
# ---------------------------------------------------------------------------

class DecodeError(PmdError):
    """Inbound bytes could not be turned into a typed value."""
    code = "decode_error"


class Truncated(DecodeError):
    code = "truncated"

    def __init__(self, what: str, needed: int, got: int):
        super().__init__(
            f"{what}: need at least {needed} bytes, got {got}",
            details={"what": what, "needed": needed, "got": got},
        )
        self.needed = needed
        self.got = got


class MalformedSettings(DecodeError):
    code = "malformed_settings"


class TypeMismatch(DecodeError):
    code = "type_mismatch"

    def __init__(self, expected: Any, actual: Any):
        super().__init__(
            f"frame measurement type {actual} does not match expected {expected}",
            details={"expected": str(expected), "actual": str(actual)},
        )
        self.expected = expected
        self.actual = actual


class TrailingBytes(DecodeError):
    code = "trailing_bytes"

    def __init__(self, what: str, extra: int):
        super().__init__(
            f"{what}: {extra} trailing byte(s) do not form a whole sample",
            details={"what": what, "extra": extra},
        )
        self.extra = extra


class UnknownCode(DecodeError):
    code = "unknown_code"

    def __init__(self, field: str, value: int):
        super().__init__(
            f"unknown {field} 0x{value:02X}",
            details={"field": field, "value": value},
        )
        self.field = field
        self.value = value


class EncodeError(PmdError):
    """An outbound command cannot be represented on the wire."""
    code = "encode_error"


class EmptySettingList(EncodeError):
    code = "empty_setting_list"


# ---------------------------------------------------------------------------
# Protocol / session errors
# ---------------------------------------------------------------------------

class ProtocolError(PmdError):
    """Base for control exchange and session lifecycle failures."""
    code = "protocol_error"


class Busy(ProtocolError):
    """Another control exchange is outstanding, or the session is in the wrong state."""
    code = "busy"


class Mismatch(ProtocolError):
    """A control response does not belong to the outstanding request."""
    code = "mismatch"


class UnsupportedSetting(ProtocolError):
    code = "unsupported_setting"


class NoSubscriptions(ProtocolError):
    code = "no_subscriptions"

    def __init__(self, message: str = "no data types are subscribed"):
        super().__init__(message, hint="subscribe to at least one stream before dispatching")


class DispatchNotRunning(ProtocolError):
    code = "dispatch_not_running"

    def __init__(self, message: str = "dispatch loop is not running"):
        super().__init__(message, hint="start the session before issuing control requests")


class CommandTimeout(ProtocolError):
    code = "command_timeout"

    def __init__(self, cmd: str, timeout_s: float):
        super().__init__(f"{cmd} timed out after {timeout_s}s", details={"cmd": cmd, "timeout_s": timeout_s})
        self.cmd = cmd
        self.timeout_s = timeout_s


class SendFailed(ProtocolError):
    code = "send_failed"

    def __init__(self, cmd: str, reason: str = "send_failed"):
        super().__init__(f"{cmd} send failed ({reason})", details={"cmd": cmd, "reason": reason})
        self.cmd = cmd
        self.reason = reason


class DeviceStatusError(ProtocolError):
    """The device answered a control request with a non-success status."""
    code = "device_status"

    def __init__(self, cmd: str, response: "ControlResponse"):
        super().__init__(
            f"{cmd} rejected by device: {response.status.value} (0x{response.status_code:02X})",
            details={"cmd": cmd, "status": response.status.value, "status_code": response.status_code},
        )
        self.cmd = cmd
        self.response = response


class LinkLost(ProtocolError):
    code = "link_lost"

    def __init__(self, message: str = "link lost", *, cmd: Optional[str] = None):
        super().__init__(message, details={"cmd": cmd} if cmd else None)
        self.cmd = cmd
