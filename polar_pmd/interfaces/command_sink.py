# polar_pmd/interfaces/command_sink.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional, Protocol


@dataclass(frozen=True, slots=True)
class CommandEvent:
    """
    Control exchange telemetry event (for tracing/recording/debugging).
    Keep this small + stable; put details into payload.
    """
    name: str                   # e.g. "START(ECG)"
    kind: str                   # "ok" | "device_status" | "timeout" | "error"
    payload: Optional[Mapping[str, Any]] = None
    request_id: Optional[str] = None


class CommandSink(Protocol):
    def on_command(self, event: CommandEvent) -> None: ...
