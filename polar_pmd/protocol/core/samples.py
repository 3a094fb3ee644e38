# polar_pmd/protocol/core/samples.py
from __future__ import annotations

from dataclasses import dataclass

Triple = tuple[int, int, int]


@dataclass(frozen=True, slots=True)
class HeartRate:
    beats_per_minute: int
    rr_intervals: tuple[int, ...] = ()   # milliseconds


@dataclass(frozen=True, slots=True)
class Ecg:
    microvolts: tuple[int, ...]


@dataclass(frozen=True, slots=True)
class Accelerometer:
    triples: tuple[Triple, ...]          # mG per axis (x, y, z)


@dataclass(frozen=True, slots=True)
class Gyroscope:
    triples: tuple[Triple, ...]


@dataclass(frozen=True, slots=True)
class Magnetometer:
    triples: tuple[Triple, ...]


@dataclass(frozen=True, slots=True)
class Ppg:
    # One inner tuple per reading: optical channels followed by ambient.
    channels: tuple[tuple[int, ...], ...]


@dataclass(frozen=True, slots=True)
class Ppi:
    hr: int
    ppi_ms: int
    error_estimate: int
    blocker_flags: int

    @property
    def blocker(self) -> bool:
        return bool(self.blocker_flags & 0x01)

    @property
    def skin_contact(self) -> bool:
        return bool(self.blocker_flags & 0x02)

    @property
    def skin_contact_supported(self) -> bool:
        return bool(self.blocker_flags & 0x04)
