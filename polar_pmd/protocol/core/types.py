# polar_pmd/protocol/core/types.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

# YAML type name -> (width in bytes, signed). All wire integers are little-endian.
WIRE_TYPES: dict[str, tuple[int, bool]] = {
    "u8": (1, False), "i8": (1, True),
    "u16": (2, False), "i16": (2, True),
    "u24": (3, False), "i24": (3, True),
    "u32": (4, False), "i32": (4, True),
    "u64": (8, False),
}


@dataclass(frozen=True, slots=True)
class FrameLayout:
    """Decoding recipe for one (measurement type, frame type) pair."""
    layout: str                                  # scalar | vector | record
    type: Optional[str] = None                   # scalar/vector element type
    channels: int = 1
    fields: tuple[tuple[str, str], ...] = ()     # record layout: (name, type)

    @property
    def sample_size(self) -> int:
        if self.layout == "record":
            return sum(WIRE_TYPES[t][0] for _, t in self.fields)
        return WIRE_TYPES[self.type][0] * self.channels
