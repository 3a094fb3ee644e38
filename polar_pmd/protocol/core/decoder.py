# polar_pmd/protocol/core/decoder.py
from __future__ import annotations

from typing import TYPE_CHECKING

from .messages import MeasurementSetting, SettingKind
from .types import WIRE_TYPES
from ..errors import MalformedSettings, Truncated, UnknownCode

if TYPE_CHECKING:
    from .defs import Protocol


def read_int(data: bytes, offset: int, type_name: str) -> int:
    """Read one little-endian integer of YAML type `type_name` at `offset`."""
    width, signed = WIRE_TYPES[type_name]
    chunk = data[offset: offset + width]
    if len(chunk) != width:
        raise Truncated(type_name, offset + width, len(data))
    return int.from_bytes(chunk, "little", signed=signed)


def read_ints(data: bytes, offset: int, type_name: str, count: int) -> tuple[int, ...]:
    width = WIRE_TYPES[type_name][0]
    return tuple(read_int(data, offset + i * width, type_name) for i in range(count))


def unpack_settings(proto: "Protocol", data: bytes, offset: int) -> tuple[MeasurementSetting, ...]:
    """
    Parse `(kind:1, count:1, count x value)` blocks from `offset` to the end of `data`.

    A kind that appears twice has its values merged, keeping first-seen order.
    """
    width = proto.setting_value_width
    merged: dict[SettingKind, list[int]] = {}
    pos = offset

    while pos < len(data):
        if pos + 2 > len(data):
            raise MalformedSettings(
                f"setting block header truncated at offset {pos}",
                details={"offset": pos, "len": len(data)},
            )
        kind_code = data[pos]
        count = data[pos + 1]
        pos += 2

        try:
            kind = proto.setting_for(kind_code)
        except UnknownCode as e:
            raise MalformedSettings(str(e), details={"offset": pos - 2, "kind": kind_code}) from e

        end = pos + count * width
        if end > len(data):
            raise MalformedSettings(
                f"{kind.value}: {count} value(s) declared, only {len(data) - pos} byte(s) left",
                details={"kind": kind.value, "count": count, "remaining": len(data) - pos},
            )

        values = merged.setdefault(kind, [])
        for i in range(count):
            v = int.from_bytes(data[pos + i * width: pos + (i + 1) * width], "little")
            if v not in values:
                values.append(v)
        pos = end

    return tuple(MeasurementSetting(kind, tuple(vals)) for kind, vals in merged.items())
