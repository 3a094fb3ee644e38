# polar_pmd/protocol/core/frames/command.py
from __future__ import annotations

from typing import Optional

from ..defs import Protocol, default_protocol
from ..messages import ControlCommand
from ...errors import EmptySettingList, EncodeError


def encode_command(command: ControlCommand, *, proto: Optional[Protocol] = None) -> bytes:
    """
    Host -> device control point write.

    Layout: [opcode][measurement_type?][(kind, count, count x value LE)*]
    A setting with a selected value is written with count 1.
    """
    proto = proto or default_protocol()
    op = command.opcode

    out = bytearray([proto.opcode_code(op)])

    if proto.has_measurement_type(op):
        if command.measurement is None:
            raise EncodeError(f"{op.value} needs a measurement type")
        out.append(proto.measurement_code(command.measurement))

    if not proto.takes_settings(op):
        if command.settings:
            raise EncodeError(f"{op.value} takes no settings")
        return bytes(out)

    if not command.settings and proto.requires_settings(command.measurement):
        raise EmptySettingList(
            f"{command.describe()} needs at least one setting",
            hint="request settings first and select a value per advertised kind",
        )

    width = proto.setting_value_width
    limit = 1 << (8 * width)
    for setting in command.settings:
        values = setting.wire_values
        if not values or len(values) > 0xFF:
            raise EncodeError(f"{setting.kind.value}: {len(values)} value(s) cannot be encoded")
        out.append(proto.setting_code(setting.kind))
        out.append(len(values))
        for v in values:
            if not 0 <= v < limit:
                raise EncodeError(f"{setting.kind.value}={v} does not fit in {width} byte(s)")
            out += int(v).to_bytes(width, "little")

    return bytes(out)
