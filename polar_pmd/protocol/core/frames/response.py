# polar_pmd/protocol/core/frames/response.py
from __future__ import annotations

from typing import Optional

from ..decoder import unpack_settings
from ..defs import Protocol, default_protocol
from ..messages import ControlResponse, MeasurementType, Opcode, Status
from ...errors import MalformedSettings, Truncated, UnknownCode


def decode_control_response(data: bytes, *, proto: Optional[Protocol] = None) -> ControlResponse:
    """
    Device -> host control point notification.

    Layout: [marker][opcode][measurement_type][status][more_available][settings...]
    Settings are only parsed for a successful GET_SETTINGS; other responses
    may carry trailing parameters, which are ignored.
    """
    proto = proto or default_protocol()
    data = bytes(data)

    hdr = proto.control_header_len
    if len(data) < hdr:
        raise Truncated("control response", hdr, len(data))
    if data[0] != proto.response_marker:
        raise UnknownCode("response marker", data[0])

    opcode = proto.opcode_for(data[1])
    measurement = proto.measurement_for(data[2])
    status_code = data[3]
    status = proto.status_for(status_code)
    more_available = data[4] != 0

    settings = ()
    if status is Status.SUCCESS and opcode is Opcode.GET_SETTINGS:
        settings = unpack_settings(proto, data, hdr)
        if not settings and proto.requires_settings(measurement):
            raise MalformedSettings(
                f"successful GET_SETTINGS({measurement.value}) advertised no settings",
                details={"measurement": measurement.value},
            )

    return ControlResponse(
        opcode=opcode,
        measurement=measurement,
        status=status,
        status_code=status_code,
        more_available=more_available,
        settings=settings,
    )


def decode_features(data: bytes, *, proto: Optional[Protocol] = None) -> frozenset[MeasurementType]:
    """
    Control point read value: [features_marker][bitmask...].
    Bit n set means the measurement type with code n is available.
    """
    proto = proto or default_protocol()
    data = bytes(data)

    if len(data) < 2:
        raise Truncated("features", 2, len(data))
    if data[0] != proto.features_marker:
        raise UnknownCode("features marker", data[0])

    mask = int.from_bytes(data[1:], "little")
    return frozenset(mt for mt, code in proto.measurement_codes.items() if mask & (1 << code))
