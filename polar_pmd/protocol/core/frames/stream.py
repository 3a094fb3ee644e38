# polar_pmd/protocol/core/frames/stream.py
from __future__ import annotations

from typing import Any, Callable, Dict, Optional

from ..decoder import read_int, read_ints
from ..defs import Protocol, default_protocol
from ..messages import DataFrame, MeasurementType, StreamKind
from ..samples import Accelerometer, Ecg, Gyroscope, HeartRate, Magnetometer, Ppg, Ppi
from ..types import WIRE_TYPES, FrameLayout
from ...errors import DecodeError, TrailingBytes, Truncated, TypeMismatch

# One sample per frame built from every reading it carries.
_BATCH_BUILDERS: Dict[MeasurementType, Callable[[tuple], Any]] = {
    MeasurementType.ECG: Ecg,
    MeasurementType.PPG: Ppg,
    MeasurementType.ACCELEROMETER: Accelerometer,
    MeasurementType.GYROSCOPE: Gyroscope,
    MeasurementType.MAGNETOMETER: Magnetometer,
}

# One sample per record.
_RECORD_BUILDERS: Dict[MeasurementType, Callable[..., Any]] = {
    MeasurementType.PPI: Ppi,
}


def decode_heart_rate(data: bytes, *, proto: Optional[Protocol] = None) -> HeartRate:
    """
    Heart rate notification: [bpm][rr]*, little-endian, widths from constants.yml.

    RR intervals arrive in 1/1024 s and are returned in milliseconds.
    """
    proto = proto or default_protocol()
    data = bytes(data)

    bpm_width = WIRE_TYPES[proto.hr_bpm_type][0]
    rr_width = WIRE_TYPES[proto.hr_rr_type][0]

    if len(data) < bpm_width:
        raise Truncated("heart rate", bpm_width, len(data))
    rest = len(data) - bpm_width
    if rest % rr_width:
        raise TrailingBytes("heart rate", rest % rr_width)

    bpm = read_int(data, 0, proto.hr_bpm_type)
    res = proto.rr_resolution
    rr = tuple(
        (raw * 1000 + res // 2) // res
        for raw in read_ints(data, bpm_width, proto.hr_rr_type, rest // rr_width)
    )
    return HeartRate(bpm, rr)


def decode_battery(data: bytes, *, proto: Optional[Protocol] = None) -> int:
    """Battery level notification: exactly one byte, percent."""
    proto = proto or default_protocol()
    data = bytes(data)

    if len(data) < 1:
        raise Truncated("battery", 1, 0)
    if len(data) > 1:
        raise TrailingBytes("battery", len(data) - 1)
    level = data[0]
    if level > proto.battery_max:
        raise DecodeError(f"battery level {level} above {proto.battery_max}", details={"level": level})
    return level


def decode_data_frame(kind: StreamKind, data: bytes, *, proto: Optional[Protocol] = None) -> DataFrame:
    """
    Decode one data notification for `kind`.

    PMD layout: [measurement_type][timestamp:8 LE][frame_type][samples...]
    The payload must be consumed exactly; a header with no samples yields an
    empty frame.
    """
    proto = proto or default_protocol()
    kind = StreamKind(kind)
    data = bytes(data)

    if kind is StreamKind.HEART_RATE:
        return DataFrame(kind, None, None, (decode_heart_rate(data, proto=proto),))
    if kind is StreamKind.BATTERY:
        return DataFrame(kind, None, None, (decode_battery(data, proto=proto),))

    hdr = proto.data_header_len
    if len(data) < hdr:
        raise Truncated(f"{kind.value} data frame", hdr, len(data))

    expected = kind.measurement
    if data[0] != proto.measurement_code(expected):
        actual = proto.measurements_by_code.get(data[0])
        raise TypeMismatch(expected.value, actual.value if actual else f"0x{data[0]:02X}")

    timestamp = read_int(data, 1, "u64")
    frame_type = data[hdr - 1]
    layout = proto.frame_layout(expected, frame_type)

    payload = data[hdr:]
    size = layout.sample_size
    extra = len(payload) % size
    if extra:
        raise TrailingBytes(f"{kind.value} frame type {frame_type}", extra)

    samples = _build_samples(expected, layout, payload, len(payload) // size)
    return DataFrame(kind, timestamp, frame_type, samples)


def _build_samples(mt: MeasurementType, layout: FrameLayout, payload: bytes, count: int) -> tuple:
    if count == 0:
        return ()

    size = layout.sample_size

    if layout.layout == "record":
        build = _RECORD_BUILDERS[mt]
        out = []
        for i in range(count):
            pos = i * size
            fields = {}
            for name, t in layout.fields:
                fields[name] = read_int(payload, pos, t)
                pos += WIRE_TYPES[t][0]
            out.append(build(**fields))
        return tuple(out)

    build = _BATCH_BUILDERS[mt]
    if layout.layout == "scalar":
        return (build(read_ints(payload, 0, layout.type, count)),)
    readings = tuple(read_ints(payload, i * size, layout.type, layout.channels) for i in range(count))
    return (build(readings),)
