from __future__ import annotations

import threading
import time

import pytest

from polar_pmd.config import PmdConfig
from polar_pmd.interfaces import EventHandler
from polar_pmd.protocol import default_protocol
from polar_pmd.runtime import DeviceSession
from polar_pmd.transport import MemoryTransport

PROTO = default_protocol()
CONTROL = PROTO.pmd_control_uuid

ECG_SETTINGS = bytes.fromhex("00 02 82 00 fa 00 01 01 0e 00")                     # 130/250 Hz, 14 bit
ACC_SETTINGS = bytes.fromhex("00 04 19 00 32 00 64 00 c8 00 01 01 10 00 02 03 02 00 04 00 08 00")


def control_response(opcode: int, mtype: int, status: int = 0, more: int = 0, params: bytes = b"") -> bytes:
    return bytes([0xF0, opcode, mtype, status, more]) + params


def wait_for(predicate, timeout: float = 1.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return predicate()


class FakeDevice:
    """
    Plays the sensor side of a MemoryTransport: answers every control point
    write with a response notification.
    """

    def __init__(self, transport: MemoryTransport):
        self.transport = transport
        self.settings: dict[int, bytes] = {0x00: ECG_SETTINGS, 0x02: ACC_SETTINGS, 0x03: b""}
        self.status: dict[int, int] = {}           # opcode -> status override
        self.silent = False
        self.hold = threading.Event()              # set -> answers are parked until release()
        self._parked: list[bytes] = []
        transport.on_write = self._on_write

    def _on_write(self, data: bytes) -> None:
        if self.silent:
            return
        op, mt = data[0], data[1]
        status = self.status.get(op, 0)
        params = self.settings.get(mt, b"") if (op == 0x01 and status == 0) else b""
        resp = control_response(op, mt, status, 0, params)
        if self.hold.is_set():
            self._parked.append(resp)
        else:
            self.transport.push(CONTROL, resp)

    def release(self) -> None:
        self.hold.clear()
        for resp in self._parked:
            self.transport.push(CONTROL, resp)
        self._parked.clear()


class RecordingHandler(EventHandler):
    def __init__(self):
        self.events: list[tuple] = []
        self.stop = False
        self._lock = threading.Lock()

    def _add(self, *ev) -> None:
        with self._lock:
            self.events.append(ev)

    def on_battery(self, level):
        self._add("battery", level)

    def on_heart_rate(self, bpm, rr_intervals):
        self._add("hr", bpm, rr_intervals)

    def on_pmd(self, kind, frame):
        self._add("pmd", kind, frame)

    def on_decode_error(self, context, error):
        self._add("decode_error", context, error)

    def should_stop(self):
        return self.stop

    def of(self, name: str) -> list[tuple]:
        with self._lock:
            return [e for e in self.events if e[0] == name]


@pytest.fixture
def proto():
    return PROTO


@pytest.fixture
def transport():
    return MemoryTransport()


@pytest.fixture
def device(transport):
    return FakeDevice(transport)


@pytest.fixture
def handler():
    return RecordingHandler()


@pytest.fixture
def session(transport, device):
    s = DeviceSession(transport, config=PmdConfig(cmd_timeout_s=1.0, worker_join_timeout_s=1.0))
    yield s
    s.disconnect()


@pytest.fixture
def make_response():
    return control_response


@pytest.fixture(name="wait_for")
def wait_for_fixture():
    return wait_for
