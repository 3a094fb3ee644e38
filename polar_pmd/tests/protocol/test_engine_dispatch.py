from __future__ import annotations

import logging
import threading

import pytest

from polar_pmd.interfaces.command_sink import CommandEvent
from polar_pmd.interfaces.event_handler import EventHandler
from polar_pmd.protocol.core.messages import ControlCommand, MeasurementType, Status, StreamKind
from polar_pmd.protocol.core.samples import Accelerometer, Ecg
from polar_pmd.protocol.engine import LoopOutcome, ProtocolEngine
from polar_pmd.protocol.errors import (
    Busy, CommandTimeout, LinkLost, NoSubscriptions, SendFailed, TrailingBytes, UnknownCode,
)
from polar_pmd.protocol.registry import SessionRegistry, SessionState
from polar_pmd.transport.errors import TransportIOError
from polar_pmd.transport.memory import MemoryTransport

TS = bytes.fromhex("ea 54 a2 42 8b 45 52 08")


class RecordingSink:
    def __init__(self):
        self.events: list[CommandEvent] = []

    def on_command(self, event: CommandEvent) -> None:
        self.events.append(event)


class FailingTransport(MemoryTransport):
    def write(self, data: bytes) -> None:
        raise TransportIOError("radio busy")


def _engine(proto, transport, *, cmd_timeout_s=0.5, event_queue_size=1024, cmd_sink=None):
    return ProtocolEngine(
        proto,
        transport,
        SessionRegistry(),
        cmd_timeout_s=cmd_timeout_s,
        event_queue_size=event_queue_size,
        cmd_sink=cmd_sink,
        logger=logging.getLogger("test"),
    )


def _start_loop(engine, handler, **kw):
    box = {}

    def _run():
        box["result"] = engine.run(handler, **kw)

    t = threading.Thread(target=_run, daemon=True)
    t.start()
    assert engine.wait_until_running(1.0)
    return t, box


def _finish(t, box, transport):
    transport.drop_link()
    t.join(timeout=2.0)
    assert not t.is_alive()
    return box["result"]


def test_run_requires_a_subscription(proto, transport, handler):
    engine = _engine(proto, transport)
    with pytest.raises(NoSubscriptions):
        engine.run(handler)


def test_heart_rate_and_battery_are_routed(proto, transport, handler):
    engine = _engine(proto, transport)
    engine.registry.subscribe(StreamKind.HEART_RATE)
    t, box = _start_loop(engine, handler)

    transport.push(proto.characteristic("heart_rate"), bytes([72, 0]) + (1024).to_bytes(2, "little"))
    transport.push(proto.characteristic("battery").upper(), b"\x5a")
    result = _finish(t, box, transport)

    assert handler.of("hr") == [("hr", 72, (1000,))]
    assert handler.of("battery") == [("battery", 90)]
    assert result.outcome is LoopOutcome.LINK_LOST
    assert result.notifications == 2
    assert result.decode_errors == 0


def test_pmd_data_is_routed_by_embedded_type(proto, transport, handler):
    engine = _engine(proto, transport)
    engine.registry.subscribe(StreamKind.ECG)
    t, box = _start_loop(engine, handler)

    transport.push(proto.pmd_data_uuid, b"\x00" + TS + b"\x00" + b"\xff\xff\xff")
    transport.push(proto.pmd_data_uuid, bytes.fromhex("02 ea 54 a2 42 8b 45 52 08 01 45 ff e4 ff b5 03"))
    _finish(t, box, transport)

    (_, k1, f1), (_, k2, f2) = handler.of("pmd")
    assert k1 is StreamKind.ECG and f1.samples == (Ecg((-1,)),)
    assert k2 is StreamKind.ACCELEROMETER and f2.samples == (Accelerometer(((-187, -28, 949),)),)


def test_corrupt_notification_is_reported_and_loop_continues(proto, transport, handler):
    engine = _engine(proto, transport)
    engine.registry.subscribe(StreamKind.ECG)
    t, box = _start_loop(engine, handler)

    transport.push(proto.pmd_data_uuid, b"\x04" + TS + b"\x00")     # unknown measurement type
    transport.push(proto.pmd_data_uuid, b"\x00" + TS[:3])           # truncated
    transport.push(proto.pmd_data_uuid, b"\x00" + TS + b"\x00")     # fine, no samples
    result = _finish(t, box, transport)

    errors = handler.of("decode_error")
    assert len(errors) == 2
    ctx, err = errors[0][1], errors[0][2]
    assert isinstance(err, UnknownCode)
    assert ctx.source == proto.pmd_data_uuid
    assert ctx.kind is None
    assert errors[1][1].kind is StreamKind.ECG
    assert len(handler.of("pmd")) == 1
    assert result.decode_errors == 2
    assert result.notifications == 3


def test_control_exchange_round_trip(proto, transport, device, handler):
    engine = _engine(proto, transport)
    engine.registry.subscribe(StreamKind.ECG)
    t, box = _start_loop(engine, handler)

    resp = engine.send(StreamKind.ECG, ControlCommand.get_settings(MeasurementType.ECG))

    assert resp.ok
    assert resp.setting("sample_rate").values == (130, 250)
    assert engine.registry.cached_settings(StreamKind.ECG) == resp.settings
    assert engine.registry.outstanding() is None
    assert transport.writes == [b"\x01\x00"]
    _finish(t, box, transport)


def test_timeout_releases_control_point(proto, transport, device, handler):
    device.silent = True
    engine = _engine(proto, transport, cmd_timeout_s=0.05)
    engine.registry.subscribe(StreamKind.ECG)
    t, box = _start_loop(engine, handler)

    with pytest.raises(CommandTimeout):
        engine.send(StreamKind.ECG, ControlCommand.get_settings(MeasurementType.ECG))

    assert engine.registry.outstanding() is None
    assert engine.registry.state(StreamKind.ECG) is SessionState.IDLE

    # A late answer is ignored, not misattributed.
    transport.push(proto.pmd_control_uuid, bytes.fromhex("f0 01 00 00 00 00 01 82 00"))
    result = _finish(t, box, transport)
    assert result.decode_errors == 0


def test_send_failure_releases_control_point(proto):
    transport = FailingTransport()
    engine = _engine(proto, transport)

    with pytest.raises(SendFailed) as ei:
        engine.submit(StreamKind.ECG, ControlCommand.get_settings(MeasurementType.ECG))

    assert "radio busy" in str(ei.value)
    assert engine.registry.outstanding() is None
    assert engine._pending == {}


def test_second_request_while_first_in_flight_is_busy(proto, transport, device, handler):
    device.hold.set()
    engine = _engine(proto, transport)
    engine.registry.subscribe(StreamKind.ECG)
    t, box = _start_loop(engine, handler)

    first = engine.submit(StreamKind.ACCELEROMETER, ControlCommand.get_settings(MeasurementType.ACCELEROMETER))
    with pytest.raises(Busy):
        engine.submit(StreamKind.ECG, ControlCommand.get_settings(MeasurementType.ECG))

    device.release()
    resp = engine.wait(first)
    assert resp.measurement is MeasurementType.ACCELEROMETER
    assert resp.setting("range").values == (2, 4, 8)
    assert len(transport.writes) == 1
    _finish(t, box, transport)


def test_stop_on_idle_session_sends_nothing(proto, transport, handler):
    engine = _engine(proto, transport)
    assert engine.submit(StreamKind.ECG, ControlCommand.stop(MeasurementType.ECG)) is None
    assert transport.writes == []


def test_link_loss_fails_pending_and_resets_sessions(proto, transport, device, handler):
    device.silent = True
    engine = _engine(proto, transport, cmd_timeout_s=2.0)
    engine.registry.subscribe(StreamKind.ECG)
    engine.registry.subscribe(StreamKind.HEART_RATE)
    t, box = _start_loop(engine, handler)

    pending = engine.submit(StreamKind.ECG, ControlCommand.get_settings(MeasurementType.ECG))
    result = _finish(t, box, transport)

    with pytest.raises(LinkLost):
        engine.wait(pending)
    assert result.outcome is LoopOutcome.LINK_LOST
    assert engine.registry.sessions() == {}
    assert not engine.running


def test_transport_error_ends_loop_as_link_loss(proto, transport, handler):
    engine = _engine(proto, transport)
    engine.registry.subscribe(StreamKind.BATTERY)
    t, box = _start_loop(engine, handler)

    transport.drop_link(TransportIOError("adapter gone"))
    t.join(timeout=2.0)

    result = box["result"]
    assert result.outcome is LoopOutcome.LINK_LOST
    assert isinstance(result.error, TransportIOError)


def test_handler_stop_predicate_ends_loop(proto, transport, handler):
    engine = _engine(proto, transport)
    engine.registry.subscribe(StreamKind.BATTERY)
    t, box = _start_loop(engine, handler)

    handler.stop = True
    transport.push(proto.characteristic("battery"), b"\x10")
    t.join(timeout=2.0)

    assert box["result"].outcome is LoopOutcome.HANDLER_STOPPED
    assert engine.registry.is_subscribed(StreamKind.BATTERY)
    assert handler.of("battery") == []


class StopAfterFirstBattery(EventHandler):
    def __init__(self):
        self.seen = []

    def on_battery(self, level):
        self.seen.append(level)

    def should_stop(self):
        return bool(self.seen)


def test_handler_stop_ends_loop_before_next_delivery(proto, transport, wait_for):
    handler = StopAfterFirstBattery()
    engine = _engine(proto, transport)
    engine.registry.subscribe(StreamKind.BATTERY)
    t, box = _start_loop(engine, handler)

    transport.push(proto.characteristic("battery"), b"\x10")
    assert wait_for(lambda: handler.seen)
    transport.push(proto.characteristic("battery"), b"\x11")
    t.join(timeout=2.0)

    result = box["result"]
    assert result.outcome is LoopOutcome.HANDLER_STOPPED
    assert result.notifications == 1
    assert handler.seen == [0x10]


def test_cancel_ends_loop_before_next_notification(proto, transport, handler):
    engine = _engine(proto, transport)
    engine.registry.subscribe(StreamKind.BATTERY)
    t, box = _start_loop(engine, handler)

    engine.cancel()
    transport.push(proto.characteristic("battery"), b"\x10")
    t.join(timeout=2.0)

    result = box["result"]
    assert result.outcome is LoopOutcome.CANCELLED
    assert result.notifications == 0
    assert handler.of("battery") == []


def test_external_stop_event_cancels(proto, transport, handler):
    engine = _engine(proto, transport)
    engine.registry.subscribe(StreamKind.BATTERY)
    stop = threading.Event()
    t, box = _start_loop(engine, handler, stop_event=stop)

    stop.set()
    transport.push(proto.characteristic("battery"), b"\x10")
    t.join(timeout=2.0)

    assert box["result"].outcome is LoopOutcome.CANCELLED


def test_loop_can_run_again_after_cancel(proto, transport, handler):
    engine = _engine(proto, transport)
    engine.registry.subscribe(StreamKind.BATTERY)

    t, box = _start_loop(engine, handler)
    engine.cancel()
    transport.push(proto.characteristic("battery"), b"\x10")
    t.join(timeout=2.0)

    t, box = _start_loop(engine, handler)
    transport.push(proto.characteristic("battery"), b"\x11")
    result = _finish(t, box, transport)

    assert result.outcome is LoopOutcome.LINK_LOST
    assert handler.of("battery") == [("battery", 0x11)]


def test_stop_event_set_before_run_consumes_nothing(proto, transport, handler):
    engine = _engine(proto, transport)
    engine.registry.subscribe(StreamKind.BATTERY)
    transport.push(proto.characteristic("battery"), b"\x10")
    stop = threading.Event()
    stop.set()

    result = engine.run(handler, stop_event=stop)
    assert result.outcome is LoopOutcome.CANCELLED
    assert result.notifications == 0

    transport.push(proto.characteristic("battery"), b"\x11")
    transport.drop_link()
    result = engine.run(handler)

    assert result.outcome is LoopOutcome.LINK_LOST
    assert handler.of("battery") == [("battery", 0x10), ("battery", 0x11)]


def test_running_loop_cannot_be_entered_twice(proto, transport, handler):
    engine = _engine(proto, transport)
    engine.registry.subscribe(StreamKind.BATTERY)
    t, box = _start_loop(engine, handler)

    with pytest.raises(Busy):
        engine.run(handler)
    _finish(t, box, transport)


def test_unsolicited_control_response_is_logged(proto, transport, handler, caplog):
    engine = _engine(proto, transport)
    engine.registry.subscribe(StreamKind.ECG)

    with caplog.at_level(logging.WARNING, logger="test"):
        t, box = _start_loop(engine, handler)
        transport.push(proto.pmd_control_uuid, bytes.fromhex("f0 03 00 00 00"))
        _finish(t, box, transport)

    assert "CONTROL_RESPONSE_UNSOLICITED" in caplog.text


def test_mismatched_response_leaves_request_pending(proto, transport, device, handler):
    device.silent = True
    engine = _engine(proto, transport, cmd_timeout_s=2.0)
    engine.registry.subscribe(StreamKind.ECG)
    t, box = _start_loop(engine, handler)

    pending = engine.submit(StreamKind.ECG, ControlCommand.get_settings(MeasurementType.ECG))
    transport.push(proto.pmd_control_uuid, bytes.fromhex("f0 01 02 00 00 00 01 19 00"))   # ACC answer
    transport.push(proto.pmd_control_uuid, bytes.fromhex("f0 01 00 00 00 00 01 82 00"))   # ECG answer

    resp = engine.wait(pending)
    assert resp.measurement is MeasurementType.ECG
    _finish(t, box, transport)


def test_partial_reading_is_attributed_to_embedded_type(proto, transport, handler):
    engine = _engine(proto, transport)
    engine.registry.subscribe(StreamKind.ECG)
    t, box = _start_loop(engine, handler)

    # PPG header with a trailing partial reading
    transport.push(proto.pmd_data_uuid, b"\x01" + TS + b"\x00" + b"\x00\x00")
    _finish(t, box, transport)

    (_, ctx, err), = handler.of("decode_error")
    assert ctx.kind is StreamKind.PPG
    assert isinstance(err, TrailingBytes)


def test_handler_exception_does_not_stop_loop(proto, transport, handler):
    engine = _engine(proto, transport)
    engine.registry.subscribe(StreamKind.BATTERY)

    calls = []

    def boom(level):
        calls.append(level)
        raise RuntimeError("handler failed")

    handler.on_battery = boom
    t, box = _start_loop(engine, handler)
    transport.push(proto.characteristic("battery"), b"\x01")
    transport.push(proto.characteristic("battery"), b"\x02")
    result = _finish(t, box, transport)

    assert calls == [1, 2]
    assert result.outcome is LoopOutcome.LINK_LOST


def test_full_event_queue_drops_and_counts(proto, transport, handler):
    gate = threading.Event()
    engine = _engine(proto, transport, event_queue_size=1)
    engine.registry.subscribe(StreamKind.BATTERY)
    handler.on_battery = lambda level: gate.wait(2.0)

    t, box = _start_loop(engine, handler)
    for i in range(6):
        transport.push(proto.characteristic("battery"), bytes([i]))
    transport.drop_link()
    threading.Timer(0.2, gate.set).start()
    t.join(timeout=3.0)

    assert box["result"].dropped_events >= 4


def test_command_sink_receives_outcomes(proto, transport, device, handler):
    sink = RecordingSink()
    device.status[0x02] = 0x05   # START -> INVALID_PARAMETER
    engine = _engine(proto, transport, cmd_sink=sink)
    engine.registry.subscribe(StreamKind.PPI)
    t, box = _start_loop(engine, handler)

    ok = engine.send(StreamKind.PPI, ControlCommand.get_settings(MeasurementType.PPI))
    rejected = engine.send(StreamKind.PPI, ControlCommand.start(MeasurementType.PPI))
    _finish(t, box, transport)

    assert ok.ok
    assert rejected.status is Status.INVALID_PARAMETER
    assert [e.kind for e in sink.events] == ["ok", "device_status"]
    assert sink.events[0].name == "GET_SETTINGS(PPI)"
    assert sink.events[1].payload["status_code"] == 5
