#!/usr/bin/env python3
"""
Tests for merging received payloads into messages and reporting changed signals.
"""

from pathlib import Path
from types import SimpleNamespace

import pytest

from dbcparser import DBCParser, MessageUpdateError

DEMO = Path(__file__).parent / "demo.dbc"


@pytest.fixture
def db():
    return DBCParser().parse_file(DEMO)


@pytest.fixture
def brake(db):
    return db.get_message(416)


def record(message):
    events = []
    message.add_listener(lambda msg, changed: events.append((msg, changed)))
    return events


def test_update_reports_changed_signal(brake)->None:
    events = record(brake)
    before = brake.get_value("BrakePressure")

    assert brake.update(416, bytes([0, 0, 0x01, 0, 0, 0, 0, 0]))

    assert events == [(brake, ["BrakeState"])]
    assert brake.signals["BrakeState"].value == 1
    assert brake.get_value("BrakePressure") == before
    assert brake.signals["BrakePressure"].value == before


def test_update_without_changes_still_notifies(brake)->None:
    events = record(brake)
    assert brake.update("0x1A0", bytes(8))
    assert events == [(brake, [])]


def test_update_motorola_signal(brake)->None:
    events = record(brake)
    assert brake.update(416, bytes([0x12, 0x34, 0, 0, 0, 0, 0, 0]))
    assert events[0][1] == ["BrakePressure"]
    assert brake.get_value("BrakePressure") == 0x1234
    assert brake.get_physical("BrakePressure") == pytest.approx(466.0)


def test_update_wrong_length_is_noop(brake)->None:
    brake.set_value("BrakeState", 2)
    events = record(brake)
    before = bytes(brake.data)

    assert not brake.update(416, bytes(7))

    assert bytes(brake.data) == before
    assert brake.signals["BrakeState"].value == 2
    assert events == []


def test_update_wrong_id_is_noop(brake)->None:
    events = record(brake)
    assert not brake.update(417, bytes([0xFF] * 8))
    assert not brake.update("0x1A1", bytes([0xFF] * 8))
    assert not brake.update("garbage", bytes([0xFF] * 8))
    assert bytes(brake.data) == bytes(8)
    assert events == []


def test_update_from_frame(db)->None:
    engine = db.get_message(100)
    events = record(engine)
    frame = SimpleNamespace(arbitration_id=100, data=bytearray(b"\x90\x01"))

    assert engine.update_from_frame(frame)

    assert events[0][1] == ["RPM"]
    assert engine.signals["RPM"].physical_value == 100.0


def test_update_is_not_reentrant(brake)->None:
    def nested(msg, changed):
        msg.update(416, bytes(8))

    brake.add_listener(nested)
    with pytest.raises(MessageUpdateError):
        brake.update(416, bytes([1] * 8))

    brake.remove_listener(nested)
    assert brake.update(416, bytes(8))


def test_set_physical(db)->None:
    fuel_msg = db.get_message(4096)
    fuel_msg.set_physical("FuelLevel", 42.5)
    assert fuel_msg.get_value("FuelLevel") == 85
    assert fuel_msg.data[3] == 85
    assert fuel_msg.signals["FuelLevel"].value == 85


def test_clone_is_deep(brake)->None:
    brake.set_value("BrakeState", 3)
    copy = brake.clone()

    copy.set_value("BrakeState", 1)
    copy.signals["BrakeState"].attributes["Extra"] = "1"
    copy.signals["BrakeState"].value_descriptions[9] = "Nine"

    assert brake.get_value("BrakeState") == 3
    assert brake.signals["BrakeState"].value == 3
    assert "Extra" not in brake.signals["BrakeState"].attributes
    assert 9 not in brake.signals["BrakeState"].value_descriptions
    assert copy.signals["BrakeState"] is not brake.signals["BrakeState"]
