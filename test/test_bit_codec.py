#!/usr/bin/env python3
"""
Tests for the bit-level signal codec.
"""

import pytest

from dbcparser import bit_codec
from dbcparser.bit_codec import ByteOrder


def test_byte_mask()->None:
    assert bit_codec.byte_mask(0, 8) == 0xFF
    assert bit_codec.byte_mask(2, 3) == 0b00011100
    assert bit_codec.byte_mask(7, 1) == 0x80


def test_motorola_start_bit_single_byte()->None:
    assert bit_codec.motorola_to_lsb_start_bit(7, 8) == 0


def test_motorola_start_bit_across_bytes()->None:
    # 16 bit signal with MSB at bit 7 of byte 0, LSB at bit 0 of byte 1
    assert bit_codec.motorola_to_lsb_start_bit(7, 16) == 8
    # 12 bit signal with MSB at bit 3 of byte 0
    assert bit_codec.motorola_to_lsb_start_bit(3, 12) == 8
    # single bit signals stay where they are
    assert bit_codec.motorola_to_lsb_start_bit(13, 1) == 13


def test_decode_intel()->None:
    assert bit_codec.decode(b"\x90\x01", 0, 16, ByteOrder.INTEL) == 400
    # nibble straddling bytes 0 and 1
    assert bit_codec.decode(b"\xA0\x0B", 4, 8, ByteOrder.INTEL) == 0xBA


def test_decode_motorola()->None:
    start = bit_codec.motorola_to_lsb_start_bit(7, 16)
    assert bit_codec.decode(b"\x12\x34", start, 16, ByteOrder.MOTOROLA) == 0x1234

    start = bit_codec.motorola_to_lsb_start_bit(3, 12)
    assert bit_codec.decode(b"\xAB\xCD", start, 12, ByteOrder.MOTOROLA) == 0xBCD


def test_encode_keeps_neighbour_bits()->None:
    payload = bytearray(b"\xFF\xFF")
    bit_codec.encode(payload, 4, 8, ByteOrder.INTEL, 0)
    assert payload == bytearray(b"\x0F\xF0")

    bit_codec.encode(payload, 4, 8, ByteOrder.INTEL, 0xA5)
    assert payload == bytearray(b"\x5F\xFA")


def test_encode_drops_bits_beyond_length()->None:
    payload = bytearray(2)
    bit_codec.encode(payload, 0, 4, ByteOrder.INTEL, 0x1F)
    assert payload == bytearray(b"\x0F\x00")


@pytest.mark.parametrize(
    "start_bit,bit_length,byte_order",
    [
        (0, 1, ByteOrder.INTEL),
        (3, 13, ByteOrder.INTEL),
        (0, 64, ByteOrder.INTEL),
        (bit_codec.motorola_to_lsb_start_bit(7, 8), 8, ByteOrder.MOTOROLA),
        (bit_codec.motorola_to_lsb_start_bit(5, 20), 20, ByteOrder.MOTOROLA),
        (bit_codec.motorola_to_lsb_start_bit(7, 64), 64, ByteOrder.MOTOROLA),
    ],
)
def test_round_trip(start_bit: int, bit_length: int, byte_order: ByteOrder)->None:
    top = (1 << bit_length) - 1
    for value in {0, 1, top, top // 3, top & 0x5555555555555555}:
        payload = bytearray(b"\xC3" * 8)
        bit_codec.encode(payload, start_bit, bit_length, byte_order, value)
        assert bit_codec.decode(payload, start_bit, bit_length, byte_order) == value


def test_out_of_payload_raises()->None:
    with pytest.raises(IndexError):
        bit_codec.decode(b"\x00", 0, 16, ByteOrder.INTEL)
    # Motorola traversal must not wrap around to the last byte
    with pytest.raises(IndexError):
        bit_codec.decode(b"\x00\x00", 0, 16, ByteOrder.MOTOROLA)
    with pytest.raises(IndexError):
        bit_codec.encode(bytearray(1), 4, 8, ByteOrder.INTEL, 1)


def test_touched_bytes()->None:
    assert bit_codec.touched_bytes(0, 16, ByteOrder.INTEL) == [0, 1]
    assert bit_codec.touched_bytes(8, 16, ByteOrder.MOTOROLA) == [1, 0]
    assert bit_codec.touched_bytes(18, 3, ByteOrder.INTEL) == [2]


def test_physical_conversion()->None:
    assert bit_codec.to_physical(400, 0.25, 0) == 100.0
    assert bit_codec.to_physical(0, 1, -40) == -40
    assert bit_codec.to_raw(100.0, 0.25, 0) == 400
    assert bit_codec.to_raw(-39, 1, -40) == 1
    with pytest.raises(ValueError):
        bit_codec.to_raw(1.0, 0, 0)


def test_normalized_range()->None:
    assert bit_codec.normalized_range(0, 16383.75, 0.25, 0) == (0, 65535, 0.25)
    # degenerate range falls back to a resolution of 1
    assert bit_codec.normalized_range(5, 5, 1, 0) == (5, 5, 1.0)
    assert bit_codec.normalized_range(0, 10, 0, 0) == (0, 0, 1.0)
    # negative raw values are clamped, the range stays unsigned
    norm_min, norm_max, _ = bit_codec.normalized_range(-40, 215, 1, 0)
    assert (norm_min, norm_max) == (0, 215)


def test_normalized_range_non_finite_bounds()->None:
    assert bit_codec.normalized_range(0, float("inf"), 1, 0) == (0, 0, 1.0)
    assert bit_codec.normalized_range(float("nan"), 10, 1, 0) == (0, 10, 1.0)
    assert bit_codec.normalized_range(float("-inf"), 10, 1, 0) == (0, 10, 1.0)


def test_raw_ceiling()->None:
    assert bit_codec.raw_ceiling(8) == 256
