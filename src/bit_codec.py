"""
Bit-level codec for CAN signals.

Maps a signal's unsigned raw value onto bit positions inside a message payload
and back, plus the linear raw <-> physical conversion.

Start bits handed to this module are always LSB-relative. Motorola start bits as
declared in a DBC file have to go through ``motorola_to_lsb_start_bit`` first;
after that the only difference between the byte orders is the direction the
traversal walks through the payload (ascending bytes for Intel, descending for
Motorola).
"""

from __future__ import annotations

import enum
import math
from typing import MutableSequence, Sequence


class ByteOrder(enum.Enum):
    """Signal byte order, valued by the DBC ``@`` flag digit."""
    MOTOROLA = 0  # big endian
    INTEL = 1     # little endian

    @classmethod
    def from_flag(cls, flag: str) -> ByteOrder:
        return cls(int(flag))


class ValueType(enum.Enum):
    UNSIGNED = "+"
    SIGNED = "-"


# --------------------------
# Layout helpers
# --------------------------

def byte_mask(bit_index: int, length: int) -> int:
    """
    Build the mask selecting ``length`` bits of a byte starting at ``bit_index``.

    Args:
        bit_index: Position of the lowest selected bit (0..7)
        length: Number of bits to select (1..8 - bit_index)

    Returns:
        Byte mask as an int in range 0..255

    Example:
        >>> hex(byte_mask(2, 3))
        '0x1c'
    """
    return ((1 << length) - 1) << bit_index


def _walk(start_bit: int, bit_length: int, byte_order: ByteOrder):
    # yields (byte_index, bit_index, chunk_length, bits_consumed_before)
    byte_index = start_bit // 8
    bit_index = start_bit % 8
    remaining = bit_length
    consumed = 0
    step = -1 if byte_order is ByteOrder.MOTOROLA else 1
    while remaining > 0:
        length = min(remaining, 8 - bit_index)
        yield byte_index, bit_index, length, consumed
        byte_index += step
        bit_index = 0
        remaining -= length
        consumed += length


def touched_bytes(start_bit: int, bit_length: int, byte_order: ByteOrder) -> list[int]:
    """
    Return the payload byte indices a signal occupies, in traversal order.

    Example:
        >>> touched_bytes(4, 8, ByteOrder.INTEL)
        [0, 1]
        >>> touched_bytes(8, 16, ByteOrder.MOTOROLA)
        [1, 0]
    """
    return [b for b, _, _, _ in _walk(start_bit, bit_length, byte_order)]


def _check_index(byte_index: int, size: int, start_bit: int, bit_length: int) -> None:
    if not 0 <= byte_index < size:
        raise IndexError(
            f"Signal at bit {start_bit} with length {bit_length} does not fit a {size} byte payload"
        )


def motorola_to_lsb_start_bit(start_bit: int, bit_length: int) -> int:
    """
    Convert a Motorola (MSB) start bit as written in a DBC file to the
    LSB-relative start bit used by ``decode``/``encode``.

    The conversion walks ``bit_length - 1`` bits starting at the declared
    bit: on a byte boundary (bit index multiple of 8) it jumps to the top of the
    next byte (+15), otherwise it moves down one bit.

    Args:
        start_bit: Declared Motorola start bit
        bit_length: Signal length in bits

    Returns:
        Start bit of the least significant bit

    Example:
        >>> motorola_to_lsb_start_bit(7, 8)
        0
        >>> motorola_to_lsb_start_bit(7, 16)
        8
    """
    bit = start_bit
    for _ in range(bit_length - 1):
        if bit % 8 == 0:
            bit += 15
        else:
            bit -= 1
    return bit


def raw_ceiling(bit_length: int) -> int:
    """``2**bit_length``: one above the largest raw value of a signal."""
    return 1 << bit_length


# --------------------------
# Decode / encode
# --------------------------

def decode(payload: Sequence[int], start_bit: int, bit_length: int, byte_order: ByteOrder) -> int:
    """
    Read an unsigned raw value from a payload.

    Chunks consumed first land in the low-order bits of the result.

    Args:
        payload: Message bytes
        start_bit: LSB-relative start bit
        bit_length: Signal length in bits
        byte_order: Direction of the byte traversal

    Returns:
        Unsigned raw value

    Raises:
        IndexError: If the signal runs outside the payload

    Example:
        >>> decode(b"\\x90\\x01", 0, 16, ByteOrder.INTEL)
        400
    """
    value = 0
    size = len(payload)
    for byte_index, bit_index, length, consumed in _walk(start_bit, bit_length, byte_order):
        _check_index(byte_index, size, start_bit, bit_length)
        chunk = (payload[byte_index] & byte_mask(bit_index, length)) >> bit_index
        value |= chunk << consumed
    return value


def encode(
    payload: MutableSequence[int],
    start_bit: int,
    bit_length: int,
    byte_order: ByteOrder,
    value: int,
) -> None:
    """
    Write an unsigned raw value into a payload, in place.

    Bits of ``value`` above ``bit_length`` are not range checked; they fall
    outside the byte masks and are dropped.

    Raises:
        IndexError: If the signal runs outside the payload
    """
    size = len(payload)
    for byte_index, bit_index, length, consumed in _walk(start_bit, bit_length, byte_order):
        _check_index(byte_index, size, start_bit, bit_length)
        mask = byte_mask(bit_index, length)
        old = payload[byte_index] & ~mask & 0xFF
        new = ((value >> consumed) << bit_index) & mask
        payload[byte_index] = old | new


# --------------------------
# Physical conversion
# --------------------------

def to_physical(raw: int, factor: float, offset: float) -> float:
    return raw * factor + offset


def to_raw(physical: float, factor: float, offset: float) -> int:
    """
    Convert a physical value back to a raw value, rounding to the nearest int.

    Raises:
        ValueError: If ``factor`` is 0
    """
    if factor == 0:
        raise ValueError("Cannot convert a physical value with a factor of 0")
    return int(round((physical - offset) / factor))


def _normalize(physical: float, factor: float, offset: float) -> int:
    scaled = (physical - offset) / factor
    if not math.isfinite(scaled):
        return 0
    return max(0, int(round(scaled)))


def normalized_range(phys_min: float, phys_max: float, factor: float, offset: float) -> tuple[int, int, float]:
    """
    Compute the normalized (raw) range of a signal and its resolution.

    Args:
        phys_min: Declared physical minimum
        phys_max: Declared physical maximum
        factor: Signal factor
        offset: Signal offset

    Returns:
        Tuple of (normalized min, normalized max, resolution). Normalized values
        are unsigned, so negative results are clamped to 0, and so are bounds
        that are not finite. A degenerate range gives a resolution of 1.

    Example:
        >>> normalized_range(0, 16383.75, 0.25, 0)
        (0, 65535, 0.25)
    """
    if factor == 0:
        return 0, 0, 1.0
    norm_min = _normalize(phys_min, factor, offset)
    norm_max = _normalize(phys_max, factor, offset)
    span = norm_max - norm_min
    if span == 0:
        return norm_min, norm_max, 1.0
    resolution = (phys_max - phys_min) / span
    if math.isnan(resolution) or math.isinf(resolution):
        resolution = 1.0
    return norm_min, norm_max, resolution
