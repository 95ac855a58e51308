#!/usr/bin/env python3
"""
In-memory model of a parsed DBC database.

Holds:
- ECUs (network nodes) with the ids of the messages they send and receive
- Messages with their payload, scheduling attributes and signals
- Signals with their layout, scaling, comments, attributes and value tables
- Global attribute tables, new symbols and message send types

Entities refer to each other by key (ECU name, canonical message id) and the
references are resolved through the owning ``DBCDatabase``. Structural maps are
only handed out as read-only views.

Usage:
    db = load_file("vehicle.dbc")
    msg = db.get_message(0x1A0)
    msg.add_listener(lambda m, changed: print(m.name, changed))
    msg.update(0x1A0, b"\\x90\\x01")
    print(msg.get_physical("RPM"))
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Callable, Mapping, Sequence

from . import bit_codec
from .bit_codec import ByteOrder, ValueType
from .errors import MessageUpdateError

logger = logging.getLogger(__name__)

DEFINITION = "Definition"
DEFAULT = "Default"
SETTING = "Setting"


# --------------------------
# Message id helpers
# --------------------------

def canonical_message_id(frame_id: int) -> str:
    """
    Format a numeric message id as the canonical lookup key.

    Args:
        frame_id: Decimal message id as found in the DBC file

    Returns:
        "0x" followed by at least 3 uppercase hex digits

    Example:
        >>> canonical_message_id(416)
        '0x1A0'
        >>> canonical_message_id(4096)
        '0x1000'
    """
    if frame_id < 0:
        raise ValueError(f"Message id must not be negative: {frame_id}")
    return f"0x{frame_id:03X}"


def message_id_to_bytes(message_id: str) -> bytes:
    """
    Convert a hex message id string to its big endian bytes.

    ``0x`` prefixes, ``h`` suffixes and spaces are ignored, an odd number of
    digits is padded with a leading zero.

    Example:
        >>> message_id_to_bytes("0x1A0")
        b'\\x01\\xa0'
    """
    digits = message_id.replace("0x", "").replace("h", "").replace(" ", "")
    if len(digits) % 2:
        digits = "0" + digits
    return bytes.fromhex(digits)


def bytes_to_message_id(data: bytes) -> str:
    if not data:
        return ""
    return "0x" + data.hex().upper()


# --------------------------
# Entities
# --------------------------

@dataclass
class AttributeDefinition:
    """
    A scoped ``BA_DEF_`` statement.

    Attributes:
        name: Attribute name
        scope: Object type the attribute applies to (BU_, BO_, SG_, EV_)
        attr_type: Declared value type (INT, HEX, FLOAT, STRING, ENUM)
        settings: Remaining tokens (ranges or enum values)
    """
    name: str
    scope: str
    attr_type: str
    settings: list[str] = field(default_factory=list)


@dataclass
class ECU:
    """
    A network node.

    The ECU owns nothing; it only remembers the canonical ids of the messages it
    transmits and of the ones it is declared to receive.
    """
    name: str
    attributes: dict[str, str] = field(default_factory=dict)
    _message_ids: list[str] = field(default_factory=list, init=False, repr=False)
    _rx_message_ids: list[str] = field(default_factory=list, init=False, repr=False)

    @property
    def message_ids(self) -> tuple[str, ...]:
        return tuple(self._message_ids)

    @property
    def rx_message_ids(self) -> tuple[str, ...]:
        return tuple(self._rx_message_ids)

    def add_message(self, message_id: str) -> None:
        if message_id not in self._message_ids:
            self._message_ids.append(message_id)

    def add_rx_message(self, message_id: str) -> None:
        if message_id not in self._rx_message_ids:
            self._rx_message_ids.append(message_id)

    def __str__(self) -> str:
        return self.name


@dataclass
class Signal:
    """
    A bit field inside a message payload.

    Attributes:
        name: Signal name, unique within its message
        message_id: Canonical id of the owning message
        ecu_name: Name of the transmitting ECU
        start_bit: LSB-relative start bit used for decoding
        bit_length: Length in bits
        byte_order: Intel or Motorola
        value_type: Signed or unsigned descriptor
        factor: Scaling factor
        offset: Scaling offset
        physical_min: Physical minimum
        physical_max: Physical maximum (2**bit_length when declared as [0|0])
        normalized_min: Raw value of physical_min
        normalized_max: Raw value of physical_max
        resolution: Physical span per raw step
        unit: Physical unit
        declared_start_bit: Start bit as written in the DBC file
        receivers: Names of the receiving ECUs
        multiplexer: Multiplexer marker (e.g. "M" or "m2"), None when absent
        default_value: Start value from a GenSigStartValue setting, 0 otherwise.
            Informational only, the payload is not preset with it
        sna: "Signal not available" raw value. No DBC statement sets it, so it
            keeps its constructor value
        function: Comment text
        attributes: Signal scoped attribute settings
        value_descriptions: Raw value to label table
        value: Last committed raw value
        raw: Source line
    """
    name: str
    message_id: str
    ecu_name: str
    start_bit: int
    bit_length: int
    byte_order: ByteOrder = ByteOrder.INTEL
    value_type: ValueType = ValueType.UNSIGNED
    factor: float = 1.0
    offset: float = 0.0
    physical_min: float = 0.0
    physical_max: float = 0.0
    normalized_min: int = 0
    normalized_max: int = 0
    resolution: float = 1.0
    unit: str = ""
    declared_start_bit: int | None = None
    receivers: list[str] = field(default_factory=list)
    multiplexer: str | None = None
    default_value: int = 0
    sna: int = 0
    function: str = ""
    attributes: dict[str, str] = field(default_factory=dict)
    value_descriptions: dict[int, str] = field(default_factory=dict)
    value: int | None = None
    raw: str = ""

    def __post_init__(self) -> None:
        if self.declared_start_bit is None:
            self.declared_start_bit = self.start_bit
        if self.value is None:
            self.value = self.default_value

    @property
    def is_signed(self) -> bool:
        return self.value_type is ValueType.SIGNED

    @property
    def min_value(self) -> int:
        return 0

    @property
    def max_value(self) -> int:
        return bit_codec.raw_ceiling(self.bit_length) - 1

    @property
    def raw_ceiling(self) -> int:
        return bit_codec.raw_ceiling(self.bit_length)

    @property
    def physical_value(self) -> float:
        return self.to_physical(self.value)

    def to_physical(self, raw: int) -> float:
        return bit_codec.to_physical(raw, self.factor, self.offset)

    def to_raw(self, physical: float) -> int:
        return bit_codec.to_raw(physical, self.factor, self.offset)

    def decode(self, payload: Sequence[int]) -> int:
        return bit_codec.decode(payload, self.start_bit, self.bit_length, self.byte_order)

    def encode(self, payload: bytearray, raw: int) -> None:
        bit_codec.encode(payload, self.start_bit, self.bit_length, self.byte_order, raw)

    def occupied_bytes(self) -> list[int]:
        return bit_codec.touched_bytes(self.start_bit, self.bit_length, self.byte_order)

    def label_for(self, raw: int) -> str | None:
        return self.value_descriptions.get(raw)

    def clone(self) -> Signal:
        return replace(
            self,
            receivers=list(self.receivers),
            attributes=dict(self.attributes),
            value_descriptions=dict(self.value_descriptions),
        )


UpdateListener = Callable[["Message", "list[str]"], Any]


@dataclass
class Message:
    """
    A CAN message: fixed length payload plus the signals packed into it.

    Only the payload and the committed signal values change after parsing.
    Neither is synchronized; callers sharing a message between threads must
    serialize access themselves.
    """
    message_id: str
    frame_id: int
    name: str
    byte_length: int
    ecu_name: str
    data: bytearray = field(default_factory=bytearray)
    cycle_time: int = 0
    delay_time: int = 0
    launch_type: str | None = None
    raw: str = ""
    _signals: dict[str, Signal] = field(default_factory=dict, init=False, repr=False)
    _listeners: list[UpdateListener] = field(default_factory=list, init=False, repr=False, compare=False)
    _updating: bool = field(default=False, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self.byte_length < 0:
            raise ValueError(f"Message {self.name} has a negative length")
        data = bytearray(self.byte_length)
        data[: min(len(self.data), self.byte_length)] = self.data[: self.byte_length]
        self.data = data

    @property
    def cyclic(self) -> bool:
        return self.cycle_time != 0

    @property
    def signals(self) -> Mapping[str, Signal]:
        return MappingProxyType(self._signals)

    def add_signal(self, signal: Signal) -> None:
        """
        Register a signal under its name.

        Raises:
            ValueError: If the name is taken or the signal does not fit the payload
        """
        if signal.name in self._signals:
            raise ValueError(f"Duplicate signal {signal.name} in message {self.message_id}")
        if not self.fits(signal):
            raise ValueError(
                f"Signal {signal.name} (bit {signal.declared_start_bit}, length {signal.bit_length}) "
                f"exceeds the {self.byte_length} byte payload of message {self.message_id}"
            )
        self._signals[signal.name] = signal

    def fits(self, signal: Signal) -> bool:
        """True if every byte the signal occupies lies inside the payload."""
        return all(0 <= b < self.byte_length for b in signal.occupied_bytes())

    # signal accessors

    def get_value(self, signal_name: str) -> int:
        return self._signals[signal_name].decode(self.data)

    def set_value(self, signal_name: str, raw: int) -> None:
        sig = self._signals[signal_name]
        sig.encode(self.data, raw)
        sig.value = sig.decode(self.data)

    def get_physical(self, signal_name: str) -> float:
        sig = self._signals[signal_name]
        return sig.to_physical(sig.decode(self.data))

    def set_physical(self, signal_name: str, physical: float) -> None:
        self.set_value(signal_name, self._signals[signal_name].to_raw(physical))

    def clone(self) -> Message:
        """Deep copy of the payload and every signal. Listeners are not copied."""
        other = Message(
            message_id=self.message_id,
            frame_id=self.frame_id,
            name=self.name,
            byte_length=self.byte_length,
            ecu_name=self.ecu_name,
            data=bytearray(self.data),
            cycle_time=self.cycle_time,
            delay_time=self.delay_time,
            launch_type=self.launch_type,
            raw=self.raw,
        )
        for name, sig in self._signals.items():
            other._signals[name] = sig.clone()
        return other

    def __deepcopy__(self, memo: dict) -> Message:
        return self.clone()

    # --------------------------
    # Update / diff
    # --------------------------

    def add_listener(self, callback: UpdateListener) -> None:
        """Call ``callback(message, changed_signal_names)`` after every successful update."""
        self._listeners.append(callback)

    def remove_listener(self, callback: UpdateListener) -> None:
        self._listeners.remove(callback)

    def matches(self, frame_id: int | str) -> bool:
        if isinstance(frame_id, str):
            try:
                frame_id = int(frame_id, 16)
            except ValueError:
                return False
        return frame_id >= 0 and canonical_message_id(frame_id) == self.message_id

    def update(self, frame_id: int | str, data: Sequence[int]) -> bool:
        """
        Merge a received payload into this message.

        Args:
            frame_id: Numeric id or canonical id string of the received frame
            data: Received payload bytes

        Returns:
            False if the id or the payload length does not match (nothing is
            changed), True once the payload is applied and listeners ran.

        Raises:
            MessageUpdateError: If called again while an update of this message runs
        """
        if not self.matches(frame_id) or len(data) != self.byte_length:
            return False
        if self._updating:
            raise MessageUpdateError(f"Message {self.message_id} is already being updated")

        self._updating = True
        try:
            snapshot = self.clone()
            self.data[:] = bytes(data)

            changed: list[str] = []
            for name, sig in self._signals.items():
                new_value = sig.decode(self.data)
                if new_value != snapshot._signals[name].decode(snapshot.data):
                    changed.append(name)
                sig.value = new_value
            logger.debug("Message %s updated, changed signals: %s", self.message_id, changed)

            for callback in list(self._listeners):
                callback(self, list(changed))
        finally:
            self._updating = False
        return True

    def update_from_frame(self, frame: Any) -> bool:
        """Same as ``update`` for a frame object exposing ``arbitration_id`` and ``data``."""
        return self.update(frame.arbitration_id, frame.data)


# --------------------------
# Database
# --------------------------

@dataclass
class DBCDatabase:
    """
    Complete DBC data model.

    Built fresh on every parse. Structural maps are private and exposed through
    read-only views; use the parser (or ``load``) to populate it.
    """
    filename: str | None = None
    _ecus: dict[str, ECU] = field(default_factory=dict, init=False, repr=False)
    _messages: dict[str, Message] = field(default_factory=dict, init=False, repr=False)
    _new_symbols: dict[str, int] = field(default_factory=dict, init=False, repr=False)
    _attributes: dict[str, dict[str, list[str]]] = field(default_factory=dict, init=False, repr=False)
    _scoped_definitions: dict[str, dict[str, AttributeDefinition]] = field(
        default_factory=dict, init=False, repr=False
    )
    _send_types: dict[int, str] = field(default_factory=dict, init=False, repr=False)
    _signal_groups: dict[str, list[Signal]] = field(default_factory=dict, init=False, repr=False)

    # views

    @property
    def ecus(self) -> Mapping[str, ECU]:
        return MappingProxyType(self._ecus)

    @property
    def messages(self) -> Mapping[str, Message]:
        return MappingProxyType(self._messages)

    @property
    def new_symbols(self) -> tuple[str, ...]:
        return tuple(self._new_symbols)

    @property
    def attributes(self) -> dict[str, dict[str, list[str]]]:
        return {name: {tag: list(values) for tag, values in tags.items()} for name, tags in self._attributes.items()}

    @property
    def scoped_attribute_definitions(self) -> dict[str, dict[str, AttributeDefinition]]:
        return copy.deepcopy(self._scoped_definitions)

    @property
    def message_send_types(self) -> dict[int, str]:
        return dict(self._send_types)

    @property
    def signal_groups(self) -> dict[str, list[Signal]]:
        return {name: list(sigs) for name, sigs in self._signal_groups.items()}

    # lookups

    def get_message(self, message_id: int | str) -> Message:
        """
        Look up a message by numeric frame id or canonical id string.

        Raises:
            KeyError: If no such message exists
        """
        if isinstance(message_id, int):
            message_id = canonical_message_id(message_id)
        return self._messages[message_id]

    def get_message_by_name(self, name: str) -> Message:
        for msg in self._messages.values():
            if msg.name == name:
                return msg
        raise KeyError(name)

    def get_signal(self, message_id: int | str, signal_name: str) -> Signal:
        return self.get_message(message_id).signals[signal_name]

    def messages_of(self, ecu_name: str) -> Mapping[str, Message]:
        """Messages transmitted by an ECU, keyed by canonical id."""
        ecu = self._ecus[ecu_name]
        return MappingProxyType({mid: self._messages[mid] for mid in ecu.message_ids})

    def rx_messages_of(self, ecu_name: str) -> Mapping[str, Message]:
        """Messages an ECU is declared to receive, keyed by canonical id."""
        ecu = self._ecus[ecu_name]
        return MappingProxyType({mid: self._messages[mid] for mid in ecu.rx_message_ids})

    def ecu_of(self, item: Message | Signal) -> ECU:
        return self._ecus[item.ecu_name]

    def message_of(self, signal: Signal) -> Message:
        return self._messages[signal.message_id]

    # population (used by the parser)

    def reset(self) -> None:
        self._ecus.clear()
        self._messages.clear()
        self._new_symbols.clear()
        self._attributes.clear()
        self._scoped_definitions.clear()
        self._send_types.clear()
        self._signal_groups.clear()

    def ensure_ecu(self, name: str) -> ECU:
        ecu = self._ecus.get(name)
        if ecu is None:
            ecu = ECU(name)
            self._ecus[name] = ecu
        return ecu

    def add_message(self, message: Message) -> None:
        if message.message_id in self._messages:
            raise ValueError(f"Duplicate message id {message.message_id}")
        self._messages[message.message_id] = message
        self.ensure_ecu(message.ecu_name).add_message(message.message_id)

    def add_new_symbol(self, symbol: str) -> None:
        if symbol and symbol not in self._new_symbols:
            self._new_symbols[symbol] = len(self._new_symbols)

    def add_attribute_value(self, name: str, tag: str, values: list[str]) -> None:
        self._attributes.setdefault(name, {}).setdefault(tag, []).extend(values)

    def add_scoped_definition(self, definition: AttributeDefinition) -> None:
        self._scoped_definitions.setdefault(definition.scope, {})[definition.name] = definition

    def set_send_types(self, send_types: dict[int, str]) -> None:
        self._send_types = dict(send_types)

    def send_type_label(self, index: int) -> str | None:
        return self._send_types.get(index)

    # loading

    def load(self, **parser_options: Any) -> DBCDatabase:
        """
        Parse ``filename`` into this database, replacing its content.

        Raises:
            FileNotFoundError: If the file does not exist
            DatabaseLoadingError: If a statement cannot be parsed
        """
        from .dbc_parser import DBCParser

        if not self.filename:
            raise ValueError("Database has no filename to load")
        DBCParser(**parser_options).parse_file_into(self, self.filename)
        return self

    async def load_async(self, **parser_options: Any) -> DBCDatabase:
        from .dbc_parser import DBCParser

        if not self.filename:
            raise ValueError("Database has no filename to load")
        await DBCParser(**parser_options).parse_file_into_async(self, self.filename)
        return self
