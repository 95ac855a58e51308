#!/usr/bin/env python3
"""
A DBC parser building a cross-referenced ``DBCDatabase``.

Parses and holds:
- NS_ new symbols
- BU_ ECU list
- BO_ messages and their nested SG_ signals
- CM_ SG_ signal comments
- BA_DEF_ attribute definitions (global and BU_/BO_/SG_/EV_ scoped)
- BA_DEF_DEF_ attribute defaults
- BA_ attribute settings (global, BU_, BO_ and SG_ scoped)
- VAL_ signal value tables

Note: This is not a full DBC grammar parser. Signal groups, value tables
declared with VAL_TABLE_, environment variables and relation attributes are
skipped.

Every statement kind is extracted with its own scan over the whole text, and
the kinds are parsed in dependency order: symbols, ECUs, messages/signals,
comments, attribute definitions, attribute defaults, attribute settings and
value tables. The first statement that fails to parse aborts the load with a
``DatabaseLoadingError`` carrying the partially populated database.

Usage:
    db = DBCParser().parse_file("vehicle.dbc")
    print(len(db.ecus), len(db.messages))
    db, partial = try_load_file("broken.dbc")
"""

from __future__ import annotations

import asyncio
import enum
import errno
import logging
import os
import re
import shlex
from pathlib import Path
from typing import Callable, Iterator

from .bit_codec import ByteOrder, ValueType, motorola_to_lsb_start_bit, normalized_range, raw_ceiling
from .dbc_model import (
    DEFAULT,
    DEFINITION,
    SETTING,
    AttributeDefinition,
    DBCDatabase,
    Message,
    Signal,
    canonical_message_id,
)
from .errors import DatabaseLoadingError

logger = logging.getLogger(__name__)

SEND_TYPE_ATTRIBUTE = "GenMsgSendType"
CYCLE_TIME_ATTRIBUTE = "GenMsgCycleTime"
DELAY_TIME_ATTRIBUTE = "GenMsgDelayTime"
START_VALUE_ATTRIBUTE = "GenSigStartValue"


# --------------------------
# Utilities
# --------------------------

def tokenize(text: str) -> list[str]:
    """
    Split statement text on whitespace, keeping quoted strings as one token.

    Example:
        >>> tokenize('SG_ 100 RPM "engine speed"')
        ['SG_', '100', 'RPM', 'engine speed']
    """
    return shlex.split(text, posix=True)


def unquote(s: str) -> str:
    """
    Remove surrounding double quotes from a string if present.

    Example:
        >>> unquote('"Cyclic"')
        'Cyclic'
    """
    s = s.strip()
    if len(s) >= 2 and s[0] == '"' and s[-1] == '"':
        return s[1:-1]
    return s


# --------------------------
# Grammar extractor
# --------------------------

class StatementKind(enum.Enum):
    NEW_SYMBOLS = "NS_"
    ECUS = "BU_"
    MESSAGE = "BO_"
    COMMENT = "CM_"
    ATTRIBUTE_DEFINITION = "BA_DEF_"
    ATTRIBUTE_DEFAULT = "BA_DEF_DEF_"
    ATTRIBUTE_SETTING = "BA_"
    VALUE_TABLE = "VAL_"


# statement bodies may contain quoted strings with ';' inside
_BODY = r'(?P<body>(?:[^";]|"[^"]*")*)'

STATEMENT_PATTERNS: dict[StatementKind, re.Pattern] = {
    StatementKind.NEW_SYMBOLS: re.compile(
        r"^[ \t]*NS_[ \t]*:[ \t]*\r?\n(?P<symbols>(?:[ \t]+\w+[ \t]*(?:\r?\n|$))*)", re.M
    ),
    StatementKind.ECUS: re.compile(r"^[ \t]*BU_[ \t]*:(?P<names>[^\r\n]*)", re.M),
    StatementKind.MESSAGE: re.compile(
        r"^[ \t]*BO_[ \t]+(?P<id>\d+)[ \t]+(?P<name>\w+)[ \t]*:[ \t]*(?P<length>\d+)[ \t]+(?P<ecu>\w+)[ \t]*"
        r"(?P<signals>(?:\r?\n(?=[ \t]*(?:SG_|\r?$))[ \t]*(?:SG_[^\r\n]*)?)*)",
        re.M,
    ),
    StatementKind.COMMENT: re.compile(r"^[ \t]*CM_[ \t]+" + _BODY + ";", re.M),
    StatementKind.ATTRIBUTE_DEFINITION: re.compile(r"^[ \t]*BA_DEF_[ \t]+" + _BODY + ";", re.M),
    StatementKind.ATTRIBUTE_DEFAULT: re.compile(r"^[ \t]*BA_DEF_DEF_[ \t]+" + _BODY + ";", re.M),
    StatementKind.ATTRIBUTE_SETTING: re.compile(r"^[ \t]*BA_[ \t]+" + _BODY + ";", re.M),
    StatementKind.VALUE_TABLE: re.compile(
        r"^[ \t]*VAL_[ \t]+(?P<id>\d+)[ \t]+(?P<signal>\w+)" + _BODY + ";", re.M
    ),
}

SIGNAL_LINE = re.compile(r"^[ \t]*SG_[^\r\n]*", re.M)

SIGNAL_PATTERN = re.compile(
    r"""SG_\s+(?P<name>\w+)(?:\s+(?P<mux>\w+))?\s*:\s*
        (?P<start>[^|\s]+)\|(?P<length>[^@\s]+)@(?P<order>[01])(?P<sign>[+-])\s*
        \(\s*(?P<factor>[^,\s)]+)\s*,\s*(?P<offset>[^,\s)]+)\s*\)\s*
        \[\s*(?P<min>[^|\s\]]+)\s*\|\s*(?P<max>[^|\s\]]+)\s*\]\s*
        "(?P<unit>[^"]*)"\s*(?P<receivers>.*)""",
    re.X,
)

COMMENT_SIGNAL_PATTERN = re.compile(r'SG_\s+(?P<id>\d+)\s+(?P<signal>\w+)\s+"(?P<text>[^"]*)"\s*$', re.S)

DEFINITION_PATTERN = re.compile(
    r'(?:(?P<scope>BU_|BO_|SG_|EV_)\s+)?"(?P<name>[^"]*)"\s+(?P<type>\w+)\s*(?P<settings>.*)$', re.S
)

DEFAULT_PATTERN = re.compile(r'"(?P<name>[^"]*)"\s*(?P<value>.*)$', re.S)

SETTING_PATTERN = re.compile(r'"(?P<name>[^"]*)"\s*(?P<rest>.*)$', re.S)

VALUE_PAIR_PATTERN = re.compile(r'(-?\d+)\s+"([^"]*)"')


class GrammarExtractor:
    """
    Finds the text blocks of each statement kind in DBC text.

    Every kind is scanned independently over the full text, so kinds may
    overlap (a message block contains its signal lines). Blocks of one kind
    come out in file order.
    """
    def __init__(self, text: str) -> None:
        self.text = text

    def extract(self, kind: StatementKind) -> Iterator[re.Match]:
        return STATEMENT_PATTERNS[kind].finditer(self.text)

    def blocks(self, kind: StatementKind) -> list[str]:
        return [m.group(0) for m in self.extract(kind)]


# --------------------------
# Section parsers
# --------------------------

def parse_new_symbols(db: DBCDatabase, match: re.Match) -> None:
    for symbol in match.group("symbols").split():
        db.add_new_symbol(symbol)


def parse_ecus(db: DBCDatabase, match: re.Match) -> None:
    for name in match.group("names").split():
        db.ensure_ecu(name)


def parse_signal(message: Message, line: str) -> Signal:
    """
    Build a signal from one SG_ line of a message block.

    Normalizes Motorola start bits to the LSB-relative convention used by the
    bit codec.

    Args:
        message: Message owning the signal
        line: The SG_ line

    Returns:
        Signal object, not yet registered in the message

    Raises:
        ValueError: If the line does not follow the signal grammar or holds
            malformed numbers
    """
    m = SIGNAL_PATTERN.fullmatch(line.strip())
    if not m:
        raise ValueError(f"Malformed signal line: {line.strip()!r}")

    declared_start = int(m.group("start"))
    length = int(m.group("length"))
    if length <= 0:
        raise ValueError(f"Signal {m.group('name')} has a bit length of {length}")
    byte_order = ByteOrder.from_flag(m.group("order"))
    value_type = ValueType(m.group("sign"))
    factor = float(m.group("factor"))
    offset = float(m.group("offset"))
    phys_min = float(m.group("min"))
    phys_max = float(m.group("max"))

    # [0|0] means "whole unscaled range"
    if phys_min == 0 and phys_max == 0:
        phys_max = float(raw_ceiling(length))

    norm_min, norm_max, resolution = normalized_range(phys_min, phys_max, factor, offset)

    receivers = [r for r in re.split(r"[\s,]+", m.group("receivers").strip()) if r]

    start_bit = declared_start
    if byte_order is ByteOrder.MOTOROLA:
        start_bit = motorola_to_lsb_start_bit(declared_start, length)

    return Signal(
        name=m.group("name"),
        message_id=message.message_id,
        ecu_name=message.ecu_name,
        start_bit=start_bit,
        bit_length=length,
        byte_order=byte_order,
        value_type=value_type,
        factor=factor,
        offset=offset,
        physical_min=phys_min,
        physical_max=phys_max,
        normalized_min=norm_min,
        normalized_max=norm_max,
        resolution=resolution,
        unit=m.group("unit"),
        declared_start_bit=declared_start,
        receivers=receivers,
        multiplexer=m.group("mux"),
        raw=line.strip(),
    )


def parse_message_block(db: DBCDatabase, match: re.Match) -> None:
    """
    Build a message and its signals from one BO_ block.

    Signals that do not fit the payload are skipped with a warning. Exported
    files commonly park orphan signals in a 0 byte pseudo-message
    (VECTOR__INDEPENDENT_SIG_MSG), which has to load.
    """
    frame_id = int(match.group("id"))
    message_id = canonical_message_id(frame_id)
    ecu = db.ensure_ecu(match.group("ecu"))

    message = Message(
        message_id=message_id,
        frame_id=frame_id,
        name=match.group("name"),
        byte_length=int(match.group("length")),
        ecu_name=ecu.name,
        raw=match.group(0).strip(),
    )
    db.add_message(message)

    for line in SIGNAL_LINE.finditer(match.group("signals")):
        signal = parse_signal(message, line.group(0))
        if not message.fits(signal):
            logger.warning(
                "Skipping signal %s: bit %d, length %d exceeds the %d byte payload of %s %s",
                signal.name, signal.declared_start_bit, signal.bit_length,
                message.byte_length, message.message_id, message.name,
            )
            continue
        message.add_signal(signal)
        for rx in signal.receivers:
            db.ensure_ecu(rx).add_rx_message(message.message_id)


def parse_comment(db: DBCDatabase, match: re.Match) -> None:
    # Only comments on existing signals are applied
    m = COMMENT_SIGNAL_PATTERN.match(match.group("body").strip())
    if not m:
        logger.debug("Ignoring comment: %s", match.group(0).strip()[:60])
        return
    message = db.messages.get(canonical_message_id(int(m.group("id"))))
    if message is None or m.group("signal") not in message.signals:
        logger.debug("Ignoring comment for unknown signal %s of %s", m.group("signal"), m.group("id"))
        return
    message.signals[m.group("signal")].function = m.group("text")


def parse_attribute_definition(db: DBCDatabase, match: re.Match) -> None:
    m = DEFINITION_PATTERN.match(match.group("body").strip())
    if not m:
        raise ValueError(f"Malformed attribute definition: {match.group(0).strip()!r}")

    name = m.group("name")
    attr_type = m.group("type")
    raw_settings = m.group("settings").strip()
    if attr_type.upper() == "ENUM":
        settings = [unquote(v) for v in raw_settings.split(",") if v.strip()]
    else:
        settings = raw_settings.split()

    scope = m.group("scope")
    if scope is None:
        db.add_attribute_value(name, DEFINITION, [attr_type, *settings])
        return

    db.add_scoped_definition(AttributeDefinition(name=name, scope=scope, attr_type=attr_type, settings=settings))
    if scope == "BO_" and name == SEND_TYPE_ATTRIBUTE:
        db.set_send_types(dict(enumerate(settings)))


def parse_attribute_default(db: DBCDatabase, match: re.Match) -> None:
    m = DEFAULT_PATTERN.match(match.group("body").strip())
    if not m:
        raise ValueError(f"Malformed attribute default: {match.group(0).strip()!r}")
    value = unquote(m.group("value"))
    if not value:
        logger.debug("Ignoring attribute default without value: %s", m.group("name"))
        return
    db.add_attribute_value(m.group("name"), DEFAULT, [value])


def _apply_message_attribute(db: DBCDatabase, message: Message, name: str, value: str) -> None:
    if name == CYCLE_TIME_ATTRIBUTE:
        cycle_time = int(value)
        if cycle_time < 0:
            raise ValueError(f"Negative cycle time for message {message.message_id}")
        message.cycle_time = cycle_time
    elif name == SEND_TYPE_ATTRIBUTE:
        label = db.send_type_label(int(value))
        if label is None:
            logger.warning("Unknown send type %s for message %s", value, message.message_id)
            label = value
        message.launch_type = label
    elif name == DELAY_TIME_ATTRIBUTE:
        message.delay_time = int(value)


def parse_attribute_setting(db: DBCDatabase, match: re.Match) -> None:
    m = SETTING_PATTERN.match(match.group("body").strip())
    if not m:
        raise ValueError(f"Malformed attribute setting: {match.group(0).strip()!r}")
    name = m.group("name")
    tokens = tokenize(m.group("rest"))
    if not tokens:
        raise ValueError(f"Attribute setting {name} has no value")

    scope = tokens[0]
    if scope == "BO_":
        if len(tokens) < 3:
            raise ValueError(f"Attribute setting {name} for BO_ needs a message id and a value")
        message = db.messages.get(canonical_message_id(int(tokens[1])))
        if message is not None:
            _apply_message_attribute(db, message, name, tokens[2])
    elif scope == "SG_":
        if len(tokens) < 4:
            raise ValueError(f"Attribute setting {name} for SG_ needs a message id, a signal and a value")
        message = db.messages.get(canonical_message_id(int(tokens[1])))
        if message is not None and tokens[2] in message.signals:
            signal = message.signals[tokens[2]]
            signal.attributes[name] = " ".join(tokens[3:])
            if name == START_VALUE_ATTRIBUTE:
                try:
                    signal.default_value = int(float(tokens[3]))
                except ValueError:
                    logger.warning("Non numeric start value %r for signal %s", tokens[3], signal.name)
    elif scope == "BU_":
        if len(tokens) < 3:
            raise ValueError(f"Attribute setting {name} for BU_ needs an ECU and a value")
        value = " ".join(tokens[2:])
        ecu = db.ecus.get(tokens[1])
        if ecu is not None:
            ecu.attributes[name] = value
        db.add_attribute_value(name, SETTING, [value])
    elif scope == "EV_":
        logger.debug("Ignoring environment variable attribute %s", name)
    else:
        db.add_attribute_value(name, SETTING, [" ".join(tokens)])


def parse_value_table(db: DBCDatabase, match: re.Match) -> None:
    message = db.messages.get(canonical_message_id(int(match.group("id"))))
    signal_name = match.group("signal")
    if message is None or signal_name not in message.signals:
        logger.debug("Ignoring value table for unknown signal %s of %s", signal_name, match.group("id"))
        return
    descriptions = message.signals[signal_name].value_descriptions
    for value, label in VALUE_PAIR_PATTERN.findall(match.group("body")):
        descriptions[int(value)] = label


SectionParser = Callable[[DBCDatabase, re.Match], None]

# later sections reference entities created by earlier ones
SECTION_ORDER: tuple[tuple[StatementKind, SectionParser], ...] = (
    (StatementKind.NEW_SYMBOLS, parse_new_symbols),
    (StatementKind.ECUS, parse_ecus),
    (StatementKind.MESSAGE, parse_message_block),
    (StatementKind.COMMENT, parse_comment),
    (StatementKind.ATTRIBUTE_DEFINITION, parse_attribute_definition),
    (StatementKind.ATTRIBUTE_DEFAULT, parse_attribute_default),
    (StatementKind.ATTRIBUTE_SETTING, parse_attribute_setting),
    (StatementKind.VALUE_TABLE, parse_value_table),
)


# --------------------------
# Top-level parser
# --------------------------

def _require_file(path: str | Path) -> Path:
    p = Path(path)
    if not p.is_file():
        raise FileNotFoundError(errno.ENOENT, "The given database file does not exist", str(path))
    return p


class DBCParser:
    """
    Main DBC parser class that converts DBC text into a ``DBCDatabase``.

    Args:
        encoding: Text encoding used to read files
        errors: Decoding error handler passed to ``Path.read_text``
    """
    def __init__(self, encoding: str = "utf-8", errors: str = "replace") -> None:
        self.encoding = encoding
        self.errors = errors

    def parse_text(self, text: str, filename: str | None = None) -> DBCDatabase:
        db = DBCDatabase(filename=filename)
        self.parse_into(db, text)
        return db

    def parse_into(self, db: DBCDatabase, text: str) -> DBCDatabase:
        """
        Replace the content of ``db`` with the statements parsed from ``text``.

        Raises:
            DatabaseLoadingError: On the first statement that fails to parse.
                ``partial_database`` is ``db`` as populated so far.
        """
        db.reset()
        extractor = GrammarExtractor(text)
        for kind, handler in SECTION_ORDER:
            count = 0
            for match in extractor.extract(kind):
                try:
                    handler(db, match)
                except Exception as e:
                    logger.error("Failed to parse %s statement: %s", kind.name, e)
                    raise DatabaseLoadingError(
                        f"Parsing of the {kind.name} section failed: {e}",
                        partial_database=db,
                        statement_kind=kind.name,
                        statement=match.group(0),
                    ) from e
                count += 1
            logger.debug("Parsed %d %s statements", count, kind.name)

        logger.info(
            "Loaded %s: %d ECUs, %d messages",
            db.filename or "<text>", len(db.ecus), len(db.messages),
        )
        return db

    def parse_file_into(self, db: DBCDatabase, path: str | Path) -> DBCDatabase:
        p = _require_file(path)
        text = p.read_text(encoding=self.encoding, errors=self.errors)
        db.filename = os.fspath(path)
        return self.parse_into(db, text)

    def parse_file(self, path: str | Path) -> DBCDatabase:
        """
        Parse a DBC file from disk.

        Raises:
            FileNotFoundError: If the file does not exist
            DatabaseLoadingError: If a statement cannot be parsed
        """
        return self.parse_file_into(DBCDatabase(filename=os.fspath(path)), path)

    def try_parse_file(self, path: str | Path) -> tuple[DBCDatabase | None, bool]:
        """
        Parse a DBC file, falling back to the partial database on failure.

        Returns:
            Tuple of (database, partial). ``partial`` is True when parsing
            stopped early and the database only holds what came before.
        """
        db = DBCDatabase(filename=os.fspath(path))
        try:
            self.parse_file_into(db, path)
        except DatabaseLoadingError as e:
            return e.partial_database, True
        return db, False

    async def parse_file_into_async(self, db: DBCDatabase, path: str | Path) -> DBCDatabase:
        _require_file(path)
        return await asyncio.to_thread(self.parse_file_into, db, path)

    async def parse_file_async(self, path: str | Path) -> DBCDatabase:
        _require_file(path)
        return await asyncio.to_thread(self.parse_file, path)

    async def try_parse_file_async(self, path: str | Path) -> tuple[DBCDatabase | None, bool]:
        _require_file(path)
        return await asyncio.to_thread(self.try_parse_file, path)


# --------------------------
# Convenience entry points
# --------------------------

def parse_text(text: str) -> DBCDatabase:
    return DBCParser().parse_text(text)


def load_file(path: str | Path, parse: bool = True, **parser_options) -> DBCDatabase:
    """
    Build a database from a DBC file.

    Args:
        path: DBC file path
        parse: Set to False to only bind the file; call ``load()`` later
        **parser_options: Forwarded to ``DBCParser``

    Raises:
        FileNotFoundError: If the file does not exist
        DatabaseLoadingError: If a statement cannot be parsed
    """
    _require_file(path)
    db = DBCDatabase(filename=os.fspath(path))
    if parse:
        DBCParser(**parser_options).parse_file_into(db, path)
    return db


async def load_file_async(path: str | Path, **parser_options) -> DBCDatabase:
    return await DBCParser(**parser_options).parse_file_async(path)


def try_load_file(path: str | Path, **parser_options) -> tuple[DBCDatabase | None, bool]:
    return DBCParser(**parser_options).try_parse_file(path)


async def try_load_file_async(path: str | Path, **parser_options) -> tuple[DBCDatabase | None, bool]:
    return await DBCParser(**parser_options).try_parse_file_async(path)
