"""
DBC Parser package for parsing CAN database (DBC) files.
"""

from .bit_codec import ByteOrder, ValueType
from .dbc_model import (
    DBCDatabase,
    ECU,
    Message,
    Signal,
    AttributeDefinition,
    canonical_message_id,
)
from .dbc_parser import (
    DBCParser,
    GrammarExtractor,
    StatementKind,
    load_file,
    load_file_async,
    try_load_file,
    try_load_file_async,
    parse_text,
)
from .errors import DBCError, DatabaseLoadingError, MessageUpdateError

__all__ = [
    "DBCParser",
    "DBCDatabase",
    "ECU",
    "Message",
    "Signal",
    "AttributeDefinition",
    "ByteOrder",
    "ValueType",
    "GrammarExtractor",
    "StatementKind",
    "canonical_message_id",
    "load_file",
    "load_file_async",
    "try_load_file",
    "try_load_file_async",
    "parse_text",
    "DBCError",
    "DatabaseLoadingError",
    "MessageUpdateError",
]
