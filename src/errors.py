"""
Exceptions raised by the DBC parser and the message model.
"""

from __future__ import annotations

from typing import Any


class DBCError(Exception):
    """Base class for every error raised by this package."""


class DatabaseLoadingError(DBCError):
    """
    Raised when a statement of a DBC file cannot be parsed.

    Parsing stops at the first failing statement. Whatever was committed to the
    database before that point stays available through ``partial_database`` so
    best-effort callers can still use it.

    Attributes:
        partial_database: The database populated up to the failure
        statement_kind: Name of the statement kind being parsed (e.g. "MESSAGE")
        statement: Source text of the offending statement
    """

    def __init__(
        self,
        message: str,
        partial_database: Any = None,
        statement_kind: str | None = None,
        statement: str = "",
    ) -> None:
        super().__init__(message)
        self.partial_database = partial_database
        self.statement_kind = statement_kind
        self.statement = statement

    def __str__(self) -> str:
        msg = super().__str__()
        if self.statement:
            first = self.statement.strip().splitlines()[0] if self.statement.strip() else ""
            return f"{msg} (in {self.statement_kind}: {first!r})"
        return msg


class MessageUpdateError(DBCError):
    """Raised when a message update is started while another one is running."""
