"""LogicalQuery: Canonical representation of a real-world claims question.

A query is a (subject, time window, description) tuple, e.g. "was flight
SQ100 departing at T delayed" or "was the green suitcase on SQ100 lost".
Queries are canonicalized so identical questions always map to the same
cache key:
    keccak256("<kind>/<SUBJECT>/<unix_seconds>/<description>")

.. code-block:: python

    >>> q1 = LogicalQuery.flight(" sq100 ", "2025-03-30T15:00:00Z")
    >>> q2 = LogicalQuery.flight("SQ100", 1743346800)
    >>> q1 == q2
    True
    >>> q1.canonical()
    'flight_delay/SQ100/1743346800/'
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from enum import Enum

from web3 import Web3


class QueryKind(str, Enum):
    """Kind of answer a query expects from providers."""

    FLIGHT_DELAY = "flight_delay"  # integer delay minutes
    BAGGAGE_STATUS = "baggage_status"  # True when the item is lost

    @property
    def is_numeric(self) -> bool:
        """Check if providers answer this kind with a number."""
        return self is QueryKind.FLIGHT_DELAY


def normalize_time_window(value: int | str | datetime) -> int:
    """Normalize a time window to integer unix seconds.

    :param value: Unix timestamp (int or digit string), ISO-8601 string, or
        datetime. Naive datetimes are treated as UTC.
    :returns: Unix timestamp in seconds.
    :raises ValueError: If the value cannot be parsed.
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid time window: {value!r}")
    if isinstance(value, int):
        if value < 0:
            raise ValueError(f"Time window must not be negative: {value}")
        return value
    if isinstance(value, str):
        text = value.strip().strip("'\"")
        if text.isdigit():
            return int(text)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            value = datetime.fromisoformat(text)
        except ValueError as e:
            raise ValueError(f"Invalid time window: {value!r}") from e
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return int(value.timestamp())
    raise ValueError(f"Invalid time window: {value!r}")


class LogicalQuery:
    """A canonicalized claims question used as fan-out unit and cache key.

    :ivar kind: Expected answer kind.
    :ivar subject: Upper-cased subject (flight number).
    :ivar time_window: Unix seconds of the departure/claim time.
    :ivar description: Lower-cased auxiliary description (baggage item).
    """

    def __init__(
        self,
        kind: QueryKind | str,
        subject: str,
        time_window: int | str | datetime,
        description: str = "",
    ) -> None:
        """Initialize and canonicalize a query.

        :param kind: Query kind or its string value.
        :param subject: Subject of the question (e.g., "SQ100").
        :param time_window: Departure or claim time.
        :param description: Auxiliary description, required for baggage.
        :raises ValueError: If any component is invalid.
        """
        self.kind = QueryKind(kind)
        self.subject = subject.strip().upper()
        if not self.subject or "/" in self.subject:
            raise ValueError(f"Invalid query subject: {subject!r}")
        self.time_window = normalize_time_window(time_window)
        self.description = re.sub(r"\s+", " ", description.strip()).lower()
        if self.kind is QueryKind.BAGGAGE_STATUS and not self.description:
            raise ValueError("Baggage queries require an item description")

    @classmethod
    def flight(cls, flight_number: str, departure: int | str | datetime) -> LogicalQuery:
        """Build a flight delay query."""
        return cls(QueryKind.FLIGHT_DELAY, flight_number, departure)

    @classmethod
    def baggage(
        cls,
        flight_number: str,
        departure: int | str | datetime,
        description: str,
    ) -> LogicalQuery:
        """Build a baggage status query."""
        return cls(QueryKind.BAGGAGE_STATUS, flight_number, departure, description)

    def canonical(self) -> str:
        """Return the canonical string encoding of this query."""
        return f"{self.kind.value}/{self.subject}/{self.time_window}/{self.description}"

    @property
    def query_key(self) -> str:
        """Return the 0x-prefixed keccak256 hash of the canonical encoding."""
        return Web3.to_hex(Web3.keccak(text=self.canonical()))

    def __str__(self) -> str:
        return self.canonical()

    def __repr__(self) -> str:
        return (
            f"LogicalQuery({self.kind.value!r}, {self.subject!r}, "
            f"{self.time_window!r}, {self.description!r})"
        )

    def __hash__(self) -> int:
        return hash(self.canonical())

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, LogicalQuery):
            return NotImplemented
        return self.canonical() == other.canonical()
