"""Data-path selection and value coercion for provider responses.

A provider's data path is a dotted selector into its JSON response, with
numeric segments indexing into lists:

.. code-block:: python

    >>> extract({"data": {"delayMinutes": 45}}, "data.delayMinutes")
    45
    >>> extract({"flights": [{"delay": 12}]}, "flights.0.delay")
    12
    >>> coerce("45.9", QueryKind.FLIGHT_DELAY)
    45
    >>> coerce("lost", QueryKind.BAGGAGE_STATUS)
    True
"""

from __future__ import annotations

import math
from typing import Any

from .LogicalQuery import QueryKind

TRUE_WORDS = frozenset({"true", "yes", "1", "lost", "delayed"})
FALSE_WORDS = frozenset({"false", "no", "0", "found", "ontime", "on_time", "delivered"})


class ExtractionError(ValueError):
    """Raised when a response does not contain a usable answer."""

    pass


def extract(document: Any, path: str) -> Any:
    """Select a value from a decoded JSON document.

    :param document: Decoded JSON value.
    :param path: Dotted selector, e.g. "data.delayMinutes".
    :returns: The selected value.
    :raises ExtractionError: If any segment is missing.
    """
    current = document
    for segment in path.split("."):
        if isinstance(current, dict):
            if segment not in current:
                raise ExtractionError(f"Missing field '{segment}' in path '{path}'")
            current = current[segment]
        elif isinstance(current, list):
            try:
                current = current[int(segment)]
            except (ValueError, IndexError) as e:
                raise ExtractionError(f"Bad index '{segment}' in path '{path}'") from e
        else:
            raise ExtractionError(
                f"Cannot select '{segment}' from {type(current).__name__} in path '{path}'"
            )
    return current


def _to_minutes(value: Any) -> int:
    if isinstance(value, bool) or value is None:
        raise ExtractionError(f"Expected delay minutes, got {value!r}")
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError as e:
            raise ExtractionError(f"Expected delay minutes, got {value!r}") from e
    if not isinstance(value, (int, float)) or not math.isfinite(value):
        raise ExtractionError(f"Expected delay minutes, got {value!r}")
    if value < 0:
        raise ExtractionError(f"Delay must not be negative, got {value!r}")
    return int(math.floor(value))


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        word = value.strip().lower()
        if word in TRUE_WORDS:
            return True
        if word in FALSE_WORDS:
            return False
    raise ExtractionError(f"Expected boolean status, got {value!r}")


def coerce(value: Any, kind: QueryKind) -> int | bool:
    """Coerce an extracted value to the answer type of a query kind.

    :param value: Raw extracted value.
    :param kind: Query kind.
    :returns: Non-negative int minutes or bool.
    :raises ExtractionError: If the value cannot be coerced.
    """
    if kind.is_numeric:
        return _to_minutes(value)
    return _to_bool(value)
