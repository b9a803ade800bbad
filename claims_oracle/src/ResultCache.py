"""Read-only cache of finalized query results for consumer logic.

The cache mirrors finalized aggregates published by the RequestBroker and
never originates state. An absent entry means "not ready, retry later",
which consumers must keep distinct from a finalized negative answer.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .exceptions import ResultNotReadyError
from .LogicalQuery import LogicalQuery, QueryKind

logger = logging.getLogger(__name__)

MINUTES_PER_HOUR = 60


@dataclass(frozen=True)
class CachedResult:
    """Finalized answer to a logical query.

    :ivar query_key: Cache key of the query.
    :ivar kind: Query kind.
    :ivar aggregate_value: Mean delay minutes or majority boolean.
    :ivar derived_flag: Delayed/lost flag.
    :ivar response_count: Answers folded at finalization.
    :ivar expected_count: Providers the query was fanned out to.
    :ivar finalized_at: Time of finalization.
    :ivar reason: Finalization condition that applied.
    """

    query_key: str
    kind: QueryKind
    aggregate_value: int | bool
    derived_flag: bool
    response_count: int
    expected_count: int
    finalized_at: float
    reason: str

    @property
    def delay_hours(self) -> int | None:
        """Whole hours of delay for flight queries, None for baggage."""
        if not self.kind.is_numeric:
            return None
        return int(self.aggregate_value) // MINUTES_PER_HOUR


@dataclass(frozen=True)
class ConsumerView:
    """Consumer read contract: ``data_received`` is False until finalized."""

    data_received: bool
    aggregate_value: int | bool | None = None
    derived_flag: bool = False


class ResultCache:
    """Keyed store of finalized results."""

    def __init__(self) -> None:
        self._results: dict[str, CachedResult] = {}

    @staticmethod
    def _key(query: LogicalQuery | str) -> str:
        return query.query_key if isinstance(query, LogicalQuery) else query

    def store(self, result: CachedResult) -> bool:
        """Publish a finalized result. The first write for a key wins.

        :param result: Finalized result.
        :returns: True if stored, False if a result already existed.
        """
        if result.query_key in self._results:
            logger.debug(f"{result.query_key}: result already cached, keeping first")
            return False
        self._results[result.query_key] = result
        return True

    def lookup(self, query: LogicalQuery | str) -> CachedResult | None:
        """Get the finalized result for a query, or None if absent."""
        return self._results.get(self._key(query))

    def read(self, query: LogicalQuery | str) -> ConsumerView:
        """Get the consumer view of a query.

        .. code-block:: python

            >>> cache = ResultCache()
            >>> cache.read("0x01")
            ConsumerView(data_received=False, aggregate_value=None, derived_flag=False)
        """
        result = self.lookup(query)
        if result is None:
            return ConsumerView(data_received=False)
        return ConsumerView(
            data_received=True,
            aggregate_value=result.aggregate_value,
            derived_flag=result.derived_flag,
        )

    def require(self, query: LogicalQuery | str) -> CachedResult:
        """Get the finalized result or raise.

        :raises ResultNotReadyError: If the query is not finalized yet.
        """
        result = self.lookup(query)
        if result is None:
            raise ResultNotReadyError(self._key(query))
        return result

    def __contains__(self, query: object) -> bool:
        if not isinstance(query, (LogicalQuery, str)):
            return False
        return self.lookup(query) is not None

    def __len__(self) -> int:
        return len(self._results)
