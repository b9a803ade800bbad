"""Aggregator: Folds provider responses into one trusted answer per query.

Algorithm:
    - Flight delay (numeric): running mean of all received delay minutes,
      floored to whole minutes. The derived "delayed" flag is set when the
      mean reaches ``delay_threshold_minutes``.
    - Baggage status (boolean): majority vote. A tie is never resolved on
      its own; it stays pending until a timeout with ``tie_resolution``.
    - Finalization happens exactly once, when every provider has answered,
      or when at least ``min_quorum`` answers arrived and
      ``response_timeout`` seconds passed since fan-out.

Every decision depends only on the ordered (value, timestamp) history, so an
aggregate can be rebuilt deterministically with :meth:`Aggregator.replay`.

.. code-block:: python

    >>> agg = Aggregator(AggregationPolicy(delay_threshold_minutes=60))
    >>> state = agg.new_state("0xabc", QueryKind.FLIGHT_DELAY, 3, created_at=0)
    >>> agg.fold(state, 50, at=1).finalized
    False
    >>> agg.fold(state, 70, at=2).finalized
    False
    >>> result = agg.fold(state, 90, at=3)
    >>> result.finalized, result.aggregate, state.derived_flag
    (True, 70, True)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable

from .LogicalQuery import QueryKind

logger = logging.getLogger(__name__)

REASON_ALL_RESPONSES = "all_responses"
REASON_QUORUM_TIMEOUT = "quorum_timeout"


@dataclass(frozen=True)
class AggregationPolicy:
    """Configurable aggregation and finalization policy.

    :ivar delay_threshold_minutes: Mean delay at or above which a flight
        counts as delayed.
    :ivar min_quorum: Minimum answers for timeout-based finalization.
        None requires every provider (timeout only breaks ties).
    :ivar response_timeout: Seconds after fan-out after which missing
        providers are presumed non-responsive. None disables timeouts.
    :ivar tie_resolution: Value a boolean tie resolves to on timeout.
        None keeps tied queries pending forever.
    """

    delay_threshold_minutes: int = 60
    min_quorum: int | None = None
    response_timeout: float | None = None
    tie_resolution: bool | None = None

    def __post_init__(self) -> None:
        if self.delay_threshold_minutes < 0:
            raise ValueError("delay_threshold_minutes must not be negative")
        if self.min_quorum is not None and self.min_quorum < 1:
            raise ValueError("min_quorum must be at least 1")
        if self.response_timeout is not None and self.response_timeout <= 0:
            raise ValueError("response_timeout must be positive if specified")


@dataclass
class AggregateState:
    """Running aggregate for one logical query.

    :ivar query_key: Key of the owning query.
    :ivar kind: Query kind.
    :ivar expected_count: Providers the query was fanned out to.
    :ivar created_at: Fan-out time.
    :ivar received_count: Answers folded before finalization.
    :ivar value_sum: Running sum of numeric answers.
    :ivar true_votes: Boolean answers reporting True.
    :ivar false_votes: Boolean answers reporting False.
    :ivar finalized: Whether the aggregate is authoritative.
    :ivar finalized_value: Mean minutes or majority value once finalized.
    :ivar derived_flag: Delayed/lost flag once finalized.
    :ivar finalized_at: Time of finalization.
    :ivar reason: Which condition finalized the query.
    :ivar late_responses: Answers accepted after finalization (audit only).
    """

    query_key: str
    kind: QueryKind
    expected_count: int
    created_at: float
    received_count: int = 0
    value_sum: int = 0
    true_votes: int = 0
    false_votes: int = 0
    finalized: bool = False
    finalized_value: int | bool | None = None
    derived_flag: bool | None = None
    finalized_at: float | None = None
    reason: str | None = None
    late_responses: int = 0


@dataclass(frozen=True)
class FoldResult:
    """Outcome of folding one answer.

    :ivar finalized: Whether the query is finalized after this fold.
    :ivar aggregate: Current (or finalized) aggregate value, None if unknown.
    :ivar newly_finalized: True only on the fold that finalized the query.
    """

    finalized: bool
    aggregate: int | bool | None
    newly_finalized: bool = False


def is_valid_value(kind: QueryKind, value: object) -> bool:
    """Check if a value has the right type for a query kind.

    :param kind: Query kind.
    :param value: Candidate answer.
    :returns: True for non-negative ints on numeric kinds, bools otherwise.
    """
    if kind.is_numeric:
        return isinstance(value, int) and not isinstance(value, bool) and value >= 0
    return isinstance(value, bool)


class Aggregator:
    """Stateless fold/finalize logic over :class:`AggregateState` instances.

    :ivar policy: Aggregation policy in force.
    """

    def __init__(self, policy: AggregationPolicy | None = None) -> None:
        self.policy = policy or AggregationPolicy()

    def new_state(
        self,
        query_key: str,
        kind: QueryKind,
        expected_count: int,
        created_at: float,
    ) -> AggregateState:
        """Create the initial aggregate for a fan-out.

        :raises ValueError: If expected_count is less than 1.
        """
        if expected_count < 1:
            raise ValueError("expected_count must be at least 1")
        return AggregateState(
            query_key=query_key,
            kind=kind,
            expected_count=expected_count,
            created_at=created_at,
        )

    def current_value(self, state: AggregateState) -> int | bool | None:
        """Get the running aggregate.

        :returns: Floored mean, majority value, or None when no answers have
            arrived or the vote is tied.
        """
        if state.finalized:
            return state.finalized_value
        if state.received_count == 0:
            return None
        if state.kind.is_numeric:
            return state.value_sum // state.received_count
        if state.true_votes == state.false_votes:
            return None
        return state.true_votes > state.false_votes

    def derive_flag(self, kind: QueryKind, value: int | bool) -> bool:
        """Derive the consumer-facing flag from a finalized value."""
        if kind.is_numeric:
            return value >= self.policy.delay_threshold_minutes
        return bool(value)

    def fold(self, state: AggregateState, value: int | bool, at: float) -> FoldResult:
        """Fold one provider answer into the aggregate.

        :param state: Aggregate to update in place.
        :param value: Validated answer (see :func:`is_valid_value`).
        :param at: Time the answer was accepted.
        :returns: FoldResult describing the aggregate after the fold.
        :raises ValueError: If the value type does not match the query kind.
        """
        if not is_valid_value(state.kind, value):
            raise ValueError(f"Invalid value {value!r} for {state.kind.value}")

        if state.finalized:
            state.late_responses += 1
            logger.debug(
                f"{state.query_key}: late response {value!r} ignored "
                f"(finalized={state.finalized_value!r})"
            )
            return FoldResult(True, state.finalized_value)

        state.received_count += 1
        if state.kind.is_numeric:
            state.value_sum += value
        elif value:
            state.true_votes += 1
        else:
            state.false_votes += 1

        candidate = self.current_value(state)
        if state.received_count >= state.expected_count and candidate is not None:
            self._finalize(state, candidate, at, REASON_ALL_RESPONSES)
            return FoldResult(True, candidate, newly_finalized=True)

        if self._timeout_reached(state, at):
            resolved = self._timeout_value(state)
            if resolved is not None:
                self._finalize(state, resolved, at, REASON_QUORUM_TIMEOUT)
                return FoldResult(True, resolved, newly_finalized=True)

        return FoldResult(False, candidate)

    def expire(self, state: AggregateState, now: float) -> bool:
        """Apply timeout-based finalization to a pending aggregate.

        :param state: Aggregate to check.
        :param now: Current time.
        :returns: True if this call finalized the aggregate.
        """
        if state.finalized or not self._timeout_reached(state, now):
            return False
        resolved = self._timeout_value(state)
        if resolved is None:
            return False
        self._finalize(state, resolved, now, REASON_QUORUM_TIMEOUT)
        return True

    def replay(
        self,
        query_key: str,
        kind: QueryKind,
        expected_count: int,
        created_at: float,
        history: Iterable[tuple[int | bool | None, float]],
    ) -> AggregateState:
        """Rebuild an aggregate from its ordered event history.

        :param history: (value, at) pairs in acceptance order. A None value
            marks a timeout sweep at ``at``.
        :returns: Freshly folded AggregateState.
        """
        state = self.new_state(query_key, kind, expected_count, created_at)
        for value, at in history:
            if value is None:
                self.expire(state, at)
            else:
                self.fold(state, value, at)
        return state

    def _timeout_reached(self, state: AggregateState, now: float) -> bool:
        timeout = self.policy.response_timeout
        if timeout is None or now - state.created_at < timeout:
            return False
        quorum = self.policy.min_quorum or state.expected_count
        return state.received_count >= min(quorum, state.expected_count)

    def _timeout_value(self, state: AggregateState) -> int | bool | None:
        value = self.current_value(state)
        if value is None and state.received_count > 0 and not state.kind.is_numeric:
            return self.policy.tie_resolution
        return value

    def _finalize(
        self,
        state: AggregateState,
        value: int | bool,
        at: float,
        reason: str,
    ) -> None:
        state.finalized = True
        state.finalized_value = value
        state.derived_flag = self.derive_flag(state.kind, value)
        state.finalized_at = at
        state.reason = reason
        logger.info(
            f"{state.query_key}: finalized {state.kind.value}={value!r} "
            f"flag={state.derived_flag} ({reason}, "
            f"{state.received_count}/{state.expected_count} responses)"
        )
