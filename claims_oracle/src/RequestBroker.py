"""RequestBroker: Fans queries out to providers and collects their answers.

The broker is the single serializing authority of the protocol. It owns every
RequestRecord and AggregateState, and it is the only writer of the
ResultCache. Calls are applied one at a time, so no locking is needed inside.

Flow:
    1. ``submit_query`` canonicalizes the query, short-circuits on a cached
       result, otherwise snapshots the registry and creates one request per
       provider, emitting a FanOutNotification for each.
    2. Listener workers answer with ``submit_fulfillment`` (signed) or
       ``fulfill`` (caller identity already authenticated).
    3. Each accepted answer is folded by the Aggregator; on finalization the
       result is stored in the ResultCache and a FinalizedNotification is
       emitted.

Request ids are ``solidityKeccak(bytes32 queryKey, address provider,
uint256 nonce)`` with a broker-wide nonce, so two fan-outs never collide.
"""

from __future__ import annotations

import itertools
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Union

from web3 import Web3

from .Aggregator import AggregateState, AggregationPolicy, Aggregator, is_valid_value
from .exceptions import (
    AlreadyFulfilledError,
    InvalidSignatureError,
    InvalidValueError,
    NoProvidersRegisteredError,
    NotAuthorizedProviderError,
    UnknownRequestError,
)
from .LogicalQuery import LogicalQuery
from .Messages import FanOutNotification, FinalizedNotification, Fulfillment, recover_signer
from .ProviderRegistry import ProviderRecord, ProviderRegistry
from .ResultCache import CachedResult, ConsumerView, ResultCache

logger = logging.getLogger(__name__)

Notification = Union[FanOutNotification, FinalizedNotification]


@dataclass
class RequestRecord:
    """One (query, provider) fan-out leaf. Never deleted.

    :ivar request_id: Unique request identifier.
    :ivar query_key: Key of the owning query.
    :ivar provider: Snapshot of the target provider at fan-out time.
    :ivar nonce: Broker nonce used to derive the id.
    :ivar created_at: Fan-out time.
    :ivar fulfilled: Whether an answer was accepted.
    :ivar value: Accepted answer.
    :ivar fulfilled_at: Time the answer was accepted.
    :ivar sequence: Broker-wide acceptance order of the answer.
    """

    request_id: str
    query_key: str
    provider: ProviderRecord
    nonce: int
    created_at: float
    fulfilled: bool = False
    value: int | bool | None = None
    fulfilled_at: float | None = None
    sequence: int | None = None


@dataclass(frozen=True)
class QuerySubmission:
    """Outcome of ``submit_query``.

    :ivar query_key: Canonical key of the query.
    :ivar request_ids: Requests of the (possibly pre-existing) fan-out.
    :ivar cached_result: Finalized result when the query was already answered.
    :ivar created: True only when this call performed a new fan-out.
    """

    query_key: str
    request_ids: tuple[str, ...] = ()
    cached_result: CachedResult | None = None
    created: bool = False


@dataclass
class _QueryEntry:
    query: LogicalQuery
    request_ids: list[str]
    aggregate: AggregateState
    sweeps: list[tuple[int, float]] = field(default_factory=list)


class RequestBroker:
    """Serializing request broker and sole owner of protocol state.

    :ivar registry: Provider registry snapshotted on every fan-out.
    :ivar cache: Result cache mirrored on finalization.
    :ivar aggregator: Fold/finalize logic.
    :ivar clock: Callable returning the current unix time.
    """

    def __init__(
        self,
        registry: ProviderRegistry | None = None,
        cache: ResultCache | None = None,
        policy: AggregationPolicy | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.registry = registry if registry is not None else ProviderRegistry(clock=clock)
        self.cache = cache if cache is not None else ResultCache()
        self.aggregator = Aggregator(policy)
        self.clock = clock

        self._requests: dict[str, RequestRecord] = {}
        self._queries: dict[str, _QueryEntry] = {}
        self._nonce = itertools.count(1)
        self._sequence = itertools.count(1)
        self._listeners: list[Callable[[Notification], None]] = []

    # Notifications

    def subscribe(self, listener: Callable[[Notification], None]) -> None:
        """Register a callback receiving every emitted notification in order."""
        self._listeners.append(listener)

    def unsubscribe(self, listener: Callable[[Notification], None]) -> None:
        """Remove a previously registered callback."""
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _emit(self, notification: Notification) -> None:
        for listener in list(self._listeners):
            try:
                listener(notification)
            except Exception as exc:  # a broken subscriber must not roll back state
                logger.warning(f"Notification listener {listener!r} raised {exc}")

    def _notification_for(self, record: RequestRecord, query: LogicalQuery) -> FanOutNotification:
        return FanOutNotification(
            request_id=record.request_id,
            provider_id=record.provider.provider_id,
            url=record.provider.bind_url(query),
            data_path=record.provider.data_path,
            kind=query.kind,
            subject=query.subject,
            time_window=query.time_window,
            description=query.description,
            query_key=record.query_key,
        )

    # Queries

    def submit_query(self, query: LogicalQuery) -> QuerySubmission:
        """Fan a query out to every registered provider.

        :param query: Logical query (canonicalized on construction).
        :returns: QuerySubmission; ``cached_result`` is set when the query is
            already finalized, in which case no requests are created.
        :raises NoProvidersRegisteredError: If the registry is empty.
        """
        query_key = query.query_key

        cached = self.cache.lookup(query_key)
        if cached is not None:
            logger.debug(f"{query}: served from result cache")
            return QuerySubmission(query_key=query_key, cached_result=cached)

        entry = self._queries.get(query_key)
        if entry is not None:
            logger.debug(f"{query}: already pending, no new fan-out")
            return QuerySubmission(query_key=query_key, request_ids=tuple(entry.request_ids))

        providers = self.registry.list_providers()
        if not providers:
            raise NoProvidersRegisteredError(f"No providers registered for {query}")

        now = self.clock()
        records: list[RequestRecord] = []
        for provider in providers:
            nonce = next(self._nonce)
            request_id = Web3.to_hex(
                Web3.solidity_keccak(
                    ["bytes32", "address", "uint256"],
                    [query_key, provider.provider_id, nonce],
                )
            )
            records.append(
                RequestRecord(
                    request_id=request_id,
                    query_key=query_key,
                    provider=provider,
                    nonce=nonce,
                    created_at=now,
                )
            )

        aggregate = self.aggregator.new_state(query_key, query.kind, len(records), now)
        entry = _QueryEntry(
            query=query,
            request_ids=[r.request_id for r in records],
            aggregate=aggregate,
        )
        for record in records:
            self._requests[record.request_id] = record
        self._queries[query_key] = entry

        logger.info(f"{query}: fanned out to {len(records)} providers ({query_key})")
        for record in records:
            self._emit(self._notification_for(record, query))

        return QuerySubmission(
            query_key=query_key,
            request_ids=tuple(entry.request_ids),
            created=True,
        )

    def retry_query(self, query: LogicalQuery) -> list[str]:
        """Re-emit notifications for the unfulfilled requests of a pending query.

        No new requests are created, so retries never double count.

        :returns: Request ids that were re-notified.
        """
        entry = self._queries.get(query.query_key)
        if entry is None or entry.aggregate.finalized:
            return []
        pending = [
            self._requests[rid] for rid in entry.request_ids if not self._requests[rid].fulfilled
        ]
        for record in pending:
            self._emit(self._notification_for(record, entry.query))
        logger.info(f"{entry.query}: re-notified {len(pending)} pending requests")
        return [r.request_id for r in pending]

    # Fulfillments

    def fulfill(self, request_id: str, value: int | bool, caller_identity: str) -> AggregateState:
        """Accept an answer for a request.

        :param request_id: Request being answered.
        :param value: Answer (int minutes or bool, by query kind).
        :param caller_identity: Authenticated address of the caller.
        :returns: The query's aggregate after folding.
        :raises UnknownRequestError: If the request does not exist.
        :raises NotAuthorizedProviderError: If the caller is not the target.
        :raises AlreadyFulfilledError: If the request was already answered.
        :raises InvalidValueError: If the value does not match the query kind.
        """
        record = self._requests.get(request_id)
        if record is None:
            raise UnknownRequestError(request_id)

        caller = (
            Web3.to_checksum_address(caller_identity)
            if Web3.is_address(caller_identity)
            else caller_identity
        )
        if caller != record.provider.provider_id:
            raise NotAuthorizedProviderError(request_id, caller_identity)

        if record.fulfilled:
            raise AlreadyFulfilledError(request_id)

        entry = self._queries[record.query_key]
        if not is_valid_value(entry.query.kind, value):
            raise InvalidValueError(request_id, value)

        now = self.clock()
        record.fulfilled = True
        record.value = value
        record.fulfilled_at = now
        record.sequence = next(self._sequence)

        result = self.aggregator.fold(entry.aggregate, value, now)
        logger.debug(
            f"{request_id}: accepted {value!r} from {caller} "
            f"({entry.aggregate.received_count}/{entry.aggregate.expected_count})"
        )
        if result.newly_finalized:
            self._publish(entry)
        return entry.aggregate

    def submit_fulfillment(self, fulfillment: Fulfillment) -> AggregateState:
        """Accept a signed answer, deriving the caller from the signature.

        :raises InvalidSignatureError: If the signer cannot be recovered.
        """
        try:
            signer = recover_signer(fulfillment)
        except ValueError as e:
            raise InvalidSignatureError(fulfillment.request_id) from e
        return self.fulfill(fulfillment.request_id, fulfillment.value, signer)

    def finalize_expired(self, now: float | None = None) -> list[str]:
        """Apply timeout-based finalization to every pending query.

        :param now: Sweep time (defaults to the broker clock).
        :returns: Keys of queries finalized by this sweep.
        """
        now = self.clock() if now is None else now
        finalized: list[str] = []
        for query_key, entry in self._queries.items():
            if self.aggregator.expire(entry.aggregate, now):
                entry.sweeps.append((next(self._sequence), now))
                self._publish(entry)
                finalized.append(query_key)
        return finalized

    def _publish(self, entry: _QueryEntry) -> None:
        state = entry.aggregate
        result = CachedResult(
            query_key=state.query_key,
            kind=state.kind,
            aggregate_value=state.finalized_value,
            derived_flag=bool(state.derived_flag),
            response_count=state.received_count,
            expected_count=state.expected_count,
            finalized_at=state.finalized_at,
            reason=state.reason,
        )
        self.cache.store(result)
        self._emit(
            FinalizedNotification(
                query_key=state.query_key,
                kind=state.kind,
                aggregate_value=result.aggregate_value,
                derived_flag=result.derived_flag,
                response_count=result.response_count,
            )
        )

    # Reads

    def get_request(self, request_id: str) -> RequestRecord | None:
        return self._requests.get(request_id)

    def is_fulfilled(self, request_id: str) -> bool:
        """Check if a request was answered.

        :raises UnknownRequestError: If the request does not exist.
        """
        record = self._requests.get(request_id)
        if record is None:
            raise UnknownRequestError(request_id)
        return record.fulfilled

    def get_aggregate(self, query: LogicalQuery | str) -> AggregateState | None:
        key = query.query_key if isinstance(query, LogicalQuery) else query
        entry = self._queries.get(key)
        return entry.aggregate if entry else None

    def requests_for(self, query: LogicalQuery | str) -> list[RequestRecord]:
        """Get the request records of a query in fan-out order."""
        key = query.query_key if isinstance(query, LogicalQuery) else query
        entry = self._queries.get(key)
        if entry is None:
            return []
        return [self._requests[rid] for rid in entry.request_ids]

    def pending_queries(self) -> list[str]:
        """Get keys of queries that are not finalized yet."""
        return [k for k, e in self._queries.items() if not e.aggregate.finalized]

    def read(self, query: LogicalQuery | str) -> ConsumerView:
        """Consumer read contract, see :meth:`ResultCache.read`."""
        return self.cache.read(query)

    def replay_aggregate(self, query: LogicalQuery | str) -> AggregateState | None:
        """Rebuild a query's aggregate from its stored request history.

        :returns: Replayed AggregateState (equal to the live one), or None for
            unknown queries.
        """
        key = query.query_key if isinstance(query, LogicalQuery) else query
        entry = self._queries.get(key)
        if entry is None:
            return None

        events: list[tuple[int, int | bool | None, float]] = [
            (r.sequence, r.value, r.fulfilled_at)
            for r in self.requests_for(key)
            if r.fulfilled
        ]
        events.extend((seq, None, at) for seq, at in entry.sweeps)
        events.sort(key=lambda e: e[0])

        state = entry.aggregate
        return self.aggregator.replay(
            key,
            state.kind,
            state.expected_count,
            state.created_at,
            [(value, at) for _, value, at in events],
        )
