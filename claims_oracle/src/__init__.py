"""
Claims Oracle - Multi-Provider Aggregation Protocol

This module answers flight delay and baggage status questions from several
independent data providers:
- LogicalQuery: Canonical query representation and cache key
- ProviderRegistry: Operator-managed provider records
- RequestBroker: Fan-out, fulfillment validation and state ownership
- Aggregator: Mean/majority folding with quorum and timeout finalization
- ResultCache: Read-only finalized results for consumers
- ListenerWorker: Off-chain per-provider fetch-and-submit worker
"""

from .Aggregator import AggregateState, AggregationPolicy, Aggregator, FoldResult
from .exceptions import (
    AlreadyFulfilledError,
    BrokerUnavailableError,
    DuplicateProviderError,
    InvalidValueError,
    NoProvidersRegisteredError,
    NotAuthorizedProviderError,
    OracleError,
    ResultNotReadyError,
    UnknownProviderError,
    UnknownRequestError,
)
from .ListenerWorker import ListenerWorker, WorkerState
from .LogicalQuery import LogicalQuery, QueryKind
from .ProviderRegistry import ProviderRecord, ProviderRegistry
from .RequestBroker import QuerySubmission, RequestBroker, RequestRecord
from .ResultCache import CachedResult, ConsumerView, ResultCache

__all__ = [
    "AggregateState",
    "AggregationPolicy",
    "Aggregator",
    "AlreadyFulfilledError",
    "BrokerUnavailableError",
    "CachedResult",
    "ConsumerView",
    "DuplicateProviderError",
    "FoldResult",
    "InvalidValueError",
    "ListenerWorker",
    "LogicalQuery",
    "NoProvidersRegisteredError",
    "NotAuthorizedProviderError",
    "OracleError",
    "ProviderRecord",
    "ProviderRegistry",
    "QueryKind",
    "QuerySubmission",
    "RequestBroker",
    "RequestRecord",
    "ResultCache",
    "ResultNotReadyError",
    "UnknownProviderError",
    "UnknownRequestError",
    "WorkerState",
]
