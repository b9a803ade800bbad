"""ProviderRegistry: Durable mapping of provider identity to endpoint and job.

Each provider is an independently-operated off-chain data source identified by
the Ethereum address it signs fulfillments with. Records are frozen: a
request created at fan-out time holds its own reference to the record, so
removing a provider never corrupts requests already in flight.

.. code-block:: python

    >>> registry = ProviderRegistry()
    >>> pid = registry.register_provider(
    ...     "0x70997970C51812dc3A010C7d01b50e0d17dc79C8",
    ...     "https://flights.example.com/{subject}?departure={time_window}",
    ...     "data.delayMinutes",
    ...     "flightdelay",
    ... )
    >>> [p.provider_id for p in registry.list_providers()] == [pid]
    True
"""

from __future__ import annotations

import logging
import string
import time
from dataclasses import dataclass, field
from urllib.parse import quote, urlencode

from web3 import Web3

from .exceptions import DuplicateProviderError, UnknownProviderError
from .LogicalQuery import LogicalQuery, QueryKind

logger = logging.getLogger(__name__)

TEMPLATE_FIELDS = frozenset({"subject", "time_window", "description", "kind"})


def template_fields(endpoint_template: str) -> set[str]:
    """Return the placeholder names used by an endpoint template.

    :param endpoint_template: URL template with ``{name}`` placeholders.
    :returns: Set of placeholder names.
    :raises ValueError: If the template is malformed or uses unknown names.
    """
    try:
        names = {
            name
            for _, name, _, _ in string.Formatter().parse(endpoint_template)
            if name is not None
        }
    except ValueError as e:
        raise ValueError(f"Malformed endpoint template {endpoint_template!r}: {e}") from e

    unknown = names - TEMPLATE_FIELDS
    if unknown:
        raise ValueError(
            f"Unknown placeholders {sorted(unknown)} in endpoint template. "
            f"Allowed: {sorted(TEMPLATE_FIELDS)}"
        )
    return names


@dataclass(frozen=True)
class ProviderRecord:
    """A registered data provider.

    :ivar provider_id: Checksummed address the provider signs with.
    :ivar endpoint_template: URL template resolved per query.
    :ivar data_path: Dotted selector for the answer inside the JSON response.
    :ivar job_descriptor: Opaque tag grouping related endpoints.
    :ivar registered_at: Unix timestamp of registration.
    """

    provider_id: str
    endpoint_template: str
    data_path: str
    job_descriptor: str
    registered_at: float = field(default=0.0, compare=False)

    @property
    def endpoint_key(self) -> tuple[str, str, str]:
        """Return the (template, data path, descriptor) uniqueness key."""
        return (self.endpoint_template, self.data_path, self.job_descriptor)

    def bind_url(self, query: LogicalQuery) -> str:
        """Resolve the endpoint template for a query.

        Templates without placeholders get the subject appended as a path
        segment and the time window (and description) as query parameters.

        :param query: Canonical query to bind.
        :returns: Concrete URL to fetch.
        """
        values = {
            "subject": quote(query.subject, safe=""),
            "time_window": str(query.time_window),
            "description": quote(query.description, safe=""),
            "kind": query.kind.value,
        }
        if template_fields(self.endpoint_template):
            return self.endpoint_template.format(**values)

        params = {"time": query.time_window}
        if query.kind is QueryKind.BAGGAGE_STATUS:
            params["description"] = query.description
        base = self.endpoint_template
        if not base.endswith("/"):
            base += "/"
        return f"{base}{values['subject']}?{urlencode(params)}"


class ProviderRegistry:
    """Operator-managed registry of data providers in registration order.

    :ivar clock: Callable returning the current unix time.
    """

    def __init__(self, clock=time.time) -> None:
        """Initialize an empty registry.

        :param clock: Time source used for ``registered_at``.
        """
        self.clock = clock
        self._providers: dict[str, ProviderRecord] = {}

    def register_provider(
        self,
        address: str,
        endpoint_template: str,
        data_path: str,
        job_descriptor: str,
    ) -> str:
        """Register a provider for future fan-outs.

        :param address: Ethereum address of the provider's signing key.
        :param endpoint_template: URL template (see ``ProviderRecord.bind_url``).
        :param data_path: Dotted selector for the value in the response.
        :param job_descriptor: Opaque job tag.
        :returns: The provider id (checksummed address).
        :raises ValueError: If the address, template or data path is invalid.
        :raises DuplicateProviderError: If the address or the
            endpoint+descriptor pair is already registered.
        """
        if not Web3.is_address(address):
            raise ValueError(f"Invalid provider address: {address!r}")
        if not endpoint_template.startswith(("http://", "https://")):
            raise ValueError(f"Endpoint must be an http(s) URL: {endpoint_template!r}")
        if not data_path.strip():
            raise ValueError("data_path must not be empty")
        template_fields(endpoint_template)

        provider_id = Web3.to_checksum_address(address)
        record = ProviderRecord(
            provider_id=provider_id,
            endpoint_template=endpoint_template,
            data_path=data_path.strip(),
            job_descriptor=job_descriptor,
            registered_at=self.clock(),
        )

        if provider_id in self._providers:
            raise DuplicateProviderError(f"Provider {provider_id} is already registered")
        for existing in self._providers.values():
            if existing.endpoint_key == record.endpoint_key:
                raise DuplicateProviderError(
                    f"Endpoint {endpoint_template} with job {job_descriptor!r} "
                    f"is already registered by {existing.provider_id}"
                )

        self._providers[provider_id] = record
        logger.info(f"Registered provider {provider_id} ({job_descriptor}): {endpoint_template}")
        return provider_id

    def remove_provider(self, provider_id: str) -> ProviderRecord:
        """Remove a provider from future fan-outs.

        :param provider_id: Provider address.
        :returns: The removed record.
        :raises UnknownProviderError: If the provider is not registered.
        """
        key = Web3.to_checksum_address(provider_id) if Web3.is_address(provider_id) else provider_id
        record = self._providers.pop(key, None)
        if record is None:
            raise UnknownProviderError(f"Provider {provider_id} is not registered")
        logger.info(f"Removed provider {key}")
        return record

    def get_provider(self, provider_id: str) -> ProviderRecord | None:
        """Get a provider record by id, or None if not registered."""
        if Web3.is_address(provider_id):
            provider_id = Web3.to_checksum_address(provider_id)
        return self._providers.get(provider_id)

    def list_providers(self) -> list[ProviderRecord]:
        """Get all providers in registration order.

        :returns: Snapshot list; later registry changes do not affect it.
        """
        return list(self._providers.values())

    def __len__(self) -> int:
        return len(self._providers)

    def __contains__(self, provider_id: object) -> bool:
        return isinstance(provider_id, str) and self.get_provider(provider_id) is not None
