"""ListenerWorker: Off-chain process answering requests for one provider.

For every fan-out notification addressed to its provider identity the worker
runs ``IDLE -> FETCHING -> SUBMITTING -> IDLE``:
    1. Skip the request if the broker already marks it fulfilled (restarts
       re-read historical notifications).
    2. Fetch the bound endpoint, bounded by ``fetch_timeout``.
    3. Select the answer with the provider's data path and coerce it to the
       query kind's value type.
    4. Submit the fulfillment through the broker client.

Any failure in steps 2-4 is logged and the notification is dropped; the
request stays unfulfilled and may be answered by other providers, or by
this worker when the broker re-notifies it. Duplicates are dropped only while
the same request is still in flight. Each notification is handled in its
own task, bounded by ``max_in_flight``, so a slow endpoint never delays
detection of new notifications.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum

from .BrokerClient import BrokerClient
from .DataPath import ExtractionError, coerce, extract
from .EndpointFetcher import EndpointFetcher, FetcherError
from .exceptions import AlreadyFulfilledError, OracleError
from .Messages import FanOutNotification

logger = logging.getLogger(__name__)


class WorkerState(str, Enum):
    """Lifecycle state of one notification inside the worker."""

    IDLE = "idle"
    FETCHING = "fetching"
    SUBMITTING = "submitting"


class ListenerWorker:
    """Listener for a single provider identity.

    :ivar client: Broker client carrying notifications and fulfillments.
    :ivar fetcher: Endpoint fetcher.
    :ivar fetch_timeout: Upper bound for one fetch in seconds.
    :ivar max_in_flight: Maximum concurrently handled notifications.
    :ivar states: Current state per in-flight request id.
    """

    def __init__(
        self,
        client: BrokerClient,
        fetcher: EndpointFetcher | None = None,
        fetch_timeout: float = 10.0,
        max_in_flight: int = 8,
    ) -> None:
        """Initialize the worker.

        :param client: Broker client for the provider this worker represents.
        :param fetcher: Endpoint fetcher (default: shared-client fetcher).
        :param fetch_timeout: Timeout for one fetch (default: 10.0).
        :param max_in_flight: Concurrency bound (default: 8).
        :raises ValueError: If the bounds are not positive.
        """
        if fetch_timeout <= 0:
            raise ValueError("fetch_timeout must be positive")
        if max_in_flight < 1:
            raise ValueError("max_in_flight must be at least 1")

        self.client = client
        self.fetcher = fetcher or EndpointFetcher(timeout=fetch_timeout)
        self.fetch_timeout = fetch_timeout
        self.max_in_flight = max_in_flight
        self.states: dict[str, WorkerState] = {}

        self.fulfilled_count = 0
        self.failed_count = 0
        self.skipped_count = 0

        self._semaphore = asyncio.Semaphore(max_in_flight)
        self._in_flight: set[str] = set()
        self._tasks: set[asyncio.Task] = set()

    @property
    def identity(self) -> str:
        """Provider address this worker answers for."""
        return self.client.identity

    @property
    def state(self) -> WorkerState:
        """Worker-level state: the most advanced state of any in-flight request."""
        if WorkerState.SUBMITTING in self.states.values():
            return WorkerState.SUBMITTING
        if WorkerState.FETCHING in self.states.values():
            return WorkerState.FETCHING
        return WorkerState.IDLE

    def is_addressed_to_me(self, notification: FanOutNotification) -> bool:
        return notification.provider_id.lower() == self.identity.lower()

    async def run(self) -> None:
        """Consume notifications until the client stops producing them."""
        logger.info(f"Listener worker {self.identity} waiting for oracle requests")
        async for notification in self.client.notifications():
            self.dispatch(notification)
        await self.drain()
        logger.info(f"Listener worker {self.identity} stopped")

    def dispatch(self, notification: FanOutNotification) -> asyncio.Task | None:
        """Schedule handling of one notification.

        :returns: The spawned task, or None if the notification was ignored.
        """
        if not self.is_addressed_to_me(notification):
            return None
        if notification.request_id in self._in_flight:
            logger.debug(f"{notification.request_id}: already in flight, ignoring")
            return None
        self._in_flight.add(notification.request_id)

        task = asyncio.create_task(self._guarded_handle(notification))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait for every in-flight notification to finish."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def stop(self) -> None:
        """Ask the broker client to stop producing notifications."""
        self.client.close()

    async def _guarded_handle(self, notification: FanOutNotification) -> bool:
        async with self._semaphore:
            try:
                return await self.handle(notification)
            except Exception as exc:  # one bad request must not kill the worker
                self.failed_count += 1
                logger.exception(f"{notification.request_id}: unexpected error: {exc}")
                return False
            finally:
                self.states.pop(notification.request_id, None)
                self._in_flight.discard(notification.request_id)

    async def handle(self, notification: FanOutNotification) -> bool:
        """Fetch, extract and submit the answer for one notification.

        :param notification: Fan-out notification for this provider.
        :returns: True if a fulfillment was accepted.
        """
        request_id = notification.request_id

        try:
            if await self.client.is_fulfilled(request_id):
                self.skipped_count += 1
                logger.info(f"{request_id}: already fulfilled, skipping")
                return False
        except OracleError as e:
            self.failed_count += 1
            logger.warning(f"{request_id}: status check failed: {e}")
            return False

        self.states[request_id] = WorkerState.FETCHING
        logger.debug(f"{request_id}: fetching {notification.url} ({notification.data_path})")
        try:
            document = await asyncio.wait_for(
                self.fetcher.fetch_json(notification.url),
                timeout=self.fetch_timeout,
            )
            value = coerce(extract(document, notification.data_path), notification.kind)
        except asyncio.TimeoutError:
            self.failed_count += 1
            logger.warning(f"{request_id}: timeout fetching {notification.url}")
            return False
        except FetcherError as e:
            self.failed_count += 1
            logger.warning(f"{request_id}: failed to fetch {notification.url}: {e}")
            return False
        except ExtractionError as e:
            self.failed_count += 1
            logger.warning(f"{request_id}: unusable response from {notification.url}: {e}")
            return False

        self.states[request_id] = WorkerState.SUBMITTING
        try:
            await self.client.fulfill(request_id, value)
        except AlreadyFulfilledError:
            self.skipped_count += 1
            logger.info(f"{request_id}: fulfilled concurrently, nothing to do")
            return False
        except OracleError as e:
            self.failed_count += 1
            logger.warning(f"{request_id}: fulfillment failed: {e}")
            return False

        self.fulfilled_count += 1
        logger.info(
            f"{request_id}: submitted {notification.kind.value}={value!r} "
            f"for {notification.subject}@{notification.time_window}"
        )
        return True
