"""BrokerClient: The listener worker's view of the request broker.

Workers share no memory with the broker; they observe fan-out notifications
and submit fulfillments through a client:
    - LocalBrokerClient: in-process RequestBroker, notifications carried as
      CBOR bytes over an asyncio.Queue, fulfillments signed with the
      provider key.
    - ContractBrokerClient: on-chain broker, OracleRequest logs polled from a
      start block, fulfillments sent as signed transactions.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, AsyncIterator

from eth_account import Account
from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted, Web3Exception

from .exceptions import BrokerUnavailableError, ProtocolViolation
from .LogicalQuery import QueryKind
from .Messages import FanOutNotification, MessageDecodeError, sign_fulfillment

if TYPE_CHECKING:
    from eth_account.signers.local import LocalAccount
    from web3.contract import Contract

    from .RequestBroker import Notification, RequestBroker

logger = logging.getLogger(__name__)

# On-chain encoding of QueryKind in the OracleRequest event.
KIND_CODES: dict[int, QueryKind] = {
    0: QueryKind.FLIGHT_DELAY,
    1: QueryKind.BAGGAGE_STATUS,
}


class BrokerClient(ABC):
    """Abstract base class for broker clients.

    :ivar identity: Address the client authenticates fulfillments with.
    """

    identity: str

    @abstractmethod
    def notifications(self) -> AsyncIterator[FanOutNotification]:
        """Iterate over fan-out notifications as they are observed."""
        pass

    @abstractmethod
    async def is_fulfilled(self, request_id: str) -> bool:
        """Check if a request was already answered."""
        pass

    @abstractmethod
    async def fulfill(self, request_id: str, value: int | bool) -> Any:
        """Submit an answer for a request.

        :raises ProtocolViolation: If the broker rejects the answer.
        :raises BrokerUnavailableError: If the broker cannot be reached.
        """
        pass

    def close(self) -> None:
        """Stop producing notifications."""
        pass


class LocalBrokerClient(BrokerClient):
    """Client for an in-process RequestBroker.

    :ivar broker: Broker the client is subscribed to.
    :ivar account: Provider signing account.
    """

    def __init__(self, broker: RequestBroker, private_key: str | bytes) -> None:
        self.broker = broker
        self.account: LocalAccount = Account.from_key(private_key)
        self.identity = self.account.address
        self._queue: asyncio.Queue[bytes | None] = asyncio.Queue()
        broker.subscribe(self._on_notification)

    def _on_notification(self, notification: Notification) -> None:
        if isinstance(notification, FanOutNotification):
            self._queue.put_nowait(notification.to_bytes())

    def push_raw(self, payload: bytes) -> None:
        """Enqueue a raw wire payload, as a transport would deliver it."""
        self._queue.put_nowait(payload)

    async def notifications(self) -> AsyncIterator[FanOutNotification]:
        while True:
            payload = await self._queue.get()
            if payload is None:
                return
            try:
                yield FanOutNotification.from_bytes(payload)
            except MessageDecodeError as e:
                logger.warning(f"Dropping undecodable notification: {e}")

    async def is_fulfilled(self, request_id: str) -> bool:
        return self.broker.is_fulfilled(request_id)

    async def fulfill(self, request_id: str, value: int | bool) -> Any:
        fulfillment = sign_fulfillment(request_id, value, self.account.key)
        return self.broker.submit_fulfillment(fulfillment)

    def close(self) -> None:
        self.broker.unsubscribe(self._on_notification)
        self._queue.put_nowait(None)


class ContractBrokerClient(BrokerClient):
    """Client for the on-chain request broker.

    Sync web3 calls run in a worker thread so a slow RPC never blocks
    notification handling.

    :ivar w3: Web3 instance with the signing middleware installed.
    :ivar contract: Broker contract bound to ``BROKER_ABI``.
    :ivar account: Provider signing account.
    :ivar next_block: First block not scanned yet.
    :ivar poll_period: Seconds between log polls.
    """

    def __init__(
        self,
        w3: Web3,
        contract: Contract,
        account: LocalAccount,
        start_block: int = 0,
        poll_period: float = 2.0,
        receipt_timeout: float = 120.0,
    ) -> None:
        self.w3 = w3
        self.contract = contract
        self.account = account
        self.identity = account.address
        self.next_block = start_block
        self.poll_period = poll_period
        self.receipt_timeout = receipt_timeout
        self._closed = False

    def _decode_log(self, log: Any) -> FanOutNotification:
        args = log["args"]
        kind = KIND_CODES.get(int(args["kind"]))
        if kind is None:
            raise MessageDecodeError(f"Unknown query kind code {args['kind']}")
        return FanOutNotification(
            request_id=Web3.to_hex(args["requestId"]),
            provider_id=Web3.to_checksum_address(args["oracleAddress"]),
            url=args["url"],
            data_path=args["path"],
            kind=kind,
            subject=args["subject"],
            time_window=int(args["timeWindow"]),
            description=args["description"],
            query_key=Web3.to_hex(args["queryKey"]),
        )

    def _poll_logs(self) -> list[Any]:
        latest = self.w3.eth.block_number
        if latest < self.next_block:
            return []
        logs = self.contract.events.OracleRequest.get_logs(
            from_block=self.next_block,
            to_block=latest,
            argument_filters={"oracleAddress": self.identity},
        )
        self.next_block = latest + 1
        return list(logs)

    async def notifications(self) -> AsyncIterator[FanOutNotification]:
        while not self._closed:
            try:
                logs = await asyncio.to_thread(self._poll_logs)
            except Exception as exc:  # RPC hiccups must not stop the listener
                logger.warning(f"Polling OracleRequest logs failed: {exc}")
                logs = []

            for log in logs:
                try:
                    yield self._decode_log(log)
                except (MessageDecodeError, KeyError, TypeError, ValueError) as e:
                    logger.warning(f"Dropping malformed OracleRequest log: {e}")

            await asyncio.sleep(self.poll_period)

    async def is_fulfilled(self, request_id: str) -> bool:
        try:
            return await asyncio.to_thread(
                self.contract.functions.isFulfilled(request_id).call
            )
        except (Web3Exception, OSError) as e:
            raise BrokerUnavailableError(request_id, f"Status check failed: {e}") from e

    def _send_fulfillment(self, request_id: str, value: int | bool) -> Any:
        try:
            tx_params = self.contract.functions.fulfillDataFromOffChain(
                request_id, int(value)
            ).build_transaction({"from": self.identity, "gasPrice": self.w3.eth.gas_price})
            tx_hash = self.w3.eth.send_transaction(tx_params)
            receipt = self.w3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self.receipt_timeout
            )
        except ContractLogicError as e:
            raise ProtocolViolation(request_id, f"Fulfillment rejected: {e}") from e
        except TimeExhausted as e:
            raise BrokerUnavailableError(request_id, "Fulfillment not confirmed in time") from e
        except (Web3Exception, OSError) as e:
            raise BrokerUnavailableError(request_id, f"Fulfillment not sent: {e}") from e
        if receipt["status"] != 1:
            raise ProtocolViolation(request_id, "Fulfillment transaction reverted")
        return receipt

    async def fulfill(self, request_id: str, value: int | bool) -> Any:
        return await asyncio.to_thread(self._send_fulfillment, request_id, value)

    def close(self) -> None:
        self._closed = True
