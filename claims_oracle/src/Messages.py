"""Broker/worker wire messages.

Two messages cross the process boundary:
    - FanOutNotification (broker -> listener worker), one per request
    - Fulfillment (listener worker -> broker), signed by the provider key

Notifications are CBOR-encoded on the channel. Fulfillments carry an EIP-191
signature over ``solidityKeccak(bytes32 requestId, uint256 value)`` so the
broker can recover the caller identity instead of trusting a claimed one.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any

import cbor2
from eth_account import Account
from eth_account.messages import encode_defunct
from web3 import Web3

from .LogicalQuery import QueryKind

FANOUT_TYPE = "oracle_request"
FINALIZED_TYPE = "oracle_finalized"


class MessageDecodeError(ValueError):
    """Raised when a wire payload cannot be decoded into a message."""

    pass


def _decode(payload: bytes, expected_type: str) -> dict[str, Any]:
    try:
        data = cbor2.loads(payload)
    except (cbor2.CBORDecodeError, TypeError, ValueError) as e:
        raise MessageDecodeError(f"Malformed CBOR payload: {e}") from e
    if not isinstance(data, dict) or data.get("type") != expected_type:
        raise MessageDecodeError(f"Expected {expected_type} message, got {data!r}")
    return data


@dataclass(frozen=True)
class FanOutNotification:
    """Request addressed to one provider.

    :ivar request_id: 0x-prefixed bytes32 request identifier.
    :ivar provider_id: Address of the target provider.
    :ivar url: Endpoint already bound to the query.
    :ivar data_path: Selector for the answer in the response.
    :ivar kind: Query kind (decides value coercion).
    :ivar subject: Canonical subject.
    :ivar time_window: Canonical unix seconds.
    :ivar description: Canonical description.
    :ivar query_key: Key of the owning query.
    """

    request_id: str
    provider_id: str
    url: str
    data_path: str
    kind: QueryKind
    subject: str
    time_window: int
    description: str
    query_key: str

    def to_bytes(self) -> bytes:
        """Encode the notification for the wire."""
        data = asdict(self)
        data["kind"] = self.kind.value
        data["type"] = FANOUT_TYPE
        return cbor2.dumps(data)

    @classmethod
    def from_bytes(cls, payload: bytes) -> FanOutNotification:
        """Decode a notification from the wire.

        :raises MessageDecodeError: If the payload is malformed or incomplete.
        """
        data = _decode(payload, FANOUT_TYPE)
        try:
            return cls(
                request_id=str(data["request_id"]),
                provider_id=str(data["provider_id"]),
                url=str(data["url"]),
                data_path=str(data["data_path"]),
                kind=QueryKind(data["kind"]),
                subject=str(data["subject"]),
                time_window=int(data["time_window"]),
                description=str(data.get("description", "")),
                query_key=str(data["query_key"]),
            )
        except (KeyError, ValueError, TypeError) as e:
            raise MessageDecodeError(f"Incomplete oracle request: {e}") from e


@dataclass(frozen=True)
class FinalizedNotification:
    """Published once when a query's aggregate becomes authoritative."""

    query_key: str
    kind: QueryKind
    aggregate_value: int | bool
    derived_flag: bool
    response_count: int

    def to_bytes(self) -> bytes:
        data = asdict(self)
        data["kind"] = self.kind.value
        data["type"] = FINALIZED_TYPE
        return cbor2.dumps(data)

    @classmethod
    def from_bytes(cls, payload: bytes) -> FinalizedNotification:
        data = _decode(payload, FINALIZED_TYPE)
        try:
            return cls(
                query_key=str(data["query_key"]),
                kind=QueryKind(data["kind"]),
                aggregate_value=data["aggregate_value"],
                derived_flag=bool(data["derived_flag"]),
                response_count=int(data["response_count"]),
            )
        except (KeyError, ValueError, TypeError) as e:
            raise MessageDecodeError(f"Incomplete finalized notification: {e}") from e


@dataclass(frozen=True)
class Fulfillment:
    """Signed answer to a request.

    :ivar request_id: Request being answered.
    :ivar value: Coerced answer.
    :ivar signature: 0x-prefixed EIP-191 signature of the fulfillment digest.
    """

    request_id: str
    value: int | bool
    signature: str


def fulfillment_digest(request_id: str, value: int | bool) -> bytes:
    """Compute the 32-byte digest a provider signs for a fulfillment."""
    return bytes(Web3.solidity_keccak(["bytes32", "uint256"], [request_id, int(value)]))


def sign_fulfillment(
    request_id: str, value: int | bool, private_key: str | bytes
) -> Fulfillment:
    """Sign a fulfillment with the provider's key.

    :param request_id: Request being answered.
    :param value: Coerced answer.
    :param private_key: Hex-encoded secp256k1 key of the provider.
    :returns: Signed Fulfillment.
    """
    message = encode_defunct(primitive=fulfillment_digest(request_id, value))
    signed = Account.sign_message(message, private_key=private_key)
    return Fulfillment(
        request_id=request_id,
        value=value,
        signature=Web3.to_hex(signed.signature),
    )


def recover_signer(fulfillment: Fulfillment) -> str:
    """Recover the checksummed address that signed a fulfillment.

    :raises ValueError: If the signature is malformed.
    """
    try:
        message = encode_defunct(
            primitive=fulfillment_digest(fulfillment.request_id, fulfillment.value)
        )
        return Account.recover_message(message, signature=fulfillment.signature)
    except Exception as e:  # eth_keys raises its own BadSignature type
        raise ValueError(f"Cannot recover fulfillment signer: {e}") from e
