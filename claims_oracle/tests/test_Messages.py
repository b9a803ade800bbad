"""Unit tests for the broker/worker wire messages."""

import cbor2
import pytest
from conftest import OUTSIDER_KEY, PROVIDER_KEYS, address_of

from claims_oracle.src.LogicalQuery import QueryKind
from claims_oracle.src.Messages import (
    FanOutNotification,
    FinalizedNotification,
    Fulfillment,
    MessageDecodeError,
    recover_signer,
    sign_fulfillment,
)

REQUEST_ID = "0x" + "ab" * 32


@pytest.fixture
def notification() -> FanOutNotification:
    return FanOutNotification(
        request_id=REQUEST_ID,
        provider_id=address_of(PROVIDER_KEYS[0]),
        url="https://bags.example.com/SQ100?time=5",
        data_path="bag.status",
        kind=QueryKind.BAGGAGE_STATUS,
        subject="SQ100",
        time_window=5,
        description="green luggage",
        query_key="0x" + "cd" * 32,
    )


class TestFanOutNotification:
    """Test CBOR encoding of fan-out notifications."""

    def test_wire_format(self, notification: FanOutNotification) -> None:
        """The payload is a CBOR map tagged with its message type."""
        data = cbor2.loads(notification.to_bytes())
        assert data["type"] == "oracle_request"
        assert data["kind"] == "baggage_status"
        assert data["request_id"] == REQUEST_ID

        decoded = FanOutNotification.from_bytes(notification.to_bytes())
        assert decoded == notification
        assert decoded.kind is QueryKind.BAGGAGE_STATUS

    def test_malformed_payload(self) -> None:
        with pytest.raises(MessageDecodeError, match="Malformed"):
            FanOutNotification.from_bytes(b"\xff\xff\x00")

    def test_wrong_message_type(self, notification: FanOutNotification) -> None:
        payload = cbor2.dumps({"type": "oracle_finalized"})
        with pytest.raises(MessageDecodeError, match="Expected oracle_request"):
            FanOutNotification.from_bytes(payload)

    def test_missing_field(self) -> None:
        payload = cbor2.dumps({"type": "oracle_request", "request_id": REQUEST_ID})
        with pytest.raises(MessageDecodeError, match="Incomplete"):
            FanOutNotification.from_bytes(payload)

    def test_unknown_kind(self, notification: FanOutNotification) -> None:
        data = cbor2.loads(notification.to_bytes())
        data["kind"] = "weather"
        with pytest.raises(MessageDecodeError):
            FanOutNotification.from_bytes(cbor2.dumps(data))


class TestFinalizedNotification:
    """Test finalized notification decoding."""

    def test_decode(self) -> None:
        message = FinalizedNotification(
            query_key="0x" + "cd" * 32,
            kind=QueryKind.FLIGHT_DELAY,
            aggregate_value=70,
            derived_flag=True,
            response_count=3,
        )
        assert FinalizedNotification.from_bytes(message.to_bytes()) == message

    def test_not_a_map(self) -> None:
        with pytest.raises(MessageDecodeError):
            FinalizedNotification.from_bytes(cbor2.dumps([1, 2, 3]))


class TestSignedFulfillment:
    """Test fulfillment signatures."""

    def test_recover_signer(self) -> None:
        fulfillment = sign_fulfillment(REQUEST_ID, 45, PROVIDER_KEYS[0])
        assert fulfillment.signature.startswith("0x")
        assert recover_signer(fulfillment) == address_of(PROVIDER_KEYS[0])

    def test_boolean_value(self) -> None:
        """Booleans are signed as 0/1."""
        fulfillment = sign_fulfillment(REQUEST_ID, True, OUTSIDER_KEY)
        assert recover_signer(fulfillment) == address_of(OUTSIDER_KEY)
        as_int = Fulfillment(REQUEST_ID, 1, fulfillment.signature)
        assert recover_signer(as_int) == address_of(OUTSIDER_KEY)

    def test_other_request_recovers_other_signer(self) -> None:
        fulfillment = sign_fulfillment(REQUEST_ID, 45, PROVIDER_KEYS[0])
        moved = Fulfillment("0x" + "00" * 32, 45, fulfillment.signature)
        assert recover_signer(moved) != address_of(PROVIDER_KEYS[0])

    def test_malformed_signature(self) -> None:
        with pytest.raises(ValueError, match="Cannot recover"):
            recover_signer(Fulfillment(REQUEST_ID, 45, "0xdead"))
