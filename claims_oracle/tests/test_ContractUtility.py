"""Unit tests for ContractUtility."""

import pytest
from conftest import PROVIDER_KEYS, address_of

from claims_oracle.src.ContractUtility import ContractUtility

BROKER_ADDRESS = "0x5fbdb2315678afecb367f032d93f642f64180aa3"


class TestContractUtility:
    """Test Web3 setup without touching the network."""

    def test_key_without_prefix(self) -> None:
        """Keys are accepted with or without the 0x prefix."""
        utility = ContractUtility("http://127.0.0.1:8545", PROVIDER_KEYS[0][2:])
        assert utility.account.address == address_of(PROVIDER_KEYS[0])
        assert utility.w3.eth.default_account == utility.account.address
        assert utility.rpc_url == "http://127.0.0.1:8545"

    def test_rpc_url_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("RPC_URL", "http://ledger.internal:8545")
        assert ContractUtility(None, PROVIDER_KEYS[0]).rpc_url == "http://ledger.internal:8545"

        monkeypatch.delenv("RPC_URL")
        assert ContractUtility(None, PROVIDER_KEYS[0]).rpc_url == "http://localhost:8545"

    def test_broker_contract(self) -> None:
        utility = ContractUtility(None, PROVIDER_KEYS[0])
        contract = utility.broker_contract(BROKER_ADDRESS)

        assert contract.address == "0x5FbDB2315678afecb367f032d93F642f64180aa3"
        assert contract.events.OracleRequest is not None

    def test_invalid_broker_address(self) -> None:
        utility = ContractUtility(None, PROVIDER_KEYS[0])
        with pytest.raises(ValueError, match="Invalid broker address"):
            utility.broker_contract("0x1234")

    def test_invalid_key(self) -> None:
        with pytest.raises(ValueError):
            ContractUtility(None, "0x1234")
