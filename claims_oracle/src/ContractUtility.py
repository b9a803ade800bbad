"""ContractUtility: Web3 initialization and broker contract binding."""

import os

from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import Web3
from web3.contract import Contract
from web3.middleware import SignAndSendRawMiddlewareBuilder

# Interface of the on-chain request broker the listener worker talks to.
BROKER_ABI: list[dict] = [
    {
        "type": "event",
        "name": "OracleRequest",
        "anonymous": False,
        "inputs": [
            {"name": "requestId", "type": "bytes32", "indexed": True},
            {"name": "oracleAddress", "type": "address", "indexed": True},
            {"name": "queryKey", "type": "bytes32", "indexed": False},
            {"name": "kind", "type": "uint8", "indexed": False},
            {"name": "subject", "type": "string", "indexed": False},
            {"name": "timeWindow", "type": "uint256", "indexed": False},
            {"name": "description", "type": "string", "indexed": False},
            {"name": "url", "type": "string", "indexed": False},
            {"name": "path", "type": "string", "indexed": False},
        ],
    },
    {
        "type": "function",
        "name": "fulfillDataFromOffChain",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "requestId", "type": "bytes32"},
            {"name": "data", "type": "uint256"},
        ],
        "outputs": [],
    },
    {
        "type": "function",
        "name": "isFulfilled",
        "stateMutability": "view",
        "inputs": [{"name": "requestId", "type": "bytes32"}],
        "outputs": [{"name": "", "type": "bool"}],
    },
]


class ContractUtility:
    """Utility for Web3 connection with the worker's signing account.

    :ivar rpc_url: Ledger RPC URL.
    :ivar account: Signing account of the provider this worker represents.
    :ivar w3: Configured Web3 instance.
    """

    def __init__(self, rpc_url: str | None, private_key: str) -> None:
        """Initialize the contract utility.

        :param rpc_url: RPC endpoint. Falls back to ``RPC_URL`` or localhost.
        :param private_key: Hex-encoded key, with or without the 0x prefix.
        :raises ValueError: If the private key is invalid.
        """
        self.rpc_url = rpc_url or os.environ.get("RPC_URL") or "http://localhost:8545"
        if not private_key.startswith("0x"):
            private_key = f"0x{private_key}"
        self.account: LocalAccount = Account.from_key(private_key)

        self.w3 = Web3(Web3.HTTPProvider(self.rpc_url))
        self.w3.middleware_onion.add(SignAndSendRawMiddlewareBuilder.build(self.account))
        self.w3.eth.default_account = self.account.address

    def broker_contract(self, address: str) -> Contract:
        """Bind the request broker contract at an address.

        :raises ValueError: If the address is invalid.
        """
        if not Web3.is_address(address):
            raise ValueError(f"Invalid broker address: {address!r}")
        return self.w3.eth.contract(address=Web3.to_checksum_address(address), abi=BROKER_ABI)
