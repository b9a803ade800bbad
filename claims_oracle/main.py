#!/usr/bin/env python3
"""Claims Oracle listener worker.

Watches the on-chain request broker for oracle requests addressed to one
provider identity, fetches the requested flight/baggage data from the bound
HTTP endpoint and submits the answer back to the broker.

Run one process per provider. Configuration comes from CLI args or env vars.
"""

import argparse
import asyncio
import logging
import os
import sys

from .src.BrokerClient import ContractBrokerClient
from .src.ContractUtility import ContractUtility
from .src.EndpointFetcher import EndpointFetcher, close_shared_client
from .src.ListenerWorker import ListenerWorker

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


def parse_headers(header_str: str | None) -> dict[str, str]:
    """Parse comma-separated HTTP headers into a dictionary.

    Format: Name1=value1,Name2=value2
    Example: x-api-key=abc123,accept=application/json

    :param header_str: Comma-separated header string.
    :returns: Dict mapping header names to values.
    """
    if not header_str:
        return {}

    headers = {}
    for item in header_str.split(","):
        item = item.strip()
        if "=" in item:
            name, value = item.split("=", 1)
            headers[name.strip()] = value.strip()
    return headers


def build_parser() -> argparse.ArgumentParser:
    """Build the CLI parser. Environment variables provide the defaults."""
    parser = argparse.ArgumentParser(
        description="Claims Oracle: listener worker for one data provider",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Listen on a local node with the provider key from the environment
  PRIVATE_KEY=0x... python -m claims_oracle.main --broker-address 0x5FbDB...

  # Resume from a known block with a tighter fetch timeout
  python -m claims_oracle.main --broker-address 0x5FbDB... \\
      --start-block 1200 --fetch-timeout 5

Environment variables (CLI args take precedence):
  RPC_URL, PRIVATE_KEY, BROKER_ADDRESS, START_BLOCK, POLL_PERIOD,
  FETCH_TIMEOUT, MAX_IN_FLIGHT, ENDPOINT_HEADERS
""",
    )

    parser.add_argument(
        "--rpc-url",
        dest="rpc_url",
        type=str,
        help="RPC endpoint of the ledger (default: http://localhost:8545)",
        default=os.environ.get("RPC_URL") or "http://localhost:8545",
    )

    parser.add_argument(
        "--private-key",
        dest="private_key",
        type=str,
        help="Signing key of the provider this worker represents",
        default=os.environ.get("PRIVATE_KEY"),
    )

    parser.add_argument(
        "--broker-address",
        dest="broker_address",
        type=str,
        help="Address of the request broker contract",
        default=os.environ.get("BROKER_ADDRESS") or os.environ.get("ORACLE_CONTRACT_ADDRESS"),
    )

    parser.add_argument(
        "--start-block",
        dest="start_block",
        type=int,
        help="First block to scan for oracle requests (default: 0)",
        default=int(os.environ.get("START_BLOCK") or "0"),
    )

    parser.add_argument(
        "--poll-period",
        dest="poll_period",
        type=float,
        help="Seconds between log polls (default: 2.0)",
        default=float(os.environ.get("POLL_PERIOD") or "2.0"),
    )

    parser.add_argument(
        "--fetch-timeout",
        dest="fetch_timeout",
        type=float,
        help="Timeout for individual endpoint fetches in seconds (default: 10.0)",
        default=float(os.environ.get("FETCH_TIMEOUT") or "10.0"),
    )

    parser.add_argument(
        "--max-in-flight",
        dest="max_in_flight",
        type=int,
        help="Maximum concurrently handled requests (default: 8)",
        default=int(os.environ.get("MAX_IN_FLIGHT") or "8"),
    )

    parser.add_argument(
        "--headers",
        type=str,
        help="Comma-separated headers sent to endpoints (e.g., x-api-key=abc)",
        default=os.environ.get("ENDPOINT_HEADERS"),
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )
    return parser


def validate_args(parser: argparse.ArgumentParser, args: argparse.Namespace) -> None:
    """Reject invalid configuration through ``parser.error``."""
    if not args.private_key:
        parser.error("--private-key (or PRIVATE_KEY) is required")

    if not args.broker_address:
        parser.error("--broker-address (or BROKER_ADDRESS) is required")

    if args.start_block < 0:
        parser.error("--start-block must not be negative")

    if args.poll_period <= 0:
        parser.error("--poll-period must be positive")

    if args.fetch_timeout <= 0:
        parser.error("--fetch-timeout must be positive")

    if args.max_in_flight < 1:
        parser.error("--max-in-flight must be at least 1")


async def run_worker(worker: ListenerWorker) -> None:
    """Run a worker and release the shared HTTP client afterwards."""
    try:
        await worker.run()
    finally:
        await close_shared_client()


def main() -> None:
    """Main entry point for the listener worker CLI."""
    parser = build_parser()
    args = parser.parse_args()

    # Configure logging level
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    validate_args(parser, args)
    headers = parse_headers(args.headers)

    try:
        contract_utility = ContractUtility(args.rpc_url, args.private_key)
        contract = contract_utility.broker_contract(args.broker_address)
    except Exception as e:  # eth_keys raises its own validation errors for bad keys
        parser.error(f"Invalid configuration: {e}")

    # Log configuration
    logger.info("=" * 60)
    logger.info("Claims Oracle - Listener Worker")
    logger.info("=" * 60)
    logger.info(f"RPC URL:           {contract_utility.rpc_url}")
    logger.info(f"Broker:            {contract.address}")
    logger.info(f"Provider:          {contract_utility.account.address}")
    logger.info(f"Start Block:       {args.start_block}")
    logger.info(f"Poll Period:       {args.poll_period}s")
    logger.info(f"Fetch Timeout:     {args.fetch_timeout}s")
    logger.info(f"Max In Flight:     {args.max_in_flight}")
    if headers:
        logger.info(f"Endpoint Headers:  {', '.join(headers.keys())}")
    logger.info("=" * 60)

    try:
        client = ContractBrokerClient(
            w3=contract_utility.w3,
            contract=contract,
            account=contract_utility.account,
            start_block=args.start_block,
            poll_period=args.poll_period,
        )
        worker = ListenerWorker(
            client=client,
            fetcher=EndpointFetcher(timeout=args.fetch_timeout, headers=headers),
            fetch_timeout=args.fetch_timeout,
            max_in_flight=args.max_in_flight,
        )
        asyncio.run(run_worker(worker))
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    except Exception as e:
        logger.error(f"Fatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
