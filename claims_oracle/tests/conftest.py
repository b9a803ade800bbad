"""Shared fixtures for the claims oracle tests."""

import pytest
from eth_account import Account

from claims_oracle.src.Aggregator import AggregationPolicy
from claims_oracle.src.ProviderRegistry import ProviderRegistry
from claims_oracle.src.RequestBroker import RequestBroker

# Well-known local development keys.
PROVIDER_KEYS = [
    "0x59c6995e998f97a5a0044966f0945389dc9e86dae88c7a8412f4603b6b78690d",
    "0x5de4111afa1a4b94908f83103eb1f1706367c2e68ca870fc3fb9a804cdab365a",
    "0x7c852118294e51e653712a81e05800f419141751be58f605c371e15141b007a6",
]
OUTSIDER_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"

DEPARTURE = "2025-03-30T15:00:00Z"


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def address_of(private_key: str) -> str:
    return Account.from_key(private_key).address


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def provider_addresses() -> list[str]:
    return [address_of(k) for k in PROVIDER_KEYS]


def make_broker(
    clock: FakeClock,
    provider_count: int,
    policy: AggregationPolicy | None = None,
) -> RequestBroker:
    """Build a broker with ``provider_count`` registered providers."""
    registry = ProviderRegistry(clock=clock)
    for i, key in enumerate(PROVIDER_KEYS[:provider_count]):
        registry.register_provider(
            address_of(key),
            f"https://provider{i}.example.com/{{subject}}?departure={{time_window}}",
            "data.delayMinutes",
            "flightdelay",
        )
    return RequestBroker(registry=registry, policy=policy, clock=clock)


@pytest.fixture
def broker(clock: FakeClock) -> RequestBroker:
    return make_broker(clock, 3)
