"""
Pytest configuration and shared fixtures
"""

import pytest
from fastapi.testclient import TestClient
from eth_account import Account

from arcadia.api.server import create_app
from arcadia.api.services import build_services
from arcadia.chain.simulated import SimulatedChain
from arcadia.config import ArcadiaConfig
from arcadia.database.client import InMemoryPaymentStore
from tests.helpers import (
    CONTRACT,
    OWNER,
    TREASURY,
    WEBHOOK_SECRET,
    FakeClock,
    RecordingGenerationTrigger,
)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config() -> ArcadiaConfig:
    """Deterministic config that ignores the developer's .env"""
    return ArcadiaConfig(
        _env_file=None,
        network="scroll-sepolia",
        chain_mode="simulated",
        escrow_contract_address=CONTRACT,
        treasury_address=TREASURY,
        contract_owner_address=OWNER,
        x402_webhook_secret=WEBHOOK_SECRET,
        merchant_id="",
        store_backend="memory",
        rate_limit_enabled=False,
    )


@pytest.fixture
def test_payer_account():
    """Create a test payer account"""
    return Account.from_key("0xabcdef1234567890abcdef1234567890abcdef1234567890abcdef1234567890")


@pytest.fixture
def payer(test_payer_account) -> str:
    return test_payer_account.address.lower()


@pytest.fixture
def chain(clock, payer) -> SimulatedChain:
    """Simulated Scroll Sepolia with the escrow deployed and a funded payer"""
    chain = SimulatedChain.deploy(
        owner=OWNER,
        treasury=TREASURY,
        contract_address=CONTRACT,
        network="scroll-sepolia",
        clock=clock.timestamp,
    )
    chain.fund(payer, 10 ** 18)
    chain.fund(TREASURY, 10 ** 18)
    return chain


@pytest.fixture
def store() -> InMemoryPaymentStore:
    return InMemoryPaymentStore()


@pytest.fixture
def generation() -> RecordingGenerationTrigger:
    return RecordingGenerationTrigger()


@pytest.fixture
def services(config, chain, store, generation, clock):
    return build_services(config, chain=chain, store=store, generation=generation, clock=clock.now)


@pytest.fixture
def generator(services):
    return services.generator


@pytest.fixture
def verifier(services):
    return services.verifier


@pytest.fixture
def reconciler(services):
    return services.reconciler


@pytest.fixture
def gateway(services):
    return services.gateway


@pytest.fixture
def client(config, services) -> TestClient:
    """Create FastAPI test client (sync) without the maintenance loop"""
    return TestClient(create_app(config=config, services=services, run_maintenance=False))

