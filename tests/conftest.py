import os
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

# Set test environment
os.environ["ENV"] = "test"
os.environ["LOG_LEVEL"] = "ERROR"  # Reduce noise in tests
os.environ["DATA_PROVIDER_URL"] = "https://provider.test/api"
os.environ["DATA_PROVIDER_RETRY_BACKOFF"] = "0"

from walletguard.alerts import AlertService, AlertStore
from walletguard.cache import CacheService
from walletguard.error_handling import ErrorCollector
from walletguard.external_apis import DataProvider
from walletguard.models import TokenHolding, TokenPrice, Transaction
from walletguard.risk_engine import RiskCalculator


class FakeClock:
    """Manually advanced monotonic clock"""

    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def sample_wallet_address():
    """Sample wallet address for testing"""
    return "0x742b4c0d8fd9b2b29e70dc3e08f4e98a78b3a2b5"


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def cache(fake_clock):
    return CacheService(default_ttl=300, clock=fake_clock)


@pytest.fixture
def risk_calculator():
    return RiskCalculator()


@pytest.fixture
def mock_data_provider():
    """Data provider double; tests set return values per call"""
    provider = AsyncMock(spec=DataProvider)
    provider.get_token_price.return_value = TokenPrice(symbol="AURA", current=1.0, change_24h=0.0)
    provider.get_token_balances.return_value = []
    provider.get_transactions.return_value = []
    return provider


@pytest.fixture
def alert_store():
    return AlertStore(notification_history=100)


@pytest.fixture
def error_collector():
    return ErrorCollector()


@pytest.fixture
def alert_service(alert_store, mock_data_provider, risk_calculator, error_collector):
    return AlertService(alert_store, mock_data_provider, risk_calculator,
                        error_collector=error_collector, trigger_policy="latch")


@pytest.fixture
def sample_holdings():
    """Mixed portfolio resembling a typical wallet"""
    return [
        TokenHolding(symbol="AURA", name="Aura Network", balance=5000, value_usd=2500),
        TokenHolding(symbol="ETH", name="Ethereum", balance=0.5, value_usd=1800),
        TokenHolding(symbol="USDC", name="USD Coin", balance=1000, value_usd=1000),
        TokenHolding(symbol="LINK", name="Chainlink", balance=50, value_usd=850),
    ]


@pytest.fixture
def risky_transaction():
    return Transaction(
        hash="0xabc",
        from_address="0x742b4c0d8fd9b2b29e70dc3e08f4e98a78b3a2b5",
        to_address="0x000000000000000000000000000000000000dead",
        value=25000,
        gas_used=650000,
        token_transfers=[{"token": "PEPE"}] * 6,
        timestamp=datetime.now(timezone.utc) + timedelta(minutes=1),
    )
