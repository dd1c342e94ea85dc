"""
Pytest Configuration and Shared Fixtures - Options Trade-Generation Engine

Shared pytest configuration, markers and fixtures for the provider, signal,
strategy, engine and broker test suites.
"""

import logging
import random
from dataclasses import replace
from datetime import date

import numpy as np
import pytest
import pytest_asyncio

from trade_engine.data.cache import CacheRegistry
from trade_engine.data.mock_provider import MockMarketDataProvider
from trade_engine.engine.settings import RiskPreset, get_default_settings, with_kill_switches

# Configure logging for tests
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

# Per-candidate strategy logs are noisy at DEBUG
logging.getLogger('strategy').setLevel(logging.INFO)


class FakeClock:
    """Manually advanced monotonic clock for TTL tests"""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def mock_provider():
    """Deterministic market data pinned to today"""
    return MockMarketDataProvider(today=date.today())


@pytest_asyncio.fixture
async def cache_registry():
    registry = CacheRegistry()
    yield registry
    await registry.close()


@pytest.fixture
def balanced_settings():
    return get_default_settings(RiskPreset.BALANCED)


@pytest.fixture
def paper_trading_settings(balanced_settings):
    """Trading on, broker execution off, paper mode on"""
    return with_kill_switches(balanced_settings, trading_enabled=True)


@pytest.fixture
def live_trading_settings(balanced_settings):
    return with_kill_switches(balanced_settings, trading_enabled=True, broker_execution_enabled=True)


class SettingsHolder:
    """Mutable settings source handed to components that re-read settings"""

    def __init__(self, settings):
        self.settings = settings

    def __call__(self):
        return self.settings

    def update(self, **switches) -> None:
        self.settings = with_kill_switches(self.settings, **switches)

    def set_daily_cap(self, cap: int) -> None:
        self.settings = replace(
            self.settings, risk_limits=replace(self.settings.risk_limits, max_new_orders_per_day=cap)
        )


@pytest.fixture
def settings_holder(balanced_settings):
    return SettingsHolder(balanced_settings)


# Custom pytest markers
def pytest_configure(config):
    """Configure custom pytest markers"""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )


@pytest.fixture(autouse=True)
def set_random_seed():
    """Set random seed for reproducible tests"""
    random.seed(42)
    np.random.seed(42)
