"""
Market Data Provider Factory - Options Trade-Generation Engine

Selects the concrete MarketDataProvider from configuration so the engine never
names a vendor class directly.

Usage:
    provider = create_market_data_provider("mock")
    provider = create_market_data_provider("tradier", sandbox=True)
    provider = create_market_data_provider()  # MARKET_DATA_PROVIDER or mock
"""

import logging
import os
from typing import Any, Callable, Dict, List, Optional

from .provider import MarketDataProvider

logger = logging.getLogger(__name__)

DEFAULT_PROVIDER = "mock"

# Registry of provider factories keyed by name
_PROVIDER_REGISTRY: Dict[str, Callable[..., MarketDataProvider]] = {}


def register_provider(name: str, factory: Callable[..., MarketDataProvider]) -> None:
    """Register a provider class or factory under a configuration key"""
    _PROVIDER_REGISTRY[name.lower()] = factory
    logger.debug(f"Registered market data provider: {name}")


def get_registered_providers() -> List[str]:
    _lazy_register_providers()
    return sorted(_PROVIDER_REGISTRY)


def create_market_data_provider(name: Optional[str] = None, **options: Any) -> MarketDataProvider:
    """
    Create a market data provider.

    Args:
        name: Registry key ("mock", "polygon", "tradier", "yahoo"); when None,
            read from MARKET_DATA_PROVIDER
        **options: Provider-specific constructor arguments

    Raises:
        ValueError: If the name is not registered
    """
    name = (name or os.environ.get("MARKET_DATA_PROVIDER") or DEFAULT_PROVIDER).lower()
    _lazy_register_providers()

    if name not in _PROVIDER_REGISTRY:
        raise ValueError(f"Unknown market data provider: {name}. Available: {sorted(_PROVIDER_REGISTRY)}")

    provider = _PROVIDER_REGISTRY[name](**options)
    logger.info(f"Created market data provider: {provider.name}")
    return provider


def _lazy_register_providers() -> None:
    """Register the bundled providers; vendor modules are imported on demand"""
    if "mock" not in _PROVIDER_REGISTRY:
        from .mock_provider import MockMarketDataProvider
        register_provider("mock", MockMarketDataProvider)

    if "polygon" not in _PROVIDER_REGISTRY:
        def _polygon(**options):
            from .polygon_provider import PolygonMarketDataProvider
            return PolygonMarketDataProvider(**options)
        register_provider("polygon", _polygon)

    if "tradier" not in _PROVIDER_REGISTRY:
        def _tradier(**options):
            from .tradier_provider import TradierMarketDataProvider
            return TradierMarketDataProvider(**options)
        register_provider("tradier", _tradier)

    if "yahoo" not in _PROVIDER_REGISTRY:
        def _yahoo(**options):
            from .yahoo_provider import YahooMarketDataProvider
            return YahooMarketDataProvider(**options)
        register_provider("yahoo", _yahoo)
