"""
Broker Provider Factory - Options Trade-Generation Engine

Creates a BrokerProvider for a BrokerMode. ``live`` maps onto the Tradier
brokerage provider, which is imported only when requested.

Usage:
    broker = create_broker_provider(BrokerMode.PAPER)
    broker = create_broker_provider("live", account_id="VA000000")
    broker = create_broker_provider()  # BROKER_MODE or manual
"""

import logging
import os
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Union

from .base import BrokerMode, BrokerProvider

logger = logging.getLogger(__name__)

DEFAULT_PAPER_BALANCE = Decimal('100000')
DEFAULT_SLIPPAGE_BPS = 5.0

# Registry of provider factories keyed by broker mode
_BROKER_REGISTRY: Dict[str, Callable[..., BrokerProvider]] = {}


def register_broker(mode: str, factory: Callable[..., BrokerProvider]) -> None:
    _BROKER_REGISTRY[mode.lower()] = factory
    logger.debug(f"Registered broker provider: {mode}")


def get_registered_brokers() -> List[str]:
    _lazy_register_brokers()
    return sorted(_BROKER_REGISTRY)


def create_broker_provider(mode: Union[BrokerMode, str, None] = None, **options: Any) -> BrokerProvider:
    """
    Create a broker provider.

    Args:
        mode: BrokerMode or its value; when None, read from BROKER_MODE
        **options: Provider-specific constructor arguments

    Raises:
        ValueError: If the mode is not registered
    """
    if isinstance(mode, BrokerMode):
        key = mode.value
    else:
        key = (mode or os.environ.get("BROKER_MODE") or BrokerMode.MANUAL.value).lower()

    _lazy_register_brokers()
    if key not in _BROKER_REGISTRY:
        raise ValueError(f"Unknown broker mode: {key}. Available: {sorted(_BROKER_REGISTRY)}")

    provider = _BROKER_REGISTRY[key](**options)
    logger.info(f"Created broker provider: {provider.name} (mode={key})")
    return provider


def _lazy_register_brokers() -> None:
    if BrokerMode.MANUAL.value not in _BROKER_REGISTRY:
        from .manual import ManualBrokerProvider
        register_broker(BrokerMode.MANUAL.value, ManualBrokerProvider)

    if BrokerMode.PAPER.value not in _BROKER_REGISTRY:
        def _paper(
            starting_balance: Decimal = DEFAULT_PAPER_BALANCE,
            slippage_bps: float = DEFAULT_SLIPPAGE_BPS,
            **options
        ):
            from .paper import PaperBrokerProvider
            return PaperBrokerProvider(starting_balance=starting_balance, slippage_bps=slippage_bps, **options)
        register_broker(BrokerMode.PAPER.value, _paper)

    if BrokerMode.LIVE.value not in _BROKER_REGISTRY:
        def _live(**options):
            from .tradier import TradierBrokerProvider
            return TradierBrokerProvider(**options)
        register_broker(BrokerMode.LIVE.value, _live)
