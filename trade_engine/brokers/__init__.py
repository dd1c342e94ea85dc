"""
Brokers Module

Components:
- base: order/account/position records, BrokerProvider protocol, broker errors
- manual: order tickets the user enters at their own broker
- paper: simulated account with deterministic fills
- tradier: live/sandbox Tradier brokerage
- factory: mode-keyed provider selection
- execution: BrokerExecutionManager and its kill-switch gates
"""

from .base import (
    AccountInfo,
    BrokerConfig,
    BrokerError,
    BrokerMode,
    BrokerPosition,
    BrokerProvider,
    Order,
    OrderLeg,
    OrderRequest,
    OrderResponse,
    OrderSide,
    OrderStatus,
    OrderType,
    SafetyGateRejection,
)
from .factory import create_broker_provider
from .execution import BrokerExecutionManager, ExecutionPath
