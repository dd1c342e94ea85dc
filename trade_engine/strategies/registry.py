"""
Strategy Registry - Options Trade-Generation Engine

Explicit, ordered list of the strategies the orchestrator runs for every
symbol and expiration. Order is stable and determines candidate order
before ranking.
"""

from typing import Dict, List, Optional, Sequence

from .base import StrategyType, TradeStrategy
from .cash_secured_put import CashSecuredPutStrategy
from .covered_call import CoveredCallStrategy
from .credit_spread import call_credit_spread, put_credit_spread


class StrategyRegistry:
    """Ordered collection of TradeStrategy implementations keyed by type"""

    def __init__(self, strategies: Optional[Sequence[TradeStrategy]] = None):
        self._strategies: Dict[StrategyType, TradeStrategy] = {}
        for strategy in strategies if strategies is not None else default_strategies():
            self.register(strategy)

    def register(self, strategy: TradeStrategy) -> None:
        if strategy.strategy_type in self._strategies:
            raise ValueError(f"Strategy already registered: {strategy.strategy_type.value}")
        self._strategies[strategy.strategy_type] = strategy

    def get(self, strategy_type: StrategyType) -> TradeStrategy:
        return self._strategies[StrategyType(strategy_type)]

    def all(self) -> List[TradeStrategy]:
        return list(self._strategies.values())

    @property
    def types(self) -> List[StrategyType]:
        return list(self._strategies)

    def __len__(self) -> int:
        return len(self._strategies)

    def __iter__(self):
        return iter(self.all())


def default_strategies() -> List[TradeStrategy]:
    return [
        CashSecuredPutStrategy(),
        CoveredCallStrategy(),
        put_credit_spread(),
        call_credit_spread(),
    ]
