"""
Strategy Contracts - Options Trade-Generation Engine

Shared records for the strategy layer (legs, risk box, exit rules, reasons,
conviction, candidates and the final TradePacket), the TradeStrategy
protocol every strategy satisfies, and the helpers strategies use to gate,
reason about and score their candidates.

A strategy is a plain class exposing should_consider / find_candidates /
candidate_to_packet. Strategies are collected in an explicit ordered
registry rather than discovered through inheritance.

NO BUSINESS LOGIC - INTERFACES ONLY (plus shared helpers)
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol

from ..custom_types import (
    BreadthAssessment, MarketRegime, RiskSentiment, SymbolSignals, VolatilityRegime
)
from ..data.provider import OptionChain, OptionContract, Quote
from ..engine.settings import LiquidityFilters, RiskPreset, StrategySettings, TradingSettings
from ..utils import calculate_dte, clamp, to_serializable, utc_now

logger = logging.getLogger(__name__)

# Cheapest premium worth selling, per share
MIN_PREMIUM = Decimal('0.10')

MAX_CANDIDATES_PER_EXPIRATION = 3


class StrategyType(Enum):
    CASH_SECURED_PUT = "cash_secured_put"
    COVERED_CALL = "covered_call"
    PUT_CREDIT_SPREAD = "put_credit_spread"
    CALL_CREDIT_SPREAD = "call_credit_spread"

    @property
    def label(self) -> str:
        return self.value.replace("_", " ").title()

    @property
    def is_spread(self) -> bool:
        return self in (StrategyType.PUT_CREDIT_SPREAD, StrategyType.CALL_CREDIT_SPREAD)


class PacketStatus(Enum):
    CANDIDATE = "candidate"
    APPROVED = "approved"
    REJECTED = "rejected"
    SUBMITTED = "submitted"
    EXPIRED = "expired"


class LegAction(Enum):
    BUY = "buy"
    SELL = "sell"


class InvalidationType(Enum):
    PRICE_BREACH = "price_breach"
    TREND_BREAK = "trend_break"
    VOL_SPIKE = "vol_spike"
    LIQUIDITY_DETERIORATION = "liquidity_deterioration"


@dataclass(frozen=True)
class OptionLeg:
    action: LegAction
    quantity: int
    contract: OptionContract
    order_price: Decimal  # per share limit for this leg

    @property
    def is_short(self) -> bool:
        return self.action == LegAction.SELL


@dataclass(frozen=True)
class RiskBox:
    """Per-contract dollar risk profile of a trade"""
    max_profit: Decimal
    max_loss: Decimal
    breakeven: Decimal
    breakeven_lower: Optional[Decimal]
    breakeven_upper: Optional[Decimal]
    buying_power_required: Decimal
    collateral_required: Decimal
    return_on_risk: float  # annualized percent
    return_on_capital: float
    probability_of_profit: float


@dataclass(frozen=True)
class ExitRules:
    profit_target_pct: float
    max_loss_pct: Optional[float]
    dte_exit: int
    roll_guidance: str


@dataclass(frozen=True)
class InvalidationCondition:
    type: InvalidationType
    description: str
    threshold: str


@dataclass(frozen=True)
class Reason:
    category: str
    check: str
    passed: bool
    value: str
    threshold: str
    weight: float
    contribution: float


@dataclass(frozen=True)
class ScoreComponent:
    name: str
    raw_value: float
    normalized_score: float  # 0-100
    weight: float
    weighted_score: float


@dataclass(frozen=True)
class ConvictionFactor:
    factor: str
    impact: str  # positive | negative
    description: str


@dataclass(frozen=True)
class ConvictionMeter:
    confidence: float  # 0-100
    uncertainty: float  # 0-100
    factors: List[ConvictionFactor] = field(default_factory=list)


@dataclass(frozen=True)
class LearningNote:
    topic: str
    explanation: str


@dataclass(frozen=True)
class StrategyCandidate:
    legs: List[OptionLeg]
    net_credit: Decimal  # per contract
    dte: int
    risk_box: RiskBox
    exit_rules: ExitRules
    invalidation_conditions: List[InvalidationCondition]
    reasons: List[Reason]
    score_components: List[ScoreComponent]
    score: float
    conviction: ConvictionMeter
    plain_english_summary: str
    learning_notes: List[LearningNote]
    order_ticket_instructions: str


@dataclass(frozen=True)
class StrategyContext:
    """Everything a strategy needs to evaluate one symbol and one expiration"""
    quote: Quote
    chain: OptionChain
    signals: SymbolSignals
    regime: MarketRegime
    settings: TradingSettings
    settings_version_id: str = "default"
    risk_preset: RiskPreset = RiskPreset.BALANCED
    workspace_id: str = "local"
    recompute_run_id: str = ""
    today: Optional[date] = None

    @property
    def dte(self) -> int:
        return calculate_dte(self.chain.expiration, self.today)


@dataclass(frozen=True)
class TradePacket:
    """Canonical, immutable trade proposal handed to ranker, caller and broker"""
    id: str
    workspace_id: str
    created_at: datetime
    symbol: str
    strategy_type: StrategyType
    status: PacketStatus
    underlying_price: Decimal
    market_regime: MarketRegime
    symbol_signals: SymbolSignals
    legs: List[OptionLeg]
    net_credit: Decimal
    net_debit: Optional[Decimal]
    dte: int
    risk_box: RiskBox
    exit_rules: ExitRules
    invalidation_conditions: List[InvalidationCondition]
    score: float
    score_components: List[ScoreComponent]
    setup_score: float
    reasons: List[Reason]
    conviction: ConvictionMeter
    settings_version_id: str
    risk_preset: RiskPreset
    recompute_run_id: str
    order_ticket_instructions: str
    plain_english_summary: str
    learning_notes: List[LearningNote]

    @property
    def max_loss(self) -> Decimal:
        return self.risk_box.max_loss

    @property
    def expiration(self) -> date:
        return self.legs[0].contract.expiration

    @property
    def short_leg(self) -> OptionLeg:
        return next(leg for leg in self.legs if leg.is_short)

    def to_dict(self) -> Dict[str, Any]:
        return to_serializable(self)


class TradeStrategy(Protocol):
    """
    Capability set shared by every strategy.

    Implementations are stateless; one instance can serve any number of
    concurrent evaluations.
    """

    strategy_type: StrategyType
    name: str

    def should_consider(self, context: StrategyContext) -> bool:
        """Gate on enabled flag, regime preferences and expiration window"""
        ...

    def find_candidates(self, context: StrategyContext) -> List[StrategyCandidate]:
        """Scan the chain in the context and return the best candidates"""
        ...

    def candidate_to_packet(self, candidate: StrategyCandidate, context: StrategyContext) -> TradePacket:
        ...


def passes_common_gates(
    strategy_settings: StrategySettings,
    context: StrategyContext,
    strategy_logger: logging.Logger
) -> bool:
    """Enabled flag, liquidity floor, earnings window and expiration DTE"""
    signals = context.signals
    if not strategy_settings.enabled:
        return False
    if not signals.liquidity.meets_minimum:
        strategy_logger.debug(f"{signals.symbol}: underlying liquidity below minimum")
        return False
    if signals.earnings_proximity.within_exclusion_window:
        strategy_logger.debug(f"{signals.symbol}: inside earnings exclusion window")
        return False
    if context.chain.is_empty:
        return False
    dte = context.dte
    if dte < strategy_settings.min_dte or dte > strategy_settings.max_dte:
        strategy_logger.debug(f"{signals.symbol}: DTE {dte} outside [{strategy_settings.min_dte}, {strategy_settings.max_dte}]")
        return False
    return True


def passes_leg_liquidity(
    contract: OptionContract,
    filters: LiquidityFilters,
    spread_multiplier: float = 1.0,
    oi_divisor: float = 1.0,
    check_volume: bool = True
) -> bool:
    """Bid-ask spread, open interest and volume floors for one contract"""
    if contract.spread_pct > filters.max_bid_ask_spread_pct * spread_multiplier:
        return False
    if contract.open_interest < filters.min_option_oi / oi_divisor:
        return False
    if check_volume and contract.volume < filters.min_option_volume:
        return False
    return True


def delta_in_window(contract: OptionContract, strategy_settings: StrategySettings) -> bool:
    """Delta inside the target window, sign-adjusted for puts"""
    if contract.delta is None:
        return False
    delta = abs(contract.delta) if contract.is_put else contract.delta
    return strategy_settings.target_delta_min <= delta <= strategy_settings.target_delta_max


def create_reason(
    category: str,
    check: str,
    passed: bool,
    value: Any,
    threshold: Any,
    weight: float = 1.0
) -> Reason:
    return Reason(
        category=category,
        check=check,
        passed=bool(passed),
        value=str(value),
        threshold=str(threshold),
        weight=weight,
        contribution=weight if passed else 0.0,
    )


def create_score_component(name: str, raw_value: float, weight: float, max_value: float = 100) -> ScoreComponent:
    """Normalize raw_value against max_value onto 0-100 and weight it"""
    normalized = clamp(float(raw_value) / max_value * 100, 0, 100) if max_value else 0.0
    return ScoreComponent(
        name=name,
        raw_value=round(float(raw_value), 2),
        normalized_score=float(round(normalized)),
        weight=weight,
        weighted_score=float(round(normalized * weight)),
    )


def total_score(components: List[ScoreComponent]) -> float:
    return float(round(sum(c.weighted_score for c in components)))


def calculate_conviction(
    reasons: List[Reason],
    signals: SymbolSignals,
    regime: MarketRegime
) -> ConvictionMeter:
    """
    Confidence and uncertainty meters plus the factors behind them.

    Confidence blends the share of passed checks, the liquidity score and
    IV rank. Uncertainty accumulates for earnings proximity, stressed
    volatility, thin liquidity and weak breadth.
    """
    factors: List[ConvictionFactor] = []
    liquidity = signals.liquidity.overall_score

    if liquidity >= 70:
        factors.append(ConvictionFactor("High liquidity", "positive", "Strong option volume and tight spreads"))
    elif liquidity < 40:
        factors.append(ConvictionFactor("Low liquidity", "negative", "Limited option activity, wider spreads"))

    if regime.risk_on_off == RiskSentiment.RISK_ON and signals.trend.is_bullish:
        factors.append(ConvictionFactor("Favorable regime", "positive", "Uptrend with risk-on market environment"))
    elif regime.risk_on_off == RiskSentiment.RISK_OFF:
        factors.append(ConvictionFactor("Defensive regime", "negative", "Risk-off environment warrants caution"))

    if signals.iv_rank is not None:
        if signals.iv_rank >= 50:
            factors.append(ConvictionFactor("Elevated IV", "positive", "Higher premiums available for selling"))
        elif signals.iv_rank < 20:
            factors.append(ConvictionFactor("Low IV", "negative", "Lower premiums may reduce returns"))

    in_earnings_window = signals.earnings_proximity.within_exclusion_window
    if in_earnings_window:
        factors.append(ConvictionFactor("Earnings approaching", "negative", "Event risk from upcoming earnings"))

    pass_rate = sum(1 for r in reasons if r.passed) / len(reasons) if reasons else 0.0
    iv_rank = signals.iv_rank if signals.iv_rank is not None else 50
    confidence = round(pass_rate * 50 + liquidity * 0.3 + iv_rank * 0.2)

    uncertainty = 0
    if in_earnings_window:
        uncertainty += 20
    if regime.volatility in (VolatilityRegime.HIGH, VolatilityRegime.PANIC):
        uncertainty += 20
    if liquidity < 50:
        uncertainty += 15
    if regime.breadth.assessment in (BreadthAssessment.WEAK, BreadthAssessment.VERY_WEAK):
        uncertainty += 15

    return ConvictionMeter(
        confidence=float(clamp(confidence, 0, 100)),
        uncertainty=float(min(100, uncertainty)),
        factors=factors,
    )


def risk_pct_of_account(max_loss: Decimal, settings: TradingSettings) -> float:
    return float(max_loss / settings.risk_limits.effective_account_size * 100)


def build_trade_packet(
    strategy_type: StrategyType,
    candidate: StrategyCandidate,
    context: StrategyContext
) -> TradePacket:
    """Stamp a candidate with identity, provenance and run metadata"""
    return TradePacket(
        id=str(uuid.uuid4()),
        workspace_id=context.workspace_id,
        created_at=utc_now(),
        symbol=context.quote.symbol,
        strategy_type=strategy_type,
        status=PacketStatus.CANDIDATE,
        underlying_price=context.quote.price,
        market_regime=context.regime,
        symbol_signals=context.signals,
        legs=list(candidate.legs),
        net_credit=candidate.net_credit,
        net_debit=None,
        dte=candidate.dte,
        risk_box=candidate.risk_box,
        exit_rules=candidate.exit_rules,
        invalidation_conditions=list(candidate.invalidation_conditions),
        score=candidate.score,
        score_components=list(candidate.score_components),
        setup_score=candidate.score,
        reasons=list(candidate.reasons),
        conviction=candidate.conviction,
        settings_version_id=context.settings_version_id,
        risk_preset=context.risk_preset,
        recompute_run_id=context.recompute_run_id,
        order_ticket_instructions=candidate.order_ticket_instructions,
        plain_english_summary=candidate.plain_english_summary,
        learning_notes=list(candidate.learning_notes),
    )
