"""
Shared Market Fixtures - Options Trade-Generation Engine

Hand-built quotes, chains, signals, regimes and packets for strategy, ranker,
scoring and broker tests. The chain models a $100 stock 30 days out with a
five-strike put ladder below the money and a five-strike call ladder above.
"""

import uuid
from dataclasses import replace
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import List, Optional, Sequence, Tuple

from trade_engine.custom_types import (
    BreadthAssessment, DataQualityInfo, EarningsProximity, LiquidityScore, MarketBreadth,
    MarketRegime, RiskSentiment, SectorStrength, SymbolSignals, TrendRegime, VolatilityRegime
)
from trade_engine.data.occ import build_occ_symbol
from trade_engine.data.provider import OptionChain, OptionContract, OptionType, Quote
from trade_engine.engine.settings import RiskPreset, TradingSettings, get_default_settings
from trade_engine.strategies.base import (
    ConvictionMeter, ExitRules, LegAction, OptionLeg, PacketStatus, RiskBox, StrategyContext,
    StrategyType, TradePacket
)

TODAY = date.today()
EXPIRATION = TODAY + timedelta(days=30)

# strike: (bid, ask, delta)
PUT_LADDER: Tuple[Tuple[str, str, str, float], ...] = (
    ("80", "0.20", "0.24", -0.05),
    ("85", "0.55", "0.60", -0.12),
    ("90", "1.20", "1.28", -0.22),
    ("95", "2.30", "2.40", -0.35),
    ("100", "4.00", "4.15", -0.50),
)

CALL_LADDER: Tuple[Tuple[str, str, str, float], ...] = (
    ("100", "4.20", "4.35", 0.50),
    ("105", "2.20", "2.30", 0.33),
    ("110", "1.05", "1.12", 0.22),
    ("115", "0.45", "0.50", 0.12),
    ("120", "0.15", "0.19", 0.05),
)


def make_quote(symbol: str = "XYZ", price: str = "100.00", avg_volume: int = 5_000_000) -> Quote:
    value = Decimal(price)
    return Quote(
        symbol=symbol,
        price=value,
        bid=value - Decimal('0.02'),
        ask=value + Decimal('0.02'),
        open=value,
        high=value + 1,
        low=value - 1,
        previous_close=value - Decimal('0.50'),
        volume=avg_volume,
        avg_volume=avg_volume,
        timestamp=datetime.now(timezone.utc),
    )


def make_contract(
    underlying: str,
    expiration: date,
    strike: str,
    option_type: OptionType,
    bid: str,
    ask: str,
    delta: float,
    underlying_price: Decimal = Decimal('100'),
    open_interest: int = 1000,
    volume: int = 200
) -> OptionContract:
    strike_value = Decimal(strike)
    if option_type == OptionType.PUT:
        in_the_money = strike_value > underlying_price
    else:
        in_the_money = strike_value < underlying_price
    return OptionContract(
        symbol=build_occ_symbol(underlying, expiration, option_type, strike_value),
        underlying=underlying,
        expiration=expiration,
        strike=strike_value,
        option_type=option_type,
        bid=Decimal(bid),
        ask=Decimal(ask),
        volume=volume,
        open_interest=open_interest,
        implied_volatility=0.30,
        delta=delta,
        in_the_money=in_the_money,
    )


def make_chain(
    underlying: str = "XYZ",
    expiration: date = EXPIRATION,
    open_interest: int = 1000,
    volume: int = 200
) -> OptionChain:
    puts = [
        make_contract(underlying, expiration, strike, OptionType.PUT, bid, ask, delta,
                      open_interest=open_interest, volume=volume)
        for strike, bid, ask, delta in PUT_LADDER
    ]
    calls = [
        make_contract(underlying, expiration, strike, OptionType.CALL, bid, ask, delta,
                      open_interest=open_interest, volume=volume)
        for strike, bid, ask, delta in CALL_LADDER
    ]
    return OptionChain(underlying=underlying, expiration=expiration, calls=calls, puts=puts)


def make_liquidity(overall: float = 80, meets_minimum: bool = True) -> LiquidityScore:
    return LiquidityScore(
        volume_score=overall, option_oi_score=overall, spread_score=overall,
        overall_score=overall, meets_minimum=meets_minimum,
    )


def make_signals(
    symbol: str = "XYZ",
    trend: TrendRegime = TrendRegime.UPTREND,
    volatility: VolatilityRegime = VolatilityRegime.NORMAL,
    iv_rank: Optional[float] = 45,
    liquidity: Optional[LiquidityScore] = None,
    days_to_earnings: Optional[int] = None,
    within_earnings_window: bool = False
) -> SymbolSignals:
    return SymbolSignals(
        symbol=symbol,
        trend=trend,
        trend_score=35.0,
        ma50=97.0,
        ma200=92.0,
        price_vs_ma50_pct=3.09,
        price_vs_ma200_pct=8.7,
        volatility=volatility,
        iv_rank=iv_rank,
        hv20=22.0,
        liquidity=liquidity or make_liquidity(),
        earnings_proximity=EarningsProximity(days_to_earnings, within_earnings_window),
        computed_at=datetime.now(timezone.utc),
        current_iv=28.0,
        price=100.0,
    )


def make_regime(
    trend: TrendRegime = TrendRegime.UPTREND,
    volatility: VolatilityRegime = VolatilityRegime.NORMAL,
    risk: RiskSentiment = RiskSentiment.RISK_ON,
    breadth: BreadthAssessment = BreadthAssessment.HEALTHY,
    leadership: Optional[List[SectorStrength]] = None,
    missing_fields: Sequence[str] = ()
) -> MarketRegime:
    return MarketRegime(
        trend=trend,
        volatility=volatility,
        risk_on_off=risk,
        breadth=MarketBreadth(adv_dec_ratio=1.5, percent_above_50ma=60.0, assessment=breadth),
        leadership=leadership,
        computed_at=datetime.now(timezone.utc),
        data_quality=DataQualityInfo(
            has_full_data=not missing_fields, missing_fields=list(missing_fields), data_source="fixture"
        ),
        trend_score=30.0,
    )


def large_account_settings(preset: RiskPreset = RiskPreset.BALANCED) -> TradingSettings:
    """Preset with a $500k account so collateral-heavy structures fit the per-trade cap"""
    settings = get_default_settings(preset)
    return replace(settings, risk_limits=replace(settings.risk_limits, account_size=Decimal('500000')))


def make_context(
    settings: Optional[TradingSettings] = None,
    signals: Optional[SymbolSignals] = None,
    regime: Optional[MarketRegime] = None,
    chain: Optional[OptionChain] = None,
    risk_preset: Optional[RiskPreset] = None,
    quote: Optional[Quote] = None
) -> StrategyContext:
    settings = settings or get_default_settings(RiskPreset.BALANCED)
    return StrategyContext(
        quote=quote or make_quote(),
        chain=chain or make_chain(),
        signals=signals or make_signals(),
        regime=regime or make_regime(),
        settings=settings,
        risk_preset=risk_preset or settings.risk_preset,
        recompute_run_id="run-fixture",
        today=TODAY,
    )


def make_packet(
    symbol: str = "XYZ",
    strategy_type: StrategyType = StrategyType.PUT_CREDIT_SPREAD,
    score: float = 70,
    max_loss: str = "400",
    credit: str = "100",
    trend: TrendRegime = TrendRegime.UPTREND
) -> TradePacket:
    """Minimal vertical or single-leg packet with the given score and risk"""
    is_put = strategy_type in (StrategyType.CASH_SECURED_PUT, StrategyType.PUT_CREDIT_SPREAD)
    option_type = OptionType.PUT if is_put else OptionType.CALL
    short_strike, long_strike = ("90", "85") if is_put else ("110", "115")

    short = make_contract(symbol, EXPIRATION, short_strike, option_type, "1.20", "1.28", -0.22 if is_put else 0.22)
    legs = [OptionLeg(action=LegAction.SELL, quantity=1, contract=short, order_price=short.mid)]
    if strategy_type.is_spread:
        long = make_contract(symbol, EXPIRATION, long_strike, option_type, "0.20", "0.26", -0.12 if is_put else 0.12)
        legs.append(OptionLeg(action=LegAction.BUY, quantity=1, contract=long, order_price=long.mid))

    loss = Decimal(max_loss)
    profit = Decimal(credit)
    return TradePacket(
        id=str(uuid.uuid4()),
        workspace_id="local",
        created_at=datetime.now(timezone.utc),
        symbol=symbol,
        strategy_type=strategy_type,
        status=PacketStatus.CANDIDATE,
        underlying_price=Decimal('100'),
        market_regime=make_regime(),
        symbol_signals=make_signals(symbol, trend=trend),
        legs=legs,
        net_credit=profit,
        net_debit=None,
        dte=30,
        risk_box=RiskBox(
            max_profit=profit,
            max_loss=loss,
            breakeven=Decimal('89'),
            breakeven_lower=None,
            breakeven_upper=None,
            buying_power_required=loss,
            collateral_required=loss,
            return_on_risk=float(profit / loss * 100 * 365 / 30),
            return_on_capital=float(profit / loss * 100),
            probability_of_profit=78.0,
        ),
        exit_rules=ExitRules(profit_target_pct=50, max_loss_pct=100, dte_exit=14, roll_guidance="Roll out"),
        invalidation_conditions=[],
        score=score,
        score_components=[],
        setup_score=score,
        reasons=[],
        conviction=ConvictionMeter(confidence=60, uncertainty=10),
        settings_version_id="default",
        risk_preset=RiskPreset.BALANCED,
        recompute_run_id="run-fixture",
        order_ticket_instructions="",
        plain_english_summary="",
        learning_notes=[],
    )
