"""
Credit Spread Strategies - Options Trade-Generation Engine

Vertical credit spreads with a fixed strike width:

- Put Credit Spread (bull put): sell a put, buy a lower-strike put.
  Profits when the stock stays above the short strike.
- Call Credit Spread (bear call): sell a call, buy a higher-strike call.
  Profits when the stock stays below the short strike.

Risk Characteristics (both):
- Max Profit: Net credit received
- Max Loss: Spread width x 100 - net credit
- Breakeven: Short strike -/+ net credit per share

The two strategies share one scanner parameterized by a SpreadProfile that
captures everything direction-specific.

BUSINESS LOGIC IMPLEMENTATION
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Dict, List, Optional

from ..custom_types import TrendRegime
from ..data.provider import OptionContract
from ..engine.settings import SpreadStrategySettings, TradingSettings
from ..signals.indicators import calculate_annualized_return, calculate_return_on_capital
from ..utils import money
from .base import (
    MAX_CANDIDATES_PER_EXPIRATION, ExitRules, InvalidationCondition, InvalidationType,
    LearningNote, LegAction, OptionLeg, RiskBox, StrategyCandidate, StrategyContext,
    StrategyType, TradePacket, build_trade_packet, calculate_conviction, create_reason,
    create_score_component, delta_in_window, passes_common_gates, passes_leg_liquidity,
    risk_pct_of_account, total_score,
)

# Long leg strike may sit this far from the ideal width
STRIKE_TOLERANCE = Decimal('0.5')


@dataclass(frozen=True)
class SpreadProfile:
    """Direction-specific knobs for one vertical credit spread"""
    strategy_type: StrategyType
    name: str
    option_label: str  # PUT | CALL
    direction: int  # -1 long leg below the short, +1 above
    avoided_trend: TrendRegime
    trend_alignment: Dict[TrendRegime, int]
    trend_alignment_default: int
    settings_of: Callable[[TradingSettings], SpreadStrategySettings]
    roll_guidance: str
    why_note: str
    break_direction: str  # falls below | rises above
    trend_invalidation: str
    trend_invalidation_threshold: str


PUT_CREDIT_SPREAD = SpreadProfile(
    strategy_type=StrategyType.PUT_CREDIT_SPREAD,
    name="Put Credit Spread",
    option_label="PUT",
    direction=-1,
    avoided_trend=TrendRegime.STRONG_DOWNTREND,
    trend_alignment={TrendRegime.STRONG_UPTREND: 100, TrendRegime.UPTREND: 80, TrendRegime.NEUTRAL: 60},
    trend_alignment_default=30,
    settings_of=lambda s: s.put_credit_spread,
    roll_guidance=(
        "If tested (price approaching short strike), consider closing for a loss or rolling "
        "down and out for additional credit."
    ),
    why_note=(
        "A put credit spread is a defined-risk bullish strategy. Unlike a cash-secured put, "
        "your max loss is capped by the long put. This requires less capital and clearly "
        "defines your risk."
    ),
    break_direction="falls below",
    trend_invalidation="Trend turns bearish",
    trend_invalidation_threshold="Downtrend confirmed",
)

CALL_CREDIT_SPREAD = SpreadProfile(
    strategy_type=StrategyType.CALL_CREDIT_SPREAD,
    name="Call Credit Spread",
    option_label="CALL",
    direction=1,
    avoided_trend=TrendRegime.STRONG_UPTREND,
    trend_alignment={TrendRegime.STRONG_DOWNTREND: 100, TrendRegime.DOWNTREND: 80, TrendRegime.NEUTRAL: 70},
    trend_alignment_default=40,
    settings_of=lambda s: s.call_credit_spread,
    roll_guidance=(
        "If tested (price approaching short strike), consider closing for a loss or rolling "
        "up and out for additional credit."
    ),
    why_note=(
        "A call credit spread is a defined-risk bearish/neutral strategy. You profit when the "
        "stock stays below your short call strike. Risk is capped by the long call."
    ),
    break_direction="rises above",
    trend_invalidation="Trend turns strongly bullish",
    trend_invalidation_threshold="Strong uptrend confirmed",
)


class CreditSpreadStrategy:
    """
    Vertical credit spread scanner.

    Entry Criteria:
    - Strategy enabled, underlying liquid, no earnings inside the window
    - Symbol volatility in the preferred volatility list (when configured)
    - Not in the trend that runs straight at the short strike
    - Short delta inside the target window, both legs OTM
    - Long leg exactly spread_width away (within $0.50)
    - Short spread <= max, long spread <= 1.5 x max
    - Short OI >= min, long OI >= min / 2
    - Net credit >= min_credit and max loss within max_risk_per_trade_pct
    """

    def __init__(self, profile: SpreadProfile):
        self.profile = profile
        self.strategy_type = profile.strategy_type
        self.name = profile.name
        self._logger = logging.getLogger(f"strategy.{self.strategy_type.value}")

    def _contracts(self, context: StrategyContext) -> List[OptionContract]:
        return context.chain.puts if self.profile.direction < 0 else context.chain.calls

    def should_consider(self, context: StrategyContext) -> bool:
        settings = context.settings
        signals = context.signals
        if not passes_common_gates(self.profile.settings_of(settings), context, self._logger):
            return False
        if settings.preferred_vol_regimes and signals.volatility not in settings.preferred_vol_regimes:
            return False
        if signals.trend == self.profile.avoided_trend:
            return False
        return True

    def find_candidates(self, context: StrategyContext) -> List[StrategyCandidate]:
        settings = context.settings
        spread_settings = self.profile.settings_of(settings)
        filters = settings.liquidity_filters
        dte = context.dte
        if dte < spread_settings.min_dte or dte > spread_settings.max_dte:
            return []

        contracts = self._contracts(context)
        shorts = [c for c in contracts if delta_in_window(c, spread_settings) and not c.in_the_money]

        candidates = []
        for short in shorts:
            target_strike = short.strike + self.profile.direction * spread_settings.spread_width
            long = next(
                (c for c in contracts
                 if abs(c.strike - target_strike) < STRIKE_TOLERANCE and not c.in_the_money),
                None
            )
            if long is None:
                continue
            if not passes_leg_liquidity(short, filters, check_volume=False):
                continue
            if not passes_leg_liquidity(long, filters, spread_multiplier=1.5, oi_divisor=2, check_volume=False):
                continue

            candidate = self._create_candidate(short, long, context, dte)
            if candidate is not None:
                candidates.append(candidate)

        candidates.sort(key=lambda c: c.score, reverse=True)
        self._logger.debug(
            f"{context.quote.symbol} {context.chain.expiration}: "
            f"{len(shorts)} short strikes, {len(candidates)} spreads"
        )
        return candidates[:MAX_CANDIDATES_PER_EXPIRATION]

    def candidate_to_packet(self, candidate: StrategyCandidate, context: StrategyContext) -> TradePacket:
        return build_trade_packet(self.strategy_type, candidate, context)

    def _create_candidate(
        self,
        short: OptionContract,
        long: OptionContract,
        context: StrategyContext,
        dte: int
    ) -> Optional[StrategyCandidate]:
        profile = self.profile
        quote = context.quote
        settings = context.settings
        signals = context.signals
        spread_settings = profile.settings_of(settings)
        filters = settings.liquidity_filters
        label = profile.option_label

        short_mid = short.mid
        long_mid = long.mid
        net_credit = money((short_mid - long_mid) * 100)
        min_credit = spread_settings.min_credit * 100
        if net_credit < min_credit:
            return None

        spread_width = abs(short.strike - long.strike)
        max_loss = money(spread_width * 100 - net_credit)
        if max_loss <= 0:
            return None
        credit_per_share = net_credit / 100
        breakeven = short.strike + profile.direction * credit_per_share

        annualized_return = calculate_annualized_return(float(net_credit), float(max_loss), dte)
        roc = calculate_return_on_capital(float(net_credit), float(max_loss))
        pop = float(round(100 - abs(short.delta) * 100)) if short.delta else 65.0

        risk_pct = risk_pct_of_account(max_loss, settings)
        if risk_pct > settings.risk_limits.max_risk_per_trade_pct:
            self._logger.debug(f"{short.symbol}: spread risk {risk_pct:.1f}% exceeds per-trade cap")
            return None

        price = quote.price
        buffer_pct = float(profile.direction * (short.strike - price) / price * 100) if price else 0.0
        iv_rank = signals.iv_rank if signals.iv_rank is not None else 50
        delta_range = (
            f"-{spread_settings.target_delta_min} to -{spread_settings.target_delta_max}"
            if profile.direction < 0 else
            f"{spread_settings.target_delta_min} to {spread_settings.target_delta_max}"
        )

        reasons = [
            create_reason("Spread", "Net Credit", net_credit >= min_credit,
                          f"${net_credit:.0f}", f">= ${min_credit:.0f}", 2),
            create_reason("Liquidity", "Short Leg OI", short.open_interest >= filters.min_option_oi,
                          short.open_interest, f">= {filters.min_option_oi}", 1),
            create_reason("Delta", "Short Delta", delta_in_window(short, spread_settings),
                          f"{short.delta:.2f}", delta_range, 1.5),
            create_reason("Premium", "Annualized Return", annualized_return >= 20,
                          f"{annualized_return:.1f}%", ">= 20%", 2),
            create_reason("Volatility", "IV Elevated", iv_rank >= 40,
                          f"{signals.iv_rank}%" if signals.iv_rank is not None else "N/A",
                          ">= 40% (spreads benefit from elevated IV)", 1.5),
            create_reason("Risk", "Defined Risk", True,
                          f"${max_loss:.0f}", f"Max loss capped by long {label.lower()}", 2),
            create_reason("Buffer", "Buffer to Short Strike", buffer_pct >= 3,
                          f"{buffer_pct:.1f}%", ">= 3%", 1),
        ]

        score_components = [
            create_score_component("Premium Yield", annualized_return, 0.25, 50),
            create_score_component("Liquidity", signals.liquidity.overall_score, 0.2),
            create_score_component("IV Rank", iv_rank, 0.15),
            create_score_component(
                "Trend Alignment",
                profile.trend_alignment.get(signals.trend, profile.trend_alignment_default),
                0.2
            ),
            create_score_component("Buffer Score", min(100.0, buffer_pct * 10), 0.1),
            create_score_component("Risk/Reward", float(net_credit / max_loss * 100), 0.1, 50),
        ]

        legs = [
            OptionLeg(action=LegAction.SELL, quantity=1, contract=short, order_price=short_mid),
            OptionLeg(action=LegAction.BUY, quantity=1, contract=long, order_price=long_mid),
        ]

        exit_rules = ExitRules(
            profit_target_pct=spread_settings.profit_target_pct,
            max_loss_pct=spread_settings.max_loss_pct,
            dte_exit=14,
            roll_guidance=profile.roll_guidance,
        )

        breach = "<" if profile.direction < 0 else ">"
        invalidation_conditions = [
            InvalidationCondition(InvalidationType.PRICE_BREACH,
                                  f"Price breaks {'below' if profile.direction < 0 else 'above'} "
                                  f"short {label.lower()} strike",
                                  f"Price {breach} ${short.strike:.2f}"),
            InvalidationCondition(InvalidationType.TREND_BREAK,
                                  profile.trend_invalidation, profile.trend_invalidation_threshold),
            InvalidationCondition(InvalidationType.VOL_SPIKE,
                                  "Volatility spikes significantly", "IV Rank > 85%"),
        ]

        symbol = quote.symbol
        summary = (
            f"Open a {profile.name.lower()} on {symbol}: Sell the {short.expiration} ${short.strike} "
            f"{label.lower()} for ${short_mid:.2f} and buy the ${long.strike} {label.lower()} for "
            f"${long_mid:.2f}. Net credit: ${credit_per_share:.2f} per share (${net_credit:.0f} per "
            f"contract). Maximum loss is ${max_loss:.0f} if {symbol} {profile.break_direction} "
            f"${long.strike}. Breakeven at ${breakeven:.2f}."
        )

        target = spread_settings.profit_target_pct
        learning_notes = [
            LearningNote(f"Why {profile.name}?", profile.why_note),
            LearningNote(
                f"Spread Width of ${spread_width}",
                f"The ${spread_width} width between strikes determines your max loss (${max_loss:.0f}). "
                f"Wider spreads offer more premium but more risk. Narrower spreads are more conservative.",
            ),
            LearningNote(
                "IV Benefits",
                f"This spread was found when IV rank is {iv_rank}%. Higher IV means more premium "
                f"for selling options. When IV drops, both legs benefit.",
            ),
            LearningNote(
                "Managing the Trade",
                f"Exit at {target:g}% profit (buy back for "
                f"${float(credit_per_share) * (1 - target / 100):.2f}). If {symbol} moves toward "
                f"${short.strike}, consider closing before max loss.",
            ),
        ]

        order_ticket = "\n".join([
            "## Order Ticket",
            f"1. Open the option chain for {symbol}",
            f"2. Select {short.expiration} expiration",
            "3. Create vertical spread:",
            f"   - Sell {short.strike} {label} -> Vertical",
            f"   - Or manually: Sell {short.strike} {label}, Buy {long.strike} {label}",
            "4. Verify spread order:",
            f"   - SELL TO OPEN: {short.symbol}",
            f"   - BUY TO OPEN: {long.symbol}",
            f"   - Net Credit: ${credit_per_share:.2f}",
            f"   - Price: LIMIT @ ${credit_per_share:.2f} credit",
            "   - Duration: DAY",
            "5. Review and confirm",
            "",
            f"Buying Power Reduction: ${max_loss:.0f} (max loss)",
        ])

        return StrategyCandidate(
            legs=legs,
            net_credit=net_credit,
            dte=dte,
            risk_box=RiskBox(
                max_profit=net_credit,
                max_loss=max_loss,
                breakeven=breakeven,
                breakeven_lower=long.strike if profile.direction < 0 else None,
                breakeven_upper=long.strike if profile.direction > 0 else None,
                buying_power_required=max_loss,
                collateral_required=max_loss,
                return_on_risk=annualized_return,
                return_on_capital=roc,
                probability_of_profit=pop,
            ),
            exit_rules=exit_rules,
            invalidation_conditions=invalidation_conditions,
            reasons=reasons,
            score_components=score_components,
            score=total_score(score_components),
            conviction=calculate_conviction(reasons, signals, context.regime),
            plain_english_summary=summary,
            learning_notes=learning_notes,
            order_ticket_instructions=order_ticket,
        )


def put_credit_spread() -> CreditSpreadStrategy:
    return CreditSpreadStrategy(PUT_CREDIT_SPREAD)


def call_credit_spread() -> CreditSpreadStrategy:
    return CreditSpreadStrategy(CALL_CREDIT_SPREAD)
