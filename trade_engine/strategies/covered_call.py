"""
Covered Call Strategy - Options Trade-Generation Engine

Sells an out-of-the-money call against 100 owned shares, generating income
while capping upside at the strike price.

Strategy Structure:
- Own 100 shares (assumed, not generated)
- Sell Call (OTM, delta inside the configured window)

Risk Characteristics:
- Max Profit: (Strike - Price) x 100 + Premium if assigned
- Max Loss: Price x 100 - Premium if the stock goes to zero
- Breakeven: Price - Premium

BUSINESS LOGIC IMPLEMENTATION
"""

import logging
from decimal import Decimal
from typing import List

from ..custom_types import TrendRegime
from ..data.provider import OptionContract
from ..engine.settings import RiskPreset
from ..signals.indicators import (
    calculate_annualized_return, calculate_return_on_capital, estimate_probability_of_profit
)
from ..utils import money
from .base import (
    MAX_CANDIDATES_PER_EXPIRATION, MIN_PREMIUM, ExitRules, InvalidationCondition,
    InvalidationType, LearningNote, LegAction, OptionLeg, RiskBox, StrategyCandidate,
    StrategyContext, StrategyType, TradePacket, build_trade_packet, calculate_conviction,
    create_reason, create_score_component, delta_in_window, passes_common_gates,
    passes_leg_liquidity, total_score,
)

# Lower is riskier: strong uptrends get called away
ASSIGNMENT_SAFETY = {
    TrendRegime.STRONG_UPTREND: 30,
    TrendRegime.UPTREND: 60,
}


class CoveredCallStrategy:
    """
    Covered Call

    Entry Criteria:
    - Strategy enabled, underlying liquid, no earnings inside the window
    - Skipped in strong uptrends for the conservative preset
    - Symbol trend in the preferred trend list (when one is configured)
    - Call delta inside [target_delta_min, target_delta_max]
    - OTM, tight spread, enough open interest and volume, mid >= $0.10
    """

    strategy_type = StrategyType.COVERED_CALL
    name = "Covered Call"

    def __init__(self):
        self._logger = logging.getLogger(f"strategy.{self.strategy_type.value}")

    def should_consider(self, context: StrategyContext) -> bool:
        settings = context.settings
        signals = context.signals
        if not passes_common_gates(settings.covered_call, context, self._logger):
            return False
        if signals.trend == TrendRegime.STRONG_UPTREND and context.risk_preset == RiskPreset.CONSERVATIVE:
            return False
        if settings.preferred_trend_regimes and signals.trend not in settings.preferred_trend_regimes:
            return False
        return True

    def find_candidates(self, context: StrategyContext) -> List[StrategyCandidate]:
        settings = context.settings
        cc = settings.covered_call
        dte = context.dte
        if dte < cc.min_dte or dte > cc.max_dte:
            return []

        eligible = [
            call for call in context.chain.calls
            if delta_in_window(call, cc)
            and not call.in_the_money
            and passes_leg_liquidity(call, settings.liquidity_filters)
            and call.mid >= MIN_PREMIUM
        ]
        eligible.sort(key=lambda c: c.mid, reverse=True)

        candidates = [self._create_candidate(call, context, dte) for call in eligible[:MAX_CANDIDATES_PER_EXPIRATION]]
        self._logger.debug(f"{context.quote.symbol} {context.chain.expiration}: {len(candidates)} candidates")
        return candidates

    def candidate_to_packet(self, candidate: StrategyCandidate, context: StrategyContext) -> TradePacket:
        return build_trade_packet(self.strategy_type, candidate, context)

    def _create_candidate(self, call: OptionContract, context: StrategyContext, dte: int) -> StrategyCandidate:
        quote = context.quote
        settings = context.settings
        signals = context.signals
        cc = settings.covered_call
        filters = settings.liquidity_filters

        mid = call.mid
        strike = call.strike
        price = quote.price
        credit = money(mid * 100)
        max_profit = money((strike - price) * 100 + credit)
        max_loss = money(price * 100 - credit)
        breakeven = price - mid
        buying_power = money(price * 100)

        annualized_return = calculate_annualized_return(float(credit), float(buying_power), dte)
        roc = calculate_return_on_capital(float(credit), float(buying_power))
        pop = estimate_probability_of_profit(call.delta) if call.delta else 70.0

        upside_pct = float((strike - price) / price * 100) if price else 0.0
        iv_rank = signals.iv_rank if signals.iv_rank is not None else 50

        reasons = [
            create_reason("Liquidity", "Option OI", call.open_interest >= filters.min_option_oi,
                          call.open_interest, f">= {filters.min_option_oi}", 1),
            create_reason("Liquidity", "Bid-Ask Spread", call.spread_pct <= filters.max_bid_ask_spread_pct,
                          f"{call.spread_pct:.1f}%", f"<= {filters.max_bid_ask_spread_pct}%", 1.5),
            create_reason("Delta", "Delta Target", delta_in_window(call, cc),
                          f"{call.delta:.2f}", f"{cc.target_delta_min} to {cc.target_delta_max}", 1.5),
            create_reason("Premium", "Annualized Return", annualized_return >= 10,
                          f"{annualized_return:.1f}%", ">= 10%", 2),
            create_reason("Trend", "Trend Alignment", signals.trend != TrendRegime.STRONG_UPTREND,
                          signals.trend.value, "Not strong uptrend (assignment risk)", 1),
            create_reason("Volatility", "IV Rank", iv_rank >= 25,
                          f"{signals.iv_rank}%" if signals.iv_rank is not None else "N/A", ">= 25%", 1),
            create_reason("Upside", "Room to Strike", upside_pct >= 2, f"{upside_pct:.1f}%", ">= 2%", 1),
        ]

        score_components = [
            create_score_component("Premium Yield", annualized_return, 0.25, 30),
            create_score_component("Liquidity", signals.liquidity.overall_score, 0.2),
            create_score_component("IV Rank", iv_rank, 0.15),
            create_score_component("Assignment Safety", ASSIGNMENT_SAFETY.get(signals.trend, 90), 0.2),
            create_score_component("Upside to Strike", min(100.0, upside_pct * 5), 0.1),
            create_score_component("Probability of Profit", pop, 0.1),
        ]

        exit_rules = ExitRules(
            profit_target_pct=cc.profit_target_pct,
            max_loss_pct=cc.max_loss_pct,
            dte_exit=7,
            roll_guidance=(
                "If ITM near expiration and you want to keep shares, buy back the call and sell a "
                "further-dated, higher strike call. If willing to sell, let assignment happen."
            ),
        )

        invalidation_conditions = [
            InvalidationCondition(InvalidationType.PRICE_BREACH,
                                  "Price moves significantly above strike, increasing assignment probability",
                                  f"Price > ${strike * Decimal('1.05'):.2f}"),
            InvalidationCondition(InvalidationType.VOL_SPIKE,
                                  "IV spikes making it expensive to roll or close", "IV Rank > 80%"),
            InvalidationCondition(InvalidationType.TREND_BREAK,
                                  "Stock enters strong uptrend (high assignment risk)", "Strong uptrend confirmed"),
        ]

        symbol = quote.symbol
        summary = (
            f"Sell a {call.expiration} ${strike} call on {symbol} for ${mid:.2f} credit "
            f"(${credit:.0f} per contract). This trade profits as long as {symbol} stays below "
            f"${strike} by expiration. If the stock rises above ${strike}, shares may be called away "
            f"(sold at ${strike}). Maximum profit is ${max_profit:.0f} if assigned. "
            f"The position requires owning 100 shares of {symbol}."
        )

        delta = call.delta or 0.0
        theta = f"${call.theta:.2f}" if call.theta is not None else "N/A"
        learning_notes = [
            LearningNote(
                "Why Covered Call?",
                "A covered call generates income on shares you already own. You're paid for giving "
                "someone else the right to buy your shares at the strike price. Best when you're "
                "neutral or slightly bullish but willing to sell at the strike.",
            ),
            LearningNote(
                "Assignment Risk",
                f"With delta of {delta:.2f}, there's approximately a {delta * 100:.0f}% chance of "
                f"assignment. If {symbol} closes above ${strike} at expiration, expect to sell your shares.",
            ),
            LearningNote(
                "Time Decay (Theta)",
                f"Theta of {theta} means you earn roughly that amount daily as option time value "
                f"decays. This benefits you as the seller.",
            ),
            LearningNote(
                "Managing the Position",
                f"If {symbol} rises sharply, you can buy back the call at a loss and sell a higher "
                f"strike (rolling up). If flat or down, let the call expire worthless for full profit.",
            ),
        ]

        order_ticket = "\n".join([
            "## Order Ticket",
            "1. Open the option chain",
            f"2. Select {symbol} -> {call.expiration} expiration",
            f"3. Find the ${strike} CALL strike",
            "4. Sell -> Single",
            "5. Verify:",
            "   - Action: SELL TO OPEN",
            "   - Qty: 1",
            f"   - Symbol: {call.symbol}",
            f"   - Price: LIMIT @ ${mid:.2f}",
            "   - Duration: DAY",
            "6. Review order and confirm",
            "",
            f"Note: Requires owning 100 shares of {symbol}",
            "",
            "## Assignment Preparation",
            f"- Confirm you're willing to sell at ${strike}",
            f"- Total proceeds if assigned: ${strike * 100 + credit:.0f}",
            "- Capital gain/loss depends on your cost basis",
        ])

        return StrategyCandidate(
            legs=[OptionLeg(action=LegAction.SELL, quantity=1, contract=call, order_price=mid)],
            net_credit=credit,
            dte=dte,
            risk_box=RiskBox(
                max_profit=max_profit,
                max_loss=max_loss,
                breakeven=breakeven,
                breakeven_lower=None,
                breakeven_upper=None,
                buying_power_required=buying_power,
                collateral_required=Decimal('0'),  # shares are the collateral
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
