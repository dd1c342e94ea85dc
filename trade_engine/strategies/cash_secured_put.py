"""
Cash-Secured Put Strategy - Options Trade-Generation Engine

Sells an out-of-the-money put on a stock the account would be willing to
own, collecting premium while holding the full strike value in cash as
collateral against assignment.

Strategy Structure:
- Sell Put (OTM, delta inside the configured window)

Risk Characteristics:
- Max Profit: Premium received
- Max Loss: (Strike - Premium) x 100 if the stock goes to zero
- Breakeven: Strike - Premium
- Collateral: Strike x 100

BUSINESS LOGIC IMPLEMENTATION
"""

import logging
from typing import List, Optional

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
    passes_leg_liquidity, risk_pct_of_account, total_score,
)

TREND_ALIGNMENT = {
    TrendRegime.STRONG_UPTREND: 100,
    TrendRegime.UPTREND: 80,
    TrendRegime.NEUTRAL: 60,
}


class CashSecuredPutStrategy:
    """
    Cash-Secured Put

    Entry Criteria:
    - Strategy enabled, underlying liquid, no earnings inside the window
    - Not in a strong downtrend unless the aggressive preset is active
    - Symbol trend in the preferred trend list (when one is configured)
    - Put delta inside [target_delta_min, target_delta_max] by magnitude
    - OTM, tight spread, enough open interest and volume, mid >= $0.10
    - Collateral-based max loss within max_risk_per_trade_pct
    """

    strategy_type = StrategyType.CASH_SECURED_PUT
    name = "Cash-Secured Put"

    def __init__(self):
        self._logger = logging.getLogger(f"strategy.{self.strategy_type.value}")

    def should_consider(self, context: StrategyContext) -> bool:
        settings = context.settings
        signals = context.signals
        if not passes_common_gates(settings.cash_secured_put, context, self._logger):
            return False
        if signals.trend == TrendRegime.STRONG_DOWNTREND and context.risk_preset != RiskPreset.AGGRESSIVE:
            return False
        if settings.preferred_trend_regimes and signals.trend not in settings.preferred_trend_regimes:
            return False
        return True

    def find_candidates(self, context: StrategyContext) -> List[StrategyCandidate]:
        settings = context.settings
        csp = settings.cash_secured_put
        dte = context.dte
        if dte < csp.min_dte or dte > csp.max_dte:
            return []

        eligible = [
            put for put in context.chain.puts
            if delta_in_window(put, csp)
            and not put.in_the_money
            and passes_leg_liquidity(put, settings.liquidity_filters)
            and put.mid >= MIN_PREMIUM
        ]
        eligible.sort(key=lambda c: c.mid, reverse=True)

        candidates = []
        for put in eligible[:MAX_CANDIDATES_PER_EXPIRATION]:
            candidate = self._create_candidate(put, context, dte)
            if candidate is not None:
                candidates.append(candidate)

        self._logger.debug(
            f"{context.quote.symbol} {context.chain.expiration}: "
            f"{len(eligible)} eligible puts, {len(candidates)} candidates"
        )
        return candidates

    def candidate_to_packet(self, candidate: StrategyCandidate, context: StrategyContext) -> TradePacket:
        return build_trade_packet(self.strategy_type, candidate, context)

    def _create_candidate(
        self,
        put: OptionContract,
        context: StrategyContext,
        dte: int
    ) -> Optional[StrategyCandidate]:
        quote = context.quote
        settings = context.settings
        signals = context.signals
        csp = settings.cash_secured_put
        filters = settings.liquidity_filters

        mid = put.mid
        strike = put.strike
        price = quote.price
        credit = money(mid * 100)
        max_loss = money((strike - mid) * 100)
        buying_power = money(strike * 100)
        breakeven = strike - mid

        annualized_return = calculate_annualized_return(float(credit), float(max_loss), dte)
        roc = calculate_return_on_capital(float(credit), float(buying_power))
        pop = estimate_probability_of_profit(put.delta) if put.delta else 70.0

        risk_pct = risk_pct_of_account(max_loss, settings)
        if risk_pct > settings.risk_limits.max_risk_per_trade_pct:
            self._logger.debug(
                f"{put.symbol}: collateral risk {risk_pct:.1f}% exceeds "
                f"{settings.risk_limits.max_risk_per_trade_pct}% per trade"
            )
            return None

        buffer_pct = float((price - strike) / price * 100) if price else 0.0
        iv_rank = signals.iv_rank if signals.iv_rank is not None else 50

        reasons = [
            create_reason("Liquidity", "Option OI", put.open_interest >= filters.min_option_oi,
                          put.open_interest, f">= {filters.min_option_oi}", 1),
            create_reason("Liquidity", "Bid-Ask Spread", put.spread_pct <= filters.max_bid_ask_spread_pct,
                          f"{put.spread_pct:.1f}%", f"<= {filters.max_bid_ask_spread_pct}%", 1.5),
            create_reason("Delta", "Delta Target", delta_in_window(put, csp),
                          f"{put.delta:.2f}", f"-{csp.target_delta_min} to -{csp.target_delta_max}", 1.5),
            create_reason("Premium", "Annualized Return", annualized_return >= 15,
                          f"{annualized_return:.1f}%", ">= 15%", 2),
            create_reason("Trend", "Trend Alignment", not signals.trend.is_bearish,
                          signals.trend.value, "Not in downtrend", 1.5),
            create_reason("Volatility", "IV Rank", iv_rank >= 30,
                          f"{signals.iv_rank}%" if signals.iv_rank is not None else "N/A", ">= 30%", 1),
            create_reason("Risk", "Risk Per Trade", risk_pct <= settings.risk_limits.max_risk_per_trade_pct,
                          f"{risk_pct:.1f}%", f"<= {settings.risk_limits.max_risk_per_trade_pct}%", 2),
            create_reason("Buffer", "Buffer to Strike", buffer_pct >= 3, f"{buffer_pct:.1f}%", ">= 3%", 1),
        ]

        score_components = [
            create_score_component("Premium Yield", annualized_return, 0.25, 40),
            create_score_component("Liquidity", signals.liquidity.overall_score, 0.2),
            create_score_component("IV Rank", iv_rank, 0.15),
            create_score_component("Trend Alignment", TREND_ALIGNMENT.get(signals.trend, 20), 0.2),
            create_score_component("Buffer Score", min(100.0, buffer_pct * 10), 0.1),
            create_score_component("Probability of Profit", pop, 0.1),
        ]

        legs = [OptionLeg(action=LegAction.SELL, quantity=1, contract=put, order_price=mid)]

        exit_rules = ExitRules(
            profit_target_pct=csp.profit_target_pct,
            max_loss_pct=csp.max_loss_pct,
            dte_exit=7,
            roll_guidance=(
                "If ITM near expiration, consider rolling down and out to avoid assignment "
                "while collecting additional premium."
            ),
        )

        ma50 = f"${signals.ma50:.2f}" if signals.ma50 is not None else "the 50-day MA"
        invalidation_conditions = [
            InvalidationCondition(InvalidationType.TREND_BREAK,
                                  "Price breaks below 50-day MA with increasing volume", f"Price < {ma50}"),
            InvalidationCondition(InvalidationType.VOL_SPIKE,
                                  "IV spikes significantly indicating increased uncertainty", "IV Rank > 80%"),
            InvalidationCondition(InvalidationType.LIQUIDITY_DETERIORATION,
                                  "Bid-ask spread widens significantly",
                                  f"Spread > {filters.max_bid_ask_spread_pct * 2}%"),
        ]

        symbol = quote.symbol
        summary = (
            f"Sell a {put.expiration} ${strike} put on {symbol} for ${mid:.2f} credit "
            f"(${credit:.0f} per contract). This trade profits if {symbol} stays above "
            f"${breakeven:.2f} by expiration. Maximum risk is ${max_loss:.0f} if {symbol} goes to $0. "
            f"The position benefits from time decay and requires ${buying_power:.0f} in cash as collateral."
        )

        delta = put.delta or 0.0
        theta = f"${put.theta:.2f}" if put.theta is not None else "N/A"
        learning_notes = [
            LearningNote(
                "Why Cash-Secured Put?",
                "A CSP is ideal when you're neutral to bullish on a stock you'd be willing to own. "
                "You collect premium upfront, and if assigned, you effectively buy the stock at a "
                "discount (strike minus premium).",
            ),
            LearningNote(
                f"Delta of {delta:.2f}",
                f"A delta of {delta:.2f} means there's approximately a {abs(delta * 100):.0f}% chance "
                f"this option expires ITM. Lower delta = more conservative.",
            ),
            LearningNote(
                "Time Decay (Theta)",
                f"This position has theta of {theta}, meaning you collect roughly that amount daily as "
                f"the option loses time value. Theta accelerates as expiration approaches.",
            ),
            LearningNote(
                "When to Exit",
                f"Consider closing at {csp.profit_target_pct:g}% profit "
                f"(${float(credit) * csp.profit_target_pct / 100:.0f} to buy back) or if the underlying "
                f"drops significantly below your strike.",
            ),
        ]

        order_ticket = "\n".join([
            "## Order Ticket",
            "1. Open the option chain",
            f"2. Select {symbol} -> {put.expiration} expiration",
            f"3. Find the ${strike} PUT strike",
            "4. Sell -> Single",
            "5. Verify:",
            "   - Action: SELL TO OPEN",
            "   - Qty: 1",
            f"   - Symbol: {put.symbol}",
            f"   - Price: LIMIT @ ${mid:.2f} (or bid if aggressive)",
            "   - Duration: DAY",
            "6. Review order and confirm",
            f"7. Set alert at ${breakeven:.2f} (breakeven) for management",
            "",
            f"Note: Requires ${buying_power:.0f} cash secured margin",
        ])

        return StrategyCandidate(
            legs=legs,
            net_credit=credit,
            dte=dte,
            risk_box=RiskBox(
                max_profit=credit,
                max_loss=max_loss,
                breakeven=breakeven,
                breakeven_lower=None,
                breakeven_upper=None,
                buying_power_required=buying_power,
                collateral_required=buying_power,
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
