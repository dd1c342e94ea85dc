"""
Paper Broker Provider - Options Trade-Generation Engine

Simulated account for practice trading:
- virtual cash account with a configurable starting balance
- limit orders fill at the limit price; market orders fill at the quoted
  price moved against the trader by the configured slippage
- $0.65 per contract commission
- buying-power check reserving premium for debits, strike collateral for
  short puts and the width for vertical spreads
- position tracking with signed quantities (short options are negative)

Fills are deterministic: nothing here is random, so the same request always
produces the same fill.

BUSINESS LOGIC IMPLEMENTATION
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Callable, Dict, List, Optional

from ..data.provider import OptionType
from ..utils import money, utc_now
from .base import (
    AccountInfo, BrokerPosition, Order, OrderLeg, OrderRequest, OrderResponse,
    OrderStatus, OrderType, validate_order_structure
)

logger = logging.getLogger(__name__)

COMMISSION_PER_CONTRACT = Decimal('0.65')
CONTRACT_MULTIPLIER = 100

PriceGetter = Callable[[str], Optional[Decimal]]


@dataclass
class PaperPosition:
    symbol: str
    quantity: int
    average_cost: Decimal
    option_symbol: Optional[str] = None
    option_type: Optional[OptionType] = None
    strike: Optional[Decimal] = None
    expiration: Optional[date] = None


class PaperBrokerProvider:
    """
    In-memory paper account.

    Args:
        starting_balance: Initial cash
        slippage_bps: Adverse slippage applied to market orders
        option_buying_power_multiplier: Margin multiple for option buying power
        price_getter: Optional mark lookup keyed by OCC symbol; without one,
            positions are marked at cost and market orders fall back to the
            legs' reference prices
    """

    name = "paper"
    is_paper = True

    def __init__(
        self,
        starting_balance: Decimal = Decimal('100000'),
        slippage_bps: float = 5.0,
        option_buying_power_multiplier: Decimal = Decimal('1'),
        price_getter: Optional[PriceGetter] = None
    ):
        self.starting_balance = money(starting_balance)
        self.slippage_bps = slippage_bps
        self.option_buying_power_multiplier = Decimal(str(option_buying_power_multiplier))
        self._price_getter = price_getter
        self._connected = False
        self._cash = self.starting_balance
        self._positions: Dict[str, PaperPosition] = {}
        self._history: List[Order] = []

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def cash_balance(self) -> Decimal:
        return self._cash

    def set_price_getter(self, getter: PriceGetter) -> None:
        self._price_getter = getter

    async def connect(self) -> None:
        self._connected = True

    async def disconnect(self) -> None:
        self._connected = False

    async def get_account_info(self) -> AccountInfo:
        buying_power = self._cash - self._reserved_collateral()
        return AccountInfo(
            account_id="PAPER-001",
            account_type="cash",
            buying_power=money(buying_power),
            cash_balance=money(self._cash),
            option_buying_power=money(buying_power * self.option_buying_power_multiplier),
            day_trades_remaining=3,
        )

    async def get_positions(self) -> List[BrokerPosition]:
        positions = []
        for key, pos in self._positions.items():
            current = self._mark(key, pos.average_cost)
            market_value = money(pos.quantity * current * CONTRACT_MULTIPLIER)
            cost_basis = money(pos.quantity * pos.average_cost * CONTRACT_MULTIPLIER)
            positions.append(BrokerPosition(
                symbol=pos.symbol,
                option_symbol=pos.option_symbol,
                quantity=pos.quantity,
                average_cost=pos.average_cost,
                current_price=current,
                market_value=market_value,
                unrealized_pnl=market_value - cost_basis,
                option_type=pos.option_type,
                strike=pos.strike,
                expiration=pos.expiration,
            ))
        return positions

    async def submit_order(self, request: OrderRequest) -> OrderResponse:
        if not self._connected:
            return OrderResponse.failure("Paper broker not connected")

        validation = await self.validate_order(request)
        if not validation.success:
            return validation

        order = Order.from_request(
            str(uuid.uuid4()), request, OrderStatus.PENDING, utc_now(), self.name, is_paper=True
        )

        if request.dry_run:
            order.status = OrderStatus.CANCELLED
            order.reject_reason = "Dry run - order not submitted"
            return OrderResponse.ok(order)

        fill_price = self._fill_price(request)
        if fill_price is None:
            order.status = OrderStatus.REJECTED
            order.reject_reason = "No market price available to fill a market order"
            self._history.insert(0, order)
            return OrderResponse.failure(order.reject_reason, order=order)

        now = utc_now()
        order.status = OrderStatus.FILLED
        order.filled_quantity = request.contracts
        order.avg_fill_price = fill_price
        order.commission = money(COMMISSION_PER_CONTRACT * request.contracts)
        order.submitted_at = now
        order.filled_at = now
        order.broker_order_id = f"PAPER-{order.id[:8]}"

        self._apply_fill(order, fill_price)
        self._history.insert(0, order)
        logger.info(
            f"Paper fill {order.broker_order_id}: {len(order.legs)} leg(s) at ${fill_price} "
            f"{'credit' if order.is_credit else 'debit'}, cash ${self._cash}"
        )
        return OrderResponse.ok(order)

    async def cancel_order(self, order_id: str) -> OrderResponse:
        # Paper orders fill on submission, so there is never anything resting
        return OrderResponse.failure(f"Order {order_id} not found or already filled")

    async def get_order(self, order_id: str) -> Optional[Order]:
        return next((o for o in self._history if o.id == order_id), None)

    async def get_open_orders(self) -> List[Order]:
        return []

    async def get_order_history(self, limit: int = 50) -> List[Order]:
        return self._history[:limit]

    async def validate_order(self, request: OrderRequest) -> OrderResponse:
        errors = validate_order_structure(request)

        required = self.estimate_buying_power(request)
        info = await self.get_account_info()
        if required > info.buying_power:
            errors.append(
                f"Insufficient buying power. Required: ${required:.2f}, Available: ${info.buying_power:.2f}"
            )

        for leg in request.legs:
            if leg.side.is_opening:
                continue
            position = self._positions.get(leg.position_key)
            held = abs(position.quantity) if position else 0
            if held < leg.quantity:
                errors.append(f"Cannot close position for {leg.symbol}: requested {leg.quantity}, have {held}")

        if errors:
            return OrderResponse.failure("Order validation failed", errors)
        return OrderResponse.ok()

    def estimate_buying_power(self, request: OrderRequest) -> Decimal:
        """Cash the order ties up: vertical width, short put strike, or debit paid"""
        legs = [leg for leg in request.legs if leg.side.is_opening]
        if self._is_vertical(legs):
            width = abs(legs[0].strike - legs[1].strike)
            return money(width * CONTRACT_MULTIPLIER * legs[0].quantity)

        required = Decimal('0')
        for leg in legs:
            if leg.side.is_buy:
                price = request.limit_price if request.limit_price is not None else (leg.price or Decimal('0'))
                required += leg.quantity * price * CONTRACT_MULTIPLIER
            elif leg.option_type == OptionType.PUT and leg.strike is not None:
                required += leg.quantity * leg.strike * CONTRACT_MULTIPLIER
        return money(required)

    async def get_total_account_value(self) -> Decimal:
        positions = await self.get_positions()
        return money(self._cash + sum((p.market_value for p in positions), Decimal('0')))

    async def get_total_pnl(self) -> Decimal:
        return await self.get_total_account_value() - self.starting_balance

    def reset(self) -> None:
        self._cash = self.starting_balance
        self._positions.clear()
        self._history.clear()

    def _fill_price(self, request: OrderRequest) -> Optional[Decimal]:
        if request.order_type in (OrderType.LIMIT, OrderType.STOP_LIMIT):
            return money(request.limit_price)

        quoted = self._net_market_price(request.legs)
        if quoted is None:
            return None
        factor = Decimal(str(1 + self.slippage_bps / 10000))
        # Adverse: a credit receives less, a debit pays more
        adjusted = quoted / factor if request.is_credit else quoted * factor
        return money(adjusted)

    def _net_market_price(self, legs: List[OrderLeg]) -> Optional[Decimal]:
        net = Decimal('0')
        for leg in legs:
            price = self._mark(leg.position_key, leg.price)
            if price is None:
                return None
            net += price if not leg.side.is_buy else -price
        return abs(net)

    def _mark(self, key: str, fallback: Optional[Decimal]) -> Optional[Decimal]:
        if self._price_getter is not None:
            price = self._price_getter(key)
            if price is not None:
                return Decimal(str(price))
        return fallback

    def _apply_fill(self, order: Order, fill_price: Decimal) -> None:
        contracts_per_structure = order.legs[0].quantity
        value = fill_price * CONTRACT_MULTIPLIER * contracts_per_structure
        self._cash += value if order.is_credit else -value
        self._cash -= order.commission

        for leg in order.legs:
            leg_price = leg.price if leg.price is not None else fill_price
            self._update_position(leg, leg_price)

    def _update_position(self, leg: OrderLeg, price: Decimal) -> None:
        key = leg.position_key
        signed = leg.quantity if leg.side.is_buy else -leg.quantity
        existing = self._positions.get(key)

        if existing is None:
            self._positions[key] = PaperPosition(
                symbol=leg.symbol,
                quantity=signed,
                average_cost=money(price),
                option_symbol=leg.option_symbol,
                option_type=leg.option_type,
                strike=leg.strike,
                expiration=leg.expiration,
            )
            return

        if leg.side.is_opening:
            total = existing.quantity + signed
            cost = existing.quantity * existing.average_cost + signed * price
            existing.average_cost = money(cost / total) if total else existing.average_cost
            existing.quantity = total
        else:
            existing.quantity += signed

        if existing.quantity == 0:
            del self._positions[key]

    def _reserved_collateral(self) -> Decimal:
        """
        Collateral held against open short options.

        A short hedged by a long of the same type and expiration holds the
        spread width; an unhedged short put holds its strike; an unhedged
        short call is treated as covered by shares held elsewhere.
        """
        reserved = Decimal('0')
        longs = {
            (p.symbol, p.expiration, p.option_type): p for p in self._positions.values()
            if p.option_type is not None and p.quantity > 0
        }
        for pos in self._positions.values():
            if pos.option_type is None or pos.quantity >= 0 or pos.strike is None:
                continue
            hedge = longs.get((pos.symbol, pos.expiration, pos.option_type))
            if hedge is not None and hedge.strike is not None:
                per_contract = abs(pos.strike - hedge.strike)
            elif pos.option_type == OptionType.PUT:
                per_contract = pos.strike
            else:
                continue
            reserved += per_contract * CONTRACT_MULTIPLIER * abs(pos.quantity)
        return reserved

    @staticmethod
    def _is_vertical(legs: List[OrderLeg]) -> bool:
        if len(legs) != 2:
            return False
        first, second = legs
        return (
            first.option_type is not None
            and first.option_type == second.option_type
            and first.strike is not None and second.strike is not None
            and first.side.is_buy != second.side.is_buy
            and first.quantity == second.quantity
        )
