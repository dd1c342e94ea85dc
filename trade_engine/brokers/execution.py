"""
Broker Execution Manager - Options Trade-Generation Engine

Turns an approved TradePacket into an order and routes it through the
execution gates. Gates are evaluated in this order, against settings read
fresh on every call:

1. trading_enabled off            -> rejected, whatever else is set
2. broker execution off           -> simulated on the paper account when
                                     paper mode is on, rejected otherwise
3. broker execution on, dry run   -> structurally validated, not submitted
4. broker execution on, live      -> held for approval when required, then
                                     forwarded to the broker provider

The daily order cap applies to anything that would fill or route. Gate
rejections come back as OrderResponse(success=False) carrying the reason.
Nothing is retried.

BUSINESS LOGIC IMPLEMENTATION
"""

import logging
import uuid
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Callable, Dict, List, Optional, Union

from ..engine.settings import TradingSettings
from ..strategies.base import TradePacket
from ..utils import money, utc_now
from .base import (
    AccountInfo, BrokerConfig, BrokerError, BrokerPosition, BrokerProvider, Order,
    OrderDuration, OrderLeg, OrderRequest, OrderResponse, OrderSide, OrderStatus,
    OrderType, SafetyGateRejection, validate_order_structure
)
from .paper import PaperBrokerProvider

logger = logging.getLogger(__name__)

SettingsProvider = Callable[[], TradingSettings]


class ExecutionPath(Enum):
    SIMULATED = "simulated"
    DRY_RUN = "dry_run"
    BROKER = "broker"


class BrokerExecutionManager:
    """
    Provider-agnostic order routing behind the kill switches.

    Args:
        provider: Broker that receives live orders
        settings_provider: Returns the current TradingSettings; called at every
            gate evaluation so a kill switch flipped after a packet was
            proposed still blocks it
        config: Approval, dry-run and daily cap policy
        simulator: Paper account used while broker execution is off
        clock: Today's date, for the daily cap
    """

    def __init__(
        self,
        provider: BrokerProvider,
        settings_provider: SettingsProvider,
        config: Optional[BrokerConfig] = None,
        simulator: Optional[PaperBrokerProvider] = None,
        clock: Callable[[], date] = date.today
    ):
        self.provider = provider
        self.config = config or BrokerConfig()
        self.simulator = simulator or PaperBrokerProvider()
        self._settings_provider = settings_provider
        self._clock = clock
        self._orders: Dict[str, Order] = {}
        self._orders_today = 0
        self._order_date: Optional[date] = None

    @property
    def orders_today(self) -> int:
        self._roll_day()
        return self._orders_today

    def build_order_request(
        self,
        packet: TradePacket,
        quantity: int = 1,
        order_type: OrderType = OrderType.LIMIT,
        duration: OrderDuration = OrderDuration.DAY
    ) -> OrderRequest:
        """Opening order for every leg of the packet at the packet's net price"""
        legs = []
        net = Decimal('0')
        for leg in packet.legs:
            contract = leg.contract
            side = OrderSide.SELL_TO_OPEN if leg.is_short else OrderSide.BUY_TO_OPEN
            legs.append(OrderLeg(
                symbol=contract.underlying,
                side=side,
                quantity=leg.quantity * quantity,
                option_symbol=contract.symbol,
                option_type=contract.option_type,
                strike=contract.strike,
                expiration=contract.expiration,
                price=money(leg.order_price),
            ))
            net += leg.order_price if leg.is_short else -leg.order_price

        return OrderRequest(
            trade_packet_id=packet.id,
            legs=legs,
            order_type=order_type,
            limit_price=money(abs(net)) if order_type != OrderType.MARKET else None,
            duration=duration,
            is_credit=net >= 0,
            workspace_id=packet.workspace_id,
        )

    def resolve_path(self, settings: TradingSettings) -> ExecutionPath:
        """
        Walk the kill switches.

        Raises:
            SafetyGateRejection: trading off, or broker execution and paper mode both off
        """
        if not settings.trading_enabled:
            raise SafetyGateRejection("trading_enabled", "Trading is disabled (kill switch is off)")
        if not settings.broker_execution_enabled:
            if settings.paper_mode_enabled:
                return ExecutionPath.SIMULATED
            raise SafetyGateRejection(
                "broker_execution_enabled", "Broker execution is disabled and paper mode is off"
            )
        if self.config.dry_run:
            return ExecutionPath.DRY_RUN
        return ExecutionPath.BROKER

    async def submit(self, item: Union[TradePacket, OrderRequest]) -> OrderResponse:
        request = self.build_order_request(item) if isinstance(item, TradePacket) else item

        try:
            settings = self._settings_provider()
            path = self.resolve_path(settings)
            if path != ExecutionPath.DRY_RUN:
                self._check_daily_limit(settings)
        except SafetyGateRejection as e:
            logger.warning(f"Order for packet {request.trade_packet_id} blocked at {e.gate}: {e.reason}")
            return OrderResponse.failure(e.reason)

        errors = validate_order_structure(request, today=self._clock())
        if errors:
            logger.warning(f"Order for packet {request.trade_packet_id} failed validation: {errors}")
            return OrderResponse.failure("Order validation failed", errors)

        if path == ExecutionPath.DRY_RUN:
            order = self._new_order(request, OrderStatus.CANCELLED)
            order.is_dry_run = True
            order.reject_reason = "Dry run - order validated, not submitted"
            logger.info(f"Dry run validated order for packet {request.trade_packet_id}")
            return OrderResponse.ok(self._track(order))

        if path == ExecutionPath.SIMULATED:
            return await self._simulate(request)

        if self.config.require_approval:
            order = self._new_order(request, OrderStatus.PENDING_APPROVAL)
            logger.info(f"Order {order.id} for packet {request.trade_packet_id} awaiting approval")
            return OrderResponse.ok(self._track(order))

        return await self._forward(request)

    async def approve(self, order_id: str) -> OrderResponse:
        """Forward a held order; every gate is evaluated again first"""
        pending = self._orders.get(order_id)
        if pending is None or pending.status != OrderStatus.PENDING_APPROVAL:
            return OrderResponse.failure(f"Order {order_id} is not awaiting approval")

        try:
            settings = self._settings_provider()
            path = self.resolve_path(settings)
            if path == ExecutionPath.SIMULATED:
                raise SafetyGateRejection(
                    "broker_execution_enabled", "Broker execution was disabled after this order was proposed"
                )
            if path == ExecutionPath.DRY_RUN:
                raise SafetyGateRejection("dry_run", "Dry-run mode is on; approved orders are not submitted")
            self._check_daily_limit(settings)
        except SafetyGateRejection as e:
            logger.warning(f"Approval of order {order_id} blocked at {e.gate}: {e.reason}")
            return OrderResponse.failure(e.reason, order=pending)

        response = await self._forward(pending.to_request())
        if response.success:
            del self._orders[order_id]
        return response

    async def reject(self, order_id: str, reason: str = "Rejected by user") -> OrderResponse:
        order = self._orders.get(order_id)
        if order is None or order.status != OrderStatus.PENDING_APPROVAL:
            return OrderResponse.failure(f"Order {order_id} is not awaiting approval")
        order.status = OrderStatus.REJECTED
        order.reject_reason = reason
        logger.info(f"Order {order_id} rejected: {reason}")
        return OrderResponse.ok(order)

    async def cancel(self, order_id: str) -> OrderResponse:
        order = self._orders.get(order_id)
        if order is None:
            return OrderResponse.failure(f"Order {order_id} not found")
        if not order.is_open:
            return OrderResponse.failure(f"Order {order_id} is already {order.status.value}")

        if order.status == OrderStatus.PENDING_APPROVAL:
            order.status = OrderStatus.CANCELLED
            order.cancelled_at = utc_now()
            return OrderResponse.ok(order)

        provider = self.simulator if order.broker_name == self.simulator.name else self.provider
        try:
            response = await provider.cancel_order(order.broker_order_id or order.id)
        except BrokerError as e:
            logger.error(f"Cancel of order {order_id} failed: {e}")
            return OrderResponse.failure(f"Broker cancel failed: {e}", order=order)

        if response.success:
            order.status = OrderStatus.CANCELLED
            order.cancelled_at = utc_now()
            return OrderResponse.ok(order)
        return response

    async def get_account_info(self) -> AccountInfo:
        return await self._account_provider().get_account_info()

    async def get_positions(self) -> List[BrokerPosition]:
        return await self._account_provider().get_positions()

    def get_orders(self, status: Optional[OrderStatus] = None) -> List[Order]:
        """Orders this manager has handled, newest first"""
        orders = sorted(self._orders.values(), key=lambda o: o.created_at, reverse=True)
        if status is not None:
            orders = [o for o in orders if o.status == status]
        return orders

    async def _simulate(self, request: OrderRequest) -> OrderResponse:
        if not self.simulator.is_connected:
            await self.simulator.connect()
        response = await self.simulator.submit_order(request)
        if response.success and response.order is not None:
            self._track(response.order)
            self._count_order()
        return response

    async def _forward(self, request: OrderRequest) -> OrderResponse:
        try:
            if not self.provider.is_connected:
                await self.provider.connect()
            response = await self.provider.submit_order(request)
        except BrokerError as e:
            logger.error(f"Broker submission for packet {request.trade_packet_id} failed: {e}")
            return OrderResponse.failure(f"Broker submission failed: {e}")

        if response.success and response.order is not None:
            self._track(response.order)
            self._count_order()
        elif not response.success:
            logger.error(f"Broker rejected packet {request.trade_packet_id}: {response.error}")
        return response

    def _account_provider(self):
        settings = self._settings_provider()
        if not settings.broker_execution_enabled and settings.paper_mode_enabled:
            return self.simulator
        return self.provider

    def _new_order(self, request: OrderRequest, status: OrderStatus) -> Order:
        return Order.from_request(str(uuid.uuid4()), request, status, utc_now(), self.provider.name)

    def _track(self, order: Order) -> Order:
        self._orders[order.id] = order
        return order

    def _roll_day(self) -> None:
        today = self._clock()
        if self._order_date != today:
            self._order_date = today
            self._orders_today = 0

    def _check_daily_limit(self, settings: TradingSettings) -> None:
        """The tighter of the broker cap and the settings cap; zero blocks every order"""
        self._roll_day()
        caps = [
            c for c in (self.config.max_orders_per_day, settings.risk_limits.max_new_orders_per_day)
            if c is not None
        ]
        limit = min(caps) if caps else None
        if limit is not None and self._orders_today >= limit:
            raise SafetyGateRejection("max_orders_per_day", f"Daily order limit reached ({limit})")

    def _count_order(self) -> None:
        self._roll_day()
        self._orders_today += 1
