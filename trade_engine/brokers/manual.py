"""
Manual Broker Provider - Options Trade-Generation Engine

Nothing is sent anywhere. Submitted orders wait in ``pending`` status while
the user enters them at their own broker from the order ticket, then marks
them filled or cancelled here.

BUSINESS LOGIC IMPLEMENTATION
"""

import logging
import uuid
from decimal import Decimal
from typing import Dict, List, Optional

from ..utils import money, utc_now
from .base import (
    AccountInfo, BrokerPosition, Order, OrderRequest, OrderResponse, OrderStatus,
    validate_order_structure
)

logger = logging.getLogger(__name__)

TICKET_RULE = "=" * 39


class ManualBrokerProvider:
    """Order-ticket provider; always connected, tracks orders locally"""

    name = "manual"
    is_paper = False

    def __init__(self):
        self._pending: Dict[str, Order] = {}
        self._history: List[Order] = []

    @property
    def is_connected(self) -> bool:
        return True

    async def connect(self) -> None:
        pass

    async def disconnect(self) -> None:
        pass

    async def get_account_info(self) -> AccountInfo:
        # No account behind manual mode
        zero = Decimal('0')
        return AccountInfo(
            account_id="MANUAL",
            account_type="cash",
            buying_power=zero,
            cash_balance=zero,
            option_buying_power=zero,
        )

    async def get_positions(self) -> List[BrokerPosition]:
        return []

    async def submit_order(self, request: OrderRequest) -> OrderResponse:
        validation = await self.validate_order(request)
        if not validation.success:
            return validation

        order = Order.from_request(str(uuid.uuid4()), request, OrderStatus.PENDING, utc_now(), self.name)
        self._pending[order.id] = order
        logger.info(f"Manual order {order.id} awaiting entry:\n{self.generate_order_ticket(order)}")
        return OrderResponse.ok(order)

    async def cancel_order(self, order_id: str) -> OrderResponse:
        order = self._pending.pop(order_id, None)
        if order is None:
            return OrderResponse.failure(f"Order {order_id} not found")

        order.status = OrderStatus.CANCELLED
        order.cancelled_at = utc_now()
        self._history.insert(0, order)
        return OrderResponse.ok(order)

    async def get_order(self, order_id: str) -> Optional[Order]:
        if order_id in self._pending:
            return self._pending[order_id]
        return next((o for o in self._history if o.id == order_id), None)

    async def get_open_orders(self) -> List[Order]:
        return list(self._pending.values())

    async def get_order_history(self, limit: int = 50) -> List[Order]:
        return self._history[:limit]

    async def validate_order(self, request: OrderRequest) -> OrderResponse:
        errors = validate_order_structure(request)
        if errors:
            return OrderResponse.failure("Order validation failed", errors)
        return OrderResponse.ok()

    def generate_order_ticket(self, order: Order) -> str:
        """Plain-text ticket the user copies into their broker"""
        lines = [TICKET_RULE, "          ORDER TICKET", TICKET_RULE, ""]

        for leg in order.legs:
            action = leg.side.value.replace("_", " ").upper()
            lines.append(f"Symbol: {leg.position_key}")
            lines.append(f"Action: {action}")
            lines.append(f"Quantity: {leg.quantity}")
            if leg.strike is not None:
                lines.append(f"Strike: ${leg.strike}")
            if leg.expiration is not None:
                lines.append(f"Expiration: {leg.expiration.isoformat()}")
            if leg.option_type is not None:
                lines.append(f"Type: {leg.option_type.value.upper()}")
            lines.append("")

        lines.append(f"Order Type: {order.order_type.value.upper()}")
        if order.limit_price is not None:
            effect = "CREDIT" if order.is_credit else "DEBIT"
            lines.append(f"Limit Price: ${money(order.limit_price):.2f} {effect}")
        lines.append(f"Duration: {order.duration.value.upper()}")
        lines.append("")
        lines.append(TICKET_RULE)
        return "\n".join(lines)

    async def mark_as_filled(
        self,
        order_id: str,
        fill_price: Decimal,
        commission: Optional[Decimal] = None
    ) -> OrderResponse:
        """User confirms the order was executed at their broker"""
        order = self._pending.pop(order_id, None)
        if order is None:
            return OrderResponse.failure(f"Order {order_id} not found")

        order.status = OrderStatus.FILLED
        order.filled_quantity = sum(leg.quantity for leg in order.legs)
        order.avg_fill_price = money(fill_price)
        order.commission = money(commission) if commission is not None else None
        order.filled_at = utc_now()
        self._history.insert(0, order)
        return OrderResponse.ok(order)
