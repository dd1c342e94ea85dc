"""
Tradier Broker Provider - Options Trade-Generation Engine

Live (or sandbox) order routing through Tradier's brokerage API. Single-leg
orders go out as ``class=option``, verticals as ``class=multileg`` with a
net ``credit``/``debit`` price. ``validate_order`` uses Tradier's preview
mode so nothing is routed.

No call is retried: a failed submission is surfaced to the caller and must
be re-initiated by a person.

BUSINESS LOGIC IMPLEMENTATION
"""

import logging
import os
from dataclasses import replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from ..data.http import RestClient
from ..data.occ import parse_occ_symbol
from ..data.provider import AuthenticationError, ProviderError
from ..data.rate_limit import RateLimiter
from ..data.tradier_provider import as_list, env_flag, tradier_base_url
from ..utils import money, to_decimal, utc_now
from .base import (
    AccountInfo, BrokerError, BrokerPosition, Order, OrderDuration, OrderLeg,
    OrderRequest, OrderResponse, OrderSide, OrderStatus, OrderType,
    validate_order_structure
)

logger = logging.getLogger(__name__)

# Tradier order status -> OrderStatus
TRADIER_STATUS = {
    "pending": OrderStatus.PENDING,
    "open": OrderStatus.SUBMITTED,
    "partially_filled": OrderStatus.PARTIALLY_FILLED,
    "filled": OrderStatus.FILLED,
    "expired": OrderStatus.EXPIRED,
    "canceled": OrderStatus.CANCELLED,
    "rejected": OrderStatus.REJECTED,
    "error": OrderStatus.REJECTED,
}


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00")).astimezone(timezone.utc)


class TradierBrokerProvider:
    """
    Tradier brokerage account.

    Args:
        api_key: Bearer token; falls back to TRADIER_API_KEY
        account_id: Brokerage account; falls back to TRADIER_ACCOUNT_ID
        sandbox: Route to the sandbox host; falls back to TRADIER_SANDBOX (default on)
    """

    name = "tradier"

    def __init__(
        self,
        api_key: Optional[str] = None,
        account_id: Optional[str] = None,
        sandbox: Optional[bool] = None,
        timeout_seconds: float = 15.0,
        client: Optional[RestClient] = None
    ):
        api_key = (api_key or os.environ.get("TRADIER_API_KEY", "")).strip()
        self.account_id = (account_id or os.environ.get("TRADIER_ACCOUNT_ID", "")).strip()
        if client is None and not api_key:
            raise AuthenticationError("Tradier API key is required (set TRADIER_API_KEY)")
        if not self.account_id:
            raise AuthenticationError("Tradier account id is required (set TRADIER_ACCOUNT_ID)")

        self.sandbox = env_flag("TRADIER_SANDBOX") if sandbox is None else sandbox
        self.is_paper = self.sandbox
        self._client = client or RestClient(
            tradier_base_url(self.sandbox),
            headers={"Authorization": f"Bearer {api_key}"},
            rate_limiter=RateLimiter(0.5),
            timeout_seconds=timeout_seconds,
        )
        self._connected = False

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def _account_path(self) -> str:
        return f"/accounts/{self.account_id}"

    async def connect(self) -> None:
        profile = await self._call("GET", "/user/profile")
        accounts = as_list(((profile or {}).get("profile") or {}).get("account"))
        if accounts and self.account_id not in {a.get("account_number") for a in accounts}:
            raise BrokerError(f"Account {self.account_id} is not linked to this Tradier token")
        self._connected = True
        logger.info(f"Connected to Tradier {'sandbox' if self.sandbox else 'live'} account {self.account_id}")

    async def disconnect(self) -> None:
        self._connected = False
        await self._client.close()

    async def get_account_info(self) -> AccountInfo:
        data = await self._call("GET", f"{self._account_path}/balances")
        balances = (data or {}).get("balances") or {}
        account_type = balances.get("account_type", "cash")
        detail = balances.get(account_type) or {}

        if account_type == "margin":
            buying_power = to_decimal(detail.get("stock_buying_power"))
            option_buying_power = to_decimal(detail.get("option_buying_power"))
        else:
            buying_power = to_decimal(detail.get("cash_available"))
            option_buying_power = buying_power

        return AccountInfo(
            account_id=str(balances.get("account_number", self.account_id)),
            account_type=account_type,
            buying_power=money(buying_power),
            cash_balance=money(balances.get("total_cash")),
            option_buying_power=money(option_buying_power),
        )

    async def get_positions(self) -> List[BrokerPosition]:
        data = await self._call("GET", f"{self._account_path}/positions")
        raw = as_list(((data or {}).get("positions") or {}).get("position"))
        return [self._to_position(p) for p in raw]

    async def submit_order(self, request: OrderRequest) -> OrderResponse:
        errors = validate_order_structure(request)
        if errors:
            return OrderResponse.failure("Order validation failed", errors)

        payload = self.build_payload(request, preview=request.dry_run)
        data = await self._call("POST", f"{self._account_path}/orders", data=payload)
        result = (data or {}).get("order") or {}

        if request.dry_run:
            if result.get("result") is False or result.get("status") == "error":
                return OrderResponse.failure("Tradier preview rejected the order", [str(result)])
            order = Order.from_request(
                f"preview-{utc_now().timestamp():.0f}", request, OrderStatus.CANCELLED, utc_now(),
                self.name, is_paper=self.is_paper,
            )
            order.reject_reason = "Dry run - order not submitted"
            return OrderResponse.ok(order)

        if result.get("status") != "ok" or "id" not in result:
            logger.error(f"Tradier rejected order for packet {request.trade_packet_id}: {data}")
            return OrderResponse.failure(f"Tradier rejected the order: {data}")

        order = Order.from_request(
            str(result["id"]), request, OrderStatus.SUBMITTED, utc_now(), self.name, is_paper=self.is_paper
        )
        order.broker_order_id = str(result["id"])
        order.submitted_at = utc_now()
        logger.info(f"Submitted Tradier order {order.broker_order_id} for packet {request.trade_packet_id}")
        return OrderResponse.ok(order)

    async def cancel_order(self, order_id: str) -> OrderResponse:
        data = await self._call("DELETE", f"{self._account_path}/orders/{order_id}")
        result = (data or {}).get("order") or {}
        if result.get("status") != "ok":
            return OrderResponse.failure(f"Tradier could not cancel order {order_id}: {data}")
        order = await self.get_order(order_id)
        return OrderResponse.ok(order)

    async def get_order(self, order_id: str) -> Optional[Order]:
        data = await self._call("GET", f"{self._account_path}/orders/{order_id}")
        raw = (data or {}).get("order")
        return self._to_order(raw) if raw else None

    async def get_open_orders(self) -> List[Order]:
        return [o for o in await self._list_orders() if o.is_open]

    async def get_order_history(self, limit: int = 50) -> List[Order]:
        orders = sorted(await self._list_orders(), key=lambda o: o.created_at, reverse=True)
        return orders[:limit]

    async def validate_order(self, request: OrderRequest) -> OrderResponse:
        errors = validate_order_structure(request)
        if errors:
            return OrderResponse.failure("Order validation failed", errors)
        preview = await self.submit_order(replace(request, dry_run=True))
        return OrderResponse.ok() if preview.success else preview

    def build_payload(self, request: OrderRequest, preview: bool = False) -> Dict[str, Any]:
        """Form fields for POST /accounts/{id}/orders"""
        underlying = request.legs[0].symbol
        payload: Dict[str, Any] = {"symbol": underlying, "duration": request.duration.value}

        if len(request.legs) == 1:
            leg = request.legs[0]
            payload.update({
                "class": "option",
                "option_symbol": leg.option_symbol,
                "side": leg.side.value,
                "quantity": str(leg.quantity),
                "type": request.order_type.value,
            })
        else:
            payload["class"] = "multileg"
            if request.order_type == OrderType.MARKET:
                payload["type"] = "market"
            else:
                payload["type"] = "credit" if request.is_credit else "debit"
            for i, leg in enumerate(request.legs):
                payload[f"option_symbol[{i}]"] = leg.option_symbol
                payload[f"side[{i}]"] = leg.side.value
                payload[f"quantity[{i}]"] = str(leg.quantity)

        if request.limit_price is not None and request.order_type != OrderType.MARKET:
            payload["price"] = f"{money(request.limit_price):.2f}"
        if request.stop_price is not None:
            payload["stop"] = f"{money(request.stop_price):.2f}"
        if request.trade_packet_id:
            payload["tag"] = request.trade_packet_id[:255]
        if preview:
            payload["preview"] = "true"
        return payload

    async def close(self) -> None:
        await self.disconnect()

    async def _list_orders(self) -> List[Order]:
        data = await self._call("GET", f"{self._account_path}/orders")
        raw = as_list(((data or {}).get("orders") or {}).get("order"))
        return [self._to_order(o) for o in raw]

    async def _call(self, method: str, path: str, data: Optional[Dict[str, Any]] = None) -> Any:
        try:
            return await self._client.request(method, path, data=data)
        except ProviderError as e:
            logger.error(f"Tradier {method} {path} failed: {e}")
            raise BrokerError(str(e)) from e

    def _to_position(self, raw: Dict[str, Any]) -> BrokerPosition:
        symbol = raw.get("symbol", "")
        quantity = int(float(raw.get("quantity", 0)))
        cost_basis = to_decimal(raw.get("cost_basis"))
        option_type = strike = expiration = None
        underlying = symbol
        multiplier = 1
        try:
            occ = parse_occ_symbol(symbol)
            underlying, option_type, strike, expiration = occ.underlying, occ.option_type, occ.strike, occ.expiration
            multiplier = 100
        except ProviderError:
            pass

        average_cost = money(cost_basis / (quantity * multiplier)) if quantity else Decimal('0')
        return BrokerPosition(
            symbol=underlying,
            option_symbol=symbol if option_type is not None else None,
            quantity=quantity,
            average_cost=average_cost,
            # positions endpoint carries no marks; callers price them off market data
            current_price=average_cost,
            market_value=money(cost_basis),
            unrealized_pnl=Decimal('0'),
            option_type=option_type,
            strike=strike,
            expiration=expiration,
        )

    def _to_order(self, raw: Dict[str, Any]) -> Order:
        raw_legs = as_list(raw.get("leg")) or [raw]
        legs = []
        for leg in raw_legs:
            option_symbol = leg.get("option_symbol")
            occ = parse_occ_symbol(option_symbol) if option_symbol else None
            legs.append(OrderLeg(
                symbol=leg.get("symbol", raw.get("symbol", "")),
                side=OrderSide(leg.get("side", "sell_to_open")),
                quantity=int(float(leg.get("quantity", 0))),
                option_symbol=option_symbol,
                option_type=occ.option_type if occ else None,
                strike=occ.strike if occ else None,
                expiration=occ.expiration if occ else None,
            ))

        order_type = raw.get("type", "limit")
        status = TRADIER_STATUS.get(raw.get("status", ""), OrderStatus.PENDING)
        order = Order(
            id=str(raw.get("id")),
            workspace_id="local",
            trade_packet_id=raw.get("tag"),
            legs=legs,
            order_type=OrderType.MARKET if order_type == "market" else OrderType.LIMIT,
            limit_price=to_decimal(raw["price"]) if raw.get("price") is not None else None,
            duration=OrderDuration.GTC if raw.get("duration") == "gtc" else OrderDuration.DAY,
            status=status,
            created_at=_parse_timestamp(raw.get("create_date")) or utc_now(),
            broker_name=self.name,
            is_credit=order_type != "debit",
            filled_quantity=int(float(raw.get("exec_quantity", 0) or 0)),
            avg_fill_price=to_decimal(raw["avg_fill_price"]) if raw.get("avg_fill_price") else None,
            broker_order_id=str(raw.get("id")),
            reject_reason=raw.get("reason_description"),
            is_paper=self.is_paper,
        )
        if status == OrderStatus.FILLED:
            order.filled_at = _parse_timestamp(raw.get("transaction_date"))
        return order
