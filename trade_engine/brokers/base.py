"""
Broker Interfaces - Options Trade-Generation Engine

Order, account and position records shared by every broker provider, the
BrokerProvider protocol and the broker exception types.

An Order moves through:
    pending_approval -> pending -> submitted -> filled | cancelled | rejected

Limit prices on multi-leg orders are the NET price per share; ``is_credit``
says which side of the market the net price is on.

NO BUSINESS LOGIC - INTERFACES ONLY (plus the structural order checks every
provider shares)
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol

from ..data.occ import parse_occ_symbol
from ..data.provider import OptionType, ValidationError
from ..utils import to_serializable


class OrderStatus(Enum):
    PENDING_APPROVAL = "pending_approval"
    PENDING = "pending"
    SUBMITTED = "submitted"
    FILLED = "filled"
    PARTIALLY_FILLED = "partially_filled"
    CANCELLED = "cancelled"
    REJECTED = "rejected"
    EXPIRED = "expired"

    @property
    def is_open(self) -> bool:
        return self in (
            OrderStatus.PENDING_APPROVAL, OrderStatus.PENDING,
            OrderStatus.SUBMITTED, OrderStatus.PARTIALLY_FILLED,
        )


class OrderSide(Enum):
    BUY_TO_OPEN = "buy_to_open"
    SELL_TO_OPEN = "sell_to_open"
    BUY_TO_CLOSE = "buy_to_close"
    SELL_TO_CLOSE = "sell_to_close"

    @property
    def is_buy(self) -> bool:
        return self in (OrderSide.BUY_TO_OPEN, OrderSide.BUY_TO_CLOSE)

    @property
    def is_opening(self) -> bool:
        return self in (OrderSide.BUY_TO_OPEN, OrderSide.SELL_TO_OPEN)


class OrderType(Enum):
    MARKET = "market"
    LIMIT = "limit"
    STOP = "stop"
    STOP_LIMIT = "stop_limit"


class OrderDuration(Enum):
    DAY = "day"
    GTC = "gtc"


class BrokerMode(Enum):
    MANUAL = "manual"
    PAPER = "paper"
    LIVE = "live"


@dataclass(frozen=True)
class OrderLeg:
    symbol: str  # underlying
    side: OrderSide
    quantity: int
    option_symbol: Optional[str] = None
    option_type: Optional[OptionType] = None
    strike: Optional[Decimal] = None
    expiration: Optional[date] = None
    price: Optional[Decimal] = None  # per share reference price for the leg

    @property
    def position_key(self) -> str:
        return self.option_symbol or self.symbol


@dataclass(frozen=True)
class OrderRequest:
    trade_packet_id: Optional[str]
    legs: List[OrderLeg]
    order_type: OrderType = OrderType.LIMIT
    limit_price: Optional[Decimal] = None
    stop_price: Optional[Decimal] = None
    duration: OrderDuration = OrderDuration.DAY
    is_credit: bool = True
    dry_run: bool = False
    workspace_id: str = "local"

    @property
    def contracts(self) -> int:
        return sum(leg.quantity for leg in self.legs)

    def to_dict(self) -> Dict[str, Any]:
        return to_serializable(self)


@dataclass
class Order:
    """Mutable lifecycle record for one submitted (or simulated) order"""
    id: str
    workspace_id: str
    trade_packet_id: Optional[str]
    legs: List[OrderLeg]
    order_type: OrderType
    limit_price: Optional[Decimal]
    duration: OrderDuration
    status: OrderStatus
    created_at: datetime
    broker_name: str
    is_credit: bool = True
    stop_price: Optional[Decimal] = None
    filled_quantity: int = 0
    avg_fill_price: Optional[Decimal] = None
    commission: Optional[Decimal] = None
    submitted_at: Optional[datetime] = None
    filled_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    broker_order_id: Optional[str] = None
    reject_reason: Optional[str] = None
    is_paper: bool = False
    is_dry_run: bool = False

    @property
    def is_open(self) -> bool:
        return self.status.is_open

    @classmethod
    def from_request(
        cls,
        order_id: str,
        request: OrderRequest,
        status: OrderStatus,
        created_at: datetime,
        broker_name: str,
        is_paper: bool = False
    ) -> "Order":
        return cls(
            id=order_id,
            workspace_id=request.workspace_id,
            trade_packet_id=request.trade_packet_id,
            legs=list(request.legs),
            order_type=request.order_type,
            limit_price=request.limit_price,
            stop_price=request.stop_price,
            duration=request.duration,
            status=status,
            created_at=created_at,
            broker_name=broker_name,
            is_credit=request.is_credit,
            is_paper=is_paper,
            is_dry_run=request.dry_run,
        )

    def to_request(self, dry_run: bool = False) -> OrderRequest:
        return OrderRequest(
            trade_packet_id=self.trade_packet_id,
            legs=list(self.legs),
            order_type=self.order_type,
            limit_price=self.limit_price,
            stop_price=self.stop_price,
            duration=self.duration,
            is_credit=self.is_credit,
            dry_run=dry_run,
            workspace_id=self.workspace_id,
        )

    def to_dict(self) -> Dict[str, Any]:
        return to_serializable(self)


@dataclass(frozen=True)
class OrderResponse:
    success: bool
    order: Optional[Order] = None
    error: Optional[str] = None
    validation_errors: List[str] = field(default_factory=list)

    @classmethod
    def ok(cls, order: Optional[Order] = None) -> "OrderResponse":
        return cls(success=True, order=order)

    @classmethod
    def failure(
        cls,
        error: str,
        validation_errors: Optional[List[str]] = None,
        order: Optional[Order] = None
    ) -> "OrderResponse":
        return cls(success=False, order=order, error=error, validation_errors=list(validation_errors or []))

    def to_dict(self) -> Dict[str, Any]:
        return to_serializable(self)


@dataclass(frozen=True)
class AccountInfo:
    account_id: str
    account_type: str  # cash | margin
    buying_power: Decimal
    cash_balance: Decimal
    option_buying_power: Decimal
    day_trades_remaining: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return to_serializable(self)


@dataclass(frozen=True)
class BrokerPosition:
    symbol: str
    quantity: int  # negative for short option positions
    average_cost: Decimal
    current_price: Decimal
    market_value: Decimal
    unrealized_pnl: Decimal
    option_symbol: Optional[str] = None
    option_type: Optional[OptionType] = None
    strike: Optional[Decimal] = None
    expiration: Optional[date] = None

    def to_dict(self) -> Dict[str, Any]:
        return to_serializable(self)


@dataclass(frozen=True)
class BrokerConfig:
    mode: BrokerMode = BrokerMode.MANUAL
    require_approval: bool = True
    dry_run: bool = True
    max_orders_per_day: Optional[int] = 10  # None for no broker-side cap


class BrokerProvider(Protocol):
    """
    Uniform broker contract.

    Every method is async. submit/cancel/validate report business failures
    through OrderResponse(success=False); transport failures raise BrokerError.
    """

    name: str
    is_paper: bool

    @property
    def is_connected(self) -> bool:
        ...

    async def connect(self) -> None:
        ...

    async def disconnect(self) -> None:
        ...

    async def get_account_info(self) -> AccountInfo:
        ...

    async def get_positions(self) -> List[BrokerPosition]:
        ...

    async def submit_order(self, request: OrderRequest) -> OrderResponse:
        ...

    async def cancel_order(self, order_id: str) -> OrderResponse:
        ...

    async def get_order(self, order_id: str) -> Optional[Order]:
        ...

    async def get_open_orders(self) -> List[Order]:
        ...

    async def get_order_history(self, limit: int = 50) -> List[Order]:
        ...

    async def validate_order(self, request: OrderRequest) -> OrderResponse:
        ...


class BrokerError(Exception):
    """Broker transport or protocol failure"""
    pass


class SafetyGateRejection(BrokerError):
    """An execution gate refused the order; the message is user-facing"""

    def __init__(self, gate: str, reason: str):
        self.gate = gate
        self.reason = reason
        super().__init__(reason)


def validate_order_structure(request: OrderRequest, today: Optional[date] = None) -> List[str]:
    """
    Structural checks shared by every provider and the dry-run gate.

    Returns a list of human-readable problems; empty when the order is sane.
    """
    errors: List[str] = []
    today = today or date.today()

    if not request.legs:
        errors.append("Order must have at least one leg")

    for leg in request.legs:
        if leg.quantity <= 0:
            errors.append(f"Invalid quantity for {leg.symbol}: {leg.quantity}")
        if leg.expiration is not None and leg.expiration < today:
            errors.append(f"{leg.position_key} expired on {leg.expiration.isoformat()}")
        if leg.strike is not None and leg.strike <= 0:
            errors.append(f"Invalid strike for {leg.symbol}: {leg.strike}")
        if leg.option_symbol:
            errors.extend(_occ_consistency_errors(leg))

    if request.order_type in (OrderType.LIMIT, OrderType.STOP_LIMIT):
        if request.limit_price is None or request.limit_price <= 0:
            errors.append("Limit orders require a positive limit price")
        else:
            ceiling = _max_sane_price(request)
            if ceiling is not None and request.limit_price > ceiling:
                errors.append(f"Limit price ${request.limit_price} exceeds the ${ceiling} the structure can be worth")

    if request.order_type in (OrderType.STOP, OrderType.STOP_LIMIT) and not request.stop_price:
        errors.append("Stop orders require a stop price")

    return errors


def _occ_consistency_errors(leg: OrderLeg) -> List[str]:
    try:
        occ = parse_occ_symbol(leg.option_symbol)
    except ValidationError as e:
        return [str(e)]

    errors = []
    if occ.underlying != leg.symbol.upper():
        errors.append(f"{leg.option_symbol}: underlying does not match {leg.symbol}")
    if leg.strike is not None and occ.strike != Decimal(str(leg.strike)):
        errors.append(f"{leg.option_symbol}: strike does not match {leg.strike}")
    if leg.expiration is not None and occ.expiration != leg.expiration:
        errors.append(f"{leg.option_symbol}: expiration does not match {leg.expiration.isoformat()}")
    if leg.option_type is not None and occ.option_type != leg.option_type:
        errors.append(f"{leg.option_symbol}: option type does not match {leg.option_type.value}")
    return errors


def _max_sane_price(request: OrderRequest) -> Optional[Decimal]:
    """Upper bound for a net price: spread width for verticals, the strike otherwise"""
    strikes = [leg.strike for leg in request.legs if leg.strike is not None]
    if not strikes:
        return None
    if len(request.legs) == 2 and len(strikes) == 2:
        return abs(strikes[0] - strikes[1])
    return max(strikes)
