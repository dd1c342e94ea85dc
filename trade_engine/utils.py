"""
Shared Helpers - Options Trade-Generation Engine

Date arithmetic, rounding and JSON-safe serialization shared by the data,
strategy, engine and broker layers.
"""

import dataclasses
import math
from datetime import date, datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Any, Union


DateLike = Union[date, datetime, str]


def utc_now() -> datetime:
    """Timezone-aware current timestamp"""
    return datetime.now(timezone.utc)


def to_date(value: DateLike) -> date:
    """Coerce an ISO string, datetime or date to a date"""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def calculate_dte(expiration: DateLike, today: date = None) -> int:
    """Calendar days from today until expiration (never negative)"""
    today = today or date.today()
    return max(0, (to_date(expiration) - today).days)


def is_within_days(target: DateLike, days: int, today: date = None) -> bool:
    """True when target falls between today and today + days inclusive"""
    today = today or date.today()
    diff = (to_date(target) - today).days
    return 0 <= diff <= days


def to_decimal(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if value is None:
        return Decimal('0')
    return Decimal(str(value))


def money(value: Any) -> Decimal:
    """Round to cents"""
    return to_decimal(value).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)


def round_float(value: float, places: int = 2) -> float:
    if value is None or (isinstance(value, float) and math.isnan(value)):
        return 0.0
    return round(float(value), places)


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def to_serializable(value: Any) -> Any:
    """
    Convert engine records into plain JSON-safe data.

    Decimals become floats, enums their values, dates ISO strings and
    dataclasses nested dicts.
    """
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {
            field.name: to_serializable(getattr(value, field.name))
            for field in dataclasses.fields(value)
        }
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(to_serializable(k)): to_serializable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [to_serializable(v) for v in value]
    return value
