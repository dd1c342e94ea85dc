"""
OCC Option Symbology - Options Trade-Generation Engine

Builds and parses OSI/OCC option symbols such as ``AAPL250117P00220000``
(root, YYMMDD expiration, C/P, strike x 1000 padded to eight digits).
"""

import re
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal

from .provider import OptionType, ValidationError

_OCC_PATTERN = re.compile(r"^([A-Z.]{1,6})\s*(\d{6})([CP])(\d{8})$")


@dataclass(frozen=True)
class OccSymbol:
    underlying: str
    expiration: date
    option_type: OptionType
    strike: Decimal


def build_occ_symbol(underlying: str, expiration: date, option_type: OptionType, strike: Decimal) -> str:
    right = "C" if option_type == OptionType.CALL else "P"
    strike_code = int((Decimal(str(strike)) * 1000).to_integral_value())
    return f"{underlying.upper()}{expiration.strftime('%y%m%d')}{right}{strike_code:08d}"


def parse_occ_symbol(symbol: str) -> OccSymbol:
    """
    Parse an OCC option symbol.

    Raises:
        ValidationError: When the symbol is not OCC formatted
    """
    match = _OCC_PATTERN.match(symbol.strip().upper())
    if not match:
        raise ValidationError(f"Not an OCC option symbol: {symbol}")

    root, yymmdd, right, strike_code = match.groups()
    return OccSymbol(
        underlying=root,
        expiration=datetime.strptime(yymmdd, "%y%m%d").date(),
        option_type=OptionType.CALL if right == "C" else OptionType.PUT,
        strike=Decimal(strike_code) / 1000,
    )
