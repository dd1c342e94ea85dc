"""
Trading Settings - Options Trade-Generation Engine

Caller-supplied configuration: risk limits, liquidity filters, earnings
exclusion, per-strategy DTE/delta windows, regime preferences and kill
switches. Includes the three risk presets, hard-cap validation and a dotted
path diff between two settings objects.

BUSINESS LOGIC IMPLEMENTATION
"""

import logging
from dataclasses import dataclass, field, replace
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from ..custom_types import TrendRegime, VolatilityRegime
from ..utils import to_decimal, to_serializable

logger = logging.getLogger(__name__)

# Hard caps; no preset or caller override may exceed these
MAX_RISK_PER_TRADE_CAP_PCT = 5.0
MAX_TOTAL_RISK_CAP_PCT = 25.0
MIN_OPTION_OI_FLOOR = 10
MIN_UNDERLYING_VOLUME_FLOOR = 10_000
DELTA_FLOOR = 0.05
DELTA_CEILING = 0.50

DEFAULT_ACCOUNT_SIZE = Decimal('100000')

DEFAULT_SYMBOLS: Tuple[str, ...] = (
    "SPY", "QQQ", "IWM", "DIA",
    "AAPL", "MSFT", "AMZN", "NVDA", "META", "GOOGL", "TSLA",
    "XLK", "XLF", "XLE", "XLV", "XLY", "XLP", "XLI", "XLU",
)


class RiskPreset(Enum):
    CONSERVATIVE = "conservative"
    BALANCED = "balanced"
    AGGRESSIVE = "aggressive"


class SettingsValidationError(ValueError):
    """Settings violate a hard cap or structural rule"""

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__("Invalid trading settings: " + "; ".join(self.errors))


@dataclass(frozen=True)
class RiskLimits:
    max_risk_per_trade_pct: float
    max_total_risk_pct: float
    daily_loss_limit_pct: float
    max_new_orders_per_day: int
    daily_loss_limit_usd: Optional[Decimal] = None
    account_size: Optional[Decimal] = None

    @property
    def effective_account_size(self) -> Decimal:
        return self.account_size if self.account_size else DEFAULT_ACCOUNT_SIZE

    @property
    def max_risk_per_trade(self) -> Decimal:
        """Dollar cap per trade"""
        return self.effective_account_size * to_decimal(self.max_risk_per_trade_pct) / 100

    @property
    def max_total_risk(self) -> Decimal:
        """Dollar portfolio risk budget"""
        return self.effective_account_size * to_decimal(self.max_total_risk_pct) / 100


@dataclass(frozen=True)
class LiquidityFilters:
    min_underlying_volume: int
    min_option_oi: int
    min_option_volume: int
    max_bid_ask_spread_pct: float


@dataclass(frozen=True)
class StrategySettings:
    enabled: bool
    min_dte: int
    max_dte: int
    target_delta_min: float
    target_delta_max: float
    profit_target_pct: float = 50.0
    max_loss_pct: Optional[float] = None


@dataclass(frozen=True)
class SpreadStrategySettings(StrategySettings):
    spread_width: Decimal = Decimal('5')
    min_credit: Decimal = Decimal('0.50')


@dataclass(frozen=True)
class TradingSettings:
    risk_limits: RiskLimits
    liquidity_filters: LiquidityFilters
    cash_secured_put: StrategySettings
    covered_call: StrategySettings
    put_credit_spread: SpreadStrategySettings
    call_credit_spread: SpreadStrategySettings
    earnings_exclusion_days: int = 10
    preferred_vol_regimes: Tuple[VolatilityRegime, ...] = ()
    preferred_trend_regimes: Tuple[TrendRegime, ...] = ()
    trading_enabled: bool = False
    broker_execution_enabled: bool = False
    paper_mode_enabled: bool = True
    risk_preset: RiskPreset = RiskPreset.BALANCED
    version_id: Optional[str] = None

    def strategies(self) -> Dict[str, StrategySettings]:
        return {
            "cash_secured_put": self.cash_secured_put,
            "covered_call": self.covered_call,
            "put_credit_spread": self.put_credit_spread,
            "call_credit_spread": self.call_credit_spread,
        }

    def to_dict(self) -> Dict[str, Any]:
        return to_serializable(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TradingSettings":
        """Inverse of to_dict; unknown keys are rejected by the dataclass constructors"""
        risk = dict(data["risk_limits"])
        for key in ("daily_loss_limit_usd", "account_size"):
            if risk.get(key) is not None:
                risk[key] = to_decimal(risk[key])

        def _strategy(raw: Dict[str, Any], spread: bool) -> StrategySettings:
            raw = dict(raw)
            if spread:
                for key in ("spread_width", "min_credit"):
                    if key in raw:
                        raw[key] = to_decimal(raw[key])
                return SpreadStrategySettings(**raw)
            return StrategySettings(**raw)

        return cls(
            risk_limits=RiskLimits(**risk),
            liquidity_filters=LiquidityFilters(**data["liquidity_filters"]),
            cash_secured_put=_strategy(data["cash_secured_put"], False),
            covered_call=_strategy(data["covered_call"], False),
            put_credit_spread=_strategy(data["put_credit_spread"], True),
            call_credit_spread=_strategy(data["call_credit_spread"], True),
            earnings_exclusion_days=int(data.get("earnings_exclusion_days", 10)),
            preferred_vol_regimes=tuple(VolatilityRegime(v) for v in data.get("preferred_vol_regimes", ())),
            preferred_trend_regimes=tuple(TrendRegime(t) for t in data.get("preferred_trend_regimes", ())),
            trading_enabled=bool(data.get("trading_enabled", False)),
            broker_execution_enabled=bool(data.get("broker_execution_enabled", False)),
            paper_mode_enabled=bool(data.get("paper_mode_enabled", True)),
            risk_preset=RiskPreset(data.get("risk_preset", RiskPreset.BALANCED.value)),
            version_id=data.get("version_id"),
        )


def _conservative() -> TradingSettings:
    return TradingSettings(
        risk_limits=RiskLimits(
            max_risk_per_trade_pct=2,
            max_total_risk_pct=10,
            daily_loss_limit_pct=3,
            max_new_orders_per_day=3,
        ),
        liquidity_filters=LiquidityFilters(
            min_underlying_volume=1_000_000,
            min_option_oi=500,
            min_option_volume=100,
            max_bid_ask_spread_pct=5,
        ),
        earnings_exclusion_days=14,
        cash_secured_put=StrategySettings(True, 30, 45, 0.15, 0.25, 50, 100),
        covered_call=StrategySettings(True, 21, 45, 0.15, 0.25, 50, None),
        put_credit_spread=SpreadStrategySettings(True, 30, 45, 0.15, 0.25, 50, 100, Decimal('5'), Decimal('0.50')),
        # bearish structure off by default for the cautious preset
        call_credit_spread=SpreadStrategySettings(False, 30, 45, 0.15, 0.25, 50, 100, Decimal('5'), Decimal('0.50')),
        preferred_vol_regimes=(VolatilityRegime.NORMAL, VolatilityRegime.ELEVATED),
        preferred_trend_regimes=(TrendRegime.UPTREND, TrendRegime.STRONG_UPTREND, TrendRegime.NEUTRAL),
        risk_preset=RiskPreset.CONSERVATIVE,
    )


def _balanced() -> TradingSettings:
    return TradingSettings(
        risk_limits=RiskLimits(
            max_risk_per_trade_pct=3,
            max_total_risk_pct=15,
            daily_loss_limit_pct=5,
            max_new_orders_per_day=5,
        ),
        liquidity_filters=LiquidityFilters(
            min_underlying_volume=500_000,
            min_option_oi=300,
            min_option_volume=50,
            max_bid_ask_spread_pct=8,
        ),
        earnings_exclusion_days=10,
        cash_secured_put=StrategySettings(True, 21, 45, 0.20, 0.30, 50, 100),
        covered_call=StrategySettings(True, 14, 45, 0.20, 0.30, 50, None),
        put_credit_spread=SpreadStrategySettings(True, 21, 45, 0.20, 0.30, 50, 100, Decimal('5'), Decimal('0.40')),
        call_credit_spread=SpreadStrategySettings(True, 21, 45, 0.20, 0.30, 50, 100, Decimal('5'), Decimal('0.40')),
        preferred_vol_regimes=(VolatilityRegime.NORMAL, VolatilityRegime.ELEVATED, VolatilityRegime.HIGH),
        preferred_trend_regimes=(
            TrendRegime.UPTREND, TrendRegime.STRONG_UPTREND, TrendRegime.NEUTRAL, TrendRegime.DOWNTREND
        ),
        risk_preset=RiskPreset.BALANCED,
    )


def _aggressive() -> TradingSettings:
    return TradingSettings(
        risk_limits=RiskLimits(
            max_risk_per_trade_pct=5,
            max_total_risk_pct=25,
            daily_loss_limit_pct=8,
            max_new_orders_per_day=10,
        ),
        liquidity_filters=LiquidityFilters(
            min_underlying_volume=250_000,
            min_option_oi=100,
            min_option_volume=25,
            max_bid_ask_spread_pct=12,
        ),
        earnings_exclusion_days=5,
        cash_secured_put=StrategySettings(True, 14, 45, 0.25, 0.35, 50, 150),
        covered_call=StrategySettings(True, 7, 45, 0.25, 0.35, 50, None),
        put_credit_spread=SpreadStrategySettings(True, 14, 45, 0.25, 0.35, 50, 150, Decimal('5'), Decimal('0.30')),
        call_credit_spread=SpreadStrategySettings(True, 14, 45, 0.25, 0.35, 50, 150, Decimal('5'), Decimal('0.30')),
        preferred_vol_regimes=(VolatilityRegime.ELEVATED, VolatilityRegime.HIGH, VolatilityRegime.PANIC),
        preferred_trend_regimes=tuple(TrendRegime),
        risk_preset=RiskPreset.AGGRESSIVE,
    )


_PRESETS = {
    RiskPreset.CONSERVATIVE: _conservative,
    RiskPreset.BALANCED: _balanced,
    RiskPreset.AGGRESSIVE: _aggressive,
}


def get_default_settings(preset: Any = RiskPreset.BALANCED) -> TradingSettings:
    """
    Fresh settings for a risk preset.

    All presets ship with trading and broker execution disabled and paper
    mode enabled.
    """
    return _PRESETS[RiskPreset(preset)]()


@dataclass(frozen=True)
class SettingsValidation:
    valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return to_serializable(self)


def validate_settings(settings: TradingSettings) -> SettingsValidation:
    """Check hard caps and per-strategy structure; never raises"""
    errors: List[str] = []
    warnings: List[str] = []
    risk = settings.risk_limits
    liquidity = settings.liquidity_filters

    if risk.max_risk_per_trade_pct > MAX_RISK_PER_TRADE_CAP_PCT:
        errors.append(f"max_risk_per_trade_pct cannot exceed {MAX_RISK_PER_TRADE_CAP_PCT:g}%")
    if risk.max_risk_per_trade_pct <= 0:
        errors.append("max_risk_per_trade_pct must be positive")
    if risk.max_total_risk_pct > MAX_TOTAL_RISK_CAP_PCT:
        errors.append(f"max_total_risk_pct cannot exceed {MAX_TOTAL_RISK_CAP_PCT:g}%")
    if risk.max_total_risk_pct < risk.max_risk_per_trade_pct:
        errors.append("max_total_risk_pct must be >= max_risk_per_trade_pct")
    if risk.daily_loss_limit_pct <= 0:
        errors.append("daily_loss_limit_pct must be set and positive")
    if risk.max_new_orders_per_day < 0:
        errors.append("max_new_orders_per_day cannot be negative")
    elif risk.max_new_orders_per_day == 0:
        warnings.append("max_new_orders_per_day is 0; no new orders will be submitted")
    if risk.account_size is not None and risk.account_size <= 0:
        errors.append("account_size must be positive when set")

    if liquidity.min_option_oi < MIN_OPTION_OI_FLOOR:
        errors.append(f"min_option_oi cannot be less than {MIN_OPTION_OI_FLOOR}")
    if liquidity.min_underlying_volume < MIN_UNDERLYING_VOLUME_FLOOR:
        errors.append(f"min_underlying_volume cannot be less than {MIN_UNDERLYING_VOLUME_FLOOR:,}")
    if liquidity.max_bid_ask_spread_pct <= 0:
        errors.append("max_bid_ask_spread_pct must be positive")

    for name, strategy in settings.strategies().items():
        if strategy.min_dte < 1:
            errors.append(f"{name}: min_dte must be at least 1 day")
        if strategy.max_dte < strategy.min_dte:
            errors.append(f"{name}: max_dte must be >= min_dte")
        if strategy.target_delta_min < DELTA_FLOOR or strategy.target_delta_max > DELTA_CEILING:
            errors.append(f"{name}: delta targets must be between {DELTA_FLOOR:.2f} and {DELTA_CEILING:.2f}")
        if strategy.target_delta_min > strategy.target_delta_max:
            errors.append(f"{name}: target_delta_min must be <= target_delta_max")
        if isinstance(strategy, SpreadStrategySettings):
            if strategy.spread_width <= 0:
                errors.append(f"{name}: spread_width must be positive")
            if strategy.min_credit < 0:
                errors.append(f"{name}: min_credit cannot be negative")

    if settings.broker_execution_enabled and not settings.trading_enabled:
        warnings.append("broker_execution_enabled has no effect while trading_enabled is off")

    return SettingsValidation(valid=not errors, errors=errors, warnings=warnings)


def ensure_valid_settings(settings: TradingSettings) -> TradingSettings:
    """
    Raises:
        SettingsValidationError: When validate_settings reports errors
    """
    result = validate_settings(settings)
    if not result.valid:
        raise SettingsValidationError(result.errors)
    return settings


def _flatten(value: Any, prefix: str = "") -> Dict[str, Any]:
    if isinstance(value, dict):
        flat: Dict[str, Any] = {}
        for key, item in value.items():
            path = f"{prefix}.{key}" if prefix else str(key)
            flat.update(_flatten(item, path))
        return flat
    return {prefix: value}


def calculate_settings_diff(old: TradingSettings, new: TradingSettings) -> Dict[str, Dict[str, Any]]:
    """Changed leaves as {dotted.path: {"old": ..., "new": ...}}"""
    old_flat = _flatten(to_serializable(old))
    new_flat = _flatten(to_serializable(new))

    diff: Dict[str, Dict[str, Any]] = {}
    for path in sorted(set(old_flat) | set(new_flat)):
        before = old_flat.get(path)
        after = new_flat.get(path)
        if before != after:
            diff[path] = {"old": before, "new": after}
    return diff


def with_kill_switches(
    settings: TradingSettings,
    trading_enabled: Optional[bool] = None,
    broker_execution_enabled: Optional[bool] = None,
    paper_mode_enabled: Optional[bool] = None
) -> TradingSettings:
    """Copy of settings with the given switches changed"""
    changes = {
        key: value for key, value in (
            ("trading_enabled", trading_enabled),
            ("broker_execution_enabled", broker_execution_enabled),
            ("paper_mode_enabled", paper_mode_enabled),
        ) if value is not None
    }
    return replace(settings, **changes)
