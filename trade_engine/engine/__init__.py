"""
Engine Module

Components:
- settings: TradingSettings, risk presets, validation and settings diff
- scoring: composite trade scorer and its weights
- ranker: score/strategy/symbol/risk-budget filtering pipeline
- narrative: market brief from a MarketRegime
- orchestrator: TradingEngine run controller

Import the orchestrator from trade_engine.engine.orchestrator; this package
only re-exports settings so lower layers can depend on them.
"""

from .settings import (
    DEFAULT_SYMBOLS,
    RiskPreset,
    SettingsValidationError,
    TradingSettings,
    calculate_settings_diff,
    get_default_settings,
    validate_settings,
)
