"""
Market and Symbol Signals Module

Components:
- indicators: moving averages, realized volatility, regime bucketing, liquidity scoring
- regime_detector: market-wide trend/volatility/breadth/leadership classification
- symbol_analyzer: per-symbol trend, volatility, liquidity and earnings signals
"""
