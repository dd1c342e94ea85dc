"""
Options Trade-Generation Engine

Classifies the market regime, analyzes a symbol universe, scans option chains
with rule-based strategies, ranks the resulting trade packets under portfolio
risk budgets and hands approved packets to a gated broker execution layer.

Components:
- data: market data contract, providers, cache and rate limiting
- signals: indicators, regime detection and per-symbol analysis
- strategies: cash-secured put, covered call and credit spread generators
- engine: settings, scoring/ranking, narrative and the recompute orchestrator
- brokers: manual, paper and live broker providers plus the execution manager
"""

__version__ = "1.0.0"
