"""
Strategy Engines Module

Components:
- base: trade records, TradePacket, TradeStrategy protocol, shared gates and scoring helpers
- cash_secured_put: short OTM put backed by cash collateral
- covered_call: short OTM call against owned shares
- credit_spread: put and call vertical credit spreads
- registry: explicit ordered strategy registry
"""
