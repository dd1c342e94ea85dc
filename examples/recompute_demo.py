"""
Recompute Demonstration - Options Trade-Generation Engine

Runs one recompute cycle against the deterministic mock provider, prints the
market brief and the ranked trade packets, then routes the top packet
through the execution manager in paper mode.

    python examples/recompute_demo.py
"""

import asyncio
import logging

from trade_engine.brokers.execution import BrokerExecutionManager
from trade_engine.brokers.factory import create_broker_provider
from trade_engine.data.factory import create_market_data_provider
from trade_engine.engine.orchestrator import RecomputeOptions, TradingEngine
from trade_engine.engine.settings import RiskPreset, get_default_settings, with_kill_switches

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

SYMBOLS = ["SPY", "QQQ", "AAPL", "MSFT", "NVDA", "AMZN", "IWM"]


async def main():
    settings = get_default_settings(RiskPreset.BALANCED)
    engine = TradingEngine(create_market_data_provider("mock"))

    try:
        result = await engine.recompute(settings, RecomputeOptions(symbols=SYMBOLS))
    finally:
        await engine.close()

    narrative = result.narrative
    print(f"\n📈 {narrative.title}")
    print(narrative.summary)
    for flag in narrative.caution_flags:
        print(f"⚠️  {flag}")

    stats = result.stats
    print(f"\n🔍 {stats.symbols_analyzed}/{stats.symbols_processed} symbols analyzed, "
          f"{stats.candidates_generated} candidates, {stats.candidates_after_filtering} ranked "
          f"in {stats.duration_ms}ms")
    for error in stats.errors:
        print(f"❌ {error}")

    for packet in result.ranked_candidates:
        print(f"  {packet.score:5.1f}  {packet.symbol:<5} {packet.strategy_type.label:<20} "
              f"credit ${packet.net_credit}  max loss ${packet.max_loss}  {packet.dte} DTE")

    if not result.ranked_candidates:
        print("No packets passed the filters")
        return

    # Paper trading: master switch on, broker execution off
    paper_settings = with_kill_switches(settings, trading_enabled=True)
    manager = BrokerExecutionManager(create_broker_provider("manual"), lambda: paper_settings)
    response = await manager.submit(result.ranked_candidates[0])

    if response.success:
        order = response.order
        print(f"\n✅ Paper order {order.broker_order_id} filled at ${order.avg_fill_price} "
              f"(commission ${order.commission})")
        account = await manager.get_account_info()
        print(f"   Cash ${account.cash_balance}, buying power ${account.buying_power}")
    else:
        print(f"\n❌ Paper order rejected: {response.error} {response.validation_errors}")


if __name__ == "__main__":
    asyncio.run(main())
