"""
Test Suite for Market Data Providers - Options Trade-Generation Engine

Simulated provider determinism, OCC symbols and the provider factory.
"""

from datetime import date
from decimal import Decimal

import pytest

from trade_engine.data.factory import create_market_data_provider, get_registered_providers
from trade_engine.data.mock_provider import MOCK_SYMBOLS, MockMarketDataProvider, generate_expirations
from trade_engine.data.occ import build_occ_symbol, parse_occ_symbol
from trade_engine.data.provider import HistoryRange, OptionType, ProviderError, SymbolNotFoundError


class TestMockProvider:

    @pytest.mark.asyncio
    async def test_seeded_quote(self, mock_provider):
        quote = await mock_provider.get_quote("AAPL")

        assert quote.price == Decimal("242.85")
        assert quote.bid < quote.price < quote.ask
        assert mock_provider.call_counts["get_quote"] == 1

        print("✅ Seeded quote served")

    @pytest.mark.asyncio
    async def test_unknown_symbol(self, mock_provider):
        with pytest.raises(SymbolNotFoundError):
            await mock_provider.get_quote("BOGUS")

        print("✅ Unknown symbol raises SymbolNotFoundError")

    @pytest.mark.asyncio
    async def test_history_ends_at_quote_and_is_repeatable(self, mock_provider):
        history = await mock_provider.get_historical_prices("SPY", HistoryRange.ONE_YEAR)
        other = MockMarketDataProvider(today=mock_provider.today)
        again = await other.get_historical_prices("SPY", HistoryRange.ONE_YEAR)

        assert len(history) >= 200
        assert history[-1].close == Decimal("585.42")
        assert [bar.close for bar in history] == [bar.close for bar in again]
        assert all(bar.date.weekday() < 5 for bar in history)

        print("✅ History deterministic and anchored to the quote")

    @pytest.mark.asyncio
    async def test_expirations_are_future_fridays(self, mock_provider):
        expirations = await mock_provider.get_option_expirations("AAPL")

        assert expirations == sorted(expirations)
        assert all(exp > mock_provider.today for exp in expirations)
        assert all(exp.weekday() == 4 for exp in expirations)

        print("✅ Expirations are sorted future Fridays")

    @pytest.mark.asyncio
    async def test_chain_structure(self, mock_provider):
        expiration = (await mock_provider.get_option_expirations("AAPL"))[3]
        chain = await mock_provider.get_option_chain("AAPL", expiration)

        assert len(chain.calls) == len(chain.puts) > 0
        assert all(c.bid <= c.ask for c in chain.calls + chain.puts)
        assert all(c.delta >= 0 for c in chain.calls)
        assert all(p.delta <= 0 for p in chain.puts)
        assert all(parse_occ_symbol(p.symbol).strike == p.strike for p in chain.puts)

        print("✅ Generated chain is well formed")

    @pytest.mark.asyncio
    async def test_vix_proxy_only_for_spy(self, mock_provider):
        spy = await mock_provider.get_volatility_data("SPY")
        aapl = await mock_provider.get_volatility_data("AAPL")

        assert spy.vix_proxy is not None
        assert aapl.vix_proxy is None
        assert 30 <= aapl.iv_rank <= 70

        print("✅ VIX proxy reported for the benchmark only")

    def test_expirations_include_monthlies(self):
        today = date(2024, 1, 10)
        expirations = generate_expirations(today)

        assert date(2024, 3, 15) in expirations
        assert expirations[0] == date(2024, 1, 12)


class TestOccSymbols:

    def test_round_trip(self):
        expiration = date(2024, 1, 19)
        symbol = build_occ_symbol("AAPL", expiration, OptionType.PUT, Decimal("182.5"))

        assert symbol == "AAPL240119P00182500"
        parsed = parse_occ_symbol(symbol)
        assert parsed.underlying == "AAPL"
        assert parsed.expiration == expiration
        assert parsed.option_type == OptionType.PUT
        assert parsed.strike == Decimal("182.5")

        print("✅ OCC symbol built and parsed")

    def test_malformed_symbol(self):
        with pytest.raises(ProviderError):
            parse_occ_symbol("NOT-AN-OPTION")


class TestProviderFactory:

    def test_mock_is_default(self, monkeypatch):
        monkeypatch.delenv("MARKET_DATA_PROVIDER", raising=False)
        provider = create_market_data_provider()

        assert isinstance(provider, MockMarketDataProvider)
        assert {"mock", "polygon", "tradier", "yahoo"} <= set(get_registered_providers())

    def test_unknown_provider(self):
        with pytest.raises(ValueError):
            create_market_data_provider("bloomberg")

    def test_mock_symbols_cover_sectors(self):
        assert {"SPY", "XLK", "XLU"} <= set(MOCK_SYMBOLS)
