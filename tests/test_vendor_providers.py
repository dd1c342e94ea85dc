"""
Test Suite for Vendor Market Data Providers - Options Trade-Generation Engine

Response parsing for the Tradier, Polygon and Yahoo providers against canned
payloads; no network access.
"""

from datetime import date, timedelta
from decimal import Decimal

import pandas as pd
import pytest

from trade_engine.data.polygon_provider import PolygonMarketDataProvider
from trade_engine.data.provider import AuthenticationError, OptionType, SymbolNotFoundError
from trade_engine.data.tradier_provider import TradierMarketDataProvider
from trade_engine.data.yahoo_provider import YahooMarketDataProvider, black_scholes_delta

EXPIRY = date.today() + timedelta(days=30)


class FakeRestClient:
    """Returns canned JSON keyed by request path"""

    def __init__(self, responses):
        self.responses = responses
        self.paths = []
        self.closed = False

    async def get(self, path, params=None, symbol=None):
        self.paths.append(path)
        return self.responses.get(path, {})

    async def close(self):
        self.closed = True


class RoutingRestClient(FakeRestClient):
    """Matches request paths by prefix and keeps the query params"""

    def __init__(self, responses):
        super().__init__(responses)
        self.requests = []

    async def get(self, path, params=None, symbol=None):
        self.paths.append(path)
        self.requests.append((path, params))
        for prefix, response in self.responses.items():
            if path.startswith(prefix):
                return response
        return {}


class TestFixtures:

    @staticmethod
    def tradier_quote(symbol="AAPL", last=190.5):
        return {
            "symbol": symbol, "type": "stock", "last": last, "bid": 190.4, "ask": 190.6,
            "open": 189.0, "high": 191.2, "low": 188.7, "prevclose": 189.3,
            "volume": 41000000, "average_volume": 52000000,
        }

    @staticmethod
    def tradier_option(option_type, strike, bid, ask, delta):
        symbol = f"AAPL{EXPIRY:%y%m%d}{'C' if option_type == 'call' else 'P'}{int(strike * 1000):08d}"
        return {
            "symbol": symbol, "option_type": option_type, "strike": strike,
            "expiration_date": EXPIRY.isoformat(), "bid": bid, "ask": ask, "last": None,
            "volume": 120, "open_interest": 900,
            "greeks": {"delta": delta, "gamma": 0.02, "theta": -0.05, "vega": 0.2, "mid_iv": 0.28},
        }


class TestTradierProvider:

    def test_requires_key_without_client(self, monkeypatch):
        monkeypatch.delenv("TRADIER_API_KEY", raising=False)

        with pytest.raises(AuthenticationError):
            TradierMarketDataProvider()

    @pytest.mark.asyncio
    async def test_quote(self):
        client = FakeRestClient({"/markets/quotes": {"quotes": {"quote": TestFixtures.tradier_quote()}}})
        provider = TradierMarketDataProvider(client=client)

        quote = await provider.get_quote("AAPL")

        assert quote.price == Decimal("190.5")
        assert quote.avg_volume == 52000000
        assert quote.previous_close == Decimal("189.3")

        print("✅ Tradier quote parsed")

    @pytest.mark.asyncio
    async def test_unmatched_symbol(self):
        unmatched = {"quotes": {"quote": {"symbol": "BOGUS", "type": "unmatched"}}}
        provider = TradierMarketDataProvider(client=FakeRestClient({"/markets/quotes": unmatched}))

        with pytest.raises(SymbolNotFoundError):
            await provider.get_quote("BOGUS")

    @pytest.mark.asyncio
    async def test_expirations_drop_past_dates(self):
        past = (date.today() - timedelta(days=3)).isoformat()
        payload = {"expirations": {"date": [EXPIRY.isoformat(), past, (EXPIRY - timedelta(days=7)).isoformat()]}}
        provider = TradierMarketDataProvider(client=FakeRestClient({"/markets/options/expirations": payload}))

        expirations = await provider.get_option_expirations("AAPL")

        assert expirations == [EXPIRY - timedelta(days=7), EXPIRY]

    @pytest.mark.asyncio
    async def test_chain_with_greeks(self):
        options = [
            TestFixtures.tradier_option("put", 185, 2.1, 2.2, -0.3),
            TestFixtures.tradier_option("call", 195, 2.4, 2.5, 0.35),
            TestFixtures.tradier_option("put", 180, 1.1, 1.2, -0.2),
        ]
        client = FakeRestClient({
            "/markets/quotes": {"quotes": {"quote": TestFixtures.tradier_quote()}},
            "/markets/options/chains": {"options": {"option": options}},
        })
        provider = TradierMarketDataProvider(client=client)

        chain = await provider.get_option_chain("AAPL", EXPIRY)

        assert [p.strike for p in chain.puts] == [Decimal("180"), Decimal("185")]
        assert len(chain.calls) == 1
        call = chain.calls[0]
        assert call.delta == 0.35
        assert call.implied_volatility == 0.28
        assert not call.in_the_money
        assert call.option_type == OptionType.CALL

        await provider.get_option_chain("AAPL", EXPIRY)
        assert client.paths.count("/markets/options/chains") == 1

        print("✅ Tradier chain parsed and cached")

    @pytest.mark.asyncio
    async def test_close(self):
        client = FakeRestClient({})
        await TradierMarketDataProvider(client=client).close()

        assert client.closed


class TestPolygonProvider:

    @pytest.mark.asyncio
    async def test_snapshot_quote(self):
        snapshot = {
            "status": "OK",
            "ticker": {
                "day": {"c": 410.2, "o": 405.0, "h": 412.0, "l": 404.1, "v": 21000000},
                "prevDay": {"c": 404.9, "v": 25000000},
                "lastQuote": {"p": 410.1, "P": 410.3},
            },
        }
        client = FakeRestClient({"/v2/snapshot/locale/us/markets/stocks/tickers/MSFT": snapshot})
        provider = PolygonMarketDataProvider(client=client)

        quote = await provider.get_quote("MSFT")

        assert quote.price == Decimal("410.2")
        assert (quote.bid, quote.ask) == (Decimal("410.1"), Decimal("410.3"))
        assert quote.avg_volume == 20000000

        print("✅ Polygon snapshot parsed")

    @pytest.mark.asyncio
    async def test_previous_day_fallback(self):
        prev = {"status": "OK", "results": [{"c": 99.5, "o": 98.0, "h": 100.0, "l": 97.5, "v": 1000}]}
        client = FakeRestClient({
            "/v2/snapshot/locale/us/markets/stocks/tickers/XYZ": {"status": "NOT_AUTHORIZED"},
            "/v2/aggs/ticker/XYZ/prev": prev,
        })
        provider = PolygonMarketDataProvider(client=client)

        quote = await provider.get_quote("XYZ")

        assert quote.price == Decimal("99.5")
        assert client.paths[-1] == "/v2/aggs/ticker/XYZ/prev"

    @pytest.mark.asyncio
    async def test_unknown_symbol(self):
        provider = PolygonMarketDataProvider(client=FakeRestClient({}))

        with pytest.raises(SymbolNotFoundError):
            await provider.get_quote("BOGUS")

    def test_snapshot_contract(self):
        details = {
            "contract_type": "put", "strike_price": 400, "ticker": "O:MSFT240119P00400000",
            "expiration_date": "2024-01-19",
        }
        item = {"greeks": {"delta": -0.25}, "day": {"volume": 300}, "open_interest": 1500,
                "implied_volatility": 0.22}
        contract = PolygonMarketDataProvider._snapshot_to_contract(
            "MSFT", Decimal("410"), details, {"bid": 3.1, "ask": 3.3, "midpoint": 3.2}, item
        )

        assert contract.symbol == "MSFT240119P00400000"
        assert contract.bid == Decimal("3.1")
        assert contract.delta == -0.25
        assert not contract.in_the_money

    @pytest.mark.asyncio
    async def test_spy_volatility_reads_vix_index(self):
        day_ms = 86400 * 1000
        bars = [
            {"t": 1700000000000 + i * day_ms, "o": 450 + i, "h": 452 + i, "l": 449 + i,
             "c": 451 + i * (1 if i % 2 else -0.5), "v": 60000000}
            for i in range(30)
        ]
        client = RoutingRestClient({
            "/v2/aggs/ticker/SPY/range/": {"status": "OK", "results": bars},
            "/v3/snapshot/indices": {"status": "OK", "results": [{"ticker": "I:VIX", "value": 17.25}]},
        })
        provider = PolygonMarketDataProvider(client=client)

        volatility = await provider.get_volatility_data("SPY")

        assert volatility.vix_proxy == 17.25
        assert ("/v3/snapshot/indices", {"ticker.any_of": "I:VIX"}) in client.requests
        assert not any(path.endswith("/VIX") for path in client.paths)

        print("✅ Polygon VIX level read from the I:VIX index ticker")


class TestYahooProvider:

    def test_black_scholes_delta(self):
        call = black_scholes_delta(OptionType.CALL, 100, 100, 30 / 365, 0.25)
        put = black_scholes_delta(OptionType.PUT, 100, 100, 30 / 365, 0.25)

        assert 0.5 < call < 0.6
        assert put == pytest.approx(call - 1)
        assert black_scholes_delta(OptionType.CALL, 100, 100, 0, 0.25) is None

        print("✅ Black-Scholes delta computed")

    @pytest.mark.asyncio
    async def test_frame_to_contracts(self):
        frame = pd.DataFrame([
            {"contractSymbol": "XYZ240119C00110000", "strike": 110.0, "bid": 1.0, "ask": 1.1,
             "lastPrice": 1.05, "volume": float("nan"), "openInterest": 700, "impliedVolatility": 0.3,
             "inTheMoney": False},
            {"contractSymbol": "XYZ240119C00105000", "strike": 105.0, "bid": 2.2, "ask": 2.3,
             "lastPrice": 2.25, "volume": 40, "openInterest": 900, "impliedVolatility": 0.0,
             "inTheMoney": False},
        ])
        provider = YahooMarketDataProvider()

        contracts = provider._frame_to_contracts(frame, "XYZ", EXPIRY, OptionType.CALL, 100.0)

        assert [c.strike for c in contracts] == [Decimal("105.0"), Decimal("110.0")]
        assert contracts[0].delta is None
        assert 0 < contracts[1].delta < 0.5
        assert contracts[1].volume == 0
