"""
Tests for the PnL engine
Tests mark price fallbacks and unrealized PnL
"""
import pytest

from perpledger.portfolio import PositionSide
from perpledger.portfolio.pnl import PnlEngine, PriceSource
from shared.utils.cache import TTLCache

from helpers import FakeClock, FakePriceSource, T0, WALLET, make_fill, make_position, store_position


LONG_ID = f"0-BUY-20458-{WALLET}"
SHORT_ID = f"0-SELL-20458-{WALLET}"


async def open_long(store):
    """SOL-USDC long of 20 at 100"""
    await store_position(store, make_position(LONG_ID), [
        make_fill("e1", LONG_ID, 100.0, 10.0, True, T0),
        make_fill("e2", LONG_ID, 110.0, 5.0, True, T0 + 60),
        make_fill("e3", LONG_ID, 90.0, 5.0, True, T0 + 120),
    ])


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def prices():
    return FakePriceSource({"SOL-USDC": 130.0})


@pytest.fixture
def engine(store, prices, clock):
    return PnlEngine(store, prices, cache=TTLCache(ttl=60, max_stale=600, clock=clock))


class TestMarks:
    """Test mark price resolution"""

    @pytest.mark.asyncio
    async def test_live_price(self, engine, store):
        """Open long marked at the live price"""
        await open_long(store)

        rows = await engine.get_wallet_performance(WALLET)

        assert len(rows) == 1
        row = rows[0]
        assert row.price_source == PriceSource.LIVE
        assert row.entry_price == pytest.approx(100.0)
        assert row.current_price == pytest.approx(130.0)
        assert row.size == pytest.approx(20.0)
        assert row.unrealized_pnl == pytest.approx(600.0)
        assert row.side == "LONG"

    @pytest.mark.asyncio
    async def test_fresh_cache_skips_source(self, engine, store, prices, clock):
        """A fresh cached price avoids a source call"""
        await open_long(store)
        await engine.get_wallet_performance(WALLET)
        clock.advance(30)

        rows = await engine.get_wallet_performance(WALLET)

        assert rows[0].price_source == PriceSource.CACHE
        assert len(prices.calls) == 1

    @pytest.mark.asyncio
    async def test_stale_cache_on_failure(self, engine, store, prices, clock):
        """An expired price is used when the source fails"""
        await open_long(store)
        await engine.get_wallet_performance(WALLET)
        clock.advance(300)
        prices.failing = True

        rows = await engine.get_wallet_performance(WALLET)

        assert rows[0].price_source == PriceSource.CACHE
        assert rows[0].current_price == pytest.approx(130.0)
        assert len(prices.calls) == 2

    def test_injected_empty_cache_is_kept(self, store, prices, clock):
        """An empty cache passed in is used, not replaced by a default"""
        cache = TTLCache(ttl=5, max_stale=50, clock=clock)
        engine = PnlEngine(store, prices, cache=cache)

        assert engine.cache is cache
        assert (engine.cache.ttl, engine.cache.max_stale) == (5, 50)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [
        ValueError("Expecting value: line 1 column 1 (char 0)"),
        TypeError("unsupported payload"),
    ])
    async def test_unexpected_source_error_falls_back(self, engine, store, prices, clock, error):
        """Any price source failure degrades to stale cache, then cost basis"""
        await open_long(store)
        prices.failing = True
        prices.error = error

        rows = await engine.get_wallet_performance(WALLET)

        assert rows[0].price_source == PriceSource.COST_BASIS
        assert rows[0].unrealized_pnl == 0.0

        prices.failing = False
        await engine.get_wallet_performance(WALLET)
        clock.advance(120)
        prices.failing = True

        rows = await engine.get_wallet_performance(WALLET)

        assert rows[0].price_source == PriceSource.CACHE
        assert rows[0].current_price == pytest.approx(130.0)

    @pytest.mark.asyncio
    async def test_cost_basis_fallback(self, engine, store, prices, clock):
        """Without any price the mark is the cost basis"""
        await open_long(store)
        prices.failing = True

        rows = await engine.get_wallet_performance(WALLET)

        assert rows[0].price_source == PriceSource.COST_BASIS
        assert rows[0].current_price == pytest.approx(100.0)
        assert rows[0].unrealized_pnl == 0.0

    @pytest.mark.asyncio
    async def test_too_stale_cache_ignored(self, engine, store, prices, clock):
        """Prices older than max_stale are not used"""
        await open_long(store)
        await engine.get_wallet_performance(WALLET)
        clock.advance(601)
        prices.failing = True

        rows = await engine.get_wallet_performance(WALLET)

        assert rows[0].price_source == PriceSource.COST_BASIS

    @pytest.mark.asyncio
    async def test_unpriced_symbol(self, engine, store, prices):
        """Symbols the source does not know fall back to cost basis"""
        await open_long(store)
        prices.prices.clear()

        rows = await engine.get_wallet_performance(WALLET)

        assert rows[0].price_source == PriceSource.COST_BASIS

    @pytest.mark.asyncio
    async def test_one_batch_request(self, engine, store, prices):
        """All markets are priced in a single call"""
        await open_long(store)
        btc_id = f"2-BUY-20458-{WALLET}"
        await store_position(store, make_position(btc_id, market="BTC-USDC"), [
            make_fill("b1", btc_id, 50_000.0, 0.1, True, T0),
        ])
        prices.prices["BTC-USDC"] = 51_000.0

        rows = await engine.get_wallet_performance(WALLET)

        assert prices.calls == [["BTC-USDC", "SOL-USDC"]]
        assert {r.market: r.unrealized_pnl for r in rows} == pytest.approx({"SOL-USDC": 600.0, "BTC-USDC": 100.0})


class TestUnrealized:
    """Test PnL math"""

    @pytest.mark.asyncio
    async def test_short_sign(self, engine, store, prices):
        """Short loses when the mark rises"""
        await store_position(store, make_position(SHORT_ID, side=PositionSide.SHORT), [
            make_fill("s1", SHORT_ID, 100.0, 2.0, True, T0),
        ])

        rows = await engine.get_wallet_performance(WALLET)

        assert rows[0].side == "SHORT"
        assert rows[0].unrealized_pnl == pytest.approx(-60.0)

    @pytest.mark.asyncio
    async def test_partial_exit_realized(self, engine, store):
        """Open remainder carries realized PnL of earlier exits"""
        await store_position(store, make_position(LONG_ID), [
            make_fill("e1", LONG_ID, 100.0, 10.0, True, T0),
            make_fill("x1", LONG_ID, 120.0, 4.0, False, T0 + 60),
        ])

        rows = await engine.get_wallet_performance(WALLET)

        assert rows[0].size == pytest.approx(6.0)
        assert rows[0].realized_pnl == pytest.approx(80.0)
        assert rows[0].unrealized_pnl == pytest.approx(180.0)

    @pytest.mark.asyncio
    async def test_closed_positions_excluded(self, engine, store):
        """Closed positions are not marked"""
        await store_position(store, make_position(LONG_ID), [
            make_fill("e1", LONG_ID, 100.0, 10.0, True, T0),
            make_fill("x1", LONG_ID, 120.0, 10.0, False, T0 + 60),
        ])
        assert await engine.get_wallet_performance(WALLET) == []

    @pytest.mark.asyncio
    async def test_total_unrealized(self, engine, store):
        """Total sums the rows"""
        await open_long(store)
        assert await engine.get_total_unrealized(WALLET) == pytest.approx(600.0)

    @pytest.mark.asyncio
    async def test_no_positions(self, engine, prices):
        """Wallets without positions skip the price source"""
        assert await engine.get_wallet_performance(WALLET) == []
        assert prices.calls == []

    @pytest.mark.asyncio
    async def test_row_serializes(self, engine, store):
        """Rows serialize with plain values"""
        await open_long(store)
        data = (await engine.get_wallet_performance(WALLET))[0].to_dict()
        assert data["price_source"] == "live"
        assert data["position_id"] == LONG_ID
