"""
Tests for the trade fetcher
"""
import pytest

from perpledger.events import TradeSide

from helpers import T0, WALLET, fill_message, logs, utc


def add_trades(source, count, start=T0, step=60):
    """Add count single-fill transactions, one per step seconds"""
    for i in range(count):
        source.add(f"sig{i}", start + i * step, logs(fill_message(TradeSide.BUY, 100.0 + i, 1.0)))


class TestSignaturePaging:
    """Test history paging"""

    @pytest.mark.asyncio
    async def test_pages_with_cursor(self, fetcher, source):
        """History is walked page by page using the before cursor"""
        add_trades(source, 5)

        signatures = await fetcher.list_signatures(WALLET, limit=10)

        assert [s.signature for s in signatures] == ["sig4", "sig3", "sig2", "sig1", "sig0"]
        assert source.signature_calls == [(2, None), (2, "sig3"), (2, "sig1")]

    @pytest.mark.asyncio
    async def test_limit_respected(self, fetcher, source):
        """No more than limit signatures are collected"""
        add_trades(source, 5)

        signatures = await fetcher.list_signatures(WALLET, limit=3)

        assert [s.signature for s in signatures] == ["sig4", "sig3", "sig2"]
        assert source.signature_calls == [(2, None), (1, "sig3")]

    @pytest.mark.asyncio
    async def test_stops_at_watermark(self, fetcher, source):
        """Signatures older than the watermark are dropped; the watermark itself is kept"""
        add_trades(source, 5)

        signatures = await fetcher.list_signatures(WALLET, limit=10, since=utc(T0 + 120))

        assert [s.signature for s in signatures] == ["sig4", "sig3", "sig2"]
        assert len(source.signature_calls) == 2

    @pytest.mark.asyncio
    async def test_failed_signatures_skipped(self, fetcher, source):
        """Failed transactions are never fetched"""
        add_trades(source, 2)
        source.add("bad", T0 + 500, logs(fill_message(TradeSide.BUY, 100.0, 1.0)), err={"InstructionError": [0, "Custom"]})

        signatures = await fetcher.list_signatures(WALLET, limit=10)

        assert "bad" not in [s.signature for s in signatures]
        assert len(signatures) == 2


class TestTransactionFetch:
    """Test per-transaction retry and skip"""

    @pytest.mark.asyncio
    async def test_oldest_first(self, fetcher, source):
        """Fetched transactions are returned oldest first"""
        add_trades(source, 3)

        transactions = await fetcher.fetch_transactions(WALLET, limit=10)

        assert [info.signature for info, _ in transactions] == ["sig0", "sig1", "sig2"]

    @pytest.mark.asyncio
    async def test_retry_then_success(self, fetcher, source):
        """Transient errors are retried"""
        add_trades(source, 1)
        source.fail("sig0", times=2)

        transactions = await fetcher.fetch_transactions(WALLET, limit=10)

        assert len(transactions) == 1
        assert source.transaction_calls["sig0"] == 3

    @pytest.mark.asyncio
    async def test_retry_exhausted_skips(self, fetcher, source):
        """A transaction that keeps failing is skipped, others survive"""
        add_trades(source, 2)
        source.fail("sig0", times=5)

        transactions = await fetcher.fetch_transactions(WALLET, limit=10)

        assert [info.signature for info, _ in transactions] == ["sig1"]
        assert source.transaction_calls["sig0"] == 3

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [
        ValueError("Expecting value: line 1 column 1 (char 0)"),
        KeyError("meta"),
        TypeError("'NoneType' object is not subscriptable"),
    ])
    async def test_unexpected_error_skips_transaction(self, fetcher, source, error):
        """A malformed response skips that transaction without retries"""
        add_trades(source, 2)
        source.break_with("sig0", error)

        transactions = await fetcher.fetch_transactions(WALLET, limit=10)

        assert [info.signature for info, _ in transactions] == ["sig1"]
        assert source.transaction_calls["sig0"] == 1

    @pytest.mark.asyncio
    async def test_unknown_transaction_skipped(self, fetcher, source):
        """Signatures the node cannot return are skipped"""
        add_trades(source, 2)
        del source.transactions["sig1"]

        transactions = await fetcher.fetch_transactions(WALLET, limit=10)

        assert [info.signature for info, _ in transactions] == ["sig0"]

    @pytest.mark.asyncio
    async def test_empty_history(self, fetcher):
        """No history yields no transactions"""
        assert await fetcher.fetch_transactions(WALLET, limit=10) == []


class TestDecodedTrades:
    """Test the fetch and decode pipeline"""

    @pytest.mark.asyncio
    async def test_events_chronological(self, fetcher, source):
        """Events come back oldest first with their block times"""
        add_trades(source, 3)

        events = await fetcher.fetch_decoded_trades(WALLET, limit=10)

        assert [e.signature for e in events] == ["sig0", "sig1", "sig2"]
        assert events[0].timestamp == utc(T0)
        assert events[2].price == pytest.approx(102.0)

    @pytest.mark.asyncio
    async def test_non_trade_transactions_ignored(self, fetcher, source):
        """Transactions without fills decode to nothing"""
        add_trades(source, 1)
        source.add("deposit", T0 + 600, ["Program log: Instruction: Deposit"])

        events = await fetcher.fetch_decoded_trades(WALLET, limit=10)

        assert [e.signature for e in events] == ["sig0"]
