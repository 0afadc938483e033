"""
Tests for the RPC and price source adapters
HTTP is replaced by a scripted JSON client
"""
import pytest

from shared.config.settings import PriceSettings, RpcSettings
from shared.models.base import SourceError
from shared.utils.cache import TTLCache
from perpledger.sources import CoinGeckoPriceSource, SolanaRpcSource

from helpers import FakeClock, WALLET


class ScriptedClient:
    """Returns queued responses and records requests"""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []
        self.closed = False

    async def post_json(self, url, payload, **kwargs):
        self.requests.append(("POST", url, payload))
        return self.responses.pop(0)

    async def get_json(self, url, **kwargs):
        self.requests.append(("GET", url, kwargs.get("params")))
        return self.responses.pop(0)

    async def close(self):
        self.closed = True


class TestSolanaRpcSource:
    """Test JSON-RPC mapping"""

    @pytest.mark.asyncio
    async def test_list_signatures(self):
        """Signatures map with block time and error"""
        client = ScriptedClient({"jsonrpc": "2.0", "id": 1, "result": [
            {"signature": "s2", "blockTime": 200, "slot": 2, "err": None},
            {"signature": "s1", "blockTime": 100, "slot": 1, "err": {"InstructionError": [0, "Custom"]}},
        ]})
        source = SolanaRpcSource(RpcSettings(rpc_url="http://rpc"), client=client)

        signatures = await source.list_signatures(WALLET, 10, before="s3")

        assert [s.signature for s in signatures] == ["s2", "s1"]
        assert signatures[0].succeeded
        assert not signatures[1].succeeded
        method, url, payload = client.requests[0]
        assert url == "http://rpc"
        assert payload["method"] == "getSignaturesForAddress"
        assert payload["params"] == [WALLET, {"limit": 10, "before": "s3"}]

    @pytest.mark.asyncio
    async def test_get_transaction(self):
        """Logs, fee and block time are extracted"""
        client = ScriptedClient({"result": {
            "blockTime": 1000,
            "meta": {"logMessages": ["Program data: AA=="], "fee": 5000, "err": None},
        }})
        source = SolanaRpcSource(RpcSettings(), client=client)

        tx = await source.get_transaction("sig")

        assert tx.block_time == 1000
        assert tx.log_lines == ["Program data: AA=="]
        assert tx.fee == 5000
        assert client.requests[0][2]["params"][1]["maxSupportedTransactionVersion"] == 0

    @pytest.mark.asyncio
    async def test_unknown_transaction(self):
        """A null result means the node does not know the transaction"""
        source = SolanaRpcSource(RpcSettings(), client=ScriptedClient({"result": None}))
        assert await source.get_transaction("sig") is None

    @pytest.mark.asyncio
    async def test_rpc_error(self):
        """JSON-RPC errors become SourceError"""
        client = ScriptedClient({"error": {"code": -32005, "message": "Node is behind"}})
        source = SolanaRpcSource(RpcSettings(), client=client)

        with pytest.raises(SourceError, match="Node is behind"):
            await source.list_signatures(WALLET, 10)

    @pytest.mark.asyncio
    async def test_close(self):
        client = ScriptedClient()
        await SolanaRpcSource(RpcSettings(), client=client).close()
        assert client.closed


class TestCoinGeckoPriceSource:
    """Test price batching"""

    @pytest.mark.asyncio
    async def test_batch_prices(self):
        """Markets sharing an asset are priced from one request"""
        client = ScriptedClient({"solana": {"usd": 150.5}, "bitcoin": {"usd": 90_000}})
        source = CoinGeckoPriceSource(PriceSettings(price_api_url="http://prices"), client=client)

        prices = await source.get_prices(["SOL-USDC", "SOL-USDC-V2", "BTC-USDC", "DOGE-USDC"])

        assert prices == {"SOL-USDC": 150.5, "SOL-USDC-V2": 150.5, "BTC-USDC": 90_000.0}
        assert client.requests == [
            ("GET", "http://prices/simple/price", {"ids": "bitcoin,solana", "vs_currencies": "usd"})
        ]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [
        {"solana": {"usd": "n/a"}},
        {"solana": [150.0]},
        ["solana"],
    ])
    async def test_malformed_payload(self, payload):
        """Unexpected payload shapes surface as SourceError"""
        source = CoinGeckoPriceSource(PriceSettings(), client=ScriptedClient(payload))

        with pytest.raises(SourceError, match="Unexpected price payload"):
            await source.get_prices(["SOL-USDC"])

    @pytest.mark.asyncio
    async def test_unmapped_only(self):
        """Nothing to price means no request"""
        client = ScriptedClient()
        source = CoinGeckoPriceSource(PriceSettings(), client=client)

        assert await source.get_prices(["UNKNOWN--1"]) == {}
        assert client.requests == []


class TestTTLCache:
    """Test fresh and stale reads"""

    def test_fresh_and_stale(self):
        clock = FakeClock()
        cache = TTLCache(ttl=60, max_stale=600, clock=clock)
        cache.set("SOL-USDC", 150.0)

        assert cache.get("SOL-USDC") == 150.0
        clock.advance(61)
        assert cache.get("SOL-USDC") is None
        assert cache.get_stale("SOL-USDC") == 150.0
        clock.advance(600)
        assert cache.get_stale("SOL-USDC") is None

    def test_set_many_and_clear(self):
        cache = TTLCache(ttl=60, clock=FakeClock())
        cache.set_many({"a": 1.0, "b": 2.0})

        assert len(cache) == 2
        assert cache.max_stale == 60
        cache.delete("a")
        assert cache.get("a") is None
        cache.clear()
        assert len(cache) == 0


class TestRpcSettings:
    """Tests for the RPC retry budget"""

    def test_transaction_retry_budget(self):
        """Transaction retries multiply HTTP retries, so the default budget stays small"""
        rpc = RpcSettings()

        assert rpc.transaction_attempts == 2
        assert rpc.max_attempts * rpc.transaction_attempts == 10

    def test_transaction_attempts_at_least_one(self):
        with pytest.raises(ValueError):
            RpcSettings(transaction_attempts=0)
