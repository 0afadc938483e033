"""
Solana JSON-RPC transaction source
"""
import itertools
from typing import Any, Optional
from loguru import logger

from shared.config.settings import RpcSettings
from shared.models.base import SourceError
from shared.utils.url_fetcher import AsyncJSONClient
from .base import ITransactionSource, RawTransaction, SignatureInfo


class SolanaRpcSource(ITransactionSource):
    """
    Transaction source over Solana JSON-RPC

    Uses getSignaturesForAddress for history and getTransaction for logs.
    Retries (rate limits, 5xx, network errors) are handled by AsyncJSONClient.
    """

    def __init__(self, config: RpcSettings, client: Optional[AsyncJSONClient] = None):
        """
        Initialize source

        Args:
            config: RPC configuration
            client: Optional JSON client (created from config if omitted)
        """
        self.config = config
        self.client = client or AsyncJSONClient(
            timeout=config.request_timeout,
            max_attempts=config.max_attempts,
            backoff_min=config.backoff_min,
            backoff_max=config.backoff_max,
        )
        self._ids = itertools.count(1)

        logger.info(f"Initialized SolanaRpcSource: {config.rpc_url}")

    async def _call(self, method: str, params: list[Any]) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params,
        }
        response = await self.client.post_json(self.config.rpc_url, payload)

        if not isinstance(response, dict):
            raise SourceError(f"{method}: malformed response")
        if response.get("error"):
            error = response["error"]
            raise SourceError(f"{method}: {error.get('message', error) if isinstance(error, dict) else error}")

        return response.get("result")

    async def list_signatures(
        self,
        wallet_address: str,
        limit: int,
        before: Optional[str] = None
    ) -> list[SignatureInfo]:
        options: dict[str, Any] = {"limit": limit}
        if before:
            options["before"] = before

        result = await self._call("getSignaturesForAddress", [wallet_address, options]) or []

        signatures = [
            SignatureInfo(
                signature=item["signature"],
                block_time=item.get("blockTime"),
                slot=item.get("slot"),
                err=item.get("err"),
            )
            for item in result
        ]

        logger.debug(f"Listed {len(signatures)} signatures for {wallet_address[:8]}... (before={before})")
        return signatures

    async def get_transaction(self, signature: str) -> Optional[RawTransaction]:
        result = await self._call(
            "getTransaction",
            [signature, {"encoding": "json", "maxSupportedTransactionVersion": 0}]
        )
        if not result:
            return None

        meta = result.get("meta") or {}
        return RawTransaction(
            signature=signature,
            block_time=result.get("blockTime"),
            log_lines=meta.get("logMessages") or [],
            fee=meta.get("fee") or 0,
            err=meta.get("err"),
        )

    async def close(self) -> None:
        await self.client.close()
