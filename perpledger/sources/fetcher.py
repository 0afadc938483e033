"""
Trade Fetcher

Walks a wallet's transaction history back to a watermark, fetches each
transaction's logs and decodes them into chronologically ordered
TradeEvents. A transaction that keeps failing, or fails unexpectedly, is
skipped; it never fails the whole fetch.
"""
import asyncio
from datetime import datetime
from typing import Optional
from loguru import logger
from tenacity import (
    AsyncRetrying,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
)

from shared.models.base import SourceError
from shared.utils.url_fetcher import log_retry
from ..decoder import EventDecoder
from ..events.trade import TradeEvent
from .base import ITransactionSource, RawTransaction, SignatureInfo


class TradeFetcher:
    """Fetch and decode a wallet's recent trades"""

    def __init__(
        self,
        source: ITransactionSource,
        decoder: EventDecoder,
        page_size: int = 100,
        max_attempts: int = 3,
        backoff_min: float = 0.5,
        backoff_max: float = 8.0,
        max_concurrency: int = 4
    ):
        """
        Initialize fetcher

        Args:
            source: Transaction source
            decoder: Log decoder
            page_size: Signatures requested per page
            max_attempts: Attempts per transaction before it is skipped
            backoff_min: Lower bound for exponential backoff
            backoff_max: Upper bound for exponential backoff
            max_concurrency: Transactions fetched in parallel
        """
        self.source = source
        self.decoder = decoder
        self.page_size = page_size
        self.max_attempts = max_attempts
        self.backoff_min = backoff_min
        self.backoff_max = backoff_max
        self._semaphore = asyncio.Semaphore(max_concurrency)

        logger.info(
            f"Initialized TradeFetcher: page_size={page_size}, "
            f"max_attempts={max_attempts}, concurrency={max_concurrency}"
        )

    async def list_signatures(
        self,
        wallet_address: str,
        limit: int,
        since: Optional[datetime] = None
    ) -> list[SignatureInfo]:
        """
        Page through history until limit is reached or the watermark passed

        Args:
            wallet_address: Wallet to list
            limit: Maximum signatures to collect
            since: Watermark; signatures older than this are dropped

        Returns:
            Successful signatures at or after the watermark, newest first
        """
        since_ts = int(since.timestamp()) if since else None
        collected: list[SignatureInfo] = []
        before: Optional[str] = None

        while len(collected) < limit:
            page_limit = min(self.page_size, limit - len(collected))
            page = await self.source.list_signatures(wallet_address, page_limit, before=before)
            if not page:
                break

            reached_watermark = False
            for info in page:
                if since_ts is not None and info.block_time is not None and info.block_time < since_ts:
                    reached_watermark = True
                    continue
                if not info.succeeded:
                    continue
                collected.append(info)

            if reached_watermark or len(page) < page_limit:
                break
            before = page[-1].signature

        logger.debug(f"Collected {len(collected)} signatures for {wallet_address[:8]}... since {since}")
        return collected[:limit]

    async def _get_transaction(self, signature: str) -> Optional[RawTransaction]:
        """Fetch one transaction, retrying transient source errors"""
        async with self._semaphore:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.max_attempts),
                wait=wait_exponential(multiplier=self.backoff_min, min=self.backoff_min, max=self.backoff_max),
                retry=retry_if_exception_type(SourceError),
                before_sleep=log_retry,
                reraise=True
            ):
                with attempt:
                    return await self.source.get_transaction(signature)
        return None

    async def _fetch_one(self, info: SignatureInfo) -> Optional[RawTransaction]:
        try:
            tx = await self._get_transaction(info.signature)
        except SourceError as e:
            logger.error(f"Skipping transaction {info.signature[:8]}... after {self.max_attempts} attempts: {e}")
            return None
        except Exception as e:
            logger.opt(exception=e).error(f"Skipping transaction {info.signature[:8]}...: {e}")
            return None

        if tx is None:
            logger.warning(f"Transaction {info.signature[:8]}... not found")
            return None
        if tx.err is not None:
            return None
        return tx

    async def fetch_transactions(
        self,
        wallet_address: str,
        limit: int,
        since: Optional[datetime] = None
    ) -> list[tuple[SignatureInfo, RawTransaction]]:
        """
        Fetch a wallet's successful transactions since the watermark, oldest first

        Transactions that still fail after retries, are unknown to the node
        or failed on-chain are left out.
        """
        signatures = await self.list_signatures(wallet_address, limit, since)
        if not signatures:
            return []

        # Oldest first
        ordered = list(reversed(signatures))
        results = await asyncio.gather(*(self._fetch_one(info) for info in ordered))

        transactions = [(info, tx) for info, tx in zip(ordered, results) if tx is not None]
        logger.debug(f"Fetched {len(transactions)}/{len(ordered)} transactions for {wallet_address[:8]}...")
        return transactions

    def decode(self, transactions: list[tuple[SignatureInfo, RawTransaction]]) -> list[TradeEvent]:
        """Decode fetched transactions into chronologically ordered events"""
        events = []
        for info, tx in transactions:
            block_time = tx.block_time if tx.block_time is not None else info.block_time
            events.extend(self.decoder.decode_transaction(info.signature, tx.log_lines, block_time))

        # Stable: same-second fills keep transaction order
        events.sort(key=lambda e: e.timestamp)
        return events

    async def fetch_decoded_trades(
        self,
        wallet_address: str,
        limit: int,
        since: Optional[datetime] = None
    ) -> list[TradeEvent]:
        """
        Fetch and decode a wallet's trades

        Args:
            wallet_address: Wallet to fetch
            limit: Maximum number of transactions to inspect
            since: Inclusive watermark (block time of the latest stored fill)

        Returns:
            Trade events in chronological order
        """
        transactions = await self.fetch_transactions(wallet_address, limit, since)
        events = self.decode(transactions)

        logger.info(
            f"Decoded {len(events)} trade events from {len(transactions)} transactions "
            f"for {wallet_address[:8]}..."
        )
        return events
