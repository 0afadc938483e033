"""
CoinGecko mark price source
"""
from typing import Any, Optional
from loguru import logger

from shared.config.settings import PriceSettings
from shared.models.base import SourceError
from shared.utils.url_fetcher import AsyncJSONClient
from .base import IPriceSource


class CoinGeckoPriceSource(IPriceSource):
    """Batch USD prices from the CoinGecko /simple/price endpoint"""

    def __init__(self, config: PriceSettings, client: Optional[AsyncJSONClient] = None):
        self.config = config
        self.client = client or AsyncJSONClient(
            timeout=config.request_timeout,
            max_attempts=config.max_attempts,
        )

        logger.info(f"Initialized CoinGeckoPriceSource: {len(config.symbol_ids)} mapped markets")

    def asset_id(self, symbol: str) -> Optional[str]:
        """CoinGecko asset id for a market symbol"""
        return self.config.symbol_ids.get(symbol)

    async def get_prices(self, symbols: list[str]) -> dict[str, float]:
        ids_by_symbol = {s: self.asset_id(s) for s in symbols}
        unmapped = [s for s, asset in ids_by_symbol.items() if asset is None]
        if unmapped:
            logger.debug(f"No price mapping for {unmapped}")

        asset_ids = sorted({asset for asset in ids_by_symbol.values() if asset})
        if not asset_ids:
            return {}

        data = await self.client.get_json(
            f"{self.config.price_api_url}/simple/price",
            params={"ids": ",".join(asset_ids), "vs_currencies": "usd"}
        )

        try:
            prices = self._parse(data, ids_by_symbol)
        except (AttributeError, TypeError, ValueError) as e:
            raise SourceError(f"Unexpected price payload: {e}") from e

        logger.debug(f"Fetched {len(prices)}/{len(symbols)} prices")
        return prices

    @staticmethod
    def _parse(data: Any, ids_by_symbol: dict[str, Optional[str]]) -> dict[str, float]:
        prices = {}
        for symbol, asset in ids_by_symbol.items():
            usd = (data or {}).get(asset, {}).get("usd") if asset else None
            if usd is not None:
                prices[symbol] = float(usd)
        return prices

    async def close(self) -> None:
        await self.client.close()
