"""
Crypto price oracle
CoinGecko EUR prices with short-lived caching; returns None instead of raising
"""

import logging
from typing import Optional

import httpx

from crypto_config import crypto_config
from performance_cache import cache_get, cache_set
from performance_monitor import OperationTimer
from utils.environment import get_coingecko_api_url, get_price_cache_ttl

logger = logging.getLogger(__name__)

class PriceOracle:
    """
    EUR price lookups for the registrar top-up rail

    A failed lookup is reported as None; callers decide what a missing
    price means for them.
    """

    def __init__(self, base_url: Optional[str] = None, cache_ttl: Optional[int] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url or get_coingecko_api_url()
        self.cache_ttl = cache_ttl if cache_ttl is not None else get_price_cache_ttl()
        self._transport = transport

    async def get_price_in_eur(self, ticker: str) -> Optional[float]:
        """
        Get the price of one coin in EUR

        Args:
            ticker: Coin ticker, e.g. 'eth'

        Returns:
            Price as float, or None for unknown tickers and failed lookups
        """
        coin_id = crypto_config.get_coingecko_id(ticker)
        if not coin_id:
            logger.warning(f"⚠️ Price oracle: Unknown ticker '{ticker}'")
            return None

        cache_key = f"price_{coin_id}_eur"
        cached_price = cache_get(cache_key)
        if cached_price is not None:
            logger.debug(f"💾 Cache HIT: {ticker.upper()}/EUR = {cached_price}")
            return cached_price

        try:
            with OperationTimer(f"price_oracle_{coin_id}_eur"):
                async with httpx.AsyncClient(timeout=httpx.Timeout(10.0), transport=self._transport) as client:
                    response = await client.get(
                        f"{self.base_url}/simple/price",
                        params={'ids': coin_id, 'vs_currencies': 'eur'}
                    )
                    response.raise_for_status()
                    data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"❌ Price oracle: Failed to fetch EUR price for {ticker}: {e}")
            return None

        price = (data.get(coin_id) or {}).get('eur') if isinstance(data, dict) else None
        if isinstance(price, bool) or not isinstance(price, (int, float)):
            logger.error(f"❌ Price oracle: Invalid EUR price data for {ticker}: {data!r}")
            return None

        price = float(price)
        cache_set(cache_key, price, self.cache_ttl)
        logger.info(f"✅ Fetched price: {ticker.upper()} = €{price:.2f}")
        return price

# Global instance
price_oracle = PriceOracle()
