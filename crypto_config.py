"""
Cryptocurrency configuration for registrar top-ups
Njalla is funded through a single crypto rail; everything else is oracle lookup data
"""

import logging
from typing import Dict, Optional

logger = logging.getLogger(__name__)

class CryptoConfig:
    """Cryptocurrency configuration manager"""

    # Rail used to fund the registrar balance
    REGISTRAR_RAIL = {
        'code': 'eth',
        'name': 'Ethereum',
        'symbol': 'ETH',
        'njalla_via': 'ethereum',
        'decimals': 18,
    }

    # CoinGecko ids for the price oracle
    COINGECKO_IDS = {
        'btc': 'bitcoin',
        'eth': 'ethereum',
        'sol': 'solana',
        'usdt': 'tether',
        'usdc': 'usd-coin',
        'bnb': 'binancecoin',
        'xrp': 'ripple',
        'ada': 'cardano',
        'doge': 'dogecoin',
        'matic': 'matic-network',
        'dot': 'polkadot',
        'dai': 'dai',
        'trx': 'tron',
        'avax': 'avalanche-2',
        'link': 'chainlink',
        'atom': 'cosmos',
        'uni': 'uniswap',
        'ltc': 'litecoin',
        'etc': 'ethereum-classic',
        'xlm': 'stellar',
        'bch': 'bitcoin-cash',
        'wbtc': 'wrapped-bitcoin',
        'arb': 'arbitrum',
        'op': 'optimism',
        'zec': 'zcash',
        'xmr': 'monero',
    }

    @classmethod
    def get_registrar_rail(cls) -> Dict:
        """Get the rail used for registrar top-ups"""
        return cls.REGISTRAR_RAIL.copy()

    @classmethod
    def get_coingecko_id(cls, ticker: str) -> Optional[str]:
        """Map a ticker to its CoinGecko id"""
        if not ticker:
            return None
        return cls.COINGECKO_IDS.get(ticker.lower().strip())

# Create global instance
crypto_config = CryptoConfig()
