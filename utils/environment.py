"""Environment configuration for the domain fulfillment service"""

import os
import logging
from decimal import Decimal

logger = logging.getLogger(__name__)

NJALLA_DEFAULT_API_URL = 'https://njal.la/api/1/'
ETH_DEFAULT_RPC_URL = 'https://eth.llamarpc.com'
COINGECKO_DEFAULT_API_URL = 'https://api.coingecko.com/api/v3'


def get_njalla_api_token() -> str:
    """
    Get the Njalla API token used for both payments and registrations

    Returns:
        str: The token, or an empty string when not configured
    """
    token = os.getenv('NJALLA_API_TOKEN', '')
    if not token:
        logger.warning("⚠️ NJALLA_API_TOKEN not configured")
    return token


def get_njalla_api_url() -> str:
    return os.getenv('NJALLA_API_URL', NJALLA_DEFAULT_API_URL)


def get_eth_rpc_url() -> str:
    return os.getenv('ETH_RPC_URL', ETH_DEFAULT_RPC_URL)


def get_coingecko_api_url() -> str:
    return os.getenv('COINGECKO_API_URL', COINGECKO_DEFAULT_API_URL)


def get_processor_interval() -> int:
    """
    Seconds between two fulfillment ticks

    Returns:
        int: Interval in seconds (default 30)
    """
    try:
        interval = int(os.getenv('DOMAIN_PROCESSOR_INTERVAL', '30'))
    except ValueError:
        logger.warning("⚠️ Invalid DOMAIN_PROCESSOR_INTERVAL, using 30s")
        return 30
    return max(interval, 1)


def get_price_cache_ttl() -> int:
    try:
        return int(os.getenv('PRICE_CACHE_TTL', '30'))
    except ValueError:
        return 30


def get_payment_margin_multiplier() -> Decimal:
    """
    Safety margin applied on top of the converted crypto amount

    Returns:
        Decimal: Multiplier, 1.01 unless overridden
    """
    raw = os.getenv('PAYMENT_MARGIN_MULTIPLIER', '1.01')
    try:
        multiplier = Decimal(raw)
    except ArithmeticError:
        logger.warning(f"⚠️ Invalid PAYMENT_MARGIN_MULTIPLIER '{raw}', using 1.01")
        return Decimal('1.01')
    if multiplier < 1:
        logger.warning(f"⚠️ PAYMENT_MARGIN_MULTIPLIER {multiplier} would underpay, using 1.01")
        return Decimal('1.01')
    return multiplier


def is_test_mode() -> bool:
    """
    Check if we're running under the test suite

    Returns:
        bool: True when TEST_MODE is set
    """
    return os.getenv('TEST_MODE', '').lower() in ('1', 'true', 'yes')
