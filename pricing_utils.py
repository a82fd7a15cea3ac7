"""
Pricing utilities for registrar top-ups
EUR to crypto conversion with safety margin, and decimal formatting
"""

import logging
from typing import Union, Optional
from decimal import Decimal, ROUND_HALF_UP, ROUND_UP

from utils.environment import get_payment_margin_multiplier

logger = logging.getLogger(__name__)

# Wei precision
CRYPTO_DECIMAL_PLACES = 18
_CRYPTO_QUANTUM = Decimal(1).scaleb(-CRYPTO_DECIMAL_PLACES)

Number = Union[float, int, str, Decimal]

def to_decimal(value: Number) -> Decimal:
    """Convert a float/int/str to Decimal without binary float artifacts"""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))

def format_money(amount: Number, currency: str = "EUR", show_currency: bool = True) -> str:
    """
    Format monetary amount for display

    Args:
        amount: Amount to format
        currency: Currency code (default: EUR)
        show_currency: Whether to show currency symbol

    Returns:
        str: Formatted money string
    """
    rounded_amount = to_decimal(amount).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)
    formatted = f"{rounded_amount:.2f}"

    if not show_currency:
        return formatted

    currency_symbols = {
        'USD': '$',
        'EUR': '€',
        'GBP': '£',
    }
    symbol = currency_symbols.get(currency.upper())
    if symbol:
        return f"{symbol}{formatted}"
    return f"{formatted} {currency.upper()}"

def calculate_crypto_amount(
    price_eur: Number,
    rate_eur: Optional[Number],
    margin_multiplier: Optional[Decimal] = None
) -> Optional[Decimal]:
    """
    Convert a EUR price into the crypto amount to send, margin included

    amount = (price_eur / rate_eur) * margin, rounded up to wei precision
    so the registrar is never underpaid.

    Args:
        price_eur: Quoted EUR price of the order
        rate_eur: Live price of one coin in EUR
        margin_multiplier: Defaults to PAYMENT_MARGIN_MULTIPLIER (1.01)

    Returns:
        Decimal amount, or None when the rate is missing or not positive
    """
    if rate_eur is None:
        return None

    rate = to_decimal(rate_eur)
    if rate <= 0:
        return None

    price = to_decimal(price_eur)
    if price <= 0:
        raise ValueError(f"Order price must be positive, got {price}")

    if margin_multiplier is None:
        margin_multiplier = get_payment_margin_multiplier()

    amount = (price / rate) * margin_multiplier
    return amount.quantize(_CRYPTO_QUANTUM, rounding=ROUND_UP).normalize()

def format_crypto_amount(amount: Number) -> str:
    """
    Render a crypto amount as a plain decimal string (no exponent)

    Examples:
        Decimal('0.0101') -> '0.0101'
        Decimal('1E+1') -> '10'
    """
    value = to_decimal(amount).quantize(_CRYPTO_QUANTUM, rounding=ROUND_UP).normalize()
    return format(value, 'f')
