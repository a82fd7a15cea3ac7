"""
Payment validation utilities for outbound registrar top-ups
Sanity checks run immediately before funds are broadcast
"""

import logging
import re
from decimal import Decimal
from typing import Any

logger = logging.getLogger(__name__)

_EVM_ADDRESS_RE = re.compile(r'^0x[0-9a-fA-F]{40}$')

# Refuse to send more than this in one top-up; a domain costs tens of EUR
MAX_TOPUP_AMOUNT_ETH = Decimal('1')

def validate_payment_address(address: Any) -> str:
    """
    Validate the registrar-provided destination address

    Raises:
        ValueError: If the address is not a 0x-prefixed 20-byte hex string
    """
    if not isinstance(address, str) or not _EVM_ADDRESS_RE.match(address.strip()):
        raise ValueError(f"Invalid payment address: {address!r}")
    return address.strip()

def validate_payment_amount(amount: Any, maximum: Decimal = MAX_TOPUP_AMOUNT_ETH) -> Decimal:
    """
    Validate the amount about to be sent

    Args:
        amount: Amount in coin units
        maximum: Upper bound for a single transfer

    Raises:
        ValueError: If the amount is missing, not positive or above the maximum
    """
    if amount is None:
        raise ValueError("Payment amount missing")
    try:
        value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    except ArithmeticError as e:
        raise ValueError(f"Invalid payment amount: {amount!r}") from e

    if not value.is_finite() or value <= 0:
        raise ValueError(f"Payment amount must be positive, got {value}")
    if value > maximum:
        raise ValueError(f"Payment amount {value} exceeds single top-up limit {maximum}")
    return value
