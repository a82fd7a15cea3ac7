"""
Njalla payment (balance top-up) API integration
Creates top-ups, reads their status and normalises Njalla's free-text statuses
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Optional

from pricing_utils import format_money
from services.njalla import NjallaAPIError, NjallaClient

logger = logging.getLogger(__name__)

class PaymentStatus(Enum):
    """Normalised registrar payment status"""
    CONFIRMED = "confirmed"
    PENDING = "pending"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    UNKNOWN = "unknown"

# Njalla reports credited top-ups as free text, e.g. "Added 15 € via Ethereum"
CONFIRMED_EXACT = frozenset({'confirmed'})
CONFIRMED_KEYWORDS = ('added',)
CONFIRMED_SYMBOLS = ('€',)
CANCELLED_STATUSES = frozenset({'cancelled', 'canceled'})
EXPIRED_STATUSES = frozenset({'expired'})
PENDING_STATUSES = frozenset({'pending'})

def normalize_payment_status(raw_status: Optional[str]) -> PaymentStatus:
    """
    Map a raw Njalla payment status onto PaymentStatus

    Exact matches win over keyword matches, so "cancelled" never reads as
    confirmed. Anything not on an allow-list is UNKNOWN.
    """
    if not raw_status or not isinstance(raw_status, str):
        return PaymentStatus.UNKNOWN

    status = raw_status.strip().lower()

    if status in CONFIRMED_EXACT:
        return PaymentStatus.CONFIRMED
    if status in CANCELLED_STATUSES:
        return PaymentStatus.CANCELLED
    if status in EXPIRED_STATUSES:
        return PaymentStatus.EXPIRED
    if status in PENDING_STATUSES:
        return PaymentStatus.PENDING
    if any(keyword in status for keyword in CONFIRMED_KEYWORDS):
        return PaymentStatus.CONFIRMED
    if any(symbol in status for symbol in CONFIRMED_SYMBOLS):
        return PaymentStatus.CONFIRMED
    return PaymentStatus.UNKNOWN

@dataclass(frozen=True)
class NjallaPayment:
    """A freshly created top-up"""
    id: str
    address: str
    amount_eur: Optional[Decimal] = None

@dataclass(frozen=True)
class NjallaPaymentStatus:
    id: str
    status: PaymentStatus
    raw_status: Optional[str] = None

class NjallaPaymentService(NjallaClient):
    """Payment side of the registrar API"""

    async def add_payment(self, amount_eur, via: str = 'ethereum') -> NjallaPayment:
        """
        Create a prepaid balance top-up

        Args:
            amount_eur: Amount in EUR to credit
            via: Njalla payment rail name

        Raises:
            NjallaAPIError: On any failure, including a response without id/address
        """
        logger.info(f"💳 Creating Njalla payment: {format_money(amount_eur)} via {via}")
        result = await self.call('add-payment', {'amount': float(amount_eur), 'via': via})

        if not isinstance(result, dict) or not result.get('id') or not result.get('address'):
            raise NjallaAPIError(f"Njalla add-payment returned incomplete payment: {result!r}")

        amount = result.get('amount')
        payment = NjallaPayment(
            id=str(result['id']),
            address=str(result['address']),
            amount_eur=Decimal(str(amount)) if amount is not None else None
        )
        logger.info(f"✅ Njalla payment created - ID: {payment.id}, address: {payment.address}")
        return payment

    async def get_payment(self, payment_id: str) -> NjallaPaymentStatus:
        """
        Read the status of a top-up

        Raises:
            NjallaAPIError: If the status could not be obtained
        """
        result = await self.call('get-payment', {'id': payment_id})
        raw_status = result.get('status') if isinstance(result, dict) else None
        status = normalize_payment_status(raw_status)
        logger.debug(f"Njalla payment {payment_id}: '{raw_status}' -> {status.value}")
        return NjallaPaymentStatus(id=payment_id, status=status, raw_status=raw_status)

    async def get_balance(self) -> Decimal:
        """Current prepaid balance in EUR"""
        result = await self.call('get-balance')
        balance = Decimal(str((result or {}).get('balance') or 0))
        logger.info(f"💰 Njalla balance: €{balance}")
        return balance

# Global instance
njalla_payment_service = NjallaPaymentService()
