"""
Shared test fixtures for the domain fulfillment test suite
Provides an in-memory order store, order factories and mocked external services
"""

import os
import copy
import pytest
import factory
from factory.declarations import Sequence, LazyFunction
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, Any, Optional, List
from unittest.mock import AsyncMock
import logging

# Configure test logging
logging.basicConfig(level=logging.DEBUG)
logger = logging.getLogger(__name__)

# Test environment configuration
test_env_vars = {
    'TEST_MODE': '1',
    'NJALLA_API_TOKEN': 'test_njalla_token',
    'ADMIN_ALERTS_ENABLED': 'false',
    'DOMAIN_PROCESSOR_INTERVAL': '30',
    'PAYMENT_MARGIN_MULTIPLIER': '1.01',
}
for key, value in test_env_vars.items():
    os.environ[key] = value

from services.njalla import RegistrationResult, TaskResult
from services.njalla_payment import NjallaPayment, NjallaPaymentStatus, PaymentStatus

NJALLA_ADDRESS = '0x' + 'a1' * 20
NJALLA_ADDRESS_2 = '0x' + 'b2' * 20
TX_HASH = '0x' + 'cd' * 32

# Test data factories
class DomainOrderFactory(factory.Factory):  # type: ignore[misc]
    """Factory for paid domain orders as the store returns them"""
    class Meta:  # type: ignore[misc]
        model = dict

    order_id = Sequence(lambda n: f"ord_{1000 + n}")
    domain_name = Sequence(lambda n: f"anon-site-{n}")
    tld = '.com'
    price_eur = Decimal('20.00')
    currency = 'BTC'
    amount_crypto = Decimal('0.0005')
    payment_status = 'paid'
    order_status = 'awaiting_payment'
    njalla_payment_id = None
    njalla_payment_address = None
    njalla_payment_amount = None
    njalla_payment_tx_hash = None
    njalla_payment_confirmed = False
    njalla_task_id = None
    unsupported_tld = False
    refund_status = None
    created_at = LazyFunction(lambda: datetime.now(timezone.utc))
    paid_at = LazyFunction(lambda: datetime.now(timezone.utc))
    delivered_at = None
    expires_at = None
    updated_at = None

class FakeOrderStorage:
    """
    In-memory order store with the same contract as the database module

    Reads return copies so callers only ever see persisted state.
    """

    def __init__(self, orders: Optional[List[Dict[str, Any]]] = None):
        self.orders: Dict[str, Dict[str, Any]] = {}
        self.patches: List[Dict[str, Any]] = []
        self.fail_updates = False
        for order in orders or []:
            self.add(order)

    def add(self, order: Dict[str, Any]) -> Dict[str, Any]:
        self.orders[order['order_id']] = dict(order)
        return order

    def get(self, order_id: str) -> Dict[str, Any]:
        return self.orders[order_id]

    async def get_paid_undelivered_orders(self) -> List[Dict]:
        return [
            copy.deepcopy(order) for order in self.orders.values()
            if order['payment_status'] == 'paid' and order.get('delivered_at') is None
        ]

    async def get_domain_order(self, order_id: str) -> Optional[Dict]:
        order = self.orders.get(order_id)
        return copy.deepcopy(order) if order is not None else None

    async def update_domain_order_status(self, order_id: str, payment_status: Optional[str], fields: Dict[str, Any]) -> None:
        if self.fail_updates:
            raise RuntimeError("store unavailable")
        if order_id not in self.orders:
            raise KeyError(order_id)
        patch = dict(fields)
        if payment_status:
            patch['payment_status'] = payment_status
        self.patches.append({'order_id': order_id, **patch})
        self.orders[order_id].update(patch)
        self.orders[order_id]['updated_at'] = datetime.now(timezone.utc)

    async def claim_njalla_payment(self, order_id: str, payment_id: str, address: str, amount) -> bool:
        order = self.orders[order_id]
        if order.get('njalla_payment_id') is not None:
            return False
        order.update({
            'njalla_payment_id': payment_id,
            'njalla_payment_address': address,
            'njalla_payment_amount': amount,
            'order_status': 'processing',
        })
        return True

@pytest.fixture
def storage():
    return FakeOrderStorage()

@pytest.fixture
def payment_service():
    """Mock Njalla payment service: a fresh unpaid top-up by default"""
    service = AsyncMock()
    service.add_payment = AsyncMock(return_value=NjallaPayment(id='pay_1', address=NJALLA_ADDRESS))
    service.get_payment = AsyncMock(
        return_value=NjallaPaymentStatus(id='pay_1', status=PaymentStatus.UNKNOWN, raw_status='Waiting')
    )
    return service

@pytest.fixture
def domain_service():
    service = AsyncMock()
    service.register_domain = AsyncMock(return_value=RegistrationResult(success=True, task_id='task_1'))
    service.check_task = AsyncMock(return_value=TaskResult(completed=False))
    return service

@pytest.fixture
def wallet_service():
    service = AsyncMock()
    service.send_eth = AsyncMock(return_value=TX_HASH)
    return service

@pytest.fixture
def price_oracle():
    oracle = AsyncMock()
    oracle.get_price_in_eur = AsyncMock(return_value=2000.0)
    return oracle

@pytest.fixture
def alerts():
    system = AsyncMock()
    system.send_alert = AsyncMock(return_value=True)
    return system

@pytest.fixture
def processor(storage, payment_service, domain_service, wallet_service, price_oracle, alerts):
    from services.domain_processor import DomainProcessor
    engine = DomainProcessor(
        storage=storage,
        payment_service=payment_service,
        domain_service=domain_service,
        wallet_service=wallet_service,
        price_oracle=price_oracle,
        alerts=alerts,
        interval=30
    )
    yield engine
    engine.stop()

@pytest.fixture(autouse=True)
def clear_performance_cache():
    from performance_cache import clear_cache
    clear_cache()
    yield
    clear_cache()

@pytest.fixture(autouse=True)
def reset_active_processor():
    from services.domain_processor import DomainProcessor
    yield
    DomainProcessor._active_instance = None
    DomainProcessor._orders_in_flight.clear()
