"""
Domain Fulfillment Processor
Turns paid domain orders into registered domains: funds the registrar's
prepaid balance with an on-chain ETH transfer, waits for the top-up to be
credited, registers the domain and polls the registration task.

The outbound transfer is irreversible, so every money-moving step is
driven by the persisted order record and guarded so that it happens at
most once per order, across restarts and duplicated processor instances.
"""

import time
import asyncio
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Set

import database
from admin_alerts import AlertCategory, AlertSeverity, get_admin_alert_system
from crypto_config import crypto_config
from health_monitor import get_health_monitor, log_error
from payment_validation import validate_payment_address, validate_payment_amount
from performance_monitor import OperationTimer, monitor_performance
from pricing_utils import calculate_crypto_amount, format_crypto_amount, to_decimal
from services.eth_wallet import WalletTransferError, get_eth_wallet_service
from services.njalla import njalla_service
from services.njalla_payment import PaymentStatus, njalla_payment_service
from services.price_oracle import price_oracle as default_price_oracle
from utils.environment import get_processor_interval

logger = logging.getLogger(__name__)

COMPONENT = "DomainProcessor"

class OrderNotFoundError(Exception):
    """No domain order exists with the requested id"""
    pass

class PriceUnavailableError(Exception):
    """The crypto/EUR rate could not be obtained, so no amount can be computed"""
    pass

class DomainProcessor:
    """
    Scheduled fulfillment engine for paid domain orders

    Only one instance is scheduler-active per process: constructing or
    starting a new processor stops the previous one.
    """

    _active_instance: Optional['DomainProcessor'] = None
    # Orders being advanced right now, shared by every instance in the process
    _orders_in_flight: Set[str] = set()

    def __init__(self, storage=None, payment_service=None, domain_service=None,
                 wallet_service=None, price_oracle=None, alerts=None,
                 interval: Optional[int] = None):
        self.storage = storage if storage is not None else database
        self.payment_service = payment_service if payment_service is not None else njalla_payment_service
        self.domain_service = domain_service if domain_service is not None else njalla_service
        self._wallet_service = wallet_service
        self.price_oracle = price_oracle if price_oracle is not None else default_price_oracle
        self.alerts = alerts if alerts is not None else get_admin_alert_system()
        self.interval = interval if interval is not None else get_processor_interval()

        self.rail = crypto_config.get_registrar_rail()
        self.is_processing = False
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None

        self._take_over_scheduler()
        logger.info(f"🔄 DomainProcessor initialized: interval={self.interval}s, rail={self.rail['symbol']}")

    @property
    def wallet_service(self):
        # Resolved on first use so the hot wallet key is not needed at import time
        if self._wallet_service is None:
            self._wallet_service = get_eth_wallet_service()
        return self._wallet_service

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def _take_over_scheduler(self):
        previous = DomainProcessor._active_instance
        if previous is not None and previous is not self:
            logger.warning("⚠️ Another DomainProcessor is active - stopping it")
            previous.stop()
        DomainProcessor._active_instance = self

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self):
        """Start the polling loop; the first tick runs immediately"""
        self._take_over_scheduler()
        if self.is_running and not self._stop_event.is_set():
            logger.debug("DomainProcessor already running")
            return

        # A stopped loop may still be finishing its last tick; the new loop waits for it
        finishing = self._task if self.is_running else None
        self._stop_event = asyncio.Event()
        self._task = asyncio.get_running_loop().create_task(self._run_loop(self._stop_event, finishing))
        logger.info(f"✅ DomainProcessor started (every {self.interval}s)")

    def stop(self):
        """Stop scheduling further ticks; a tick already running is allowed to finish"""
        if self._stop_event is not None:
            self._stop_event.set()
        if DomainProcessor._active_instance is self:
            DomainProcessor._active_instance = None
        logger.info("🛑 DomainProcessor stopped")

    async def shutdown(self):
        """Stop and wait for the loop (and any in-flight tick) to end"""
        self.stop()
        if self._task is not None:
            await self._task
            self._task = None

    async def _run_loop(self, stop_event: asyncio.Event, finishing: Optional[asyncio.Task] = None):
        if finishing is not None:
            await finishing

        while not stop_event.is_set():
            try:
                await self.process_paid_orders()
            except Exception as e:
                logger.error(f"❌ DomainProcessor tick crashed: {e}")
                log_error(f"DomainProcessor tick crashed: {e}")

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    async def process_paid_orders(self) -> Dict[str, Any]:
        """
        Run one tick over every paid, undelivered order

        Returns:
            Dict summary: status, orders_found, processed, errors, duration_ms
            and oldest_order_age_seconds
        """
        if self.is_processing:
            logger.debug("⏳ Previous domain processing tick still running - skipping")
            return {"status": "skipped", "orders_found": 0, "processed": 0, "errors": 0, "duration_ms": 0}

        self.is_processing = True
        started = time.perf_counter()
        summary = {"status": "success", "orders_found": 0, "processed": 0, "errors": 0,
                   "duration_ms": 0, "oldest_order_age_seconds": None}
        try:
            try:
                orders = await self.storage.get_paid_undelivered_orders()
            except Exception as e:
                logger.error(f"❌ Failed to fetch paid undelivered orders: {e}")
                log_error(f"Failed to fetch paid undelivered orders: {e}")
                summary["status"] = "error"
                return summary

            summary["orders_found"] = len(orders)
            summary["oldest_order_age_seconds"] = self._oldest_order_age(orders)
            if orders:
                logger.info(f"📊 Found {len(orders)} paid domain orders awaiting fulfillment")

            for order in orders:
                if await self._process_order_safely(order):
                    summary["processed"] += 1
                else:
                    summary["errors"] += 1

            if summary["errors"]:
                summary["status"] = "partial"
            return summary
        finally:
            summary["duration_ms"] = round((time.perf_counter() - started) * 1000, 1)
            self.is_processing = False
            get_health_monitor().record_tick(summary)
            if summary["orders_found"]:
                logger.info(
                    f"✅ Domain processing tick done: {summary['processed']}/{summary['orders_found']} ok, "
                    f"{summary['errors']} errors in {summary['duration_ms']}ms"
                )

    @staticmethod
    def _oldest_order_age(orders: List[Dict]) -> Optional[int]:
        now = datetime.now(timezone.utc)
        ages = []
        for order in orders:
            opened_at = order.get('paid_at') or order.get('created_at')
            if not isinstance(opened_at, datetime):
                continue
            if opened_at.tzinfo is None:
                opened_at = opened_at.replace(tzinfo=timezone.utc)
            ages.append((now - opened_at).total_seconds())
        return int(max(ages)) if ages else None

    async def _process_order_safely(self, order: Dict) -> bool:
        """Process one order; failures are contained to that order"""
        order_id = order.get('order_id')
        if order_id in DomainProcessor._orders_in_flight:
            logger.info(f"🔒 Order {order_id} is already being processed - skipping")
            return True

        DomainProcessor._orders_in_flight.add(order_id)
        try:
            await self.process_order(order)
            return True
        except PriceUnavailableError as e:
            logger.warning(f"⚠️ Order {order_id}: {e} - retrying next tick")
            return True
        except Exception as e:
            logger.error(f"❌ Error processing domain order {order_id}: {e}")
            log_error(f"Domain order {order_id}: {e}")
            try:
                await self.storage.update_domain_order_status(order_id, None, {'order_status': 'error'})
            except Exception as patch_error:
                logger.error(f"❌ Failed to mark order {order_id} as error: {patch_error}")
            return False
        finally:
            DomainProcessor._orders_in_flight.discard(order_id)

    @monitor_performance("domain_processor")
    async def process_order_now(self, order_id: str) -> bool:
        """
        Run the fulfillment logic once for a single order

        Raises:
            OrderNotFoundError: If the order does not exist
        """
        order = await self.storage.get_domain_order(order_id)
        if order is None:
            raise OrderNotFoundError(f"Domain order {order_id} not found")
        logger.info(f"🔧 Manually processing domain order {order_id}")
        return await self._process_order_safely(order)

    # ------------------------------------------------------------------
    # Per-order state machine
    # ------------------------------------------------------------------

    async def process_order(self, order: Dict):
        """Advance one order by at most one step; raises on unexpected failures"""
        order_id = order['order_id']
        payment_id = order.get('njalla_payment_id')
        tx_hash = order.get('njalla_payment_tx_hash')

        if order.get('unsupported_tld'):
            logger.debug(f"Order {order_id}: unsupported TLD {order.get('tld')} - awaiting operator")
            return

        if tx_hash and not payment_id:
            logger.critical(f"🚨 DATA INCONSISTENCY: order {order_id} has tx hash {tx_hash} but no Njalla payment id")
            await self._alert(
                AlertSeverity.CRITICAL,
                f"Order {order_id} has a transfer hash but no registrar payment id - manual review required",
                {'order_id': order_id, 'tx_hash': tx_hash},
                category=AlertCategory.DATA_INTEGRITY
            )
            return

        if order.get('njalla_task_id'):
            await self._check_registration(order)
        elif payment_id and order.get('njalla_payment_confirmed'):
            await self._register_domain(order)
        elif payment_id and not tx_hash:
            await self._resume_unsent_payment(order)
        elif payment_id:
            await self._poll_payment(order)
        else:
            await self._start_payment(order)

    async def _check_registration(self, order: Dict):
        order_id = order['order_id']
        task_id = order['njalla_task_id']
        result = await self.domain_service.check_task(task_id)

        if not result.completed:
            logger.info(f"⏳ Order {order_id}: registration task {task_id} still running")
            return

        if result.success:
            await self.storage.update_domain_order_status(order_id, None, {
                'order_status': 'delivered',
                'delivered_at': datetime.now(timezone.utc),
            })
            logger.info(f"✅ Order {order_id}: {self._domain(order)} delivered")
        else:
            await self.storage.update_domain_order_status(order_id, 'failed', {'order_status': 'failed'})
            logger.error(f"❌ Order {order_id}: registration task {task_id} failed")
            await self._alert(
                AlertSeverity.ERROR,
                f"Registration of {self._domain(order)} failed for order {order_id}",
                {'order_id': order_id, 'task_id': task_id},
                category=AlertCategory.DOMAIN_REGISTRATION
            )

    async def _register_domain(self, order: Dict):
        order_id = order['order_id']
        domain = self._domain(order)
        result = await self.domain_service.register_domain(domain, 1)

        if result.success:
            await self.storage.update_domain_order_status(order_id, None, {
                'njalla_task_id': result.task_id,
                'order_status': 'processing',
            })
            logger.info(f"📝 Order {order_id}: registration of {domain} started (task {result.task_id})")
        else:
            await self.storage.update_domain_order_status(order_id, 'failed', {'order_status': 'failed'})
            logger.error(f"❌ Order {order_id}: registrar rejected {domain}: {result.error}")
            await self._alert(
                AlertSeverity.ERROR,
                f"Registrar rejected {domain} for order {order_id} after the top-up was credited",
                {'order_id': order_id, 'error': result.error},
                category=AlertCategory.DOMAIN_REGISTRATION
            )

    async def _resume_unsent_payment(self, order: Dict):
        """A registrar payment exists but no transfer hash was recorded"""
        order_id = order['order_id']
        payment_id = order['njalla_payment_id']

        try:
            payment = await self.payment_service.get_payment(payment_id)
        except Exception as e:
            logger.warning(f"⚠️ Order {order_id}: could not look up Njalla payment {payment_id}: {e}")
            return

        if payment.status in (PaymentStatus.CANCELLED, PaymentStatus.EXPIRED):
            await self.storage.update_domain_order_status(order_id, None, {
                'njalla_payment_id': None,
                'njalla_payment_address': None,
                'njalla_payment_amount': None,
                'order_status': 'processing',
            })
            logger.info(f"🔄 Order {order_id}: Njalla payment {payment_id} {payment.status.value} - a new one will be created")
            return

        if payment.status in (PaymentStatus.PENDING, PaymentStatus.CONFIRMED):
            await self.storage.update_domain_order_status(order_id, None, {'order_status': 'error'})
            logger.critical(
                f"🚨 Order {order_id}: Njalla payment {payment_id} is {payment.status.value} "
                f"('{payment.raw_status}') but no transfer was recorded - refusing to resend"
            )
            await self._alert(
                AlertSeverity.CRITICAL,
                f"Order {order_id}: registrar payment {payment_id} is {payment.status.value} with no recorded "
                f"transfer - manual reconciliation required, no funds will be resent",
                {'order_id': order_id, 'payment_id': payment_id, 'raw_status': payment.raw_status}
            )
            return

        amount = self._stored_amount(order)
        if amount is None:
            amount = await self._compute_amount(order)
            await self.storage.update_domain_order_status(order_id, None, {'njalla_payment_amount': amount})

        await self._send_and_record(order_id, order.get('njalla_payment_address'), amount)

    async def _poll_payment(self, order: Dict):
        """A transfer was broadcast; wait for Njalla to credit it"""
        order_id = order['order_id']
        payment_id = order['njalla_payment_id']

        try:
            payment = await self.payment_service.get_payment(payment_id)
        except Exception as e:
            logger.warning(f"⚠️ Order {order_id}: could not poll Njalla payment {payment_id}: {e}")
            return

        if payment.status == PaymentStatus.CONFIRMED:
            await self.storage.update_domain_order_status(order_id, None, {
                'njalla_payment_confirmed': True,
                'order_status': 'processing',
            })
            logger.info(f"✅ Order {order_id}: Njalla payment {payment_id} credited ('{payment.raw_status}')")
        elif payment.status in (PaymentStatus.CANCELLED, PaymentStatus.EXPIRED):
            # Expiry is as terminal as cancellation here: the funds already left the wallet
            await self.storage.update_domain_order_status(order_id, 'failed', {'order_status': 'failed'})
            logger.error(f"❌ Order {order_id}: Njalla payment {payment_id} {payment.status.value} after transfer")
            await self._alert(
                AlertSeverity.ERROR,
                f"Order {order_id}: registrar payment {payment_id} {payment.status.value} after funds were sent",
                {'order_id': order_id, 'payment_id': payment_id,
                 'tx_hash': order.get('njalla_payment_tx_hash'), 'raw_status': payment.raw_status}
            )
        else:
            logger.info(f"⏳ Order {order_id}: Njalla payment {payment_id} is '{payment.raw_status}'")

    async def _start_payment(self, order: Dict):
        """Create the registrar top-up and fund it"""
        order_id = order['order_id']

        current = await self.storage.get_domain_order(order_id)
        if current is None:
            raise OrderNotFoundError(f"Domain order {order_id} disappeared")
        if current.get('njalla_payment_id') or current.get('njalla_payment_tx_hash'):
            logger.info(f"🔒 Order {order_id}: payment already created by another run - skipping")
            return

        amount = validate_payment_amount(await self._compute_amount(current))

        payment = await self.payment_service.add_payment(current['price_eur'], self.rail['njalla_via'])
        address = validate_payment_address(payment.address)

        claimed = await self.storage.claim_njalla_payment(order_id, payment.id, address, amount)
        if not claimed:
            logger.warning(f"🔒 Order {order_id}: lost payment claim, Njalla payment {payment.id} left unfunded")
            return

        logger.info(f"💳 Order {order_id}: Njalla payment {payment.id} recorded, amount {amount} {self.rail['symbol']}")
        await self._send_and_record(order_id, address, amount)

    async def _send_and_record(self, order_id: str, address: Optional[str], amount: Decimal):
        address = validate_payment_address(address)
        amount = validate_payment_amount(amount)
        amount_str = format_crypto_amount(amount)

        try:
            with OperationTimer(f"domain_order_transfer:{order_id}"):
                tx_hash = await self.wallet_service.send_eth(address, amount_str)
        except WalletTransferError as e:
            if e.tx_hash:
                await self._alert(
                    AlertSeverity.CRITICAL,
                    f"Order {order_id}: transfer {e.tx_hash} was broadcast but not confirmed - reconcile before retrying",
                    {'order_id': order_id, 'tx_hash': e.tx_hash, 'amount': amount_str, 'address': address}
                )
            raise

        await self.storage.update_domain_order_status(order_id, None, {
            'njalla_payment_tx_hash': tx_hash,
            'njalla_payment_confirmed': False,
            'order_status': 'processing',
        })
        logger.info(f"💸 Order {order_id}: sent {amount_str} {self.rail['symbol']} to {address} ({tx_hash})")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _compute_amount(self, order: Dict) -> Decimal:
        rate = await self.price_oracle.get_price_in_eur(self.rail['code'])
        amount = calculate_crypto_amount(order['price_eur'], rate)
        if amount is None:
            raise PriceUnavailableError(f"{self.rail['symbol']}/EUR rate unavailable ({rate})")
        return amount

    @staticmethod
    def _stored_amount(order: Dict) -> Optional[Decimal]:
        stored = order.get('njalla_payment_amount')
        if stored is None:
            return None
        amount = to_decimal(stored)
        return amount if amount > 0 else None

    @staticmethod
    def _domain(order: Dict) -> str:
        return f"{order['domain_name']}{order['tld']}"

    async def _alert(self, severity: AlertSeverity, message: str, details: Optional[Dict[str, Any]] = None,
                     category: AlertCategory = AlertCategory.PAYMENT_PROCESSING):
        try:
            await self.alerts.send_alert(severity, category, COMPONENT, message, details)
        except Exception as e:
            logger.error(f"❌ Failed to send admin alert: {e}")

_domain_processor: Optional[DomainProcessor] = None

def get_domain_processor() -> DomainProcessor:
    """Get or create the process-wide domain processor"""
    global _domain_processor
    if _domain_processor is None:
        _domain_processor = DomainProcessor()
    return _domain_processor
