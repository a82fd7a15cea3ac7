"""
PostgreSQL order store for the domain fulfillment service
Direct psycopg2 connections with raw SQL, run off the event loop via asyncio.to_thread
"""

import os
import asyncio
import logging
import threading
import time
from typing import Optional, Dict, List, Any

import psycopg2
import psycopg2.pool
from psycopg2 import sql
from psycopg2.extras import RealDictCursor

logger = logging.getLogger(__name__)

_connection_pool = None
_pool_lock = threading.Lock()

# Columns the fulfillment engine is allowed to patch
PATCHABLE_COLUMNS = frozenset({
    'order_status',
    'njalla_payment_id',
    'njalla_payment_address',
    'njalla_payment_amount',
    'njalla_payment_tx_hash',
    'njalla_payment_confirmed',
    'njalla_task_id',
    'delivered_at',
    'refund_status',
})

class DatabaseOperationError(Exception):
    """Raised when a store read or write could not be completed"""
    pass

def get_connection_pool():
    """Get or create the database connection pool"""
    global _connection_pool
    if _connection_pool is None:
        with _pool_lock:
            if _connection_pool is None:
                database_url = os.getenv('DATABASE_URL')
                if not database_url:
                    raise DatabaseOperationError("DATABASE_URL environment variable not found")

                _connection_pool = psycopg2.pool.ThreadedConnectionPool(
                    minconn=1,
                    maxconn=10,
                    dsn=database_url,
                    cursor_factory=RealDictCursor,
                    connect_timeout=5,
                    keepalives_idle=600,
                    keepalives_interval=30,
                    keepalives_count=3,
                    sslmode='prefer'
                )
                logger.info("✅ Database connection pool created (1-10 connections)")
    return _connection_pool

def close_connection_pool() -> None:
    """Close all pooled connections"""
    global _connection_pool
    with _pool_lock:
        if _connection_pool is not None:
            _connection_pool.closeall()
            _connection_pool = None
            logger.info("🔄 Database connection pool closed")

def get_connection():
    """Borrow a connection from the pool"""
    conn = get_connection_pool().getconn()
    conn.autocommit = True
    return conn

def return_connection(conn, is_broken=False):
    """Return a connection to the pool, discarding broken ones"""
    try:
        get_connection_pool().putconn(conn, close=is_broken)
    except psycopg2.Error as e:
        logger.warning(f"⚠️ Failed to return connection to pool: {e}")

async def execute_query(query, params: Optional[tuple] = None) -> List[Dict]:
    """Execute a SELECT query and return rows as dicts, retrying connection-level errors"""

    def _execute() -> List[Dict]:
        max_retries = 3
        for attempt in range(max_retries):
            conn = None
            broken = False
            try:
                conn = get_connection()
                with conn.cursor() as cursor:
                    cursor.execute(query, params)
                    results = cursor.fetchall()
                    return [dict(row) for row in results] if results else []
            except (psycopg2.OperationalError, psycopg2.InterfaceError) as e:
                broken = True
                if attempt < max_retries - 1:
                    logger.warning(f"🔄 Database connection retry {attempt + 1}/{max_retries}: {e}")
                    time.sleep(0.5 + (attempt * 0.5))
                    continue
                logger.error(f"💥 All database connection attempts failed after {max_retries} retries: {e}")
                raise DatabaseOperationError(f"Query failed: {e}") from e
            except psycopg2.Error as e:
                logger.error(f"❌ Database query error: {e}")
                raise DatabaseOperationError(f"Query failed: {e}") from e
            finally:
                if conn is not None:
                    return_connection(conn, is_broken=broken)
        return []

    return await asyncio.to_thread(_execute)

async def execute_update(query, params: Optional[tuple] = None) -> int:
    """Execute an UPDATE/INSERT/DELETE and return affected rows (no retries, writes must not duplicate)"""

    def _execute() -> int:
        conn = None
        broken = False
        try:
            conn = get_connection()
            with conn.cursor() as cursor:
                cursor.execute(query, params)
                return cursor.rowcount
        except (psycopg2.OperationalError, psycopg2.InterfaceError) as e:
            broken = True
            logger.error(f"💥 Database update connection failed: {e}")
            raise DatabaseOperationError(f"Update failed: {e}") from e
        except psycopg2.Error as e:
            logger.error(f"💥 Database update operation failed: {e}")
            raise DatabaseOperationError(f"Update failed: {e}") from e
        finally:
            if conn is not None:
                return_connection(conn, is_broken=broken)

    return await asyncio.to_thread(_execute)

async def init_database():
    """Create the domain_orders table if it doesn't exist"""
    await execute_update("""
        CREATE TABLE IF NOT EXISTS domain_orders (
            id SERIAL PRIMARY KEY,
            order_id VARCHAR(64) UNIQUE NOT NULL,
            domain_name VARCHAR(255) NOT NULL,
            tld VARCHAR(63) NOT NULL,
            price_eur NUMERIC(12,2) NOT NULL,
            currency VARCHAR(20) NOT NULL,
            amount_crypto NUMERIC(36,18),
            payment_status VARCHAR(20) NOT NULL DEFAULT 'pending',
            order_status VARCHAR(20) NOT NULL DEFAULT 'awaiting_payment',
            njalla_payment_id VARCHAR(255),
            njalla_payment_address VARCHAR(255),
            njalla_payment_amount NUMERIC(36,18),
            njalla_payment_tx_hash VARCHAR(255),
            njalla_payment_confirmed BOOLEAN NOT NULL DEFAULT FALSE,
            njalla_task_id VARCHAR(255),
            unsupported_tld BOOLEAN NOT NULL DEFAULT FALSE,
            refund_status VARCHAR(50),
            created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP,
            paid_at TIMESTAMPTZ,
            delivered_at TIMESTAMPTZ,
            expires_at TIMESTAMPTZ,
            updated_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
    """)
    await execute_update("""
        CREATE INDEX IF NOT EXISTS idx_domain_orders_paid_undelivered
        ON domain_orders(payment_status)
        WHERE delivered_at IS NULL
    """)
    logger.info("✅ domain_orders table ready")

async def get_paid_undelivered_orders() -> List[Dict]:
    """All orders whose customer payment is confirmed but whose domain is not delivered"""
    return await execute_query("""
        SELECT * FROM domain_orders
        WHERE payment_status = 'paid' AND delivered_at IS NULL
        ORDER BY paid_at ASC NULLS LAST, id ASC
    """)

async def get_domain_order(order_id: str) -> Optional[Dict]:
    rows = await execute_query(
        "SELECT * FROM domain_orders WHERE order_id = %s",
        (order_id,)
    )
    return rows[0] if rows else None

def _build_patch(payment_status: Optional[str], fields: Dict[str, Any]):
    unknown = set(fields) - PATCHABLE_COLUMNS
    if unknown:
        raise ValueError(f"Refusing to patch unknown columns: {sorted(unknown)}")

    updates = dict(fields)
    if payment_status:
        updates['payment_status'] = payment_status
    if not updates:
        raise ValueError("Empty order patch")

    assignments = [
        sql.SQL("{} = %s").format(sql.Identifier(column))
        for column in updates
    ]
    assignments.append(sql.SQL("updated_at = CURRENT_TIMESTAMP"))
    return sql.SQL(", ").join(assignments), tuple(updates.values())

async def update_domain_order_status(order_id: str, payment_status: Optional[str], fields: Dict[str, Any]) -> None:
    """
    Sparse patch of a domain order

    Only the given columns (plus updated_at) are written, so unrelated fields
    changed concurrently by other writers are never clobbered.

    Args:
        order_id: Order to patch
        payment_status: New payment_status, or None to leave it untouched
        fields: Column -> value, restricted to PATCHABLE_COLUMNS

    Raises:
        DatabaseOperationError: If the write failed or matched no order
    """
    assignments, values = _build_patch(payment_status, fields)
    query = sql.SQL("UPDATE domain_orders SET {} WHERE order_id = %s").format(assignments)

    rows_updated = await execute_update(query, values + (order_id,))
    if rows_updated == 0:
        raise DatabaseOperationError(f"Domain order {order_id} not found for update")

async def claim_njalla_payment(order_id: str, payment_id: str, address: str, amount) -> bool:
    """
    Persist a registrar payment intent only if the order has none yet

    Returns:
        bool: True if this caller recorded the payment, False if another
        execution already holds a payment id for the order
    """
    assignments, values = _build_patch(None, {
        'njalla_payment_id': payment_id,
        'njalla_payment_address': address,
        'njalla_payment_amount': amount,
        'order_status': 'processing',
    })
    query = sql.SQL(
        "UPDATE domain_orders SET {} WHERE order_id = %s AND njalla_payment_id IS NULL"
    ).format(assignments)

    rows_updated = await execute_update(query, values + (order_id,))
    return rows_updated > 0
