#!/usr/bin/env python3
"""
Domain fulfillment service entry point
Runs the domain processor loop, or processes a single order on demand
"""

import os
import sys
import json
import signal
import asyncio
import logging
import argparse

# Configure logging
logging.basicConfig(
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    level=getattr(logging, os.getenv('LOG_LEVEL', 'INFO').upper(), logging.INFO)
)

# Prevent httpx from logging request URLs
logging.getLogger("httpx").setLevel(logging.WARNING)

logger = logging.getLogger(__name__)

from admin_alerts import send_critical_alert
from database import DatabaseOperationError, close_connection_pool, init_database
from health_monitor import get_health_status
from performance_cache import cache_stats
from performance_monitor import get_performance_stats
from services.domain_processor import OrderNotFoundError, get_domain_processor

async def run_processor():
    """Run the fulfillment loop until SIGINT/SIGTERM"""
    logger.info("🔄 Initializing database...")
    try:
        await init_database()
    except DatabaseOperationError as e:
        logger.error(f"❌ Database initialization failed: {e}")
        await send_critical_alert("Main", f"Domain fulfillment service cannot start: {e}", "database")
        raise

    shutdown_requested = asyncio.Event()
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(signum, shutdown_requested.set)

    processor = get_domain_processor()
    processor.start()
    logger.info("🚀 Domain fulfillment service running")

    try:
        await shutdown_requested.wait()
        logger.info("🛑 Shutdown signal received, waiting for the current tick to finish...")
    finally:
        await processor.shutdown()
        close_connection_pool()
        logger.info("✅ Cleanup completed")

async def process_single_order(order_id: str) -> bool:
    processor = get_domain_processor()
    try:
        return await processor.process_order_now(order_id)
    finally:
        close_connection_pool()

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Anonymous domain fulfillment service")
    subparsers = parser.add_subparsers(dest='command', required=True)

    subparsers.add_parser('run', help="Run the domain processor loop")

    process_parser = subparsers.add_parser('process-order', help="Process one order immediately")
    process_parser.add_argument('order_id')

    subparsers.add_parser('status', help="Print health and performance status as JSON")
    return parser

def main(argv=None) -> int:
    """Main entry point"""
    args = build_parser().parse_args(argv)

    if args.command == 'status':
        status = {
            'health': get_health_status(),
            'performance': get_performance_stats(),
            'cache': cache_stats(),
        }
        print(json.dumps(status, indent=2, default=str))
        return 0

    if args.command == 'process-order':
        try:
            ok = asyncio.run(process_single_order(args.order_id))
        except OrderNotFoundError as e:
            logger.error(f"❌ {e}")
            return 1
        logger.info(f"✅ Order {args.order_id} processed" if ok else f"⚠️ Order {args.order_id} ended in error state")
        return 0 if ok else 1

    try:
        asyncio.run(run_processor())
    except Exception as e:
        logger.error(f"💥 Critical service failure: {e}")
        return 1
    return 0

if __name__ == '__main__':
    sys.exit(main())
