#!/usr/bin/env python
"""
Webhook Delivery Worker

Standalone process that relays outbox events to integrator webhooks and
re-sends due retries. Use it instead of the in-process worker
(WORKER_ENABLED=false) when running several API replicas.

Run with:
    python worker.py

Or with environment:
    WORKER_INTERVAL=10 python worker.py
"""

import os
import sys
import time
import logging
import signal

from app.config import settings
from app.database import SessionLocal
from app.services.webhook_delivery import WebhookDeliveryWorker
from app.utils.logging_config import setup_logging

setup_logging(level=settings.log_level, json_format=settings.log_json, include_uvicorn=False)
logger = logging.getLogger("worker")

POLL_INTERVAL = int(os.getenv("WORKER_INTERVAL", str(settings.worker_poll_interval)))  # seconds
RUNNING = True


def signal_handler(signum, frame):
    """Handle shutdown signals gracefully"""
    global RUNNING
    logger.info("Received shutdown signal, finishing current batch...")
    RUNNING = False


def run_worker():
    """Main worker loop"""
    logger.info("=" * 50)
    logger.info("Starting Webhook Delivery Worker")
    logger.info(f"Poll interval: {POLL_INTERVAL}s")
    logger.info(f"Batch size: {settings.webhook_batch_size} (retries: {settings.webhook_retry_batch_size})")
    logger.info("=" * 50)

    cycle = 0

    while RUNNING:
        cycle += 1
        start_time = time.time()

        db = SessionLocal()
        try:
            stats = WebhookDeliveryWorker(db).run_once()
            pending, retries = stats["pending"], stats["retries"]

            if pending["events"] or retries["retried"]:
                duration = time.time() - start_time
                logger.info(
                    f"Cycle {cycle}: "
                    f"Events {pending['events']} ({pending['delivered']}✓/{pending['failed']}✗) | "
                    f"Retries {retries['retried']} ({retries['delivered']}✓/{retries['failed']}✗) | "
                    f"{duration:.2f}s"
                )

        except Exception as e:
            db.rollback()
            logger.error(f"Critical error in cycle {cycle}: {e}")

        finally:
            db.close()

        if RUNNING:
            time.sleep(POLL_INTERVAL)

    logger.info("Worker shutdown complete")


if __name__ == "__main__":
    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        run_worker()
    except KeyboardInterrupt:
        logger.info("Worker interrupted by user")
    except Exception as e:
        logger.critical(f"Worker crashed: {e}")
        sys.exit(1)
