#!/usr/bin/env python3
"""
Subscription Reconciliation Script

Cancels superseded Efí subscriptions so every company converges to a
single open subscription, then purges old webhook de-duplication keys.
Run as a cron job or manually: python -m scripts.reconcile_subscriptions

Usage:
    python -m scripts.reconcile_subscriptions                      # All companies
    python -m scripts.reconcile_subscriptions --company-id <uuid>  # One company
    python -m scripts.reconcile_subscriptions --retention-days 7   # Shorter dedup window
"""

import asyncio
import argparse
import logging
from typing import Optional

# Add parent directory to path for imports
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from app.config.settings import settings
from app.infrastructure.db.database import close_db, init_db
from app.infrastructure.payments.efi_service import get_efi_service
from app.infrastructure.services.subscription_reconciler import SubscriptionReconciler
from app.infrastructure.services.webhook_processor import WebhookProcessor

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


async def run(company_id: Optional[str], retention_days: int, skip_purge: bool) -> dict:
    """Reconcile one company (or all of them) and purge processed events."""
    reconciler = SubscriptionReconciler(get_efi_service())

    if company_id:
        reports = [await reconciler.converge(company_id)]
    else:
        reports = await reconciler.reconcile_all()

    stats = {
        "companies": len(reports),
        "scanned": sum(r.scanned for r in reports),
        "canceled": sum(r.canceled for r in reports),
        "failed": sum(len(r.attempts) - r.canceled for r in reports),
        "purged_events": 0,
    }

    if not skip_purge:
        stats["purged_events"] = await WebhookProcessor().purge_processed_events(retention_days)

    logger.info(f"Reconciliation complete: {stats}")
    return stats


async def main():
    parser = argparse.ArgumentParser(description="Converge tenants to a single open subscription")
    parser.add_argument(
        "--company-id",
        default=None,
        help="Reconcile only this company (default: every company with duplicates)"
    )
    parser.add_argument(
        "--retention-days",
        type=int,
        default=settings.webhook_event_retention_days,
        help=f"Keep processed webhook keys this many days (default: {settings.webhook_event_retention_days})"
    )
    parser.add_argument(
        "--skip-purge",
        action="store_true",
        help="Do not purge processed webhook events"
    )
    args = parser.parse_args()

    await init_db()
    try:
        stats = await run(args.company_id, args.retention_days, args.skip_purge)
    finally:
        await close_db()

    print("\n=== Reconciliation Complete ===")
    print(f"Companies: {stats['companies']}")
    print(f"Stale subscriptions scanned: {stats['scanned']}")
    print(f"Canceled: {stats['canceled']}")
    print(f"Failed: {stats['failed']}")
    print(f"Purged webhook events: {stats['purged_events']}")


if __name__ == "__main__":
    asyncio.run(main())
