"""
Processed Webhook Event Repository

Database-backed idempotency for gateway notifications (survives restarts).
"""

import logging
from datetime import timedelta
from typing import Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from app.infrastructure.db.database import get_session_context
from app.infrastructure.db.models import utcnow
from app.infrastructure.exceptions import DatabaseError


logger = logging.getLogger(__name__)

TABLE = "processed_webhook_events"


class WebhookEventRepository:
    """Tracks which webhook event keys were already applied."""

    async def is_processed(self, event_id: str) -> bool:
        """Check if a webhook event has already been processed."""
        try:
            async with get_session_context() as session:
                result = await session.execute(
                    text("SELECT 1 FROM processed_webhook_events WHERE event_id = :eid"),
                    {"eid": event_id},
                )
                return result.scalar_one_or_none() is not None
        except SQLAlchemyError as e:
            raise DatabaseError(f"Error checking webhook event: {e}", "select", TABLE, e)

    async def mark_processed(self, event_id: str, event_type: str) -> None:
        """Record a processed webhook event."""
        try:
            async with get_session_context() as session:
                await session.execute(
                    text(
                        "INSERT INTO processed_webhook_events (event_id, event_type) "
                        "VALUES (:eid, :etype) ON CONFLICT (event_id) DO NOTHING"
                    ),
                    {"eid": event_id, "etype": event_type},
                )
        except SQLAlchemyError as e:
            raise DatabaseError(f"Error recording webhook event: {e}", "insert", TABLE, e)

    async def purge_older_than(self, days: int) -> int:
        """
        Delete processed events older than ``days``.

        Returns:
            Number of rows removed
        """
        cutoff = utcnow() - timedelta(days=days)
        try:
            async with get_session_context() as session:
                result = await session.execute(
                    text("DELETE FROM processed_webhook_events WHERE processed_at < :cutoff"),
                    {"cutoff": cutoff},
                )
                logger.info(f"Purged {result.rowcount} processed webhook events older than {days} days")
                return result.rowcount
        except SQLAlchemyError as e:
            raise DatabaseError(f"Error purging webhook events: {e}", "delete", TABLE, e)


_webhook_event_repo_instance: Optional[WebhookEventRepository] = None


def get_webhook_event_repository() -> WebhookEventRepository:
    """Get or create webhook event repository singleton."""
    global _webhook_event_repo_instance

    if _webhook_event_repo_instance is None:
        _webhook_event_repo_instance = WebhookEventRepository()

    return _webhook_event_repo_instance
