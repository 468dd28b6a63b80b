"""
Payment Event Log Repository

Append-only audit trail of gateway traffic and reconciliation attempts.
Recording is best-effort: a failed insert is logged and never raised.
"""

import logging
from typing import Any, Optional

from pydantic_core import to_jsonable_python
from sqlalchemy.exc import SQLAlchemyError

from app.infrastructure.db.database import get_session_context
from app.infrastructure.db.models import PaymentEventLogModel
from app.infrastructure.exceptions import BillingServiceError


logger = logging.getLogger(__name__)


class PaymentEventLogRepository:
    """Writes ``payment_event_logs`` rows for provider ``efi``."""

    provider = "efi"

    async def record(
        self,
        event_type: str,
        body: Any,
        headers: Optional[dict] = None,
        ip: str = "",
    ) -> None:
        """
        Append an audit record.

        Args:
            event_type: e.g. ``cleanup-scan``, ``cleanup-cancel-old``, ``incoming``
            body: Any JSON-able payload (ids, statuses, gateway errors)
            headers: Request headers, when the event is an inbound call
            ip: Caller address, when known
        """
        try:
            async with get_session_context() as session:
                session.add(
                    PaymentEventLogModel(
                        provider=self.provider,
                        event_type=event_type,
                        body=to_jsonable_python(body, fallback=str),
                        headers=to_jsonable_python(headers, fallback=str) if headers else None,
                        ip=ip or "",
                    )
                )
        except (SQLAlchemyError, BillingServiceError) as e:
            logger.error(f"Failed to record payment event '{event_type}': {e}")


_event_log_repo_instance: Optional[PaymentEventLogRepository] = None


def get_payment_event_log_repository() -> PaymentEventLogRepository:
    """Get or create payment event log repository singleton."""
    global _event_log_repo_instance

    if _event_log_repo_instance is None:
        _event_log_repo_instance = PaymentEventLogRepository()

    return _event_log_repo_instance
