"""
Database Infrastructure Package for the Billing Service

Exports database utilities and dependency aliases.
"""

from app.infrastructure.db.database import (
    DatabaseManager,
    get_db_manager,
    get_session,
    get_session_context,
    init_db,
    close_db,
)

from app.infrastructure.db.dependencies import (
    SessionDep,
    CompanyRepoDep,
    UserAccessRepoDep,
    PlanRepoDep,
    SubscriptionRepoDep,
    TransactionRepoDep,
)


__all__ = [
    # Database management
    "DatabaseManager",
    "get_db_manager",
    "get_session",
    "get_session_context",
    "init_db",
    "close_db",
    # Dependencies
    "SessionDep",
    "CompanyRepoDep",
    "UserAccessRepoDep",
    "PlanRepoDep",
    "SubscriptionRepoDep",
    "TransactionRepoDep",
]
