"""
Tenant Database Models

Companies (tenants), platform users and the membership link between them.
Only the columns the billing flow reads or writes are mapped.
"""

from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import Column
from sqlalchemy.dialects.postgresql import JSONB, UUID as PGUUID
from sqlmodel import Field, SQLModel


class CompanyModel(SQLModel, table=True):
    """
    Tenant row. ``plan``/``maxemployees`` are the entitlement and
    ``current_subscription_id`` points at the subscription that grants it.
    """

    __tablename__ = "companies"

    id: UUID = Field(default_factory=uuid4, sa_column=Column(PGUUID(as_uuid=True), primary_key=True))
    name: str = Field(default="")
    plan: Optional[str] = Field(default=None)
    maxemployees: Optional[int] = Field(default=None)
    current_subscription_id: Optional[UUID] = Field(
        default=None,
        sa_column=Column(PGUUID(as_uuid=True), nullable=True),
    )
    plan_features: Optional[dict] = Field(default=None, sa_column=Column(JSONB, nullable=True))


class UserModel(SQLModel, table=True):
    """Platform user. ``is_admin`` marks platform operators."""

    __tablename__ = "users"

    id: UUID = Field(sa_column=Column(PGUUID(as_uuid=True), primary_key=True))
    email: Optional[str] = Field(default=None)
    is_admin: bool = Field(default=False)


class CompanyUserModel(SQLModel, table=True):
    """Membership of a user in a company."""

    __tablename__ = "companies_users"

    id: UUID = Field(default_factory=uuid4, sa_column=Column(PGUUID(as_uuid=True), primary_key=True))
    company_id: UUID = Field(sa_column=Column(PGUUID(as_uuid=True), index=True, nullable=False))
    user_id: UUID = Field(sa_column=Column(PGUUID(as_uuid=True), index=True, nullable=False))
    role: str = Field(default="member")
