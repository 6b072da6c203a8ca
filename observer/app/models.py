from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    JSON,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from observer.app.db import Base


# -------------------------
# Helpers
# -------------------------

def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def uuid_str() -> str:
    return str(uuid.uuid4())


# -------------------------
# Identity
# -------------------------

class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=uuid_str)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, unique=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_users_created_at_id", "created_at", "id"),
    )


# -------------------------
# Source records (read-only for the observer)
# -------------------------

class DetectedSubscription(Base):
    __tablename__ = "detected_subscriptions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=uuid_str)
    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    merchant: Mapped[str] = mapped_column(String(200), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    last_charge_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    confirmed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class Transaction(Base):
    __tablename__ = "transactions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=uuid_str)
    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    # negative = outflow
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    merchant: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    transaction_date: Mapped[date] = mapped_column(Date, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_transactions_user_date", "user_id", "transaction_date"),
    )


class UserBudget(Base):
    __tablename__ = "user_budgets"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=uuid_str)
    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    category: Mapped[str] = mapped_column(String(120), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    spending = relationship(
        "BudgetSpending",
        back_populates="budget",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class BudgetSpending(Base):
    __tablename__ = "budget_spending"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=uuid_str)
    budget_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("user_budgets.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    spent_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    budget = relationship("UserBudget", back_populates="spending")


# -------------------------
# Observer output
# -------------------------

class ProactiveInsight(Base):
    __tablename__ = "proactive_insights"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=uuid_str)
    user_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    insight_type: Mapped[str] = mapped_column(String(64), nullable=False)
    severity: Mapped[str] = mapped_column(String(16), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    resolution_action: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    resolution_data: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    related_entity_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    related_entity_type: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    dedup_key: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    insight_metadata: Mapped[Optional[dict]] = mapped_column("metadata", JSON, nullable=True)
    is_resolved: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True, default=False)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    dismissed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    viewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_proactive_insights_user_expires", "user_id", "expires_at"),
        Index("ix_proactive_insights_user_dedup", "user_id", "dedup_key"),
    )


class ObserverRun(Base):
    __tablename__ = "observer_runs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=uuid_str)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    finished_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    result_json: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    __table_args__ = (
        Index("ix_observer_runs_finished_at", "finished_at"),
    )
