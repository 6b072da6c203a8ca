from __future__ import annotations

from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Iterator, List

from sqlalchemy import select
from sqlalchemy.orm import Session

from observer.app.insights.schema import BudgetRecord, SubscriptionRecord, TransactionRecord
from observer.app.models import BudgetSpending, DetectedSubscription, Transaction, User, UserBudget


def _to_float(value) -> float:
    return float(value) if value is not None else 0.0


def _to_decimal(value) -> Decimal:
    if value is None:
        return Decimal("0")
    return value if isinstance(value, Decimal) else Decimal(str(value))


def iter_user_ids(db: Session, *, page_size: int = 500) -> Iterator[str]:
    """Yield every user id, one page at a time, ordered by signup time."""
    last_created_at = None
    last_id = None
    while True:
        stmt = select(User.id, User.created_at).order_by(User.created_at.asc(), User.id.asc()).limit(page_size)
        if last_id is not None:
            stmt = stmt.where(
                (User.created_at > last_created_at)
                | ((User.created_at == last_created_at) & (User.id > last_id))
            )
        rows = db.execute(stmt).all()
        for user_id, _ in rows:
            yield user_id
        if len(rows) < page_size:
            return
        last_id, last_created_at = rows[-1][0], rows[-1][1]


def list_user_ids(db: Session, *, page_size: int = 500) -> List[str]:
    return list(iter_user_ids(db, page_size=page_size))


def fetch_confirmed_subscriptions(db: Session, user_id: str) -> List[SubscriptionRecord]:
    rows = (
        db.execute(
            select(DetectedSubscription)
            .where(DetectedSubscription.user_id == user_id, DetectedSubscription.confirmed.is_(True))
            .order_by(DetectedSubscription.created_at.asc(), DetectedSubscription.id.asc())
        )
        .scalars()
        .all()
    )
    return [
        SubscriptionRecord(
            id=row.id,
            merchant=row.merchant,
            amount=_to_float(row.amount),
            last_charge_amount=float(row.last_charge_amount) if row.last_charge_amount is not None else None,
        )
        for row in rows
    ]


def trailing_window_start(now: datetime, lookback_days: int) -> date:
    """First calendar day of the window; the whole day is included."""
    return (now - timedelta(days=lookback_days)).date()


def fetch_recent_transactions(
    db: Session,
    user_id: str,
    *,
    now: datetime,
    lookback_days: int = 30,
) -> List[TransactionRecord]:
    """Transactions inside the trailing window, newest first."""
    since = trailing_window_start(now, lookback_days)
    rows = (
        db.execute(
            select(Transaction)
            .where(Transaction.user_id == user_id, Transaction.transaction_date >= since)
            .order_by(Transaction.transaction_date.desc(), Transaction.created_at.desc(), Transaction.id.desc())
        )
        .scalars()
        .all()
    )
    return [
        TransactionRecord(
            id=row.id,
            amount=_to_float(row.amount),
            merchant=row.merchant,
            transaction_date=row.transaction_date,
        )
        for row in rows
    ]


def fetch_active_budgets(db: Session, user_id: str) -> List[BudgetRecord]:
    """Active budgets that have a spending row; the latest spending row wins."""
    rows = db.execute(
        select(UserBudget, BudgetSpending)
        .join(BudgetSpending, BudgetSpending.budget_id == UserBudget.id)
        .where(UserBudget.user_id == user_id, UserBudget.is_active.is_(True))
        .order_by(UserBudget.created_at.asc(), UserBudget.id.asc(), BudgetSpending.updated_at.desc())
    ).all()

    budgets: List[BudgetRecord] = []
    seen: set[str] = set()
    for budget, spending in rows:
        if budget.id in seen:
            continue
        seen.add(budget.id)
        budgets.append(
            BudgetRecord(
                id=budget.id,
                category=budget.category,
                limit=_to_decimal(budget.amount),
                spent=_to_decimal(spending.spent_amount),
            )
        )
    return budgets
