from __future__ import annotations

import argparse
import os
import sys
from datetime import date, timedelta
from decimal import Decimal
from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import MetaData, create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import sessionmaker


ALEMBIC_INI = Path(__file__).resolve().parents[2] / "alembic.ini"


def _resolve_url(cli_url: str | None) -> str:
    url = cli_url or os.getenv("DATABASE_URL") or os.getenv("SQLALCHEMY_DATABASE_URL")
    if url:
        return url
    url = Config(str(ALEMBIC_INI)).get_main_option("sqlalchemy.url")
    if not url:
        raise RuntimeError("No DATABASE_URL or sqlalchemy.url configured.")
    return url


def _drop_everything(database_url: str) -> int:
    """Drop every table in the target schema, alembic_version included."""
    engine = create_engine(database_url, future=True)
    try:
        existing = MetaData()
        existing.reflect(bind=engine)
        existing.drop_all(bind=engine)
        return len(existing.tables)
    finally:
        engine.dispose()


def _migrate(database_url: str) -> None:
    config = Config(str(ALEMBIC_INI))
    config.set_main_option("sqlalchemy.url", database_url)
    command.upgrade(config, "head")


def _seed_demo_user(database_url: str) -> str:
    """One user whose data trips every detector on the next observer run."""
    os.environ.setdefault("DATABASE_URL", database_url)
    from observer.app.models import BudgetSpending, DetectedSubscription, Transaction, User, UserBudget

    engine = create_engine(database_url, future=True)
    Session = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    session = Session()
    try:
        user = User(email="demo@example.com")
        session.add(user)
        session.flush()

        session.add(
            DetectedSubscription(
                user_id=user.id,
                merchant="StreamFlix",
                amount=Decimal("15.49"),
                last_charge_amount=Decimal("19.99"),
                confirmed=True,
            )
        )

        today = date.today()
        for i in range(7):
            session.add(Transaction(user_id=user.id, amount=Decimal("-180.00"), merchant="Electronics Hub", transaction_date=today - timedelta(days=i)))
        for i in range(12):
            session.add(Transaction(user_id=user.id, amount=Decimal("-5.75"), merchant="Corner Coffee Co", transaction_date=today - timedelta(days=8 + i)))

        budget = UserBudget(user_id=user.id, category="Dining", amount=Decimal("400.00"), is_active=True)
        session.add(budget)
        session.flush()
        session.add(BudgetSpending(budget_id=budget.id, spent_amount=Decimal("376.20")))
        session.commit()
        return user.id
    finally:
        session.close()
        engine.dispose()


def main() -> int:
    parser = argparse.ArgumentParser(description="Drop the observer schema, migrate to head and optionally seed it.")
    parser.add_argument("--url", help="Override the database URL.")
    parser.add_argument("--yes", action="store_true", help="Confirm the destructive reset.")
    parser.add_argument("--seed", action="store_true", help="Add a demo user that every detector fires on.")
    args = parser.parse_args()

    if not args.yes:
        print("Refusing to drop tables without --yes.")
        return 1

    database_url = _resolve_url(args.url)
    dropped = _drop_everything(database_url)
    _migrate(database_url)
    print(f"Dropped {dropped} tables and migrated to head.")

    if args.seed:
        user_id = _seed_demo_user(database_url)
        print(f"Seeded demo user {user_id}.")

    print(f"Database URL: {make_url(database_url).render_as_string(hide_password=True)}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
