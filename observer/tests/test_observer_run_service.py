import threading
import time
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker

from observer.app.db import SessionLocal
from observer.app.insights.schema import InsightCandidate, ReviewTransactionsData
from observer.app.models import (
    BudgetSpending,
    DetectedSubscription,
    ObserverRun,
    ProactiveInsight,
    Transaction,
    User,
    UserBudget,
)
from observer.app.services import insight_query_service, observer_run_service
from observer.app.services.insight_analyzer_service import AnalysisResult, analyze_user
from observer.app.services.observer_run_service import (
    ObserverAuthError,
    ObserverJobRunner,
    UserEnumerationError,
    verify_service_credential,
)


NOW = datetime(2026, 3, 31, 12, 0, tzinfo=timezone.utc)


def _seed_user(db, email: str, offset_minutes: int) -> User:
    user = User(email=email, created_at=NOW - timedelta(days=90) + timedelta(minutes=offset_minutes))
    db.add(user)
    db.flush()
    return user


def _seed_price_hike(db, user_id: str, merchant: str = "StreamFlix") -> DetectedSubscription:
    sub = DetectedSubscription(
        user_id=user_id,
        merchant=merchant,
        amount=Decimal("10.00"),
        last_charge_amount=Decimal("11.50"),
        confirmed=True,
    )
    db.add(sub)
    db.flush()
    return sub


def _seed_everything(db, user_id: str) -> None:
    _seed_price_hike(db, user_id)
    today = NOW.date()
    for i in range(7):
        db.add(Transaction(user_id=user_id, amount=Decimal("-200.00"), merchant="Electronics", transaction_date=today - timedelta(days=i)))
    for i in range(11):
        db.add(Transaction(user_id=user_id, amount=Decimal("-4.50"), merchant="Daily Coffee", transaction_date=today - timedelta(days=8 + i)))
    budget = UserBudget(user_id=user_id, category="Dining", amount=Decimal("100.00"), is_active=True)
    db.add(budget)
    db.flush()
    db.add(BudgetSpending(budget_id=budget.id, spent_amount=Decimal("95.00")))


def _insights(db, user_id: str):
    db.expire_all()
    return db.execute(select(ProactiveInsight).where(ProactiveInsight.user_id == user_id)).scalars().all()


def test_run_writes_every_detector_insight_with_seven_day_expiry(sqlite_session, observer_settings):
    user = _seed_user(sqlite_session, "all@test.com", 0)
    _seed_everything(sqlite_session, user.id)
    sqlite_session.commit()

    result = ObserverJobRunner(observer_settings, SessionLocal).run(now=NOW)

    assert result.users_processed == 1
    assert result.successful == 1
    assert result.errors == 0
    assert result.total_insights == 4

    rows = _insights(sqlite_session, user.id)
    assert sorted(row.insight_type for row in rows) == [
        "budget_overrun",
        "savings_opportunity",
        "spending_spike",
        "subscription_price_hike",
    ]
    for row in rows:
        assert row.expires_at - row.created_at == timedelta(days=7)
        assert row.expires_at.replace(tzinfo=None) == (NOW + timedelta(days=7)).replace(tzinfo=None)
        assert row.dedup_key

    hike = next(row for row in rows if row.insight_type == "subscription_price_hike")
    assert hike.severity == "urgent"
    assert hike.resolution_action == "cancel_subscription"
    assert hike.resolution_data["merchant"] == "StreamFlix"
    assert hike.related_entity_type == "subscription"


def test_user_without_findings_counts_as_success(sqlite_session, observer_settings):
    _seed_user(sqlite_session, "quiet@test.com", 0)
    sqlite_session.commit()

    result = ObserverJobRunner(observer_settings, SessionLocal).run(now=NOW)

    assert (result.users_processed, result.successful, result.errors, result.total_insights) == (1, 1, 0, 0)


def test_failure_for_one_user_does_not_stop_the_others(sqlite_session, observer_settings):
    user_a = _seed_user(sqlite_session, "a@test.com", 0)
    user_b = _seed_user(sqlite_session, "b@test.com", 1)
    user_c = _seed_user(sqlite_session, "c@test.com", 2)
    for user in (user_a, user_b, user_c):
        _seed_price_hike(sqlite_session, user.id)
    sqlite_session.commit()

    seen = []

    def _flaky_analyzer(db, user_id, **kwargs):
        seen.append(user_id)
        if user_id == user_b.id:
            raise RuntimeError("detector blew up")
        return analyze_user(db, user_id, **kwargs)

    runner = ObserverJobRunner(observer_settings, SessionLocal, analyzer=_flaky_analyzer)
    result = runner.run(now=NOW)

    assert seen == [user_a.id, user_b.id, user_c.id]
    assert result.users_processed == 3
    assert result.successful == 2
    assert result.errors == 1
    assert result.total_insights == 2
    assert len(_insights(sqlite_session, user_a.id)) == 1
    assert _insights(sqlite_session, user_b.id) == []
    assert len(_insights(sqlite_session, user_c.id)) == 1

    failed = [row for row in result.user_results if not row.ok]
    assert [(row.user_id, row.error) for row in failed] == [(user_b.id, "detector blew up")]


def test_persistence_failure_rolls_back_the_whole_batch(sqlite_session, observer_settings, monkeypatch):
    user = _seed_user(sqlite_session, "sink@test.com", 0)
    _seed_everything(sqlite_session, user.id)
    sqlite_session.commit()

    def _broken_persist(db, user_id, candidates, **kwargs):
        db.add(ProactiveInsight(user_id=user_id, insight_type="spending_spike", severity="warning", title="t", message="m", expires_at=NOW))
        db.flush()
        raise OperationalError("INSERT", {}, Exception("disk full"))

    monkeypatch.setattr(observer_run_service.insight_sink_service, "persist_insights", _broken_persist)

    result = ObserverJobRunner(observer_settings, SessionLocal).run(now=NOW)

    assert result.errors == 1
    assert result.total_insights == 0
    assert _insights(sqlite_session, user.id) == []


def test_rerun_does_not_duplicate_active_insights(sqlite_session, observer_settings):
    user = _seed_user(sqlite_session, "dedupe@test.com", 0)
    _seed_price_hike(sqlite_session, user.id)
    sqlite_session.commit()
    runner = ObserverJobRunner(observer_settings, SessionLocal)

    first = runner.run(now=NOW)
    second = runner.run(now=NOW + timedelta(hours=1))
    after_expiry = runner.run(now=NOW + timedelta(days=8))

    assert first.total_insights == 1
    assert second.total_insights == 0
    assert second.successful == 1
    assert after_expiry.total_insights == 1
    assert len(_insights(sqlite_session, user.id)) == 2


def test_resolved_insight_no_longer_suppresses_a_rerun(sqlite_session, observer_settings):
    user = _seed_user(sqlite_session, "lifecycle@test.com", 0)
    _seed_price_hike(sqlite_session, user.id)
    sqlite_session.commit()
    runner = ObserverJobRunner(observer_settings, SessionLocal)

    runner.run(now=NOW)
    first = _insights(sqlite_session, user.id)[0]
    assert first.is_resolved is False
    first.dismissed_at = NOW + timedelta(minutes=5)
    sqlite_session.commit()

    dismissed_rerun = runner.run(now=NOW + timedelta(hours=1))
    assert dismissed_rerun.total_insights == 0

    first = _insights(sqlite_session, user.id)[0]
    first.is_resolved = True
    first.resolved_at = NOW + timedelta(hours=2)
    sqlite_session.commit()

    resolved_rerun = runner.run(now=NOW + timedelta(hours=3))
    assert resolved_rerun.total_insights == 1
    assert len(_insights(sqlite_session, user.id)) == 2


def test_rerun_duplicates_when_dedupe_disabled(sqlite_session, observer_settings):
    user = _seed_user(sqlite_session, "dupes@test.com", 0)
    _seed_price_hike(sqlite_session, user.id)
    sqlite_session.commit()
    runner = ObserverJobRunner(replace(observer_settings, dedupe_active_insights=False), SessionLocal)

    runner.run(now=NOW)
    runner.run(now=NOW + timedelta(hours=1))

    assert len(_insights(sqlite_session, user.id)) == 2


def test_slow_user_times_out_and_later_users_still_run(sqlite_session, observer_settings):
    slow = _seed_user(sqlite_session, "slow@test.com", 0)
    fast = _seed_user(sqlite_session, "fast@test.com", 1)
    _seed_price_hike(sqlite_session, fast.id)
    sqlite_session.commit()
    release = threading.Event()

    def _analyzer(db, user_id, **kwargs):
        if user_id == slow.id:
            release.wait(timeout=5)
            return AnalysisResult(
                user_id=user_id,
                candidates=[
                    InsightCandidate(
                        insight_type="spending_spike",
                        severity="warning",
                        title="late",
                        message="late",
                        resolution=ReviewTransactionsData(),
                    )
                ],
                detectors=[],
            )
        return analyze_user(db, user_id, **kwargs)

    runner = ObserverJobRunner(replace(observer_settings, user_timeout_seconds=0.2), SessionLocal, analyzer=_analyzer)
    try:
        result = runner.run(now=NOW)

        assert result.users_processed == 2
        assert result.errors == 1
        assert result.successful == 1
        timed_out = next(row for row in result.user_results if row.user_id == slow.id)
        assert "timed out" in timed_out.error
        assert len(_insights(sqlite_session, fast.id)) == 1
        assert _insights(sqlite_session, slow.id) == []
    finally:
        release.set()


class _SlowCommitSession(Session):
    def commit(self) -> None:
        time.sleep(1.5)
        super().commit()


def test_commit_that_finishes_past_the_deadline_is_reported_as_success(sqlite_session, sqlite_engine, observer_settings):
    user = _seed_user(sqlite_session, "slowcommit@test.com", 0)
    _seed_price_hike(sqlite_session, user.id)
    sqlite_session.commit()
    slow_factory = sessionmaker(bind=sqlite_engine, class_=_SlowCommitSession, autoflush=False, future=True)

    runner = ObserverJobRunner(replace(observer_settings, user_timeout_seconds=0.5), slow_factory)
    result = runner.run(now=NOW)

    row = result.user_results[0]
    assert row.ok is True
    assert row.insights == 1
    assert result.errors == 0
    assert len(_insights(sqlite_session, user.id)) == 1



def test_fetch_failure_skips_only_dependent_detectors(sqlite_session, observer_settings, monkeypatch):
    user = _seed_user(sqlite_session, "partial@test.com", 0)
    _seed_everything(sqlite_session, user.id)
    sqlite_session.commit()

    def _broken_fetch(*args, **kwargs):
        raise OperationalError("SELECT", {}, Exception("relation does not exist"))

    monkeypatch.setattr(insight_query_service, "fetch_recent_transactions", _broken_fetch)

    result = ObserverJobRunner(observer_settings, SessionLocal).run(now=NOW)

    assert result.successful == 1
    assert sorted(row.insight_type for row in _insights(sqlite_session, user.id)) == [
        "budget_overrun",
        "subscription_price_hike",
    ]


def test_enumeration_failure_is_fatal(sqlite_session, observer_settings, monkeypatch):
    def _broken_list(*args, **kwargs):
        raise OperationalError("SELECT", {}, Exception("connection refused"))

    monkeypatch.setattr(insight_query_service, "list_user_ids", _broken_list)

    with pytest.raises(UserEnumerationError):
        ObserverJobRunner(observer_settings, SessionLocal).run(now=NOW)
    assert sqlite_session.execute(select(ObserverRun)).scalars().all() == []


def test_run_summary_is_recorded(sqlite_session, observer_settings):
    user = _seed_user(sqlite_session, "history@test.com", 0)
    _seed_price_hike(sqlite_session, user.id)
    sqlite_session.commit()

    result = ObserverJobRunner(observer_settings, SessionLocal).run(now=NOW)
    last = observer_run_service.get_last_run(sqlite_session)

    assert last is not None
    assert last["result_summary"] == {
        "users_processed": 1,
        "successful": 1,
        "errors": 0,
        "total_insights": 1,
        "duration_ms": result.duration_ms,
    }


@pytest.mark.parametrize(
    "header",
    [
        None,
        "",
        "test-service-role-key",
        "Basic test-service-role-key",
        "Bearer wrong-key",
        "Bearer test-service-role-key-and-more",
        "Bearer prefix-test-service-role-key",
    ],
)
def test_service_credential_requires_exact_bearer_token(header):
    with pytest.raises(ObserverAuthError):
        verify_service_credential(header, "test-service-role-key")


def test_service_credential_accepts_exact_bearer_token():
    verify_service_credential("Bearer test-service-role-key", "test-service-role-key")
    verify_service_credential("bearer  test-service-role-key ", "test-service-role-key")


def test_missing_service_key_rejects_everything():
    with pytest.raises(ObserverAuthError):
        verify_service_credential("Bearer ", None)
