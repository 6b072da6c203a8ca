from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from observer.app.insights.detectors import run_detectors_with_summary
from observer.app.insights.schema import DetectorRunResult, InsightCandidate
from observer.app.services import insight_query_service


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AnalysisResult:
    user_id: str
    candidates: List[InsightCandidate]
    detectors: List[DetectorRunResult]


def _fetch_or_none(
    db: Session,
    user_id: str,
    source: str,
    fetch: Callable[[], Sequence],
) -> Optional[Sequence]:
    try:
        return fetch()
    except SQLAlchemyError:
        logger.warning("Query for %s failed for user_id=%s; dependent detectors skipped", source, user_id, exc_info=True)
        # the failed statement leaves the transaction unusable for the next query
        db.rollback()
        return None


def analyze_user(
    db: Session,
    user_id: str,
    *,
    now: datetime,
    lookback_days: int = 30,
) -> AnalysisResult:
    inputs: Dict[str, Optional[Sequence]] = {
        "subscriptions": _fetch_or_none(
            db, user_id, "subscriptions",
            lambda: insight_query_service.fetch_confirmed_subscriptions(db, user_id),
        ),
        "transactions": _fetch_or_none(
            db, user_id, "transactions",
            lambda: insight_query_service.fetch_recent_transactions(
                db, user_id, now=now, lookback_days=lookback_days
            ),
        ),
        "budgets": _fetch_or_none(
            db, user_id, "budgets",
            lambda: insight_query_service.fetch_active_budgets(db, user_id),
        ),
    }

    summary = run_detectors_with_summary(inputs)
    for row in summary.detectors:
        if row.fired:
            logger.debug("user_id=%s %s fired %d insight(s)", user_id, row.detector_id, row.count)
        elif not row.ran:
            logger.debug("user_id=%s %s skipped: %s", user_id, row.detector_id, row.skipped_reason)

    logger.info("Completed analysis for user_id=%s: %d insights found", user_id, len(summary.candidates))
    return AnalysisResult(user_id=user_id, candidates=summary.candidates, detectors=summary.detectors)
