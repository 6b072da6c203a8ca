from __future__ import annotations

import hashlib
from datetime import datetime, timedelta
from typing import Iterable, List, Sequence, Set

from sqlalchemy import select
from sqlalchemy.orm import Session

from observer.app.insights.schema import InsightCandidate
from observer.app.models import ProactiveInsight


def dedup_key(user_id: str, candidate: InsightCandidate) -> str:
    parts: Iterable[object] = (user_id, candidate.insight_type, candidate.related_entity_id or "")
    raw = "|".join(str(p) for p in parts)
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def insight_expiry(now: datetime, ttl_days: int = 7) -> datetime:
    return now + timedelta(days=ttl_days)


def _active_dedup_keys(db: Session, user_id: str, keys: Sequence[str], now: datetime) -> Set[str]:
    """Keys of unexpired, unresolved insights.

    A dismissed insight keeps suppressing until it expires. A resolved one does
    not, so a condition that comes back after the user acted is reported again.
    """
    if not keys:
        return set()
    rows = db.execute(
        select(ProactiveInsight.dedup_key).where(
            ProactiveInsight.user_id == user_id,
            ProactiveInsight.dedup_key.in_(keys),
            ProactiveInsight.expires_at > now,
            ProactiveInsight.is_resolved.is_not(True),
        )
    ).scalars()
    return {key for key in rows if key}


def persist_insights(
    db: Session,
    user_id: str,
    candidates: Sequence[InsightCandidate],
    *,
    now: datetime,
    ttl_days: int = 7,
    dedupe_active: bool = True,
) -> int:
    """Insert the user's new insights as one all-or-nothing batch.

    Rows are only flushed; the caller commits, or rolls back the whole
    session on failure.
    Returns the number of rows inserted.
    """
    if not candidates:
        return 0

    keyed = [(dedup_key(user_id, candidate), candidate) for candidate in candidates]
    skip: Set[str] = set()
    if dedupe_active:
        skip = _active_dedup_keys(db, user_id, [key for key, _ in keyed], now)

    expires_at = insight_expiry(now, ttl_days)
    rows: List[ProactiveInsight] = []
    for key, candidate in keyed:
        if key in skip:
            continue
        if dedupe_active:
            skip.add(key)
        rows.append(
            ProactiveInsight(
                user_id=user_id,
                dedup_key=key,
                created_at=now,
                expires_at=expires_at,
                **candidate.to_row(),
            )
        )

    if not rows:
        return 0

    db.add_all(rows)
    db.flush()
    return len(rows)
