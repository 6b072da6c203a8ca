from __future__ import annotations

import hmac
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from observer.app.config import ObserverSettings
from observer.app.models import ObserverRun
from observer.app.services import insight_query_service, insight_sink_service
from observer.app.services.insight_analyzer_service import AnalysisResult, analyze_user


logger = logging.getLogger(__name__)


class ObserverError(Exception):
    """A failure that aborts the whole run."""


class ObserverAuthError(ObserverError):
    pass


class UserEnumerationError(ObserverError):
    pass


class UserTimeoutError(Exception):
    pass


class _UserDeadline:
    """Settles whether a user's work commits or times out, whichever comes first."""

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.abandoned = False
        self.committed = False


@dataclass(frozen=True)
class UserRunResult:
    user_id: str
    ok: bool
    insights: int = 0
    error: Optional[str] = None


@dataclass(frozen=True)
class ObserverRunResult:
    users_processed: int
    successful: int
    errors: int
    total_insights: int
    duration_ms: int
    started_at: str
    finished_at: str
    user_results: List[UserRunResult] = field(default_factory=list)

    def as_response(self, *, include_users: bool = False) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "success": True,
            "users_processed": self.users_processed,
            "successful": self.successful,
            "errors": self.errors,
            "total_insights": self.total_insights,
            "duration_ms": self.duration_ms,
        }
        if include_users:
            payload["users"] = [asdict(row) for row in self.user_results]
        return payload


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def verify_service_credential(authorization: Optional[str], service_role_key: Optional[str]) -> None:
    if not service_role_key:
        raise ObserverAuthError("Service role key is not configured")
    token = bearer_token(authorization)
    if token is None or not hmac.compare_digest(token.encode("utf-8"), service_role_key.encode("utf-8")):
        raise ObserverAuthError("Unauthorized - requires service role key")


class ObserverJobRunner:
    """Scans every user for proactive insights and stores what it finds.

    Users are processed one at a time in enumeration order. Each user gets a
    fresh session and a worker thread bounded by ``user_timeout_seconds``; an
    exception or timeout for one user is counted and the run moves on.
    """

    def __init__(
        self,
        settings: ObserverSettings,
        session_factory: sessionmaker,
        *,
        analyzer: Callable[..., AnalysisResult] = analyze_user,
        clock: Callable[[], datetime] = _now_utc,
    ) -> None:
        self._settings = settings
        self._session_factory = session_factory
        self._analyzer = analyzer
        self._clock = clock

    def authorize(self, authorization: Optional[str]) -> None:
        try:
            verify_service_credential(authorization, self._settings.service_role_key)
        except ObserverAuthError:
            logger.warning("Unauthorized observer run attempt")
            raise

    def run(self, now: Optional[datetime] = None) -> ObserverRunResult:
        started = time.monotonic()
        started_at = self._clock()
        logger.info("Starting observer run")

        user_ids = self._enumerate_users()
        logger.info("Processing %d users", len(user_ids))

        user_results: List[UserRunResult] = []
        for user_id in user_ids:
            user_results.append(self._run_user(user_id, now or self._clock()))

        successful = sum(1 for row in user_results if row.ok)
        result = ObserverRunResult(
            users_processed=len(user_ids),
            successful=successful,
            errors=len(user_results) - successful,
            total_insights=sum(row.insights for row in user_results),
            duration_ms=_elapsed_ms(started),
            started_at=started_at.isoformat(),
            finished_at=self._clock().isoformat(),
            user_results=user_results,
        )
        logger.info(
            "Observer run completed in %dms - %d successful, %d errors, %d total insights",
            result.duration_ms,
            result.successful,
            result.errors,
            result.total_insights,
        )
        self._record_run(result)
        return result

    def _enumerate_users(self) -> List[str]:
        db = self._session_factory()
        try:
            return insight_query_service.list_user_ids(db, page_size=self._settings.user_page_size)
        except SQLAlchemyError as exc:
            logger.error("Failed to list users: %s", exc)
            raise UserEnumerationError(f"Failed to list users: {exc}") from exc
        finally:
            db.close()

    def _run_user(self, user_id: str, now: datetime) -> UserRunResult:
        logger.info("Analyzing user_id=%s", user_id)
        deadline = _UserDeadline()
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="observer-user")
        try:
            future = executor.submit(self._process_user, user_id, now, deadline)
            try:
                inserted = future.result(timeout=self._settings.user_timeout_seconds)
            except FutureTimeoutError:
                with deadline.lock:
                    late_commit = deadline.committed
                    deadline.abandoned = not late_commit
                if not late_commit:
                    message = f"timed out after {self._settings.user_timeout_seconds}s"
                    logger.error("Error processing user_id=%s: %s", user_id, message)
                    return UserRunResult(user_id=user_id, ok=False, error=message)
                # the commit landed before the deadline was settled
                inserted = future.result()
        except Exception as exc:
            logger.exception("Error processing user_id=%s", user_id)
            return UserRunResult(user_id=user_id, ok=False, error=str(exc) or exc.__class__.__name__)
        finally:
            # a timed-out worker is abandoned, never joined
            executor.shutdown(wait=False)

        if inserted:
            logger.info("Inserted %d insights for user_id=%s", inserted, user_id)
        else:
            logger.info("No new insights for user_id=%s", user_id)
        return UserRunResult(user_id=user_id, ok=True, insights=inserted)

    def _process_user(self, user_id: str, now: datetime, deadline: _UserDeadline) -> int:
        db: Session = self._session_factory()
        try:
            analysis = self._analyzer(db, user_id, now=now, lookback_days=self._settings.lookback_days)
            if not analysis.candidates:
                return 0
            if deadline.abandoned:
                raise UserTimeoutError(f"user {user_id} was abandoned before persisting")

            inserted = insight_sink_service.persist_insights(
                db,
                user_id,
                analysis.candidates,
                now=now,
                ttl_days=self._settings.insight_ttl_days,
                dedupe_active=self._settings.dedupe_active_insights,
            )
            with deadline.lock:
                if deadline.abandoned:
                    raise UserTimeoutError(f"user {user_id} was abandoned before commit")
                db.commit()
                deadline.committed = True
            return inserted
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def _record_run(self, result: ObserverRunResult) -> None:
        db = self._session_factory()
        try:
            db.add(
                ObserverRun(
                    started_at=datetime.fromisoformat(result.started_at),
                    finished_at=datetime.fromisoformat(result.finished_at),
                    result_json=result.as_response(include_users=True),
                )
            )
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Failed to record observer run summary")
        finally:
            db.close()


def get_last_run(db: Session) -> Optional[Dict[str, Any]]:
    row = (
        db.execute(select(ObserverRun).order_by(ObserverRun.finished_at.desc(), ObserverRun.id.desc()))
        .scalars()
        .first()
    )
    if not row:
        return None
    result = row.result_json or {}
    return {
        "id": row.id,
        "started_at": row.started_at,
        "finished_at": row.finished_at,
        "result_summary": {
            "users_processed": result.get("users_processed", 0),
            "successful": result.get("successful", 0),
            "errors": result.get("errors", 0),
            "total_insights": result.get("total_insights", 0),
            "duration_ms": result.get("duration_ms", 0),
        },
    }
