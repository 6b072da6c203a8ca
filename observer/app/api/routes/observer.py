from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session

from observer.app.api.deps import get_job_runner
from observer.app.db import get_db
from observer.app.services import observer_run_service
from observer.app.services.observer_run_service import ObserverError, ObserverJobRunner

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/observer-cron", tags=["observer"])

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
}


class RunSummaryOut(BaseModel):
    users_processed: int
    successful: int
    errors: int
    total_insights: int
    duration_ms: int


class LastRunOut(BaseModel):
    id: str
    started_at: datetime
    finished_at: datetime
    result_summary: RunSummaryOut


def _failure(message: str, started: float) -> JSONResponse:
    return JSONResponse(
        status_code=500,
        content={"error": message, "duration_ms": int((time.monotonic() - started) * 1000)},
        headers=CORS_HEADERS,
    )


@router.api_route("", methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"])
def run_observer(
    request: Request,
    details: bool = Query(False),
    authorization: Optional[str] = Header(None),
    runner: ObserverJobRunner = Depends(get_job_runner),
):
    if request.method == "OPTIONS":
        return Response(status_code=200, headers=CORS_HEADERS)

    started = time.monotonic()
    try:
        runner.authorize(authorization)
        result = runner.run()
    except ObserverError as exc:
        logger.error("Observer run aborted: %s", exc)
        return _failure(str(exc), started)
    except Exception as exc:
        logger.exception("Observer run failed")
        return _failure(str(exc) or "Unknown error", started)

    return JSONResponse(content=result.as_response(include_users=details), headers=CORS_HEADERS)


@router.get("/last-run", response_model=Optional[LastRunOut])
def get_last_run(
    authorization: Optional[str] = Header(None),
    runner: ObserverJobRunner = Depends(get_job_runner),
    db: Session = Depends(get_db),
):
    started = time.monotonic()
    try:
        runner.authorize(authorization)
    except ObserverError as exc:
        return _failure(str(exc), started)
    return observer_run_service.get_last_run(db)
