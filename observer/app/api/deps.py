# observer/app/api/deps.py
from __future__ import annotations

from functools import lru_cache

from fastapi import Depends
from sqlalchemy.orm import sessionmaker

from observer.app.config import ObserverSettings, load_settings
from observer.app.db import get_session_factory
from observer.app.services.observer_run_service import ObserverJobRunner


@lru_cache(maxsize=1)
def get_settings() -> ObserverSettings:
    return load_settings()


def get_job_runner(
    settings: ObserverSettings = Depends(get_settings),
    session_factory: sessionmaker = Depends(get_session_factory),
) -> ObserverJobRunner:
    """
    Composition root for the observer job.

    Tests override get_settings / get_session_factory through
    app.dependency_overrides instead of touching the environment.
    """
    return ObserverJobRunner(settings, session_factory)
