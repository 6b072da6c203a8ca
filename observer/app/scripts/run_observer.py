from __future__ import annotations

import argparse
import json
import logging
import sys

from observer.app.config import load_settings
from observer.app.db import SessionLocal
from observer.app.services.observer_run_service import ObserverError, ObserverJobRunner


def main() -> int:
    parser = argparse.ArgumentParser(description="Run the proactive insight observer once.")
    parser.add_argument("--details", action="store_true", help="Include per-user results in the output.")
    parser.add_argument("--verbose", action="store_true", help="Log detector decisions.")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    runner = ObserverJobRunner(load_settings(), SessionLocal)
    try:
        result = runner.run()
    except ObserverError as exc:
        print(json.dumps({"error": str(exc)}))
        return 1

    print(json.dumps(result.as_response(include_users=args.details), indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
