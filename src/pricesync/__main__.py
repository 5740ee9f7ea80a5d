"""
Main entrypoint: one synchronization run per invocation.

Meant to be fired by an external scheduler (cron, systemd timer, the store's
job scheduler). There is no long-lived process here.

Usage:
    python -m pricesync init-db                  # create tables
    python -m pricesync run                      # scheduled run over due integrations
    python -m pricesync run --trigger file.json  # run an explicit trigger payload
    uvicorn pricesync.api.main:app --host 0.0.0.0 --port 8000  # HTTP trigger
"""
import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Optional

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(name)s %(levelname)s %(message)s",
)
logger = logging.getLogger(__name__)


def _init_db() -> None:
    from pricesync.db.engine import get_engine
    get_engine()  # creates missing tables
    logger.info("Database ready.")


async def _run(trigger_path: Optional[Path]) -> int:
    import httpx

    from pricesync.config import get_settings
    from pricesync.db.engine import get_engine
    from pricesync.errors import InvocationError
    from pricesync.sync.dispatcher import build_dispatcher
    from pricesync.sync.schemas import SyncTrigger
    from pricesync.sync.trigger import build_scheduled_trigger

    settings = get_settings()
    engine = get_engine()

    try:
        async with httpx.AsyncClient(timeout=settings.http_timeout_seconds) as http:
            dispatcher = build_dispatcher(engine, http, settings)
            if trigger_path:
                try:
                    trigger = SyncTrigger.model_validate_json(trigger_path.read_text())
                except ValueError as exc:
                    raise InvocationError(f"Malformed trigger payload: {exc}") from exc
            else:
                trigger = build_scheduled_trigger(
                    engine, dispatcher.tracker, dispatcher.stale_after
                )
                if not trigger.properties:
                    logger.info("Nothing to sync.")
                    return 0
            summary = await dispatcher.run_trigger(trigger)
    except InvocationError as exc:
        logger.error("Sync invocation failed: %s", exc)
        return 1

    print(json.dumps(summary.model_dump(mode="json"), indent=2))
    return 0


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(prog="pricesync")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("init-db", help="create database tables")
    run = sub.add_parser("run", help="run one synchronization")
    run.add_argument("--trigger", type=Path, help="JSON trigger payload file")
    args = parser.parse_args(argv)

    if args.command == "init-db":
        _init_db()
        return 0
    return asyncio.run(_run(args.trigger))


if __name__ == "__main__":
    sys.exit(main())
