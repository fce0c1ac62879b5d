# start_app.py
"""Launch the API server or run one of the scheduled maintenance sweeps."""

from __future__ import annotations

import argparse
import logging
import os
import sys

import uvicorn
from dotenv import load_dotenv

import config


def _sweep(command: str, days: int | None) -> int:
    from wawa.app import db
    from wawa.app.core import build_core
    from wawa.app.errors import CoreError
    from wawa.app.obs.logging import configure_logging

    configure_logging(config.get_settings().log_level.upper())
    session_factory, _ = db.init_db()
    core = build_core(session_factory)
    try:
        if command == "expire-rewards":
            count = core.rewards.expire_due_rewards()
        else:
            count = core.audit.purge_old_logs(days)
    except CoreError as exc:
        logging.getLogger("wawa").error("%s failed: %s", command, exc.message)
        return 1
    print(f"{command}: {count}")
    return 0


def main(argv: list[str] | None = None) -> None:
    """Load settings, then serve the API or run a sweep and exit."""

    parser = argparse.ArgumentParser()
    parser.add_argument(
        "command",
        nargs="?",
        default="serve",
        choices=["serve", "expire-rewards", "purge-audit"],
    )
    parser.add_argument(
        "--days",
        type=int,
        default=None,
        help="Audit retention for purge-audit (defaults to AUDIT_RETENTION_DAYS)",
    )
    args = parser.parse_args(argv)

    load_dotenv()  # load environment variables from a .env file
    config.get_settings.cache_clear()
    config.get_settings()  # fail fast on invalid settings

    if args.command != "serve":
        raise SystemExit(_sweep(args.command, args.days))

    try:
        uvicorn.run(
            "wawa.app.main:app",
            host="0.0.0.0",  # nosec B104: bind for local development
            port=int(os.getenv("PORT", "8000")),
            log_level="info",
        )
    except ModuleNotFoundError as exc:
        missing = exc.name or str(exc)
        print(
            f"Missing dependency: {missing}. Install it with 'pip install {missing}'",
            file=sys.stderr,
        )
        raise SystemExit(1)


if __name__ == "__main__":
    main()
