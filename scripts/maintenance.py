"""Operational commands for the credential store.

The tool offers two commands:

1. ``check`` instantiates ``AppSettings`` from the environment (and ``.env``),
   surfacing missing or malformed configuration before the service starts.
2. ``purge`` deletes expired refresh token rows and expired API keys. Run it
   periodically from cron or a systemd timer.

Example usages::

    python -m scripts.maintenance check
    python -m scripts.maintenance purge --db-path /var/lib/credvault/credvault.db
"""

from __future__ import annotations

import argparse
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable

from pydantic import ValidationError

from credvault.clients.sqlite_store import SQLiteCredentialStore
from credvault.core.config import AppSettings

EXIT_OK = 0
EXIT_VALIDATION_ERROR = 2
EXIT_RUNTIME_ERROR = 5


def _load_settings() -> AppSettings:
    return AppSettings()  # type: ignore[call-arg]


def _check() -> int:
    settings = _load_settings()
    oidc = "configured" if settings.oidc.is_configured else "not configured"
    print(f"Environment: {settings.environment}")
    print(f"Database: {settings.database_path}")
    print(f"OIDC provider: {oidc}")
    print("Settings OK.")
    return EXIT_OK


def _purge(db_path: Path | None) -> int:
    path = db_path if db_path is not None else Path(_load_settings().database_path)
    if not path.exists():
        print(f"Database {path} does not exist.", file=sys.stderr)
        return EXIT_RUNTIME_ERROR

    store = SQLiteCredentialStore(str(path))
    now = datetime.now(timezone.utc)
    sessions = store.purge_expired_refresh_tokens(now)
    keys = store.purge_expired_api_keys(now)
    print(f"Removed {sessions} expired refresh token(s) and {keys} expired API key(s).")
    return EXIT_OK


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Validate settings and clean up expired credentials."
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("check", help="Validate settings without touching the database.")

    purge_parser = subparsers.add_parser(
        "purge", help="Delete expired refresh tokens and API keys."
    )
    purge_parser.add_argument(
        "--db-path",
        type=Path,
        default=None,
        help="SQLite database to clean (default: CREDVAULT_DB_PATH from settings).",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    handlers: dict[str, Callable[[], int]] = {
        "check": _check,
        "purge": lambda: _purge(args.db_path),
    }
    try:
        return handlers[args.command]()
    except ValidationError as exc:
        print(
            "Settings validation failed. Missing or invalid values detected:\n"
            f"{exc.json(indent=2)}",
            file=sys.stderr,
        )
        return EXIT_VALIDATION_ERROR


if __name__ == "__main__":  # pragma: no cover - script entry point
    sys.exit(main())
