"""Command-line entry point: serve the API and bootstrap the database."""

from __future__ import annotations

import argparse
import os
from typing import Callable, List, Optional

import structlog

from .admin import provision_user
from .config import CollabSettings
from .errors import CollabError
from .logging_setup import configure_logging
from .service import CollabDatabase, init_engine

__all__ = ["build_parser", "main"]

logger = structlog.get_logger(__name__)

CommandHandler = Callable[[argparse.Namespace, CollabSettings], int]


def _database(settings: CollabSettings) -> CollabDatabase:
    database = CollabDatabase(init_engine(settings))
    database.create_all()
    return database


def run_serve(args: argparse.Namespace, settings: CollabSettings) -> int:
    import uvicorn

    from .api import create_app

    app = create_app(settings)
    logger.info("api_starting", host=args.host, port=args.port)
    uvicorn.run(app, host=args.host, port=args.port, log_level=settings.log_level.lower())
    return 0


def run_init_db(args: argparse.Namespace, settings: CollabSettings) -> int:
    _database(settings)
    logger.info("schema_created", database_url=settings.database_url.split("@")[-1])
    return 0


def run_create_user(args: argparse.Namespace, settings: CollabSettings) -> int:
    database = _database(settings)
    with database.session() as session:
        try:
            user, created = provision_user(
                session,
                email=args.email,
                username=args.username,
                fullname=args.fullname,
                super_admin=args.super_admin,
                verified=args.verified or args.super_admin,
            )
        except CollabError as exc:
            logger.error("user_provision_failed", email=args.email, error=exc.message)
            return 1
    print(f"{'created' if created else 'updated'} {user.email} ({user.id})")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="collabhub",
        description="Project collaboration backend.",
    )
    parser.add_argument(
        "--log-level",
        default=os.getenv("COLLAB_LOG_LEVEL", "INFO"),
        help="Logging level (CRITICAL, ERROR, WARNING, INFO, DEBUG). Default: INFO",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Start the API server")
    serve.add_argument("--host", default="127.0.0.1", help="Host to bind (default: 127.0.0.1)")
    serve.add_argument("--port", type=int, default=8083, help="Port to bind (default: 8083)")
    serve.set_defaults(handler=run_serve)

    init_db = subparsers.add_parser("init-db", help="Create database tables")
    init_db.set_defaults(handler=run_init_db)

    create_user = subparsers.add_parser(
        "create-user",
        help="Create or update a user (e.g. seed the super admin)",
    )
    create_user.add_argument("--email", required=True)
    create_user.add_argument("--username", required=True)
    create_user.add_argument("--fullname")
    create_user.add_argument(
        "--super-admin",
        dest="super_admin",
        action="store_true",
        help="Grant super admin rights (implies --verified)",
    )
    create_user.add_argument("--verified", action="store_true", help="Mark the email as verified")
    create_user.set_defaults(handler=run_create_user)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    settings = CollabSettings.from_env()
    settings.log_level = str(args.log_level).upper()
    configure_logging(settings.log_level, json_logs=settings.log_json)

    handler: CommandHandler = getattr(args, "handler", None)
    if not callable(handler):
        parser.error("Command handler missing")
    return handler(args, settings)


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
