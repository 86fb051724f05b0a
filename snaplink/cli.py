"""Maintenance commands, meant for cron jobs and one-off admin chores.

    snaplink init-db
    snaplink cleanup-expired
    snaplink set-admin someone@example.com [--revoke]
    snaplink ban-ip 203.0.113.9 --reason "signup spam"
"""
import argparse
import logging
import os
import sys

from sqlalchemy.exc import SQLAlchemyError

from snaplink import crud, database

logger = logging.getLogger("snaplink.cli")


def cleanup_expired(db) -> int:
    links = crud.delete_expired_links(db)
    for link in links:
        logger.info("Removed %s (expired %s)", link.short_code, link.expires_at)
    if not links:
        logger.info("No expired URLs to clean up")
    return len(links)


def _run(args, db) -> int:
    if args.command == "cleanup-expired":
        count = cleanup_expired(db)
        logger.info("Cleanup complete. Removed %d expired URL(s).", count)
        return 0
    if args.command == "set-admin":
        user = crud.set_admin(db, args.email.strip().lower(), not args.revoke)
        if not user:
            logger.error("User %s not found", args.email)
            return 1
        logger.info("User %s is_admin=%s", user.email, user.is_admin)
        return 0
    if args.command == "ban-ip":
        crud.ban_ip(db, args.ip, reason=args.reason)
        logger.info("Banned %s", args.ip)
        return 0
    return 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="snaplink", description="SnapLink maintenance commands")
    parser.add_argument("--database-url", help="defaults to DATABASE_URL / the dev SQLite file")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("init-db", help="create missing tables")
    sub.add_parser("cleanup-expired", help="delete expired links and their clicks")
    set_admin = sub.add_parser("set-admin", help="grant (or revoke) the admin flag")
    set_admin.add_argument("email")
    set_admin.add_argument("--revoke", action="store_true")
    ban = sub.add_parser("ban-ip", help="block signups from an IP address")
    ban.add_argument("ip")
    ban.add_argument("--reason")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s  %(levelname)-8s  %(name)s  %(message)s",
    )
    try:
        engine = database.build_engine(args.database_url)
        database.init_db(engine)
        if args.command == "init-db":
            logger.info("Database initialized")
            return 0
        db = database.make_session_factory(engine)()
        try:
            return _run(args, db)
        finally:
            db.close()
    except (SQLAlchemyError, RuntimeError):
        logger.exception("%s failed", args.command)
        return 1


if __name__ == "__main__":
    sys.exit(main())
