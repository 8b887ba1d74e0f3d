#!/usr/bin/env python3
"""
Billing admin -- operator commands for the billing API database.

Usage:
  python main.py init-db
  python main.py seed-roles
  python main.py create-admin --username admin --email admin@example.com
  python main.py sweep-sessions
  python main.py serve --host 0.0.0.0 --port 5001

Database connection settings come from the same environment variables (or
.env file) as the API: DATABASE_URL, or DB_HOST / DB_PORT / DB_USER /
DB_PASSWORD / DB_NAME.
"""

import argparse
import asyncio
import getpass
import sys
from typing import Optional

from auth.models import SUPER_ADMIN
from auth.sessions import SessionStore
from auth.store import RoleStore, UserStore
from auth.tokens import hash_password
from core.config import get_settings
from core.errors import AppError
from db.executor import Database


def _database() -> Database:
    settings = get_settings()
    return Database(
        settings.database_url,
        pool_size=settings.db_pool_size,
        pool_timeout=settings.db_pool_timeout,
        pool_recycle=settings.db_pool_recycle,
    )


async def init_db() -> None:
    """Create missing tables and seed the default roles."""
    db = _database()
    try:
        await db.create_schema()
        created = await RoleStore(db).ensure_default_roles()
        print(f"  Schema ready. {created} default role(s) created.")
    finally:
        await db.dispose()


async def seed_roles() -> None:
    db = _database()
    try:
        created = await RoleStore(db).ensure_default_roles()
        print(f"  {created} default role(s) created.")
    finally:
        await db.dispose()


async def create_admin(username: str, email: str, password: str) -> int:
    """Create a Super Admin account. Returns the new user id."""
    db = _database()
    try:
        roles = RoleStore(db)
        await roles.ensure_default_roles()
        role = await roles.get_by_name(SUPER_ADMIN)
        users = UserStore(db)
        conflict = await users.find_conflict(username, email)
        if conflict:
            raise AppError(f"A user with this {conflict} already exists")
        user_id = await users.create_user(username, email, hash_password(password), role.role_id)
        print(f"  Super Admin '{username}' created (user_id={user_id}).")
        return user_id
    finally:
        await db.dispose()


async def sweep_sessions() -> None:
    """Deactivate expired sessions once, for cron-driven deployments."""
    db = _database()
    try:
        await SessionStore(db, get_settings().session_timeout_seconds).clean_expired_sessions()
        print("  Expired sessions swept.")
    finally:
        await db.dispose()


def _read_password(given: Optional[str]) -> str:
    if given:
        return given
    password = getpass.getpass("  Password: ")
    if password != getpass.getpass("  Repeat password: "):
        print("  [!] Passwords do not match.")
        sys.exit(1)
    return password


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="billing-admin",
        description="Operator commands for the billing admin API.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py init-db
  python main.py create-admin --username admin --email admin@example.com
  DATABASE_URL=mysql+aiomysql://billing:secret@db/billing_system python main.py sweep-sessions
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    sub.add_parser("init-db", help="Create missing tables and seed default roles")
    sub.add_parser("seed-roles", help="Create any missing default roles")
    sub.add_parser("sweep-sessions", help="Deactivate every expired session once")

    admin = sub.add_parser("create-admin", help="Create a Super Admin account")
    admin.add_argument("--username", required=True)
    admin.add_argument("--email", required=True)
    admin.add_argument(
        "--password",
        help="Password for the new account (prompted for when omitted; avoid on shared shells)",
    )

    serve = sub.add_parser("serve", help="Run the API with uvicorn")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=5001)
    serve.add_argument("--reload", action="store_true", help="Reload on code changes (development only)")

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        return

    if args.command == "serve":
        import uvicorn

        uvicorn.run("asgi:app", host=args.host, port=args.port, reload=args.reload)
        return

    try:
        if args.command == "init-db":
            asyncio.run(init_db())
        elif args.command == "seed-roles":
            asyncio.run(seed_roles())
        elif args.command == "sweep-sessions":
            asyncio.run(sweep_sessions())
        elif args.command == "create-admin":
            asyncio.run(create_admin(args.username, args.email, _read_password(args.password)))
    except AppError as exc:
        print(f"  [!] {exc.message}")
        sys.exit(1)


if __name__ == "__main__":
    main()
