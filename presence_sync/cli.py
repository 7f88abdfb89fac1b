"""
Command line entry point.

Usage:
    presence-sync sync              # run one sync cycle
    presence-sync status            # show local data and sync state
    presence-sync migrate           # move legacy storage keys
    presence-sync login --access-token ... --refresh-token ...
    presence-sync logout [--global]

Configuration comes from PRESENCE_* environment variables and, with
--config, the ``sync:`` section of a YAML settings file.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from .app import SyncStack, create_sync_stack
from .config import SyncConfig
from .exceptions import PresenceSyncError
from .ids import is_local_id
from .logging_utils import configure_structured_logging

logger = logging.getLogger(__name__)


async def cmd_sync(stack: SyncStack, args: argparse.Namespace) -> int:
    if stack.engine is None:
        print("Remote sync is not configured (set PRESENCE_SUPABASE_URL and PRESENCE_SUPABASE_KEY)")
        return 1

    ran = await stack.engine.sync_now()
    status = await stack.engine.get_sync_status()
    result = stack.engine.last_result
    if args.json:
        print(
            json.dumps(
                {"ran": ran, **status.to_dict(), "result": result.to_dict() if result else None}
            )
        )
    elif not ran and status.error is None:
        print("Sync skipped (not signed in)")
    else:
        print(f"Last sync: {status.last_sync or 'never'}")
        if result is not None:
            print(
                f"Uploaded {result.uploaded}, downloaded {result.downloaded}, "
                f"deleted {result.deleted}"
            )
            for error in result.errors:
                print(f"  error: {error}")
        if status.error:
            print(f"Sync failed: {status.error}")

    if status.error or (result is not None and not result.success):
        return 1
    return 0


async def cmd_status(stack: SyncStack, args: argparse.Namespace) -> int:
    clubs = await stack.store.get_clubs()
    summary = {
        "clubs": len(clubs),
        "unsynced_clubs": sum(1 for c in clubs if is_local_id(c.id)),
        "pending_deletes": len(await stack.store.get_pending_deletes()),
        "last_sync": await stack.store.get_last_sync(),
        "remote_enabled": stack.engine is not None,
        "user_id": await stack.sessions.get_user_id() if stack.sessions else None,
    }
    if args.json:
        print(json.dumps(summary))
    else:
        for key, value in summary.items():
            print(f"{key}: {value}")
    return 0


async def cmd_migrate(stack: SyncStack, args: argparse.Namespace) -> int:
    migrated = await stack.store.migrate_legacy_keys()
    if migrated:
        print(f"Migrated: {', '.join(migrated)}")
    else:
        print("Nothing to migrate")
    return 0


async def cmd_login(stack: SyncStack, args: argparse.Namespace) -> int:
    if stack.auth is None or stack.sessions is None:
        print("Remote sync is not configured")
        return 1
    session = await stack.auth.set_session(args.access_token, args.refresh_token)
    stack.sessions.invalidate_cache()
    print(f"Signed in as {session.user.email or session.user_id}")
    return 0


async def cmd_logout(stack: SyncStack, args: argparse.Namespace) -> int:
    if stack.auth is None or stack.sessions is None:
        print("Remote sync is not configured")
        return 1
    await stack.auth.sign_out(scope="global" if args.global_scope else "local")
    stack.sessions.invalidate_cache()
    if args.clear_data:
        await stack.store.clear_all()
    print("Signed out")
    return 0


COMMANDS = {
    "sync": cmd_sync,
    "status": cmd_status,
    "migrate": cmd_migrate,
    "login": cmd_login,
    "logout": cmd_logout,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="presence-sync",
        description="Local-first club attendance store and sync",
    )
    parser.add_argument("--config", type=Path, help="YAML settings file with a 'sync:' section")
    parser.add_argument("--data-dir", type=Path, help="Override the data directory")
    parser.add_argument("--json-logs", action="store_true", help="Structured JSON logs on stdout")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    sub = parser.add_subparsers(dest="command", required=True)

    sync = sub.add_parser("sync", help="Run one sync cycle")
    sync.add_argument("--json", action="store_true", help="Print the result as JSON")

    status = sub.add_parser("status", help="Show local data and sync state")
    status.add_argument("--json", action="store_true", help="Print the status as JSON")

    sub.add_parser("migrate", help="Move data from legacy storage keys")

    login = sub.add_parser("login", help="Store tokens from an external sign-in")
    login.add_argument("--access-token", required=True)
    login.add_argument("--refresh-token", required=True)

    logout = sub.add_parser("logout", help="Clear the stored session")
    logout.add_argument(
        "--global", dest="global_scope", action="store_true", help="Revoke on the server too"
    )
    logout.add_argument(
        "--clear-data", action="store_true", help="Also wipe all local data"
    )
    return parser


async def run(args: argparse.Namespace) -> int:
    config = SyncConfig.load(args.config)
    if args.data_dir:
        config.data_dir = args.data_dir.expanduser()

    stack = await create_sync_stack(config)
    try:
        return await COMMANDS[args.command](stack, args)
    finally:
        await stack.close()


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    level = logging.DEBUG if args.verbose else logging.INFO
    if args.json_logs:
        configure_structured_logging(level=level)
    else:
        logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    try:
        return asyncio.run(run(args))
    except PresenceSyncError as e:
        logger.error(e.message)
        return 1
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
