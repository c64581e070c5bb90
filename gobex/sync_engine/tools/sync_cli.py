"""
Operator CLI for the Gobex sync engine.

This tool inspects and maintains the local store of a device:
- status: Last sync and record count of every local tenant
- sync: Log in and run one manual sync
- stats: Per-collection record counts of one partition
- clear-tenant: Delete a tenant's local namespace

Usage:
    gobex-sync status
    gobex-sync sync --username gerant --password ... --role manager
    gobex-sync stats --tenant UL-4F2A9C
    gobex-sync clear-tenant --tenant UL-4F2A9C --yes

Invariants:
    - Reads configuration from the same environment as the engine
    - Non-zero exit code on refused login, failed sync or bad input

How to change safely:
    - Keep JSON output keys stable for scripts
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any

from ..config import EngineConfig
from ..main import SyncSession, setup_logging
from ..tenant import InvalidTenantError, validate_tenant_id

logger = logging.getLogger(__name__)


class SyncCLI:
    """CLI commands over a SyncSession.

    Example:
        >>> cli = SyncCLI(session)
        >>> await cli.status()
        [{'tenant_id': 'UL-4F2A9C', 'total_records': 42, 'last_sync': '...'}]
    """

    def __init__(self, session: SyncSession) -> None:
        self.session = session

    async def status(self) -> list[dict[str, Any]]:
        """Summarize every tenant with local data."""
        rows = []
        for tenant_id in await self.session.store.list_tenants():
            stats = await self.session.store.stats(tenant_id)
            last_sync = await self.session.orchestrator.get_last_sync_time(tenant_id)
            rows.append(
                {
                    "tenant_id": tenant_id,
                    "total_records": stats["total_records"],
                    "last_sync": last_sync.isoformat() if last_sync else None,
                }
            )
        return rows

    async def sync(self, username: str, password: str, role: str | None) -> dict[str, Any]:
        """Authenticate and run one manual sync for the user's tenant.

        Local data is not overwritten by a forced download here; the
        regular last-write-wins rule applies.
        """
        login = await self.session.gate.login(username, password, role)
        if not login.success:
            return {"success": False, "message": login.message, "failure": login.failure.value}
        result = await self.session.orchestrator.manual_sync(login.tenant_id)
        return result.to_dict()

    async def stats(self, tenant_id: str | None) -> dict[str, Any]:
        return await self.session.store.stats(tenant_id)

    async def clear_tenant(self, tenant_id: str) -> int:
        return await self.session.store.clear_tenant(tenant_id)


def _tenant_arg(value: str) -> str:
    try:
        return validate_tenant_id(value)
    except InvalidTenantError as e:
        raise argparse.ArgumentTypeError(str(e))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Gobex sync engine tool")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # status command
    subparsers.add_parser("status", help="Show local tenants and their last sync")

    # sync command
    sync_parser = subparsers.add_parser("sync", help="Log in and run one sync")
    sync_parser.add_argument("--username", "-u", required=True, help="Login name")
    sync_parser.add_argument("--password", "-p", required=True, help="Password")
    sync_parser.add_argument("--role", "-r", help="owner, manager or employee")

    # stats command
    stats_parser = subparsers.add_parser("stats", help="Record counts of a partition")
    stats_parser.add_argument(
        "--tenant", "-t", type=_tenant_arg, help="Tenant id (default: owner partition)"
    )

    # clear-tenant command
    clear_parser = subparsers.add_parser("clear-tenant", help="Delete a tenant's local data")
    clear_parser.add_argument("--tenant", "-t", type=_tenant_arg, required=True, help="Tenant id")
    clear_parser.add_argument("--yes", action="store_true", help="Confirm deletion")

    return parser


async def run(args: argparse.Namespace, config: EngineConfig) -> int:
    """Execute a parsed command.

    Returns:
        Process exit code
    """
    session = SyncSession(config)
    cli = SyncCLI(session)
    try:
        if args.command == "status":
            rows = await cli.status()
            if not rows:
                print("No local tenant data")
            for row in rows:
                print(
                    f"{row['tenant_id']}: {row['total_records']} records, "
                    f"last sync {row['last_sync'] or 'never'}"
                )
            return 0

        if args.command == "sync":
            outcome = await cli.sync(args.username, args.password, args.role)
            print(json.dumps(outcome, indent=2))
            return 0 if outcome["success"] else 1

        if args.command == "stats":
            print(json.dumps(await cli.stats(args.tenant), indent=2, sort_keys=True))
            return 0

        if args.command == "clear-tenant":
            if not args.yes:
                print("Refusing to delete without --yes", file=sys.stderr)
                return 2
            removed = await cli.clear_tenant(args.tenant)
            print(f"Removed {removed} records for tenant {args.tenant}")
            return 0

        return 2
    finally:
        await session.close()


def main(argv: list[str] | None = None) -> None:
    """CLI entry point for the sync tool."""
    args = build_parser().parse_args(argv)

    try:
        config = EngineConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)
    setup_logging(config)

    sys.exit(asyncio.run(run(args, config)))


if __name__ == "__main__":
    main()
