"""CLI entry point: sync, grant, revoke, user provisioning, status, scheduler."""

from __future__ import annotations

import argparse
import importlib
import logging
import sys

from baton_databricks.config import ConfigError, load_config
from baton_databricks.db import Database
from baton_databricks.logging_config import configure_logging

logger = logging.getLogger("baton_databricks.cli")

PROVIDER_REGISTRY: dict[str, tuple[str, str]] = {
    # name -> (module_path, class_name)
    "databricks": ("baton_databricks.providers.databricks", "DatabricksProvider"),
}


def _get_provider(name: str, config, db: Database):
    module_path, class_name = PROVIDER_REGISTRY[name]
    cls = getattr(importlib.import_module(module_path), class_name)
    return cls(config, db)


def _run(action):
    """Build the provider, run ``action`` on it, then release the session and pool."""
    config = load_config()
    db = Database(config.database)
    try:
        provider = _get_provider("databricks", config, db)
        try:
            return action(provider)
        finally:
            provider.connector.close()
    finally:
        db.close()


def cmd_sync(args: argparse.Namespace) -> None:
    """Run one full sync."""
    logger.info("Starting sync for databricks")
    results = _run(lambda provider: provider.sync_with_tracking())
    logger.info("Sync results for databricks: %s", results)


def cmd_grant(args: argparse.Namespace) -> None:
    grant = _run(lambda provider: provider.grant(args.entitlement, args.principal_type, args.principal))
    print(grant.id)


def cmd_revoke(args: argparse.Namespace) -> None:
    grant = _run(lambda provider: provider.revoke(args.grant))
    print(grant.id)


def cmd_create_account(args: argparse.Namespace) -> None:
    """Provision an account-level user."""
    profile = {
        "userName": args.user_name,
        "displayName": args.display_name,
        "givenName": args.given_name,
        "familyName": args.family_name,
    }
    resource = _run(lambda provider: provider.create_account(profile))
    if resource is None:
        print("User created; not readable yet, run a sync to store it.")
        return
    print(resource.id.resource)


def cmd_delete_user(args: argparse.Namespace) -> None:
    _run(lambda provider: provider.delete_user(args.user))
    print(args.user)


def cmd_init_db(args: argparse.Namespace) -> None:
    config = load_config()
    db = Database(config.database)
    try:
        db.init_schema()
    finally:
        db.close()


def cmd_scheduler(args: argparse.Namespace) -> None:
    """Start the APScheduler-based scheduling loop."""
    from baton_databricks.scheduler import start_scheduler

    config = load_config()
    db = Database(config.database)
    try:
        start_scheduler(config, db)
    finally:
        db.close()


def cmd_status(args: argparse.Namespace) -> None:
    """Show recent sync runs."""
    config = load_config()
    db = Database(config.database)
    try:
        runs = db.get_recent_runs(tenant_id=config.tenant_id, provider="databricks", limit=args.limit)
        if not runs:
            print("No sync runs found.")
            return

        fmt = "{:<36}  {:<8}  {:<20}  {:<20}  {:>8}  {}"
        print(fmt.format("RUN ID", "STATUS", "STARTED", "FINISHED", "UPSERTED", "ERROR"))
        print("-" * 120)
        for r in runs:
            started = str(r["started_at"])[:19] if r["started_at"] else ""
            finished = str(r["finished_at"])[:19] if r["finished_at"] else ""
            print(fmt.format(
                str(r["id"])[:36],
                r["status"],
                started,
                finished,
                r.get("records_upserted", 0),
                (r.get("error_message") or "")[:40],
            ))
    finally:
        db.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="baton-databricks",
        description="Databricks identity-governance connector",
    )
    parser.add_argument("--log-level", default="INFO", help="Logging level (default: INFO)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    sync_parser = subparsers.add_parser("sync", help="Run one full sync")
    sync_parser.set_defaults(func=cmd_sync)

    grant_parser = subparsers.add_parser("grant", help="Grant a synced entitlement to a principal")
    grant_parser.add_argument("--entitlement", "-e", required=True, help="Entitlement id (type:resource:slug)")
    grant_parser.add_argument("--principal", required=True, help="Principal resource id")
    grant_parser.add_argument(
        "--principal-type",
        required=True,
        choices=["user", "group", "service_principal"],
        help="Principal resource type",
    )
    grant_parser.set_defaults(func=cmd_grant)

    revoke_parser = subparsers.add_parser("revoke", help="Revoke a synced grant")
    revoke_parser.add_argument("--grant", "-g", required=True, help="Grant id")
    revoke_parser.set_defaults(func=cmd_revoke)

    create_parser = subparsers.add_parser("create-account", help="Provision an account-level user")
    create_parser.add_argument("--user-name", required=True, help="User name (usually the email)")
    create_parser.add_argument("--display-name", required=True, help="Display name")
    create_parser.add_argument("--given-name", default="", help="Given name")
    create_parser.add_argument("--family-name", default="", help="Family name")
    create_parser.set_defaults(func=cmd_create_account)

    delete_parser = subparsers.add_parser("delete-user", help="Delete an account-level user")
    delete_parser.add_argument("--user", "-u", required=True, help="User id")
    delete_parser.set_defaults(func=cmd_delete_user)

    init_parser = subparsers.add_parser("init-db", help="Create the storage tables")
    init_parser.set_defaults(func=cmd_init_db)

    sched_parser = subparsers.add_parser("scheduler", help="Start scheduled sync loop")
    sched_parser.set_defaults(func=cmd_scheduler)

    status_parser = subparsers.add_parser("status", help="Show recent sync runs")
    status_parser.add_argument(
        "--limit", "-l",
        type=int,
        default=10,
        help="Number of runs to show (default: 10)",
    )
    status_parser.set_defaults(func=cmd_status)
    return parser


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)
    try:
        args.func(args)
    except ConfigError as exc:
        logger.error("Invalid configuration: %s", exc)
        sys.exit(2)


if __name__ == "__main__":
    main()
