"""Utility script to install or remove the row change triggers."""

from __future__ import annotations

import argparse

from sqlalchemy.exc import SQLAlchemyError

from changestreams.config import get_settings
from changestreams.infrastructure.database import engine
from changestreams.infrastructure.triggers import (
    TRACKED_TABLES,
    build_install_statements,
    build_uninstall_statements,
    install_change_triggers,
    uninstall_change_triggers,
)


def parse_args() -> argparse.Namespace:
    """Parse command line arguments for trigger management."""

    parser = argparse.ArgumentParser(
        description="Install the change notification triggers on the tracked tables.",
    )
    parser.add_argument(
        "--drop",
        action="store_true",
        help="Remove the triggers and the notify function instead of installing them.",
    )
    parser.add_argument(
        "--print",
        dest="print_only",
        action="store_true",
        help="Print the SQL statements without executing them.",
    )
    parser.add_argument(
        "--channel",
        default=None,
        help="Notification channel (defaults to the CHANGE_CHANNEL setting).",
    )
    return parser.parse_args()


def main() -> None:
    """Install or drop the triggers using the configured database."""

    args = parse_args()
    channel = args.channel or get_settings().change_channel

    if args.print_only:
        statements = (
            build_uninstall_statements(TRACKED_TABLES)
            if args.drop
            else build_install_statements(channel, TRACKED_TABLES)
        )
        print(";\n\n".join(statements) + ";")
        return

    try:
        if args.drop:
            applied = uninstall_change_triggers(engine, tables=TRACKED_TABLES)
        else:
            applied = install_change_triggers(engine, channel=channel, tables=TRACKED_TABLES)
    except (SQLAlchemyError, ValueError) as exc:
        raise SystemExit(f"Could not update the change triggers: {exc}") from exc

    if not applied:
        raise SystemExit("The configured database is not PostgreSQL; nothing was changed.")

    action = "removed" if args.drop else "installed"
    tables = ", ".join(table.qualified_table for table in TRACKED_TABLES)
    print(f"Change triggers {action} on: {tables}")


if __name__ == "__main__":
    main()
