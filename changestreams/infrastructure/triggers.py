"""PostgreSQL triggers that publish row changes on a NOTIFY channel."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from sqlalchemy.engine import Engine

from changestreams.domain.entities import EntityName

logger = logging.getLogger(__name__)

NOTIFY_FUNCTION_NAME = "changestreams_notify"


@dataclass(frozen=True)
class TrackedTable:
    """Table whose row changes are published under ``entity``."""

    entity: EntityName
    table: str
    pk_column: str = "Id"
    schema: str = "public"

    @property
    def trigger_name(self) -> str:
        return f"trigger_{self.entity.value.lower()}_changed"

    @property
    def qualified_table(self) -> str:
        return f"{_quote_ident(self.schema)}.{_quote_ident(self.table)}"


TRACKED_TABLES: tuple[TrackedTable, ...] = (
    TrackedTable(EntityName.USERS, "AspNetUsers"),
    TrackedTable(EntityName.COMPANIES, "Companies"),
    TrackedTable(EntityName.PROJECTS, "Projects"),
    TrackedTable(EntityName.SCREENS, "Screens"),
    TrackedTable(EntityName.SCREEN_ACTIONS, "ScreenActions"),
    TrackedTable(EntityName.NOTES, "Notes"),
    TrackedTable(EntityName.EMPLOYEES, "Employees"),
)


def _quote_ident(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def _quote_literal(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def build_notify_function(channel: str) -> str:
    """Return the DDL of the shared trigger function publishing on ``channel``.

    The trigger passes the entity name and the primary key column as
    arguments, so one function serves every table. The key is read through
    ``to_jsonb`` which turns any key type into text.
    """

    return f"""
CREATE OR REPLACE FUNCTION {NOTIFY_FUNCTION_NAME}()
RETURNS TRIGGER AS $$
DECLARE
  entity_id TEXT;
BEGIN
  IF TG_OP = 'DELETE' THEN
    entity_id := to_jsonb(OLD) ->> TG_ARGV[1];
  ELSE
    entity_id := COALESCE(to_jsonb(NEW) ->> TG_ARGV[1], to_jsonb(OLD) ->> TG_ARGV[1]);
  END IF;

  BEGIN
    PERFORM pg_notify(
      {_quote_literal(channel)},
      json_build_object(
        'entityName', TG_ARGV[0],
        'operation', TG_OP,
        'entityId', entity_id,
        'changedAt', to_char(now() AT TIME ZONE 'UTC', 'YYYY-MM-DD"T"HH24:MI:SS.US"Z"')
      )::text
    );
  EXCEPTION WHEN OTHERS THEN
    RAISE WARNING USING MESSAGE =
      '{NOTIFY_FUNCTION_NAME}: could not publish ' || TG_OP || ' on ' || TG_ARGV[0] || ': ' || SQLERRM;
  END;

  RETURN NULL;
END;
$$ LANGUAGE plpgsql;
""".strip()


def build_trigger_statements(table: TrackedTable) -> list[str]:
    """Return the statements (re)creating the trigger for ``table``."""

    return [
        f"DROP TRIGGER IF EXISTS {_quote_ident(table.trigger_name)} ON {table.qualified_table}",
        (
            f"CREATE TRIGGER {_quote_ident(table.trigger_name)}\n"
            f"AFTER INSERT OR UPDATE OR DELETE ON {table.qualified_table}\n"
            f"FOR EACH ROW EXECUTE FUNCTION {NOTIFY_FUNCTION_NAME}("
            f"{_quote_literal(table.entity.value)}, {_quote_literal(table.pk_column)})"
        ),
    ]


def build_install_statements(
    channel: str, tables: Iterable[TrackedTable] = TRACKED_TABLES
) -> list[str]:
    """Return every statement needed to install the change triggers."""

    statements = [build_notify_function(channel)]
    for table in tables:
        statements.extend(build_trigger_statements(table))
    return statements


def build_uninstall_statements(
    tables: Iterable[TrackedTable] = TRACKED_TABLES,
) -> list[str]:
    """Return the statements removing the triggers and the shared function."""

    statements = [
        f"DROP TRIGGER IF EXISTS {_quote_ident(table.trigger_name)} ON {table.qualified_table}"
        for table in tables
    ]
    statements.append(f"DROP FUNCTION IF EXISTS {NOTIFY_FUNCTION_NAME}()")
    return statements


def _execute_all(engine: Engine, statements: Sequence[str]) -> None:
    with engine.begin() as connection:
        for statement in statements:
            connection.exec_driver_sql(statement)


def install_change_triggers(
    engine: Engine,
    *,
    channel: str,
    tables: Sequence[TrackedTable] = TRACKED_TABLES,
) -> bool:
    """Install the change triggers on ``engine``.

    Returns ``False`` without touching the database when the engine does not
    point at PostgreSQL.
    """

    if engine.dialect.name != "postgresql":
        logger.warning(
            "Skipping change trigger installation: dialect '%s' has no LISTEN/NOTIFY support",
            engine.dialect.name,
        )
        return False

    _execute_all(engine, build_install_statements(channel, tables))
    logger.info(
        "Installed change triggers on channel '%s' for %s",
        channel,
        ", ".join(table.entity.value for table in tables),
    )
    return True


def uninstall_change_triggers(
    engine: Engine, *, tables: Sequence[TrackedTable] = TRACKED_TABLES
) -> bool:
    """Remove the change triggers from ``engine``."""

    if engine.dialect.name != "postgresql":
        logger.warning(
            "Skipping change trigger removal: dialect '%s' is not PostgreSQL",
            engine.dialect.name,
        )
        return False

    _execute_all(engine, build_uninstall_statements(tables))
    logger.info("Removed change triggers for %d tables", len(tables))
    return True


__all__ = [
    "NOTIFY_FUNCTION_NAME",
    "TRACKED_TABLES",
    "TrackedTable",
    "build_install_statements",
    "build_notify_function",
    "build_trigger_statements",
    "build_uninstall_statements",
    "install_change_triggers",
    "uninstall_change_triggers",
]
