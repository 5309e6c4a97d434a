"""Best-effort schema drift repair for the persistence gateway.

Versioned migrations (Alembic) own the schema.  This module is the safety
net for databases that were created by older builds or edited by hand:
when a write fails with a drift-class error, the gateway calls
``repair_tables`` once and retries the write once.

Recognised drift:
  42P01  undefined_table    → create the table
  42703  undefined_column   → add every model column the table lacks
  42804  datatype_mismatch  → widen text columns stored with another type
  42P10  invalid_column_reference (ON CONFLICT without a matching key)
                            → add a unique index on the model's primary key

A table whose stored primary key differs from the model's (older builds
keyed rows by ``id`` alone) gets that unique index on every repair.

SQLite reports the same conditions by message only, so those are matched
on text.  Anything else is not drift and is never repaired.
"""

import logging
from enum import Enum

from sqlalchemy import Connection, String, Table, inspect, text
from sqlalchemy.exc import DBAPIError

logger = logging.getLogger("konsul.schema_repair")


class DriftKind(str, Enum):
    MISSING_TABLE = "missing_table"
    MISSING_COLUMN = "missing_column"
    TYPE_MISMATCH = "type_mismatch"
    MISSING_KEY = "missing_key"


PG_SQLSTATES = {
    "42P01": DriftKind.MISSING_TABLE,
    "42703": DriftKind.MISSING_COLUMN,
    "42804": DriftKind.TYPE_MISMATCH,
    "42P10": DriftKind.MISSING_KEY,
}

SQLITE_MESSAGES = [
    ("no such table", DriftKind.MISSING_TABLE),
    ("has no column named", DriftKind.MISSING_COLUMN),
    ("no such column", DriftKind.MISSING_COLUMN),
    ("does not match any primary key or unique constraint", DriftKind.MISSING_KEY),
]


def _sqlstate(exc: BaseException) -> str | None:
    for candidate in (getattr(exc, "orig", None), exc, exc.__cause__):
        if candidate is None:
            continue
        code = getattr(candidate, "sqlstate", None) or getattr(candidate, "pgcode", None)
        if code:
            return str(code)
    return None


def classify_drift(exc: BaseException) -> DriftKind | None:
    """Return the drift kind for a database error, or None if it is not drift."""
    if not isinstance(exc, DBAPIError):
        return None

    code = _sqlstate(exc)
    if code is not None:
        return PG_SQLSTATES.get(code)

    message = str(exc.orig if exc.orig is not None else exc).lower()
    for needle, kind in SQLITE_MESSAGES:
        if needle in message:
            return kind
    return None


def _add_missing_columns(conn: Connection, table: Table) -> list[str]:
    existing = {col["name"] for col in inspect(conn).get_columns(table.name)}
    preparer = conn.dialect.identifier_preparer
    if_not_exists = "IF NOT EXISTS " if conn.dialect.name == "postgresql" else ""
    actions = []
    for column in table.columns:
        if column.name in existing:
            continue
        col_type = column.type.compile(dialect=conn.dialect)
        conn.execute(text(
            f"ALTER TABLE {preparer.quote(table.name)} "
            f"ADD COLUMN {if_not_exists}{preparer.quote(column.name)} {col_type}"
        ))
        actions.append(f"added {table.name}.{column.name}")
    return actions


def _ensure_primary_key(conn: Connection, table: Table) -> list[str]:
    model_key = [col.name for col in table.primary_key.columns]
    stored_key = inspect(conn).get_pk_constraint(table.name).get("constrained_columns") or []
    if not model_key or set(stored_key) == set(model_key):
        return []
    preparer = conn.dialect.identifier_preparer
    index = f"uq_{table.name}_{'_'.join(model_key)}"
    columns = ", ".join(preparer.quote(name) for name in model_key)
    conn.execute(text(
        f"CREATE UNIQUE INDEX IF NOT EXISTS {preparer.quote(index)} "
        f"ON {preparer.quote(table.name)} ({columns})"
    ))
    return [f"indexed {table.name} on ({', '.join(model_key)})"]


def _widen_text_columns(conn: Connection, table: Table) -> list[str]:
    if conn.dialect.name != "postgresql":
        return []
    actual = {col["name"]: col["type"] for col in inspect(conn).get_columns(table.name)}
    preparer = conn.dialect.identifier_preparer
    actions = []
    for column in table.columns:
        if not isinstance(column.type, String) or column.name not in actual:
            continue
        if isinstance(actual[column.name], String):
            continue
        name = preparer.quote(column.name)
        conn.execute(text(
            f"ALTER TABLE {preparer.quote(table.name)} "
            f"ALTER COLUMN {name} TYPE TEXT USING {name}::text"
        ))
        actions.append(f"widened {table.name}.{column.name} to TEXT")
    return actions


def repair_tables(conn: Connection, tables: list[Table], kind: DriftKind) -> list[str]:
    """Bring ``tables`` in line with the models.  Sync; run via ``run_sync``.

    Returns a list of human-readable actions taken.
    """
    actions: list[str] = []
    for table in tables:
        if not inspect(conn).has_table(table.name):
            table.create(conn, checkfirst=True)
            actions.append(f"created {table.name}")
            continue
        actions.extend(_add_missing_columns(conn, table))
        actions.extend(_ensure_primary_key(conn, table))
        if kind == DriftKind.TYPE_MISMATCH:
            actions.extend(_widen_text_columns(conn, table))

    for action in actions:
        logger.warning("Schema repair: %s", action)
    return actions
