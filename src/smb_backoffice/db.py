# SMB BackOffice - Data import & reconciliation engine for SMB bookkeeping
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.


"""
SQLite record store for SMB BackOffice.

This module provides the reference implementation of the ``RecordStore``
protocol used by the import engine, the backup export and the bulk deletion
operations. It is responsible for:

- Creating the schema from the entity templates of the schema registry.
- Inserting records on behalf of a tenant.
- Answering existence checks used by duplicate detection.
- Reading and deleting all records of a tenant for one entity type.

------------------------------------------------------------------------------
Schema Overview
------------------------------------------------------------------------------

One table per entity template, named after its ``entity_key``:

   - id          INTEGER PRIMARY KEY AUTOINCREMENT
   - tenant_id   TEXT    NOT NULL   -- owning account
   - <fields>    one column per template field, in declaration order:
                   * REAL    for fields of the numeric coercion table,
                   * INTEGER for foreign references (with FOREIGN KEY),
                   * TEXT    otherwise (dates are ISO 'YYYY-MM-DD' text),
                 required fields are declared NOT NULL.
   - is_active   INTEGER NOT NULL DEFAULT 1
   - created_at  TEXT    NOT NULL   -- ISO datetime, UTC

Every table is indexed on ``tenant_id``.

------------------------------------------------------------------------------
SQLite Notes
------------------------------------------------------------------------------

- Foreign key enforcement is explicitly enabled on every connection, so that
  deleting a referenced record before its dependents fails loudly.
- Every sqlite3.Error is re-raised as StoreError with the SQLite message.
- Column names are never taken from input blindly: record keys and lookup
  fields are checked against the table's actual columns first.
- A new connection is opened for every operation and closed afterwards.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from .errors import StoreError, UnknownEntityError
from .templates import NUMERIC_FIELDS, TEMPLATES, EntityTemplate

logger = logging.getLogger(__name__)

_RESERVED_COLUMNS = {"id", "tenant_id", "is_active", "created_at"}


@dataclass(frozen=True)
class DatabaseConfig:
    """
    Database configuration for SMB BackOffice.

    Attributes
    ----------
    engine:
        Database engine identifier. Only "sqlite" is supported.
    path:
        Path to the SQLite database file.
    """

    engine: str
    path: Path


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _ensure_sqlite(cfg: DatabaseConfig) -> None:
    """Raise if the configuration does not refer to a supported engine."""
    if cfg.engine.lower() != "sqlite":
        msg = (
            f"Unsupported database engine: {cfg.engine!r}. "
            "Only 'sqlite' is supported for now."
        )
        raise ValueError(msg)


def _connect(cfg: DatabaseConfig) -> sqlite3.Connection:
    """
    Open a SQLite connection with foreign keys enabled.

    The caller is responsible for closing the connection.
    """
    _ensure_sqlite(cfg)
    conn = sqlite3.connect(cfg.path)
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


def _get_table_columns(conn: sqlite3.Connection, table: str) -> set[str]:
    """
    Return the set of column names for the given table.

    Parameters
    ----------
    conn:
        Open SQLite connection.
    table:
        Table name.

    Returns
    -------
    set[str]
        Set of column names for the table (empty if the table does not exist).
    """
    cur = conn.execute(f"PRAGMA table_info({table});")
    return {row[1] for row in cur.fetchall()}


def _now_utc_iso() -> str:
    """Return the current UTC datetime as ISO string."""
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def _column_sql(template: EntityTemplate, field_name: str) -> str:
    if field_name in template.references:
        col_type = "INTEGER"
    elif field_name in NUMERIC_FIELDS:
        col_type = "REAL"
    else:
        col_type = "TEXT"
    not_null = " NOT NULL" if field_name in template.required_fields else ""
    return f"{field_name} {col_type}{not_null}"


def _create_table_sql(template: EntityTemplate) -> str:
    """Build the CREATE TABLE statement for one entity template."""
    lines = [
        "id INTEGER PRIMARY KEY AUTOINCREMENT",
        "tenant_id TEXT NOT NULL",
    ]
    lines.extend(_column_sql(template, f) for f in template.fields)
    lines.append("is_active INTEGER NOT NULL DEFAULT 1")
    lines.append("created_at TEXT NOT NULL")
    lines.extend(
        f"FOREIGN KEY ({f}) REFERENCES {target}(id)"
        for f, target in template.references.items()
    )
    body = ",\n    ".join(lines)
    return f"CREATE TABLE IF NOT EXISTS {template.entity_key} (\n    {body}\n);"


def _create_schema_if_needed(
    conn: sqlite3.Connection, templates: Mapping[str, EntityTemplate]
) -> None:
    """
    Create tables and indexes if they do not exist yet.

    This function is idempotent and can be called multiple times safely.
    """
    for template in templates.values():
        conn.execute(_create_table_sql(template))
        conn.execute(
            f"""
            CREATE INDEX IF NOT EXISTS idx_{template.entity_key}_tenant
                ON {template.entity_key}(tenant_id);
            """
        )
    conn.commit()


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def init_database(
    cfg: DatabaseConfig, templates: Mapping[str, EntityTemplate] = TEMPLATES
) -> None:
    """
    Initialize the database schema if needed.

    - Creates the SQLite file (and its parent directory) if it does not exist.
    - Creates one table per entity template, plus tenant indexes.
    - This function is idempotent: calling it multiple times is safe.

    Raises
    ------
    ValueError
        If cfg.engine is not supported.
    StoreError
        If schema creation fails.
    """
    cfg.path.parent.mkdir(parents=True, exist_ok=True)

    conn = _connect(cfg)
    try:
        _create_schema_if_needed(conn, templates)
    except sqlite3.Error as exc:
        raise StoreError(str(exc)) from exc
    finally:
        conn.close()


class SQLiteStore:
    """
    Tenant-scoped record store backed by a SQLite file.

    Implements the ``RecordStore`` protocol. The schema is created on
    construction.
    """

    def __init__(
        self,
        cfg: DatabaseConfig,
        templates: Mapping[str, EntityTemplate] = TEMPLATES,
    ):
        self.cfg = cfg
        self.templates = templates
        init_database(cfg, templates)

    def _table(self, entity_key: str) -> str:
        if entity_key not in self.templates:
            raise UnknownEntityError(entity_key)
        return entity_key

    def _check_references(
        self,
        conn: sqlite3.Connection,
        template: EntityTemplate,
        record: Mapping[str, Any],
        tenant_id: str,
    ) -> None:
        """Refuse references to records that the tenant does not own.

        SQLite foreign keys only check that the target id exists in any
        tenant; the tenant scope is enforced here with the same message.
        """
        for ref_field, target in template.references.items():
            value = record.get(ref_field)
            if value is None:
                continue
            cur = conn.execute(
                f"SELECT 1 FROM {target} WHERE id = ? AND tenant_id = ? LIMIT 1;",
                (value, tenant_id),
            )
            if cur.fetchone() is None:
                logger.debug(
                    "%s.%s=%r is not a %s record of tenant %s",
                    template.entity_key,
                    ref_field,
                    value,
                    target,
                    tenant_id,
                )
                raise StoreError("FOREIGN KEY constraint failed")

    def insert(self, entity_key: str, record: Mapping[str, Any], tenant_id: str) -> int:
        """
        Insert one record for the tenant and return its id.

        Keys of ``record`` must be template fields; identity and bookkeeping
        columns (id, tenant_id, is_active, created_at) are set by the store.

        Raises
        ------
        StoreError
            If a column is unknown, a reference points to a record the
            tenant does not own, or SQLite rejects the row (constraint
            violation, missing foreign record, ...).
        """
        table = self._table(entity_key)
        conn = _connect(self.cfg)
        try:
            columns = _get_table_columns(conn, table) - _RESERVED_COLUMNS
            unknown = sorted(set(record) - columns)
            if unknown:
                raise StoreError(
                    f"table {table} has no column named {unknown[0]}"
                )
            template = self.templates[entity_key]
            self._check_references(conn, template, record, tenant_id)

            names = ["tenant_id", *record.keys(), "is_active", "created_at"]
            values = [tenant_id, *record.values(), 1, _now_utc_iso()]
            placeholders = ", ".join("?" for _ in names)
            cur = conn.execute(
                f"INSERT INTO {table} ({', '.join(names)}) VALUES ({placeholders});",
                values,
            )
            conn.commit()
            return int(cur.lastrowid)
        except sqlite3.Error as exc:
            raise StoreError(str(exc)) from exc
        finally:
            conn.close()

    def exists_where(
        self,
        entity_key: str,
        field: str,
        value: Any,
        tenant_id: str,
        where: Mapping[str, Any] | None = None,
    ) -> bool:
        """
        Return True if the tenant has a record with ``field == value``.

        ``where`` adds equality conditions on other columns (for example a
        bank account id), all of which must hold on the same record.
        """
        table = self._table(entity_key)
        conditions = {field: value, **(where or {})}
        conn = _connect(self.cfg)
        try:
            columns = _get_table_columns(conn, table)
            for name in conditions:
                if name not in columns:
                    raise StoreError(f"no such column: {name}")
            clause = " AND ".join(f"{name} = ?" for name in conditions)
            cur = conn.execute(
                f"SELECT 1 FROM {table} WHERE tenant_id = ? AND {clause} LIMIT 1;",
                (tenant_id, *conditions.values()),
            )
            return cur.fetchone() is not None
        except sqlite3.Error as exc:
            raise StoreError(str(exc)) from exc
        finally:
            conn.close()

    def select_all(self, entity_key: str, tenant_id: str) -> list[dict[str, Any]]:
        """Return every record of the tenant for ``entity_key``, ordered by id."""
        table = self._table(entity_key)
        conn = _connect(self.cfg)
        try:
            conn.row_factory = sqlite3.Row
            cur = conn.execute(
                f"SELECT * FROM {table} WHERE tenant_id = ? ORDER BY id;",
                (tenant_id,),
            )
            return [dict(row) for row in cur.fetchall()]
        except sqlite3.Error as exc:
            raise StoreError(str(exc)) from exc
        finally:
            conn.close()

    def delete_where(
        self, entity_key: str, tenant_id: str, record_id: int | None = None
    ) -> int:
        """
        Delete the tenant's records for ``entity_key``.

        If ``record_id`` is given, only that record is deleted. Returns the
        number of deleted rows.
        """
        table = self._table(entity_key)
        conn = _connect(self.cfg)
        try:
            if record_id is None:
                cur = conn.execute(
                    f"DELETE FROM {table} WHERE tenant_id = ?;", (tenant_id,)
                )
            else:
                cur = conn.execute(
                    f"DELETE FROM {table} WHERE tenant_id = ? AND id = ?;",
                    (tenant_id, record_id),
                )
            conn.commit()
            logger.debug("Deleted %d row(s) from %s", cur.rowcount, table)
            return cur.rowcount
        except sqlite3.Error as exc:
            raise StoreError(str(exc)) from exc
        finally:
            conn.close()
