# SMB BackOffice - Data import & reconciliation engine for SMB bookkeeping
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Record store interface consumed by the import engine.

The engine does not care how records are stored. It only needs the four
operations below, each scoped to a tenant (the owning account). Any failure
must be raised as ``StoreError`` carrying the store's own message.

The SQLite implementation used by the CLI lives in ``db.py``; tests use
small in-memory doubles implementing the same protocol.
"""

from collections.abc import Mapping
from typing import Any, Optional, Protocol


class RecordStore(Protocol):
    """Minimal tenant-scoped CRUD interface."""

    def insert(self, entity_key: str, record: Mapping[str, Any], tenant_id: str) -> int:
        """Persist one record and return its new id."""
        ...

    def exists_where(
        self,
        entity_key: str,
        field: str,
        value: Any,
        tenant_id: str,
        where: Optional[Mapping[str, Any]] = None,
    ) -> bool:
        """Return True if a record of the tenant has ``field == value``.

        ``where`` holds extra equality conditions on the same record.
        """
        ...

    def select_all(self, entity_key: str, tenant_id: str) -> list[dict[str, Any]]:
        """Return every record of the tenant for an entity type."""
        ...

    def delete_where(
        self, entity_key: str, tenant_id: str, record_id: Optional[int] = None
    ) -> int:
        """Delete the tenant's records (or one record) and return the count."""
        ...
