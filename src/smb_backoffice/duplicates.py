# SMB BackOffice - Data import & reconciliation engine for SMB bookkeeping
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Duplicate detection against the live store.

Each entity template declares an ordered list of natural keys (for parties:
name, then national identifiers, then email; for products: name, then SKU).
For every natural key present and non-empty in an incoming record, the
detector asks the store whether a record of the same tenant already holds
that exact value. The first key that matches decides: later keys are not
checked.

Store failures during these checks are governed by an explicit policy:

- ``fail_open`` (default): a failed check is logged and ignored. If no
  other key matches, the record is treated as new and the import proceeds.
- ``fail_closed``: if no key matches but at least one check failed, a
  DuplicateCheckError is raised so the caller can reject the record.
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Literal, Optional

from .errors import DuplicateCheckError, StoreError
from .resolver import is_blank
from .store import RecordStore
from .templates import EntityTemplate, get_template

logger = logging.getLogger(__name__)

DuplicatePolicy = Literal["fail_open", "fail_closed"]


@dataclass(frozen=True)
class DuplicateMatch:
    """The natural key and value under which an existing record was found."""

    field: str
    value: Any

    def describe(self) -> str:
        return f"{self.field} '{self.value}' already exists"


class DuplicateDetector:
    """Check incoming records against existing ones, key by key.

    Args:
        store: Record store used for existence checks.
        policy: ``"fail_open"`` or ``"fail_closed"`` (see module docstring).
        natural_keys: Optional per-entity override of the template natural
            keys, mostly useful for tests and one-off imports.
        scope_fields: Optional per-entity fields whose record values must
            also match, e.g. the bank account of an imported statement line.
    """

    def __init__(
        self,
        store: RecordStore,
        *,
        policy: DuplicatePolicy = "fail_open",
        natural_keys: Optional[Mapping[str, tuple[str, ...]]] = None,
        scope_fields: Optional[Mapping[str, tuple[str, ...]]] = None,
    ):
        if policy not in ("fail_open", "fail_closed"):
            raise ValueError(f"Unknown duplicate policy: {policy!r}")
        self.store = store
        self.policy = policy
        self._natural_keys = dict(natural_keys or {})
        self._scope_fields = dict(scope_fields or {})

    @property
    def fail_open(self) -> bool:
        return self.policy == "fail_open"

    def keys_for(self, template: EntityTemplate) -> tuple[str, ...]:
        keys = self._natural_keys.get(template.entity_key, template.natural_keys)
        return tuple(keys)

    def _scope(
        self, template: EntityTemplate, record: Mapping[str, Any]
    ) -> dict[str, Any]:
        fields = self._scope_fields.get(template.entity_key, ())
        return {name: record.get(name) for name in fields}

    def find_duplicate(
        self,
        template: EntityTemplate,
        record: Mapping[str, Any],
        tenant_id: str,
    ) -> Optional[DuplicateMatch]:
        """Return the first natural key matching an existing record, if any.

        Raises:
            DuplicateCheckError: in fail-closed mode, when no key matched and
                at least one existence check failed.
        """
        first_error: Optional[StoreError] = None
        scope = self._scope(template, record)

        for field_name in self.keys_for(template):
            value = record.get(field_name)
            if is_blank(value):
                continue

            try:
                if scope:
                    exists = self.store.exists_where(
                        template.entity_key, field_name, value, tenant_id, where=scope
                    )
                else:
                    exists = self.store.exists_where(
                        template.entity_key, field_name, value, tenant_id
                    )
            except StoreError as exc:
                logger.warning(
                    "Duplicate check on %s.%s failed: %s",
                    template.entity_key,
                    field_name,
                    exc,
                )
                if first_error is None:
                    first_error = exc
                continue

            if exists:
                return DuplicateMatch(field=field_name, value=value)

        if first_error is not None and not self.fail_open:
            msg = f"duplicate check failed: {first_error}"
            raise DuplicateCheckError(msg) from first_error
        return None

    def is_duplicate(
        self, entity_key: str, record: Mapping[str, Any], tenant_id: str
    ) -> bool:
        """Return True if the record already exists for the tenant."""
        template = get_template(entity_key)
        return self.find_duplicate(template, record, tenant_id) is not None
