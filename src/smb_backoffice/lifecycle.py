# SMB BackOffice - Data import & reconciliation engine for SMB bookkeeping
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Bulk lifecycle operations: backup export, backup restore and bulk deletion.

These operations work over the same entity templates as the import engine
and respect the reference graph declared by the templates (for example,
transactions reference bank accounts, categories, clients, suppliers and
payment methods):

- export_all():      read every entity type of a tenant into one document
                     keyed by entity_key (identity fields included).
- restore_backup():  re-import such a document, referenced types first.
                     Identity fields are stripped, new ids are assigned by
                     the store and reference fields are remapped to them.
- delete_all():      delete every entity type of a tenant, dependent types
                     first, so that no step leaves orphaned references.
- delete_by_type():  delete one entity type (or one record of it).

The dependency order is computed from the templates' ``references`` rather
than written out by hand: registering a new referencing entity type only
requires declaring its references.
"""

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Optional

from .errors import InputEmptyError, InputMalformedError, StoreError
from .importer import ImportOrchestrator, ImportResult
from .parsing import SourceRow
from .store import RecordStore
from .templates import TEMPLATES, EntityTemplate, get_template

logger = logging.getLogger(__name__)

IDENTITY_FIELDS = ("id", "tenant_id", "user_id", "created_at")


# ---------------------------------------------------------------------------
# Dependency order
# ---------------------------------------------------------------------------


def insertion_order(
    templates: Mapping[str, EntityTemplate] = TEMPLATES,
) -> list[str]:
    """Return entity keys with referenced types before referencing ones.

    Ties keep registry order.

    Raises:
        ValueError: if the reference graph contains a cycle.
    """
    ordered: list[str] = []
    visiting: set[str] = set()

    def visit(key: str) -> None:
        if key in ordered:
            return
        if key in visiting:
            raise ValueError(f"Reference cycle detected at entity {key!r}.")
        visiting.add(key)
        for target in templates[key].references.values():
            if target != key and target in templates:
                visit(target)
        visiting.discard(key)
        ordered.append(key)

    for key in templates:
        visit(key)
    return ordered


def deletion_order(
    templates: Mapping[str, EntityTemplate] = TEMPLATES,
) -> list[str]:
    """Return entity keys with dependent (referencing) types first."""
    return list(reversed(insertion_order(templates)))


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------


def export_all(
    store: RecordStore,
    tenant_id: str,
    entity_keys: Optional[list[str]] = None,
) -> dict[str, list[dict[str, Any]]]:
    """
    Read every record of the tenant into a backup document.

    Parameters
    ----------
    store:
        Record store to read from.
    tenant_id:
        Owning account.
    entity_keys:
        Restrict the export to these entity types (default: all, in registry
        order).

    Returns
    -------
    dict
        entity_key → list of records, identity fields included.
    """
    keys = entity_keys if entity_keys is not None else list(TEMPLATES)
    document: dict[str, list[dict[str, Any]]] = {}
    for key in keys:
        get_template(key)
        document[key] = store.select_all(key, tenant_id)
    logger.info(
        "Exported %d record(s) across %d entity type(s)",
        sum(len(v) for v in document.values()),
        len(document),
    )
    return document


def dumps_backup(document: Mapping[str, Any]) -> str:
    """Serialize a backup document as indented JSON text."""
    return json.dumps(document, indent=2, ensure_ascii=False, default=str)


def loads_backup(text: str | bytes) -> dict[str, Any]:
    """Parse backup JSON text.

    Raises:
        InputMalformedError: if the text is not JSON or not a JSON object.
    """
    if isinstance(text, (bytes, bytearray)):
        text = text.decode("utf-8-sig")
    try:
        document = json.loads(text)
    except json.JSONDecodeError as exc:
        raise InputMalformedError(f"Invalid JSON document: {exc}") from exc
    if not isinstance(document, dict):
        raise InputMalformedError("Backup document must be a JSON object.")
    return document


def backup_filename(today: Optional[date] = None) -> str:
    """Default file name of a backup taken on ``today``."""
    return f"backup_{(today or date.today()).isoformat()}.json"


# ---------------------------------------------------------------------------
# Restore
# ---------------------------------------------------------------------------


def _check_backup_sections(document: Mapping[str, Any]) -> None:
    for key, records in document.items():
        if key not in TEMPLATES:
            continue
        if not isinstance(records, list):
            raise InputMalformedError(
                f"Backup section {key!r} must be an array of objects."
            )
        for index, rec in enumerate(records, start=1):
            if not isinstance(rec, Mapping):
                raise InputMalformedError(
                    f"Element {index} of backup section {key!r} is not an object."
                )


def _strip_and_remap(
    record: Mapping[str, Any],
    template: EntityTemplate,
    id_maps: Mapping[str, Mapping[Any, int]],
) -> dict[str, Any]:
    out = {k: v for k, v in record.items() if k not in IDENTITY_FIELDS}
    for ref_field, target in template.references.items():
        if ref_field not in out:
            continue
        new_id = id_maps.get(target, {}).get(out[ref_field])
        if new_id is None:
            out.pop(ref_field)
        else:
            out[ref_field] = new_id
    return out


def restore_backup(
    orchestrator: ImportOrchestrator,
    document: Mapping[str, Any] | str | bytes,
    tenant_id: str,
) -> dict[str, ImportResult]:
    """
    Re-import a backup document through the import pipeline.

    Sections are processed in insertion order (referenced types first). For
    each record, identity fields are stripped and reference fields are
    rewritten to the ids assigned during this restore; a reference that
    cannot be remapped is dropped. Records are resolved, coerced, validated
    and checked for duplicates exactly like any other structured import.
    A record skipped as a duplicate gets no new id, so references to it are
    dropped from the records restored after it.

    Unknown top-level keys are ignored with a warning.

    Returns
    -------
    dict
        entity_key → ImportResult, for every non-empty section.

    Raises
    ------
    InputMalformedError
        If the document or one of its sections is malformed.
    InputEmptyError
        If the document holds no record for any known entity type.
    """
    if isinstance(document, (str, bytes, bytearray)):
        document = loads_backup(document)
    if not isinstance(document, Mapping):
        raise InputMalformedError("Backup document must be a JSON object.")

    unknown = sorted(set(document) - set(TEMPLATES))
    if unknown:
        logger.warning("Ignoring unknown backup section(s): %s", ", ".join(unknown))

    _check_backup_sections(document)
    if not any(document.get(key) for key in TEMPLATES):
        raise InputEmptyError("Backup document contains no records.")

    id_maps: dict[str, dict[Any, int]] = {}
    results: dict[str, ImportResult] = {}

    for key in insertion_order():
        records = document.get(key) or []
        if not records:
            continue

        template = TEMPLATES[key]
        old_ids = [rec.get("id") for rec in records]
        rows = [
            SourceRow(position=i, values=_strip_and_remap(rec, template, id_maps))
            for i, rec in enumerate(records, start=1)
        ]

        result = orchestrator.run(key, rows, tenant_id, position_label="Record")
        id_maps[key] = {
            old_ids[pos - 1]: new_id
            for pos, new_id in result.persisted_ids.items()
            if old_ids[pos - 1] is not None
        }
        results[key] = result

    return results


# ---------------------------------------------------------------------------
# Deletion
# ---------------------------------------------------------------------------


@dataclass
class DeletionReport:
    """
    Outcome of a bulk deletion.

    Attributes
    ----------
    deleted:
        entity_key → number of deleted records, for every type that succeeded.
    errors:
        entity_key → store message, for every type that failed.
    """

    deleted: dict[str, int] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return sum(self.deleted.values())

    @property
    def ok(self) -> bool:
        return not self.errors


def delete_by_type(
    store: RecordStore,
    entity_key: str,
    tenant_id: str,
    record_id: Optional[int] = None,
) -> int:
    """
    Delete the tenant's records of one entity type (or a single record).

    Raises
    ------
    UnknownEntityError
        If ``entity_key`` is not registered.
    StoreError
        If the store refuses the deletion (e.g. records of another type
        still reference them).
    """
    get_template(entity_key)
    count = store.delete_where(entity_key, tenant_id, record_id)
    logger.info("Deleted %d %s record(s) for tenant %s", count, entity_key, tenant_id)
    return count


def delete_all(
    store: RecordStore,
    tenant_id: str,
    entity_keys: Optional[list[str]] = None,
) -> DeletionReport:
    """
    Delete every record of the tenant, dependent entity types first.

    A failure on one entity type is recorded in the report and the remaining
    types are still processed.

    Parameters
    ----------
    entity_keys:
        Restrict the deletion to these entity types. They are still processed
        in dependency order.
    """
    selected = set(entity_keys) if entity_keys is not None else None
    if selected is not None:
        for key in selected:
            get_template(key)

    report = DeletionReport()
    for key in deletion_order():
        if selected is not None and key not in selected:
            continue
        try:
            report.deleted[key] = delete_by_type(store, key, tenant_id)
        except StoreError as exc:
            logger.error("Deleting %s failed: %s", key, exc)
            report.errors[key] = str(exc)
    return report
