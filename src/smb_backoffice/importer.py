# SMB BackOffice - Data import & reconciliation engine for SMB bookkeeping
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Import orchestrator for SMB BackOffice.

This module drives one import batch from raw input to an ImportResult:

    parse → resolve → coerce → validate → duplicate-check → persist

for every record, strictly in source order and one record at a time, so
that reported positions and skip counts are reproducible for a given input.

Batch-level behavior
--------------------
- Empty input (no data row at all) raises InputEmptyError and malformed
  structured documents raise InputMalformedError. Both happen before any
  record is processed.
- Every other problem is local to one record. It becomes a Rejected or
  Skipped outcome and the loop moves on to the next record. There is no
  retry and no rollback: records persisted before a failure stay persisted.

Outcomes
--------
- Persisted(position, record_id)
- Rejected(position, reason, kind) with kind one of
  "validation_failed", "coercion_failed", "duplicate_check_failed",
  "persistence_failed"
- Skipped(position, duplicate_of), reported with kind "duplicate_skipped"

The ImportResult is a fold over these outcomes: counters per kind plus the
ordered list of failures (rejections and skips), each tagged with its
human-visible position.
"""

import itertools
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any, Optional, Union

import pandas as pd

from .coercion import coerce_record
from .duplicates import DuplicateDetector, DuplicateMatch, DuplicatePolicy
from .errors import CoercionError, DuplicateCheckError, InputEmptyError, StoreError
from .parsing import SourceRow, parse_delimited, parse_structured_document
from .resolver import resolve
from .store import RecordStore
from .templates import EntityTemplate, get_template
from .validation import validate

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Outcomes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Persisted:
    """The record was written to the store under ``record_id``."""

    position: int
    record_id: int


@dataclass(frozen=True)
class Rejected:
    """The record was not written; ``reason`` explains why."""

    position: int
    reason: str
    kind: str


@dataclass(frozen=True)
class Skipped:
    """The record already exists in the store and was not written again."""

    position: int
    duplicate_of: DuplicateMatch

    kind = "duplicate_skipped"

    @property
    def reason(self) -> str:
        return f"duplicate skipped: {self.duplicate_of.describe()}"


ImportOutcome = Union[Persisted, Rejected, Skipped]


@dataclass(frozen=True)
class ImportFailure:
    """One line of the failure report."""

    position: int
    reason: str
    kind: str


@dataclass
class ImportResult:
    """
    Summary of one import batch.

    Attributes
    ----------
    entity_key:
        Entity type the batch was imported into.
    position_label:
        "Row" for delimited input, "Record" for structured documents. Used
        to prefix human-readable messages.
    success_count, rejected_count, skipped_count:
        Number of outcomes of each kind.
    failures:
        Rejections and duplicate skips, in source order.
    persisted_ids:
        Position → id assigned by the store for every persisted record.
    cancelled:
        True if the batch was stopped before the input was exhausted.
    """

    entity_key: str
    position_label: str = "Row"
    success_count: int = 0
    rejected_count: int = 0
    skipped_count: int = 0
    failures: list[ImportFailure] = field(default_factory=list)
    persisted_ids: dict[int, int] = field(default_factory=dict)
    cancelled: bool = False

    def add(self, outcome: ImportOutcome) -> None:
        """Fold one record outcome into the summary."""
        if isinstance(outcome, Persisted):
            self.success_count += 1
            self.persisted_ids[outcome.position] = outcome.record_id
            return

        if isinstance(outcome, Skipped):
            self.skipped_count += 1
        else:
            self.rejected_count += 1
        self.failures.append(
            ImportFailure(
                position=outcome.position, reason=outcome.reason, kind=outcome.kind
            )
        )

    @property
    def total(self) -> int:
        return self.success_count + self.rejected_count + self.skipped_count

    def messages(self) -> list[str]:
        """Failure messages prefixed with their position, e.g. 'Row 3: ...'."""
        label = self.position_label
        return [f"{label} {f.position}: {f.reason}" for f in self.failures]

    def to_dict(self) -> dict[str, Any]:
        """Return the result in its display shape (successCount + failures)."""
        return {
            "successCount": self.success_count,
            "failures": [
                {"position": f.position, "reason": f.reason} for f in self.failures
            ],
        }

    def failures_frame(self) -> pd.DataFrame:
        """Return failures as a DataFrame (columns: position, kind, reason)."""
        columns = ["position", "kind", "reason"]
        if not self.failures:
            return pd.DataFrame(columns=columns)
        return pd.DataFrame(
            [(f.position, f.kind, f.reason) for f in self.failures], columns=columns
        )


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class ImportOrchestrator:
    """
    Run import batches against a record store.

    Parameters
    ----------
    store:
        Record store receiving the records.
    detector:
        Duplicate detector. Built from ``store`` and ``duplicate_policy`` when
        omitted.
    duplicate_policy:
        "fail_open" (default) or "fail_closed", see duplicates.py.
    strict_numbers:
        When True, unparsable numeric values reject the record instead of
        being read as 0.
    """

    def __init__(
        self,
        store: RecordStore,
        *,
        detector: Optional[DuplicateDetector] = None,
        duplicate_policy: DuplicatePolicy = "fail_open",
        strict_numbers: bool = False,
    ):
        self.store = store
        self.detector = detector or DuplicateDetector(store, policy=duplicate_policy)
        self.strict_numbers = strict_numbers

    def process_record(
        self, template: EntityTemplate, row: SourceRow, tenant_id: str
    ) -> ImportOutcome:
        """Run one source row through the whole pipeline."""
        mapped = resolve(row.values, template)

        try:
            record = coerce_record(
                mapped, template, strict_numbers=self.strict_numbers
            )
        except CoercionError as exc:
            return Rejected(row.position, str(exc), "coercion_failed")

        check = validate(record, template)
        if not check.ok:
            return Rejected(row.position, check.reason(), "validation_failed")

        try:
            match = self.detector.find_duplicate(template, record, tenant_id)
        except DuplicateCheckError as exc:
            return Rejected(row.position, str(exc), "duplicate_check_failed")
        if match is not None:
            return Skipped(row.position, match)

        try:
            record_id = self.store.insert(template.entity_key, record, tenant_id)
        except StoreError as exc:
            return Rejected(row.position, str(exc), "persistence_failed")

        return Persisted(row.position, record_id)

    def run(
        self,
        entity_key: str,
        rows: Iterable[SourceRow],
        tenant_id: str,
        *,
        position_label: str = "Row",
        on_outcome: Optional[Callable[[ImportOutcome], None]] = None,
        is_cancelled: Optional[Callable[[], bool]] = None,
    ) -> ImportResult:
        """
        Import already parsed rows.

        Parameters
        ----------
        entity_key:
            Target entity type.
        rows:
            Parsed source rows, consumed once.
        tenant_id:
            Owning account for every store call.
        on_outcome:
            Optional callback invoked after each record, in source order.
        is_cancelled:
            Optional callable checked before each record. When it returns
            True the batch stops and the result is flagged as cancelled.

        Raises
        ------
        UnknownEntityError
            If ``entity_key`` is not registered.
        InputEmptyError
            If ``rows`` yields nothing.
        """
        template = get_template(entity_key)

        iterator = iter(rows)
        first = next(iterator, None)
        if first is None:
            raise InputEmptyError("No valid rows found in the input.")

        logger.info("Importing %s for tenant %s", entity_key, tenant_id)
        result = ImportResult(entity_key=entity_key, position_label=position_label)

        for row in itertools.chain([first], iterator):
            if is_cancelled is not None and is_cancelled():
                result.cancelled = True
                logger.info(
                    "Import of %s cancelled before %s %d",
                    entity_key,
                    position_label,
                    row.position,
                )
                break

            outcome = self.process_record(template, row, tenant_id)
            result.add(outcome)
            if not isinstance(outcome, Persisted):
                logger.info(
                    "%s %d %s: %s",
                    position_label,
                    outcome.position,
                    outcome.kind,
                    outcome.reason,
                )
            if on_outcome is not None:
                on_outcome(outcome)

        logger.info(
            "Import of %s finished: %d persisted, %d rejected, %d skipped",
            entity_key,
            result.success_count,
            result.rejected_count,
            result.skipped_count,
        )
        return result

    def import_delimited(
        self,
        entity_key: str,
        text: str,
        tenant_id: str,
        *,
        delimiter: str = ",",
        **kwargs: Any,
    ) -> ImportResult:
        """Parse delimited text and import it (positions are line numbers)."""
        get_template(entity_key)
        rows = parse_delimited(text, delimiter)
        return self.run(entity_key, rows, tenant_id, position_label="Row", **kwargs)

    def import_document(
        self,
        entity_key: str,
        document: Any,
        tenant_id: str,
        **kwargs: Any,
    ) -> ImportResult:
        """Parse a structured document and import it (positions are 1-based).

        Raises
        ------
        InputMalformedError
            If the document cannot be parsed.
        """
        get_template(entity_key)
        rows = parse_structured_document(document)
        return self.run(entity_key, rows, tenant_id, position_label="Record", **kwargs)
