# SMB BackOffice - Data import & reconciliation engine for SMB bookkeeping
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Exception types shared by the import engine, the store layer and the CLI.

Batch-fatal conditions (``InputEmptyError``, ``InputMalformedError``) are
raised before any record is processed. Per-record conditions are never
raised out of the orchestrator: they are folded into the ImportResult.
"""


class BackofficeError(Exception):
    """Base class for all errors raised by smb_backoffice."""


class UnknownEntityError(BackofficeError, KeyError):
    """Raised when an entity key is not registered in the schema registry."""

    def __init__(self, entity_key: str):
        self.entity_key = entity_key
        super().__init__(entity_key)

    def __str__(self) -> str:
        return f"Unknown entity type: {self.entity_key!r}"


class InputEmptyError(BackofficeError, ValueError):
    """Raised when the input does not yield a single data row."""


class InputMalformedError(BackofficeError, ValueError):
    """Raised when a structured document cannot be parsed at all."""


class CoercionError(ValueError):
    """Raised by strict numeric coercion when a value cannot be parsed."""

    def __init__(self, field: str, value: object):
        self.field = field
        self.value = value
        super().__init__(f"invalid numeric value for '{field}': {value!r}")


class StoreError(BackofficeError, RuntimeError):
    """Raised by a record store when an operation fails.

    The message is the underlying store message, unchanged, so that it can
    be shown verbatim in import reports.
    """


class DuplicateCheckError(StoreError):
    """Raised by the duplicate detector when checks fail in fail-closed mode."""
