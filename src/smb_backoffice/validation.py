# SMB BackOffice - Data import & reconciliation engine for SMB bookkeeping
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Required-field validation of mapped records.

Validation runs after coercion (so template defaults can satisfy a required
field) and strictly before duplicate detection and persistence.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from .templates import EntityTemplate


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of validating one mapped record.

    ``missing`` lists the absent required fields in template field order and
    is empty when the record is valid.
    """

    missing: tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return not self.missing

    def reason(self) -> str:
        return f"missing required fields ({', '.join(self.missing)})"


def validate(record: Mapping[str, Any], template: EntityTemplate) -> ValidationResult:
    """Check that every required field of the template is present."""
    missing = tuple(
        f for f in template.fields if f in template.required_fields and f not in record
    )
    return ValidationResult(missing=missing)
