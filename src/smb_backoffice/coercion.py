# SMB BackOffice - Data import & reconciliation engine for SMB bookkeeping
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Value coercion for mapped records.

Legacy exports mix locales freely: amounts come as ``1.234,56`` or
``1,234.56``, dates as ``31/01/2024`` or ``2024-01-31``. This module brings
every value of the numeric and date field tables to a canonical form:

Numbers
-------
- Characters other than digits, ``.``, ``,`` and ``-`` are stripped
  (currency symbols, spaces, letters).
- When both ``.`` and ``,`` are present, the one appearing last is the
  decimal separator and the other one is a thousands separator
  (``1.234,56`` → 1234.56, ``1,234.56`` → 1234.56).
- When only one kind of separator is present and it appears exactly once,
  it is the decimal separator (``12,5`` → 12.5). When it appears several
  times it is a thousands separator (``1.234.567`` → 1234567).
- A value that still cannot be parsed becomes ``0.0`` (permissive policy),
  or raises CoercionError under the strict policy.

Dates
-----
``DD/MM/YYYY`` and ``YYYY-MM-DD`` (one- or two-digit day and month) are
converted to ISO ``YYYY-MM-DD``. Any other shape, or an impossible calendar
date, drops the field from the record.

Defaults
--------
After coercion, template defaults fill absent optional fields, and party
records (templates with a ``document_type`` field) get their document type
derived from the presence of a CNPJ.
"""

import math
import re
from datetime import date, datetime
from typing import Any, Optional

from .errors import CoercionError
from .templates import DATE_FIELDS, NUMERIC_FIELDS, EntityTemplate

_NON_NUMERIC = re.compile(r"[^\d.,\-]")
_DMY = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")
_YMD = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})$")


def _normalize_separators(cleaned: str) -> str:
    has_dot = "." in cleaned
    has_comma = "," in cleaned

    if has_dot and has_comma:
        if cleaned.rfind(",") > cleaned.rfind("."):
            return cleaned.replace(".", "").replace(",", ".")
        return cleaned.replace(",", "")

    if has_comma:
        if cleaned.count(",") == 1:
            return cleaned.replace(",", ".")
        return cleaned.replace(",", "")

    if has_dot and cleaned.count(".") > 1:
        return cleaned.replace(".", "")

    return cleaned


def coerce_number(value: Any, *, strict: bool = False, field: str = "") -> float:
    """Convert a locale-ambiguous numeric value to a float.

    Args:
        value: Raw value (string, int or float).
        strict: Raise CoercionError instead of returning 0.0 on failure.
        field: Field name, only used in the CoercionError message.

    Examples:
        >>> coerce_number("1.234,56")
        1234.56
        >>> coerce_number("R$ 1,234.56")
        1234.56
        >>> coerce_number("abc")
        0.0
    """
    if isinstance(value, bool):
        result = math.nan
    elif isinstance(value, (int, float)):
        result = float(value)
    else:
        cleaned = _normalize_separators(_NON_NUMERIC.sub("", str(value)))
        try:
            result = float(cleaned)
        except ValueError:
            result = math.nan

    if math.isnan(result) or math.isinf(result):
        if strict:
            raise CoercionError(field, value)
        return 0.0
    return result


def coerce_date(value: Any) -> Optional[str]:
    """Convert a date value to ISO ``YYYY-MM-DD``.

    Returns:
        The ISO date string, or None when the value has an unsupported shape
        or is not a real calendar date.

    Examples:
        >>> coerce_date("31/01/2024")
        '2024-01-31'
        >>> coerce_date("not-a-date") is None
        True
    """
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if not isinstance(value, str):
        return None

    text = value.strip()
    m = _DMY.match(text)
    if m:
        day, month, year = (int(g) for g in m.groups())
    else:
        m = _YMD.match(text)
        if not m:
            return None
        year, month, day = (int(g) for g in m.groups())

    try:
        return date(year, month, day).isoformat()
    except ValueError:
        return None


def coerce_record(
    record: dict[str, Any],
    template: EntityTemplate,
    *,
    strict_numbers: bool = False,
) -> dict[str, Any]:
    """Coerce numeric and date fields, then apply template defaults.

    The input record is not modified; a new dict is returned.

    Raises:
        CoercionError: only when ``strict_numbers`` is True and a numeric
            field cannot be parsed.
    """
    out: dict[str, Any] = {}
    for field_name, value in record.items():
        if field_name in NUMERIC_FIELDS:
            out[field_name] = coerce_number(
                value, strict=strict_numbers, field=field_name
            )
        elif field_name in DATE_FIELDS:
            iso = coerce_date(value)
            if iso is not None:
                out[field_name] = iso
        else:
            out[field_name] = value

    return apply_defaults(out, template)


def apply_defaults(record: dict[str, Any], template: EntityTemplate) -> dict[str, Any]:
    """Fill absent fields from the template defaults (in place) and return it."""
    for field_name, default in template.defaults.items():
        record.setdefault(field_name, default)

    if "document_type" in template.fields:
        record["document_type"] = "cnpj" if record.get("cnpj") else "cpf"

    return record
