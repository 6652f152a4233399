# SMB BackOffice - Data import & reconciliation engine for SMB bookkeeping
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Header resolution: reconcile arbitrary source headers with template fields.

For every field of the template, in declaration order:

1) a source column whose header equals the field name (case-insensitive,
   surrounding whitespace ignored) is accepted if its value is non-empty;
2) otherwise the field's aliases are tried in the order they are listed in
   the template, and the first alias column with a non-empty value wins;
3) if nothing matches, the field is left out of the mapped record.

No scoring or fuzzy matching is involved: alias lists are curated priority
lists, so the outcome is fully determined by the template and the headers.
"""

from collections.abc import Mapping
from typing import Any

from .templates import EntityTemplate


def _normalize_header(header: Any) -> str:
    return str(header).strip().lower()


def is_blank(value: Any) -> bool:
    """Return True for values that count as "no value" in a source row."""
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    return False


def _clean(value: Any) -> Any:
    return value.strip() if isinstance(value, str) else value


def build_header_index(values: Mapping[str, Any]) -> dict[str, Any]:
    """Index a source row by normalized header.

    When two headers only differ by case or whitespace, the first one seen
    in the row is kept.
    """
    index: dict[str, Any] = {}
    for header, value in values.items():
        index.setdefault(_normalize_header(header), value)
    return index


def resolve(
    source_values: Mapping[str, Any], template: EntityTemplate
) -> dict[str, Any]:
    """Map one source row onto the template's fields (before coercion).

    Args:
        source_values: Raw header → value mapping of one source row.
        template: Target entity template.

    Returns:
        A dict keyed by template field name, containing only the fields for
        which a non-empty source value was found. String values are stripped.
    """
    index = build_header_index(source_values)
    mapped: dict[str, Any] = {}

    for field_name in template.fields:
        value = index.get(_normalize_header(field_name))
        if not is_blank(value):
            mapped[field_name] = _clean(value)
            continue

        for alias in template.aliases_for(field_name):
            value = index.get(_normalize_header(alias))
            if not is_blank(value):
                mapped[field_name] = _clean(value)
                break

    return mapped


def matched_headers(
    headers: list[str], template: EntityTemplate
) -> dict[str, str | None]:
    """Report which source header each template field would be read from.

    This is a header-only preview (values are not inspected), useful to show
    users how their columns will be interpreted before running an import.

    Returns:
        Field name → matching source header, or None when no header matches.
    """
    by_norm: dict[str, str] = {}
    for header in headers:
        by_norm.setdefault(_normalize_header(header), header)

    preview: dict[str, str | None] = {}
    for field_name in template.fields:
        preview[field_name] = None
        for candidate in (field_name, *template.aliases_for(field_name)):
            key = _normalize_header(candidate)
            if key in by_norm:
                preview[field_name] = by_norm[key]
                break
    return preview
