# SMB BackOffice - Data import & reconciliation engine for SMB bookkeeping
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Tabular parser for SMB BackOffice.

Two entry points turn raw input into the same row shape:

1) Delimited text
   ---------------
   ``parse_delimited(text, delimiter)`` splits the text on newlines, treats
   the first non-blank line as the header and builds one SourceRow per data
   line. Surrounding double quotes and whitespace are stripped from every
   cell. A data line whose cell count differs from the header's is silently
   skipped: exports from spreadsheets routinely carry trailing notes or
   broken lines, and those are not import failures.

2) Structured documents
   ---------------------
   ``parse_structured_document(doc)`` accepts JSON text (str or bytes) or an
   already decoded object. The document is either a single object or an
   array of objects; each object's keys become the row headers directly.

Both return a lazy iterator meant to be consumed once by the import
orchestrator. Every SourceRow carries its human-visible position:

- delimited text: the physical line number (the header is line 1),
- structured documents: the 1-based index of the element in the array.
"""

import json
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from typing import Any

from .errors import InputMalformedError

_TAB_SPELLINGS = {"\t", "\\t", "tab"}


@dataclass(frozen=True)
class SourceRow:
    """One raw header → value mapping extracted from the input.

    Attributes:
        position: Human-visible row/record number used in reports.
        values: Raw values keyed by the source header, as found in the input.
    """

    position: int
    values: Mapping[str, Any]


def normalize_delimiter(delimiter: str) -> str:
    """Return the single-character delimiter for a user-supplied spelling.

    ``"\\t"`` (a real tab), the two-character literal ``"\\\\t"`` and the
    word ``"tab"`` all select a tab.

    Raises:
        ValueError: if the delimiter is empty or longer than one character.
    """
    if not delimiter:
        raise ValueError("A delimiter is required.")
    if delimiter.lower() in _TAB_SPELLINGS:
        return "\t"
    if len(delimiter) != 1:
        raise ValueError(
            f"Invalid delimiter {delimiter!r}: expected a single character or 'tab'."
        )
    return delimiter


def _split_cells(line: str, delimiter: str) -> list[str]:
    return [cell.strip().strip('"').strip() for cell in line.split(delimiter)]


def parse_delimited(text: str, delimiter: str = ",") -> Iterator[SourceRow]:
    """Parse delimited text into SourceRows.

    Args:
        text: Full content of the delimited document.
        delimiter: Cell separator (``","``, ``";"``, tab, ...).

    Returns:
        An iterator of SourceRow, in source order. Blank lines and lines whose
        cell count differs from the header are not yielded.
    """
    sep = normalize_delimiter(delimiter)
    return _iter_delimited(text, sep)


def _iter_delimited(text: str, sep: str) -> Iterator[SourceRow]:
    header: list[str] | None = None

    for line_number, raw_line in enumerate(text.splitlines(), start=1):
        line = raw_line.lstrip("\ufeff") if line_number == 1 else raw_line
        if not line.strip():
            continue

        cells = _split_cells(line, sep)
        if header is None:
            header = cells
            continue

        if len(cells) != len(header):
            continue

        yield SourceRow(position=line_number, values=dict(zip(header, cells)))


def parse_structured_document(doc: str | bytes | Any) -> Iterator[SourceRow]:
    """Parse a structured document into SourceRows.

    The document is decoded eagerly so that malformed input is reported
    before any record is processed; rows are then produced lazily.

    Args:
        doc: JSON text (str or bytes), or an already decoded dict/list.

    Raises:
        InputMalformedError: if the text is not valid JSON, or if the document
            is neither an object nor an array of objects.
    """
    if isinstance(doc, (bytes, bytearray)):
        try:
            doc = doc.decode("utf-8-sig")
        except UnicodeDecodeError as exc:
            raise InputMalformedError(f"Document is not valid UTF-8: {exc}") from exc

    if isinstance(doc, str):
        try:
            doc = json.loads(doc)
        except json.JSONDecodeError as exc:
            raise InputMalformedError(f"Invalid JSON document: {exc}") from exc

    if isinstance(doc, Mapping):
        items = [doc]
    elif isinstance(doc, list):
        items = doc
    else:
        raise InputMalformedError(
            "Document must contain an object or an array of objects."
        )

    for index, item in enumerate(items, start=1):
        if not isinstance(item, Mapping):
            raise InputMalformedError(
                f"Element {index} of the document is not an object."
            )

    return _iter_objects(items)


def _iter_objects(items: list[Mapping[str, Any]]) -> Iterator[SourceRow]:
    for index, item in enumerate(items, start=1):
        yield SourceRow(position=index, values=dict(item))


def read_header(text: str, delimiter: str = ",") -> list[str]:
    """Return the header cells of delimited text (empty list if none)."""
    sep = normalize_delimiter(delimiter)
    for line_number, raw_line in enumerate(text.splitlines(), start=1):
        line = raw_line.lstrip("\ufeff") if line_number == 1 else raw_line
        if line.strip():
            return _split_cells(line, sep)
    return []
