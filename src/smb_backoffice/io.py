# SMB BackOffice - Data import & reconciliation engine for SMB bookkeeping
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
I/O helpers for SMB BackOffice.

The import engine only ever receives raw text, decoded documents or source
rows. This module is the thin layer that gets that content from files:

- ``detect_format``:            choose "csv", "json", "xlsx" or "ofx" from a
                                 file suffix.
- ``read_source_file``:         read a text file (UTF-8 by default, BOM-safe).
- ``spreadsheet_rows``:         read the first sheet of an .xlsx workbook
                                 directly into SourceRows.
- ``spreadsheet_to_delimited``: convert the first sheet of an .xlsx workbook
                                 into delimited text.

Spreadsheet cells are rendered as text before they reach the engine:

- empty cells become empty strings,
- date and datetime cells become ISO ``YYYY-MM-DD`` (the time of day is
  dropped, date fields only hold calendar dates),
- whole numbers stored as floats lose their ``.0`` suffix,
- everything else goes through ``str``.

Workbook positions count the header as row 1. pandas drops fully empty
sheet rows, so a position is the data row number after the header rather
than the physical sheet row whenever blank rows precede it.
"""

import io
import math
import os
from datetime import date, datetime
from pathlib import Path
from typing import Any, Union

import pandas as pd

from .parsing import SourceRow, normalize_delimiter

_FORMATS_BY_SUFFIX = {
    ".csv": "csv",
    ".txt": "csv",
    ".tsv": "csv",
    ".json": "json",
    ".xlsx": "xlsx",
    ".xlsm": "xlsx",
    ".ofx": "ofx",
}


def detect_format(path: Union[str, "os.PathLike[str]"]) -> str:
    """Return "csv", "json", "xlsx" or "ofx" based on the file suffix.

    Raises:
        ValueError: if the suffix is not supported.
    """
    suffix = Path(path).suffix.lower()
    try:
        return _FORMATS_BY_SUFFIX[suffix]
    except KeyError:
        raise ValueError(
            f"Unsupported file type {suffix!r}. "
            "Expected one of: .csv, .txt, .tsv, .json, .xlsx, .xlsm, .ofx."
        ) from None


def read_source_file(
    path: Union[str, "os.PathLike[str]"], encoding: str = "utf-8"
) -> str:
    """Read a text source file. A UTF-8 byte order mark is dropped."""
    if encoding.lower().replace("_", "-") in {"utf-8", "utf8"}:
        encoding = "utf-8-sig"
    return Path(path).read_text(encoding=encoding)


def _cell_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and math.isnan(value):
        return ""
    if value is pd.NaT:
        return ""
    if isinstance(value, (pd.Timestamp, datetime)):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def _read_sheet(content: bytes) -> pd.DataFrame:
    """Read the first sheet as text cells (see module docstring)."""
    try:
        df = pd.read_excel(io.BytesIO(content), engine="openpyxl", dtype=object)
    except Exception as exc:  # noqa: BLE001
        raise ValueError("Could not read spreadsheet content.") from exc

    df.columns = [str(c).strip() for c in df.columns]
    return df.map(_cell_text)


def spreadsheet_rows(content: bytes) -> list[SourceRow]:
    """
    Read the first sheet of an .xlsx workbook into SourceRows.

    Cells keep their content verbatim (delimiters, quotes and line breaks
    included), so no record is lost to a text round trip.

    Raises
    ------
    ValueError
        If the content cannot be read as a workbook.
    """
    df = _read_sheet(content)
    return [
        SourceRow(position=position, values=dict(zip(df.columns, values)))
        for position, values in enumerate(df.itertuples(index=False), start=2)
    ]


def spreadsheet_to_delimited(content: bytes, delimiter: str = ",") -> str:
    """
    Convert the first sheet of an .xlsx workbook into delimited text.

    Parameters
    ----------
    content:
        Raw bytes of the workbook.
    delimiter:
        Cell separator of the produced text (single character or "tab").

    Returns
    -------
    str
        Header line followed by one line per sheet row.

    Raises
    ------
    ValueError
        If the content cannot be read as a workbook, or if a cell contains
        the delimiter, a double quote or a line break. Such a cell cannot
        be represented in the unquoted text the delimited parser reads.
        The message names the offending row and column.
    """
    sep = normalize_delimiter(delimiter)
    df = _read_sheet(content)

    forbidden = (sep, '"', "\n", "\r")
    for column in df.columns:
        if any(ch in column for ch in forbidden):
            raise ValueError(
                f"Header {column!r} contains the delimiter, a quote or a line "
                "break; choose another delimiter."
            )
    for position, values in enumerate(df.itertuples(index=False), start=2):
        for column, cell in zip(df.columns, values):
            if any(ch in cell for ch in forbidden):
                raise ValueError(
                    f"Row {position}, column {column!r} contains the delimiter, "
                    "a quote or a line break; choose another delimiter."
                )

    lines = [sep.join(df.columns)]
    lines.extend(sep.join(values) for values in df.itertuples(index=False))
    return "\n".join(lines) + "\n"
