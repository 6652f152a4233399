# SMB BackOffice - Data import & reconciliation engine for SMB bookkeeping
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Bank statement import for SMB BackOffice.

A bank statement is a list of already settled movements on one bank
account. Two statement formats are read:

1) OFX
   ----
   Every ``<STMTTRN>`` block is one movement. ``DTPOSTED`` (``YYYYMMDD``
   optionally followed by a time) gives the date, ``TRNAMT`` the signed
   amount, ``FITID`` the bank identifier and ``MEMO`` the description.
   Closing tags are optional, as in SGML-style OFX 1.x files. A block
   without ``DTPOSTED`` or ``TRNAMT`` is ignored. Positions are the 1-based
   index of the block in the file.

2) Delimited text
   ---------------
   Positional columns ``date,value,identifier,description``. The first
   non-blank line is a header and is skipped, dates are ``DD/MM/YYYY``
   and lines with fewer than three cells are ignored. Positions are
   physical line numbers.

Each movement becomes a financial transaction:

- ``type`` is "income" for a positive or zero amount, "expense" otherwise,
- ``amount`` and ``paid_amount`` hold the absolute amount,
- ``status`` is "confirmed" and both ``due_date`` and ``paid_date`` are the
  statement date,
- ``notes`` is ``"ID: <identifier>"`` when the bank provided one.

The transactions then go through the regular import pipeline. Duplicate
detection looks for a transaction with the same ``notes`` on the same bank
account, so importing the same statement twice skips every movement that
carries an identifier.
"""

import logging
import re
from collections.abc import Iterator
from typing import Any, Literal, Optional

from .coercion import coerce_date, coerce_number
from .duplicates import DuplicateDetector, DuplicatePolicy
from .errors import CoercionError
from .importer import ImportOrchestrator, ImportResult
from .parsing import SourceRow, normalize_delimiter
from .resolver import is_blank
from .store import RecordStore

logger = logging.getLogger(__name__)

StatementFormat = Literal["ofx", "csv"]

DEFAULT_DESCRIPTION = "Imported transaction"

_STMTTRN = re.compile(r"<STMTTRN>(.*?)</STMTTRN>", re.IGNORECASE | re.DOTALL)
_OFX_DATE = re.compile(r"^(\d{4})(\d{2})(\d{2})")


# ---------------------------------------------------------------------------
# Statement parsers
# ---------------------------------------------------------------------------


def _ofx_tag(block: str, tag: str) -> Optional[str]:
    m = re.search(rf"<{tag}>([^<\r\n]*)", block, re.IGNORECASE)
    if m is None:
        return None
    return m.group(1).strip()


def _ofx_date(value: str) -> Optional[str]:
    m = _OFX_DATE.match(value)
    if m is None:
        return None
    return coerce_date("-".join(m.groups()))


def parse_ofx(text: str) -> Iterator[SourceRow]:
    """Yield one SourceRow per ``<STMTTRN>`` block of an OFX statement.

    Row values use the statement keys ``date``, ``value``, ``identifier``
    and ``description``.
    """
    for position, m in enumerate(_STMTTRN.finditer(text), start=1):
        block = m.group(1)
        posted = _ofx_tag(block, "DTPOSTED")
        amount = _ofx_tag(block, "TRNAMT")
        if not posted or not amount:
            logger.debug("OFX transaction %d has no date or amount", position)
            continue
        yield SourceRow(
            position=position,
            values={
                "date": _ofx_date(posted),
                "value": amount,
                "identifier": _ofx_tag(block, "FITID"),
                "description": _ofx_tag(block, "MEMO"),
            },
        )


def parse_statement_csv(text: str, delimiter: str = ",") -> Iterator[SourceRow]:
    """Yield one SourceRow per data line of a delimited statement.

    Raises:
        ValueError: if the delimiter is invalid.
    """
    sep = normalize_delimiter(delimiter)
    return _iter_statement_lines(text, sep)


def _iter_statement_lines(text: str, sep: str) -> Iterator[SourceRow]:
    header_seen = False
    for line_no, line in enumerate(text.splitlines(), start=1):
        if not line.strip():
            continue
        if not header_seen:
            header_seen = True
            continue

        parts = [cell.strip().strip('"').strip() for cell in line.split(sep)]
        if len(parts) < 3:
            continue
        yield SourceRow(
            position=line_no,
            values={
                "date": coerce_date(parts[0]),
                "value": parts[1],
                "identifier": parts[2],
                "description": parts[3] if len(parts) > 3 else None,
            },
        )


# ---------------------------------------------------------------------------
# Statement line -> transaction
# ---------------------------------------------------------------------------


def statement_transaction(
    values: dict[str, Any], bank_account_id: int
) -> dict[str, Any]:
    """
    Build the transaction fields of one statement line.

    A value that cannot be read as a number leaves ``amount`` out and an
    unreadable date leaves both dates out, so validation rejects the line
    with the usual "missing required field" reason.
    """
    description = values.get("description")
    record: dict[str, Any] = {
        "description": DEFAULT_DESCRIPTION if is_blank(description) else description,
        "status": "confirmed",
        "bank_account_id": bank_account_id,
    }

    try:
        amount = coerce_number(values.get("value"), strict=True, field="amount")
    except CoercionError:
        amount = None
    if amount is not None:
        record["amount"] = abs(amount)
        record["paid_amount"] = abs(amount)
        record["type"] = "income" if amount >= 0 else "expense"

    if values.get("date"):
        record["due_date"] = values["date"]
        record["paid_date"] = values["date"]

    identifier = values.get("identifier")
    if not is_blank(identifier):
        record["notes"] = f"ID: {identifier}"
    return record


def statement_rows(
    rows: Iterator[SourceRow], bank_account_id: int
) -> Iterator[SourceRow]:
    """Turn parsed statement lines into transaction rows, keeping positions."""
    for row in rows:
        yield SourceRow(
            position=row.position,
            values=statement_transaction(dict(row.values), bank_account_id),
        )


def import_bank_statement(
    store: RecordStore,
    text: str,
    tenant_id: str,
    bank_account_id: int,
    *,
    fmt: StatementFormat = "ofx",
    delimiter: str = ",",
    duplicate_policy: DuplicatePolicy = "fail_open",
    strict_numbers: bool = False,
    **kwargs: Any,
) -> ImportResult:
    """
    Import a bank statement as confirmed transactions of one bank account.

    Parameters
    ----------
    store:
        Record store receiving the transactions.
    text:
        Statement content (OFX or delimited text).
    tenant_id:
        Owning account.
    bank_account_id:
        Bank account the statement belongs to. It must be a record of the
        tenant.
    fmt:
        "ofx" or "csv".
    delimiter:
        Cell separator for the "csv" format.
    **kwargs:
        Passed to ``ImportOrchestrator.run`` (``on_outcome``,
        ``is_cancelled``).

    Raises
    ------
    ValueError
        If the format is unknown or the bank account does not belong to the
        tenant.
    InputEmptyError
        If the statement holds no movement.
    """
    if fmt == "ofx":
        parsed = parse_ofx(text)
        position_label = "Record"
    elif fmt == "csv":
        parsed = parse_statement_csv(text, delimiter)
        position_label = "Row"
    else:
        raise ValueError(f"Unknown statement format: {fmt!r}")

    if not store.exists_where("bank_accounts", "id", bank_account_id, tenant_id):
        raise ValueError(f"Bank account {bank_account_id} not found.")

    detector = DuplicateDetector(
        store,
        policy=duplicate_policy,
        natural_keys={"transactions": ("notes",)},
        scope_fields={"transactions": ("bank_account_id",)},
    )
    orchestrator = ImportOrchestrator(
        store, detector=detector, strict_numbers=strict_numbers
    )
    logger.info(
        "Importing %s statement into bank account %s", fmt, bank_account_id
    )
    return orchestrator.run(
        "transactions",
        statement_rows(parsed, bank_account_id),
        tenant_id,
        position_label=position_label,
        **kwargs,
    )
