# SMB BackOffice - Data import & reconciliation engine for SMB bookkeeping
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
SMB BackOffice
--------------

A Python-based import and reconciliation engine for the back office of
Small and Medium-sized Businesses (SMBs). It brings foreign business data
(CSV/TSV exports, JSON documents, XLSX workbooks, OFX and CSV bank
statements) into a tenant-scoped record store.

Main capabilities:
- a static schema registry of entity templates (clients, suppliers,
  products, services, employees, bank accounts, categories, payment
  methods, financial transactions),
- header reconciliation through curated, ordered alias lists,
- locale-tolerant numeric and date coercion,
- required-field validation and natural-key duplicate detection,
- per-record outcomes folded into an import report with row positions,
- bank statement import with per-account deduplication of bank ids,
- tenant backup export, restore (with id remapping) and bulk deletion in
  reference-dependency order,
- a SQLite record store and a command-line interface.

SMB BackOffice separates the engine (parsing, reconciliation, lifecycle),
configuration (TOML) and presentation (CLI), so the engine can be driven
from scripts or another front end.


Version: 0.1.0

Usage:
    python -m smb_backoffice.cli --help
"""

__all__ = ["importer", "lifecycle", "statements", "templates", "db", "io"]

__version__ = "0.1.0"
