# SMB BackOffice - Data import & reconciliation engine for SMB bookkeeping
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Command-Line Interface (CLI) for SMB BackOffice.

This module wires together the main building blocks of SMB BackOffice:

- application configuration (database, tenant, import options, logging),
- the schema registry (entity templates and their header aliases),
- the import orchestrator (parse, resolve, coerce, validate, dedupe, persist),
- bulk lifecycle operations (backup export, restore, deletion).

The CLI is intentionally thin: it does not implement any reconciliation
logic itself. It reads files, calls the engine and prints the outcome.


Subcommands
-----------

templates [ENTITY]
    List the registered entity types, or print the blank header line and
    the field details of one entity type.

preview ENTITY PATH
    Show which source column each template field would be read from,
    without importing anything.

import ENTITY PATH
    Import a CSV/TSV, JSON or XLSX file into the given entity type and
    print a summary followed by the failure table (rejected and skipped
    rows, with their positions).

export [--output FILE]
    Write every record of the tenant to a JSON backup document
    (default file name: backup_YYYY-MM-DD.json).

statement BANK_ACCOUNT_ID PATH
    Import an OFX or CSV bank statement as confirmed transactions of one
    bank account. Movements already imported on that account (same bank
    identifier) are skipped.

restore PATH
    Re-import a JSON backup document, referenced entity types first.

delete (--all | --type ENTITY [--id N]) --yes
    Delete records of the tenant. Nothing is deleted without --yes.


Configuration and overrides
---------------------------

The TOML configuration (smb_backoffice_config.toml by default) is the
source of truth. ``--tenant`` and ``--log-level`` override the matching
configuration values for a single invocation; ``--delimiter`` overrides
the configured import delimiter.


Examples
--------

    python -m smb_backoffice.cli templates clients
    python -m smb_backoffice.cli import clients data/clientes.csv --delimiter ";"
    python -m smb_backoffice.cli statement 1 extrato.ofx
    python -m smb_backoffice.cli export --output backups/today.json
    python -m smb_backoffice.cli delete --type products --yes
"""

import argparse
from dataclasses import replace
from pathlib import Path
from typing import Optional

import pandas as pd

from . import __version__
from .config import AppConfig, load_app_config
from .db import SQLiteStore
from .errors import BackofficeError, InputEmptyError, InputMalformedError
from .importer import ImportOrchestrator, ImportResult
from .io import detect_format, read_source_file, spreadsheet_rows
from .lifecycle import (
    backup_filename,
    delete_all,
    delete_by_type,
    dumps_backup,
    export_all,
    restore_backup,
)
from .logging_config import configure_logging
from .parsing import normalize_delimiter, parse_structured_document, read_header
from .resolver import matched_headers
from .statements import import_bank_statement
from .templates import TEMPLATES, get_template, list_templates

_ENTITY_CHOICES = list(TEMPLATES)


def _build_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser for the CLI."""
    ap = argparse.ArgumentParser(
        prog="python -m smb_backoffice.cli",
        description=(
            "SMB BackOffice - Data import & reconciliation engine for SMB "
            "bookkeeping. Imports records from CSV, JSON and XLSX files and "
            "bank statements from OFX files, reconciles headers with the "
            "entity templates, skips existing records and manages backups."
        ),
    )

    # Generic options
    ap.add_argument(
        "--version",
        action="store_true",
        help="Show the installed version of smb_backoffice and exit.",
    )
    ap.add_argument(
        "--config",
        dest="config_path",
        help=(
            "Path to the main TOML configuration file. If omitted, "
            "'smb_backoffice_config.toml' in the current directory is used."
        ),
    )
    ap.add_argument(
        "--tenant",
        dest="tenant_id",
        help="Override the tenant (owning account) defined in the configuration.",
    )
    ap.add_argument(
        "--log-level",
        dest="log_level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Override the log level defined in the configuration.",
    )

    subparsers = ap.add_subparsers(
        dest="command",
        metavar="command",
        help="Subcommand to run (templates, preview, import, export, ...).",
    )

    # ------------------------------------------------------------------
    # templates
    # ------------------------------------------------------------------
    templates_cmd = subparsers.add_parser(
        "templates",
        help="List entity types, or show the import header of one of them.",
    )
    templates_cmd.add_argument(
        "entity",
        nargs="?",
        choices=_ENTITY_CHOICES,
        help="Entity type to describe. If omitted, all entity types are listed.",
    )
    templates_cmd.add_argument(
        "--delimiter",
        help="Delimiter used for the printed header line (default: config).",
    )

    # ------------------------------------------------------------------
    # preview / import
    # ------------------------------------------------------------------
    for name, help_text in (
        ("preview", "Show how the columns of a file map onto an entity type."),
        ("import", "Import a CSV/TSV, JSON or XLSX file into an entity type."),
    ):
        cmd = subparsers.add_parser(name, help=help_text)
        cmd.add_argument("entity", choices=_ENTITY_CHOICES, help="Target entity type.")
        cmd.add_argument("path", help="Path to the source file.")
        cmd.add_argument(
            "--format",
            dest="input_format",
            choices=["csv", "json", "xlsx"],
            help="Input format. If omitted, it is detected from the file suffix.",
        )
        cmd.add_argument(
            "--delimiter",
            help=(
                "Cell delimiter for CSV input (e.g. ',', ';', 'tab'). "
                "Defaults to the configured delimiter."
            ),
        )

    # ------------------------------------------------------------------
    # statement
    # ------------------------------------------------------------------
    statement_cmd = subparsers.add_parser(
        "statement",
        help="Import an OFX or CSV bank statement into one bank account.",
    )
    statement_cmd.add_argument(
        "bank_account_id", type=int, help="Id of the bank account (see export)."
    )
    statement_cmd.add_argument("path", help="Path to the statement file.")
    statement_cmd.add_argument(
        "--format",
        dest="statement_format",
        choices=["ofx", "csv"],
        help="Statement format. If omitted, it is detected from the file suffix.",
    )
    statement_cmd.add_argument(
        "--delimiter",
        help="Cell delimiter for CSV statements (default: config).",
    )

    # ------------------------------------------------------------------
    # export
    # ------------------------------------------------------------------
    export_cmd = subparsers.add_parser(
        "export",
        help="Write every record of the tenant to a JSON backup document.",
    )
    export_cmd.add_argument(
        "--output",
        help="Output file (default: backup_YYYY-MM-DD.json in the current directory).",
    )

    # ------------------------------------------------------------------
    # restore
    # ------------------------------------------------------------------
    restore_cmd = subparsers.add_parser(
        "restore",
        help="Re-import a JSON backup document.",
    )
    restore_cmd.add_argument("path", help="Path to the backup document.")

    # ------------------------------------------------------------------
    # delete
    # ------------------------------------------------------------------
    delete_cmd = subparsers.add_parser(
        "delete",
        help="Delete records of the tenant (all of them, or one entity type).",
    )
    scope = delete_cmd.add_mutually_exclusive_group(required=True)
    scope.add_argument(
        "--all",
        dest="delete_all",
        action="store_true",
        help="Delete every record of every entity type, dependents first.",
    )
    scope.add_argument(
        "--type",
        dest="entity",
        choices=_ENTITY_CHOICES,
        help="Delete the records of this entity type only.",
    )
    delete_cmd.add_argument(
        "--id",
        dest="record_id",
        type=int,
        help="With --type, delete only the record with this id.",
    )
    delete_cmd.add_argument(
        "--yes",
        action="store_true",
        help="Confirm the deletion. Without it, nothing is deleted.",
    )

    return ap


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _resolve_config(args: argparse.Namespace) -> AppConfig:
    """Load the configuration and apply command-line overrides."""
    try:
        config = load_app_config(args.config_path)
    except (FileNotFoundError, ValueError) as exc:
        raise SystemExit(f"Configuration error: {exc}") from exc

    if args.tenant_id:
        config = replace(config, tenant_id=args.tenant_id)
    if args.log_level:
        config = replace(config, log_level=args.log_level)
    return config


def _delimiter(args: argparse.Namespace, config: AppConfig) -> str:
    raw = getattr(args, "delimiter", None)
    if not raw:
        return config.import_options.delimiter
    try:
        return normalize_delimiter(raw)
    except ValueError as exc:
        raise SystemExit(str(exc)) from exc


def _read_input(
    path: Path, input_format: Optional[str], encoding: str
) -> tuple[str, object]:
    """
    Read a source file for import or preview.

    Returns
    -------
    tuple
        ("delimited", text) for CSV input, ("document", bytes) for JSON
        input and ("rows", list of SourceRow) for XLSX input.
    """
    if not path.is_file():
        raise SystemExit(f"Input file not found: {path}")

    try:
        fmt = input_format or detect_format(path)
    except ValueError as exc:
        raise SystemExit(str(exc)) from exc

    if fmt == "ofx":
        raise SystemExit(
            f"{path} is a bank statement; use the 'statement' command instead."
        )
    if fmt == "json":
        return "document", path.read_bytes()
    if fmt == "xlsx":
        try:
            return "rows", spreadsheet_rows(path.read_bytes())
        except ValueError as exc:
            raise SystemExit(f"{exc} ({path})") from exc
    return "delimited", read_source_file(path, encoding)


def _print_import_result(result: ImportResult) -> None:
    print(
        f"{result.entity_key}: {result.success_count} imported, "
        f"{result.skipped_count} skipped as duplicates, "
        f"{result.rejected_count} rejected."
    )
    if result.cancelled:
        print("Import was cancelled before the end of the input.")
    if result.failures:
        print()
        print(result.failures_frame().to_string(index=False))


# ---------------------------------------------------------------------------
# Subcommand handlers
# ---------------------------------------------------------------------------


def _handle_templates(args: argparse.Namespace, config: AppConfig) -> None:
    """
    Handle the 'templates' subcommand.

    Without an entity, print one line per registered entity type. With an
    entity, print its blank header line and a table of its fields.
    """
    if not args.entity:
        df = pd.DataFrame(
            [
                {
                    "entity": t.entity_key,
                    "name": t.display_name,
                    "fields": len(t.fields),
                    "required": ", ".join(
                        f for f in t.fields if f in t.required_fields
                    ),
                }
                for t in list_templates()
            ]
        )
        print(df.to_string(index=False))
        return

    template = get_template(args.entity)
    print(template.header(_delimiter(args, config)))
    print()
    df = pd.DataFrame(
        [
            {
                "field": f,
                "required": "yes" if f in template.required_fields else "",
                "default": template.defaults.get(f, ""),
                "aliases": ", ".join(template.aliases_for(f)),
            }
            for f in template.fields
        ]
    )
    print(df.to_string(index=False))


def _handle_preview(args: argparse.Namespace, config: AppConfig) -> None:
    """Handle the 'preview' subcommand: show the header → field mapping."""
    delimiter = _delimiter(args, config)
    kind, content = _read_input(
        Path(args.path), args.input_format, config.import_options.encoding
    )

    if kind == "delimited":
        headers = read_header(content, delimiter)
    else:
        if kind == "rows":
            rows = content
        else:
            try:
                rows = parse_structured_document(content)
            except InputMalformedError as exc:
                raise SystemExit(str(exc)) from exc
        headers = []
        for row in rows:
            headers.extend(h for h in row.values if h not in headers)

    template = get_template(args.entity)
    preview = matched_headers(headers, template)
    df = pd.DataFrame(
        [
            {
                "field": f,
                "required": "yes" if f in template.required_fields else "",
                "source column": header if header is not None else "-",
            }
            for f, header in preview.items()
        ]
    )
    print(df.to_string(index=False))

    used = {h for h in preview.values() if h is not None}
    ignored = [h for h in headers if h not in used]
    if ignored:
        print()
        print(f"Ignored columns: {', '.join(ignored)}")


def _handle_import(args: argparse.Namespace, config: AppConfig) -> None:
    """Handle the 'import' subcommand."""
    delimiter = _delimiter(args, config)
    path = Path(args.path)
    kind, content = _read_input(
        path, args.input_format, config.import_options.encoding
    )

    store = SQLiteStore(config.database)
    options = config.import_options
    orchestrator = ImportOrchestrator(
        store,
        duplicate_policy=options.duplicate_check,
        strict_numbers=options.strict_numbers,
    )

    print(f"Importing {args.entity} from {path}...")
    try:
        if kind == "delimited":
            result = orchestrator.import_delimited(
                args.entity, content, config.tenant_id, delimiter=delimiter
            )
        elif kind == "rows":
            result = orchestrator.run(
                args.entity, content, config.tenant_id, position_label="Row"
            )
        else:
            result = orchestrator.import_document(
                args.entity, content, config.tenant_id
            )
    except (InputEmptyError, InputMalformedError) as exc:
        raise SystemExit(str(exc)) from exc

    _print_import_result(result)


def _handle_statement(args: argparse.Namespace, config: AppConfig) -> None:
    """Handle the 'statement' subcommand."""
    path = Path(args.path)
    if not path.is_file():
        raise SystemExit(f"Statement file not found: {path}")

    fmt = args.statement_format
    if fmt is None:
        fmt = "ofx" if path.suffix.lower() == ".ofx" else "csv"

    store = SQLiteStore(config.database)
    options = config.import_options

    print(
        f"Importing {fmt} statement {path} into bank account "
        f"{args.bank_account_id}..."
    )
    try:
        result = import_bank_statement(
            store,
            read_source_file(path, options.encoding),
            config.tenant_id,
            args.bank_account_id,
            fmt=fmt,
            delimiter=_delimiter(args, config),
            duplicate_policy=options.duplicate_check,
            strict_numbers=options.strict_numbers,
        )
    except (InputEmptyError, ValueError) as exc:
        raise SystemExit(str(exc)) from exc

    _print_import_result(result)


def _handle_export(args: argparse.Namespace, config: AppConfig) -> None:
    """Handle the 'export' subcommand."""
    store = SQLiteStore(config.database)
    document = export_all(store, config.tenant_id)

    output = Path(args.output or backup_filename())
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(dumps_backup(document), encoding="utf-8")

    total = sum(len(records) for records in document.values())
    print(f"Exported {total} record(s) to {output}")


def _handle_restore(args: argparse.Namespace, config: AppConfig) -> None:
    """Handle the 'restore' subcommand."""
    path = Path(args.path)
    if not path.is_file():
        raise SystemExit(f"Backup file not found: {path}")

    store = SQLiteStore(config.database)
    options = config.import_options
    orchestrator = ImportOrchestrator(
        store,
        duplicate_policy=options.duplicate_check,
        strict_numbers=options.strict_numbers,
    )

    print(f"Restoring backup {path}...")
    try:
        results = restore_backup(orchestrator, path.read_bytes(), config.tenant_id)
    except (InputEmptyError, InputMalformedError) as exc:
        raise SystemExit(str(exc)) from exc

    for result in results.values():
        _print_import_result(result)


def _handle_delete(args: argparse.Namespace, config: AppConfig) -> None:
    """
    Handle the 'delete' subcommand.

    Deletion is permanent, so it is refused unless --yes is given.
    """
    if args.record_id is not None and not args.entity:
        raise SystemExit("--id can only be used together with --type.")

    target = "all records" if args.delete_all else f"{args.entity} records"
    if args.record_id is not None:
        target = f"{args.entity} record #{args.record_id}"

    if not args.yes:
        raise SystemExit(
            f"Refusing to delete {target} of tenant {config.tenant_id!r} "
            "without --yes."
        )

    store = SQLiteStore(config.database)

    if args.delete_all:
        report = delete_all(store, config.tenant_id)
        for key, count in report.deleted.items():
            print(f"  {key:<16} {count} deleted")
        for key, message in report.errors.items():
            print(f"  {key:<16} FAILED: {message}")
        print(f"Deleted {report.total} record(s).")
        if not report.ok:
            raise SystemExit(1)
        return

    try:
        count = delete_by_type(store, args.entity, config.tenant_id, args.record_id)
    except BackofficeError as exc:
        raise SystemExit(f"Deleting {target} failed: {exc}") from exc
    print(f"Deleted {count} {args.entity} record(s).")


def main(argv: Optional[list[str]] = None) -> None:
    """Entry point for the SMB BackOffice CLI.

    Parses command-line arguments, loads the configuration, configures
    logging and dispatches to the requested subcommand.
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    # --version: short-circuit and exit early.
    if args.version:
        print(f"smb_backoffice version {__version__}")
        return

    if not args.command:
        parser.print_help()
        return

    config = _resolve_config(args)
    configure_logging(config.log_level)

    handlers = {
        "templates": _handle_templates,
        "preview": _handle_preview,
        "import": _handle_import,
        "statement": _handle_statement,
        "export": _handle_export,
        "restore": _handle_restore,
        "delete": _handle_delete,
    }
    handlers[args.command](args, config)


if __name__ == "__main__":
    main()
