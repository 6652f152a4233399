# SMB BackOffice - Data import & reconciliation engine for SMB bookkeeping
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Configuration helpers for SMB BackOffice.

This module is responsible for:
- loading the application configuration from a TOML file,
- validating import options (delimiter, duplicate policy, numeric policy),
- exposing typed dataclasses used by the rest of the application.
"""

import tomllib
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from .db import DatabaseConfig
from .parsing import normalize_delimiter

DEFAULT_CONFIG_FILE = "smb_backoffice_config.toml"

_DUPLICATE_POLICIES = {"fail_open", "fail_closed"}
_NUMERIC_POLICIES = {"permissive", "strict"}
_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


@dataclass(frozen=True)
class ImportOptions:
    """
    Options applied to every import batch.

    Attributes:
        delimiter: Cell separator for delimited input (already normalized,
            so a tab is a real tab character).
        encoding: Text encoding of source files.
        duplicate_check: "fail_open" or "fail_closed".
        numeric_policy: "permissive" (unparsable numbers become 0) or
            "strict" (the record is rejected).
    """

    delimiter: str = ","
    encoding: str = "utf-8"
    duplicate_check: str = "fail_open"
    numeric_policy: str = "permissive"

    @property
    def strict_numbers(self) -> bool:
        return self.numeric_policy == "strict"


@dataclass(frozen=True)
class AppConfig:
    """
    Application-wide configuration for SMB BackOffice.

    This aggregates:
    - the database configuration (where records are stored),
    - the tenant (owning account) used for every store operation,
    - the import options,
    - the log level.
    """

    database: DatabaseConfig
    tenant_id: str
    import_options: ImportOptions
    log_level: str


def _load_toml(path: Path) -> dict[str, Any]:
    """
    Load a TOML file and return its content as a dictionary.

    Raises:
        FileNotFoundError: if the file does not exist.
        ValueError: if the TOML content cannot be parsed.
    """
    if not path.is_file():
        raise FileNotFoundError(f"Config file not found: {path}")

    try:
        return tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise ValueError(f"Failed to parse TOML config file: {path}") from exc


def _section(raw: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    section = raw.get(name) or {}
    if not isinstance(section, Mapping):
        return {}
    return section


def _parse_import_options(section: Mapping[str, Any]) -> ImportOptions:
    """
    Extract and validate the [import] section.

    Raises:
        ValueError: if an option has an unsupported value.
    """
    try:
        delimiter = normalize_delimiter(str(section.get("delimiter", ",")))
    except ValueError as exc:
        raise ValueError(f"Invalid value for 'import.delimiter': {exc}") from exc

    duplicate_check = str(section.get("duplicate_check", "fail_open"))
    if duplicate_check not in _DUPLICATE_POLICIES:
        raise ValueError(
            "Invalid value for 'import.duplicate_check'. "
            "Expected 'fail_open' or 'fail_closed'."
        )

    numeric_policy = str(section.get("numeric_policy", "permissive"))
    if numeric_policy not in _NUMERIC_POLICIES:
        raise ValueError(
            "Invalid value for 'import.numeric_policy'. "
            "Expected 'permissive' or 'strict'."
        )

    return ImportOptions(
        delimiter=delimiter,
        encoding=str(section.get("encoding", "utf-8")),
        duplicate_check=duplicate_check,
        numeric_policy=numeric_policy,
    )


def load_app_config(config_path: Optional[str] = None) -> AppConfig:
    """
    Load the SMB BackOffice configuration from a TOML file.

    Expected top-level sections in the TOML file
    --------------------------------------------
    [database]
        Database engine and SQLite file path (relative paths are resolved
        against the directory of the TOML file).

    [tenant]
        ``id`` of the owning account. Every import, export and deletion is
        scoped to it.

    [import]
        ``delimiter``, ``encoding``, ``duplicate_check`` and
        ``numeric_policy``.

    [logging]
        ``level`` of the application loggers.

    Every section is optional; missing values fall back to defaults.

    Parameters
    ----------
    config_path:
        Path to the TOML file. Defaults to ``smb_backoffice_config.toml`` in
        the current directory.

    Returns
    -------
    AppConfig
        Parsed and validated application configuration.
    """
    config_file = Path(config_path or DEFAULT_CONFIG_FILE).resolve()
    raw = _load_toml(config_file)
    base_dir = config_file.parent

    # 1) Database section
    database_section = _section(raw, "database")
    db_engine = str(database_section.get("engine") or "sqlite")
    db_path_raw = database_section.get("path") or "data/db/smb_backoffice.sqlite"
    db_path = (base_dir / str(db_path_raw)).resolve()

    # 2) Tenant
    tenant_section = _section(raw, "tenant")
    tenant_id = str(tenant_section.get("id") or "default")

    # 3) Import options
    import_options = _parse_import_options(_section(raw, "import"))

    # 4) Logging
    log_level = str(_section(raw, "logging").get("level", "INFO")).upper()
    if log_level not in _LOG_LEVELS:
        raise ValueError(f"Invalid value for 'logging.level': {log_level!r}.")

    return AppConfig(
        database=DatabaseConfig(engine=db_engine, path=db_path),
        tenant_id=tenant_id,
        import_options=import_options,
        log_level=log_level,
    )
