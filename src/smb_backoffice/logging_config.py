# SMB BackOffice - Data import & reconciliation engine for SMB bookkeeping
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Logging setup shared by the CLI and scripts.

Library modules only create loggers (``logging.getLogger(__name__)``); the
entry point calls ``configure_logging`` once to attach a console handler.
"""

import logging
from logging.config import dictConfig
from typing import Optional

_is_configured = False


def configure_logging(level: Optional[str] = None) -> None:
    """
    Configure the root and ``smb_backoffice`` loggers, once per process.

    Args:
        level: Optional log level (e.g. "DEBUG", "INFO"). Defaults to INFO.
    """
    global _is_configured

    if _is_configured:
        return

    log_level = (level or "INFO").upper()

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "standard": {
                    "format": "%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
                    "datefmt": "%Y-%m-%d %H:%M:%S",
                }
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "standard",
                    "level": log_level,
                    "stream": "ext://sys.stderr",
                }
            },
            "root": {
                "handlers": ["console"],
                "level": "WARNING",
            },
        }
    )

    logging.getLogger("smb_backoffice").setLevel(log_level)

    _is_configured = True
