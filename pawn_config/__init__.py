"""
pawn_config -- single public entrypoint for ledger configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  No other component reads configuration files
    or environment variables directly; services receive the resulting
    ``LedgerConfig`` through their constructors.

Resolution order:
    1. explicit ``path`` argument
    2. ``PAWN_LEDGER_CONFIG`` environment variable
    3. packaged ``defaults/ledger.yaml``

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``PAWN_CONFIG_TRACE`` log entry with the config name, source path and
    checksum, tying ledger activity to the exact configuration in force.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from pawn_config.loader import load_config_file
from pawn_config.schema import AccountDef, AccountRole, CategoryLimits, LedgerConfig

_logger = logging.getLogger("pawn_kernel.config")

CONFIG_ENV_VAR = "PAWN_LEDGER_CONFIG"

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults" / "ledger.yaml"


def get_active_config(path: Path | str | None = None) -> LedgerConfig:
    """The ONLY public configuration entrypoint.

    Raises:
        FileNotFoundError: the resolved path does not exist.
        ValueError: the configuration fails validation.
    """
    if path is None:
        path = os.environ.get(CONFIG_ENV_VAR) or _DEFAULT_CONFIG_PATH
    path = Path(path)

    config = load_config_file(path)

    _logger.info(
        "PAWN_CONFIG_TRACE",
        extra={
            "config_name": config.name,
            "config_path": str(path),
            "checksum": config.checksum,
            "currency": config.currency,
            "category_count": len(config.category_limits),
        },
    )
    return config


__all__ = [
    "AccountDef",
    "AccountRole",
    "CategoryLimits",
    "LedgerConfig",
    "get_active_config",
]
