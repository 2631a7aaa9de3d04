"""
Configuration Loader (``pawn_config.loader``).

Responsibility
--------------
Loads a YAML configuration file and parses it into the typed
``pawn_config.schema`` dataclasses.  The single public entry point for
runtime config is ``pawn_config.get_active_config()``.

Invariants enforced
-------------------
* Every parsed object is a frozen dataclass from ``schema.py``.
* Money values are parsed from their string form into ``Decimal``; YAML
  floats are rejected.
* ``compute_checksum`` produces a deterministic SHA-256 hash for
  configuration identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Invalid values  -> ``ValueError`` (from parsing or ``__post_init__``).
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal
from pathlib import Path
from typing import Any

import yaml

from pawn_config.schema import AccountDef, AccountRole, CategoryLimits, LedgerConfig


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_money(value: Any, key: str) -> Decimal | None:
    """
    Parse a money value from YAML.

    Strings and integers are accepted.  Floats are refused: write
    ``"1500.00"`` in YAML, not ``1500.00``.
    """
    if value is None:
        return None
    if isinstance(value, float):
        raise ValueError(f"{key}: money must be quoted in YAML, got float {value!r}")
    if isinstance(value, (int, str)):
        return Decimal(str(value))
    raise ValueError(f"{key}: cannot parse money from {value!r}")


def parse_account(data: dict[str, Any]) -> AccountDef:
    """Parse an AccountDef from a dict."""
    return AccountDef(
        code=str(data["code"]),
        name=data["name"],
        account_type=data["type"],
        parent_code=str(data["parent"]) if data.get("parent") is not None else None,
    )


def parse_category_limits(code: str, data: dict[str, Any]) -> CategoryLimits:
    """Parse CategoryLimits for one category code."""
    return CategoryLimits(
        category_code=code,
        min_loan_amount=parse_money(data.get("min_loan_amount"), f"{code}.min_loan_amount"),
        max_loan_amount=parse_money(data.get("max_loan_amount"), f"{code}.max_loan_amount"),
        min_term_days=data.get("min_term_days"),
        max_term_days=data.get("max_term_days"),
    )


def parse_config(data: dict[str, Any]) -> LedgerConfig:
    """
    Parse a ``LedgerConfig`` from the dict form of a YAML file.

    Postconditions:
        - Returns a validated, frozen ``LedgerConfig`` whose ``checksum``
          identifies ``data``.
    Raises:
        KeyError: if required keys are missing.
        ValueError: if values are invalid.
    """
    loans = data.get("loans", {})
    cash = data.get("cash", {})
    accounting = data.get("accounting", {})

    roles = {
        AccountRole(role): str(code)
        for role, code in accounting.get("roles", {}).items()
    }
    chart = tuple(parse_account(a) for a in accounting.get("chart_of_accounts", []))
    limits = {
        str(code): parse_category_limits(str(code), spec or {})
        for code, spec in loans.get("category_limits", {}).items()
    }

    return LedgerConfig(
        name=data.get("name", "default"),
        currency=data.get("currency", "USD"),
        late_fee_period_days=int(loans.get("late_fee_period_days", 1)),
        default_grace_period_days=int(loans.get("default_grace_period_days", 0)),
        require_loan_approval=bool(loans.get("require_approval", False)),
        post_accounting_entries=bool(accounting.get("enabled", True)),
        allow_negative_cash=bool(cash.get("allow_negative_balance", False)),
        account_roles=roles,
        chart_of_accounts=chart,
        category_limits=limits,
        checksum=compute_checksum(data),
    )


def load_config_file(path: Path) -> LedgerConfig:
    """Load and parse a configuration file."""
    return parse_config(load_yaml_file(path))


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
