"""
Settings loader (``consolidation_config.loader``).

Responsibility
--------------
Loads the engine settings YAML and parses it into ``EngineSettings``.

Invariants enforced
-------------------
* Unknown keys are rejected, so a typo never silently falls back to a
  default.
* Monetary values (tolerance) are parsed as Decimal from their string form.
* ``compute_checksum`` gives a deterministic identity for a settings
  instance, logged when the engine starts.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Bad structure or values  -> ``SettingsError``.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import asdict
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from consolidation_config.schema import (
    ConsolidationAccounts,
    EngineSettings,
    RetrySettings,
    SyntheticAccount,
)
from consolidation_kernel.domain.ledger import AccountCategory, AccountType
from consolidation_kernel.exceptions import SettingsError

DEFAULTS_PATH = Path(__file__).with_name("defaults.yaml")


def load_yaml_file(path: Path) -> dict[str, Any]:
    with open(path) as f:
        return yaml.safe_load(f) or {}


def _reject_unknown(data: dict, allowed: set[str], where: str, source: str | None) -> None:
    unknown = set(data) - allowed
    if unknown:
        raise SettingsError(f"unknown keys in {where}: {sorted(unknown)}", source)


def _parse_decimal(value: Any, where: str, source: str | None) -> Decimal:
    if isinstance(value, float):
        # YAML floats lose precision; require quoting
        raise SettingsError(f"{where} must be a quoted decimal string, got {value!r}", source)
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise SettingsError(f"{where} is not a decimal: {value!r}", source) from e


def _parse_retry(data: dict, source: str | None) -> RetrySettings:
    _reject_unknown(data, {"max_attempts", "base_delay_seconds", "max_delay_seconds"}, "retry", source)
    retry = RetrySettings(
        max_attempts=int(data.get("max_attempts", RetrySettings.max_attempts)),
        base_delay_seconds=float(data.get("base_delay_seconds", RetrySettings.base_delay_seconds)),
        max_delay_seconds=float(data.get("max_delay_seconds", RetrySettings.max_delay_seconds)),
    )
    if retry.max_attempts < 1:
        raise SettingsError("retry.max_attempts must be >= 1", source)
    if retry.base_delay_seconds < 0 or retry.max_delay_seconds < 0:
        raise SettingsError("retry delays must be >= 0", source)
    return retry


def _parse_account(name: str, data: dict, default: SyntheticAccount, source: str | None) -> SyntheticAccount:
    _reject_unknown(data, {"account_id", "name", "account_type", "category"}, f"accounts.{name}", source)
    try:
        account_type = AccountType(data.get("account_type", default.account_type.value))
        category_value = data.get("category", default.category.value if default.category else None)
        category = AccountCategory(category_value) if category_value else None
    except ValueError as e:
        raise SettingsError(f"accounts.{name}: {e}", source) from e
    return SyntheticAccount(
        account_id=str(data.get("account_id", default.account_id)),
        name=str(data.get("name", default.name)),
        account_type=account_type,
        category=category,
    )


def _parse_accounts(data: dict, source: str | None) -> ConsolidationAccounts:
    defaults = ConsolidationAccounts()
    field_names = set(ConsolidationAccounts.__dataclass_fields__)
    _reject_unknown(data, field_names, "accounts", source)
    parsed = {
        name: _parse_account(name, data[name] or {}, getattr(defaults, name), source)
        for name in data
    }
    accounts = ConsolidationAccounts(**parsed)
    ids = [a.account_id for a in accounts.all()]
    if len(ids) != len(set(ids)):
        raise SettingsError("synthetic account ids must be distinct", source)
    return accounts


def parse_settings(data: dict[str, Any], source: str | None = None) -> EngineSettings:
    """Parse a settings mapping (as loaded from YAML) into EngineSettings."""
    _reject_unknown(
        data, {"max_workers", "retry", "intercompany_tolerance", "accounts"}, "settings", source
    )
    max_workers = int(data.get("max_workers", EngineSettings.max_workers))
    if max_workers < 1:
        raise SettingsError("max_workers must be >= 1", source)

    tolerance = data.get("intercompany_tolerance")
    parsed_tolerance = None
    if tolerance is not None:
        parsed_tolerance = _parse_decimal(tolerance, "intercompany_tolerance", source)
        if parsed_tolerance < 0:
            raise SettingsError("intercompany_tolerance must be >= 0", source)

    return EngineSettings(
        max_workers=max_workers,
        retry=_parse_retry(data.get("retry") or {}, source),
        intercompany_tolerance=parsed_tolerance,
        accounts=_parse_accounts(data.get("accounts") or {}, source),
    )


def load_settings(path: str | Path | None = None) -> EngineSettings:
    """Load settings from a YAML file, or the packaged defaults."""
    target = Path(path) if path is not None else DEFAULTS_PATH
    return parse_settings(load_yaml_file(target), source=str(target))


def compute_checksum(settings: EngineSettings) -> str:
    """Deterministic SHA-256 identity of a settings instance."""
    canonical = json.dumps(asdict(settings), sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()
