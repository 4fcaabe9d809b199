"""
Configuration Loader (``billing_config.loader``).

Responsibility
--------------
Loads the billing YAML file and parses it into a typed ``BillingConfig``.
Runtime callers use ``billing_config.get_active_settings()``.

Invariants enforced
-------------------
* The billing window is validated by ``BillingWindowSettings.validate()``;
  out-of-range values raise ``SettingsValidationError``.
* ``compute_checksum`` is deterministic for identical content.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Wrong shape (e.g. ``tags`` not a list)  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from billing_kernel.domain.period import BillingWindowSettings


@dataclass(frozen=True)
class BillingConfig:
    """Billing window plus the tags seeded into a fresh database."""

    window: BillingWindowSettings
    default_tags: tuple[str, ...]
    checksum: str = ""


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_window(data: dict[str, Any]) -> BillingWindowSettings:
    """Parse the ``billing_window`` section; missing keys take defaults."""
    if not isinstance(data, dict):
        raise ValueError("billing_window must be a mapping")
    defaults = BillingWindowSettings()
    return BillingWindowSettings(
        weekday=data.get("weekday", defaults.weekday),
        hour=data.get("hour", defaults.hour),
        minute=data.get("minute", defaults.minute),
        zone=data.get("zone", defaults.zone),
        warn_window_hours=data.get("warn_window_hours", defaults.warn_window_hours),
    ).validate()


def parse_tags(data: Any) -> tuple[str, ...]:
    if data is None:
        return ()
    if not isinstance(data, list):
        raise ValueError("tags must be a list of names")
    names: list[str] = []
    for item in data:
        name = str(item).strip()
        if name and name not in names:
            names.append(name)
    return tuple(names)


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON form of the parsed YAML."""
    canonical = json.dumps(data, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def parse_billing_config(data: dict[str, Any]) -> BillingConfig:
    return BillingConfig(
        window=parse_window(data.get("billing_window") or {}),
        default_tags=parse_tags(data.get("tags")),
        checksum=compute_checksum(data),
    )
