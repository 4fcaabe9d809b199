"""
billing_config -- single public entrypoint for billing configuration.

Responsibility:
    ``get_active_settings()`` returns the validated billing window and the
    default tag set, read from ``defaults/billing.yaml`` or an override
    file.

Architecture position:
    Configuration.  Sits above ``billing_kernel`` (it builds kernel value
    objects) and below ``billing_services``.  The kernel MUST NEVER import
    from ``billing_config``.

Failure modes:
    - ``FileNotFoundError`` for a missing override path.
    - ``SettingsValidationError`` / ``ValueError`` for bad content.
"""

from __future__ import annotations

from pathlib import Path

from billing_config.loader import BillingConfig, load_yaml_file, parse_billing_config
from billing_kernel.logging_config import get_logger

_logger = get_logger("config")

_DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults" / "billing.yaml"


def get_active_settings(config_path: Path | str | None = None) -> BillingConfig:
    """
    Load and validate billing configuration.

    Args:
        config_path: Override YAML file.  Defaults to
            billing_config/defaults/billing.yaml.
    """
    path = Path(config_path) if config_path is not None else _DEFAULT_CONFIG_PATH
    config = parse_billing_config(load_yaml_file(path))

    _logger.info(
        "BILLING_CONFIG_TRACE",
        extra={
            "trace_type": "BILLING_CONFIG_TRACE",
            "config_path": str(path),
            "checksum": config.checksum,
            "zone": config.window.zone,
            "tag_count": len(config.default_tags),
        },
    )
    return config


__all__ = ["BillingConfig", "get_active_settings"]
