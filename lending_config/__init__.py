"""
lending_config -- single public entrypoint for lending configuration.

Responsibility:
    Provides the ONLY way to obtain settings at runtime through
    ``get_active_config()``.  No other component reads configuration
    files, environment variables or production flags directly; services
    receive the returned ``LendingSettings``.

Architecture position:
    Configuration -- YAML-driven settings.  Imports kernel domain value
    types.  Kernel services accept a ``LendingSettings`` through their
    constructor and never call ``get_active_config`` themselves.

Failure modes:
    - ``FileNotFoundError`` -- no configuration set for the environment.
    - ``KeyError`` / ``ValueError`` -- missing or malformed settings.
    - ``InvalidRiskPolicyError`` -- a configured policy violates its bounds.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``LENDING_CONFIG_TRACE`` log entry with the environment, production
    flag, checksum and policy count.
"""

from __future__ import annotations

import logging
from pathlib import Path

from lending_config.loader import (
    compute_checksum,
    load_yaml_file,
    parse_risk_policy,
    parse_settings,
)
from lending_config.schema import LendingSettings

_logger = logging.getLogger("lending_kernel.config")

_DEFAULT_CONFIG_DIR = Path(__file__).parent / "sets"

__all__ = [
    "LendingSettings",
    "get_active_config",
    "load_yaml_file",
    "parse_settings",
    "parse_risk_policy",
    "compute_checksum",
]


def get_active_config(
    environment: str = "default",
    config_dir: Path | None = None,
) -> LendingSettings:
    """The ONLY public configuration entrypoint.

    Args:
        environment: Name of the configuration set (``sets/<name>.yaml``).
        config_dir: Override path to the configuration sets directory.

    Raises:
        FileNotFoundError: If no set exists for ``environment``.
    """
    sets_dir = config_dir or _DEFAULT_CONFIG_DIR
    path = sets_dir / f"{environment}.yaml"
    if not path.is_file():
        raise FileNotFoundError(f"Configuration set not found: {path}")

    data = load_yaml_file(path)
    settings = parse_settings(data)
    checksum = compute_checksum(data)

    _logger.info(
        "LENDING_CONFIG_TRACE",
        extra={
            "trace_type": "LENDING_CONFIG_TRACE",
            "environment": settings.environment,
            "is_production": settings.is_production,
            "checksum": checksum,
            "policy_count": len(settings.risk_policies),
        },
    )
    return settings
