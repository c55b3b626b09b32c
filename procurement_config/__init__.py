"""
procurement_config: single public entrypoint for engine configuration.

Responsibility:
    ``get_active_config()`` is the one way to obtain configuration at
    runtime.  It loads a YAML configuration set (the shipped
    ``sets/default.yaml`` unless a path is given), parses it into
    ``ProcurementSettings`` and stamps it with the file's checksum.

Architecture position:
    Sits above ``procurement_kernel``.  The kernel never imports this
    package; ``procurement_config.bridges`` turns settings into the
    kernel's ``EnginePolicy``.

Failure modes:
    - ``FileNotFoundError``: the configuration file does not exist.
    - ``ValueError``: the file has the wrong shape or invalid values.

Audit relevance:
    Every successful call emits a ``PROCUREMENT_CONFIG_TRACE`` log record
    with the config id, version, checksum and delivery policy, tying the
    engine's behaviour to the exact configuration in force.
"""

from __future__ import annotations

import logging
from pathlib import Path

from procurement_config.loader import compute_checksum, load_yaml_file, parse_settings
from procurement_config.schema import ProcurementSettings

_logger = logging.getLogger("procurement_kernel.config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "sets" / "default.yaml"


def get_active_config(path: Path | str | None = None) -> ProcurementSettings:
    """
    Load and parse a configuration set.

    Args:
        path: YAML file to load.  Defaults to the shipped defaults.

    Returns:
        ProcurementSettings with ``checksum`` set.
    """
    config_path = Path(path) if path is not None else DEFAULT_CONFIG_PATH
    if not config_path.is_file():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    data = load_yaml_file(config_path)
    checksum = compute_checksum(data)
    settings = parse_settings(data, checksum=checksum)

    _logger.info(
        "PROCUREMENT_CONFIG_TRACE",
        extra={
            "trace_type": "PROCUREMENT_CONFIG_TRACE",
            "config_id": settings.config_id,
            "config_version": settings.version,
            "checksum": checksum,
            "delivery_policy": settings.delivery_policy,
            "role_count": len(settings.role_permissions),
            "source": str(config_path),
        },
    )
    return settings


__all__ = [
    "DEFAULT_CONFIG_PATH",
    "ProcurementSettings",
    "get_active_config",
]
