"""
IPR configuration (``ipr_config``).

Fallback incentive policies and enum value domains, authored in
``defaults.yaml`` and parsed into frozen dataclasses.

Usage:
    from ipr_config import get_incentive_defaults

    defaults = get_incentive_defaults()
    patent = defaults.policy_for("patent")
"""

from __future__ import annotations

import logging
from pathlib import Path

from ipr_config.loader import load_defaults
from ipr_config.schema import IncentiveDefault, IprDefaultsConfig

_logger = logging.getLogger("ipr_kernel.config")

_DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"


def get_incentive_defaults(config_path: Path | None = None) -> IprDefaultsConfig:
    """The ONLY public configuration entrypoint.

    Reads ``defaults.yaml`` (or ``config_path``) on every call and emits an
    ``IPR_CONFIG_TRACE`` record carrying the checksum.  Callers hold the
    returned object; nothing here caches.

    Raises:
        FileNotFoundError: The file does not exist.
        ValueError / KeyError: The file is malformed.
    """
    path = config_path or _DEFAULTS_PATH
    config = load_defaults(path)

    _logger.info(
        "IPR_CONFIG_TRACE",
        extra={
            "trace_type": "IPR_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "policy_count": len(config.incentive_policies),
            "source": str(path),
        },
    )
    return config


__all__ = [
    "IncentiveDefault",
    "IprDefaultsConfig",
    "get_incentive_defaults",
]
