"""
Configuration Loader (``ipr_config.loader``).

Responsibility
--------------
Loads the defaults YAML file and parses it into ``ipr_config.schema``
dataclasses.  Runtime callers go through ``ipr_config.get_incentive_defaults()``.

Invariants enforced
-------------------
* Parse errors raise ``ValueError`` or ``KeyError``; no silent defaults for
  required fields.
* Amounts are parsed as ``Decimal`` from their string form, never float.
* ``compute_checksum`` is deterministic for identical input.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Negative amounts or points, or a duplicate ipr_type -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from ipr_config.schema import IncentiveDefault, IprDefaultsConfig


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a single YAML file and return its contents as a dict."""
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_amount(value: Any, field_name: str) -> Decimal:
    try:
        amount = Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"{field_name}: cannot parse amount from {value!r}") from exc
    if amount < 0:
        raise ValueError(f"{field_name}: must be non-negative, got {amount}")
    return amount


def parse_incentive_default(data: dict[str, Any]) -> IncentiveDefault:
    """Parse one ``incentive_policies`` entry."""
    points = int(data["base_points"])
    if points < 0:
        raise ValueError(
            f"base_points for {data['ipr_type']}: must be non-negative, got {points}"
        )
    return IncentiveDefault(
        ipr_type=str(data["ipr_type"]).strip().lower(),
        base_points=points,
        base_incentive_amount=parse_amount(
            data["base_incentive_amount"],
            f"base_incentive_amount for {data['ipr_type']}",
        ),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def parse_defaults(data: dict[str, Any]) -> IprDefaultsConfig:
    """Parse the whole defaults document."""
    policies = tuple(parse_incentive_default(p) for p in data["incentive_policies"])
    seen: set[str] = set()
    for policy in policies:
        if policy.ipr_type in seen:
            raise ValueError(f"Duplicate incentive policy for {policy.ipr_type}")
        seen.add(policy.ipr_type)

    domains = {
        name: tuple(str(v) for v in values)
        for name, values in (data.get("enum_domains") or {}).items()
    }
    return IprDefaultsConfig(
        config_id=data["config_id"],
        version=int(data["version"]),
        incentive_policies=policies,
        enum_domains=domains,
        checksum=compute_checksum(data),
    )


def load_defaults(path: Path) -> IprDefaultsConfig:
    return parse_defaults(load_yaml_file(path))
