"""Configuration loading for a local benefit registry directory.

A registry directory holds:
- ``config.yaml`` -- per-token cap and payment settings (optional)
- ``collection.yaml`` -- token ownership and approvals
- ``state.json`` -- persisted benefit records
- ``audit_logs/`` and ``webhooks/``
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

import yaml

from benefit_registry.registry.models import PaymentPolicy, RegistryConfig

REGISTRY_DIR_ENV = "BENEFIT_REGISTRY_DIR"
DEFAULT_REGISTRY_DIR = ".benefit_registry"

CONFIG_FILE = "config.yaml"
COLLECTION_FILE = "collection.yaml"


def resolve_registry_dir(registry_dir: Optional[str] = None) -> Path:
    """Explicit argument, then ``$BENEFIT_REGISTRY_DIR``, then the default."""
    if registry_dir:
        return Path(registry_dir)
    return Path(os.environ.get(REGISTRY_DIR_ENV, DEFAULT_REGISTRY_DIR))


def load_config(path: str | Path) -> RegistryConfig:
    """Load registry settings from a YAML file.

    A missing file yields the defaults: no cap, no payment.

    Example::

        max_benefits_per_token: 5
        payment:
          enabled: true
          required_amount: 1000
    """
    path = Path(path)
    if not path.exists():
        return RegistryConfig()

    with open(path) as f:
        data = yaml.safe_load(f) or {}

    cap = data.get("max_benefits_per_token")
    if cap is not None:
        cap = int(cap)
        if cap < 0:
            raise ValueError(f"max_benefits_per_token must be >= 0, got {cap}")

    payment_data = data.get("payment", {}) or {}
    return RegistryConfig(
        max_benefits_per_token=cap,
        payment=PaymentPolicy(
            enabled=bool(payment_data.get("enabled", False)),
            required_amount=int(payment_data.get("required_amount", 0)),
        ),
    )


def save_config(config: RegistryConfig, path: str | Path) -> None:
    data = {
        "max_benefits_per_token": config.max_benefits_per_token,
        "payment": {
            "enabled": config.payment.enabled,
            "required_amount": config.payment.required_amount,
        },
    }
    with open(path, "w") as f:
        yaml.safe_dump(data, f, sort_keys=False)
