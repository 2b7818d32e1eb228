"""Local file-based persistence for a benefit registry.

Stores the registry snapshot as JSON in a local directory, guarded by a
file lock for writers in other processes. Intended for
development and single-host use through the CLI.
"""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Optional

from filelock import FileLock

from benefit_registry.auth.ownership import OwnershipProvider
from benefit_registry.events.notifications import NotificationBus
from benefit_registry.registry.benefit_registry import BenefitRegistry
from benefit_registry.registry.models import RegistryConfig
from benefit_registry.security.audit_log import AuditLogger


class LocalBenefitStore:
    """Loads and saves registry state under ``registry_dir``."""

    STATE_FILE = "state.json"
    LOCK_FILE = ".lock"

    def __init__(self, registry_dir: str | Path):
        self.registry_dir = Path(registry_dir)
        self.registry_dir.mkdir(parents=True, exist_ok=True)
        self.state_path = self.registry_dir / self.STATE_FILE

    def load(
        self,
        provider: OwnershipProvider,
        config: Optional[RegistryConfig] = None,
        bus: Optional[NotificationBus] = None,
        audit_logger: Optional[AuditLogger] = None,
    ) -> BenefitRegistry:
        """Build a registry from the saved state, or an empty one if none exists."""
        data = {}
        if self.state_path.exists():
            with open(self.state_path) as f:
                data = json.load(f)
        return BenefitRegistry.from_snapshot(
            data, provider, config=config, bus=bus, audit_logger=audit_logger
        )

    def save(self, registry: BenefitRegistry) -> None:
        """Write the registry snapshot, replacing the old file in one step."""
        fd, tmp_path = tempfile.mkstemp(
            dir=self.registry_dir, prefix=".state-", suffix=".json"
        )
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(registry.snapshot(), f, indent=2)
            os.replace(tmp_path, self.state_path)
        except BaseException:
            Path(tmp_path).unlink(missing_ok=True)
            raise

    def lock(self, timeout: float = -1) -> FileLock:
        """Exclusive lock on the registry directory, shared by every process using it.

        Hold it across load, mutate and save so that concurrent writers
        serialize instead of overwriting each other's state.
        """
        return FileLock(str(self.registry_dir / self.LOCK_FILE), timeout=timeout)
