"""A registry directory opened for use.

Wires the pieces a directory holds (ownership, settings, state, webhooks
and audit log) into a ``BenefitRegistry``. Both the CLI and the
directory-backed web app go through here.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator, Optional

from benefit_registry.auth.ownership import load_collection
from benefit_registry.config import (
    COLLECTION_FILE,
    CONFIG_FILE,
    load_config,
    resolve_registry_dir,
)
from benefit_registry.events.notifications import NotificationBus
from benefit_registry.events.webhooks import WebhookManager
from benefit_registry.registry.benefit_registry import BenefitRegistry
from benefit_registry.registry.local_store import LocalBenefitStore
from benefit_registry.security.audit_log import AuditLogger


class RegistryWorkspace:
    """Opens registries backed by one registry directory."""

    def __init__(self, registry_dir: Optional[str] = None) -> None:
        self.path = resolve_registry_dir(registry_dir)
        self.store = LocalBenefitStore(self.path)
        self.bus = NotificationBus()
        self.webhooks = WebhookManager(self.path / "webhooks")
        self.webhooks.connect(self.bus)
        self.audit = AuditLogger(self.path / "audit_logs")

    def load(self) -> BenefitRegistry:
        """Read-only view of the current state."""
        return self.store.load(
            load_collection(self.path / COLLECTION_FILE),
            config=load_config(self.path / CONFIG_FILE),
            bus=self.bus,
            audit_logger=self.audit,
        )

    @contextmanager
    def transaction(self) -> Iterator[BenefitRegistry]:
        """Load, mutate and save under the directory lock.

        State is saved only when the block exits without an exception.
        """
        with self.store.lock():
            registry = self.load()
            yield registry
            self.store.save(registry)
