"""In-memory benefit registry.

All state lives behind one lock. Each operation runs its checks, applies
its state change and publishes its notification while holding the lock,
so concurrent callers never observe a partially applied operation. Every
check happens before any mutation; a rejected call raises a
``RegistryError`` and leaves the registry untouched.

Benefit ids are supplied by the caller, share one namespace across token
and collection scope, and are never reused once removed.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import replace
from typing import Any, Iterator, Optional

from web3 import Web3

from benefit_registry.auth.ownership import OwnershipProvider
from benefit_registry.auth.permissions import require_modify, require_scope_authority
from benefit_registry.events.notifications import (
    BenefitRemoved,
    BenefitUpdated,
    CollectionBenefitAttached,
    NotificationBus,
    TokenBenefitAttached,
)
from benefit_registry.registry.errors import (
    AlreadyExists,
    CapacityExceeded,
    NotFound,
    PaymentRequired,
    RegistryError,
)
from benefit_registry.registry.models import (
    BenefitRecord,
    BenefitScope,
    RegistryConfig,
    ScopeKind,
    normalize_address,
)
from benefit_registry.security.audit_log import AuditLogger

logger = logging.getLogger(__name__)

# Signatures of the operations that make up the registry interface
BENEFIT_REGISTRY_OPERATIONS = (
    "attachBenefit(uint256,uint256,string)",
    "attachBenefit(uint256,string)",
    "updateBenefit(uint256,string)",
    "removeBenefit(uint256)",
    "isBenefitAssigner(address,uint256)",
    "benefitURI(uint256)",
    "assignedBenefits(uint256)",
    "assignedBenefits()",
)

CAPABILITY_QUERY_INTERFACE_ID = "0x01ffc9a7"
INVALID_INTERFACE_ID = "0xffffffff"


def compute_interface_id(signatures: tuple[str, ...] | list[str]) -> str:
    """XOR of the Keccak-256 selectors of ``signatures``, as a 0x-prefixed hex string."""
    value = 0
    for signature in signatures:
        digest = Web3.keccak(text=signature)
        value ^= int.from_bytes(digest[:4], "big")
    return f"0x{value:08x}"


BENEFIT_REGISTRY_INTERFACE_ID = compute_interface_id(BENEFIT_REGISTRY_OPERATIONS)

_SUPPORTED_INTERFACES = frozenset(
    {CAPABILITY_QUERY_INTERFACE_ID, BENEFIT_REGISTRY_INTERFACE_ID}
)


class BenefitRegistry:
    """Associates benefit records with tokens or with the whole collection."""

    RESOURCE_TYPE = "benefit"

    def __init__(
        self,
        provider: OwnershipProvider,
        config: Optional[RegistryConfig] = None,
        bus: Optional[NotificationBus] = None,
        audit_logger: Optional[AuditLogger] = None,
    ) -> None:
        self.provider = provider
        self.config = config or RegistryConfig()
        self.bus = bus or NotificationBus()
        self._audit = audit_logger
        self._lock = threading.RLock()

        self._records: dict[int, BenefitRecord] = {}
        # dicts used as insertion-ordered sets
        self._token_benefits: dict[int, dict[int, None]] = {}
        self._collection_benefits: dict[int, None] = {}
        self._benefit_count: dict[int, int] = {}
        self._retired: set[int] = set()

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def attach_benefit(
        self,
        token_id: int,
        benefit_id: int,
        metadata_uri: str,
        caller: str,
        payment: int = 0,
    ) -> BenefitRecord:
        """Attach a benefit to a single token.

        Raises:
            NotFound: the token does not exist.
            Unauthorized: caller is not the owner or an approved operator.
            AlreadyExists: the benefit id is in use or was used before.
            CapacityExceeded: the token already holds the configured maximum.
            PaymentRequired: payable mode is on and ``payment`` is too low.
        """
        scope = BenefitScope.token(token_id)
        details = {"scope": str(scope), "metadata_uri": metadata_uri}
        with self._lock, self._audited("attach", caller, benefit_id, details):
            if not self.provider.token_exists(token_id):
                raise NotFound(f"Token {token_id} does not exist")
            require_scope_authority(self.provider, scope, caller)
            self._require_unused(benefit_id)
            cap = self.config.max_benefits_per_token
            if cap is not None and self._benefit_count.get(token_id, 0) >= cap:
                raise CapacityExceeded(
                    f"Token {token_id} already has the maximum of {cap} benefits"
                )
            self._require_payment(payment)

            record = BenefitRecord(
                benefit_id=benefit_id,
                metadata_uri=metadata_uri,
                scope=scope,
                assigner=normalize_address(caller),
            )
            self._insert(record)
            self.bus.publish(TokenBenefitAttached(token_id, benefit_id, metadata_uri))
            return replace(record)

    def attach_collection_benefit(
        self,
        benefit_id: int,
        metadata_uri: str,
        caller: str,
        payment: int = 0,
    ) -> BenefitRecord:
        """Attach a benefit that applies to every token in the collection."""
        scope = BenefitScope.collection()
        details = {"scope": str(scope), "metadata_uri": metadata_uri}
        with self._lock, self._audited("attach", caller, benefit_id, details):
            require_scope_authority(self.provider, scope, caller)
            self._require_unused(benefit_id)
            self._require_payment(payment)

            record = BenefitRecord(
                benefit_id=benefit_id,
                metadata_uri=metadata_uri,
                scope=scope,
                assigner=normalize_address(caller),
            )
            self._insert(record)
            self.bus.publish(CollectionBenefitAttached(benefit_id, metadata_uri))
            return replace(record)

    def update_benefit(self, benefit_id: int, metadata_uri: str, caller: str) -> BenefitRecord:
        """Replace the metadata URI of an existing benefit.

        Allowed for the assigner and for whoever currently holds authority
        over the benefit's scope. Scope and assigner never change.
        """
        with self._lock, self._audited(
            "update", caller, benefit_id, {"metadata_uri": metadata_uri}
        ):
            record = self._require_record(benefit_id)
            require_modify(self.provider, record, caller)

            record.metadata_uri = metadata_uri
            self.bus.publish(BenefitUpdated(benefit_id, metadata_uri))
            return replace(record)

    def remove_benefit(self, benefit_id: int, caller: str) -> None:
        """Delete a benefit. Its id is retired and can never be attached again."""
        with self._lock, self._audited("remove", caller, benefit_id, {}):
            record = self._require_record(benefit_id)
            require_modify(self.provider, record, caller)

            self._delete(record)
            self.bus.publish(BenefitRemoved(benefit_id))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def is_benefit_assigner(self, wallet: str, benefit_id: int) -> bool:
        """True when ``wallet`` created ``benefit_id``; false for unknown ids."""
        with self._lock:
            record = self._records.get(benefit_id)
            return record is not None and record.assigner == normalize_address(wallet)

    def benefit_uri(self, benefit_id: int) -> str:
        with self._lock:
            return self._require_record(benefit_id).metadata_uri

    def get_benefit(self, benefit_id: int) -> BenefitRecord:
        with self._lock:
            return replace(self._require_record(benefit_id))

    def assigned_benefits(self, token_id: Optional[int] = None) -> list[int]:
        """Benefit ids for one token, or the collection-wide ids when omitted.

        Token results never include collection-scoped benefits; query both
        to get everything that applies to a token.
        """
        if token_id is None:
            return self.collection_benefits()
        return self.token_benefits(token_id)

    def token_benefits(self, token_id: int) -> list[int]:
        with self._lock:
            return list(self._token_benefits.get(token_id, {}))

    def collection_benefits(self) -> list[int]:
        with self._lock:
            return list(self._collection_benefits)

    def benefit_count(self, token_id: int) -> int:
        with self._lock:
            return self._benefit_count.get(token_id, 0)

    def is_retired(self, benefit_id: int) -> bool:
        with self._lock:
            return benefit_id in self._retired

    def supports_interface(self, interface_id: str) -> bool:
        """Capability probe for the capability query and registry interfaces."""
        interface_id = interface_id.lower()
        if interface_id == INVALID_INTERFACE_ID:
            return False
        return interface_id in _SUPPORTED_INTERFACES

    def list_all(self) -> list[BenefitRecord]:
        with self._lock:
            return [replace(r) for r in self._records.values()]

    def __len__(self) -> int:
        return len(self._records)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def snapshot(self) -> dict[str, Any]:
        """Export all state as plain JSON-compatible data."""
        with self._lock:
            return {
                "benefits": [_record_to_dict(r) for r in self._records.values()],
                "retired_ids": sorted(self._retired),
            }

    @classmethod
    def from_snapshot(
        cls,
        data: dict[str, Any],
        provider: OwnershipProvider,
        config: Optional[RegistryConfig] = None,
        bus: Optional[NotificationBus] = None,
        audit_logger: Optional[AuditLogger] = None,
    ) -> BenefitRegistry:
        """Rebuild a registry from ``snapshot()`` output without emitting notifications."""
        registry = cls(provider, config=config, bus=bus, audit_logger=audit_logger)
        registry._retired = {int(i) for i in data.get("retired_ids", [])}
        for item in data.get("benefits", []):
            record = _dict_to_record(item)
            if record.benefit_id in registry._records or record.benefit_id in registry._retired:
                raise ValueError(f"Duplicate benefit id {record.benefit_id} in snapshot")
            registry._insert(record)
        return registry

    # ------------------------------------------------------------------
    # Internal helpers (caller holds the lock)
    # ------------------------------------------------------------------

    def _require_record(self, benefit_id: int) -> BenefitRecord:
        record = self._records.get(benefit_id)
        if record is None:
            raise NotFound(f"Benefit {benefit_id} does not exist")
        return record

    def _require_unused(self, benefit_id: int) -> None:
        if benefit_id in self._records:
            raise AlreadyExists(f"Benefit {benefit_id} already exists")
        if benefit_id in self._retired:
            raise AlreadyExists(f"Benefit id {benefit_id} was removed and cannot be reused")

    def _require_payment(self, payment: int) -> None:
        policy = self.config.payment
        if not policy.is_sufficient(payment):
            raise PaymentRequired(
                f"Attaching a benefit requires a payment of {policy.required_amount}, got {payment}"
            )

    def _insert(self, record: BenefitRecord) -> None:
        self._records[record.benefit_id] = record
        if record.scope.is_token:
            token_id = record.scope.token_id
            self._token_benefits.setdefault(token_id, {})[record.benefit_id] = None
            self._benefit_count[token_id] = self._benefit_count.get(token_id, 0) + 1
        else:
            self._collection_benefits[record.benefit_id] = None

    def _delete(self, record: BenefitRecord) -> None:
        del self._records[record.benefit_id]
        if record.scope.is_token:
            token_id = record.scope.token_id
            index = self._token_benefits[token_id]
            del index[record.benefit_id]
            self._benefit_count[token_id] -= 1
            if not index:
                del self._token_benefits[token_id]
                del self._benefit_count[token_id]
        else:
            del self._collection_benefits[record.benefit_id]
        self._retired.add(record.benefit_id)

    @contextmanager
    def _audited(
        self, action: str, caller: str, benefit_id: int, details: dict[str, Any]
    ) -> Iterator[None]:
        try:
            yield
        except RegistryError as exc:
            logger.warning(
                "Rejected %s of benefit %s by %s: %s", action, benefit_id, caller, exc.kind.value
            )
            self._write_audit(
                action,
                caller,
                benefit_id,
                {**details, "error": exc.message},
                success=False,
                error_kind=exc.kind.value,
            )
            raise
        logger.debug("Applied %s of benefit %s by %s", action, benefit_id, caller)
        self._write_audit(action, caller, benefit_id, details)

    def _write_audit(
        self,
        action: str,
        caller: str,
        benefit_id: int,
        details: dict[str, Any],
        success: bool = True,
        error_kind: str = "",
    ) -> None:
        # The operation's outcome is already decided; a failed write never changes it.
        if self._audit is None:
            return
        try:
            self._audit.log_event(
                actor=normalize_address(caller),
                action=action,
                resource_type=self.RESOURCE_TYPE,
                resource_id=str(benefit_id),
                details=details,
                success=success,
                error_kind=error_kind,
            )
        except OSError:
            logger.exception("Failed to write audit entry for %s of benefit %s", action, benefit_id)


def _record_to_dict(record: BenefitRecord) -> dict[str, Any]:
    return {
        "benefit_id": record.benefit_id,
        "metadata_uri": record.metadata_uri,
        "scope": record.scope.kind.value,
        "token_id": record.scope.token_id,
        "assigner": record.assigner,
    }


def _dict_to_record(data: dict[str, Any]) -> BenefitRecord:
    if ScopeKind(data["scope"]) == ScopeKind.token:
        scope = BenefitScope.token(int(data["token_id"]))
    else:
        scope = BenefitScope.collection()
    return BenefitRecord(
        benefit_id=int(data["benefit_id"]),
        metadata_uri=data["metadata_uri"],
        scope=scope,
        assigner=normalize_address(data["assigner"]),
    )
