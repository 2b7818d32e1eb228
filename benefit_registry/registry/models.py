"""Registry data models — benefit records, scopes, and registry settings."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class ScopeKind(str, Enum):
    """What a benefit is attached to."""

    token = "token"
    collection = "collection"


@dataclass(frozen=True)
class BenefitScope:
    """Either a single token (``token_id`` set) or the whole collection."""

    kind: ScopeKind
    token_id: Optional[int] = None

    @classmethod
    def token(cls, token_id: int) -> BenefitScope:
        return cls(kind=ScopeKind.token, token_id=token_id)

    @classmethod
    def collection(cls) -> BenefitScope:
        return cls(kind=ScopeKind.collection)

    @property
    def is_token(self) -> bool:
        return self.kind == ScopeKind.token

    def __str__(self) -> str:
        if self.is_token:
            return f"token:{self.token_id}"
        return "collection"


@dataclass
class BenefitRecord:
    """A single benefit attachment."""

    benefit_id: int
    metadata_uri: str
    scope: BenefitScope
    assigner: str


@dataclass
class PaymentPolicy:
    """Optional payment required by the attach operations."""

    enabled: bool = False
    required_amount: int = 0

    def is_sufficient(self, payment: int) -> bool:
        if not self.enabled:
            return True
        return payment >= self.required_amount


@dataclass
class RegistryConfig:
    """Construction-time settings for a ``BenefitRegistry``."""

    max_benefits_per_token: Optional[int] = None  # None = unlimited
    payment: PaymentPolicy = field(default_factory=PaymentPolicy)


def normalize_address(address: str) -> str:
    """Canonical form used for every address comparison."""
    return address.strip().lower()
