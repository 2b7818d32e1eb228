"""Scope-based authorization rules for benefit attachments.

- Token scope: the token owner, its approved address, or an operator the
  owner approved for all tokens.
- Collection scope: the collection owner or a collection-wide operator.
- Existing records: additionally, the record's assigner.
"""

from __future__ import annotations

from benefit_registry.auth.ownership import OwnershipProvider
from benefit_registry.registry.errors import Unauthorized
from benefit_registry.registry.models import (
    BenefitRecord,
    BenefitScope,
    normalize_address,
)


def has_scope_authority(
    provider: OwnershipProvider, scope: BenefitScope, caller: str
) -> bool:
    """Check whether ``caller`` may attach benefits at ``scope``.

    Always queries the provider; ownership can change between calls.
    """
    if scope.is_token:
        return provider.is_owner_or_approved(scope.token_id, caller)
    return provider.is_collection_owner_or_approved(caller)


def can_modify(provider: OwnershipProvider, record: BenefitRecord, caller: str) -> bool:
    """Assigner, or anyone holding authority over the record's scope."""
    caller = normalize_address(caller)
    if caller and caller == record.assigner:
        return True
    return has_scope_authority(provider, record.scope, caller)


def require_scope_authority(
    provider: OwnershipProvider, scope: BenefitScope, caller: str
) -> None:
    """Raise ``Unauthorized`` unless ``caller`` holds authority over ``scope``."""
    if not has_scope_authority(provider, scope, caller):
        if scope.is_token:
            raise Unauthorized(
                f"{caller} is not the owner or an approved operator of token {scope.token_id}"
            )
        raise Unauthorized(
            f"{caller} is not the collection owner or a collection operator"
        )


def require_modify(provider: OwnershipProvider, record: BenefitRecord, caller: str) -> None:
    """Raise ``Unauthorized`` unless ``caller`` may update or remove ``record``."""
    if not can_modify(provider, record, caller):
        raise Unauthorized(
            f"{caller} may not modify benefit {record.benefit_id} ({record.scope})"
        )
