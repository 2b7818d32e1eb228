"""Token ownership provider.

The registry never tracks token ownership itself. It asks an
``OwnershipProvider`` at call time. ``TokenCollection`` is the in-process
implementation used by the CLI, the HTTP API and the tests; it can be
loaded from and saved to YAML::

    collection:
      owner: "0xaaa"
      operators: ["0xbbb"]
    tokens:
      1: {owner: "0xccc", approved: "0xddd"}
      2: {owner: "0xccc"}
    operators_for_all:
      "0xccc": ["0xeee"]
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Protocol

import yaml

from benefit_registry.registry.models import normalize_address


class OwnershipProvider(Protocol):
    """What the registry needs to know about the underlying collection."""

    def token_exists(self, token_id: int) -> bool: ...

    def is_owner_or_approved(self, token_id: int, address: str) -> bool: ...

    def is_collection_owner_or_approved(self, address: str) -> bool: ...


@dataclass
class TokenRecord:
    """Ownership state of a single token."""

    owner: str
    approved: str = ""


@dataclass
class TokenCollection:
    """In-memory token collection with per-token and collection-wide approvals."""

    owner: str = ""
    operators: set[str] = field(default_factory=set)
    tokens: dict[int, TokenRecord] = field(default_factory=dict)
    operators_for_all: dict[str, set[str]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.owner = normalize_address(self.owner)
        self.operators = {normalize_address(a) for a in self.operators}

    # ------------------------------------------------------------------
    # OwnershipProvider
    # ------------------------------------------------------------------

    def token_exists(self, token_id: int) -> bool:
        return token_id in self.tokens

    def is_owner_or_approved(self, token_id: int, address: str) -> bool:
        token = self.tokens.get(token_id)
        address = normalize_address(address)
        if token is None or not address:
            return False
        if address in (token.owner, token.approved):
            return True
        return address in self.operators_for_all.get(token.owner, set())

    def is_collection_owner_or_approved(self, address: str) -> bool:
        address = normalize_address(address)
        if not address:
            return False
        return address == self.owner or address in self.operators

    # ------------------------------------------------------------------
    # Mutations (host side; the registry never calls these)
    # ------------------------------------------------------------------

    def owner_of(self, token_id: int) -> Optional[str]:
        token = self.tokens.get(token_id)
        return token.owner if token else None

    def mint(self, token_id: int, owner: str) -> None:
        if token_id in self.tokens:
            raise ValueError(f"Token {token_id} already minted")
        self.tokens[token_id] = TokenRecord(owner=normalize_address(owner))

    def transfer(self, token_id: int, new_owner: str) -> None:
        """Move a token to a new owner and clear its single-token approval."""
        token = self.tokens.get(token_id)
        if token is None:
            raise ValueError(f"Token {token_id} does not exist")
        token.owner = normalize_address(new_owner)
        token.approved = ""

    def approve(self, token_id: int, operator: str) -> None:
        token = self.tokens.get(token_id)
        if token is None:
            raise ValueError(f"Token {token_id} does not exist")
        token.approved = normalize_address(operator) if operator else ""

    def set_approval_for_all(self, owner: str, operator: str, approved: bool) -> None:
        owner = normalize_address(owner)
        operators = self.operators_for_all.setdefault(owner, set())
        if approved:
            operators.add(normalize_address(operator))
        else:
            operators.discard(normalize_address(operator))

    def add_operator(self, operator: str) -> None:
        self.operators.add(normalize_address(operator))

    def remove_operator(self, operator: str) -> None:
        self.operators.discard(normalize_address(operator))


def load_collection(path: str | Path) -> TokenCollection:
    """Load a token collection from a YAML file.

    A missing file yields an empty collection with no owner.
    """
    path = Path(path)
    if not path.exists():
        return TokenCollection()

    with open(path) as f:
        data = yaml.safe_load(f) or {}

    meta = data.get("collection", {}) or {}
    tokens = {}
    for token_id, token_data in (data.get("tokens", {}) or {}).items():
        if isinstance(token_data, str):
            token_data = {"owner": token_data}
        tokens[int(token_id)] = TokenRecord(
            owner=normalize_address(token_data["owner"]),
            approved=normalize_address(token_data.get("approved", "") or ""),
        )

    return TokenCollection(
        owner=meta.get("owner", "") or "",
        operators=set(meta.get("operators", []) or []),
        tokens=tokens,
        operators_for_all={
            normalize_address(owner): {normalize_address(o) for o in ops}
            for owner, ops in (data.get("operators_for_all", {}) or {}).items()
        },
    )


def save_collection(collection: TokenCollection, path: str | Path) -> None:
    data = {
        "collection": {
            "owner": collection.owner,
            "operators": sorted(collection.operators),
        },
        "tokens": {
            token_id: {"owner": t.owner, "approved": t.approved}
            for token_id, t in sorted(collection.tokens.items())
        },
        "operators_for_all": {
            owner: sorted(ops) for owner, ops in collection.operators_for_all.items()
        },
    }
    with open(path, "w") as f:
        yaml.safe_dump(data, f, sort_keys=False)
