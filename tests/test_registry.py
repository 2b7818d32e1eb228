"""Tests for the benefit registry."""

import threading

import pytest

from benefit_registry.auth.ownership import TokenCollection
from benefit_registry.events.notifications import (
    BenefitRemoved,
    BenefitUpdated,
    CollectionBenefitAttached,
    NotificationBus,
    TokenBenefitAttached,
)
from benefit_registry.registry.benefit_registry import (
    BENEFIT_REGISTRY_INTERFACE_ID,
    BENEFIT_REGISTRY_OPERATIONS,
    CAPABILITY_QUERY_INTERFACE_ID,
    BenefitRegistry,
    compute_interface_id,
)
from benefit_registry.registry.errors import (
    AlreadyExists,
    CapacityExceeded,
    ErrorKind,
    NotFound,
    PaymentRequired,
    RegistryError,
    Unauthorized,
)
from benefit_registry.registry.models import (
    BenefitScope,
    PaymentPolicy,
    RegistryConfig,
)

OWNER = "0xowner"
ALICE = "0xalice"
BOB = "0xbob"
MALLORY = "0xmallory"
CURATOR = "0xcurator"


def _collection() -> TokenCollection:
    collection = TokenCollection(owner=OWNER, operators={CURATOR})
    collection.mint(1, ALICE)
    collection.mint(2, BOB)
    return collection


def _registry(**config) -> tuple[BenefitRegistry, list]:
    """Registry over the default collection plus the list of emitted notifications."""
    events: list = []
    bus = NotificationBus()
    bus.subscribe(events.append)
    reg = BenefitRegistry(_collection(), config=RegistryConfig(**config), bus=bus)
    return reg, events


def _state(reg: BenefitRegistry) -> dict:
    return reg.snapshot()


# --- Attach (token scope) ---


def test_attach_then_read():
    reg, events = _registry()
    record = reg.attach_benefit(1, 100, "ipfs://benefit-100", ALICE)

    assert record.scope == BenefitScope.token(1)
    assert record.assigner == ALICE
    assert reg.benefit_uri(100) == "ipfs://benefit-100"
    assert reg.assigned_benefits(1) == [100]
    assert reg.benefit_count(1) == 1
    assert reg.is_benefit_assigner(ALICE, 100)
    assert events == [TokenBenefitAttached(1, 100, "ipfs://benefit-100")]


def test_attach_keeps_insertion_order():
    reg, _ = _registry()
    for benefit_id in (30, 10, 20):
        reg.attach_benefit(1, benefit_id, f"ipfs://{benefit_id}", ALICE)
    assert reg.assigned_benefits(1) == [30, 10, 20]


def test_attach_by_approved_address_and_operator():
    reg, _ = _registry()
    reg.provider.approve(1, BOB)
    reg.provider.set_approval_for_all(ALICE, MALLORY, True)

    reg.attach_benefit(1, 1, "ipfs://a", BOB)
    reg.attach_benefit(1, 2, "ipfs://b", MALLORY)

    assert reg.assigned_benefits(1) == [1, 2]
    assert reg.is_benefit_assigner(BOB, 1)
    assert reg.is_benefit_assigner(MALLORY, 2)


def test_addresses_compare_case_insensitively():
    reg, _ = _registry()
    reg.attach_benefit(1, 5, "ipfs://x", "0xALICE")
    assert reg.is_benefit_assigner("0xAlice", 5)
    assert reg.get_benefit(5).assigner == ALICE


def test_attach_unauthorized_has_no_effect():
    reg, events = _registry()
    before = _state(reg)

    with pytest.raises(Unauthorized):
        reg.attach_benefit(1, 100, "ipfs://x", MALLORY)

    assert _state(reg) == before
    assert reg.assigned_benefits(1) == []
    assert reg.benefit_count(1) == 0
    assert events == []


def test_collection_owner_cannot_attach_to_token():
    reg, _ = _registry()
    with pytest.raises(Unauthorized):
        reg.attach_benefit(1, 100, "ipfs://x", OWNER)


def test_attach_to_missing_token():
    reg, events = _registry()
    with pytest.raises(NotFound):
        reg.attach_benefit(99, 100, "ipfs://x", ALICE)
    assert events == []


def test_attach_duplicate_id_fails():
    reg, events = _registry()
    reg.attach_benefit(1, 100, "ipfs://first", ALICE)
    after_first = _state(reg)

    with pytest.raises(AlreadyExists):
        reg.attach_benefit(1, 100, "ipfs://second", ALICE)

    assert _state(reg) == after_first
    assert reg.benefit_uri(100) == "ipfs://first"
    assert len(events) == 1


def test_ids_shared_across_scopes():
    reg, _ = _registry()
    reg.attach_collection_benefit(7, "ipfs://collection", OWNER)

    with pytest.raises(AlreadyExists):
        reg.attach_benefit(1, 7, "ipfs://token", ALICE)
    with pytest.raises(AlreadyExists):
        reg.attach_benefit(2, 7, "ipfs://token", BOB)


def test_capacity_cap():
    reg, events = _registry(max_benefits_per_token=2)
    reg.attach_benefit(1, 1, "ipfs://1", ALICE)
    reg.attach_benefit(1, 2, "ipfs://2", ALICE)

    with pytest.raises(CapacityExceeded):
        reg.attach_benefit(1, 3, "ipfs://3", ALICE)

    assert reg.assigned_benefits(1) == [1, 2]
    assert reg.benefit_count(1) == 2
    assert len(events) == 2
    # Other tokens have their own count
    reg.attach_benefit(2, 3, "ipfs://3", BOB)


def test_capacity_frees_up_after_remove():
    reg, _ = _registry(max_benefits_per_token=1)
    reg.attach_benefit(1, 1, "ipfs://1", ALICE)
    reg.remove_benefit(1, ALICE)
    reg.attach_benefit(1, 2, "ipfs://2", ALICE)
    assert reg.assigned_benefits(1) == [2]


def test_capacity_ignores_collection_benefits():
    reg, _ = _registry(max_benefits_per_token=1)
    reg.attach_collection_benefit(1, "ipfs://c", OWNER)
    reg.attach_benefit(1, 2, "ipfs://t", ALICE)
    assert reg.benefit_count(1) == 1


def test_zero_cap_blocks_every_token_attach():
    reg, _ = _registry(max_benefits_per_token=0)
    with pytest.raises(CapacityExceeded):
        reg.attach_benefit(1, 1, "ipfs://1", ALICE)


# --- Payment ---


def test_payable_attach_requires_payment():
    reg, events = _registry(payment=PaymentPolicy(enabled=True, required_amount=50))
    before = _state(reg)

    with pytest.raises(PaymentRequired):
        reg.attach_benefit(1, 1, "ipfs://1", ALICE, payment=49)
    with pytest.raises(PaymentRequired):
        reg.attach_collection_benefit(2, "ipfs://2", OWNER)

    assert _state(reg) == before
    assert events == []

    reg.attach_benefit(1, 1, "ipfs://1", ALICE, payment=50)
    reg.attach_collection_benefit(2, "ipfs://2", OWNER, payment=100)
    assert len(events) == 2


def test_payment_ignored_when_disabled():
    reg, _ = _registry(payment=PaymentPolicy(enabled=False, required_amount=50))
    reg.attach_benefit(1, 1, "ipfs://1", ALICE)
    assert reg.benefit_uri(1) == "ipfs://1"


# --- Attach (collection scope) ---


def test_collection_attach_by_owner_and_operator():
    reg, events = _registry()
    reg.attach_collection_benefit(1, "ipfs://c1", OWNER)
    reg.attach_collection_benefit(2, "ipfs://c2", CURATOR)

    assert reg.assigned_benefits() == [1, 2]
    assert reg.collection_benefits() == [1, 2]
    assert events == [
        CollectionBenefitAttached(1, "ipfs://c1"),
        CollectionBenefitAttached(2, "ipfs://c2"),
    ]


def test_collection_attach_unauthorized():
    reg, events = _registry()
    with pytest.raises(Unauthorized):
        reg.attach_collection_benefit(1, "ipfs://c", ALICE)
    assert reg.assigned_benefits() == []
    assert events == []


def test_token_and_collection_listings_are_separate():
    reg, _ = _registry()
    reg.attach_collection_benefit(1, "ipfs://c", OWNER)
    reg.attach_benefit(1, 2, "ipfs://t", ALICE)

    assert reg.assigned_benefits(1) == [2]
    assert reg.assigned_benefits() == [1]
    assert reg.assigned_benefits(2) == []


# --- Update ---


def test_update_preserves_scope_and_assigner():
    reg, events = _registry()
    reg.attach_benefit(1, 100, "ipfs://v1", ALICE)
    assert reg.is_benefit_assigner(ALICE, 100)

    record = reg.update_benefit(100, "ipfs://v2", ALICE)

    assert record.metadata_uri == "ipfs://v2"
    assert record.scope == BenefitScope.token(1)
    assert reg.is_benefit_assigner(ALICE, 100)
    assert not reg.is_benefit_assigner(BOB, 100)
    assert events[-1] == BenefitUpdated(100, "ipfs://v2")


def test_attach_update_read_returns_latest():
    reg, _ = _registry()
    reg.attach_benefit(1, 100, "ipfs://v1", ALICE)
    reg.update_benefit(100, "ipfs://v2", ALICE)
    reg.update_benefit(100, "ipfs://v3", ALICE)
    assert reg.benefit_uri(100) == "ipfs://v3"


def test_update_by_current_owner_after_transfer():
    reg, _ = _registry()
    reg.attach_benefit(1, 100, "ipfs://v1", ALICE)
    reg.provider.transfer(1, BOB)

    reg.update_benefit(100, "ipfs://bob", BOB)
    # Assigner keeps the right to modify after the transfer
    reg.update_benefit(100, "ipfs://alice", ALICE)

    assert reg.benefit_uri(100) == "ipfs://alice"
    assert reg.is_benefit_assigner(ALICE, 100)
    assert not reg.is_benefit_assigner(BOB, 100)


def test_authorization_checked_at_call_time():
    reg, _ = _registry()
    reg.provider.approve(1, BOB)
    reg.attach_benefit(1, 100, "ipfs://v1", ALICE)
    reg.update_benefit(100, "ipfs://by-bob", BOB)

    reg.provider.approve(1, "")
    with pytest.raises(Unauthorized):
        reg.update_benefit(100, "ipfs://again", BOB)


def test_update_unauthorized():
    reg, events = _registry()
    reg.attach_benefit(1, 100, "ipfs://v1", ALICE)

    with pytest.raises(Unauthorized):
        reg.update_benefit(100, "ipfs://evil", MALLORY)

    assert reg.benefit_uri(100) == "ipfs://v1"
    assert len(events) == 1


def test_update_collection_benefit_by_operator():
    reg, _ = _registry()
    reg.attach_collection_benefit(1, "ipfs://c1", OWNER)
    reg.update_benefit(1, "ipfs://c2", CURATOR)
    assert reg.benefit_uri(1) == "ipfs://c2"
    assert reg.is_benefit_assigner(OWNER, 1)

    with pytest.raises(Unauthorized):
        reg.update_benefit(1, "ipfs://c3", ALICE)


def test_update_missing():
    reg, _ = _registry()
    with pytest.raises(NotFound):
        reg.update_benefit(1, "ipfs://x", ALICE)


# --- Remove ---


def test_remove_token_benefit():
    reg, events = _registry()
    reg.attach_benefit(1, 100, "ipfs://v1", ALICE)
    reg.attach_benefit(1, 101, "ipfs://v2", ALICE)

    reg.remove_benefit(100, ALICE)

    with pytest.raises(NotFound):
        reg.benefit_uri(100)
    assert reg.assigned_benefits(1) == [101]
    assert reg.benefit_count(1) == 1
    assert not reg.is_benefit_assigner(ALICE, 100)
    assert events[-1] == BenefitRemoved(100)


def test_remove_collection_benefit():
    reg, _ = _registry()
    reg.attach_collection_benefit(1, "ipfs://c", OWNER)
    reg.remove_benefit(1, CURATOR)
    assert reg.assigned_benefits() == []
    with pytest.raises(NotFound):
        reg.benefit_uri(1)


def test_removed_id_is_never_reused():
    reg, events = _registry()
    reg.attach_benefit(1, 100, "ipfs://v1", ALICE)
    reg.remove_benefit(100, ALICE)

    with pytest.raises(AlreadyExists):
        reg.attach_benefit(1, 100, "ipfs://again", ALICE)
    with pytest.raises(AlreadyExists):
        reg.attach_collection_benefit(100, "ipfs://again", OWNER)

    assert reg.is_retired(100)
    assert reg.assigned_benefits(1) == []
    assert reg.assigned_benefits() == []
    with pytest.raises(NotFound):
        reg.benefit_uri(100)
    assert len(events) == 2


def test_remove_twice_fails():
    reg, _ = _registry()
    reg.attach_benefit(1, 100, "ipfs://v1", ALICE)
    reg.remove_benefit(100, ALICE)
    with pytest.raises(NotFound):
        reg.remove_benefit(100, ALICE)


def test_remove_unauthorized():
    reg, events = _registry()
    reg.attach_benefit(1, 100, "ipfs://v1", ALICE)
    before = _state(reg)

    with pytest.raises(Unauthorized):
        reg.remove_benefit(100, MALLORY)

    assert _state(reg) == before
    assert len(events) == 1


# --- Queries ---


def test_unknown_benefit_queries():
    reg, _ = _registry()
    assert not reg.is_benefit_assigner(ALICE, 42)
    with pytest.raises(NotFound):
        reg.benefit_uri(42)
    with pytest.raises(NotFound):
        reg.get_benefit(42)
    assert reg.assigned_benefits(1) == []
    assert reg.assigned_benefits(999) == []
    assert reg.assigned_benefits() == []


def test_returned_records_are_copies():
    reg, _ = _registry()
    record = reg.attach_benefit(1, 100, "ipfs://v1", ALICE)
    record.metadata_uri = "ipfs://tampered"
    reg.get_benefit(100).metadata_uri = "ipfs://tampered"
    assert reg.benefit_uri(100) == "ipfs://v1"


def test_supports_interface():
    reg, _ = _registry()
    assert reg.supports_interface(CAPABILITY_QUERY_INTERFACE_ID)
    assert reg.supports_interface(BENEFIT_REGISTRY_INTERFACE_ID)
    assert reg.supports_interface(BENEFIT_REGISTRY_INTERFACE_ID.upper().replace("0X", "0x"))
    assert not reg.supports_interface("0xffffffff")
    assert not reg.supports_interface("0x12345678")


def test_interface_id_covers_every_operation():
    partial = compute_interface_id(BENEFIT_REGISTRY_OPERATIONS[:-1])
    assert partial != BENEFIT_REGISTRY_INTERFACE_ID
    assert BENEFIT_REGISTRY_INTERFACE_ID.startswith("0x")
    assert len(BENEFIT_REGISTRY_INTERFACE_ID) == 10


def test_capability_query_id_matches_its_own_signature():
    assert compute_interface_id(("supportsInterface(bytes4)",)) == CAPABILITY_QUERY_INTERFACE_ID


def test_single_selector_matches_known_value():
    # transfer(address,uint256)
    assert compute_interface_id(["transfer(address,uint256)"]) == "0xa9059cbb"


# --- Errors ---


def test_error_kinds():
    assert Unauthorized("x").kind == ErrorKind.unauthorized
    assert NotFound("x").kind == ErrorKind.not_found
    assert AlreadyExists("x").kind == ErrorKind.already_exists
    assert CapacityExceeded("x").kind == ErrorKind.capacity_exceeded
    assert PaymentRequired("x").kind == ErrorKind.payment_required
    assert issubclass(Unauthorized, RegistryError)


def test_failing_subscriber_does_not_undo_mutation():
    reg, events = _registry()

    def broken(notification):
        raise RuntimeError("indexer down")

    reg.bus.subscribe(broken)
    reg.attach_benefit(1, 100, "ipfs://v1", ALICE)

    assert reg.benefit_uri(100) == "ipfs://v1"
    assert len(events) == 1


class _BrokenAudit:
    def log_event(self, **kwargs):
        raise OSError("disk full")


def test_audit_write_failure_keeps_committed_mutation(caplog):
    events: list = []
    bus = NotificationBus()
    bus.subscribe(events.append)
    reg = BenefitRegistry(_collection(), bus=bus, audit_logger=_BrokenAudit())

    record = reg.attach_benefit(1, 5, "ipfs://v1", ALICE)

    assert record.benefit_id == 5
    assert reg.assigned_benefits(1) == [5]
    assert len(events) == 1
    assert "Failed to write audit entry" in caplog.text


def test_audit_write_failure_keeps_rejection_kind():
    reg = BenefitRegistry(_collection(), audit_logger=_BrokenAudit())
    with pytest.raises(Unauthorized):
        reg.attach_benefit(1, 5, "ipfs://v1", MALLORY)
    assert reg.assigned_benefits(1) == []


# --- Snapshot ---


def test_snapshot_round_trip_preserves_indices():
    reg, _ = _registry()
    reg.attach_benefit(1, 3, "ipfs://3", ALICE)
    reg.attach_benefit(1, 1, "ipfs://1", ALICE)
    reg.attach_collection_benefit(2, "ipfs://2", OWNER)
    reg.attach_benefit(2, 4, "ipfs://4", BOB)
    reg.remove_benefit(4, BOB)

    restored = BenefitRegistry.from_snapshot(reg.snapshot(), _collection())

    assert restored.assigned_benefits(1) == [3, 1]
    assert restored.assigned_benefits() == [2]
    assert restored.assigned_benefits(2) == []
    assert restored.benefit_count(1) == 2
    assert restored.is_retired(4)
    assert restored.is_benefit_assigner(OWNER, 2)
    with pytest.raises(AlreadyExists):
        restored.attach_benefit(2, 4, "ipfs://4", BOB)


def test_snapshot_with_duplicate_ids_rejected():
    data = {
        "benefits": [
            {"benefit_id": 1, "metadata_uri": "a", "scope": "collection", "token_id": None, "assigner": OWNER},
            {"benefit_id": 1, "metadata_uri": "b", "scope": "token", "token_id": 1, "assigner": ALICE},
        ],
    }
    with pytest.raises(ValueError):
        BenefitRegistry.from_snapshot(data, _collection())


# --- Concurrency ---


def test_concurrent_attach_same_id_succeeds_once():
    reg, events = _registry()
    results: list[str] = []
    barrier = threading.Barrier(8)

    def worker():
        barrier.wait()
        try:
            reg.attach_benefit(1, 100, "ipfs://race", ALICE)
            results.append("ok")
        except AlreadyExists:
            results.append("exists")

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert results.count("ok") == 1
    assert results.count("exists") == 7
    assert reg.assigned_benefits(1) == [100]
    assert len(events) == 1


def test_concurrent_attach_respects_cap():
    reg, _ = _registry(max_benefits_per_token=3)
    errors: list[Exception] = []

    def worker(benefit_id: int):
        try:
            reg.attach_benefit(1, benefit_id, "ipfs://x", ALICE)
        except CapacityExceeded as e:
            errors.append(e)

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(10)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert reg.benefit_count(1) == 3
    assert len(reg.assigned_benefits(1)) == 3
    assert len(errors) == 7
