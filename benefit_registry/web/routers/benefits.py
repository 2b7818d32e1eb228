"""Benefits router -- attach, update, remove and query benefit attachments.

The caller's address is taken from the ``X-Caller-Address`` header.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request, Response, status

from benefit_registry.registry.benefit_registry import BenefitRegistry
from benefit_registry.registry.models import BenefitRecord
from benefit_registry.web.models.api import (
    AssignedBenefitsResponse,
    AssignerCheckResponse,
    AttachBenefitRequest,
    BenefitResponse,
    BenefitURIResponse,
    ErrorResponse,
    InterfaceSupportResponse,
    UpdateBenefitRequest,
)

router = APIRouter(
    tags=["benefits"],
    responses={
        status.HTTP_402_PAYMENT_REQUIRED: {"model": ErrorResponse},
        status.HTTP_403_FORBIDDEN: {"model": ErrorResponse},
        status.HTTP_404_NOT_FOUND: {"model": ErrorResponse},
        status.HTTP_409_CONFLICT: {"model": ErrorResponse},
    },
)

CALLER_HEADER = "X-Caller-Address"


def get_registry(request: Request) -> BenefitRegistry:
    """Return the registry behind the running app.

    A directory-backed app reloads the directory so that writes made by
    other processes are visible.
    """
    workspace = request.app.state.workspace
    if workspace is None:
        return request.app.state.registry
    return workspace.load()


@contextmanager
def registry_for_update(request: Request) -> Iterator[BenefitRegistry]:
    """Yield the registry to mutate; a directory-backed app saves it on success."""
    workspace = request.app.state.workspace
    if workspace is None:
        yield request.app.state.registry
        return
    with workspace.transaction() as registry:
        yield registry


def get_caller(
    x_caller_address: Optional[str] = Header(None, alias=CALLER_HEADER),
) -> str:
    if not x_caller_address or not x_caller_address.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Missing {CALLER_HEADER} header",
        )
    return x_caller_address


def _record_to_response(record: BenefitRecord) -> BenefitResponse:
    return BenefitResponse(
        benefit_id=record.benefit_id,
        metadata_uri=record.metadata_uri,
        scope=record.scope.kind.value,
        token_id=record.scope.token_id,
        assigner=record.assigner,
    )


# ── Token scope ──────────────────────────────────────────────────────


@router.post(
    "/api/benefits/tokens/{token_id}",
    response_model=BenefitResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Attach a benefit to a token",
)
def attach_token_benefit(
    token_id: int,
    body: AttachBenefitRequest,
    request: Request,
    caller: str = Depends(get_caller),
):
    with registry_for_update(request) as registry:
        record = registry.attach_benefit(
            token_id, body.benefit_id, body.metadata_uri, caller, payment=body.payment
        )
    return _record_to_response(record)


@router.get(
    "/api/benefits/tokens/{token_id}",
    response_model=AssignedBenefitsResponse,
    summary="List benefits attached to a token",
)
def list_token_benefits(
    token_id: int, registry: BenefitRegistry = Depends(get_registry)
):
    """Token-scoped benefits only; collection-wide ones are listed separately."""
    return AssignedBenefitsResponse(
        token_id=token_id, benefit_ids=registry.assigned_benefits(token_id)
    )


# ── Collection scope ─────────────────────────────────────────────────


@router.post(
    "/api/benefits/collection",
    response_model=BenefitResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Attach a collection-wide benefit",
)
def attach_collection_benefit(
    body: AttachBenefitRequest,
    request: Request,
    caller: str = Depends(get_caller),
):
    with registry_for_update(request) as registry:
        record = registry.attach_collection_benefit(
            body.benefit_id, body.metadata_uri, caller, payment=body.payment
        )
    return _record_to_response(record)


@router.get(
    "/api/benefits/collection",
    response_model=AssignedBenefitsResponse,
    summary="List collection-wide benefits",
)
def list_collection_benefits(registry: BenefitRegistry = Depends(get_registry)):
    return AssignedBenefitsResponse(benefit_ids=registry.assigned_benefits())


# ── Single benefit ───────────────────────────────────────────────────


@router.get(
    "/api/benefits/{benefit_id}",
    response_model=BenefitResponse,
    summary="Get a benefit record",
)
def get_benefit(benefit_id: int, registry: BenefitRegistry = Depends(get_registry)):
    return _record_to_response(registry.get_benefit(benefit_id))


@router.get(
    "/api/benefits/{benefit_id}/uri",
    response_model=BenefitURIResponse,
    summary="Get a benefit's metadata URI",
)
def get_benefit_uri(benefit_id: int, registry: BenefitRegistry = Depends(get_registry)):
    return BenefitURIResponse(
        benefit_id=benefit_id, metadata_uri=registry.benefit_uri(benefit_id)
    )


@router.get(
    "/api/benefits/{benefit_id}/assigners/{wallet}",
    response_model=AssignerCheckResponse,
    summary="Check whether a wallet assigned a benefit",
)
def check_assigner(
    benefit_id: int, wallet: str, registry: BenefitRegistry = Depends(get_registry)
):
    return AssignerCheckResponse(
        benefit_id=benefit_id,
        wallet=wallet,
        is_assigner=registry.is_benefit_assigner(wallet, benefit_id),
    )


@router.patch(
    "/api/benefits/{benefit_id}",
    response_model=BenefitResponse,
    summary="Update a benefit's metadata URI",
)
def update_benefit(
    benefit_id: int,
    body: UpdateBenefitRequest,
    request: Request,
    caller: str = Depends(get_caller),
):
    with registry_for_update(request) as registry:
        record = registry.update_benefit(benefit_id, body.metadata_uri, caller)
    return _record_to_response(record)


@router.delete(
    "/api/benefits/{benefit_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Remove a benefit",
)
def remove_benefit(
    benefit_id: int,
    request: Request,
    caller: str = Depends(get_caller),
):
    with registry_for_update(request) as registry:
        registry.remove_benefit(benefit_id, caller)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ── Capability query ─────────────────────────────────────────────────


@router.get(
    "/api/interfaces/{interface_id}",
    response_model=InterfaceSupportResponse,
    tags=["meta"],
    summary="Check interface support",
)
def supports_interface(
    interface_id: str, registry: BenefitRegistry = Depends(get_registry)
):
    return InterfaceSupportResponse(
        interface_id=interface_id,
        supported=registry.supports_interface(interface_id),
    )
