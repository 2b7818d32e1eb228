"""Pydantic models for API request/response serialization.

These mirror the registry dataclasses and provide JSON serialization for
the FastAPI endpoints.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class AttachBenefitRequest(BaseModel):
    """Body of both attach endpoints."""

    benefit_id: int = Field(..., ge=0)
    metadata_uri: str
    payment: int = Field(0, ge=0)


class UpdateBenefitRequest(BaseModel):
    metadata_uri: str


class BenefitResponse(BaseModel):
    """Mirrors benefit_registry.registry.models.BenefitRecord."""

    benefit_id: int
    metadata_uri: str
    scope: str
    token_id: Optional[int] = None
    assigner: str


class BenefitURIResponse(BaseModel):
    benefit_id: int
    metadata_uri: str


class AssignedBenefitsResponse(BaseModel):
    token_id: Optional[int] = None
    benefit_ids: list[int] = Field(default_factory=list)


class AssignerCheckResponse(BaseModel):
    benefit_id: int
    wallet: str
    is_assigner: bool


class InterfaceSupportResponse(BaseModel):
    interface_id: str
    supported: bool


class ErrorResponse(BaseModel):
    detail: str
    error: str
