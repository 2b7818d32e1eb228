"""FastAPI application for the benefit registry.

Provides REST endpoints for:
- Attaching benefits to tokens and to the whole collection
- Updating and removing benefits
- Discovery: URIs, assigners, per-token and collection-wide listings
- Capability query
"""

from __future__ import annotations

from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from benefit_registry import __version__
from benefit_registry.registry.benefit_registry import BenefitRegistry
from benefit_registry.registry.errors import ErrorKind, RegistryError
from benefit_registry.web.routers import benefits
from benefit_registry.workspace import RegistryWorkspace

ERROR_STATUS = {
    ErrorKind.unauthorized: status.HTTP_403_FORBIDDEN,
    ErrorKind.not_found: status.HTTP_404_NOT_FOUND,
    ErrorKind.already_exists: status.HTTP_409_CONFLICT,
    ErrorKind.capacity_exceeded: status.HTTP_409_CONFLICT,
    ErrorKind.payment_required: status.HTTP_402_PAYMENT_REQUIRED,
}


async def registry_error_handler(request: Request, exc: RegistryError) -> JSONResponse:
    return JSONResponse(
        status_code=ERROR_STATUS[exc.kind],
        content={"detail": exc.message, "error": exc.kind.value},
    )


def create_app(
    registry: BenefitRegistry,
    cors_origins: Optional[list[str]] = None,
    workspace: Optional[RegistryWorkspace] = None,
) -> FastAPI:
    """Build the API around an existing registry instance.

    With a ``workspace``, requests read from and write through its registry
    directory instead of holding ``registry`` in memory.
    """
    app = FastAPI(
        title="Benefit Registry API",
        description=(
            "REST API for attaching benefit records to tokens and token "
            "collections, and for discovering them."
        ),
        version=__version__,
    )
    app.state.registry = registry
    app.state.workspace = workspace

    if cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=cors_origins,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.add_exception_handler(RegistryError, registry_error_handler)
    app.include_router(benefits.router)

    @app.get("/", tags=["meta"])
    async def root():
        """Return basic API information."""
        return {
            "name": "Benefit Registry API",
            "version": __version__,
            "docs": "/docs",
            "openapi": "/openapi.json",
        }

    @app.get("/health", tags=["meta"])
    def health_check(request: Request):
        return {"status": "healthy", "benefits": len(benefits.get_registry(request))}

    return app


def create_app_from_dir(
    registry_dir: Optional[str] = None, cors_origins: Optional[list[str]] = None
) -> FastAPI:
    """Build the API over a registry directory; mutations are saved to it."""
    workspace = RegistryWorkspace(registry_dir)
    return create_app(workspace.load(), cors_origins=cors_origins, workspace=workspace)
