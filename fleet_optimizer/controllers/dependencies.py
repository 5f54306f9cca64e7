"""Shared FastAPI dependency providers for controller layer."""

from __future__ import annotations

from fastapi import HTTPException, Request, status

from fleet_optimizer.services.optimization_service import ResourceOptimizationService


def get_optimization_service(request: Request) -> ResourceOptimizationService:
    service = getattr(request.app.state, "optimization_service", None)
    if service is None:
        repository = getattr(request.app.state, "repository", None)
        if repository is not None:
            service = ResourceOptimizationService(repository=repository)
            request.app.state.optimization_service = service
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Optimization service is not initialized",
        )
    return service
