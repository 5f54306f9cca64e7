"""HTTP controller layer for predictive insights and reallocation workflow."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, Field, field_validator

from fleet_optimizer.controllers.dependencies import get_optimization_service
from fleet_optimizer.domain.constraints import (
    MAX_HORIZON_DAYS,
    MIN_HORIZON_DAYS,
    PREDICTIVE_INSIGHTS_HORIZON_BOUNDS,
    RECOMMENDATION_HORIZON_BOUNDS,
    SERVICE_WINDOW_PATTERN,
    clamp_horizon,
    parse_horizon_param,
)
from fleet_optimizer.domain.models import RECOMMENDATION_STATUSES
from fleet_optimizer.services.optimization_service import (
    OptimizationValidationError,
    RecommendationNotFoundError,
    ResourceOptimizationService,
)
from fleet_optimizer.services.simulation_service import RuleOverride
from fleet_optimizer.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(tags=["optimization"])


class RulePayload(BaseModel):
    """Partial rule; in a save request ``name`` is mandatory."""

    id: str | None = None
    name: str | None = Field(default=None, min_length=3)
    enabled: bool | None = None
    route_pattern: str | None = None
    threshold: float | None = Field(default=None, ge=0.0, le=5.0)
    auto_apply: bool | None = None
    min_rest_hours: int | None = Field(default=None, ge=0)
    service_window: str | None = Field(default=None, pattern=SERVICE_WINDOW_PATTERN)
    metadata: dict[str, Any] | None = None

    def to_override(self) -> RuleOverride:
        return RuleOverride(
            rule_id=self.id,
            name=self.name,
            enabled=self.enabled,
            route_pattern=self.route_pattern,
            threshold=self.threshold,
            auto_apply=self.auto_apply,
            min_rest_hours=self.min_rest_hours,
            service_window=self.service_window,
            metadata=self.metadata,
        )


class SimulateRequest(BaseModel):
    horizon_days: int | None = Field(default=None, ge=MIN_HORIZON_DAYS, le=MAX_HORIZON_DAYS)
    overrides: list[RulePayload] = Field(default_factory=list)


class SaveRulesRequest(BaseModel):
    rules: list[RulePayload]

    @field_validator("rules")
    @classmethod
    def validate_rule_names(cls, value: list[RulePayload]) -> list[RulePayload]:
        for rule in value:
            if rule.name is None:
                raise ValueError("every rule requires a name")
        return value


class RuleResponse(BaseModel):
    rule_id: str
    name: str
    enabled: bool
    route_pattern: str | None
    threshold: float
    auto_apply: bool
    min_rest_hours: int = Field(ge=0)
    service_window: str
    metadata: dict[str, Any]


class SaveRulesResponse(BaseModel):
    rules: list[RuleResponse]


class RecommendationStatusRequest(BaseModel):
    status: str
    priority: int | None = Field(default=None, ge=0)
    comment: str | None = Field(default=None, max_length=500)

    @field_validator("status")
    @classmethod
    def validate_status(cls, value: str) -> str:
        if value not in RECOMMENDATION_STATUSES:
            raise ValueError(f"status must be one of {', '.join(RECOMMENDATION_STATUSES)}")
        return value


class RecommendationResponse(BaseModel):
    recommendation_id: str
    route_from: str
    route_to: str
    recommended_start: str
    narrative: str
    reason: str
    priority: int
    confidence: float = Field(ge=0.0, le=1.0)
    recommended_vehicle_id: str | None
    recommended_driver_id: str | None
    status: str
    metadata: dict[str, Any]
    created_at: str
    updated_at: str


class RunCycleRequest(BaseModel):
    horizon_days: int | None = Field(default=None, ge=MIN_HORIZON_DAYS, le=MAX_HORIZON_DAYS)


def _bad_request(exc: Exception) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


def _server_error(message: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=message)


@router.get("/ai/predictive-insights", status_code=status.HTTP_200_OK)
async def predictive_insights(
    horizon: str | None = Query(default=None),
    service: ResourceOptimizationService = Depends(get_optimization_service),
) -> dict[str, Any]:
    """Compute a fresh report; nothing is persisted or cached."""
    horizon_days = clamp_horizon(parse_horizon_param(horizon), PREDICTIVE_INSIGHTS_HORIZON_BOUNDS)
    try:
        report = await run_in_threadpool(service.compute_report, horizon_days)
        return report.to_dict()
    except OptimizationValidationError as exc:
        raise _bad_request(exc) from exc
    except Exception as exc:
        logger.exception("Predictive insights computation failed")
        raise _server_error("Failed to compute predictive insights") from exc


@router.get("/optimization/recommendations", status_code=status.HTTP_200_OK)
async def list_recommendations(
    horizon_days: str | None = Query(default=None),
    status_filter: str | None = Query(default=None, alias="status"),
    route: str | None = Query(default=None),
    service: ResourceOptimizationService = Depends(get_optimization_service),
) -> dict[str, Any]:
    statuses = (
        [item.strip() for item in status_filter.split(",") if item.strip()]
        if status_filter
        else None
    )
    horizon = clamp_horizon(parse_horizon_param(horizon_days), RECOMMENDATION_HORIZON_BOUNDS)
    try:
        return await run_in_threadpool(
            service.list_recommendation_view,
            horizon_days=horizon,
            statuses=statuses,
            route=route,
        )
    except OptimizationValidationError as exc:
        raise _bad_request(exc) from exc
    except Exception as exc:
        logger.exception("Optimization recommendations lookup failed")
        raise _server_error("Failed to build optimization recommendations") from exc


@router.post("/optimization/simulate", status_code=status.HTTP_200_OK)
async def simulate(
    payload: SimulateRequest,
    service: ResourceOptimizationService = Depends(get_optimization_service),
) -> dict[str, Any]:
    """Match against transiently overridden rules without persisting."""
    try:
        return await run_in_threadpool(
            service.simulate,
            horizon_days=clamp_horizon(payload.horizon_days, RECOMMENDATION_HORIZON_BOUNDS),
            overrides=[override.to_override() for override in payload.overrides],
        )
    except OptimizationValidationError as exc:
        raise _bad_request(exc) from exc
    except Exception as exc:
        logger.exception("Optimization simulation failed")
        raise _server_error("Failed to run optimization simulation") from exc


@router.post(
    "/optimization/apply",
    response_model=SaveRulesResponse,
    status_code=status.HTTP_200_OK,
)
async def apply_rules(
    payload: SaveRulesRequest,
    service: ResourceOptimizationService = Depends(get_optimization_service),
) -> SaveRulesResponse:
    try:
        saved = await run_in_threadpool(
            service.save_rules,
            [rule.to_override() for rule in payload.rules],
        )
        return SaveRulesResponse(rules=[RuleResponse(**rule.to_dict()) for rule in saved])
    except OptimizationValidationError as exc:
        raise _bad_request(exc) from exc
    except Exception as exc:
        logger.exception("Optimization rule save failed")
        raise _server_error("Failed to save optimization rules") from exc


@router.post(
    "/optimization/recommendations/{recommendation_id}/status",
    response_model=RecommendationResponse,
    status_code=status.HTTP_200_OK,
)
async def update_recommendation_status(
    recommendation_id: str,
    payload: RecommendationStatusRequest,
    service: ResourceOptimizationService = Depends(get_optimization_service),
) -> RecommendationResponse:
    try:
        updated = await run_in_threadpool(
            service.update_recommendation_status,
            recommendation_id,
            status=payload.status,
            priority=payload.priority,
            comment=payload.comment,
        )
        return RecommendationResponse(**updated.to_dict())
    except OptimizationValidationError as exc:
        raise _bad_request(exc) from exc
    except RecommendationNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except Exception as exc:
        logger.exception("Recommendation status update failed")
        raise _server_error("Failed to update recommendation") from exc


@router.post("/optimization/run", status_code=status.HTTP_200_OK)
async def run_cycle(
    payload: RunCycleRequest | None = None,
    service: ResourceOptimizationService = Depends(get_optimization_service),
) -> dict[str, Any]:
    """Run one full cycle on demand and return the cached report."""
    horizon_days = payload.horizon_days if payload is not None else None
    try:
        report = await run_in_threadpool(service.run_cycle, horizon_days)
        return report.to_dict()
    except OptimizationValidationError as exc:
        raise _bad_request(exc) from exc
    except Exception as exc:
        logger.exception("Manual optimization run failed")
        raise _server_error("Failed to run optimization cycle") from exc


@router.get("/optimization/latest", status_code=status.HTTP_200_OK)
async def latest_report(
    service: ResourceOptimizationService = Depends(get_optimization_service),
) -> dict[str, Any]:
    report = service.get_latest_report()
    if report is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No optimization cycle has completed yet",
        )
    return report.to_dict()
